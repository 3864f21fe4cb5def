"""Derive common name and Subject Alternative Names from a host list."""

import re
from collections.abc import Sequence
from dataclasses import dataclass

from .config_merge import ConfigDocument
from .errors import SectionResolutionError, UsageError
from .logging_config import LOGGER, TRACE

DEFAULT_DN_SECTION = "req_distinguished_name"
DEFAULT_EXTENSIONS_SECTION = "v3_req"
DEFAULT_SAN_SECTION = "v3_req"

# Digit-dot-digit (IPv4-ish) or colon-hex (IPv6-ish) anywhere in the name
_IP_PATTERN = re.compile(r"[0-9]\.[0-9]|:[0-9a-fA-F]")


@dataclass(frozen=True)
class HostSpec:
    """Hosts a certificate is issued for; the first one is the common name."""

    hosts: tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.hosts:
            raise UsageError("at least one host has to be specified")

    @classmethod
    def of(cls, hosts: Sequence[str]) -> "HostSpec":
        return cls(tuple(hosts))

    @property
    def primary(self) -> str:
        return self.hosts[0]


@dataclass(frozen=True)
class SectionNames:
    """Config sections holding the DN defaults, request extensions and SAN list."""

    distinguished_name: str
    extensions: str
    san: str


@dataclass(frozen=True)
class SanEntry:
    key: str
    value: str


def is_ip_literal(host: str) -> bool:
    """Lexical IP test: no address parsing, just the dotted-digit/colon-hex shape."""
    return _IP_PATTERN.search(host) is not None


def _lookup(document: ConfigDocument, section: str, key: str, default: str) -> str:
    value = document.get(section, key)
    if value is None:
        return default
    value = value.strip()
    if not value:
        raise SectionResolutionError(section, key)
    return value


def resolve_sections(document: ConfigDocument) -> SectionNames:
    """Follow req -> distinguished_name / req_extensions -> subjectAltName.

    Each lookup falls back to a fixed default when the key is absent. The
    ``@`` sigil of a section-reference SAN value is stripped.

    Raises:
        SectionResolutionError: If a key is present but empty
    """
    dn_section = _lookup(document, "req", "distinguished_name", DEFAULT_DN_SECTION)
    LOGGER.log(TRACE, "Section for the distinguished name is '%s'", dn_section)

    ext_section = _lookup(document, "req", "req_extensions", DEFAULT_EXTENSIONS_SECTION)
    LOGGER.log(TRACE, "Section for the extensions is '%s'", ext_section)

    san_value = _lookup(document, ext_section, "subjectAltName", DEFAULT_SAN_SECTION)
    san_section = san_value.removeprefix("@").strip()
    if not san_section:
        raise SectionResolutionError(ext_section, "subjectAltName")
    LOGGER.log(TRACE, "Section for the SAN is '%s'", san_section)

    return SectionNames(distinguished_name=dn_section, extensions=ext_section, san=san_section)


def build_san_entries(spec: HostSpec) -> list[SanEntry]:
    """Every host becomes DNS.<i> (0-based); IP-looking hosts also get IP.<j> (1-based)."""
    entries: list[SanEntry] = []
    ip_index = 1
    for index, host in enumerate(spec.hosts):
        entries.append(SanEntry(f"DNS.{index}", host))
        if is_ip_literal(host):
            entries.append(SanEntry(f"IP.{ip_index}", host))
            ip_index += 1
    return entries


def apply_host_identity(document: ConfigDocument, spec: HostSpec) -> SectionNames:
    """Write the primary host as common name default and all hosts as SAN entries."""
    LOGGER.debug("Reading section names from config")
    names = resolve_sections(document)

    LOGGER.info("Setting primary host in config")
    document.set(names.distinguished_name, "commonName_default", spec.primary)

    LOGGER.info("Setting all hosts as SAN in config")
    for entry in build_san_entries(spec):
        document.set(names.san, entry.key, entry.value)
        LOGGER.debug("Set host '%s' as %s", entry.value, entry.key)

    return names
