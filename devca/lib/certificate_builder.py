"""Certificate builder for X.509 certificate construction from OpenSSL-style config."""

import ipaddress
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey
from cryptography.x509.oid import ExtendedKeyUsageOID

from .cert_utils import generate_serial_number

Extension = tuple[x509.ExtensionType, bool]

HASHES: dict[str, Callable[[], hashes.HashAlgorithm]] = {
    "sha256": hashes.SHA256,
    "sha384": hashes.SHA384,
    "sha512": hashes.SHA512,
}

_KEY_USAGE_FLAGS = {
    "digitalSignature": "digital_signature",
    "nonRepudiation": "content_commitment",
    "keyEncipherment": "key_encipherment",
    "dataEncipherment": "data_encipherment",
    "keyAgreement": "key_agreement",
    "keyCertSign": "key_cert_sign",
    "cRLSign": "crl_sign",
    "encipherOnly": "encipher_only",
    "decipherOnly": "decipher_only",
}

_EXTENDED_KEY_USAGES = {
    "serverAuth": ExtendedKeyUsageOID.SERVER_AUTH,
    "clientAuth": ExtendedKeyUsageOID.CLIENT_AUTH,
    "codeSigning": ExtendedKeyUsageOID.CODE_SIGNING,
    "emailProtection": ExtendedKeyUsageOID.EMAIL_PROTECTION,
    "timeStamping": ExtendedKeyUsageOID.TIME_STAMPING,
    "OCSPSigning": ExtendedKeyUsageOID.OCSP_SIGNING,
}


def hash_algorithm(name: str) -> hashes.HashAlgorithm:
    """Resolve a ``default_md`` value.

    Raises:
        ValueError: If the digest is not supported
    """
    try:
        return HASHES[name.lower()]()
    except KeyError:
        raise ValueError(f"unsupported message digest '{name}'") from None


def _split(value: str) -> tuple[bool, list[str]]:
    """Split a comma list, pulling out a leading ``critical`` marker."""
    parts = [part.strip() for part in value.split(",") if part.strip()]
    critical = bool(parts) and parts[0] == "critical"
    return critical, parts[1:] if critical else parts


def parse_basic_constraints(value: str) -> Extension:
    critical, parts = _split(value)
    ca = False
    path_length = None
    for part in parts:
        name, _, setting = part.partition(":")
        if name == "CA":
            ca = setting.upper() == "TRUE"
        elif name == "pathlen":
            path_length = int(setting)
        else:
            raise ValueError(f"unknown basicConstraints value '{part}'")
    if not ca:
        path_length = None
    return x509.BasicConstraints(ca=ca, path_length=path_length), critical


def parse_key_usage(value: str) -> Extension:
    critical, parts = _split(value)
    flags = dict.fromkeys(_KEY_USAGE_FLAGS.values(), False)
    for part in parts:
        if part not in _KEY_USAGE_FLAGS:
            raise ValueError(f"unknown keyUsage value '{part}'")
        flags[_KEY_USAGE_FLAGS[part]] = True
    return x509.KeyUsage(**flags), critical


def parse_extended_key_usage(value: str) -> Extension:
    critical, parts = _split(value)
    usages = []
    for part in parts:
        if part not in _EXTENDED_KEY_USAGES:
            raise ValueError(f"unknown extendedKeyUsage value '{part}'")
        usages.append(_EXTENDED_KEY_USAGES[part])
    return x509.ExtendedKeyUsage(usages), critical


_SAN_TYPES = ("DNS", "IP", "email", "URI")


def _general_name(kind: str, value: str) -> x509.GeneralName:
    if kind == "DNS":
        return x509.DNSName(value)
    if kind == "IP":
        try:
            return x509.IPAddress(ipaddress.ip_address(value))
        except ValueError:
            raise ValueError(f"bad IP address '{value}' in subjectAltName") from None
    if kind == "email":
        return x509.RFC822Name(value)
    if kind == "URI":
        return x509.UniformResourceIdentifier(value)
    raise ValueError(f"unsupported subjectAltName type '{kind}'")


def parse_subject_alt_name(
    value: str, section_items: Callable[[str], list[tuple[str, str]]]
) -> Extension:
    """Parse ``@section`` (``DNS.n``/``IP.n`` keys) or inline ``DNS:a,IP:b`` form."""
    critical, parts = _split(value)
    names: list[x509.GeneralName] = []
    for part in parts:
        if part.startswith("@"):
            section = part[1:].strip()
            items = section_items(section)
            if not items:
                raise ValueError(f"subjectAltName section '{section}' is empty or missing")
            for key, entry in items:
                kind = key.split(".", 1)[0]
                # A section shared with other extensions carries their keys too
                if kind not in _SAN_TYPES and "." not in key:
                    continue
                names.append(_general_name(kind, entry))
        else:
            kind, _, entry = part.partition(":")
            names.append(_general_name(kind, entry))
    return x509.SubjectAlternativeName(names), critical


def build_extensions(
    items: list[tuple[str, str]],
    section_items: Callable[[str], list[tuple[str, str]]],
    subject_key: RSAPublicKey,
    issuer_key: RSAPublicKey,
) -> list[Extension]:
    """Turn an extension section into cryptography extension objects.

    Args:
        items: Key/value pairs of the extension section
        section_items: Lookup for sections referenced with ``@``
        subject_key: Public key the certificate is issued for
        issuer_key: Public key of the signer (same as subject_key when self-signed)

    Raises:
        ValueError: If a value cannot be parsed or the key is unknown
    """
    extensions: list[Extension] = []
    for key, value in items:
        if key == "basicConstraints":
            extensions.append(parse_basic_constraints(value))
        elif key == "keyUsage":
            extensions.append(parse_key_usage(value))
        elif key == "extendedKeyUsage":
            extensions.append(parse_extended_key_usage(value))
        elif key == "subjectAltName":
            extensions.append(parse_subject_alt_name(value, section_items))
        elif key == "subjectKeyIdentifier":
            extensions.append((x509.SubjectKeyIdentifier.from_public_key(subject_key), False))
        elif key == "authorityKeyIdentifier":
            extensions.append(
                (x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer_key), False)
            )
        else:
            raise ValueError(f"unsupported extension '{key}'")
    return extensions


class CertificateBuilder:
    """Builds self-signed CA certificates and CA-signed host certificates."""

    @staticmethod
    def build_self_signed(
        subject: x509.Name,
        private_key: RSAPrivateKey,
        validity_days: int,
        extensions: list[Extension],
        algorithm: hashes.HashAlgorithm,
    ) -> x509.Certificate:
        """Build a self-signed certificate.

        Args:
            subject: Subject (and issuer) name
            private_key: RSA private key for signing
            validity_days: Certificate validity period in days
            extensions: Extensions to add, with their criticality
            algorithm: Signature hash

        Returns:
            Self-signed X.509 certificate
        """
        not_before = datetime.now(UTC)
        not_after = not_before + timedelta(days=validity_days)

        builder = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(subject)
            .public_key(private_key.public_key())
            .serial_number(generate_serial_number())
            .not_valid_before(not_before)
            .not_valid_after(not_after)
        )
        for extension, critical in extensions:
            builder = builder.add_extension(extension, critical=critical)

        return builder.sign(private_key, algorithm)

    @staticmethod
    def build_signed(
        subject: x509.Name,
        public_key: RSAPublicKey,
        issuer_cert: x509.Certificate,
        issuer_key: RSAPrivateKey,
        serial_number: int,
        validity_days: int,
        extensions: list[Extension],
        algorithm: hashes.HashAlgorithm,
    ) -> x509.Certificate:
        """Build an end-entity certificate signed by the CA.

        Args:
            subject: Subject name after policy checks
            public_key: Public key taken from the CSR
            issuer_cert: CA certificate (issuer)
            issuer_key: CA private key for signing
            serial_number: Serial reserved from the signing ledger
            validity_days: Certificate validity period in days
            extensions: Extensions to add, with their criticality
            algorithm: Signature hash

        Returns:
            X.509 certificate signed by the CA
        """
        not_before = datetime.now(UTC)
        not_after = not_before + timedelta(days=validity_days)

        builder = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer_cert.subject)
            .public_key(public_key)
            .serial_number(serial_number)
            .not_valid_before(not_before)
            .not_valid_after(not_after)
        )
        for extension, critical in extensions:
            builder = builder.add_extension(extension, critical=critical)

        return builder.sign(issuer_key, algorithm)
