"""PKI toolkit: key, request, self-signed and CA-signed certificate operations.

Operations read OpenSSL-style configuration documents (``[req]``, ``[ca]``,
policy and extension sections) and write PEM files. Every failure surfaces as
a ToolkitError whose message is the diagnostic shown to the operator.
"""

import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey

from .cert_utils import (
    describe_certificate,
    deserialize_certificate,
    deserialize_csr,
    deserialize_private_key,
    generate_private_key,
    serialize_certificate,
    serialize_csr,
    serialize_private_key,
    validate_csr_signature,
)
from .certificate_builder import CertificateBuilder, Extension, build_extensions, hash_algorithm
from .config import DN_FIELDS, DistinguishedName
from .config_merge import ConfigDocument
from .errors import PKIError, ToolkitError
from .ledger import SigningLedger
from .logging_config import LOGGER
from .san import DEFAULT_DN_SECTION

DEFAULT_MD = "sha256"
DEFAULT_REQ_DAYS = "30"
DEFAULT_CA_DAYS = "365"
DEFAULT_CA_SECTION = "CA_default"

_FIELD_OIDS = dict(DN_FIELDS)


@contextmanager
def _diagnostics(operation: str) -> Iterator[None]:
    """Report any failure inside the block as a ToolkitError."""
    try:
        yield
    except ToolkitError:
        raise
    except (PKIError, ValueError, TypeError, OSError) as e:
        raise ToolkitError(f"{operation}: {e}") from e


def _write_private(path: Path, data: bytes) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as handle:
        # O_CREAT only applies the mode to new files
        os.fchmod(handle.fileno(), 0o600)
        handle.write(data)


class PKIToolkit:
    """Certificate authority toolkit backed by the cryptography library."""

    def generate_key(self, out_path: Path, key_size: int) -> None:
        """Generate an unencrypted RSA private key (PKCS8 PEM)."""
        with _diagnostics("key generation failed"):
            LOGGER.debug("Generating %d-bit RSA key into '%s'", key_size, out_path)
            _write_private(out_path, serialize_private_key(generate_private_key(key_size)))

    def key_size(self, config_path: Path, default: int) -> int:
        """Read ``[req] default_bits``."""
        with _diagnostics("reading key size failed"):
            document = ConfigDocument.load(config_path)
            return int(document.get("req", "default_bits", str(default)) or default)

    def create_request(self, config_path: Path, key_path: Path, out_path: Path) -> None:
        """Create a CSR from the ``[req]`` section of ``config_path``."""
        with _diagnostics("request generation failed"):
            document = ConfigDocument.load(config_path)
            key = deserialize_private_key(key_path.read_bytes())
            public_key = _rsa_public_key(key.public_key())

            builder = x509.CertificateSigningRequestBuilder().subject_name(
                _request_subject(document)
            )
            ext_section = document.get("req", "req_extensions")
            if ext_section:
                for extension, critical in _section_extensions(
                    document, ext_section, public_key, public_key
                ):
                    builder = builder.add_extension(extension, critical=critical)

            algorithm = hash_algorithm(document.get("req", "default_md", DEFAULT_MD) or DEFAULT_MD)
            out_path.write_bytes(serialize_csr(builder.sign(key, algorithm)))

    def self_sign(self, config_path: Path, key_path: Path, out_path: Path) -> None:
        """Create a self-signed certificate from the ``[req]`` section."""
        with _diagnostics("self-signing failed"):
            document = ConfigDocument.load(config_path)
            key = deserialize_private_key(key_path.read_bytes())
            public_key = _rsa_public_key(key.public_key())

            extensions: list[Extension] = []
            ext_section = document.get("req", "x509_extensions")
            if ext_section:
                extensions = _section_extensions(document, ext_section, public_key, public_key)

            cert = CertificateBuilder.build_self_signed(
                subject=_request_subject(document),
                private_key=key,
                validity_days=int(document.get("req", "default_days", DEFAULT_REQ_DAYS) or DEFAULT_REQ_DAYS),
                extensions=extensions,
                algorithm=hash_algorithm(document.get("req", "default_md", DEFAULT_MD) or DEFAULT_MD),
            )
            out_path.write_bytes(serialize_certificate(cert))

    def sign_request(
        self,
        ca_dir: Path,
        csr_path: Path,
        out_path: Path,
        policy: str,
        extensions: str,
    ) -> x509.Certificate:
        """Sign a CSR with the CA in ``ca_dir`` and record it in the CA's ledger.

        The CA's ``config.ini`` names its files in the ``[ca] default_ca``
        section, relative to ``ca_dir``.

        Args:
            ca_dir: Certificate authority directory
            csr_path: Request to sign
            out_path: Where the signed certificate is written
            policy: Section listing subject fields as match/supplied/optional
            extensions: Section with the extensions of issued certificates

        Returns:
            The issued certificate
        """
        with _diagnostics("signing failed"):
            document = ConfigDocument.load(ca_dir / "config.ini")
            ca_section = document.get("ca", "default_ca", DEFAULT_CA_SECTION) or DEFAULT_CA_SECTION

            def ca_file(key: str, default: str) -> Path:
                return ca_dir / (document.get(ca_section, key, default) or default)

            ca_cert = deserialize_certificate(ca_file("certificate", "rootCA.pem").read_bytes())
            ca_key = deserialize_private_key(ca_file("private_key", "rootCA.key").read_bytes())
            database = ca_file("database", "index.txt")
            ledger = SigningLedger(
                index_path=database,
                attr_path=database.with_name(database.name + ".attr"),
                serial_path=ca_file("serial", "serial.txt"),
            )
            if not ledger.exists():
                raise ToolkitError(f"signing failed: ledger in '{ca_dir}' has not been set up")

            csr = deserialize_csr(csr_path.read_bytes())
            if not validate_csr_signature(csr):
                raise ToolkitError("signing failed: request signature did not verify")
            public_key = _rsa_public_key(csr.public_key())

            subject = apply_policy(_policy_items(document, policy), csr.subject, ca_cert.subject)

            if not document.has_section(extensions):
                raise ToolkitError(f"signing failed: extension section '{extensions}' not found")
            cert_extensions = _section_extensions(
                document, extensions, public_key, _rsa_public_key(ca_cert.public_key())
            )
            copy_mode = document.get(ca_section, "copy_extensions", "none") or "none"
            cert_extensions = _copy_request_extensions(cert_extensions, csr, copy_mode)

            days = int(document.get(ca_section, "default_days", DEFAULT_CA_DAYS) or DEFAULT_CA_DAYS)
            algorithm = hash_algorithm(document.get(ca_section, "default_md", DEFAULT_MD) or DEFAULT_MD)

            with ledger.issue() as reservation:
                LOGGER.debug("Signing '%s' with serial %X", csr_path, reservation.serial)
                cert = CertificateBuilder.build_signed(
                    subject=subject,
                    public_key=public_key,
                    issuer_cert=ca_cert,
                    issuer_key=ca_key,
                    serial_number=reservation.serial,
                    validity_days=days,
                    extensions=cert_extensions,
                    algorithm=algorithm,
                )
                out_path.write_bytes(serialize_certificate(cert))
                reservation.certificate = cert
            return cert

    def describe_certificate(self, cert_path: Path) -> str:
        """Human-readable summary of a PEM certificate."""
        with _diagnostics("reading certificate failed"):
            return describe_certificate(deserialize_certificate(cert_path.read_bytes()))


def apply_policy(
    policy: list[tuple[str, str]], requested: x509.Name, ca_subject: x509.Name
) -> x509.Name:
    """Build the issued subject from a request under a signing policy.

    ``match`` fields must equal the CA's value, ``supplied`` fields must be
    present, ``optional`` fields are kept when present. Fields the policy does
    not list are dropped.

    Raises:
        ToolkitError: If the request violates the policy
    """
    attributes: list[x509.NameAttribute] = []
    for field, rule in policy:
        if field not in _FIELD_OIDS:
            raise ToolkitError(f"signing failed: unknown policy field '{field}'")
        attr_oid = _FIELD_OIDS[field]
        values = requested.get_attributes_for_oid(attr_oid)
        if rule == "match":
            expected = ca_subject.get_attributes_for_oid(attr_oid)
            if not values or [v.value for v in values] != [e.value for e in expected]:
                raise ToolkitError(
                    f"signing failed: the {field} field needed to be the same in the "
                    "CA certificate and the request"
                )
        elif rule == "supplied":
            if not values:
                raise ToolkitError(f"signing failed: the {field} field needed to be supplied")
        elif rule != "optional":
            raise ToolkitError(f"signing failed: unknown policy rule '{rule}' for {field}")
        attributes.extend(values)
    return x509.Name(attributes)


def _policy_items(document: ConfigDocument, policy: str) -> list[tuple[str, str]]:
    if not document.has_section(policy):
        raise ToolkitError(f"signing failed: policy section '{policy}' not found")
    return document.items(policy)


def _request_subject(document: ConfigDocument) -> x509.Name:
    dn_section = document.get("req", "distinguished_name", DEFAULT_DN_SECTION) or DEFAULT_DN_SECTION
    subject = DistinguishedName.from_defaults(dict(document.items(dn_section))).to_x509_name()
    if not len(subject):
        raise ToolkitError(f"no subject defaults found in section '{dn_section}'")
    return subject


def _section_extensions(
    document: ConfigDocument,
    section: str,
    subject_key: RSAPublicKey,
    issuer_key: RSAPublicKey,
) -> list[Extension]:
    # SAN entries share the extension section when it references itself
    items = [(k, v) for k, v in document.items(section) if not k.startswith(("DNS.", "IP."))]
    return build_extensions(items, document.items, subject_key, issuer_key)


def _copy_request_extensions(
    extensions: list[Extension], csr: x509.CertificateSigningRequest, mode: str
) -> list[Extension]:
    if mode == "none":
        return extensions
    if mode not in ("copy", "copyall"):
        raise ToolkitError(f"signing failed: invalid copy_extensions value '{mode}'")
    result = {type(ext): (ext, critical) for ext, critical in extensions}
    for requested in csr.extensions:
        if mode == "copy" and type(requested.value) in result:
            continue
        result[type(requested.value)] = (requested.value, requested.critical)
    return list(result.values())


def _rsa_public_key(key: object) -> RSAPublicKey:
    if not isinstance(key, RSAPublicKey):
        raise ToolkitError("only RSA keys are supported")
    return key
