"""Certificate utility functions for key generation, serialization, and summaries."""

import uuid

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from .config import DEFAULT_KEY_SIZE

# OpenSSL short names used in index.txt subjects
_SHORT_NAMES = {
    x509.NameOID.COUNTRY_NAME: "C",
    x509.NameOID.STATE_OR_PROVINCE_NAME: "ST",
    x509.NameOID.LOCALITY_NAME: "L",
    x509.NameOID.ORGANIZATION_NAME: "O",
    x509.NameOID.ORGANIZATIONAL_UNIT_NAME: "OU",
    x509.NameOID.COMMON_NAME: "CN",
    x509.NameOID.EMAIL_ADDRESS: "emailAddress",
}


def generate_private_key(key_size: int = DEFAULT_KEY_SIZE) -> RSAPrivateKey:
    """Generate RSA private key with specified size."""
    return rsa.generate_private_key(
        public_exponent=65537,
        key_size=key_size,
    )


def serialize_private_key(key: RSAPrivateKey) -> bytes:
    """Serialize private key to PEM format (PKCS8, no encryption)."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def deserialize_private_key(pem_data: bytes) -> RSAPrivateKey:
    """Deserialize private key from PEM bytes."""
    key = serialization.load_pem_private_key(pem_data, password=None)
    if not isinstance(key, RSAPrivateKey):
        raise ValueError("expected RSA private key")
    return key


def serialize_certificate(cert: x509.Certificate) -> bytes:
    """Serialize certificate to PEM format."""
    return cert.public_bytes(serialization.Encoding.PEM)


def deserialize_certificate(pem_data: bytes) -> x509.Certificate:
    """Deserialize certificate from PEM bytes."""
    return x509.load_pem_x509_certificate(pem_data)


def serialize_csr(csr: x509.CertificateSigningRequest) -> bytes:
    """Serialize CSR to PEM format."""
    return csr.public_bytes(serialization.Encoding.PEM)


def deserialize_csr(pem_data: bytes) -> x509.CertificateSigningRequest:
    """Deserialize CSR from PEM bytes."""
    return x509.load_pem_x509_csr(pem_data)


def validate_csr_signature(csr: x509.CertificateSigningRequest) -> bool:
    """Verify CSR self-signature to prove private key possession."""
    return csr.is_signature_valid


def generate_serial_number() -> int:
    """Generate a random 128-bit certificate serial number from UUID4.

    Used for self-signed roots, which are not tracked in the signing ledger.
    """
    return uuid.uuid4().int


def format_serial(serial: int) -> str:
    """Format a serial as OpenSSL writes it: uppercase hex, even number of digits."""
    serial_hex = f"{serial:X}"
    if len(serial_hex) % 2 != 0:
        serial_hex = "0" + serial_hex
    return serial_hex


def get_certificate_serial_hex(cert: x509.Certificate) -> str:
    """Return certificate serial number as hex with colons (e.g., 3A:F2:B1:...)."""
    serial_hex = format_serial(cert.serial_number)
    return ":".join(serial_hex[i : i + 2] for i in range(0, len(serial_hex), 2))


def openssl_subject(name: x509.Name) -> str:
    """Render a name in the slash-separated form used by OpenSSL's index.txt."""
    parts = []
    for attribute in name:
        label = _SHORT_NAMES.get(attribute.oid, attribute.oid.dotted_string)
        parts.append(f"/{label}={attribute.value}")
    return "".join(parts)


def get_subject_alt_names(cert: x509.Certificate) -> list[str]:
    """Return SAN entries as ``DNS:name`` / ``IP Address:addr`` strings."""
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        return []
    entries = [f"DNS:{name}" for name in san.get_values_for_type(x509.DNSName)]
    entries += [f"IP Address:{ip}" for ip in san.get_values_for_type(x509.IPAddress)]
    return entries


def describe_certificate(cert: x509.Certificate) -> str:
    """Human-readable summary for operator verification."""
    lines = [
        f"Subject: {cert.subject.rfc4514_string()}",
        f"Issuer: {cert.issuer.rfc4514_string()}",
        f"Serial: {get_certificate_serial_hex(cert)}",
        f"Not Before: {cert.not_valid_before_utc.isoformat()}",
        f"Not After: {cert.not_valid_after_utc.isoformat()}",
    ]
    try:
        bc = cert.extensions.get_extension_for_class(x509.BasicConstraints).value
        lines.append(f"CA: {bc.ca}")
    except x509.ExtensionNotFound:
        pass
    sans = get_subject_alt_names(cert)
    if sans:
        lines.append(f"Subject Alternative Names: {', '.join(sans)}")
    return "\n".join(lines)
