"""Tests for toolkit and certificate_builder modules."""

import ipaddress
import os
import shutil
from pathlib import Path

import pytest
from cryptography import x509

from devca.lib.cert_utils import deserialize_certificate, deserialize_csr, deserialize_private_key
from devca.lib.certificate_builder import (
    parse_basic_constraints,
    parse_extended_key_usage,
    parse_key_usage,
    parse_subject_alt_name,
)
from devca.lib.config import DEFAULT_CA_CONFIG, DEFAULT_HOST_CONFIG, SIGNING_EXTENSIONS, SIGNING_POLICY
from devca.lib.config_merge import ConfigDocument
from devca.lib.errors import ToolkitError
from devca.lib.ledger import SigningLedger
from devca.lib.toolkit import PKIToolkit, apply_policy


@pytest.fixture
def toolkit() -> PKIToolkit:
    return PKIToolkit()


@pytest.fixture
def bare_ca(temp_output_dir: Path, toolkit: PKIToolkit) -> Path:
    """CA directory built by calling the toolkit directly."""
    ca_dir = temp_output_dir / "ca"
    ca_dir.mkdir()
    shutil.copyfile(DEFAULT_CA_CONFIG, ca_dir / "config.ini")
    SigningLedger(ca_dir / "index.txt", ca_dir / "index.txt.attr", ca_dir / "serial.txt").ensure()
    toolkit.generate_key(ca_dir / "rootCA.key", 2048)
    toolkit.self_sign(ca_dir / "config.ini", ca_dir / "rootCA.key", ca_dir / "rootCA.pem")
    return ca_dir


@pytest.fixture
def host_request(temp_output_dir: Path, toolkit: PKIToolkit) -> Path:
    """CSR for app.local + 127.0.0.1 from the bundled server config."""
    host_dir = temp_output_dir / "host"
    host_dir.mkdir()
    document = ConfigDocument.load(DEFAULT_HOST_CONFIG)
    document.set("req_distinguished_name", "commonName_default", "app.local")
    document.set("alt_names", "DNS.0", "app.local")
    document.set("alt_names", "DNS.1", "127.0.0.1")
    document.set("alt_names", "IP.1", "127.0.0.1")
    document.write(host_dir / "config.ini")
    toolkit.generate_key(host_dir / "ssl.key", 2048)
    toolkit.create_request(host_dir / "config.ini", host_dir / "ssl.key", host_dir / "request.csr")
    return host_dir / "request.csr"


class TestGenerateKey:
    def test_writes_private_pem(self, temp_output_dir: Path, toolkit: PKIToolkit) -> None:
        path = temp_output_dir / "ssl.key"
        toolkit.generate_key(path, 2048)

        assert deserialize_private_key(path.read_bytes()).key_size == 2048
        assert path.stat().st_mode & 0o777 == 0o600

    def test_key_is_never_readable_by_others(
        self, temp_output_dir: Path, toolkit: PKIToolkit, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """The key file is created 0600 before any key bytes are written."""
        real_fdopen = os.fdopen
        modes_at_open = []

        def recording_fdopen(fd: int, *args, **kwargs):
            modes_at_open.append(os.fstat(fd).st_mode & 0o777)
            return real_fdopen(fd, *args, **kwargs)

        monkeypatch.setattr(os, "fdopen", recording_fdopen)
        old_umask = os.umask(0)
        try:
            toolkit.generate_key(temp_output_dir / "ssl.key", 2048)
        finally:
            os.umask(old_umask)

        assert modes_at_open == [0o600]

    def test_existing_key_file_is_tightened(
        self, temp_output_dir: Path, toolkit: PKIToolkit
    ) -> None:
        path = temp_output_dir / "ssl.key"
        path.write_text("stale")
        path.chmod(0o644)

        toolkit.generate_key(path, 2048)

        assert path.stat().st_mode & 0o777 == 0o600
        assert deserialize_private_key(path.read_bytes()).key_size == 2048

    def test_unwritable_path_raises_toolkit_error(
        self, temp_output_dir: Path, toolkit: PKIToolkit
    ) -> None:
        with pytest.raises(ToolkitError, match="key generation failed"):
            toolkit.generate_key(temp_output_dir / "missing" / "ssl.key", 2048)

    def test_key_size_reads_default_bits(self, write_ini, toolkit: PKIToolkit) -> None:
        config = write_ini("bits.ini", "[ req ]\ndefault_bits = 3072\n")
        assert toolkit.key_size(config, 2048) == 3072
        config = write_ini("nobits.ini", "[ req ]\n")
        assert toolkit.key_size(config, 2048) == 2048


class TestSelfSign:
    """Tests for PKIToolkit.self_sign() - root certificate."""

    def test_root_is_self_signed_ca(self, bare_ca: Path) -> None:
        cert = deserialize_certificate((bare_ca / "rootCA.pem").read_bytes())

        cert.verify_directly_issued_by(cert)
        bc = cert.extensions.get_extension_for_class(x509.BasicConstraints)
        assert bc.value.ca is True
        assert bc.critical is True
        ku = cert.extensions.get_extension_for_class(x509.KeyUsage).value
        assert ku.key_cert_sign and ku.crl_sign

    def test_subject_comes_from_dn_defaults(self, bare_ca: Path) -> None:
        cert = deserialize_certificate((bare_ca / "rootCA.pem").read_bytes())
        cn = cert.subject.get_attributes_for_oid(x509.NameOID.COMMON_NAME)[0].value
        assert cn == "Local Development Root CA"

    def test_validity_uses_default_days(self, bare_ca: Path) -> None:
        cert = deserialize_certificate((bare_ca / "rootCA.pem").read_bytes())
        lifetime = cert.not_valid_after_utc - cert.not_valid_before_utc
        assert lifetime.days == 3650

    def test_config_without_subject_raises(
        self, temp_output_dir: Path, write_ini, toolkit: PKIToolkit
    ) -> None:
        config = write_ini("empty.ini", "[ req ]\ndefault_bits = 2048\n")
        toolkit.generate_key(temp_output_dir / "k.key", 2048)

        with pytest.raises(ToolkitError, match="no subject defaults"):
            toolkit.self_sign(config, temp_output_dir / "k.key", temp_output_dir / "k.pem")


class TestCreateRequest:
    def test_request_carries_subject_and_san(self, host_request: Path) -> None:
        csr = deserialize_csr(host_request.read_bytes())

        assert csr.is_signature_valid
        cn = csr.subject.get_attributes_for_oid(x509.NameOID.COMMON_NAME)[0].value
        assert cn == "app.local"
        san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        assert san.get_values_for_type(x509.DNSName) == ["app.local", "127.0.0.1"]
        assert san.get_values_for_type(x509.IPAddress) == [ipaddress.ip_address("127.0.0.1")]

    def test_missing_key_raises(
        self, temp_output_dir: Path, write_ini, toolkit: PKIToolkit
    ) -> None:
        config = write_ini("server.ini", DEFAULT_HOST_CONFIG.read_text())
        with pytest.raises(ToolkitError, match="request generation failed"):
            toolkit.create_request(
                config, temp_output_dir / "absent.key", temp_output_dir / "r.csr"
            )


class TestSignRequest:
    """Tests for PKIToolkit.sign_request() - CA signing with ledger."""

    def test_signed_certificate_chains_to_root(
        self, bare_ca: Path, host_request: Path, toolkit: PKIToolkit
    ) -> None:
        out = host_request.with_name("ssl.pem")

        issued = toolkit.sign_request(
            bare_ca, host_request, out, policy=SIGNING_POLICY, extensions=SIGNING_EXTENSIONS
        )

        root = deserialize_certificate((bare_ca / "rootCA.pem").read_bytes())
        cert = deserialize_certificate(out.read_bytes())
        cert.verify_directly_issued_by(root)
        assert cert == issued
        assert cert.serial_number == 1
        assert cert.extensions.get_extension_for_class(x509.BasicConstraints).value.ca is False
        eku = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
        assert x509.oid.ExtendedKeyUsageOID.SERVER_AUTH in eku

    def test_san_is_copied_from_request(
        self, bare_ca: Path, host_request: Path, toolkit: PKIToolkit
    ) -> None:
        cert = toolkit.sign_request(
            bare_ca,
            host_request,
            host_request.with_name("ssl.pem"),
            policy=SIGNING_POLICY,
            extensions=SIGNING_EXTENSIONS,
        )

        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        assert san.get_values_for_type(x509.DNSName) == ["app.local", "127.0.0.1"]

    def test_signing_advances_ledger(
        self, bare_ca: Path, host_request: Path, toolkit: PKIToolkit
    ) -> None:
        for name in ("first.pem", "second.pem"):
            toolkit.sign_request(
                bare_ca,
                host_request,
                host_request.with_name(name),
                policy=SIGNING_POLICY,
                extensions=SIGNING_EXTENSIONS,
            )

        assert (bare_ca / "serial.txt").read_text() == "03\n"
        lines = (bare_ca / "index.txt").read_text().splitlines()
        assert len(lines) == 2
        assert lines[0].split("\t")[3] == "01"
        assert lines[1].split("\t")[5].endswith("/CN=app.local")

    def test_unknown_policy_section_raises(
        self, bare_ca: Path, host_request: Path, toolkit: PKIToolkit
    ) -> None:
        with pytest.raises(ToolkitError, match="policy section 'nope' not found"):
            toolkit.sign_request(
                bare_ca,
                host_request,
                host_request.with_name("ssl.pem"),
                policy="nope",
                extensions=SIGNING_EXTENSIONS,
            )
        assert not host_request.with_name("ssl.pem").exists()
        assert (bare_ca / "serial.txt").read_text() == "01\n"

    def test_missing_ledger_raises(
        self, bare_ca: Path, host_request: Path, toolkit: PKIToolkit
    ) -> None:
        (bare_ca / "serial.txt").unlink()
        with pytest.raises(ToolkitError, match="ledger"):
            toolkit.sign_request(
                bare_ca,
                host_request,
                host_request.with_name("ssl.pem"),
                policy=SIGNING_POLICY,
                extensions=SIGNING_EXTENSIONS,
            )


class TestApplyPolicy:
    """Tests for apply_policy() - subject filtering under a signing policy."""

    CA = x509.Name([x509.NameAttribute(x509.NameOID.ORGANIZATION_NAME, "Dev")])

    def _name(self, **attrs: str) -> x509.Name:
        oids = {"O": x509.NameOID.ORGANIZATION_NAME, "CN": x509.NameOID.COMMON_NAME}
        return x509.Name([x509.NameAttribute(oids[k], v) for k, v in attrs.items()])

    def test_fields_outside_policy_are_dropped(self) -> None:
        subject = apply_policy([("commonName", "supplied")], self._name(O="Dev", CN="a"), self.CA)
        assert subject == self._name(CN="a")

    def test_supplied_field_missing_raises(self) -> None:
        with pytest.raises(ToolkitError, match="commonName field needed to be supplied"):
            apply_policy([("commonName", "supplied")], self._name(O="Dev"), self.CA)

    def test_match_field_must_equal_ca(self) -> None:
        policy = [("organizationName", "match"), ("commonName", "supplied")]
        assert apply_policy(policy, self._name(O="Dev", CN="a"), self.CA) == self._name(
            O="Dev", CN="a"
        )
        with pytest.raises(ToolkitError, match="needed to be the same"):
            apply_policy(policy, self._name(O="Other", CN="a"), self.CA)

    def test_optional_field_may_be_absent(self) -> None:
        policy = [("organizationName", "optional"), ("commonName", "supplied")]
        assert apply_policy(policy, self._name(CN="a"), self.CA) == self._name(CN="a")


class TestExtensionParsing:
    """Tests for OpenSSL extension value parsing."""

    def test_basic_constraints(self) -> None:
        ext, critical = parse_basic_constraints("critical, CA:TRUE, pathlen:0")
        assert critical is True
        assert ext == x509.BasicConstraints(ca=True, path_length=0)

    def test_key_usage(self) -> None:
        ext, critical = parse_key_usage("digitalSignature, keyEncipherment")
        assert critical is False
        assert ext.digital_signature and ext.key_encipherment
        assert not ext.key_cert_sign

    def test_unknown_key_usage_raises(self) -> None:
        with pytest.raises(ValueError, match="unknown keyUsage"):
            parse_key_usage("everything")

    def test_extended_key_usage(self) -> None:
        ext, _ = parse_extended_key_usage("serverAuth, clientAuth")
        assert list(ext) == [
            x509.oid.ExtendedKeyUsageOID.SERVER_AUTH,
            x509.oid.ExtendedKeyUsageOID.CLIENT_AUTH,
        ]

    def test_inline_subject_alt_name(self) -> None:
        ext, _ = parse_subject_alt_name("DNS:a.local, IP:::1", lambda section: [])
        assert ext.get_values_for_type(x509.DNSName) == ["a.local"]
        assert ext.get_values_for_type(x509.IPAddress) == [ipaddress.ip_address("::1")]

    def test_bad_ip_in_subject_alt_name_raises(self) -> None:
        with pytest.raises(ValueError, match="bad IP address"):
            parse_subject_alt_name("@names", lambda section: [("IP.1", "node1.2.example")])
