"""Pipeline options, artifact layouts and distinguished-name dataclasses."""

from dataclasses import dataclass, field
from pathlib import Path

from cryptography import x509
from cryptography.x509 import oid

CONFIGS_DIR = Path(__file__).resolve().parent.parent / "configs"
DEFAULT_CA_CONFIG = CONFIGS_DIR / "ca.ini"
DEFAULT_HOST_CONFIG = CONFIGS_DIR / "server.ini"

DEFAULT_CA_DIRNAME = "rootCA"
DEFAULT_KEY_SIZE = 2048
INITIAL_SERIAL = "01"
SIGNING_POLICY = "signing_policy"
SIGNING_EXTENSIONS = "signing_req"


@dataclass
class PipelineOptions:
    """Options shared by the Root CA and host pipelines."""

    output_dir: Path
    config_sources: list[Path] = field(default_factory=list)
    force: bool = False


@dataclass
class HostPipelineOptions(PipelineOptions):
    """Host pipeline options: the host list and the signing CA location."""

    hosts: list[str] = field(default_factory=list)
    ca_dir: Path = Path(DEFAULT_CA_DIRNAME)


@dataclass(frozen=True)
class CAPaths:
    """Artifact layout of a certificate authority directory."""

    root: Path

    @property
    def config(self) -> Path:
        return self.root / "config.ini"

    @property
    def key(self) -> Path:
        return self.root / "rootCA.key"

    @property
    def certificate(self) -> Path:
        return self.root / "rootCA.pem"

    @property
    def index(self) -> Path:
        return self.root / "index.txt"

    @property
    def index_attr(self) -> Path:
        return self.root / "index.txt.attr"

    @property
    def serial(self) -> Path:
        return self.root / "serial.txt"


@dataclass(frozen=True)
class HostPaths:
    """Artifact layout of a host certificate directory."""

    root: Path

    @property
    def config(self) -> Path:
        return self.root / "config.ini"

    @property
    def key(self) -> Path:
        return self.root / "ssl.key"

    @property
    def request(self) -> Path:
        return self.root / "request.csr"

    @property
    def certificate(self) -> Path:
        return self.root / "ssl.pem"


# Config key suffix -> subject attribute, in the order subjects are built
DN_FIELDS: list[tuple[str, x509.ObjectIdentifier]] = [
    ("countryName", oid.NameOID.COUNTRY_NAME),
    ("stateOrProvinceName", oid.NameOID.STATE_OR_PROVINCE_NAME),
    ("localityName", oid.NameOID.LOCALITY_NAME),
    ("organizationName", oid.NameOID.ORGANIZATION_NAME),
    ("organizationalUnitName", oid.NameOID.ORGANIZATIONAL_UNIT_NAME),
    ("commonName", oid.NameOID.COMMON_NAME),
    ("emailAddress", oid.NameOID.EMAIL_ADDRESS),
]


@dataclass
class DistinguishedName:
    """X.509 Subject Distinguished Name.

    Only the attributes that are set end up in the subject, in DN_FIELDS order.
    """

    country: str | None = None
    state: str | None = None
    locality: str | None = None
    organization: str | None = None
    organizational_unit: str | None = None
    common_name: str | None = None
    email: str | None = None

    @classmethod
    def from_defaults(cls, values: dict[str, str]) -> "DistinguishedName":
        """Build from the ``<field>_default`` keys of an OpenSSL DN section."""

        def pick(name: str) -> str | None:
            return values.get(f"{name}_default") or None

        return cls(
            country=pick("countryName"),
            state=pick("stateOrProvinceName"),
            locality=pick("localityName"),
            organization=pick("organizationName"),
            organizational_unit=pick("organizationalUnitName"),
            common_name=pick("commonName"),
            email=pick("emailAddress"),
        )

    def to_x509_name(self) -> x509.Name:
        """Convert to cryptography x509.Name for certificate generation."""
        values = [
            self.country,
            self.state,
            self.locality,
            self.organization,
            self.organizational_unit,
            self.common_name,
            self.email,
        ]
        return x509.Name(
            [
                x509.NameAttribute(attr_oid, value)
                for (_, attr_oid), value in zip(DN_FIELDS, values, strict=True)
                if value
            ]
        )
