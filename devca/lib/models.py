"""Result models for devca pipelines."""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class RootCAState(Enum):
    """Stages of the Root CA pipeline, in execution order."""

    INIT = "init"
    CONFIG_READY = "config_ready"
    BOOKKEEPING_READY = "bookkeeping_ready"
    KEY_READY = "key_ready"
    CERT_READY = "cert_ready"
    DONE = "done"


class HostState(Enum):
    """Stages of the host certificate pipeline, in execution order."""

    INIT = "init"
    CONFIG_READY = "config_ready"
    KEY_READY = "key_ready"
    REQUEST_READY = "request_ready"
    SIGNING_PENDING = "signing_pending"
    DONE = "done"


@dataclass
class RootCAResult:
    """Result from a Root CA pipeline run.

    ``generated`` lists the artifacts created on this run; an empty list means
    everything was reused.
    """

    config_path: Path
    key_path: Path
    cert_path: Path
    serial_path: Path
    index_path: Path
    generated: list[Path]
    summary: str


@dataclass
class HostCertResult:
    """Result from a host certificate pipeline run."""

    config_path: Path
    key_path: Path
    csr_path: Path
    cert_path: Path
    generated: list[Path]
    summary: str
    serial_number: str | None = None
