"""Exception hierarchy for certificate lifecycle operations."""

from pathlib import Path


class PKIError(Exception):
    """Base class for every error raised by devca."""


class UsageError(PKIError):
    """Invalid input supplied to a pipeline."""


class ConfigSourceMissingError(PKIError, FileNotFoundError):
    """A configuration source listed for merging does not exist."""

    def __init__(self, source: Path) -> None:
        super().__init__(f"config source not found: {source}")
        self.source = source


class MergeUtilityError(PKIError):
    """A configuration source could not be parsed or merged."""

    def __init__(self, source: Path, detail: str) -> None:
        super().__init__(f"failed to merge config '{source}': {detail}")
        self.source = source
        self.detail = detail


class SectionResolutionError(PKIError):
    """A section-name lookup resolved to an empty value."""

    def __init__(self, section: str, key: str) -> None:
        super().__init__(f"config key [{section}] {key} is set but empty")
        self.section = section
        self.key = key


class ToolkitError(PKIError):
    """A PKI toolkit operation failed.

    The message carries the diagnostic text an operator needs to fix the
    underlying problem (bad config value, unreadable key, policy mismatch).
    """


class GenerationError(PKIError):
    """Generating an artifact failed; the pipeline halts at that stage."""

    def __init__(self, kind: str, path: Path, diagnostics: str) -> None:
        super().__init__(f"failed to generate {kind} '{path}': {diagnostics}")
        self.kind = kind
        self.path = path
        self.diagnostics = diagnostics


class CAPreconditionError(PKIError):
    """The certificate authority directory is not ready for signing."""

    def __init__(self, ca_dir: Path, missing: list[Path]) -> None:
        names = ", ".join(p.name for p in missing)
        super().__init__(
            f"certificate authority in '{ca_dir}' is not ready (missing: {names}); "
            "run devca-root first"
        )
        self.ca_dir = ca_dir
        self.missing = missing
