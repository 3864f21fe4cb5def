"""Reuse-or-regenerate decisions for the artifacts of a certificate chain."""

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .errors import GenerationError, ToolkitError
from .logging_config import LOGGER


class ArtifactKind(Enum):
    MERGED_CONFIG = "config"
    PRIVATE_KEY = "key"
    SIGNING_REQUEST = "request"
    CERTIFICATE = "certificate"


class Resolution(Enum):
    REUSE = "reuse"
    GENERATE = "generate"


@dataclass(frozen=True)
class CertificateArtifact:
    """A file in the chain config -> key -> request -> certificate."""

    kind: ArtifactKind
    path: Path
    force_regenerate: bool = False

    @property
    def exists(self) -> bool:
        return self.path.is_file()


class StageResolver:
    """Applies the presence-only reuse policy to every artifact of a pipeline.

    An artifact that exists is reused without looking at its contents;
    otherwise its generation action runs. Force mode deletes the artifacts
    up front so that every later resolution regenerates.
    """

    def __init__(self) -> None:
        self.generated: list[Path] = []

    def purge(self, artifacts: Iterable[CertificateArtifact]) -> None:
        """Delete forced artifacts; missing files are skipped."""
        for artifact in artifacts:
            if artifact.force_regenerate and artifact.path.is_file():
                LOGGER.debug("Removing existing file '%s'", artifact.path)
                artifact.path.unlink()

    def resolve(
        self,
        artifact: CertificateArtifact,
        generate: Callable[[Path], None],
    ) -> Resolution:
        """Reuse ``artifact`` if present, else run ``generate`` for its path.

        Raises:
            GenerationError: If the generation action fails
        """
        label = artifact.kind.value
        if artifact.exists:
            LOGGER.info("Using existing %s '%s'", label, artifact.path)
            return Resolution.REUSE

        LOGGER.info("Generating %s", label)
        try:
            generate(artifact.path)
        except ToolkitError as e:
            raise GenerationError(label, artifact.path, str(e)) from e
        self.generated.append(artifact.path)
        return Resolution.GENERATE
