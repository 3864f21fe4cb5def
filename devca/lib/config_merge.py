"""Layered INI configuration documents and the merge layer that materializes them."""

import configparser
import os
import re
import shutil
import tempfile
from collections.abc import Callable, Iterable, Sequence
from enum import Enum
from pathlib import Path

from .errors import ConfigSourceMissingError, MergeUtilityError
from .logging_config import LOGGER


class MergeOutcome(Enum):
    """Whether the merge layer produced a new document or kept the existing one."""

    MERGED = "merged"
    REUSED = "reused"


class ConfigDocument:
    """Ordered sections of key/value pairs in OpenSSL config style.

    Keys keep their case, values are not interpolated, and section headers
    written as ``[ req ]`` resolve to ``req``. Keys above the first header
    (``HOME = .``, ``openssl_conf = ...``) live in :attr:`GLOBAL_SECTION`.
    """

    GLOBAL_SECTION = "__global__"

    # OpenSSL configs commonly pad section names inside the brackets
    SECTION_HEADER = re.compile(r"\[\s*(?P<header>[^]]+?)\s*\]")

    def __init__(self) -> None:
        self._parser = self._new_parser()

    @classmethod
    def _new_parser(cls) -> configparser.ConfigParser:
        parser = configparser.ConfigParser(
            interpolation=None,
            strict=False,
            default_section="__devca_defaults__",
            comment_prefixes=("#", ";"),
            inline_comment_prefixes=("#",),
        )
        parser.optionxform = str  # type: ignore[assignment,method-assign]
        parser.SECTCRE = cls.SECTION_HEADER
        return parser

    @classmethod
    def parse(cls, text: str, source: str = "<string>") -> "ConfigDocument":
        """Parse INI text into a document.

        Raises:
            configparser.Error: If the text is not valid INI
        """
        document = cls()
        # Error line numbers count the synthetic header line
        document._parser.read_string(f"[ {cls.GLOBAL_SECTION} ]\n{text}", source=source)
        return document

    @classmethod
    def load(cls, path: Path) -> "ConfigDocument":
        """Load a document from disk.

        Raises:
            ConfigSourceMissingError: If the file does not exist
            MergeUtilityError: If the file is not valid INI
        """
        if not path.is_file():
            raise ConfigSourceMissingError(path)
        try:
            return cls.parse(path.read_text(), source=str(path))
        except configparser.Error as e:
            raise MergeUtilityError(path, str(e)) from e

    def sections(self) -> list[str]:
        """Return section names in order; the global section only when it has keys."""
        return [
            section
            for section in self._parser.sections()
            if section != self.GLOBAL_SECTION or self._parser.options(section)
        ]

    def has_section(self, section: str) -> bool:
        return self._parser.has_section(section)

    def items(self, section: str) -> list[tuple[str, str]]:
        """Return the key/value pairs of a section, or an empty list if absent."""
        if not self._parser.has_section(section):
            return []
        return [(key, self._parser.get(section, key)) for key in self._parser.options(section)]

    def get(self, section: str, key: str, fallback: str | None = None) -> str | None:
        """Return a value, or ``fallback`` when the section or key is absent."""
        return self._parser.get(section, key, fallback=fallback)

    def set(self, section: str, key: str, value: str) -> None:
        """Set a value, creating the section if needed."""
        if not self._parser.has_section(section):
            self._parser.add_section(section)
        self._parser.set(section, key, value)

    def merge(self, other: "ConfigDocument") -> None:
        """Apply every key of ``other`` on top of this document.

        Sections new to this document are appended in ``other``'s order.
        """
        for section in other.sections():
            for key, value in other.items(section):
                self.set(section, key, value)

    def to_text(self) -> str:
        lines = [f"{key} = {value}" for key, value in self.items(self.GLOBAL_SECTION)]
        for section in self.sections():
            if section == self.GLOBAL_SECTION:
                continue
            if lines:
                lines.append("")
            lines.append(f"[ {section} ]")
            lines.extend(f"{key} = {value}" for key, value in self.items(section))
        return "\n".join(lines) + "\n"

    def write(self, path: Path) -> None:
        """Write the document, replacing ``path`` atomically."""
        _atomic_write_text(path, self.to_text())


def _atomic_write_text(path: Path, text: str) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as handle:
            handle.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def merge_config_sources(
    sources: Sequence[Path],
    output_path: Path,
    default_source: Path,
    derive: Callable[[ConfigDocument], None] | None = None,
) -> MergeOutcome:
    """Materialize the merged configuration for a pipeline run.

    An existing document at ``output_path`` always wins: it is reused as is
    and ``sources`` are ignored. Otherwise the first source is taken verbatim
    and each later source overrides keys of the ones before it. ``derive``
    edits the merged document in memory before the single write, so a failing
    derivation leaves no output behind.

    Args:
        sources: Config files in override order, may be empty
        output_path: Where the merged document lives
        default_source: Used when ``sources`` is empty
        derive: Optional edit applied to a fresh merge before it is written

    Returns:
        MergeOutcome.REUSED or MergeOutcome.MERGED

    Raises:
        ConfigSourceMissingError: If a source file does not exist
        MergeUtilityError: If a source is not valid INI
    """
    if output_path.exists():
        if sources:
            LOGGER.info("Using existing config file '%s', ignoring passed configs", output_path)
        else:
            LOGGER.info("Using existing config file '%s'", output_path)
        return MergeOutcome.REUSED

    sources = list(sources) or [default_source]
    _check_sources_exist(sources)

    LOGGER.info("Copying/merging config file(s) into '%s'", output_path)
    first, rest = sources[0], sources[1:]
    LOGGER.debug("Applying config '%s'", first)
    if not rest and derive is None:
        # Validate syntax before committing the verbatim copy
        ConfigDocument.load(first)
        tmp_path = output_path.with_name(f".{output_path.name}.copy")
        shutil.copyfile(first, tmp_path)
        os.replace(tmp_path, output_path)
        return MergeOutcome.MERGED

    document = ConfigDocument.load(first)
    for source in rest:
        LOGGER.debug("Applying config '%s'", source)
        document.merge(ConfigDocument.load(source))
    if derive is not None:
        derive(document)
    document.write(output_path)
    return MergeOutcome.MERGED


def _check_sources_exist(sources: Iterable[Path]) -> None:
    for source in sources:
        if not source.is_file():
            raise ConfigSourceMissingError(source)
