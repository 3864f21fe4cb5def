"""Test fixtures for devca tests."""

from collections.abc import Callable
from pathlib import Path

import pytest

from devca.lib.config import CAPaths, HostPipelineOptions, PipelineOptions
from devca.lib.pipelines import RootCAPipeline


@pytest.fixture
def temp_output_dir(tmp_path: Path) -> Path:
    """Return temporary directory for test output artifacts."""
    return tmp_path


@pytest.fixture
def write_ini(tmp_path: Path) -> Callable[[str, str], Path]:
    """Return a helper writing INI text to a named file under tmp_path."""

    def _write(name: str, text: str) -> Path:
        path = tmp_path / "sources" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)
        return path

    return _write


@pytest.fixture
def ca_dir(temp_output_dir: Path) -> Path:
    """Generate a root CA with the bundled config and return its directory."""
    output_dir = temp_output_dir / "rootCA"
    RootCAPipeline(PipelineOptions(output_dir=output_dir)).run()
    return output_dir


@pytest.fixture
def ca_paths(ca_dir: Path) -> CAPaths:
    return CAPaths(ca_dir)


@pytest.fixture
def host_options(temp_output_dir: Path, ca_dir: Path) -> HostPipelineOptions:
    """Options for app.local plus a loopback IP SAN against the fixture CA."""
    return HostPipelineOptions(
        output_dir=temp_output_dir / "app.local",
        hosts=["app.local", "127.0.0.1"],
        ca_dir=ca_dir,
    )
