"""
Pytest configuration and shared fixtures for crosskit tests.
"""

import pytest
from pathlib import Path

from crosskit.config.parser import PipelineConfig
from crosskit.env import Artifact, host_artifact
from crosskit.matrix.targets import matrix_entries
from crosskit.recipes.options import BuildOptions
from crosskit.sources.zig import prepare_zig_scripts
from crosskit.verify.samples import write_samples
from tests.mocks import FakeBackend


# ============================================================================
# Shared Test Fixtures
# ============================================================================


@pytest.fixture
def fake_backend() -> FakeBackend:
    """In-memory execution backend."""
    return FakeBackend()


@pytest.fixture
def sdk_archive(tmp_path: Path) -> Artifact:
    """Fake MacOSX15.0.sdk.tar.xz as a host artifact."""
    archive = tmp_path / "sdks" / "MacOSX15.0.sdk.tar.xz"
    archive.parent.mkdir(parents=True)
    archive.write_bytes(b"not really an sdk")
    return host_artifact("sdk-archive", archive)


@pytest.fixture
def zig_scripts(tmp_path: Path) -> Artifact:
    """zig-cc wrapper scripts for both architectures."""
    entries = matrix_entries(["aarch64", "x86_64"], "24", "11.0.0")
    return prepare_zig_scripts(entries, tmp_path / "zig-scripts")


@pytest.fixture
def build_options(sdk_archive: Artifact, zig_scripts: Artifact) -> BuildOptions:
    """Build options with every external artifact supplied."""
    return BuildOptions(sdk_archive=sdk_archive, zig_scripts=zig_scripts)


@pytest.fixture
def samples(tmp_path: Path) -> Artifact:
    """Built-in verification samples."""
    return host_artifact("samples", write_samples(tmp_path / "samples"))


@pytest.fixture
def pipeline_config(tmp_path: Path) -> PipelineConfig:
    """Configuration that keeps all state under tmp_path."""
    return PipelineConfig(
        parallelism=4,
        download_sdk=False,
        sdk_dir=tmp_path / "sdks",
        export_dir=tmp_path / "out",
        cache_dir=tmp_path / "cache",
    )


@pytest.fixture
def source_tree(tmp_path: Path) -> Path:
    """Project tree with a local SDK archive and no samples/ or zig/."""
    tree = tmp_path / "project"
    (tree / "sdks").mkdir(parents=True)
    (tree / "sdks" / "MacOSX15.0.sdk.tar.xz").write_bytes(b"sdk")
    return tree
