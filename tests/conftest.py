"""
Shared test fixtures and configuration.
"""

import io
import tarfile
import zipfile
from pathlib import Path

import pytest
import yaml

from dws.adapters.mock import MockBackend
from dws.adapters.registry import BackendRegistry
from dws.core.context import WorkspaceContext, WorkspacePaths
from dws.core.models.machine import MachineDescriptor

FIXED_NOW = "2026-01-01T00:00:00+00:00"


@pytest.fixture
def paths(tmp_path: Path) -> WorkspacePaths:
    """Isolated XDG roots for one workspace."""
    return WorkspacePaths.under(tmp_path / "ws")


@pytest.fixture
def machine() -> MachineDescriptor:
    return MachineDescriptor(os="linux", arch="x86_64", distro=("ubuntu", "debian"), hostname="devbox")


@pytest.fixture
def workspace(paths: WorkspacePaths, machine: MachineDescriptor, tmp_path: Path) -> WorkspaceContext:
    """A workspace on the 'default' profile with a fixed clock."""
    return WorkspaceContext(
        paths=paths,
        machine=machine,
        active_profile="default",
        jobs=2,
        lease_timeout=0.3,
        dotfiles_target=tmp_path / "home" / ".config",
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def mock_backend() -> MockBackend:
    return MockBackend()


@pytest.fixture
def registry(mock_backend: MockBackend) -> BackendRegistry:
    registry = BackendRegistry()
    registry.register(mock_backend)
    return registry


@pytest.fixture
def tarball():
    """Build an in-memory .tar.gz from {path: bytes}; every file is executable."""

    def _build(files: dict[str, bytes]) -> bytes:
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w:gz") as tar:
            for name, data in sorted(files.items()):
                info = tarfile.TarInfo(name)
                info.size = len(data)
                info.mode = 0o755
                info.mtime = 0
                tar.addfile(info, io.BytesIO(data))
        return buf.getvalue()

    return _build


@pytest.fixture
def zipball():
    """Build an in-memory .zip from {path: bytes}."""

    def _build(files: dict[str, bytes]) -> bytes:
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w") as zf:
            for name, data in sorted(files.items()):
                info = zipfile.ZipInfo(name)
                info.external_attr = 0o755 << 16
                zf.writestr(info, data)
        return buf.getvalue()

    return _build


@pytest.fixture
def write_manifest(paths: WorkspacePaths):
    """Write ``tools:`` for a profile (or the workspace file with profile=None)."""

    def _write(tools, profile: str | None = "default", **extra) -> Path:
        if profile is None:
            path = paths.config_file
        else:
            path = paths.profile_manifest(profile)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = {**extra, "tools": tools}
        path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def write_dotfile(paths: WorkspacePaths):
    """Create a file under a profile's config/ tree."""

    def _write(relative: str, content: str = "", profile: str = "default") -> Path:
        path = paths.profile_dotfiles(profile) / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    return _write
