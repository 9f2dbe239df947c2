"""
Mock backend — in-memory releases for tests.

Releases are registered per project (or tool name when a tool has no
project). Downloads return the registered bytes, and materialization
unpacks them exactly like a forge release would.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path

from dws.adapters.base import (
    FetchedArtifact,
    InstallerBackend,
    Release,
    ReleaseAsset,
    check_cancel,
)
from dws.core.errors import BackendError
from dws.core.models.tool import InstallerKind, ToolDefinition
from dws.core.services import archive, integrity


@dataclass
class _MockProject:
    releases: dict[str, dict[str, bytes]] = field(default_factory=dict)
    latest: str | None = None


class MockBackend(InstallerBackend):
    """Serves every installer kind from memory.

    Configure with ``add_release``; inject failures with ``set_failure``.
    """

    def __init__(self, kinds: frozenset[InstallerKind] | None = None, backend_name: str = "mock"):
        self._name = backend_name
        self._kinds = kinds or frozenset(InstallerKind)
        self._projects: dict[str, _MockProject] = {}
        self._failures: dict[tuple[str, str], str] = {}
        self._calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def kinds(self) -> frozenset[InstallerKind]:
        return self._kinds

    @property
    def selects_assets(self) -> bool:
        return True

    @property
    def call_log(self) -> list[tuple[str, str]]:
        """(operation, tool name) pairs in call order."""
        with self._lock:
            return list(self._calls)

    def calls(self, operation: str) -> list[str]:
        return [tool for op, tool in self.call_log if op == operation]

    def add_release(
        self,
        project: str,
        version: str,
        assets: dict[str, bytes],
        latest: bool = True,
    ) -> None:
        entry = self._projects.setdefault(project, _MockProject())
        entry.releases[version] = dict(assets)
        if latest or entry.latest is None:
            entry.latest = version

    def set_failure(self, operation: str, tool: str, message: str = "Mock failure") -> None:
        """Make ``operation`` (release/fetch/materialize) fail for ``tool``."""
        self._failures[(operation, tool)] = message

    def reset(self) -> None:
        with self._lock:
            self._calls.clear()
        self._failures.clear()

    def _record(self, operation: str, tool: ToolDefinition) -> None:
        with self._lock:
            self._calls.append((operation, tool.name))
        message = self._failures.get((operation, tool.name))
        if message is not None:
            raise BackendError(message)

    def _project(self, tool: ToolDefinition) -> _MockProject:
        key = tool.project or tool.name
        project = self._projects.get(key)
        if project is None:
            raise BackendError(f"No releases registered for {key}")
        return project

    def fetch_release(self, tool: ToolDefinition, cancel: threading.Event | None = None) -> Release:
        check_cancel(cancel)
        self._record("release", tool)
        project = self._project(tool)
        version = tool.version.pinned or project.latest
        if version is None or version not in project.releases:
            raise BackendError(f"Release {tool.version} not found for {tool.project or tool.name}")
        assets = [
            ReleaseAsset(name=name, url=f"mock://{tool.project or tool.name}/{version}/{name}", size=len(data))
            for name, data in sorted(project.releases[version].items())
        ]
        return Release(version=version, assets=assets)

    def fetch(
        self,
        tool: ToolDefinition,
        asset: ReleaseAsset,
        cancel: threading.Event | None = None,
    ) -> FetchedArtifact:
        check_cancel(cancel)
        self._record("fetch", tool)
        project = self._project(tool)
        # mock://<project>/<version>/<name>
        version = asset.url.rsplit("/", 2)[-2] if asset.url.count("/") >= 4 else None
        content = project.releases.get(version or "", {}).get(asset.name)
        if content is None:
            raise BackendError(f"Asset {asset.name} not found")
        return FetchedArtifact(
            filename=asset.name,
            content=content,
            digest=integrity.compute_digest(content),
            locator=asset.url,
        )

    def materialize(
        self,
        tool: ToolDefinition,
        artifact: FetchedArtifact,
        dest: Path,
        cancel: threading.Event | None = None,
    ) -> None:
        check_cancel(cancel)
        self._record("materialize", tool)
        if artifact.path is None:
            raise BackendError(f"Artifact {artifact.filename} was not written to the cache")
        archive.extract(artifact.path, dest)
