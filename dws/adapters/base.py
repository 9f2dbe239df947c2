"""
Installer backend base — the contract between the reconciler and installers.

The reconciler never talks to a forge, a shell or a package manager
directly. It asks a backend for three things, in order:

    fetch_release  → which version is current and which assets it has
    fetch          → the bytes of one asset plus their digest
    materialize    → turn verified bytes into an installed tree

Selection and checksum verification happen between those calls, in
the engine, so every backend gets them for free.

Backends raise BackendError for transport or execution problems and
check the cancellation event between blocking steps.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

from dws.core.errors import Cancelled
from dws.core.models.tool import InstallerKind, ToolDefinition


@dataclass(frozen=True)
class ReleaseAsset:
    """One downloadable file attached to a release."""

    name: str
    url: str = ""
    size: int = 0


@dataclass
class Release:
    """What a backend says a tool's target version is."""

    version: str
    assets: list[ReleaseAsset] = field(default_factory=list)

    @property
    def asset_names(self) -> list[str]:
        return [a.name for a in self.assets]

    def asset(self, name: str) -> ReleaseAsset | None:
        for asset in self.assets:
            if asset.name == name:
                return asset
        return None


@dataclass
class FetchedArtifact:
    """Downloaded bytes, not yet trusted.

    ``path`` is set by the engine once the verified bytes have been
    written into the cache; ``materialize`` reads from there.
    """

    filename: str
    content: bytes
    digest: str
    locator: str
    path: Path | None = None


def check_cancel(cancel: threading.Event | None) -> None:
    """Raise Cancelled if the pass is being torn down."""
    if cancel is not None and cancel.is_set():
        raise Cancelled("Cancelled by fail-fast")


class InstallerBackend(ABC):
    """Abstract base class for installer backends.

    To add a backend:
        1. Subclass InstallerBackend
        2. Implement name, kinds, fetch_release, fetch, materialize
        3. Register it in the BackendRegistry
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend identifier (e.g. 'github', 'script')."""

    @property
    @abstractmethod
    def kinds(self) -> frozenset[InstallerKind]:
        """Installer kinds this backend handles."""

    def is_available(self) -> bool:
        """Whether the backend's underlying tooling exists. Fast, never raises."""
        return True

    @property
    def selects_assets(self) -> bool:
        """Whether releases carry several assets the engine must choose from."""
        return False

    @abstractmethod
    def fetch_release(self, tool: ToolDefinition, cancel: threading.Event | None = None) -> Release:
        """Resolve the tool's version (pinned or latest) and list its assets.

        Raises:
            BackendError: release cannot be looked up.
        """

    @abstractmethod
    def fetch(
        self,
        tool: ToolDefinition,
        asset: ReleaseAsset,
        cancel: threading.Event | None = None,
    ) -> FetchedArtifact:
        """Download one asset.

        Raises:
            BackendError: transport failure.
            Cancelled: cancellation observed while streaming.
        """

    @abstractmethod
    def materialize(
        self,
        tool: ToolDefinition,
        artifact: FetchedArtifact,
        dest: Path,
        cancel: threading.Event | None = None,
    ) -> None:
        """Install verified content into ``dest`` (an empty directory).

        Raises:
            BackendError / FilesystemError: installation failed.
        """

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
