"""
System backends — disk images (macOS) and Flatpak applications.

These delegate the actual install to the host's own tooling
(``hdiutil``, ``flatpak``) and leave a tree in the version directory
the engine can link binaries from.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import threading
from pathlib import Path

from dws.adapters import transport
from dws.adapters.base import (
    FetchedArtifact,
    InstallerBackend,
    Release,
    ReleaseAsset,
    check_cancel,
)
from dws.adapters.script import url_filename
from dws.core.errors import BackendError
from dws.core.models.tool import LATEST, InstallerKind, ToolDefinition

logger = logging.getLogger(__name__)


class DiskImageBackend(InstallerBackend):
    """``installer: dmg`` — mount, copy the ``.app`` bundle out, unmount."""

    @property
    def name(self) -> str:
        return "dmg"

    @property
    def kinds(self) -> frozenset[InstallerKind]:
        return frozenset({InstallerKind.DMG})

    def is_available(self) -> bool:
        return shutil.which("hdiutil") is not None

    def fetch_release(self, tool: ToolDefinition, cancel: threading.Event | None = None) -> Release:
        url = tool.url or ""
        return Release(
            version=tool.version.pinned or LATEST,
            assets=[ReleaseAsset(name=url_filename(url, f"{tool.name}.dmg"), url=url)],
        )

    def fetch(
        self,
        tool: ToolDefinition,
        asset: ReleaseAsset,
        cancel: threading.Event | None = None,
    ) -> FetchedArtifact:
        content, digest = transport.download(asset.url, cancel=cancel)
        return FetchedArtifact(filename=asset.name, content=content, digest=digest, locator=asset.url)

    def materialize(
        self,
        tool: ToolDefinition,
        artifact: FetchedArtifact,
        dest: Path,
        cancel: threading.Event | None = None,
    ) -> None:
        check_cancel(cancel)
        if not self.is_available():
            raise BackendError("hdiutil is not available; disk images install on macOS only")
        if artifact.path is None:
            raise BackendError(f"Disk image for {tool.name} was not written to the cache")

        mountpoint = Path(tempfile.mkdtemp(prefix="dws-dmg-"))
        transport.run_command([
            "hdiutil", "attach", "-nobrowse", "-readonly",
            "-mountpoint", str(mountpoint), str(artifact.path),
        ])
        try:
            bundles = [mountpoint / tool.app] if tool.app else sorted(mountpoint.glob("*.app"))
            if not bundles or not all(b.exists() for b in bundles):
                raise BackendError(f"No application bundle found in {artifact.filename}")
            dest.mkdir(parents=True, exist_ok=True)
            for bundle in bundles:
                shutil.copytree(bundle, dest / bundle.name, symlinks=True)
                logger.info("Copied %s from %s", bundle.name, artifact.filename)
        finally:
            try:
                transport.run_command(["hdiutil", "detach", str(mountpoint)])
            except BackendError as e:
                logger.warning("Could not detach %s: %s", mountpoint, e)
            shutil.rmtree(mountpoint, ignore_errors=True)


_WRAPPER = """#!/bin/sh
exec flatpak run --user {app_id} "$@"
"""


class FlatpakBackend(InstallerBackend):
    """``installer: flatpak`` — ``flatpak install --user <project>``.

    Declared binaries become small launcher scripts that run the app.
    """

    def __init__(self, remote: str = "flathub"):
        self._remote = remote

    @property
    def name(self) -> str:
        return "flatpak"

    @property
    def kinds(self) -> frozenset[InstallerKind]:
        return frozenset({InstallerKind.FLATPAK})

    def is_available(self) -> bool:
        return shutil.which("flatpak") is not None

    def fetch_release(self, tool: ToolDefinition, cancel: threading.Event | None = None) -> Release:
        return Release(version=tool.version.pinned or LATEST, assets=[])

    def fetch(
        self,
        tool: ToolDefinition,
        asset: ReleaseAsset,
        cancel: threading.Event | None = None,
    ) -> FetchedArtifact:
        # Flatpak downloads and verifies its own content.
        return FetchedArtifact(
            filename=asset.name,
            content=b"",
            digest="",
            locator=f"flatpak:{self._remote}/{tool.project}",
        )

    def materialize(
        self,
        tool: ToolDefinition,
        artifact: FetchedArtifact,
        dest: Path,
        cancel: threading.Event | None = None,
    ) -> None:
        check_cancel(cancel)
        if not self.is_available():
            raise BackendError("flatpak is not installed")
        ref = tool.project or ""
        if tool.version.is_pinned:
            ref = f"{ref}//{tool.version.pinned}"
        transport.run_command([
            "flatpak", "install", "--user", "--noninteractive", "-y", self._remote, ref,
        ])

        dest.mkdir(parents=True, exist_ok=True)
        for binary in tool.bin:
            launcher = dest / binary.source
            launcher.parent.mkdir(parents=True, exist_ok=True)
            launcher.write_text(_WRAPPER.format(app_id=tool.project), encoding="utf-8")
            launcher.chmod(0o755)
