"""
Script backend — download an install script and run it.

The script runs under the declared interpreter with ``DWS_INSTALL_DIR``
pointing at the version directory it must install into. Whatever it
leaves there is where the declared binaries are looked up.
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path, PurePosixPath
from urllib.parse import urlparse

from dws.adapters import transport
from dws.adapters.base import (
    FetchedArtifact,
    InstallerBackend,
    Release,
    ReleaseAsset,
    check_cancel,
)
from dws.core.errors import BackendError
from dws.core.models.tool import LATEST, InstallerKind, ToolDefinition

logger = logging.getLogger(__name__)


def url_filename(url: str, default: str) -> str:
    name = PurePosixPath(urlparse(url).path).name
    return name or default


class ScriptBackend(InstallerBackend):
    """``installer: script`` — run ``<shell> <script>``."""

    def __init__(self, timeout: int = 600):
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "script"

    @property
    def kinds(self) -> frozenset[InstallerKind]:
        return frozenset({InstallerKind.SCRIPT})

    def fetch_release(self, tool: ToolDefinition, cancel: threading.Event | None = None) -> Release:
        url = tool.url or ""
        return Release(
            version=tool.version.pinned or LATEST,
            assets=[ReleaseAsset(name=url_filename(url, f"{tool.name}-install.sh"), url=url)],
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
        if artifact.path is None:
            raise BackendError(f"Script for {tool.name} was not written to the cache")
        dest.mkdir(parents=True, exist_ok=True)

        env = dict(os.environ)
        env["DWS_INSTALL_DIR"] = str(dest)
        env["DWS_TOOL_NAME"] = tool.name
        env["DWS_TOOL_VERSION"] = str(tool.version)

        logger.info("Running install script for %s with %s", tool.name, tool.shell)
        transport.run_command(
            [tool.shell or "sh", str(artifact.path)],
            env=env,
            cwd=dest,
            timeout=self._timeout,
        )
