"""
Forge release backends — GitHub and GitLab release assets.

Both expose a JSON API listing a release's assets. The engine picks
one asset with the asset selector; these backends only look releases
up, download bytes and unpack the verified archive.
"""

from __future__ import annotations

import logging
import os
import threading
import urllib.parse
from pathlib import Path

from dws.adapters import transport
from dws.adapters.base import (
    FetchedArtifact,
    InstallerBackend,
    Release,
    ReleaseAsset,
    check_cancel,
)
from dws.core.errors import BackendError
from dws.core.models.tool import InstallerKind, ToolDefinition
from dws.core.services import archive

logger = logging.getLogger(__name__)


def _env_token(*names: str) -> str | None:
    for name in names:
        value = os.environ.get(name, "").strip()
        if value:
            return value
    return None


class ForgeReleaseBackend(InstallerBackend):
    """Shared download/unpack behavior for forge release backends."""

    def __init__(self, token: str | None = None, timeout: int = transport.DEFAULT_TIMEOUT):
        self._token = token
        self._timeout = timeout

    @property
    def selects_assets(self) -> bool:
        return True

    def _headers(self) -> dict[str, str]:
        return {}

    def fetch(
        self,
        tool: ToolDefinition,
        asset: ReleaseAsset,
        cancel: threading.Event | None = None,
    ) -> FetchedArtifact:
        if not asset.url:
            raise BackendError(f"Asset {asset.name} has no download URL")
        content, digest = transport.download(
            asset.url, headers=self._headers(), cancel=cancel, timeout=self._timeout,
        )
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
            raise BackendError(f"Artifact {artifact.filename} was not written to the cache")
        archive.extract(artifact.path, dest)


class GithubReleaseBackend(ForgeReleaseBackend):
    """Releases from github.com (or a GitHub Enterprise API base)."""

    def __init__(
        self,
        token: str | None = None,
        api_base: str = "https://api.github.com",
        timeout: int = transport.DEFAULT_TIMEOUT,
    ):
        super().__init__(token or _env_token("DWS_GITHUB_TOKEN", "GITHUB_TOKEN"), timeout)
        self._api_base = api_base.rstrip("/")

    @property
    def name(self) -> str:
        return "github"

    @property
    def kinds(self) -> frozenset[InstallerKind]:
        return frozenset({InstallerKind.GITHUB})

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/vnd.github+json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def release_endpoint(self, project: str, tag: str | None) -> str:
        if tag is None:
            return f"{self._api_base}/repos/{project}/releases/latest"
        return f"{self._api_base}/repos/{project}/releases/tags/{urllib.parse.quote(tag, safe='')}"

    def fetch_release(self, tool: ToolDefinition, cancel: threading.Event | None = None) -> Release:
        check_cancel(cancel)
        url = self.release_endpoint(tool.project or "", tool.version.pinned)
        data = transport.get_json(url, headers=self._headers(), timeout=self._timeout)
        return parse_github_release(data, tool.project or "")


def parse_github_release(data: dict, project: str = "") -> Release:
    tag = data.get("tag_name") if isinstance(data, dict) else None
    if not tag:
        raise BackendError(f"Release payload for {project} has no tag_name")
    assets = [
        ReleaseAsset(
            name=a.get("name", ""),
            url=a.get("browser_download_url", ""),
            size=int(a.get("size") or 0),
        )
        for a in data.get("assets") or []
        if a.get("name")
    ]
    return Release(version=tag, assets=assets)


class GitlabReleaseBackend(ForgeReleaseBackend):
    """Releases from gitlab.com (or a self-hosted instance)."""

    def __init__(
        self,
        token: str | None = None,
        api_base: str = "https://gitlab.com/api/v4",
        timeout: int = transport.DEFAULT_TIMEOUT,
    ):
        super().__init__(token or _env_token("DWS_GITLAB_TOKEN", "GITLAB_TOKEN"), timeout)
        self._api_base = api_base.rstrip("/")

    @property
    def name(self) -> str:
        return "gitlab"

    @property
    def kinds(self) -> frozenset[InstallerKind]:
        return frozenset({InstallerKind.GITLAB})

    def _headers(self) -> dict[str, str]:
        return {"PRIVATE-TOKEN": self._token} if self._token else {}

    def release_endpoint(self, project: str, tag: str | None) -> str:
        encoded = urllib.parse.quote(project, safe="")
        if tag is None:
            return f"{self._api_base}/projects/{encoded}/releases/permalink/latest"
        return f"{self._api_base}/projects/{encoded}/releases/{urllib.parse.quote(tag, safe='')}"

    def fetch_release(self, tool: ToolDefinition, cancel: threading.Event | None = None) -> Release:
        check_cancel(cancel)
        url = self.release_endpoint(tool.project or "", tool.version.pinned)
        data = transport.get_json(url, headers=self._headers(), timeout=self._timeout)
        return parse_gitlab_release(data, tool.project or "")


def parse_gitlab_release(data: dict, project: str = "") -> Release:
    tag = data.get("tag_name") if isinstance(data, dict) else None
    if not tag:
        raise BackendError(f"Release payload for {project} has no tag_name")
    links = (data.get("assets") or {}).get("links") or []
    assets = [
        ReleaseAsset(name=link.get("name", ""), url=link.get("direct_asset_url") or link.get("url", ""))
        for link in links
        if link.get("name")
    ]
    return Release(version=tag, assets=assets)
