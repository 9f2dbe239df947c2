"""
Status use case — read-only drift report.

Never takes the workspace lease and never writes the lockfile.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from dws.adapters.registry import BackendRegistry
from dws.core.context import WorkspaceContext
from dws.core.engine.reconciler import Reconciler
from dws.core.errors import DwsError, ManifestError
from dws.core.models.action import EntryKind, EntryStatus
from dws.core.use_cases.workspace import resolve_workspace

logger = logging.getLogger(__name__)


@dataclass
class StatusResult:
    """Workspace status for display or JSON output."""

    profile: str | None = None
    machine: dict = field(default_factory=dict)
    entries: list[EntryStatus] = field(default_factory=list)
    last_sync: str | None = None
    manifest_error: str | None = None
    error: str | None = None

    @property
    def tools(self) -> list[EntryStatus]:
        return [e for e in self.entries if e.kind == EntryKind.TOOL]

    @property
    def dotfiles(self) -> list[EntryStatus]:
        return [e for e in self.entries if e.kind == EntryKind.DOTFILE]

    @property
    def healthy(self) -> bool:
        return self.error is None and all(e.healthy for e in self.entries)

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        return {
            "profile": self.profile,
            "machine": self.machine,
            "last_sync": self.last_sync,
            "manifest_error": self.manifest_error,
            "healthy": self.healthy,
            "tools": [e.to_dict() for e in self.tools],
            "dotfiles": [e.to_dict() for e in self.dotfiles],
        }


def get_status(ctx: WorkspaceContext) -> StatusResult:
    """Compare the lockfile (and, when readable, the manifests) with the disk.

    An invalid manifest does not hide the lockfile: the receipts are
    still checked, and the manifest problem is reported alongside.
    """
    result = StatusResult(
        profile=ctx.active_profile,
        machine=ctx.machine.model_dump(),
    )

    resolved = None
    try:
        resolved = resolve_workspace(ctx)
    except ManifestError as e:
        result.manifest_error = str(e)
        logger.warning("Manifest problem, showing lockfile only: %s", e)
    except DwsError as e:
        result.error = str(e)
        return result

    reconciler = Reconciler(ctx, BackendRegistry())
    try:
        lockfile = reconciler.store.load()
    except DwsError as e:
        result.error = str(e)
        return result

    result.last_sync = lockfile.metadata.generated_at if ctx.paths.lockfile.exists() else None
    result.entries = reconciler.status(lockfile, resolved)
    return result
