"""
Action models — the contract between planning and execution.

A PlannedAction is what the reconciler intends to do to one entry.
An ActionResult is what actually happened. Workers never raise: every
failure is captured in the result and folded into the Report.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field

from dws.core.models.lockfile import ConfigSymlinkEntry, Receipt, ReceiptStatus
from dws.core.models.tool import ConfigSymlinkSpec, ToolDefinition

if TYPE_CHECKING:
    from dws.adapters.base import InstallerBackend, Release
    from dws.core.errors import DwsError


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class EntryKind(StrEnum):
    TOOL = "tool"
    DOTFILE = "dotfile"


class ActionKind(StrEnum):
    # tools
    INSTALL = "install"
    VERIFY = "verify"
    REINSTALL = "reinstall"
    REMOVE = "remove"
    # dotfiles
    LINK = "link"
    RELINK = "relink"
    DRIFTED = "drifted"
    UNLINK = "unlink"
    # both
    NOOP = "noop"


# Kinds that never touch the filesystem.
PASSIVE_KINDS = frozenset({ActionKind.NOOP, ActionKind.DRIFTED})


class Stage(StrEnum):
    """Pipeline step an action failed in."""

    PLAN = "plan"
    RELEASE = "release"
    SELECT = "select"
    FETCH = "fetch"
    VERIFY = "verify"
    MATERIALIZE = "materialize"
    LINK = "link"


@dataclass
class PlannedAction:
    """One intended change to one tool or dotfile entry."""

    kind: EntryKind
    action: ActionKind
    name: str
    reason: str = ""

    # tool actions
    tool: ToolDefinition | None = None
    receipt: Receipt | None = None
    backend: InstallerBackend | None = None
    release: Release | None = None
    asset: str | None = None

    # dotfile actions
    spec: ConfigSymlinkSpec | None = None
    entry: ConfigSymlinkEntry | None = None

    # pre-failed during planning
    error: DwsError | None = None
    stage: Stage | None = None

    @property
    def prefailed(self) -> bool:
        return self.error is not None

    @property
    def actionable(self) -> bool:
        """Whether execute() has work to do for this action."""
        return not self.prefailed and self.action not in PASSIVE_KINDS

    @property
    def target_version(self) -> str | None:
        if self.release is not None:
            return self.release.version
        if self.tool is not None and self.tool.version.is_pinned:
            return self.tool.version.pinned
        return None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "kind": self.kind.value,
            "action": self.action.value,
            "name": self.name,
            "reason": self.reason,
        }
        if self.target_version:
            data["version"] = self.target_version
        if self.asset:
            data["asset"] = self.asset
        if self.error is not None:
            data["error"] = str(self.error)
            data["error_type"] = type(self.error).__name__
            data["stage"] = self.stage.value if self.stage else None
        return data


ResultStatus = Literal["ok", "skipped", "failed", "cancelled"]


class ActionResult(BaseModel):
    """Outcome of one executed action.

    Carries the updated lockfile entry (if any) back to the
    coordinating loop, which is the only place the Lockfile mutates.
    """

    kind: EntryKind
    action: ActionKind
    name: str
    status: ResultStatus = "ok"

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    detail: str = ""
    stage: Stage | None = None
    error: str | None = None
    error_type: str | None = None

    receipt: Receipt | None = None
    observed_status: ReceiptStatus | None = None
    dotfile: ConfigSymlinkEntry | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @classmethod
    def success(cls, planned: PlannedAction, detail: str = "", **kwargs: Any) -> ActionResult:
        return cls(
            kind=planned.kind,
            action=planned.action,
            name=planned.name,
            status="ok",
            detail=detail,
            **kwargs,
        )

    @classmethod
    def failure(
        cls,
        planned: PlannedAction,
        error: Exception,
        stage: Stage | None = None,
        **kwargs: Any,
    ) -> ActionResult:
        return cls(
            kind=planned.kind,
            action=planned.action,
            name=planned.name,
            status="failed",
            stage=stage,
            error=str(error),
            error_type=type(error).__name__,
            **kwargs,
        )

    @classmethod
    def skip(cls, planned: PlannedAction, reason: str = "") -> ActionResult:
        return cls(
            kind=planned.kind,
            action=planned.action,
            name=planned.name,
            status="skipped",
            detail=reason or planned.reason,
        )

    @classmethod
    def cancelled(cls, planned: PlannedAction) -> ActionResult:
        return cls(
            kind=planned.kind,
            action=planned.action,
            name=planned.name,
            status="cancelled",
            detail="cancelled before start",
        )

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(
            mode="json",
            include={
                "kind", "action", "name", "status", "detail",
                "stage", "error", "error_type", "duration_ms",
            },
        )


class EntryState(StrEnum):
    """Live health of one lockfile or manifest entry."""

    OK = "ok"
    DRIFTED = "drifted"
    MISSING = "missing"
    MISSING_SOURCE = "missing_source"
    CHECKSUM_MISMATCH = "checksum_mismatch"
    NOT_INSTALLED = "not_installed"
    OUTDATED = "outdated"
    ORPHANED = "orphaned"


@dataclass
class EntryStatus:
    """Read-only drift report line for one entry."""

    kind: EntryKind
    name: str
    state: EntryState
    detail: str = ""
    version: str | None = None
    problems: list[str] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return self.state == EntryState.OK

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "name": self.name,
            "state": self.state.value,
            "detail": self.detail,
            "version": self.version,
            "problems": list(self.problems),
        }
