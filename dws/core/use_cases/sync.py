"""
Sync use case — one full reconciliation pass.

This is the top-level orchestrator: resolve manifests, take the
workspace lease, load the lockfile, plan, execute, save, record the
pass in history. ``update`` and ``cleanup`` are the same pass with
different options.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from dws.adapters.registry import BackendRegistry
from dws.core.context import WorkspaceContext
from dws.core.engine.reconciler import Plan, PlanOptions, Reconciler, Report
from dws.core.errors import DwsError
from dws.core.persistence.history import HistoryEntry, HistoryWriter
from dws.core.persistence.lease import WorkspaceLease
from dws.core.persistence.state_file import StateStore
from dws.core.use_cases.workspace import resolve_workspace

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Result of one pass (or of planning one, for dry runs)."""

    operation: str = "sync"
    plan: Plan | None = None
    report: Report | None = None
    pruned: list[Path] = field(default_factory=list)
    error: str | None = None
    error_type: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and (self.report is None or self.report.all_ok)

    def to_dict(self) -> dict:
        result: dict = {"operation": self.operation}
        if self.error:
            result["error"] = self.error
            result["error_type"] = self.error_type
            return result
        if self.plan is not None:
            result["plan"] = self.plan.to_dict()
        if self.report is not None:
            result["report"] = self.report.to_dict()
        if self.pruned:
            result["pruned"] = [str(p) for p in self.pruned]
        return result


def _fail(result: SyncResult, error: DwsError) -> SyncResult:
    result.error = str(error)
    result.error_type = type(error).__name__
    logger.error("%s failed: %s", result.operation, error)
    return result


def plan_pass(
    ctx: WorkspaceContext,
    options: PlanOptions | None = None,
    registry: BackendRegistry | None = None,
) -> SyncResult:
    """Compute (but do not run) a pass. Read-only; takes no lease."""
    result = SyncResult(operation="plan")
    try:
        resolved = resolve_workspace(ctx)
        reconciler = Reconciler(ctx, registry or BackendRegistry.default())
        lockfile = reconciler.store.load()
        result.plan = reconciler.plan(resolved, lockfile, options)
    except DwsError as e:
        return _fail(result, e)
    return result


def run_sync(
    ctx: WorkspaceContext,
    options: PlanOptions | None = None,
    registry: BackendRegistry | None = None,
    operation: str = "sync",
) -> SyncResult:
    """Resolve, plan and execute one reconciliation pass.

    Args:
        ctx: Workspace to operate on.
        options: Pass options (update/repair/cleanup/tools/dry_run/fail_fast).
        registry: Backend registry (default: every real backend).
        operation: Label recorded in history.

    Returns:
        SyncResult. Batch errors (manifest, lease, lockfile) are
        returned in ``error``; per-action failures live in the report.
    """
    options = options or PlanOptions()
    result = SyncResult(operation=operation)
    registry = registry or BackendRegistry.default()

    try:
        resolved = resolve_workspace(ctx)
    except DwsError as e:
        return _fail(result, e)

    lease = WorkspaceLease(ctx.paths.lease_file, timeout=ctx.lease_timeout)
    store = StateStore(ctx.paths.lockfile)
    reconciler = Reconciler(ctx, registry, store)

    try:
        with lease:
            store.attach(lease)
            lockfile = store.load()
            result.plan = reconciler.plan(resolved, lockfile, options)
            result.report = reconciler.execute(result.plan)
            if options.cleanup and options.tools is None:
                result.pruned = reconciler.prune(lockfile, dry_run=options.dry_run)
    except DwsError as e:
        return _fail(result, e)

    if not options.dry_run:
        _record(ctx, result)
    return result


def _record(ctx: WorkspaceContext, result: SyncResult) -> None:
    report = result.report
    if report is None:
        return
    HistoryWriter(ctx.paths.history_file).write(HistoryEntry(
        timestamp=ctx.clock(),
        operation=result.operation,
        profile=ctx.active_profile,
        status=report.status,
        actions_total=report.total,
        actions_succeeded=report.succeeded,
        actions_failed=report.failed,
        duration_ms=report.duration_ms,
        tools_changed=report.changed_tools,
        errors=[f"{r.name}: {r.error}" for r in report.results if r.error],
        context={"pruned": len(result.pruned)} if result.pruned else {},
    ))
