"""
Reconciler — converge the machine toward the resolved state.

The reconciler owns the Lockfile for the duration of a pass:

    load → plan (diff resolved vs lockfile vs disk) → execute → save once

Planning decides one action per entry. Execution runs the actionable
ones on a bounded thread pool; each worker returns an ActionResult and
a single coordinating loop folds results into the in-memory Lockfile,
then saves it exactly once. Workers never touch the Lockfile.

Per-action failures are recorded in the Report and never raised.
Batch failures (manifest, lease, corrupt lockfile) abort before any
action runs.
"""

from __future__ import annotations

import logging
import os
import shutil
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any

from dws.adapters.base import InstallerBackend, Release, ReleaseAsset, check_cancel
from dws.adapters.registry import BackendRegistry
from dws.core.context import WorkspaceContext
from dws.core.errors import (
    Cancelled,
    ChecksumMismatch,
    DwsError,
    FilesystemError,
    MissingSource,
    PathConflict,
    UnknownTool,
)
from dws.core.models.action import (
    ActionKind,
    ActionResult,
    EntryKind,
    EntryState,
    EntryStatus,
    PlannedAction,
    Stage,
)
from dws.core.models.lockfile import (
    ConfigSymlinkEntry,
    InstalledLink,
    Lockfile,
    Receipt,
    ReceiptStatus,
)
from dws.core.models.tool import ConfigSymlinkSpec, ResolvedState, ToolDefinition
from dws.core.persistence.state_file import StateStore
from dws.core.services import archive, dotfiles, integrity
from dws.core.services.asset_selector import select_asset
from dws.core.services.dotfiles import LinkOutcome, LinkState

logger = logging.getLogger(__name__)


@dataclass
class PlanOptions:
    """Knobs for one pass."""

    update: bool = False
    repair: bool = False
    cleanup: bool = False
    tools: list[str] | None = None
    dry_run: bool = False
    fail_fast: bool = False


@dataclass
class Plan:
    """Every entry's intended action, in deterministic order."""

    lockfile: Lockfile
    options: PlanOptions = field(default_factory=PlanOptions)
    actions: list[PlannedAction] = field(default_factory=list)

    @property
    def actionable(self) -> list[PlannedAction]:
        return [a for a in self.actions if a.actionable]

    @property
    def changes(self) -> list[PlannedAction]:
        """Everything that is not a plain no-op."""
        return [a for a in self.actions if a.action != ActionKind.NOOP or a.prefailed]

    @property
    def prefailed(self) -> list[PlannedAction]:
        return [a for a in self.actions if a.prefailed]

    def get(self, name: str, kind: EntryKind = EntryKind.TOOL) -> PlannedAction | None:
        for action in self.actions:
            if action.name == name and action.kind == kind:
                return action
        return None

    def counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for action in self.actions:
            counts[action.action.value] = counts.get(action.action.value, 0) + 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "counts": self.counts(),
            "actions": [a.to_dict() for a in self.actions],
        }


@dataclass
class Report:
    """What a pass actually did."""

    results: list[ActionResult] = field(default_factory=list)
    unchanged: int = 0
    dry_run: bool = False
    duration_ms: int = 0

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.failed)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.status == "skipped")

    @property
    def cancelled(self) -> int:
        return sum(1 for r in self.results if r.status == "cancelled")

    @property
    def all_ok(self) -> bool:
        return self.failed == 0 and self.cancelled == 0

    @property
    def status(self) -> str:
        if self.all_ok:
            return "ok"
        if self.succeeded > 0:
            return "partial"
        return "failed"

    @property
    def changed_tools(self) -> list[str]:
        return sorted(
            r.name for r in self.results
            if r.ok and r.kind == EntryKind.TOOL and r.action != ActionKind.VERIFY
        )

    def result(self, name: str, kind: EntryKind = EntryKind.TOOL) -> ActionResult | None:
        for r in self.results:
            if r.name == name and r.kind == kind:
                return r
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "dry_run": self.dry_run,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "cancelled": self.cancelled,
            "unchanged": self.unchanged,
            "duration_ms": self.duration_ms,
            "results": [r.to_dict() for r in self.results],
        }


def _health_rank(status: ReceiptStatus) -> int:
    return {
        ReceiptStatus.OK: 0,
        ReceiptStatus.DRIFTED: 1,
        ReceiptStatus.CHECKSUM_MISMATCH: 2,
        ReceiptStatus.MISSING_SOURCE: 3,
    }[status]


def _link_points_to(link: Path, source: Path) -> bool:
    if not link.is_symlink():
        return False
    try:
        current = Path(os.readlink(link))
    except OSError:
        return False
    if not current.is_absolute():
        current = link.parent / current
    return current == source


def _ensure_replaceable(link: Path) -> None:
    if os.path.lexists(link) and not link.is_symlink():
        raise FilesystemError(f"{link} exists and is not a symlink; refusing to replace it")


def _claim_clash(lockfile: Lockfile, receipt: Receipt) -> PathConflict | None:
    """First path of ``receipt`` already held by another lockfile entry."""
    label = f"tool '{receipt.name}'"
    owners = lockfile.claims()
    for path in receipt.claimed_paths():
        owner = owners.get(path)
        if owner is not None and owner != label:
            return PathConflict(path, owner, label)
    return None


class Reconciler:
    """Plans and executes one workspace's reconciliation passes."""

    def __init__(
        self,
        ctx: WorkspaceContext,
        backends: BackendRegistry,
        store: StateStore | None = None,
    ):
        self._ctx = ctx
        self._backends = backends
        self._store = store or StateStore(ctx.paths.lockfile)

    @property
    def store(self) -> StateStore:
        return self._store

    # ── Health ──────────────────────────────────────────────────

    def version_dir(self, name: str, version: str) -> Path:
        return archive.version_dir(self._ctx.paths.tools_cache, name, version)

    def tool_health(self, receipt: Receipt) -> tuple[ReceiptStatus, list[str]]:
        """Check a receipt against the disk. Read-only.

        Returns:
            The worst observed status and a description of each problem.
        """
        worst = ReceiptStatus.OK
        problems: list[str] = []

        def observe(status: ReceiptStatus, message: str) -> None:
            nonlocal worst
            problems.append(message)
            if _health_rank(status) > _health_rank(worst):
                worst = status

        for entry in receipt.links():
            if not os.path.lexists(entry.source):
                observe(ReceiptStatus.MISSING_SOURCE, f"{entry.source} is missing")
            elif not entry.link.is_symlink():
                if os.path.lexists(entry.link):
                    observe(ReceiptStatus.DRIFTED, f"{entry.link} was replaced by a non-link")
                else:
                    observe(ReceiptStatus.DRIFTED, f"{entry.link} is missing")
            elif not _link_points_to(entry.link, entry.source):
                observe(ReceiptStatus.DRIFTED, f"{entry.link} points elsewhere")

        artifact_dir = self.version_dir(receipt.name, receipt.resolved_version) / archive.ARTIFACT_DIR
        artifacts = sorted(artifact_dir.iterdir()) if artifact_dir.is_dir() else []
        if not artifacts:
            observe(ReceiptStatus.MISSING_SOURCE, f"cached artifact missing under {artifact_dir}")
        elif receipt.checksum:
            actual = integrity.compute_file_digest(artifacts[0])
            if actual != receipt.checksum:
                observe(
                    ReceiptStatus.CHECKSUM_MISMATCH,
                    f"cached artifact digest {actual} differs from recorded {receipt.checksum}",
                )

        return worst, problems

    # ── Planning ────────────────────────────────────────────────

    def plan(
        self,
        resolved: ResolvedState,
        lockfile: Lockfile,
        options: PlanOptions | None = None,
    ) -> Plan:
        """Diff desired state against the lockfile and the disk.

        Raises:
            UnknownTool: ``options.tools`` names an undeclared tool.
        """
        options = options or PlanOptions()
        selected: set[str] | None = None
        if options.tools:
            unknown = sorted(set(options.tools) - set(resolved.tools))
            if unknown:
                raise UnknownTool(f"not declared in any manifest: {', '.join(unknown)}", tool=unknown[0])
            selected = set(options.tools)

        plan = Plan(lockfile=lockfile, options=options)

        if selected is None:
            plan.actions.extend(self._plan_dotfiles(resolved, lockfile, options))

        for name in sorted(resolved.tools):
            if selected is not None and name not in selected:
                continue
            plan.actions.append(self._plan_tool(resolved.tools[name], lockfile.receipt(name), options))

        if selected is None and options.cleanup:
            for receipt in lockfile.tool_receipts:
                if receipt.name not in resolved.tools:
                    plan.actions.append(PlannedAction(
                        kind=EntryKind.TOOL,
                        action=ActionKind.REMOVE,
                        name=receipt.name,
                        receipt=receipt,
                        reason="no longer declared",
                    ))

        self._mark_conflicts(plan, lockfile)
        self._prefetch(plan)

        logger.info("Planned %s", ", ".join(f"{k}={v}" for k, v in sorted(plan.counts().items())) or "nothing")
        return plan

    def _plan_tool(
        self,
        tool: ToolDefinition,
        receipt: Receipt | None,
        options: PlanOptions,
    ) -> PlannedAction:
        planned = PlannedAction(kind=EntryKind.TOOL, action=ActionKind.NOOP, name=tool.name,
                                tool=tool, receipt=receipt)

        if receipt is None:
            planned.action, planned.reason = ActionKind.INSTALL, "not installed"
        elif tool.self_update:
            planned.action, planned.reason = ActionKind.VERIFY, "self-updating tool"
        elif tool.version.is_pinned:
            if receipt.resolved_version == tool.version.pinned:
                planned.reason = f"pinned at {tool.version.pinned}"
            else:
                planned.action = ActionKind.REINSTALL
                planned.reason = f"pin changed {receipt.resolved_version} → {tool.version.pinned}"
        elif options.update:
            planned.action, planned.reason = ActionKind.REINSTALL, "update to latest"
        else:
            planned.reason = f"installed {receipt.resolved_version}"

        if planned.action == ActionKind.NOOP and options.repair and receipt is not None:
            health, problems = self.tool_health(receipt)
            if health != ReceiptStatus.OK:
                planned.action = ActionKind.REINSTALL
                planned.reason = f"repair: {health.value}"

        if planned.action in (ActionKind.INSTALL, ActionKind.REINSTALL):
            try:
                planned.backend = self._backends.for_kind(tool.installer)
            except DwsError as e:
                planned.error, planned.stage = e, Stage.PLAN
        return planned

    def _plan_dotfiles(
        self,
        resolved: ResolvedState,
        lockfile: Lockfile,
        options: PlanOptions,
    ) -> list[PlannedAction]:
        actions: list[PlannedAction] = []
        desired = {spec.target: spec for spec in resolved.dotfiles}

        for target in sorted(desired, key=str):
            spec = desired[target]
            recorded = lockfile.config_symlink(target)
            state = dotfiles.inspect(spec)
            planned = PlannedAction(kind=EntryKind.DOTFILE, action=ActionKind.NOOP,
                                    name=str(target), spec=spec, entry=recorded)

            if state == LinkState.OK:
                if recorded is None or recorded.source != spec.source:
                    planned.action, planned.reason = ActionKind.LINK, "record existing link"
                else:
                    planned.reason = "linked"
            elif state == LinkState.MISSING:
                planned.action, planned.reason = ActionKind.LINK, "not linked"
            elif state == LinkState.MISSING_SOURCE:
                planned.action = ActionKind.LINK
                planned.error = MissingSource(f"Dotfile source {spec.source} does not exist")
                planned.stage = Stage.PLAN
            elif options.repair:
                planned.action, planned.reason = ActionKind.RELINK, f"repair: {state.value}"
            else:
                planned.action, planned.reason = ActionKind.DRIFTED, state.value
            actions.append(planned)

        if options.cleanup:
            for entry in lockfile.config_symlinks:
                if entry.target not in desired:
                    actions.append(PlannedAction(
                        kind=EntryKind.DOTFILE, action=ActionKind.UNLINK, name=str(entry.target),
                        entry=entry, reason="no longer in profile",
                    ))
        return actions

    def tool_claims(self, tool: ToolDefinition) -> list[Path]:
        """Paths a tool's links will occupy once installed."""
        paths = [self._ctx.paths.bin_dir / b.link_name for b in tool.bin]
        for extra in tool.extras:
            paths.append(archive.extra_target(
                self._ctx.paths.share_dir, tool.name, extra, Path(PurePosixPath(extra.source).name),
            ))
        return paths

    def _mark_conflicts(self, plan: Plan, lockfile: Lockfile) -> None:
        owners: dict[Path, str] = {}

        # Recorded links stay claimed unless the receipt is being removed.
        # A failed reinstall keeps its old receipt and so its old links.
        planned_tools = {a.name: a for a in plan.actions if a.kind == EntryKind.TOOL}
        for receipt in lockfile.tool_receipts:
            action = planned_tools.get(receipt.name)
            if action is None or action.action != ActionKind.REMOVE:
                for path in receipt.claimed_paths():
                    owners.setdefault(path, f"tool '{receipt.name}'")

        for action in plan.actions:
            if action.prefailed:
                continue
            if action.kind == EntryKind.DOTFILE and action.spec is not None:
                label = f"dotfile {action.spec.source}"
                claims = [action.spec.target]
            elif action.kind == EntryKind.TOOL and action.action in (ActionKind.INSTALL, ActionKind.REINSTALL):
                label = f"tool '{action.name}'"
                claims = self.tool_claims(action.tool)
            else:
                continue

            for path in claims:
                owner = owners.get(path)
                if owner is not None and owner != label:
                    action.error = PathConflict(path, owner, label)
                    action.stage = Stage.PLAN
                    logger.warning("%s", action.error)
                    break
            else:
                for path in claims:
                    owners[path] = label

    def _prefetch(self, plan: Plan) -> None:
        """Look releases up and pick assets for installs and updates."""
        for action in plan.actions:
            if action.kind != EntryKind.TOOL or action.prefailed:
                continue
            if action.action not in (ActionKind.INSTALL, ActionKind.REINSTALL):
                continue
            tool, backend = action.tool, action.backend

            try:
                release = backend.fetch_release(tool)
            except DwsError as e:
                action.error, action.stage = e, Stage.RELEASE
                continue
            action.release = release

            try:
                action.asset = self._choose_asset(tool, backend, release).name
            except DwsError as e:
                action.error, action.stage = e, Stage.SELECT
                continue

            receipt = action.receipt
            if (
                receipt is not None
                and tool.version.is_latest
                and not action.reason.startswith("repair")
                and release.version == receipt.resolved_version
            ):
                action.action = ActionKind.NOOP
                action.reason = f"already at latest ({release.version})"

    def _choose_asset(self, tool: ToolDefinition, backend: InstallerBackend, release: Release) -> ReleaseAsset:
        if not backend.selects_assets:
            if release.assets:
                return release.assets[0]
            return ReleaseAsset(name=tool.name)
        selection = select_asset(tool.asset_filters, release.asset_names, self._ctx.machine)
        return release.asset(selection.name)

    # ── Execution ───────────────────────────────────────────────

    def execute(self, plan: Plan) -> Report:
        """Carry out a plan and persist the Lockfile once."""
        start = time.monotonic()
        options = plan.options
        report = Report(dry_run=options.dry_run)
        report.unchanged = sum(1 for a in plan.actions if a.action == ActionKind.NOOP and not a.prefailed)

        for action in plan.actions:
            if action.prefailed:
                report.results.append(ActionResult.failure(action, action.error, stage=action.stage))
            elif action.action == ActionKind.DRIFTED:
                report.results.append(ActionResult.skip(
                    action, f"drifted ({action.reason}); run with --repair to replace",
                ))

        pending = plan.actionable
        if options.dry_run:
            for action in pending:
                report.results.append(ActionResult.skip(action, f"[dry-run] would {action.action.value}"))
            report.results.sort(key=lambda r: (r.kind.value, r.name))
            return report

        cancel = threading.Event()
        if options.fail_fast and report.failed:
            cancel.set()

        lockfile = plan.lockfile
        with ThreadPoolExecutor(max_workers=self._ctx.worker_count, thread_name_prefix="dws") as pool:
            futures = {pool.submit(self._run_action, action, cancel): action for action in pending}
            for future in as_completed(futures):
                result = self._fold(lockfile, future.result())
                report.results.append(result)
                marker = "✓" if result.ok else "✗" if result.failed else "⊘"
                logger.info("%s %s %s → %s", marker, result.action.value, result.name, result.status)
                if result.failed and options.fail_fast:
                    cancel.set()

        self._store.save(lockfile, now=self._ctx.clock())
        report.results.sort(key=lambda r: (r.kind.value, r.name))
        report.duration_ms = int((time.monotonic() - start) * 1000)
        return report

    def _fold(self, lockfile: Lockfile, result: ActionResult) -> ActionResult:
        """Apply one result to the Lockfile. Coordinator thread only.

        Returns the result as recorded, which is turned into a failure
        when its receipt would claim a path another entry already holds.
        """
        if result.kind == EntryKind.TOOL:
            if result.action == ActionKind.VERIFY and result.observed_status is not None:
                lockfile.set_receipt_status(result.name, result.observed_status)
            elif not result.ok:
                pass
            elif result.action in (ActionKind.INSTALL, ActionKind.REINSTALL) and result.receipt:
                clash = _claim_clash(lockfile, result.receipt)
                if clash is not None:
                    logger.warning("%s", clash)
                    return result.model_copy(update={
                        "status": "failed",
                        "stage": Stage.LINK,
                        "error": str(clash),
                        "error_type": type(clash).__name__,
                        "receipt": None,
                    })
                lockfile.upsert_receipt(result.receipt)
            elif result.action == ActionKind.REMOVE:
                lockfile.remove_receipt(result.name)
        elif result.ok:
            if result.action in (ActionKind.LINK, ActionKind.RELINK) and result.dotfile:
                lockfile.upsert_config_symlink(result.dotfile)
            elif result.action == ActionKind.UNLINK:
                lockfile.remove_config_symlink(Path(result.name))
        return result

    def _run_action(self, action: PlannedAction, cancel: threading.Event) -> ActionResult:
        if cancel.is_set():
            return ActionResult.cancelled(action)

        start = time.monotonic()
        handler = {
            ActionKind.INSTALL: self._install_tool,
            ActionKind.REINSTALL: self._install_tool,
            ActionKind.VERIFY: self._verify_tool,
            ActionKind.REMOVE: self._remove_tool,
            ActionKind.LINK: self._link_dotfile,
            ActionKind.RELINK: self._link_dotfile,
            ActionKind.UNLINK: self._unlink_dotfile,
        }[action.action]

        try:
            result = handler(action, cancel)
        except Exception as e:
            # Handlers capture expected failures themselves.
            logger.exception("Unexpected error while running %s %s", action.action.value, action.name)
            result = ActionResult.failure(action, e)

        result.duration_ms = int((time.monotonic() - start) * 1000)
        return result

    # ── Tool handlers ───────────────────────────────────────────

    def _install_tool(self, action: PlannedAction, cancel: threading.Event) -> ActionResult:
        tool, backend = action.tool, action.backend
        stage = Stage.RELEASE
        try:
            release = action.release or backend.fetch_release(tool, cancel)
            stage = Stage.SELECT
            asset = release.asset(action.asset) if action.asset else None
            if asset is None:
                asset = self._choose_asset(tool, backend, release)
            check_cancel(cancel)

            stage = Stage.FETCH
            artifact = backend.fetch(tool, asset, cancel)
            check_cancel(cancel)

            stage = Stage.VERIFY
            digest = integrity.verify(artifact.content, tool.checksum)

            stage = Stage.MATERIALIZE
            final = self.version_dir(tool.name, release.version)
            staging = archive.stage_dir(final)
            try:
                artifact_dir = staging / archive.ARTIFACT_DIR
                artifact_dir.mkdir(parents=True)
                artifact.path = artifact_dir / archive.sanitize_component(artifact.filename)
                artifact.path.write_bytes(artifact.content)
                backend.materialize(tool, artifact, staging / archive.ROOT_DIR, cancel)
                check_cancel(cancel)

                stage = Stage.LINK
                binaries, extras = self._resolve_links(tool, staging, final)
                # Nothing is published unless every link can be placed.
                for entry in [*binaries, *extras]:
                    _ensure_replaceable(entry.link)
                archive.publish(staging, final)
            except BaseException:
                archive.discard(staging)
                raise

            for entry in [*binaries, *extras]:
                self._place_link(entry)
        except Cancelled:
            return ActionResult(kind=action.kind, action=action.action, name=action.name,
                                status="cancelled", stage=stage, detail="cancelled by fail-fast")
        except ChecksumMismatch as e:
            return ActionResult.failure(action, e, stage=stage, observed_status=ReceiptStatus.CHECKSUM_MISMATCH)
        except MissingSource as e:
            return ActionResult.failure(action, e, stage=stage, observed_status=ReceiptStatus.MISSING_SOURCE)
        except DwsError as e:
            return ActionResult.failure(action, e, stage=stage)
        except OSError as e:
            return ActionResult.failure(action, FilesystemError(str(e)), stage=stage)

        receipt = Receipt(
            name=tool.name,
            installer=tool.installer,
            manifest_version=str(tool.version),
            resolved_version=release.version,
            asset_locator=artifact.locator,
            checksum=digest,
            installed_binaries=binaries,
            installed_extras=extras,
            self_update=tool.self_update,
            status=ReceiptStatus.OK,
            installed_at=self._ctx.clock(),
        )
        if action.receipt is not None:
            self._drop_stale_links(action.receipt, receipt)

        return ActionResult.success(
            action, detail=f"{release.version} ({asset.name})", receipt=receipt,
            observed_status=ReceiptStatus.OK,
        )

    def _resolve_links(
        self,
        tool: ToolDefinition,
        staging: Path,
        final: Path,
    ) -> tuple[list[InstalledLink], list[InstalledLink]]:
        root = staging / archive.ROOT_DIR

        def published(path: Path) -> Path:
            return final / path.relative_to(staging)

        binaries = []
        for binary in tool.bin:
            source = archive.resolve_source(root, binary.source)
            binaries.append(InstalledLink(
                link=self._ctx.paths.bin_dir / binary.link_name,
                source=published(source),
            ))

        extras = []
        for extra in tool.extras:
            source = archive.resolve_source(root, extra.source)
            extras.append(InstalledLink(
                link=archive.extra_target(self._ctx.paths.share_dir, tool.name, extra, source),
                source=published(source),
            ))
        return binaries, extras

    def _place_link(self, entry: InstalledLink) -> None:
        link = entry.link
        _ensure_replaceable(link)
        dotfiles.atomic_symlink(entry.source, link)
        logger.debug("Linked %s → %s", link, entry.source)

    def _drop_stale_links(self, old: Receipt, new: Receipt) -> None:
        keep = set(new.claimed_paths())
        for entry in old.links():
            if entry.link not in keep and _link_points_to(entry.link, entry.source):
                entry.link.unlink()
                logger.debug("Removed stale link %s", entry.link)

    def _verify_tool(self, action: PlannedAction, cancel: threading.Event) -> ActionResult:
        receipt = action.receipt
        status, problems = self.tool_health(receipt)
        if status == ReceiptStatus.OK:
            return ActionResult.success(action, detail="verified", observed_status=status)
        error: DwsError
        if status == ReceiptStatus.CHECKSUM_MISMATCH:
            error = ChecksumMismatch(expected=receipt.checksum, actual="; ".join(problems))
        elif status == ReceiptStatus.MISSING_SOURCE:
            error = MissingSource("; ".join(problems))
        else:
            error = FilesystemError("; ".join(problems))
        return ActionResult.failure(action, error, stage=Stage.VERIFY, observed_status=status)

    def _remove_tool(self, action: PlannedAction, cancel: threading.Event) -> ActionResult:
        receipt = action.receipt
        removed = 0
        try:
            for entry in receipt.links():
                if _link_points_to(entry.link, entry.source):
                    entry.link.unlink()
                    removed += 1
            tool_cache = self._ctx.paths.tools_cache / archive.sanitize_component(receipt.name)
            shutil.rmtree(tool_cache, ignore_errors=True)
        except OSError as e:
            return ActionResult.failure(action, FilesystemError(str(e)), stage=Stage.LINK)
        return ActionResult.success(action, detail=f"removed {removed} link(s)")

    # ── Dotfile handlers ────────────────────────────────────────

    def _link_dotfile(self, action: PlannedAction, cancel: threading.Event) -> ActionResult:
        spec = action.spec
        try:
            outcome = dotfiles.apply(spec, force=action.action == ActionKind.RELINK)
        except DwsError as e:
            return ActionResult.failure(action, e, stage=Stage.LINK)
        if outcome == LinkOutcome.DRIFTED:
            return ActionResult.skip(action, "target changed since planning; left in place")
        return ActionResult.success(
            action, detail=outcome.value,
            dotfile=ConfigSymlinkEntry(source=spec.source, target=spec.target),
        )

    def _unlink_dotfile(self, action: PlannedAction, cancel: threading.Event) -> ActionResult:
        try:
            removed = dotfiles.remove(action.entry)
        except DwsError as e:
            return ActionResult.failure(action, e, stage=Stage.LINK)
        return ActionResult.success(action, detail="unlinked" if removed else "left in place (not ours)")

    # ── Status ──────────────────────────────────────────────────

    def status(self, lockfile: Lockfile, resolved: ResolvedState | None = None) -> list[EntryStatus]:
        """Read-only drift report for every recorded and desired entry."""
        entries: list[EntryStatus] = []
        entries.extend(self._dotfile_status(lockfile, resolved))

        for receipt in lockfile.tool_receipts:
            health, problems = self.tool_health(receipt)
            state = EntryState(health.value)
            detail = receipt.resolved_version
            if resolved is not None:
                tool = resolved.get(receipt.name)
                if tool is None:
                    state, detail = EntryState.ORPHANED, "no longer declared; run cleanup to remove"
                elif (
                    state == EntryState.OK
                    and tool.version.is_pinned
                    and not tool.self_update
                    and tool.version.pinned != receipt.resolved_version
                ):
                    state, detail = EntryState.OUTDATED, f"pinned {tool.version.pinned}"
            entries.append(EntryStatus(
                kind=EntryKind.TOOL, name=receipt.name, state=state, detail=detail,
                version=receipt.resolved_version, problems=problems,
            ))

        if resolved is not None:
            for name in sorted(resolved.tools):
                if lockfile.receipt(name) is None:
                    entries.append(EntryStatus(
                        kind=EntryKind.TOOL, name=name, state=EntryState.NOT_INSTALLED,
                        detail=str(resolved.tools[name].version),
                    ))

        entries.sort(key=lambda e: (e.kind.value, e.name))
        return entries

    def _dotfile_status(self, lockfile: Lockfile, resolved: ResolvedState | None) -> list[EntryStatus]:
        entries: list[EntryStatus] = []
        desired = {s.target: s for s in resolved.dotfiles} if resolved is not None else {}
        specs: dict[Path, ConfigSymlinkSpec | ConfigSymlinkEntry] = {
            e.target: e for e in lockfile.config_symlinks
        }
        for target, spec in desired.items():
            specs.setdefault(target, spec)

        for target, spec in specs.items():
            link_state = dotfiles.inspect(spec)
            state = {
                LinkState.OK: EntryState.OK,
                LinkState.MISSING: EntryState.MISSING,
                LinkState.MISSING_SOURCE: EntryState.MISSING_SOURCE,
            }.get(link_state, EntryState.DRIFTED)
            detail = link_state.value
            if resolved is not None and target not in desired:
                state, detail = EntryState.ORPHANED, "no longer in profile; run cleanup to unlink"
            entries.append(EntryStatus(
                kind=EntryKind.DOTFILE, name=str(target), state=state, detail=detail,
            ))
        return entries

    # ── Cleanup ─────────────────────────────────────────────────

    def prune(self, lockfile: Lockfile, dry_run: bool = False) -> list[Path]:
        """Delete cache versions no Receipt references and dangling links.

        Returns:
            Every path removed (or that would be, when ``dry_run``).
        """
        removed: list[Path] = []
        cache = self._ctx.paths.tools_cache
        referenced = {
            self.version_dir(r.name, r.resolved_version) for r in lockfile.tool_receipts
        }

        if cache.is_dir():
            for tool_dir in sorted(p for p in cache.iterdir() if p.is_dir()):
                for version in sorted(p for p in tool_dir.iterdir() if p.is_dir()):
                    if version not in referenced:
                        removed.append(version)
                        if not dry_run:
                            shutil.rmtree(version, ignore_errors=True)
                if not dry_run and not any(tool_dir.iterdir()):
                    tool_dir.rmdir()

        for root in (self._ctx.paths.bin_dir, self._ctx.paths.share_dir):
            if not root.is_dir():
                continue
            for dirpath, dirnames, filenames in os.walk(root):
                for name in sorted(filenames + dirnames):
                    path = Path(dirpath) / name
                    if path.is_symlink() and not path.exists():
                        removed.append(path)
                        if not dry_run:
                            path.unlink()

        for path in removed:
            logger.info("%s %s", "Would prune" if dry_run else "Pruned", path)
        return removed
