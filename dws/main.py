"""
dws — CLI entrypoint.

Usage:
    dws --help
    dws sync
    dws status --json
    dws update ripgrep
"""

from __future__ import annotations

import json
import sys

import click

from dws import __version__
from dws.core.observability.logging_config import setup_logging

_STATUS_COLORS = {"ok": "green", "partial": "yellow", "failed": "red"}
_STATE_COLORS = {
    "ok": "green",
    "not_installed": "cyan",
    "outdated": "yellow",
    "drifted": "yellow",
    "missing": "yellow",
    "orphaned": "yellow",
    "missing_source": "red",
    "checksum_mismatch": "red",
}


@click.group()
@click.version_option(version=__version__, prog_name="dws")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, quiet: bool, debug: bool) -> None:
    """dws — keep this machine's tools and dotfiles in sync with its profile."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug

    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = None
    setup_logging(level=level)


# ── Helpers ─────────────────────────────────────────────────────


def _context(ctx: click.Context, jobs: int | None = None):
    """Build the WorkspaceContext (tests may inject one via ``ctx.obj``)."""
    from dws.core.config.loader import build_context
    from dws.core.errors import ConfigError

    injected = ctx.obj.get("workspace")
    if injected is not None:
        if jobs is not None:
            injected.jobs = jobs
        return injected
    try:
        return build_context(paths=ctx.obj.get("paths"), jobs=jobs)
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)


def _registry(ctx: click.Context):
    from dws.adapters.registry import BackendRegistry

    registry = ctx.obj.get("registry")
    return registry if registry is not None else BackendRegistry.default()


def _print_plan(plan) -> None:
    if not plan.actions:
        click.echo("   Nothing declared.")
        return
    for action in plan.actions:
        label = action.action.value
        version = f" {action.target_version}" if action.target_version else ""
        if action.prefailed:
            click.secho(f"   ✗ {label:<9} {action.name}{version}", fg="red", nl=False)
            click.echo(f"  [{action.stage.value if action.stage else '?'}] {action.error}")
        elif label == "noop":
            click.secho(f"   · {label:<9} {action.name}", fg="white", nl=False)
            click.echo(f"  ({action.reason})" if action.reason else "")
        else:
            color = "yellow" if label == "drifted" else "cyan"
            click.secho(f"   → {label:<9} {action.name}{version}", fg=color, nl=False)
            click.echo(f"  ({action.reason})" if action.reason else "")


def _print_report(report, verbose: bool = False) -> None:
    for result in report.results:
        timing = f" ({result.duration_ms}ms)" if result.duration_ms else ""
        if result.ok:
            click.secho(f"   ✓ {result.action.value:<9} {result.name}", fg="green", nl=False)
            click.echo(f"  {result.detail}{timing}" if result.detail else timing)
        elif result.failed:
            click.secho(f"   ✗ {result.action.value:<9} {result.name}", fg="red", nl=False)
            stage = f"[{result.stage.value}] " if result.stage else ""
            click.echo(f"{timing}")
            for line in (result.error or "").split("\n")[:5]:
                click.echo(f"     │ {stage}{line}")
        else:
            click.secho(f"   ⊘ {result.action.value:<9} {result.name} ", fg="yellow", nl=False)
            click.echo(f"({result.detail})")

    if verbose and report.unchanged:
        click.echo(f"   {report.unchanged} entr{'y' if report.unchanged == 1 else 'ies'} unchanged")

    click.echo()
    color = _STATUS_COLORS.get(report.status, "white")
    prefix = "[dry-run] " if report.dry_run else ""
    click.secho(
        f"   {prefix}Result: {report.succeeded}/{report.total} succeeded"
        + (f", {report.failed} failed" if report.failed else "")
        + (f", {report.cancelled} cancelled" if report.cancelled else ""),
        fg=color,
        bold=True,
    )


def _finish_pass(ctx: click.Context, title: str, result, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    report = result.report
    assert report is not None

    if not ctx.obj.get("quiet"):
        click.secho(f"\n⚡ {title}", fg="cyan", bold=True)
        click.echo()
    _print_report(report, verbose=ctx.obj.get("verbose", False))

    if result.pruned:
        click.echo()
        click.secho(f"   🧹 {'Would prune' if report.dry_run else 'Pruned'} {len(result.pruned)} path(s)", fg="cyan")
        if ctx.obj.get("verbose"):
            for path in result.pruned:
                click.echo(f"     • {path}")

    click.echo()
    if not result.ok:
        sys.exit(1)


# ── Commands ────────────────────────────────────────────────────


@cli.command()
@click.option("--repair", is_flag=True, help="Replace drifted links and reinstall unhealthy tools.")
@click.option("--update", is_flag=True, help="Move 'latest' tools to their newest release.")
@click.option("--fail-fast", is_flag=True, help="Cancel remaining actions after the first failure.")
@click.option("--jobs", "-j", type=click.IntRange(min=1), default=None, help="Parallel workers.")
@click.option("--dry-run", is_flag=True, help="Plan and report without changing anything.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def sync(
    ctx: click.Context,
    repair: bool,
    update: bool,
    fail_fast: bool,
    jobs: int | None,
    dry_run: bool,
    as_json: bool,
) -> None:
    """Converge tools and dotfiles to the active profile."""
    from dws.core.engine.reconciler import PlanOptions
    from dws.core.use_cases.sync import run_sync

    workspace = _context(ctx, jobs=jobs)
    options = PlanOptions(update=update, repair=repair, fail_fast=fail_fast, dry_run=dry_run)
    result = run_sync(workspace, options, registry=_registry(ctx))
    _finish_pass(ctx, f"sync — {workspace.active_profile or 'no profile'}", result, as_json)


@cli.command()
@click.argument("tools", nargs=-1)
@click.option("--fail-fast", is_flag=True, help="Cancel remaining actions after the first failure.")
@click.option("--dry-run", is_flag=True, help="Plan and report without changing anything.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def update(
    ctx: click.Context,
    tools: tuple[str, ...],
    fail_fast: bool,
    dry_run: bool,
    as_json: bool,
) -> None:
    """Update 'latest' tools (all, or only TOOLS) to their newest release.

    Examples:

        dws update

        dws update ripgrep fd
    """
    from dws.core.engine.reconciler import PlanOptions
    from dws.core.use_cases.sync import run_sync

    workspace = _context(ctx)
    options = PlanOptions(
        update=True,
        tools=list(tools) if tools else None,
        fail_fast=fail_fast,
        dry_run=dry_run,
    )
    result = run_sync(workspace, options, registry=_registry(ctx), operation="update")
    _finish_pass(ctx, "update", result, as_json)


@cli.command()
@click.option("--dry-run", is_flag=True, help="Show what would be removed.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def cleanup(ctx: click.Context, dry_run: bool, as_json: bool) -> None:
    """Remove tools and dotfiles no longer declared, then prune the cache."""
    from dws.core.engine.reconciler import PlanOptions
    from dws.core.use_cases.sync import run_sync

    workspace = _context(ctx)
    options = PlanOptions(cleanup=True, dry_run=dry_run)
    result = run_sync(workspace, options, registry=_registry(ctx), operation="cleanup")
    _finish_pass(ctx, "cleanup", result, as_json)


@cli.command()
@click.option("--update", is_flag=True, help="Plan as 'dws update' would.")
@click.option("--repair", is_flag=True, help="Plan as 'dws sync --repair' would.")
@click.option("--cleanup", is_flag=True, help="Include removals of undeclared entries.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def plan(ctx: click.Context, update: bool, repair: bool, cleanup: bool, as_json: bool) -> None:
    """Show what a sync would do, without doing it."""
    from dws.core.engine.reconciler import PlanOptions
    from dws.core.use_cases.sync import plan_pass

    workspace = _context(ctx)
    options = PlanOptions(update=update, repair=repair, cleanup=cleanup)
    result = plan_pass(workspace, options, registry=_registry(ctx))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.error is None else 1)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    assert result.plan is not None
    click.secho(f"\n📋 Plan — {workspace.active_profile or 'no profile'}", fg="cyan", bold=True)
    click.echo()
    _print_plan(result.plan)
    click.echo()
    changes = len(result.plan.changes)
    click.echo(f"   {changes} change{'s' if changes != 1 else ''} pending")
    click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show installed tools and linked dotfiles, and any drift."""
    from dws.core.use_cases.status import get_status

    workspace = _context(ctx)
    result = get_status(workspace)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.error is None else 1)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    if not ctx.obj.get("quiet"):
        machine = result.machine
        click.secho(f"\n📋 Profile: {result.profile or '(none)'}", fg="cyan", bold=True)
        click.echo(f"   Machine: {machine.get('os')}/{machine.get('arch')} on {machine.get('hostname')}")
        if result.last_sync:
            click.echo(f"   Last sync: {result.last_sync}")
        click.echo()

    if result.manifest_error:
        click.secho(f"   ⚠️  {result.manifest_error}", fg="yellow")
        click.echo()

    for title, entries in (("Tools", result.tools), ("Dotfiles", result.dotfiles)):
        click.secho(f"   {title}: {len(entries)}", fg="white", bold=True)
        for entry in entries:
            color = _STATE_COLORS.get(entry.state.value, "white")
            click.echo("     • ", nl=False)
            click.secho(f"{entry.state.value:<17}", fg=color, nl=False)
            click.echo(f" {entry.name}" + (f"  ({entry.detail})" if entry.detail else ""))
            if ctx.obj.get("verbose"):
                for problem in entry.problems:
                    click.echo(f"         │ {problem}")
        click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def check(ctx: click.Context, as_json: bool) -> None:
    """Validate every profile manifest and config.yml."""
    from dws.core.use_cases.check import check_manifests

    result = check_manifests(_context(ctx))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)

    if result.ok:
        click.secho("✅ Manifests are valid", fg="green", bold=True)
        click.echo(f"   Files: {len(result.checked)}")
        click.echo(f"   Tools: {result.tool_count}")
        click.echo()
        return

    click.secho(f"❌ {len(result.issues)} manifest problem(s):", fg="red", bold=True)
    for issue in result.issues:
        where = f"{issue.source}" + (f" [{issue.tool}]" if issue.tool else "")
        click.echo(f"   • {where}: {issue.message}")
    click.echo()
    sys.exit(1)


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def profiles(ctx: click.Context, as_json: bool) -> None:
    """List profiles; the active one is marked."""
    from dws.core.use_cases.profiles import show_profiles

    workspace = _context(ctx)
    result = show_profiles(workspace.paths, workspace.active_profile)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    if not result.profiles:
        click.secho(f"No profiles under {workspace.paths.profiles_dir}", fg="yellow")
        return
    for name in result.profiles:
        if name == result.active:
            click.secho(f"   • {name}  ← active", fg="green")
        else:
            click.echo(f"   • {name}")


@cli.command()
@click.argument("profile")
@click.pass_context
def use(ctx: click.Context, profile: str) -> None:
    """Make PROFILE the active profile (applied on the next sync)."""
    from dws.core.use_cases.profiles import use_profile

    workspace = _context(ctx)
    result = use_profile(workspace.paths, profile)
    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)
    click.secho(f"✅ Active profile: {profile}", fg="green")
    click.echo("   Run 'dws sync' to apply it.")


@cli.command()
@click.option("--limit", "-n", default=10, type=click.IntRange(min=1), help="Entries to show.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def history(ctx: click.Context, limit: int, as_json: bool) -> None:
    """Show recent sync, update and cleanup passes."""
    from dws.core.persistence.history import HistoryWriter

    workspace = _context(ctx)
    entries = HistoryWriter(workspace.paths.history_file).read_recent(limit)

    if as_json:
        click.echo(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return

    if not entries:
        click.echo("No passes recorded yet.")
        return
    for entry in entries:
        color = _STATUS_COLORS.get(entry.status, "white")
        click.echo(f"   {entry.timestamp}  {entry.operation:<8} ", nl=False)
        click.secho(f"{entry.status:<8}", fg=color, nl=False)
        click.echo(f" {entry.actions_succeeded}/{entry.actions_total}"
                   + (f"  changed: {', '.join(entry.tools_changed)}" if entry.tools_changed else ""))


if __name__ == "__main__":
    cli()
