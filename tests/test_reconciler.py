"""
Tests for the reconciler — planning, execution, status and pruning.

Every test runs against an isolated workspace with the in-memory mock
backend, so nothing touches the network.
"""

import hashlib
import os
from pathlib import Path

import pytest

from dws.core.engine.reconciler import PlanOptions, Reconciler
from dws.core.errors import AmbiguousAsset, PathConflict, UnknownTool
from dws.core.models.action import ActionKind, ActionResult, EntryKind, EntryState, Stage
from dws.core.models.lockfile import InstalledLink, Lockfile, Receipt, ReceiptStatus
from dws.core.models.tool import InstallerKind
from dws.core.use_cases.workspace import resolve_workspace

RG_PROJECT = "BurntSushi/ripgrep"
RG_ASSET = "ripgrep-14.0.0-x86_64-unknown-linux-musl.tar.gz"
RG_FILTER = r"^ripgrep-14\.0\.0-x86_64-unknown-linux-musl\.tar\.gz$"


def _sha(data: bytes) -> str:
    return "sha256:" + hashlib.sha256(data).hexdigest()


def _plan(workspace, registry, **options):
    reconciler = Reconciler(workspace, registry)
    return reconciler.plan(resolve_workspace(workspace), reconciler.store.load(), PlanOptions(**options))


def _run(workspace, registry, **options):
    reconciler = Reconciler(workspace, registry)
    plan = reconciler.plan(resolve_workspace(workspace), reconciler.store.load(), PlanOptions(**options))
    report = reconciler.execute(plan)
    return plan, report, reconciler.store.load()


def _status(workspace, registry):
    reconciler = Reconciler(workspace, registry)
    entries = reconciler.status(reconciler.store.load(), resolve_workspace(workspace))
    return {(e.kind, e.name): e for e in entries}


@pytest.fixture
def rg_archive(tarball) -> bytes:
    return tarball({
        "ripgrep-14.0.0-x86_64-unknown-linux-musl/rg": b"ripgrep 14.0.0",
        "ripgrep-14.0.0-x86_64-unknown-linux-musl/doc/rg.1": b".TH RG 1",
        "ripgrep-14.0.0-x86_64-unknown-linux-musl/complete/_rg": b"#compdef rg",
    })


@pytest.fixture
def ripgrep(mock_backend, rg_archive, write_manifest):
    """ripgrep pinned to v14.0.0 with exactly one matching Linux asset."""
    mock_backend.add_release(RG_PROJECT, "v14.0.0", {
        RG_ASSET: rg_archive,
        "ripgrep-14.0.0-x86_64-pc-windows-msvc.zip": b"windows",
    })
    tools = {
        "ripgrep": {
            "installer": "github",
            "project": RG_PROJECT,
            "version": "v14.0.0",
            "asset_filter": RG_FILTER,
            "checksum": _sha(rg_archive),
            "bin": ["rg"],
        },
    }
    write_manifest(tools)
    return tools


def _latest_tool(mock_backend, tarball, name: str, version: str, **fields) -> dict:
    mock_backend.add_release(name, version, {f"{name}-{version}-linux-x86_64.tar.gz": tarball({f"{name}": version.encode()})})
    return {"installer": "github", "project": name, "asset_filter": "linux", "bin": [name], **fields}


class TestInstall:
    def test_fresh_install_plans_install(self, workspace, registry, ripgrep):
        plan = _plan(workspace, registry)
        action = plan.get("ripgrep")
        assert action.action == ActionKind.INSTALL
        assert action.asset == RG_ASSET
        assert action.target_version == "v14.0.0"

    def test_install_then_nothing_to_do(self, workspace, registry, ripgrep):
        _, report, lockfile = _run(workspace, registry)
        assert report.all_ok
        receipt = lockfile.receipt("ripgrep")
        assert receipt.resolved_version == "v14.0.0"
        assert receipt.status == ReceiptStatus.OK
        assert receipt.installed_at == workspace.clock()

        link = workspace.paths.bin_dir / "rg"
        assert link.is_symlink()
        assert link.read_bytes() == b"ripgrep 14.0.0"

        assert _plan(workspace, registry).changes == []

    def test_second_pass_leaves_lockfile_byte_identical(self, workspace, registry, ripgrep):
        _run(workspace, registry)
        first = workspace.paths.lockfile.read_bytes()
        _, report, _ = _run(workspace, registry)
        assert report.total == 0
        assert workspace.paths.lockfile.read_bytes() == first

    def test_cache_layout(self, workspace, registry, ripgrep, rg_archive):
        _run(workspace, registry)
        version_dir = workspace.paths.tools_cache / "ripgrep" / "v14.0.0"
        assert (version_dir / "artifact" / RG_ASSET).read_bytes() == rg_archive
        assert (version_dir / "root" / "ripgrep-14.0.0-x86_64-unknown-linux-musl" / "rg").is_file()
        assert not [p for p in version_dir.parent.iterdir() if p.name.startswith(".")]

    def test_extras_linked(self, workspace, registry, ripgrep, write_manifest):
        ripgrep["ripgrep"]["extras"] = [
            {"source": "rg.1", "kind": "man"},
            {"source": "_rg", "kind": "completion", "shell": "zsh"},
        ]
        write_manifest(ripgrep)
        _, report, lockfile = _run(workspace, registry)
        assert report.all_ok
        share = workspace.paths.share_dir
        assert (share / "man" / "man1" / "rg.1").read_bytes() == b".TH RG 1"
        assert (share / "zsh" / "site-functions" / "_rg").read_bytes() == b"#compdef rg"
        assert len(lockfile.receipt("ripgrep").installed_extras) == 2

    def test_missing_binary_fails_without_receipt(self, workspace, registry, ripgrep, write_manifest):
        ripgrep["ripgrep"]["bin"] = ["rg", "not-in-archive"]
        write_manifest(ripgrep)
        _, report, lockfile = _run(workspace, registry)
        result = report.result("ripgrep")
        assert result.failed
        assert result.stage == Stage.LINK
        assert result.error_type == "MissingSource"
        assert lockfile.receipt("ripgrep") is None
        assert not os.path.lexists(workspace.paths.bin_dir / "rg")
        assert not (workspace.paths.tools_cache / "ripgrep" / "v14.0.0").exists()

    def test_backend_failure_records_nothing(self, workspace, registry, mock_backend, ripgrep):
        mock_backend.set_failure("fetch", "ripgrep", "connection reset")
        _, report, lockfile = _run(workspace, registry)
        result = report.result("ripgrep")
        assert result.failed
        assert result.stage == Stage.FETCH
        assert "connection reset" in result.error
        assert lockfile.receipt("ripgrep") is None

    def test_dry_run_changes_nothing(self, workspace, registry, mock_backend, ripgrep):
        plan, report, lockfile = _run(workspace, registry, dry_run=True)
        assert plan.get("ripgrep").action == ActionKind.INSTALL
        assert report.dry_run
        assert report.result("ripgrep").status == "skipped"
        assert not workspace.paths.lockfile.exists()
        assert mock_backend.calls("fetch") == []


class TestChecksumGate:
    def test_corrupted_download_fails(self, workspace, registry, ripgrep, rg_archive, write_manifest):
        corrupted = bytearray(rg_archive)
        corrupted[-1] ^= 0xFF
        ripgrep["ripgrep"]["checksum"] = _sha(bytes(corrupted))
        write_manifest(ripgrep)

        _, report, lockfile = _run(workspace, registry)
        result = report.result("ripgrep")
        assert result.error_type == "ChecksumMismatch"
        assert result.stage == Stage.VERIFY
        assert lockfile.receipt("ripgrep") is None

    def test_failed_reinstall_keeps_previous_receipt(
        self, workspace, registry, mock_backend, ripgrep, tarball, write_manifest,
    ):
        _run(workspace, registry)
        before = workspace.paths.lockfile.read_text()

        new_archive = tarball({"ripgrep-14.1.0/rg": b"ripgrep 14.1.0"})
        mock_backend.add_release(RG_PROJECT, "v14.1.0", {"ripgrep-14.1.0-x86_64-unknown-linux-musl.tar.gz": new_archive})
        ripgrep["ripgrep"].update({
            "version": "v14.1.0",
            "asset_filter": "linux-musl",
            "checksum": _sha(b"something else"),
        })
        write_manifest(ripgrep)

        plan, report, lockfile = _run(workspace, registry)
        assert plan.get("ripgrep").action == ActionKind.REINSTALL
        assert report.result("ripgrep").error_type == "ChecksumMismatch"
        assert lockfile.receipt("ripgrep").resolved_version == "v14.0.0"
        assert workspace.paths.lockfile.read_text() == before
        assert (workspace.paths.bin_dir / "rg").read_bytes() == b"ripgrep 14.0.0"


class TestVersions:
    def test_pin_change_reinstalls(self, workspace, registry, mock_backend, ripgrep, tarball, write_manifest):
        _run(workspace, registry)
        mock_backend.add_release(RG_PROJECT, "v14.1.0", {
            "ripgrep-14.1.0-x86_64-unknown-linux-musl.tar.gz": tarball({"ripgrep-14.1.0/rg": b"ripgrep 14.1.0"}),
        })
        ripgrep["ripgrep"].update({"version": "v14.1.0", "asset_filter": "linux-musl"})
        del ripgrep["ripgrep"]["checksum"]
        write_manifest(ripgrep)

        plan, report, lockfile = _run(workspace, registry)
        assert plan.get("ripgrep").action == ActionKind.REINSTALL
        assert report.all_ok
        assert lockfile.receipt("ripgrep").resolved_version == "v14.1.0"
        assert (workspace.paths.bin_dir / "rg").read_bytes() == b"ripgrep 14.1.0"

    def test_latest_not_updated_without_flag(self, workspace, registry, mock_backend, tarball, write_manifest):
        write_manifest({"bat": _latest_tool(mock_backend, tarball, "bat", "v1")})
        _run(workspace, registry)
        _latest_tool(mock_backend, tarball, "bat", "v2")

        plan = _plan(workspace, registry)
        assert plan.get("bat").action == ActionKind.NOOP
        assert mock_backend.calls("release") == ["bat"]

    def test_update_moves_to_newest(self, workspace, registry, mock_backend, tarball, write_manifest):
        write_manifest({"bat": _latest_tool(mock_backend, tarball, "bat", "v1")})
        _run(workspace, registry)
        _latest_tool(mock_backend, tarball, "bat", "v2")

        plan, report, lockfile = _run(workspace, registry, update=True)
        assert plan.get("bat").action == ActionKind.REINSTALL
        assert report.changed_tools == ["bat"]
        assert lockfile.receipt("bat").resolved_version == "v2"
        assert (workspace.paths.bin_dir / "bat").read_bytes() == b"v2"

    def test_update_when_current_is_noop(self, workspace, registry, mock_backend, tarball, write_manifest):
        write_manifest({"bat": _latest_tool(mock_backend, tarball, "bat", "v1")})
        _run(workspace, registry)
        plan = _plan(workspace, registry, update=True)
        assert plan.get("bat").action == ActionKind.NOOP
        assert "already at latest" in plan.get("bat").reason
        assert plan.changes == []

    def test_update_named_tools_only(self, workspace, registry, mock_backend, tarball, write_manifest):
        write_manifest({
            "bat": _latest_tool(mock_backend, tarball, "bat", "v1"),
            "fd": _latest_tool(mock_backend, tarball, "fd", "v1"),
        })
        _run(workspace, registry)
        _latest_tool(mock_backend, tarball, "bat", "v2")
        _latest_tool(mock_backend, tarball, "fd", "v2")

        plan, _, lockfile = _run(workspace, registry, update=True, tools=["fd"])
        assert plan.get("bat") is None
        assert lockfile.receipt("bat").resolved_version == "v1"
        assert lockfile.receipt("fd").resolved_version == "v2"

    def test_update_unknown_tool(self, workspace, registry, ripgrep):
        with pytest.raises(UnknownTool):
            _plan(workspace, registry, update=True, tools=["nope"])

    def test_self_updating_tool_is_verified(self, workspace, registry, mock_backend, tarball, write_manifest):
        write_manifest({"rustup": _latest_tool(mock_backend, tarball, "rustup", "1.27", self_update=True)})
        _run(workspace, registry)

        plan, report, lockfile = _run(workspace, registry, update=True)
        assert plan.get("rustup").action == ActionKind.VERIFY
        assert report.result("rustup").ok
        assert lockfile.receipt("rustup").resolved_version == "1.27"

    def test_failed_verify_records_status(self, workspace, registry, mock_backend, tarball, write_manifest):
        write_manifest({"rustup": _latest_tool(mock_backend, tarball, "rustup", "1.27", self_update=True)})
        _run(workspace, registry)
        artifact_dir = workspace.paths.tools_cache / "rustup" / "1.27" / "artifact"
        for path in artifact_dir.iterdir():
            path.write_bytes(b"tampered")

        _, report, lockfile = _run(workspace, registry)
        assert report.result("rustup").failed
        assert lockfile.receipt("rustup").status == ReceiptStatus.CHECKSUM_MISMATCH


class TestAmbiguity:
    def test_tied_assets_fail_planning(self, workspace, registry, mock_backend, tarball, write_manifest):
        mock_backend.add_release("rg", "v14", {
            "rg-14-x86_64-unknown-linux-gnu.tar.gz": tarball({"rg": b"gnu"}),
            "rg-14-x86_64-unknown-linux-musl.tar.gz": tarball({"rg": b"musl"}),
        })
        write_manifest({
            "rg": {
                "installer": "github", "project": "rg", "bin": ["rg"],
                "asset_filters": [r"^rg-.*-windows.*$", r"^rg-.*-linux.*$"],
            },
            "bat": _latest_tool(mock_backend, tarball, "bat", "v1"),
        })

        plan = _plan(workspace, registry)
        action = plan.get("rg")
        assert isinstance(action.error, AmbiguousAsset)
        assert action.stage == Stage.SELECT

        report = Reconciler(workspace, registry).execute(plan)
        assert report.result("rg").error_type == "AmbiguousAsset"
        assert report.result("bat").ok
        assert report.status == "partial"


class TestOrphans:
    def test_removed_tool_needs_cleanup(self, workspace, registry, mock_backend, tarball, write_manifest):
        write_manifest({
            "bat": _latest_tool(mock_backend, tarball, "bat", "v1"),
            "fd": _latest_tool(mock_backend, tarball, "fd", "v1"),
        })
        _run(workspace, registry)
        write_manifest({"bat": _latest_tool(mock_backend, tarball, "bat", "v1")})

        plan = _plan(workspace, registry)
        assert all(a.action != ActionKind.REMOVE for a in plan.actions)
        assert _status(workspace, registry)[(EntryKind.TOOL, "fd")].state == EntryState.ORPHANED

        plan, report, lockfile = _run(workspace, registry, cleanup=True)
        assert plan.get("fd").action == ActionKind.REMOVE
        assert report.all_ok
        assert lockfile.receipt("fd") is None
        assert lockfile.receipt("bat") is not None
        assert not os.path.lexists(workspace.paths.bin_dir / "fd")
        assert not (workspace.paths.tools_cache / "fd").exists()


class TestDotfiles:
    def test_linked_and_recorded(self, workspace, registry, write_dotfile):
        write_dotfile("git/config", "[user]\n")
        _, report, lockfile = _run(workspace, registry)
        target = workspace.target_root / "git" / "config"
        assert report.all_ok
        assert target.is_symlink()
        assert lockfile.config_symlink(target) is not None
        assert _plan(workspace, registry).changes == []

    def test_drift_reported_not_overwritten(self, workspace, registry, write_dotfile):
        write_dotfile("git/config", "[user]\n")
        _run(workspace, registry)
        target = workspace.target_root / "git" / "config"
        target.unlink()
        target.write_text("local edit")

        assert _status(workspace, registry)[(EntryKind.DOTFILE, str(target))].state == EntryState.DRIFTED

        plan, report, _ = _run(workspace, registry)
        assert plan.get(str(target), EntryKind.DOTFILE).action == ActionKind.DRIFTED
        assert report.result(str(target), EntryKind.DOTFILE).status == "skipped"
        assert target.read_text() == "local edit"

        _, report, _ = _run(workspace, registry, repair=True)
        assert report.result(str(target), EntryKind.DOTFILE).ok
        assert target.is_symlink()

    def test_removed_dotfile_unlinked_on_cleanup(self, workspace, registry, write_dotfile):
        source = write_dotfile("starship.toml", "")
        _run(workspace, registry)
        target = workspace.target_root / "starship.toml"
        source.unlink()

        plan = _plan(workspace, registry)
        assert plan.get(str(target), EntryKind.DOTFILE) is None

        _, report, lockfile = _run(workspace, registry, cleanup=True)
        assert report.all_ok
        assert lockfile.config_symlink(target) is None
        assert not os.path.lexists(target)


class TestRepair:
    def test_missing_link_reinstalled(self, workspace, registry, ripgrep):
        _run(workspace, registry)
        (workspace.paths.bin_dir / "rg").unlink()

        status = _status(workspace, registry)
        assert status[(EntryKind.TOOL, "ripgrep")].state == EntryState.DRIFTED
        assert _plan(workspace, registry).get("ripgrep").action == ActionKind.NOOP

        plan, report, _ = _run(workspace, registry, repair=True)
        assert plan.get("ripgrep").action == ActionKind.REINSTALL
        assert report.all_ok
        assert (workspace.paths.bin_dir / "rg").is_symlink()
        assert _status(workspace, registry)[(EntryKind.TOOL, "ripgrep")].state == EntryState.OK


class TestConflicts:
    def test_two_tools_claim_same_link(self, workspace, registry, mock_backend, tarball, write_manifest):
        write_manifest({
            "a": _latest_tool(mock_backend, tarball, "a", "v1", bin=[{"source": "a", "link": "tool"}]),
            "b": _latest_tool(mock_backend, tarball, "b", "v1", bin=[{"source": "b", "link": "tool"}]),
        })
        plan, report, lockfile = _run(workspace, registry)
        assert isinstance(plan.get("b").error, PathConflict)
        assert plan.get("b").stage == Stage.PLAN
        assert report.result("a").ok
        assert report.result("b").error_type == "PathConflict"
        assert lockfile.receipt("b") is None

    def test_new_tool_conflicts_with_installed_one(self, workspace, registry, mock_backend, tarball, write_manifest):
        a = _latest_tool(mock_backend, tarball, "a", "v1", bin=[{"source": "a", "link": "tool"}])
        write_manifest({"a": a})
        _run(workspace, registry)
        write_manifest({"a": a, "z": _latest_tool(mock_backend, tarball, "z", "v1", bin=[{"source": "z", "link": "tool"}])})
        plan = _plan(workspace, registry)
        assert isinstance(plan.get("z").error, PathConflict)
        assert "tool 'a'" in str(plan.get("z").error)

    def test_failed_reinstall_keeps_old_links_claimed(
        self, workspace, registry, mock_backend, tarball, write_manifest,
    ):
        """A tool whose update fails still owns its old links in the same pass."""
        a = _latest_tool(mock_backend, tarball, "a", "v1", bin=[{"source": "a", "link": "tool"}])
        write_manifest({"a": a})
        _run(workspace, registry)

        _latest_tool(mock_backend, tarball, "a", "v2")
        write_manifest({
            "a": {**a, "version": "v2", "checksum": "sha256:" + "0" * 64, "bin": [{"source": "a", "link": "tool2"}]},
            "z": _latest_tool(mock_backend, tarball, "z", "v1", bin=[{"source": "z", "link": "tool"}]),
        })
        plan, report, lockfile = _run(workspace, registry)

        assert plan.get("a").action == ActionKind.REINSTALL
        assert isinstance(plan.get("z").error, PathConflict)
        assert "tool 'a'" in str(plan.get("z").error)
        assert report.result("a").error_type == "ChecksumMismatch"
        assert lockfile.receipt("a").resolved_version == "v1"
        assert lockfile.receipt("z") is None
        assert (workspace.paths.bin_dir / "tool").read_bytes() == b"v1"

    def test_fold_refuses_receipt_claiming_held_path(self, workspace, registry):
        bin_dir = workspace.paths.bin_dir
        lockfile = Lockfile(tool_receipts=[Receipt(
            name="a", installer=InstallerKind.GITHUB, manifest_version="latest", resolved_version="v1",
            installed_binaries=[InstalledLink(link=bin_dir / "tool", source=Path("/cache/a/v1/a"))],
        )])
        result = ActionResult(
            kind=EntryKind.TOOL, action=ActionKind.INSTALL, name="z",
            receipt=Receipt(
                name="z", installer=InstallerKind.GITHUB, manifest_version="latest", resolved_version="v1",
                installed_binaries=[InstalledLink(link=bin_dir / "tool", source=Path("/cache/z/v1/z"))],
            ),
        )

        folded = Reconciler(workspace, registry)._fold(lockfile, result)
        assert folded.failed
        assert folded.error_type == "PathConflict"
        assert folded.stage == Stage.LINK
        assert lockfile.receipt("z") is None
        assert lockfile.find_conflicts() == []


class TestLinkPlacement:
    def test_occupied_link_leaves_previous_version_linked(
        self, workspace, registry, mock_backend, tarball, write_manifest,
    ):
        """A user file in the way fails the update before anything is re-pointed."""
        x = _latest_tool(mock_backend, tarball, "x", "v1")
        write_manifest({"x": x})
        _run(workspace, registry)
        (workspace.paths.bin_dir / "y").write_text("mine")

        mock_backend.add_release("x", "v2", {"x-v2-linux-x86_64.tar.gz": tarball({"x": b"v2", "y": b"y v2"})})
        write_manifest({"x": {**x, "version": "v2", "bin": ["x", "y"]}})
        _, report, lockfile = _run(workspace, registry)

        result = report.result("x")
        assert result.failed
        assert result.stage == Stage.LINK
        assert "not a symlink" in result.error
        assert lockfile.receipt("x").resolved_version == "v1"
        assert (workspace.paths.bin_dir / "x").read_bytes() == b"v1"
        assert (workspace.paths.bin_dir / "y").read_text() == "mine"
        assert not Reconciler(workspace, registry).version_dir("x", "v2").exists()

        entry = _status(workspace, registry)[(EntryKind.TOOL, "x")]
        assert entry.state == EntryState.OUTDATED


class TestFailFast:
    def test_planning_failure_cancels_the_rest(self, workspace, registry, mock_backend, tarball, write_manifest):
        write_manifest({
            "a": _latest_tool(mock_backend, tarball, "a", "v1"),
            "b": _latest_tool(mock_backend, tarball, "b", "v1"),
        })
        mock_backend.set_failure("release", "a", "rate limited")
        _, report, lockfile = _run(workspace, registry, fail_fast=True)
        assert report.result("a").failed
        assert report.result("a").stage == Stage.RELEASE
        assert report.result("b").status == "cancelled"
        assert lockfile.tool_receipts == []

    def test_without_fail_fast_others_continue(self, workspace, registry, mock_backend, tarball, write_manifest):
        write_manifest({
            "a": _latest_tool(mock_backend, tarball, "a", "v1"),
            "b": _latest_tool(mock_backend, tarball, "b", "v1"),
        })
        mock_backend.set_failure("materialize", "a")
        _, report, lockfile = _run(workspace, registry)
        assert report.result("a").stage == Stage.MATERIALIZE
        assert report.result("b").ok
        assert [r.name for r in lockfile.tool_receipts] == ["b"]


class TestStatusAndPrune:
    def test_not_installed_and_outdated(self, workspace, registry, mock_backend, ripgrep, tarball, write_manifest):
        write_manifest(ripgrep)
        status = _status(workspace, registry)
        assert status[(EntryKind.TOOL, "ripgrep")].state == EntryState.NOT_INSTALLED

        _run(workspace, registry)
        ripgrep["ripgrep"]["version"] = "v14.1.0"
        write_manifest(ripgrep)
        entry = _status(workspace, registry)[(EntryKind.TOOL, "ripgrep")]
        assert entry.state == EntryState.OUTDATED
        assert entry.version == "v14.0.0"

    def test_status_is_read_only(self, workspace, registry, ripgrep):
        _status(workspace, registry)
        assert not workspace.paths.lockfile.exists()
        assert not workspace.paths.bin_dir.exists()

    def test_prune_old_versions_and_dangling_links(self, workspace, registry, mock_backend, tarball, write_manifest):
        write_manifest({"bat": _latest_tool(mock_backend, tarball, "bat", "v1")})
        _run(workspace, registry)
        _latest_tool(mock_backend, tarball, "bat", "v2")
        _run(workspace, registry, update=True)
        dangling = workspace.paths.bin_dir / "stray"
        dangling.symlink_to(workspace.paths.tools_cache / "gone")

        reconciler = Reconciler(workspace, registry)
        lockfile = reconciler.store.load()
        old = workspace.paths.tools_cache / "bat" / "v1"

        assert set(reconciler.prune(lockfile, dry_run=True)) == {old, dangling}
        assert old.exists()

        reconciler.prune(lockfile)
        assert not old.exists()
        assert not os.path.lexists(dangling)
        assert (workspace.paths.tools_cache / "bat" / "v2").exists()
