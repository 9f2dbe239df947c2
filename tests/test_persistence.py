"""
Tests for persistence — state store, workspace lease and run history.
"""

import json
import os
import socket
from pathlib import Path

import pytest

from dws.core.errors import CorruptLockfile, LockContentionError
from dws.core.models.lockfile import InstalledLink, Lockfile, Receipt
from dws.core.models.tool import InstallerKind
from dws.core.persistence.history import HistoryEntry, HistoryWriter
from dws.core.persistence.lease import WorkspaceLease
from dws.core.persistence.state_file import StateStore, serialize

NOW = "2026-01-01T00:00:00+00:00"


def _lockfile() -> Lockfile:
    lockfile = Lockfile()
    lockfile.upsert_receipt(Receipt(
        name="bat",
        installer=InstallerKind.GITHUB,
        manifest_version="latest",
        resolved_version="v0.24.0",
        installed_binaries=[InstalledLink(link=Path("/s/bin/bat"), source=Path("/c/bat/v0.24.0/root/bat"))],
        installed_at=NOW,
    ))
    return lockfile


class TestStateStore:
    def test_missing_file_is_empty(self, tmp_path: Path):
        lockfile = StateStore(tmp_path / "dws.lock").load()
        assert lockfile.tool_receipts == []

    def test_save_and_load(self, tmp_path: Path):
        store = StateStore(tmp_path / "state" / "dws.lock")
        store.save(_lockfile(), now=NOW)
        loaded = store.load()
        assert loaded.receipt("bat").resolved_version == "v0.24.0"
        assert loaded.metadata.generated_at == NOW

    def test_save_is_readable_json(self, tmp_path: Path):
        path = tmp_path / "dws.lock"
        StateStore(path).save(_lockfile(), now=NOW)
        data = json.loads(path.read_text())
        assert data["version"] == 1
        assert data["tool_receipts"][0]["name"] == "bat"

    def test_same_content_same_bytes(self, tmp_path: Path):
        a, b = tmp_path / "a.lock", tmp_path / "b.lock"
        StateStore(a).save(_lockfile(), now=NOW)
        StateStore(b).save(_lockfile(), now=NOW)
        assert a.read_bytes() == b.read_bytes()
        assert a.read_text() == serialize(StateStore(a).load())

    def test_no_temp_files_left(self, tmp_path: Path):
        StateStore(tmp_path / "dws.lock").save(_lockfile(), now=NOW)
        assert list(tmp_path.glob(".dws_*")) == []

    def test_corrupt_json_raises(self, tmp_path: Path):
        path = tmp_path / "dws.lock"
        path.write_text("not json {{{")
        with pytest.raises(CorruptLockfile):
            StateStore(path).load()

    def test_non_object_raises(self, tmp_path: Path):
        path = tmp_path / "dws.lock"
        path.write_text("[]")
        with pytest.raises(CorruptLockfile):
            StateStore(path).load()

    def test_schema_invalid_raises(self, tmp_path: Path):
        path = tmp_path / "dws.lock"
        path.write_text(json.dumps({"version": 1, "tool_receipts": [{"name": "x"}]}))
        with pytest.raises(CorruptLockfile):
            StateStore(path).load()

    def test_newer_schema_raises(self, tmp_path: Path):
        path = tmp_path / "dws.lock"
        path.write_text(json.dumps({"version": 99}))
        with pytest.raises(CorruptLockfile, match="schema version 99"):
            StateStore(path).load()

    def test_corrupt_file_is_not_overwritten_by_load(self, tmp_path: Path):
        path = tmp_path / "dws.lock"
        path.write_text("garbage")
        with pytest.raises(CorruptLockfile):
            StateStore(path).load()
        assert path.read_text() == "garbage"

    def test_save_requires_held_lease(self, tmp_path: Path):
        lease = WorkspaceLease(tmp_path / "dws.lease")
        store = StateStore(tmp_path / "dws.lock", lease=lease)
        with pytest.raises(RuntimeError):
            store.save(Lockfile())
        with lease:
            store.save(Lockfile())
        assert (tmp_path / "dws.lock").is_file()


class TestWorkspaceLease:
    def test_acquire_and_release(self, tmp_path: Path):
        lease = WorkspaceLease(tmp_path / "dws.lease")
        with lease:
            assert lease.held
            holder = lease.read_holder()
            assert holder["pid"] == os.getpid()
            assert holder["host"] == socket.gethostname()
        assert not lease.held
        assert not (tmp_path / "dws.lease").exists()

    def test_contention_times_out(self, tmp_path: Path):
        path = tmp_path / "dws.lease"
        with WorkspaceLease(path):
            other = WorkspaceLease(path, timeout=0.15, poll_interval=0.05)
            with pytest.raises(LockContentionError, match=str(os.getpid())):
                other.acquire()
            assert not other.held

    def test_released_lease_can_be_retaken(self, tmp_path: Path):
        path = tmp_path / "dws.lease"
        with WorkspaceLease(path):
            pass
        with WorkspaceLease(path, timeout=0.1) as lease:
            assert lease.held

    def test_stale_lease_is_broken(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        path = tmp_path / "dws.lease"
        path.write_text(json.dumps({"pid": 999999, "host": socket.gethostname(), "acquired_at": NOW}))
        monkeypatch.setattr("dws.core.persistence.lease._pid_alive", lambda pid: False)
        with WorkspaceLease(path, timeout=0.1) as lease:
            assert lease.held
            assert lease.read_holder()["pid"] == os.getpid()

    def test_foreign_host_lease_is_not_broken(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        path = tmp_path / "dws.lease"
        path.write_text(json.dumps({"pid": 999999, "host": "elsewhere", "acquired_at": NOW}))
        monkeypatch.setattr("dws.core.persistence.lease._pid_alive", lambda pid: False)
        with pytest.raises(LockContentionError):
            WorkspaceLease(path, timeout=0.1).acquire()

    def test_released_on_exception(self, tmp_path: Path):
        path = tmp_path / "dws.lease"
        with pytest.raises(ValueError):
            with WorkspaceLease(path):
                raise ValueError("boom")
        assert not path.exists()


class TestHistory:
    def test_write_and_read(self, tmp_path: Path):
        writer = HistoryWriter(tmp_path / "history.ndjson")
        writer.write(HistoryEntry(operation="sync", status="ok", actions_total=2))
        writer.write(HistoryEntry(operation="update", status="partial", tools_changed=["rg"]))
        entries = writer.read_all()
        assert [e.operation for e in entries] == ["sync", "update"]
        assert entries[1].tools_changed == ["rg"]

    def test_append_only(self, tmp_path: Path):
        path = tmp_path / "history.ndjson"
        writer = HistoryWriter(path)
        for i in range(3):
            writer.write(HistoryEntry(operation="sync", actions_total=i))
        assert len(path.read_text().strip().splitlines()) == 3

    def test_read_recent(self, tmp_path: Path):
        writer = HistoryWriter(tmp_path / "history.ndjson")
        for i in range(5):
            writer.write(HistoryEntry(operation="sync", actions_total=i))
        assert [e.actions_total for e in writer.read_recent(2)] == [3, 4]

    def test_corrupt_lines_skipped(self, tmp_path: Path):
        path = tmp_path / "history.ndjson"
        writer = HistoryWriter(path)
        writer.write(HistoryEntry(operation="sync"))
        with path.open("a") as f:
            f.write("not json\n")
        writer.write(HistoryEntry(operation="cleanup"))
        assert [e.operation for e in writer.read_all()] == ["sync", "cleanup"]

    def test_missing_file(self, tmp_path: Path):
        assert HistoryWriter(tmp_path / "nope.ndjson").read_all() == []
