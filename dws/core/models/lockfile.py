"""
Lockfile — the record of what is actually installed.

Serialized to ``$XDG_STATE_HOME/dws/dws.lock`` and loaded at the start
of every reconciliation pass. The reconciler is its only writer; the
state store is the only code path that persists it.

Every filesystem path the lockfile claims (dotfile targets, binary
links, extra links) is unique across the whole document. A document
that violates this is refused on load.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import ClassVar

from pydantic import BaseModel, Field, model_validator

from dws import __version__
from dws.core.models.tool import InstallerKind


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class ReceiptStatus(StrEnum):
    OK = "ok"
    CHECKSUM_MISMATCH = "checksum_mismatch"
    MISSING_SOURCE = "missing_source"
    DRIFTED = "drifted"


class InstalledLink(BaseModel):
    """A symlink dws created: ``link`` → ``source``."""

    link: Path
    source: Path


class Receipt(BaseModel):
    """Persisted record of one installed tool."""

    name: str
    installer: InstallerKind
    manifest_version: str
    resolved_version: str
    asset_locator: str = ""
    checksum: str = ""
    installed_binaries: list[InstalledLink] = Field(default_factory=list)
    installed_extras: list[InstalledLink] = Field(default_factory=list)
    self_update: bool = False
    status: ReceiptStatus = ReceiptStatus.OK
    installed_at: str = Field(default_factory=_now_iso)

    def links(self) -> list[InstalledLink]:
        return [*self.installed_binaries, *self.installed_extras]

    def claimed_paths(self) -> list[Path]:
        return [entry.link for entry in self.links()]


class ConfigSymlinkEntry(BaseModel):
    """A dotfile symlink dws created."""

    source: Path
    target: Path


class LockMetadata(BaseModel):
    generated_at: str = Field(default_factory=_now_iso)
    engine_version: str = __version__


class Lockfile(BaseModel):
    """Root document — one per workspace state directory."""

    SCHEMA_VERSION: ClassVar[int] = 1

    # ── Schema ───────────────────────────────────────────────────
    version: int = SCHEMA_VERSION

    # ── Metadata ─────────────────────────────────────────────────
    metadata: LockMetadata = Field(default_factory=LockMetadata)

    # ── Entries ──────────────────────────────────────────────────
    config_symlinks: list[ConfigSymlinkEntry] = Field(default_factory=list)
    tool_receipts: list[Receipt] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_claims(self) -> Lockfile:
        names = [r.name for r in self.tool_receipts]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(f"duplicate tool receipts: {', '.join(dupes)}")
        conflicts = self.find_conflicts()
        if conflicts:
            raise ValueError("paths claimed more than once: " + ", ".join(conflicts))
        return self

    # ── Lookups ──────────────────────────────────────────────────

    def receipt(self, name: str) -> Receipt | None:
        for receipt in self.tool_receipts:
            if receipt.name == name:
                return receipt
        return None

    def config_symlink(self, target: Path) -> ConfigSymlinkEntry | None:
        for entry in self.config_symlinks:
            if entry.target == target:
                return entry
        return None

    def claims(self) -> dict[Path, str]:
        """Every claimed path mapped to a label of its owner."""
        owners: dict[Path, str] = {}
        for entry in self.config_symlinks:
            owners.setdefault(entry.target, f"dotfile {entry.source}")
        for receipt in self.tool_receipts:
            for path in receipt.claimed_paths():
                owners.setdefault(path, f"tool '{receipt.name}'")
        return owners

    def find_conflicts(self) -> list[str]:
        seen: set[Path] = set()
        conflicts: list[str] = []
        paths = [e.target for e in self.config_symlinks]
        for receipt in self.tool_receipts:
            paths.extend(receipt.claimed_paths())
        for path in paths:
            if path in seen:
                conflicts.append(str(path))
            seen.add(path)
        return conflicts

    # ── Mutation (reconciler only) ───────────────────────────────

    def upsert_receipt(self, receipt: Receipt) -> None:
        self.tool_receipts = [r for r in self.tool_receipts if r.name != receipt.name]
        self.tool_receipts.append(receipt)
        self.tool_receipts.sort(key=lambda r: r.name)

    def remove_receipt(self, name: str) -> Receipt | None:
        existing = self.receipt(name)
        if existing is not None:
            self.tool_receipts = [r for r in self.tool_receipts if r.name != name]
        return existing

    def set_receipt_status(self, name: str, status: ReceiptStatus) -> None:
        receipt = self.receipt(name)
        if receipt is not None:
            receipt.status = status

    def upsert_config_symlink(self, entry: ConfigSymlinkEntry) -> None:
        self.config_symlinks = [e for e in self.config_symlinks if e.target != entry.target]
        self.config_symlinks.append(entry)
        self.config_symlinks.sort(key=lambda e: str(e.target))

    def remove_config_symlink(self, target: Path) -> None:
        self.config_symlinks = [e for e in self.config_symlinks if e.target != target]

    def touch(self, now: str | None = None) -> None:
        """Stamp generation metadata."""
        self.metadata.generated_at = now or _now_iso()
        self.metadata.engine_version = __version__
