"""
Error taxonomy — every failure the engine can surface.

Two families, with different propagation:

    Batch errors  → abort the whole invocation before any action runs
                    (ManifestError, LockContentionError, CorruptLockfile,
                    ConfigError).
    Action errors → caught by the reconciler and recorded per entry in
                    the Report (SelectionError, IntegrityError,
                    FilesystemError, BackendError).
"""

from __future__ import annotations

from pathlib import Path


class DwsError(Exception):
    """Base class for all dws errors."""


# ── Configuration ───────────────────────────────────────────────


class ConfigError(DwsError):
    """Raised when workspace configuration is unreadable or invalid."""


# ── Manifest (always fatal to the whole resolution) ─────────────


class ManifestError(DwsError):
    """Malformed or ambiguous tool declarations."""

    def __init__(self, message: str, *, tool: str | None = None, source: Path | None = None):
        self.tool = tool
        self.source = source
        location = ""
        if source is not None:
            location = f"{source}"
            if tool:
                location += f" ({tool})"
            location += ": "
        elif tool:
            location = f"{tool}: "
        super().__init__(f"{location}{message}")
        self.message = message


class DuplicateInLayer(ManifestError):
    """The same tool name is declared twice within one layer."""


class InvalidFilter(ManifestError):
    """An asset filter regex does not compile."""


class MissingRequiredField(ManifestError):
    """An installer-specific required field is absent."""


class InvalidChecksum(ManifestError):
    """A declared checksum is not ``sha256:<64 hex>``."""


class ChecksumRequired(ManifestError):
    """Policy demands a checksum and none was declared."""


class UnknownTool(ManifestError):
    """A tool was requested by name but is not declared."""


# ── Selection (fatal to one tool's action) ──────────────────────


class SelectionError(DwsError):
    """No single release asset could be chosen."""


class NoMatchingAsset(SelectionError):
    def __init__(self, filters: list[str], candidates: list[str]):
        self.filters = list(filters)
        self.candidates = list(candidates)
        super().__init__(
            f"No release asset matched filters {self.filters} "
            f"(candidates: {', '.join(self.candidates) or 'none'})"
        )


class AmbiguousAsset(SelectionError):
    def __init__(self, pattern: str, tied: list[str]):
        self.pattern = pattern
        self.tied = sorted(tied)
        super().__init__(
            f"Asset filter '{pattern}' matched multiple assets with equal ranking: "
            f"{', '.join(self.tied)}"
        )


# ── Integrity (fatal to one action, previous state preserved) ───


class IntegrityError(DwsError):
    """Downloaded content failed verification."""


class ChecksumMismatch(IntegrityError):
    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Checksum mismatch: expected {expected}, got {actual}")


# ── Filesystem (fatal to one action) ────────────────────────────


class FilesystemError(DwsError):
    """Permission problems, path conflicts, missing files."""


class PathConflict(FilesystemError):
    def __init__(self, path: Path, owner: str, claimant: str):
        self.path = path
        self.owner = owner
        self.claimant = claimant
        super().__init__(f"Path {path} is claimed by both {owner} and {claimant}")


class MissingSource(FilesystemError):
    """A declared binary or extra is not present in the installed artifact."""


# ── Backends ────────────────────────────────────────────────────


class BackendError(DwsError):
    """An installer backend could not fetch or install an artifact."""


class Cancelled(DwsError):
    """The pass was cancelled before this action could finish."""


# ── Whole-invocation ────────────────────────────────────────────


class LockContentionError(DwsError):
    """Another dws process holds the workspace lease."""


class CorruptLockfile(DwsError):
    """The persisted lockfile is unreadable or invalid."""
