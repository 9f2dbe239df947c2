"""
Dotfile linker — mirror a profile's config tree as symlinks.

Every file under ``<profile>/config/`` becomes a symlink at the same
relative path under the target root (``$XDG_CONFIG_HOME`` by default).
Files matched by ``.dwsignore`` or the built-in ignore set are skipped.

Links are created atomically: a symlink is made at a hidden sibling
name and renamed over the target, so readers never observe a missing
or half-made entry.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path, PurePosixPath

from dws.core.errors import FilesystemError, MissingSource
from dws.core.models.lockfile import ConfigSymlinkEntry
from dws.core.models.tool import ConfigSymlinkSpec

logger = logging.getLogger(__name__)

IGNORE_FILE = ".dwsignore"
BUILTIN_IGNORES = (".git", ".DS_Store", IGNORE_FILE)


class LinkState(StrEnum):
    MISSING = "missing"
    OK = "ok"
    WRONG_TARGET = "wrong_target"
    NOT_SYMLINK = "not_symlink"
    MISSING_SOURCE = "missing_source"


class LinkOutcome(StrEnum):
    CREATED = "created"
    UNCHANGED = "unchanged"
    REPLACED = "replaced"
    DRIFTED = "drifted"


# ── Ignore rules ────────────────────────────────────────────────


@dataclass(frozen=True)
class IgnoreRule:
    pattern: str
    dir_only: bool = False
    anchored: bool = False

    @classmethod
    def parse(cls, line: str) -> IgnoreRule | None:
        text = line.strip()
        if not text or text.startswith("#"):
            return None
        dir_only = text.endswith("/")
        text = text.rstrip("/")
        anchored = "/" in text
        return cls(pattern=text.lstrip("/"), dir_only=dir_only, anchored=anchored)

    def matches(self, relative: PurePosixPath, is_dir: bool) -> bool:
        if self.dir_only and not is_dir:
            return False
        if self.anchored:
            return fnmatch.fnmatchcase(relative.as_posix(), self.pattern)
        return fnmatch.fnmatchcase(relative.name, self.pattern)


@dataclass
class IgnoreSet:
    rules: list[IgnoreRule] = field(default_factory=list)

    @classmethod
    def load(cls, source_dir: Path, extra: list[str] | None = None) -> IgnoreSet:
        """Built-in ignores, plus ``<source_dir>/.dwsignore``, plus ``extra``."""
        lines = list(BUILTIN_IGNORES)
        ignore_file = source_dir / IGNORE_FILE
        if ignore_file.is_file():
            lines.extend(ignore_file.read_text(encoding="utf-8").splitlines())
        lines.extend(extra or [])
        rules = [rule for rule in (IgnoreRule.parse(line) for line in lines) if rule]
        return cls(rules=rules)

    def ignored(self, relative: PurePosixPath, is_dir: bool) -> bool:
        return any(rule.matches(relative, is_dir) for rule in self.rules)


# ── Discovery ───────────────────────────────────────────────────


def discover(
    source_dir: Path,
    target_root: Path,
    ignore: IgnoreSet | None = None,
) -> list[ConfigSymlinkSpec]:
    """Map every non-ignored file under ``source_dir`` to its target.

    Returns:
        Specs sorted by target path. Empty if ``source_dir`` is absent.
    """
    if not source_dir.is_dir():
        logger.debug("No dotfile directory at %s", source_dir)
        return []

    source_dir = source_dir.absolute()
    ignore = ignore if ignore is not None else IgnoreSet.load(source_dir)
    specs: list[ConfigSymlinkSpec] = []

    for dirpath, dirnames, filenames in os.walk(source_dir):
        base = Path(dirpath)
        rel_base = PurePosixPath(base.relative_to(source_dir).as_posix())
        kept = [d for d in dirnames if not ignore.ignored(rel_base / d, is_dir=True)]
        # Symlinked directories are linked as a unit, not descended into.
        linked_dirs = [d for d in kept if (base / d).is_symlink()]
        dirnames[:] = sorted(d for d in kept if d not in linked_dirs)

        for name in sorted(filenames + linked_dirs):
            relative = rel_base / name
            if ignore.ignored(relative, is_dir=False):
                continue
            specs.append(ConfigSymlinkSpec(
                source=source_dir.joinpath(*relative.parts),
                target=target_root.joinpath(*relative.parts),
            ))

    specs.sort(key=lambda s: str(s.target))
    logger.debug("Discovered %d dotfile(s) under %s", len(specs), source_dir)
    return specs


# ── Inspection and mutation ─────────────────────────────────────


def _points_to(target: Path, source: Path) -> bool:
    try:
        current = Path(os.readlink(target))
    except OSError:
        return False
    if not current.is_absolute():
        current = target.parent / current
    return current == source or os.path.realpath(current) == os.path.realpath(source)


def inspect(spec: ConfigSymlinkSpec | ConfigSymlinkEntry) -> LinkState:
    """Classify the live state of one dotfile target. Read-only."""
    target = spec.target
    if not os.path.lexists(spec.source):
        return LinkState.MISSING_SOURCE
    if target.is_symlink():
        return LinkState.OK if _points_to(target, spec.source) else LinkState.WRONG_TARGET
    if os.path.lexists(target):
        return LinkState.NOT_SYMLINK
    return LinkState.MISSING


def atomic_symlink(source: Path, target: Path) -> None:
    """Point ``target`` at ``source`` via rename of a temporary sibling."""
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp = target.with_name(f".{target.name}.dws-{uuid.uuid4().hex[:8]}")
    os.symlink(source, tmp)
    try:
        os.replace(tmp, target)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise


def apply(spec: ConfigSymlinkSpec, force: bool = False) -> LinkOutcome:
    """Make ``spec.target`` a symlink to ``spec.source``.

    Args:
        spec: The mapping to enforce.
        force: Replace a wrong symlink or a regular file in the way.
            Directories are only replaced when empty.

    Returns:
        What happened. ``DRIFTED`` means something else occupies the
        target and it was left alone.

    Raises:
        MissingSource: the source file no longer exists.
        FilesystemError: the target cannot be replaced.
    """
    state = inspect(spec)

    if state == LinkState.OK:
        return LinkOutcome.UNCHANGED
    if state == LinkState.MISSING_SOURCE:
        raise MissingSource(f"Dotfile source {spec.source} does not exist")
    if state == LinkState.MISSING:
        _link(spec)
        logger.info("Linked %s → %s", spec.target, spec.source)
        return LinkOutcome.CREATED

    if not force:
        logger.info("Leaving drifted dotfile %s in place (%s)", spec.target, state.value)
        return LinkOutcome.DRIFTED

    target = spec.target
    if target.is_dir() and not target.is_symlink():
        try:
            target.rmdir()
        except OSError as e:
            raise FilesystemError(f"Refusing to replace non-empty directory {target}") from e
    _link(spec)
    logger.info("Relinked %s → %s (was %s)", spec.target, spec.source, state.value)
    return LinkOutcome.REPLACED


def _link(spec: ConfigSymlinkSpec) -> None:
    try:
        atomic_symlink(spec.source, spec.target)
    except OSError as e:
        raise FilesystemError(f"Cannot link {spec.target}: {e}") from e


def remove(entry: ConfigSymlinkEntry | ConfigSymlinkSpec) -> bool:
    """Remove a dotfile link, but only if it still points at our source.

    Returns:
        True if a link was removed.
    """
    target = entry.target
    if not target.is_symlink():
        return False
    if not _points_to(target, entry.source):
        logger.info("Not removing %s: it no longer points at %s", target, entry.source)
        return False
    try:
        target.unlink()
    except OSError as e:
        raise FilesystemError(f"Cannot remove {target}: {e}") from e
    logger.info("Unlinked %s", target)
    return True
