"""
Archive materialization — unpack release assets into the tool cache.

Cache layout per installed version::

    cache/tools/<tool>/<version>/
        artifact/<asset filename>   # the verified download, kept for re-hashing
        root/                       # unpacked contents, binaries resolved here

Unpacking happens in a hidden staging directory next to the final one
and is published with a rename, so a failed unpack never disturbs an
already-installed version.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import tarfile
import tempfile
import zipfile
from pathlib import Path, PurePosixPath

from dws.core.errors import FilesystemError, ManifestError, MissingSource
from dws.core.models.tool import ExtraKind, ToolExtra

logger = logging.getLogger(__name__)

ARTIFACT_DIR = "artifact"
ROOT_DIR = "root"

COMPLETION_DIRS = {
    "zsh": ("zsh", "site-functions"),
    "bash": ("bash-completion", "completions"),
    "fish": ("fish", "vendor_completions.d"),
}

_TAR_SUFFIXES = {
    ".tar.gz": "r:gz",
    ".tgz": "r:gz",
    ".tar.xz": "r:xz",
    ".txz": "r:xz",
    ".tar.bz2": "r:bz2",
    ".tar": "r:",
}


def sanitize_component(value: str) -> str:
    """Make a tool name or version safe as a single path component."""
    cleaned = "".join(
        ch if ch.isascii() and (ch.isalnum() or ch in ".-_") else "-" for ch in value
    )
    if not cleaned.strip("-."):
        return "default"
    return cleaned


def version_dir(cache_root: Path, tool: str, version: str) -> Path:
    return cache_root / sanitize_component(tool) / sanitize_component(version)


def archive_mode(filename: str) -> str | None:
    """tarfile open mode for a filename, or None if it is not a tarball."""
    lowered = filename.lower()
    for suffix, mode in _TAR_SUFFIXES.items():
        if lowered.endswith(suffix):
            return mode
    return None


def extract(archive_path: Path, dest: Path) -> None:
    """Unpack an asset into ``dest``.

    tar (gz/xz/bz2/plain) and zip archives are unpacked; any other file
    is copied in as-is and marked executable.

    Raises:
        FilesystemError: the archive is unreadable or contains unsafe paths.
    """
    dest.mkdir(parents=True, exist_ok=True)
    filename = archive_path.name
    mode = archive_mode(filename)

    try:
        if mode is not None:
            with tarfile.open(archive_path, mode) as tar:
                tar.extractall(dest, filter="data")
        elif filename.lower().endswith(".zip"):
            _extract_zip(archive_path, dest)
        else:
            target = dest / filename
            shutil.copyfile(archive_path, target)
            target.chmod(target.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    except (tarfile.TarError, zipfile.BadZipFile, OSError) as e:
        raise FilesystemError(f"Failed to unpack {filename}: {e}") from e

    logger.debug("Unpacked %s into %s", filename, dest)


def _extract_zip(archive_path: Path, dest: Path) -> None:
    with zipfile.ZipFile(archive_path) as archive:
        for info in archive.infolist():
            relative = PurePosixPath(info.filename)
            if relative.is_absolute() or ".." in relative.parts:
                raise FilesystemError(f"Refusing unsafe zip entry {info.filename!r}")
            target = dest.joinpath(*relative.parts)
            if info.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            with archive.open(info) as src, open(target, "wb") as out:
                shutil.copyfileobj(src, out)
            unix_mode = info.external_attr >> 16
            if unix_mode:
                target.chmod(stat.S_IMODE(unix_mode))


def stage_dir(final: Path) -> Path:
    """Create an empty hidden staging directory beside ``final``."""
    final.parent.mkdir(parents=True, exist_ok=True)
    return Path(tempfile.mkdtemp(dir=final.parent, prefix=f".{final.name}.", suffix=".partial"))


def publish(staging: Path, final: Path) -> None:
    """Move a fully prepared staging directory into place."""
    if final.exists():
        retired = final.with_name(f".{final.name}.old")
        if retired.exists():
            shutil.rmtree(retired)
        final.rename(retired)
        staging.rename(final)
        shutil.rmtree(retired, ignore_errors=True)
    else:
        staging.rename(final)


def discard(staging: Path) -> None:
    shutil.rmtree(staging, ignore_errors=True)


def resolve_source(root: Path, source: str) -> Path:
    """Find a declared binary/extra inside an unpacked tree.

    A relative path that exists is used directly. A bare filename is
    otherwise searched for anywhere in the tree and must be unique.

    Raises:
        MissingSource: not found, ambiguous, or not a relative path.
    """
    relative = PurePosixPath(source)
    if relative.is_absolute():
        raise MissingSource(f"Source path '{source}' must be relative")

    direct = root.joinpath(*relative.parts)
    if direct.exists():
        return direct

    if len(relative.parts) == 1:
        matches = sorted(
            Path(dirpath) / source
            for dirpath, _dirs, files in os.walk(root)
            if source in files
        )
        if len(matches) == 1:
            return matches[0]
        if len(matches) > 1:
            raise MissingSource(
                f"'{source}' matched multiple files under {root}: "
                + ", ".join(str(m.relative_to(root)) for m in matches)
            )

    raise MissingSource(f"'{source}' not found in installed contents under {root}")


def extra_target(share_dir: Path, tool: str, extra: ToolExtra, resolved: Path) -> Path:
    """Where an extra's symlink goes under ``share_dir``."""
    if extra.target:
        return Path(os.path.expandvars(os.path.expanduser(extra.target)))

    if extra.kind == ExtraKind.MAN:
        section = resolved.suffix.lstrip(".") or "1"
        return share_dir / "man" / f"man{section}" / resolved.name

    if extra.kind == ExtraKind.COMPLETION:
        shell = (extra.shell or "").strip().lower()
        if shell not in COMPLETION_DIRS:
            raise ManifestError(f"Unsupported completion shell '{extra.shell}'", tool=tool)
        return share_dir.joinpath(*COMPLETION_DIRS[shell]) / resolved.name

    return share_dir / "dws" / sanitize_component(tool) / PurePosixPath(extra.source).name
