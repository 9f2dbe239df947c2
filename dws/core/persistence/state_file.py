"""
State store — atomic read/write for the Lockfile.

The lockfile is stored as JSON in ``$XDG_STATE_HOME/dws/dws.lock``.
Writes are atomic (write to temp file, fsync, then replace) so a crash
mid-write leaves either the old or the new document, never a mix.

Unlike a cache, a lockfile that cannot be read is never silently
replaced with an empty one: that would forget every installed tool.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from dws.core.errors import CorruptLockfile
from dws.core.models.lockfile import Lockfile
from dws.core.persistence.lease import WorkspaceLease

logger = logging.getLogger(__name__)

DEFAULT_STATE_FILE = "dws.lock"


def serialize(lockfile: Lockfile) -> str:
    data = lockfile.model_dump(mode="json")
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


class StateStore:
    """Loads and saves one workspace's Lockfile."""

    def __init__(self, path: Path, lease: WorkspaceLease | None = None):
        self._path = path
        self._lease = lease

    @property
    def path(self) -> Path:
        return self._path

    def attach(self, lease: WorkspaceLease) -> None:
        """Bind a lease; ``save`` then refuses to write unless it is held."""
        self._lease = lease

    def load(self) -> Lockfile:
        """Read the lockfile.

        Returns:
            The persisted Lockfile, or an empty one if none exists yet.

        Raises:
            CorruptLockfile: unreadable, not JSON, schema-invalid, or
                written by a newer schema version.
        """
        if not self._path.is_file():
            logger.info("No lockfile at %s — starting empty", self._path)
            return Lockfile()

        try:
            raw = self._path.read_text(encoding="utf-8")
        except OSError as e:
            raise CorruptLockfile(f"Cannot read lockfile {self._path}: {e}") from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise CorruptLockfile(f"Lockfile {self._path} is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise CorruptLockfile(f"Lockfile {self._path} must contain a JSON object")

        version = data.get("version")
        if isinstance(version, int) and version > Lockfile.SCHEMA_VERSION:
            raise CorruptLockfile(
                f"Lockfile {self._path} has schema version {version}; "
                f"this dws understands up to {Lockfile.SCHEMA_VERSION}"
            )

        try:
            lockfile = Lockfile.model_validate(data)
        except ValidationError as e:
            raise CorruptLockfile(f"Lockfile {self._path} is invalid: {e}") from e

        logger.debug(
            "Loaded lockfile from %s (%d receipts, %d dotfiles)",
            self._path, len(lockfile.tool_receipts), len(lockfile.config_symlinks),
        )
        return lockfile

    def save(self, lockfile: Lockfile, now: str | None = None) -> None:
        """Write the lockfile atomically.

        Args:
            lockfile: Document to persist; its metadata is stamped.
            now: Override for ``generated_at`` (fixed clocks in tests).
        """
        if self._lease is not None and not self._lease.held:
            raise RuntimeError("Refusing to save lockfile without holding the workspace lease")

        lockfile.touch(now)
        content = serialize(lockfile)
        self._path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(dir=self._path.parent, prefix=".dws_", suffix=".tmp")
        tmp = Path(tmp_path)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self._path)
            logger.debug("Lockfile saved to %s", self._path)
        except Exception:
            tmp.unlink(missing_ok=True)
            logger.error("Failed to save lockfile to %s", self._path)
            raise
