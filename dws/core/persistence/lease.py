"""
Workspace lease — one dws process mutates a workspace at a time.

The lease is a file created with ``O_CREAT | O_EXCL`` holding JSON
``{pid, host, acquired_at}``. Contenders poll until a timeout and then
give up with LockContentionError. A lease left behind by a dead process
on this same host is stale and is broken.
"""

from __future__ import annotations

import errno
import json
import logging
import os
import socket
import time
from datetime import UTC, datetime
from pathlib import Path

from dws.core.errors import LockContentionError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0
POLL_INTERVAL = 0.05


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


class WorkspaceLease:
    """Exclusive, cross-process lease on a workspace state directory.

    Usage::

        with WorkspaceLease(state_dir / "dws.lease", timeout=5.0) as lease:
            store.attach(lease)
            ...
    """

    def __init__(self, path: Path, timeout: float = DEFAULT_TIMEOUT, poll_interval: float = POLL_INTERVAL):
        self._path = path
        self._timeout = timeout
        self._poll = poll_interval
        self._held = False
        self._host = socket.gethostname()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> None:
        """Take the lease, waiting up to ``timeout`` seconds.

        Raises:
            LockContentionError: another live process still holds it.
        """
        self._path.parent.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + self._timeout

        while True:
            if self._try_create():
                self._held = True
                logger.debug("Acquired workspace lease %s", self._path)
                return

            if self._break_if_stale():
                continue

            if time.monotonic() >= deadline:
                holder = self.read_holder()
                who = ""
                if holder:
                    who = f" (held by pid {holder.get('pid')} on {holder.get('host')})"
                raise LockContentionError(
                    f"Workspace is locked by another dws process{who}: {self._path}"
                )
            time.sleep(self._poll)

    def release(self) -> None:
        if not self._held:
            return
        try:
            self._path.unlink()
        except FileNotFoundError:
            pass
        self._held = False
        logger.debug("Released workspace lease %s", self._path)

    def read_holder(self) -> dict | None:
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        return data if isinstance(data, dict) else None

    def _try_create(self) -> bool:
        try:
            fd = os.open(self._path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except OSError as e:
            if e.errno == errno.EEXIST:
                return False
            raise
        payload = {
            "pid": os.getpid(),
            "host": self._host,
            "acquired_at": datetime.now(UTC).isoformat(),
        }
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f)
        return True

    def _break_if_stale(self) -> bool:
        holder = self.read_holder()
        if holder is None:
            # Half-written or vanished; let the next poll decide.
            return False
        if holder.get("host") != self._host:
            return False
        pid = holder.get("pid")
        if not isinstance(pid, int) or _pid_alive(pid):
            return False
        logger.warning("Breaking stale workspace lease left by dead pid %s", pid)
        try:
            self._path.unlink()
        except FileNotFoundError:
            pass
        return True

    def __enter__(self) -> WorkspaceLease:
        self.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()
