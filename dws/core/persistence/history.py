"""
Run history — append-only log of reconciliation passes.

Every sync/update/cleanup pass appends one entry to an NDJSON
(newline-delimited JSON) file under the workspace state directory.
Entries are never modified or deleted.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class HistoryEntry(BaseModel):
    """One recorded pass."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    operation: str = ""            # sync, update, cleanup
    profile: str | None = None

    status: str = ""               # ok, partial, failed
    actions_total: int = 0
    actions_succeeded: int = 0
    actions_failed: int = 0
    duration_ms: int = 0

    tools_changed: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    context: dict[str, Any] = Field(default_factory=dict)


class HistoryWriter:
    """Appends passes to ``history.ndjson`` and reads them back."""

    def __init__(self, path: Path):
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: HistoryEntry) -> None:
        """Append one entry. Ledger problems are logged, never raised."""
        line = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False) + "\n"
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
        except OSError as e:
            logger.error("Could not record %s pass in %s: %s", entry.operation, self._path, e)
            return
        logger.debug("Recorded %s pass (%s)", entry.operation, entry.status)

    def _entries(self) -> Iterator[HistoryEntry]:
        if not self._path.is_file():
            return
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for number, raw in enumerate(f, start=1):
                    if not raw.strip():
                        continue
                    try:
                        yield HistoryEntry.model_validate_json(raw)
                    except ValidationError as e:
                        logger.warning("%s:%d: unreadable history line skipped (%s)",
                                       self._path.name, number, e.error_count())
        except OSError as e:
            logger.error("Could not read %s: %s", self._path, e)

    def read_all(self) -> list[HistoryEntry]:
        """All entries, oldest first. Corrupt lines are skipped."""
        return list(self._entries())

    def read_recent(self, n: int = 20) -> list[HistoryEntry]:
        """The last ``n`` entries, oldest first."""
        return list(deque(self._entries(), maxlen=n))
