"""In-memory audit sink used for local development and unit tests."""

from __future__ import annotations

import itertools
import json
import logging
import threading

from core.errors import AuditWriteError
from core.models.audit import AuditLogEntry, NewAuditEntry

logger = logging.getLogger(__name__)


class MemoryAuditSink:
    """List-backed audit sink. Same contract as SQLiteAuditSink, no durability."""

    def __init__(self) -> None:
        self._entries: list[AuditLogEntry] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "memory"

    async def append(self, entry: NewAuditEntry) -> AuditLogEntry:
        try:
            json.dumps(entry.payload)
        except (TypeError, ValueError) as e:
            raise AuditWriteError(f"Payload is not JSON-serializable: {e}", action=entry.action) from e

        with self._lock:
            stored = AuditLogEntry.from_new(entry, str(next(self._ids)))
            self._entries.append(stored)
        return stored

    async def list(self, limit: int = 100, offset: int = 0) -> list[AuditLogEntry]:
        limit = max(1, int(limit))
        offset = max(0, int(offset))
        with self._lock:
            # Newest first: by timestamp, then insertion order.
            ordered = sorted(
                enumerate(self._entries),
                key=lambda pair: (pair[1].ts, pair[0]),
                reverse=True,
            )
        return [entry for _, entry in ordered[offset:offset + limit]]

    async def get(self, entry_id: str) -> AuditLogEntry | None:
        with self._lock:
            for entry in self._entries:
                if entry.id == entry_id:
                    return entry
        return None

    def __len__(self) -> int:
        return len(self._entries)

    def close(self) -> None:
        pass
