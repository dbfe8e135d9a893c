"""SQLite audit storage.

One append-only table. Every append is a single INSERT committed on its own,
so an entry is either fully stored or not stored at all. There is no update
or delete path.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path

from core.errors import AuditWriteError
from core.models.audit import AuditLogEntry, NewAuditEntry

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 500


class SQLiteAuditSink:
    """Durable audit sink backed by a SQLite file.

    Implements the AuditSink protocol. Blocking sqlite calls run in a worker
    thread; a lock serializes access to the shared connection.

    Usage:
        sink = SQLiteAuditSink(Path("~/.supplydesk/audit.sqlite"))
        entry = await sink.append(NewAuditEntry(actor="SYSTEM", action="ApprovalGranted"))
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db: sqlite3.Connection | None = None
        self._lock = threading.Lock()
        self._init_sqlite()

    @property
    def name(self) -> str:
        return "sqlite"

    # ------------------------------------------------------------------
    # SQLite
    # ------------------------------------------------------------------

    def _init_sqlite(self) -> None:
        """Open the database and create the audit table if needed."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")

        self._db.executescript("""
            CREATE TABLE IF NOT EXISTS audit_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                ts TEXT NOT NULL,
                actor TEXT NOT NULL,
                action TEXT NOT NULL,
                payload TEXT NOT NULL DEFAULT '{}',
                reason TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_audit_ts
                ON audit_log(ts, id);
        """)
        self._db.commit()
        logger.info("Audit database initialized at %s", self._db_path)

    @property
    def db(self) -> sqlite3.Connection:
        if self._db is None:
            raise RuntimeError("Audit sink is closed")
        return self._db

    def close(self) -> None:
        """Close the SQLite connection."""
        with self._lock:
            if self._db:
                self._db.close()
                self._db = None

    # ------------------------------------------------------------------
    # AuditSink protocol
    # ------------------------------------------------------------------

    async def append(self, entry: NewAuditEntry) -> AuditLogEntry:
        return await asyncio.to_thread(self._append_sync, entry)

    async def list(self, limit: int = 100, offset: int = 0) -> list[AuditLogEntry]:
        return await asyncio.to_thread(self._list_sync, limit, offset)

    async def get(self, entry_id: str) -> AuditLogEntry | None:
        return await asyncio.to_thread(self._get_sync, entry_id)

    # ------------------------------------------------------------------
    # Blocking implementations
    # ------------------------------------------------------------------

    def _append_sync(self, entry: NewAuditEntry) -> AuditLogEntry:
        try:
            payload_json = json.dumps(entry.payload)
        except (TypeError, ValueError) as e:
            raise AuditWriteError(f"Payload is not JSON-serializable: {e}", action=entry.action) from e

        with self._lock:
            try:
                with self.db:
                    cursor = self.db.execute(
                        """INSERT INTO audit_log (ts, actor, action, payload, reason)
                           VALUES (?, ?, ?, ?, ?)""",
                        (
                            entry.ts.astimezone(timezone.utc).isoformat(timespec="microseconds"),
                            entry.actor,
                            entry.action,
                            payload_json,
                            entry.reason,
                        ),
                    )
            except (sqlite3.Error, RuntimeError) as e:
                raise AuditWriteError(f"Failed to store audit entry: {e}", action=entry.action) from e

        return AuditLogEntry.from_new(entry, str(cursor.lastrowid))

    def _list_sync(self, limit: int, offset: int) -> list[AuditLogEntry]:
        limit = max(1, min(MAX_PAGE_SIZE, int(limit)))
        offset = max(0, int(offset))
        with self._lock:
            rows = self.db.execute(
                """SELECT * FROM audit_log
                   ORDER BY ts DESC, id DESC LIMIT ? OFFSET ?""",
                (limit, offset),
            ).fetchall()
        return [self._row_to_entry(r) for r in rows]

    def _get_sync(self, entry_id: str) -> AuditLogEntry | None:
        try:
            rowid = int(entry_id)
        except (TypeError, ValueError):
            return None
        with self._lock:
            row = self.db.execute(
                "SELECT * FROM audit_log WHERE id = ?", (rowid,)
            ).fetchone()
        return self._row_to_entry(row) if row else None

    def _row_to_entry(self, row: sqlite3.Row) -> AuditLogEntry:
        return AuditLogEntry(
            id=str(row["id"]),
            ts=datetime.fromisoformat(row["ts"]),
            actor=row["actor"],
            action=row["action"],
            payload=json.loads(row["payload"]) if row["payload"] else {},
            reason=row["reason"],
        )
