"""Audit log models -- the persisted projection of every published event."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

SYSTEM_ACTOR = "SYSTEM"


class NewAuditEntry(BaseModel):
    """An audit record before the sink assigns its id."""

    model_config = ConfigDict(frozen=True)

    ts: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    actor: str
    action: str
    payload: dict[str, Any] = Field(default_factory=dict)
    reason: str | None = None


class AuditLogEntry(NewAuditEntry):
    """A stored audit record. Immutable once created."""

    id: str

    @classmethod
    def from_new(cls, entry: NewAuditEntry, entry_id: str) -> AuditLogEntry:
        return cls(id=entry_id, **entry.model_dump())
