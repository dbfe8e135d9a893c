"""Core protocols -- the extension points of the event pipeline.

All protocols use Python's structural subtyping (typing.Protocol):
if your class has the right methods, it implements the protocol.
No inheritance required.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Mapping, Protocol, Union, runtime_checkable

from core.models.audit import AuditLogEntry, NewAuditEntry
from core.models.events import EventName

# A listener receives the payload and may return None or an awaitable.
Listener = Callable[[Mapping[str, Any]], Union[Awaitable[None], None]]
Unsubscribe = Callable[[], None]


# ---------------------------------------------------------------------------
# 1. AuditSink -- durable, append-only store of audit entries
# ---------------------------------------------------------------------------

@runtime_checkable
class AuditSink(Protocol):
    """Append-only audit storage.

    Default implementation: SQLiteAuditSink. MemoryAuditSink for dev/tests.
    """

    @property
    def name(self) -> str:
        """Unique sink name, e.g. 'sqlite', 'memory'."""
        ...

    async def append(self, entry: NewAuditEntry) -> AuditLogEntry:
        """Insert a new entry and return it with its assigned id.

        Raises AuditWriteError on storage or serialization failure.
        Nothing is written when it raises.
        """
        ...

    async def list(self, limit: int = 100, offset: int = 0) -> list[AuditLogEntry]:
        """Return entries newest first."""
        ...

    async def get(self, entry_id: str) -> AuditLogEntry | None:
        """Return a single entry, or None if it does not exist."""
        ...


# ---------------------------------------------------------------------------
# 2. EventBus -- in-process fan-out of domain events
# ---------------------------------------------------------------------------

@runtime_checkable
class EventBus(Protocol):
    """Publish/subscribe event bus.

    Every publish is audited once; listener and audit failures never reach
    the publisher.
    """

    async def publish(self, event_name: EventName | str, payload: Mapping[str, Any] | None = None) -> None:
        """Audit the event, then invoke every listener registered for it."""
        ...

    def subscribe(self, event_name: EventName | str, listener: Listener) -> Unsubscribe:
        """Register a listener and return a callable that removes it."""
        ...
