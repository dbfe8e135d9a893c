"""AsyncIOBus -- default EventBus implementation using in-process async pub/sub.

Every published event is appended to the audit sink first, then dispatched
to subscribers one at a time. Neither audit nor listener failures ever reach
the publisher.
"""

from __future__ import annotations

import inspect
import logging
import threading
from typing import Any, Mapping

from core.models.audit import SYSTEM_ACTOR, NewAuditEntry
from core.models.events import WILDCARD, EventName, event_key
from core.protocols import AuditSink, Listener, Unsubscribe

logger = logging.getLogger(__name__)


class _Registration:
    """One subscribe() call. Identity matters, not the callback."""

    __slots__ = ("event_name", "listener", "active")

    def __init__(self, event_name: str, listener: Listener) -> None:
        self.event_name = event_name
        self.listener = listener
        self.active = True


class AsyncIOBus:
    """In-process async pub/sub event bus with guaranteed audit.

    Implements the EventBus protocol.

    Usage:
        bus = AsyncIOBus(audit_sink=SQLiteAuditSink(path))
        unsubscribe = bus.subscribe(EventName.APPROVAL_GRANTED, my_handler)
        await bus.publish(EventName.APPROVAL_GRANTED, {"targetId": "po-1"})
        unsubscribe()
    """

    def __init__(self, audit_sink: AuditSink) -> None:
        self._audit_sink = audit_sink
        self._subscribers: dict[str, list[_Registration]] = {}
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "asyncio_bus"

    @property
    def audit_sink(self) -> AuditSink:
        return self._audit_sink

    async def publish(self, event_name: EventName | str, payload: Mapping[str, Any] | None = None) -> None:
        """Publish an event: append to audit log, then dispatch to subscribers."""
        name = event_key(event_name)
        payload = dict(payload) if payload is not None else {}

        # Audit attempt always precedes dispatch.
        await self._safe_audit(name, payload)

        registrations = self._snapshot(name)
        if not registrations:
            logger.debug("No subscribers for event: %s", name)
            return

        logger.debug("Publishing %s to %d subscriber(s)", name, len(registrations))

        for registration in registrations:
            # Unsubscribed after the snapshot but before its turn.
            if not registration.active:
                continue
            await self._safe_invoke(registration, name, payload)

    def subscribe(self, event_name: EventName | str, listener: Listener) -> Unsubscribe:
        """Register a listener for the given event name.

        Use event_name="*" to subscribe to all events. Returns a callable that
        removes exactly this registration; calling it again does nothing.
        """
        name = event_key(event_name)
        if not name:
            raise ValueError("event_name must be a non-empty string")
        if not callable(listener):
            raise TypeError("listener must be callable")

        registration = _Registration(name, listener)
        with self._lock:
            self._subscribers.setdefault(name, []).append(registration)
        logger.debug("Subscribed to '%s': %s", name, listener)

        def unsubscribe() -> None:
            self._remove(registration)

        return unsubscribe

    def subscriber_count(self, event_name: EventName | str | None = None) -> int:
        """Return the number of registrations, optionally filtered by event name."""
        with self._lock:
            if event_name is None:
                return sum(len(regs) for regs in self._subscribers.values())
            return len(self._subscribers.get(event_key(event_name), []))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _snapshot(self, name: str) -> list[_Registration]:
        """Listeners registered right now: exact-name first, then wildcard."""
        with self._lock:
            registrations = list(self._subscribers.get(name, []))
            if name != WILDCARD:
                registrations += self._subscribers.get(WILDCARD, [])
        return registrations

    def _remove(self, registration: _Registration) -> None:
        with self._lock:
            if not registration.active:
                return
            registration.active = False
            registrations = self._subscribers.get(registration.event_name, [])
            if registration in registrations:
                registrations.remove(registration)
            if not registrations:
                self._subscribers.pop(registration.event_name, None)
        logger.debug("Unsubscribed from '%s': %s", registration.event_name, registration.listener)

    async def _safe_audit(self, name: str, payload: dict[str, Any]) -> None:
        """Append the audit entry, catching and logging any exception."""
        try:
            await self._audit_sink.append(NewAuditEntry(
                actor=SYSTEM_ACTOR,
                action=name,
                payload=payload,
            ))
        except Exception:
            logger.exception("Failed to audit event %s", name)

    async def _safe_invoke(self, registration: _Registration, name: str, payload: dict[str, Any]) -> None:
        """Invoke a listener (sync or async), catching and logging any exception."""
        try:
            result = registration.listener(payload)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(
                "Error in event listener %s for %s",
                getattr(registration.listener, "__qualname__", registration.listener),
                name,
            )
