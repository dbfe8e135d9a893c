"""Approval timeout watcher.

Starts a TTL timer whenever an approval is requested and auto-denies the
approval if nobody grants or denies it before the timer runs out.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any, Mapping

from core.bus import AsyncIOBus
from core.domain_events import DomainEvents
from core.models.events import EventName, now_ms

logger = logging.getLogger(__name__)

TIMEOUT_REASON = "timeout"


def target_key(payload: Mapping[str, Any] | None) -> str | None:
    """The approval's target: explicit targetId, falling back to id."""
    payload = payload or {}
    target = payload.get("targetId")
    if target is None:
        target = payload.get("id")
    if isinstance(target, str) and target:
        return target
    return None


class ApprovalTimeoutWatcher:
    """Auto-deny approvals that stay pending longer than the TTL."""

    def __init__(
        self,
        bus: AsyncIOBus,
        events: DomainEvents,
        ttl: timedelta,
    ) -> None:
        self._events = events
        self._ttl_seconds = max(0.0, ttl.total_seconds())
        self._timers: dict[str, asyncio.Task] = {}
        self._unsubscribers = [
            bus.subscribe(EventName.APPROVAL_REQUESTED, self._handle_requested),
            bus.subscribe(EventName.APPROVAL_GRANTED, self._handle_resolved),
            bus.subscribe(EventName.APPROVAL_DENIED, self._handle_resolved),
        ]
        logger.info("Approval timeout watcher attached (ttl=%ss)", self._ttl_seconds)

    @property
    def pending(self) -> list[str]:
        return list(self._timers)

    def _handle_requested(self, payload: Mapping[str, Any]) -> None:
        target = target_key(payload)
        if target is None:
            logger.debug("ApprovalRequested without targetId/id, no timer started")
            return
        self.cancel(target)
        self._timers[target] = asyncio.create_task(self._expire(target, dict(payload)))

    def _handle_resolved(self, payload: Mapping[str, Any]) -> None:
        target = target_key(payload)
        if target is not None:
            self.cancel(target)

    def cancel(self, target: str) -> bool:
        """Cancel the timer for `target`. Returns True if one was running."""
        task = self._timers.pop(target, None)
        if task is None:
            return False
        task.cancel()
        return True

    async def _expire(self, target: str, seed: dict[str, Any]) -> None:
        await asyncio.sleep(self._ttl_seconds)
        # Forget the timer first: the denial below re-enters _handle_resolved.
        if self._timers.get(target) is asyncio.current_task():
            del self._timers[target]
        logger.info("Approval %s timed out after %ss, auto-denying", target, self._ttl_seconds)
        try:
            await self._events.approval_denied(
                targetId=target,
                reason=TIMEOUT_REASON,
                ts=now_ms(),
                seed=seed,
            )
        except Exception:
            logger.exception("Failed to auto-deny approval %s", target)

    async def stop(self) -> None:
        """Detach from the bus and cancel every pending timer."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

        tasks = list(self._timers.values())
        self._timers.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Approval timeout watcher stopped")
