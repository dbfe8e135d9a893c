"""Dev event capture -- keeps the most recent domain events for /api/dev-events."""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Any, Callable, Mapping

from core.bus import AsyncIOBus
from core.models.events import EventName, now_ms
from core.protocols import Unsubscribe

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 200
MAX_READ = 100


class DevEventBuffer:
    """Bounded, newest-first buffer of {name, payload, ts} records."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self._items: deque[dict[str, Any]] = deque(maxlen=max(1, capacity))
        self._lock = threading.Lock()

    def push(self, name: str, payload: Any, ts: int | None = None) -> None:
        with self._lock:
            self._items.appendleft({
                "name": name,
                "payload": payload,
                "ts": ts if ts is not None else now_ms(),
            })

    def read(self, limit: int = 50, offset: int = 0) -> dict[str, Any]:
        """Page through the buffer. limit is clamped to 1..100, offset to >= 0."""
        limit = max(1, min(MAX_READ, int(limit)))
        offset = max(0, int(offset))
        with self._lock:
            items = list(self._items)
        return {
            "totalCount": len(items),
            "items": items[offset:offset + limit],
        }

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        return len(self._items)


def attach_dev_capture(bus: AsyncIOBus, buffer: DevEventBuffer) -> list[Unsubscribe]:
    """Capture every domain event into `buffer`. Returns the unsubscribe handles."""

    def capture(name: str) -> Callable[[Mapping[str, Any]], None]:
        def listener(payload: Mapping[str, Any]) -> None:
            buffer.push(name, dict(payload))
        return listener

    unsubscribers = [bus.subscribe(name, capture(name.value)) for name in EventName]
    logger.info("Dev event capture attached (%d events)", len(unsubscribers))
    return unsubscribers
