"""Process-local request counters exposed at /api/metrics."""

from __future__ import annotations

import threading
import time


class RequestMetrics:
    """Hit and error counters plus named in-flight timers."""

    def __init__(self) -> None:
        self._hits = 0
        self._errors = 0
        self._timers: dict[str, float] = {}
        self._lock = threading.Lock()

    def inc_hits(self) -> None:
        with self._lock:
            self._hits += 1

    def inc_errors(self) -> None:
        with self._lock:
            self._errors += 1

    def start_timer(self, name: str) -> None:
        with self._lock:
            self._timers[name] = time.monotonic()

    def stop_timer(self, name: str) -> float | None:
        """Stop a timer and return its elapsed seconds, or None if it was not running."""
        with self._lock:
            started = self._timers.pop(name, None)
        if started is None:
            return None
        return time.monotonic() - started

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "hits": self._hits,
                "errors": self._errors,
                "activeTimers": list(self._timers),
            }
