"""Logs replenishment and approval events as pretty JSON for local development."""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from core.bus import AsyncIOBus
from core.models.events import EventName
from core.protocols import Unsubscribe

logger = logging.getLogger(__name__)

LOGGED_EVENTS = (
    EventName.REPLENISHMENT_DRAFT_CREATED,
    EventName.APPROVAL_REQUESTED,
    EventName.APPROVAL_GRANTED,
    EventName.APPROVAL_DENIED,
)


def log_event(name: str, payload: Mapping[str, Any]) -> None:
    try:
        rendered = json.dumps(payload, indent=2, default=str)
    except (TypeError, ValueError):
        rendered = repr(payload)
    logger.info("[event] %s %s", name, rendered)


def attach_event_log(bus: AsyncIOBus) -> list[Unsubscribe]:
    """Subscribe the logger to LOGGED_EVENTS. Returns the unsubscribe handles."""
    return [
        bus.subscribe(name, lambda payload, name=name.value: log_event(name, payload))
        for name in LOGGED_EVENTS
    ]
