"""Domain event names and payload shapes published through the EventBus."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

WILDCARD = "*"


def now_ms() -> int:
    """Current time as epoch milliseconds, the timestamp format of every payload."""
    return int(time.time() * 1000)


class EventName(str, Enum):
    """Closed set of domain events. The value is the wire and audit identifier."""

    APPROVAL_REQUESTED = "ApprovalRequested"
    APPROVAL_GRANTED = "ApprovalGranted"
    APPROVAL_DENIED = "ApprovalDenied"
    FORECAST_RUN_STARTED = "ForecastRunStarted"
    FORECAST_RUN_COMPLETED = "ForecastRunCompleted"
    REPLENISHMENT_DRAFT_CREATED = "ReplenishmentDraftCreated"

    def __str__(self) -> str:
        return self.value


def event_key(name: EventName | str) -> str:
    """Normalize an event name to its string identifier."""
    if isinstance(name, EventName):
        return name.value
    return str(name)


# ---------------------------------------------------------------------------
# Payload models
# ---------------------------------------------------------------------------

class EventPayload(BaseModel):
    """Base payload. Values are arbitrary JSON and pass through untouched.

    Only keys the caller supplied are published; `ts` is stamped by the
    emitter when missing.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    ts: Any = Field(default_factory=now_ms)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True)


class ApprovalPayload(EventPayload):
    """ApprovalRequested / ApprovalGranted / ApprovalDenied."""

    target_id: Any = Field(default=None, alias="targetId")
    by: Any = None
    reason: Any = None


class ForecastStartedPayload(EventPayload):
    id: Any
    params: Any = None


class ForecastCompletedPayload(EventPayload):
    id: Any
    result: Any = None


class ReplenishmentDraftPayload(EventPayload):
    draft_id: Any = Field(alias="draftId")
    items: Any = None
