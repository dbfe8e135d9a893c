"""Pydantic data models shared across all components."""

from core.models.audit import AuditLogEntry, NewAuditEntry, SYSTEM_ACTOR
from core.models.events import (
    ApprovalPayload,
    EventName,
    EventPayload,
    ForecastCompletedPayload,
    ForecastStartedPayload,
    ReplenishmentDraftPayload,
)

__all__ = [
    "AuditLogEntry",
    "NewAuditEntry",
    "SYSTEM_ACTOR",
    "EventName",
    "EventPayload",
    "ApprovalPayload",
    "ForecastStartedPayload",
    "ForecastCompletedPayload",
    "ReplenishmentDraftPayload",
]
