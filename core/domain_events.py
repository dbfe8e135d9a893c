"""Typed emitters for the supply-chain domain events.

One coroutine per event kind. Each passes the caller's payload through,
stamps `ts` when it is missing, and hands off to the bus. The bus provides
the audit and error-isolation guarantees.
"""

from __future__ import annotations

from typing import Any, Mapping

from core.models.events import (
    ApprovalPayload,
    EventName,
    EventPayload,
    ForecastCompletedPayload,
    ForecastStartedPayload,
    ReplenishmentDraftPayload,
    now_ms,
)
from core.protocols import EventBus


class DomainEvents:
    """Publishes approval, forecast and replenishment events."""

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus

    # -- Approvals --

    async def approval_requested(self, meta: Mapping[str, Any] | None = None, **fields: Any) -> dict[str, Any]:
        return await self._emit(EventName.APPROVAL_REQUESTED, ApprovalPayload, meta, fields)

    async def approval_granted(self, meta: Mapping[str, Any] | None = None, **fields: Any) -> dict[str, Any]:
        return await self._emit(EventName.APPROVAL_GRANTED, ApprovalPayload, meta, fields)

    async def approval_denied(self, meta: Mapping[str, Any] | None = None, **fields: Any) -> dict[str, Any]:
        return await self._emit(EventName.APPROVAL_DENIED, ApprovalPayload, meta, fields)

    # -- Forecasting --

    async def forecast_run_started(self, meta: Mapping[str, Any] | None = None, **fields: Any) -> dict[str, Any]:
        return await self._emit(EventName.FORECAST_RUN_STARTED, ForecastStartedPayload, meta, fields)

    async def forecast_run_completed(self, meta: Mapping[str, Any] | None = None, **fields: Any) -> dict[str, Any]:
        return await self._emit(EventName.FORECAST_RUN_COMPLETED, ForecastCompletedPayload, meta, fields)

    # -- Replenishment --

    async def replenishment_draft_created(self, meta: Mapping[str, Any] | None = None, **fields: Any) -> dict[str, Any]:
        return await self._emit(EventName.REPLENISHMENT_DRAFT_CREATED, ReplenishmentDraftPayload, meta, fields)

    async def _emit(
        self,
        name: EventName,
        model: type[EventPayload],
        meta: Mapping[str, Any] | None,
        fields: dict[str, Any],
    ) -> dict[str, Any]:
        """Publish the caller's payload and return what was published.

        Values are not type-checked. Raises pydantic.ValidationError before
        publishing only if a required key (a forecast `id`, a replenishment
        `draftId`) is absent.
        """
        data = {**(meta or {}), **fields}
        if data.get("ts") is None:
            data["ts"] = now_ms()
        payload = model.model_validate(data).to_payload()
        await self._bus.publish(name, payload)
        return payload
