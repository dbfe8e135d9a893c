"""Lightweight aiohttp server -- the dashboard's HTTP API.

Request handlers are thin: parse the body, call one domain emitter (or the
audit sink), shape the JSON response. Publishing never fails a request.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable

from aiohttp import web
from pydantic import ValidationError

from core.config import APP_VERSION
from core.errors import AuditWriteError
from core.guards import ANONYMOUS, APPROVER_ROLES, ROLE_COOKIE, require_role, role_from_value
from core.models.audit import NewAuditEntry
from core.models.events import now_ms

if TYPE_CHECKING:
    from core.config import AppConfig
    from core.domain_events import DomainEvents
    from core.metrics import RequestMetrics
    from core.protocols import AuditSink
    from listeners.dev_capture import DevEventBuffer

logger = logging.getLogger(__name__)

TRACE_HEADERS = ("X-Trace-Id", "Idempotency-Key")

DEFAULT_FORECAST_PARAMS = {"horizonDays": 14, "items": 10}
DEFAULT_FORECAST_DELAY_MS = 1200
DEFAULT_REPLENISHMENT_ITEMS = [
    {"sku": "SKU-1001", "qty": 12},
    {"sku": "SKU-1002", "qty": 8},
    {"sku": "SKU-1003", "qty": 5},
]
DEFAULT_REPLENISHMENT_DELAY_MS = 600

_can_decide_approval = require_role(APPROVER_ROLES)


def create_app(
    config: AppConfig,
    events: DomainEvents,
    audit_sink: AuditSink,
    metrics: RequestMetrics,
    dev_buffer: DevEventBuffer | None = None,
    sampler: Callable[[], float] = random.random,
) -> web.Application:
    """Create and configure the aiohttp application."""
    app = web.Application(middlewares=[request_middleware])

    # Store references for route handlers
    app["config"] = config
    app["events"] = events
    app["audit_sink"] = audit_sink
    app["metrics"] = metrics
    app["dev_buffer"] = dev_buffer
    app["sampler"] = sampler

    # Register routes
    app.router.add_get("/api/health", handle_health)
    app.router.add_get("/api/metrics", handle_metrics)
    app.router.add_post("/api/approvals", handle_approvals)
    app.router.add_post("/api/audit", handle_create_audit)
    app.router.add_get("/api/audit", handle_list_audit)
    app.router.add_get("/api/audit/{entry_id}", handle_get_audit)
    app.router.add_post("/api/forecast-demo", handle_forecast_demo)
    app.router.add_post("/api/replenishment-demo", handle_replenishment_demo)
    app.router.add_get("/api/dev-events", handle_dev_events)
    app.router.add_post("/api/dev-events/clear", handle_clear_dev_events)

    return app


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

@web.middleware
async def request_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Sample requests into the audit log and count handler errors."""
    await _sample_request(request)

    metrics: RequestMetrics = request.app["metrics"]
    try:
        response = await handler(request)
    except web.HTTPException as exc:
        if exc.status >= 500:
            metrics.inc_errors()
        raise
    except Exception:
        metrics.inc_errors()
        raise

    if response.status >= 500:
        metrics.inc_errors()
    return response


async def _sample_request(request: web.Request) -> None:
    """Best-effort request.sample audit entry. Never affects the response."""
    config: AppConfig = request.app["config"]
    path = request.path

    if any(path == prefix or path.startswith(prefix) for prefix in config.audit.skip_prefixes):
        return

    try:
        if request.app["sampler"]() >= config.audit.sample_rate:
            return
        actor = request.cookies.get(ROLE_COOKIE) or ANONYMOUS
        await request.app["audit_sink"].append(NewAuditEntry(
            actor=actor,
            action="request.sample",
            payload={"path": path, "method": request.method, "ts": now_ms()},
        ))
    except Exception:
        logger.exception("Failed to sample request %s %s", request.method, path)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _read_json(request: web.Request) -> dict[str, Any]:
    """Parse a JSON object body. Anything unparseable or non-object reads as {}."""
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}
    return body if isinstance(body, dict) else {}


def _trace_headers(request: web.Request) -> dict[str, str]:
    """Echo observability headers when the caller sent them."""
    return {name: request.headers[name] for name in TRACE_HEADERS if name in request.headers}


def _delay_seconds(body: dict[str, Any], default_ms: int) -> float:
    delay = body.get("delayMs")
    if isinstance(delay, (int, float)) and not isinstance(delay, bool):
        return max(0, delay) / 1000
    return default_ms / 1000


def _error_response(
    code: str,
    message: str,
    status: int,
    headers: dict[str, str],
    **details: Any,
) -> web.Response:
    return web.json_response(
        {"error": {"code": code, "message": message, "details": details}},
        status=status,
        headers=headers,
    )


def _validation_details(error: ValidationError) -> list[dict[str, Any]]:
    return json.loads(error.json(include_url=False))


def _query_int(request: web.Request, name: str, default: int) -> int:
    raw = request.query.get(name)
    if raw is None or raw == "":
        return default
    return int(raw)


# ---------------------------------------------------------------------------
# Route handlers
# ---------------------------------------------------------------------------

async def handle_health(request: web.Request) -> web.Response:
    """GET /api/health -- health check."""
    return web.json_response({
        "ok": True,
        "version": APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })


async def handle_metrics(request: web.Request) -> web.Response:
    """GET /api/metrics -- request counters."""
    metrics: RequestMetrics = request.app["metrics"]
    metrics.inc_hits()
    return web.json_response(metrics.snapshot())


async def handle_approvals(request: web.Request) -> web.Response:
    """POST /api/approvals -- request, grant or deny an approval.

    Body: {"action": "request" | "grant" | "deny", "targetId": "...", ...}
    Grant and deny require the ADMIN or FM role.
    """
    events: DomainEvents = request.app["events"]

    body = await _read_json(request)
    action = body.get("action")
    meta = {**body, "ts": now_ms()}

    if action in ("grant", "deny"):
        role = role_from_value(request.cookies.get(ROLE_COOKIE))
        if not _can_decide_approval(role):
            return web.json_response({"ok": False, "error": "forbidden"}, status=403)

    emitters = {
        "request": events.approval_requested,
        "grant": events.approval_granted,
        "deny": events.approval_denied,
    }
    emit = emitters.get(action) if isinstance(action, str) else None
    if emit is None:
        return web.json_response({"ok": False, "error": "invalid action"}, status=400)

    await emit(meta)
    return web.json_response({"ok": True})


async def handle_create_audit(request: web.Request) -> web.Response:
    """POST /api/audit -- append a handler-specific audit entry.

    Body: {"actor": "...", "action": "...", "payload": {...}, "reason": "..."}
    """
    audit_sink: AuditSink = request.app["audit_sink"]

    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return web.json_response({"error": "Invalid JSON"}, status=400)

    if not isinstance(body, dict) or not body.get("actor") or not body.get("action"):
        return web.json_response(
            {"error": "Missing required fields: actor, action"},
            status=400,
        )

    try:
        entry = NewAuditEntry(
            actor=str(body["actor"]),
            action=str(body["action"]),
            payload=body.get("payload") or {},
            reason=body.get("reason"),
        )
    except ValidationError as e:
        return web.json_response(
            {"error": "Invalid audit entry", "details": _validation_details(e)},
            status=400,
        )

    try:
        stored = await audit_sink.append(entry)
    except AuditWriteError:
        logger.exception("Audit API failed to store entry for %s", entry.action)
        return web.json_response({"error": "Internal server error"}, status=500)

    return web.json_response({"ok": True, "id": stored.id}, status=201)


async def handle_list_audit(request: web.Request) -> web.Response:
    """GET /api/audit?limit=&offset= -- audit entries, newest first."""
    audit_sink: AuditSink = request.app["audit_sink"]

    try:
        limit = _query_int(request, "limit", 100)
        offset = _query_int(request, "offset", 0)
    except ValueError:
        return web.json_response({"error": "limit and offset must be integers"}, status=400)

    entries = await audit_sink.list(limit=limit, offset=offset)
    return web.json_response({
        "ok": True,
        "items": [e.model_dump(mode="json") for e in entries],
    })


async def handle_get_audit(request: web.Request) -> web.Response:
    """GET /api/audit/{entry_id} -- a single audit entry."""
    audit_sink: AuditSink = request.app["audit_sink"]
    entry = await audit_sink.get(request.match_info["entry_id"])
    if entry is None:
        return web.json_response({"error": "Audit entry not found"}, status=404)
    return web.json_response(entry.model_dump(mode="json"))


async def handle_forecast_demo(request: web.Request) -> web.Response:
    """POST /api/forecast-demo -- simulate a forecast run.

    Body: {"id": "...", "params": {...}, "delayMs": 1200}
    The run is visible in /api/metrics activeTimers while it sleeps.
    """
    events: DomainEvents = request.app["events"]
    metrics: RequestMetrics = request.app["metrics"]
    headers = _trace_headers(request)

    body = await _read_json(request)
    run_id = body.get("id") or f"fcst-{now_ms()}"
    params = body.get("params") or dict(DEFAULT_FORECAST_PARAMS)
    timer = f"forecast-demo:{run_id}"

    metrics.start_timer(timer)
    try:
        await events.forecast_run_started(id=run_id, params=params, ts=now_ms())

        await asyncio.sleep(_delay_seconds(body, DEFAULT_FORECAST_DELAY_MS))

        summary_source = params if isinstance(params, dict) else {}
        result = {
            "id": run_id,
            "summary": {
                "itemsProcessed": summary_source.get("items"),
                "horizonDays": summary_source.get("horizonDays"),
            },
            "ok": True,
        }

        await events.forecast_run_completed(id=run_id, result=result, ts=now_ms())
    except Exception as e:
        logger.exception("Forecast demo failed")
        return _error_response("SYS_001", "Internal server error", 500, headers, msg=str(e))
    finally:
        elapsed = metrics.stop_timer(timer)
        logger.debug("Forecast demo %s took %.3fs", run_id, elapsed or 0.0)

    return web.json_response({"ok": True, "id": run_id, "result": result}, headers=headers)


async def handle_replenishment_demo(request: web.Request) -> web.Response:
    """POST /api/replenishment-demo -- simulate creating a replenishment draft.

    Body: {"draftId": "...", "items": [{"sku": "...", "qty": 1}], "delayMs": 600}
    """
    events: DomainEvents = request.app["events"]
    metrics: RequestMetrics = request.app["metrics"]
    headers = _trace_headers(request)

    body = await _read_json(request)
    draft_id = body.get("draftId") or f"repl-{now_ms()}"
    items = body.get("items")
    if not isinstance(items, list):
        items = [dict(item) for item in DEFAULT_REPLENISHMENT_ITEMS]
    timer = f"replenishment-demo:{draft_id}"

    metrics.start_timer(timer)
    try:
        await asyncio.sleep(_delay_seconds(body, DEFAULT_REPLENISHMENT_DELAY_MS))

        await events.replenishment_draft_created(draftId=draft_id, items=items, ts=now_ms())
    except Exception as e:
        logger.exception("Replenishment demo failed")
        return _error_response("SYS_001", "Internal server error", 500, headers, msg=str(e))
    finally:
        elapsed = metrics.stop_timer(timer)
        logger.debug("Replenishment demo %s took %.3fs", draft_id, elapsed or 0.0)

    return web.json_response(
        {"ok": True, "draftId": draft_id, "itemsCount": len(items)},
        headers=headers,
    )


async def handle_dev_events(request: web.Request) -> web.Response:
    """GET /api/dev-events?limit=&offset= -- recently captured domain events."""
    dev_buffer: DevEventBuffer | None = request.app["dev_buffer"]
    if dev_buffer is None:
        return web.json_response({"ok": False, "error": "dev capture disabled"}, status=404)

    try:
        limit = _query_int(request, "limit", 25)
        offset = _query_int(request, "offset", 0)
    except ValueError:
        limit, offset = 25, 0

    return web.json_response({"ok": True, **dev_buffer.read(limit, offset)})


async def handle_clear_dev_events(request: web.Request) -> web.Response:
    """POST /api/dev-events/clear -- empty the capture buffer."""
    dev_buffer: DevEventBuffer | None = request.app["dev_buffer"]
    if dev_buffer is not None:
        dev_buffer.clear()
    return web.json_response({"ok": True})
