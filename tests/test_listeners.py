"""Tests for the built-in listeners: approval timeouts, dev capture, event log."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

import pytest

from core.models.events import EventName
from listeners.approval_timeouts import ApprovalTimeoutWatcher, target_key
from listeners.dev_capture import DevEventBuffer, attach_dev_capture
from listeners.event_log import attach_event_log


async def _audited(audit_sink, action: str):
    return [e for e in await audit_sink.list(limit=500) if e.action == action]


class TestApprovalTimeouts:

    @pytest.mark.parametrize(
        ("payload", "expected"),
        [
            ({"targetId": "po-1", "id": "x"}, "po-1"),
            ({"id": "po-2"}, "po-2"),
            ({"targetId": ""}, None),
            ({"targetId": 7}, None),
            ({}, None),
            (None, None),
        ],
    )
    def test_target_key(self, payload, expected):
        assert target_key(payload) == expected

    async def test_pending_approval_is_auto_denied(self, bus, events, audit_sink):
        watcher = ApprovalTimeoutWatcher(bus=bus, events=events, ttl=timedelta(milliseconds=20))
        try:
            await events.approval_requested(targetId="po-1", by="buyer", ts=1)
            assert watcher.pending == ["po-1"]

            await asyncio.sleep(0.2)

            denials = await _audited(audit_sink, "ApprovalDenied")
            assert len(denials) == 1
            payload = denials[0].payload
            assert payload["targetId"] == "po-1"
            assert payload["reason"] == "timeout"
            assert payload["seed"] == {"targetId": "po-1", "by": "buyer", "ts": 1}
            assert watcher.pending == []
        finally:
            await watcher.stop()

    async def test_grant_cancels_the_timer(self, bus, events, audit_sink):
        watcher = ApprovalTimeoutWatcher(bus=bus, events=events, ttl=timedelta(milliseconds=50))
        try:
            await events.approval_requested(targetId="po-1")
            await events.approval_granted(targetId="po-1", by="fm")
            assert watcher.pending == []

            await asyncio.sleep(0.15)

            assert await _audited(audit_sink, "ApprovalDenied") == []
        finally:
            await watcher.stop()

    async def test_repeat_request_restarts_the_timer(self, bus, events, audit_sink):
        watcher = ApprovalTimeoutWatcher(bus=bus, events=events, ttl=timedelta(milliseconds=30))
        try:
            await events.approval_requested(id="po-3")
            await events.approval_requested(id="po-3")

            await asyncio.sleep(0.2)

            assert len(await _audited(audit_sink, "ApprovalDenied")) == 1
        finally:
            await watcher.stop()

    async def test_request_without_target_starts_nothing(self, bus, events):
        watcher = ApprovalTimeoutWatcher(bus=bus, events=events, ttl=timedelta(hours=1))
        try:
            await events.approval_requested(by="buyer")
            assert watcher.pending == []
        finally:
            await watcher.stop()

    async def test_stop_cancels_timers_and_detaches(self, bus, events, audit_sink):
        watcher = ApprovalTimeoutWatcher(bus=bus, events=events, ttl=timedelta(milliseconds=30))
        assert bus.subscriber_count() == 3

        await events.approval_requested(targetId="po-1")
        await watcher.stop()
        await asyncio.sleep(0.1)

        assert watcher.pending == []
        assert bus.subscriber_count() == 0
        assert await _audited(audit_sink, "ApprovalDenied") == []


class TestDevEventBuffer:

    def test_newest_first(self):
        buffer = DevEventBuffer()
        buffer.push("A", {"n": 1}, ts=1)
        buffer.push("B", {"n": 2}, ts=2)

        page = buffer.read()

        assert page["totalCount"] == 2
        assert [i["name"] for i in page["items"]] == ["B", "A"]

    def test_capacity_drops_oldest(self):
        buffer = DevEventBuffer(capacity=3)
        for n in range(5):
            buffer.push("E", {"n": n})

        page = buffer.read()

        assert page["totalCount"] == 3
        assert [i["payload"]["n"] for i in page["items"]] == [4, 3, 2]

    @pytest.mark.parametrize(
        ("limit", "offset", "expected_len"),
        [(0, 0, 1), (500, 0, 100), (10, -5, 10), (10, 145, 5)],
    )
    def test_read_clamps_limit_and_offset(self, limit, offset, expected_len):
        buffer = DevEventBuffer(capacity=200)
        for n in range(150):
            buffer.push("E", {"n": n})

        page = buffer.read(limit=limit, offset=offset)

        assert page["totalCount"] == 150
        assert len(page["items"]) == expected_len

    def test_clear(self):
        buffer = DevEventBuffer()
        buffer.push("E", {})
        buffer.clear()

        assert buffer.read() == {"totalCount": 0, "items": []}

    async def test_capture_records_every_domain_event(self, bus):
        buffer = DevEventBuffer()
        unsubscribers = attach_dev_capture(bus, buffer)
        assert len(unsubscribers) == len(EventName)

        for name in EventName:
            await bus.publish(name, {"event": name.value})

        items = buffer.read(limit=100)["items"]
        assert [i["name"] for i in items] == [n.value for n in reversed(list(EventName))]
        assert all(i["payload"] == {"event": i["name"]} for i in items)

        for unsubscribe in unsubscribers:
            unsubscribe()
        assert bus.subscriber_count() == 0


async def test_event_log_listener_logs_selected_events(bus, caplog):
    attach_event_log(bus)

    with caplog.at_level(logging.INFO, logger="listeners.event_log"):
        await bus.publish(EventName.REPLENISHMENT_DRAFT_CREATED, {"draftId": "r-1"})
        await bus.publish(EventName.FORECAST_RUN_STARTED, {"id": "f-1"})

    messages = [r.getMessage() for r in caplog.records if r.name == "listeners.event_log"]
    assert len(messages) == 1
    assert "ReplenishmentDraftCreated" in messages[0]
    assert '"draftId": "r-1"' in messages[0]
