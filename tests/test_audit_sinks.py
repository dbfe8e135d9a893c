"""Tests for the SQLite and in-memory audit sinks."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from core.data.memory import MemoryAuditSink
from core.data.store import SQLiteAuditSink
from core.errors import AuditWriteError
from core.models.audit import NewAuditEntry
from core.protocols import AuditSink


@pytest.fixture(params=["sqlite", "memory"])
def sink(request, tmp_path):
    if request.param == "sqlite":
        sink = SQLiteAuditSink(tmp_path / "audit.sqlite")
    else:
        sink = MemoryAuditSink()
    yield sink
    sink.close()


BASE_TS = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_entry(n: int, **overrides) -> NewAuditEntry:
    fields = {
        "ts": BASE_TS + timedelta(seconds=n),
        "actor": "SYSTEM",
        "action": f"Action{n}",
        "payload": {"n": n},
    }
    fields.update(overrides)
    return NewAuditEntry(**fields)


def test_sinks_implement_protocol(sink):
    assert isinstance(sink, AuditSink)


async def test_append_assigns_id_and_round_trips(sink):
    stored = await sink.append(make_entry(1, reason="manual override"))

    assert stored.id
    fetched = await sink.get(stored.id)
    assert fetched is not None
    assert fetched.id == stored.id
    assert fetched.actor == "SYSTEM"
    assert fetched.action == "Action1"
    assert fetched.payload == {"n": 1}
    assert fetched.reason == "manual override"
    assert fetched.ts == BASE_TS + timedelta(seconds=1)


async def test_every_append_inserts_a_new_row(sink):
    first = await sink.append(make_entry(1))
    second = await sink.append(make_entry(1))

    assert first.id != second.id
    assert len(await sink.list()) == 2


async def test_list_is_newest_first(sink):
    for n in (2, 0, 1):
        await sink.append(make_entry(n))

    entries = await sink.list()

    assert [e.action for e in entries] == ["Action2", "Action1", "Action0"]


async def test_same_timestamp_orders_by_insertion(sink):
    first = await sink.append(make_entry(0))
    second = await sink.append(make_entry(0))

    entries = await sink.list()

    assert [e.id for e in entries] == [second.id, first.id]


async def test_pagination_windows_do_not_overlap(sink):
    for n in range(7):
        await sink.append(make_entry(n))

    pages = [await sink.list(limit=3, offset=offset) for offset in (0, 3, 6)]
    ids = [e.id for page in pages for e in page]

    assert [len(p) for p in pages] == [3, 3, 1]
    assert len(ids) == len(set(ids)) == 7


async def test_unserializable_payload_raises_and_writes_nothing(sink):
    with pytest.raises(AuditWriteError):
        await sink.append(make_entry(1, payload={"bad": object()}))

    assert await sink.list() == []


async def test_get_unknown_id_returns_none(sink):
    assert await sink.get("999") is None
    assert await sink.get("not-a-number") is None


async def test_entries_are_immutable(sink):
    stored = await sink.append(make_entry(1))

    with pytest.raises(ValidationError):
        stored.action = "changed"


async def test_sqlite_persists_across_instances(tmp_path):
    path = tmp_path / "audit.sqlite"
    first = SQLiteAuditSink(path)
    await first.append(make_entry(1))
    first.close()

    second = SQLiteAuditSink(path)
    try:
        entries = await second.list()
    finally:
        second.close()

    assert [e.action for e in entries] == ["Action1"]


async def test_sqlite_closed_sink_raises_audit_write_error(tmp_path):
    sink = SQLiteAuditSink(tmp_path / "audit.sqlite")
    sink.close()

    with pytest.raises(AuditWriteError):
        await sink.append(make_entry(1))
