"""
Pytest configuration and shared fixtures for SupplyDesk tests.

Async tests run under pytest-asyncio (auto mode enabled in pyproject.toml).
"""

from __future__ import annotations

import pytest

from core.bus import AsyncIOBus
from core.data.memory import MemoryAuditSink
from core.domain_events import DomainEvents
from core.models.audit import AuditLogEntry, NewAuditEntry


class RecordingAuditSink(MemoryAuditSink):
    """Memory sink that records every append attempt and can be told to fail."""

    def __init__(self, fail_with: Exception | None = None) -> None:
        super().__init__()
        self.attempts: list[NewAuditEntry] = []
        self.fail_with = fail_with

    async def append(self, entry: NewAuditEntry) -> AuditLogEntry:
        self.attempts.append(entry)
        if self.fail_with is not None:
            raise self.fail_with
        return await super().append(entry)


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def failing_sink() -> RecordingAuditSink:
    return RecordingAuditSink(fail_with=ConnectionError("database unavailable"))


@pytest.fixture
def bus(audit_sink: RecordingAuditSink) -> AsyncIOBus:
    """A fresh bus per test: no shared registration state."""
    return AsyncIOBus(audit_sink=audit_sink)


@pytest.fixture
def events(bus: AsyncIOBus) -> DomainEvents:
    return DomainEvents(bus)
