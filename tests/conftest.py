"""Test fixtures and store doubles for progress tracking tests.

This module provides:
- ``make_record`` for building job records with sensible defaults
- Store doubles that fail, block or misbehave on demand, built on the
  in-memory store so their change feed behaves like the real one
- ``settle`` to let scheduled change deliveries run
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from jobtrack.errors import StoreTransportError
from jobtrack.records import JobRecord
from jobtrack.storage.interfaces import ChangeCallback, ErrorCallback, Subscription
from jobtrack.storage.memory import InMemoryJobStore

BASE_TIME = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_record(
    stage: str = "ingest",
    status: str = "queued",
    document_id: str = "doc-1",
    **kwargs: Any,
) -> JobRecord:
    """Create a job record for ``document_id`` from raw stage/status strings."""
    kwargs.setdefault("job_id", f"{document_id}-{stage}")
    return JobRecord(document_id=document_id, stage=stage, status=status, **kwargs)


def timed(seconds: float) -> dict[str, datetime]:
    """started_at/completed_at kwargs for a stage that took ``seconds``."""
    return {"started_at": BASE_TIME, "completed_at": BASE_TIME + timedelta(seconds=seconds)}


async def settle(rounds: int = 5) -> None:
    """Yield to the loop so call_soon deliveries and small tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FlakyStore(InMemoryJobStore):
    """In-memory store whose next ``failures`` fetches raise StoreTransportError."""

    def __init__(self, failures: int = 1) -> None:
        super().__init__()
        self.failures = failures
        self.fetch_calls = 0

    async def fetch_all(self, document_id: str) -> list[JobRecord]:
        self.fetch_calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise StoreTransportError("connection refused")
        return await super().fetch_all(document_id)


class FlakyQueueStore(InMemoryJobStore):
    """In-memory store whose next ``failures`` polls of the queue raise."""

    def __init__(self, failures: int = 1) -> None:
        super().__init__()
        self.failures = failures
        self.list_calls = 0

    async def list_queued(self, stage, limit: int = 5) -> list[JobRecord]:
        self.list_calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise StoreTransportError("connection reset")
        return await super().list_queued(stage, limit)


class UnrecordableStore(InMemoryJobStore):
    """In-memory store that cannot mark jobs done."""

    async def complete(self, job_id: str, output_data=None) -> JobRecord:
        raise StoreTransportError("write timed out")


class GatedStore(InMemoryJobStore):
    """In-memory store whose fetch and subscribe wait until released.

    Lets tests dispose or switch documents while a fetch or subscribe is in
    flight.
    """

    def __init__(self) -> None:
        super().__init__()
        self.fetch_gate = asyncio.Event()
        self.subscribe_gate = asyncio.Event()
        self.subscribe_gate.set()
        self.fetch_started = asyncio.Event()
        self.subscriptions: list[Subscription] = []

    async def fetch_all(self, document_id: str) -> list[JobRecord]:
        self.fetch_started.set()
        await self.fetch_gate.wait()
        return await super().fetch_all(document_id)

    async def subscribe(
        self,
        document_id: str,
        on_change: ChangeCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        await self.subscribe_gate.wait()
        subscription = await super().subscribe(document_id, on_change, on_error)
        self.subscriptions.append(subscription)
        return subscription


class BrokenChannelStore(InMemoryJobStore):
    """In-memory store that cannot open subscriptions."""

    async def subscribe(self, document_id, on_change, on_error=None) -> Subscription:
        raise StoreTransportError("realtime unavailable")


class LeakyFeedStore(InMemoryJobStore):
    """In-memory store that hands back the raw callbacks so tests can call
    them directly, as a misbehaving realtime client might after cancel."""

    def __init__(self) -> None:
        super().__init__()
        self.callbacks: list[ChangeCallback] = []

    async def subscribe(self, document_id, on_change, on_error=None) -> Subscription:
        self.callbacks.append(on_change)
        return await super().subscribe(document_id, on_change, on_error)


@pytest.fixture
def store() -> InMemoryJobStore:
    """Provide a fresh in-memory job store."""
    return InMemoryJobStore()


class MissedEventStore(InMemoryJobStore):
    """In-memory store that can write a row without announcing it, the way a
    change made between fetch and subscribe goes unseen."""

    async def write_without_event(self, record: JobRecord) -> JobRecord:
        if record.version is None:
            record = record.model_copy(update={"version": 1})
        self._jobs[record.job_id] = record
        return record
