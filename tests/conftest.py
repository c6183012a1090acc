"""Shared fakes: an in-memory provider and sinks."""

from datetime import datetime, timedelta, timezone

import pytest

from health_exporter.core.errors import DeliveryError
from health_exporter.models.provider import AggregateMetrics, ChangeBatch, ProviderRecord
from health_exporter.models.record import TrackedRecordType

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def weight_record(record_id: str, kg: float = 70.0, when: datetime = NOW, source: str = "com.scale") -> ProviderRecord:
    return ProviderRecord(
        record_id=record_id,
        category="weight",
        source=source,
        time=when,
        zone_offset="+00:00",
        values={"weight": kg},
    )


def exercise_record(
    record_id: str, minutes: float = 30, start: datetime = NOW, source: str = "com.watch"
) -> ProviderRecord:
    return ProviderRecord(
        record_id=record_id,
        category="exercise_session",
        source=source,
        start_time=start,
        end_time=start + timedelta(minutes=minutes),
        zone_offset="+00:00",
        end_zone_offset="+00:00",
        values={"title": "Run", "exercise_type": 56},
    )


class FakeProvider:
    """In-memory HealthProvider + PermissionChecker."""

    def __init__(self, records=None, batches=None, granted=True):
        self.records: dict[TrackedRecordType, list[ProviderRecord]] = records or {}
        self.batches: list[ChangeBatch] = list(batches or [])
        self.aggregates: dict[str, AggregateMetrics] = {}
        self.granted = granted
        self.fail_types: set[TrackedRecordType] = set()
        self.poll_error: Exception | None = None
        self.issued = 0
        self.issued_types: list[TrackedRecordType] = []
        self.queries: list[TrackedRecordType] = []
        self.polled: list[str] = []

    async def has_permission(self, record_types):
        return self.granted

    async def query(self, record_type, start, end):
        self.queries.append(record_type)
        if record_type in self.fail_types:
            raise RuntimeError(f"{record_type.value} backend exploded")
        return list(self.records.get(record_type, []))

    async def enrich(self, record_id):
        return self.aggregates.get(record_id)

    async def issue_cursor(self, record_types):
        self.issued += 1
        self.issued_types = list(record_types)
        return f"cursor-{self.issued}"

    async def poll_changes(self, cursor):
        self.polled.append(cursor)
        if self.poll_error is not None:
            raise self.poll_error
        if not self.batches:
            return ChangeBatch(next_cursor=f"{cursor}+")
        return self.batches.pop(0)


class MemorySink:
    name = "memory"

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.documents = []
        self.closed = False

    async def deliver(self, document):
        if self.fail:
            raise DeliveryError("disk full", sink=self.name)
        self.documents.append(document)

    async def close(self):
        self.closed = True


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def sink():
    return MemorySink()
