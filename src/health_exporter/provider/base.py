"""
Provider Protocols: what the engine needs from the health data provider.

The concrete provider (its query API, type catalog and permission store)
lives outside this package; anything satisfying these protocols can be
plugged into the orchestrator.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from health_exporter.models.provider import AggregateMetrics, ChangeBatch, ProviderRecord
from health_exporter.models.record import TrackedRecordType


@runtime_checkable
class HealthProvider(Protocol):
    """Read and change-feed access to the provider."""

    async def query(
        self, record_type: TrackedRecordType, start: datetime, end: datetime
    ) -> list[ProviderRecord]:
        """Return all records of one type inside ``[start, end)``."""
        ...

    async def enrich(self, record_id: str) -> AggregateMetrics | None:
        """Return aggregate metrics for a session record, if any."""
        ...

    async def issue_cursor(self, record_types: list[TrackedRecordType]) -> str:
        """Issue a change cursor covering exactly ``record_types``."""
        ...

    async def poll_changes(self, cursor: str) -> ChangeBatch:
        """Return the next page of changes after ``cursor``."""
        ...


@runtime_checkable
class PermissionChecker(Protocol):
    """Permission store lookup."""

    async def has_permission(self, record_types: list[TrackedRecordType]) -> bool:
        """True only if read access is granted for every type."""
        ...
