"""
RecordReader: base class for per-type reader adapters.

A reader knows how to query one record category over a time window and how
to flatten one provider record into a NormalizedRecord. Readers share no
mutable state, so the orchestrator may run them concurrently.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from health_exporter.core.errors import NormalizationError
from health_exporter.models.provider import AggregateMetrics, ProviderRecord
from health_exporter.models.record import FieldValue, NormalizedRecord, TrackedRecordType

if TYPE_CHECKING:
    from health_exporter.provider.base import HealthProvider

logger = logging.getLogger(__name__)

_OFFSET_RE = re.compile(r"^([+-])(\d{2}):?(\d{2})(?::?(\d{2}))?$")


def parse_zone_offset(offset: str | None) -> timezone | None:
    """Parse ``+02:00``, ``-0530`` or ``Z`` into a fixed-offset timezone."""
    if not offset:
        return None
    if offset in ("Z", "z", "UTC"):
        return timezone.utc
    match = _OFFSET_RE.match(offset.strip())
    if not match:
        logger.debug(f"Unparseable zone offset {offset!r}, falling back to UTC")
        return None
    sign, hours, minutes, seconds = match.groups()
    delta = timedelta(hours=int(hours), minutes=int(minutes), seconds=int(seconds or 0))
    return timezone(-delta if sign == "-" else delta)


def format_instant(value: datetime, offset: str | None = None) -> str:
    """ISO-8601 string in the record's local offset (UTC when unknown)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    tz = parse_zone_offset(offset) or timezone.utc
    return value.astimezone(tz).isoformat()


class RecordReader(ABC):
    """Reader adapter for a single TrackedRecordType."""

    record_type: TrackedRecordType

    def __init__(self, allowed_sources: frozenset[str] | None = None):
        self.allowed_sources = allowed_sources or None

    def accepts(self, record: ProviderRecord) -> bool:
        """Pre-filter applied before normalization."""
        if self.allowed_sources is not None and record.source not in self.allowed_sources:
            return False
        return True

    async def enrich(self, provider: HealthProvider, record: ProviderRecord) -> AggregateMetrics | None:
        """Secondary lookup for readers that need one. Default: none."""
        return None

    @abstractmethod
    def normalize(self, record: ProviderRecord, metrics: AggregateMetrics | None = None) -> NormalizedRecord:
        """Flatten one provider record."""

    async def prepare(self, provider: HealthProvider, record: ProviderRecord) -> NormalizedRecord | None:
        """Filter, enrich and normalize one record. None means filtered out."""
        if not self.accepts(record):
            logger.debug(f"[{self.record_type.value}] Filtered out {record.record_id}")
            return None

        try:
            metrics = await self.enrich(provider, record)
        except Exception as e:
            logger.warning(f"[{self.record_type.value}] Enrichment failed for {record.record_id}: {e}")
            metrics = None

        return self.normalize(record, metrics)

    async def read_all(self, provider: HealthProvider, start: datetime, end: datetime) -> list[NormalizedRecord]:
        """Query the window and normalize every accepted record."""
        records = await provider.query(self.record_type, start, end)
        normalized = []
        for record in records:
            try:
                item = await self.prepare(provider, record)
            except NormalizationError as e:
                logger.error(f"[{self.record_type.value}] Skipping malformed record {record.record_id}: {e}")
                continue
            if item is not None:
                normalized.append(item)
        return normalized

    # ── helpers ──────────────────────────────────────────────────────

    def instant(self, record: ProviderRecord, fields: dict[str, FieldValue]) -> NormalizedRecord:
        """Build a point-in-time record."""
        if record.time is None:
            raise NormalizationError(f"{self.record_type.value} record {record.record_id} has no time")
        return NormalizedRecord(
            record_type=self.record_type,
            record_id=record.record_id,
            source=record.source,
            timestamp=format_instant(record.time, record.zone_offset),
            fields=fields,
            client_record_id=record.client_record_id,
        )

    def interval(self, record: ProviderRecord, fields: dict[str, FieldValue]) -> NormalizedRecord:
        """Build a record spanning start_time..end_time."""
        if record.start_time is None or record.end_time is None:
            raise NormalizationError(f"{self.record_type.value} record {record.record_id} has no interval")
        return NormalizedRecord(
            record_type=self.record_type,
            record_id=record.record_id,
            source=record.source,
            start_time=format_instant(record.start_time, record.zone_offset),
            end_time=format_instant(record.end_time, record.end_zone_offset or record.zone_offset),
            fields=fields,
            client_record_id=record.client_record_id,
        )
