"""
Export Orchestrator: one export invocation from permission check to cursor save.

Flow of ``run()``:

1. Verify read permission for every tracked type.
2. No stored cursor: bootstrap. A cursor is issued *before* the window is
   read so nothing written during the read is lost (it may show up again
   in the next differential, which consumers apply idempotently).
3. Stored cursor: drain the change feed, reconcile, build a differential.
   An expired cursor is cleared and the run falls back to a bootstrap.
4. Hand the document to every sink, then save the new cursor.

Any exception before step 4 completes leaves the cursor store untouched, so
the next invocation covers the same window again.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Sequence

from health_exporter.config import Settings
from health_exporter.core import document_builder
from health_exporter.core.changes import ChangeAccumulator
from health_exporter.core.cursor_store import CursorStore
from health_exporter.core.errors import (
    CursorExpiredError,
    DeliveryError,
    PermissionDeniedError,
    ProviderUnavailableError,
)
from health_exporter.models.document import ExportDocument
from health_exporter.models.record import NormalizedRecord, TrackedRecordType
from health_exporter.provider.base import HealthProvider, PermissionChecker
from health_exporter.readers.registry import ReaderRegistry
from health_exporter.sinks.base import DeliverySink

logger = logging.getLogger(__name__)


class ExportState(Enum):
    UNINITIALIZED = "uninitialized"
    STEADY = "steady"


class ExportOutcome(Enum):
    FULL = "full"
    DIFFERENTIAL = "differential"
    NO_CHANGES = "no_changes"


@dataclass
class ExportReport:
    """Summary of one invocation."""

    outcome: ExportOutcome
    trigger: str
    cursor: str
    document: ExportDocument | None = None
    counts: dict[str, int] = field(default_factory=dict)
    deletions: int = 0
    failed_types: list[str] = field(default_factory=list)
    skipped_categories: list[str] = field(default_factory=list)
    fell_back: bool = False
    duration_seconds: float = 0.0

    @property
    def total_records(self) -> int:
        return sum(self.counts.values())

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "trigger": self.trigger,
            "counts": self.counts,
            "deletions": self.deletions,
            "failed_types": self.failed_types,
            "skipped_categories": self.skipped_categories,
            "fell_back": self.fell_back,
            "duration_seconds": round(self.duration_seconds, 3),
        }


class ExportOrchestrator:
    """
    Runs a single export. Holds no state between runs apart from what the
    cursor store persists.
    """

    def __init__(
        self,
        provider: HealthProvider,
        registry: ReaderRegistry,
        cursor_store: CursorStore,
        sinks: Sequence[DeliverySink],
        permissions: PermissionChecker | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        if not sinks:
            raise ValueError("At least one delivery sink is required")
        self.provider = provider
        self.registry = registry
        self.cursor_store = cursor_store
        self.sinks = list(sinks)
        if permissions is None and isinstance(provider, PermissionChecker):
            permissions = provider
        self.permissions = permissions
        self.settings = settings or Settings()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def state(self) -> ExportState:
        if self.cursor_store.load() is None:
            return ExportState.UNINITIALIZED
        return ExportState.STEADY

    # ──────────────────────────────────────────────
    # Entry point
    # ──────────────────────────────────────────────

    async def run(self, trigger: str = "scheduled") -> ExportReport:
        """Perform one export invocation."""
        started = time.monotonic()
        types = self.registry.list_types()
        self.registry.failures.clear()

        await self._check_permissions(types)

        cursor = self.cursor_store.load()
        if cursor is None:
            logger.info(f"No stored cursor, bootstrapping ({trigger})")
            report = await self._bootstrap(types, trigger)
        else:
            try:
                report = await self._incremental(cursor, types, trigger)
            except CursorExpiredError as e:
                logger.warning(f"Change cursor expired ({e}), falling back to full export")
                self.cursor_store.clear()
                report = await self._bootstrap(types, trigger)
                report.fell_back = True

        report.failed_types = [t.value for t in self.registry.failures]
        report.duration_seconds = time.monotonic() - started
        logger.info(
            f"Export finished: {report.outcome.value}, {report.total_records} records, "
            f"{report.deletions} deletions in {report.duration_seconds:.1f}s"
        )
        return report

    async def _check_permissions(self, types: list[TrackedRecordType]) -> None:
        if self.permissions is None:
            logger.debug("No permission checker configured, assuming access")
            return
        if not await self.permissions.has_permission(types):
            raise PermissionDeniedError("Read permission missing for one or more tracked types")

    # ──────────────────────────────────────────────
    # Bootstrap
    # ──────────────────────────────────────────────

    async def _bootstrap(self, types: list[TrackedRecordType], trigger: str) -> ExportReport:
        cursor = await self.provider.issue_cursor(types)
        end = self.clock()
        start = end - timedelta(days=self.settings.lookback_days)
        logger.info(f"Reading {len(types)} types from {start.isoformat()} to {end.isoformat()}")

        per_type = await self._read_window(types, start, end)
        document = document_builder.build_full(per_type, cursor, types, generated_at=end)
        await self._deliver(document)
        self.cursor_store.save(cursor)

        return ExportReport(
            outcome=ExportOutcome.FULL,
            trigger=trigger,
            cursor=cursor,
            document=document,
            counts=document.counts(),
        )

    async def _read_window(
        self, types: list[TrackedRecordType], start: datetime, end: datetime
    ) -> dict[TrackedRecordType, list[NormalizedRecord]]:
        sem = asyncio.Semaphore(self.settings.max_concurrent_reads)

        async def read_one(record_type: TrackedRecordType):
            async with sem:
                return record_type, await self.registry.read_all(record_type, start, end)

        # The first read that escapes the registry cancels every sibling.
        try:
            async with asyncio.TaskGroup() as group:
                tasks = [group.create_task(read_one(t)) for t in types]
        except BaseExceptionGroup as group:
            raise group.exceptions[0] from None
        return dict(task.result() for task in tasks)

    # ──────────────────────────────────────────────
    # Incremental
    # ──────────────────────────────────────────────

    async def _poll(self, cursor: str) -> tuple[ChangeAccumulator, str]:
        """Drain the change feed. Returns the folded events and the cursor to save."""
        accumulator = ChangeAccumulator()
        next_cursor = cursor
        while True:
            batch = await self.provider.poll_changes(next_cursor)
            if batch.expired:
                raise CursorExpiredError("Provider rejected the stored change cursor")
            accumulator.add_batch(batch)
            if batch.has_more and not batch.next_cursor:
                raise ProviderUnavailableError("Change feed reported more pages without a cursor")
            if batch.next_cursor:
                next_cursor = batch.next_cursor
            if not batch.has_more:
                return accumulator, next_cursor

    async def _incremental(self, cursor: str, types: list[TrackedRecordType], trigger: str) -> ExportReport:
        accumulator, next_cursor = await self._poll(cursor)
        logger.info(
            f"Change feed: {accumulator.events_seen} events in {accumulator.pages} pages, "
            f"{len(accumulator)} distinct records"
        )

        changes = await accumulator.reconcile(self.registry)
        skipped = sorted(changes.skipped_categories)

        if changes.is_empty:
            self.cursor_store.save(next_cursor)
            logger.info("No changes since last export")
            return ExportReport(
                outcome=ExportOutcome.NO_CHANGES,
                trigger=trigger,
                cursor=next_cursor,
                skipped_categories=skipped,
            )

        document = document_builder.build_differential(
            changes.upserts, changes.deletions, next_cursor, types, generated_at=self.clock()
        )
        await self._deliver(document)
        self.cursor_store.save(next_cursor)

        return ExportReport(
            outcome=ExportOutcome.DIFFERENTIAL,
            trigger=trigger,
            cursor=next_cursor,
            document=document,
            counts=document.counts(),
            deletions=len(document.deletions),
            skipped_categories=skipped,
        )

    # ──────────────────────────────────────────────
    # Delivery
    # ──────────────────────────────────────────────

    async def _deliver(self, document: ExportDocument) -> None:
        for sink in self.sinks:
            name = getattr(sink, "name", type(sink).__name__)
            try:
                await sink.deliver(document)
            except DeliveryError:
                raise
            except Exception as e:
                raise DeliveryError(f"Sink {name} failed: {e}", sink=name) from e
