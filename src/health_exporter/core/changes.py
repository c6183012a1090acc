"""
Change feed reconciliation.

Events from every page of one poll are folded into a single view where only
the latest event per record id survives, then dispatched to the readers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from health_exporter.core.errors import NormalizationError
from health_exporter.models.provider import ChangeBatch, ChangeEvent, Deletion, ProviderRecord, Upsert
from health_exporter.models.record import NormalizedRecord, TrackedRecordType

if TYPE_CHECKING:
    from health_exporter.readers.registry import ReaderRegistry

logger = logging.getLogger(__name__)


def event_key(event: ChangeEvent) -> str:
    if isinstance(event, Upsert):
        return event.record.record_id
    return event.record_id


@dataclass
class ReconciledChanges:
    """Upserts grouped by type plus the ids deleted since the last cursor."""

    upserts: dict[TrackedRecordType, list[NormalizedRecord]] = field(default_factory=dict)
    deletions: list[str] = field(default_factory=list)
    skipped_categories: set[str] = field(default_factory=set)
    filtered: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.deletions and not any(self.upserts.values())


class ChangeAccumulator:
    """Last-event-wins fold over change batches."""

    def __init__(self):
        self._latest: dict[str, ChangeEvent] = {}
        self.pages = 0
        self.events_seen = 0

    def add(self, event: ChangeEvent) -> None:
        key = event_key(event)
        # Re-insert so iteration order follows the most recent event.
        self._latest.pop(key, None)
        self._latest[key] = event
        self.events_seen += 1

    def add_batch(self, batch: ChangeBatch) -> None:
        for event in batch.events:
            self.add(event)
        self.pages += 1

    def __len__(self) -> int:
        return len(self._latest)

    @property
    def upserts(self) -> list[ProviderRecord]:
        return [e.record for e in self._latest.values() if isinstance(e, Upsert)]

    @property
    def deletions(self) -> list[str]:
        return [e.record_id for e in self._latest.values() if isinstance(e, Deletion)]

    async def reconcile(self, registry: ReaderRegistry) -> ReconciledChanges:
        """Normalize surviving upserts through their readers."""
        result = ReconciledChanges(
            upserts={t: [] for t in registry.list_types()},
            deletions=self.deletions,
        )

        for record in self.upserts:
            reader = registry.resolve(record.category)
            if reader is None:
                if record.category not in result.skipped_categories:
                    logger.warning(f"Skipping changes for untracked category {record.category!r}")
                result.skipped_categories.add(record.category)
                continue

            try:
                normalized = await registry.normalize_change(record)
            except NormalizationError as e:
                logger.error(f"[{record.category}] Skipping malformed change {record.record_id}: {e}")
                result.filtered += 1
                continue

            if normalized is None:
                result.filtered += 1
                continue
            result.upserts[reader.record_type].append(normalized)

        return result
