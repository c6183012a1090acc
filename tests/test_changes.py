"""Tests for change feed reconciliation."""

import pytest

from conftest import NOW, FakeProvider, exercise_record, weight_record
from health_exporter.core.changes import ChangeAccumulator
from health_exporter.models.provider import ChangeBatch, Deletion, ProviderRecord, Upsert
from health_exporter.models.record import TrackedRecordType
from health_exporter.readers.registry import default_registry


class TestChangeAccumulator:
    def test_upsert_then_delete_is_deleted(self):
        acc = ChangeAccumulator()
        acc.add(Upsert(weight_record("w1")))
        acc.add(Deletion("w1"))
        assert acc.deletions == ["w1"]
        assert acc.upserts == []

    def test_delete_then_upsert_is_upserted(self):
        acc = ChangeAccumulator()
        acc.add(Deletion("w1"))
        acc.add(Upsert(weight_record("w1", kg=90)))
        assert acc.deletions == []
        assert [r.values["weight"] for r in acc.upserts] == [90]

    def test_latest_upsert_wins(self):
        acc = ChangeAccumulator()
        acc.add_batch(ChangeBatch(events=[Upsert(weight_record("w1", kg=70))], has_more=True))
        acc.add_batch(ChangeBatch(events=[Upsert(weight_record("w1", kg=71))]))
        assert len(acc) == 1
        assert acc.upserts[0].values["weight"] == 71
        assert acc.pages == 2
        assert acc.events_seen == 2


class TestReconcile:
    @pytest.mark.asyncio
    async def test_grouped_by_type(self):
        acc = ChangeAccumulator()
        acc.add(Upsert(weight_record("w1")))
        acc.add(Upsert(exercise_record("e1", minutes=40)))
        acc.add(Deletion("s1"))

        changes = await acc.reconcile(default_registry(FakeProvider()))

        assert [r.record_id for r in changes.upserts[TrackedRecordType.WEIGHT]] == ["w1"]
        assert [r.record_id for r in changes.upserts[TrackedRecordType.EXERCISE_SESSION]] == ["e1"]
        assert changes.deletions == ["s1"]
        assert not changes.is_empty

    @pytest.mark.asyncio
    async def test_unknown_category_skipped(self):
        acc = ChangeAccumulator()
        acc.add(Upsert(ProviderRecord(record_id="m1", category="mindfulness_session", time=NOW)))

        changes = await acc.reconcile(default_registry(FakeProvider()))

        assert changes.skipped_categories == {"mindfulness_session"}
        assert changes.is_empty

    @pytest.mark.asyncio
    async def test_malformed_and_filtered_changes_dropped(self):
        acc = ChangeAccumulator()
        acc.add(Upsert(ProviderRecord(record_id="w1", category="weight", values={"weight": 70})))
        acc.add(Upsert(exercise_record("e1", minutes=1)))

        changes = await acc.reconcile(default_registry(FakeProvider()))

        assert changes.filtered == 2
        assert changes.is_empty
