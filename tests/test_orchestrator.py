"""Tests for the export orchestrator: cursor lifecycle and fallback paths."""

import asyncio

import pytest

from conftest import NOW, FakeProvider, MemorySink, exercise_record, weight_record
from health_exporter.core.cursor_store import CursorStore
from health_exporter.core.document_builder import to_payload
from health_exporter.core.errors import (
    CursorExpiredError,
    DeliveryError,
    PermissionDeniedError,
    ProviderUnavailableError,
)
from health_exporter.core.orchestrator import ExportOrchestrator, ExportOutcome, ExportState
from health_exporter.models.document import ExportKind
from health_exporter.models.provider import ChangeBatch, Deletion, Upsert
from health_exporter.models.record import TrackedRecordType
from health_exporter.readers.registry import default_registry


@pytest.fixture
def store(tmp_path):
    return CursorStore(tmp_path / "cursor.json")


def make_orchestrator(provider, store, *sinks):
    return ExportOrchestrator(
        provider=provider,
        registry=default_registry(provider),
        cursor_store=store,
        sinks=list(sinks) or [MemorySink()],
        clock=lambda: NOW,
    )


class OrderRecordingProvider(FakeProvider):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = []

    async def issue_cursor(self, record_types):
        self.calls.append("issue_cursor")
        return await super().issue_cursor(record_types)

    async def query(self, record_type, start, end):
        self.calls.append("query")
        return await super().query(record_type, start, end)


class RevokedDuringReadsProvider(FakeProvider):
    """Refuses weight reads; every other type answers after a short delay."""

    async def query(self, record_type, start, end):
        if record_type is TrackedRecordType.WEIGHT:
            raise PermissionDeniedError("weight access revoked")
        await asyncio.sleep(0.01)
        self.queries.append(record_type)
        return []


# ═══════════════════════════════════════════
# Bootstrap
# ═══════════════════════════════════════════


class TestBootstrap:
    @pytest.mark.asyncio
    async def test_first_run_is_full(self, provider, store, sink):
        provider.records[TrackedRecordType.WEIGHT] = [weight_record("w1")]
        orchestrator = make_orchestrator(provider, store, sink)
        assert orchestrator.state() is ExportState.UNINITIALIZED

        report = await orchestrator.run()

        assert report.outcome is ExportOutcome.FULL
        assert sink.documents[0].kind is ExportKind.FULL
        assert store.load() == "cursor-1"
        assert orchestrator.state() is ExportState.STEADY

    @pytest.mark.asyncio
    async def test_cursor_issued_for_tracked_types_before_reads(self, store):
        provider = OrderRecordingProvider()
        await make_orchestrator(provider, store).run()
        assert provider.calls[0] == "issue_cursor"
        assert provider.calls.count("issue_cursor") == 1
        assert set(provider.issued_types) == set(TrackedRecordType)

    @pytest.mark.asyncio
    async def test_bootstrap_happens_once(self, provider, store, sink):
        orchestrator = make_orchestrator(provider, store, sink)
        await orchestrator.run()
        provider.queries.clear()

        for _ in range(3):
            report = await orchestrator.run()
            assert report.outcome is not ExportOutcome.FULL

        assert provider.issued == 1
        assert provider.queries == []

    @pytest.mark.asyncio
    async def test_every_section_present(self, provider, store, sink):
        await make_orchestrator(provider, store, sink).run()
        payload = to_payload(sink.documents[0])
        for record_type in TrackedRecordType:
            assert payload[record_type.records_key] == {"count": 0, "data": []}

    @pytest.mark.asyncio
    async def test_failing_reader_yields_empty_section(self, provider, store, sink):
        provider.records[TrackedRecordType.WEIGHT] = [weight_record("w1")]
        provider.fail_types.add(TrackedRecordType.HEART_RATE)

        report = await make_orchestrator(provider, store, sink).run()

        payload = to_payload(sink.documents[0])
        assert payload["heart_rate_records"]["count"] == 0
        assert payload["weight_records"]["count"] == 1
        assert report.failed_types == ["heart_rate"]
        assert store.load() == "cursor-1"


# ═══════════════════════════════════════════
# Incremental
# ═══════════════════════════════════════════


class TestIncremental:
    @pytest.mark.asyncio
    async def test_no_changes_advances_cursor(self, provider, store, sink):
        store.save("c0")
        provider.batches = [ChangeBatch(next_cursor="c1")]

        report = await make_orchestrator(provider, store, sink).run()

        assert report.outcome is ExportOutcome.NO_CHANGES
        assert sink.documents == []
        assert store.load() == "c1"

    @pytest.mark.asyncio
    async def test_follows_all_pages(self, provider, store, sink):
        store.save("c0")
        provider.batches = [
            ChangeBatch(events=[Upsert(weight_record("w1"))], next_cursor="c1", has_more=True),
            ChangeBatch(events=[Upsert(weight_record("w2"))], next_cursor="c2"),
        ]

        report = await make_orchestrator(provider, store, sink).run()

        assert provider.polled == ["c0", "c1"]
        assert report.counts["weight"] == 2
        assert store.load() == "c2"

    @pytest.mark.asyncio
    async def test_deletion_precedence(self, provider, store, sink):
        store.save("c0")
        provider.batches = [
            ChangeBatch(
                events=[
                    Upsert(weight_record("w1")),
                    Deletion("w1"),
                    Deletion("w2"),
                    Upsert(weight_record("w2", kg=66)),
                ],
                next_cursor="c1",
            )
        ]

        await make_orchestrator(provider, store, sink).run()

        payload = to_payload(sink.documents[0])
        assert payload["deletions"]["record_ids"] == ["w1"]
        assert [d["record_id"] for d in payload["weight_changes"]["data"]] == ["w2"]

    @pytest.mark.asyncio
    async def test_only_untracked_changes_is_no_op(self, provider, store, sink):
        from health_exporter.models.provider import ProviderRecord

        store.save("c0")
        provider.batches = [
            ChangeBatch(
                events=[Upsert(ProviderRecord(record_id="m1", category="mindfulness_session", time=NOW))],
                next_cursor="c1",
            )
        ]

        report = await make_orchestrator(provider, store, sink).run()

        assert report.outcome is ExportOutcome.NO_CHANGES
        assert report.skipped_categories == ["mindfulness_session"]
        assert store.load() == "c1"

    @pytest.mark.asyncio
    async def test_provider_outage_leaves_cursor(self, provider, store, sink):
        store.save("c0")
        provider.poll_error = ProviderUnavailableError("timeout")

        with pytest.raises(ProviderUnavailableError):
            await make_orchestrator(provider, store, sink).run()

        assert store.load() == "c0"
        assert sink.documents == []


# ═══════════════════════════════════════════
# Cursor expiry
# ═══════════════════════════════════════════


class TestCursorExpiry:
    @pytest.mark.asyncio
    async def test_expired_batch_falls_back_to_full(self, provider, store, sink):
        store.save("stale")
        provider.batches = [ChangeBatch(expired=True)]
        provider.records[TrackedRecordType.WEIGHT] = [weight_record("w1")]

        report = await make_orchestrator(provider, store, sink).run()

        assert report.outcome is ExportOutcome.FULL
        assert report.fell_back is True
        assert [d.kind for d in sink.documents] == [ExportKind.FULL]
        assert store.load() == "cursor-1"

    @pytest.mark.asyncio
    async def test_expiry_raised_by_provider(self, provider, store, sink):
        store.save("stale")
        provider.poll_error = CursorExpiredError("gone")

        report = await make_orchestrator(provider, store, sink).run()

        assert report.fell_back is True
        assert store.load() == "cursor-1"


# ═══════════════════════════════════════════
# Failure paths
# ═══════════════════════════════════════════


class TestFailures:
    @pytest.mark.asyncio
    async def test_permission_denied_reads_nothing(self, store, sink):
        provider = FakeProvider(granted=False)
        store.save("c0")

        with pytest.raises(PermissionDeniedError):
            await make_orchestrator(provider, store, sink).run()

        assert provider.queries == []
        assert provider.polled == []
        assert store.load() == "c0"

    @pytest.mark.asyncio
    async def test_permission_revoked_during_reads_cancels_other_types(self, store, sink):
        provider = RevokedDuringReadsProvider()
        orchestrator = make_orchestrator(provider, store, sink)

        with pytest.raises(PermissionDeniedError):
            await orchestrator.run()
        finished = len(provider.queries)
        await asyncio.sleep(0.1)

        assert len(provider.queries) == finished
        assert finished < len(TrackedRecordType) - 1
        assert orchestrator.registry.failures == {}
        assert sink.documents == []
        assert store.load() is None

    @pytest.mark.asyncio
    async def test_delivery_failure_keeps_cursor(self, provider, store):
        store.save("c0")
        provider.batches = [ChangeBatch(events=[Upsert(weight_record("w1"))], next_cursor="c1")]

        with pytest.raises(DeliveryError):
            await make_orchestrator(provider, store, MemorySink(fail=True)).run()
        assert store.load() == "c0"

        # Retry covers the same window again.
        provider.batches = [ChangeBatch(events=[Upsert(weight_record("w1"))], next_cursor="c1")]
        sink = MemorySink()
        await make_orchestrator(provider, store, sink).run()
        assert provider.polled == ["c0", "c0"]
        assert store.load() == "c1"
        assert sink.documents[0].counts()["weight"] == 1

    @pytest.mark.asyncio
    async def test_bootstrap_delivery_failure_stays_uninitialized(self, provider, store):
        with pytest.raises(DeliveryError):
            await make_orchestrator(provider, store, MemorySink(), MemorySink(fail=True)).run()
        assert store.load() is None

    @pytest.mark.asyncio
    async def test_unexpected_sink_error_wrapped(self, provider, store):
        class BrokenSink(MemorySink):
            async def deliver(self, document):
                raise OSError("read-only filesystem")

        with pytest.raises(DeliveryError):
            await make_orchestrator(provider, store, BrokenSink()).run()

    def test_requires_a_sink(self, provider, store):
        with pytest.raises(ValueError):
            ExportOrchestrator(provider, default_registry(provider), store, sinks=[])


# ═══════════════════════════════════════════
# End-to-end
# ═══════════════════════════════════════════


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_full_then_differential(self, provider, store, sink):
        provider.records[TrackedRecordType.WEIGHT] = [
            weight_record("w1", 70.1),
            weight_record("w2", 70.4),
            weight_record("w3", 69.9),
        ]
        orchestrator = make_orchestrator(provider, store, sink)

        first = await orchestrator.run()
        full = to_payload(sink.documents[0])
        assert first.outcome is ExportOutcome.FULL
        assert full["weight_records"]["count"] == 3
        assert full["exercise_session_records"]["count"] == 0
        cursor = store.load()

        provider.batches = [
            ChangeBatch(
                events=[Upsert(weight_record("w4", 69.5)), Deletion("e1")],
                next_cursor="after-second",
            )
        ]
        second = await orchestrator.run()
        diff = to_payload(sink.documents[1])

        assert provider.polled == [cursor]
        assert second.outcome is ExportOutcome.DIFFERENTIAL
        assert diff["export_type"] == "DIFFERENTIAL"
        assert diff["weight_changes"]["count"] == 1
        assert diff["weight_changes"]["data"][0]["record_id"] == "w4"
        assert diff["deletions"] == {"count": 1, "record_ids": ["e1"]}
        assert store.load() == "after-second"

    @pytest.mark.asyncio
    async def test_short_exercise_never_exported(self, provider, store, sink):
        provider.records[TrackedRecordType.EXERCISE_SESSION] = [
            exercise_record("e-short", minutes=1),
            exercise_record("e-long", minutes=35),
        ]
        await make_orchestrator(provider, store, sink).run()
        data = to_payload(sink.documents[0])["exercise_session_records"]["data"]
        assert [d["record_id"] for d in data] == ["e-long"]
