#!/usr/bin/env python3
"""Standalone smoke runner that writes results to a file."""
import os
import sys

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "src"))

results = []


def log(msg):
    results.append(msg)


def run_all():
    # --- Test 1: resilience ---
    try:
        from health_exporter.core.resilience import CircuitBreaker, ExponentialBackoff

        b = ExponentialBackoff(max_retries=3)
        assert b.should_retry(0) and not b.should_retry(3)
        cb = CircuitBreaker(failure_threshold=2)
        cb.record_failure("changes")
        cb.record_failure("changes")
        assert cb.is_open("changes")
        log("PASS: resilience")
    except Exception as e:
        log(f"FAIL: resilience: {e}")

    # --- Test 2: cursor store ---
    try:
        import tempfile
        from pathlib import Path

        from health_exporter.core.cursor_store import CursorStore

        with tempfile.TemporaryDirectory() as tmpdir:
            store = CursorStore(Path(tmpdir) / "cursor.json")
            assert store.load() is None
            store.save("tok")
            assert store.load() == "tok"
            store.clear()
            assert store.load() is None
        log("PASS: cursor store")
    except Exception as e:
        log(f"FAIL: cursor store: {e}")

    # --- Test 3: registry covers every type ---
    try:
        from health_exporter.models.record import TrackedRecordType
        from health_exporter.readers import default_registry

        registry = default_registry(provider=None)
        assert set(registry.list_types()) == set(TrackedRecordType)
        log("PASS: reader registry")
    except Exception as e:
        log(f"FAIL: reader registry: {e}")

    # --- Test 4: weight normalization ---
    try:
        from datetime import datetime, timezone

        from health_exporter.models.provider import ProviderRecord
        from health_exporter.readers.measurements import WeightReader

        raw = ProviderRecord(
            record_id="w1",
            category="weight",
            time=datetime(2024, 6, 1, tzinfo=timezone.utc),
            values={"weight": {"value": 154, "unit": "lb"}},
        )
        record = WeightReader().normalize(raw)
        assert abs(record.fields["weight_kg"] - 69.853) < 0.01
        log("PASS: weight normalization")
    except Exception as e:
        log(f"FAIL: weight normalization: {e}")

    # --- Test 5: document builder ---
    try:
        import json

        from health_exporter.core.document_builder import build_differential, render_json, validate_payload
        from health_exporter.models.record import TrackedRecordType

        doc = build_differential({}, ["e1"], "c", list(TrackedRecordType))
        payload = json.loads(render_json(doc))
        validate_payload(payload)
        assert payload["deletions"]["record_ids"] == ["e1"]
        log("PASS: document builder")
    except Exception as e:
        log(f"FAIL: document builder: {e}")

    # --- Test 6: JSON sink write ---
    try:
        import asyncio
        import tempfile
        from pathlib import Path

        from health_exporter.core.document_builder import build_full
        from health_exporter.models.record import TrackedRecordType
        from health_exporter.sinks import get_sink

        async def write_full():
            with tempfile.TemporaryDirectory() as tmpdir:
                sink = get_sink("json", tmpdir)
                await sink.deliver(build_full({}, "c", list(TrackedRecordType)))
                files = list(Path(tmpdir).glob("health_data_FULL_*.json"))
                assert len(files) == 1, files

        asyncio.run(write_full())
        log("PASS: JSON sink")
    except Exception as e:
        log(f"FAIL: JSON sink: {e}")

    # --- Test 7: Lazy __init__ import ---
    try:
        import health_exporter

        assert health_exporter.__version__ == "1.0.0"
        assert health_exporter.ExportOrchestrator.__name__ == "ExportOrchestrator"
        log("PASS: health_exporter lazy imports")
    except Exception as e:
        log(f"FAIL: health_exporter lazy imports: {e}")


if __name__ == "__main__":
    run_all()
    output = "\n".join(results)

    outpath = os.path.join(os.path.dirname(__file__), "test_results.txt")
    total = len(results)
    passed = sum(1 for r in results if r.startswith("PASS"))
    failed = total - passed
    with open(outpath, "w") as f:
        f.write(output + "\n")
        f.write(f"\n=== {passed}/{total} passed, {failed} failed ===\n")

    # Also print to stdout
    print(output)
    print(f"\n=== {passed}/{total} passed, {failed} failed ===")

    sys.exit(0 if failed == 0 else 1)
