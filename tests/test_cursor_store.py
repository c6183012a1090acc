"""Tests for the durable cursor store."""

import json
from datetime import datetime, timezone

import pytest

from health_exporter.core.cursor_store import CURSOR_SCHEMA_VERSION, CursorStore


class TestCursorStore:
    def test_load_missing_returns_none(self, tmp_path):
        store = CursorStore(tmp_path / "cursor.json")
        assert store.load() is None
        assert store.last_saved_at is None

    def test_save_then_load(self, tmp_path):
        store = CursorStore(tmp_path / "state" / "cursor.json")
        store.save("tok-1")
        assert store.load() == "tok-1"

        data = json.loads((tmp_path / "state" / "cursor.json").read_text())
        assert data["cursor"] == "tok-1"
        assert data["version"] == CURSOR_SCHEMA_VERSION

    def test_save_replaces_previous(self, tmp_path):
        store = CursorStore(tmp_path / "cursor.json")
        store.save("tok-1")
        store.save("tok-2")
        assert store.load() == "tok-2"
        assert not list(tmp_path.glob(".cursor-*.tmp"))

    def test_survives_new_instance(self, tmp_path):
        CursorStore(tmp_path / "cursor.json").save("tok-1")
        assert CursorStore(tmp_path / "cursor.json").load() == "tok-1"

    def test_clear(self, tmp_path):
        store = CursorStore(tmp_path / "cursor.json")
        store.save("tok-1")
        store.clear()
        assert store.load() is None
        store.clear()  # idempotent

    def test_rejects_empty_cursor(self, tmp_path):
        store = CursorStore(tmp_path / "cursor.json")
        with pytest.raises(ValueError):
            store.save("")

    def test_corrupt_file_loads_as_none(self, tmp_path):
        path = tmp_path / "cursor.json"
        path.write_text("{not json")
        assert CursorStore(path).load() is None

    def test_unknown_version_loads_as_none(self, tmp_path):
        path = tmp_path / "cursor.json"
        path.write_text(json.dumps({"cursor": "tok", "saved_at": 0, "version": 99}))
        assert CursorStore(path).load() is None

    def test_last_saved_at_is_aware_utc(self, tmp_path):
        store = CursorStore(tmp_path / "cursor.json")
        before = datetime.now(timezone.utc)
        store.save("tok-1")
        saved_at = store.last_saved_at
        assert saved_at.tzinfo is not None
        assert (saved_at - before).total_seconds() > -1
