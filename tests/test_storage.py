"""
Unit tests for the medium (SessionStore) and durable (DurableStore) tiers.

Tests persistence, quota enforcement, corrupt-record handling and
expiry sweeps.
"""

from datetime import datetime, timedelta, timezone

import pytest

from epg_core.normalizer.schemas import CacheEntry
from epg_core.storage import DurableStore, SessionStore
from epg_core.utils.exceptions import CacheError


@pytest.fixture
def entry(todays_programs) -> CacheEntry:
    return CacheEntry.create("canal7.ar", todays_programs, ttl_seconds=7200)


def expired_entry(channel_id: str, programs) -> CacheEntry:
    past = datetime.now(timezone.utc) - timedelta(hours=5)
    return CacheEntry.create(channel_id, programs, ttl_seconds=3600, now=past)


class TestSessionStore:
    """Test the file-backed medium tier."""

    def test_put_and_get(self, session_store, entry):
        session_store.put(entry)

        restored = session_store.get("canal7.ar")

        assert restored.programs == entry.programs
        assert restored.expires_at == entry.expires_at
        assert "canal7.ar" in session_store
        assert session_store.count() == 1

    def test_file_naming(self, session_store, entry):
        session_store.put(entry)

        files = list(session_store.directory.glob("*.json"))

        assert [f.name for f in files] == ["epg_cache_canal7.ar.json"]

    def test_channel_ids_are_quoted(self, session_store, todays_programs):
        session_store.put(CacheEntry.create("news/24 hs", todays_programs, ttl_seconds=60))

        assert session_store.get("news/24 hs").channel_id == "news/24 hs"
        assert len(list(session_store.directory.iterdir())) == 1

    def test_missing(self, session_store):
        assert session_store.get("nope") is None
        assert session_store.delete("nope") is False

    def test_replace_keeps_one_record(self, session_store, entry, make_program):
        session_store.put(entry)
        session_store.put(CacheEntry.create("canal7.ar", [make_program(title="New")], ttl_seconds=60))

        assert session_store.count() == 1
        assert session_store.get("canal7.ar").programs[0].title == "New"

    def test_quota_exceeded(self, tmp_path, entry):
        store = SessionStore(directory=tmp_path / "tiny", max_bytes=100)

        with pytest.raises(CacheError) as exc_info:
            store.put(entry)

        assert exc_info.value.operation == "quota"
        assert exc_info.value.tier == "medium"
        assert store.count() == 0

    def test_replacing_does_not_double_count(self, tmp_path, entry):
        """The existing record's size is released when it is replaced."""
        store = SessionStore(directory=tmp_path / "exact", max_bytes=10 * 1024 * 1024)
        store.put(entry)
        store.max_bytes = store.total_size()

        store.put(entry)

        assert store.count() == 1

    def test_corrupt_record_removed_on_read(self, session_store, entry):
        session_store.put(entry)
        path = next(session_store.directory.glob("*.json"))
        path.write_text("{ not json", encoding="utf-8")

        assert session_store.get("canal7.ar") is None
        assert not path.exists()

    def test_entries_skip_corrupt(self, session_store, entry, todays_programs):
        session_store.put(entry)
        session_store.put(CacheEntry.create("telefe.ar", todays_programs, ttl_seconds=60))
        (session_store.directory / "epg_cache_broken.json").write_text("[]", encoding="utf-8")

        channel_ids = sorted(e.channel_id for e in session_store.entries())

        assert channel_ids == ["canal7.ar", "telefe.ar"]
        assert session_store.count() == 2

    def test_sweep(self, session_store, entry, todays_programs):
        session_store.put(entry)
        session_store.put(expired_entry("old.ar", todays_programs))
        (session_store.directory / "epg_cache_garbage.json").write_text("nope", encoding="utf-8")

        removed = session_store.sweep()

        assert removed == 2
        assert session_store.get("canal7.ar") is not None
        assert session_store.get("old.ar") is None

    def test_clear(self, session_store, entry):
        session_store.put(entry)

        assert session_store.clear() == 1
        assert session_store.count() == 0
        assert session_store.total_size() == 0

    def test_other_files_ignored(self, session_store, entry):
        (session_store.directory / "notes.json").write_text("{}", encoding="utf-8")
        session_store.put(entry)

        assert session_store.count() == 1


class TestDurableStore:
    """Test the SQLite durable tier."""

    def test_put_and_get(self, durable_store, entry):
        durable_store.put(entry)

        restored = durable_store.get("canal7.ar")

        assert restored.programs == entry.programs
        assert restored.last_updated == entry.last_updated
        assert restored.size == entry.size

    def test_insert_or_replace(self, durable_store, entry, make_program):
        durable_store.put(entry)
        durable_store.put(CacheEntry.create("canal7.ar", [make_program(title="New")], ttl_seconds=60))

        assert durable_store.count() == 1
        assert durable_store.get("canal7.ar").programs[0].title == "New"

    def test_persists_across_connections(self, tmp_path, entry):
        db_path = tmp_path / "persist.db"
        with DurableStore(db_path=db_path) as store:
            store.put(entry)

        with DurableStore(db_path=db_path) as reopened:
            assert reopened.get("canal7.ar") is not None

    def test_schema_indexes(self, durable_store):
        rows = durable_store._get_connection().execute(
            "SELECT name FROM sqlite_master WHERE type = 'index' AND tbl_name = 'epg_cache'"
        ).fetchall()

        assert {"idx_last_updated", "idx_expires_at"} <= {row["name"] for row in rows}

    def test_delete(self, durable_store, entry):
        durable_store.put(entry)

        assert durable_store.delete("canal7.ar") is True
        assert durable_store.delete("canal7.ar") is False
        assert durable_store.get("canal7.ar") is None

    def test_corrupt_row_removed_on_read(self, durable_store, entry):
        durable_store.put(entry)
        durable_store._get_connection().execute(
            "UPDATE epg_cache SET programs = '{broken' WHERE channel_id = ?", ("canal7.ar",)
        )

        assert durable_store.get("canal7.ar") is None
        assert durable_store.count() == 0

    def test_sweep(self, durable_store, entry, todays_programs):
        durable_store.put(entry)
        durable_store.put(expired_entry("old.ar", todays_programs))
        durable_store.put(CacheEntry.create("bad.ar", todays_programs, ttl_seconds=60))
        durable_store._get_connection().execute(
            "UPDATE epg_cache SET last_updated = 'garbage' WHERE channel_id = 'bad.ar'"
        )

        removed = durable_store.sweep()

        assert removed == 2
        assert durable_store.count() == 1
        assert durable_store.get("canal7.ar") is not None

    def test_totals_and_clear(self, durable_store, entry, todays_programs):
        durable_store.put(entry)
        durable_store.put(CacheEntry.create("telefe.ar", todays_programs, ttl_seconds=60))

        assert durable_store.count() == 2
        assert durable_store.total_size() == 2 * entry.size
        assert durable_store.clear() == 2
        assert durable_store.total_size() == 0

    def test_closed_store_reconnects(self, durable_store, entry):
        durable_store.close()
        durable_store.put(entry)

        assert durable_store.count() == 1
