"""
Unit tests for CacheManager.

Tests the store/retrieve path across the fast, medium and durable tiers,
expiry, promotion, eviction, maintenance passes and metrics.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from epg_core.normalizer.schemas import CacheEntry, TimeRange
from epg_core.orchestrator.access_patterns import AccessPattern
from epg_core.orchestrator.cache_manager import CacheManager, is_expired
from epg_core.storage import SessionStore
from epg_core.utils.exceptions import CacheError, InvalidParametersError


def expired_entry(channel_id: str, programs) -> CacheEntry:
    past = datetime.now(timezone.utc) - timedelta(hours=5)
    return CacheEntry.create(channel_id, programs, ttl_seconds=3600, now=past)


def seed_pattern(cache: CacheManager, channel_id: str, count: int = 4, minutes_ago: float = 5, frequency: float = 0.0):
    now = datetime.now(timezone.utc)
    cache.patterns._patterns[channel_id] = AccessPattern(
        count=count,
        first_access=now - timedelta(minutes=minutes_ago),
        last_access=now,
        frequency=frequency,
    )


class TestIsExpired:
    """Test the expiry predicate."""

    def test_missing_value_is_expired(self):
        assert is_expired(None)
        assert CacheManager.is_expired(None)

    def test_past_and_future(self):
        now = datetime.now(timezone.utc)

        assert is_expired(now - timedelta(seconds=1), now)
        assert not is_expired(now + timedelta(hours=1), now)
        assert not is_expired(now, now)


class TestStoreAndRetrieve:
    """Test basic store/retrieve behavior."""

    def test_round_trip(self, cache_manager, todays_programs):
        entry = cache_manager.store("canal7.ar", todays_programs)

        assert entry.expires_at - entry.last_updated == timedelta(seconds=7200)
        assert cache_manager.retrieve("canal7.ar") == todays_programs
        assert cache_manager.get_performance_metrics()["hits"]["fast"] == 1

    def test_time_range_filter(self, cache_manager, todays_programs, now):
        cache_manager.store("canal7.ar", todays_programs)

        window = TimeRange(start=now + timedelta(minutes=35), end=now + timedelta(minutes=65))
        titles = [p.title for p in cache_manager.retrieve("canal7.ar", window)]

        assert titles == ["Cooking", "Documentary"]

    def test_miss(self, cache_manager):
        assert cache_manager.retrieve("unknown") is None
        assert cache_manager.get_performance_metrics()["misses"] == 1

    def test_program_dicts_accepted(self, cache_manager, todays_programs):
        cache_manager.store("canal7.ar", [p.to_dict() for p in todays_programs])

        assert cache_manager.retrieve("canal7.ar") == todays_programs

    def test_empty_list_accepted(self, cache_manager):
        cache_manager.store("canal7.ar", [])

        assert cache_manager.retrieve("canal7.ar") == []

    @pytest.mark.parametrize("channel_id", [None, "", "   ", 42])
    def test_invalid_channel_id(self, cache_manager, channel_id):
        with pytest.raises(InvalidParametersError):
            cache_manager.store(channel_id, [])

    @pytest.mark.parametrize("programs", [None, "programs", {"a": 1}, [1], [{"title": "no times"}]])
    def test_invalid_programs(self, cache_manager, programs):
        with pytest.raises(InvalidParametersError):
            cache_manager.store("canal7.ar", programs)

    @pytest.mark.parametrize("channel_id", [None, "", "   ", 42])
    def test_retrieve_invalid_channel_id(self, cache_manager, channel_id):
        with pytest.raises(InvalidParametersError):
            cache_manager.retrieve(channel_id)

        assert cache_manager.get_performance_metrics()["misses"] == 0

    def test_store_replaces_entry(self, cache_manager, todays_programs, make_program):
        cache_manager.store("canal7.ar", todays_programs)
        cache_manager.store("canal7.ar", [make_program(title="Replacement")])

        assert [p.title for p in cache_manager.retrieve("canal7.ar")] == ["Replacement"]
        assert cache_manager.get_storage_stats()["fast"]["entries"] == 1

    def test_retrieve_multiple(self, cache_manager, todays_programs):
        cache_manager.store("canal7.ar", todays_programs)

        result = cache_manager.retrieve_multiple(["canal7.ar", "missing"])

        assert list(result) == ["canal7.ar"]


class TestTiers:
    """Test tier selection and fallthrough."""

    def test_current_day_written_to_medium(self, cache_manager, todays_programs):
        cache_manager.store("canal7.ar", todays_programs)

        assert cache_manager.session.get("canal7.ar") is not None
        assert cache_manager.durable.get("canal7.ar") is not None

    def test_future_data_skips_medium(self, cache_manager, future_programs):
        cache_manager.store("canal7.ar", future_programs)

        assert cache_manager.session.get("canal7.ar") is None
        assert cache_manager.durable.get("canal7.ar") is not None
        assert cache_manager.get_performance_metrics()["stores"] == {"fast": 1, "medium": 0, "durable": 1}

    def test_medium_hit(self, cache_manager, todays_programs):
        cache_manager.store("canal7.ar", todays_programs)
        cache_manager._remove_from_memory("canal7.ar")

        assert cache_manager.retrieve("canal7.ar") == todays_programs
        assert cache_manager.get_performance_metrics()["hits"]["medium"] == 1

    def test_durable_fallback_writes_through_to_medium(self, cache_manager, todays_programs):
        cache_manager.store("canal7.ar", todays_programs)
        cache_manager._remove_from_memory("canal7.ar")
        cache_manager.session.delete("canal7.ar")

        assert cache_manager.retrieve("canal7.ar") == todays_programs
        assert cache_manager.get_performance_metrics()["hits"]["durable"] == 1
        assert cache_manager.session.get("canal7.ar") is not None

    def test_expired_entries_are_misses(self, cache_manager, todays_programs):
        entry = expired_entry("canal7.ar", todays_programs)
        cache_manager._store_in_memory(entry)
        cache_manager.session.put(entry)
        cache_manager.durable.put(entry)

        assert cache_manager.retrieve("canal7.ar") is None
        assert not cache_manager.is_cached_in_memory("canal7.ar")

    def test_allow_stale_returns_expired(self, cache_manager, todays_programs):
        cache_manager.durable.put(expired_entry("canal7.ar", todays_programs))

        assert cache_manager.retrieve("canal7.ar") is None
        assert cache_manager.retrieve("canal7.ar", allow_stale=True) == todays_programs
        assert cache_manager.session.get("canal7.ar") is None

    def test_durable_failure_does_not_abort_store(self, cache_manager, todays_programs):
        error = CacheError("disk full", operation="write", tier="durable")
        with patch.object(cache_manager.durable, "put", side_effect=error):
            cache_manager.store("canal7.ar", todays_programs)

        assert cache_manager.retrieve("canal7.ar") == todays_programs
        assert cache_manager.get_performance_metrics()["stores"]["durable"] == 0

    def test_medium_read_failure_falls_through(self, cache_manager, todays_programs):
        cache_manager.store("canal7.ar", todays_programs)
        cache_manager._remove_from_memory("canal7.ar")

        with patch.object(cache_manager.session, "get", side_effect=CacheError("io", tier="medium")):
            assert cache_manager.retrieve("canal7.ar") == todays_programs

        assert cache_manager.get_performance_metrics()["hits"]["durable"] == 1


class TestPromotion:
    """Test promotion of hot channels into the fast tier."""

    def test_hot_channel_promoted(self, cache_manager, todays_programs):
        cache_manager.store("canal7.ar", todays_programs)
        cache_manager._remove_from_memory("canal7.ar")
        seed_pattern(cache_manager, "canal7.ar", count=4, minutes_ago=5)

        cache_manager.retrieve("canal7.ar")

        assert cache_manager.is_cached_in_memory("canal7.ar")

    def test_cold_channel_not_promoted(self, cache_manager, todays_programs):
        cache_manager.store("canal7.ar", todays_programs)
        cache_manager._remove_from_memory("canal7.ar")

        cache_manager.retrieve("canal7.ar")

        assert not cache_manager.is_cached_in_memory("canal7.ar")

    def test_stale_entry_never_promoted(self, cache_manager, todays_programs):
        cache_manager.durable.put(expired_entry("canal7.ar", todays_programs))
        seed_pattern(cache_manager, "canal7.ar", count=10, minutes_ago=5)

        cache_manager.retrieve("canal7.ar", allow_stale=True)

        assert not cache_manager.is_cached_in_memory("canal7.ar")


class TestFastTierEviction:
    """Test byte-budget eviction of the fast tier."""

    @staticmethod
    def _entry_size(make_program) -> int:
        return CacheEntry.create("ch0", [make_program(channel_id="ch0")], ttl_seconds=60).size

    def test_lowest_score_evicted_until_entry_fits(self, session_store, durable_store, make_program):
        size = self._entry_size(make_program)
        with CacheManager(
            memory_max_bytes=4 * size + size // 2,
            session_store=session_store,
            durable_store=durable_store,
            auto_maintenance=False,
        ) as cache:
            for index, frequency in enumerate([5.0, 0.5, 3.0, 4.0]):
                channel_id = f"ch{index}"
                seed_pattern(cache, channel_id, frequency=frequency)
                cache.store(channel_id, [make_program(channel_id=channel_id)])

            cache.store("ch4", [make_program(channel_id="ch4")])

            stats = cache.get_storage_stats()["fast"]
            assert not cache.is_cached_in_memory("ch1")
            assert all(cache.is_cached_in_memory(c) for c in ("ch0", "ch2", "ch3", "ch4"))
            assert stats["size_bytes"] <= stats["max_bytes"]
            assert cache.get_performance_metrics()["evictions"]["fast"] == 1

    def test_old_entry_evicted_before_fresh_at_same_frequency(self, cache_manager, make_program):
        aged = datetime.now(timezone.utc) - timedelta(hours=5)
        cache_manager._store_in_memory(
            CacheEntry.create("old", [make_program(channel_id="old")], ttl_seconds=86400, now=aged)
        )
        for channel_id in ("ch0", "ch1", "ch2"):
            cache_manager._store_in_memory(
                CacheEntry.create(channel_id, [make_program(channel_id=channel_id)], ttl_seconds=86400)
            )
        for channel_id in ("old", "ch0", "ch1", "ch2"):
            seed_pattern(cache_manager, channel_id, frequency=1.0)

        victims = cache_manager._evict_from_memory()

        assert victims == ["old"]
        assert all(cache_manager.is_cached_in_memory(c) for c in ("ch0", "ch1", "ch2"))

    def test_frequent_reads_outweigh_age(self, cache_manager, make_program):
        aged = datetime.now(timezone.utc) - timedelta(hours=2)
        cache_manager._store_in_memory(
            CacheEntry.create("busy", [make_program(channel_id="busy")], ttl_seconds=86400, now=aged)
        )
        cache_manager._store_in_memory(
            CacheEntry.create("idle", [make_program(channel_id="idle")], ttl_seconds=86400)
        )
        seed_pattern(cache_manager, "busy", frequency=10.0)
        seed_pattern(cache_manager, "idle", frequency=0.0)

        assert cache_manager._evict_from_memory() == ["idle"]
        assert cache_manager.is_cached_in_memory("busy")

    def test_evicts_quarter_rounded_up(self, cache_manager, make_program):
        for index in range(5):
            cache_manager.store(f"ch{index}", [make_program(channel_id=f"ch{index}")])

        victims = cache_manager._evict_from_memory()

        assert len(victims) == 2
        assert cache_manager.get_storage_stats()["fast"]["entries"] == 3


class TestSessionEviction:
    """Test quota-driven eviction of the medium tier."""

    def test_quota_evicts_coldest_and_retries(self, tmp_path, durable_store, make_program):
        session = SessionStore(directory=tmp_path / "quota", max_bytes=10 * 1024 * 1024)
        with CacheManager(session_store=session, durable_store=durable_store, auto_maintenance=False) as cache:
            seed_pattern(cache, "chB", frequency=1.0)
            cache.store("chA", [make_program(channel_id="chA")])
            cache.store("chB", [make_program(channel_id="chB")])
            record_size = session.total_size() // 2
            session.max_bytes = session.total_size() + record_size // 2

            cache.store("chC", [make_program(channel_id="chC")])

            assert session.get("chA") is None
            assert session.get("chB") is not None
            assert session.get("chC") is not None
            metrics = cache.get_performance_metrics()
            assert metrics["evictions"]["medium"] == 1
            assert metrics["stores"]["medium"] == 3


class TestMaintenance:
    """Test cleanup and optimization passes."""

    def test_cleanup_removes_expired_in_every_tier(self, cache_manager, todays_programs):
        entry = expired_entry("old.ar", todays_programs)
        cache_manager._store_in_memory(entry)
        cache_manager.session.put(entry)
        cache_manager.durable.put(entry)
        cache_manager.store("canal7.ar", todays_programs)

        removed = cache_manager.cleanup()

        assert removed == {"fast": 1, "medium": 1, "durable": 1}
        assert cache_manager.retrieve("canal7.ar") == todays_programs

    def test_optimize_promotes_most_accessed(self, cache_manager, todays_programs):
        cache_manager.store("canal7.ar", todays_programs)
        cache_manager.retrieve("canal7.ar")
        cache_manager._remove_from_memory("canal7.ar")

        results = cache_manager.optimize_cache()

        assert results["promoted"] == 1
        assert results["rebalanced"] == 0
        assert cache_manager.is_cached_in_memory("canal7.ar")

    def test_optimize_rebalances_from_medium(self, cache_manager, todays_programs):
        cache_manager.store("telefe.ar", todays_programs)
        cache_manager._remove_from_memory("telefe.ar")

        results = cache_manager.optimize_cache()

        assert results["rebalanced"] == 1
        assert cache_manager.is_cached_in_memory("telefe.ar")

    def test_optimize_prunes_idle_patterns(self, cache_manager):
        long_ago = datetime.now(timezone.utc) - timedelta(days=2)
        cache_manager.patterns._patterns["idle"] = AccessPattern(
            count=1, first_access=long_ago, last_access=long_ago
        )

        assert cache_manager.optimize_cache()["patterns_pruned"] == 1
        assert cache_manager.patterns.get("idle") is None

    def test_maintenance_started_when_enabled(self, session_store, durable_store):
        cache = CacheManager(session_store=session_store, durable_store=durable_store, auto_maintenance=True)
        try:
            assert cache.maintenance.is_running()
        finally:
            cache.shutdown()

        assert not cache.maintenance.is_running()


class TestMetrics:
    """Test performance metrics and reset."""

    def test_hit_rate_and_most_accessed(self, cache_manager, todays_programs):
        cache_manager.store("canal7.ar", todays_programs)
        for _ in range(3):
            cache_manager.retrieve("canal7.ar")
        cache_manager.retrieve("missing")

        metrics = cache_manager.get_performance_metrics()

        assert metrics["total_requests"] == 4
        assert metrics["hit_rate"] == 75.0
        assert metrics["most_accessed"][0]["channel_id"] == "canal7.ar"
        assert metrics["most_accessed"][0]["count"] == 3
        assert metrics["average_response_time_ms"] >= 0

    def test_reset_metrics(self, cache_manager, todays_programs):
        cache_manager.store("canal7.ar", todays_programs)
        cache_manager.retrieve("canal7.ar")
        old = datetime.now(timezone.utc) - timedelta(days=8)
        cache_manager.patterns._patterns["forgotten"] = AccessPattern(
            count=50, first_access=old, last_access=old
        )

        pruned = cache_manager.reset_metrics()
        metrics = cache_manager.get_performance_metrics()

        assert pruned == 1
        assert metrics["total_requests"] == 0
        assert metrics["average_response_time_ms"] == 0.0
        assert cache_manager.patterns.get("canal7.ar") is not None

    def test_storage_stats(self, cache_manager, todays_programs):
        cache_manager.store("canal7.ar", todays_programs)

        stats = cache_manager.get_storage_stats()

        assert stats["fast"]["entries"] == 1
        assert stats["medium"]["entries"] == 1
        assert stats["durable"]["entries"] == 1
        assert stats["ttl_seconds"] == 7200


class TestEntryManagement:
    """Test invalidation, clearing and lookup helpers."""

    def test_invalidate(self, cache_manager, todays_programs):
        cache_manager.store("canal7.ar", todays_programs)

        assert cache_manager.invalidate("canal7.ar") is True
        assert cache_manager.retrieve("canal7.ar") is None
        assert cache_manager.invalidate("canal7.ar") is False

    def test_clear_all_requires_confirmation(self, cache_manager, todays_programs):
        cache_manager.store("canal7.ar", todays_programs)

        with pytest.raises(CacheError, match="confirmation"):
            cache_manager.clear_all()

        assert cache_manager.clear_all(confirm=True) == {"fast": 1, "medium": 1, "durable": 1}
        assert cache_manager.retrieve("canal7.ar") is None

    def test_get_last_updated(self, cache_manager, todays_programs):
        entry = cache_manager.store("canal7.ar", todays_programs)
        cache_manager._remove_from_memory("canal7.ar")

        assert cache_manager.get_last_updated("canal7.ar") == entry.last_updated
        assert cache_manager.get_last_updated("missing") is None

    def test_repr(self, cache_manager):
        assert "ttl_seconds=7200" in repr(cache_manager)
