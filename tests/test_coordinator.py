"""
Unit tests for EPGCoordinator.

Uses a real CacheManager over temporary tiers and a mocked fetch
orchestrator.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from epg_core.normalizer.schemas import CacheEntry, ChannelRef, TimeRange
from epg_core.orchestrator.coordinator import EPGCoordinator
from epg_core.utils.exceptions import NoDataAvailableError


@pytest.fixture
def orchestrator():
    mock = MagicMock()
    mock.fetch_epg_data = AsyncMock(return_value={})
    mock.close = AsyncMock()
    mock.get_statistics.return_value = {"requests": 0}
    return mock


@pytest.fixture
def coordinator(orchestrator, cache_manager):
    return EPGCoordinator(orchestrator=orchestrator, cache=cache_manager, stale_after_seconds=3600)


class TestLoadEPGData:
    """Test cache-first loading."""

    @pytest.mark.asyncio
    async def test_served_from_cache(self, coordinator, orchestrator, cache_manager, todays_programs):
        cache_manager.store("canal7.ar", todays_programs)

        result = await coordinator.load_epg_data(["canal7.ar"])

        assert result == {"canal7.ar": todays_programs}
        orchestrator.fetch_epg_data.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_channels_fetched_in_one_call_and_stored(
        self, coordinator, orchestrator, cache_manager, todays_programs, make_program
    ):
        cache_manager.store("canal7.ar", todays_programs)
        telefe = [make_program(channel_id="telefe.ar", title="Novela")]
        orchestrator.fetch_epg_data.return_value = {"telefe.ar": telefe}

        result = await coordinator.load_epg_data(["canal7.ar", "telefe.ar"])

        orchestrator.fetch_epg_data.assert_awaited_once_with(["telefe.ar"])
        assert result["telefe.ar"] == telefe
        assert cache_manager.retrieve("telefe.ar") == telefe

    @pytest.mark.asyncio
    async def test_force_refresh_skips_cache(self, coordinator, orchestrator, cache_manager, todays_programs, make_program):
        cache_manager.store("canal7.ar", todays_programs)
        fresh = [make_program(channel_id="canal7.ar", title="Fresh")]
        orchestrator.fetch_epg_data.return_value = {"canal7.ar": fresh}

        result = await coordinator.load_epg_data(["canal7.ar"], force_refresh=True)

        assert result["canal7.ar"] == fresh
        assert cache_manager.retrieve("canal7.ar") == fresh

    @pytest.mark.asyncio
    async def test_time_range_applied_to_fetched_data(self, coordinator, orchestrator, todays_programs, now):
        orchestrator.fetch_epg_data.return_value = {"canal7.ar": todays_programs}
        window = TimeRange(start=now + timedelta(minutes=30), end=now + timedelta(minutes=60))

        result = await coordinator.load_epg_data(["canal7.ar"], window)

        assert [p.title for p in result["canal7.ar"]] == ["Cooking"]

    @pytest.mark.asyncio
    async def test_stale_fallback_when_all_sources_fail(
        self, coordinator, orchestrator, cache_manager, todays_programs
    ):
        past = datetime.now(timezone.utc) - timedelta(hours=5)
        cache_manager.durable.put(CacheEntry.create("canal7.ar", todays_programs, 3600, now=past))
        orchestrator.fetch_epg_data.side_effect = NoDataAvailableError(
            requested_channels=["canal7.ar"], errors={"A": "down"}
        )

        result = await coordinator.load_epg_data(["canal7.ar"])

        assert result == {"canal7.ar": todays_programs}
        stats = coordinator.get_statistics()["coordinator"]
        assert stats["stale_fallbacks"] == 1
        assert stats["fetch_failures"] == 1

    @pytest.mark.asyncio
    async def test_no_data_anywhere(self, coordinator, orchestrator):
        orchestrator.fetch_epg_data.side_effect = NoDataAvailableError(requested_channels=["x"])

        assert await coordinator.load_epg_data(["x"]) == {}

    @pytest.mark.asyncio
    async def test_channel_refs_deduplicated(self, coordinator, orchestrator):
        await coordinator.load_epg_data(
            ["canal7.ar", ChannelRef(id="canal7.ar"), {"tvg_id": "telefe.ar", "name": "Telefe"}]
        )

        orchestrator.fetch_epg_data.assert_awaited_once_with(["canal7.ar", "telefe.ar"])


class TestRefresh:
    """Test refresh_stale_channels."""

    @pytest.mark.asyncio
    async def test_only_stale_or_missing_refetched(
        self, coordinator, orchestrator, cache_manager, todays_programs, make_program
    ):
        cache_manager.store("fresh.ar", todays_programs)
        old = datetime.now(timezone.utc) - timedelta(hours=2)
        cache_manager.durable.put(CacheEntry.create("stale.ar", todays_programs, 86400, now=old))
        orchestrator.fetch_epg_data.return_value = {
            "stale.ar": [make_program(channel_id="stale.ar")],
            "new.ar": [make_program(channel_id="new.ar")],
        }

        refreshed = await coordinator.refresh_stale_channels(["fresh.ar", "stale.ar", "new.ar"])

        orchestrator.fetch_epg_data.assert_awaited_once_with(["stale.ar", "new.ar"])
        assert sorted(refreshed) == ["new.ar", "stale.ar"]
        assert cache_manager.get_last_updated("stale.ar") > old

    @pytest.mark.asyncio
    async def test_nothing_stale(self, coordinator, orchestrator, cache_manager, todays_programs):
        cache_manager.store("fresh.ar", todays_programs)

        assert await coordinator.refresh_stale_channels(["fresh.ar"]) == []
        orchestrator.fetch_epg_data.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_cache(self, coordinator, orchestrator):
        orchestrator.fetch_epg_data.side_effect = NoDataAvailableError(requested_channels=["x"])

        assert await coordinator.refresh_stale_channels(["x"]) == []


class TestChannelChanges:
    """Test channel list fingerprinting."""

    def test_hash_depends_on_name_url_and_tvg_id(self):
        a = [{"name": "Canal 7", "url": "http://s/1", "tvg_id": "canal7.ar"}]
        b = [{"name": "Canal 7", "url": "http://s/2", "tvg_id": "canal7.ar"}]

        assert EPGCoordinator.channels_hash(a) == EPGCoordinator.channels_hash(list(a))
        assert EPGCoordinator.channels_hash(a) != EPGCoordinator.channels_hash(b)

    @pytest.mark.asyncio
    async def test_reload_only_on_change(self, coordinator, orchestrator):
        channels = [{"name": "Canal 7", "tvg_id": "canal7.ar"}]

        assert await coordinator.on_channels_changed(channels) is True
        assert await coordinator.on_channels_changed(channels) is False
        assert await coordinator.on_channels_changed(channels + [{"name": "Telefe"}]) is True
        assert orchestrator.fetch_epg_data.await_count == 2


class TestQueries:
    """Test program lookups."""

    def test_get_current_program(self, coordinator, cache_manager, todays_programs, now):
        cache_manager.store("canal7.ar", todays_programs)

        current = coordinator.get_current_program("canal7.ar", now + timedelta(minutes=45))

        assert current.title == "Cooking"
        assert coordinator.get_current_program("canal7.ar", now - timedelta(hours=1)) is None

    def test_get_programs_miss(self, coordinator):
        assert coordinator.get_programs("missing") == []

    @pytest.mark.asyncio
    async def test_statistics_and_close(self, coordinator, orchestrator):
        stats = coordinator.get_statistics()

        assert set(stats) == {"coordinator", "fetch", "cache", "storage"}

        await coordinator.close()
        orchestrator.close.assert_awaited_once()
