"""
EPG Coordinator.

Application-facing entry point: serves programs from the cache, asks the
fetch orchestrator for whatever is missing or stale, writes results back,
and falls back to expired cache entries when every source fails.
"""

import hashlib
import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from epg_core.config import SchedulerConfig
from epg_core.normalizer.schemas import ChannelRef, Program, TimeRange
from epg_core.orchestrator.cache_manager import CacheManager
from epg_core.orchestrator.fetch_orchestrator import ChannelLike, FetchOrchestrator
from epg_core.utils.exceptions import InvalidParametersError, NoDataAvailableError

logger = logging.getLogger(__name__)


class EPGCoordinator:
    """
    Cache-first EPG loader.

    Example:
        ```python
        coordinator = EPGCoordinator()
        epg = await coordinator.load_epg_data(["canal7.ar"], TimeRange.next_hours(12))
        now_playing = coordinator.get_current_program("canal7.ar")
        ```
    """

    def __init__(
        self,
        orchestrator: Optional[FetchOrchestrator] = None,
        cache: Optional[CacheManager] = None,
        stale_after_seconds: Optional[int] = None,
    ):
        self.orchestrator = orchestrator or FetchOrchestrator()
        self.cache = cache or CacheManager()
        self.stale_after_seconds = stale_after_seconds or SchedulerConfig.STALE_AFTER_SECONDS

        self._channels_hash: Optional[str] = None
        self._stats = {
            "loads": 0,
            "served_from_cache": 0,
            "fetched": 0,
            "stale_fallbacks": 0,
            "fetch_failures": 0,
        }

    async def __aenter__(self) -> "EPGCoordinator":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
        self.shutdown()

    @staticmethod
    def _keys(channels: Iterable[ChannelLike]) -> list[str]:
        keys = []
        for channel in channels or []:
            key = ChannelRef.coerce(channel).key
            if key not in keys:
                keys.append(key)
        return keys

    async def load_epg_data(
        self,
        channels: Iterable[ChannelLike],
        time_range: Optional[TimeRange] = None,
        force_refresh: bool = False,
    ) -> dict[str, list[Program]]:
        """
        Programs for the requested channels, cache first.

        Channels missing from the cache are fetched in a single orchestrator
        call and stored. If no source has data, expired cache entries are
        served instead.

        Returns:
            Channel key -> programs; channels with no data anywhere are absent
        """
        keys = self._keys(channels)
        self._stats["loads"] += 1

        result: dict[str, list[Program]] = {}
        missing: list[str] = []
        for key in keys:
            programs = None if force_refresh else self.cache.retrieve(key, time_range)
            if programs is None:
                missing.append(key)
            else:
                result[key] = programs
        self._stats["served_from_cache"] += len(result)

        if missing:
            logger.info(
                f"Fetching EPG for {len(missing)} channels not in cache",
                extra={"cached": len(result), "missing": len(missing)},
            )
            result.update(await self._fetch_and_store(missing, time_range))

        return result

    async def _fetch_and_store(
        self, keys: list[str], time_range: Optional[TimeRange]
    ) -> dict[str, list[Program]]:
        try:
            fetched = await self.orchestrator.fetch_epg_data(keys)
        except NoDataAvailableError as e:
            self._stats["fetch_failures"] += 1
            logger.warning(f"All sources failed, serving stale cache: {e}")
            return self._stale_fallback(keys, time_range)

        result = {}
        for channel_id, programs in fetched.items():
            self._store(channel_id, programs)
            result[channel_id] = time_range.filter(programs) if time_range else programs
        self._stats["fetched"] += len(result)

        not_found = [key for key in keys if key not in fetched]
        if not_found:
            logger.info(f"{len(not_found)} channels not provided by any source")
            result.update(self._stale_fallback(not_found, time_range))
        return result

    def _store(self, channel_id: str, programs: list[Program]) -> None:
        try:
            self.cache.store(channel_id, programs)
        except InvalidParametersError as e:
            logger.error(f"Rejected fetched programs for {channel_id}: {e}")

    def _stale_fallback(
        self, keys: list[str], time_range: Optional[TimeRange]
    ) -> dict[str, list[Program]]:
        result = {}
        for key in keys:
            programs = self.cache.retrieve(key, time_range, allow_stale=True)
            if programs is not None:
                result[key] = programs
        self._stats["stale_fallbacks"] += len(result)
        if result:
            logger.info(f"Served {len(result)} channels from stale cache")
        return result

    async def refresh_stale_channels(self, channels: Iterable[ChannelLike]) -> list[str]:
        """
        Refetch channels whose cache entry is missing or older than
        ``stale_after_seconds``.

        Returns:
            Keys of the channels that were refreshed
        """
        now = datetime.now(timezone.utc)
        stale = []
        for key in self._keys(channels):
            last_updated = self.cache.get_last_updated(key)
            if last_updated is None or (now - last_updated).total_seconds() > self.stale_after_seconds:
                stale.append(key)

        if not stale:
            logger.debug("No stale channels to refresh")
            return []

        logger.info(f"Refreshing {len(stale)} stale channels")
        try:
            fetched = await self.orchestrator.fetch_epg_data(stale)
        except NoDataAvailableError as e:
            self._stats["fetch_failures"] += 1
            logger.warning(f"Refresh failed, keeping cached data: {e}")
            return []

        for channel_id, programs in fetched.items():
            self._store(channel_id, programs)
        self._stats["fetched"] += len(fetched)
        return list(fetched)

    @staticmethod
    def channels_hash(channels: Iterable[ChannelLike]) -> str:
        """Fingerprint of a channel list built from name, url and tvg id."""
        parts = []
        for channel in channels or []:
            ref = ChannelRef.coerce(channel)
            parts.append(f"{ref.name or ''}|{ref.url or ''}|{ref.tvg_id or ''}")
        return hashlib.sha256("::".join(parts).encode("utf-8")).hexdigest()

    async def on_channels_changed(self, channels: list[ChannelLike]) -> bool:
        """
        Reload EPG if the channel list differs from the last one seen.

        Returns:
            True if a reload happened
        """
        current = self.channels_hash(channels)
        if current == self._channels_hash:
            logger.debug("Channel list unchanged")
            return False

        self._channels_hash = current
        logger.info(f"Channel list changed ({len(channels)} channels), reloading EPG")
        await self.load_epg_data(channels)
        return True

    def get_programs(self, channel_id: str, time_range: Optional[TimeRange] = None) -> list[Program]:
        """Cached programs for a channel; empty when not cached."""
        return self.cache.retrieve(channel_id, time_range) or []

    def get_current_program(self, channel_id: str, at: Optional[datetime] = None) -> Optional[Program]:
        at = at or datetime.now(timezone.utc)
        return next((p for p in self.get_programs(channel_id) if p.is_airing(at)), None)

    def get_statistics(self) -> dict[str, Any]:
        return {
            "coordinator": dict(self._stats),
            "fetch": self.orchestrator.get_statistics(),
            "cache": self.cache.get_performance_metrics(),
            "storage": self.cache.get_storage_stats(),
        }

    async def close(self) -> None:
        """Release network resources."""
        await self.orchestrator.close()

    def shutdown(self) -> None:
        """Stop cache maintenance and close storage."""
        self.cache.shutdown()
