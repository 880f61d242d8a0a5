"""
Tiered cache for normalized program lists.

Three independent tiers, fastest first:

    - fast: in-process dict under a byte budget
    - medium: SessionStore files, written only for current-day data
    - durable: DurableStore SQLite table, written on every store

Entries expire ``ttl_seconds`` after they are written. Retrieval walks the
tiers in order and promotes hot channels into the fast tier; eviction and
promotion are ranked by per-channel access patterns.
"""

import logging
import math
import threading
import time
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

from epg_core.config import CacheConfig
from epg_core.normalizer.schemas import CacheEntry, Program, TimeRange
from epg_core.orchestrator.access_patterns import AccessPatternTracker
from epg_core.orchestrator.scheduler import CacheMaintenanceScheduler
from epg_core.storage import DurableStore, SessionStore
from epg_core.utils.exceptions import CacheError, InvalidParametersError

logger = logging.getLogger(__name__)

TIERS = ("fast", "medium", "durable")

MEMORY_EVICTION_RATIO = 0.25
SESSION_EVICTION_RATIO = 0.5
# Weight of access frequency against age when ranking session records
SESSION_FREQUENCY_WEIGHT = 10
RESPONSE_TIME_WINDOW = 100


def is_expired(value: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """True if ``value`` is missing or strictly before ``now``."""
    if value is None:
        return True
    now = now or datetime.now(timezone.utc)
    return value < now


class CacheManager:
    """
    Three-tier EPG cache with access-aware promotion and eviction.

    Example:
        >>> with CacheManager(auto_maintenance=False) as cache:
        ...     cache.store("canal7.ar", programs)
        ...     cache.retrieve("canal7.ar", TimeRange.next_hours(6))

    Attributes:
        ttl_seconds: Lifetime of a stored entry
        memory_max_bytes: Fast tier byte budget
        session: Medium tier backend
        durable: Durable tier backend
        patterns: Per-channel access tracker
        maintenance: Owned periodic maintenance scheduler
    """

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        memory_max_bytes: Optional[int] = None,
        session_store: Optional[SessionStore] = None,
        durable_store: Optional[DurableStore] = None,
        auto_maintenance: Optional[bool] = None,
    ):
        self.ttl_seconds = ttl_seconds or CacheConfig.TTL_SECONDS
        self.memory_max_bytes = memory_max_bytes or CacheConfig.MEMORY_MAX_BYTES
        self.session = session_store if session_store is not None else SessionStore()
        self.durable = durable_store if durable_store is not None else DurableStore()
        self.patterns = AccessPatternTracker()

        self._memory: dict[str, CacheEntry] = {}
        self._memory_size = 0
        self._memory_lock = threading.RLock()

        self._metrics_lock = threading.Lock()
        self._response_times: deque[float] = deque(maxlen=RESPONSE_TIME_WINDOW)
        self._metrics = self._empty_metrics()

        self.maintenance = CacheMaintenanceScheduler(self)
        if CacheConfig.AUTO_MAINTENANCE if auto_maintenance is None else auto_maintenance:
            self.maintenance.start()

        logger.info(
            f"CacheManager initialized: ttl={self.ttl_seconds}s, "
            f"memory_budget={self.memory_max_bytes}B"
        )

    @staticmethod
    def _empty_metrics() -> dict[str, Any]:
        return {
            "hits": {tier: 0 for tier in TIERS},
            "misses": 0,
            "stores": {tier: 0 for tier in TIERS},
            "evictions": {"fast": 0, "medium": 0},
        }

    is_expired = staticmethod(is_expired)

    # Store / retrieve

    def store(self, channel_id: str, programs: list[Program]) -> CacheEntry:
        """
        Cache a channel's programs in every applicable tier.

        The fast and durable tiers are always written; the medium tier only
        when a program overlaps the current local day. Tier failures are
        logged and do not stop the other tiers.

        Raises:
            InvalidParametersError: If channel_id is not a non-empty string,
                programs is not a list, or an item is not a program
        """
        self._check_channel_id(channel_id)
        if not isinstance(programs, list):
            raise InvalidParametersError(
                "programs must be a list", parameter="programs", value=programs
            )

        normalized = []
        for item in programs:
            if isinstance(item, Program):
                normalized.append(item)
            elif isinstance(item, dict):
                try:
                    normalized.append(Program.from_dict(item))
                except ValueError as e:
                    raise InvalidParametersError(
                        f"Invalid program for {channel_id}: {e}", parameter="programs", value=item
                    ) from e
            else:
                raise InvalidParametersError(
                    "programs must contain Program objects", parameter="programs", value=item
                )

        entry = CacheEntry.create(channel_id, normalized, self.ttl_seconds)

        self._store_in_memory(entry)
        self._count("stores", "fast")

        if self._is_current_day(normalized):
            try:
                self._store_in_session(entry)
                self._count("stores", "medium")
            except CacheError as e:
                logger.warning(f"Medium tier store failed for {channel_id}: {e}")

        try:
            self.durable.put(entry)
            self._count("stores", "durable")
        except CacheError as e:
            logger.error(f"Durable tier store failed for {channel_id}: {e}")

        logger.debug(
            f"Stored {len(normalized)} programs for {channel_id}",
            extra={"channel_id": channel_id, "size": entry.size},
        )
        return entry

    def retrieve(
        self,
        channel_id: str,
        time_range: Optional[TimeRange] = None,
        allow_stale: bool = False,
    ) -> Optional[list[Program]]:
        """
        Look a channel up in the fast, medium and durable tiers in order.

        Args:
            channel_id: Channel key
            time_range: Keep only programs overlapping this window
            allow_stale: Return expired entries instead of treating them as misses

        Returns:
            Programs, or None on a miss
        """
        self._check_channel_id(channel_id)

        started = time.perf_counter()
        try:
            now = datetime.now(timezone.utc)
            self.patterns.record(channel_id, now)

            entry, tier = self._lookup(channel_id, now, allow_stale)
            if entry is None:
                self._count("misses")
                logger.debug(f"Cache miss: {channel_id}")
                return None

            self._count("hits", tier)
            logger.debug(f"Cache hit ({tier}): {channel_id}")
            return time_range.filter(entry.programs) if time_range else list(entry.programs)
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000
            with self._metrics_lock:
                self._response_times.append(elapsed_ms)

    @staticmethod
    def _check_channel_id(channel_id: Any) -> None:
        if not isinstance(channel_id, str) or not channel_id.strip():
            raise InvalidParametersError(
                "channel_id must be a non-empty string", parameter="channel_id", value=channel_id
            )

    def retrieve_multiple(
        self,
        channel_ids: Iterable[str],
        time_range: Optional[TimeRange] = None,
    ) -> dict[str, list[Program]]:
        """Retrieve several channels; misses are left out of the result."""
        results = {}
        for channel_id in channel_ids:
            programs = self.retrieve(channel_id, time_range)
            if programs is not None:
                results[channel_id] = programs
        return results

    def _lookup(
        self, channel_id: str, now: datetime, allow_stale: bool
    ) -> tuple[Optional[CacheEntry], Optional[str]]:
        with self._memory_lock:
            entry = self._memory.get(channel_id)
            if entry is not None and is_expired(entry.expires_at, now) and not allow_stale:
                self._remove_from_memory(channel_id)
                entry = None
        if entry is not None:
            return entry, "fast"

        entry = self._read_tier("medium", channel_id, now, allow_stale)
        if entry is not None:
            self._maybe_promote(entry, now)
            return entry, "medium"

        entry = self._read_tier("durable", channel_id, now, allow_stale)
        if entry is not None:
            self._maybe_promote(entry, now)
            if not is_expired(entry.expires_at, now) and self._is_current_day(entry.programs):
                try:
                    self._store_in_session(entry)
                except CacheError as e:
                    logger.warning(f"Medium tier write-through failed for {channel_id}: {e}")
            return entry, "durable"

        return None, None

    def _read_tier(
        self, tier: str, channel_id: str, now: datetime, allow_stale: bool
    ) -> Optional[CacheEntry]:
        backend = self.session if tier == "medium" else self.durable
        try:
            entry = backend.get(channel_id)
        except CacheError as e:
            logger.warning(f"{tier.capitalize()} tier read failed for {channel_id}: {e}")
            return None
        if entry is not None and is_expired(entry.expires_at, now) and not allow_stale:
            return None
        return entry

    def _maybe_promote(self, entry: CacheEntry, now: datetime) -> None:
        if is_expired(entry.expires_at, now):
            return
        if self.patterns.should_promote(entry.channel_id, now):
            self._store_in_memory(entry)
            logger.debug(f"Promoted {entry.channel_id} to fast tier")

    @staticmethod
    def _is_current_day(programs: list[Program], now: Optional[datetime] = None) -> bool:
        """True if any program overlaps the current local calendar day."""
        local_now = (now or datetime.now(timezone.utc)).astimezone()
        day_start = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
        day_end = day_start + timedelta(days=1)
        return any(p.overlaps(day_start, day_end) for p in programs)

    # Fast tier

    def _store_in_memory(self, entry: CacheEntry) -> None:
        with self._memory_lock:
            self._remove_from_memory(entry.channel_id)
            while self._memory and self._memory_size + entry.size > self.memory_max_bytes:
                self._evict_from_memory()
            if entry.size > self.memory_max_bytes:
                logger.warning(
                    f"Entry for {entry.channel_id} exceeds the fast tier budget",
                    extra={"size": entry.size, "budget": self.memory_max_bytes},
                )
            self._memory[entry.channel_id] = entry
            self._memory_size += entry.size

    def _remove_from_memory(self, channel_id: str) -> bool:
        with self._memory_lock:
            entry = self._memory.pop(channel_id, None)
            if entry is None:
                return False
            self._memory_size -= entry.size
            return True

    def _evict_from_memory(self, now: Optional[datetime] = None) -> list[str]:
        """
        Evict the lowest-scoring quarter (rounded up) of the fast tier.

        Score is access frequency minus hours since last update, so old,
        rarely read channels go first.
        """
        now = now or datetime.now(timezone.utc)
        with self._memory_lock:
            if not self._memory:
                return []
            ranked = sorted(
                self._memory.values(),
                key=lambda e: self.patterns.frequency(e.channel_id) - e.hours_since_update(now),
            )
            victims = [e.channel_id for e in ranked[: math.ceil(len(ranked) * MEMORY_EVICTION_RATIO)]]
            for channel_id in victims:
                self._remove_from_memory(channel_id)

        self._count("evictions", "fast", len(victims))
        logger.info(f"Evicted {len(victims)} entries from fast tier", extra={"evicted": victims})
        return victims

    # Medium tier

    def _store_in_session(self, entry: CacheEntry) -> None:
        try:
            self.session.put(entry)
        except CacheError as e:
            if e.operation != "quota":
                raise
            logger.info(f"Medium tier over budget, evicting before storing {entry.channel_id}")
            self._evict_from_session()
            self.session.put(entry)

    def _evict_from_session(self, now: Optional[datetime] = None) -> list[str]:
        """Evict the coldest half (rounded up) of the medium tier."""
        now = now or datetime.now(timezone.utc)
        entries = list(self.session.entries())
        if not entries:
            return []

        ranked = sorted(
            entries,
            key=lambda e: (
                e.hours_since_update(now)
                - SESSION_FREQUENCY_WEIGHT * self.patterns.frequency(e.channel_id)
            ),
            reverse=True,
        )
        victims = [e.channel_id for e in ranked[: math.ceil(len(ranked) * SESSION_EVICTION_RATIO)]]
        for channel_id in victims:
            self.session.delete(channel_id)

        self._count("evictions", "medium", len(victims))
        logger.info(f"Evicted {len(victims)} entries from medium tier")
        return victims

    # Maintenance

    def cleanup(self, now: Optional[datetime] = None) -> dict[str, int]:
        """
        Remove expired entries from every tier; corrupt records go too.

        Returns:
            Entries removed per tier
        """
        now = now or datetime.now(timezone.utc)
        removed = {tier: 0 for tier in TIERS}

        with self._memory_lock:
            expired = [cid for cid, e in self._memory.items() if is_expired(e.expires_at, now)]
            for channel_id in expired:
                self._remove_from_memory(channel_id)
        removed["fast"] = len(expired)

        for tier, backend in (("medium", self.session), ("durable", self.durable)):
            try:
                removed[tier] = backend.sweep(now)
            except CacheError as e:
                logger.error(f"{tier.capitalize()} tier sweep failed: {e}")

        logger.info("Cache cleanup completed", extra={"removed": removed})
        return removed

    def optimize_cache(self) -> dict[str, int]:
        """
        Promote popular channels, prune idle patterns and rebalance.

        1. Most-accessed channels missing from the fast tier are pulled in
        2. Patterns idle for 24h with fewer than 2 accesses are dropped
        3. While the fast tier is under its utilization threshold, medium
           entries are promoted by descending frequency until the budget
           would be exceeded

        Returns:
            Counts of promoted channels, pruned patterns and rebalanced entries
        """
        now = datetime.now(timezone.utc)
        results = {"promoted": 0, "patterns_pruned": 0, "rebalanced": 0}

        for channel_id, _ in self.patterns.most_accessed(CacheConfig.MOST_ACCESSED_LIMIT):
            with self._memory_lock:
                if channel_id in self._memory:
                    continue
            entry = self._read_tier("medium", channel_id, now, False) or self._read_tier(
                "durable", channel_id, now, False
            )
            if entry is not None:
                self._store_in_memory(entry)
                results["promoted"] += 1

        results["patterns_pruned"] = self.patterns.prune(timedelta(hours=24), max_count=2, now=now)

        with self._memory_lock:
            used = self._memory_size
            cached = set(self._memory)
        if used / self.memory_max_bytes < CacheConfig.REBALANCE_THRESHOLD:
            available = self.memory_max_bytes - used
            candidates = []
            try:
                for entry in self.session.entries():
                    if len(candidates) >= CacheConfig.REBALANCE_MAX_CANDIDATES:
                        break
                    if (
                        entry.channel_id not in cached
                        and not is_expired(entry.expires_at, now)
                        and entry.size < available
                    ):
                        candidates.append(entry)
            except CacheError as e:
                logger.warning(f"Rebalance skipped, medium tier unreadable: {e}")

            candidates.sort(key=lambda e: self.patterns.frequency(e.channel_id), reverse=True)
            projected = used
            for entry in candidates:
                if projected + entry.size > self.memory_max_bytes:
                    break
                self._store_in_memory(entry)
                projected += entry.size
                results["rebalanced"] += 1

        logger.info("Cache optimization completed", extra=results)
        return results

    # Metrics

    def _count(self, metric: str, tier: Optional[str] = None, amount: int = 1) -> None:
        with self._metrics_lock:
            if tier is None:
                self._metrics[metric] += amount
            else:
                self._metrics[metric][tier] += amount

    def get_performance_metrics(self) -> dict[str, Any]:
        """
        Hit, miss, store and eviction counters plus latency.

        Returns:
            Dictionary containing:
            - hits / stores / evictions: Counts per tier
            - misses, total_requests, hit_rate (%)
            - average_response_time_ms: Over the last 100 retrievals
            - most_accessed: Top channels with count and frequency
        """
        with self._metrics_lock:
            hits = dict(self._metrics["hits"])
            misses = self._metrics["misses"]
            stores = dict(self._metrics["stores"])
            evictions = dict(self._metrics["evictions"])
            times = list(self._response_times)

        total_hits = sum(hits.values())
        total_requests = total_hits + misses
        hit_rate = (total_hits / total_requests * 100) if total_requests > 0 else 0.0

        return {
            "hits": hits,
            "misses": misses,
            "total_requests": total_requests,
            "hit_rate": round(hit_rate, 2),
            "stores": stores,
            "evictions": evictions,
            "average_response_time_ms": round(sum(times) / len(times), 3) if times else 0.0,
            "most_accessed": [
                {
                    "channel_id": channel_id,
                    "count": pattern.count,
                    "frequency": round(pattern.frequency, 2),
                }
                for channel_id, pattern in self.patterns.most_accessed(CacheConfig.MOST_ACCESSED_LIMIT)
            ],
        }

    def reset_metrics(self) -> int:
        """Zero the counters and drop access patterns idle past the retention window."""
        with self._metrics_lock:
            self._metrics = self._empty_metrics()
            self._response_times.clear()
        pruned = self.patterns.prune(timedelta(days=CacheConfig.PATTERN_RETENTION_DAYS))
        logger.info(f"Cache metrics reset, {pruned} idle access patterns pruned")
        return pruned

    def get_storage_stats(self) -> dict[str, Any]:
        """Entry counts and sizes per tier."""
        with self._memory_lock:
            fast = {
                "entries": len(self._memory),
                "size_bytes": self._memory_size,
                "max_bytes": self.memory_max_bytes,
                "utilization": round(self._memory_size / self.memory_max_bytes * 100, 2),
            }

        stats: dict[str, Any] = {"fast": fast, "ttl_seconds": self.ttl_seconds}
        try:
            stats["medium"] = {
                "entries": self.session.count(),
                "size_bytes": self.session.total_size(),
                "max_bytes": self.session.max_bytes,
            }
        except (CacheError, OSError) as e:
            stats["medium"] = {"error": str(e)}
        try:
            stats["durable"] = {
                "entries": self.durable.count(),
                "size_bytes": self.durable.total_size(),
                "db_path": str(self.durable.db_path),
            }
        except CacheError as e:
            stats["durable"] = {"error": str(e)}
        return stats

    # Entry management

    def get_last_updated(self, channel_id: str) -> Optional[datetime]:
        """When the channel was last stored, from the fastest tier that has it."""
        with self._memory_lock:
            entry = self._memory.get(channel_id)
        if entry is None:
            now = datetime.now(timezone.utc)
            entry = self._read_tier("medium", channel_id, now, True) or self._read_tier(
                "durable", channel_id, now, True
            )
        return entry.last_updated if entry else None

    def is_cached_in_memory(self, channel_id: str) -> bool:
        with self._memory_lock:
            return channel_id in self._memory

    def invalidate(self, channel_id: str) -> bool:
        """Drop a channel from every tier. True if any tier held it."""
        found = self._remove_from_memory(channel_id)
        for tier, backend in (("medium", self.session), ("durable", self.durable)):
            try:
                found = backend.delete(channel_id) or found
            except CacheError as e:
                logger.error(f"Failed to invalidate {channel_id} in {tier} tier: {e}")
        if found:
            logger.info(f"Invalidated cache: {channel_id}")
        return found

    def clear_all(self, confirm: bool = False) -> dict[str, int]:
        """
        Empty every tier.

        Raises:
            CacheError: If not confirmed
        """
        if not confirm:
            raise CacheError(
                "clear_all requires explicit confirmation (confirm=True)", operation="clear_all"
            )

        with self._memory_lock:
            fast = len(self._memory)
            self._memory.clear()
            self._memory_size = 0
        cleared = {"fast": fast, "medium": self.session.clear(), "durable": self.durable.clear()}
        self.patterns.clear()

        logger.warning("Cleared ALL cache tiers", extra={"cleared": cleared})
        return cleared

    def shutdown(self) -> None:
        """Stop maintenance jobs and close the durable store."""
        self.maintenance.stop(wait=False)
        self.durable.close()
        logger.info("CacheManager shut down")

    def __enter__(self) -> "CacheManager":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()

    def __repr__(self) -> str:
        return (
            f"CacheManager(ttl_seconds={self.ttl_seconds}, "
            f"fast_entries={len(self._memory)}, "
            f"memory_max_bytes={self.memory_max_bytes})"
        )

