"""
Per-channel access bookkeeping used to rank cache promotion and eviction.
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from epg_core.config import CacheConfig


@dataclass
class AccessPattern:
    """Access counters for one channel.

    ``frequency`` is accesses per minute since the first access,
    recomputed on every access.
    """

    count: int
    first_access: datetime
    last_access: datetime
    frequency: float = 0.0

    def touch(self, now: datetime) -> None:
        self.count += 1
        self.last_access = now
        elapsed_minutes = (now - self.first_access).total_seconds() / 60
        self.frequency = self.count / elapsed_minutes if elapsed_minutes > 0 else 0.0

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "first_access": self.first_access.isoformat(),
            "last_access": self.last_access.isoformat(),
            "frequency": self.frequency,
        }


class AccessPatternTracker:
    """Thread-safe map of channel id to AccessPattern."""

    def __init__(self):
        self._patterns: dict[str, AccessPattern] = {}
        self._lock = threading.Lock()

    def record(self, channel_id: str, now: Optional[datetime] = None) -> AccessPattern:
        """Count one access, creating the pattern on first use."""
        now = now or datetime.now(timezone.utc)
        with self._lock:
            pattern = self._patterns.get(channel_id)
            if pattern is None:
                pattern = AccessPattern(count=1, first_access=now, last_access=now)
                self._patterns[channel_id] = pattern
            else:
                pattern.touch(now)
            return pattern

    def get(self, channel_id: str) -> Optional[AccessPattern]:
        with self._lock:
            return self._patterns.get(channel_id)

    def frequency(self, channel_id: str) -> float:
        pattern = self.get(channel_id)
        return pattern.frequency if pattern else 0.0

    def should_promote(self, channel_id: str, now: Optional[datetime] = None) -> bool:
        """
        True for hot channels: more than PROMOTION_MIN_ACCESSES accesses,
        frequency above PROMOTION_MIN_FREQUENCY per minute and a last access
        within PROMOTION_RECENCY_SECONDS.
        """
        now = now or datetime.now(timezone.utc)
        pattern = self.get(channel_id)
        if pattern is None:
            return False
        return (
            pattern.count > CacheConfig.PROMOTION_MIN_ACCESSES
            and pattern.frequency > CacheConfig.PROMOTION_MIN_FREQUENCY
            and (now - pattern.last_access).total_seconds() < CacheConfig.PROMOTION_RECENCY_SECONDS
        )

    def most_accessed(self, limit: int = CacheConfig.MOST_ACCESSED_LIMIT) -> list[tuple[str, AccessPattern]]:
        """Channels ordered by descending access count."""
        with self._lock:
            ranked = sorted(self._patterns.items(), key=lambda item: item[1].count, reverse=True)
        return ranked[:limit]

    def prune(
        self,
        older_than: timedelta,
        max_count: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Drop patterns idle for longer than ``older_than``.

        With ``max_count`` only patterns with fewer accesses than it are dropped.
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - older_than
        with self._lock:
            stale = [
                channel_id
                for channel_id, pattern in self._patterns.items()
                if pattern.last_access < cutoff and (max_count is None or pattern.count < max_count)
            ]
            for channel_id in stale:
                del self._patterns[channel_id]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._patterns.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._patterns)
