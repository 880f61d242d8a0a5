"""
Session store for the medium cache tier.

One orjson file per channel, named with a fixed prefix plus the quoted
channel id, under a byte budget. Records hold the program list, ISO
timestamps and the size estimate.

File Structure:
    data/session/epg_cache_<channel_id>.json
"""

import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional
from urllib.parse import quote

import orjson

from ..config import CacheConfig
from ..normalizer.schemas import CacheEntry
from ..utils.exceptions import CacheError, DataNormalizationError

logger = logging.getLogger(__name__)

TIER = "medium"


class SessionStore:
    """
    Byte-bounded, file-backed record store keyed by channel id.

    Writes that would exceed ``max_bytes`` raise a quota CacheError so the
    caller can evict and retry. Unreadable records are deleted on sight.

    Example:
        >>> store = SessionStore(directory=Path("/tmp/session"))
        >>> store.put(CacheEntry.create("canal7.ar", programs, ttl_seconds=7200))
        >>> store.get("canal7.ar").channel_id
        'canal7.ar'
    """

    def __init__(
        self,
        directory: Optional[Path] = None,
        max_bytes: Optional[int] = None,
        prefix: str = CacheConfig.KEY_PREFIX,
    ):
        self.directory = Path(directory or CacheConfig.SESSION_DIR)
        self.max_bytes = max_bytes or CacheConfig.SESSION_MAX_BYTES
        self.prefix = prefix
        self._lock = threading.RLock()

        self.directory.mkdir(parents=True, exist_ok=True)
        logger.debug(f"SessionStore ready: dir={self.directory}, max_bytes={self.max_bytes}")

    def _path(self, channel_id: str) -> Path:
        return self.directory / f"{self.prefix}{quote(channel_id, safe='')}.json"

    def _load(self, path: Path) -> Optional[CacheEntry]:
        """Read one record; corrupt records are removed and reported as absent."""
        try:
            return CacheEntry.from_record(orjson.loads(path.read_bytes()))
        except FileNotFoundError:
            return None
        except (orjson.JSONDecodeError, DataNormalizationError, AttributeError) as e:
            logger.warning(f"Removing corrupt session record {path.name}: {e}")
            path.unlink(missing_ok=True)
            return None
        except OSError as e:
            raise CacheError(f"Failed to read session record: {e}", operation="read", tier=TIER) from e

    def get(self, channel_id: str) -> Optional[CacheEntry]:
        """Stored entry for a channel, expired or not; None if absent or corrupt."""
        with self._lock:
            return self._load(self._path(channel_id))

    def put(self, entry: CacheEntry) -> None:
        """
        Write or replace a channel's record.

        Raises:
            CacheError: operation="quota" if the budget would be exceeded,
                operation="write" on serialization or I/O failure
        """
        try:
            data = orjson.dumps(entry.to_record())
        except (TypeError, orjson.JSONEncodeError) as e:
            raise CacheError(
                f"Failed to serialize session record: {e}",
                operation="write",
                cache_key=entry.channel_id,
                tier=TIER,
            ) from e

        path = self._path(entry.channel_id)
        with self._lock:
            current = path.stat().st_size if path.exists() else 0
            projected = self.total_size() - current + len(data)
            if projected > self.max_bytes:
                raise CacheError(
                    f"Session quota exceeded ({projected} > {self.max_bytes} bytes)",
                    operation="quota",
                    cache_key=entry.channel_id,
                    tier=TIER,
                )
            try:
                path.write_bytes(data)
            except OSError as e:
                raise CacheError(
                    f"Failed to write session record: {e}",
                    operation="write",
                    cache_key=entry.channel_id,
                    tier=TIER,
                ) from e

    def delete(self, channel_id: str) -> bool:
        with self._lock:
            path = self._path(channel_id)
            if not path.exists():
                return False
            path.unlink(missing_ok=True)
            return True

    def _files(self) -> list[Path]:
        return sorted(self.directory.glob(f"{self.prefix}*.json"))

    def entries(self) -> Iterator[CacheEntry]:
        """Every readable entry; corrupt records are removed along the way."""
        with self._lock:
            paths = self._files()
        for path in paths:
            with self._lock:
                entry = self._load(path)
            if entry is not None:
                yield entry

    def sweep(self, now: Optional[datetime] = None) -> int:
        """Delete expired and corrupt records. Returns the number removed."""
        now = now or datetime.now(timezone.utc)
        removed = 0
        with self._lock:
            for path in self._files():
                entry = self._load(path)
                if entry is None:
                    removed += 1
                elif entry.expires_at < now:
                    path.unlink(missing_ok=True)
                    removed += 1
        return removed

    def total_size(self) -> int:
        with self._lock:
            return sum(path.stat().st_size for path in self._files() if path.exists())

    def count(self) -> int:
        with self._lock:
            return len(self._files())

    def clear(self) -> int:
        with self._lock:
            files = self._files()
            for path in files:
                path.unlink(missing_ok=True)
        logger.info(f"Session store cleared ({len(files)} records)")
        return len(files)

    def __contains__(self, channel_id: object) -> bool:
        return isinstance(channel_id, str) and self._path(channel_id).exists()
