"""
SQLite store for the durable cache tier.

Keeps one row per channel with the serialized program list, ISO
timestamps and size estimate. ``last_updated`` and ``expires_at`` are
indexed so expiry sweeps are range queries.
"""

import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import orjson

from ..config import CacheConfig
from ..normalizer.schemas import CacheEntry
from ..utils.exceptions import CacheError, DataNormalizationError

logger = logging.getLogger(__name__)

TIER = "durable"


class DurableStore:
    """
    Unbounded, persistent entry store backed by SQLite.

    Attributes:
        db_path: Path to SQLite database file
        _connection: Active database connection (None if closed)
    """

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path or CacheConfig.DB_PATH)
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_database()

        logger.info(f"DurableStore initialized: db={self.db_path}")

    def _initialize_database(self) -> None:
        try:
            conn = self._get_connection()
            conn.execute("""
                CREATE TABLE IF NOT EXISTS epg_cache (
                    channel_id TEXT PRIMARY KEY,
                    programs TEXT NOT NULL,
                    last_updated TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    size INTEGER DEFAULT 0
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_last_updated ON epg_cache(last_updated)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_expires_at ON epg_cache(expires_at)")
        except sqlite3.Error as e:
            raise CacheError(
                f"Failed to initialize database: {e}",
                operation="initialize",
                tier=TIER,
                db_path=str(self.db_path),
            ) from e

    def _get_connection(self) -> sqlite3.Connection:
        if self._connection is None:
            self._connection = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                isolation_level=None,
            )
            self._connection.row_factory = sqlite3.Row
        return self._connection

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> CacheEntry:
        return CacheEntry.from_record({
            "channel_id": row["channel_id"],
            "programs": orjson.loads(row["programs"]),
            "last_updated": row["last_updated"],
            "expires_at": row["expires_at"],
            "size": row["size"],
        })

    def get(self, channel_id: str) -> Optional[CacheEntry]:
        """
        Stored entry for a channel, expired or not.

        Corrupt rows are deleted and reported as absent.

        Raises:
            CacheError: If the database read fails
        """
        try:
            with self._lock:
                row = self._get_connection().execute(
                    "SELECT * FROM epg_cache WHERE channel_id = ?", (channel_id,)
                ).fetchone()
                if row is None:
                    return None
                try:
                    return self._row_to_entry(row)
                except (orjson.JSONDecodeError, DataNormalizationError) as e:
                    logger.warning(f"Removing corrupt durable record {channel_id}: {e}")
                    self._get_connection().execute(
                        "DELETE FROM epg_cache WHERE channel_id = ?", (channel_id,)
                    )
                    return None
        except sqlite3.Error as e:
            raise CacheError(
                f"Failed to read from durable store: {e}",
                operation="read",
                cache_key=channel_id,
                tier=TIER,
            ) from e

    def put(self, entry: CacheEntry) -> None:
        """
        Insert or replace a channel's row.

        Raises:
            CacheError: If serialization or the write fails
        """
        try:
            programs_json = orjson.dumps([p.to_dict() for p in entry.programs]).decode("utf-8")
            with self._lock:
                self._get_connection().execute("""
                    INSERT OR REPLACE INTO epg_cache (
                        channel_id, programs, last_updated, expires_at, size
                    ) VALUES (?, ?, ?, ?, ?)
                """, (
                    entry.channel_id,
                    programs_json,
                    entry.last_updated.isoformat(),
                    entry.expires_at.isoformat(),
                    entry.size,
                ))
        except (sqlite3.Error, orjson.JSONEncodeError, TypeError) as e:
            raise CacheError(
                f"Failed to write to durable store: {e}",
                operation="write",
                cache_key=entry.channel_id,
                tier=TIER,
            ) from e

    def delete(self, channel_id: str) -> bool:
        try:
            with self._lock:
                cursor = self._get_connection().execute(
                    "DELETE FROM epg_cache WHERE channel_id = ?", (channel_id,)
                )
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise CacheError(
                f"Failed to delete from durable store: {e}",
                operation="delete",
                cache_key=channel_id,
                tier=TIER,
            ) from e

    def sweep(self, now: Optional[datetime] = None) -> int:
        """
        Delete expired rows, then any row that no longer parses.

        Returns:
            Number of rows removed
        """
        now = now or datetime.now(timezone.utc)
        try:
            with self._lock:
                conn = self._get_connection()
                # ISO strings with the same UTC offset compare chronologically
                removed = conn.execute(
                    "DELETE FROM epg_cache WHERE expires_at < ?", (now.isoformat(),)
                ).rowcount

                corrupt = []
                for row in conn.execute("SELECT * FROM epg_cache").fetchall():
                    try:
                        self._row_to_entry(row)
                    except (orjson.JSONDecodeError, DataNormalizationError):
                        corrupt.append(row["channel_id"])
                for channel_id in corrupt:
                    conn.execute("DELETE FROM epg_cache WHERE channel_id = ?", (channel_id,))
        except sqlite3.Error as e:
            raise CacheError(f"Failed to sweep durable store: {e}", operation="sweep", tier=TIER) from e

        if corrupt:
            logger.warning(f"Removed {len(corrupt)} corrupt durable records")
        return removed + len(corrupt)

    def count(self) -> int:
        try:
            with self._lock:
                return self._get_connection().execute(
                    "SELECT COUNT(*) AS count FROM epg_cache"
                ).fetchone()["count"]
        except sqlite3.Error as e:
            raise CacheError(f"Failed to count durable rows: {e}", operation="read", tier=TIER) from e

    def total_size(self) -> int:
        try:
            with self._lock:
                row = self._get_connection().execute(
                    "SELECT COALESCE(SUM(size), 0) AS total FROM epg_cache"
                ).fetchone()
                return row["total"]
        except sqlite3.Error as e:
            raise CacheError(f"Failed to size durable store: {e}", operation="read", tier=TIER) from e

    def clear(self) -> int:
        try:
            with self._lock:
                return self._get_connection().execute("DELETE FROM epg_cache").rowcount
        except sqlite3.Error as e:
            raise CacheError(f"Failed to clear durable store: {e}", operation="clear", tier=TIER) from e

    def close(self) -> None:
        if getattr(self, "_connection", None) is not None:
            self._connection.close()
            self._connection = None
            logger.debug("Durable store connection closed")

    def __enter__(self) -> "DurableStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __del__(self):
        self.close()
