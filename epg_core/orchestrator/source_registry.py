"""
Source Registry.

Holds the prioritized list of configured EPG providers. Each provider is
one variant of a small tagged union (XMLTV, JSON, embedded playlist) that
knows how to fetch, validate and parse its own payload, plus the mutable
policy state (last attempt, last error) shared by concurrent fetches.
"""

import asyncio
import inspect
import logging
import threading
import time
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, ClassVar, Iterable, Iterator, Optional, Union

import orjson

from epg_core.config import SourceDefaults
from epg_core.normalizer.schemas import Program
from epg_core.parsers import BaseEPGParser, create_parser
from epg_core.utils.exceptions import (
    APIError,
    ParsingError,
    RateLimitError,
    SourceConfigError,
)

logger = logging.getLogger(__name__)


class SourceType(str, Enum):
    """Payload format of a source."""

    XMLTV = "xmltv"
    JSON = "json"
    EMBEDDED = "embedded"


@dataclass
class SourceErrorRecord:
    """Last failure recorded against a source."""

    timestamp: datetime
    message: str


@dataclass(eq=False)
class SourceConfig:
    """
    Provider descriptor with retry and rate-limit policy.

    Times are in seconds. ``last_fetch`` uses the monotonic clock and is
    written before the attempt runs, so concurrent callers against the
    same source are throttled by it.

    Attributes:
        name: Unique key
        endpoint: http(s) URL or local file path
        priority: Lower is tried first; None sorts last
        critical: Failure triggers this source's backups
        backup_for: Name of the source this one backs up
    """

    source_type: ClassVar[SourceType]

    name: str
    endpoint: str = ""
    priority: Optional[int] = SourceDefaults.LOWEST_PRIORITY
    enabled: bool = True
    critical: bool = False
    max_retries: int = SourceDefaults.MAX_RETRIES
    retry_delay: float = SourceDefaults.RETRY_DELAY_SECONDS
    min_interval: float = SourceDefaults.MIN_INTERVAL_SECONDS
    timeout: float = SourceDefaults.TIMEOUT_SECONDS
    backup_for: Optional[str] = None
    last_fetch: Optional[float] = field(default=None, repr=False)
    last_error: Optional[SourceErrorRecord] = field(default=None, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @property
    def sort_priority(self) -> int:
        return self.priority if self.priority is not None else SourceDefaults.LOWEST_PRIORITY

    @property
    def type(self) -> SourceType:
        return self.source_type

    def begin_attempt(self, now: Optional[float] = None) -> None:
        """
        Enforce the minimum interval and record the attempt time.

        Raises:
            RateLimitError: If the previous attempt is more recent than ``min_interval``
        """
        now = time.monotonic() if now is None else now
        with self._lock:
            if self.last_fetch is not None and self.min_interval:
                elapsed = now - self.last_fetch
                if elapsed < self.min_interval:
                    raise RateLimitError(
                        f"Rate limit for {self.name}: retry in {self.min_interval - elapsed:.1f}s",
                        source_name=self.name,
                        retry_after=self.min_interval - elapsed,
                    )
            self.last_fetch = now

    def record_success(self) -> None:
        with self._lock:
            self.last_error = None

    def record_error(self, error: Exception) -> None:
        with self._lock:
            self.last_error = SourceErrorRecord(
                timestamp=datetime.now(timezone.utc), message=str(error)
            )

    def set_enabled(self, enabled: bool) -> None:
        with self._lock:
            self.enabled = enabled

    def reset(self) -> None:
        """Forget the last error and the last attempt time."""
        with self._lock:
            self.last_error = None
            self.last_fetch = None

    async def fetch_payload(self, http_client: Any) -> str:
        """
        Read the raw payload from the endpoint.

        Raises:
            SourceConfigError: If the source has no endpoint
            APIError: If the endpoint cannot be read
        """
        if not self.endpoint:
            raise SourceConfigError("Source has no endpoint", source_name=self.name)

        if self.endpoint.startswith(("http://", "https://")):
            return await http_client.get_text(self.endpoint, timeout=self.timeout)

        path = Path(self.endpoint)
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(path.read_text, encoding="utf-8"), timeout=self.timeout
            )
        except (OSError, UnicodeDecodeError, asyncio.TimeoutError) as e:
            raise APIError(f"Cannot read {path}: {e}", endpoint=str(path)) from e

    def validate_payload(self, payload: str) -> None:
        """
        Reject payloads that cannot possibly parse.

        Raises:
            ParsingError: If the payload is empty
        """
        if not payload or not payload.strip():
            raise ParsingError("Empty payload", source=self.name, parser=self.source_type.value)

    def create_parser(self) -> BaseEPGParser:
        return create_parser(self.source_type)

    def parse(self, payload: str) -> dict[str, list[Program]]:
        return self.create_parser().parse(payload)

    def to_dict(self) -> dict[str, Any]:
        """Policy and state snapshot for reporting."""
        with self._lock:
            return {
                "name": self.name,
                "type": self.source_type.value,
                "endpoint": self.endpoint,
                "priority": self.priority,
                "enabled": self.enabled,
                "critical": self.critical,
                "max_retries": self.max_retries,
                "retry_delay": self.retry_delay,
                "min_interval": self.min_interval,
                "timeout": self.timeout,
                "backup_for": self.backup_for,
                "last_error": (
                    {"timestamp": self.last_error.timestamp.isoformat(), "message": self.last_error.message}
                    if self.last_error
                    else None
                ),
            }


@dataclass(eq=False)
class XMLTVSource(SourceConfig):
    """XMLTV document source."""

    source_type: ClassVar[SourceType] = SourceType.XMLTV

    def validate_payload(self, payload: str) -> None:
        super().validate_payload(payload)
        if "<?xml" not in payload and "<tv" not in payload:
            raise ParsingError(
                "Payload is not XMLTV", source=self.name, parser="xmltv", raw_data=payload
            )


@dataclass(eq=False)
class JSONSource(SourceConfig):
    """JSON guide source."""

    source_type: ClassVar[SourceType] = SourceType.JSON

    def validate_payload(self, payload: str) -> None:
        super().validate_payload(payload)
        try:
            orjson.loads(payload)
        except orjson.JSONDecodeError as e:
            raise ParsingError(
                f"Payload is not valid JSON: {e}", source=self.name, parser="json", raw_data=payload
            ) from e


@dataclass(eq=False)
class EmbeddedSource(SourceConfig):
    """
    Guide data embedded in an M3U playlist.

    The playlist comes from ``playlist_provider`` (sync or async callable
    returning the playlist text) when set, otherwise from ``endpoint``.
    """

    source_type: ClassVar[SourceType] = SourceType.EMBEDDED

    playlist_provider: Optional[Callable[[], Any]] = field(default=None, repr=False)

    async def fetch_payload(self, http_client: Any) -> str:
        if self.playlist_provider is None:
            return await super().fetch_payload(http_client)

        content = self.playlist_provider()
        if inspect.isawaitable(content):
            content = await asyncio.wait_for(content, timeout=self.timeout)
        if not content:
            raise ParsingError("No playlist content available", source=self.name, parser="embedded")
        return content


_SOURCE_CLASSES: dict[SourceType, type] = {
    SourceType.XMLTV: XMLTVSource,
    SourceType.JSON: JSONSource,
    SourceType.EMBEDDED: EmbeddedSource,
}

_FIELD_ALIASES = {
    "url": "endpoint",
    "is_backup_for": "backup_for",
}


def create_source(data: dict[str, Any]) -> SourceConfig:
    """
    Build a source variant from a mapping with a ``type`` key.

    Raises:
        SourceConfigError: If the type is unknown or fields are invalid
    """
    values = {_FIELD_ALIASES.get(k, k): v for k, v in data.items()}
    raw_type = values.pop("type", None)
    name = values.get("name")

    try:
        source_type = SourceType(getattr(raw_type, "value", raw_type))
    except ValueError:
        raise SourceConfigError(f"Unsupported source type: {raw_type}", source_name=name) from None

    source_cls = _SOURCE_CLASSES[source_type]
    allowed = {f.name for f in fields(source_cls) if f.init}
    unknown = set(values) - allowed
    if unknown:
        raise SourceConfigError(
            f"Unknown source fields: {', '.join(sorted(unknown))}", source_name=name
        )

    try:
        return source_cls(**values)
    except TypeError as e:
        raise SourceConfigError(f"Invalid source definition: {e}", source_name=name) from e


def default_sources() -> list[SourceConfig]:
    """Built-in providers."""
    return [
        XMLTVSource(
            name="IPTV-ORG EPG",
            endpoint=SourceDefaults.PRIMARY_XMLTV_URL,
            priority=1,
            critical=True,
            max_retries=3,
            retry_delay=2.0,
            min_interval=300.0,
            timeout=30.0,
        ),
        XMLTVSource(
            name="EPG Best",
            endpoint=SourceDefaults.BACKUP_XMLTV_URL,
            priority=2,
            max_retries=2,
            retry_delay=1.5,
            min_interval=180.0,
            timeout=20.0,
            backup_for="IPTV-ORG EPG",
        ),
        EmbeddedSource(
            name="Embedded EPG",
            endpoint=SourceDefaults.PLAYLIST_PATH,
            priority=3,
            enabled=bool(SourceDefaults.PLAYLIST_PATH),
            max_retries=1,
            retry_delay=0.5,
            min_interval=60.0,
            timeout=5.0,
        ),
        XMLTVSource(
            name="XMLTV Generic",
            endpoint=SourceDefaults.GENERIC_XMLTV_URL,
            priority=4,
            enabled=False,
            max_retries=2,
            retry_delay=1.0,
            min_interval=120.0,
            timeout=15.0,
            backup_for="IPTV-ORG EPG",
        ),
        JSONSource(
            name="JSON EPG Local",
            endpoint=SourceDefaults.LOCAL_JSON_PATH,
            priority=5,
            enabled=False,
            max_retries=1,
            retry_delay=0.5,
            min_interval=30.0,
            timeout=5.0,
        ),
    ]


class SourceRegistry:
    """
    Thread-safe, priority-ordered collection of sources.

    The list is re-sorted by ascending priority after every mutation;
    sources with equal priority keep insertion order.

    Example:
        >>> registry = SourceRegistry(sources=[])
        >>> registry.add_source({"type": "xmltv", "name": "A", "endpoint": "https://a/epg.xml", "priority": 1})
        >>> [s.name for s in registry.enabled_sources()]
        ['A']
    """

    def __init__(self, sources: Optional[Iterable[Union[SourceConfig, dict]]] = None):
        self._lock = threading.RLock()
        self._sources: list[SourceConfig] = []

        for source in default_sources() if sources is None else sources:
            self.add_source(source)

        logger.info(f"SourceRegistry initialized with {len(self._sources)} sources")

    def add_source(self, source: Union[SourceConfig, dict[str, Any]]) -> SourceConfig:
        """
        Register a source.

        Raises:
            SourceConfigError: If the name is missing or already registered
        """
        if isinstance(source, dict):
            source = create_source(source)
        if not isinstance(source, SourceConfig):
            raise SourceConfigError(f"Cannot register {type(source).__name__} as a source")
        if not source.name or not str(source.name).strip():
            raise SourceConfigError("Source name is required")

        with self._lock:
            if any(s.name == source.name for s in self._sources):
                raise SourceConfigError("Source already registered", source_name=source.name)
            self._sources.append(source)
            self._sort()

        logger.info(
            f"Source added: {source.name}",
            extra={"source": source.name, "type": source.source_type.value, "priority": source.priority},
        )
        return source

    def remove_source(self, name: str) -> bool:
        """Remove a source by name; False if it was not registered."""
        with self._lock:
            for index, source in enumerate(self._sources):
                if source.name == name:
                    del self._sources[index]
                    self._sort()
                    logger.info(f"Source removed: {name}")
                    return True

        logger.warning(f"Cannot remove unknown source: {name}")
        return False

    def set_source_enabled(self, name: str, enabled: bool) -> bool:
        """Enable or disable a source; unknown names are a logged no-op."""
        source = self.get_source(name)
        if source is None:
            logger.warning(f"Cannot {'enable' if enabled else 'disable'} unknown source: {name}")
            return False

        source.set_enabled(enabled)
        with self._lock:
            self._sort()
        logger.info(f"Source {name} {'enabled' if enabled else 'disabled'}")
        return True

    def get_source(self, name: str) -> Optional[SourceConfig]:
        with self._lock:
            return next((s for s in self._sources if s.name == name), None)

    @property
    def sources(self) -> list[SourceConfig]:
        """All sources in priority order."""
        with self._lock:
            return list(self._sources)

    def enabled_sources(self) -> list[SourceConfig]:
        with self._lock:
            return [s for s in self._sources if s.enabled]

    def backups_for(self, name: str) -> list[SourceConfig]:
        """Enabled sources declared as backups of ``name``, in priority order."""
        with self._lock:
            return [s for s in self._sources if s.enabled and s.backup_for == name]

    def get_source_stats(self) -> dict[str, Any]:
        """
        Summarize the registry.

        Returns:
            Dictionary with total, enabled, disabled and with_errors counts,
            plus counts by_type and by_priority
        """
        with self._lock:
            sources = list(self._sources)

        by_type: dict[str, int] = {}
        by_priority: dict[int, int] = {}
        for source in sources:
            by_type[source.source_type.value] = by_type.get(source.source_type.value, 0) + 1
            by_priority[source.sort_priority] = by_priority.get(source.sort_priority, 0) + 1

        enabled = sum(1 for s in sources if s.enabled)
        return {
            "total": len(sources),
            "enabled": enabled,
            "disabled": len(sources) - enabled,
            "with_errors": sum(1 for s in sources if s.last_error is not None),
            "by_type": by_type,
            "by_priority": by_priority,
        }

    def reset_source_errors(self) -> None:
        """Clear recorded errors and attempt times on every source."""
        with self._lock:
            for source in self._sources:
                source.reset()
        logger.info("Source errors and fetch timestamps reset")

    def _sort(self) -> None:
        self._sources.sort(key=lambda s: s.sort_priority)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sources)

    def __contains__(self, name: object) -> bool:
        return self.get_source(name) is not None

    def __iter__(self) -> Iterator[SourceConfig]:
        return iter(self.sources)

    def __repr__(self) -> str:
        return f"SourceRegistry(sources={[s.name for s in self.sources]})"
