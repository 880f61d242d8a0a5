"""
Fetch Orchestrator.

Fetches guide data for a set of channels from every enabled source:

1. One task per source runs its retry loop concurrently
2. Results are merged in ascending priority order; the first source that
   returns programs for a channel wins
3. A critical source that yields nothing hands over to its backups
4. An empty result for a non-empty request raises NoDataAvailableError

Falling back to cached data is the caller's job.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Union

from epg_core.clients.http_client import EPGHttpClient
from epg_core.normalizer.schemas import ChannelRef, Program
from epg_core.orchestrator.source_registry import SourceConfig, SourceRegistry
from epg_core.utils.exceptions import (
    EPGError,
    NoDataAvailableError,
    ParsingError,
    SourceConfigError,
)

logger = logging.getLogger(__name__)

ChannelLike = Union[ChannelRef, str, dict]


@dataclass
class SourceOutcome:
    """Result of one source's retry loop."""

    source: SourceConfig
    data: dict[str, list[Program]] = field(default_factory=dict)
    error: Optional[Exception] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and bool(self.data)


class FetchOrchestrator:
    """
    Multi-source EPG fetcher with retries, backoff and backup failover.

    Example:
        ```python
        async with FetchOrchestrator() as orchestrator:
            epg = await orchestrator.fetch_epg_data(["canal7.ar", "telefe.ar"])
        ```
    """

    def __init__(
        self,
        registry: Optional[SourceRegistry] = None,
        http_client: Optional[EPGHttpClient] = None,
    ):
        self.registry = registry if registry is not None else SourceRegistry()
        self.http_client = http_client or EPGHttpClient()
        self._stats: dict[str, Any] = {
            "requests": 0,
            "successful_requests": 0,
            "failed_requests": 0,
            "backup_activations": 0,
            "sources": {},
        }

        logger.info(f"FetchOrchestrator initialized with {len(self.registry)} sources")

    async def __aenter__(self) -> "FetchOrchestrator":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.http_client.close()

    async def fetch_epg_data(self, channels: Iterable[ChannelLike]) -> dict[str, list[Program]]:
        """
        Fetch programs for the requested channels from all enabled sources.

        Args:
            channels: Channel ids, ChannelRef objects or channel dicts.
                Empty means every channel the sources return.

        Returns:
            Channel key -> programs; requested channels no source knows
            about are simply absent

        Raises:
            NoDataAvailableError: If channels were requested and nothing was found
        """
        requested = [ChannelRef.coerce(c).key for c in channels or []]
        wanted = set(requested)
        self._stats["requests"] += 1

        sources = self.registry.enabled_sources()
        logger.info(
            f"Fetching EPG for {len(requested) or 'all'} channels from {len(sources)} sources",
            extra={"channels": len(requested), "sources": len(sources)},
        )

        tasks = {
            source.name: asyncio.create_task(self._run_source(source, requested))
            for source in sources
        }

        result: dict[str, list[Program]] = {}
        errors: dict[str, str] = {}
        merged: set[str] = set()

        try:
            for source in sources:
                if source.name in merged:
                    continue

                outcome = await tasks[source.name]
                merged.add(source.name)
                contributed = self._merge(result, outcome, wanted, errors)

                if source.critical and contributed == 0:
                    await self._use_backups(source, tasks, merged, result, wanted, errors)
        finally:
            for task in tasks.values():
                if not task.done():
                    task.cancel()

        if not result and requested:
            self._stats["failed_requests"] += 1
            logger.error(
                "No EPG data available from any source",
                extra={"channels": len(requested), "failed_sources": list(errors)},
            )
            raise NoDataAvailableError(requested_channels=requested, errors=errors)

        self._stats["successful_requests"] += 1
        missing = len(wanted - set(result)) if wanted else 0
        logger.info(
            f"EPG fetch complete: {len(result)} channels",
            extra={"channels": len(result), "missing": missing},
        )
        return result

    async def _use_backups(
        self,
        failed: SourceConfig,
        tasks: dict[str, asyncio.Task],
        merged: set[str],
        result: dict[str, list[Program]],
        wanted: set[str],
        errors: dict[str, str],
    ) -> None:
        backups = self.registry.backups_for(failed.name)
        if not backups:
            logger.warning(f"Critical source {failed.name} failed and has no enabled backups")
            return

        self._stats["backup_activations"] += 1
        logger.warning(
            f"Critical source {failed.name} yielded no data, trying {len(backups)} backups",
            extra={"source": failed.name, "backups": [b.name for b in backups]},
        )

        for backup in backups:
            if backup.name in merged:
                continue
            task = tasks.get(backup.name)
            if task is None:
                continue

            outcome = await task
            merged.add(backup.name)
            if self._merge(result, outcome, wanted, errors) > 0:
                logger.info(f"Backup {backup.name} succeeded for {failed.name}")
                return

    @staticmethod
    def _merge(
        result: dict[str, list[Program]],
        outcome: SourceOutcome,
        wanted: set[str],
        errors: dict[str, str],
    ) -> int:
        """Add channels not filled yet; returns how many channels the source had."""
        if outcome.error is not None:
            errors[outcome.source.name] = str(outcome.error)
            return 0

        matched = 0
        for channel_id, programs in outcome.data.items():
            if wanted and channel_id not in wanted:
                continue
            if not programs:
                continue
            matched += 1
            if channel_id not in result:
                result[channel_id] = programs
        return matched

    async def _run_source(self, source: SourceConfig, channels: list[str]) -> SourceOutcome:
        try:
            data = await self.fetch_from_source_with_retry(source, channels)
            return SourceOutcome(source=source, data=data)
        except EPGError as e:
            return SourceOutcome(source=source, error=e)
        except Exception as e:
            logger.error(f"Unexpected error fetching {source.name}: {e}", exc_info=True)
            return SourceOutcome(source=source, error=e)

    async def fetch_from_source_with_retry(
        self,
        source: SourceConfig,
        channels: Optional[list[str]] = None,
    ) -> dict[str, list[Program]]:
        """
        Fetch from one source, retrying with exponential backoff.

        Attempts ``max_retries`` times (at least once), sleeping
        ``retry_delay * 2 ** (attempt - 1)`` seconds between attempts.

        Raises:
            EPGError: The last attempt's error once retries are exhausted
        """
        attempts = max(1, source.max_retries)
        source_stats = self._source_stats(source.name)
        last_error: Optional[EPGError] = None

        for attempt in range(1, attempts + 1):
            source_stats["attempts"] += 1
            try:
                data = await self.fetch_from_source(source, channels)
                source_stats["successes"] += 1
                return data
            except EPGError as e:
                last_error = e
                logger.warning(
                    f"Attempt {attempt}/{attempts} failed for {source.name}: {e}",
                    extra={"source": source.name, "attempt": attempt, "error": type(e).__name__},
                )

            if attempt < attempts:
                delay = source.retry_delay * (2 ** (attempt - 1))
                source_stats["retries"] += 1
                await self._sleep(delay)

        source_stats["failures"] += 1
        logger.error(f"Source {source.name} exhausted {attempts} attempts")
        raise last_error

    async def fetch_from_source(
        self,
        source: SourceConfig,
        channels: Optional[list[str]] = None,
    ) -> dict[str, list[Program]]:
        """
        Single attempt: rate-limit check, download, validate and parse.

        Raises:
            SourceConfigError: If the source is disabled
            RateLimitError: If called before the source's minimum interval
            ParsingError: If the payload is empty, malformed or has no programs
            APIError: On network errors and timeouts
        """
        if not source.enabled:
            raise SourceConfigError("Source is disabled", source_name=source.name)

        source.begin_attempt()
        try:
            payload = await source.fetch_payload(self.http_client)
            source.validate_payload(payload)
            data = self._parse(source, payload)
            if not data:
                raise ParsingError(
                    "Payload contained no programs", source=source.name, parser=source.type.value
                )
        except EPGError as e:
            source.record_error(e)
            raise

        source.record_success()
        logger.debug(
            f"Fetched {len(data)} channels from {source.name}",
            extra={"source": source.name, "channels": len(data), "requested": len(channels or [])},
        )
        return data

    @staticmethod
    def _parse(source: SourceConfig, payload: str) -> dict[str, list[Program]]:
        try:
            return source.parse(payload)
        except EPGError:
            raise
        except Exception as e:
            raise ParsingError(
                f"Parser failed: {type(e).__name__}: {e}",
                source=source.name,
                parser=source.type.value,
            ) from e

    async def _sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    def _source_stats(self, name: str) -> dict[str, int]:
        return self._stats["sources"].setdefault(
            name, {"attempts": 0, "successes": 0, "failures": 0, "retries": 0}
        )

    # Registry management pass-through

    def add_source(self, source: Union[SourceConfig, dict]) -> SourceConfig:
        return self.registry.add_source(source)

    def remove_source(self, name: str) -> bool:
        return self.registry.remove_source(name)

    def enable_source(self, name: str) -> bool:
        return self.registry.set_source_enabled(name, True)

    def disable_source(self, name: str) -> bool:
        return self.registry.set_source_enabled(name, False)

    def reset_source_errors(self) -> None:
        self.registry.reset_source_errors()

    def get_source_stats(self) -> dict[str, Any]:
        return self.registry.get_source_stats()

    def get_statistics(self) -> dict[str, Any]:
        """
        Request counters plus per-source attempt statistics.

        Returns:
            Dictionary with request totals, success rate (%), backup
            activations, per-source counters and registry stats
        """
        total = self._stats["requests"]
        success_rate = (self._stats["successful_requests"] / total * 100) if total > 0 else 0.0
        return {
            "requests": total,
            "successful_requests": self._stats["successful_requests"],
            "failed_requests": self._stats["failed_requests"],
            "success_rate": round(success_rate, 2),
            "backup_activations": self._stats["backup_activations"],
            "sources": {name: dict(stats) for name, stats in self._stats["sources"].items()},
            "registry": self.registry.get_source_stats(),
            "http": self.http_client.get_statistics(),
        }

    def reset_statistics(self) -> None:
        self._stats.update(
            requests=0, successful_requests=0, failed_requests=0, backup_activations=0, sources={}
        )
