"""
Background schedulers.

APScheduler-based periodic jobs:

    - CacheMaintenanceScheduler: expiry sweep, optimization and metrics
      reset for a CacheManager that owns it
    - EPGRefreshScheduler: periodic refresh of stale channels through the
      coordinator
"""

import asyncio
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from epg_core.config import SchedulerConfig

if TYPE_CHECKING:
    from epg_core.orchestrator.cache_manager import CacheManager
    from epg_core.orchestrator.coordinator import EPGCoordinator

logger = logging.getLogger(__name__)


class CacheMaintenanceScheduler:
    """
    Periodic janitorial jobs for one cache.

    Scheduled Tasks:
        - Hourly: Remove expired and corrupt entries
        - Every 2 hours: Promote popular channels and rebalance tiers
        - Every 24 hours: Reset metrics and prune idle access patterns

    Jobs never overlap themselves and each one only holds a single
    tier's lock at a time, so foreground traffic keeps flowing.
    """

    def __init__(
        self,
        cache: "CacheManager",
        cleanup_interval_hours: Optional[float] = None,
        optimize_interval_hours: Optional[float] = None,
        metrics_reset_hours: Optional[float] = None,
    ):
        self.cache = cache
        self.cleanup_interval_hours = cleanup_interval_hours or SchedulerConfig.CLEANUP_INTERVAL_HOURS
        self.optimize_interval_hours = optimize_interval_hours or SchedulerConfig.OPTIMIZE_INTERVAL_HOURS
        self.metrics_reset_hours = metrics_reset_hours or SchedulerConfig.METRICS_RESET_HOURS

        self.scheduler = BackgroundScheduler()
        self._is_running = False
        self._last_run: dict[str, Optional[datetime]] = {
            "cleanup": None,
            "optimize": None,
            "reset_metrics": None,
        }
        self._stats = {"cleanups": 0, "optimizations": 0, "metric_resets": 0, "failures": 0}

    def start(self) -> None:
        """Register the three maintenance jobs and start the scheduler."""
        if self._is_running:
            logger.warning("Cache maintenance is already running")
            return

        self.scheduler.add_job(
            func=self._run_cleanup,
            trigger=IntervalTrigger(hours=self.cleanup_interval_hours),
            id="cache_cleanup",
            name="Cache Expiry Sweep",
            replace_existing=True,
            max_instances=1,
        )
        self.scheduler.add_job(
            func=self._run_optimize,
            trigger=IntervalTrigger(hours=self.optimize_interval_hours),
            id="cache_optimize",
            name="Cache Optimization",
            replace_existing=True,
            max_instances=1,
        )
        self.scheduler.add_job(
            func=self._run_reset_metrics,
            trigger=IntervalTrigger(hours=self.metrics_reset_hours),
            id="cache_reset_metrics",
            name="Cache Metrics Reset",
            replace_existing=True,
            max_instances=1,
        )

        self.scheduler.start()
        self._is_running = True
        logger.info(
            "Cache maintenance started",
            extra={"jobs": [job.id for job in self.scheduler.get_jobs()]},
        )

    def stop(self, wait: bool = True) -> None:
        if not self._is_running:
            logger.debug("Cache maintenance is not running")
            return

        self.scheduler.shutdown(wait=wait)
        self._is_running = False
        logger.info("Cache maintenance stopped")

    def _run_cleanup(self) -> None:
        try:
            removed = self.cache.cleanup()
            self._last_run["cleanup"] = datetime.now()
            self._stats["cleanups"] += 1
            logger.info(f"Scheduled cleanup removed {sum(removed.values())} entries")
        except Exception as e:
            self._stats["failures"] += 1
            logger.error(f"Error during cache cleanup: {e}", exc_info=True)

    def _run_optimize(self) -> None:
        try:
            self.cache.optimize_cache()
            self._last_run["optimize"] = datetime.now()
            self._stats["optimizations"] += 1
        except Exception as e:
            self._stats["failures"] += 1
            logger.error(f"Error during cache optimization: {e}", exc_info=True)

    def _run_reset_metrics(self) -> None:
        try:
            self.cache.reset_metrics()
            self._last_run["reset_metrics"] = datetime.now()
            self._stats["metric_resets"] += 1
        except Exception as e:
            self._stats["failures"] += 1
            logger.error(f"Error during metrics reset: {e}", exc_info=True)

    def is_running(self) -> bool:
        return self._is_running

    def get_statistics(self) -> dict[str, Any]:
        return {
            "is_running": self._is_running,
            "intervals_hours": {
                "cleanup": self.cleanup_interval_hours,
                "optimize": self.optimize_interval_hours,
                "reset_metrics": self.metrics_reset_hours,
            },
            "last_run": {
                name: (value.isoformat() if value else None) for name, value in self._last_run.items()
            },
            **self._stats,
            "scheduled_jobs": [
                {
                    "id": job.id,
                    "name": job.name,
                    "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                }
                for job in self.scheduler.get_jobs()
            ]
            if self._is_running
            else [],
        }


class EPGRefreshScheduler:
    """
    Background refresh of tracked channels.

    Every ``interval_minutes`` the coordinator refetches channels whose
    cache entries are stale or missing.

    Example:
        >>> scheduler = EPGRefreshScheduler(coordinator, ["canal7.ar", "telefe.ar"])
        >>> scheduler.start()
        >>> # ... let it run ...
        >>> scheduler.stop()
    """

    def __init__(
        self,
        coordinator: "EPGCoordinator",
        channels: list[Any],
        interval_minutes: Optional[int] = None,
    ):
        self.coordinator = coordinator
        self.channels = list(channels)
        self.interval_minutes = interval_minutes or SchedulerConfig.REFRESH_INTERVAL_MINUTES
        self.scheduler = BackgroundScheduler()

        self._is_running = False
        self._last_refresh_time: Optional[datetime] = None
        self._stats = {
            "total_refreshes": 0,
            "successful_refreshes": 0,
            "failed_refreshes": 0,
            "channels_refreshed": 0,
        }

        logger.info(
            f"EPGRefreshScheduler initialized with {len(self.channels)} channels, "
            f"{self.interval_minutes}min interval"
        )

    def start(self, run_immediately: bool = True) -> None:
        if self._is_running:
            logger.warning("Refresh scheduler is already running")
            return

        self.scheduler.add_job(
            func=self._refresh_wrapper,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id="refresh_epg",
            name="EPG Refresh",
            replace_existing=True,
            max_instances=1,
        )
        self.scheduler.start()
        self._is_running = True
        logger.info("EPGRefreshScheduler started", extra={"channels": len(self.channels)})

        if run_immediately:
            self._refresh_wrapper()

    def stop(self, wait: bool = True) -> None:
        if not self._is_running:
            logger.warning("Refresh scheduler is not running")
            return

        self.scheduler.shutdown(wait=wait)
        self._is_running = False
        logger.info("EPGRefreshScheduler stopped")

    def _refresh_wrapper(self) -> None:
        """Run one refresh on a fresh event loop in the calling thread."""
        self._stats["total_refreshes"] += 1
        try:
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            try:
                refreshed = loop.run_until_complete(self._refresh())
            finally:
                loop.close()

            self._last_refresh_time = datetime.now()
            self._stats["successful_refreshes"] += 1
            self._stats["channels_refreshed"] += refreshed
        except Exception as e:
            self._stats["failed_refreshes"] += 1
            logger.error(f"Error in EPG refresh: {e}", exc_info=True)

    async def _refresh(self) -> int:
        try:
            refreshed = await self.coordinator.refresh_stale_channels(self.channels)
        finally:
            # The HTTP session is bound to this run's loop
            await self.coordinator.close()
        return len(refreshed)

    def update_channels(self, channels: list[Any]) -> None:
        self.channels = list(channels)
        logger.info(f"Refresh channel list updated: {len(self.channels)} channels")

    def force_refresh(self) -> None:
        logger.info("Forcing immediate EPG refresh")
        self._refresh_wrapper()

    def is_running(self) -> bool:
        return self._is_running

    def get_statistics(self) -> dict[str, Any]:
        return {
            "is_running": self._is_running,
            "interval_minutes": self.interval_minutes,
            "channels_tracked": len(self.channels),
            "last_refresh": self._last_refresh_time.isoformat() if self._last_refresh_time else None,
            **self._stats,
        }

    def __repr__(self) -> str:
        return (
            f"EPGRefreshScheduler(channels={len(self.channels)}, "
            f"interval={self.interval_minutes}min, running={self._is_running})"
        )
