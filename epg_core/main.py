"""
EPG Core - CLI Entry Point.

Command-line interface for loading and refreshing program guides for a set
of channels through the tiered cache.

Usage:
    # Keep refreshing every 30 minutes (default)
    python -m epg_core.main canal7.ar telefe.ar

    # One-time load of the next 12 hours
    python -m epg_core.main canal7.ar --once --hours 12

    # Custom refresh interval
    python -m epg_core.main canal7.ar --interval 15

    # Inspection and maintenance
    python -m epg_core.main --sources
    python -m epg_core.main --status
    python -m epg_core.main --cleanup
"""

import argparse
import asyncio
import logging
import signal
import sys
from datetime import datetime
from typing import NoReturn

from epg_core.config import AppConfig, SchedulerConfig
from epg_core.normalizer.schemas import TimeRange
from epg_core.orchestrator.cache_manager import CacheManager
from epg_core.orchestrator.coordinator import EPGCoordinator
from epg_core.orchestrator.fetch_orchestrator import FetchOrchestrator
from epg_core.orchestrator.scheduler import EPGRefreshScheduler
from epg_core.orchestrator.source_registry import SourceRegistry
from epg_core.utils.logger import setup_logger

logger = setup_logger("epg_core")


class EPGCoreCLI:
    """
    Command-line interface for EPG Core.

    Features:
        - One-time EPG load for a list of channels
        - Periodic refresh of stale channels
        - Source registry, cache status and cleanup commands
        - Graceful shutdown handling
    """

    def __init__(self):
        self.parser = self._create_parser()
        self.scheduler = None
        self.coordinator = None
        self.args = None

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _create_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog="EPG Core",
            description=(
                "Multi-source program guide loader with retries, backup failover "
                "and a three-tier cache."
            ),
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Examples:
  # Refresh two channels every 30 minutes
  python -m epg_core.main canal7.ar telefe.ar

  # One-time load
  python -m epg_core.main canal7.ar --once

  # Show configured sources
  python -m epg_core.main --sources

Configuration:
  Set environment variables in .env file:
    - EPG_PRIMARY_XMLTV_URL: Primary XMLTV guide
    - EPG_PLAYLIST_PATH: M3U playlist with embedded guide data
    - CACHE_TTL_SECONDS: Cache entry lifetime (default: 7200)
            """,
        )

        parser.add_argument(
            "channels",
            nargs="*",
            help="Channel ids to load (e.g., canal7.ar telefe.ar)",
            metavar="CHANNEL",
        )

        mode_group = parser.add_mutually_exclusive_group()
        mode_group.add_argument(
            "--once",
            action="store_true",
            help="Load once and exit (no scheduling)",
        )
        mode_group.add_argument(
            "--interval",
            type=int,
            default=SchedulerConfig.REFRESH_INTERVAL_MINUTES,
            metavar="MINUTES",
            help=f"Refresh interval in minutes (default: {SchedulerConfig.REFRESH_INTERVAL_MINUTES})",
        )

        command_group = parser.add_mutually_exclusive_group()
        command_group.add_argument(
            "--sources",
            action="store_true",
            help="Display configured sources and exit",
        )
        command_group.add_argument(
            "--status",
            action="store_true",
            help="Display cache metrics and storage usage",
        )
        command_group.add_argument(
            "--cleanup",
            action="store_true",
            help="Remove expired cache entries and exit",
        )

        parser.add_argument(
            "--hours",
            type=float,
            default=24,
            help="Guide window to display in hours (default: 24)",
        )
        parser.add_argument(
            "--force-refresh",
            action="store_true",
            help="Skip cache and fetch from sources",
        )
        parser.add_argument(
            "--log-level",
            type=str,
            choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            help="Override default log level",
        )
        parser.add_argument(
            "--version",
            action="version",
            version=f"%(prog)s {AppConfig.VERSION}",
        )

        return parser

    def _validate_configuration(self) -> None:
        is_valid, errors = AppConfig.validate()

        if not is_valid:
            logger.error("Configuration validation failed:")
            for error in errors:
                logger.error(f"  - {error}")

            print("\n❌ Configuration Error\n", file=sys.stderr)
            for error in errors:
                print(f"  • {error}", file=sys.stderr)
            sys.exit(1)

        logger.info("Configuration validated successfully")

    def _display_sources(self) -> None:
        registry = SourceRegistry()
        stats = registry.get_source_stats()

        print("\n" + "=" * 70)
        print("  EPG SOURCES")
        print("=" * 70 + "\n")

        for source in registry:
            state = "🟢" if source.enabled else "⚪"
            flags = []
            if source.critical:
                flags.append("critical")
            if source.backup_for:
                flags.append(f"backup for {source.backup_for}")
            print(f"  {state} [{source.sort_priority}] {source.name:18} {source.type.value:9} {', '.join(flags)}")
            print(f"       {source.endpoint or '(no endpoint)'}")

        print(f"\n  Total: {stats['total']} | Enabled: {stats['enabled']} | Disabled: {stats['disabled']}")
        print("\n" + "=" * 70 + "\n")

    def _display_cache_status(self) -> None:
        cache = CacheManager(auto_maintenance=False)
        try:
            storage = cache.get_storage_stats()
            metrics = cache.get_performance_metrics()
        finally:
            cache.shutdown()

        print("\n" + "=" * 70)
        print("  CACHE STATUS REPORT")
        print("=" * 70)

        print("\n💾 Storage:")
        fast = storage["fast"]
        print(f"  Fast:      {fast['entries']} entries, {fast['size_bytes'] / 1024:.1f} KB ({fast['utilization']:.1f}%)")
        for tier in ("medium", "durable"):
            info = storage[tier]
            if "error" in info:
                print(f"  {tier.capitalize():10} unavailable ({info['error']})")
            else:
                print(f"  {tier.capitalize() + ':':10} {info['entries']} entries, {info['size_bytes'] / 1024:.1f} KB")
        print(f"  TTL:       {storage['ttl_seconds']}s")

        print("\n📊 Metrics (this process):")
        print(f"  Requests:  {metrics['total_requests']} | Hit rate: {metrics['hit_rate']:.1f}%")

        print("\n" + "=" * 70 + "\n")

    def _run_cleanup(self) -> None:
        cache = CacheManager(auto_maintenance=False)
        try:
            removed = cache.cleanup()
        finally:
            cache.shutdown()

        print(f"\n🧹 Removed {sum(removed.values())} expired entries")
        for tier, count in removed.items():
            print(f"  {tier:8} {count}")
        print()

    async def _run_once(self, channels: list[str]) -> None:
        logger.info(f"One-time execution mode: loading {len(channels)} channels")

        coordinator = EPGCoordinator(
            orchestrator=FetchOrchestrator(),
            cache=CacheManager(auto_maintenance=False),
        )
        time_range = TimeRange.next_hours(self.args.hours)

        try:
            epg = await coordinator.load_epg_data(
                channels, time_range, force_refresh=self.args.force_refresh
            )

            print("\n" + "=" * 70)
            print("  PROGRAM GUIDE")
            print("=" * 70)

            for channel_id in channels:
                programs = epg.get(channel_id)
                print(f"\n  📺 {channel_id}")
                if not programs:
                    print("     ❌ No guide data")
                    continue
                for program in programs:
                    start = program.start.astimezone().strftime("%a %H:%M")
                    end = program.end.astimezone().strftime("%H:%M")
                    print(f"     {start}-{end}  {program.title}")

            print(f"\n  Loaded {len(epg)}/{len(channels)} channels\n")
            print("=" * 70 + "\n")

        except Exception as e:
            logger.error(f"Error during one-time execution: {e}", exc_info=True)
            sys.exit(1)

        finally:
            await coordinator.close()
            coordinator.shutdown()

    def _run_scheduled(self, channels: list[str]) -> None:
        logger.info(f"Starting refresh: {len(channels)} channels, {self.args.interval}min interval")

        self.coordinator = EPGCoordinator()
        self.scheduler = EPGRefreshScheduler(
            self.coordinator, channels, interval_minutes=self.args.interval
        )

        try:
            self.scheduler.start()

            print("\n" + "=" * 70)
            print(f"  {AppConfig.APP_NAME} v{AppConfig.VERSION}")
            print("=" * 70)
            print(f"\n  📺 Tracking {len(channels)} channels:")
            for channel_id in channels:
                print(f"     • {channel_id}")
            print(f"\n  ⏱️  Refresh interval: {self.args.interval} minutes")
            print("\n  Press Ctrl+C to stop gracefully...\n")
            print("=" * 70 + "\n")

            while self.scheduler.is_running():
                signal.pause()

        except KeyboardInterrupt:
            logger.info("Received interrupt signal - shutting down gracefully")
            self._shutdown()

        except Exception as e:
            logger.error(f"Scheduler error: {e}", exc_info=True)
            self._shutdown()
            sys.exit(1)

    def _shutdown(self) -> None:
        if self.scheduler and self.scheduler.is_running():
            print("\n\n🛑 Shutting down gracefully...\n")
            self.scheduler.stop(wait=True)

            stats = self.scheduler.get_statistics()
            print("=" * 70)
            print("  SHUTDOWN SUMMARY")
            print("=" * 70)
            print(f"\n  Refreshes:           {stats['total_refreshes']}")
            print(f"  Failed:              {stats['failed_refreshes']}")
            print(f"  Channels Refreshed:  {stats['channels_refreshed']}")
            print("\n" + "=" * 70 + "\n")

        if self.coordinator:
            self.coordinator.shutdown()
            self.coordinator = None

        logger.info("Shutdown complete")

    def _signal_handler(self, signum: int, frame) -> None:
        logger.info(f"Received signal {signum}")
        self._shutdown()
        sys.exit(0)

    def run(self) -> NoReturn:
        """Parse arguments and execute the requested command."""
        self.args = self.parser.parse_args()

        if self.args.log_level:
            logger.setLevel(getattr(logging, self.args.log_level))

        print(f"\n{AppConfig.APP_NAME} v{AppConfig.VERSION}")
        print(f"Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n")

        self._validate_configuration()

        if self.args.sources:
            self._display_sources()
            sys.exit(0)

        if self.args.status:
            self._display_cache_status()
            sys.exit(0)

        if self.args.cleanup:
            self._run_cleanup()
            sys.exit(0)

        if not self.args.channels:
            self.parser.error("No channels provided. Use --help for usage information.")

        channels = list(dict.fromkeys(self.args.channels))
        logger.info(
            f"Starting with {len(channels)} channels",
            extra={"channels": channels, "mode": "once" if self.args.once else "scheduled"},
        )

        if self.args.once:
            asyncio.run(self._run_once(channels))
        else:
            self._run_scheduled(channels)

        sys.exit(0)


def main() -> NoReturn:
    try:
        cli = EPGCoreCLI()
        cli.run()
    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        print(f"\n❌ Fatal Error: {e}\n", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
