"""
Orchestrator Module

Source failover, tiered caching and background maintenance.

Components:
    - SourceRegistry: Prioritized, thread-safe list of EPG sources
    - FetchOrchestrator: Parallel fetch with retries, backoff and backups
    - CacheManager: Fast / medium / durable program cache
    - AccessPatternTracker: Per-channel access frequency and recency
    - CacheMaintenanceScheduler: Periodic cleanup, optimization and metrics reset
    - EPGRefreshScheduler: Periodic refresh of stale channels
    - EPGCoordinator: Cache-first loader with stale fallback
"""

__all__ = [
    "SourceRegistry",
    "SourceConfig",
    "SourceType",
    "FetchOrchestrator",
    "CacheManager",
    "AccessPatternTracker",
    "CacheMaintenanceScheduler",
    "EPGRefreshScheduler",
    "EPGCoordinator",
]

_LAZY_IMPORTS = {
    "SourceRegistry": ".source_registry",
    "SourceConfig": ".source_registry",
    "SourceType": ".source_registry",
    "FetchOrchestrator": ".fetch_orchestrator",
    "CacheManager": ".cache_manager",
    "AccessPatternTracker": ".access_patterns",
    "CacheMaintenanceScheduler": ".scheduler",
    "EPGRefreshScheduler": ".scheduler",
    "EPGCoordinator": ".coordinator",
}


# Lazy imports to avoid circular dependencies
def __getattr__(name):
    if name in _LAZY_IMPORTS:
        from importlib import import_module

        module = import_module(_LAZY_IMPORTS[name], __name__)
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
