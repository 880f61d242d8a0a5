"""
EPG Core - Main Package

Program guide ingestion from multiple unreliable sources, served through a
three-tier cache.

Modules:
    clients: Async HTTP client for remote guide endpoints
    parsers: XMLTV, JSON and embedded-playlist guide parsers
    normalizer: Program data model and normalization helpers
    orchestrator: Source registry, fetch orchestration, tiered cache, scheduling
    storage: Medium (session) and durable (SQLite) cache tiers
    utils: Logging and exceptions
"""

__version__ = "1.0.0"

__all__ = [
    "__version__",
]
