"""
Configuration management for EPG Core.

Environment-based configuration using python-dotenv.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class SourceDefaults:
    """Default policy applied to EPG sources."""

    # Sources without a priority sort after every prioritized one
    LOWEST_PRIORITY: int = 999

    MAX_RETRIES: int = int(os.getenv("SOURCE_MAX_RETRIES", "3"))

    # Base delay for exponential backoff, in seconds
    RETRY_DELAY_SECONDS: float = float(os.getenv("SOURCE_RETRY_DELAY_SECONDS", "1.0"))

    # Minimum time between two attempts against the same source
    MIN_INTERVAL_SECONDS: float = float(os.getenv("SOURCE_MIN_INTERVAL_SECONDS", "60.0"))

    TIMEOUT_SECONDS: float = float(os.getenv("SOURCE_TIMEOUT_SECONDS", "15.0"))

    # Built-in provider endpoints
    PRIMARY_XMLTV_URL: str = os.getenv(
        "EPG_PRIMARY_XMLTV_URL", "https://iptv-org.github.io/epg/guides/ar/mi.tv.epg.xml"
    )
    BACKUP_XMLTV_URL: str = os.getenv("EPG_BACKUP_XMLTV_URL", "https://epg.best/epg.xml")
    GENERIC_XMLTV_URL: str = os.getenv("EPG_GENERIC_XMLTV_URL", "")
    LOCAL_JSON_PATH: str = os.getenv("EPG_LOCAL_JSON_PATH", "./epg/local-epg.json")

    # M3U playlist carrying embedded EPG data (file path or URL)
    PLAYLIST_PATH: str = os.getenv("EPG_PLAYLIST_PATH", "")


class CacheConfig:
    """Tiered cache and storage configuration."""

    # Entry time-to-live in seconds (2 hours default)
    TTL_SECONDS: int = int(os.getenv("CACHE_TTL_SECONDS", "7200"))

    # Fast (in-process) tier byte budget
    MEMORY_MAX_BYTES: int = int(os.getenv("CACHE_MEMORY_MAX_BYTES", str(50 * 1024 * 1024)))

    # Medium (session) tier byte budget
    SESSION_MAX_BYTES: int = int(os.getenv("CACHE_SESSION_MAX_BYTES", str(10 * 1024 * 1024)))

    # Base directory for data storage
    DATA_DIR: Path = Path(os.getenv("DATA_DIR", "data"))

    # SQLite database path for the durable tier
    DB_PATH: Path = DATA_DIR / "epg_cache.db"

    # Directory holding one record per channel for the medium tier
    SESSION_DIR: Path = Path(os.getenv("CACHE_SESSION_DIR", str(DATA_DIR / "session")))

    KEY_PREFIX: str = "epg_cache_"

    # Access patterns idle longer than this are dropped on metrics reset
    PATTERN_RETENTION_DAYS: int = int(os.getenv("CACHE_PATTERN_RETENTION_DAYS", "7"))

    # Promotion into the fast tier
    PROMOTION_MIN_ACCESSES: int = 3
    PROMOTION_MIN_FREQUENCY: float = 0.1
    PROMOTION_RECENCY_SECONDS: int = 600

    # Optimization pass
    MOST_ACCESSED_LIMIT: int = 10
    REBALANCE_THRESHOLD: float = 0.7
    REBALANCE_MAX_CANDIDATES: int = 5

    # Start the periodic maintenance jobs with the cache
    AUTO_MAINTENANCE: bool = os.getenv("CACHE_AUTO_MAINTENANCE", "true").lower() == "true"

    @classmethod
    def ensure_directories(cls) -> None:
        """Create necessary directories if they don't exist."""
        cls.DATA_DIR.mkdir(parents=True, exist_ok=True)


class SchedulerConfig:
    """Background job configuration."""

    CLEANUP_INTERVAL_HOURS: int = int(os.getenv("CLEANUP_INTERVAL_HOURS", "1"))
    OPTIMIZE_INTERVAL_HOURS: int = int(os.getenv("OPTIMIZE_INTERVAL_HOURS", "2"))
    METRICS_RESET_HOURS: int = int(os.getenv("METRICS_RESET_HOURS", "24"))

    # EPG refresh for tracked channels
    REFRESH_INTERVAL_MINUTES: int = int(os.getenv("REFRESH_INTERVAL_MINUTES", "30"))
    STALE_AFTER_SECONDS: int = int(os.getenv("STALE_AFTER_SECONDS", "7200"))
    AUTO_UPDATE_ENABLED: bool = os.getenv("AUTO_UPDATE_ENABLED", "true").lower() == "true"


class HTTPConfig:
    """Outbound HTTP configuration."""

    USER_AGENT: str = os.getenv("EPG_USER_AGENT", "EPG Core/1.0.0")
    ACCEPT: str = "application/xml, application/json, text/plain, */*"

    # Upper bound for any request, in seconds
    REQUEST_TIMEOUT: int = int(os.getenv("REQUEST_TIMEOUT", "30"))


class LoggingConfig:
    """Logging configuration."""

    # Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    LOG_DIR: Path = Path(os.getenv("LOG_DIR", "logs"))

    LOG_FILE: str = os.getenv("LOG_FILE", "epg_core.log")

    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"

    # Maximum log file size in bytes (10MB default)
    MAX_LOG_SIZE: int = int(os.getenv("MAX_LOG_SIZE", str(10 * 1024 * 1024)))

    BACKUP_COUNT: int = int(os.getenv("BACKUP_COUNT", "5"))

    @classmethod
    def ensure_log_directory(cls) -> None:
        """Create log directory if it doesn't exist."""
        cls.LOG_DIR.mkdir(parents=True, exist_ok=True)

    @classmethod
    def get_log_file_path(cls) -> Path:
        """Get full path to log file."""
        return cls.LOG_DIR / cls.LOG_FILE


class AppConfig:
    """Main application configuration aggregating all config classes."""

    sources = SourceDefaults
    cache = CacheConfig
    scheduler = SchedulerConfig
    http = HTTPConfig
    logging = LoggingConfig

    APP_NAME: str = "EPG Core"
    VERSION: str = "1.0.0"

    @classmethod
    def initialize(cls) -> None:
        """Initialize all configuration settings and create necessary directories."""
        CacheConfig.ensure_directories()
        LoggingConfig.ensure_log_directory()

    @classmethod
    def validate(cls) -> tuple[bool, list[str]]:
        """
        Validate configuration settings.

        Returns:
            Tuple of (is_valid, error_messages)
        """
        errors = []

        if CacheConfig.TTL_SECONDS < 60:
            errors.append("CACHE_TTL_SECONDS should be at least 60 seconds")

        if CacheConfig.MEMORY_MAX_BYTES <= 0:
            errors.append("CACHE_MEMORY_MAX_BYTES must be greater than 0")

        if CacheConfig.SESSION_MAX_BYTES <= 0:
            errors.append("CACHE_SESSION_MAX_BYTES must be greater than 0")

        if SourceDefaults.MAX_RETRIES < 1:
            errors.append("SOURCE_MAX_RETRIES must be at least 1")

        if SourceDefaults.TIMEOUT_SECONDS <= 0:
            errors.append("SOURCE_TIMEOUT_SECONDS must be greater than 0")

        if SchedulerConfig.REFRESH_INTERVAL_MINUTES < 1:
            errors.append("REFRESH_INTERVAL_MINUTES should be at least 1 minute")

        return (len(errors) == 0, errors)


# Initialize configuration on module import
AppConfig.initialize()
