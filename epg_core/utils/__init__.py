"""
Utils Module

Shared utilities for EPG Core.

Components:
    - logger: Logging with daily file names and colorized console output
    - exceptions: Custom exception hierarchy
"""

from epg_core.utils.logger import (
    LoggerConfig,
    get_logger,
    setup_logger,
)

__all__ = [
    "LoggerConfig",
    "setup_logger",
    "get_logger",
]
