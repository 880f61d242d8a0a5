"""
HTTP Clients Module

Async client used to download guide payloads from remote sources.

Components:
    - EPGHttpClient: aiohttp-based GET client with typed errors
    - EPGHttpClientConfig: Headers and timeout configuration
    - ServerError: 5xx responses
    - FetchTimeoutError: Requests cancelled on timeout
"""

from .http_client import (
    EPGHttpClient,
    EPGHttpClientConfig,
    FetchTimeoutError,
    ServerError,
)

__all__ = [
    "EPGHttpClient",
    "EPGHttpClientConfig",
    "ServerError",
    "FetchTimeoutError",
]
