"""
HTTP client for remote EPG endpoints.

Asynchronous GET client with a fixed identifying User-Agent, per-request
timeouts, and typed errors so the fetch orchestrator can retry.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import aiohttp

from ..config import HTTPConfig
from ..utils.exceptions import APIError


logger = logging.getLogger(__name__)


@dataclass
class EPGHttpClientConfig:
    """Configuration for the EPG HTTP client.

    Attributes:
        user_agent: Identifying User-Agent header
        accept: Accept header covering markup, JSON and plain text
        timeout: Upper bound for any request in seconds
    """

    user_agent: str = HTTPConfig.USER_AGENT
    accept: str = HTTPConfig.ACCEPT
    timeout: float = HTTPConfig.REQUEST_TIMEOUT

    @classmethod
    def from_env(cls) -> "EPGHttpClientConfig":
        """Create configuration from environment variables."""
        return cls(
            user_agent=HTTPConfig.USER_AGENT,
            accept=HTTPConfig.ACCEPT,
            timeout=HTTPConfig.REQUEST_TIMEOUT,
        )


class ServerError(APIError):
    """Raised when the server returns a 5xx status."""
    pass


class FetchTimeoutError(APIError):
    """Raised when a request exceeds its timeout and is cancelled."""
    pass


class EPGHttpClient:
    """Asynchronous HTTP client returning response bodies as text.

    Example:
        ```python
        async with EPGHttpClient() as client:
            xml = await client.get_text("https://epg.best/epg.xml", timeout=20)
        ```
    """

    def __init__(self, config: Optional[EPGHttpClientConfig] = None):
        self.config = config or EPGHttpClientConfig.from_env()
        self._session: Optional[aiohttp.ClientSession] = None
        self._stats = {
            "requests_made": 0,
            "successful": 0,
            "timeouts": 0,
            "errors": 0,
            "bytes_received": 0,
        }

    async def __aenter__(self) -> "EPGHttpClient":
        """Enter async context manager."""
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context manager."""
        await self.close()

    async def _ensure_session(self) -> None:
        """Ensure aiohttp session is initialized."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={
                    "User-Agent": self.config.user_agent,
                    "Accept": self.config.accept,
                },
                timeout=aiohttp.ClientTimeout(total=self.config.timeout),
            )
            logger.debug("Created new aiohttp session")

    async def close(self) -> None:
        """Close aiohttp session and cleanup resources."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug("Closed aiohttp session")
        self._session = None

    async def get_text(self, url: str, timeout: Optional[float] = None) -> str:
        """Fetch a URL and return its body as text.

        Args:
            url: Endpoint to fetch
            timeout: Per-request timeout in seconds (defaults to config)

        Returns:
            Response body

        Raises:
            FetchTimeoutError: Request timed out
            ServerError: Server error (5xx)
            APIError: Other HTTP or connection errors
        """
        await self._ensure_session()
        self._stats["requests_made"] += 1
        request_timeout = aiohttp.ClientTimeout(total=timeout or self.config.timeout)

        logger.debug("GET request", extra={"url": url, "timeout": request_timeout.total})

        try:
            async with self._session.get(url, timeout=request_timeout) as response:
                if response.status >= 500:
                    error_body = await response.text()
                    self._stats["errors"] += 1
                    raise ServerError(
                        f"HTTP {response.status}",
                        endpoint=url,
                        status_code=response.status,
                        response_body=error_body,
                    )

                if response.status >= 400:
                    error_body = await response.text()
                    self._stats["errors"] += 1
                    raise APIError(
                        f"HTTP {response.status}",
                        endpoint=url,
                        status_code=response.status,
                        response_body=error_body,
                    )

                content = await response.text()
                self._stats["successful"] += 1
                self._stats["bytes_received"] += len(content)
                logger.info(
                    "Request successful",
                    extra={"url": url, "content_length": len(content), "status": response.status},
                )
                return content

        except asyncio.TimeoutError as e:
            self._stats["timeouts"] += 1
            logger.warning("Request timed out", extra={"url": url, "timeout": request_timeout.total})
            raise FetchTimeoutError(
                f"Request timed out after {request_timeout.total}s",
                endpoint=url,
            ) from e

        except aiohttp.ClientError as e:
            self._stats["errors"] += 1
            logger.error("HTTP client error", extra={"url": url, "error": str(e)})
            raise APIError(f"HTTP client error: {str(e)}", endpoint=url) from e

    def get_statistics(self) -> dict:
        """Get request counters."""
        return self._stats.copy()
