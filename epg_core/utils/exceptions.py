"""
Custom exception classes for EPG Core.

Provides a hierarchy of exceptions for source fetching, parsing and
tiered caching, each carrying structured context for logging.
"""

from typing import Any, Optional


class EPGError(Exception):
    """Base exception for all EPG Core errors.

    All custom exceptions inherit from this class, allowing
    catch-all error handling when needed.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
    """

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class InvalidParametersError(EPGError):
    """Raised when a public operation receives structurally invalid arguments.

    Attributes:
        parameter: Name of the offending parameter
        value: Type name of the rejected value
    """

    def __init__(
        self,
        message: str = "Invalid parameters",
        parameter: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs
    ):
        details = {
            "parameter": parameter,
            "value_type": type(value).__name__ if value is not None else None,
            **kwargs
        }
        details = {k: v for k, v in details.items() if v is not None}
        super().__init__(message, details)
        self.parameter = parameter
        self.value = value


class CacheError(EPGError):
    """Raised when cache operations fail.

    Covers failures in reading from, writing to, or sweeping one cache tier.

    Attributes:
        operation: The cache operation that failed (read/write/delete/quota/sweep)
        cache_key: The channel key involved in the failed operation
        tier: Cache tier name (fast/medium/durable)
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        cache_key: Optional[str] = None,
        tier: Optional[str] = None,
        **kwargs
    ):
        details = {
            "operation": operation,
            "cache_key": cache_key,
            "tier": tier,
            **kwargs
        }
        details = {k: v for k, v in details.items() if v is not None}
        super().__init__(message, details)
        self.operation = operation
        self.cache_key = cache_key
        self.tier = tier


class ParsingError(EPGError):
    """Raised when a payload cannot be validated or parsed.

    Attributes:
        source: Source name that produced the payload
        parser: Parser type used (xmltv/json/embedded)
        raw_data: Raw payload (optional, for debugging)
    """

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        parser: Optional[str] = None,
        raw_data: Optional[str] = None,
        **kwargs
    ):
        details = {
            "source": source,
            "parser": parser,
            **kwargs
        }
        if raw_data:
            details["raw_data_preview"] = raw_data[:200] + "..." if len(raw_data) > 200 else raw_data

        details = {k: v for k, v in details.items() if v is not None}
        super().__init__(message, details)
        self.source = source
        self.parser = parser
        self.raw_data = raw_data


class DataNormalizationError(EPGError):
    """Raised when a single provider record cannot be normalized.

    Parsers catch this per record and skip the record.

    Attributes:
        source: Parser or source being normalized
        field: Specific field that caused the error
        value: Value that failed normalization
    """

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs
    ):
        details = {
            "source": source,
            "field": field,
            **kwargs
        }
        if value is not None:
            value_str = str(value)
            details["value"] = value_str[:100] + "..." if len(value_str) > 100 else value_str

        details = {k: v for k, v in details.items() if v is not None}
        super().__init__(message, details)
        self.source = source
        self.field = field
        self.value = value


class APIError(EPGError):
    """Raised when a remote EPG endpoint cannot be fetched.

    Attributes:
        endpoint: URL that failed
        status_code: HTTP status code (if applicable)
        response_body: Response content (if available)
    """

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        **kwargs
    ):
        details = {
            "endpoint": endpoint,
            "status_code": status_code,
            **kwargs
        }
        if response_body:
            details["response_preview"] = response_body[:200] + "..." if len(response_body) > 200 else response_body

        details = {k: v for k, v in details.items() if v is not None}
        super().__init__(message, details)
        self.endpoint = endpoint
        self.status_code = status_code
        self.response_body = response_body


class RateLimitError(EPGError):
    """Raised when a source is attempted again before its minimum interval.

    No waiting happens here; the per-source retry loop absorbs the delay.

    Attributes:
        source_name: Source that is being throttled
        retry_after: Seconds until the source may be attempted again
    """

    def __init__(
        self,
        message: str = "Source rate limit exceeded",
        source_name: Optional[str] = None,
        retry_after: Optional[float] = None,
        **kwargs
    ):
        details = {
            "source": source_name,
            "retry_after": round(retry_after, 3) if retry_after is not None else None,
            **kwargs
        }
        details = {k: v for k, v in details.items() if v is not None}
        super().__init__(message, details)
        self.source_name = source_name
        self.retry_after = retry_after


class SourceConfigError(EPGError):
    """Raised for invalid source registry operations.

    Covers duplicate names, unknown source types, and attempts
    against disabled or misconfigured sources.

    Attributes:
        source_name: Source involved in the failed operation
    """

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        **kwargs
    ):
        details = {
            "source": source_name,
            **kwargs
        }
        details = {k: v for k, v in details.items() if v is not None}
        super().__init__(message, details)
        self.source_name = source_name


class NoDataAvailableError(EPGError):
    """Raised when no source (backups included) produced data for the request.

    The caller is expected to fall back to cached data.

    Attributes:
        requested_channels: Channel keys that were requested
        errors: Last error message per attempted source
    """

    def __init__(
        self,
        message: str = "No EPG data available from any source",
        requested_channels: Optional[list[str]] = None,
        errors: Optional[dict[str, str]] = None,
        **kwargs
    ):
        details = {
            "requested_channels": len(requested_channels) if requested_channels else None,
            "failed_sources": ", ".join(errors) if errors else None,
            **kwargs
        }
        details = {k: v for k, v in details.items() if v is not None}
        super().__init__(message, details)
        self.requested_channels = requested_channels or []
        self.errors = errors or {}
