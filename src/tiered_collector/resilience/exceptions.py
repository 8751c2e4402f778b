"""
Collection Error Hierarchy

Typed errors for the collection path, so the retry policy can tell transient
failures (connection, query, network, timeout, rate limit) from permanent ones
(malformed asset id, schema mismatch) and from a tripped circuit breaker.
"""

import asyncio
from datetime import UTC, datetime
from typing import Any


class CollectionError(Exception):
    """Base exception for all collection-path errors."""

    code = "UNKNOWN_ERROR"
    retryable = True

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        cause: BaseException | None = None,
        *,
        code: str | None = None,
        retryable: bool | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.timestamp = datetime.now(UTC)
        if code is not None:
            self.code = code
        if retryable is not None:
            self.retryable = retryable
        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        """Plain representation for structured logs."""
        return {
            "name": type(self).__name__,
            "message": self.message,
            "code": self.code,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "retryable": self.retryable,
            "cause": repr(self.__cause__) if self.__cause__ else None,
        }


# Transient


class StoreConnectionError(CollectionError):
    """Persistent store unreachable or connection dropped."""

    code = "DB_CONNECTION_ERROR"


class StoreQueryError(CollectionError):
    """Query against the persistent store failed."""

    code = "DB_QUERY_ERROR"


class NetworkError(CollectionError):
    """Upstream network or server-side failure."""

    code = "NETWORK_ERROR"


class CollectionTimeoutError(CollectionError):
    """A collection attempt exceeded its time budget."""

    code = "TIMEOUT_ERROR"

    def __init__(self, message: str, timeout_seconds: float = 0.0, **kwargs):
        super().__init__(message, **kwargs)
        self.timeout_seconds = timeout_seconds


class RateLimitError(CollectionError):
    """429 - upstream rate limit exceeded."""

    code = "RATE_LIMIT_ERROR"

    def __init__(self, message: str, retry_after: float | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


# Permanent


class InvalidAssetError(CollectionError):
    """Malformed or unknown asset identifier."""

    code = "INVALID_ASSET_ERROR"
    retryable = False


class SchemaMismatchError(CollectionError):
    """Upstream or store payload does not match the expected shape."""

    code = "SCHEMA_MISMATCH_ERROR"
    retryable = False


class CircuitOpenError(CollectionError):
    """Raised without calling upstream while the circuit breaker is open."""

    code = "CIRCUIT_OPEN"
    retryable = False

    def __init__(self, name: str, retry_in: float, **kwargs):
        super().__init__(
            f"Circuit breaker '{name}' is OPEN (retry in {retry_in:.1f}s)", **kwargs
        )
        self.breaker_name = name
        self.retry_in = retry_in


class ConfigurationError(CollectionError):
    """Invalid static configuration. Fatal at startup."""

    code = "CONFIGURATION_ERROR"
    retryable = False

    def __init__(self, message: str, issues: list[str] | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.issues = issues or []


class ErrorCategorizer:
    """Classifies exceptions that did not originate in this package."""

    RETRYABLE_KEYWORDS = (
        "timeout",
        "timed out",
        "connection",
        "network",
        "rate limit",
        "temporary",
        "retry",
        "busy",
    )

    @classmethod
    def is_retryable(cls, error: BaseException) -> bool:
        """Retryability heuristic for any exception."""
        if isinstance(error, CollectionError):
            return error.retryable
        if isinstance(error, (asyncio.TimeoutError, ConnectionError)):
            return True
        message = str(error).lower()
        return any(keyword in message for keyword in cls.RETRYABLE_KEYWORDS)

    @classmethod
    def from_unknown(
        cls, error: BaseException, context: dict[str, Any] | None = None
    ) -> CollectionError:
        """Wrap an arbitrary exception in the matching CollectionError type."""
        if isinstance(error, CollectionError):
            return error

        message = str(error) or type(error).__name__
        lowered = message.lower()

        if isinstance(error, asyncio.TimeoutError) or "timeout" in lowered:
            return CollectionTimeoutError(message, context=context, cause=error)
        if isinstance(error, ConnectionError) or "connect" in lowered:
            return StoreConnectionError(message, context=context, cause=error)
        if "rate limit" in lowered or "429" in lowered:
            return RateLimitError(message, context=context, cause=error)
        if "query" in lowered or "sql" in lowered:
            return StoreQueryError(message, context=context, cause=error)

        return CollectionError(
            message,
            context=context,
            cause=error,
            retryable=cls.is_retryable(error),
        )

    @staticmethod
    def get_severity(error: BaseException) -> str:
        """LOW / MEDIUM / HIGH / CRITICAL for alert routing."""
        if isinstance(error, ConfigurationError):
            return "CRITICAL"
        if isinstance(error, (StoreConnectionError, CircuitOpenError)):
            return "HIGH"
        if isinstance(error, (InvalidAssetError, SchemaMismatchError)):
            return "LOW"
        return "MEDIUM"
