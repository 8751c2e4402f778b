"""Resilient execution: retry policy, circuit breaker, error taxonomy."""

from .circuit_breaker import CircuitBreaker, CircuitState
from .exceptions import (
    CircuitOpenError,
    CollectionError,
    CollectionTimeoutError,
    ConfigurationError,
    ErrorCategorizer,
    InvalidAssetError,
    NetworkError,
    RateLimitError,
    SchemaMismatchError,
    StoreConnectionError,
    StoreQueryError,
)
from .retry import RetryConfig, RetryPolicy, RetryResult

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "CircuitOpenError",
    "CollectionError",
    "CollectionTimeoutError",
    "ConfigurationError",
    "ErrorCategorizer",
    "InvalidAssetError",
    "NetworkError",
    "RateLimitError",
    "SchemaMismatchError",
    "StoreConnectionError",
    "StoreQueryError",
    "RetryConfig",
    "RetryPolicy",
    "RetryResult",
]
