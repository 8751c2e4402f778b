"""Configuration value objects for dependency injection.

Instead of injecting the global settings object, inject specific frozen
dataclasses into each component. Built from ConfigState at the composition
root (see dependency_container).
"""

from dataclasses import dataclass

DEFAULT_RETRYABLE_ERROR_CODES = frozenset(
    {
        "DB_CONNECTION_ERROR",
        "DB_QUERY_ERROR",
        "NETWORK_ERROR",
        "TIMEOUT_ERROR",
        "RATE_LIMIT_ERROR",
    }
)


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior. Delays are in seconds."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter: bool = True
    retryable_error_codes: frozenset[str] = DEFAULT_RETRYABLE_ERROR_CODES

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Configuration for the upstream circuit breaker."""

    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    monitoring_window: float = 60.0


@dataclass(frozen=True)
class OrchestratorConfig:
    """Configuration for the collection loop."""

    tick_interval_seconds: float = 10.0
    schedule_refresh_seconds: float = 60.0
    max_in_flight_jobs: int = 10
    sub_batch_size: int = 5
    inter_batch_delay_seconds: float = 0.15
    job_timeout_seconds: float = 60.0
    default_lookback_days: int = 30
    count_lookback_seconds: float = 3600.0
    batch_history_size: int = 500

    def __post_init__(self):
        if self.max_in_flight_jobs < 1:
            raise ValueError("max_in_flight_jobs must be >= 1")
        if self.sub_batch_size < 1:
            raise ValueError("sub_batch_size must be >= 1")


@dataclass(frozen=True)
class HttpCollectorConfig:
    """Configuration for the upstream collection HTTP client."""

    base_url: str
    timeout: float = 30.0
    api_key: str | None = None
