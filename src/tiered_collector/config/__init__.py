"""Configuration package for tiered_collector.

The pydantic/YAML loader lives in ``tiered_collector.config.state``; only the
dependency-free value objects are re-exported here.
"""

from .value_objects import (
    CircuitBreakerConfig,
    HttpCollectorConfig,
    OrchestratorConfig,
    RetryConfig,
)

__all__ = [
    "CircuitBreakerConfig",
    "HttpCollectorConfig",
    "OrchestratorConfig",
    "RetryConfig",
]
