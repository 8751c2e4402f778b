"""
Observability for the collection scheduler: structured logs via structlog and
Prometheus metrics for jobs, batches, deferrals and circuit breaker state.
"""

from .logging import (
    get_infrastructure_logger,
    get_ingestion_logger,
    get_logger,
    get_resilience_logger,
    get_scheduling_logger,
    get_storage_logger,
    setup_logging,
)

__all__ = [
    # Setup
    "setup_logging",
    # Base
    "get_logger",
    # Layer-specific
    "get_infrastructure_logger",
    "get_scheduling_logger",
    "get_resilience_logger",
    "get_ingestion_logger",
    "get_storage_logger",
]
