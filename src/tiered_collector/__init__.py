"""
Tiered market-data collection scheduler.
Refreshes time-series data for a changing asset universe at a cadence set by
each asset's activity tier.

Modules:
- scheduling: Tier manager, collection orchestrator, job/batch model
- resilience: Retry policy, circuit breaker, error taxonomy
- ingestion: Upstream collection client
- storage: Tier assignment and row-count queries
- infrastructure: Config, database, logging, metrics
"""

__version__ = "0.1.0"
