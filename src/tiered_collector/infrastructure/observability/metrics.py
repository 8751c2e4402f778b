"""Prometheus metrics for the collection scheduler.

All collectors live in the module's own REGISTRY rather than the process-wide
default, and the exporter serves that registry.
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server

REGISTRY = CollectorRegistry()

COLLECTION_JOBS = Counter(
    "collection_jobs_total",
    "Collection jobs finished, by terminal status",
    ["tier", "timeframe", "status"],
    registry=REGISTRY,
)

COLLECTION_BATCHES = Counter(
    "collection_batches_total",
    "Collection batches finished, by status",
    ["tier", "timeframe", "status"],
    registry=REGISTRY,
)

COLLECTION_RECORDS = Counter(
    "collection_records_total",
    "Approximate number of records collected",
    ["tier", "timeframe"],
    registry=REGISTRY,
)

BATCH_DURATION = Histogram(
    "collection_batch_duration_seconds",
    "Wall-clock duration of one schedule execution",
    ["tier", "timeframe"],
    buckets=(0.5, 1, 2.5, 5, 10, 30, 60, 120, 300, 600),
    registry=REGISTRY,
)

SCHEDULES_DEFERRED = Counter(
    "collection_schedules_deferred_total",
    "Due schedules deferred to the next tick because the in-flight budget was exhausted",
    registry=REGISTRY,
)

IN_FLIGHT_JOBS = Gauge(
    "collection_in_flight_jobs",
    "Job slots currently reserved from the global in-flight budget",
    registry=REGISTRY,
)

CIRCUIT_STATE = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open)",
    ["name"],
    registry=REGISTRY,
)


def start_metrics_server(port: int, addr: str = "0.0.0.0") -> None:
    """Expose /metrics on the given port."""
    start_http_server(port, addr=addr, registry=REGISTRY)
