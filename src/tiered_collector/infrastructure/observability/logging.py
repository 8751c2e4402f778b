"""
Structured logging infrastructure for tiered-collector.
Provides consistent, machine-readable logs across the scheduler and its
collaborators.

Log Structure:
    {
        "app": "tiered-collector",      # Application identifier
        "layer": "scheduling",          # Architectural layer
        "component": "orchestrator",    # Specific component/service
        "module": "...",                # Python module (optional)
        "tier": 1,                      # Domain context
        "event": "batch_completed",     # What happened
        ...
    }

Architectural Layers:
    - infrastructure: Cross-cutting (database, config, metrics)
    - scheduling: Tier manager, orchestrator, loop
    - resilience: Retry policy, circuit breaker
    - ingestion: Upstream collection capability
    - storage: Tier assignment / row count queries
"""

import logging
import sys
from typing import Any, Literal

import structlog
from structlog.types import EventDict

Layer = Literal["infrastructure", "scheduling", "resilience", "ingestion", "storage"]

APP_NAME = "tiered-collector"


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add the application identifier to every log entry."""
    event_dict["app"] = APP_NAME
    return event_dict


def add_severity_level(
    logger: Any, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Add severity level for cloud logging compatibility.
    Maps Python log levels to standard severity levels.
    """
    level = event_dict.get("level")
    if level:
        severity_map = {
            "debug": "DEBUG",
            "info": "INFO",
            "warning": "WARNING",
            "error": "ERROR",
            "critical": "CRITICAL",
        }
        event_dict["severity"] = severity_map.get(level, "INFO")
    return event_dict


def setup_logging(
    level: str = "INFO",
    json_logs: bool = True,
    include_timestamp: bool = True,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: If True, output JSON. If False, use human-readable format (dev mode).
        include_timestamp: Whether to include ISO timestamps in logs

    Usage:
        >>> from tiered_collector.infrastructure.observability import setup_logging
        >>> setup_logging(level="DEBUG", json_logs=False)
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        add_app_context,
        structlog.stdlib.add_log_level,
        add_severity_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if include_timestamp:
        processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))

    if json_logs:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(
    name: str | None = None,
    layer: Layer | None = None,
    component: str | None = None,
    **initial_context: Any,
) -> structlog.stdlib.BoundLogger:
    """
    Get a configured logger instance with architectural context.

    Args:
        name: Logger name (typically __name__ of the calling module)
        layer: Architectural layer (scheduling, resilience, ingestion, ...)
        component: Specific component/service within the layer
        **initial_context: Additional context key-value pairs to bind to logger

    Returns:
        Configured structlog logger with bound context

    Usage:
        >>> log = get_logger(__name__, layer="scheduling", component="orchestrator")
        >>> log.info("tick_started", due=3)
    """
    context = {}
    if layer:
        context["layer"] = layer
    if component:
        context["component"] = component
    if name:
        context["module"] = name
    context.update(initial_context)

    # Context goes into the lazy proxy so module-level loggers pick up
    # whatever setup_logging() configures later.
    return structlog.get_logger(name, **context)


# ============================================================================
# Layer-Specific Logger Factories
# ============================================================================


def get_infrastructure_logger(
    component: str,
    **context: Any,
) -> structlog.stdlib.BoundLogger:
    """
    Get a logger for infrastructure layer (database, config, metrics).

    Usage:
        >>> log = get_infrastructure_logger("database-adapter")
        >>> log.info("pool_created", max_size=10)
    """
    return get_logger(
        "infrastructure",
        layer="infrastructure",
        component=component,
        **context,
    )


def get_scheduling_logger(
    component: str,
    tier: int | None = None,
    **context: Any,
) -> structlog.stdlib.BoundLogger:
    """
    Get a logger for the scheduling layer (tier manager, orchestrator).

    Args:
        component: Component name (e.g., "orchestrator", "tier-manager")
        tier: Tier id - optional
        **context: Additional context (timeframe, batch_id, etc.)
    """
    ctx = {}
    if tier is not None:
        ctx["tier"] = tier
    ctx.update(context)

    return get_logger(
        "scheduling",
        layer="scheduling",
        component=component,
        **ctx,
    )


def get_resilience_logger(
    component: str,
    **context: Any,
) -> structlog.stdlib.BoundLogger:
    """Get a logger for retry policy / circuit breaker events."""
    return get_logger(
        "resilience",
        layer="resilience",
        component=component,
        **context,
    )


def get_ingestion_logger(
    component: str,
    **context: Any,
) -> structlog.stdlib.BoundLogger:
    """
    Get a logger for ingestion layer (upstream collection capability).

    Usage:
        >>> log = get_ingestion_logger("http-collector", asset_id="So111")
        >>> log.info("collect_requested", timeframe="1m")
    """
    return get_logger(
        "ingestion",
        layer="ingestion",
        component=component,
        **context,
    )


def get_storage_logger(
    component: str,
    **context: Any,
) -> structlog.stdlib.BoundLogger:
    """Get a logger for storage layer (tier assignments, row counts)."""
    return get_logger(
        "storage",
        layer="storage",
        component=component,
        **context,
    )
