"""
Command-line entry point.

    tiered-collector run [--metrics-port N]
    tiered-collector trigger --tier N [--timeframe TF]
    tiered-collector validate-config
    tiered-collector stats

Exit codes: 0 success, 1 runtime failure, 2 configuration error.
"""

import argparse
import asyncio
import json
import signal
import sys
from collections.abc import Sequence

from tiered_collector.config.state import ConfigState, get_config
from tiered_collector.dependency_container import CollectorDependencyContainer
from tiered_collector.infrastructure.observability import (
    get_infrastructure_logger,
    setup_logging,
)
from tiered_collector.infrastructure.observability.metrics import start_metrics_server
from tiered_collector.resilience.exceptions import CollectionError, ConfigurationError

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2

logger = get_infrastructure_logger("cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tiered-collector",
        description="Tiered market data collection scheduler",
    )
    parser.add_argument("--config-dir", default=None, help="Configuration directory")
    parser.add_argument("--env", default=None, help="Environment overlay (env/<env>.yaml)")
    parser.add_argument("--log-level", default=None, help="Override logging level")
    parser.add_argument(
        "--json-logs",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="JSON log output (default from config)",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run the collection loop until interrupted")
    run.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Expose prometheus metrics on this port",
    )

    trigger = sub.add_parser("trigger", help="Collect one tier immediately")
    trigger.add_argument("--tier", type=int, required=True)
    trigger.add_argument("--timeframe", default=None)

    sub.add_parser("validate-config", help="Load and validate configuration")
    sub.add_parser("stats", help="Print per-tier asset statistics")
    return parser


def _configure_logging(args: argparse.Namespace, config: ConfigState) -> None:
    json_logs = config.logging.json_logs if args.json_logs is None else args.json_logs
    setup_logging(
        level=args.log_level or config.logging.level,
        json_logs=json_logs,
        include_timestamp=config.logging.include_timestamp,
    )


async def _run(container: CollectorDependencyContainer, metrics_port: int | None) -> None:
    metrics = container.config.metrics
    port = metrics_port or (metrics.port if metrics.enabled else None)
    if port:
        start_metrics_server(port, metrics.addr)

    orchestrator = container.create_orchestrator()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, orchestrator.stop)
        except NotImplementedError:
            # Windows event loops
            pass

    await container.start()
    try:
        await orchestrator.run_forever()
    finally:
        await container.close()


async def _trigger(
    container: CollectorDependencyContainer, tier: int, timeframe: str | None
) -> int:
    orchestrator = container.create_orchestrator()
    await container.start()
    try:
        container.tier_manager.ensure_integrity()
        batches = await orchestrator.execute_immediately(tier, timeframe)
    finally:
        await container.close()

    print(json.dumps([b.summary() for b in batches], indent=2, default=str))
    return EXIT_OK if all(b.status.value == "completed" for b in batches) else EXIT_FAILURE


async def _stats(container: CollectorDependencyContainer) -> None:
    await container.start()
    try:
        stats = await container.tier_manager.get_tier_statistics()
    finally:
        await container.close()

    print(
        json.dumps(
            {
                str(tier): {
                    "asset_count": s.asset_count,
                    "average_activity_score": s.average_activity_score,
                }
                for tier, s in stats.items()
            },
            indent=2,
        )
    )


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = get_config(args.config_dir, env=args.env)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        for issue in e.issues:
            print(f"  - {issue}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    _configure_logging(args, config)

    if args.command == "validate-config":
        tiers = ", ".join(
            f"{t.tier}:{t.name}({t.update_interval_seconds}s)" for t in config.tiers
        )
        print(f"Configuration OK (env={config.env}); tiers: {tiers}")
        return EXIT_OK

    container = CollectorDependencyContainer(config)
    try:
        if args.command == "run":
            asyncio.run(_run(container, args.metrics_port))
            return EXIT_OK
        if args.command == "trigger":
            return asyncio.run(_trigger(container, args.tier, args.timeframe))
        if args.command == "stats":
            asyncio.run(_stats(container))
            return EXIT_OK
    except ConfigurationError as e:
        logger.error("configuration_error", error=str(e), issues=e.issues)
        return EXIT_CONFIG_ERROR
    except (CollectionError, ValueError) as e:
        logger.error("command_failed", command=args.command, error=str(e))
        return EXIT_FAILURE

    return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
