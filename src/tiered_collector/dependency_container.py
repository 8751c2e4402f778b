"""Dependency injection container for the collection scheduler.

Wires together:
- Database adapter (asyncpg pool)
- Tier assignment repository (ITierStore)
- HTTP collector (ICollector, aiohttp)
- Retry policy and circuit breaker
- Tier manager
- Collection orchestrator

Usage:
    container = CollectorDependencyContainer(get_config())
    await container.start()
    orchestrator = container.create_orchestrator()
    ...
    await container.close()
"""

from collections.abc import Sequence

from tiered_collector.config.state import ConfigState
from tiered_collector.infrastructure.database.ports import (
    AsyncpgDatabaseAdapter,
    IDatabaseAdapter,
)
from tiered_collector.infrastructure.observability import get_infrastructure_logger
from tiered_collector.ingestion.http_collector import HttpCollectorClient
from tiered_collector.resilience.circuit_breaker import CircuitBreaker
from tiered_collector.resilience.retry import RetryPolicy
from tiered_collector.scheduling.orchestrator import CollectionOrchestrator
from tiered_collector.scheduling.ports import IBatchListener, ICollector, ITierStore
from tiered_collector.scheduling.tier_manager import TierManager
from tiered_collector.storage.repositories.tier_assignments import (
    TierAssignmentRepository,
)

logger = get_infrastructure_logger("dependency-container")


class CollectorDependencyContainer:
    """
    Single place where concrete implementations are chosen.

    Components are created lazily and cached, so the orchestrator and the
    tier manager share one store and the jobs share one circuit breaker.
    Tests can subclass this and override the create_* methods to inject fakes.
    """

    def __init__(
        self,
        config: ConfigState,
        listeners: Sequence[IBatchListener] = (),
    ):
        self.config = config
        self.listeners = list(listeners)

        self._database: IDatabaseAdapter | None = None
        self._store: ITierStore | None = None
        self._collector: ICollector | None = None
        self._circuit_breaker: CircuitBreaker | None = None
        self._tier_manager: TierManager | None = None

    def create_database(self) -> IDatabaseAdapter:
        db = self.config.database
        return AsyncpgDatabaseAdapter(
            dsn=db.url,
            min_size=db.min_pool_size,
            max_size=db.max_pool_size,
            command_timeout=db.command_timeout,
        )

    def create_store(self) -> ITierStore:
        return TierAssignmentRepository(
            self.database,
            assignments_table=self.config.database.assignments_table,
            ohlcv_table=self.config.database.ohlcv_table,
        )

    def create_collector(self) -> ICollector:
        return HttpCollectorClient(self.config.to_http_collector_config())

    def create_retry_policy(self) -> RetryPolicy:
        return RetryPolicy(self.config.to_retry_config())

    def create_circuit_breaker(self) -> CircuitBreaker:
        cb = self.config.to_circuit_breaker_config()
        return CircuitBreaker(
            failure_threshold=cb.failure_threshold,
            recovery_timeout=cb.recovery_timeout,
            monitoring_window=cb.monitoring_window,
            name="upstream-collector",
        )

    @property
    def database(self) -> IDatabaseAdapter:
        if self._database is None:
            self._database = self.create_database()
        return self._database

    @property
    def store(self) -> ITierStore:
        if self._store is None:
            self._store = self.create_store()
        return self._store

    @property
    def collector(self) -> ICollector:
        if self._collector is None:
            self._collector = self.create_collector()
        return self._collector

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        if self._circuit_breaker is None:
            self._circuit_breaker = self.create_circuit_breaker()
        return self._circuit_breaker

    @property
    def tier_manager(self) -> TierManager:
        if self._tier_manager is None:
            self._tier_manager = TierManager(self.config.to_tier_configs(), self.store)
        return self._tier_manager

    def create_orchestrator(self) -> CollectionOrchestrator:
        return CollectionOrchestrator(
            tier_manager=self.tier_manager,
            collector=self.collector,
            store=self.store,
            config=self.config.to_orchestrator_config(),
            retry_policy=self.create_retry_policy(),
            circuit_breaker=self.circuit_breaker,
            listeners=self.listeners,
        )

    async def start(self) -> None:
        """Open the database pool."""
        await self.database.connect()
        logger.info("container_started", env=self.config.env)

    async def close(self) -> None:
        """Release the HTTP session and the database pool."""
        if self._collector is not None and hasattr(self._collector, "close"):
            await self._collector.close()
        if self._database is not None:
            await self._database.disconnect()
        logger.info("container_closed")
