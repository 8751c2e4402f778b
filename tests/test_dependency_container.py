"""Tests for CollectorDependencyContainer wiring."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from tests.fixtures import FakeCollector, FakeStore, RecordingListener, make_assignments
from tiered_collector.config.state import ConfigState
from tiered_collector.dependency_container import CollectorDependencyContainer
from tiered_collector.infrastructure.database.ports import AsyncpgDatabaseAdapter
from tiered_collector.ingestion.http_collector import HttpCollectorClient
from tiered_collector.scheduling.models import BatchStatus
from tiered_collector.scheduling.orchestrator import CollectionOrchestrator
from tiered_collector.storage.repositories.tier_assignments import (
    TierAssignmentRepository,
)


class FakeContainer(CollectorDependencyContainer):
    def __init__(self, config, listeners=()):
        super().__init__(config, listeners)
        self.fake_db = MagicMock()
        self.fake_db.connect = AsyncMock()
        self.fake_db.disconnect = AsyncMock()
        self.fake_store = FakeStore(make_assignments(1, 3))
        self.fake_collector = FakeCollector()

    def create_database(self):
        return self.fake_db

    def create_store(self):
        return self.fake_store

    def create_collector(self):
        return self.fake_collector


class TestDefaultWiring:
    def test_concrete_components(self):
        container = CollectorDependencyContainer(ConfigState())

        assert isinstance(container.database, AsyncpgDatabaseAdapter)
        assert isinstance(container.store, TierAssignmentRepository)
        assert isinstance(container.collector, HttpCollectorClient)
        assert container.circuit_breaker.name == "upstream-collector"

    def test_components_are_cached(self):
        container = CollectorDependencyContainer(ConfigState())

        assert container.store is container.store
        assert container.tier_manager is container.tier_manager
        assert container.circuit_breaker is container.circuit_breaker

    def test_config_flows_into_components(self):
        state = ConfigState.model_validate(
            {
                "database": {"ohlcv_table": "market.ohlcv"},
                "upstream": {"base_url": "http://upstream:9000/", "timeout": 12},
            }
        )
        container = CollectorDependencyContainer(state)

        assert container.collector.config.base_url == "http://upstream:9000"
        assert container.collector.config.timeout == 12
        assert container.store.ohlcv_table == "market.ohlcv"
        assert [t.tier for t in container.tier_manager.get_all_tier_configs()] == [1, 2, 3]


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_close(self):
        container = FakeContainer(ConfigState())

        await container.start()
        _ = container.collector
        await container.close()

        container.fake_db.connect.assert_awaited_once()
        container.fake_db.disconnect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_before_use_is_safe(self):
        container = CollectorDependencyContainer(ConfigState())

        await container.close()


class TestOrchestrator:
    @pytest.mark.asyncio
    async def test_orchestrator_shares_store_and_listeners(self):
        listener = RecordingListener()
        container = FakeContainer(ConfigState(), listeners=[listener])
        orchestrator = container.create_orchestrator()

        assert isinstance(orchestrator, CollectionOrchestrator)

        (batch,) = await orchestrator.execute_immediately(1)

        assert batch.status is BatchStatus.COMPLETED
        assert batch.success_count == 3
        assert container.fake_store.fetch_calls == [[1]]
        assert listener.batches == [batch]
        assert sorted(call[0] for call in container.fake_collector.calls) == [
            "t1asset00",
            "t1asset01",
            "t1asset02",
        ]
