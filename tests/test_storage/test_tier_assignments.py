"""Tests for TierAssignmentRepository and the asyncpg adapter error mapping."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

from tiered_collector.infrastructure.database.ports import AsyncpgDatabaseAdapter
from tiered_collector.resilience.exceptions import (
    ConfigurationError,
    SchemaMismatchError,
    StoreConnectionError,
    StoreQueryError,
)
from tiered_collector.scheduling.ports import ITierStore
from tiered_collector.storage.repositories.tier_assignments import (
    TierAssignmentRepository,
)


@pytest.fixture
def db():
    db = MagicMock()
    db.fetch_all = AsyncMock(return_value=[])
    db.fetch_value = AsyncMock(return_value=0)
    return db


class TestTierAssignmentRepository:
    def test_satisfies_store_protocol(self, db):
        assert isinstance(TierAssignmentRepository(db), ITierStore)

    @pytest.mark.asyncio
    async def test_fetch_assignments_maps_rows(self, db):
        changed = datetime(2024, 1, 1, tzinfo=UTC)
        db.fetch_all.return_value = [
            {
                "asset_id": "abc",
                "current_tier": 1,
                "activity_score": 87.5,
                "last_tier_change": changed,
                "consecutive_high_scores": 3,
                "consecutive_low_scores": None,
            }
        ]
        repo = TierAssignmentRepository(db)

        (assignment,) = await repo.fetch_assignments([1, 2])

        assert assignment.asset_id == "abc"
        assert assignment.tier == 1
        assert assignment.activity_score == 87.5
        assert assignment.last_tier_change == changed
        assert assignment.consecutive_high_scores == 3
        assert assignment.consecutive_low_scores == 0

        query, tiers = db.fetch_all.call_args.args
        assert "FROM asset_tier_assignments" in query
        assert "ANY($1::int[])" in query
        assert tiers == [1, 2]

    @pytest.mark.asyncio
    async def test_fetch_assignments_empty_tiers_skips_query(self, db):
        assert await TierAssignmentRepository(db).fetch_assignments([]) == []
        db.fetch_all.assert_not_called()

    @pytest.mark.asyncio
    async def test_malformed_row(self, db):
        db.fetch_all.return_value = [{"asset_id": "abc"}]

        with pytest.raises(SchemaMismatchError):
            await TierAssignmentRepository(db).fetch_assignments([1])

    @pytest.mark.asyncio
    async def test_fetch_tier_scores(self, db):
        db.fetch_all.return_value = [
            {"current_tier": 1, "activity_score": 10},
            {"current_tier": 2, "activity_score": 4.5},
        ]

        scores = await TierAssignmentRepository(db).fetch_tier_scores()

        assert scores == [(1, 10.0), (2, 4.5)]

    @pytest.mark.asyncio
    async def test_count_rows_since(self, db):
        since = datetime(2024, 1, 1, 11, tzinfo=UTC)
        db.fetch_value.return_value = 42
        repo = TierAssignmentRepository(db, ohlcv_table="market.ohlcv_1m")

        count = await repo.count_rows_since("abc", "1m", since)

        assert count == 42
        query, *params = db.fetch_value.call_args.args
        assert "FROM market.ohlcv_1m" in query
        assert params == ["abc", "1m", since]

    @pytest.mark.asyncio
    async def test_count_rows_none_is_zero(self, db):
        db.fetch_value.return_value = None

        assert await TierAssignmentRepository(db).count_rows_since("a", "1m", datetime.now(UTC)) == 0

    @pytest.mark.parametrize("table", ["drop table x;", "a-b", "1abc", "a.b.c"])
    def test_rejects_unsafe_table_names(self, db, table):
        with pytest.raises(ConfigurationError):
            TierAssignmentRepository(db, assignments_table=table)


class FakeAcquire:
    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        return self.conn

    async def __aexit__(self, *exc):
        return False


def adapter_with_connection(conn) -> AsyncpgDatabaseAdapter:
    adapter = AsyncpgDatabaseAdapter("postgresql://u:p@localhost/db")
    pool = MagicMock()
    pool.acquire.return_value = FakeAcquire(conn)
    adapter._pool = pool
    return adapter


class TestAsyncpgDatabaseAdapter:
    @pytest.mark.asyncio
    async def test_not_connected(self):
        adapter = AsyncpgDatabaseAdapter("postgresql://u:p@localhost/db")

        with pytest.raises(StoreConnectionError):
            await adapter.fetch_all("SELECT 1")

    @pytest.mark.asyncio
    async def test_fetch_all_returns_dicts(self):
        conn = MagicMock()
        conn.fetch = AsyncMock(return_value=[{"a": 1}, {"a": 2}])
        adapter = adapter_with_connection(conn)

        assert await adapter.fetch_all("SELECT a FROM t WHERE x = $1", 5) == [
            {"a": 1},
            {"a": 2},
        ]
        conn.fetch.assert_awaited_once_with("SELECT a FROM t WHERE x = $1", 5)

    @pytest.mark.asyncio
    async def test_fetch_value(self):
        conn = MagicMock()
        conn.fetchrow = AsyncMock(return_value={"cnt": 9})
        adapter = adapter_with_connection(conn)

        assert await adapter.fetch_value("SELECT COUNT(*) AS cnt FROM t") == 9

    @pytest.mark.asyncio
    async def test_connection_errors_are_mapped(self):
        conn = MagicMock()
        conn.fetch = AsyncMock(side_effect=ConnectionResetError("reset"))
        adapter = adapter_with_connection(conn)

        with pytest.raises(StoreConnectionError) as exc_info:
            await adapter.fetch_all("SELECT 1")

        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_postgres_errors_are_mapped(self):
        conn = MagicMock()
        conn.fetch = AsyncMock(side_effect=asyncpg.PostgresError("relation missing"))
        adapter = adapter_with_connection(conn)

        with pytest.raises(StoreQueryError):
            await adapter.fetch_all("SELECT * FROM nowhere")

    @pytest.mark.asyncio
    async def test_connect_failure(self, monkeypatch):
        monkeypatch.setattr(
            asyncpg, "create_pool", AsyncMock(side_effect=OSError("refused"))
        )
        adapter = AsyncpgDatabaseAdapter("postgresql://u:p@localhost/db")

        with pytest.raises(StoreConnectionError):
            await adapter.connect()
        assert adapter.pool is None
