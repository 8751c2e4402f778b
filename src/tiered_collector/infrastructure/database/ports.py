"""
Database adapter interfaces and implementations.
Provides abstraction over database operations for dependency injection.

Driver failures are translated into the collection error taxonomy so the
retry policy can classify them: connection problems become
StoreConnectionError (retryable), server-side errors StoreQueryError.
"""

from typing import Any, Protocol

import asyncpg

from tiered_collector.infrastructure.observability import get_infrastructure_logger
from tiered_collector.resilience.exceptions import (
    StoreConnectionError,
    StoreQueryError,
)

logger = get_infrastructure_logger("database-adapter")

_CONNECTION_ERRORS = (
    asyncpg.exceptions.InterfaceError,
    asyncpg.exceptions.ConnectionDoesNotExistError,
    asyncpg.exceptions.CannotConnectNowError,
    ConnectionError,
    OSError,
)


class IDatabaseAdapter(Protocol):
    """
    Protocol defining database operations interface.
    Enables dependency injection and testing with different implementations.
    """

    async def connect(self) -> None:
        """Establish database connection."""
        ...

    async def disconnect(self) -> None:
        """Close database connection."""
        ...

    async def execute_query(
        self, query: str, *args: Any, fetch_one: bool = False, fetch_all: bool = False
    ) -> Any | None:
        """
        Execute arbitrary SQL query.

        Args:
            query: SQL query string
            *args: Query parameters
            fetch_one: Return single row
            fetch_all: Return all rows

        Returns:
            Query result if fetch_one/fetch_all, else None
        """
        ...

    async def fetch_one(self, query: str, *args: Any) -> dict[str, Any] | None:
        """Fetch single row as dictionary."""
        ...

    async def fetch_all(self, query: str, *args: Any) -> list[dict[str, Any]]:
        """Fetch all rows as list of dictionaries."""
        ...

    async def fetch_value(self, query: str, *args: Any) -> Any:
        """Fetch the first column of the first row."""
        ...


class AsyncpgDatabaseAdapter:
    """
    IDatabaseAdapter over an asyncpg connection pool.

    Args:
        dsn: postgresql:// connection string
        min_size: Minimum pool size
        max_size: Maximum pool size
        command_timeout: Per-statement timeout in seconds
    """

    def __init__(
        self,
        dsn: str,
        min_size: int = 2,
        max_size: int = 10,
        command_timeout: float = 30.0,
    ):
        self._dsn = dsn
        self._min_size = min_size
        self._max_size = max_size
        self._command_timeout = command_timeout
        self._pool: asyncpg.Pool | None = None

    @property
    def pool(self) -> asyncpg.Pool | None:
        """Access underlying connection pool."""
        return self._pool

    async def connect(self) -> None:
        """Create the connection pool (idempotent)."""
        if self._pool is not None:
            return
        try:
            self._pool = await asyncpg.create_pool(
                dsn=self._dsn,
                min_size=self._min_size,
                max_size=self._max_size,
                command_timeout=self._command_timeout,
            )
        except _CONNECTION_ERRORS as e:
            raise StoreConnectionError(
                f"Could not connect to database: {e}", cause=e
            ) from e
        logger.info("pool_created", min_size=self._min_size, max_size=self._max_size)

    async def disconnect(self) -> None:
        """Close the connection pool."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("pool_closed")

    async def execute_query(
        self, query: str, *args: Any, fetch_one: bool = False, fetch_all: bool = False
    ) -> Any | None:
        """Execute arbitrary SQL query."""
        if self._pool is None:
            raise StoreConnectionError("Database not connected")

        try:
            async with self._pool.acquire() as conn:
                if fetch_one:
                    result = await conn.fetchrow(query, *args)
                    return dict(result) if result else None
                elif fetch_all:
                    results = await conn.fetch(query, *args)
                    return [dict(row) for row in results]
                else:
                    await conn.execute(query, *args)
                    return None
        except _CONNECTION_ERRORS as e:
            logger.warning("query_connection_failed", error=str(e))
            raise StoreConnectionError(
                f"Database connection failed: {e}", cause=e
            ) from e
        except asyncpg.PostgresError as e:
            logger.warning(
                "query_failed", error=str(e), sqlstate=getattr(e, "sqlstate", None)
            )
            raise StoreQueryError(
                f"Database query failed: {e}",
                context={"sqlstate": getattr(e, "sqlstate", None)},
                cause=e,
            ) from e

    async def fetch_one(self, query: str, *args: Any) -> dict[str, Any] | None:
        """Fetch single row as dictionary."""
        return await self.execute_query(query, *args, fetch_one=True)

    async def fetch_all(self, query: str, *args: Any) -> list[dict[str, Any]]:
        """Fetch all rows as list of dictionaries."""
        result = await self.execute_query(query, *args, fetch_all=True)
        return result if result else []

    async def fetch_value(self, query: str, *args: Any) -> Any:
        """Fetch the first column of the first row."""
        row = await self.fetch_one(query, *args)
        if not row:
            return None
        return next(iter(row.values()))
