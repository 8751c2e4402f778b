"""
Scheduling Layer Protocol Definitions
=====================================

Collaborators the scheduler depends on but does not own: the upstream
collection capability, the persistent store, and downstream batch consumers.
"""

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol, runtime_checkable

from tiered_collector.scheduling.models import AssetTierAssignment, CollectionBatch


@runtime_checkable
class ICollector(Protocol):
    """Fetch-and-persist one asset/timeframe. Opaque to the scheduler."""

    async def collect(self, asset_id: str, timeframe: str, lookback_days: int) -> bool:
        """
        Collect and store recent candles for one asset.

        Args:
            asset_id: Asset identifier
            timeframe: Candle timeframe (e.g. "1m", "5m", "1h")
            lookback_days: How far back to backfill when no data exists

        Returns:
            True if the upstream reported success

        Raises:
            CollectionError subclasses for classified failures
        """
        ...


@runtime_checkable
class ITierStore(Protocol):
    """Read side of the persistent store used by the scheduler."""

    async def fetch_assignments(
        self, tiers: Sequence[int]
    ) -> list[AssetTierAssignment]:
        """Tier assignments for the given tiers (any order)."""
        ...

    async def fetch_tier_scores(self) -> list[tuple[int, float]]:
        """(tier, activity_score) for every assigned asset."""
        ...

    async def count_rows_since(
        self, asset_id: str, timeframe: str, since: datetime
    ) -> int:
        """Rows stored for asset/timeframe with timestamp >= since."""
        ...


@runtime_checkable
class IBatchListener(Protocol):
    """Downstream consumer notified after every finished batch."""

    async def on_batch_completed(self, batch: CollectionBatch) -> None: ...
