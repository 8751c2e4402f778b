"""Tier assignment repository.

Read side of the store the scheduler depends on (ITierStore). The
assignments table is written by the external tier classifier; this
repository never writes to it.

Table Schema (managed elsewhere):
  asset_tier_assignments:
    - asset_id: VARCHAR NOT NULL (PRIMARY)
    - current_tier: INTEGER NOT NULL
    - activity_score: NUMERIC NOT NULL
    - last_tier_change: TIMESTAMPTZ
    - consecutive_high_scores: INTEGER
    - consecutive_low_scores: INTEGER

  ohlcv (hypertable):
    - asset_id: VARCHAR NOT NULL
    - timeframe: VARCHAR NOT NULL
    - timestamp_utc: TIMESTAMPTZ NOT NULL
    - ...
"""

import re
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from tiered_collector.infrastructure.database.ports import IDatabaseAdapter
from tiered_collector.infrastructure.observability import get_storage_logger
from tiered_collector.resilience.exceptions import (
    ConfigurationError,
    SchemaMismatchError,
)
from tiered_collector.scheduling.models import AssetTierAssignment

logger = get_storage_logger("tier-assignments")

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


def _checked_identifier(name: str) -> str:
    # Table names come from configuration and are interpolated into SQL.
    if not _IDENTIFIER.match(name):
        raise ConfigurationError(
            f"Invalid table name: {name!r}", issues=[f"invalid table name {name!r}"]
        )
    return name


class TierAssignmentRepository:
    """Repository for tier assignments and collected-row counts.

    Args:
        db: Database adapter
        assignments_table: Table holding per-asset tier assignments
        ohlcv_table: Table the upstream collector writes candles into
    """

    def __init__(
        self,
        db: IDatabaseAdapter,
        assignments_table: str = "asset_tier_assignments",
        ohlcv_table: str = "ohlcv",
    ):
        self.db = db
        self.assignments_table = _checked_identifier(assignments_table)
        self.ohlcv_table = _checked_identifier(ohlcv_table)

    @staticmethod
    def _to_assignment(row: dict[str, Any]) -> AssetTierAssignment:
        try:
            return AssetTierAssignment(
                asset_id=row["asset_id"],
                tier=int(row["current_tier"]),
                activity_score=float(row["activity_score"]),
                last_tier_change=row.get("last_tier_change"),
                consecutive_high_scores=row.get("consecutive_high_scores") or 0,
                consecutive_low_scores=row.get("consecutive_low_scores") or 0,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise SchemaMismatchError(
                f"Unexpected tier assignment row: {e}", context={"row": row}, cause=e
            ) from e

    async def fetch_assignments(
        self, tiers: Sequence[int]
    ) -> list[AssetTierAssignment]:
        """Assignments for the given tiers, ordered by tier then score desc."""
        if not tiers:
            return []

        query = f"""
            SELECT asset_id, current_tier, activity_score, last_tier_change,
                   consecutive_high_scores, consecutive_low_scores
            FROM {self.assignments_table}
            WHERE current_tier = ANY($1::int[])
            ORDER BY current_tier ASC, activity_score DESC, asset_id ASC
        """
        rows = await self.db.fetch_all(query, list(tiers))
        assignments = [self._to_assignment(row) for row in rows]
        logger.debug(
            "assignments_fetched", tiers=list(tiers), count=len(assignments)
        )
        return assignments

    async def fetch_tier_scores(self) -> list[tuple[int, float]]:
        """(tier, activity_score) for every assigned asset."""
        query = f"""
            SELECT current_tier, activity_score
            FROM {self.assignments_table}
        """
        rows = await self.db.fetch_all(query)
        return [(int(r["current_tier"]), float(r["activity_score"])) for r in rows]

    async def count_rows_since(
        self, asset_id: str, timeframe: str, since: datetime
    ) -> int:
        """Rows stored for asset/timeframe with timestamp_utc >= since."""
        query = f"""
            SELECT COUNT(*) AS cnt
            FROM {self.ohlcv_table}
            WHERE asset_id = $1 AND timeframe = $2 AND timestamp_utc >= $3
        """
        result = await self.db.fetch_value(query, asset_id, timeframe, since)
        return int(result or 0)
