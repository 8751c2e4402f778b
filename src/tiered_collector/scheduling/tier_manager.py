"""
Tier Manager

Turns the static tier table plus live per-asset tier assignments into an
ordered list of collection schedules.
"""

from collections import defaultdict
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime, timedelta

from tiered_collector.common.timeutils import utc_now
from tiered_collector.infrastructure.observability import get_scheduling_logger
from tiered_collector.resilience.exceptions import ConfigurationError
from tiered_collector.scheduling.models import (
    AssetTierAssignment,
    CollectionSchedule,
    TierConfig,
    TierStatistics,
)
from tiered_collector.scheduling.ports import ITierStore

logger = get_scheduling_logger("tier-manager")


def _ranking_key(assignment: AssetTierAssignment) -> tuple[float, str]:
    # score descending, asset id ascending on ties
    return (-assignment.activity_score, assignment.asset_id)


def validate_tier_integrity(configs: Iterable[TierConfig]) -> list[str]:
    """
    Check a tier table for structural problems.

    Returns:
        Human-readable issues; empty when the table is valid
    """
    configs = sorted(configs, key=lambda c: c.priority)
    issues: list[str] = []

    if not configs:
        return ["No tiers configured"]

    tiers = [c.tier for c in configs]
    if len(tiers) != len(set(tiers)):
        issues.append("Duplicate tier ids detected in tier configurations")

    priorities = [c.priority for c in configs]
    if len(priorities) != len(set(priorities)):
        issues.append("Duplicate priorities detected in tier configurations")

    for config in configs:
        if config.update_interval_seconds <= 0:
            issues.append(f"Tier {config.tier} interval must be positive")
        if config.max_assets <= 0:
            issues.append(f"Tier {config.tier} max_assets must be positive")
        if not config.timeframes:
            issues.append(f"Tier {config.tier} has no timeframes")

    for current, following in zip(configs, configs[1:]):
        if current.update_interval_seconds >= following.update_interval_seconds:
            issues.append(
                f"Tier {current.tier} interval ({current.update_interval_seconds}s) "
                f"should be less than Tier {following.tier} "
                f"({following.update_interval_seconds}s)"
            )

    return issues


class TierManager:
    """
    Owns the static tier table and builds collection schedules from it.

    Args:
        tier_configs: Static tier definitions
        store: Source of tier assignments
        clock: Current UTC time
    """

    def __init__(
        self,
        tier_configs: Sequence[TierConfig],
        store: ITierStore,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._declared: tuple[TierConfig, ...] = tuple(tier_configs)
        self._configs: dict[int, TierConfig] = {c.tier: c for c in self._declared}
        self._store = store
        self._clock = clock

    def get_tier_config(self, tier: int) -> TierConfig | None:
        return self._configs.get(tier)

    def get_all_tier_configs(self) -> list[TierConfig]:
        """All tier configs, highest priority first."""
        return sorted(self._configs.values(), key=lambda c: c.priority)

    def _priority_of(self, tier: int) -> int:
        config = self._configs.get(tier)
        return config.priority if config else 999

    def _require_config(self, tier: int) -> TierConfig:
        config = self._configs.get(tier)
        if config is None:
            raise ValueError(f"Invalid tier: {tier}")
        return config

    async def get_assets_by_tier(self, tier: int) -> list[AssetTierAssignment]:
        """Assets in `tier`, most active first, capped at the tier's max_assets."""
        config = self._require_config(tier)
        assignments = await self._store.fetch_assignments([tier])
        ranked = sorted(
            (a for a in assignments if a.tier == tier),
            key=_ranking_key,
        )
        return ranked[: config.max_assets]

    async def get_assets_by_tiers(
        self, tiers: Sequence[int]
    ) -> dict[int, list[AssetTierAssignment]]:
        """Same as get_assets_by_tier for several tiers with a single store read."""
        if not tiers:
            return {}
        for tier in tiers:
            self._require_config(tier)

        grouped: dict[int, list[AssetTierAssignment]] = defaultdict(list)
        for assignment in await self._store.fetch_assignments(list(tiers)):
            if assignment.tier in tiers:
                grouped[assignment.tier].append(assignment)

        return {
            tier: sorted(grouped.get(tier, []), key=_ranking_key)[
                : self._configs[tier].max_assets
            ]
            for tier in tiers
        }

    async def generate_schedules(
        self, now: datetime | None = None
    ) -> list[CollectionSchedule]:
        """
        Build one schedule per (tier, timeframe) that has at least one asset.

        Returns:
            Schedules ordered by tier priority, then next_run_at
        """
        now = now or self._clock()
        configs = self.get_all_tier_configs()
        assets_by_tier = await self.get_assets_by_tiers([c.tier for c in configs])

        schedules: list[CollectionSchedule] = []
        for config in configs:
            asset_ids = tuple(a.asset_id for a in assets_by_tier.get(config.tier, []))
            if not asset_ids:
                continue
            next_run_at = now + timedelta(seconds=config.update_interval_seconds)
            for timeframe in config.timeframes:
                schedules.append(
                    CollectionSchedule(
                        tier=config.tier,
                        timeframe=timeframe,
                        asset_ids=asset_ids,
                        next_run_at=next_run_at,
                        interval_seconds=config.update_interval_seconds,
                    )
                )

        schedules.sort(key=lambda s: (self._priority_of(s.tier), s.next_run_at))

        logger.info(
            "schedules_generated",
            schedules=len(schedules),
            assets={tier: len(a) for tier, a in assets_by_tier.items()},
        )
        return schedules

    def filter_due(
        self, schedules: Iterable[CollectionSchedule], now: datetime | None = None
    ) -> list[CollectionSchedule]:
        """Exactly the schedules with next_run_at <= now, order preserved."""
        now = now or self._clock()
        return [s for s in schedules if s.is_due(now)]

    def order_by_urgency(
        self, schedules: Iterable[CollectionSchedule]
    ) -> list[CollectionSchedule]:
        """Lowest priority number first, then earliest due time."""
        return sorted(
            schedules, key=lambda s: (self._priority_of(s.tier), s.next_run_at)
        )

    def update_after_execution(
        self, schedule: CollectionSchedule, now: datetime | None = None
    ) -> CollectionSchedule:
        """Reschedule one interval after the actual completion time."""
        return schedule.advanced(now or self._clock())

    def validate_integrity(
        self, configs: Iterable[TierConfig] | None = None
    ) -> list[str]:
        return validate_tier_integrity(
            self._declared if configs is None else configs
        )

    def ensure_integrity(self) -> None:
        """
        Raises:
            ConfigurationError: The tier table is invalid
        """
        issues = self.validate_integrity()
        if issues:
            for issue in issues:
                logger.error("tier_config_invalid", issue=issue)
            raise ConfigurationError("Invalid tier configuration", issues=issues)
        logger.info("tier_config_validated", tiers=len(self._declared))

    async def get_tier_statistics(self) -> dict[int, TierStatistics]:
        """Asset count and average activity score per tier."""
        scores_by_tier: dict[int, list[float]] = defaultdict(list)
        for tier, score in await self._store.fetch_tier_scores():
            scores_by_tier[tier].append(score)

        return {
            tier: TierStatistics(
                tier=tier,
                asset_count=len(scores),
                average_activity_score=round(sum(scores) / len(scores), 2)
                if scores
                else 0.0,
            )
            for tier, scores in sorted(scores_by_tier.items())
        }
