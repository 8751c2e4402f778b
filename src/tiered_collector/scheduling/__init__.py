"""Tiered collection scheduling: tier manager, orchestrator and data model."""

from .models import (
    AssetTierAssignment,
    BatchStatus,
    CollectionBatch,
    CollectionJob,
    CollectionMetrics,
    CollectionSchedule,
    JobStatus,
    ScheduleBook,
    TierBreakdown,
    TierConfig,
    TierStatistics,
)
from .orchestrator import CollectionOrchestrator, InFlightBudget, TickReport
from .ports import IBatchListener, ICollector, ITierStore
from .tier_manager import TierManager, validate_tier_integrity

__all__ = [
    "AssetTierAssignment",
    "BatchStatus",
    "CollectionBatch",
    "CollectionJob",
    "CollectionMetrics",
    "CollectionOrchestrator",
    "CollectionSchedule",
    "IBatchListener",
    "ICollector",
    "ITierStore",
    "InFlightBudget",
    "JobStatus",
    "ScheduleBook",
    "TickReport",
    "TierBreakdown",
    "TierConfig",
    "TierManager",
    "TierStatistics",
    "validate_tier_integrity",
]
