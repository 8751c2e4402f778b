"""
Scheduling data model: tiers, assignments, schedules, jobs and batches.

Schedules are immutable; advancing one produces a new value. Jobs and batches
are mutable and live only for the duration of one schedule execution.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    """Collection job lifecycle status."""

    PENDING = "pending"
    RUNNING = "running"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class BatchStatus(str, Enum):
    """Collection batch status."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# Legal job transitions; FAILED is reached from RUNNING once retries stop.
_JOB_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING}),
    JobStatus.RUNNING: frozenset(
        {JobStatus.COMPLETED, JobStatus.RETRYING, JobStatus.FAILED}
    ),
    JobStatus.RETRYING: frozenset({JobStatus.RUNNING}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


@dataclass(frozen=True)
class TierConfig:
    """Static definition of one activity tier."""

    tier: int
    name: str
    timeframes: tuple[str, ...]
    update_interval_seconds: int
    max_assets: int
    retention_days: int
    priority: int  # 1 = highest


@dataclass(frozen=True)
class AssetTierAssignment:
    """Current tier of one asset, as produced by the external classifier."""

    asset_id: str
    tier: int
    activity_score: float
    last_tier_change: datetime | None = None
    consecutive_high_scores: int = 0
    consecutive_low_scores: int = 0


@dataclass(frozen=True)
class CollectionSchedule:
    """Pending collection for one (tier, timeframe) over a set of assets."""

    tier: int
    timeframe: str
    asset_ids: tuple[str, ...]
    next_run_at: datetime
    interval_seconds: int

    @property
    def key(self) -> tuple[int, str]:
        return (self.tier, self.timeframe)

    def is_due(self, now: datetime) -> bool:
        return self.next_run_at <= now

    def advanced(self, completed_at: datetime) -> "CollectionSchedule":
        """Copy rescheduled one interval after `completed_at`, never earlier."""
        candidate = completed_at + timedelta(seconds=self.interval_seconds)
        return replace(self, next_run_at=max(candidate, self.next_run_at))


@dataclass(frozen=True)
class ScheduleBook:
    """The schedule list owned by one orchestrator, replaced wholesale on refresh."""

    schedules: tuple[CollectionSchedule, ...] = ()
    generated_at: datetime | None = None

    def is_stale(self, now: datetime, max_age_seconds: float) -> bool:
        if self.generated_at is None:
            return True
        return (now - self.generated_at).total_seconds() > max_age_seconds

    def with_executed(self, updated: CollectionSchedule) -> "ScheduleBook":
        """Copy with `updated.next_run_at` applied to the schedule sharing its key.

        Asset membership is left as the book has it, including any refresh
        that landed while the schedule was executing.
        """
        return replace(
            self,
            schedules=tuple(
                replace(s, next_run_at=updated.next_run_at)
                if s.key == updated.key
                else s
                for s in self.schedules
            ),
        )


@dataclass
class CollectionJob:
    """One asset's unit of work within a batch."""

    id: str
    tier: int
    timeframe: str
    asset_id: str
    scheduled_at: datetime
    status: JobStatus = JobStatus.PENDING
    retry_count: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    records_collected: int = 0
    error_message: str | None = None
    error_code: str | None = None
    execution_time_ms: float | None = None

    def transition(self, new_status: JobStatus) -> None:
        """Move to `new_status`, rejecting edges outside the job lifecycle."""
        if new_status not in _JOB_TRANSITIONS[self.status]:
            raise ValueError(
                f"Illegal job transition {self.status.value} -> {new_status.value} "
                f"for {self.id}"
            )
        self.status = new_status


@dataclass
class CollectionBatch:
    """All jobs of one schedule execution plus the aggregate outcome."""

    id: str
    tier: int
    timeframe: str
    asset_ids: tuple[str, ...]
    started_at: datetime
    jobs: list[CollectionJob] = field(default_factory=list)
    status: BatchStatus = BatchStatus.RUNNING
    total_records: int = 0
    success_count: int = 0
    failure_count: int = 0
    completed_at: datetime | None = None

    @property
    def duration_ms(self) -> float | None:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds() * 1000

    def finalize(self, completed_at: datetime) -> None:
        """Aggregate job outcomes.

        Completed iff at least one job completed; a batch with no jobs has
        nothing that failed and is also completed.
        """
        self.completed_at = completed_at
        self.success_count = sum(
            1 for job in self.jobs if job.status is JobStatus.COMPLETED
        )
        self.failure_count = sum(1 for job in self.jobs if job.status is JobStatus.FAILED)
        self.total_records = sum(job.records_collected for job in self.jobs)
        self.status = (
            BatchStatus.COMPLETED
            if self.success_count > 0 or not self.jobs
            else BatchStatus.FAILED
        )

    def summary(self) -> dict[str, Any]:
        return {
            "batch_id": self.id,
            "tier": self.tier,
            "timeframe": self.timeframe,
            "status": self.status.value,
            "jobs": len(self.jobs),
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "total_records": self.total_records,
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class TierStatistics:
    tier: int
    asset_count: int
    average_activity_score: float


@dataclass
class TierBreakdown:
    jobs: int = 0
    records: int = 0
    success_rate: float = 0.0
    avg_execution_time_ms: float = 0.0


@dataclass
class CollectionMetrics:
    """Aggregate of recently finished batches."""

    total_batches: int = 0
    total_jobs: int = 0
    completed_jobs: int = 0
    failed_jobs: int = 0
    total_records: int = 0
    average_execution_time_ms: float = 0.0
    success_rate: float = 0.0
    tier_breakdown: dict[int, TierBreakdown] = field(default_factory=dict)
