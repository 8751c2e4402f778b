"""
Collection Orchestrator

Periodic cooperative scheduler that executes due collection schedules under a
global in-flight job budget. Each schedule becomes one batch of per-asset jobs
executed in small concurrent sub-batches; every job goes through the retry
policy and the upstream circuit breaker and always ends completed or failed.
"""

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from tiered_collector.common.timeutils import ensure_utc, utc_now
from tiered_collector.config.value_objects import OrchestratorConfig
from tiered_collector.infrastructure.observability import get_scheduling_logger
from tiered_collector.infrastructure.observability.metrics import (
    BATCH_DURATION,
    COLLECTION_BATCHES,
    COLLECTION_JOBS,
    COLLECTION_RECORDS,
    IN_FLIGHT_JOBS,
    SCHEDULES_DEFERRED,
)
from tiered_collector.resilience.circuit_breaker import CircuitBreaker
from tiered_collector.resilience.exceptions import (
    CollectionTimeoutError,
    ErrorCategorizer,
    NetworkError,
)
from tiered_collector.resilience.retry import RetryPolicy
from tiered_collector.scheduling.models import (
    CollectionBatch,
    CollectionJob,
    CollectionMetrics,
    CollectionSchedule,
    JobStatus,
    ScheduleBook,
    TierBreakdown,
)
from tiered_collector.scheduling.ports import IBatchListener, ICollector, ITierStore
from tiered_collector.scheduling.tier_manager import TierManager

logger = get_scheduling_logger("orchestrator")


class InFlightBudget:
    """Bounded counting resource for concurrently running jobs.

    Acquisition never blocks: a caller that does not fit is expected to defer
    its work to the next tick instead of queueing.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._in_use = 0

    @property
    def in_use(self) -> int:
        return self._in_use

    @property
    def available(self) -> int:
        return self.capacity - self._in_use

    def try_acquire(self, slots: int) -> bool:
        if slots > self.available:
            return False
        self._in_use += slots
        IN_FLIGHT_JOBS.set(self._in_use)
        return True

    def release(self, slots: int) -> None:
        self._in_use = max(self._in_use - slots, 0)
        IN_FLIGHT_JOBS.set(self._in_use)


@dataclass
class TickReport:
    """What one pass of the loop did."""

    at: datetime
    refreshed: bool = False
    due: int = 0
    started: list[tuple[int, str]] = field(default_factory=list)
    deferred: list[tuple[int, str]] = field(default_factory=list)
    still_running: list[tuple[int, str]] = field(default_factory=list)
    batches: list[CollectionBatch] = field(default_factory=list)


def refresh_book(
    old: ScheduleBook, fresh: Sequence[CollectionSchedule], now: datetime
) -> ScheduleBook:
    """
    Replace the schedule list wholesale with `fresh`.

    Schedules that already existed keep their pending next_run_at so a
    refresh never postpones work that was already counting down; new
    (tier, timeframe) pairs use the due time they were generated with.
    """
    previous = {s.key: s.next_run_at for s in old.schedules}
    merged = []
    for schedule in fresh:
        if schedule.key in previous:
            schedule = CollectionSchedule(
                tier=schedule.tier,
                timeframe=schedule.timeframe,
                asset_ids=schedule.asset_ids,
                next_run_at=previous[schedule.key],
                interval_seconds=schedule.interval_seconds,
            )
        merged.append(schedule)
    return ScheduleBook(schedules=tuple(merged), generated_at=now)


class CollectionOrchestrator:
    """
    Drives tiered collection.

    Args:
        tier_manager: Schedule source and tier table owner
        collector: Upstream fetch-and-persist capability
        store: Used for the post-collection row count
        config: Loop, budget and batching settings
        retry_policy: Per-job retry policy
        circuit_breaker: Shared breaker guarding the collector
        listeners: Notified after each finished batch (feature stage, etc.)
        clock: Current UTC time
        sleep: Used for inter-sub-batch delays
    """

    def __init__(
        self,
        tier_manager: TierManager,
        collector: ICollector,
        store: ITierStore,
        config: OrchestratorConfig | None = None,
        retry_policy: RetryPolicy | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        listeners: Sequence[IBatchListener] = (),
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._tier_manager = tier_manager
        self._collector = collector
        self._store = store
        self._config = config or OrchestratorConfig()
        self._retry_policy = retry_policy or RetryPolicy()
        self._circuit_breaker = circuit_breaker or CircuitBreaker()
        self._listeners = list(listeners)
        self._clock = clock
        self._sleep = sleep

        self._book = ScheduleBook()
        self._budget = InFlightBudget(self._config.max_in_flight_jobs)
        self._executing: set[tuple[int, str]] = set()
        self._history: deque[CollectionBatch] = deque(
            maxlen=self._config.batch_history_size
        )
        self._started = False
        self._stop_event = asyncio.Event()

    @property
    def book(self) -> ScheduleBook:
        return self._book

    @property
    def schedules(self) -> tuple[CollectionSchedule, ...]:
        return self._book.schedules

    @property
    def budget(self) -> InFlightBudget:
        return self._budget

    @property
    def recent_batches(self) -> list[CollectionBatch]:
        return list(self._history)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """
        Validate the tier table and load the first schedules.

        Raises:
            ConfigurationError: Invalid tier table (fatal)
        """
        logger.info("orchestrator_starting")
        self._tier_manager.ensure_integrity()
        self._book = await self._refresh(self._book, self._clock())
        self._started = True
        logger.info("orchestrator_started", schedules=len(self._book.schedules))

    async def run_forever(self) -> None:
        """Tick until stop() is called."""
        if not self._started:
            await self.start()

        self._stop_event.clear()
        while not self._stop_event.is_set():
            try:
                await self.tick()
            except Exception:
                logger.exception("tick_failed")

            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=self._config.tick_interval_seconds,
                )
            except asyncio.TimeoutError:
                pass

        logger.info("orchestrator_stopped")

    def stop(self) -> None:
        self._stop_event.set()

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def _refresh(self, book: ScheduleBook, now: datetime) -> ScheduleBook:
        try:
            fresh = await self._tier_manager.generate_schedules(now)
        except Exception as e:
            # Keep the previous book; the next tick retries.
            logger.error(
                "schedule_refresh_failed",
                error=str(e),
                error_code=getattr(e, "code", None),
                kept_schedules=len(book.schedules),
            )
            return book

        new_book = refresh_book(book, fresh, now)
        per_tier: dict[int, int] = {}
        for schedule in new_book.schedules:
            per_tier[schedule.tier] = per_tier.get(schedule.tier, 0) + 1
        logger.info(
            "schedules_refreshed",
            schedules=len(new_book.schedules),
            per_tier=per_tier,
        )
        return new_book

    async def tick(self, now: datetime | None = None) -> TickReport:
        """
        One pass of the loop: refresh if stale, then run due schedules in
        (priority, due time) order until the in-flight budget is exhausted.
        """
        now = ensure_utc(now) if now else self._clock()
        report = TickReport(at=now)

        if self._book.is_stale(now, self._config.schedule_refresh_seconds):
            previous = self._book
            self._book = await self._refresh(previous, now)
            report.refreshed = self._book is not previous

        due = self._tier_manager.order_by_urgency(
            self._tier_manager.filter_due(self._book.schedules, now)
        )
        report.due = len(due)
        if not due:
            return report

        admitted: list[tuple[CollectionSchedule, int]] = []
        for index, schedule in enumerate(due):
            if schedule.key in self._executing:
                report.still_running.append(schedule.key)
                continue

            width = max(min(self._config.sub_batch_size, len(schedule.asset_ids)), 1)
            if not self._budget.try_acquire(width):
                report.deferred = [
                    s.key for s in due[index:] if s.key not in self._executing
                ]
                SCHEDULES_DEFERRED.inc(len(report.deferred))
                logger.info(
                    "schedules_deferred",
                    deferred=len(report.deferred),
                    in_flight=self._budget.in_use,
                    capacity=self._budget.capacity,
                )
                break

            self._executing.add(schedule.key)
            admitted.append((schedule, width))
            report.started.append(schedule.key)

        logger.info(
            "tick_dispatch",
            due=report.due,
            started=len(report.started),
            deferred=len(report.deferred),
        )

        results = await asyncio.gather(
            *(self._run_admitted(schedule, width) for schedule, width in admitted)
        )
        report.batches = [batch for batch in results if batch is not None]
        return report

    async def _run_admitted(
        self, schedule: CollectionSchedule, width: int
    ) -> CollectionBatch | None:
        try:
            batch = await self.execute_schedule(schedule)
        except Exception:
            logger.exception(
                "schedule_execution_failed",
                tier=schedule.tier,
                timeframe=schedule.timeframe,
            )
            return None
        finally:
            self._budget.release(width)
            self._executing.discard(schedule.key)

        updated = self._tier_manager.update_after_execution(schedule, self._clock())
        self._book = self._book.with_executed(updated)
        return batch

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_schedule(self, schedule: CollectionSchedule) -> CollectionBatch:
        """Run one job per asset in fixed-size concurrent sub-batches."""
        tier_config = self._tier_manager.get_tier_config(schedule.tier)
        lookback_days = (
            tier_config.retention_days
            if tier_config
            else self._config.default_lookback_days
        )

        started_at = self._clock()
        stamp = int(started_at.timestamp() * 1000)
        batch = CollectionBatch(
            id=f"batch_t{schedule.tier}_{schedule.timeframe}_{stamp}",
            tier=schedule.tier,
            timeframe=schedule.timeframe,
            asset_ids=schedule.asset_ids,
            started_at=started_at,
        )
        batch.jobs = [
            CollectionJob(
                id=f"job_t{schedule.tier}_{schedule.timeframe}_{asset_id[:8]}_{stamp}_{index}",
                tier=schedule.tier,
                timeframe=schedule.timeframe,
                asset_id=asset_id,
                scheduled_at=started_at,
            )
            for index, asset_id in enumerate(schedule.asset_ids)
        ]

        log = logger.bind(
            batch_id=batch.id, tier=schedule.tier, timeframe=schedule.timeframe
        )
        log.info("batch_started", assets=len(batch.jobs))

        size = self._config.sub_batch_size
        for offset in range(0, len(batch.jobs), size):
            chunk = batch.jobs[offset : offset + size]
            await asyncio.gather(*(self.execute_job(job, lookback_days) for job in chunk))
            if offset + size < len(batch.jobs):
                await self._sleep(self._config.inter_batch_delay_seconds)

        batch.finalize(self._clock())
        self._record_batch(batch)
        log.info("batch_completed", **batch.summary())

        await self._notify_listeners(batch)
        return batch

    async def execute_job(self, job: CollectionJob, lookback_days: int) -> CollectionJob:
        """
        Collect one asset through the retry policy and circuit breaker.

        Never raises for collection failures: the job ends COMPLETED or FAILED.
        """
        log = logger.bind(job_id=job.id, asset_id=job.asset_id, timeframe=job.timeframe)
        job.started_at = self._clock()
        started = time.monotonic()

        async def attempt() -> bool:
            job.transition(JobStatus.RUNNING)
            return await self._circuit_breaker.execute(
                lambda: self._collect_once(job, lookback_days)
            )

        def on_retry(error: BaseException, attempt_number: int, delay: float) -> None:
            job.retry_count = attempt_number
            job.error_message = str(error)
            job.transition(JobStatus.RETRYING)

        result = await self._retry_policy.execute_with_result(
            attempt,
            on_retry=on_retry,
            context={"job_id": job.id, "asset_id": job.asset_id},
        )
        job.execution_time_ms = (time.monotonic() - started) * 1000

        if result.success:
            job.records_collected = await self._count_records(job)
            job.error_message = None
            job.transition(JobStatus.COMPLETED)
            log.debug(
                "job_completed",
                records=job.records_collected,
                attempts=result.attempts,
            )
        else:
            error = result.error
            classified = ErrorCategorizer.from_unknown(error)
            job.retry_count = result.attempts - 1
            job.error_message = str(error) or type(error).__name__
            job.error_code = classified.code
            job.transition(JobStatus.FAILED)
            log.warning(
                "job_failed",
                error=job.error_message,
                error_code=job.error_code,
                attempts=result.attempts,
            )

        job.completed_at = self._clock()
        COLLECTION_JOBS.labels(
            tier=str(job.tier), timeframe=job.timeframe, status=job.status.value
        ).inc()
        return job

    async def _collect_once(self, job: CollectionJob, lookback_days: int) -> bool:
        timeout = self._config.job_timeout_seconds
        context = {"asset_id": job.asset_id, "timeframe": job.timeframe}
        try:
            ok = await asyncio.wait_for(
                self._collector.collect(job.asset_id, job.timeframe, lookback_days),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise CollectionTimeoutError(
                f"Collection of {job.asset_id}/{job.timeframe} timed out after {timeout}s",
                timeout_seconds=timeout,
                context=context,
                cause=e,
            ) from e

        if not ok:
            raise NetworkError(
                f"Upstream reported failure collecting {job.asset_id}/{job.timeframe}",
                context=context,
            )
        return ok

    async def _count_records(self, job: CollectionJob) -> int:
        # Approximation: the collector does a bulk write and returns no count.
        since = job.started_at - timedelta(seconds=self._config.count_lookback_seconds)
        try:
            return await self._store.count_rows_since(job.asset_id, job.timeframe, since)
        except Exception as e:
            logger.warning(
                "record_count_failed",
                job_id=job.id,
                error=str(e),
                error_code=getattr(e, "code", None),
            )
            return 0

    async def _notify_listeners(self, batch: CollectionBatch) -> None:
        for listener in self._listeners:
            try:
                await listener.on_batch_completed(batch)
            except Exception:
                logger.exception(
                    "batch_listener_failed",
                    batch_id=batch.id,
                    listener=type(listener).__name__,
                )

    def _record_batch(self, batch: CollectionBatch) -> None:
        self._history.append(batch)
        labels = {"tier": str(batch.tier), "timeframe": batch.timeframe}
        COLLECTION_BATCHES.labels(status=batch.status.value, **labels).inc()
        COLLECTION_RECORDS.labels(**labels).inc(batch.total_records)
        if batch.duration_ms is not None:
            BATCH_DURATION.labels(**labels).observe(batch.duration_ms / 1000)

    # ------------------------------------------------------------------
    # Administrative / observability
    # ------------------------------------------------------------------

    async def execute_immediately(
        self, tier: int, timeframe: str | None = None
    ) -> list[CollectionBatch]:
        """
        Run a tier now, ignoring next_run_at. One batch per timeframe.

        Raises:
            ValueError: Unknown tier
        """
        tier_config = self._tier_manager.get_tier_config(tier)
        if tier_config is None:
            raise ValueError(f"Invalid tier: {tier}")

        timeframes = [timeframe] if timeframe else list(tier_config.timeframes)
        assets = await self._tier_manager.get_assets_by_tier(tier)
        asset_ids = tuple(a.asset_id for a in assets)

        logger.info(
            "immediate_execution_requested",
            tier=tier,
            timeframes=timeframes,
            assets=len(asset_ids),
        )

        batches = []
        for tf in timeframes:
            schedule = CollectionSchedule(
                tier=tier,
                timeframe=tf,
                asset_ids=asset_ids,
                next_run_at=self._clock(),
                interval_seconds=tier_config.update_interval_seconds,
            )
            batches.append(await self.execute_schedule(schedule))
        return batches

    def get_collection_metrics(self, since: datetime | None = None) -> CollectionMetrics:
        """Aggregate the retained batch history, optionally from `since` onward."""
        batches = [b for b in self._history if since is None or b.started_at >= since]
        metrics = CollectionMetrics(total_batches=len(batches))

        per_tier: dict[int, list[CollectionJob]] = {}
        for batch in batches:
            metrics.total_records += batch.total_records
            per_tier.setdefault(batch.tier, []).extend(batch.jobs)

        all_jobs = [job for jobs in per_tier.values() for job in jobs]
        metrics.total_jobs = len(all_jobs)
        metrics.completed_jobs = sum(1 for j in all_jobs if j.status is JobStatus.COMPLETED)
        metrics.failed_jobs = sum(1 for j in all_jobs if j.status is JobStatus.FAILED)
        metrics.success_rate = _rate(metrics.completed_jobs, metrics.total_jobs)
        metrics.average_execution_time_ms = _mean_execution_ms(all_jobs)

        for tier, jobs in sorted(per_tier.items()):
            completed = sum(1 for j in jobs if j.status is JobStatus.COMPLETED)
            metrics.tier_breakdown[tier] = TierBreakdown(
                jobs=len(jobs),
                records=sum(j.records_collected for j in jobs),
                success_rate=_rate(completed, len(jobs)),
                avg_execution_time_ms=_mean_execution_ms(jobs),
            )
        return metrics


def _rate(part: int, whole: int) -> float:
    return round(part / whole, 4) if whole else 0.0


def _mean_execution_ms(jobs: Sequence[CollectionJob]) -> float:
    times = [j.execution_time_ms for j in jobs if j.execution_time_ms is not None]
    return round(sum(times) / len(times), 2) if times else 0.0


__all__ = [
    "CollectionOrchestrator",
    "InFlightBudget",
    "TickReport",
    "refresh_book",
]
