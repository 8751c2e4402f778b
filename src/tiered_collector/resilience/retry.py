"""
Retry policy with jittered exponential backoff.

Distinguishes retryable errors (connection, query, network, timeout, rate
limit) from permanent ones, which fail immediately without any backoff.
Rate-limit errors carrying a retry-after hint wait exactly that long.
"""

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from tiered_collector.config.value_objects import RetryConfig
from tiered_collector.infrastructure.observability import get_resilience_logger
from tiered_collector.resilience.exceptions import (
    CollectionError,
    ErrorCategorizer,
    RateLimitError,
)

T = TypeVar("T")

logger = get_resilience_logger("retry-policy")

JITTER_RATIO = 0.1


@dataclass
class RetryResult(Generic[T]):
    """Outcome of a retried operation."""

    success: bool
    attempts: int
    total_time: float
    data: T | None = None
    error: BaseException | None = None
    delays: list[float] = field(default_factory=list)


RetryCallback = Callable[[BaseException, int, float], None]


class RetryPolicy:
    """Bounded retries with jittered exponential backoff."""

    def __init__(
        self,
        config: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        self.config = config or RetryConfig()
        self._sleep = sleep
        self._rng = rng or random.Random()

    def _jitter_ratio(self) -> float:
        # Half the widest band that keeps consecutive attempts from overlapping
        m = self.config.backoff_multiplier
        return min(JITTER_RATIO, (m - 1) / (m + 1))

    def calculate_delay(self, attempt: int) -> float:
        """
        Delay before the retry that follows `attempt` (1-indexed).

        base * multiplier^(attempt-1), perturbed by symmetric jitter of at most
        JITTER_RATIO, then capped at max_delay. Never decreases as `attempt`
        grows; once the cap is reached every later attempt waits max_delay.
        """
        cfg = self.config
        exponent = max(attempt - 1, 0)
        try:
            raw = cfg.base_delay * (cfg.backoff_multiplier**exponent)
        except OverflowError:
            return cfg.max_delay

        if cfg.jitter and raw > 0:
            raw *= 1 + (self._rng.random() - 0.5) * self._jitter_ratio()

        return max(min(raw, cfg.max_delay), 0.0)

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        """False once attempts are exhausted or the error is permanent."""
        if attempt >= self.config.max_attempts:
            return False

        if isinstance(error, CollectionError):
            return error.retryable and error.code in self.config.retryable_error_codes

        return ErrorCategorizer.is_retryable(error)

    def _delay_for(self, error: BaseException, attempt: int) -> float:
        if isinstance(error, RateLimitError) and error.retry_after:
            return float(error.retry_after)
        return self.calculate_delay(attempt)

    async def execute_with_result(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        on_retry: RetryCallback | None = None,
        context: dict[str, Any] | None = None,
    ) -> RetryResult[T]:
        """
        Run `operation` until it succeeds or the policy gives up.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt
            on_retry: Called with (error, attempt, delay) before each backoff wait
            context: Extra fields bound to retry log events

        Returns:
            RetryResult; never raises for operation failures
        """
        context = context or {}
        start = time.monotonic()
        delays: list[float] = []
        attempt = 0

        while True:
            attempt += 1
            try:
                data = await operation()
                return RetryResult(
                    success=True,
                    attempts=attempt,
                    total_time=time.monotonic() - start,
                    data=data,
                    delays=delays,
                )
            except Exception as e:
                if not self.should_retry(e, attempt):
                    if attempt < self.config.max_attempts:
                        logger.debug(
                            "retry_skipped_permanent_error",
                            attempt=attempt,
                            error=str(e),
                            error_type=type(e).__name__,
                            **context,
                        )
                    return RetryResult(
                        success=False,
                        attempts=attempt,
                        total_time=time.monotonic() - start,
                        error=e,
                        delays=delays,
                    )

                delay = self._delay_for(e, attempt)
                delays.append(delay)
                logger.info(
                    "retry_scheduled",
                    attempt=attempt,
                    max_attempts=self.config.max_attempts,
                    delay_seconds=round(delay, 3),
                    error=str(e),
                    **context,
                )
                if on_retry is not None:
                    on_retry(e, attempt, delay)
                await self._sleep(delay)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        on_retry: RetryCallback | None = None,
        context: dict[str, Any] | None = None,
    ) -> T:
        """Like execute_with_result, but re-raises the last error on failure."""
        result = await self.execute_with_result(
            operation, on_retry=on_retry, context=context
        )
        if not result.success:
            raise result.error
        return result.data
