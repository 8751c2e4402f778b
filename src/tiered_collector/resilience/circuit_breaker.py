"""
Three-state circuit breaker guarding the upstream collection capability.

CLOSED    - calls pass through; consecutive failures are counted
OPEN      - calls fail fast with CircuitOpenError until recovery_timeout elapses
HALF_OPEN - a single trial call decides between CLOSED and OPEN
"""

import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TypeVar

from tiered_collector.infrastructure.observability import get_resilience_logger
from tiered_collector.infrastructure.observability.metrics import CIRCUIT_STATE
from tiered_collector.resilience.exceptions import CircuitOpenError

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    HALF_OPEN = "half_open"
    OPEN = "open"


_STATE_GAUGE_VALUE = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


class CircuitBreaker:
    """
    Stops invoking a repeatedly-failing dependency for a cool-down period.

    Args:
        failure_threshold: Consecutive failures that open the circuit
        recovery_timeout: Seconds to stay OPEN before allowing a trial call
        monitoring_window: Seconds from the first failure of a run; failures
            after it start a new count
        name: Label used in logs and metrics
        clock: Monotonic time source in seconds
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        monitoring_window: float = 60.0,
        name: str = "upstream",
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.monitoring_window = monitoring_window
        self.name = name
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_failure_time: float | None = None
        self._window_start: float | None = None
        self._trial_in_flight = False

        self._log = get_resilience_logger("circuit-breaker", breaker=name)
        CIRCUIT_STATE.labels(name=name).set(_STATE_GAUGE_VALUE[self._state])

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failures(self) -> int:
        return self._failures

    def _transition(self, new_state: CircuitState) -> None:
        if new_state is self._state:
            return
        self._log.info(
            "circuit_state_changed",
            from_state=self._state.value,
            to_state=new_state.value,
            failures=self._failures,
        )
        self._state = new_state
        CIRCUIT_STATE.labels(name=self.name).set(_STATE_GAUGE_VALUE[new_state])

    def _before_call(self) -> None:
        if self._state is CircuitState.OPEN:
            elapsed = self._clock() - (self._last_failure_time or 0.0)
            if elapsed < self.recovery_timeout:
                raise CircuitOpenError(self.name, self.recovery_timeout - elapsed)
            self._transition(CircuitState.HALF_OPEN)

        if self._state is CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                raise CircuitOpenError(self.name, 0.0)
            self._trial_in_flight = True

    def _on_success(self) -> None:
        self._failures = 0
        self._window_start = None
        self._transition(CircuitState.CLOSED)

    def _on_failure(self) -> None:
        now = self._clock()
        if self._state is CircuitState.CLOSED and (
            self._window_start is None
            or now - self._window_start > self.monitoring_window
        ):
            self._failures = 0
            self._window_start = now

        self._failures += 1
        self._last_failure_time = now

        if self._state is CircuitState.HALF_OPEN or (
            self._failures >= self.failure_threshold
        ):
            if self._state is not CircuitState.OPEN:
                self._log.warning(
                    "circuit_opened",
                    failures=self._failures,
                    recovery_timeout=self.recovery_timeout,
                )
            self._transition(CircuitState.OPEN)

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Invoke `operation` through the breaker.

        Raises:
            CircuitOpenError: Circuit is open; operation was not invoked
            Exception: Whatever the operation raised (recorded as a failure)
        """
        self._before_call()
        trial = self._state is CircuitState.HALF_OPEN
        try:
            result = await operation()
        except Exception:
            self._on_failure()
            raise
        else:
            self._on_success()
            return result
        finally:
            if trial:
                self._trial_in_flight = False

    def reset(self) -> None:
        """Force the breaker back to CLOSED."""
        self._failures = 0
        self._last_failure_time = None
        self._window_start = None
        self._trial_in_flight = False
        self._transition(CircuitState.CLOSED)
