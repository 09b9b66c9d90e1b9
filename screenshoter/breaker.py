import time
from dataclasses import dataclass
from typing import Callable

from common.logger import get_logger


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


@dataclass
class CircuitBreakerState:
    """Failure bookkeeping of a single job run. Never shared between jobs."""

    failure_threshold: int = 5
    reset_timeout_ms: int = 60_000
    is_open: bool = False
    consecutive_failures: int = 0
    last_failure_at: float = 0.0


class CircuitBreaker:
    """Trips after more than ``failure_threshold`` failures in a row.

    There is no background timer: the open state is re-evaluated every time
    ``should_block`` is called, and closes once ``reset_timeout_ms`` has passed
    since the failure that tripped it.
    """

    def __init__(
            self,
            state: CircuitBreakerState,
            clock: Callable[[], float] = _monotonic_ms,
    ) -> None:
        self._logger = get_logger(__name__)
        self._state = state
        self._clock = clock

    @property
    def state(self) -> CircuitBreakerState:
        return self._state

    def observe(self, success: bool) -> None:
        state = self._state

        if success:
            # Only elapsed time closes an open breaker.
            state.consecutive_failures = 0
            return

        state.consecutive_failures += 1
        if state.consecutive_failures > state.failure_threshold:
            state.is_open = True
            state.last_failure_at = self._clock()
            self._logger.error(
                "Circuit breaker triggered after %d consecutive failures",
                state.consecutive_failures,
            )

    def should_block(self) -> bool:
        state = self._state
        if not state.is_open:
            return False

        if self._clock() - state.last_failure_at >= state.reset_timeout_ms:
            state.is_open = False
            state.consecutive_failures = 0
            self._logger.info("Circuit breaker closed after cooldown")
            return False

        return True
