"""Mostaql Hub — Resilience Utilities.

Circuit breaker for repeatedly failing sources and sinks, and the
exponential backoff schedule used by the hub client's reconnect loop.

Circuit Breaker states:
  CLOSED    → normal operation, calls flow through
  OPEN      → too many consecutive failures, calls blocked for a cooldown
  HALF_OPEN → cooldown expired, the next call is a trial

Usage:
    cb = CircuitBreaker("category:development", failure_threshold=3)
    listings = await cb.call(fetch_list_page, url)

    backoff = ExponentialBackoff(base_delay=1.0, max_delay=60.0, max_attempts=10)
    delay = backoff.next_delay()   # None once attempts are exhausted
"""

from __future__ import annotations

import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from mostaql_hub.errors import CircuitOpenError
from mostaql_hub.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class CircuitBreaker:
    """Blocks calls to a failing dependency for a cooldown period.

    Attributes:
        name: Dependency name used in logs and errors.
        failure_threshold: Consecutive failures before opening.
        cooldown_seconds: How long the circuit stays open.
    """

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        cooldown_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._state = self.CLOSED
        self._failure_count = 0
        self._opened_at = 0.0
        self._total_trips = 0
        self._alerted = False

    @property
    def state(self) -> str:
        """Current state, accounting for cooldown expiry."""
        if self._state == self.OPEN and self.remaining_cooldown == 0:
            return self.HALF_OPEN
        return self._state

    @property
    def is_open(self) -> bool:
        return self.state == self.OPEN

    @property
    def remaining_cooldown(self) -> float:
        if self._state != self.OPEN:
            return 0.0
        return max(0.0, self.cooldown_seconds - (self._clock() - self._opened_at))

    @property
    def total_trips(self) -> int:
        return self._total_trips

    @property
    def has_alerted(self) -> bool:
        """Whether an alert has been sent for the current open period."""
        return self._alerted

    def mark_alerted(self) -> None:
        self._alerted = True

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run func through the breaker.

        Raises:
            CircuitOpenError: If the circuit is OPEN.
            Exception: Whatever func raised (after recording the failure).
        """
        state = self.state
        if state == self.OPEN:
            raise CircuitOpenError(self.name, self.remaining_cooldown)

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            self.record_failure(e, trial=state == self.HALF_OPEN)
            raise
        self.record_success()
        return result

    def record_success(self) -> None:
        if self._state != self.CLOSED:
            logger.info("Circuit '%s': → CLOSED (call succeeded)", self.name)
        self._state = self.CLOSED
        self._failure_count = 0
        self._alerted = False

    def record_failure(self, error: Exception, trial: bool = False) -> None:
        self._failure_count += 1
        if trial or self._failure_count >= self.failure_threshold:
            self._state = self.OPEN
            self._opened_at = self._clock()
            self._total_trips += 1
            self._alerted = False
            logger.warning(
                "Circuit '%s': → OPEN (trip #%d after %d failure(s), cooldown %.0fs): %s",
                self.name, self._total_trips, self._failure_count,
                self.cooldown_seconds, str(error)[:200],
            )
        else:
            logger.debug(
                "Circuit '%s': failure %d/%d: %s",
                self.name, self._failure_count, self.failure_threshold,
                type(error).__name__,
            )

    def reset(self) -> None:
        """Force the circuit back to CLOSED."""
        self._state = self.CLOSED
        self._failure_count = 0
        self._alerted = False
        logger.info("Circuit '%s': manually reset to CLOSED", self.name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state,
            "failure_count": self._failure_count,
            "total_trips": self._total_trips,
            "remaining_cooldown": round(self.remaining_cooldown, 1),
        }


class ExponentialBackoff:
    """Reconnect delay schedule: immediate first retry, then doubling.

    Delays for base_delay=1, max_delay=60: 0, 1, 2, 4, 8, 16, 32, 60, 60, ...

    Attributes:
        base_delay: Delay before the second attempt, in seconds.
        max_delay: Ceiling for any single delay.
        max_attempts: Attempts allowed before giving up.
    """

    def __init__(self, base_delay: float = 1.0, max_delay: float = 60.0, max_attempts: int = 10) -> None:
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self.attempts = 0

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def delay_for(self, attempt: int) -> float:
        """Delay before the given 1-based attempt."""
        if attempt <= 1:
            return 0.0
        return min(self.base_delay * (2 ** (attempt - 2)), self.max_delay)

    def next_delay(self) -> Optional[float]:
        """Consume one attempt and return its delay, or None when exhausted."""
        if self.exhausted:
            return None
        self.attempts += 1
        return self.delay_for(self.attempts)

    def reset(self) -> None:
        self.attempts = 0
