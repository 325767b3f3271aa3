"""Mostaql Hub — Async Rate Limiter.

Sliding-window limiter that spaces out requests to mostaql.com. Only
calls that actually proceed are recorded in the window. A waiter sleeps
without holding a slot and re-checks the window when it wakes, so a
fetch that times out or is cancelled while queued leaves nothing behind
for later callers to wait on.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque

from mostaql_hub.utils.logger import get_logger

logger = get_logger(__name__)


class AsyncRateLimiter:
    """Allow at most max_calls within any period_seconds window.

    Attributes:
        max_calls: Calls allowed per window.
        period: Window length in seconds.
    """

    def __init__(self, max_calls: int, period_seconds: float) -> None:
        if max_calls < 1:
            raise ValueError("max_calls must be >= 1")
        self.max_calls = max_calls
        self.period = max(0.0, period_seconds)
        self._calls: deque[float] = deque()
        self._lock = asyncio.Lock()

    async def acquire(self) -> float:
        """Wait until a call is allowed and record it.

        Returns:
            Seconds spent waiting.
        """
        if self.period == 0:
            return 0.0

        waited = 0.0
        while True:
            async with self._lock:
                now = time.monotonic()
                while self._calls and self._calls[0] <= now - self.period:
                    self._calls.popleft()

                if len(self._calls) < self.max_calls:
                    self._calls.append(now)
                    return waited

                # The oldest call in the window decides when the next one opens
                wait = self._calls[0] + self.period - now

            logger.debug("Rate limit reached, waiting %.2fs", wait)
            await asyncio.sleep(wait)
            waited += wait

    @property
    def pending_calls(self) -> int:
        """Calls currently inside the window."""
        return len(self._calls)

    async def __aenter__(self) -> "AsyncRateLimiter":
        await self.acquire()
        return self

    async def __aexit__(self, *args: object) -> None:
        pass

    def __repr__(self) -> str:
        return f"AsyncRateLimiter(max_calls={self.max_calls}, period={self.period}s)"
