"""Sliding-window rate limiter for carrier calls.

The window of request timestamps is process-local. Several processes each
enforce their own window, which makes the combined limit more permissive;
that is acceptable for carrier quotas.
"""

import asyncio
import bisect
import threading
import time
from collections.abc import Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)


class RateLimiter:
    """Allow at most ``max_requests`` calls per ``window_seconds``."""

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.sleep = sleep
        self.clock = clock
        self._slots: list[float] = []
        self._lock = threading.Lock()

    def _reserve(self) -> float:
        """Claim the next free slot and return how long to wait for it."""
        with self._lock:
            now = self.clock()
            cutoff = now - self.window_seconds
            while self._slots and self._slots[0] <= cutoff:
                self._slots.pop(0)

            if len(self._slots) < self.max_requests:
                bisect.insort(self._slots, now)
                return 0.0

            # The oldest slot leaves the window at oldest + window.
            start = self._slots.pop(0) + self.window_seconds
            bisect.insort(self._slots, start)
            return max(start - now, 0.0)

    async def acquire(self) -> None:
        delay = self._reserve()
        if delay > 0:
            logger.info("Rate limit reached, waiting", delay_seconds=round(delay, 3))
            await self.sleep(delay)

    @property
    def in_window(self) -> int:
        with self._lock:
            cutoff = self.clock() - self.window_seconds
            return sum(1 for slot in self._slots if slot > cutoff)
