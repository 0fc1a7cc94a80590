"""Sliding-window rate limiter for provider requests."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable

__all__ = ["RateLimiter"]

LOGGER = logging.getLogger(__name__)


class RateLimiter:
    """Allow at most ``max_requests`` within any ``window_seconds`` interval."""

    def __init__(
        self,
        max_requests: int = 30,
        window_seconds: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self._max_requests = int(max_requests)
        self._window = max(0.0, float(window_seconds))
        self._clock = clock
        self._sleep = sleep
        self._timestamps: deque[float] = deque()
        self._lock = asyncio.Lock()

    @property
    def max_requests(self) -> int:
        return self._max_requests

    @property
    def window_seconds(self) -> float:
        return self._window

    def can_make_request(self) -> bool:
        self._prune(self._clock())
        return len(self._timestamps) < self._max_requests

    def record_request(self) -> None:
        now = self._clock()
        self._prune(now)
        self._timestamps.append(now)

    def wait_time(self) -> float:
        """Seconds until another request fits in the window."""

        now = self._clock()
        self._prune(now)
        if len(self._timestamps) < self._max_requests:
            return 0.0
        return max(0.0, self._timestamps[0] + self._window - now)

    async def acquire(self) -> None:
        """Wait for a free slot, then record the request."""

        async with self._lock:
            while True:
                delay = self.wait_time()
                if delay <= 0:
                    break
                LOGGER.debug("Rate limit reached; waiting %.2fs", delay)
                await self._sleep(delay)
            self.record_request()

    def reset(self) -> None:
        self._timestamps.clear()

    def _prune(self, now: float) -> None:
        cutoff = now - self._window
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()
