"""
Shared request rate limiter.

Every worker passes through one gate before issuing a fetch. The gate
holds the time of the last request and sleeps long enough to keep the
interval between requests at or above 1 / max_requests_per_second.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


@dataclass
class RateLimitMetrics:
    """Snapshot of rate limiter activity."""
    min_interval: float
    total_requests: int
    total_wait_time: float
    last_request_time: datetime | None


class RateLimiter:
    """
    Global minimum-interval rate limiter.

    The last-request timestamp is read and written only while holding an
    asyncio.Lock, and the lock is held across the sleep, so concurrent
    workers are released strictly one interval apart.
    """

    def __init__(
        self,
        max_requests_per_second: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize rate limiter.

        Args:
            max_requests_per_second: Upper bound on request rate (> 0)
            clock: Monotonic time source (seconds)
            sleep: Coroutine used to wait
        """
        if max_requests_per_second <= 0:
            raise ValueError("max_requests_per_second must be greater than 0")

        self.max_requests_per_second = max_requests_per_second
        self._clock = clock
        self._sleep = sleep
        self._last_request_time: float | None = None
        self._last_request_wall: float | None = None
        self._lock = asyncio.Lock()

        # Statistics
        self._total_requests = 0
        self._total_wait_time = 0.0

    @property
    def min_interval(self) -> float:
        """Minimum seconds between two requests."""
        return 1.0 / self.max_requests_per_second

    async def wait(self) -> float:
        """
        Wait until the next request may be issued.

        Returns:
            Actual time waited (seconds)
        """
        async with self._lock:
            now = self._clock()

            if self._last_request_time is not None:
                elapsed = now - self._last_request_time
                wait_time = max(0.0, self.min_interval - elapsed)
            else:
                wait_time = 0.0

            if wait_time > 0:
                logger.debug(f"Rate limiter: waiting {wait_time:.3f}s")
                await self._sleep(wait_time)
                self._total_wait_time += wait_time

            self._last_request_time = self._clock()
            self._last_request_wall = time.time()
            self._total_requests += 1
            return wait_time

    def get_metrics(self) -> RateLimitMetrics:
        """
        Get current rate limiter metrics.

        Returns:
            RateLimitMetrics snapshot
        """
        return RateLimitMetrics(
            min_interval=self.min_interval,
            total_requests=self._total_requests,
            total_wait_time=self._total_wait_time,
            last_request_time=datetime.fromtimestamp(self._last_request_wall)
                if self._last_request_wall else None,
        )

    def reset(self) -> None:
        """Reset rate limiter to initial state."""
        self._last_request_time = None
        self._last_request_wall = None
        self._total_requests = 0
        self._total_wait_time = 0.0
