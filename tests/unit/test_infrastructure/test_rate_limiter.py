"""Unit tests for the shared request RateLimiter."""

import asyncio
import time

import pytest

from seocrawl.infrastructure.rate_limiter import RateLimiter

pytest_plugins = ('pytest_asyncio',)


class VirtualTime:
    """Clock and sleep pair that advances without real waiting."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class TestRateLimiter:
    """Tests for RateLimiter."""

    @pytest.fixture
    def vtime(self):
        return VirtualTime()

    @pytest.fixture
    def limiter(self, vtime):
        """Create a 10 req/s limiter driven by virtual time."""
        return RateLimiter(10, clock=vtime.clock, sleep=vtime.sleep)

    def test_rejects_non_positive_rate(self):
        with pytest.raises(ValueError):
            RateLimiter(0)

    def test_min_interval(self, limiter):
        assert limiter.min_interval == pytest.approx(0.1)

    @pytest.mark.asyncio
    async def test_first_request_does_not_wait(self, limiter):
        wait_time = await limiter.wait()
        assert wait_time == 0

    @pytest.mark.asyncio
    async def test_sequential_requests_are_spaced(self, limiter, vtime):
        await limiter.wait()
        vtime.now += 0.03
        wait_time = await limiter.wait()

        assert wait_time == pytest.approx(0.07)

    @pytest.mark.asyncio
    async def test_no_wait_after_long_gap(self, limiter, vtime):
        await limiter.wait()
        vtime.now += 5
        assert await limiter.wait() == 0

    @pytest.mark.asyncio
    async def test_concurrent_requests_lower_bound(self, limiter, vtime):
        """Test that N concurrent requests span at least (N - 1) / R."""
        release_times = []

        async def request():
            await limiter.wait()
            release_times.append(vtime.now)

        await asyncio.gather(*(request() for _ in range(8)))

        assert len(release_times) == 8
        assert max(release_times) - min(release_times) >= 0.7 - 1e-9
        gaps = [b - a for a, b in zip(release_times, release_times[1:])]
        assert all(gap >= 0.1 - 1e-9 for gap in gaps)

    @pytest.mark.asyncio
    async def test_real_clock_lower_bound(self):
        """Test the bound against the real event loop clock."""
        limiter = RateLimiter(50)
        start = time.monotonic()

        await asyncio.gather(*(limiter.wait() for _ in range(5)))

        assert time.monotonic() - start >= 4 / 50 - 0.01

    @pytest.mark.asyncio
    async def test_metrics(self, limiter):
        await limiter.wait()
        await limiter.wait()
        metrics = limiter.get_metrics()

        assert metrics.total_requests == 2
        assert metrics.total_wait_time == pytest.approx(0.1)
        assert metrics.last_request_time is not None

    @pytest.mark.asyncio
    async def test_reset(self, limiter):
        await limiter.wait()
        limiter.reset()

        assert await limiter.wait() == 0
        assert limiter.get_metrics().total_requests == 1
