"""Tests for the token bucket and the interval scheduler."""

import asyncio
import time

import pytest

from mailtriage.core.errors import RateLimitExceeded
from mailtriage.core.rate_limiter import (
    DEFAULT_INTERVAL_SECONDS,
    IntervalScheduler,
    TokenBucket,
)


class TestTokenBucket:
    async def test_consumes_available_token(self) -> None:
        bucket = TokenBucket(rate=1.0, capacity=2)
        assert await bucket.consume()
        assert await bucket.consume()
        assert bucket.tokens < 1

    async def test_over_capacity_raises(self) -> None:
        bucket = TokenBucket(rate=1.0, capacity=1)
        with pytest.raises(RateLimitExceeded, match="exceed bucket capacity"):
            await bucket.consume(tokens=2)

    async def test_excessive_wait_raises(self) -> None:
        bucket = TokenBucket(rate=0.01, capacity=1, initial_tokens=0, max_wait=5.0)
        with pytest.raises(RateLimitExceeded, match="would require"):
            await bucket.consume()

    async def test_refill_uses_clock(self) -> None:
        now = [100.0]
        bucket = TokenBucket(rate=0.5, capacity=1, initial_tokens=0, clock=lambda: now[0])

        now[0] += 2.0
        assert await bucket.consume()

    async def test_waits_for_refill(self) -> None:
        bucket = TokenBucket(rate=20.0, capacity=1, initial_tokens=0)
        start = time.monotonic()
        assert await bucket.consume()
        assert time.monotonic() - start >= 0.04

    def test_rate_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            TokenBucket(rate=0)


class TestIntervalScheduler:
    def test_default_interval(self) -> None:
        assert IntervalScheduler().interval_seconds == DEFAULT_INTERVAL_SECONDS == 2.1

    def test_interval_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            IntervalScheduler(interval_seconds=0)

    async def test_first_call_admitted_immediately(self) -> None:
        scheduler = IntervalScheduler(interval_seconds=5.0)

        async def work() -> str:
            return "done"

        start = time.monotonic()
        assert await scheduler.run(work) == "done"
        assert time.monotonic() - start < 1.0
        assert scheduler.admitted == 1

    async def test_calls_spaced_by_interval(self) -> None:
        scheduler = IntervalScheduler(interval_seconds=0.05)
        starts: list[float] = []

        async def work() -> None:
            starts.append(time.monotonic())

        for _ in range(3):
            await scheduler.run(work)

        gaps = [b - a for a, b in zip(starts, starts[1:])]
        assert all(gap >= 0.045 for gap in gaps)

    async def test_concurrency_one(self) -> None:
        scheduler = IntervalScheduler(interval_seconds=0.01)
        active = 0
        peak = 0

        async def work(n: int) -> int:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.02)
            active -= 1
            return n

        results = await asyncio.gather(*(scheduler.run(work, n) for n in range(4)))

        assert sorted(results) == [0, 1, 2, 3]
        assert peak == 1
        assert scheduler.admitted == 4

    async def test_exceptions_propagate(self) -> None:
        scheduler = IntervalScheduler(interval_seconds=0.01)

        async def fail() -> None:
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            await scheduler.run(fail)

    async def test_independent_schedulers(self) -> None:
        first = IntervalScheduler(interval_seconds=5.0)
        second = IntervalScheduler(interval_seconds=5.0)

        async def work() -> None:
            return None

        start = time.monotonic()
        await first.run(work)
        await second.run(work)
        assert time.monotonic() - start < 1.0
