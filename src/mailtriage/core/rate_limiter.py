"""Rate limiting for language-model requests.

This module provides a token bucket and, built on it, the fixed-interval
single-concurrency scheduler the throughput governor uses to stay under the
completion provider's requests-per-minute limit.

Key features:
- Token bucket algorithm for precise admission timing
- At most one in-flight request per scheduler
- Explicit instances (no module-level buckets), so independent batches
  keep isolated rate budgets

Standard limits:
- Groq free tier: 30 requests per minute -> one admission every 2.1 seconds
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

from mailtriage.core.errors import RateLimitExceeded
from mailtriage.core.logging import get_logger

logger = get_logger(__name__)

# Default admission interval (seconds) for the completion provider
DEFAULT_INTERVAL_SECONDS = 2.1

# Longest the bucket will block a caller before giving up
DEFAULT_MAX_WAIT_SECONDS = 20.0


class TokenBucket:
    """Token bucket rate limiter implementation.

    Tokens are added at a fixed rate and each request consumes a token. If
    no tokens are available, the request is delayed until one is.

    Example:
        # Allow 1 request every 2.1 seconds
        limiter = TokenBucket(rate=1 / 2.1, capacity=1)

        async def make_api_call():
            await limiter.consume()  # This will wait if needed
            # Make your API call here
    """

    def __init__(
        self,
        rate: float = 1.0,
        capacity: int = 1,
        initial_tokens: int | None = None,
        max_wait: float = DEFAULT_MAX_WAIT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize a token bucket rate limiter.

        Args:
            rate: Token refill rate per second
            capacity: Maximum number of tokens in the bucket
            initial_tokens: Initial number of tokens in the bucket (defaults to capacity)
            max_wait: Longest single wait (seconds) before raising RateLimitExceeded
            clock: Monotonic time source (injectable for tests)
        """
        if rate <= 0:
            raise ValueError(f"Token bucket rate must be positive, got {rate}")
        self.rate = rate  # tokens per second
        self.capacity = capacity
        self.tokens: float = capacity if initial_tokens is None else initial_tokens
        self.max_wait = max_wait
        self._clock = clock
        self.last_refill = clock()
        self.lock = asyncio.Lock()

    async def consume(self, tokens: int = 1) -> bool:
        """Consume tokens from the bucket, waiting if needed.

        Args:
            tokens: Number of tokens to consume

        Returns:
            True if tokens were consumed

        Raises:
            RateLimitExceeded: If the wait would exceed max_wait
        """
        if tokens > self.capacity:
            logger.error(
                "token_bucket_over_capacity",
                tokens=tokens,
                capacity=self.capacity,
            )
            raise RateLimitExceeded(
                f"Requested tokens ({tokens}) exceed bucket capacity ({self.capacity})"
            )

        while True:
            async with self.lock:
                self._refill()

                if self.tokens >= tokens:
                    self.tokens -= tokens
                    return True

                required_tokens = tokens - self.tokens
                wait_time = required_tokens / self.rate

                if wait_time > self.max_wait:
                    logger.warning(
                        "rate_limit_excessive_wait",
                        wait_time=wait_time,
                        tokens_needed=required_tokens,
                    )
                    raise RateLimitExceeded(
                        f"Rate limit exceeded, would require {wait_time:.2f}s wait"
                    )

            # Release lock during sleep so other consumers can check
            logger.debug(
                "token_bucket_wait",
                wait_time=round(wait_time, 3),
                tokens_needed=required_tokens,
            )
            await asyncio.sleep(wait_time)

    def _refill(self) -> None:
        """Refill tokens based on elapsed time."""
        now = self._clock()
        elapsed = now - self.last_refill
        self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
        self.last_refill = now


class IntervalScheduler:
    """Concurrency-1 scheduler admitting one call per fixed interval.

    Each call waits for the previous one to finish (concurrency 1) and for
    a token from a one-slot bucket refilled every ``interval_seconds``, so
    two calls never start closer together than the interval.

    Example:
        scheduler = IntervalScheduler(interval_seconds=2.1)
        result = await scheduler.run(classifier.classify, message)

    Attributes:
        interval_seconds: Minimum spacing between call starts
        admitted: Number of calls admitted so far
    """

    def __init__(
        self,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        max_wait: float = DEFAULT_MAX_WAIT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if interval_seconds <= 0:
            raise ValueError(f"Scheduler interval must be positive, got {interval_seconds}")
        self.interval_seconds = interval_seconds
        self.admitted = 0
        self._bucket = TokenBucket(
            rate=1.0 / interval_seconds,
            capacity=1,
            max_wait=max(max_wait, interval_seconds),
            clock=clock,
        )
        self._slot = asyncio.Lock()

    async def run[T](
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """Run ``func`` once a slot and an admission token are available.

        Args:
            func: Coroutine function to schedule
            *args: Positional arguments for func
            **kwargs: Keyword arguments for func

        Returns:
            Whatever func returns; exceptions propagate unchanged
        """
        async with self._slot:
            await self._bucket.consume()
            self.admitted += 1
            return await func(*args, **kwargs)
