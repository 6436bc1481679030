"""Retry with exponential backoff and jitter for backend calls."""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FallbackStrategy(Enum):
    """Where a retrieved result came from."""

    LIVE = "live"
    CACHE = "cache"
    FALLBACK_FILE = "fallback_file"


@dataclass
class RetryPolicy:
    """Attempt budget and backoff shape for a retried call."""

    max_attempts: int = 3
    base_delay_ms: int = 100
    jitter_ms: int = 100

    def backoff_seconds(self, attempt: int) -> float:
        """Delay after failed ``attempt`` (1-based): 2^attempt * base + jitter."""
        jitter = random.uniform(0, self.jitter_ms) if self.jitter_ms > 0 else 0.0
        return ((2**attempt) * self.base_delay_ms + jitter) / 1000


async def retry_with_backoff(
    fn: Callable[[int], Awaitable[T]],
    policy: RetryPolicy,
    on_failure: Callable[[Exception, int], None] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Call ``fn(attempt)`` until it succeeds or the attempt budget runs out.

    Args:
        fn: Coroutine function receiving the 1-based attempt number
        policy: Retry policy
        on_failure: Called with (error, attempt) after each failed attempt
        sleep: Awaitable sleep, injectable for tests

    Returns:
        The first successful result

    Raises:
        The error from the last attempt once every attempt has failed
    """
    if policy.max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempt = 1
    while True:
        try:
            result = await fn(attempt)
            if attempt > 1:
                logger.info(f"Retry succeeded on attempt {attempt}")
            return result
        except Exception as e:
            logger.warning(f"Attempt {attempt}/{policy.max_attempts} failed: {e}")
            if on_failure:
                on_failure(e, attempt)

            if attempt >= policy.max_attempts:
                raise

        await sleep(policy.backoff_seconds(attempt))
        attempt += 1
