"""Retry policy with exponential backoff."""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how long to wait before retrying an operation.

    The delay before retry ``n`` (0-based) is ``base_delay * 2**n``. When
    ``jitter`` is non-zero a random fraction of up to ``jitter`` times that
    delay is added on top.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    jitter: float = 0.0

    def delay_for(self, attempt: int) -> float:
        """Get the backoff delay in seconds for a retry attempt."""
        delay = self.base_delay * (2**attempt)
        if self.jitter > 0:
            delay += random.uniform(0, delay * self.jitter)
        return delay


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    is_retryable: Callable[[Exception], bool],
    sleep: SleepFunc = asyncio.sleep,
) -> T:
    """Run an async operation, retrying retryable failures with backoff.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        policy: Retry bounds and delays
        is_retryable: Predicate separating transient from fatal errors
        sleep: Awaitable sleep, injectable for tests

    Returns:
        The operation's result

    Raises:
        The last exception once it is fatal or retries are exhausted
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            if attempt >= policy.max_retries or not is_retryable(exc):
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "retrying_operation",
                attempt=attempt + 1,
                max_retries=policy.max_retries,
                delay=delay,
                error=str(exc),
            )
            await sleep(delay)
            attempt += 1
