"""Fixed-window rate limiters keyed per external property."""

import time
from collections.abc import Callable
from typing import Protocol

import redis.asyncio as redis

from analytics_import.core.redis import RATE_LIMIT_KEY_PREFIX


class RateLimiter(Protocol):
    """Admits or rejects one request for a key."""

    async def acquire(self, key: str) -> bool: ...


class InMemoryRateLimiter:
    """Per-process limiter. Counts reset once a window has elapsed."""

    def __init__(
        self,
        max_requests: int = 60,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, tuple[float, int]] = {}

    async def acquire(self, key: str) -> bool:
        now = self._clock()
        window_start, count = self._windows.get(key, (now, 0))

        if now - window_start >= self.window_seconds:
            window_start, count = now, 0

        if count >= self.max_requests:
            return False

        self._windows[key] = (window_start, count + 1)
        return True

    def reset(self) -> None:
        """Forget all counters."""
        self._windows.clear()


class RedisRateLimiter:
    """Limiter shared by every worker process through Redis.

    Uses an atomic INCR on a per-window key; the key expires with its window.
    """

    def __init__(
        self,
        client: redis.Redis,
        max_requests: int = 60,
        window_seconds: int = 60,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock

    def _window_key(self, key: str) -> str:
        window = int(self._clock() // self.window_seconds)
        return f"{RATE_LIMIT_KEY_PREFIX}:{key}:{window}"

    async def acquire(self, key: str) -> bool:
        window_key = self._window_key(key)
        count = await self.client.incr(window_key)
        if count == 1:
            await self.client.expire(window_key, self.window_seconds)
        return count <= self.max_requests
