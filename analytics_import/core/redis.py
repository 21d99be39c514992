"""Redis client for shared rate-limit counters."""

import redis.asyncio as redis

from analytics_import.core.config import settings

# Global Redis client
_redis_client: redis.Redis | None = None

# Key prefixes
RATE_LIMIT_KEY_PREFIX = "ratelimit:ga"


async def get_redis() -> redis.Redis:
    """Get the global Redis client.

    Returns:
        Redis async client

    Raises:
        RuntimeError: If Redis is not initialized
    """
    if _redis_client is None:
        raise RuntimeError("Redis client not initialized. Call init_redis() first.")
    return _redis_client


async def init_redis() -> redis.Redis:
    """Initialize Redis connection."""
    global _redis_client
    _redis_client = redis.from_url(
        str(settings.redis_url),
        encoding="utf-8",
        decode_responses=True,
    )
    # Test connection
    await _redis_client.ping()
    return _redis_client


async def close_redis() -> None:
    """Close Redis connection."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
