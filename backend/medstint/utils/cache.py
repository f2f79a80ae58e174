"""Redis helpers: shared client, a fail-open result cache.

Uses Redis so cached aggregates (funnel metrics) are shared across
backend instances.  Every Redis failure degrades to the uncached call.
"""

import functools
import hashlib
import json
import logging
from datetime import date, datetime
from typing import Callable, Optional

import redis.asyncio as redis

from medstint.config import settings

logger = logging.getLogger(__name__)

# Global Redis connection pool
_redis_client: Optional[redis.Redis] = None


async def get_redis() -> redis.Redis:
    """Get or create Redis client connection."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=50,
        )
    return _redis_client


async def close_redis():
    """Close Redis connection (call on app shutdown)."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def cache_key(**kwargs) -> str:
    """Deterministic hash of the simple keyword arguments."""
    if not kwargs:
        return "default"
    key_data = json.dumps(kwargs, sort_keys=True)
    return hashlib.md5(key_data.encode()).hexdigest()


def cached(ttl: int = 300, prefix: str = "cache"):
    """Decorator to cache a coroutine's JSON-serializable result in Redis.

    Positional arguments are treated as injected dependencies (stores,
    sessions) and left out of the key; simple keyword arguments are hashed.

    Example:
        @cached(ttl=300, prefix="funnel")
        async def funnel_snapshot(store, since_days: int = 30) -> dict:
            ...

    Cache keys: {prefix}:{function_name}:{kwargs_hash}
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            if not settings.cache_enabled:
                return await func(*args, **kwargs)

            cache_kwargs = {}
            for k, v in kwargs.items():
                if isinstance(v, (int, str, bool, float, type(None))):
                    cache_kwargs[k] = v
                elif isinstance(v, (date, datetime)):
                    cache_kwargs[k] = v.isoformat()
            key = f"{prefix}:{func.__name__}:{cache_key(**cache_kwargs)}"

            try:
                redis_client = await get_redis()
                cached_value = await redis_client.get(key)
                if cached_value:
                    logger.debug("Cache HIT: %s", key)
                    return json.loads(cached_value)

                logger.debug("Cache MISS: %s", key)
                result = await func(*args, **kwargs)
                serialized = result.model_dump(mode="json") if hasattr(result, "model_dump") else result
                await redis_client.setex(key, ttl, json.dumps(serialized))
                return serialized

            except redis.RedisError as e:
                logger.warning("Redis error (falling back to uncached): %s", e)
                return await func(*args, **kwargs)

        return wrapper

    return decorator


async def invalidate_cache(pattern: str):
    """Delete cache keys matching a pattern, e.g. ``"funnel:*"``."""
    if not settings.cache_enabled:
        return
    try:
        redis_client = await get_redis()
        keys = [key async for key in redis_client.scan_iter(match=pattern)]
        if keys:
            await redis_client.delete(*keys)
            logger.info("Invalidated %d cache keys matching %s", len(keys), pattern)
    except redis.RedisError as e:
        logger.warning("Failed to invalidate cache: %s", e)
