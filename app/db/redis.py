"""Optional Redis client for the gradebook cache.

With REDIS_URL set, a pooled async client is created at import time.
Without it (local dev, tests) redis_pool is None and the cache falls back
to an in-process dict.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from app.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,
        max_connections=20,
    )
else:
    redis_pool = None


@asynccontextmanager
async def lifespan_redis():
    """Ping Redis on startup and close the pool on shutdown.

    An unreachable Redis is logged, not fatal: gradebooks are recomputed
    from source on every cache miss anyway.
    """
    if redis_pool is None:
        logger.info("No REDIS_URL configured; gradebook cache is in-memory")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]
        logger.info("Redis connected: %s", SETTINGS.redis_url)
    except Exception:
        logger.exception("Redis connection failed on startup")
        yield
        return

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
