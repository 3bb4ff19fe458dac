"""Redis connection management.

Mirrors engine.py: when REDIS_URL is configured a shared connection pool
is created; otherwise ``redis_pool`` is None and streaming sessions live
in the in-process store.

Streaming sessions are the one piece of hot, shared, mutable state in
this service.  With several API replicas the per-user session cap only
holds if every replica sees the same session set, which is why the
production session store is Redis rather than process memory.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from video_access.core.config import SETTINGS

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
    """Startup/shutdown hook for Redis; mirrors lifespan_db()."""
    if redis_pool is None:
        logger.info("No REDIS_URL configured, sessions use the in-memory store")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]  # redis stubs mistype async ping as bool
        logger.info("Redis connected: %s", SETTINGS.redis_url)
    except Exception:
        # Keep serving: session calls will surface InfrastructureError
        # (503) until Redis is reachable again.
        logger.exception("Redis connection failed on startup")
        yield
        return

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
