"""Health and readiness endpoints.

  /health (liveness):  is the process alive?  Always 200; the status
                       field reports degraded dependencies.
  /ready (readiness):  can this instance take traffic?  503 when a
                       configured backend the access path depends on
                       (Postgres, Redis) is unreachable, so the load
                       balancer drains the instance instead of it
                       answering every request with a 503 of its own.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response
from sqlalchemy import text

from video_access.db.engine import engine
from video_access.db.redis import redis_pool

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _check_redis() -> str:
    if redis_pool is None:
        return "not_configured"
    try:
        await redis_pool.ping()  # type: ignore[misc]
    except Exception:
        logger.warning("Redis health check failed", exc_info=True)
        return "degraded"
    return "ok"


async def _check_database() -> str:
    if engine is None:
        return "not_configured"
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception:
        logger.warning("Database health check failed", exc_info=True)
        return "degraded"
    return "ok"


async def _checks() -> dict[str, str]:
    return {"database": await _check_database(), "redis": await _check_redis()}


@router.get("/health")
async def health() -> dict:
    """Liveness probe plus dependency status.

    Returns 200 even when degraded; restarting the container would not
    bring a lost database back.
    """
    checks = await _checks()
    overall = "degraded" if "degraded" in checks.values() else "ok"
    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready() -> Response:
    checks = await _checks()
    if "degraded" in checks.values():
        return Response(status_code=503)
    return Response(status_code=200)
