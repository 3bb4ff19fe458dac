from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from video_access.api.health import router as health_router
from video_access.api.metrics_endpoint import router as metrics_router
from video_access.api.video import router as video_router
from video_access.core.config import SETTINGS
from video_access.core.errors import (
    EntitlementDeniedError,
    InfrastructureError,
    VideoAccessError,
)
from video_access.core.logging import setup_logging
from video_access.db.engine import lifespan_db
from video_access.db.redis import lifespan_redis
from video_access.middleware.metrics import MetricsMiddleware
from video_access.middleware.request_context import RequestContextMiddleware

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Nested so teardown runs in reverse order even if one fails.
    async with lifespan_db():
        async with lifespan_redis():
            yield


app = FastAPI(
    title="video-access-service",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

# Last-added runs first: RequestContext (outermost) -> Metrics -> route
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)


@app.exception_handler(VideoAccessError)
async def video_access_error_handler(
    _request: Request, exc: VideoAccessError
) -> JSONResponse:
    if isinstance(exc, EntitlementDeniedError):
        # Never include counts, thresholds or ownership details.
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "granted": False,
                "denial_reason": exc.reason,
                "detail": "Access denied",
            },
        )
    if isinstance(exc, InfrastructureError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": "Service temporarily unavailable"},
            headers={"Retry-After": "1"},
        )
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(video_router)

logger.info(
    "video-access-service started  env=%s log_level=%s port=%d docs=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    "on" if SETTINGS.is_dev else "off",
)
