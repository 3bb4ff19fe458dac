"""FastAPI dependencies: caller identity and service wiring.

Backends follow the same conditional pattern as the db and redis
modules: a configured DATABASE_URL / REDIS_URL / VIDEO_BUCKET selects
the real backend, otherwise the module-level in-memory singletons
below are used (and are what the test suite seeds and resets).
"""

from __future__ import annotations

import logging
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from video_access.core.config import SETTINGS
from video_access.db.engine import async_session_factory, get_async_session
from video_access.db.redis import redis_pool
from video_access.models.principal import ClientInfo, Principal
from video_access.repos.access_log_repo import AccessLogRepo, InMemoryAccessLogRepo
from video_access.repos.course_repo import CourseRepo, InMemoryCourseRepo
from video_access.repos.enrollment_repo import EnrollmentRepo, InMemoryEnrollmentRepo
from video_access.repos.pg_access_log_repo import PgAccessLogRepo
from video_access.repos.pg_course_repo import PgCourseRepo
from video_access.repos.pg_enrollment_repo import PgEnrollmentRepo
from video_access.services import token_service
from video_access.services.access_audit_log import AccessAuditLog
from video_access.services.access_policy import AccessPolicyEvaluator, ThrottlePolicy
from video_access.services.enrollment_gate import EnrollmentGate
from video_access.services.session_registry import SessionRegistry
from video_access.services.session_store import (
    InMemorySessionStore,
    RedisSessionStore,
    SessionPolicy,
    SessionStore,
)
from video_access.services.signed_url_issuer import build_issuer
from video_access.services.video_access_service import VideoAccessService

logger = logging.getLogger(__name__)

# Tokens are issued by the auth service; tokenUrl only feeds the docs UI.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/oauth/token")

# ---------------------------------------------------------------------------
# Module-level singletons
# ---------------------------------------------------------------------------

course_repo = InMemoryCourseRepo()
enrollment_repo = InMemoryEnrollmentRepo()

access_log_repo: AccessLogRepo
if async_session_factory is not None:
    access_log_repo = PgAccessLogRepo(async_session_factory)
else:
    access_log_repo = InMemoryAccessLogRepo()

session_store: SessionStore
if redis_pool is not None:
    session_store = RedisSessionStore(redis_pool)
else:
    session_store = InMemorySessionStore()

url_issuer = build_issuer(SETTINGS)
session_policy = SessionPolicy.from_settings(SETTINGS)
throttle_policy = ThrottlePolicy.from_settings(SETTINGS)


def require_user(
    raw_token: Annotated[str, Depends(oauth2_scheme)],
) -> Principal:
    """Extract and validate the JWT bearer token. Returns a Principal."""
    try:
        claims = token_service.decode_access_token(raw_token)
    except jwt.ExpiredSignatureError:
        logger.warning("Expired token rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token rejected: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    return Principal(
        user_id=claims["sub"],
        roles=frozenset(claims.get("roles", [])),
    )


def client_info(request: Request) -> ClientInfo:
    """Network facts recorded on every access log entry."""
    return ClientInfo(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


def get_video_access_service(
    db: Annotated[AsyncSession | None, Depends(get_async_session)],
) -> VideoAccessService:
    courses: CourseRepo
    enrollments: EnrollmentRepo
    if db is not None:
        courses = PgCourseRepo(db)
        enrollments = PgEnrollmentRepo(db)
    else:
        courses = course_repo
        enrollments = enrollment_repo

    evaluator = AccessPolicyEvaluator(
        EnrollmentGate(courses, enrollments),
        AccessAuditLog(access_log_repo),
        throttle_policy,
    )
    sessions = SessionRegistry(session_store, session_policy)
    return VideoAccessService(evaluator, sessions, url_issuer)
