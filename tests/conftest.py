from __future__ import annotations

import sys
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from uuid import UUID

import pytest
from fastapi.testclient import TestClient

from video_access.api import dependencies
from video_access.main import app
from video_access.models.course import Course, CourseModule
from video_access.models.enrollment import Enrollment
from video_access.repos.access_log_repo import InMemoryAccessLogRepo
from video_access.repos.course_repo import InMemoryCourseRepo
from video_access.repos.enrollment_repo import InMemoryEnrollmentRepo
from video_access.services import token_service
from video_access.services.access_audit_log import AccessAuditLog
from video_access.services.access_policy import AccessPolicyEvaluator, ThrottlePolicy
from video_access.services.enrollment_gate import EnrollmentGate
from video_access.services.session_registry import SessionRegistry
from video_access.services.session_store import InMemorySessionStore, SessionPolicy
from video_access.services.signed_url_issuer import HmacSignedUrlIssuer
from video_access.services.video_access_service import VideoAccessService

# Ensure repo root is on sys.path so `import video_access` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
TEST_SECRET = "test-url-signing-secret"


@pytest.fixture(autouse=True)
def reset_repos() -> None:
    """Clear the in-memory repos behind the HTTP app between tests."""
    dependencies.course_repo.clear()
    dependencies.enrollment_repo.clear()
    if hasattr(dependencies.access_log_repo, "_entries"):
        dependencies.access_log_repo.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_sessions() -> None:
    """Clear streaming sessions so the concurrency cap doesn't bleed."""
    if hasattr(dependencies.session_store, "_sessions"):
        dependencies.session_store.clear()  # type: ignore[union-attr]


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(
    username: str = "test-user",
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=username, roles=roles)


def auth_header(username: str = "test-user", roles: list[str] | None = None) -> dict:
    return {"Authorization": f"Bearer {mint_token(username, roles)}"}


@pytest.fixture
def token() -> str:
    return mint_token()


# ---------------------------------------------------------------------------
# Clock and seeding helpers
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def seed_course(
    courses: InMemoryCourseRepo,
    *,
    course_active: bool = True,
    module_active: bool = True,
    video_key: str = "intro/lesson-1.mp4",
) -> CourseModule:
    course = Course.new(title="Python for Data", is_active=course_active)
    courses.add_course(course)
    module = CourseModule.new(
        course_id=course.id,
        video_key=video_key,
        duration_seconds=600,
        is_active=module_active,
    )
    courses.add_module(module)
    return module


def add_module(
    courses: InMemoryCourseRepo, course_id: UUID, video_key: str = "intro/lesson-2.mp4"
) -> CourseModule:
    module = CourseModule.new(course_id=course_id, video_key=video_key)
    courses.add_module(module)
    return module


def enroll(
    enrollments: InMemoryEnrollmentRepo,
    user_id: str,
    course_id: UUID,
    *,
    now: datetime,
    days_left: float = 2,
    is_active: bool = True,
) -> Enrollment:
    expiry = now + timedelta(days=days_left)
    enrollment = Enrollment(
        user_id=user_id,
        course_id=course_id,
        enrollment_date=expiry - timedelta(days=30),
        expiry_date=expiry,
        is_active=is_active,
    )
    enrollments.put(enrollment)
    return enrollment


# ---------------------------------------------------------------------------
# Fully in-memory service stack with a controllable clock
# ---------------------------------------------------------------------------


@dataclass
class Stack:
    clock: FakeClock
    courses: InMemoryCourseRepo
    enrollments: InMemoryEnrollmentRepo
    log_repo: InMemoryAccessLogRepo
    store: InMemorySessionStore
    audit: AccessAuditLog
    evaluator: AccessPolicyEvaluator
    registry: SessionRegistry
    issuer: HmacSignedUrlIssuer
    service: VideoAccessService


def build_stack(
    *,
    session_policy: SessionPolicy | None = None,
    throttle: ThrottlePolicy | None = None,
    log_repo: InMemoryAccessLogRepo | None = None,
) -> Stack:
    clock = FakeClock()
    courses = InMemoryCourseRepo()
    enrollments = InMemoryEnrollmentRepo()
    log_repo = log_repo or InMemoryAccessLogRepo()
    store = InMemorySessionStore()
    audit = AccessAuditLog(log_repo, clock=clock)
    evaluator = AccessPolicyEvaluator(
        EnrollmentGate(courses, enrollments, clock=clock),
        audit,
        throttle,
        clock=clock,
    )
    registry = SessionRegistry(store, session_policy, clock=clock)
    issuer = HmacSignedUrlIssuer(
        TEST_SECRET, base_url="https://media.test/videos", clock=clock
    )
    return Stack(
        clock=clock,
        courses=courses,
        enrollments=enrollments,
        log_repo=log_repo,
        store=store,
        audit=audit,
        evaluator=evaluator,
        registry=registry,
        issuer=issuer,
        service=VideoAccessService(evaluator, registry, issuer),
    )


@pytest.fixture
def stack() -> Stack:
    return build_stack()
