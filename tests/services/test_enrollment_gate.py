from __future__ import annotations

import asyncio
import uuid
from datetime import timedelta

import pytest

from tests.conftest import Stack, enroll, seed_course
from video_access.core.errors import InfrastructureError
from video_access.models.decision import EnrollmentStatus
from video_access.models.enrollment import Enrollment
from video_access.services.enrollment_gate import EnrollmentGate


def _check(stack: Stack, user_id: str, module_id: uuid.UUID):
    gate = EnrollmentGate(stack.courses, stack.enrollments, clock=stack.clock)
    return asyncio.run(gate.check(user_id, module_id))


def test_active_enrollment_passes(stack: Stack) -> None:
    module = seed_course(stack.courses)
    enroll(stack.enrollments, "alice", module.course_id, now=stack.clock())

    check = _check(stack, "alice", module.id)
    assert check.ok
    assert check.status is EnrollmentStatus.ACTIVE
    assert check.module == module
    assert check.enrollment is not None


def test_unknown_module(stack: Stack) -> None:
    check = _check(stack, "alice", uuid.uuid4())
    assert check.status is EnrollmentStatus.MODULE_NOT_FOUND
    assert check.module is None


def test_inactive_module(stack: Stack) -> None:
    module = seed_course(stack.courses, module_active=False)
    enroll(stack.enrollments, "alice", module.course_id, now=stack.clock())
    assert _check(stack, "alice", module.id).status is EnrollmentStatus.MODULE_INACTIVE


def test_inactive_course(stack: Stack) -> None:
    module = seed_course(stack.courses, course_active=False)
    enroll(stack.enrollments, "alice", module.course_id, now=stack.clock())
    assert _check(stack, "alice", module.id).status is EnrollmentStatus.COURSE_INACTIVE


def test_not_enrolled(stack: Stack) -> None:
    module = seed_course(stack.courses)
    enroll(stack.enrollments, "bob", module.course_id, now=stack.clock())
    assert _check(stack, "alice", module.id).status is EnrollmentStatus.NOT_ENROLLED


def test_expired_enrollment(stack: Stack) -> None:
    module = seed_course(stack.courses)
    enroll(stack.enrollments, "alice", module.course_id, now=stack.clock(), days_left=-1)
    assert _check(stack, "alice", module.id).status is EnrollmentStatus.EXPIRED


def test_expired_wins_over_inactive_flag(stack: Stack) -> None:
    """Expiry is checked before is_active, so an expired and deactivated
    enrollment reports 'expired'."""
    module = seed_course(stack.courses)
    enroll(
        stack.enrollments,
        "alice",
        module.course_id,
        now=stack.clock(),
        days_left=-1,
        is_active=False,
    )
    assert _check(stack, "alice", module.id).status is EnrollmentStatus.EXPIRED


def test_expiry_boundary_is_exclusive(stack: Stack) -> None:
    module = seed_course(stack.courses)
    enroll(stack.enrollments, "alice", module.course_id, now=stack.clock(), days_left=1)
    stack.clock.advance(days=1)
    assert _check(stack, "alice", module.id).status is EnrollmentStatus.EXPIRED


def test_deactivated_enrollment(stack: Stack) -> None:
    module = seed_course(stack.courses)
    enroll(
        stack.enrollments, "alice", module.course_id, now=stack.clock(), is_active=False
    )
    status = _check(stack, "alice", module.id).status
    assert status is EnrollmentStatus.ENROLLMENT_INACTIVE


def test_inactive_module_reported_before_missing_enrollment(stack: Stack) -> None:
    module = seed_course(stack.courses, module_active=False)
    assert _check(stack, "alice", module.id).status is EnrollmentStatus.MODULE_INACTIVE


class _BrokenEnrollments:
    async def get(self, user_id, course_id):
        raise InfrastructureError("enrollment store unavailable")


def test_store_errors_propagate(stack: Stack) -> None:
    module = seed_course(stack.courses)
    gate = EnrollmentGate(stack.courses, _BrokenEnrollments(), clock=stack.clock)
    with pytest.raises(InfrastructureError):
        asyncio.run(gate.check("alice", module.id))


# ---- Enrollment invariants ----


def test_enrollment_requires_expiry_after_start(stack: Stack) -> None:
    with pytest.raises(ValueError, match="expiry_date must be after"):
        Enrollment(
            user_id="alice",
            course_id=uuid.uuid4(),
            enrollment_date=stack.clock(),
            expiry_date=stack.clock(),
        )


def test_days_remaining_floors_at_zero(stack: Stack) -> None:
    enrollment = Enrollment.new(
        user_id="alice",
        course_id=uuid.uuid4(),
        enrollment_date=stack.clock() - timedelta(days=40),
    )
    assert enrollment.days_remaining(stack.clock()) == 0
