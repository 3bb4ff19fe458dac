from __future__ import annotations

import asyncio
import uuid

import pytest

from tests.conftest import Stack, add_module, enroll, seed_course
from video_access.core.errors import InfrastructureError, NotFoundError, ValidationError
from video_access.models.decision import Denied, Fault, Granted, ReasonCode
from video_access.models.principal import Principal
from video_access.models.session import SessionState
from video_access.services.video_access_service import VideoAccessService

ALICE = Principal(user_id="alice", roles=frozenset({"user"}))
BOB = Principal(user_id="bob", roles=frozenset({"user"}))
ADMIN = Principal(user_id="root", roles=frozenset({"admin"}))


def _entries(stack: Stack) -> list[tuple[bool, str]]:
    return [(e.granted, e.reason_code) for e in stack.log_repo._entries]


def _active(stack: Stack, user_id: str = "alice"):
    return asyncio.run(stack.registry.active_sessions(user_id))


# ---------------------------------------------------------------------------
# Scenarios A-D
# ---------------------------------------------------------------------------


def test_scenario_a_grant_creates_one_session_and_one_entry(stack: Stack) -> None:
    module = seed_course(stack.courses)
    enroll(stack.enrollments, "alice", module.course_id, now=stack.clock(), days_left=2)

    result = asyncio.run(stack.service.request_video_access(ALICE, module.id, 60))

    assert result.granted
    assert isinstance(result.decision, Granted)
    assert result.days_remaining == 2
    assert result.streaming_url is not None
    assert stack.issuer.verify(result.streaming_url)
    assert _entries(stack) == [(True, "granted")]
    active = _active(stack)
    assert [s.session_id for s in active] == [result.session_id]
    assert active[0].state is SessionState.ACTIVE


def test_scenario_b_second_module_hits_session_limit(stack: Stack) -> None:
    first = seed_course(stack.courses)
    second = add_module(stack.courses, first.course_id)
    enroll(stack.enrollments, "alice", first.course_id, now=stack.clock())

    asyncio.run(stack.service.request_video_access(ALICE, first.id, 60))
    result = asyncio.run(stack.service.request_video_access(ALICE, second.id, 60))

    assert result.decision == Denied(ReasonCode.SESSION_LIMIT)
    assert result.denial_reason == "session_limit"
    assert result.streaming_url is None
    assert len(_active(stack)) == 1
    assert _entries(stack) == [(True, "granted"), (False, "session_limit")]


def test_scenario_c_end_session_then_retry_is_granted(stack: Stack) -> None:
    first = seed_course(stack.courses)
    second = add_module(stack.courses, first.course_id)
    enroll(stack.enrollments, "alice", first.course_id, now=stack.clock())

    granted = asyncio.run(stack.service.request_video_access(ALICE, first.id, 60))
    asyncio.run(stack.service.request_video_access(ALICE, second.id, 60))
    assert granted.session_id is not None
    assert asyncio.run(stack.service.end_video_session(ALICE, granted.session_id))

    retry = asyncio.run(stack.service.request_video_access(ALICE, second.id, 60))

    assert retry.granted
    assert len(_active(stack)) == 1


def test_scenario_d_twelfth_request_is_rate_limited(stack: Stack) -> None:
    enrolled = seed_course(stack.courses)
    enroll(stack.enrollments, "alice", enrolled.course_id, now=stack.clock())
    not_enrolled = seed_course(stack.courses)

    async def scenario():
        for _ in range(11):
            denied = await stack.service.request_video_access(
                ALICE, not_enrolled.id, 60
            )
            assert denied.denial_reason == "not_enrolled"
            stack.clock.advance(minutes=1)
        return await stack.service.request_video_access(ALICE, enrolled.id, 60)

    result = asyncio.run(scenario())

    assert result.decision == Denied(ReasonCode.RATE_LIMITED)
    assert _active(stack) == []


# ---------------------------------------------------------------------------
# request_video_access edge cases
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("ttl", [0, 121])
def test_invalid_ttl_raises_before_any_audit(stack: Stack, ttl: int) -> None:
    module = seed_course(stack.courses)
    with pytest.raises(ValidationError):
        asyncio.run(stack.service.request_video_access(ALICE, module.id, ttl))
    assert _entries(stack) == []


def test_url_expiry_follows_ttl_not_enrollment(stack: Stack) -> None:
    module = seed_course(stack.courses)
    enroll(stack.enrollments, "alice", module.course_id, now=stack.clock(), days_left=9)
    result = asyncio.run(stack.service.request_video_access(ALICE, module.id, 15))
    assert result.expires_at is not None
    assert (result.expires_at - stack.clock()).total_seconds() == 15 * 60


def test_denied_request_creates_no_session(stack: Stack) -> None:
    module = seed_course(stack.courses)
    result = asyncio.run(stack.service.request_video_access(ALICE, module.id, 60))
    assert result.denial_reason == "not_enrolled"
    assert _active(stack) == []


class _BrokenIssuer:
    backend = "broken"

    async def issue_url(self, video_key, user_id, ttl_minutes):
        raise InfrastructureError("object store signing failed")


def test_issuer_failure_releases_session_and_faults(stack: Stack) -> None:
    module = seed_course(stack.courses)
    enroll(stack.enrollments, "alice", module.course_id, now=stack.clock())
    service = VideoAccessService(stack.evaluator, stack.registry, _BrokenIssuer())

    result = asyncio.run(service.request_video_access(ALICE, module.id, 60))

    assert result.decision == Fault(ReasonCode.INTERNAL_ERROR)
    assert _active(stack) == []
    assert _entries(stack) == [(False, "internal_error")]


class _BuggyIssuer:
    backend = "buggy"

    async def issue_url(self, video_key, user_id, ttl_minutes):
        raise RuntimeError("unexpected issuer bug")


def test_unexpected_issuer_error_still_releases_session(stack: Stack) -> None:
    module = seed_course(stack.courses)
    enroll(stack.enrollments, "alice", module.course_id, now=stack.clock())
    service = VideoAccessService(stack.evaluator, stack.registry, _BuggyIssuer())

    with pytest.raises(RuntimeError):
        asyncio.run(service.request_video_access(ALICE, module.id, 60))

    assert _active(stack) == []
    assert _entries(stack) == [(False, "internal_error")]

    # The slot is free again, so a working issuer can grant straight away.
    result = asyncio.run(stack.service.request_video_access(ALICE, module.id, 60))
    assert result.granted


# ---------------------------------------------------------------------------
# validate_access / end_video_session / heartbeat
# ---------------------------------------------------------------------------


def test_validate_access_is_read_only_but_audited(stack: Stack) -> None:
    module = seed_course(stack.courses)
    enroll(stack.enrollments, "alice", module.course_id, now=stack.clock(), days_left=3)

    check = asyncio.run(stack.service.validate_access(ALICE, module.id))

    assert check.has_access
    assert check.reason == "granted"
    assert check.days_remaining == 3
    assert _active(stack) == []
    assert _entries(stack) == [(True, "granted")]


def test_validate_access_reports_reason(stack: Stack) -> None:
    check = asyncio.run(stack.service.validate_access(ALICE, uuid.uuid4()))
    assert not check.has_access
    assert check.reason == "module_not_found"
    assert check.days_remaining == 0
    assert not check.unavailable


def test_end_session_is_idempotent(stack: Stack) -> None:
    module = seed_course(stack.courses)
    enroll(stack.enrollments, "alice", module.course_id, now=stack.clock())
    result = asyncio.run(stack.service.request_video_access(ALICE, module.id, 60))
    assert result.session_id is not None

    assert asyncio.run(stack.service.end_video_session(ALICE, result.session_id))
    assert asyncio.run(stack.service.end_video_session(ALICE, result.session_id))
    assert asyncio.run(stack.service.end_video_session(ALICE, "unknown"))


def test_end_session_of_another_user_is_a_silent_no_op(stack: Stack) -> None:
    module = seed_course(stack.courses)
    enroll(stack.enrollments, "alice", module.course_id, now=stack.clock())
    result = asyncio.run(stack.service.request_video_access(ALICE, module.id, 60))
    assert result.session_id is not None

    assert asyncio.run(stack.service.end_video_session(BOB, result.session_id))

    assert len(_active(stack)) == 1


def test_admin_can_end_any_session(stack: Stack) -> None:
    module = seed_course(stack.courses)
    enroll(stack.enrollments, "alice", module.course_id, now=stack.clock())
    result = asyncio.run(stack.service.request_video_access(ALICE, module.id, 60))
    assert result.session_id is not None

    asyncio.run(stack.service.end_video_session(ADMIN, result.session_id))

    assert _active(stack) == []


def test_heartbeat_is_owner_only(stack: Stack) -> None:
    module = seed_course(stack.courses)
    enroll(stack.enrollments, "alice", module.course_id, now=stack.clock())
    result = asyncio.run(stack.service.request_video_access(ALICE, module.id, 60))
    assert result.session_id is not None

    stack.clock.advance(minutes=10)
    session = asyncio.run(stack.service.heartbeat(ALICE, result.session_id))
    assert session.last_heartbeat_at == stack.clock.now

    with pytest.raises(NotFoundError):
        asyncio.run(stack.service.heartbeat(BOB, result.session_id))
