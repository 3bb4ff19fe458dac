from __future__ import annotations

import asyncio
import gc
import uuid
from datetime import timedelta

import pytest

from tests.conftest import Stack, build_stack
from video_access.core.errors import ConcurrencySessionLimitError, NotFoundError
from video_access.models.session import (
    InvalidSessionTransition,
    SessionState,
    StreamingSession,
)
from video_access.services.session_store import SessionPolicy


def _sid() -> str:
    return str(uuid.uuid4())


def test_start_then_cap_reached(stack: Stack) -> None:
    registry = stack.registry

    async def scenario() -> None:
        assert await registry.can_start_session("alice")
        await registry.start_session("alice", uuid.uuid4(), _sid())
        assert not await registry.can_start_session("alice")
        with pytest.raises(ConcurrencySessionLimitError):
            await registry.start_session("alice", uuid.uuid4(), _sid())

    asyncio.run(scenario())
    assert len(asyncio.run(registry.active_sessions("alice"))) == 1


def test_cap_is_per_user(stack: Stack) -> None:
    async def scenario() -> None:
        await stack.registry.start_session("alice", uuid.uuid4(), _sid())
        await stack.registry.start_session("bob", uuid.uuid4(), _sid())

    asyncio.run(scenario())


def test_concurrent_starts_admit_exactly_one(stack: Stack) -> None:
    async def scenario() -> list:
        return await asyncio.gather(
            stack.registry.start_session("alice", uuid.uuid4(), _sid()),
            stack.registry.start_session("alice", uuid.uuid4(), _sid()),
            return_exceptions=True,
        )

    results = asyncio.run(scenario())

    started = [r for r in results if isinstance(r, StreamingSession)]
    rejected = [r for r in results if isinstance(r, ConcurrencySessionLimitError)]
    assert len(started) == 1
    assert len(rejected) == 1
    assert len(asyncio.run(stack.registry.active_sessions("alice"))) == 1


def test_start_is_idempotent_on_session_id(stack: Stack) -> None:
    sid = _sid()
    module_id = uuid.uuid4()

    async def scenario():
        first = await stack.registry.start_session("alice", module_id, sid)
        stack.clock.advance(seconds=5)
        second = await stack.registry.start_session("alice", module_id, sid)
        return first, second

    first, second = asyncio.run(scenario())
    assert first == second


def test_end_session_twice_succeeds(stack: Stack) -> None:
    sid = _sid()

    async def scenario() -> None:
        await stack.registry.start_session("alice", uuid.uuid4(), sid)
        await stack.registry.end_session(sid)
        await stack.registry.end_session(sid)
        await stack.registry.end_session("never-existed")

    asyncio.run(scenario())

    session = asyncio.run(stack.registry.get_session(sid))
    assert session is not None
    assert session.state is SessionState.ENDED
    assert session.ended_at == stack.clock.now


def test_ending_frees_the_slot(stack: Stack) -> None:
    sid = _sid()

    async def scenario() -> None:
        await stack.registry.start_session("alice", uuid.uuid4(), sid)
        await stack.registry.end_session(sid)
        await stack.registry.start_session("alice", uuid.uuid4(), _sid())

    asyncio.run(scenario())


def test_store_forgets_users_without_active_sessions(stack: Stack) -> None:
    async def scenario() -> None:
        for user_id in ("alice", "bob"):
            sid = _sid()
            await stack.registry.start_session(user_id, uuid.uuid4(), sid)
            await stack.registry.end_session(sid)
        await stack.registry.start_session("carol", uuid.uuid4(), _sid())
        stack.clock.advance(minutes=31)
        await stack.registry.active_sessions("carol")

    asyncio.run(scenario())
    gc.collect()

    assert stack.store._active == {}
    assert len(stack.store._locks) == 0


def test_idle_session_is_swept_on_next_start(stack: Stack) -> None:
    sid = _sid()

    async def scenario() -> None:
        await stack.registry.start_session("alice", uuid.uuid4(), sid)
        stack.clock.advance(minutes=31)
        assert await stack.registry.can_start_session("alice")
        await stack.registry.start_session("alice", uuid.uuid4(), _sid())

    asyncio.run(scenario())

    swept = asyncio.run(stack.registry.get_session(sid))
    assert swept is not None
    assert swept.state is SessionState.EXPIRED


def test_heartbeat_keeps_session_alive(stack: Stack) -> None:
    sid = _sid()

    async def scenario() -> None:
        await stack.registry.start_session("alice", uuid.uuid4(), sid)
        for _ in range(3):
            stack.clock.advance(minutes=20)
            await stack.registry.heartbeat(sid)
        assert not await stack.registry.can_start_session("alice")

    asyncio.run(scenario())


def test_heartbeat_does_not_revive_idle_session(stack: Stack) -> None:
    sid = _sid()

    async def scenario() -> None:
        await stack.registry.start_session("alice", uuid.uuid4(), sid)
        stack.clock.advance(minutes=45)
        with pytest.raises(NotFoundError):
            await stack.registry.heartbeat(sid)

    asyncio.run(scenario())
    session = asyncio.run(stack.registry.get_session(sid))
    assert session is not None
    assert session.state is SessionState.EXPIRED


def test_heartbeat_unknown_or_ended_session(stack: Stack) -> None:
    sid = _sid()

    async def scenario() -> None:
        with pytest.raises(NotFoundError):
            await stack.registry.heartbeat("missing")
        await stack.registry.start_session("alice", uuid.uuid4(), sid)
        await stack.registry.end_session(sid)
        with pytest.raises(NotFoundError):
            await stack.registry.heartbeat(sid)

    asyncio.run(scenario())


def test_module_scope_caps_per_module() -> None:
    stack = build_stack(session_policy=SessionPolicy(per_module=True))
    module_a, module_b = uuid.uuid4(), uuid.uuid4()

    async def scenario() -> None:
        await stack.registry.start_session("alice", module_a, _sid())
        assert await stack.registry.can_start_session("alice", module_b)
        assert not await stack.registry.can_start_session("alice", module_a)
        await stack.registry.start_session("alice", module_b, _sid())
        with pytest.raises(ConcurrencySessionLimitError):
            await stack.registry.start_session("alice", module_a, _sid())

    asyncio.run(scenario())


def test_higher_cap() -> None:
    stack = build_stack(
        session_policy=SessionPolicy(max_active=2, idle_timeout=timedelta(minutes=5))
    )

    async def scenario() -> None:
        await stack.registry.start_session("alice", uuid.uuid4(), _sid())
        await stack.registry.start_session("alice", uuid.uuid4(), _sid())
        with pytest.raises(ConcurrencySessionLimitError):
            await stack.registry.start_session("alice", uuid.uuid4(), _sid())

    asyncio.run(scenario())


# ---- state machine ----


def test_terminal_sessions_reject_transitions(stack: Stack) -> None:
    session = StreamingSession.start(
        session_id=_sid(), user_id="alice", module_id=uuid.uuid4(), now=stack.clock()
    )
    ended = session.end(stack.clock())
    with pytest.raises(InvalidSessionTransition):
        ended.expire(stack.clock())
    with pytest.raises(InvalidSessionTransition):
        ended.touch(stack.clock())
    with pytest.raises(InvalidSessionTransition):
        session.expire(stack.clock()).end(stack.clock())
