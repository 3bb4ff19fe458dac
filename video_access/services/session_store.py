"""Streaming session storage with an atomic per-user concurrency cap.

THE CHECK-THEN-ACT RACE
------------------------
"May this user start a session?" followed by "start the session" is a
classic check-then-act sequence.  Two requests for the same user can
both see zero active sessions, both insert, and the user ends up with
two concurrent streams even though the cap is one.

Both stores close the race by doing the sweep, the count and the insert
as ONE atomic step (``start``):

  InMemorySessionStore: a per-user asyncio.Lock spans the whole step.
  RedisSessionStore:    a Lua script; Redis runs scripts atomically, so
                        no other command interleaves between the count
                        and the insert.  This is what makes the cap hold
                        across several API replicas.

LAZY IDLE SWEEP
----------------
There is no background reaper.  Every call that reads a user's active
set first marks sessions whose last heartbeat is older than the idle
timeout as EXPIRED.  A stale session therefore only frees its slot when
the same user next tries to start one, which is exactly when it matters.
"""

from __future__ import annotations

import asyncio
import enum
import weakref
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Protocol, runtime_checkable
from uuid import UUID

from redis.exceptions import RedisError

from video_access.core.config import Settings
from video_access.core.errors import InfrastructureError
from video_access.models.session import SessionState, StreamingSession


@dataclass(frozen=True, slots=True)
class SessionPolicy:
    """Concurrency rules for streaming sessions.

    max_active:   N, the number of simultaneously active sessions allowed.
    idle_timeout: a session without a heartbeat for longer than this is
                  expired by the next sweep.
    per_module:   False (default) caps sessions per user across all
                  modules; True caps them per (user, module).
    """

    max_active: int = 1
    idle_timeout: timedelta = timedelta(minutes=30)
    per_module: bool = False

    @staticmethod
    def from_settings(settings: Settings) -> SessionPolicy:
        return SessionPolicy(
            max_active=settings.max_concurrent_sessions,
            idle_timeout=timedelta(seconds=settings.session_idle_timeout_seconds),
            per_module=settings.session_cap_scope == "module",
        )


class StartOutcome(str, enum.Enum):
    STARTED = "started"
    DUPLICATE = "duplicate"  # session_id already known: idempotent retry
    AT_CAPACITY = "at_capacity"


@dataclass(frozen=True, slots=True)
class StartResult:
    outcome: StartOutcome
    session: StreamingSession | None
    expired: int = 0


@dataclass(frozen=True, slots=True)
class SweepResult:
    active: list[StreamingSession]
    expired: int = 0


@runtime_checkable
class SessionStore(Protocol):
    async def start(
        self, session: StreamingSession, policy: SessionPolicy, now: datetime
    ) -> StartResult: ...

    async def active_for_user(
        self, user_id: str, policy: SessionPolicy, now: datetime
    ) -> SweepResult: ...

    async def get(self, session_id: str) -> StreamingSession | None: ...

    async def end(self, session_id: str, now: datetime) -> StreamingSession | None:
        """Transition ACTIVE -> ENDED.  Returns the ended session, or None
        when the session is unknown or already terminal."""
        ...

    async def touch(
        self, session_id: str, policy: SessionPolicy, now: datetime
    ) -> StreamingSession | None:
        """Refresh the heartbeat of an ACTIVE session.  A session that is
        already past the idle timeout is expired instead of revived."""
        ...


class InMemorySessionStore:
    """Per-process session store for dev/test.

    LIMITATION FOR PRODUCTION:
    Each API process has its own dict, so with two replicas a user could
    hold one session on each.  Use RedisSessionStore behind a load
    balancer.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, StreamingSession] = {}
        # user_id -> ids of sessions currently ACTIVE; no empty sets kept
        self._active: dict[str, set[str]] = {}
        # A lock lives only while some coroutine holds or awaits it.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    async def start(
        self, session: StreamingSession, policy: SessionPolicy, now: datetime
    ) -> StartResult:
        async with self._lock_for(session.user_id):
            existing = self._sessions.get(session.session_id)
            if existing is not None:
                return StartResult(StartOutcome.DUPLICATE, existing)

            expired = self._sweep(session.user_id, policy, now)
            active = self._active_sessions(session.user_id)
            if policy.per_module:
                active = [s for s in active if s.module_id == session.module_id]
            if len(active) >= policy.max_active:
                return StartResult(StartOutcome.AT_CAPACITY, None, expired)

            self._sessions[session.session_id] = session
            self._active.setdefault(session.user_id, set()).add(session.session_id)
            return StartResult(StartOutcome.STARTED, session, expired)

    async def active_for_user(
        self, user_id: str, policy: SessionPolicy, now: datetime
    ) -> SweepResult:
        async with self._lock_for(user_id):
            expired = self._sweep(user_id, policy, now)
            active = self._active_sessions(user_id)
        return SweepResult(
            active=sorted(active, key=lambda s: s.started_at), expired=expired
        )

    async def get(self, session_id: str) -> StreamingSession | None:
        return self._sessions.get(session_id)

    async def end(self, session_id: str, now: datetime) -> StreamingSession | None:
        session = self._sessions.get(session_id)
        if session is None or not session.is_active:
            return None
        async with self._lock_for(session.user_id):
            session = self._sessions[session_id]
            if not session.is_active:
                return None
            ended = session.end(now)
            self._sessions[session_id] = ended
            self._deactivate(session.user_id, session_id)
            return ended

    async def touch(
        self, session_id: str, policy: SessionPolicy, now: datetime
    ) -> StreamingSession | None:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        async with self._lock_for(session.user_id):
            session = self._sessions[session_id]
            if not session.is_active:
                return session
            if session.is_idle(now, policy.idle_timeout):
                updated = session.expire(now)
                self._deactivate(session.user_id, session_id)
            else:
                updated = session.touch(now)
            self._sessions[session_id] = updated
            return updated

    def clear(self) -> None:
        """Drop all sessions (used in tests)."""
        self._sessions.clear()
        self._active.clear()

    def _active_sessions(self, user_id: str) -> list[StreamingSession]:
        return [self._sessions[sid] for sid in self._active.get(user_id, ())]

    def _deactivate(self, user_id: str, session_id: str) -> None:
        ids = self._active.get(user_id)
        if ids is None:
            return
        ids.discard(session_id)
        if not ids:
            del self._active[user_id]

    def _sweep(self, user_id: str, policy: SessionPolicy, now: datetime) -> int:
        # Caller holds the user's lock.
        expired = 0
        for sid in list(self._active.get(user_id, ())):
            session = self._sessions[sid]
            if session.is_idle(now, policy.idle_timeout):
                self._sessions[sid] = session.expire(now)
                self._deactivate(user_id, sid)
                expired += 1
        return expired


class RedisSessionStore:
    """Redis-backed session store, shared by all API instances.

    Layout:
      vsession:{session_id}         hash (user_id, module_id, state, times)
      vsession:active:{user_id}     set of ACTIVE session ids for the user

    Timestamps are stored as Unix seconds (float).  Terminal sessions keep
    their hash for ``terminal_ttl`` seconds so idempotent end/heartbeat
    calls still see them, then Redis deletes them.  Active hashes carry a
    TTL of idle_timeout + terminal_ttl, refreshed on every heartbeat, so a
    session nobody sweeps still disappears on its own.
    """

    _SESSION_PREFIX = "vsession:"
    _ACTIVE_PREFIX = "vsession:active:"

    # KEYS[1] = session hash, KEYS[2] = user's active set
    # ARGV: session_id, user_id, module_id, now, idle_timeout, max_active,
    #       per_module (0/1), terminal_ttl, session key prefix
    # Returns: {outcome, expired_count}
    _START_SCRIPT = """
    local session_key = KEYS[1]
    local active_key = KEYS[2]
    local now = tonumber(ARGV[4])
    local idle_timeout = tonumber(ARGV[5])
    local max_active = tonumber(ARGV[6])
    local per_module = ARGV[7] == '1'
    local terminal_ttl = tonumber(ARGV[8])
    local prefix = ARGV[9]

    if redis.call('EXISTS', session_key) == 1 then
        return {'duplicate', 0}
    end

    local expired = 0
    local count = 0
    for _, other in ipairs(redis.call('SMEMBERS', active_key)) do
        local other_key = prefix .. other
        local f = redis.call('HMGET', other_key, 'state', 'last_heartbeat_at', 'module_id')
        if f[1] ~= 'active' then
            redis.call('SREM', active_key, other)
        elseif now - tonumber(f[2]) > idle_timeout then
            redis.call('HSET', other_key, 'state', 'expired', 'ended_at', ARGV[4])
            redis.call('EXPIRE', other_key, terminal_ttl)
            redis.call('SREM', active_key, other)
            expired = expired + 1
        elseif (not per_module) or f[3] == ARGV[3] then
            count = count + 1
        end
    end

    if count >= max_active then
        return {'at_capacity', expired}
    end

    redis.call('HSET', session_key,
        'session_id', ARGV[1], 'user_id', ARGV[2], 'module_id', ARGV[3],
        'state', 'active', 'started_at', ARGV[4], 'last_heartbeat_at', ARGV[4])
    redis.call('EXPIRE', session_key, math.ceil(idle_timeout) + terminal_ttl)
    redis.call('SADD', active_key, ARGV[1])
    redis.call('EXPIRE', active_key, math.ceil(idle_timeout) + terminal_ttl)
    return {'started', expired}
    """

    # KEYS[1] = user's active set
    # ARGV: now, idle_timeout, terminal_ttl, session key prefix
    # Returns: {expired_count, active_id_1, active_id_2, ...}
    _SWEEP_SCRIPT = """
    local active_key = KEYS[1]
    local now = tonumber(ARGV[1])
    local idle_timeout = tonumber(ARGV[2])
    local terminal_ttl = tonumber(ARGV[3])
    local prefix = ARGV[4]

    local result = {0}
    for _, sid in ipairs(redis.call('SMEMBERS', active_key)) do
        local key = prefix .. sid
        local f = redis.call('HMGET', key, 'state', 'last_heartbeat_at')
        if f[1] ~= 'active' then
            redis.call('SREM', active_key, sid)
        elseif now - tonumber(f[2]) > idle_timeout then
            redis.call('HSET', key, 'state', 'expired', 'ended_at', ARGV[1])
            redis.call('EXPIRE', key, terminal_ttl)
            redis.call('SREM', active_key, sid)
            result[1] = result[1] + 1
        else
            table.insert(result, sid)
        end
    end
    return result
    """

    # KEYS[1] = session hash
    # ARGV: now, terminal_ttl, active set prefix
    # Returns: 1 if the session moved ACTIVE -> ENDED, else 0
    _END_SCRIPT = """
    local f = redis.call('HMGET', KEYS[1], 'state', 'user_id', 'session_id')
    if f[1] ~= 'active' then
        return 0
    end
    redis.call('HSET', KEYS[1], 'state', 'ended', 'ended_at', ARGV[1])
    redis.call('EXPIRE', KEYS[1], tonumber(ARGV[2]))
    redis.call('SREM', ARGV[3] .. f[2], f[3])
    return 1
    """

    # KEYS[1] = session hash
    # ARGV: now, idle_timeout, terminal_ttl, active set prefix
    # Returns: 0 unknown/terminal, 1 refreshed, -1 expired by this call
    _TOUCH_SCRIPT = """
    local f = redis.call('HMGET', KEYS[1], 'state', 'last_heartbeat_at', 'user_id', 'session_id')
    if f[1] ~= 'active' then
        return 0
    end
    local now = tonumber(ARGV[1])
    local idle_timeout = tonumber(ARGV[2])
    local terminal_ttl = tonumber(ARGV[3])
    if now - tonumber(f[2]) > idle_timeout then
        redis.call('HSET', KEYS[1], 'state', 'expired', 'ended_at', ARGV[1])
        redis.call('EXPIRE', KEYS[1], terminal_ttl)
        redis.call('SREM', ARGV[4] .. f[3], f[4])
        return -1
    end
    redis.call('HSET', KEYS[1], 'last_heartbeat_at', ARGV[1])
    redis.call('EXPIRE', KEYS[1], math.ceil(idle_timeout) + terminal_ttl)
    redis.call('EXPIRE', ARGV[4] .. f[3], math.ceil(idle_timeout) + terminal_ttl)
    return 1
    """

    def __init__(self, redis_client, *, terminal_ttl_seconds: int = 86400) -> None:
        self._redis = redis_client
        self._terminal_ttl = terminal_ttl_seconds
        self._start = redis_client.register_script(self._START_SCRIPT)
        self._sweep = redis_client.register_script(self._SWEEP_SCRIPT)
        self._end = redis_client.register_script(self._END_SCRIPT)
        self._touch = redis_client.register_script(self._TOUCH_SCRIPT)

    async def start(
        self, session: StreamingSession, policy: SessionPolicy, now: datetime
    ) -> StartResult:
        with _redis_errors():
            outcome, expired = await self._start(
                keys=[
                    self._session_key(session.session_id),
                    self._active_key(session.user_id),
                ],
                args=[
                    session.session_id,
                    session.user_id,
                    str(session.module_id),
                    _ts(now),
                    policy.idle_timeout.total_seconds(),
                    policy.max_active,
                    "1" if policy.per_module else "0",
                    self._terminal_ttl,
                    self._SESSION_PREFIX,
                ],
            )
        result = StartOutcome(outcome)
        if result is StartOutcome.AT_CAPACITY:
            return StartResult(result, None, int(expired))
        if result is StartOutcome.DUPLICATE:
            return StartResult(result, await self.get(session.session_id), 0)
        return StartResult(result, session, int(expired))

    async def active_for_user(
        self, user_id: str, policy: SessionPolicy, now: datetime
    ) -> SweepResult:
        with _redis_errors():
            expired, *active_ids = await self._sweep(
                keys=[self._active_key(user_id)],
                args=[
                    _ts(now),
                    policy.idle_timeout.total_seconds(),
                    self._terminal_ttl,
                    self._SESSION_PREFIX,
                ],
            )
        sessions = []
        for sid in active_ids:
            session = await self.get(sid)
            if session is not None:
                sessions.append(session)
        return SweepResult(
            active=sorted(sessions, key=lambda s: s.started_at), expired=int(expired)
        )

    async def get(self, session_id: str) -> StreamingSession | None:
        with _redis_errors():
            data = await self._redis.hgetall(self._session_key(session_id))
        if not data:
            return None
        return _hash_to_session(data)

    async def end(self, session_id: str, now: datetime) -> StreamingSession | None:
        with _redis_errors():
            changed = await self._end(
                keys=[self._session_key(session_id)],
                args=[_ts(now), self._terminal_ttl, self._ACTIVE_PREFIX],
            )
        if not int(changed):
            return None
        return await self.get(session_id)

    async def touch(
        self, session_id: str, policy: SessionPolicy, now: datetime
    ) -> StreamingSession | None:
        with _redis_errors():
            await self._touch(
                keys=[self._session_key(session_id)],
                args=[
                    _ts(now),
                    policy.idle_timeout.total_seconds(),
                    self._terminal_ttl,
                    self._ACTIVE_PREFIX,
                ],
            )
        return await self.get(session_id)

    def _session_key(self, session_id: str) -> str:
        return f"{self._SESSION_PREFIX}{session_id}"

    def _active_key(self, user_id: str) -> str:
        return f"{self._ACTIVE_PREFIX}{user_id}"


@contextmanager
def _redis_errors() -> Iterator[None]:
    try:
        yield
    except RedisError as e:
        raise InfrastructureError("session store unavailable") from e


def _ts(value: datetime) -> float:
    return value.timestamp()


def _from_ts(raw: str) -> datetime:
    return datetime.fromtimestamp(float(raw), UTC)


def _hash_to_session(data: dict[str, str]) -> StreamingSession:
    ended_at = data.get("ended_at")
    return StreamingSession(
        session_id=data["session_id"],
        user_id=data["user_id"],
        module_id=UUID(data["module_id"]),
        started_at=_from_ts(data["started_at"]),
        last_heartbeat_at=_from_ts(data["last_heartbeat_at"]),
        state=SessionState(data["state"]),
        ended_at=_from_ts(ended_at) if ended_at else None,
    )
