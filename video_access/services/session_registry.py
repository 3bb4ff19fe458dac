from __future__ import annotations

import logging
from uuid import UUID

from video_access.core.clock import Clock, utcnow
from video_access.core.errors import ConcurrencySessionLimitError, NotFoundError
from video_access.core.metrics import SESSION_TRANSITIONS
from video_access.models.session import StreamingSession
from video_access.services.session_store import (
    SessionPolicy,
    SessionStore,
    StartOutcome,
)

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Tracks streaming sessions and enforces the per-user concurrency cap.

    The cap itself is enforced inside the store's atomic ``start``;
    ``can_start_session`` is an advisory pre-check that lets callers
    skip the reservation when the answer is already known.
    """

    def __init__(
        self,
        store: SessionStore,
        policy: SessionPolicy | None = None,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._policy = policy or SessionPolicy()
        self._clock = clock

    @property
    def policy(self) -> SessionPolicy:
        return self._policy

    async def can_start_session(
        self, user_id: str, module_id: UUID | None = None
    ) -> bool:
        active = await self.active_sessions(user_id)
        if self._policy.per_module and module_id is not None:
            active = [s for s in active if s.module_id == module_id]
        return len(active) < self._policy.max_active

    async def start_session(
        self, user_id: str, module_id: UUID, session_id: str
    ) -> StreamingSession:
        """Reserve a viewer slot.

        Idempotent on ``session_id``: a retry returns the stored session.
        Raises ConcurrencySessionLimitError when the cap is reached.
        """
        now = self._clock()
        candidate = StreamingSession.start(
            session_id=session_id, user_id=user_id, module_id=module_id, now=now
        )
        result = await self._store.start(candidate, self._policy, now)
        self._count_expired(result.expired)

        if result.outcome is StartOutcome.AT_CAPACITY:
            SESSION_TRANSITIONS.labels(transition="rejected").inc()
            logger.warning(
                "Session limit reached user=%s module=%s max_active=%d",
                user_id,
                module_id,
                self._policy.max_active,
                extra={"user_id": user_id, "module_id": str(module_id)},
            )
            raise ConcurrencySessionLimitError()

        if result.outcome is StartOutcome.DUPLICATE:
            logger.info("Session %s already exists; start is a no-op", session_id)
        else:
            SESSION_TRANSITIONS.labels(transition="started").inc()
            logger.info(
                "Started streaming session %s user=%s module=%s",
                session_id,
                user_id,
                module_id,
                extra={
                    "user_id": user_id,
                    "module_id": str(module_id),
                    "session_id": session_id,
                },
            )
        # DUPLICATE of a hash that expired from Redis between calls
        return result.session or candidate

    async def end_session(self, session_id: str) -> None:
        ended = await self._store.end(session_id, self._clock())
        if ended is None:
            logger.debug("End requested for inactive session %s", session_id)
            return
        SESSION_TRANSITIONS.labels(transition="ended").inc()
        logger.info(
            "Ended streaming session %s",
            session_id,
            extra={"session_id": session_id, "user_id": ended.user_id},
        )

    async def heartbeat(self, session_id: str) -> StreamingSession:
        session = await self._store.touch(session_id, self._policy, self._clock())
        if session is None:
            raise NotFoundError("session not found")
        if not session.is_active:
            raise NotFoundError("session is no longer active")
        return session

    async def active_sessions(self, user_id: str) -> list[StreamingSession]:
        result = await self._store.active_for_user(user_id, self._policy, self._clock())
        self._count_expired(result.expired)
        return result.active

    async def get_session(self, session_id: str) -> StreamingSession | None:
        return await self._store.get(session_id)

    def _count_expired(self, n: int) -> None:
        if n:
            SESSION_TRANSITIONS.labels(transition="expired").inc(n)
            logger.info("Expired %d idle streaming session(s)", n)
