from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from uuid import UUID


class SessionState(str, enum.Enum):
    ACTIVE = "active"
    ENDED = "ended"
    EXPIRED = "expired"


class InvalidSessionTransition(Exception):
    pass


@dataclass(frozen=True, slots=True)
class StreamingSession:
    """A server-tracked claim on one concurrent viewer slot.

    State machine: ACTIVE -> ENDED (explicit close) and ACTIVE -> EXPIRED
    (idle sweep).  Both are terminal; nothing re-enters ACTIVE.
    """

    session_id: str
    user_id: str
    module_id: UUID
    started_at: datetime
    last_heartbeat_at: datetime
    state: SessionState = SessionState.ACTIVE
    ended_at: datetime | None = None

    @staticmethod
    def start(
        *, session_id: str, user_id: str, module_id: UUID, now: datetime
    ) -> StreamingSession:
        return StreamingSession(
            session_id=session_id,
            user_id=user_id,
            module_id=module_id,
            started_at=now,
            last_heartbeat_at=now,
        )

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    def is_idle(self, now: datetime, idle_timeout: timedelta) -> bool:
        return now - self.last_heartbeat_at > idle_timeout

    def end(self, now: datetime) -> StreamingSession:
        self._require_active("end")
        return replace(self, state=SessionState.ENDED, ended_at=now)

    def expire(self, now: datetime) -> StreamingSession:
        self._require_active("expire")
        return replace(self, state=SessionState.EXPIRED, ended_at=now)

    def touch(self, now: datetime) -> StreamingSession:
        self._require_active("heartbeat")
        return replace(self, last_heartbeat_at=now)

    def _require_active(self, action: str) -> None:
        if not self.is_active:
            raise InvalidSessionTransition(
                f"cannot {action} session {self.session_id} in state {self.state.value}"
            )
