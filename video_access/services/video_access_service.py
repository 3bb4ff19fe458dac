"""External interface of the video access core.

Thin orchestration over the policy evaluator, the session registry and
the URL issuer.  Every operation takes the caller's Principal explicitly
and returns a result value; only caller faults (bad ttl, unknown
session) raise.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from video_access.core.errors import (
    ConcurrencySessionLimitError,
    InfrastructureError,
    NotFoundError,
)
from video_access.models.capability import IssuedCapability
from video_access.models.decision import Decision, Fault, Granted, ReasonCode
from video_access.models.principal import ClientInfo, Principal
from video_access.models.session import StreamingSession
from video_access.services.access_policy import AccessPolicyEvaluator
from video_access.services.session_registry import SessionRegistry
from video_access.services.signed_url_issuer import SignedUrlIssuer, validate_ttl

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class VideoAccessResult:
    decision: Decision
    streaming_url: str | None = None
    session_id: str | None = None
    expires_at: datetime | None = None  # URL expiry, not enrollment expiry

    @property
    def granted(self) -> bool:
        return self.decision.granted

    @property
    def days_remaining(self) -> int | None:
        if isinstance(self.decision, Granted):
            return self.decision.days_remaining
        return None

    @property
    def denial_reason(self) -> str | None:
        if self.granted:
            return None
        return self.decision.reason.value


@dataclass(frozen=True, slots=True)
class AccessValidation:
    has_access: bool
    reason: str
    days_remaining: int = 0
    unavailable: bool = False  # evaluation faulted; not a real "no"


class VideoAccessService:
    def __init__(
        self,
        evaluator: AccessPolicyEvaluator,
        sessions: SessionRegistry,
        issuer: SignedUrlIssuer,
    ) -> None:
        self._evaluator = evaluator
        self._sessions = sessions
        self._issuer = issuer

    async def request_video_access(
        self,
        principal: Principal,
        module_id: UUID,
        ttl_minutes: int,
        client: ClientInfo | None = None,
    ) -> VideoAccessResult:
        ttl = validate_ttl(ttl_minutes)
        user_id = principal.user_id

        async with self._evaluator.evaluation(principal, module_id, client) as ev:
            if not ev.granted or ev.module is None:
                return VideoAccessResult(ev.decision)

            session: StreamingSession | None = None
            capability: IssuedCapability | None = None
            try:
                if not await self._sessions.can_start_session(user_id, module_id):
                    ev.deny(ReasonCode.SESSION_LIMIT)
                    return VideoAccessResult(ev.decision)
                session = await self._sessions.start_session(
                    user_id, module_id, str(uuid.uuid4())
                )
                capability = await self._issuer.issue_url(
                    ev.module.video_key, user_id, ttl
                )
            except ConcurrencySessionLimitError:
                # Lost the race between the pre-check and the reservation.
                ev.deny(ReasonCode.SESSION_LIMIT)
                return VideoAccessResult(ev.decision)
            except InfrastructureError:
                logger.exception(
                    "Video access failed after grant user=%s module=%s",
                    user_id,
                    module_id,
                )
                ev.fault()
                return VideoAccessResult(ev.decision)
            finally:
                # A reserved slot without a URL is a slot nobody can watch.
                if session is not None and capability is None:
                    await self._release(session.session_id)

            return _granted_result(ev.decision, session, capability)

    async def validate_access(
        self,
        principal: Principal,
        module_id: UUID,
        client: ClientInfo | None = None,
    ) -> AccessValidation:
        decision = await self._evaluator.evaluate(principal, module_id, client)
        if isinstance(decision, Granted):
            return AccessValidation(
                has_access=True,
                reason=decision.reason.value,
                days_remaining=decision.days_remaining,
            )
        return AccessValidation(
            has_access=False,
            reason=decision.reason.value,
            unavailable=isinstance(decision, Fault),
        )

    async def end_video_session(self, principal: Principal, session_id: str) -> bool:
        """End a session.  Always reports success.

        A session owned by someone else is left alone without saying so,
        so the response never reveals which session ids exist.
        """
        session = await self._sessions.get_session(session_id)
        if session is None:
            return True
        if session.user_id != principal.user_id and not principal.is_platform_admin():
            logger.warning(
                "User %s tried to end session %s owned by another user",
                principal.user_id,
                session_id,
                extra={"user_id": principal.user_id, "session_id": session_id},
            )
            return True
        await self._sessions.end_session(session_id)
        return True

    async def heartbeat(
        self, principal: Principal, session_id: str
    ) -> StreamingSession:
        session = await self._sessions.get_session(session_id)
        if session is None or session.user_id != principal.user_id:
            raise NotFoundError("session not found")
        return await self._sessions.heartbeat(session_id)

    async def _release(self, session_id: str) -> None:
        try:
            await self._sessions.end_session(session_id)
        except InfrastructureError:
            logger.exception("Could not release session %s", session_id)


def _granted_result(
    decision: Decision,
    session: StreamingSession,
    capability: IssuedCapability,
) -> VideoAccessResult:
    return VideoAccessResult(
        decision=decision,
        streaming_url=capability.url,
        session_id=session.session_id,
        expires_at=capability.expires_at,
    )
