"""Access policy: one decision per request, always audited.

The evaluator combines the enrollment gate with the failed-attempt
throttle and writes exactly one audit entry for the outcome.  Callers
that need to do more work after a grant (reserve a session, mint a URL)
use the ``evaluation`` context so a later downgrade is what gets
recorded, still exactly once:

    async with evaluator.evaluation(principal, module_id, client) as ev:
        if isinstance(ev.decision, Granted):
            ...
            ev.deny(ReasonCode.SESSION_LIMIT)

Throttle reads that fail are handled per AUDIT_READ_FAILURE_POLICY:
fail_closed (default) returns Fault(audit_unavailable), fail_open logs a
warning and evaluates as if there were no prior failures.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from uuid import UUID

from video_access.core.clock import Clock, utcnow
from video_access.core.config import Settings
from video_access.core.errors import InfrastructureError
from video_access.core.metrics import ACCESS_DECISIONS
from video_access.models.course import CourseModule
from video_access.models.decision import (
    Decision,
    Denied,
    Fault,
    Granted,
    ReasonCode,
)
from video_access.models.principal import ClientInfo, Principal
from video_access.services.access_audit_log import AccessAuditLog
from video_access.services.enrollment_gate import EnrollmentGate

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ThrottlePolicy:
    threshold: int = 10
    window: timedelta = timedelta(hours=1)
    fail_open: bool = False

    @staticmethod
    def from_settings(settings: Settings) -> ThrottlePolicy:
        return ThrottlePolicy(
            threshold=settings.failed_attempt_threshold,
            window=timedelta(seconds=settings.failed_attempt_window_seconds),
            fail_open=settings.audit_read_failure_policy == "fail_open",
        )


class Evaluation:
    """Mutable outcome holder for one ``evaluation`` block."""

    def __init__(
        self,
        principal: Principal,
        module_id: UUID,
        decision: Decision,
        module: CourseModule | None = None,
    ) -> None:
        self.principal = principal
        self.module_id = module_id
        self.decision = decision
        self.module = module

    @property
    def granted(self) -> bool:
        return isinstance(self.decision, Granted)

    def deny(self, reason: ReasonCode) -> None:
        self.decision = Denied(reason)

    def fault(self, reason: ReasonCode = ReasonCode.INTERNAL_ERROR) -> None:
        self.decision = Fault(reason)


class AccessPolicyEvaluator:
    def __init__(
        self,
        gate: EnrollmentGate,
        audit: AccessAuditLog,
        throttle: ThrottlePolicy | None = None,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self._gate = gate
        self._audit = audit
        self._throttle = throttle or ThrottlePolicy()
        self._clock = clock

    async def evaluate(
        self,
        principal: Principal,
        module_id: UUID,
        client: ClientInfo | None = None,
    ) -> Decision:
        async with self.evaluation(principal, module_id, client) as ev:
            pass
        return ev.decision

    @asynccontextmanager
    async def evaluation(
        self,
        principal: Principal,
        module_id: UUID,
        client: ClientInfo | None = None,
    ) -> AsyncIterator[Evaluation]:
        ev = await self._decide(principal, module_id)
        try:
            yield ev
        except Exception:
            ev.fault()
            raise
        finally:
            await self._record(ev, client)

    async def _decide(self, principal: Principal, module_id: UUID) -> Evaluation:
        user_id = principal.user_id
        try:
            check = await self._gate.check(user_id, module_id)
        except InfrastructureError:
            logger.exception(
                "Enrollment lookup failed user=%s module=%s", user_id, module_id
            )
            return Evaluation(principal, module_id, Fault(ReasonCode.INTERNAL_ERROR))

        if not check.ok:
            return Evaluation(
                principal,
                module_id,
                Denied(ReasonCode.from_enrollment(check.status)),
                check.module,
            )

        try:
            failures = await self._audit.count_failed_attempts(
                user_id, self._throttle.window
            )
        except InfrastructureError:
            if not self._throttle.fail_open:
                logger.exception("Failed-attempt count unavailable user=%s", user_id)
                return Evaluation(
                    principal,
                    module_id,
                    Fault(ReasonCode.AUDIT_UNAVAILABLE),
                    check.module,
                )
            logger.warning(
                "Failed-attempt count unavailable user=%s; throttling skipped",
                user_id,
                exc_info=True,
            )
            failures = 0

        if failures > self._throttle.threshold:
            return Evaluation(
                principal, module_id, Denied(ReasonCode.RATE_LIMITED), check.module
            )

        enrollment = check.enrollment
        if enrollment is None:  # check.ok implies an enrollment
            return Evaluation(principal, module_id, Fault(), check.module)
        decision = Granted(
            expires_at=enrollment.expiry_date,
            days_remaining=enrollment.days_remaining(self._clock()),
        )
        return Evaluation(principal, module_id, decision, check.module)

    async def _record(self, ev: Evaluation, client: ClientInfo | None) -> None:
        decision = ev.decision
        outcome = (
            "granted"
            if isinstance(decision, Granted)
            else "fault" if isinstance(decision, Fault) else "denied"
        )
        ACCESS_DECISIONS.labels(outcome=outcome, reason=decision.reason.value).inc()
        await self._audit.record(
            ev.principal.user_id,
            ev.module_id,
            decision.granted,
            decision.reason.value,
            client,
        )
        log = logger.info if outcome == "granted" else logger.warning
        log(
            "Access %s user=%s module=%s reason=%s",
            outcome,
            ev.principal.user_id,
            ev.module_id,
            decision.reason.value,
            extra={
                "user_id": ev.principal.user_id,
                "module_id": str(ev.module_id),
                "reason_code": decision.reason.value,
                "granted": decision.granted,
            },
        )
