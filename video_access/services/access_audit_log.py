"""Append-only record of every access decision.

Writes are best-effort: a failing audit store must never turn a grant
into an error, so ``record`` logs and counts the failure instead of
raising.  Reads feed the failed-attempt throttle and do raise
InfrastructureError; the access policy decides what that means.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from video_access.core.clock import Clock, utcnow
from video_access.core.metrics import AUDIT_WRITE_FAILURES
from video_access.models.access_log import AccessLogEntry
from video_access.models.principal import ClientInfo
from video_access.repos.access_log_repo import AccessLogRepo

logger = logging.getLogger(__name__)


class AccessAuditLog:
    def __init__(self, repo: AccessLogRepo, *, clock: Clock = utcnow) -> None:
        self._repo = repo
        self._clock = clock

    async def record(
        self,
        user_id: str,
        module_id: UUID,
        granted: bool,
        reason_code: str,
        client: ClientInfo | None = None,
    ) -> AccessLogEntry:
        client = client or ClientInfo()
        entry = AccessLogEntry.new(
            user_id=user_id,
            module_id=module_id,
            timestamp_utc=self._clock(),
            granted=granted,
            reason_code=reason_code,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        try:
            await self._repo.append(entry)
        except Exception:
            AUDIT_WRITE_FAILURES.inc()
            logger.exception(
                "Audit write failed user=%s module=%s reason=%s",
                user_id,
                module_id,
                reason_code,
                extra={"user_id": user_id, "module_id": str(module_id)},
            )
        return entry

    async def count_failed_attempts(self, user_id: str, window: timedelta) -> int:
        since = self._clock() - window
        return await self._repo.count_failed_since(user_id, since)

    async def recent_entries(
        self, user_id: str, limit: int = 50
    ) -> list[AccessLogEntry]:
        return await self._repo.list_recent(user_id, limit)
