from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID, uuid4


@dataclass(frozen=True, slots=True)
class AccessLogEntry:
    """One grant/deny decision.  Append-only; never updated once written."""

    id: UUID
    user_id: str
    module_id: UUID
    timestamp_utc: datetime
    granted: bool
    reason_code: str
    ip_address: str | None = None
    user_agent: str | None = None

    @staticmethod
    def new(
        *,
        user_id: str,
        module_id: UUID,
        timestamp_utc: datetime,
        granted: bool,
        reason_code: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AccessLogEntry:
        return AccessLogEntry(
            id=uuid4(),
            user_id=user_id,
            module_id=module_id,
            timestamp_utc=timestamp_utc,
            granted=granted,
            reason_code=reason_code,
            ip_address=ip_address,
            user_agent=user_agent,
        )
