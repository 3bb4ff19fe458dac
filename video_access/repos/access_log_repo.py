from __future__ import annotations

from datetime import datetime
from typing import Protocol

from video_access.models.access_log import AccessLogEntry
from video_access.models.decision import FAULT_REASONS


class AccessLogRepo(Protocol):
    async def append(self, entry: AccessLogEntry) -> None: ...
    async def count_failed_since(self, user_id: str, since: datetime) -> int:
        """Denials at or after ``since``.  Fault outcomes are not counted."""
        ...

    async def list_recent(self, user_id: str, limit: int) -> list[AccessLogEntry]: ...


class InMemoryAccessLogRepo:
    def __init__(self) -> None:
        self._entries: list[AccessLogEntry] = []

    async def append(self, entry: AccessLogEntry) -> None:
        self._entries.append(entry)

    async def count_failed_since(self, user_id: str, since: datetime) -> int:
        return sum(
            1
            for e in self._entries
            if e.user_id == user_id
            and not e.granted
            and e.reason_code not in FAULT_REASONS
            and e.timestamp_utc >= since
        )

    async def list_recent(self, user_id: str, limit: int) -> list[AccessLogEntry]:
        mine = [e for e in self._entries if e.user_id == user_id]
        return sorted(mine, key=lambda e: e.timestamp_utc, reverse=True)[:limit]

    def clear(self) -> None:
        self._entries.clear()
