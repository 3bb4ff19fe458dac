"""PostgreSQL implementation of AccessLogRepo.

Takes the session *factory* rather than the request session: each append
runs in its own short transaction, so a denial is persisted even when the
surrounding request later rolls back, and a failed audit INSERT cannot
poison the request transaction.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from video_access.core.errors import InfrastructureError
from video_access.db.tables import VideoAccessLogRow
from video_access.models.access_log import AccessLogEntry
from video_access.models.decision import FAULT_REASONS


class PgAccessLogRepo:
    """Satisfies the AccessLogRepo Protocol using PostgreSQL (INSERT-only)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def append(self, entry: AccessLogEntry) -> None:
        row = VideoAccessLogRow(
            id=entry.id,
            user_id=entry.user_id,
            module_id=entry.module_id,
            timestamp_utc=entry.timestamp_utc,
            granted=entry.granted,
            reason_code=entry.reason_code,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
        )
        try:
            async with self._session_factory() as session, session.begin():
                session.add(row)
        except SQLAlchemyError as e:
            raise InfrastructureError("audit log write failed") from e

    async def count_failed_since(self, user_id: str, since: datetime) -> int:
        stmt = (
            select(func.count())
            .select_from(VideoAccessLogRow)
            .where(VideoAccessLogRow.user_id == user_id)
            .where(VideoAccessLogRow.granted.is_(False))
            .where(VideoAccessLogRow.reason_code.not_in(sorted(FAULT_REASONS)))
            .where(VideoAccessLogRow.timestamp_utc >= since)
        )
        try:
            async with self._session_factory() as session:
                return int((await session.execute(stmt)).scalar_one())
        except SQLAlchemyError as e:
            raise InfrastructureError("audit log read failed") from e

    async def list_recent(self, user_id: str, limit: int) -> list[AccessLogEntry]:
        stmt = (
            select(VideoAccessLogRow)
            .where(VideoAccessLogRow.user_id == user_id)
            .order_by(VideoAccessLogRow.timestamp_utc.desc())
            .limit(limit)
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as e:
            raise InfrastructureError("audit log read failed") from e
        return [_row_to_entry(r) for r in rows]


def _row_to_entry(row: VideoAccessLogRow) -> AccessLogEntry:
    return AccessLogEntry(
        id=row.id,
        user_id=row.user_id,
        module_id=row.module_id,
        timestamp_utc=row.timestamp_utc,
        granted=row.granted,
        reason_code=row.reason_code,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
    )
