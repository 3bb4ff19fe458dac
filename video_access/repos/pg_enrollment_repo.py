"""PostgreSQL implementation of EnrollmentRepo (read-only)."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from video_access.core.errors import InfrastructureError
from video_access.db.tables import EnrollmentRow
from video_access.models.enrollment import Enrollment


class PgEnrollmentRepo:
    """Satisfies the EnrollmentRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, user_id: str, course_id: UUID) -> Enrollment | None:
        stmt = select(EnrollmentRow).where(
            EnrollmentRow.user_id == user_id,
            EnrollmentRow.course_id == course_id,
        )
        try:
            row = (await self._session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise InfrastructureError("enrollment store unavailable") from e
        if row is None:
            return None
        return Enrollment(
            user_id=row.user_id,
            course_id=row.course_id,
            enrollment_date=row.enrollment_date,
            expiry_date=row.expiry_date,
            is_active=row.is_active,
            progress_percent=row.progress_percent,
        )
