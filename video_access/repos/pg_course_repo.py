"""PostgreSQL implementation of CourseRepo (read-only)."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from video_access.core.errors import InfrastructureError
from video_access.db.tables import CourseModuleRow, CourseRow
from video_access.models.course import Course, CourseModule


class PgCourseRepo:
    """Satisfies the CourseRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_course(self, course_id: UUID) -> Course | None:
        stmt = select(CourseRow).where(CourseRow.id == course_id)
        try:
            row = (await self._session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise InfrastructureError("course store unavailable") from e
        if row is None:
            return None
        return Course(id=row.id, title=row.title, is_active=row.is_active)

    async def get_module(self, module_id: UUID) -> CourseModule | None:
        stmt = select(CourseModuleRow).where(CourseModuleRow.id == module_id)
        try:
            row = (await self._session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise InfrastructureError("course store unavailable") from e
        if row is None:
            return None
        return _row_to_module(row)


def _row_to_module(row: CourseModuleRow) -> CourseModule:
    return CourseModule(
        id=row.id,
        course_id=row.course_id,
        video_key=row.video_key,
        duration_seconds=row.duration_seconds,
        is_active=row.is_active,
        title=row.title or "",
    )
