from __future__ import annotations

from typing import Protocol
from uuid import UUID

from video_access.models.enrollment import Enrollment


class EnrollmentRepo(Protocol):
    async def get(self, user_id: str, course_id: UUID) -> Enrollment | None: ...


class InMemoryEnrollmentRepo:
    def __init__(self) -> None:
        self._store: dict[tuple[str, UUID], Enrollment] = {}

    async def get(self, user_id: str, course_id: UUID) -> Enrollment | None:
        return self._store.get((user_id, course_id))

    def put(self, enrollment: Enrollment) -> None:
        # Upsert: one enrollment per (user, course), as in the enrollments table.
        self._store[(enrollment.user_id, enrollment.course_id)] = enrollment

    def clear(self) -> None:
        self._store.clear()
