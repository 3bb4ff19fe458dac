from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4


@dataclass(frozen=True, slots=True)
class Course:
    id: UUID
    title: str
    is_active: bool = True

    @staticmethod
    def new(*, title: str, is_active: bool = True) -> Course:
        return Course(id=uuid4(), title=title, is_active=is_active)


@dataclass(frozen=True, slots=True)
class CourseModule:
    id: UUID
    course_id: UUID
    video_key: str  # opaque storage locator, relative to VIDEO_PREFIX
    duration_seconds: int = 0
    is_active: bool = True
    title: str = ""

    @staticmethod
    def new(
        *,
        course_id: UUID,
        video_key: str,
        duration_seconds: int = 0,
        is_active: bool = True,
        title: str = "",
    ) -> CourseModule:
        return CourseModule(
            id=uuid4(),
            course_id=course_id,
            video_key=video_key,
            duration_seconds=duration_seconds,
            is_active=is_active,
            title=title,
        )
