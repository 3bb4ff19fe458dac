from __future__ import annotations

from typing import Protocol
from uuid import UUID

from video_access.models.course import Course, CourseModule


class CourseRepo(Protocol):
    async def get_course(self, course_id: UUID) -> Course | None: ...
    async def get_module(self, module_id: UUID) -> CourseModule | None: ...


class InMemoryCourseRepo:
    def __init__(self) -> None:
        self._courses: dict[UUID, Course] = {}
        self._modules: dict[UUID, CourseModule] = {}

    async def get_course(self, course_id: UUID) -> Course | None:
        return self._courses.get(course_id)

    async def get_module(self, module_id: UUID) -> CourseModule | None:
        return self._modules.get(module_id)

    # Writes belong to the course-management service; these exist for
    # seeding dev data and tests.

    def add_course(self, course: Course) -> None:
        self._courses[course.id] = course

    def add_module(self, module: CourseModule) -> None:
        if module.course_id not in self._courses:
            raise KeyError("course not found")
        self._modules[module.id] = module

    def clear(self) -> None:
        self._courses.clear()
        self._modules.clear()
