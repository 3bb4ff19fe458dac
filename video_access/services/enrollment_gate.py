from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from video_access.core.clock import Clock, utcnow
from video_access.models.course import CourseModule
from video_access.models.decision import EnrollmentStatus
from video_access.models.enrollment import Enrollment
from video_access.repos.course_repo import CourseRepo
from video_access.repos.enrollment_repo import EnrollmentRepo


@dataclass(frozen=True, slots=True)
class EnrollmentCheck:
    status: EnrollmentStatus
    module: CourseModule | None = None
    enrollment: Enrollment | None = None

    @property
    def ok(self) -> bool:
        return self.status is EnrollmentStatus.ACTIVE


class EnrollmentGate:
    """Resolves a module to its course and checks the user's enrollment.

    Checks run in a fixed order and the first failure wins:
      module exists -> module active -> course active -> enrolled
      -> not expired -> enrollment active

    Pure read.  Repo errors (InfrastructureError) propagate.
    """

    def __init__(
        self,
        courses: CourseRepo,
        enrollments: EnrollmentRepo,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self._courses = courses
        self._enrollments = enrollments
        self._clock = clock

    async def check(self, user_id: str, module_id: UUID) -> EnrollmentCheck:
        module = await self._courses.get_module(module_id)
        if module is None:
            return EnrollmentCheck(EnrollmentStatus.MODULE_NOT_FOUND)
        if not module.is_active:
            return EnrollmentCheck(EnrollmentStatus.MODULE_INACTIVE, module)

        course = await self._courses.get_course(module.course_id)
        if course is None or not course.is_active:
            return EnrollmentCheck(EnrollmentStatus.COURSE_INACTIVE, module)

        enrollment = await self._enrollments.get(user_id, module.course_id)
        if enrollment is None:
            return EnrollmentCheck(EnrollmentStatus.NOT_ENROLLED, module)
        if enrollment.is_expired(self._clock()):
            return EnrollmentCheck(EnrollmentStatus.EXPIRED, module, enrollment)
        if not enrollment.is_active:
            return EnrollmentCheck(
                EnrollmentStatus.ENROLLMENT_INACTIVE, module, enrollment
            )
        return EnrollmentCheck(EnrollmentStatus.ACTIVE, module, enrollment)
