from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

_DAY_SECONDS = 86400


@dataclass(frozen=True, slots=True)
class Enrollment:
    """A user's time-bounded access to one course.

    Created and mutated by external purchase/progress flows; the access
    core only reads it.
    """

    user_id: str
    course_id: UUID
    enrollment_date: datetime
    expiry_date: datetime
    is_active: bool = True
    progress_percent: int = 0

    def __post_init__(self) -> None:
        if self.expiry_date <= self.enrollment_date:
            raise ValueError("expiry_date must be after enrollment_date")

    @staticmethod
    def new(
        *,
        user_id: str,
        course_id: UUID,
        enrollment_date: datetime,
        validity_days: int = 30,
    ) -> Enrollment:
        return Enrollment(
            user_id=user_id,
            course_id=course_id,
            enrollment_date=enrollment_date,
            expiry_date=enrollment_date + timedelta(days=validity_days),
        )

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expiry_date

    def days_remaining(self, now: datetime) -> int:
        # Partial days round up: 1h left is still "1 day remaining".
        if self.is_expired(now):
            return 0
        seconds = (self.expiry_date - now).total_seconds()
        return math.ceil(seconds / _DAY_SECONDS)
