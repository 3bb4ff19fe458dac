"""Access decision values.

Every core operation returns one of ``Granted | Denied | Fault`` rather
than raising for a denial.  The transport adapter branches on the type
and maps it to a protocol response.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime


class EnrollmentStatus(str, enum.Enum):
    ACTIVE = "active"
    MODULE_NOT_FOUND = "module_not_found"
    MODULE_INACTIVE = "module_inactive"
    COURSE_INACTIVE = "course_inactive"
    NOT_ENROLLED = "not_enrolled"
    EXPIRED = "expired"
    ENROLLMENT_INACTIVE = "enrollment_inactive"


class ReasonCode(str, enum.Enum):
    GRANTED = "granted"
    MODULE_NOT_FOUND = "module_not_found"
    MODULE_INACTIVE = "module_inactive"
    COURSE_INACTIVE = "course_inactive"
    NOT_ENROLLED = "not_enrolled"
    EXPIRED = "expired"
    ENROLLMENT_INACTIVE = "enrollment_inactive"
    RATE_LIMITED = "rate_limited"
    SESSION_LIMIT = "session_limit"
    AUDIT_UNAVAILABLE = "audit_unavailable"
    INTERNAL_ERROR = "internal_error"

    @classmethod
    def from_enrollment(cls, status: EnrollmentStatus) -> ReasonCode:
        return cls(status.value)


# Outcomes caused by this service rather than the caller.  They are
# logged as failures but do not count toward the failed-attempt throttle.
FAULT_REASONS = frozenset(
    {ReasonCode.AUDIT_UNAVAILABLE.value, ReasonCode.INTERNAL_ERROR.value}
)


@dataclass(frozen=True, slots=True)
class Granted:
    expires_at: datetime
    days_remaining: int
    reason: ReasonCode = ReasonCode.GRANTED

    @property
    def granted(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Denied:
    reason: ReasonCode

    @property
    def granted(self) -> bool:
        return False


@dataclass(frozen=True, slots=True)
class Fault:
    """Evaluation could not complete (store or backend unavailable)."""

    reason: ReasonCode = ReasonCode.INTERNAL_ERROR

    @property
    def granted(self) -> bool:
        return False


Decision = Granted | Denied | Fault
