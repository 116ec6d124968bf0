"""Learner progress module.

Provides:
- Course enrollment
- Video progress and topic completion tracking
- Topic unlock policy and final exam eligibility
"""

from .models import (
    PROGRESS_TABLES_CQL,
    Enrollment,
    EnrollmentStatus,
    TopicProgress,
)
from .policy import TopicStatus


__all__ = [
    "PROGRESS_TABLES_CQL",
    "Enrollment",
    "EnrollmentStatus",
    "TopicProgress",
    "TopicStatus",
]
