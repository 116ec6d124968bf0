"""Database models for learner progress.

Cassandra table definitions for:
- Topic progress: Video and completion state per learner and topic
- Enrollments: Course enrollment with aggregate progress
- Lookup tables: For user-based queries

Architecture: Dual-write pattern for efficient queries by both
course_id and user_id perspectives.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from src.utils import ensure_utc_aware, utc_now


class EnrollmentStatus(str, Enum):
    """Course enrollment status."""

    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"  # Every topic completed


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

# Partition key: (user_id, course_id) to read a learner's whole course at once
TOPIC_PROGRESS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.topic_progress (
    user_id UUID,
    course_id UUID,
    topic_id UUID,
    enrollment_id UUID,
    video_watched BOOLEAN,
    video_progress DECIMAL,
    is_completed BOOLEAN,
    quiz_score INT,
    completed_at TIMESTAMP,
    updated_at TIMESTAMP,
    PRIMARY KEY ((user_id, course_id), topic_id)
)
"""

ENROLLMENTS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.enrollments (
    course_id UUID,
    user_id UUID,
    id UUID,
    status TEXT,
    progress_percent DECIMAL,
    topics_completed INT,
    topics_total INT,
    enrolled_at TIMESTAMP,
    completed_at TIMESTAMP,
    last_accessed_at TIMESTAMP,
    last_topic_id UUID,
    PRIMARY KEY (course_id, user_id)
)
"""

# Lookup: courses by user
ENROLLMENTS_BY_USER_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.enrollments_by_user (
    user_id UUID,
    enrolled_at TIMESTAMP,
    course_id UUID,
    id UUID,
    status TEXT,
    progress_percent DECIMAL,
    topics_completed INT,
    topics_total INT,
    last_accessed_at TIMESTAMP,
    PRIMARY KEY (user_id, enrolled_at, course_id)
) WITH CLUSTERING ORDER BY (enrolled_at DESC, course_id ASC)
"""

PROGRESS_TABLES_CQL = [
    TOPIC_PROGRESS_TABLE_CQL,
    ENROLLMENTS_TABLE_CQL,
    ENROLLMENTS_BY_USER_TABLE_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


class TopicProgress:
    """Progress of one learner on one topic.

    Invariants: ``is_completed`` implies ``video_watched``; neither flag is
    ever reset once set, and ``video_progress`` never decreases.

    Attributes:
        user_id: Learner UUID
        course_id: Course UUID (for partition key)
        topic_id: Topic UUID
        enrollment_id: Enrollment the progress belongs to
        video_watched: Video watched past the configured threshold
        video_progress: Percentage of the video watched (0-100)
        is_completed: Topic completed (quiz passed, or video watched when
            the topic has no quiz)
        quiz_score: Score of the passing quiz attempt
        completed_at: Completion timestamp
        updated_at: Last update timestamp
    """

    def __init__(
        self,
        user_id: UUID,
        course_id: UUID,
        topic_id: UUID,
        enrollment_id: UUID | None = None,
        video_watched: bool = False,
        video_progress: Decimal = Decimal(0),
        is_completed: bool = False,
        quiz_score: int | None = None,
        completed_at: datetime | None = None,
        updated_at: datetime | None = None,
    ):
        self.user_id = user_id
        self.course_id = course_id
        self.topic_id = topic_id
        self.enrollment_id = enrollment_id
        self.video_watched = video_watched
        self.video_progress = video_progress
        self.is_completed = is_completed
        self.quiz_score = quiz_score
        self.completed_at = ensure_utc_aware(completed_at)
        self.updated_at = ensure_utc_aware(updated_at) or utc_now()

    @classmethod
    def from_row(cls, row: Any) -> "TopicProgress":
        """Create TopicProgress instance from Cassandra row."""
        return cls(
            user_id=row.user_id,
            course_id=row.course_id,
            topic_id=row.topic_id,
            enrollment_id=row.enrollment_id,
            video_watched=bool(row.video_watched),
            video_progress=Decimal(row.video_progress or 0),
            is_completed=bool(row.is_completed),
            quiz_score=row.quiz_score,
            completed_at=row.completed_at,
            updated_at=row.updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "course_id": self.course_id,
            "topic_id": self.topic_id,
            "enrollment_id": self.enrollment_id,
            "video_watched": self.video_watched,
            "video_progress": self.video_progress,
            "is_completed": self.is_completed,
            "quiz_score": self.quiz_score,
            "completed_at": self.completed_at,
            "updated_at": self.updated_at,
        }

    def __repr__(self) -> str:
        return (
            f"<TopicProgress user={self.user_id} topic={self.topic_id} "
            f"video={self.video_progress}% completed={self.is_completed}>"
        )


class Enrollment:
    """Course enrollment entity.

    Attributes:
        id: Enrollment UUID
        course_id: Course UUID
        user_id: Learner UUID
        status: ACTIVE or COMPLETED
        progress_percent: Completed topics over total topics (0-100)
        topics_completed: Number of completed topics
        topics_total: Total topics in course at last recalculation
        enrolled_at: Enrollment timestamp
        completed_at: Timestamp at which every topic was completed
        last_accessed_at: Last progress update
        last_topic_id: Last topic updated (for resume)
    """

    def __init__(
        self,
        course_id: UUID,
        user_id: UUID,
        id: UUID | None = None,
        status: str = EnrollmentStatus.ACTIVE.value,
        progress_percent: Decimal = Decimal(0),
        topics_completed: int = 0,
        topics_total: int = 0,
        enrolled_at: datetime | None = None,
        completed_at: datetime | None = None,
        last_accessed_at: datetime | None = None,
        last_topic_id: UUID | None = None,
    ):
        self.id = id or uuid4()
        self.course_id = course_id
        self.user_id = user_id
        self.status = status
        self.progress_percent = progress_percent
        self.topics_completed = topics_completed
        self.topics_total = topics_total
        self.enrolled_at = ensure_utc_aware(enrolled_at) or utc_now()
        self.completed_at = ensure_utc_aware(completed_at)
        self.last_accessed_at = ensure_utc_aware(last_accessed_at)
        self.last_topic_id = last_topic_id

    @property
    def is_completed(self) -> bool:
        return self.status == EnrollmentStatus.COMPLETED.value

    @classmethod
    def from_row(cls, row: Any) -> "Enrollment":
        """Create Enrollment from an ``enrollments`` or ``enrollments_by_user`` row."""
        return cls(
            id=row.id,
            course_id=row.course_id,
            user_id=row.user_id,
            status=row.status or EnrollmentStatus.ACTIVE.value,
            progress_percent=Decimal(row.progress_percent or 0),
            topics_completed=row.topics_completed or 0,
            topics_total=row.topics_total or 0,
            enrolled_at=row.enrolled_at,
            completed_at=getattr(row, "completed_at", None),
            last_accessed_at=row.last_accessed_at,
            last_topic_id=getattr(row, "last_topic_id", None),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "course_id": self.course_id,
            "user_id": self.user_id,
            "status": self.status,
            "progress_percent": self.progress_percent,
            "topics_completed": self.topics_completed,
            "topics_total": self.topics_total,
            "enrolled_at": self.enrolled_at,
            "completed_at": self.completed_at,
            "last_accessed_at": self.last_accessed_at,
            "last_topic_id": self.last_topic_id,
        }

    def __repr__(self) -> str:
        return (
            f"<Enrollment user={self.user_id} course={self.course_id} "
            f"{self.status} {self.progress_percent}%>"
        )
