"""Pydantic schemas for learner progress.

Request and response models for:
- Topic progress updates
- Course enrollment
- Course progress view (topic statuses and exam eligibility)
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .models import Enrollment, EnrollmentStatus, TopicProgress
from .policy import TopicStatus


# ==============================================================================
# Topic Progress Schemas
# ==============================================================================


class UpdateTopicProgressRequest(BaseModel):
    """Partial update of a learner's topic progress.

    Omitted fields are left unchanged. ``is_completed=false`` never
    un-completes a topic.
    """

    course_id: UUID = Field(..., description="Course UUID")
    topic_id: UUID = Field(..., description="Topic UUID")
    video_watched: bool | None = Field(None, description="Video fully watched")
    video_progress: Decimal | None = Field(
        None, ge=0, le=100, description="Percentage of the video watched"
    )
    is_completed: bool | None = Field(
        None, description="Complete a topic without quiz"
    )


class TopicProgressResponse(BaseModel):
    """Topic progress response."""

    model_config = ConfigDict(from_attributes=True)

    topic_id: UUID
    course_id: UUID
    video_watched: bool
    video_progress: Decimal = Field(description="0-100 percentage")
    is_completed: bool
    quiz_score: int | None = None
    completed_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_entity(cls, entity: TopicProgress) -> "TopicProgressResponse":
        return cls(
            topic_id=entity.topic_id,
            course_id=entity.course_id,
            video_watched=entity.video_watched,
            video_progress=entity.video_progress,
            is_completed=entity.is_completed,
            quiz_score=entity.quiz_score,
            completed_at=entity.completed_at,
            updated_at=entity.updated_at,
        )


class UpdateTopicProgressResponse(BaseModel):
    """Result of a progress update: the topic row plus course aggregates."""

    progress: TopicProgressResponse
    course_progress_percent: Decimal
    topics_completed: int
    topics_total: int
    exam_eligible: bool


# ==============================================================================
# Enrollment Schemas
# ==============================================================================


class EnrollRequest(BaseModel):
    """Request to enroll in a course."""

    course_id: UUID = Field(..., description="Course UUID to enroll in")


class EnrollmentResponse(BaseModel):
    """Enrollment response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    course_id: UUID
    user_id: UUID
    status: EnrollmentStatus
    progress_percent: Decimal
    topics_completed: int
    topics_total: int
    enrolled_at: datetime
    completed_at: datetime | None = None
    last_accessed_at: datetime | None = None
    last_topic_id: UUID | None = None

    @classmethod
    def from_entity(cls, entity: Enrollment) -> "EnrollmentResponse":
        return cls(**entity.to_dict())


class EnrollResponse(BaseModel):
    """Enrollment result. ``created`` is False when already enrolled."""

    enrollment: EnrollmentResponse
    created: bool
    message: str


class EnrollmentListResponse(BaseModel):
    """List of user enrollments."""

    items: list[EnrollmentResponse]
    total: int


# ==============================================================================
# Course Progress View
# ==============================================================================


class TopicProgressSummary(BaseModel):
    """One topic of the course progress view, with its derived status."""

    topic_id: UUID
    title: str
    position: int
    status: TopicStatus
    has_quiz: bool = False
    video_watched: bool = False
    video_progress: Decimal = Decimal(0)
    is_completed: bool = False
    quiz_score: int | None = None


class CourseProgressResponse(BaseModel):
    """Course progress view: topic statuses in course order and exam eligibility."""

    course_id: UUID
    enrolled: bool
    enrollment: EnrollmentResponse | None = None
    topics: list[TopicProgressSummary] = Field(default_factory=list)
    topics_completed: int = 0
    topics_total: int = 0
    progress_percent: Decimal = Decimal(0)
    exam_eligible: bool = False
