"""Pydantic schemas for the course catalogue.

Request and response models for:
- Courses and their ordered topics
- Quiz authoring, with write-time validation of question options
"""

from datetime import datetime
from typing import Self
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.config import get_settings
from src.courses.models import ContentStatus


# ==============================================================================
# Course Schemas
# ==============================================================================


class CreateCourseRequest(BaseModel):
    """Course creation request."""

    title: str = Field(..., min_length=3, max_length=200, description="Course title")
    description: str | None = Field(
        None, max_length=5000, description="Course description"
    )
    status: ContentStatus = Field(
        ContentStatus.PUBLISHED, description="Publication status"
    )


class CourseResponse(BaseModel):
    """Course response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    slug: str
    description: str | None = None
    status: ContentStatus
    creator_id: UUID | None = None
    created_at: datetime
    updated_at: datetime | None = None
    topic_count: int = 0


# ==============================================================================
# Topic Schemas
# ==============================================================================


class CreateTopicRequest(BaseModel):
    """Topic creation request. Without a position the topic is appended."""

    title: str = Field(..., min_length=1, max_length=200, description="Topic title")
    description: str | None = Field(None, max_length=5000)
    video_url: str | None = Field(None, max_length=1000, description="Video URL")
    duration_minutes: int | None = Field(None, ge=0, description="Video duration")
    position: int | None = Field(None, ge=0, description="Order within the course")


class TopicResponse(BaseModel):
    """Topic response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    course_id: UUID
    title: str
    description: str | None = None
    video_url: str | None = None
    duration_minutes: int | None = None
    position: int
    has_quiz: bool = False


# ==============================================================================
# Quiz Authoring Schemas
# ==============================================================================


class QuizQuestionInput(BaseModel):
    """A multiple-choice question as written by an author.

    Options must be exactly ``quiz_option_count`` non-empty strings and
    ``correct_answer`` must index one of them.
    """

    question: str = Field(..., min_length=1, max_length=2000)
    options: list[str]
    correct_answer: int = Field(..., ge=0)
    explanation: str | None = Field(None, max_length=5000)

    @model_validator(mode="after")
    def validate_options(self) -> Self:
        expected = get_settings().quiz_option_count
        if len(self.options) != expected:
            msg = f"Each question must have exactly {expected} options"
            raise ValueError(msg)
        if any(not option.strip() for option in self.options):
            msg = "Options must be non-empty strings"
            raise ValueError(msg)
        if self.correct_answer >= len(self.options):
            msg = "correct_answer must be the index of one of the options"
            raise ValueError(msg)
        return self


class UpsertQuizRequest(BaseModel):
    """Create or replace the quiz of a topic."""

    title: str = Field(..., min_length=1, max_length=200)
    passing_score: int | None = Field(
        None, ge=0, le=100, description="Defaults to the configured passing score"
    )
    questions: list[QuizQuestionInput] = Field(..., min_length=1)


class QuizQuestionAuthorResponse(BaseModel):
    """Question as seen by authors (includes the correct answer)."""

    id: UUID
    position: int
    question: str
    options: list[str]
    correct_answer: int
    explanation: str | None = None
    data_integrity_issue: bool = False


class QuizAuthorResponse(BaseModel):
    """Quiz as seen by authors."""

    id: UUID
    topic_id: UUID
    title: str
    passing_score: int
    questions: list[QuizQuestionAuthorResponse]
