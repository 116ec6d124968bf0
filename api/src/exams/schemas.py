"""Pydantic schemas for final exams.

Request and response models for:
- Scheduling and starting an exam
- Countdown tick and answer autosave
- Submission result (with certificate when passed)
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from src.certificates.schemas import CertificateResponse

from .machine import ExamStatus, SubmittedBy


class ScheduleExamRequest(BaseModel):
    course_id: UUID = Field(..., description="Course UUID")


class ExamQuestionResponse(BaseModel):
    """Exam question. Correct answer is hidden until the exam is completed."""

    id: str
    question: str
    options: list[str]
    correct_answer: int | None = None
    explanation: str | None = None


class ExamResponse(BaseModel):
    """Exam with derived countdown."""

    id: UUID
    user_id: UUID
    course_id: UUID
    status: ExamStatus
    scheduled_at: datetime
    duration_minutes: int
    question_count: int
    passing_score: float
    started_at: datetime | None = None
    ends_at: datetime | None = None
    time_left_seconds: int | None = None
    completed_at: datetime | None = None
    submitted_by: SubmittedBy | None = None
    score: int | None = None
    passed: bool | None = None
    correct_count: int | None = None
    total_questions: int | None = None
    answers: dict[str, int] = Field(default_factory=dict)
    questions: list[ExamQuestionResponse] = Field(default_factory=list)


class ExamListResponse(BaseModel):
    items: list[ExamResponse]
    total: int


class CurrentExamResponse(BaseModel):
    """The learner's SCHEDULED or IN_PROGRESS exam for a course, if any."""

    exam: ExamResponse | None = None


class SaveAnswersRequest(BaseModel):
    """Answers to merge into the autosaved set, keyed by exam question id."""

    answers: dict[str, int] = Field(default_factory=dict)


class SaveAnswersResponse(BaseModel):
    exam_id: UUID
    answered_count: int
    time_left_seconds: int
    saved_at: datetime


class SubmitExamRequest(BaseModel):
    """Final answers; merged over the autosaved ones."""

    answers: dict[str, int] = Field(default_factory=dict)


class ExamResultResponse(BaseModel):
    """Outcome of a submitted exam."""

    exam_id: UUID
    course_id: UUID
    status: ExamStatus
    score: int
    passed: bool
    passing_score: float
    correct_count: int
    total_questions: int
    submitted_by: SubmittedBy
    completed_at: datetime
    certificate: CertificateResponse | None = None


class ExamTickResponse(BaseModel):
    """Countdown recomputed from ``started_at + duration``.

    When the deadline has passed the exam is submitted on this call and
    ``result`` is filled.
    """

    exam_id: UUID
    status: ExamStatus
    time_left_seconds: int
    ends_at: datetime | None = None
    auto_submitted: bool = False
    result: ExamResultResponse | None = None
