"""Database models for final exams.

Cassandra table definitions for:
- Exam schedules: One row per exam attempt, with its question snapshot
- Lookup tables: Exams by user
- Active exams: At most one SCHEDULED or IN_PROGRESS exam per learner and course
- Exams in progress: Deadlines to resume and sweep after a restart
"""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from src.utils import dumps_json, ensure_utc_aware, loads_json, utc_now

from .machine import ExamQuestion, ExamStatus, compute_deadline


IN_PROGRESS_BUCKET = "active"


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

EXAM_SCHEDULES_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.exam_schedules (
    id UUID PRIMARY KEY,
    user_id UUID,
    course_id UUID,
    status TEXT,
    scheduled_at TIMESTAMP,
    duration_minutes INT,
    question_count INT,
    passing_score DOUBLE,
    questions TEXT,
    answers TEXT,
    score INT,
    passed BOOLEAN,
    correct_count INT,
    total_questions INT,
    started_at TIMESTAMP,
    completed_at TIMESTAMP,
    submitted_by TEXT,
    created_at TIMESTAMP,
    updated_at TIMESTAMP
)
"""

# Lookup: exams by user, most recent first
EXAM_SCHEDULES_BY_USER_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.exam_schedules_by_user (
    user_id UUID,
    created_at TIMESTAMP,
    id UUID,
    course_id UUID,
    status TEXT,
    PRIMARY KEY (user_id, created_at, id)
) WITH CLUSTERING ORDER BY (created_at DESC, id ASC)
"""

# Claimed with IF NOT EXISTS on schedule, released on submit
ACTIVE_EXAMS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.active_exams (
    user_id UUID,
    course_id UUID,
    exam_id UUID,
    created_at TIMESTAMP,
    PRIMARY KEY ((user_id, course_id))
)
"""

# Single bucket partition: the set of running exams is small
EXAMS_IN_PROGRESS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.exams_in_progress (
    bucket TEXT,
    exam_id UUID,
    user_id UUID,
    deadline TIMESTAMP,
    PRIMARY KEY (bucket, exam_id)
)
"""

EXAMS_TABLES_CQL = [
    EXAM_SCHEDULES_TABLE_CQL,
    EXAM_SCHEDULES_BY_USER_TABLE_CQL,
    ACTIVE_EXAMS_TABLE_CQL,
    EXAMS_IN_PROGRESS_TABLE_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


def _decode_questions(raw: str | None) -> list[ExamQuestion]:
    data = loads_json(raw, default=[])
    if not isinstance(data, list):
        return []
    return [ExamQuestion.from_dict(item) for item in data if isinstance(item, dict)]


def _decode_answers(raw: str | None) -> dict[str, int]:
    data = loads_json(raw, default={})
    if not isinstance(data, dict):
        return {}
    return {
        str(key): value
        for key, value in data.items()
        if isinstance(value, int) and not isinstance(value, bool)
    }


class ExamSchedule:
    """One attempt at a course's final exam.

    Attributes:
        id: Exam UUID
        user_id: Learner UUID
        course_id: Course UUID
        status: SCHEDULED, IN_PROGRESS or COMPLETED
        scheduled_at: Scheduling timestamp
        duration_minutes: Time allowed once started
        question_count: Number of questions drawn at start
        passing_score: Minimum score (percent) to pass
        questions: Question snapshot taken at start
        answers: Selected option index keyed by exam question id
        score: Integer percentage, set on completion
        passed: Score reached the passing score
        correct_count: Correct answers, set on completion
        total_questions: Questions graded
        started_at: Start timestamp (deadline is started_at + duration)
        completed_at: Submission timestamp
        submitted_by: "learner" or "deadline"
    """

    def __init__(
        self,
        user_id: UUID,
        course_id: UUID,
        duration_minutes: int,
        question_count: int,
        passing_score: float,
        id: UUID | None = None,
        status: str = ExamStatus.SCHEDULED.value,
        scheduled_at: datetime | None = None,
        questions: list[ExamQuestion] | None = None,
        answers: dict[str, int] | None = None,
        score: int | None = None,
        passed: bool | None = None,
        correct_count: int | None = None,
        total_questions: int | None = None,
        started_at: datetime | None = None,
        completed_at: datetime | None = None,
        submitted_by: str | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ):
        self.id = id or uuid4()
        self.user_id = user_id
        self.course_id = course_id
        self.status = status
        self.duration_minutes = duration_minutes
        self.question_count = question_count
        self.passing_score = passing_score
        self.questions = questions or []
        self.answers = answers or {}
        self.score = score
        self.passed = passed
        self.correct_count = correct_count
        self.total_questions = total_questions
        self.started_at = ensure_utc_aware(started_at)
        self.completed_at = ensure_utc_aware(completed_at)
        self.submitted_by = submitted_by
        self.created_at = ensure_utc_aware(created_at) or utc_now()
        self.scheduled_at = ensure_utc_aware(scheduled_at) or self.created_at
        self.updated_at = ensure_utc_aware(updated_at)

    @property
    def exam_status(self) -> ExamStatus:
        return ExamStatus(self.status)

    @property
    def deadline(self) -> datetime | None:
        if self.started_at is None:
            return None
        return compute_deadline(self.started_at, self.duration_minutes)

    @property
    def questions_json(self) -> str:
        return dumps_json([question.to_dict() for question in self.questions])

    @property
    def answers_json(self) -> str:
        return dumps_json(self.answers)

    @classmethod
    def from_row(cls, row: Any) -> "ExamSchedule":
        """Create ExamSchedule from an ``exam_schedules`` row."""
        return cls(
            id=row.id,
            user_id=row.user_id,
            course_id=row.course_id,
            status=row.status,
            scheduled_at=row.scheduled_at,
            duration_minutes=row.duration_minutes,
            question_count=row.question_count,
            passing_score=row.passing_score,
            questions=_decode_questions(row.questions),
            answers=_decode_answers(row.answers),
            score=row.score,
            passed=row.passed,
            correct_count=row.correct_count,
            total_questions=row.total_questions,
            started_at=row.started_at,
            completed_at=row.completed_at,
            submitted_by=row.submitted_by,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def __repr__(self) -> str:
        return (
            f"<ExamSchedule {self.id} user={self.user_id} "
            f"course={self.course_id} {self.status}>"
        )
