"""Database models for the course catalogue.

Cassandra table definitions for:
- Courses: Main course table (slug lookups via secondary index)
- Topics: Ordered units of a course, each with a video
- Quizzes: One optional quiz per topic
- Quiz questions: Multiple-choice questions of a quiz, in position order

Topics are stored twice: by id (single topic lookups) and clustered by
course (ordered listing). Both tables are written on every change.
"""

import re
import unicodedata
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

import orjson

from src.utils import dumps_json, ensure_utc_aware, loads_json, utc_now


class ContentStatus(str, Enum):
    """Content publication status."""

    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

COURSE_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.courses (
    id UUID PRIMARY KEY,
    title TEXT,
    slug TEXT,
    description TEXT,
    status TEXT,
    creator_id UUID,
    created_at TIMESTAMP,
    updated_at TIMESTAMP
)
"""

COURSE_SLUG_INDEX_CQL = """
CREATE INDEX IF NOT EXISTS courses_slug_idx ON {keyspace}.courses (slug)
"""

TOPIC_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.topics (
    id UUID PRIMARY KEY,
    course_id UUID,
    title TEXT,
    description TEXT,
    video_url TEXT,
    duration_minutes INT,
    position INT,
    created_at TIMESTAMP,
    updated_at TIMESTAMP
)
"""

# Ordered listing: position, then creation time, then id
TOPICS_BY_COURSE_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.topics_by_course (
    course_id UUID,
    position INT,
    created_at TIMESTAMP,
    id UUID,
    title TEXT,
    description TEXT,
    video_url TEXT,
    duration_minutes INT,
    updated_at TIMESTAMP,
    PRIMARY KEY (course_id, position, created_at, id)
) WITH CLUSTERING ORDER BY (position ASC, created_at ASC, id ASC)
"""

QUIZ_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.quizzes (
    topic_id UUID PRIMARY KEY,
    id UUID,
    title TEXT,
    passing_score INT,
    question_count INT,
    created_at TIMESTAMP,
    updated_at TIMESTAMP
)
"""

# options: JSON array of option strings
QUIZ_QUESTIONS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.quiz_questions (
    quiz_id UUID,
    position INT,
    id UUID,
    question TEXT,
    options TEXT,
    correct_answer INT,
    explanation TEXT,
    PRIMARY KEY (quiz_id, position)
) WITH CLUSTERING ORDER BY (position ASC)
"""

# One row per quiz that has been scored for any learner; the quiz is then frozen
ATTEMPTED_QUIZZES_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.attempted_quizzes (
    topic_id UUID PRIMARY KEY,
    quiz_id UUID,
    first_attempt_at TIMESTAMP
)
"""

COURSES_TABLES_CQL = [
    COURSE_TABLE_CQL,
    COURSE_SLUG_INDEX_CQL,
    TOPIC_TABLE_CQL,
    TOPICS_BY_COURSE_TABLE_CQL,
    QUIZ_TABLE_CQL,
    QUIZ_QUESTIONS_TABLE_CQL,
    ATTEMPTED_QUIZZES_TABLE_CQL,
]


# ==============================================================================
# Helper Functions
# ==============================================================================


def generate_slug(title: str) -> str:
    """Generate URL-friendly slug from title."""
    slug = unicodedata.normalize("NFKD", title)
    slug = slug.encode("ascii", "ignore").decode("ascii")
    slug = slug.lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    return re.sub(r"[-\s]+", "-", slug)


def parse_options(raw: str | None) -> list[str] | None:
    """Parse stored quiz options.

    Returns None when the stored value is not a JSON array of strings.
    """
    try:
        options = loads_json(raw)
    except orjson.JSONDecodeError:
        return None
    if not isinstance(options, list) or not all(isinstance(o, str) for o in options):
        return None
    return options


# ==============================================================================
# Entity Classes
# ==============================================================================


class Course:
    """Course entity: an ordered set of topics followed by a final exam."""

    def __init__(
        self,
        id: UUID | None = None,
        title: str = "",
        slug: str | None = None,
        description: str | None = None,
        status: str = ContentStatus.DRAFT.value,
        creator_id: UUID | None = None,
        created_at=None,
        updated_at=None,
    ):
        self.id = id or uuid4()
        self.title = title.strip()
        self.slug = slug or generate_slug(title)
        self.description = description
        self.status = status
        self.creator_id = creator_id
        self.created_at = ensure_utc_aware(created_at) or utc_now()
        self.updated_at = ensure_utc_aware(updated_at)

    @classmethod
    def from_row(cls, row: Any) -> "Course":
        """Create Course instance from Cassandra row."""
        return cls(
            id=row.id,
            title=row.title or "",
            slug=row.slug,
            description=row.description,
            status=row.status or ContentStatus.DRAFT.value,
            creator_id=row.creator_id,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "slug": self.slug,
            "description": self.description,
            "status": self.status,
            "creator_id": self.creator_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def __repr__(self) -> str:
        return f"<Course {self.title} ({self.status})>"


class Topic:
    """A unit of a course: one video, optionally followed by a quiz.

    Attributes:
        id: Unique identifier (UUID)
        course_id: Owning course
        title: Topic title
        description: Topic description
        video_url: Video location
        duration_minutes: Expected video duration
        position: Order within the course (ties broken by created_at, then id)
        created_at: Creation timestamp
        updated_at: Last update timestamp
    """

    def __init__(
        self,
        course_id: UUID,
        id: UUID | None = None,
        title: str = "",
        description: str | None = None,
        video_url: str | None = None,
        duration_minutes: int | None = None,
        position: int = 0,
        created_at=None,
        updated_at=None,
    ):
        self.id = id or uuid4()
        self.course_id = course_id
        self.title = title.strip()
        self.description = description
        self.video_url = video_url
        self.duration_minutes = duration_minutes
        self.position = position
        self.created_at = ensure_utc_aware(created_at) or utc_now()
        self.updated_at = ensure_utc_aware(updated_at)

    @classmethod
    def from_row(cls, row: Any) -> "Topic":
        """Create Topic from a ``topics`` or ``topics_by_course`` row."""
        return cls(
            id=row.id,
            course_id=row.course_id,
            title=row.title or "",
            description=row.description,
            video_url=row.video_url,
            duration_minutes=row.duration_minutes,
            position=row.position or 0,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "course_id": self.course_id,
            "title": self.title,
            "description": self.description,
            "video_url": self.video_url,
            "duration_minutes": self.duration_minutes,
            "position": self.position,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def __repr__(self) -> str:
        return f"<Topic {self.position}: {self.title}>"


class QuizQuestion:
    """Multiple-choice question.

    ``data_integrity_issue`` is set when the stored options could not be
    parsed; ``options`` is then empty and the question cannot be answered
    correctly.
    """

    def __init__(
        self,
        quiz_id: UUID,
        position: int,
        question: str,
        options: list[str],
        correct_answer: int,
        explanation: str | None = None,
        id: UUID | None = None,
        data_integrity_issue: bool = False,
    ):
        self.id = id or uuid4()
        self.quiz_id = quiz_id
        self.position = position
        self.question = question
        self.options = options
        self.correct_answer = correct_answer
        self.explanation = explanation
        self.data_integrity_issue = data_integrity_issue

    @classmethod
    def from_row(cls, row: Any) -> "QuizQuestion":
        options = parse_options(row.options)
        correct_answer = row.correct_answer if row.correct_answer is not None else -1
        malformed = options is None or not 0 <= correct_answer < len(options)
        return cls(
            id=row.id,
            quiz_id=row.quiz_id,
            position=row.position,
            question=row.question or "",
            options=[] if malformed else options,
            correct_answer=correct_answer,
            explanation=row.explanation,
            data_integrity_issue=malformed,
        )

    @property
    def options_json(self) -> str:
        return dumps_json(self.options)

    def __repr__(self) -> str:
        return f"<QuizQuestion {self.position} of quiz {self.quiz_id}>"


class Quiz:
    """Quiz attached to a topic. ``questions`` are ordered by position."""

    def __init__(
        self,
        topic_id: UUID,
        title: str = "",
        passing_score: int = 70,
        id: UUID | None = None,
        questions: list[QuizQuestion] | None = None,
        created_at=None,
        updated_at=None,
    ):
        self.id = id or uuid4()
        self.topic_id = topic_id
        self.title = title
        self.passing_score = passing_score
        self.questions = questions or []
        self.created_at = ensure_utc_aware(created_at) or utc_now()
        self.updated_at = ensure_utc_aware(updated_at)

    @classmethod
    def from_row(cls, row: Any, questions: list[QuizQuestion]) -> "Quiz":
        return cls(
            id=row.id,
            topic_id=row.topic_id,
            title=row.title or "",
            passing_score=row.passing_score,
            questions=questions,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    @property
    def has_integrity_issue(self) -> bool:
        return any(q.data_integrity_issue for q in self.questions)

    def __repr__(self) -> str:
        return f"<Quiz {self.title} ({len(self.questions)} questions)>"
