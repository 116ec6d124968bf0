"""Database models for quiz attempts.

Cassandra table definitions for:
- Quiz attempts: the single passing attempt per learner and topic
- Attempt log: every scored submission, passed or not
"""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from src.utils import dumps_json, ensure_utc_aware, loads_json, utc_now


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

# At most one row per (user_id, topic_id), guarded by IF NOT EXISTS
QUIZ_ATTEMPTS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.quiz_attempts (
    user_id UUID,
    topic_id UUID,
    id UUID,
    quiz_id UUID,
    answers TEXT,
    score INT,
    passed BOOLEAN,
    correct_count INT,
    total_questions INT,
    completed_at TIMESTAMP,
    PRIMARY KEY (user_id, topic_id)
)
"""

# Append-only history
QUIZ_ATTEMPT_LOG_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.quiz_attempt_log (
    user_id UUID,
    topic_id UUID,
    completed_at TIMESTAMP,
    id UUID,
    quiz_id UUID,
    score INT,
    passed BOOLEAN,
    correct_count INT,
    total_questions INT,
    answers TEXT,
    PRIMARY KEY ((user_id, topic_id), completed_at, id)
) WITH CLUSTERING ORDER BY (completed_at DESC, id ASC)
"""

QUIZZES_TABLES_CQL = [
    QUIZ_ATTEMPTS_TABLE_CQL,
    QUIZ_ATTEMPT_LOG_TABLE_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


def _decode_answers(raw: str | None) -> dict[str, int]:
    data = loads_json(raw, default={})
    if not isinstance(data, dict):
        return {}
    answers = {}
    for key, value in data.items():
        if isinstance(value, int) and not isinstance(value, bool):
            answers[str(key)] = value
    return answers


class QuizAttempt:
    """Scored quiz submission.

    Stored in ``quiz_attempts`` only when it passed, and in
    ``quiz_attempt_log`` always.

    Attributes:
        id: Attempt UUID
        user_id: Learner UUID
        topic_id: Topic UUID
        quiz_id: Quiz UUID
        answers: Selected option index keyed by question id
        score: Integer percentage (0-100)
        passed: Score reached the quiz passing score
        correct_count: Number of correct answers
        total_questions: Number of questions graded
        completed_at: Submission timestamp
    """

    def __init__(
        self,
        user_id: UUID,
        topic_id: UUID,
        quiz_id: UUID,
        answers: dict[str, int],
        score: int,
        passed: bool,
        correct_count: int,
        total_questions: int,
        id: UUID | None = None,
        completed_at: datetime | None = None,
    ):
        self.id = id or uuid4()
        self.user_id = user_id
        self.topic_id = topic_id
        self.quiz_id = quiz_id
        self.answers = answers
        self.score = score
        self.passed = passed
        self.correct_count = correct_count
        self.total_questions = total_questions
        self.completed_at = ensure_utc_aware(completed_at) or utc_now()

    @property
    def answers_json(self) -> str:
        return dumps_json(self.answers)

    @classmethod
    def from_row(cls, row: Any) -> "QuizAttempt":
        """Create QuizAttempt from a ``quiz_attempts`` or ``quiz_attempt_log`` row."""
        return cls(
            id=row.id,
            user_id=row.user_id,
            topic_id=row.topic_id,
            quiz_id=row.quiz_id,
            answers=_decode_answers(row.answers),
            score=row.score or 0,
            passed=bool(row.passed),
            correct_count=row.correct_count or 0,
            total_questions=row.total_questions or 0,
            completed_at=row.completed_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "topic_id": self.topic_id,
            "quiz_id": self.quiz_id,
            "answers": self.answers,
            "score": self.score,
            "passed": self.passed,
            "correct_count": self.correct_count,
            "total_questions": self.total_questions,
            "completed_at": self.completed_at,
        }

    def __repr__(self) -> str:
        return (
            f"<QuizAttempt user={self.user_id} topic={self.topic_id} "
            f"score={self.score} passed={self.passed}>"
        )
