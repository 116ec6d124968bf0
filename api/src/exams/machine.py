"""Exam session state machine.

Pure code, no I/O::

    SCHEDULED -> IN_PROGRESS -> COMPLETED

COMPLETED is terminal; a retake is a new exam row. The end of an exam is
always ``started_at + duration``; the countdown is derived from it and
never stored.
"""

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from src.quizzes.engine import UNANSWERED, is_answer_correct, score_percent
from src.utils import ensure_utc_aware


class ExamStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class SubmittedBy(str, Enum):
    """Who triggered the submission."""

    LEARNER = "learner"
    DEADLINE = "deadline"


TRANSITIONS: dict[ExamStatus, frozenset[ExamStatus]] = {
    ExamStatus.SCHEDULED: frozenset({ExamStatus.IN_PROGRESS}),
    ExamStatus.IN_PROGRESS: frozenset({ExamStatus.COMPLETED}),
    ExamStatus.COMPLETED: frozenset(),
}

ACTIVE_STATUSES = frozenset({ExamStatus.SCHEDULED, ExamStatus.IN_PROGRESS})


class InvalidTransitionError(ValueError):
    def __init__(self, current: ExamStatus, target: ExamStatus):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move exam from {current.value} to {target.value}")


def can_transition(current: ExamStatus, target: ExamStatus) -> bool:
    return target in TRANSITIONS[current]


def ensure_transition(current: ExamStatus, target: ExamStatus) -> None:
    """Raise InvalidTransitionError unless ``current -> target`` is legal."""
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)


# ==============================================================================
# Deadline
# ==============================================================================


def compute_deadline(started_at: datetime, duration_minutes: int) -> datetime:
    return ensure_utc_aware(started_at) + timedelta(minutes=duration_minutes)


def time_left_seconds(
    started_at: datetime, duration_minutes: int, now: datetime
) -> int:
    """Whole seconds until the deadline, never negative."""
    remaining = (compute_deadline(started_at, duration_minutes) - now).total_seconds()
    return max(0, math.ceil(remaining))


def is_expired(started_at: datetime, duration_minutes: int, now: datetime) -> bool:
    return now >= compute_deadline(started_at, duration_minutes)


# ==============================================================================
# Questions & Scoring
# ==============================================================================


@dataclass
class ExamQuestion:
    """Question of an exam snapshot.

    ``id`` is local to the exam (``exam-q-1``...); ``source_id`` points to
    the bank question it was copied from.
    """

    id: str
    question: str
    options: list[str]
    correct_answer: int
    explanation: str | None = None
    source_id: str | None = None
    topic_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "question": self.question,
            "options": self.options,
            "correct_answer": self.correct_answer,
            "explanation": self.explanation,
            "source_id": self.source_id,
            "topic_id": self.topic_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExamQuestion":
        return cls(
            id=str(data["id"]),
            question=data.get("question", ""),
            options=[str(option) for option in data.get("options") or []],
            correct_answer=int(data.get("correct_answer", 0)),
            explanation=data.get("explanation"),
            source_id=data.get("source_id"),
            topic_id=data.get("topic_id"),
        )


@dataclass(frozen=True)
class ExamScore:
    score: int
    passed: bool
    correct_count: int
    total_questions: int
    per_question: dict[str, bool] = field(default_factory=dict)


def score_exam(
    questions: Sequence[ExamQuestion],
    answers: Mapping[str, int],
    passing_score: float,
) -> ExamScore:
    """Unanswered questions count as wrong. No questions scores 0."""
    per_question = {
        question.id: is_answer_correct(question, answers.get(question.id, UNANSWERED))
        for question in questions
    }
    correct = sum(per_question.values())
    score = score_percent(correct, len(questions))
    return ExamScore(
        score=score,
        passed=score >= passing_score,
        correct_count=correct,
        total_questions=len(questions),
        per_question=per_question,
    )
