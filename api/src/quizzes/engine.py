"""Quiz engine: scoring and in-progress navigation.

Pure code, no I/O. ``QuizSession`` models one learner walking through a
quiz one question at a time with immediate feedback:

- an answer can be chosen only for the current question, once;
- choosing reveals whether it was correct;
- the learner moves forward only after the current answer is revealed;
- going back is possible only while the current question is unanswered.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Protocol


UNANSWERED = -1


class GradableQuestion(Protocol):
    id: Any
    options: list[str]
    correct_answer: int
    explanation: str | None


class InvalidOptionError(ValueError):
    """Selected option index does not exist for the question."""


class AdvanceOutcome(str, Enum):
    NEXT = "next"
    READY_TO_SUBMIT = "ready_to_submit"


@dataclass(frozen=True)
class AnswerFeedback:
    """Immediate feedback for one answered question."""

    question_id: str
    selected: int
    correct_answer: int
    is_correct: bool
    explanation: str | None = None


@dataclass(frozen=True)
class GradeResult:
    score: int
    passed: bool
    correct_count: int
    total_questions: int
    feedback: list[AnswerFeedback]


def score_percent(correct: int, total: int) -> int:
    """Integer percentage, halves rounded up. Zero questions score 0."""
    if total <= 0:
        return 0
    ratio = Decimal(100 * correct) / Decimal(total)
    return int(ratio.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def is_answer_correct(question: GradableQuestion, selected: int) -> bool:
    """Questions without options (unreadable data) can never be answered correctly."""
    return bool(question.options) and selected == question.correct_answer


def grade(
    questions: Sequence[GradableQuestion],
    answers: Mapping[str, int],
    passing_score: float,
) -> GradeResult:
    """Score answers keyed by question id (as string).

    Missing answers count as wrong and are reported as ``UNANSWERED``.
    """
    feedback = []
    for question in questions:
        selected = answers.get(str(question.id), UNANSWERED)
        feedback.append(
            AnswerFeedback(
                question_id=str(question.id),
                selected=selected,
                correct_answer=question.correct_answer,
                is_correct=is_answer_correct(question, selected),
                explanation=question.explanation,
            )
        )

    correct_count = sum(1 for item in feedback if item.is_correct)
    score = score_percent(correct_count, len(questions))
    return GradeResult(
        score=score,
        passed=score >= passing_score,
        correct_count=correct_count,
        total_questions=len(questions),
        feedback=feedback,
    )


@dataclass
class QuizSession:
    """Navigation state of one learner through one quiz."""

    quiz_id: str
    topic_id: str
    question_ids: list[str]
    current_index: int = 0
    answers: dict[str, int] = field(default_factory=dict)
    revealed: list[str] = field(default_factory=list)
    review_only: bool = False

    @property
    def current_question_id(self) -> str | None:
        if not self.question_ids:
            return None
        return self.question_ids[self.current_index]

    @property
    def is_last(self) -> bool:
        return self.current_index >= len(self.question_ids) - 1

    def is_revealed(self, question_id: str) -> bool:
        return question_id in self.revealed

    def select_answer(
        self, question: GradableQuestion, option_index: int
    ) -> AnswerFeedback | None:
        """Record the answer to the current question and reveal feedback.

        Returns None (no-op) in review mode, when the question is not the
        current one, or when its feedback was already revealed.

        Raises:
            InvalidOptionError: If the option index is out of range
        """
        question_id = str(question.id)
        if (
            self.review_only
            or question_id != self.current_question_id
            or self.is_revealed(question_id)
        ):
            return None

        if question.options and not 0 <= option_index < len(question.options):
            msg = f"Option {option_index} does not exist"
            raise InvalidOptionError(msg)

        self.answers[question_id] = option_index
        self.revealed.append(question_id)
        return AnswerFeedback(
            question_id=question_id,
            selected=option_index,
            correct_answer=question.correct_answer,
            is_correct=is_answer_correct(question, option_index),
            explanation=question.explanation,
        )

    def advance(self) -> AdvanceOutcome | None:
        """Move to the next question once the current one is revealed.

        On the last question nothing moves and READY_TO_SUBMIT is returned.
        Returns None when the current answer is not revealed yet. Review
        sessions move freely and never become ready to submit.
        """
        current = self.current_question_id
        if current is None:
            return None
        if self.review_only:
            if self.is_last:
                return None
        elif not self.is_revealed(current):
            return None
        elif self.is_last:
            return AdvanceOutcome.READY_TO_SUBMIT
        self.current_index += 1
        return AdvanceOutcome.NEXT

    def go_back(self) -> bool:
        """Move to the previous question while the current one is unanswered."""
        current = self.current_question_id
        if current is None or self.current_index == 0:
            return False
        if not self.review_only and self.is_revealed(current):
            return False
        self.current_index -= 1
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "quiz_id": self.quiz_id,
            "topic_id": self.topic_id,
            "question_ids": self.question_ids,
            "current_index": self.current_index,
            "answers": self.answers,
            "revealed": self.revealed,
            "review_only": self.review_only,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "QuizSession":
        return cls(
            quiz_id=data["quiz_id"],
            topic_id=data["topic_id"],
            question_ids=list(data["question_ids"]),
            current_index=int(data.get("current_index", 0)),
            answers={str(k): int(v) for k, v in data.get("answers", {}).items()},
            revealed=list(data.get("revealed", [])),
            review_only=bool(data.get("review_only", False)),
        )
