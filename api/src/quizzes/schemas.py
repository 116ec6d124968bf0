"""Pydantic schemas for topic quizzes.

Request and response models for:
- Learner quiz view (no correct answers)
- Quiz session navigation with immediate feedback
- Quiz submission, attempt review and history
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from .engine import AnswerFeedback, QuizSession


# ==============================================================================
# Learner Quiz View
# ==============================================================================


class LearnerQuestionResponse(BaseModel):
    """Quiz question as shown to a learner."""

    id: UUID
    position: int
    question: str
    options: list[str]
    data_integrity_issue: bool = Field(
        False, description="Stored options could not be read"
    )


class LearnerQuizResponse(BaseModel):
    """Quiz of a topic for the current learner."""

    id: UUID
    topic_id: UUID
    course_id: UUID
    title: str
    passing_score: int
    questions: list[LearnerQuestionResponse]
    video_watched: bool
    review_only: bool = Field(description="Quiz passed already; answers are read-only")
    can_attempt: bool


# ==============================================================================
# Quiz Session
# ==============================================================================


class AnswerFeedbackResponse(BaseModel):
    """Correctness of one answer, revealed right after it is chosen."""

    question_id: str
    selected: int
    correct_answer: int
    is_correct: bool
    explanation: str | None = None

    @classmethod
    def from_feedback(cls, feedback: AnswerFeedback) -> "AnswerFeedbackResponse":
        return cls(
            question_id=feedback.question_id,
            selected=feedback.selected,
            correct_answer=feedback.correct_answer,
            is_correct=feedback.is_correct,
            explanation=feedback.explanation,
        )


class QuizSessionResponse(BaseModel):
    """Navigation state of an in-progress quiz."""

    quiz_id: str
    topic_id: str
    current_index: int
    current_question_id: str | None
    total_questions: int
    answers: dict[str, int]
    revealed: list[str]
    current_revealed: bool
    is_last: bool
    review_only: bool

    @classmethod
    def from_session(cls, session: QuizSession) -> "QuizSessionResponse":
        current = session.current_question_id
        return cls(
            quiz_id=session.quiz_id,
            topic_id=session.topic_id,
            current_index=session.current_index,
            current_question_id=current,
            total_questions=len(session.question_ids),
            answers=session.answers,
            revealed=session.revealed,
            current_revealed=current is not None and session.is_revealed(current),
            is_last=session.is_last,
            review_only=session.review_only,
        )


class SelectAnswerRequest(BaseModel):
    """Answer the current question."""

    question_id: UUID
    option_index: int = Field(..., ge=0, description="Zero-based option index")


class SelectAnswerResponse(BaseModel):
    """``accepted`` is False when the selection was ignored."""

    accepted: bool
    feedback: AnswerFeedbackResponse | None = None
    session: QuizSessionResponse


class GoBackResponse(BaseModel):
    moved: bool
    session: QuizSessionResponse


# ==============================================================================
# Submission & Review
# ==============================================================================


class SubmitQuizRequest(BaseModel):
    """Submit every answer of a quiz at once."""

    quiz_id: UUID
    topic_id: UUID
    answers: dict[UUID, int] = Field(
        ..., description="Selected option index keyed by question id"
    )


class QuizResultResponse(BaseModel):
    """Scored submission."""

    attempt_id: UUID
    quiz_id: UUID
    topic_id: UUID
    score: int
    passed: bool
    passing_score: int
    correct_count: int
    total_questions: int
    feedback: list[AnswerFeedbackResponse]
    topic_completed: bool
    completed_at: datetime


class AdvanceResponse(BaseModel):
    """Outcome of moving forward.

    On the last question the quiz is submitted and ``result`` is filled.
    """

    moved: bool
    submitted: bool = False
    session: QuizSessionResponse | None = None
    result: QuizResultResponse | None = None


class ReviewQuestionResponse(BaseModel):
    """One question of a stored attempt, with the learner's answer."""

    question_id: UUID
    position: int
    question: str
    options: list[str]
    selected: int
    correct_answer: int
    is_correct: bool
    explanation: str | None = None
    data_integrity_issue: bool = False


class QuizAttemptReviewResponse(BaseModel):
    """Stored passing attempt rebuilt for review."""

    attempt_id: UUID
    quiz_id: UUID
    topic_id: UUID
    score: int
    passed: bool
    correct_count: int
    total_questions: int
    completed_at: datetime
    questions: list[ReviewQuestionResponse]


class AttemptHistoryItem(BaseModel):
    id: UUID
    quiz_id: UUID
    score: int
    passed: bool
    correct_count: int
    total_questions: int
    completed_at: datetime


class AttemptHistoryResponse(BaseModel):
    """Every scored submission for a topic, most recent first."""

    topic_id: UUID
    items: list[AttemptHistoryItem]
    total: int
