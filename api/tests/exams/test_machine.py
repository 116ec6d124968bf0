"""Tests for the exam state machine, countdown and scoring."""

from datetime import UTC, datetime, timedelta

import pytest

from src.exams.machine import (
    ExamQuestion,
    ExamStatus,
    InvalidTransitionError,
    can_transition,
    compute_deadline,
    ensure_transition,
    is_expired,
    score_exam,
    time_left_seconds,
)


STARTED = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)


def question(number: int, correct: int) -> ExamQuestion:
    return ExamQuestion(
        id=f"exam-q-{number}",
        question=f"Question {number}",
        options=["a", "b", "c", "d"],
        correct_answer=correct,
    )


class TestTransitions:
    """SCHEDULED -> IN_PROGRESS -> COMPLETED, nothing else."""

    @pytest.mark.parametrize(
        "current,target",
        [
            (ExamStatus.SCHEDULED, ExamStatus.IN_PROGRESS),
            (ExamStatus.IN_PROGRESS, ExamStatus.COMPLETED),
        ],
    )
    def test_allowed(self, current: ExamStatus, target: ExamStatus) -> None:
        assert can_transition(current, target) is True
        ensure_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (ExamStatus.SCHEDULED, ExamStatus.COMPLETED),
            (ExamStatus.IN_PROGRESS, ExamStatus.SCHEDULED),
            (ExamStatus.COMPLETED, ExamStatus.IN_PROGRESS),
            (ExamStatus.COMPLETED, ExamStatus.COMPLETED),
        ],
    )
    def test_rejected(self, current: ExamStatus, target: ExamStatus) -> None:
        with pytest.raises(InvalidTransitionError) as exc_info:
            ensure_transition(current, target)
        assert exc_info.value.current == current


class TestCountdown:
    """Remaining time is derived from started_at + duration."""

    def test_deadline(self) -> None:
        assert compute_deadline(STARTED, 30) == STARTED + timedelta(minutes=30)

    def test_time_left_rounds_up(self) -> None:
        now = STARTED + timedelta(minutes=29, seconds=59, milliseconds=500)
        assert time_left_seconds(STARTED, 30, now) == 1

    def test_time_left_never_negative(self) -> None:
        assert time_left_seconds(STARTED, 30, STARTED + timedelta(hours=2)) == 0

    def test_expired_at_deadline(self) -> None:
        deadline = STARTED + timedelta(minutes=30)
        assert is_expired(STARTED, 30, deadline - timedelta(milliseconds=1)) is False
        assert is_expired(STARTED, 30, deadline) is True

    def test_naive_start_treated_as_utc(self) -> None:
        naive = STARTED.replace(tzinfo=None)
        assert compute_deadline(naive, 1) == STARTED + timedelta(minutes=1)


class TestScoreExam:
    """Unanswered questions count as wrong."""

    def test_partial_answers(self) -> None:
        questions = [question(1, 0), question(2, 1), question(3, 2)]
        result = score_exam(questions, {"exam-q-1": 0, "exam-q-2": 3}, 60.0)

        assert result.correct_count == 1
        assert result.score == 33
        assert result.passed is False
        assert result.per_question == {
            "exam-q-1": True,
            "exam-q-2": False,
            "exam-q-3": False,
        }

    def test_pass_at_threshold(self) -> None:
        questions = [question(n, 0) for n in range(1, 6)]
        answers = {"exam-q-1": 0, "exam-q-2": 0, "exam-q-3": 0}
        assert score_exam(questions, answers, 60.0).passed is True

    def test_no_answers_scores_zero(self) -> None:
        result = score_exam([question(1, 0)], {}, 60.0)
        assert result.score == 0
        assert result.passed is False
