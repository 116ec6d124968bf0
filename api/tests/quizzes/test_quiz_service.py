"""Tests for quiz gating, submission and review."""

import asyncio
from uuid import uuid4

import pytest
from cassandra import DriverException

from src.core.database import StoreUnavailableError
from src.quizzes.service import (
    InvalidAnswersError,
    NotEnrolledError,
    QuizAlreadyAttemptedError,
    QuizMismatchError,
    QuizSessionNotFoundError,
    TopicLockedError,
    VideoNotWatchedError,
)
from tests.factories import (
    answers_with_correct,
    correct_answers,
    seed_course,
    watch_video,
    wrong_answers,
)


@pytest.fixture
async def first_topic(course_service, progress_service, learner_id):
    """Enrolled learner on a 2-topic course; returns (seeded, topic, quiz)."""
    seeded = await seed_course(course_service, topics=2)
    await progress_service.enroll(learner_id, seeded.course.id)
    topic = seeded.topics[0]
    return seeded, topic, seeded.quiz_of(topic)


class TestQuizGates:
    """Enrollment, unlock and video gates."""

    @pytest.mark.asyncio
    async def test_not_enrolled(self, course_service, quiz_service) -> None:
        seeded = await seed_course(course_service, topics=1)
        with pytest.raises(NotEnrolledError):
            await quiz_service.get_quiz_for_learner(uuid4(), seeded.topics[0].id)

    @pytest.mark.asyncio
    async def test_locked_topic(self, quiz_service, first_topic, learner_id) -> None:
        seeded, _, _ = first_topic
        with pytest.raises(TopicLockedError):
            await quiz_service.get_quiz_for_learner(learner_id, seeded.topics[1].id)

    @pytest.mark.asyncio
    async def test_learner_view_hides_answers(
        self, quiz_service, first_topic, learner_id
    ) -> None:
        _, topic, _ = first_topic

        view = await quiz_service.get_quiz_for_learner(learner_id, topic.id)

        assert view.video_watched is False
        assert view.can_attempt is False
        assert "correct_answer" not in view.questions[0].model_dump()

    @pytest.mark.asyncio
    async def test_submit_before_video(
        self, quiz_service, first_topic, learner_id
    ) -> None:
        _, topic, quiz = first_topic
        with pytest.raises(VideoNotWatchedError):
            await quiz_service.submit_quiz(
                learner_id, quiz.id, topic.id, correct_answers(quiz)
            )

    @pytest.mark.asyncio
    async def test_session_before_video(
        self, quiz_service, first_topic, learner_id
    ) -> None:
        _, topic, _ = first_topic
        with pytest.raises(VideoNotWatchedError):
            await quiz_service.open_session(learner_id, topic.id)


class TestSubmitQuiz:
    """Scoring and the single durable attempt."""

    @pytest.fixture
    async def watched(self, progress_service, first_topic, learner_id):
        seeded, topic, quiz = first_topic
        await watch_video(progress_service, learner_id, seeded.course.id, topic)
        return seeded, topic, quiz

    @pytest.mark.asyncio
    async def test_pass_completes_topic(
        self, quiz_service, progress_service, watched, learner_id
    ) -> None:
        seeded, topic, quiz = watched

        result = await quiz_service.submit_quiz(
            learner_id, quiz.id, topic.id, correct_answers(quiz)
        )
        view = await progress_service.get_course_progress(learner_id, seeded.course.id)

        assert result.score == 100
        assert result.passed is True
        assert result.topic_completed is True
        assert view.topics[0].quiz_score == 100
        assert view.topics[1].status == "available"

    @pytest.mark.asyncio
    async def test_second_submit_conflicts(
        self, quiz_service, watched, learner_id
    ) -> None:
        _, topic, quiz = watched
        await quiz_service.submit_quiz(
            learner_id, quiz.id, topic.id, correct_answers(quiz)
        )

        with pytest.raises(QuizAlreadyAttemptedError):
            await quiz_service.submit_quiz(
                learner_id, quiz.id, topic.id, wrong_answers(quiz)
            )

        review = await quiz_service.get_quiz_attempt(learner_id, topic.id)
        assert review.score == 100

    @pytest.mark.asyncio
    async def test_concurrent_passes_store_one_attempt(
        self, quiz_service, watched, learner_id, fake_session
    ) -> None:
        _, topic, quiz = watched

        results = await asyncio.gather(
            quiz_service.submit_quiz(
                learner_id, quiz.id, topic.id, correct_answers(quiz)
            ),
            quiz_service.submit_quiz(
                learner_id, quiz.id, topic.id, correct_answers(quiz)
            ),
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, QuizAlreadyAttemptedError)) == 1
        assert len(fake_session.rows("quiz_attempts")) == 1

    @pytest.mark.asyncio
    async def test_retry_completes_topic_after_store_failure(
        self, quiz_service, progress_service, watched, learner_id, fake_session
    ) -> None:
        seeded, topic, quiz = watched
        fake_session.fail_on(
            "insert", "topic_progress", DriverException("write timeout")
        )

        with pytest.raises(StoreUnavailableError):
            await quiz_service.submit_quiz(
                learner_id, quiz.id, topic.id, correct_answers(quiz)
            )
        retried = await quiz_service.submit_quiz(
            learner_id, quiz.id, topic.id, wrong_answers(quiz)
        )
        view = await progress_service.get_course_progress(learner_id, seeded.course.id)

        assert retried.score == 100
        assert retried.passed is True
        assert retried.topic_completed is True
        assert view.topics[0].is_completed is True
        assert view.topics[1].status == "available"
        assert len(fake_session.rows("quiz_attempts")) == 1

    @pytest.mark.asyncio
    async def test_opening_quiz_completes_stored_pass(
        self, quiz_service, progress_service, watched, learner_id, fake_session
    ) -> None:
        seeded, topic, quiz = watched
        fake_session.fail_on(
            "insert", "topic_progress", DriverException("write timeout")
        )
        with pytest.raises(StoreUnavailableError):
            await quiz_service.submit_quiz(
                learner_id, quiz.id, topic.id, correct_answers(quiz)
            )

        learner_view = await quiz_service.get_quiz_for_learner(learner_id, topic.id)
        view = await progress_service.get_course_progress(learner_id, seeded.course.id)

        assert learner_view.review_only is True
        assert learner_view.can_attempt is False
        assert view.topics[0].quiz_score == 100
        assert view.topics[1].status == "available"

    @pytest.mark.asyncio
    async def test_fail_then_retake(
        self, quiz_service, progress_service, watched, learner_id
    ) -> None:
        seeded, topic, quiz = watched

        failed = await quiz_service.submit_quiz(
            learner_id, quiz.id, topic.id, answers_with_correct(quiz, 2)
        )
        view = await progress_service.get_course_progress(learner_id, seeded.course.id)
        assert failed.score == 50
        assert failed.passed is False
        assert view.topics[0].is_completed is False
        assert await quiz_service.get_quiz_attempt(learner_id, topic.id) is None

        passed = await quiz_service.submit_quiz(
            learner_id, quiz.id, topic.id, answers_with_correct(quiz, 3)
        )
        history = await quiz_service.list_attempt_history(learner_id, topic.id)

        assert passed.score == 75
        assert passed.passed is True
        assert history.total == 2
        assert {item.passed for item in history.items} == {True, False}

    @pytest.mark.asyncio
    async def test_answers_must_cover_every_question(
        self, quiz_service, watched, learner_id
    ) -> None:
        _, topic, quiz = watched
        answers = correct_answers(quiz)
        answers.pop(next(iter(answers)))

        with pytest.raises(InvalidAnswersError):
            await quiz_service.submit_quiz(learner_id, quiz.id, topic.id, answers)

    @pytest.mark.asyncio
    async def test_out_of_range_answer(
        self, quiz_service, watched, learner_id
    ) -> None:
        _, topic, quiz = watched
        answers = {question_id: 9 for question_id in correct_answers(quiz)}

        with pytest.raises(InvalidAnswersError):
            await quiz_service.submit_quiz(learner_id, quiz.id, topic.id, answers)

    @pytest.mark.asyncio
    async def test_quiz_of_another_topic(
        self, quiz_service, watched, learner_id
    ) -> None:
        seeded, topic, _ = watched
        other_quiz = seeded.quiz_of(seeded.topics[1])

        with pytest.raises(QuizMismatchError):
            await quiz_service.submit_quiz(
                learner_id, other_quiz.id, topic.id, correct_answers(other_quiz)
            )

    @pytest.mark.asyncio
    async def test_malformed_question_scored_wrong(
        self, quiz_service, watched, learner_id, fake_session
    ) -> None:
        _, topic, quiz = watched
        broken = quiz.questions[0]
        row = next(
            r for r in fake_session.rows("quiz_questions") if r["id"] == broken.id
        )
        row["options"] = "not-json"

        result = await quiz_service.submit_quiz(
            learner_id, quiz.id, topic.id, correct_answers(quiz)
        )

        assert result.correct_count == 3
        assert result.score == 75


class TestQuizSessionFlow:
    """Question-by-question navigation through the service."""

    @pytest.mark.asyncio
    async def test_walk_through_and_submit(
        self, quiz_service, progress_service, first_topic, learner_id
    ) -> None:
        seeded, topic, quiz = first_topic
        await watch_video(progress_service, learner_id, seeded.course.id, topic)

        session = await quiz_service.open_session(learner_id, topic.id)
        assert session.current_index == 0

        for question in quiz.questions:
            answer = await quiz_service.select_answer(
                learner_id, topic.id, question.id, question.correct_answer
            )
            assert answer.accepted is True
            assert answer.feedback.is_correct is True
            outcome = await quiz_service.advance(learner_id, topic.id)

        assert outcome.submitted is True
        assert outcome.result.passed is True
        with pytest.raises(QuizSessionNotFoundError):
            await quiz_service.go_back(learner_id, topic.id)

    @pytest.mark.asyncio
    async def test_session_resumes(
        self, quiz_service, progress_service, first_topic, learner_id
    ) -> None:
        seeded, topic, quiz = first_topic
        await watch_video(progress_service, learner_id, seeded.course.id, topic)
        await quiz_service.open_session(learner_id, topic.id)
        await quiz_service.select_answer(
            learner_id, topic.id, quiz.questions[0].id, 1
        )

        resumed = await quiz_service.open_session(learner_id, topic.id)

        assert resumed.answers == {str(quiz.questions[0].id): 1}
        assert resumed.current_revealed is True

    @pytest.mark.asyncio
    async def test_completed_topic_opens_in_review(
        self, quiz_service, progress_service, first_topic, learner_id
    ) -> None:
        seeded, topic, quiz = first_topic
        await watch_video(progress_service, learner_id, seeded.course.id, topic)
        await quiz_service.submit_quiz(
            learner_id, quiz.id, topic.id, correct_answers(quiz)
        )

        session = await quiz_service.open_session(learner_id, topic.id)
        answer = await quiz_service.select_answer(
            learner_id, topic.id, quiz.questions[0].id, 0
        )

        assert session.review_only is True
        assert answer.accepted is False

    @pytest.mark.asyncio
    async def test_answer_without_session(
        self, quiz_service, first_topic, learner_id
    ) -> None:
        _, topic, quiz = first_topic
        with pytest.raises(QuizSessionNotFoundError):
            await quiz_service.select_answer(
                learner_id, topic.id, quiz.questions[0].id, 0
            )
