"""Tests for drawing exam questions from the quiz bank."""

from uuid import uuid4

import pytest

from src.exams.questions import QuestionBankEmptyError, QuizBankQuestionProvider
from tests.factories import seed_course


class TestQuizBankQuestionProvider:
    """Questions come from the course's topic quizzes."""

    @pytest.mark.asyncio
    async def test_draw_is_stable_per_exam(self, course_service) -> None:
        seeded = await seed_course(course_service, topics=2)
        provider = QuizBankQuestionProvider(course_service)
        exam_id = uuid4()

        first = await provider.build_questions(seeded.course.id, exam_id, 5)
        second = await provider.build_questions(seeded.course.id, exam_id, 5)

        assert [q.source_id for q in first] == [q.source_id for q in second]
        assert [q.id for q in first] == [f"exam-q-{n}" for n in range(1, 6)]

    @pytest.mark.asyncio
    async def test_small_bank_is_repeated(self, course_service) -> None:
        seeded = await seed_course(course_service, topics=1, questions=2)
        provider = QuizBankQuestionProvider(course_service)

        questions = await provider.build_questions(seeded.course.id, uuid4(), 5)

        assert len(questions) == 5
        assert len({q.source_id for q in questions}) == 2

    @pytest.mark.asyncio
    async def test_questions_keep_answers(self, course_service) -> None:
        seeded = await seed_course(course_service, topics=1)
        quiz = seeded.quiz_of(seeded.topics[0])
        expected = {str(q.id): q.correct_answer for q in quiz.questions}
        provider = QuizBankQuestionProvider(course_service)

        questions = await provider.build_questions(seeded.course.id, uuid4(), 4)

        for question in questions:
            assert question.correct_answer == expected[question.source_id]
            assert question.topic_id == str(seeded.topics[0].id)

    @pytest.mark.asyncio
    async def test_malformed_questions_skipped(
        self, course_service, fake_session
    ) -> None:
        seeded = await seed_course(course_service, topics=1, questions=2)
        quiz = seeded.quiz_of(seeded.topics[0])
        broken = quiz.questions[0]
        row = next(
            r for r in fake_session.rows("quiz_questions") if r["id"] == broken.id
        )
        row["options"] = "[]"
        provider = QuizBankQuestionProvider(course_service)

        questions = await provider.build_questions(seeded.course.id, uuid4(), 3)

        assert {q.source_id for q in questions} == {str(quiz.questions[1].id)}

    @pytest.mark.asyncio
    async def test_empty_bank(self, course_service) -> None:
        seeded = await seed_course(course_service, topics=2, quiz_topics=set())
        provider = QuizBankQuestionProvider(course_service)

        with pytest.raises(QuestionBankEmptyError):
            await provider.build_questions(seeded.course.id, uuid4(), 4)
