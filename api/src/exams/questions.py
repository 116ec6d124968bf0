"""Exam question providers.

The exam takes a snapshot of its questions when it starts, so later
changes to the question bank never affect a running exam.
"""

import itertools
import random
from typing import TYPE_CHECKING, Protocol
from uuid import UUID

from .machine import ExamQuestion


if TYPE_CHECKING:
    from src.courses.service import CourseService


class QuestionBankEmptyError(Exception):
    """No usable question to build an exam from."""


class ExamQuestionProvider(Protocol):
    async def build_questions(
        self, course_id: UUID, exam_id: UUID, count: int
    ) -> list[ExamQuestion]: ...


class QuizBankQuestionProvider:
    """Draw exam questions from the quizzes of the course's topics.

    Questions are shuffled with a seed derived from the exam id, so the same
    exam always gets the same draw. When the bank is smaller than ``count``
    the shuffled bank is repeated.
    """

    def __init__(self, course_service: "CourseService"):
        self.courses = course_service

    async def build_questions(
        self, course_id: UUID, exam_id: UUID, count: int
    ) -> list[ExamQuestion]:
        bank = []
        for topic in await self.courses.list_topics(course_id):
            quiz = await self.courses.get_quiz(topic.id)
            if quiz is None:
                continue
            bank.extend(
                (topic.id, question)
                for question in quiz.questions
                if not question.data_integrity_issue
            )

        if not bank:
            msg = f"Course {course_id} has no quiz questions"
            raise QuestionBankEmptyError(msg)

        random.Random(exam_id.int).shuffle(bank)

        return [
            ExamQuestion(
                id=f"exam-q-{number}",
                question=question.question,
                options=list(question.options),
                correct_answer=question.correct_answer,
                explanation=question.explanation,
                source_id=str(question.id),
                topic_id=str(topic_id),
            )
            for number, (topic_id, question) in enumerate(
                itertools.islice(itertools.cycle(bank), count), start=1
            )
        ]
