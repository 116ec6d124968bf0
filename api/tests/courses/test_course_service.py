"""Tests for the course catalogue: ordering, quiz authoring and option parsing."""

from uuid import uuid4

import pytest
from pydantic import ValidationError

from src.auth.permissions import UserRole
from src.courses.dependencies import handle_course_error
from src.courses.models import parse_options
from src.courses.schemas import (
    CreateCourseRequest,
    CreateTopicRequest,
    QuizQuestionInput,
    UpsertQuizRequest,
)
from src.courses.service import QuizFrozenError, SlugExistsError, TopicNotFoundError
from tests.factories import (
    OPTIONS,
    correct_answers,
    question_inputs,
    seed_course,
    watch_video,
    wrong_answers,
)


class TestQuestionValidation:
    """Options are validated when a quiz is written."""

    def test_valid_question(self) -> None:
        question = QuizQuestionInput(
            question="Which one?", options=list(OPTIONS), correct_answer=3
        )
        assert question.correct_answer == 3

    def test_wrong_option_count(self) -> None:
        with pytest.raises(ValidationError):
            QuizQuestionInput(question="Q?", options=["a", "b"], correct_answer=0)

    def test_blank_option(self) -> None:
        with pytest.raises(ValidationError):
            QuizQuestionInput(
                question="Q?", options=["a", " ", "c", "d"], correct_answer=0
            )

    def test_correct_answer_out_of_range(self) -> None:
        with pytest.raises(ValidationError):
            QuizQuestionInput(question="Q?", options=list(OPTIONS), correct_answer=4)


class TestParseOptions:
    """Defensive parsing of stored options."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ('["a", "b"]', ["a", "b"]),
            ("{broken", None),
            ('{"a": 1}', None),
            ("[1, 2]", None),
            (None, None),
        ],
    )
    def test_parse(self, raw, expected) -> None:
        assert parse_options(raw) == expected


class TestCourses:
    """Tests for course and topic creation."""

    @pytest.mark.asyncio
    async def test_duplicate_slug_rejected(self, course_service) -> None:
        await course_service.create_course(
            CreateCourseRequest(title="Clinical Pharmacy"), uuid4()
        )
        with pytest.raises(SlugExistsError):
            await course_service.create_course(
                CreateCourseRequest(title="Clinical  pharmacy"), uuid4()
            )

    @pytest.mark.asyncio
    async def test_course_found_by_slug(self, course_service) -> None:
        course = await course_service.create_course(
            CreateCourseRequest(title="Drug Interactions"), uuid4()
        )

        found = await course_service.get_course_by_slug("drug-interactions")

        assert found.id == course.id

    @pytest.mark.asyncio
    async def test_topics_appended_in_order(self, course_service) -> None:
        seeded = await seed_course(course_service, topics=3, quiz_topics=set())

        topics = await course_service.list_topics(seeded.course.id)

        assert [t.position for t in topics] == [0, 1, 2]
        assert [t.id for t in topics] == [t.id for t in seeded.topics]

    @pytest.mark.asyncio
    async def test_explicit_position_reorders(self, course_service) -> None:
        course = await course_service.create_course(
            CreateCourseRequest(title="Reordered Course"), uuid4()
        )
        for title, position in [("Third", 7), ("First", 0), ("Second", 3)]:
            await course_service.create_topic(
                course.id, CreateTopicRequest(title=title, position=position)
            )

        topics = await course_service.list_topics(course.id)

        assert [t.title for t in topics] == ["First", "Second", "Third"]


class TestQuizzes:
    """Quiz authoring and loading."""

    @pytest.mark.asyncio
    async def test_upsert_requires_topic(self, course_service) -> None:
        with pytest.raises(TopicNotFoundError):
            await course_service.upsert_quiz(
                uuid4(),
                UpsertQuizRequest(title="Quiz", questions=question_inputs(1)),
            )

    @pytest.mark.asyncio
    async def test_replace_keeps_quiz_id(self, course_service) -> None:
        seeded = await seed_course(course_service, topics=1)
        topic = seeded.topics[0]
        original = seeded.quiz_of(topic)

        replaced = await course_service.upsert_quiz(
            topic.id,
            UpsertQuizRequest(title="Harder quiz", questions=question_inputs(2)),
        )
        loaded = await course_service.get_quiz(topic.id)

        assert replaced.id == original.id
        assert len(loaded.questions) == 2
        assert loaded.title == "Harder quiz"
        assert loaded.passing_score == 70

    @pytest.mark.asyncio
    async def test_quiz_frozen_after_first_attempt(
        self, course_service, progress_service, quiz_service, learner_id
    ) -> None:
        seeded = await seed_course(course_service, topics=1)
        topic = seeded.topics[0]
        quiz = seeded.quiz_of(topic)
        await progress_service.enroll(learner_id, seeded.course.id)
        await watch_video(progress_service, learner_id, seeded.course.id, topic)
        await quiz_service.submit_quiz(
            learner_id, quiz.id, topic.id, wrong_answers(quiz)
        )

        with pytest.raises(QuizFrozenError) as exc_info:
            await course_service.upsert_quiz(
                topic.id,
                UpsertQuizRequest(title="Quiz 1", questions=question_inputs(4)),
            )

        loaded = await course_service.get_quiz(topic.id)
        assert exc_info.value.code == "quiz_already_attempted"
        assert [q.id for q in loaded.questions] == [q.id for q in quiz.questions]

    @pytest.mark.asyncio
    async def test_review_matches_stored_score_after_rejected_edit(
        self, course_service, progress_service, quiz_service, learner_id
    ) -> None:
        seeded = await seed_course(course_service, topics=1)
        topic = seeded.topics[0]
        quiz = seeded.quiz_of(topic)
        await progress_service.enroll(learner_id, seeded.course.id)
        await watch_video(progress_service, learner_id, seeded.course.id, topic)
        await quiz_service.submit_quiz(
            learner_id, quiz.id, topic.id, correct_answers(quiz)
        )

        with pytest.raises(QuizFrozenError):
            await course_service.upsert_quiz(
                topic.id,
                UpsertQuizRequest(title="Quiz 1", questions=question_inputs(4)),
            )
        review = await quiz_service.get_quiz_attempt(learner_id, topic.id)

        assert review.score == 100
        assert [q.is_correct for q in review.questions] == [True] * 4

    @pytest.mark.asyncio
    async def test_malformed_stored_options_coerced(
        self, course_service, fake_session
    ) -> None:
        seeded = await seed_course(course_service, topics=1, questions=2)
        quiz = seeded.quiz_of(seeded.topics[0])
        row = next(
            r
            for r in fake_session.rows("quiz_questions")
            if r["quiz_id"] == quiz.id and r["position"] == 0
        )
        row["options"] = "{not json"

        loaded = await course_service.get_quiz(seeded.topics[0].id)

        assert loaded.questions[0].options == []
        assert loaded.questions[0].data_integrity_issue is True
        assert loaded.questions[1].data_integrity_issue is False
        assert loaded.has_integrity_issue is True


class TestAuthoringApi:
    """Authoring routes are limited to teachers and course owners."""

    def test_teacher_builds_course(self, client, auth_headers, teacher_id) -> None:
        headers = auth_headers(teacher_id, UserRole.TEACHER)

        course = client.post(
            "/v1/courses", json={"title": "Pharmacy Basics"}, headers=headers
        )
        assert course.status_code == 201
        course_id = course.json()["id"]

        topic = client.post(
            f"/v1/courses/{course_id}/topics",
            json={"title": "Dosage", "video_url": "https://videos.test/1.mp4"},
            headers=headers,
        )
        assert topic.status_code == 201

        bad_quiz = client.put(
            f"/v1/courses/topics/{topic.json()['id']}/quiz",
            json={
                "title": "Dosage quiz",
                "questions": [
                    {"question": "Q?", "options": ["a", "b"], "correct_answer": 0}
                ],
            },
            headers=headers,
        )
        assert bad_quiz.status_code == 422

        listing = client.get(f"/v1/courses/{course_id}/topics", headers=headers)
        assert listing.status_code == 200

    def test_other_teacher_cannot_edit(self, client, auth_headers) -> None:
        owner = auth_headers(uuid4(), UserRole.TEACHER)
        intruder = auth_headers(uuid4(), UserRole.TEACHER)
        course_id = client.post(
            "/v1/courses", json={"title": "Owned Course"}, headers=owner
        ).json()["id"]

        response = client.post(
            f"/v1/courses/{course_id}/topics", json={"title": "Hijack"}, headers=intruder
        )

        assert response.status_code == 403

    def test_frozen_quiz_maps_to_conflict(self) -> None:
        error = handle_course_error(QuizFrozenError())

        assert error.status_code == 409
        assert error.detail == "Quiz has attempts and can no longer be edited"
