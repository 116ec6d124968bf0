"""End-to-end learner journey over HTTP."""

from uuid import uuid4

import pytest
from cassandra import DriverException

from src.auth.permissions import UserRole
from tests.factories import question_inputs


@pytest.fixture
def course(client, auth_headers, teacher_id):
    """Two-topic course built through the authoring API."""
    headers = auth_headers(teacher_id, UserRole.TEACHER)
    course = client.post(
        "/v1/courses",
        json={"title": f"Pharmacology {uuid4().hex[:6]}"},
        headers=headers,
    ).json()

    topics, answer_keys = [], {}
    for index in range(2):
        topic = client.post(
            f"/v1/courses/{course['id']}/topics",
            json={
                "title": f"Topic {index + 1}",
                "video_url": f"https://videos.test/{index}.mp4",
            },
            headers=headers,
        ).json()
        quiz = client.put(
            f"/v1/courses/topics/{topic['id']}/quiz",
            json={
                "title": f"Quiz {index + 1}",
                "questions": [q.model_dump() for q in question_inputs(4)],
            },
            headers=headers,
        )
        assert quiz.status_code == 200
        topics.append(topic)
        for question in quiz.json()["questions"]:
            answer_keys[question["id"]] = question["correct_answer"]

    return course, topics, answer_keys


class TestLearnerJourney:
    """Enroll, learn, pass the exam and verify the certificate."""

    def test_full_journey(self, client, auth_headers, learner_id, course) -> None:
        course, topics, answer_keys = course
        headers = auth_headers(learner_id)

        enrolled = client.post(
            "/v1/enrollments", json={"course_id": course["id"]}, headers=headers
        )
        assert enrolled.status_code == 200
        assert enrolled.json()["created"] is True

        # Topic 1 question by question
        first = topics[0]
        watched = client.put(
            "/v1/progress/topic",
            json={
                "course_id": course["id"],
                "topic_id": first["id"],
                "video_watched": True,
            },
            headers=headers,
        )
        assert watched.status_code == 200

        session = client.post(
            f"/v1/quizzes/topics/{first['id']}/session", headers=headers
        ).json()
        for _ in range(session["total_questions"]):
            question_id = session["current_question_id"]
            answer = client.post(
                f"/v1/quizzes/topics/{first['id']}/session/answer",
                json={
                    "question_id": question_id,
                    "option_index": answer_keys[question_id],
                },
                headers=headers,
            )
            assert answer.json()["feedback"]["is_correct"] is True
            advance = client.post(
                f"/v1/quizzes/topics/{first['id']}/session/advance", headers=headers
            ).json()
            session = advance["session"] or session

        assert advance["submitted"] is True
        assert advance["result"]["passed"] is True

        # Topic 2 in one submission
        second = topics[1]
        client.put(
            "/v1/progress/topic",
            json={
                "course_id": course["id"],
                "topic_id": second["id"],
                "video_watched": True,
            },
            headers=headers,
        )
        quiz = client.get(f"/v1/quizzes/topics/{second['id']}", headers=headers).json()
        submitted = client.post(
            "/v1/quizzes/submit",
            json={
                "quiz_id": quiz["id"],
                "topic_id": second["id"],
                "answers": {q["id"]: answer_keys[q["id"]] for q in quiz["questions"]},
            },
            headers=headers,
        )
        assert submitted.json()["passed"] is True

        progress = client.get(
            f"/v1/progress/course/{course['id']}", headers=headers
        ).json()
        assert progress["exam_eligible"] is True

        # Final exam
        exam = client.post(
            "/v1/exams/schedule", json={"course_id": course["id"]}, headers=headers
        ).json()
        assert exam["status"] == "SCHEDULED"

        started = client.post(f"/v1/exams/{exam['id']}/start", headers=headers).json()
        assert started["status"] == "IN_PROGRESS"
        assert all(q["correct_answer"] is None for q in started["questions"])

        by_text = {
            q.question: q.correct_answer for q in question_inputs(4)
        }
        answers = {q["id"]: by_text[q["question"]] for q in started["questions"]}

        saved = client.patch(
            f"/v1/exams/{exam['id']}/answers",
            json={"answers": dict(list(answers.items())[:2])},
            headers=headers,
        )
        assert saved.json()["answered_count"] == 2

        tick = client.get(f"/v1/exams/{exam['id']}/tick", headers=headers).json()
        assert tick["status"] == "IN_PROGRESS"
        assert tick["time_left_seconds"] > 0

        result = client.post(
            f"/v1/exams/{exam['id']}/submit",
            json={"answers": answers},
            headers=headers,
        )
        assert result.status_code == 200
        body = result.json()
        assert body["score"] == 100
        assert body["submitted_by"] == "learner"
        number = body["certificate"]["certificate_number"]

        again = client.post(
            f"/v1/exams/{exam['id']}/submit", json={"answers": {}}, headers=headers
        )
        assert again.status_code == 409

        certificate = client.post(
            f"/v1/exams/{exam['id']}/certificate", headers=headers
        ).json()
        assert certificate["created"] is False
        assert certificate["certificate"]["certificate_number"] == number

        verified = client.get(f"/v1/certificates/verify/{number.lower()}")
        assert verified.status_code == 200
        assert verified.json()["level"] == "PLATINUM"
        assert verified.json()["course_title"] == course["title"]

        mine = client.get("/v1/certificates/my", headers=headers).json()
        assert mine["total"] == 1

    def test_exam_requires_completed_course(
        self, client, auth_headers, learner_id, course
    ) -> None:
        course, _, _ = course
        headers = auth_headers(learner_id)
        client.post("/v1/enrollments", json={"course_id": course["id"]}, headers=headers)

        response = client.post(
            "/v1/exams/schedule", json={"course_id": course["id"]}, headers=headers
        )

        assert response.status_code == 403

    def test_locked_topic_quiz(self, client, auth_headers, learner_id, course) -> None:
        course, topics, _ = course
        headers = auth_headers(learner_id)
        client.post("/v1/enrollments", json={"course_id": course["id"]}, headers=headers)

        response = client.get(f"/v1/quizzes/topics/{topics[1]['id']}", headers=headers)

        assert response.status_code == 403

    def test_advance_without_session(
        self, client, auth_headers, learner_id, course
    ) -> None:
        _, topics, _ = course

        response = client.post(
            f"/v1/quizzes/topics/{topics[0]['id']}/session/advance",
            headers=auth_headers(learner_id),
        )

        assert response.status_code == 404


class TestStoreUnavailable:
    """Driver failures surface as a retryable 503."""

    def test_retryable_error(
        self, client, auth_headers, learner_id, fake_session
    ) -> None:
        fake_session.fail_next(DriverException("connection reset"))

        response = client.get("/v1/enrollments/my", headers=auth_headers(learner_id))

        assert response.status_code == 503
        assert response.headers["retry-after"] == "1"
        assert response.json()["retryable"] is True
        assert response.json()["code"] == "store_unavailable"
