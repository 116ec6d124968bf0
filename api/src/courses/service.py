"""Course catalogue service layer.

Business logic for:
- Course creation and lookup (by id and slug)
- Topic creation and ordered listing
- Quiz authoring (validated on write) and tolerant quiz loading
"""

from typing import TYPE_CHECKING
from uuid import UUID

import structlog

from src.config import Settings, get_settings
from src.core.database.errors import execute
from src.progress.policy import order_topics
from src.utils import utc_now

from .models import Course, Quiz, QuizQuestion, Topic
from .schemas import (
    CourseResponse,
    CreateCourseRequest,
    CreateTopicRequest,
    QuizAuthorResponse,
    QuizQuestionAuthorResponse,
    TopicResponse,
    UpsertQuizRequest,
)


if TYPE_CHECKING:
    from cassandra.cluster import Session

logger = structlog.get_logger(__name__)


# ==============================================================================
# Custom Exceptions
# ==============================================================================


class CourseError(Exception):
    """Base course error."""

    def __init__(self, message: str, code: str = "course_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class CourseNotFoundError(CourseError):
    """Course not found."""

    def __init__(self, message: str = "Course not found"):
        super().__init__(message, "course_not_found")


class TopicNotFoundError(CourseError):
    """Topic not found."""

    def __init__(self, message: str = "Topic not found"):
        super().__init__(message, "topic_not_found")


class SlugExistsError(CourseError):
    """Slug already exists."""

    def __init__(self, message: str = "Slug already exists"):
        super().__init__(message, "slug_exists")


class NotCourseOwnerError(CourseError):
    """Only the course creator or an admin may change the course."""

    def __init__(self, message: str = "Not allowed to edit this course"):
        super().__init__(message, "not_course_owner")


class QuizFrozenError(CourseError):
    """A learner has been scored on the quiz; its questions can no longer change."""

    def __init__(self, message: str = "Quiz has attempts and can no longer be edited"):
        super().__init__(message, "quiz_already_attempted")


# ==============================================================================
# Course Service
# ==============================================================================


class CourseService:
    """Service for courses, topics and topic quizzes."""

    def __init__(
        self, session: "Session", keyspace: str, settings: Settings | None = None
    ):
        """Initialize with Cassandra session."""
        self.session = session
        self.keyspace = keyspace
        self.settings = settings or get_settings()
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements."""
        # Courses
        self._get_course_by_id = self.session.prepare(
            f"SELECT * FROM {self.keyspace}.courses WHERE id = ?"
        )
        self._get_course_by_slug = self.session.prepare(
            f"SELECT * FROM {self.keyspace}.courses WHERE slug = ?"
        )
        self._insert_course = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.courses
            (id, title, slug, description, status, creator_id, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """)

        # Topics
        self._get_topic_by_id = self.session.prepare(
            f"SELECT * FROM {self.keyspace}.topics WHERE id = ?"
        )
        self._get_topics_by_course = self.session.prepare(
            f"SELECT * FROM {self.keyspace}.topics_by_course WHERE course_id = ?"
        )
        self._insert_topic = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.topics
            (id, course_id, title, description, video_url, duration_minutes,
             position, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """)
        self._insert_topic_by_course = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.topics_by_course
            (course_id, position, created_at, id, title, description, video_url,
             duration_minutes, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """)

        # Quizzes
        self._get_quiz = self.session.prepare(
            f"SELECT * FROM {self.keyspace}.quizzes WHERE topic_id = ?"
        )
        self._insert_quiz = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.quizzes
            (topic_id, id, title, passing_score, question_count, created_at,
             updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """)
        self._get_questions = self.session.prepare(
            f"SELECT * FROM {self.keyspace}.quiz_questions WHERE quiz_id = ?"
        )
        self._delete_questions = self.session.prepare(
            f"DELETE FROM {self.keyspace}.quiz_questions WHERE quiz_id = ?"
        )
        self._get_attempted_quiz = self.session.prepare(
            f"SELECT * FROM {self.keyspace}.attempted_quizzes WHERE topic_id = ?"
        )
        self._mark_attempted = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.attempted_quizzes
            (topic_id, quiz_id, first_attempt_at)
            VALUES (?, ?, ?)
            IF NOT EXISTS
        """)
        self._insert_question = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.quiz_questions
            (quiz_id, position, id, question, options, correct_answer, explanation)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """)

    # ==========================================================================
    # Courses
    # ==========================================================================

    async def create_course(
        self, data: CreateCourseRequest, creator_id: UUID
    ) -> Course:
        """Create a new course.

        Raises:
            SlugExistsError: If another course already uses the title's slug
        """
        course = Course(
            title=data.title,
            description=data.description,
            status=data.status.value,
            creator_id=creator_id,
        )
        if await self.get_course_by_slug(course.slug):
            raise SlugExistsError

        await execute(
            self.session,
            self._insert_course,
            [
                course.id,
                course.title,
                course.slug,
                course.description,
                course.status,
                course.creator_id,
                course.created_at,
                course.updated_at,
            ],
        )
        logger.info("course_created", course_id=str(course.id), slug=course.slug)
        return course

    async def get_course(self, course_id: UUID) -> Course | None:
        result = await execute(self.session, self._get_course_by_id, [course_id])
        row = result.one()
        return Course.from_row(row) if row else None

    async def get_course_by_slug(self, slug: str) -> Course | None:
        result = await execute(self.session, self._get_course_by_slug, [slug])
        row = result.one()
        return Course.from_row(row) if row else None

    async def require_course(self, course_id: UUID) -> Course:
        """Get a course or raise CourseNotFoundError."""
        course = await self.get_course(course_id)
        if course is None:
            raise CourseNotFoundError
        return course

    def ensure_can_edit(self, course: Course, user_id: UUID, is_admin: bool) -> None:
        """Raise NotCourseOwnerError unless the user created the course or is admin."""
        if not is_admin and str(course.creator_id) != str(user_id):
            raise NotCourseOwnerError

    # ==========================================================================
    # Topics
    # ==========================================================================

    async def create_topic(self, course_id: UUID, data: CreateTopicRequest) -> Topic:
        """Add a topic to a course, appending it when no position is given."""
        await self.require_course(course_id)

        position = data.position
        if position is None:
            existing = await self.list_topics(course_id)
            position = max((t.position for t in existing), default=-1) + 1

        topic = Topic(
            course_id=course_id,
            title=data.title,
            description=data.description,
            video_url=data.video_url,
            duration_minutes=data.duration_minutes,
            position=position,
        )

        # Dual write: by id + ordered by course
        await execute(
            self.session,
            self._insert_topic,
            [
                topic.id,
                topic.course_id,
                topic.title,
                topic.description,
                topic.video_url,
                topic.duration_minutes,
                topic.position,
                topic.created_at,
                topic.updated_at,
            ],
        )
        await execute(
            self.session,
            self._insert_topic_by_course,
            [
                topic.course_id,
                topic.position,
                topic.created_at,
                topic.id,
                topic.title,
                topic.description,
                topic.video_url,
                topic.duration_minutes,
                topic.updated_at,
            ],
        )

        logger.info(
            "topic_created",
            course_id=str(course_id),
            topic_id=str(topic.id),
            position=topic.position,
        )
        return topic

    async def get_topic(self, topic_id: UUID) -> Topic | None:
        result = await execute(self.session, self._get_topic_by_id, [topic_id])
        row = result.one()
        return Topic.from_row(row) if row else None

    async def require_topic(self, topic_id: UUID) -> Topic:
        """Get a topic or raise TopicNotFoundError."""
        topic = await self.get_topic(topic_id)
        if topic is None:
            raise TopicNotFoundError
        return topic

    async def list_topics(self, course_id: UUID) -> list[Topic]:
        """Topics of a course in course order."""
        rows = await execute(self.session, self._get_topics_by_course, [course_id])
        return order_topics([Topic.from_row(row) for row in rows])

    # ==========================================================================
    # Quizzes
    # ==========================================================================

    async def upsert_quiz(self, topic_id: UUID, data: UpsertQuizRequest) -> Quiz:
        """Create or replace the quiz of a topic.

        The quiz keeps its id across replacements. Questions are fully
        replaced, which is only allowed until the first learner is scored.

        Raises:
            TopicNotFoundError: If the topic does not exist
            QuizFrozenError: If any learner has submitted the quiz
        """
        await self.require_topic(topic_id)

        result = await execute(self.session, self._get_quiz, [topic_id])
        existing = result.one()
        if existing is not None and await self.is_quiz_attempted(topic_id):
            raise QuizFrozenError

        now = utc_now()
        quiz = Quiz(
            id=existing.id if existing else None,
            topic_id=topic_id,
            title=data.title,
            passing_score=(
                data.passing_score
                if data.passing_score is not None
                else round(self.settings.quiz_default_passing_score)
            ),
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        quiz.questions = [
            QuizQuestion(
                quiz_id=quiz.id,
                position=position,
                question=item.question,
                options=[option.strip() for option in item.options],
                correct_answer=item.correct_answer,
                explanation=item.explanation,
            )
            for position, item in enumerate(data.questions)
        ]

        await execute(self.session, self._delete_questions, [quiz.id])
        for question in quiz.questions:
            await execute(
                self.session,
                self._insert_question,
                [
                    question.quiz_id,
                    question.position,
                    question.id,
                    question.question,
                    question.options_json,
                    question.correct_answer,
                    question.explanation,
                ],
            )
        await execute(
            self.session,
            self._insert_quiz,
            [
                quiz.topic_id,
                quiz.id,
                quiz.title,
                quiz.passing_score,
                len(quiz.questions),
                quiz.created_at,
                quiz.updated_at,
            ],
        )

        logger.info(
            "quiz_saved",
            topic_id=str(topic_id),
            quiz_id=str(quiz.id),
            question_count=len(quiz.questions),
            replaced=existing is not None,
        )
        return quiz

    async def is_quiz_attempted(self, topic_id: UUID) -> bool:
        result = await execute(self.session, self._get_attempted_quiz, [topic_id])
        return result.one() is not None

    async def mark_quiz_attempted(self, quiz: Quiz) -> None:
        """Freeze a quiz before the first attempt row referencing it is written."""
        result = await execute(
            self.session, self._mark_attempted, [quiz.topic_id, quiz.id, utc_now()]
        )
        if result.was_applied:
            logger.info(
                "quiz_frozen", topic_id=str(quiz.topic_id), quiz_id=str(quiz.id)
            )

    async def has_quiz(self, topic_id: UUID) -> bool:
        result = await execute(self.session, self._get_quiz, [topic_id])
        return result.one() is not None

    async def get_quiz(self, topic_id: UUID) -> Quiz | None:
        """Load the quiz of a topic with its questions in order.

        Questions whose stored options cannot be parsed are returned with
        empty options and flagged; a warning is logged for each.
        """
        result = await execute(self.session, self._get_quiz, [topic_id])
        row = result.one()
        if row is None:
            return None

        question_rows = await execute(self.session, self._get_questions, [row.id])
        questions = sorted(
            (QuizQuestion.from_row(q) for q in question_rows),
            key=lambda q: q.position,
        )
        for question in questions:
            if question.data_integrity_issue:
                logger.warning(
                    "quiz_options_malformed",
                    topic_id=str(topic_id),
                    quiz_id=str(row.id),
                    question_id=str(question.id),
                    position=question.position,
                )

        return Quiz.from_row(row, questions)

    # ==========================================================================
    # Response Builders
    # ==========================================================================

    def to_response(self, course: Course, topic_count: int = 0) -> CourseResponse:
        return CourseResponse(**course.to_dict(), topic_count=topic_count)

    def topic_to_response(self, topic: Topic, has_quiz: bool = False) -> TopicResponse:
        return TopicResponse(**topic.to_dict(), has_quiz=has_quiz)

    def quiz_to_author_response(self, quiz: Quiz) -> QuizAuthorResponse:
        return QuizAuthorResponse(
            id=quiz.id,
            topic_id=quiz.topic_id,
            title=quiz.title,
            passing_score=quiz.passing_score,
            questions=[
                QuizQuestionAuthorResponse(
                    id=q.id,
                    position=q.position,
                    question=q.question,
                    options=q.options,
                    correct_answer=q.correct_answer,
                    explanation=q.explanation,
                    data_integrity_issue=q.data_integrity_issue,
                )
                for q in quiz.questions
            ],
        )
