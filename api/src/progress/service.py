"""Learner progress service layer.

Business logic for:
- Course enrollment (idempotent)
- Topic progress updates (monotonic: nothing is ever un-watched or un-completed)
- Topic completion from a passing quiz
- Course progress view with unlock statuses, cached in Redis
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

import structlog
from redis.exceptions import RedisError

from src.config import Settings, get_settings
from src.core.database.errors import execute
from src.core.redis import progress_cache_key, progress_version_key
from src.utils import dumps_json, loads_json, utc_now

from .models import Enrollment, EnrollmentStatus, TopicProgress
from .policy import TopicStatus, is_exam_eligible, status_of, topic_statuses
from .schemas import (
    CourseProgressResponse,
    EnrollmentResponse,
    TopicProgressResponse,
    TopicProgressSummary,
    UpdateTopicProgressRequest,
    UpdateTopicProgressResponse,
)


if TYPE_CHECKING:
    import redis.asyncio as redis
    from cassandra.cluster import Session

    from src.courses.models import Topic
    from src.courses.service import CourseService

logger = structlog.get_logger(__name__)


# ==============================================================================
# Custom Exceptions
# ==============================================================================


class ProgressError(Exception):
    """Base progress error."""

    def __init__(self, message: str, code: str = "progress_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class NotEnrolledError(ProgressError):
    """User not enrolled in course."""

    def __init__(self, message: str = "User is not enrolled in this course"):
        super().__init__(message, "not_enrolled")


class UnknownCourseError(ProgressError):
    """Course does not exist."""

    def __init__(self, message: str = "Course not found"):
        super().__init__(message, "course_not_found")


class TopicNotInCourseError(ProgressError):
    """Topic does not exist or belongs to another course."""

    def __init__(self, message: str = "Topic not found in this course"):
        super().__init__(message, "topic_not_found")


class TopicLockedError(ProgressError):
    """Previous topic not completed yet."""

    def __init__(self, message: str = "Complete the previous topic first"):
        super().__init__(message, "topic_locked")


class VideoNotWatchedError(ProgressError):
    """Topic cannot be completed before its video is watched."""

    def __init__(self, message: str = "Watch the video before completing the topic"):
        super().__init__(message, "video_not_watched")


class QuizRequiredError(ProgressError):
    """Topics with a quiz are completed only by passing the quiz."""

    def __init__(self, message: str = "This topic is completed by passing its quiz"):
        super().__init__(message, "quiz_required")


# ==============================================================================
# Learner State
# ==============================================================================


@dataclass
class LearnerCourseState:
    """Durable state of one learner in one course, read fresh from the store."""

    course_id: UUID
    enrollment: Enrollment | None
    topics: list["Topic"]
    progress: dict[UUID, TopicProgress] = field(default_factory=dict)

    @property
    def enrolled(self) -> bool:
        return self.enrollment is not None

    @property
    def topic_ids(self) -> list[UUID]:
        return [topic.id for topic in self.topics]

    @property
    def statuses(self) -> list[TopicStatus]:
        return topic_statuses(self.topic_ids, self.progress)

    @property
    def topics_completed(self) -> int:
        return sum(1 for status in self.statuses if status == TopicStatus.COMPLETED)

    @property
    def exam_eligible(self) -> bool:
        """All topics completed, in a course that has at least one topic."""
        return bool(self.topics) and is_exam_eligible(self.topic_ids, self.progress)

    def status_of(self, topic_id: UUID) -> TopicStatus | None:
        return status_of(self.topic_ids, self.progress, topic_id)

    def progress_of(self, topic_id: UUID) -> TopicProgress | None:
        return self.progress.get(topic_id)

    @property
    def progress_percent(self) -> Decimal:
        if not self.topics:
            return Decimal(0)
        percent = Decimal(self.topics_completed) * 100 / Decimal(len(self.topics))
        return percent.quantize(Decimal("0.01"))


# ==============================================================================
# Progress Service
# ==============================================================================


class ProgressService:
    """Service for enrollment and topic progress."""

    def __init__(
        self,
        session: "Session",
        keyspace: str,
        course_service: "CourseService",
        redis: "redis.Redis | None" = None,
        settings: Settings | None = None,
    ):
        """Initialize with Cassandra session and optional Redis cache."""
        self.session = session
        self.keyspace = keyspace
        self.courses = course_service
        self.redis = redis
        self.settings = settings or get_settings()
        self.video_threshold = Decimal(str(self.settings.video_watched_threshold))
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient execution."""
        # Topic progress
        self._get_topic_progress = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.topic_progress
            WHERE user_id = ? AND course_id = ? AND topic_id = ?
        """)

        self._get_course_topic_progress = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.topic_progress
            WHERE user_id = ? AND course_id = ?
        """)

        self._upsert_topic_progress = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.topic_progress
            (user_id, course_id, topic_id, enrollment_id, video_watched,
             video_progress, is_completed, quiz_score, completed_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """)

        # Enrollments
        self._get_enrollment = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.enrollments
            WHERE course_id = ? AND user_id = ?
        """)

        self._insert_enrollment_if_absent = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.enrollments
            (course_id, user_id, id, status, progress_percent, topics_completed,
             topics_total, enrolled_at, completed_at, last_accessed_at,
             last_topic_id)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            IF NOT EXISTS
        """)

        self._update_enrollment = self.session.prepare(f"""
            UPDATE {self.keyspace}.enrollments
            SET status = ?, progress_percent = ?, topics_completed = ?,
                topics_total = ?, completed_at = ?, last_accessed_at = ?,
                last_topic_id = ?
            WHERE course_id = ? AND user_id = ?
        """)

        # Enrollments by user (lookup)
        self._get_user_enrollments = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.enrollments_by_user
            WHERE user_id = ?
        """)

        self._upsert_enrollment_by_user = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.enrollments_by_user
            (user_id, enrolled_at, course_id, id, status, progress_percent,
             topics_completed, topics_total, last_accessed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """)

    # ==========================================================================
    # Enrollment Operations
    # ==========================================================================

    async def enroll(self, user_id: UUID, course_id: UUID) -> tuple[Enrollment, bool]:
        """Enroll user in a course.

        Idempotent: enrolling twice returns the existing enrollment.

        Returns:
            Tuple of (enrollment, created)

        Raises:
            UnknownCourseError: If the course does not exist
        """
        existing = await self.get_enrollment(user_id, course_id)
        if existing:
            return existing, False

        if await self.courses.get_course(course_id) is None:
            raise UnknownCourseError

        topics = await self.courses.list_topics(course_id)
        enrollment = Enrollment(
            course_id=course_id,
            user_id=user_id,
            topics_total=len(topics),
        )

        result = await execute(
            self.session,
            self._insert_enrollment_if_absent,
            [
                enrollment.course_id,
                enrollment.user_id,
                enrollment.id,
                enrollment.status,
                enrollment.progress_percent,
                enrollment.topics_completed,
                enrollment.topics_total,
                enrollment.enrolled_at,
                enrollment.completed_at,
                enrollment.last_accessed_at,
                enrollment.last_topic_id,
            ],
        )
        if not result.was_applied:
            # Concurrent enrollment won
            return await self.get_enrollment(user_id, course_id), False

        await self._write_enrollment_lookup(enrollment)
        await self.invalidate_cache(user_id, course_id)

        logger.info(
            "user_enrolled",
            user_id=str(user_id),
            course_id=str(course_id),
            topics_total=enrollment.topics_total,
        )
        return enrollment, True

    async def get_enrollment(self, user_id: UUID, course_id: UUID) -> Enrollment | None:
        """Get enrollment for user in course."""
        result = await execute(self.session, self._get_enrollment, [course_id, user_id])
        row = result.one()
        return Enrollment.from_row(row) if row else None

    async def list_enrollments(self, user_id: UUID) -> list[Enrollment]:
        """Get all enrollments for a user, most recent first."""
        rows = await execute(self.session, self._get_user_enrollments, [user_id])
        return [Enrollment.from_row(row) for row in rows]

    async def _write_enrollment_lookup(self, enrollment: Enrollment) -> None:
        await execute(
            self.session,
            self._upsert_enrollment_by_user,
            [
                enrollment.user_id,
                enrollment.enrolled_at,
                enrollment.course_id,
                enrollment.id,
                enrollment.status,
                enrollment.progress_percent,
                enrollment.topics_completed,
                enrollment.topics_total,
                enrollment.last_accessed_at,
            ],
        )

    async def _save_enrollment(self, enrollment: Enrollment) -> None:
        """Dual write: main table + lookup table."""
        await execute(
            self.session,
            self._update_enrollment,
            [
                enrollment.status,
                enrollment.progress_percent,
                enrollment.topics_completed,
                enrollment.topics_total,
                enrollment.completed_at,
                enrollment.last_accessed_at,
                enrollment.last_topic_id,
                enrollment.course_id,
                enrollment.user_id,
            ],
        )
        await self._write_enrollment_lookup(enrollment)

    # ==========================================================================
    # Learner State
    # ==========================================================================

    async def get_course_topic_progress(
        self, user_id: UUID, course_id: UUID
    ) -> dict[UUID, TopicProgress]:
        rows = await execute(
            self.session, self._get_course_topic_progress, [user_id, course_id]
        )
        return {row.topic_id: TopicProgress.from_row(row) for row in rows}

    async def get_learner_state(
        self, user_id: UUID, course_id: UUID
    ) -> LearnerCourseState:
        """Read enrollment, ordered topics and progress rows from the store.

        Gating decisions are always made on this fresh state, never on the
        cached view.
        """
        enrollment = await self.get_enrollment(user_id, course_id)
        topics = await self.courses.list_topics(course_id)
        progress = (
            await self.get_course_topic_progress(user_id, course_id)
            if enrollment
            else {}
        )
        return LearnerCourseState(
            course_id=course_id,
            enrollment=enrollment,
            topics=topics,
            progress=progress,
        )

    # ==========================================================================
    # Topic Progress Operations
    # ==========================================================================

    async def update_topic_progress(
        self, user_id: UUID, data: UpdateTopicProgressRequest
    ) -> UpdateTopicProgressResponse:
        """Apply a partial progress update.

        - ``video_progress`` only moves forward; reaching the watched
          threshold marks the video watched.
        - ``video_watched=true`` marks the video watched; false is ignored.
        - ``is_completed=true`` completes a topic without quiz once its
          video is watched; false is ignored.

        Raises:
            NotEnrolledError: If the user is not enrolled
            TopicNotInCourseError: If the topic is not part of the course
            TopicLockedError: If the previous topic is not completed
            QuizRequiredError: If completing a topic that has a quiz
            VideoNotWatchedError: If completing before the video is watched
        """
        state = await self.get_learner_state(user_id, data.course_id)
        if not state.enrolled:
            raise NotEnrolledError

        status = state.status_of(data.topic_id)
        if status is None:
            raise TopicNotInCourseError
        if status == TopicStatus.LOCKED:
            raise TopicLockedError

        now = utc_now()
        progress = state.progress_of(data.topic_id) or TopicProgress(
            user_id=user_id,
            course_id=data.course_id,
            topic_id=data.topic_id,
            enrollment_id=state.enrollment.id,
        )

        if data.video_progress is not None:
            progress.video_progress = max(progress.video_progress, data.video_progress)
        if progress.video_progress >= self.video_threshold or data.video_watched:
            progress.video_watched = True

        newly_completed = False
        if data.is_completed and not progress.is_completed:
            if await self.courses.has_quiz(data.topic_id):
                raise QuizRequiredError
            if not progress.video_watched:
                raise VideoNotWatchedError
            progress.is_completed = True
            progress.completed_at = now
            newly_completed = True

        progress.updated_at = now
        await self._save_topic_progress(progress)
        state.progress[data.topic_id] = progress

        await self._refresh_enrollment(state, data.topic_id, now)
        await self.invalidate_cache(user_id, data.course_id)

        if newly_completed:
            logger.info(
                "topic_completed",
                user_id=str(user_id),
                course_id=str(data.course_id),
                topic_id=str(data.topic_id),
                via="progress_update",
            )

        return UpdateTopicProgressResponse(
            progress=TopicProgressResponse.from_entity(progress),
            course_progress_percent=state.progress_percent,
            topics_completed=state.topics_completed,
            topics_total=len(state.topics),
            exam_eligible=state.exam_eligible,
        )

    async def complete_topic_from_quiz(
        self,
        state: LearnerCourseState,
        topic_id: UUID,
        quiz_score: int,
    ) -> TopicProgress:
        """Mark a topic completed after a passing quiz attempt.

        The caller has already checked enrollment, unlock and video gates on
        ``state``. The row is written before the cache is invalidated so the
        next read sees the following topic unlocked.
        """
        now = utc_now()
        progress = state.progress_of(topic_id) or TopicProgress(
            user_id=state.enrollment.user_id,
            course_id=state.course_id,
            topic_id=topic_id,
            enrollment_id=state.enrollment.id,
        )
        progress.video_watched = True
        progress.is_completed = True
        progress.quiz_score = quiz_score
        progress.completed_at = progress.completed_at or now
        progress.updated_at = now

        await self._save_topic_progress(progress)
        state.progress[topic_id] = progress

        await self._refresh_enrollment(state, topic_id, now)
        await self.invalidate_cache(progress.user_id, state.course_id)

        logger.info(
            "topic_completed",
            user_id=str(progress.user_id),
            course_id=str(state.course_id),
            topic_id=str(topic_id),
            quiz_score=quiz_score,
            via="quiz",
        )
        return progress

    async def _save_topic_progress(self, progress: TopicProgress) -> None:
        await execute(
            self.session,
            self._upsert_topic_progress,
            [
                progress.user_id,
                progress.course_id,
                progress.topic_id,
                progress.enrollment_id,
                progress.video_watched,
                progress.video_progress,
                progress.is_completed,
                progress.quiz_score,
                progress.completed_at,
                progress.updated_at,
            ],
        )

    async def _refresh_enrollment(
        self, state: LearnerCourseState, topic_id: UUID, now
    ) -> None:
        """Recalculate enrollment aggregates from the learner state."""
        enrollment = state.enrollment
        enrollment.topics_total = len(state.topics)
        enrollment.topics_completed = state.topics_completed
        enrollment.progress_percent = state.progress_percent
        enrollment.last_accessed_at = now
        enrollment.last_topic_id = topic_id

        if state.exam_eligible and not enrollment.is_completed:
            enrollment.status = EnrollmentStatus.COMPLETED.value
            enrollment.completed_at = now
            logger.info(
                "course_topics_completed",
                user_id=str(enrollment.user_id),
                course_id=str(enrollment.course_id),
            )

        await self._save_enrollment(enrollment)

    # ==========================================================================
    # Course Progress View
    # ==========================================================================

    async def get_course_progress(
        self, user_id: UUID, course_id: UUID
    ) -> CourseProgressResponse:
        """Topic statuses in course order and exam eligibility.

        Read-through cached in Redis; the cache is invalidated after every
        mutation of the underlying rows.

        Raises:
            UnknownCourseError: If the course does not exist
        """
        cached, version = await self._cache_get(user_id, course_id)
        if cached is not None:
            return cached

        if await self.courses.get_course(course_id) is None:
            raise UnknownCourseError

        state = await self.get_learner_state(user_id, course_id)
        statuses = state.statuses

        topics = []
        for topic, status in zip(state.topics, statuses, strict=True):
            progress = state.progress_of(topic.id)
            topics.append(
                TopicProgressSummary(
                    topic_id=topic.id,
                    title=topic.title,
                    position=topic.position,
                    status=status,
                    has_quiz=await self.courses.has_quiz(topic.id),
                    video_watched=progress.video_watched if progress else False,
                    video_progress=progress.video_progress if progress else Decimal(0),
                    is_completed=progress.is_completed if progress else False,
                    quiz_score=progress.quiz_score if progress else None,
                )
            )

        view = CourseProgressResponse(
            course_id=course_id,
            enrolled=state.enrolled,
            enrollment=(
                EnrollmentResponse.from_entity(state.enrollment)
                if state.enrollment
                else None
            ),
            topics=topics,
            topics_completed=state.topics_completed,
            topics_total=len(state.topics),
            progress_percent=state.progress_percent,
            exam_eligible=state.exam_eligible,
        )
        await self._cache_set(user_id, course_id, view, version)
        return view

    # ==========================================================================
    # Cache (advisory: failures are logged and ignored)
    # ==========================================================================

    async def _cache_get(
        self, user_id: UUID, course_id: UUID
    ) -> tuple[CourseProgressResponse | None, int | None]:
        """Cached view and the current invalidation version of its key.

        An entry written under an older version is stale and ignored. The
        version is None when Redis is missing or failing.
        """
        if self.redis is None:
            return None, None
        try:
            raw, version = await self.redis.mget(
                progress_cache_key(str(user_id), str(course_id)),
                progress_version_key(str(user_id), str(course_id)),
            )
        except RedisError as e:
            logger.warning("progress_cache_read_failed", error=str(e))
            return None, None

        current = int(version or 0)
        entry = loads_json(raw)
        if not entry or entry.get("version") != current:
            return None, current
        return CourseProgressResponse.model_validate(entry["view"]), current

    async def _cache_set(
        self,
        user_id: UUID,
        course_id: UUID,
        view: CourseProgressResponse,
        version: int | None,
    ) -> None:
        if self.redis is None or version is None:
            return
        entry = {"version": version, "view": view.model_dump(mode="json")}
        try:
            await self.redis.set(
                progress_cache_key(str(user_id), str(course_id)),
                dumps_json(entry),
                ex=self.settings.progress_cache_ttl_seconds,
            )
        except RedisError as e:
            logger.warning("progress_cache_write_failed", error=str(e))

    async def invalidate_cache(self, user_id: UUID, course_id: UUID) -> None:
        """Bump the version first so a read already in flight is never cached."""
        if self.redis is None:
            return
        try:
            await self.redis.incr(progress_version_key(str(user_id), str(course_id)))
            await self.redis.delete(progress_cache_key(str(user_id), str(course_id)))
        except RedisError as e:
            logger.warning(
                "progress_cache_invalidate_failed",
                user_id=str(user_id),
                course_id=str(course_id),
                error=str(e),
            )
