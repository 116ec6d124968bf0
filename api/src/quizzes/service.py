"""Quiz service layer.

Business logic for:
- Learner quiz view (topic must be unlocked)
- Question-by-question sessions with immediate feedback
- Quiz submission: gating, scoring, single durable passing attempt
- Attempt review and history

Failed submissions are kept in the attempt log only, so a learner can
retry until they pass. A passing submission creates the one durable
attempt and completes the topic.
"""

from typing import TYPE_CHECKING
from uuid import UUID

import structlog

from src.config import Settings, get_settings
from src.core.database.errors import execute
from src.progress.policy import TopicStatus

from .engine import AdvanceOutcome, InvalidOptionError, QuizSession, grade
from .models import QuizAttempt
from .schemas import (
    AdvanceResponse,
    AnswerFeedbackResponse,
    AttemptHistoryItem,
    AttemptHistoryResponse,
    GoBackResponse,
    LearnerQuestionResponse,
    LearnerQuizResponse,
    QuizAttemptReviewResponse,
    QuizResultResponse,
    QuizSessionResponse,
    ReviewQuestionResponse,
    SelectAnswerResponse,
)
from .sessions import QuizSessionStore


if TYPE_CHECKING:
    from cassandra.cluster import Session

    from src.courses.models import Quiz, Topic
    from src.courses.service import CourseService
    from src.progress.service import LearnerCourseState, ProgressService

logger = structlog.get_logger(__name__)


# ==============================================================================
# Custom Exceptions
# ==============================================================================


class QuizError(Exception):
    """Base quiz error."""

    def __init__(self, message: str, code: str = "quiz_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class QuizTopicNotFoundError(QuizError):
    def __init__(self, message: str = "Topic not found"):
        super().__init__(message, "topic_not_found")


class QuizNotFoundError(QuizError):
    """Topic has no quiz."""

    def __init__(self, message: str = "Quiz not found"):
        super().__init__(message, "quiz_not_found")


class NotEnrolledError(QuizError):
    def __init__(self, message: str = "User is not enrolled in this course"):
        super().__init__(message, "not_enrolled")


class TopicLockedError(QuizError):
    def __init__(self, message: str = "Complete the previous topic first"):
        super().__init__(message, "topic_locked")


class VideoNotWatchedError(QuizError):
    """Quiz is unlocked only after the topic video is watched."""

    def __init__(self, message: str = "Watch the video before taking the quiz"):
        super().__init__(message, "video_not_watched")


class QuizMismatchError(QuizError):
    def __init__(self, message: str = "Quiz does not belong to this topic"):
        super().__init__(message, "quiz_topic_mismatch")


class QuizAlreadyAttemptedError(QuizError):
    """A passing attempt exists; the quiz is review-only."""

    def __init__(self, message: str = "Quiz already completed for this topic"):
        super().__init__(message, "quiz_already_attempted")


class InvalidAnswersError(QuizError):
    def __init__(self, message: str = "Invalid answers"):
        super().__init__(message, "invalid_answers")


class QuizSessionNotFoundError(QuizError):
    def __init__(self, message: str = "No quiz in progress for this topic"):
        super().__init__(message, "session_not_found")


# ==============================================================================
# Quiz Service
# ==============================================================================


class QuizService:
    """Service for taking topic quizzes."""

    def __init__(
        self,
        session: "Session",
        keyspace: str,
        course_service: "CourseService",
        progress_service: "ProgressService",
        session_store: QuizSessionStore | None = None,
        settings: Settings | None = None,
    ):
        """Initialize with Cassandra session and collaborating services."""
        self.session = session
        self.keyspace = keyspace
        self.courses = course_service
        self.progress = progress_service
        self.settings = settings or get_settings()
        self.sessions = session_store or QuizSessionStore(
            ttl_seconds=self.settings.quiz_session_ttl_seconds
        )
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements."""
        self._get_attempt = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.quiz_attempts
            WHERE user_id = ? AND topic_id = ?
        """)

        self._insert_attempt_if_absent = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.quiz_attempts
            (user_id, topic_id, id, quiz_id, answers, score, passed,
             correct_count, total_questions, completed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            IF NOT EXISTS
        """)

        self._insert_log_entry = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.quiz_attempt_log
            (user_id, topic_id, completed_at, id, quiz_id, score, passed,
             correct_count, total_questions, answers)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """)

        self._get_log = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.quiz_attempt_log
            WHERE user_id = ? AND topic_id = ?
        """)

    # ==========================================================================
    # Gating
    # ==========================================================================

    async def _load_context(
        self, user_id: UUID, topic_id: UUID
    ) -> tuple["Topic", "Quiz", "LearnerCourseState"]:
        """Load topic, quiz and fresh learner state; reject locked topics.

        Raises:
            QuizTopicNotFoundError: If the topic does not exist
            QuizNotFoundError: If the topic has no quiz
            NotEnrolledError: If the learner is not enrolled in the course
            TopicLockedError: If the previous topic is not completed
        """
        topic = await self.courses.get_topic(topic_id)
        if topic is None:
            raise QuizTopicNotFoundError

        quiz = await self.courses.get_quiz(topic_id)
        if quiz is None:
            raise QuizNotFoundError

        state = await self.progress.get_learner_state(user_id, topic.course_id)
        if not state.enrolled:
            raise NotEnrolledError

        status = state.status_of(topic_id)
        if status is None:
            raise QuizTopicNotFoundError
        if status == TopicStatus.LOCKED:
            raise TopicLockedError

        return topic, quiz, state

    @staticmethod
    def _video_watched(state: "LearnerCourseState", topic_id: UUID) -> bool:
        progress = state.progress_of(topic_id)
        return bool(progress and progress.video_watched)

    @staticmethod
    def _topic_completed(state: "LearnerCourseState", topic_id: UUID) -> bool:
        progress = state.progress_of(topic_id)
        return bool(progress and progress.is_completed)

    async def _get_attempt_entity(
        self, user_id: UUID, topic_id: UUID
    ) -> QuizAttempt | None:
        result = await execute(self.session, self._get_attempt, [user_id, topic_id])
        row = result.one()
        return QuizAttempt.from_row(row) if row else None

    # ==========================================================================
    # Learner View
    # ==========================================================================

    async def get_quiz_for_learner(
        self, user_id: UUID, topic_id: UUID
    ) -> LearnerQuizResponse:
        """Quiz questions without correct answers, with gate flags.

        A missing video watch is not an error here; it is reported through
        ``video_watched`` and ``can_attempt``.
        """
        topic, quiz, state = await self._load_context(user_id, topic_id)
        attempt = await self._get_attempt_entity(user_id, topic_id)
        if attempt is not None and not self._topic_completed(state, topic_id):
            await self._finish_completion(state, attempt)

        video_watched = self._video_watched(state, topic_id)
        review_only = attempt is not None or self._topic_completed(state, topic_id)

        return LearnerQuizResponse(
            id=quiz.id,
            topic_id=topic_id,
            course_id=topic.course_id,
            title=quiz.title,
            passing_score=quiz.passing_score,
            questions=[
                LearnerQuestionResponse(
                    id=q.id,
                    position=q.position,
                    question=q.question,
                    options=q.options,
                    data_integrity_issue=q.data_integrity_issue,
                )
                for q in quiz.questions
            ],
            video_watched=video_watched,
            review_only=review_only,
            can_attempt=video_watched and not review_only,
        )

    # ==========================================================================
    # Sessions
    # ==========================================================================

    async def open_session(
        self, user_id: UUID, topic_id: UUID
    ) -> QuizSessionResponse:
        """Start or resume question-by-question navigation.

        Raises:
            VideoNotWatchedError: If the topic video is not watched yet
        """
        _, quiz, state = await self._load_context(user_id, topic_id)

        existing = await self.sessions.load(user_id, topic_id)
        if existing and existing.quiz_id == str(quiz.id):
            return QuizSessionResponse.from_session(existing)

        attempt = await self._get_attempt_entity(user_id, topic_id)
        if attempt is not None and not self._topic_completed(state, topic_id):
            await self._finish_completion(state, attempt)
        review_only = self._topic_completed(state, topic_id)
        if not review_only and not self._video_watched(state, topic_id):
            raise VideoNotWatchedError

        quiz_session = QuizSession(
            quiz_id=str(quiz.id),
            topic_id=str(topic_id),
            question_ids=[str(q.id) for q in quiz.questions],
            review_only=review_only,
        )
        await self.sessions.save(user_id, quiz_session)

        logger.info(
            "quiz_session_opened",
            user_id=str(user_id),
            topic_id=str(topic_id),
            quiz_id=str(quiz.id),
            review_only=review_only,
        )
        return QuizSessionResponse.from_session(quiz_session)

    async def _require_session(
        self, user_id: UUID, topic_id: UUID, quiz: "Quiz"
    ) -> QuizSession:
        quiz_session = await self.sessions.load(user_id, topic_id)
        if quiz_session is None:
            raise QuizSessionNotFoundError
        if quiz_session.quiz_id != str(quiz.id):
            # Quiz was replaced by its author
            await self.sessions.delete(user_id, topic_id)
            raise QuizSessionNotFoundError
        return quiz_session

    async def select_answer(
        self,
        user_id: UUID,
        topic_id: UUID,
        question_id: UUID,
        option_index: int,
    ) -> SelectAnswerResponse:
        """Answer the current question and reveal its feedback.

        Selections are ignored in review mode, for a question that is not
        the current one, or once feedback is revealed.

        Raises:
            InvalidAnswersError: If the option index does not exist
        """
        _, quiz, _ = await self._load_context(user_id, topic_id)
        quiz_session = await self._require_session(user_id, topic_id, quiz)

        question = next((q for q in quiz.questions if q.id == question_id), None)
        if question is None:
            return SelectAnswerResponse(
                accepted=False, session=QuizSessionResponse.from_session(quiz_session)
            )

        try:
            feedback = quiz_session.select_answer(question, option_index)
        except InvalidOptionError as e:
            raise InvalidAnswersError(str(e)) from e

        if feedback is not None:
            await self.sessions.save(user_id, quiz_session)

        return SelectAnswerResponse(
            accepted=feedback is not None,
            feedback=AnswerFeedbackResponse.from_feedback(feedback) if feedback else None,
            session=QuizSessionResponse.from_session(quiz_session),
        )

    async def advance(self, user_id: UUID, topic_id: UUID) -> AdvanceResponse:
        """Move forward; past the last revealed answer the quiz is submitted."""
        _, quiz, _ = await self._load_context(user_id, topic_id)
        quiz_session = await self._require_session(user_id, topic_id, quiz)

        outcome = quiz_session.advance()
        if outcome is None:
            return AdvanceResponse(
                moved=False, session=QuizSessionResponse.from_session(quiz_session)
            )

        if outcome == AdvanceOutcome.READY_TO_SUBMIT:
            result = await self.submit_quiz(
                user_id, quiz.id, topic_id, quiz_session.answers
            )
            await self.sessions.delete(user_id, topic_id)
            return AdvanceResponse(moved=False, submitted=True, result=result)

        await self.sessions.save(user_id, quiz_session)
        return AdvanceResponse(
            moved=True, session=QuizSessionResponse.from_session(quiz_session)
        )

    async def go_back(self, user_id: UUID, topic_id: UUID) -> GoBackResponse:
        _, quiz, _ = await self._load_context(user_id, topic_id)
        quiz_session = await self._require_session(user_id, topic_id, quiz)

        moved = quiz_session.go_back()
        if moved:
            await self.sessions.save(user_id, quiz_session)
        return GoBackResponse(
            moved=moved, session=QuizSessionResponse.from_session(quiz_session)
        )

    async def discard_session(self, user_id: UUID, topic_id: UUID) -> None:
        """Drop local answer state, e.g. to retake after a failed attempt."""
        await self.sessions.delete(user_id, topic_id)

    # ==========================================================================
    # Submission
    # ==========================================================================

    def _validate_answers(self, quiz: "Quiz", answers: dict[str, int]) -> None:
        question_ids = {str(q.id) for q in quiz.questions}

        unknown = set(answers) - question_ids
        if unknown:
            msg = f"Answers reference {len(unknown)} unknown question(s)"
            raise InvalidAnswersError(msg)

        missing = question_ids - set(answers)
        if missing:
            msg = f"Missing answers for {len(missing)} question(s)"
            raise InvalidAnswersError(msg)

        for question in quiz.questions:
            selected = answers[str(question.id)]
            # Unreadable options are scored as wrong, whatever was chosen
            if question.options and not 0 <= selected < len(question.options):
                msg = f"Option {selected} does not exist for question {question.id}"
                raise InvalidAnswersError(msg)

    async def submit_quiz(
        self,
        user_id: UUID,
        quiz_id: UUID,
        topic_id: UUID,
        answers: dict,
    ) -> QuizResultResponse:
        """Score a full set of answers.

        On pass the durable attempt is created and the topic completed. On
        fail only the attempt log is written and the quiz can be retaken.

        Raises:
            VideoNotWatchedError: If the topic video is not watched
            QuizMismatchError: If the quiz is not the topic's quiz
            QuizAlreadyAttemptedError: If the topic is already completed
            InvalidAnswersError: If answers are missing, unknown or out of range
        """
        _, quiz, state = await self._load_context(user_id, topic_id)

        if not self._video_watched(state, topic_id):
            raise VideoNotWatchedError
        if quiz.id != quiz_id:
            raise QuizMismatchError
        if self._topic_completed(state, topic_id):
            raise QuizAlreadyAttemptedError
        stored = await self._get_attempt_entity(user_id, topic_id)
        if stored is not None:
            # Passed earlier but the topic was never marked completed
            return await self._resume_completion(state, quiz, stored)

        normalized = {str(key): value for key, value in answers.items()}
        self._validate_answers(quiz, normalized)
        await self.courses.mark_quiz_attempted(quiz)

        graded = grade(quiz.questions, normalized, quiz.passing_score)
        attempt = QuizAttempt(
            user_id=user_id,
            topic_id=topic_id,
            quiz_id=quiz.id,
            answers=normalized,
            score=graded.score,
            passed=graded.passed,
            correct_count=graded.correct_count,
            total_questions=graded.total_questions,
        )

        if attempt.passed:
            result = await execute(
                self.session,
                self._insert_attempt_if_absent,
                [
                    attempt.user_id,
                    attempt.topic_id,
                    attempt.id,
                    attempt.quiz_id,
                    attempt.answers_json,
                    attempt.score,
                    attempt.passed,
                    attempt.correct_count,
                    attempt.total_questions,
                    attempt.completed_at,
                ],
            )
            if not result.was_applied:
                # A concurrent submission passed first
                raise QuizAlreadyAttemptedError

        await execute(
            self.session,
            self._insert_log_entry,
            [
                attempt.user_id,
                attempt.topic_id,
                attempt.completed_at,
                attempt.id,
                attempt.quiz_id,
                attempt.score,
                attempt.passed,
                attempt.correct_count,
                attempt.total_questions,
                attempt.answers_json,
            ],
        )

        if attempt.passed:
            await self.progress.complete_topic_from_quiz(state, topic_id, attempt.score)

        logger.info(
            "quiz_submitted",
            user_id=str(user_id),
            topic_id=str(topic_id),
            quiz_id=str(quiz.id),
            score=attempt.score,
            passed=attempt.passed,
        )

        return self._to_result(quiz, attempt, graded.feedback)

    async def _resume_completion(
        self, state: "LearnerCourseState", quiz: "Quiz", attempt: QuizAttempt
    ) -> QuizResultResponse:
        """Answers sent with the retry are ignored; the stored attempt stands."""
        await self._finish_completion(state, attempt)
        graded = grade(quiz.questions, attempt.answers, quiz.passing_score)
        return self._to_result(quiz, attempt, graded.feedback)

    async def _finish_completion(
        self, state: "LearnerCourseState", attempt: QuizAttempt
    ) -> None:
        """Complete the topic of a stored pass whose completion write failed."""
        await self.progress.complete_topic_from_quiz(
            state, attempt.topic_id, attempt.score
        )
        logger.info(
            "quiz_completion_resumed",
            user_id=str(attempt.user_id),
            topic_id=str(attempt.topic_id),
            attempt_id=str(attempt.id),
        )

    @staticmethod
    def _to_result(
        quiz: "Quiz", attempt: QuizAttempt, feedback
    ) -> QuizResultResponse:
        return QuizResultResponse(
            attempt_id=attempt.id,
            quiz_id=quiz.id,
            topic_id=attempt.topic_id,
            score=attempt.score,
            passed=attempt.passed,
            passing_score=quiz.passing_score,
            correct_count=attempt.correct_count,
            total_questions=attempt.total_questions,
            feedback=[AnswerFeedbackResponse.from_feedback(item) for item in feedback],
            topic_completed=attempt.passed,
            completed_at=attempt.completed_at,
        )

    # ==========================================================================
    # Review & History
    # ==========================================================================

    async def get_quiz_attempt(
        self, user_id: UUID, topic_id: UUID
    ) -> QuizAttemptReviewResponse | None:
        """Rebuild the stored attempt for review, or None if there is none."""
        attempt = await self._get_attempt_entity(user_id, topic_id)
        if attempt is None:
            return None

        quiz = await self.courses.get_quiz(topic_id)
        questions = quiz.questions if quiz else []
        graded = grade(questions, attempt.answers, quiz.passing_score if quiz else 0)

        return QuizAttemptReviewResponse(
            attempt_id=attempt.id,
            quiz_id=attempt.quiz_id,
            topic_id=topic_id,
            score=attempt.score,
            passed=attempt.passed,
            correct_count=attempt.correct_count,
            total_questions=attempt.total_questions,
            completed_at=attempt.completed_at,
            questions=[
                ReviewQuestionResponse(
                    question_id=question.id,
                    position=question.position,
                    question=question.question,
                    options=question.options,
                    selected=feedback.selected,
                    correct_answer=question.correct_answer,
                    is_correct=feedback.is_correct,
                    explanation=question.explanation,
                    data_integrity_issue=question.data_integrity_issue,
                )
                for question, feedback in zip(questions, graded.feedback, strict=True)
            ],
        )

    async def list_attempt_history(
        self, user_id: UUID, topic_id: UUID
    ) -> AttemptHistoryResponse:
        rows = await execute(self.session, self._get_log, [user_id, topic_id])
        items = [
            AttemptHistoryItem(
                id=attempt.id,
                quiz_id=attempt.quiz_id,
                score=attempt.score,
                passed=attempt.passed,
                correct_count=attempt.correct_count,
                total_questions=attempt.total_questions,
                completed_at=attempt.completed_at,
            )
            for attempt in (QuizAttempt.from_row(row) for row in rows)
        ]
        return AttemptHistoryResponse(topic_id=topic_id, items=items, total=len(items))
