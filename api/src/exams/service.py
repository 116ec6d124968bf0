"""Final exam service layer.

Business logic for:
- Scheduling (course fully completed, one active exam per learner and course)
- Starting (question snapshot, deadline registration)
- Countdown tick and answer autosave
- Submission by the learner or by the deadline, exactly once
- Certificate issuance for passed exams

Every state change is a conditional write on the current status, so two
concurrent submissions can never both score the exam.
"""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

import structlog

from src.certificates.schemas import CertificateResponse
from src.config import Settings, get_settings
from src.core.database.errors import StoreUnavailableError, execute
from src.utils import dumps_json, utc_now

from .machine import (
    ExamStatus,
    InvalidTransitionError,
    SubmittedBy,
    ensure_transition,
    is_expired,
    score_exam,
    time_left_seconds,
)
from .models import IN_PROGRESS_BUCKET, ExamSchedule
from .questions import ExamQuestionProvider, QuestionBankEmptyError
from .schemas import (
    ExamListResponse,
    ExamQuestionResponse,
    ExamResponse,
    ExamResultResponse,
    ExamTickResponse,
    SaveAnswersResponse,
)


if TYPE_CHECKING:
    from cassandra.cluster import Session

    from src.certificates.models import Certificate
    from src.certificates.service import CertificateService
    from src.progress.service import ProgressService

    from .watcher import ExamDeadlineWatcher

logger = structlog.get_logger(__name__)


# ==============================================================================
# Custom Exceptions
# ==============================================================================


class ExamError(Exception):
    """Base exam error."""

    def __init__(self, message: str, code: str = "exam_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class ExamNotFoundError(ExamError):
    def __init__(self, message: str = "Exam not found"):
        super().__init__(message, "exam_not_found")


class ExamCourseNotFoundError(ExamError):
    def __init__(self, message: str = "Course not found"):
        super().__init__(message, "course_not_found")


class NotEnrolledError(ExamError):
    def __init__(self, message: str = "User is not enrolled in this course"):
        super().__init__(message, "not_enrolled")


class ExamNotEligibleError(ExamError):
    """Some topic of the course is not completed."""

    def __init__(self, message: str = "Complete every topic before the exam"):
        super().__init__(message, "exam_not_eligible")


class CourseHasNoTopicsError(ExamError):
    def __init__(self, message: str = "Course has no topics"):
        super().__init__(message, "course_has_no_topics")


class ExamAlreadyActiveError(ExamError):
    """A SCHEDULED or IN_PROGRESS exam exists for this course."""

    def __init__(self, message: str = "An exam is already scheduled for this course"):
        super().__init__(message, "exam_already_active")


class ExamNotScheduledError(ExamError):
    def __init__(self, message: str = "Exam is not in SCHEDULED state"):
        super().__init__(message, "exam_not_scheduled")


class ExamNotInProgressError(ExamError):
    """Exam was already submitted, or never started."""

    def __init__(self, message: str = "Exam is not in progress"):
        super().__init__(message, "exam_not_in_progress")


class InvalidExamAnswersError(ExamError):
    def __init__(self, message: str = "Invalid answers"):
        super().__init__(message, "invalid_answers")


class ExamQuestionsUnavailableError(ExamError):
    def __init__(self, message: str = "No questions available for this exam"):
        super().__init__(message, "exam_questions_unavailable")


# ==============================================================================
# Exam Service
# ==============================================================================


class ExamService:
    """Service for final exams."""

    def __init__(
        self,
        session: "Session",
        keyspace: str,
        progress_service: "ProgressService",
        certificate_service: "CertificateService",
        question_provider: ExamQuestionProvider,
        settings: Settings | None = None,
    ):
        """Initialize with Cassandra session and collaborating services."""
        self.session = session
        self.keyspace = keyspace
        self.progress = progress_service
        self.certificates = certificate_service
        self.questions = question_provider
        self.settings = settings or get_settings()
        self.watcher: ExamDeadlineWatcher | None = None
        self._prepare_statements()

    def set_watcher(self, watcher: "ExamDeadlineWatcher | None") -> None:
        """Set the deadline watcher notified on start and submit."""
        self.watcher = watcher

    def _prepare_statements(self) -> None:
        """Prepare CQL statements."""
        # Exam schedules
        self._get_exam = self.session.prepare(
            f"SELECT * FROM {self.keyspace}.exam_schedules WHERE id = ?"
        )

        self._insert_exam = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.exam_schedules
            (id, user_id, course_id, status, scheduled_at, duration_minutes,
             question_count, passing_score, questions, answers, created_at,
             updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """)

        self._start_exam = self.session.prepare(f"""
            UPDATE {self.keyspace}.exam_schedules
            SET status = ?, started_at = ?, questions = ?, total_questions = ?,
                updated_at = ?
            WHERE id = ?
            IF status = ?
        """)

        self._save_answers = self.session.prepare(f"""
            UPDATE {self.keyspace}.exam_schedules
            SET answers = ?, updated_at = ?
            WHERE id = ?
            IF status = ?
        """)

        self._complete_exam = self.session.prepare(f"""
            UPDATE {self.keyspace}.exam_schedules
            SET status = ?, answers = ?, score = ?, passed = ?, correct_count = ?,
                total_questions = ?, completed_at = ?, submitted_by = ?,
                updated_at = ?
            WHERE id = ?
            IF status = ?
        """)

        # Exams by user (lookup)
        self._get_user_exams = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.exam_schedules_by_user
            WHERE user_id = ?
        """)

        self._upsert_exam_by_user = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.exam_schedules_by_user
            (user_id, created_at, id, course_id, status)
            VALUES (?, ?, ?, ?, ?)
        """)

        # Active exam slot
        self._get_active = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.active_exams
            WHERE user_id = ? AND course_id = ?
        """)

        self._claim_active = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.active_exams
            (user_id, course_id, exam_id, created_at)
            VALUES (?, ?, ?, ?)
            IF NOT EXISTS
        """)

        self._release_active = self.session.prepare(f"""
            DELETE FROM {self.keyspace}.active_exams
            WHERE user_id = ? AND course_id = ?
        """)

        # Deadlines
        self._add_in_progress = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.exams_in_progress
            (bucket, exam_id, user_id, deadline)
            VALUES (?, ?, ?, ?)
        """)

        self._list_in_progress = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.exams_in_progress
            WHERE bucket = ?
        """)

        self._remove_in_progress = self.session.prepare(f"""
            DELETE FROM {self.keyspace}.exams_in_progress
            WHERE bucket = ? AND exam_id = ?
        """)

    # ==========================================================================
    # Lookup
    # ==========================================================================

    async def _get_exam_entity(self, exam_id: UUID) -> ExamSchedule | None:
        result = await execute(self.session, self._get_exam, [exam_id])
        row = result.one()
        return ExamSchedule.from_row(row) if row else None

    async def require_exam(self, user_id: UUID, exam_id: UUID) -> ExamSchedule:
        """Get one of the learner's exams.

        Raises:
            ExamNotFoundError: If the exam does not exist or belongs to
                another learner
        """
        exam = await self._get_exam_entity(exam_id)
        if exam is None or exam.user_id != user_id:
            raise ExamNotFoundError
        return exam

    async def _write_user_lookup(self, exam: ExamSchedule) -> None:
        await execute(
            self.session,
            self._upsert_exam_by_user,
            [exam.user_id, exam.created_at, exam.id, exam.course_id, exam.status],
        )

    # ==========================================================================
    # Schedule
    # ==========================================================================

    async def _claim_active_slot(self, exam: ExamSchedule) -> None:
        """Claim the single active-exam slot of (learner, course).

        A slot still pointing to a completed or missing exam is released and
        claimed again.

        Raises:
            ExamAlreadyActiveError: If another active exam holds the slot
        """
        params = [exam.user_id, exam.course_id, exam.id, exam.created_at]
        result = await execute(self.session, self._claim_active, params)
        if result.was_applied:
            return

        holder = result.one()
        held_exam = await self._get_exam_entity(holder.exam_id) if holder else None
        if held_exam is not None and held_exam.exam_status != ExamStatus.COMPLETED:
            raise ExamAlreadyActiveError

        logger.warning(
            "exam_stale_slot_released",
            user_id=str(exam.user_id),
            course_id=str(exam.course_id),
            stale_exam_id=str(holder.exam_id) if holder else None,
        )
        await execute(
            self.session, self._release_active, [exam.user_id, exam.course_id]
        )
        result = await execute(self.session, self._claim_active, params)
        if not result.was_applied:
            raise ExamAlreadyActiveError

    async def schedule(
        self, user_id: UUID, course_id: UUID, now: datetime | None = None
    ) -> ExamResponse:
        """Schedule the final exam of a course.

        Raises:
            ExamCourseNotFoundError: If the course does not exist
            NotEnrolledError: If the learner is not enrolled
            CourseHasNoTopicsError: If the course has no topic
            ExamNotEligibleError: If a topic is not completed
            ExamAlreadyActiveError: If a SCHEDULED or IN_PROGRESS exam exists
        """
        if await self.progress.courses.get_course(course_id) is None:
            raise ExamCourseNotFoundError

        state = await self.progress.get_learner_state(user_id, course_id)
        if not state.enrolled:
            raise NotEnrolledError
        if not state.topics:
            raise CourseHasNoTopicsError
        if not state.exam_eligible:
            raise ExamNotEligibleError

        now = now or utc_now()
        exam = ExamSchedule(
            user_id=user_id,
            course_id=course_id,
            duration_minutes=self.settings.exam_duration_minutes,
            question_count=self.settings.exam_question_count,
            passing_score=self.settings.exam_passing_score,
            scheduled_at=now,
            created_at=now,
            updated_at=now,
        )

        await self._claim_active_slot(exam)
        await execute(
            self.session,
            self._insert_exam,
            [
                exam.id,
                exam.user_id,
                exam.course_id,
                exam.status,
                exam.scheduled_at,
                exam.duration_minutes,
                exam.question_count,
                exam.passing_score,
                exam.questions_json,
                exam.answers_json,
                exam.created_at,
                exam.updated_at,
            ],
        )
        await self._write_user_lookup(exam)

        logger.info(
            "exam_scheduled",
            user_id=str(user_id),
            course_id=str(course_id),
            exam_id=str(exam.id),
            question_count=exam.question_count,
            duration_minutes=exam.duration_minutes,
        )
        return self.to_response(exam, now)

    # ==========================================================================
    # Start
    # ==========================================================================

    async def start(
        self, user_id: UUID, exam_id: UUID, now: datetime | None = None
    ) -> ExamResponse:
        """Start a scheduled exam and snapshot its questions.

        Raises:
            ExamNotScheduledError: If the exam is not SCHEDULED
            ExamQuestionsUnavailableError: If no question can be drawn
        """
        exam = await self.require_exam(user_id, exam_id)
        try:
            ensure_transition(exam.exam_status, ExamStatus.IN_PROGRESS)
        except InvalidTransitionError as e:
            raise ExamNotScheduledError from e

        try:
            questions = await self.questions.build_questions(
                exam.course_id, exam.id, exam.question_count
            )
        except QuestionBankEmptyError as e:
            raise ExamQuestionsUnavailableError from e

        now = now or utc_now()
        exam.questions = questions
        exam.status = ExamStatus.IN_PROGRESS.value
        exam.started_at = now
        exam.total_questions = len(questions)
        exam.updated_at = now

        result = await execute(
            self.session,
            self._start_exam,
            [
                exam.status,
                exam.started_at,
                exam.questions_json,
                exam.total_questions,
                exam.updated_at,
                exam.id,
                ExamStatus.SCHEDULED.value,
            ],
        )
        if not result.was_applied:
            raise ExamNotScheduledError

        await self._write_user_lookup(exam)
        await execute(
            self.session,
            self._add_in_progress,
            [IN_PROGRESS_BUCKET, exam.id, exam.user_id, exam.deadline],
        )
        if self.watcher:
            self.watcher.register(exam.id, exam.deadline)

        logger.info(
            "exam_started",
            user_id=str(user_id),
            exam_id=str(exam.id),
            deadline=exam.deadline.isoformat(),
            question_count=len(questions),
        )
        return self.to_response(exam, now)

    # ==========================================================================
    # Countdown & Autosave
    # ==========================================================================

    async def tick(
        self, user_id: UUID, exam_id: UUID, now: datetime | None = None
    ) -> ExamTickResponse:
        """Recompute the countdown; submit the exam if its deadline passed."""
        exam = await self.require_exam(user_id, exam_id)
        now = now or utc_now()

        if exam.exam_status == ExamStatus.IN_PROGRESS and is_expired(
            exam.started_at, exam.duration_minutes, now
        ):
            result = await self.auto_submit(exam.id, now)
            if result is not None:
                return ExamTickResponse(
                    exam_id=exam.id,
                    status=result.status,
                    time_left_seconds=0,
                    ends_at=exam.deadline,
                    auto_submitted=True,
                    result=result,
                )
            exam = await self.require_exam(user_id, exam_id)

        return ExamTickResponse(
            exam_id=exam.id,
            status=exam.exam_status,
            time_left_seconds=self._time_left(exam, now),
            ends_at=exam.deadline,
        )

    def _time_left(self, exam: ExamSchedule, now: datetime) -> int:
        if exam.exam_status == ExamStatus.SCHEDULED:
            return exam.duration_minutes * 60
        if exam.exam_status == ExamStatus.COMPLETED:
            return 0
        return time_left_seconds(exam.started_at, exam.duration_minutes, now)

    def _validate_answers(self, exam: ExamSchedule, answers: dict[str, int]) -> None:
        questions = {question.id: question for question in exam.questions}
        for question_id, selected in answers.items():
            question = questions.get(question_id)
            if question is None:
                msg = f"Unknown exam question {question_id}"
                raise InvalidExamAnswersError(msg)
            if not 0 <= selected < len(question.options):
                msg = f"Option {selected} does not exist for {question_id}"
                raise InvalidExamAnswersError(msg)

    async def save_answers(
        self,
        user_id: UUID,
        exam_id: UUID,
        answers: dict[str, int],
        now: datetime | None = None,
    ) -> SaveAnswersResponse:
        """Merge answers into the autosaved set. Never changes the status.

        Raises:
            ExamNotInProgressError: If the exam is not running (or just ran out)
            InvalidExamAnswersError: If an answer is unknown or out of range
        """
        exam = await self.require_exam(user_id, exam_id)
        now = now or utc_now()

        if exam.exam_status != ExamStatus.IN_PROGRESS:
            raise ExamNotInProgressError
        if is_expired(exam.started_at, exam.duration_minutes, now):
            await self.auto_submit(exam.id, now)
            raise ExamNotInProgressError("Exam time is over")

        self._validate_answers(exam, answers)
        exam.answers = {**exam.answers, **answers}

        result = await execute(
            self.session,
            self._save_answers,
            [exam.answers_json, now, exam.id, ExamStatus.IN_PROGRESS.value],
        )
        if not result.was_applied:
            raise ExamNotInProgressError

        return SaveAnswersResponse(
            exam_id=exam.id,
            answered_count=len(exam.answers),
            time_left_seconds=self._time_left(exam, now),
            saved_at=now,
        )

    # ==========================================================================
    # Submit
    # ==========================================================================

    async def submit(
        self,
        user_id: UUID,
        exam_id: UUID,
        answers: dict[str, int],
        now: datetime | None = None,
    ) -> ExamResultResponse:
        """Submit the exam. Only the first submission is scored.

        After the deadline, the submission is resolved as a deadline
        submission with the autosaved answers.

        Raises:
            ExamNotInProgressError: If the exam is not IN_PROGRESS
            InvalidExamAnswersError: If an answer is unknown or out of range
        """
        exam = await self.require_exam(user_id, exam_id)
        now = now or utc_now()

        if exam.exam_status != ExamStatus.IN_PROGRESS:
            raise ExamNotInProgressError

        if is_expired(exam.started_at, exam.duration_minutes, now):
            result = await self.auto_submit(exam.id, now)
            if result is None:
                raise ExamNotInProgressError
            return result

        self._validate_answers(exam, answers)
        return await self._complete(
            exam, {**exam.answers, **answers}, SubmittedBy.LEARNER, now
        )

    async def auto_submit(
        self, exam_id: UUID, now: datetime | None = None
    ) -> ExamResultResponse | None:
        """Deadline submission with the autosaved answers.

        Returns None without side effects when the exam is not running, its
        deadline has not passed, or another submission won the race.
        """
        exam = await self._get_exam_entity(exam_id)
        now = now or utc_now()
        if exam is not None and exam.exam_status == ExamStatus.COMPLETED:
            await self._drop_in_progress_entry(exam_id)
            return None
        if exam is None or exam.exam_status != ExamStatus.IN_PROGRESS:
            return None
        if not is_expired(exam.started_at, exam.duration_minutes, now):
            return None

        try:
            return await self._complete(exam, exam.answers, SubmittedBy.DEADLINE, now)
        except ExamNotInProgressError:
            logger.info("exam_auto_submit_skipped", exam_id=str(exam_id))
            return None

    async def _complete(
        self,
        exam: ExamSchedule,
        answers: dict[str, int],
        submitted_by: SubmittedBy,
        now: datetime,
    ) -> ExamResultResponse:
        """IN_PROGRESS -> COMPLETED, exactly once."""
        ensure_transition(exam.exam_status, ExamStatus.COMPLETED)
        scored = score_exam(exam.questions, answers, exam.passing_score)

        result = await execute(
            self.session,
            self._complete_exam,
            [
                ExamStatus.COMPLETED.value,
                dumps_json(answers),
                scored.score,
                scored.passed,
                scored.correct_count,
                scored.total_questions,
                now,
                submitted_by.value,
                now,
                exam.id,
                ExamStatus.IN_PROGRESS.value,
            ],
        )
        if not result.was_applied:
            raise ExamNotInProgressError("Exam was already submitted")

        exam.status = ExamStatus.COMPLETED.value
        exam.answers = answers
        exam.score = scored.score
        exam.passed = scored.passed
        exam.correct_count = scored.correct_count
        exam.total_questions = scored.total_questions
        exam.completed_at = now
        exam.submitted_by = submitted_by.value
        exam.updated_at = now

        await self._release_bookkeeping(exam)

        logger.info(
            "exam_submitted",
            user_id=str(exam.user_id),
            course_id=str(exam.course_id),
            exam_id=str(exam.id),
            score=scored.score,
            passed=scored.passed,
            submitted_by=submitted_by.value,
        )

        certificate = None
        if scored.passed:
            certificate = await self._issue_certificate(exam)

        return self._to_result(exam, certificate)

    async def _release_bookkeeping(self, exam: ExamSchedule) -> None:
        """Update lookups of a completed exam.

        The exam row is already COMPLETED, so failures are logged and left
        behind: a stale active slot is reclaimed on the next schedule and a
        stale in-progress entry is dropped by the next sweep.
        """
        steps = [
            ("user_lookup", self._write_user_lookup(exam)),
            (
                "active_slot",
                execute(
                    self.session,
                    self._release_active,
                    [exam.user_id, exam.course_id],
                ),
            ),
            (
                "in_progress_index",
                execute(
                    self.session,
                    self._remove_in_progress,
                    [IN_PROGRESS_BUCKET, exam.id],
                ),
            ),
        ]
        for step, pending in steps:
            try:
                await pending
            except StoreUnavailableError:
                logger.warning(
                    "exam_bookkeeping_failed", exam_id=str(exam.id), step=step
                )

        if self.watcher:
            self.watcher.cancel(exam.id)

    async def _drop_in_progress_entry(self, exam_id: UUID) -> None:
        try:
            await execute(
                self.session, self._remove_in_progress, [IN_PROGRESS_BUCKET, exam_id]
            )
        except StoreUnavailableError:
            logger.warning("exam_in_progress_cleanup_failed", exam_id=str(exam_id))

    async def _issue_certificate(self, exam: ExamSchedule) -> "Certificate | None":
        """Issue the certificate of a passed exam.

        A store failure here leaves the exam completed; the certificate can
        be generated later from the exam.
        """
        try:
            certificate, _ = await self.certificates.issue(exam)
        except StoreUnavailableError:
            logger.warning("certificate_issue_deferred", exam_id=str(exam.id))
            return None
        return certificate

    async def generate_certificate(
        self, user_id: UUID, exam_id: UUID
    ) -> tuple["Certificate", bool]:
        """Issue or return the certificate of one of the learner's exams."""
        exam = await self.require_exam(user_id, exam_id)
        return await self.certificates.generate_for_exam(user_id, exam)

    # ==========================================================================
    # Queries
    # ==========================================================================

    async def get_exam(
        self, user_id: UUID, exam_id: UUID, now: datetime | None = None
    ) -> ExamResponse:
        exam = await self.require_exam(user_id, exam_id)
        return self.to_response(exam, now or utc_now())

    async def list_exams(
        self, user_id: UUID, course_id: UUID | None = None
    ) -> ExamListResponse:
        """Learner's exams, most recent first, optionally for one course."""
        rows = await execute(self.session, self._get_user_exams, [user_id])
        now = utc_now()
        items = []
        for row in rows:
            if course_id is not None and row.course_id != course_id:
                continue
            exam = await self._get_exam_entity(row.id)
            if exam is not None:
                items.append(self.to_response(exam, now, include_questions=False))
        return ExamListResponse(items=items, total=len(items))

    async def get_current_exam(
        self, user_id: UUID, course_id: UUID
    ) -> ExamResponse | None:
        """SCHEDULED or IN_PROGRESS exam of the course. COMPLETED rows never count."""
        result = await execute(self.session, self._get_active, [user_id, course_id])
        row = result.one()
        if row is None:
            return None
        exam = await self._get_exam_entity(row.exam_id)
        if exam is None or exam.exam_status == ExamStatus.COMPLETED:
            return None
        return self.to_response(exam, utc_now())

    async def list_in_progress(self) -> list[tuple[UUID, datetime]]:
        """(exam_id, deadline) of every running exam."""
        rows = await execute(self.session, self._list_in_progress, [IN_PROGRESS_BUCKET])
        return [(row.exam_id, row.deadline) for row in rows]

    # ==========================================================================
    # Response Builders
    # ==========================================================================

    def to_response(
        self, exam: ExamSchedule, now: datetime, include_questions: bool = True
    ) -> ExamResponse:
        reveal = exam.exam_status == ExamStatus.COMPLETED
        questions = []
        if include_questions:
            questions = [
                ExamQuestionResponse(
                    id=question.id,
                    question=question.question,
                    options=question.options,
                    correct_answer=question.correct_answer if reveal else None,
                    explanation=question.explanation if reveal else None,
                )
                for question in exam.questions
            ]
        return ExamResponse(
            id=exam.id,
            user_id=exam.user_id,
            course_id=exam.course_id,
            status=exam.exam_status,
            scheduled_at=exam.scheduled_at,
            duration_minutes=exam.duration_minutes,
            question_count=exam.question_count,
            passing_score=exam.passing_score,
            started_at=exam.started_at,
            ends_at=exam.deadline,
            time_left_seconds=self._time_left(exam, now),
            completed_at=exam.completed_at,
            submitted_by=exam.submitted_by,
            score=exam.score,
            passed=exam.passed,
            correct_count=exam.correct_count,
            total_questions=exam.total_questions,
            answers=exam.answers,
            questions=questions,
        )

    def _to_result(
        self, exam: ExamSchedule, certificate: "Certificate | None"
    ) -> ExamResultResponse:
        return ExamResultResponse(
            exam_id=exam.id,
            course_id=exam.course_id,
            status=exam.exam_status,
            score=exam.score,
            passed=exam.passed,
            passing_score=exam.passing_score,
            correct_count=exam.correct_count,
            total_questions=exam.total_questions,
            submitted_by=exam.submitted_by,
            completed_at=exam.completed_at,
            certificate=CertificateResponse.from_entity(certificate)
            if certificate
            else None,
        )
