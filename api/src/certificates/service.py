"""Certificate service layer.

Business logic for:
- Idempotent issuance: one certificate per learner and course
- Public verification by certificate number
- Listing a learner's certificates
"""

from typing import TYPE_CHECKING
from uuid import UUID

import structlog

from src.config import Settings, get_settings
from src.core.database.errors import execute
from src.utils import utc_now

from .models import Certificate, generate_certificate_number
from .schemas import CertificateVerificationResponse


if TYPE_CHECKING:
    from cassandra.cluster import Session

    from src.courses.service import CourseService
    from src.exams.models import ExamSchedule

logger = structlog.get_logger(__name__)


COMPLETED_STATUS = "COMPLETED"


# ==============================================================================
# Custom Exceptions
# ==============================================================================


class CertificateError(Exception):
    """Base certificate error."""

    def __init__(self, message: str, code: str = "certificate_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class CertificateNotFoundError(CertificateError):
    def __init__(self, message: str = "Certificate not found"):
        super().__init__(message, "certificate_not_found")


class ExamNotPassedError(CertificateError):
    """Certificates are issued only for a completed, passed exam."""

    def __init__(self, message: str = "Exam not completed with a passing score"):
        super().__init__(message, "exam_not_passed")


# ==============================================================================
# Certificate Service
# ==============================================================================


class CertificateService:
    """Service for certificate issuance and verification."""

    def __init__(
        self,
        session: "Session",
        keyspace: str,
        course_service: "CourseService",
        settings: Settings | None = None,
    ):
        self.session = session
        self.keyspace = keyspace
        self.courses = course_service
        self.settings = settings or get_settings()
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements."""
        self._get_certificate = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.certificates
            WHERE user_id = ? AND course_id = ?
        """)

        self._get_user_certificates = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.certificates
            WHERE user_id = ?
        """)

        self._insert_certificate_if_absent = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.certificates
            (user_id, course_id, id, certificate_number, level, exam_score,
             exam_id, issue_date, blockchain_hash)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            IF NOT EXISTS
        """)

        self._get_by_number = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.certificates_by_number
            WHERE certificate_number = ?
        """)

        self._upsert_by_number = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.certificates_by_number
            (certificate_number, user_id, course_id)
            VALUES (?, ?, ?)
        """)

    async def get_certificate(
        self, user_id: UUID, course_id: UUID
    ) -> Certificate | None:
        result = await execute(
            self.session, self._get_certificate, [user_id, course_id]
        )
        row = result.one()
        return Certificate.from_row(row) if row else None

    async def _write_number_lookup(self, certificate: Certificate) -> None:
        await execute(
            self.session,
            self._upsert_by_number,
            [
                certificate.certificate_number,
                certificate.user_id,
                certificate.course_id,
            ],
        )

    async def issue(self, exam: "ExamSchedule") -> tuple[Certificate, bool]:
        """Issue the certificate for a passed exam, or return the existing one.

        Never creates a second certificate for the same learner and course.

        Returns:
            Tuple of (certificate, created)

        Raises:
            ExamNotPassedError: If the exam is not COMPLETED with a pass
        """
        if exam.status != COMPLETED_STATUS or not exam.passed:
            raise ExamNotPassedError

        existing = await self.get_certificate(exam.user_id, exam.course_id)
        if existing:
            await self._write_number_lookup(existing)
            return existing, False

        issued_at = utc_now()
        certificate = Certificate(
            user_id=exam.user_id,
            course_id=exam.course_id,
            exam_id=exam.id,
            exam_score=exam.score or 0,
            certificate_number=generate_certificate_number(
                self.settings.certificate_number_prefix, issued_at
            ),
            issue_date=issued_at,
        )

        result = await execute(
            self.session,
            self._insert_certificate_if_absent,
            [
                certificate.user_id,
                certificate.course_id,
                certificate.id,
                certificate.certificate_number,
                certificate.level,
                certificate.exam_score,
                certificate.exam_id,
                certificate.issue_date,
                certificate.blockchain_hash,
            ],
        )
        if not result.was_applied:
            # Concurrent issuance won
            existing = await self.get_certificate(exam.user_id, exam.course_id)
            await self._write_number_lookup(existing)
            return existing, False

        await self._write_number_lookup(certificate)

        logger.info(
            "certificate_issued",
            user_id=str(certificate.user_id),
            course_id=str(certificate.course_id),
            exam_id=str(certificate.exam_id),
            certificate_number=certificate.certificate_number,
            level=certificate.level,
        )
        return certificate, True

    async def generate_for_exam(
        self, user_id: UUID, exam: "ExamSchedule"
    ) -> tuple[Certificate, bool]:
        """Issue (or return) the certificate for one of the learner's exams."""
        if exam.user_id != user_id:
            raise ExamNotPassedError
        return await self.issue(exam)

    async def verify(self, certificate_number: str) -> CertificateVerificationResponse:
        """Public lookup by certificate number.

        Raises:
            CertificateNotFoundError: If no certificate has this number
        """
        result = await execute(
            self.session, self._get_by_number, [certificate_number.strip().upper()]
        )
        row = result.one()
        certificate = (
            await self.get_certificate(row.user_id, row.course_id) if row else None
        )
        if certificate is None:
            raise CertificateNotFoundError

        course = await self.courses.get_course(certificate.course_id)
        return CertificateVerificationResponse(
            certificate_number=certificate.certificate_number,
            level=certificate.level,
            exam_score=certificate.exam_score,
            issue_date=certificate.issue_date,
            course_id=certificate.course_id,
            course_title=course.title if course else None,
            course_slug=course.slug if course else None,
            blockchain_hash=certificate.blockchain_hash,
        )

    async def list_for_user(self, user_id: UUID) -> list[Certificate]:
        rows = await execute(self.session, self._get_user_certificates, [user_id])
        certificates = [Certificate.from_row(row) for row in rows]
        return sorted(certificates, key=lambda c: c.issue_date, reverse=True)
