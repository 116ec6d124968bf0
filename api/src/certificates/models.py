"""Database models for course certificates.

Cassandra table definitions for:
- Certificates: At most one per learner and course (IF NOT EXISTS)
- Lookup table: Certificates by number, for public verification
"""

import hashlib
import secrets
import string
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from src.utils import ensure_utc_aware, utc_now


class CertificateLevel(str, Enum):
    """Certificate level, from the exam score."""

    BRONZE = "BRONZE"
    SILVER = "SILVER"
    GOLD = "GOLD"
    PLATINUM = "PLATINUM"


# Lower bound (inclusive) of each band, highest first
LEVEL_BANDS: list[tuple[int, CertificateLevel]] = [
    (95, CertificateLevel.PLATINUM),
    (85, CertificateLevel.GOLD),
    (75, CertificateLevel.SILVER),
]


def level_for_score(score: int) -> CertificateLevel:
    for lower_bound, level in LEVEL_BANDS:
        if score >= lower_bound:
            return level
    return CertificateLevel.BRONZE


_BASE36 = string.digits + string.ascii_uppercase


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_certificate_number(prefix: str, issued_at: datetime) -> str:
    """``{prefix}-{base36 ms timestamp}-{6 random base36 chars}``, uppercase."""
    timestamp = to_base36(int(issued_at.timestamp() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"{prefix}-{timestamp}-{suffix}".upper()


def compute_certificate_hash(
    certificate_number: str,
    user_id: UUID,
    course_id: UUID,
    exam_score: int,
    issue_date: datetime,
) -> str:
    """SHA-256 fingerprint of the certificate's identifying fields."""
    payload = "|".join(
        [
            certificate_number,
            str(user_id),
            str(course_id),
            str(exam_score),
            issue_date.isoformat(),
        ]
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

CERTIFICATES_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.certificates (
    user_id UUID,
    course_id UUID,
    id UUID,
    certificate_number TEXT,
    level TEXT,
    exam_score INT,
    exam_id UUID,
    issue_date TIMESTAMP,
    blockchain_hash TEXT,
    PRIMARY KEY (user_id, course_id)
)
"""

# Lookup: certificate by its public number
CERTIFICATES_BY_NUMBER_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.certificates_by_number (
    certificate_number TEXT PRIMARY KEY,
    user_id UUID,
    course_id UUID
)
"""

CERTIFICATES_TABLES_CQL = [
    CERTIFICATES_TABLE_CQL,
    CERTIFICATES_BY_NUMBER_TABLE_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


class Certificate:
    """Proof of course completion.

    The number is generated once, when the certificate is first issued,
    and is the public verification key.
    """

    def __init__(
        self,
        user_id: UUID,
        course_id: UUID,
        exam_id: UUID,
        exam_score: int,
        certificate_number: str,
        id: UUID | None = None,
        level: str | None = None,
        issue_date: datetime | None = None,
        blockchain_hash: str | None = None,
    ):
        self.id = id or uuid4()
        self.user_id = user_id
        self.course_id = course_id
        self.exam_id = exam_id
        self.exam_score = exam_score
        self.certificate_number = certificate_number
        self.level = level or level_for_score(exam_score).value
        self.issue_date = ensure_utc_aware(issue_date) or utc_now()
        self.blockchain_hash = blockchain_hash or compute_certificate_hash(
            certificate_number, user_id, course_id, exam_score, self.issue_date
        )

    @classmethod
    def from_row(cls, row: Any) -> "Certificate":
        return cls(
            id=row.id,
            user_id=row.user_id,
            course_id=row.course_id,
            exam_id=row.exam_id,
            exam_score=row.exam_score or 0,
            certificate_number=row.certificate_number,
            level=row.level,
            issue_date=row.issue_date,
            blockchain_hash=row.blockchain_hash,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "course_id": self.course_id,
            "exam_id": self.exam_id,
            "exam_score": self.exam_score,
            "certificate_number": self.certificate_number,
            "level": self.level,
            "issue_date": self.issue_date,
            "blockchain_hash": self.blockchain_hash,
        }

    def __repr__(self) -> str:
        return f"<Certificate {self.certificate_number} {self.level}>"
