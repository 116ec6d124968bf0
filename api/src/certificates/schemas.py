"""Pydantic schemas for certificates."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from .models import Certificate, CertificateLevel


class CertificateResponse(BaseModel):
    """Certificate owned by the current learner."""

    id: UUID
    user_id: UUID
    course_id: UUID
    exam_id: UUID
    certificate_number: str
    level: CertificateLevel
    exam_score: int
    issue_date: datetime
    blockchain_hash: str

    @classmethod
    def from_entity(cls, entity: Certificate) -> "CertificateResponse":
        return cls(**entity.to_dict())


class IssueCertificateResponse(BaseModel):
    """``created`` is False when the certificate already existed."""

    certificate: CertificateResponse
    created: bool


class CertificateListResponse(BaseModel):
    items: list[CertificateResponse]
    total: int


class CertificateVerificationResponse(BaseModel):
    """Public view of a certificate, looked up by number."""

    valid: bool = True
    certificate_number: str
    level: CertificateLevel
    exam_score: int
    issue_date: datetime
    course_id: UUID
    course_title: str | None = None
    course_slug: str | None = None
    blockchain_hash: str = Field(description="SHA-256 fingerprint of the certificate")
