"""Certificate API endpoints.

Provides routes for:
- Public verification by certificate number (no authentication)
- Listing the current learner's certificates
"""

from fastapi import APIRouter

from src.auth.dependencies import CurrentUser

from .dependencies import CertificateServiceDep, handle_certificate_error
from .schemas import (
    CertificateListResponse,
    CertificateResponse,
    CertificateVerificationResponse,
)
from .service import CertificateError


router = APIRouter(prefix="/v1/certificates", tags=["certificates"])


@router.get(
    "/verify/{certificate_number}",
    response_model=CertificateVerificationResponse,
    summary="Verify certificate",
)
async def verify_certificate(
    certificate_number: str,
    certificate_service: CertificateServiceDep,
) -> CertificateVerificationResponse:
    """Public endpoint: anyone holding a certificate number can check it."""
    try:
        return await certificate_service.verify(certificate_number)
    except CertificateError as e:
        raise handle_certificate_error(e) from e


@router.get(
    "/my",
    response_model=CertificateListResponse,
    summary="List my certificates",
)
async def my_certificates(
    user: CurrentUser,
    certificate_service: CertificateServiceDep,
) -> CertificateListResponse:
    certificates = await certificate_service.list_for_user(user.id)
    return CertificateListResponse(
        items=[CertificateResponse.from_entity(c) for c in certificates],
        total=len(certificates),
    )
