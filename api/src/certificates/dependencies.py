"""FastAPI dependencies for certificates.

Provides dependency injection for:
- Certificate service
- Error handlers
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from .service import CertificateError, CertificateService


async def get_certificate_service(request: Request) -> CertificateService:
    """Get certificate service from app state."""
    app_state = request.app.state
    if not getattr(app_state, "certificate_service", None):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Certificate service not available",
        )
    return app_state.certificate_service


CertificateServiceDep = Annotated[CertificateService, Depends(get_certificate_service)]


def handle_certificate_error(error: CertificateError) -> HTTPException:
    """Convert certificate errors to HTTP exceptions."""
    status_map = {
        "certificate_not_found": status.HTTP_404_NOT_FOUND,
        "exam_not_passed": status.HTTP_403_FORBIDDEN,
    }

    status_code = status_map.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR)

    return HTTPException(
        status_code=status_code,
        detail=error.message,
    )
