"""FastAPI dependencies for the course catalogue.

Provides dependency injection for:
- Course service instance
- Error handlers
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from src.auth.permissions import UserRole, get_role_level
from src.auth.schemas import AuthenticatedUser
from src.courses.service import CourseError, CourseService


async def get_course_service(request: Request) -> CourseService:
    """Get course service from app state."""
    service = getattr(request.app.state, "course_service", None)
    if not service:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Course service not available",
        )
    return service


CourseServiceDep = Annotated[CourseService, Depends(get_course_service)]


def is_admin_user(user: AuthenticatedUser) -> bool:
    return get_role_level(user.role) >= get_role_level(UserRole.ADMIN)


def handle_course_error(error: CourseError) -> HTTPException:
    """Convert course errors to HTTP exceptions."""
    status_map = {
        "course_not_found": status.HTTP_404_NOT_FOUND,
        "topic_not_found": status.HTTP_404_NOT_FOUND,
        "slug_exists": status.HTTP_409_CONFLICT,
        "not_course_owner": status.HTTP_403_FORBIDDEN,
        "quiz_already_attempted": status.HTTP_409_CONFLICT,
    }

    status_code = status_map.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR)

    return HTTPException(
        status_code=status_code,
        detail=error.message,
    )
