"""FastAPI dependencies for progress tracking.

Provides dependency injection for:
- Progress service
- Error handlers
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from .service import (
    ProgressError,
    ProgressService,
)


async def get_progress_service(request: Request) -> ProgressService:
    """Get progress service from app state."""
    app_state = request.app.state
    if not getattr(app_state, "progress_service", None):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Progress service not available",
        )
    return app_state.progress_service


ProgressServiceDep = Annotated[ProgressService, Depends(get_progress_service)]


def handle_progress_error(error: ProgressError) -> HTTPException:
    """Convert progress errors to HTTP exceptions."""
    status_map = {
        "not_enrolled": status.HTTP_403_FORBIDDEN,
        "course_not_found": status.HTTP_404_NOT_FOUND,
        "topic_not_found": status.HTTP_404_NOT_FOUND,
        "topic_locked": status.HTTP_403_FORBIDDEN,
        "video_not_watched": status.HTTP_403_FORBIDDEN,
        "quiz_required": status.HTTP_400_BAD_REQUEST,
    }

    status_code = status_map.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR)

    return HTTPException(
        status_code=status_code,
        detail=error.message,
    )
