"""FastAPI dependencies for final exams.

Provides dependency injection for:
- Exam service
- Error handlers
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from .service import ExamError, ExamService


async def get_exam_service(request: Request) -> ExamService:
    """Get exam service from app state."""
    app_state = request.app.state
    if not getattr(app_state, "exam_service", None):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Exam service not available",
        )
    return app_state.exam_service


ExamServiceDep = Annotated[ExamService, Depends(get_exam_service)]


def handle_exam_error(error: ExamError) -> HTTPException:
    """Convert exam errors to HTTP exceptions."""
    status_map = {
        "exam_not_found": status.HTTP_404_NOT_FOUND,
        "course_not_found": status.HTTP_404_NOT_FOUND,
        "not_enrolled": status.HTTP_403_FORBIDDEN,
        "exam_not_eligible": status.HTTP_403_FORBIDDEN,
        "course_has_no_topics": status.HTTP_409_CONFLICT,
        "exam_already_active": status.HTTP_409_CONFLICT,
        "exam_not_scheduled": status.HTTP_409_CONFLICT,
        "exam_not_in_progress": status.HTTP_409_CONFLICT,
        "exam_questions_unavailable": status.HTTP_409_CONFLICT,
        "invalid_answers": status.HTTP_400_BAD_REQUEST,
    }

    status_code = status_map.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR)

    return HTTPException(
        status_code=status_code,
        detail=error.message,
    )
