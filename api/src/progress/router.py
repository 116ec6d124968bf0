"""Learner progress API endpoints.

Provides routes for:
- Course enrollment (idempotent)
- Topic progress updates
- Course progress view (topic statuses and exam eligibility)
"""

from uuid import UUID

from fastapi import APIRouter, status

from src.auth.dependencies import CurrentUser

from .dependencies import ProgressServiceDep, handle_progress_error
from .schemas import (
    CourseProgressResponse,
    EnrollmentListResponse,
    EnrollmentResponse,
    EnrollRequest,
    EnrollResponse,
    UpdateTopicProgressRequest,
    UpdateTopicProgressResponse,
)
from .service import ProgressError


router = APIRouter(prefix="/v1/progress", tags=["progress"])
enrollments_router = APIRouter(prefix="/v1/enrollments", tags=["enrollments"])


# ==============================================================================
# Enrollment Endpoints
# ==============================================================================


@enrollments_router.post(
    "",
    response_model=EnrollResponse,
    status_code=status.HTTP_200_OK,
    summary="Enroll in course",
)
async def enroll(
    data: EnrollRequest,
    user: CurrentUser,
    progress_service: ProgressServiceDep,
) -> EnrollResponse:
    """Enroll the current user. Enrolling twice returns the existing enrollment."""
    try:
        enrollment, created = await progress_service.enroll(user.id, data.course_id)
    except ProgressError as e:
        raise handle_progress_error(e) from e

    return EnrollResponse(
        enrollment=EnrollmentResponse.from_entity(enrollment),
        created=created,
        message="Enrolled successfully" if created else "Already enrolled",
    )


@enrollments_router.get(
    "/my",
    response_model=EnrollmentListResponse,
    summary="List my enrollments",
)
async def my_enrollments(
    user: CurrentUser,
    progress_service: ProgressServiceDep,
) -> EnrollmentListResponse:
    enrollments = await progress_service.list_enrollments(user.id)
    return EnrollmentListResponse(
        items=[EnrollmentResponse.from_entity(e) for e in enrollments],
        total=len(enrollments),
    )


# ==============================================================================
# Progress Endpoints
# ==============================================================================


@router.put(
    "/topic",
    response_model=UpdateTopicProgressResponse,
    summary="Update topic progress",
)
async def update_topic_progress(
    data: UpdateTopicProgressRequest,
    user: CurrentUser,
    progress_service: ProgressServiceDep,
) -> UpdateTopicProgressResponse:
    """Record video progress or complete a topic without quiz.

    Locked topics are rejected; nothing is ever un-completed.
    """
    try:
        return await progress_service.update_topic_progress(user.id, data)
    except ProgressError as e:
        raise handle_progress_error(e) from e


@router.get(
    "/course/{course_id}",
    response_model=CourseProgressResponse,
    summary="Get course progress",
)
async def get_course_progress(
    course_id: UUID,
    user: CurrentUser,
    progress_service: ProgressServiceDep,
) -> CourseProgressResponse:
    """Topic statuses (completed / available / locked) and exam eligibility."""
    try:
        return await progress_service.get_course_progress(user.id, course_id)
    except ProgressError as e:
        raise handle_progress_error(e) from e
