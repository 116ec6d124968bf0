"""Final exam API endpoints.

Provides routes for:
- Scheduling, listing and reading exams
- Starting an exam, countdown tick and answer autosave
- Submission and certificate generation
"""

from uuid import UUID

from fastapi import APIRouter, Query

from src.auth.dependencies import CurrentUser
from src.certificates.dependencies import handle_certificate_error
from src.certificates.schemas import CertificateResponse, IssueCertificateResponse
from src.certificates.service import CertificateError

from .dependencies import ExamServiceDep, handle_exam_error
from .schemas import (
    CurrentExamResponse,
    ExamListResponse,
    ExamResponse,
    ExamResultResponse,
    ExamTickResponse,
    SaveAnswersRequest,
    SaveAnswersResponse,
    ScheduleExamRequest,
    SubmitExamRequest,
)
from .service import ExamError


router = APIRouter(prefix="/v1/exams", tags=["exams"])


@router.post(
    "/schedule",
    response_model=ExamResponse,
    summary="Schedule final exam",
)
async def schedule_exam(
    data: ScheduleExamRequest,
    user: CurrentUser,
    exam_service: ExamServiceDep,
) -> ExamResponse:
    """Every topic of the course must be completed."""
    try:
        return await exam_service.schedule(user.id, data.course_id)
    except ExamError as e:
        raise handle_exam_error(e) from e


@router.get(
    "",
    response_model=ExamListResponse,
    summary="List my exams",
)
async def list_exams(
    user: CurrentUser,
    exam_service: ExamServiceDep,
    course_id: UUID | None = Query(None, description="Only exams of this course"),
) -> ExamListResponse:
    return await exam_service.list_exams(user.id, course_id)


@router.get(
    "/current",
    response_model=CurrentExamResponse,
    summary="Current exam of a course",
)
async def get_current_exam(
    user: CurrentUser,
    exam_service: ExamServiceDep,
    course_id: UUID = Query(..., description="Course UUID"),
) -> CurrentExamResponse:
    """SCHEDULED or IN_PROGRESS exam, or null."""
    return CurrentExamResponse(
        exam=await exam_service.get_current_exam(user.id, course_id)
    )


@router.get(
    "/{exam_id}",
    response_model=ExamResponse,
    summary="Get exam",
)
async def get_exam(
    exam_id: UUID,
    user: CurrentUser,
    exam_service: ExamServiceDep,
) -> ExamResponse:
    """Correct answers are only shown once the exam is completed."""
    try:
        return await exam_service.get_exam(user.id, exam_id)
    except ExamError as e:
        raise handle_exam_error(e) from e


@router.post(
    "/{exam_id}/start",
    response_model=ExamResponse,
    summary="Start exam",
)
async def start_exam(
    exam_id: UUID,
    user: CurrentUser,
    exam_service: ExamServiceDep,
) -> ExamResponse:
    try:
        return await exam_service.start(user.id, exam_id)
    except ExamError as e:
        raise handle_exam_error(e) from e


@router.get(
    "/{exam_id}/tick",
    response_model=ExamTickResponse,
    summary="Exam countdown",
)
async def tick(
    exam_id: UUID,
    user: CurrentUser,
    exam_service: ExamServiceDep,
) -> ExamTickResponse:
    """Remaining time, from the stored start time. Submits an expired exam."""
    try:
        return await exam_service.tick(user.id, exam_id)
    except ExamError as e:
        raise handle_exam_error(e) from e


@router.patch(
    "/{exam_id}/answers",
    response_model=SaveAnswersResponse,
    summary="Autosave answers",
)
async def save_answers(
    exam_id: UUID,
    data: SaveAnswersRequest,
    user: CurrentUser,
    exam_service: ExamServiceDep,
) -> SaveAnswersResponse:
    try:
        return await exam_service.save_answers(user.id, exam_id, data.answers)
    except ExamError as e:
        raise handle_exam_error(e) from e


@router.post(
    "/{exam_id}/submit",
    response_model=ExamResultResponse,
    summary="Submit exam",
)
async def submit_exam(
    exam_id: UUID,
    data: SubmitExamRequest,
    user: CurrentUser,
    exam_service: ExamServiceDep,
) -> ExamResultResponse:
    """Score the exam. A second submission is rejected with 409."""
    try:
        return await exam_service.submit(user.id, exam_id, data.answers)
    except ExamError as e:
        raise handle_exam_error(e) from e


@router.post(
    "/{exam_id}/certificate",
    response_model=IssueCertificateResponse,
    summary="Generate certificate",
)
async def generate_certificate(
    exam_id: UUID,
    user: CurrentUser,
    exam_service: ExamServiceDep,
) -> IssueCertificateResponse:
    """Idempotent: returns the existing certificate when there is one."""
    try:
        certificate, created = await exam_service.generate_certificate(
            user.id, exam_id
        )
    except ExamError as e:
        raise handle_exam_error(e) from e
    except CertificateError as e:
        raise handle_certificate_error(e) from e

    return IssueCertificateResponse(
        certificate=CertificateResponse.from_entity(certificate),
        created=created,
    )
