"""Topic quiz API endpoints.

Provides routes for:
- Learner quiz view
- Question-by-question session (answer, advance, back, discard)
- Full submission, attempt review and history
"""

from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from src.auth.dependencies import CurrentUser

from .dependencies import QuizServiceDep, handle_quiz_error
from .schemas import (
    AdvanceResponse,
    AttemptHistoryResponse,
    GoBackResponse,
    LearnerQuizResponse,
    QuizAttemptReviewResponse,
    QuizResultResponse,
    QuizSessionResponse,
    SelectAnswerRequest,
    SelectAnswerResponse,
    SubmitQuizRequest,
)
from .service import QuizError


router = APIRouter(prefix="/v1/quizzes", tags=["quizzes"])


@router.get(
    "/topics/{topic_id}",
    response_model=LearnerQuizResponse,
    summary="Get topic quiz",
)
async def get_quiz(
    topic_id: UUID,
    user: CurrentUser,
    quiz_service: QuizServiceDep,
) -> LearnerQuizResponse:
    """Questions without correct answers. The topic must be unlocked."""
    try:
        return await quiz_service.get_quiz_for_learner(user.id, topic_id)
    except QuizError as e:
        raise handle_quiz_error(e) from e


# ==============================================================================
# Session Endpoints
# ==============================================================================


@router.post(
    "/topics/{topic_id}/session",
    response_model=QuizSessionResponse,
    summary="Open quiz session",
)
async def open_session(
    topic_id: UUID,
    user: CurrentUser,
    quiz_service: QuizServiceDep,
) -> QuizSessionResponse:
    """Start or resume the quiz. Requires the topic video to be watched."""
    try:
        return await quiz_service.open_session(user.id, topic_id)
    except QuizError as e:
        raise handle_quiz_error(e) from e


@router.delete(
    "/topics/{topic_id}/session",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Discard quiz session",
)
async def discard_session(
    topic_id: UUID,
    user: CurrentUser,
    quiz_service: QuizServiceDep,
) -> None:
    await quiz_service.discard_session(user.id, topic_id)


@router.post(
    "/topics/{topic_id}/session/answer",
    response_model=SelectAnswerResponse,
    summary="Answer current question",
)
async def select_answer(
    topic_id: UUID,
    data: SelectAnswerRequest,
    user: CurrentUser,
    quiz_service: QuizServiceDep,
) -> SelectAnswerResponse:
    """Record the answer and reveal whether it is correct."""
    try:
        return await quiz_service.select_answer(
            user.id, topic_id, data.question_id, data.option_index
        )
    except QuizError as e:
        raise handle_quiz_error(e) from e


@router.post(
    "/topics/{topic_id}/session/advance",
    response_model=AdvanceResponse,
    summary="Next question",
)
async def advance(
    topic_id: UUID,
    user: CurrentUser,
    quiz_service: QuizServiceDep,
) -> AdvanceResponse:
    """Move to the next question, or submit after the last one."""
    try:
        return await quiz_service.advance(user.id, topic_id)
    except QuizError as e:
        raise handle_quiz_error(e) from e


@router.post(
    "/topics/{topic_id}/session/back",
    response_model=GoBackResponse,
    summary="Previous question",
)
async def go_back(
    topic_id: UUID,
    user: CurrentUser,
    quiz_service: QuizServiceDep,
) -> GoBackResponse:
    try:
        return await quiz_service.go_back(user.id, topic_id)
    except QuizError as e:
        raise handle_quiz_error(e) from e


# ==============================================================================
# Submission & Review Endpoints
# ==============================================================================


@router.post(
    "/submit",
    response_model=QuizResultResponse,
    summary="Submit quiz",
)
async def submit_quiz(
    data: SubmitQuizRequest,
    user: CurrentUser,
    quiz_service: QuizServiceDep,
) -> QuizResultResponse:
    """Score every answer at once. A passed quiz cannot be submitted again."""
    try:
        return await quiz_service.submit_quiz(
            user.id, data.quiz_id, data.topic_id, data.answers
        )
    except QuizError as e:
        raise handle_quiz_error(e) from e


@router.get(
    "/topics/{topic_id}/attempt",
    response_model=QuizAttemptReviewResponse,
    summary="Review quiz attempt",
)
async def get_quiz_attempt(
    topic_id: UUID,
    user: CurrentUser,
    quiz_service: QuizServiceDep,
) -> QuizAttemptReviewResponse:
    review = await quiz_service.get_quiz_attempt(user.id, topic_id)
    if review is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No attempt found",
        )
    return review


@router.get(
    "/topics/{topic_id}/attempts",
    response_model=AttemptHistoryResponse,
    summary="Quiz attempt history",
)
async def list_attempts(
    topic_id: UUID,
    user: CurrentUser,
    quiz_service: QuizServiceDep,
) -> AttemptHistoryResponse:
    """Every scored submission, most recent first."""
    return await quiz_service.list_attempt_history(user.id, topic_id)
