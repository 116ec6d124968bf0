"""Course catalogue API endpoints.

Provides routes for:
- Course and topic lookup (learners)
- Course, topic and quiz authoring (teachers and admins)
"""

from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from src.auth.dependencies import CurrentUser, TeacherUser
from src.courses.dependencies import (
    CourseServiceDep,
    handle_course_error,
    is_admin_user,
)
from src.courses.schemas import (
    CourseResponse,
    CreateCourseRequest,
    CreateTopicRequest,
    QuizAuthorResponse,
    TopicResponse,
    UpsertQuizRequest,
)
from src.courses.service import CourseError


router_courses = APIRouter(prefix="/v1/courses", tags=["courses"])


# ==============================================================================
# Learner Endpoints
# ==============================================================================


@router_courses.get(
    "/{slug}",
    response_model=CourseResponse,
    summary="Get course by slug",
)
async def get_course_by_slug(
    slug: str,
    user: CurrentUser,
    course_service: CourseServiceDep,
) -> CourseResponse:
    course = await course_service.get_course_by_slug(slug)
    if not course:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Course not found",
        )
    topics = await course_service.list_topics(course.id)
    return course_service.to_response(course, topic_count=len(topics))


@router_courses.get(
    "/{course_id}/topics",
    response_model=list[TopicResponse],
    summary="List course topics in order",
)
async def list_course_topics(
    course_id: UUID,
    user: CurrentUser,
    course_service: CourseServiceDep,
) -> list[TopicResponse]:
    try:
        await course_service.require_course(course_id)
    except CourseError as e:
        raise handle_course_error(e) from e

    topics = await course_service.list_topics(course_id)
    return [
        course_service.topic_to_response(
            topic, has_quiz=await course_service.has_quiz(topic.id)
        )
        for topic in topics
    ]


# ==============================================================================
# Authoring Endpoints
# ==============================================================================


@router_courses.post(
    "",
    response_model=CourseResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create course",
)
async def create_course(
    data: CreateCourseRequest,
    user: TeacherUser,
    course_service: CourseServiceDep,
) -> CourseResponse:
    try:
        course = await course_service.create_course(data, user.id)
    except CourseError as e:
        raise handle_course_error(e) from e
    return course_service.to_response(course)


@router_courses.post(
    "/{course_id}/topics",
    response_model=TopicResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add topic to course",
)
async def create_topic(
    course_id: UUID,
    data: CreateTopicRequest,
    user: TeacherUser,
    course_service: CourseServiceDep,
) -> TopicResponse:
    try:
        course = await course_service.require_course(course_id)
        course_service.ensure_can_edit(course, user.id, is_admin_user(user))
        topic = await course_service.create_topic(course_id, data)
    except CourseError as e:
        raise handle_course_error(e) from e
    return course_service.topic_to_response(topic)


@router_courses.put(
    "/topics/{topic_id}/quiz",
    response_model=QuizAuthorResponse,
    summary="Create or replace topic quiz",
)
async def upsert_topic_quiz(
    topic_id: UUID,
    data: UpsertQuizRequest,
    user: TeacherUser,
    course_service: CourseServiceDep,
) -> QuizAuthorResponse:
    """Options are validated here; malformed questions never reach the store."""
    try:
        topic = await course_service.require_topic(topic_id)
        course = await course_service.require_course(topic.course_id)
        course_service.ensure_can_edit(course, user.id, is_admin_user(user))
        quiz = await course_service.upsert_quiz(topic_id, data)
    except CourseError as e:
        raise handle_course_error(e) from e
    return course_service.quiz_to_author_response(quiz)


@router_courses.get(
    "/topics/{topic_id}/quiz",
    response_model=QuizAuthorResponse,
    summary="Get topic quiz with answers (authors)",
)
async def get_topic_quiz(
    topic_id: UUID,
    user: TeacherUser,
    course_service: CourseServiceDep,
) -> QuizAuthorResponse:
    try:
        topic = await course_service.require_topic(topic_id)
        course = await course_service.require_course(topic.course_id)
        course_service.ensure_can_edit(course, user.id, is_admin_user(user))
    except CourseError as e:
        raise handle_course_error(e) from e

    quiz = await course_service.get_quiz(topic_id)
    if quiz is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Quiz not found",
        )
    return course_service.quiz_to_author_response(quiz)
