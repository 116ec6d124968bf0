"""Lana API - Main Application."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.certificates.router import router as certificates_router
from src.certificates.service import CertificateService
from src.config import Settings, get_settings
from src.core.context import get_request_id
from src.core.database import (
    StoreUnavailableError,
    init_async_cassandra,
    shutdown_async_cassandra,
)
from src.core.logging import configure_structlog, get_logger
from src.core.middleware import RequestContextMiddleware
from src.core.redis import init_redis, shutdown_redis
from src.courses.router import router_courses
from src.courses.service import CourseService
from src.exams.questions import QuizBankQuestionProvider
from src.exams.router import router as exams_router
from src.exams.service import ExamService
from src.exams.watcher import ExamDeadlineWatcher
from src.health import router as health_router
from src.progress.router import enrollments_router
from src.progress.router import router as progress_router
from src.progress.service import ProgressService
from src.quizzes.router import router as quizzes_router
from src.quizzes.service import QuizService
from src.quizzes.sessions import QuizSessionStore


# Configure logging early (before creating logger)
settings = get_settings()
configure_structlog(settings, log_dir=Path(settings.log_dir))

logger = get_logger(__name__)


def register_services(
    app: FastAPI,
    session: Any,
    settings: Settings,
    redis_client: Any = None,
) -> ExamDeadlineWatcher:
    """Build every service on one Cassandra session and attach it to app.state.

    Returns:
        The exam deadline watcher (not started)
    """
    keyspace = settings.cassandra_keyspace

    course_service = CourseService(session=session, keyspace=keyspace, settings=settings)
    progress_service = ProgressService(
        session=session,
        keyspace=keyspace,
        course_service=course_service,
        redis=redis_client,
        settings=settings,
    )
    quiz_service = QuizService(
        session=session,
        keyspace=keyspace,
        course_service=course_service,
        progress_service=progress_service,
        session_store=QuizSessionStore(
            redis=redis_client,
            ttl_seconds=settings.quiz_session_ttl_seconds,
        ),
        settings=settings,
    )
    certificate_service = CertificateService(
        session=session,
        keyspace=keyspace,
        course_service=course_service,
        settings=settings,
    )
    exam_service = ExamService(
        session=session,
        keyspace=keyspace,
        progress_service=progress_service,
        certificate_service=certificate_service,
        question_provider=QuizBankQuestionProvider(course_service),
        settings=settings,
    )
    watcher = ExamDeadlineWatcher(
        exam_service, poll_interval=settings.exam_deadline_poll_seconds
    )
    exam_service.set_watcher(watcher)

    app.state.cassandra_session = session
    app.state.course_service = course_service
    app.state.progress_service = progress_service
    app.state.quiz_service = quiz_service
    app.state.certificate_service = certificate_service
    app.state.exam_service = exam_service
    app.state.exam_watcher = watcher
    return watcher


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings = get_settings()
    logger.info(
        "starting_application",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
    )

    # Initialize Redis (non-critical - app works without it)
    redis_client = None
    try:
        redis_client = await init_redis()
        logger.info("redis_initialized")
    except Exception as e:
        logger.warning(
            "redis_init_skipped",
            error=str(e),
            message="Running without Redis - progress cache disabled, "
            "quiz sessions kept in process",
        )

    # Initialize Cassandra (async) and services
    watcher = None
    try:
        session = await init_async_cassandra(settings)
        logger.info("cassandra_initialized")

        watcher = register_services(app, session, settings, redis_client)
        logger.info("services_initialized", redis_enabled=redis_client is not None)

        await watcher.start()
    except Exception as e:
        logger.warning(
            "database_init_skipped",
            error=str(e),
            message="Running without database connection",
        )

    yield

    # Shutdown
    logger.info("shutting_down_application")
    if watcher:
        await watcher.stop()
    await shutdown_redis()
    await shutdown_async_cassandra()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    # Never let Starlette render stack traces; handlers below log them instead
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Lana - Course progression and certification API",
        debug=False,
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
    )

    # Request context middleware (must be added first - outermost)
    app.add_middleware(
        RequestContextMiddleware,
        log_requests=settings.log_requests,
        exclude_paths=settings.log_exclude_paths,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
        max_age=settings.cors_max_age,
    )

    def _get_request_id_safe(request: Request) -> str | None:
        """Get request_id from request state or context."""
        if hasattr(request.state, "request_id"):
            return request.state.request_id
        return get_request_id()

    # Global exception handlers (never expose stack traces)
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> ORJSONResponse:
        """Handle HTTP exceptions with safe error messages."""
        request_id = _get_request_id_safe(request)

        logger.warning(
            "http_exception",
            status_code=exc.status_code,
            detail=str(exc.detail),
            path=request.url.path,
            method=request.method,
        )

        return ORJSONResponse(
            status_code=exc.status_code,
            content={
                "error": True,
                "message": str(exc.detail)
                if exc.status_code < status.HTTP_500_INTERNAL_SERVER_ERROR
                else "Internal server error",
                "status_code": exc.status_code,
                "request_id": request_id,
            },
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> ORJSONResponse:
        """Handle validation errors; field-level details are safe to expose."""
        request_id = _get_request_id_safe(request)

        logger.warning(
            "validation_error",
            errors=exc.errors(),
            path=request.url.path,
            method=request.method,
        )

        return ORJSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": True,
                "message": "Validation error",
                "status_code": 422,
                "request_id": request_id,
                "details": [
                    {
                        "field": ".".join(str(loc) for loc in err.get("loc", [])),
                        "message": err.get("msg", "Invalid value"),
                    }
                    for err in exc.errors()
                ],
            },
        )

    @app.exception_handler(StoreUnavailableError)
    async def store_unavailable_handler(
        request: Request, exc: StoreUnavailableError
    ) -> ORJSONResponse:
        """Transient store failure: nothing was changed, the call can be retried."""
        request_id = _get_request_id_safe(request)

        logger.warning(
            "store_unavailable",
            path=request.url.path,
            method=request.method,
        )

        return ORJSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            headers={"Retry-After": "1"},
            content={
                "error": True,
                "message": exc.message,
                "code": exc.code,
                "retryable": True,
                "status_code": 503,
                "request_id": request_id,
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> ORJSONResponse:
        """Catch-all handler for unhandled exceptions.

        Full details are logged; the client only gets a generic message.
        """
        request_id = _get_request_id_safe(request)

        logger.exception(
            "unhandled_exception",
            error_type=type(exc).__name__,
            error_message=str(exc),
            path=request.url.path,
            method=request.method,
        )

        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": True,
                "message": "An unexpected error occurred. Please try again later.",
                "status_code": 500,
                "request_id": request_id,
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(router_courses)
    app.include_router(enrollments_router)
    app.include_router(progress_router)
    app.include_router(quizzes_router)
    app.include_router(exams_router)
    app.include_router(certificates_router)

    @app.get("/", include_in_schema=False)
    async def root(request: Request) -> dict[str, str]:
        """Root endpoint."""
        return {
            "message": "Lana API",
            "version": settings.app_version,
            "docs": f"{request.url}docs",
        }

    return app


app = create_app()
