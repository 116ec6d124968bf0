"""Shared fixtures: in-memory store, wired services and an HTTP client."""

from collections.abc import Callable
from uuid import UUID, uuid4

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.auth.permissions import UserRole
from src.auth.security import create_access_token
from src.config import Settings
from src.core.database.async_cassandra import TABLE_GROUPS
from src.main import create_app, register_services
from tests.fakes import FakeSession


KEYSPACE = "lana"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        environment="testing",
        cassandra_keyspace=KEYSPACE,
        exam_question_count=4,
        exam_duration_minutes=30,
        exam_passing_score=60.0,
        quiz_default_passing_score=70.0,
        log_requests=False,
    )


@pytest.fixture
def fake_session() -> FakeSession:
    session = FakeSession()
    for _, statements in TABLE_GROUPS:
        for cql_template in statements:
            session.execute(cql_template.format(keyspace=KEYSPACE))
    return session


@pytest.fixture
def app(fake_session: FakeSession, settings: Settings) -> FastAPI:
    """Application wired on the in-memory store, lifespan not run."""
    application = create_app()
    register_services(application, fake_session, settings)
    return application


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


@pytest.fixture
def course_service(app: FastAPI):
    return app.state.course_service


@pytest.fixture
def progress_service(app: FastAPI):
    return app.state.progress_service


@pytest.fixture
def quiz_service(app: FastAPI):
    return app.state.quiz_service


@pytest.fixture
def exam_service(app: FastAPI):
    return app.state.exam_service


@pytest.fixture
def certificate_service(app: FastAPI):
    return app.state.certificate_service


@pytest.fixture
def watcher(app: FastAPI):
    return app.state.exam_watcher


@pytest.fixture
def learner_id() -> UUID:
    return uuid4()


@pytest.fixture
def teacher_id() -> UUID:
    return uuid4()


@pytest.fixture
def auth_headers() -> Callable[..., dict[str, str]]:
    """Factory for Authorization headers signed with the configured key."""

    def _headers(user_id: UUID, role: UserRole = UserRole.STUDENT) -> dict[str, str]:
        token = create_access_token(
            {
                "sub": str(user_id),
                "email": f"{user_id.hex[:8]}@test.com",
                "role": role.value,
            }
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers
