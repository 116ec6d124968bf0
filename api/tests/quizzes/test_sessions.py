"""Tests for quiz session storage without Redis."""

from uuid import uuid4

import pytest

from src.quizzes.engine import QuizSession
from src.quizzes.sessions import QuizSessionStore


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock) -> QuizSessionStore:
    return QuizSessionStore(ttl_seconds=60, clock=clock)


def new_session(topic_id=None) -> QuizSession:
    return QuizSession(
        quiz_id=str(uuid4()),
        topic_id=str(topic_id or uuid4()),
        question_ids=["q1", "q2"],
    )


class TestLocalSessionStore:
    """In-process sessions expire like their Redis counterparts."""

    @pytest.mark.asyncio
    async def test_session_round_trip(self, store) -> None:
        user_id = uuid4()
        session = new_session()

        await store.save(user_id, session)
        loaded = await store.load(user_id, session.topic_id)

        assert loaded == session

    @pytest.mark.asyncio
    async def test_session_expires_after_ttl(self, store, clock) -> None:
        user_id = uuid4()
        session = new_session()
        await store.save(user_id, session)

        clock.now += 59
        assert await store.load(user_id, session.topic_id) is not None

        clock.now += 1
        assert await store.load(user_id, session.topic_id) is None
        assert store.local_size == 0

    @pytest.mark.asyncio
    async def test_save_refreshes_ttl(self, store, clock) -> None:
        user_id = uuid4()
        session = new_session()
        await store.save(user_id, session)

        clock.now += 50
        await store.save(user_id, session)
        clock.now += 50

        assert await store.load(user_id, session.topic_id) is not None

    @pytest.mark.asyncio
    async def test_abandoned_sessions_evicted(self, store, clock) -> None:
        for _ in range(5):
            await store.save(uuid4(), new_session())
        assert store.local_size == 5

        clock.now += 120
        await store.save(uuid4(), new_session())

        assert store.local_size == 1

    @pytest.mark.asyncio
    async def test_delete(self, store) -> None:
        user_id = uuid4()
        session = new_session()
        await store.save(user_id, session)

        await store.delete(user_id, session.topic_id)

        assert await store.load(user_id, session.topic_id) is None
