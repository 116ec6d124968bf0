"""Quiz session storage.

In-progress quiz navigation lives in Redis with a TTL so it survives a
page reload. Without Redis, sessions are kept in process memory with the
same TTL; they are lost on restart, which only costs the learner their
unsubmitted answers.
"""

import time
from collections.abc import Callable
from typing import TYPE_CHECKING

import structlog
from redis.exceptions import RedisError

from src.core.database.errors import StoreUnavailableError
from src.core.redis import quiz_session_key
from src.utils import dumps_json, loads_json

from .engine import QuizSession


if TYPE_CHECKING:
    import redis.asyncio as redis

logger = structlog.get_logger(__name__)


class QuizSessionStore:
    """Load, save and drop quiz sessions keyed by learner and topic."""

    def __init__(
        self,
        redis: "redis.Redis | None" = None,
        ttl_seconds: int = 3600,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.redis = redis
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        # key -> (expires_at, raw json); used only without Redis
        self._local: dict[str, tuple[float, str]] = {}

    def _evict_expired(self) -> None:
        now = self._clock()
        expired = [
            key for key, (expires_at, _) in self._local.items() if expires_at <= now
        ]
        for key in expired:
            del self._local[key]

    @property
    def local_size(self) -> int:
        return len(self._local)

    async def load(self, user_id, topic_id) -> QuizSession | None:
        key = quiz_session_key(str(user_id), str(topic_id))
        if self.redis is None:
            self._evict_expired()
            entry = self._local.get(key)
            raw = entry[1] if entry else None
        else:
            try:
                raw = await self.redis.get(key)
            except RedisError as e:
                logger.warning("quiz_session_read_failed", key=key, error=str(e))
                raise StoreUnavailableError from e

        data = loads_json(raw)
        return QuizSession.from_dict(data) if data else None

    async def save(self, user_id, session: QuizSession) -> None:
        key = quiz_session_key(str(user_id), session.topic_id)
        raw = dumps_json(session.to_dict())
        if self.redis is None:
            self._evict_expired()
            self._local[key] = (self._clock() + self.ttl_seconds, raw)
            return
        try:
            await self.redis.set(key, raw, ex=self.ttl_seconds)
        except RedisError as e:
            logger.warning("quiz_session_write_failed", key=key, error=str(e))
            raise StoreUnavailableError from e

    async def delete(self, user_id, topic_id) -> None:
        key = quiz_session_key(str(user_id), str(topic_id))
        if self.redis is None:
            self._local.pop(key, None)
            return
        try:
            await self.redis.delete(key)
        except RedisError as e:
            logger.warning("quiz_session_delete_failed", key=key, error=str(e))
            raise StoreUnavailableError from e
