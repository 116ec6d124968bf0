# Infrastructure shared by every domain package: request context, logging,
# the Cassandra session with store-failure translation and the optional
# Redis client.
from src.core.context import RequestContext, get_request_id, set_user_id
from src.core.database import StoreUnavailableError, execute
from src.core.logging import configure_structlog, get_logger
from src.core.middleware import RequestContextMiddleware
from src.core.redis import get_redis


__all__ = [
    "RequestContext",
    "RequestContextMiddleware",
    "StoreUnavailableError",
    "configure_structlog",
    "execute",
    "get_logger",
    "get_redis",
    "get_request_id",
    "set_user_id",
]
