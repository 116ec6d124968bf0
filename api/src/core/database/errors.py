"""Store failure translation.

Driver-level failures (timeouts, unavailable replicas, lost connections)
are surfaced to callers as a single retryable error so that routers and
background tasks do not need to know about cassandra-driver internals.
"""

from collections.abc import Sequence
from typing import Any

import structlog
from cassandra import DriverException, OperationTimedOut, RequestExecutionException
from cassandra.cluster import NoHostAvailable


logger = structlog.get_logger(__name__)


class StoreUnavailableError(Exception):
    """The backing store could not complete the operation. Retryable."""

    def __init__(self, message: str = "Storage temporarily unavailable") -> None:
        self.message = message
        self.code = "store_unavailable"
        super().__init__(message)


STORE_EXCEPTIONS = (
    DriverException,
    OperationTimedOut,
    RequestExecutionException,
    NoHostAvailable,
)


async def execute(session, statement, params: Sequence[Any] | None = None):
    """Run a statement with aexecute(), translating driver failures.

    Nothing is retried here; the caller decides whether to retry.
    """
    try:
        if params is None:
            return await session.aexecute(statement)
        return await session.aexecute(statement, list(params))
    except STORE_EXCEPTIONS as e:
        logger.warning(
            "store_operation_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise StoreUnavailableError() from e
