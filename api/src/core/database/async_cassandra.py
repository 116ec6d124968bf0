"""Cassandra session for the course, progress, exam and certificate stores.

Uses cassandra-asyncio-driver, which adds ``session.aexecute()`` to the
standard cassandra-driver session. On startup the keyspace and every
table group are created if missing; schema statements go through
``execute()`` so a cluster that is down surfaces as StoreUnavailableError.
"""

import structlog
from cassandra.auth import PlainTextAuthProvider
from cassandra.policies import DCAwareRoundRobinPolicy, TokenAwarePolicy
from cassandra_asyncio.cluster import Cluster

from src.certificates.models import CERTIFICATES_TABLES_CQL
from src.config.settings import Settings, get_settings
from src.core.database.errors import execute
from src.courses.models import COURSES_TABLES_CQL
from src.exams.models import EXAMS_TABLES_CQL
from src.progress.models import PROGRESS_TABLES_CQL
from src.quizzes.models import QUIZZES_TABLES_CQL


logger = structlog.get_logger(__name__)


# Created in this order on startup; the name is used in log events
TABLE_GROUPS: list[tuple[str, list[str]]] = [
    ("courses", COURSES_TABLES_CQL),
    ("progress", PROGRESS_TABLES_CQL),
    ("quizzes", QUIZZES_TABLES_CQL),
    ("exams", EXAMS_TABLES_CQL),
    ("certificates", CERTIFICATES_TABLES_CQL),
]


class AsyncCassandraConnection:
    """Process-wide cluster and session holder."""

    _cluster: Cluster | None = None
    _session = None

    @classmethod
    def connect(cls, settings: Settings):
        """Connect once and return the session.

        Raises:
            ConnectionError: If no contact point can be reached
        """
        if cls._session is not None:
            return cls._session

        auth_provider = None
        if settings.cassandra_username and settings.cassandra_password:
            auth_provider = PlainTextAuthProvider(
                username=settings.cassandra_username,
                password=settings.cassandra_password,
            )

        cls._cluster = Cluster(
            contact_points=settings.cassandra_hosts,
            port=settings.cassandra_port,
            auth_provider=auth_provider,
            protocol_version=settings.cassandra_protocol_version,
            load_balancing_policy=TokenAwarePolicy(
                DCAwareRoundRobinPolicy(local_dc=settings.cassandra_datacenter)
            ),
            connect_timeout=settings.cassandra_connect_timeout,
        )

        try:
            cls._session = cls._cluster.connect()
        except Exception as e:
            logger.error(
                "cassandra_connection_failed",
                hosts=settings.cassandra_hosts,
                error=str(e),
            )
            cls._cluster.shutdown()
            cls._cluster = None
            raise ConnectionError(f"Failed to connect to Cassandra: {e}") from e

        cls._session.default_timeout = settings.cassandra_request_timeout
        logger.info(
            "cassandra_connected",
            hosts=settings.cassandra_hosts,
            port=settings.cassandra_port,
            datacenter=settings.cassandra_datacenter,
        )
        return cls._session

    @classmethod
    def disconnect(cls) -> None:
        if cls._session is not None:
            cls._session.shutdown()
            cls._session = None
        if cls._cluster is not None:
            cls._cluster.shutdown()
            cls._cluster = None
            logger.info("cassandra_disconnected")

    @classmethod
    def is_connected(cls) -> bool:
        return cls._session is not None and not cls._session.is_shutdown


def keyspace_cql(settings: Settings) -> str:
    """CREATE KEYSPACE statement for the configured replication."""
    if settings.cassandra_datacenter:
        replication = (
            "'class': 'NetworkTopologyStrategy', "
            f"'{settings.cassandra_datacenter}': {settings.cassandra_replication_factor}"
        )
    else:
        replication = (
            "'class': 'SimpleStrategy', "
            f"'replication_factor': {settings.cassandra_replication_factor}"
        )
    return (
        f"CREATE KEYSPACE IF NOT EXISTS {settings.cassandra_keyspace} "
        f"WITH replication = {{{replication}}} AND durable_writes = true"
    )


async def create_tables(session, keyspace: str) -> None:
    """Create every table group in ``keyspace`` (idempotent)."""
    for group, statements in TABLE_GROUPS:
        for cql_template in statements:
            await execute(session, cql_template.format(keyspace=keyspace))
        logger.info("cassandra_tables_ready", group=group, keyspace=keyspace)


async def init_async_cassandra(settings: Settings | None = None):
    """Connect, then create the keyspace and tables if they do not exist.

    Returns:
        Session with aexecute() support, bound to the keyspace
    """
    settings = settings or get_settings()
    session = AsyncCassandraConnection.connect(settings)

    await execute(session, keyspace_cql(settings))
    session.set_keyspace(settings.cassandra_keyspace)
    await create_tables(session, settings.cassandra_keyspace)

    logger.info("cassandra_schema_ready", keyspace=settings.cassandra_keyspace)
    return session


async def shutdown_async_cassandra() -> None:
    AsyncCassandraConnection.disconnect()
