"""Cassandra access for Lana."""

from src.core.database.async_cassandra import (
    init_async_cassandra,
    shutdown_async_cassandra,
)
from src.core.database.errors import StoreUnavailableError, execute


__all__ = [
    "StoreUnavailableError",
    "execute",
    "init_async_cassandra",
    "shutdown_async_cassandra",
]
