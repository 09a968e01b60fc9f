"""sqlpool: a bounded, thread-safe database connection pool.

The pool hands out connections from a factory (SQLite by default), reuses
them across callers and shuts down cleanly:

    with create_pool(PoolConfig(database="app.db", min_size=2)) as pool:
        with pool.connection() as conn:
            rows = conn.fetch_all("SELECT name FROM sqlite_master")
"""

from .core.config import PoolConfig
from .core.exceptions import (
    SqlPoolError,
    ConfigurationError,
    PoolError,
    ConnectionCreationError,
    PoolExhaustedError,
    InvalidHandleError,
    PoolClosedError,
    PoolNotReadyError,
)
from .database.connection import DatabaseConnection, SQLiteConnectionFactory
from .database.pool import (
    ConnectionPool,
    PooledConnection,
    PoolState,
    PoolStatus,
    create_pool,
)

__all__ = [
    "PoolConfig",
    "SqlPoolError",
    "ConfigurationError",
    "PoolError",
    "ConnectionCreationError",
    "PoolExhaustedError",
    "InvalidHandleError",
    "PoolClosedError",
    "PoolNotReadyError",
    "DatabaseConnection",
    "SQLiteConnectionFactory",
    "ConnectionPool",
    "PooledConnection",
    "PoolState",
    "PoolStatus",
    "create_pool",
]
