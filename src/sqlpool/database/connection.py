"""SQLite connection wrapper and the factory the pool draws connections from."""

import logging
import sqlite3
from pathlib import Path

from ..core.config import PoolConfig
from ..core.exceptions import ConnectionCreationError

logger = logging.getLogger(__name__)

# cheapest statement that still round-trips through the engine
VALIDATION_QUERY = "SELECT 1"


class DatabaseConnection:
    """One backing SQLite session, shareable across threads one user at a time."""

    __slots__ = ("db_path", "uri", "timeout", "_connection")

    def __init__(self, db_path="./sqlpool.db", uri=False, timeout=5.0):
        """Initialize connection state."""
        self.db_path = str(db_path)
        self.uri = uri
        self.timeout = timeout
        self._connection = None

    def open(self):
        """Open the underlying sqlite3 connection if not already open."""
        if self._connection is not None:
            return self

        if not self.uri and self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        # the pool moves connections between threads, never shares them concurrently
        self._connection = sqlite3.connect(
            self.db_path,
            timeout=self.timeout,
            uri=self.uri,
            check_same_thread=False,
            isolation_level=None,
        )
        self._connection.row_factory = sqlite3.Row
        self._connection.execute("PRAGMA foreign_keys = ON")
        return self

    @property
    def is_open(self):
        return self._connection is not None

    def _get_connection(self):
        if self._connection is None:
            raise sqlite3.ProgrammingError("Cannot operate on a closed database.")
        return self._connection

    def get_cursor_context(self):
        """Return a context manager for a SQLite cursor."""
        return CursorContext(self._get_connection())

    def execute(self, query, params=None):
        """Execute a single SQL statement and return the affected row count."""
        with self.get_cursor_context() as cursor:
            if params:
                cursor.execute(query, params)
            else:
                cursor.execute(query)
            return cursor.rowcount

    def fetch_one(self, query, params=None):
        """Fetch a single row as a dict or None."""
        with self.get_cursor_context() as cursor:
            if params:
                cursor.execute(query, params)
            else:
                cursor.execute(query)

            row = cursor.fetchone()
            return dict(row) if row else None

    def fetch_all(self, query, params=None):
        """Fetch all rows as a list of dicts."""
        with self.get_cursor_context() as cursor:
            if params:
                cursor.execute(query, params)
            else:
                cursor.execute(query)

            rows = cursor.fetchall()
            return [dict(row) for row in rows]

    def is_valid(self):
        """Return True if the connection is open and answers a trivial query."""
        if self._connection is None:
            return False
        try:
            self._connection.execute(VALIDATION_QUERY).fetchone()
            return True
        except sqlite3.Error:
            return False

    def close(self):
        """Close the connection if open."""
        if self._connection is not None:
            try:
                self._connection.close()
            finally:
                self._connection = None

    def __repr__(self):
        state = "open" if self.is_open else "closed"
        return f"<DatabaseConnection {self.db_path!r} {state}>"


class CursorContext:
    """Context manager for SQLite cursor."""

    __slots__ = ("connection", "cursor")

    def __init__(self, connection):
        """Initialize with a SQLite connection."""
        self.connection = connection
        self.cursor = None

    def __enter__(self):
        """Create and return a cursor."""
        self.cursor = self.connection.cursor()
        return self.cursor

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Close the cursor."""
        if self.cursor:
            self.cursor.close()


class SQLiteConnectionFactory:
    """Opens DatabaseConnections for a pool from a PoolConfig."""

    def __init__(self, config: PoolConfig):
        self.database = config.database
        self.user = config.user
        self.timeout = config.connect_timeout
        self.uri = config.database.startswith("file:")

    def open(self) -> DatabaseConnection:
        """Open one backing connection or raise ConnectionCreationError."""
        db = DatabaseConnection(self.database, uri=self.uri, timeout=self.timeout)
        try:
            db.open()
        except (sqlite3.Error, OSError) as e:
            raise ConnectionCreationError(
                f"Failed to open database {self.database!r}: {e}"
            ) from e
        logger.debug("opened connection to %s as %s", self.database, self.user or "<anonymous>")
        return db
