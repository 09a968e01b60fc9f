"""Unit tests for the SQLite connection wrapper and factory."""

import sqlite3

import pytest

from sqlpool.core.config import PoolConfig
from sqlpool.core.exceptions import ConnectionCreationError
from sqlpool.database.connection import DatabaseConnection, SQLiteConnectionFactory


@pytest.fixture
def db(tmp_path):
    """Open a DatabaseConnection backed by a temporary SQLite file."""
    conn = DatabaseConnection(tmp_path / "nested" / "db.sqlite").open()
    try:
        yield conn
    finally:
        conn.close()


def test_open_creates_parent_directory(tmp_path, db):
    assert (tmp_path / "nested").is_dir()
    assert db.is_open


def test_open_is_idempotent(db):
    raw = db._connection
    db.open()
    assert db._connection is raw


def test_execute_and_fetch_helpers(db):
    db.execute("CREATE TABLE users (host TEXT, user TEXT)")
    inserted = db.execute("INSERT INTO users VALUES (?, ?)", ("localhost", "root"))
    assert inserted == 1

    row = db.fetch_one("SELECT * FROM users WHERE user = ?", ("root",))
    assert row == {"host": "localhost", "user": "root"}

    rows = db.fetch_all("SELECT user FROM users")
    assert rows == [{"user": "root"}]
    assert db.fetch_one("SELECT * FROM users WHERE user = ?", ("nobody",)) is None


def test_cursor_context_closes_cursor(db):
    with db.get_cursor_context() as cursor:
        cursor.execute("SELECT 1")
    with pytest.raises(sqlite3.ProgrammingError):
        cursor.execute("SELECT 1")


def test_is_valid_tracks_open_state(db):
    assert db.is_valid() is True
    db.close()
    assert db.is_valid() is False
    assert not db.is_open


def test_close_twice_is_safe(db):
    db.close()
    db.close()


def test_use_after_close_raises(db):
    db.close()
    with pytest.raises(sqlite3.ProgrammingError):
        db.fetch_all("SELECT 1")


def test_memory_database_skips_mkdir():
    db = DatabaseConnection(":memory:").open()
    assert db.fetch_one("SELECT 1 AS one") == {"one": 1}
    db.close()


def test_factory_opens_connections(tmp_path):
    factory = SQLiteConnectionFactory(PoolConfig(database=str(tmp_path / "f.db")))
    first = factory.open()
    second = factory.open()
    assert first is not second
    assert first.is_valid() and second.is_valid()
    first.close()
    second.close()


def test_factory_detects_uri(tmp_path):
    path = tmp_path / "uri.db"
    DatabaseConnection(path).open().close()
    factory = SQLiteConnectionFactory(PoolConfig(database=f"file:{path}?mode=ro"))
    assert factory.uri is True
    conn = factory.open()
    assert conn.is_valid()
    conn.close()


def test_factory_wraps_driver_errors(tmp_path):
    missing = tmp_path / "missing.db"
    factory = SQLiteConnectionFactory(PoolConfig(database=f"file:{missing}?mode=ro"))
    with pytest.raises(ConnectionCreationError) as exc_info:
        factory.open()
    assert isinstance(exc_info.value.__cause__, sqlite3.Error)
