"""Integration tests: the pool against real SQLite connections."""

import threading
import time
from unittest.mock import Mock

import pytest

from sqlpool.core.config import PoolConfig
from sqlpool.core.exceptions import PoolClosedError, PoolExhaustedError
from sqlpool.database.connection import DatabaseConnection, SQLiteConnectionFactory
from sqlpool.database.pool import PoolState, create_pool


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "pool.sqlite")


def test_end_to_end_min2_max5(db_path):
    """2 idle up front, 5 checkouts (2 reused + 3 new), 6th times out, release unblocks."""
    config = PoolConfig(database=db_path, min_size=2, max_size=5)
    factory = Mock(wraps=SQLiteConnectionFactory(config))
    pool = create_pool(config, factory)

    assert pool.status().idle == 2
    assert factory.open.call_count == 2

    handles = [pool.acquire() for _ in range(5)]
    assert factory.open.call_count == 5
    assert len({id(h.connection) for h in handles}) == 5
    assert all(isinstance(h.connection, DatabaseConnection) for h in handles)

    start = time.monotonic()
    with pytest.raises(PoolExhaustedError):
        pool.acquire(timeout=0.1)
    assert time.monotonic() - start >= 0.09

    freed = handles.pop()
    freed_conn = freed.connection
    pool.release(freed)

    start = time.monotonic()
    again = pool.acquire(timeout=0.1)
    assert time.monotonic() - start < 0.1
    assert again.connection is freed_conn
    assert factory.open.call_count == 5

    pool.shutdown()
    assert pool.state is PoolState.CLOSED
    assert not freed_conn.is_open


def test_pooled_connections_share_database(db_path):
    with create_pool(PoolConfig(database=db_path, min_size=1, max_size=2)) as pool:
        with pool.connection() as conn:
            conn.execute("CREATE TABLE user (host TEXT, user TEXT)")
            conn.execute("INSERT INTO user VALUES (?, ?)", ("localhost", "root"))

        first = pool.acquire()
        second = pool.acquire()
        assert first.fetch_all("SELECT user FROM user") == [{"user": "root"}]
        assert second.fetch_one("SELECT COUNT(*) AS n FROM user") == {"n": 1}
        pool.release(first)
        pool.release(second)


def test_concurrent_workers_stay_within_bounds(db_path):
    """Many threads hammering a small pool never exceed max_size."""
    config = PoolConfig(database=db_path, min_size=1, max_size=3, acquire_timeout=10.0)
    pool = create_pool(config)
    with pool.connection() as conn:
        conn.execute("CREATE TABLE hits (worker INTEGER)")

    holders = {}
    guard = threading.Lock()
    problems = []

    def worker(n):
        for _ in range(10):
            with pool.connection() as conn:
                key = id(conn.connection)
                with guard:
                    if key in holders:
                        problems.append(f"{key} held by {holders[key]} and {n}")
                    holders[key] = n
                    if pool.status().total > config.max_size:
                        problems.append("pool over max_size")
                conn.execute("INSERT INTO hits VALUES (?)", (n,))
                with guard:
                    del holders[key]

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert problems == []
    with pool.connection() as conn:
        assert conn.fetch_one("SELECT COUNT(*) AS n FROM hits") == {"n": 60}
    assert pool.status().total <= config.max_size
    pool.shutdown()


def test_shutdown_during_waits_and_after(db_path):
    pool = create_pool(PoolConfig(database=db_path, min_size=0, max_size=1))
    held = pool.acquire()
    outcome = []

    def waiter():
        try:
            pool.acquire(timeout=5.0)
        except PoolClosedError:
            outcome.append("closed")

    t = threading.Thread(target=waiter)
    t.start()
    time.sleep(0.05)
    pool.shutdown()
    t.join(timeout=2.0)

    assert outcome == ["closed"]
    assert held.released
    with pytest.raises(PoolClosedError):
        pool.acquire()
    pool.release(held)
    pool.shutdown()
    assert pool.state is PoolState.CLOSED


def test_idle_reaper_thread_trims_to_min(db_path):
    config = PoolConfig(
        database=db_path, min_size=1, max_size=4, max_idle_time=0.05, reap_interval=0.05
    )
    pool = create_pool(config)
    handles = [pool.acquire() for _ in range(4)]
    for h in handles:
        pool.release(h)
    assert pool.status().idle == 4

    deadline = time.monotonic() + 2.0
    while pool.status().idle > 1 and time.monotonic() < deadline:
        time.sleep(0.02)

    assert pool.status().idle == 1
    pool.shutdown()
