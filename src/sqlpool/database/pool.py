"""Bounded, thread-safe pool of reusable database connections.

Connections are opened through a factory (any object with ``open()``), kept
idle on a LIFO stack, and handed to callers wrapped in a ``PooledConnection``
issued fresh for every checkout. The handle is what ``release`` checks, so a
handle can be returned exactly once and only to the pool that issued it.

All bookkeeping lives behind one ``threading.Condition``; the lock is never
held while a connection is opened, tested or closed.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional

from ..core.config import PoolConfig
from ..core.exceptions import (
    ConfigurationError,
    ConnectionCreationError,
    InvalidHandleError,
    PoolClosedError,
    PoolExhaustedError,
    PoolNotReadyError,
)
from .connection import SQLiteConnectionFactory

logger = logging.getLogger(__name__)


class PoolState(Enum):
    # Lifecycle of a pool; CLOSED is terminal
    NEW = "new"
    NOT_READY = "not_ready"
    READY = "ready"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass(frozen=True)
class PoolStatus:
    """Point-in-time snapshot of pool occupancy."""

    state: PoolState
    min_size: int
    max_size: int
    idle: int
    active: int
    opening: int
    waiting: int

    @property
    def total(self) -> int:
        return self.idle + self.active + self.opening


class PooledConnection:
    """Caller-side handle for one checkout of a pooled connection."""

    __slots__ = ("_pool", "_connection", "_released", "_invalidated")

    def __init__(self, pool: "ConnectionPool", connection):
        self._pool = pool
        self._connection = connection
        self._released = False
        self._invalidated = False

    @property
    def connection(self):
        """The underlying connection; unavailable once the handle is released."""
        if self._released:
            raise InvalidHandleError("connection handle has been released")
        return self._connection

    @property
    def released(self) -> bool:
        return self._released

    @property
    def invalidated(self) -> bool:
        return self._invalidated

    def invalidate(self) -> None:
        """Mark the connection broken so the pool destroys it on release."""
        self._invalidated = True

    def release(self) -> None:
        self._pool.release(self)

    def get_cursor_context(self):
        return self.connection.get_cursor_context()

    def execute(self, query, params=None):
        return self.connection.execute(query, params)

    def fetch_one(self, query, params=None):
        return self.connection.fetch_one(query, params)

    def fetch_all(self, query, params=None):
        return self.connection.fetch_all(query, params)

    def __repr__(self):
        state = "released" if self._released else "checked out"
        return f"<PooledConnection {self._connection!r} {state}>"


class ConnectionPool:
    """Pool of connections sized between ``min_size`` and ``max_size``."""

    def __init__(self, factory=None):
        # factory=None means "open SQLite connections from the config"
        self._factory = factory
        self._default_factory = factory is None
        self._config: Optional[PoolConfig] = None
        self._state = PoolState.NEW
        self._cond = threading.Condition(threading.Lock())
        self._idle: deque = deque()  # (connection, idle-since) pairs, newest on the right
        self._checked_out: set = set()
        self._opening = 0
        self._waiting = 0
        self._closed = threading.Event()
        self._stop_reaper = threading.Event()
        self._reaper: Optional[threading.Thread] = None

    @property
    def config(self) -> Optional[PoolConfig]:
        return self._config

    @property
    def state(self) -> PoolState:
        return self._state

    # --- lifecycle ---

    def configure(self, config: PoolConfig) -> "ConnectionPool":
        """
        Validate ``config``, make the pool ready and open the initial connections.

        A ConfigurationError leaves the pool NOT_READY; acquisition is refused
        until a later call succeeds. Failing to pre-open connections is not an
        error: the pool fills up lazily as callers acquire.
        """
        with self._cond:
            if self._state in (PoolState.CLOSING, PoolState.CLOSED):
                raise PoolClosedError("cannot configure a pool that has been shut down")
            if self._state is PoolState.READY:
                raise ConfigurationError("pool is already configured")
            try:
                config.validate()
            except ConfigurationError:
                self._state = PoolState.NOT_READY
                raise

            self._config = config
            if self._default_factory:
                self._factory = SQLiteConnectionFactory(config)
            self._state = PoolState.READY
            to_open = self._reserve(config.fill_size)

        logger.info(
            "configured pool for %s (min=%d, max=%d)",
            config.database,
            config.min_size,
            config.max_size,
        )
        self._fill(to_open)

        with self._cond:
            # a shutdown may have started while the initial connections opened
            if config.max_idle_time is not None and self._state is PoolState.READY:
                self._stop_reaper.clear()
                self._reaper = threading.Thread(
                    target=self._run_reaper, name="sqlpool-reaper", daemon=True
                )
                self._reaper.start()
        return self

    def shutdown(self, grace: Optional[float] = None) -> None:
        """
        Close the pool for good. Safe to call any number of times.

        Idle connections are closed right away. Checked-out connections get
        ``grace`` seconds (default: ``config.shutdown_grace``) to come back;
        whatever is still out after that is closed from under its holder.
        """
        with self._cond:
            if self._state is PoolState.CLOSED:
                return
            already_closing = self._state is PoolState.CLOSING
            if not already_closing:
                self._state = PoolState.CLOSING
                idle = [conn for conn, _ in self._idle]
                self._idle.clear()
                # wake waiters so they fail with PoolClosedError
                self._cond.notify_all()

        if already_closing:
            self._closed.wait()
            return

        try:
            self._stop_reaper.set()
            if self._reaper is not None and self._reaper is not threading.current_thread():
                self._reaper.join()

            logger.info("shutting down pool: closing %d idle connections", len(idle))
            for conn in idle:
                self._close_quietly(conn)

            if grace is None:
                grace = self._config.shutdown_grace if self._config is not None else 0.0
            deadline = time.monotonic() + grace
            with self._cond:
                while self._checked_out or self._opening:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        break
                    self._cond.wait(remaining)
                leftover = list(self._checked_out)
                self._checked_out.clear()
                for handle in leftover:
                    handle._released = True

            if leftover:
                logger.warning("forcibly closing %d connections still in use", len(leftover))
            for handle in leftover:
                self._close_quietly(handle._connection)
        finally:
            with self._cond:
                self._state = PoolState.CLOSED
                self._cond.notify_all()
            self._closed.set()
            logger.info("pool closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()

    # --- checkout / checkin ---

    def acquire(self, timeout: Optional[float] = None) -> PooledConnection:
        """
        Check out a connection, waiting up to ``timeout`` seconds for one.

        ``timeout=None`` uses ``config.acquire_timeout`` (itself ``None`` for
        no limit); ``0`` fails at once when the pool is at capacity.
        """
        with self._cond:
            self._check_usable()
            if timeout is None:
                timeout = self._config.acquire_timeout
        deadline = None if timeout is None else time.monotonic() + timeout

        while True:
            handle = self._checkout(deadline)
            if handle is None:
                return self._open_reserved()
            if self._config.test_on_checkout and not self._test(handle._connection):
                logger.debug("discarding connection that failed checkout test")
                self._discard(handle)
                continue
            if handle._released:
                # reclaimed by a shutdown that ran while the test was in flight
                raise PoolClosedError("pool has been shut down")
            return handle

    def release(self, handle: PooledConnection) -> None:
        """
        Return a checked-out handle to the pool.

        Invalidated connections (or ones failing the check-in test) are closed
        and, if that drops the pool below ``min_size``, replaced. After shutdown
        this quietly discards the connection.
        """
        if not isinstance(handle, PooledConnection) or handle._pool is not self:
            raise InvalidHandleError("connection was not issued by this pool")

        with self._cond:
            if not self._still_out(handle):
                return
            check_in = (
                self._state is PoolState.READY
                and self._config.test_on_checkin
                and not handle._invalidated
            )

        if check_in and not self._test(handle._connection):
            logger.debug("connection failed checkin test")
            handle.invalidate()

        with self._cond:
            if not self._still_out(handle):
                return
            self._checked_out.remove(handle)
            handle._released = True
            conn = handle._connection
            if self._state is PoolState.READY and not handle._invalidated:
                self._idle.append((conn, time.monotonic()))
                self._cond.notify_all()
                return
            self._cond.notify_all()
            to_open = self._reserve(self._config.min_size) if self._state is PoolState.READY else 0

        self._close_quietly(conn)
        self._fill(to_open)

    @contextmanager
    def connection(self, timeout: Optional[float] = None) -> Iterator[PooledConnection]:
        """Acquire a connection for the duration of a ``with`` block."""
        handle = self.acquire(timeout)
        try:
            yield handle
        except Exception:
            # drivers raise their own error types; keep the connection only if it still answers
            if not self._test(handle._connection):
                handle.invalidate()
            raise
        finally:
            self.release(handle)

    # --- maintenance ---

    def status(self) -> PoolStatus:
        with self._cond:
            config = self._config
            return PoolStatus(
                state=self._state,
                min_size=config.min_size if config else 0,
                max_size=config.max_size if config else 0,
                idle=len(self._idle),
                active=len(self._checked_out),
                opening=self._opening,
                waiting=self._waiting,
            )

    def reap_idle(self) -> int:
        """Close connections idle longer than ``max_idle_time``, keeping ``min_size``."""
        with self._cond:
            if self._state is not PoolState.READY or self._config.max_idle_time is None:
                return 0
            cutoff = time.monotonic() - self._config.max_idle_time
            surplus = self._total() - self._config.min_size
            expired = []
            # oldest idle connections sit on the left
            while surplus > 0 and self._idle and self._idle[0][1] <= cutoff:
                expired.append(self._idle.popleft()[0])
                surplus -= 1

        for conn in expired:
            self._close_quietly(conn)
        if expired:
            logger.debug("reaped %d idle connections", len(expired))
        return len(expired)

    def _run_reaper(self):
        while not self._stop_reaper.wait(self._config.reap_interval):
            self.reap_idle()
            with self._cond:
                to_open = self._reserve(self._config.min_size) if self._state is PoolState.READY else 0
            self._fill(to_open)

    # --- internals (callers hold self._cond where noted) ---

    def _total(self) -> int:
        # lock held
        return len(self._idle) + len(self._checked_out) + self._opening

    def _check_usable(self):
        # lock held
        if self._state in (PoolState.NEW, PoolState.NOT_READY):
            raise PoolNotReadyError("pool has not been configured")
        if self._state in (PoolState.CLOSING, PoolState.CLOSED):
            raise PoolClosedError("pool has been shut down")

    def _still_out(self, handle) -> bool:
        # lock held; False means the release is a no-op on a closed pool
        if handle in self._checked_out:
            return True
        if self._state in (PoolState.CLOSING, PoolState.CLOSED):
            handle._released = True
            return False
        raise InvalidHandleError("connection handle was already released")

    def _reserve(self, target: int) -> int:
        # lock held; claim slots for connections to open up to `target` total
        count = max(0, min(target, self._config.max_size) - self._total())
        self._opening += count
        return count

    def _checkout(self, deadline) -> Optional[PooledConnection]:
        """Pop an idle connection, or reserve a slot (returns None), or wait."""
        with self._cond:
            while True:
                self._check_usable()
                if self._idle:
                    conn, _ = self._idle.pop()
                    handle = PooledConnection(self, conn)
                    self._checked_out.add(handle)
                    return handle
                if self._total() < self._config.max_size:
                    self._opening += 1
                    return None

                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    raise PoolExhaustedError(
                        f"no connection available within the timeout "
                        f"({self._config.max_size} in use)"
                    )
                self._waiting += 1
                try:
                    self._cond.wait(remaining)
                finally:
                    self._waiting -= 1

    def _open_reserved(self) -> PooledConnection:
        # turn one reserved slot into a checked-out connection
        try:
            conn = self._open_connection()
        except BaseException:
            with self._cond:
                self._opening -= 1
                self._cond.notify_all()
            raise

        with self._cond:
            self._opening -= 1
            if self._state is PoolState.READY:
                handle = PooledConnection(self, conn)
                self._checked_out.add(handle)
                return handle
            self._cond.notify_all()

        self._close_quietly(conn)
        raise PoolClosedError("pool was shut down while opening a connection")

    def _open_connection(self):
        attempts = self._config.create_retries + 1
        last_error = None
        for attempt in range(attempts):
            try:
                return self._factory.open()
            except Exception as e:
                # drivers raise their own error types; any of them means "no connection"
                last_error = e
            if attempt + 1 < attempts and self._state is PoolState.READY:
                logger.warning(
                    "opening connection failed (attempt %d/%d): %s",
                    attempt + 1,
                    attempts,
                    last_error,
                )
                time.sleep(self._config.create_retry_delay)
            else:
                break

        if isinstance(last_error, ConnectionCreationError):
            raise last_error
        raise ConnectionCreationError(f"Failed to open connection: {last_error}") from last_error

    def _fill(self, count: int) -> None:
        # open `count` reserved connections straight into the idle stack
        for opened in range(count):
            try:
                conn = self._open_connection()
            except ConnectionCreationError as e:
                with self._cond:
                    self._opening -= count - opened
                    self._cond.notify_all()
                logger.warning("could not pre-open connection: %s", e)
                return

            with self._cond:
                self._opening -= 1
                if self._state is PoolState.READY:
                    self._idle.append((conn, time.monotonic()))
                    self._cond.notify_all()
                    conn = None
                else:
                    self._cond.notify_all()
            if conn is not None:
                self._close_quietly(conn)

    def _discard(self, handle: PooledConnection) -> None:
        with self._cond:
            owned = handle in self._checked_out
            self._checked_out.discard(handle)
            handle._released = True
            self._cond.notify_all()
            # a discarded checkout must not leave the pool below min_size
            to_open = self._reserve(self._config.min_size) if self._state is PoolState.READY else 0
        if owned:
            self._close_quietly(handle._connection)
        self._fill(to_open)

    @staticmethod
    def _test(conn) -> bool:
        check = getattr(conn, "is_valid", None)
        if check is None:
            return True
        try:
            return bool(check())
        except Exception as e:
            logger.debug("connection test raised: %s", e)
            return False

    @staticmethod
    def _close_quietly(conn) -> None:
        try:
            conn.close()
        except Exception as e:
            logger.warning("error closing connection %r: %s", conn, e)


def create_pool(config: PoolConfig, factory=None) -> ConnectionPool:
    """Build and configure a pool in one step."""
    return ConnectionPool(factory).configure(config)
