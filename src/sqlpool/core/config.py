"""Pool configuration: sizes, timeouts and the backing database locator."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Optional
import os

from .exceptions import ConfigurationError

DEFAULT_MIN_SIZE = 5
DEFAULT_MAX_SIZE = 10


@dataclass
class PoolConfig:
    """Settings for a ConnectionPool and the factory that feeds it.

    ``database`` is the resource locator: a filesystem path, ``:memory:``
    or a ``file:`` URI. ``user`` and ``password`` are handed to the
    connection factory untouched; SQLite itself has no authentication.
    """

    database: str = "./sqlpool.db"
    user: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    min_size: int = DEFAULT_MIN_SIZE
    max_size: int = DEFAULT_MAX_SIZE
    initial_size: Optional[int] = None
    acquire_timeout: Optional[float] = 30.0
    create_retries: int = 0
    create_retry_delay: float = 1.0
    test_on_checkout: bool = False
    test_on_checkin: bool = False
    max_idle_time: Optional[float] = None
    reap_interval: float = 30.0
    shutdown_grace: float = 0.0
    connect_timeout: float = 5.0

    def validate(self) -> "PoolConfig":
        """Raise ConfigurationError if the settings cannot build a pool."""
        if not isinstance(self.database, str) or not self.database.strip():
            raise ConfigurationError("database locator must be a non-empty string")

        for name in ("min_size", "max_size", "create_retries"):
            value = getattr(self, name)
            if not _is_int(value) or value < 0:
                raise ConfigurationError(f"{name} must be a non-negative integer, got {value!r}")
        if self.max_size < 1:
            raise ConfigurationError("max_size must be at least 1")
        if self.min_size > self.max_size:
            raise ConfigurationError(
                f"min_size ({self.min_size}) cannot exceed max_size ({self.max_size})"
            )
        if self.initial_size is not None:
            if not _is_int(self.initial_size) or not (
                0 <= self.initial_size <= self.max_size
            ):
                raise ConfigurationError(
                    f"initial_size must be between 0 and max_size, got {self.initial_size!r}"
                )

        # credentials travel as a pair; a password alone is meaningless
        if self.user is not None and (not isinstance(self.user, str) or not self.user):
            raise ConfigurationError("user must be a non-empty string")
        if self.password is not None:
            if not isinstance(self.password, str):
                raise ConfigurationError("password must be a string")
            if self.user is None:
                raise ConfigurationError("password given without a user")

        for name in ("acquire_timeout", "max_idle_time"):
            value = getattr(self, name)
            if value is not None and not _is_number(value):
                raise ConfigurationError(f"{name} must be a number or None, got {value!r}")
        for name in ("create_retry_delay", "shutdown_grace", "connect_timeout", "reap_interval"):
            value = getattr(self, name)
            if not _is_number(value):
                raise ConfigurationError(f"{name} must be a number, got {value!r}")

        if self.acquire_timeout is not None and self.acquire_timeout < 0:
            raise ConfigurationError("acquire_timeout cannot be negative")
        for name in ("create_retry_delay", "shutdown_grace", "connect_timeout"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} cannot be negative")
        if self.max_idle_time is not None and self.max_idle_time <= 0:
            raise ConfigurationError("max_idle_time must be positive")
        if self.reap_interval <= 0:
            raise ConfigurationError("reap_interval must be positive")
        return self

    @property
    def fill_size(self) -> int:
        """Number of connections opened eagerly on configure."""
        return self.min_size if self.initial_size is None else self.initial_size

    @classmethod
    def from_env(cls, prefix: str = "SQLPOOL_", **overrides) -> "PoolConfig":
        """
        Build a config from environment variables.

        Every field maps to ``<prefix><FIELD NAME>``, e.g. ``SQLPOOL_MAX_SIZE``.
        Unset variables keep the dataclass default; keyword overrides win
        over the environment.
        """
        values = {}
        for f in fields(cls):
            raw = os.getenv(prefix + f.name.upper())
            if raw is None or f.name in overrides:
                continue
            values[f.name] = _coerce(f.name, f.type, raw)
        values.update(overrides)
        return cls(**values).validate()


def _is_int(value) -> bool:
    # bool is an int subclass but never a valid size
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _coerce(name: str, type_name: str, raw: str):
    # dataclass field types are strings under `from __future__ import annotations`
    raw = raw.strip()
    try:
        if "bool" in type_name:
            lowered = raw.lower()
            if lowered in _TRUE:
                return True
            if lowered in _FALSE:
                return False
            raise ValueError(raw)
        if "Optional" in type_name and raw.lower() in ("", "none"):
            return None
        if "int" in type_name:
            return int(raw)
        if "float" in type_name:
            return float(raw)
    except ValueError:
        raise ConfigurationError(f"invalid value for {name}: {raw!r}")
    return raw
