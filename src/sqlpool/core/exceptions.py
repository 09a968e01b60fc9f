"""
Exceptions for the sqlpool package
This is placed such that there is a general error catcher
"""


class SqlPoolError(Exception):
    # general container for errors
    pass


class ConfigurationError(SqlPoolError):
    # raised when pool sizes or credentials are invalid
    pass


class PoolError(SqlPoolError):
    # raised by pool operations at runtime (defined below)
    pass


class ConnectionCreationError(PoolError):
    # raised when the backing resource refuses a new connection
    pass


class PoolExhaustedError(PoolError):
    # raised when no connection frees up before the timeout
    pass


class InvalidHandleError(PoolError):
    # raised on double release, foreign handles or use after release
    pass


class PoolClosedError(PoolError):
    # raised when the pool is used after shutdown
    pass


class PoolNotReadyError(PoolError):
    # raised when the pool is used before a successful configure
    pass
