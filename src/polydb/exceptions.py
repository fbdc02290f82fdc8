"""
Database-specific exception classes.

Every error raised by this package derives from `DatabaseError`. Native driver
errors are translated at the adapter boundary; the original exception is kept
as `__cause__` (and on `StatementError.native`) so no detail is lost.
"""
import sqlite3

import psycopg
import pymongo.errors


class DatabaseError(Exception):
    """Base class for all polydb errors.
    """


class ConfigurationError(DatabaseError):
    """Missing or invalid connection fields, unsupported engine or driver.

    Raised before any network attempt is made.
    """


class ConnectionFailure(DatabaseError):
    """Error establishing or maintaining a database connection.

    Fatal for the adapter instance that raised it.
    """


class StatementError(DatabaseError):
    """The engine rejected a statement.

    The message is the native driver message, unchanged.
    """

    def __init__(self, message: str, native: BaseException | None = None):
        super().__init__(message)
        self.native = native


class UnsupportedQueryError(DatabaseError):
    """SQL-shaped input or an operation the engine cannot express natively.
    """


class TransactionAbortError(StatementError):
    """A statement inside a transaction batch failed and the batch was rolled back.
    """

    def __init__(self, message: str, index: int, native: BaseException | None = None):
        super().__init__(message, native)
        self.index = index


def native_message(exc: BaseException) -> str:
    """Return the driver's own message for an exception.

    SQLAlchemy wraps DBAPI errors and appends the statement and a background
    link; the wrapped `orig` carries the engine text we want to surface.
    """
    orig = getattr(exc, 'orig', None)
    if orig is not None:
        return str(orig)
    return str(exc)


DbConnectionError = (
    psycopg.OperationalError,
    psycopg.InterfaceError,
    sqlite3.OperationalError,
    sqlite3.InterfaceError,
    pymongo.errors.ConnectionFailure,
    pymongo.errors.ConfigurationError,
    OSError,
    ConnectionFailure,
    )
