"""
Access-layer exception classes.
"""
import re
import sqlite3
from typing import Any

import sqlalchemy as sa

RETRYABLE_PATTERNS = [
    # SSL/TLS errors
    r'ssl',
    r'tls',
    # Connection drops
    r'connection.*(closed|reset|refused|lost|terminated|broken)',
    r'server closed',
    r'eof detected',
    r'broken pipe',
    # Timeouts
    r'timeout',
    r'timed out',
    # Network issues
    r'could not connect',
    r'no route to host',
    r'network.*(unreachable|error)',
    r'host.*(unreachable|down)',
    # Database unavailable
    r'database.*unavailable',
    r'database is locked',
    r'too many connections',
]

_RETRYABLE_REGEX = re.compile('|'.join(RETRYABLE_PATTERNS), re.IGNORECASE)


def is_retryable_error(exc: BaseException) -> bool:
    """Check if an exception represents a transient connection error.

    Returns True for errors that may succeed on another attempt (dropped
    connections, timeouts, network issues, a busy database). Returns False
    for errors that will fail again (bad credentials, unknown database,
    missing driver).

    :param exc: The exception to check.
    :returns: True if the error is likely transient and worth retrying.
    """
    native = getattr(exc, 'native', None) or exc
    return bool(_RETRYABLE_REGEX.search(str(native).lower()))


class DatabaseError(Exception):
    """Base class for all access-layer errors.
    """


class ConnectionError(DatabaseError):
    """Error establishing the database connection.

    The driver's own exception is kept on ``native``.
    """

    def __init__(self, dsn: str, native: BaseException) -> None:
        self.dsn = dsn
        self.native = native
        super().__init__(f'Could not connect to {dsn!r}: {native}')


class QueryError(DatabaseError):
    """Error preparing, binding or executing a statement.

    Carries the statement text and the bound values for diagnostics.
    """

    def __init__(self, native: BaseException, statement: str,
                 values: dict[str, Any]) -> None:
        self.native = native
        self.statement = statement
        self.values = dict(values)
        super().__init__(f'{native}\nSQL: {statement}\nvalues: {self.values}')


class ShapeConstructionError(DatabaseError):
    """The requested result shape cannot be built.
    """


DriverConnectionError = (
    sa.exc.OperationalError,
    sa.exc.InterfaceError,
    sqlite3.OperationalError,
    sqlite3.InterfaceError,
    )
