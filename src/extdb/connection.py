"""
Lazy database connection with staged bind values and result shaping.

This module provides:
1. The `ExtendedConnection` class, which defers connecting until first use
2. The `connect()` function for creating an already-connected instance

The ExtendedConnection is the primary client, providing methods like:
- bind_value(name, value) / bind_values(mapping) - Stage values for the next query
- fetch_all(sql, values) - Rows as dictionaries
- fetch_assoc(sql, values) - Rows keyed on their first column
- fetch_col(sql, values) - First column of every row
- fetch_pairs(sql, values) - First column mapped to second column
- fetch_one(sql, values) / fetch_value(sql, values) - First row / first value
- fetch_object(sql, values, cls) / fetch_objects(sql, values, cls) - Rows as objects

An instance owns one SQLAlchemy connection and mutable staged values, so it
must not be shared between threads without external locking.
"""
import logging
from collections.abc import Callable, Mapping, Sequence
from types import SimpleNamespace
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from extdb import query
from extdb.bind import BindValues
from extdb.exceptions import ConnectionError
from extdb.options import ConnectionOptions, FetchShape
from extdb.profiler import NullProfiler, ProfilerInterface
from extdb.utils.connection_utils import check_connection, create_url_from_options
from extdb.utils.connection_utils import get_driver_name, get_engine_for_options

if TYPE_CHECKING:
    import pandas as pd

__all__ = ['ExtendedConnection', 'connect']

logger = logging.getLogger(__name__)

DEFAULT_ATTRIBUTES = {'isolation_level': 'AUTOCOMMIT'}


class ExtendedConnection:
    """Lazily-connected wrapper around a SQLAlchemy connection.

    Nothing touches the database until `connect()` is called, either
    directly or by the first fetch. Values staged with `bind_value()` and
    `bind_values()` are merged into the next statement and then cleared.
    """

    def __init__(self, options: ConnectionOptions | dict[str, Any] | str,
                 profiler: ProfilerInterface | None = None, **kw: Any) -> None:
        """Initialize without connecting.

        Args:
            options: A DSN string, a dict of option fields or ConnectionOptions
            profiler: Observer notified around each execution
            **kw: Option fields overriding those in `options`
        """
        self._options = ConnectionOptions.load(options, **kw)
        self._sa_connection: sa.engine.Connection | None = None
        self._engine: sa.engine.Engine | None = None
        self._bind_values = BindValues()
        self._profiler = profiler or NullProfiler()
        self.calls = 0
        self.time = 0

    def __repr__(self) -> str:
        state = 'connected' if self.is_connected() else 'not connected'
        return f'<{type(self).__name__} {self.get_driver()} ({state})>'

    def connect(self) -> None:
        """Connect to the database and apply post-connect attributes.

        Does nothing when already connected.

        Raises
            ConnectionError: If the connection cannot be established
        """
        if self.is_connected():
            return

        attributes = {**DEFAULT_ATTRIBUTES, **self._options.attributes}
        try:
            engine = get_engine_for_options(self._options)
            opener = check_connection(max_retries=self._options.connect_retries,
                                      retry_delay=self._options.connect_retry_delay)(engine.connect)
            sa_connection = opener()
            try:
                sa_connection = sa_connection.execution_options(**attributes)
            except Exception:
                sa_connection.close()
                raise
        except (sa.exc.SQLAlchemyError, ImportError, ValueError) as exc:
            native = getattr(exc, 'orig', None) or exc
            logger.error(f'Connection to {self.get_driver()} failed: {native}')
            raise ConnectionError(self._options.dsn, native) from exc

        self._engine = engine
        self._sa_connection = sa_connection
        logger.debug(f'Connected to {create_url_from_options(self._options).render_as_string()}')

    def is_connected(self) -> bool:
        return self._sa_connection is not None and not self._sa_connection.closed

    def get_dsn(self) -> str:
        return self._options.dsn

    def get_driver(self) -> str:
        """Return the driver name from the DSN, without connecting."""
        return get_driver_name(self._options.dsn)

    def get_profiler(self) -> ProfilerInterface:
        return self._profiler

    def set_profiler(self, profiler: ProfilerInterface | None) -> None:
        """Replace the profiler; None restores the no-op profiler."""
        self._profiler = profiler or NullProfiler()

    def bind_value(self, name: str, value: Any) -> None:
        """Stage a value for the next statement; it is cleared after that statement.
        """
        self._bind_values.add(name, value)

    def bind_values(self, values: Mapping[str, Any]) -> None:
        """Stage several values for the next statement.
        """
        self._bind_values.update(values)

    def get_bind_values(self) -> dict[str, Any]:
        """Return a copy of the values staged for the next statement.
        """
        return self._bind_values.get()

    def take_bind_values(self) -> dict[str, Any]:
        """Return the staged values and clear them.
        """
        return self._bind_values.take()

    def addcall(self, elapsed: float) -> None:
        """Track execution statistics
        """
        self.time += elapsed
        self.calls += 1

    def perform(self, statement: str, values: dict[str, Any] | None = None) -> sa.CursorResult:
        """Execute a statement and return the raw SQLAlchemy result.
        """
        return query.execute_statement(self, statement, values)

    def fetch_affected(self, statement: str, values: dict[str, Any] | None = None) -> int:
        """Execute a statement and return the affected row count.
        """
        return query.fetch_affected(self, statement, values)

    def fetch_all(self, statement: str, values: dict[str, Any] | None = None,
                  transform: Callable[[dict[str, Any]], Any] | None = None) -> list[Any]:
        """Fetch all rows as dictionaries.
        """
        return query.fetch_all(self, statement, values, transform)

    def fetch_assoc(self, statement: str, values: dict[str, Any] | None = None,
                    transform: Callable[[dict[str, Any]], Any] | None = None) -> dict[Any, Any]:
        """Fetch rows keyed on their first column; the last duplicate wins.
        """
        return query.fetch_assoc(self, statement, values, transform)

    def fetch_col(self, statement: str, values: dict[str, Any] | None = None,
                  transform: Callable[[Any], Any] | None = None) -> list[Any]:
        """Fetch the first column of every row.
        """
        return query.fetch_col(self, statement, values, transform)

    def fetch_pairs(self, statement: str, values: dict[str, Any] | None = None,
                    transform: Callable[[Any], Any] | None = None) -> dict[Any, Any]:
        """Fetch a mapping of first column to second column.
        """
        return query.fetch_pairs(self, statement, values, transform)

    def fetch_object(self, statement: str, values: dict[str, Any] | None = None,
                     cls: type | str = SimpleNamespace, ctor_args: Sequence[Any] = ()) -> Any:
        """Fetch the first row as an object, or None.

        Warning: column values are assigned before `__post_init__` runs and
        `__init__` is never called, so constructor defaults do not apply to
        loaded fields.
        """
        return query.fetch_object(self, statement, values, cls, ctor_args)

    def fetch_objects(self, statement: str, values: dict[str, Any] | None = None,
                      cls: type | str = SimpleNamespace, ctor_args: Sequence[Any] = ()) -> list[Any]:
        """Fetch every row as an object.
        """
        return query.fetch_objects(self, statement, values, cls, ctor_args)

    def fetch_one(self, statement: str, values: dict[str, Any] | None = None) -> dict[str, Any] | None:
        """Fetch the first row as a dictionary, or None.
        """
        return query.fetch_one(self, statement, values)

    def fetch_value(self, statement: str, values: dict[str, Any] | None = None) -> Any:
        """Fetch the first column of the first row, or None.
        """
        return query.fetch_value(self, statement, values)

    def fetch_frame(self, statement: str, values: dict[str, Any] | None = None,
                    loader: Callable[..., 'pd.DataFrame'] | None = None) -> 'pd.DataFrame':
        """Fetch all rows into a pandas DataFrame.
        """
        return query.fetch_frame(self, statement, values, loader)

    def fetch(self, statement: str, values: dict[str, Any] | None = None,
              shape: FetchShape | str | None = None, **kwargs: Any) -> Any:
        """Fetch in the given shape, or in the configured default shape.

        Extra keyword arguments go to the shape's fetch method (`transform`,
        `cls`, `ctor_args`).
        """
        shape = FetchShape(shape) if shape is not None else self._options.default_shape
        return getattr(self, f'fetch_{shape.value}')(statement, values, **kwargs)


def connect(options: ConnectionOptions | dict[str, Any] | str,
            profiler: ProfilerInterface | None = None, **kw: Any) -> ExtendedConnection:
    """Create an ExtendedConnection and connect it immediately.

    Args:
        options: Can be:
                - ConnectionOptions object
                - DSN string
                - Dictionary of options
        profiler: Observer notified around each execution
        **kw: Additional keyword arguments to override options

    Returns
        Connected ExtendedConnection
    """
    cn = ExtendedConnection(options, profiler=profiler, **kw)
    cn.connect()
    return cn
