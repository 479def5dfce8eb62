"""
Statement execution and result shaping.

Every fetch operation goes through `execute_statement()`:

1. make sure the connection is open
2. take the staged bind values and merge the call-site values over them
3. notify the profiler, prepare, bind and execute
4. report success or failure to the profiler

The shape functions then consume the result in a single pass. Empty
results give `[]`/`{}` for multi-row shapes and None for single-row ones.
A transform that raises propagates unchanged; rows accumulated before
the failure are discarded.
"""
import logging
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from types import SimpleNamespace
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from extdb.bind import merge_values
from extdb.exceptions import QueryError, ShapeConstructionError
from extdb.loaders import pandas_numpy_data_loader
from extdb.profiler import notify
from extdb.row import materialize, resolve_target
from extdb.sql import prepare_statement

if TYPE_CHECKING:
    import pandas as pd
    from extdb.connection import ExtendedConnection

__all__ = [
    'execute_statement',
    'fetch_affected',
    'fetch_all',
    'fetch_assoc',
    'fetch_col',
    'fetch_frame',
    'fetch_object',
    'fetch_objects',
    'fetch_one',
    'fetch_pairs',
    'fetch_value',
]

logger = logging.getLogger(__name__)

Values = dict[str, Any] | None
Row = dict[str, Any]


def _execute(cn: 'ExtendedConnection', statement: str,
             values: Values) -> tuple[sa.CursorResult, dict[str, Any]]:
    cn.connect()
    merged = merge_values(cn.take_bind_values(), values)
    profiler = cn.get_profiler()

    notify(profiler, 'on_before', statement, merged)
    start = time.perf_counter()
    try:
        prepared = prepare_statement(statement, merged, cn._options.bind_types)
        logger.debug(f'SQL:\n{prepared.sql}\nvalues: {prepared.params}')
        result = cn._sa_connection.execute(prepared.clause, prepared.params)
    except (sa.exc.SQLAlchemyError, ValueError) as exc:
        elapsed = time.perf_counter() - start
        cn.addcall(elapsed)
        native = getattr(exc, 'orig', None) or exc
        logger.error(f'Error with query:\nSQL:\n{statement}\nvalues: {merged}\nerror: {native}')
        notify(profiler, 'on_failure', statement, merged, elapsed, native)
        raise QueryError(native, statement, merged) from exc

    elapsed = time.perf_counter() - start
    cn.addcall(elapsed)
    logger.debug(f'Query time: {elapsed:.4f}s')
    notify(profiler, 'on_success', statement, merged, elapsed)
    return result, merged


def execute_statement(cn: 'ExtendedConnection', statement: str,
                      values: Values = None) -> sa.CursorResult:
    """Execute a statement with staged and call-site values merged.

    Staged values are cleared once the connection is open, whether or not
    the statement then succeeds.

    Raises
        ConnectionError: If the connection cannot be opened
        QueryError: If preparing, binding or executing fails
    """
    result, _ = _execute(cn, statement, values)
    return result


@contextmanager
def _reading(cn: 'ExtendedConnection', statement: str, values: Values) -> Iterator[sa.CursorResult]:
    """Execute and yield the result, closing it afterwards.

    Driver errors raised while rows are read become QueryError.
    """
    result, merged = _execute(cn, statement, values)
    try:
        yield result
    except sa.exc.SQLAlchemyError as exc:
        native = getattr(exc, 'orig', None) or exc
        logger.error(f'Error reading rows:\nSQL:\n{statement}\nvalues: {merged}\nerror: {native}')
        raise QueryError(native, statement, merged) from exc
    finally:
        result.close()


def _mappings(result: sa.CursorResult) -> Iterator[Row]:
    if not result.returns_rows:
        return
    for mapping in result.mappings():
        yield dict(mapping)


def _tuples(result: sa.CursorResult) -> Iterator[sa.Row]:
    if not result.returns_rows:
        return
    yield from result


def fetch_all(cn: 'ExtendedConnection', statement: str, values: Values = None,
              transform: Callable[[Row], Any] | None = None) -> list[Any]:
    """Fetch all rows as dictionaries, in cursor order.
    """
    with _reading(cn, statement, values) as result:
        rows = []
        for row in _mappings(result):
            rows.append(transform(row) if transform is not None else row)
    logger.debug(f'fetch_all returned {len(rows)} row(s)')
    return rows


def fetch_assoc(cn: 'ExtendedConnection', statement: str, values: Values = None,
                transform: Callable[[Row], Any] | None = None) -> dict[Any, Any]:
    """Fetch rows keyed on the value of their first column.

    A later row with the same first-column value replaces the earlier one.
    """
    with _reading(cn, statement, values) as result:
        rows = {}
        for row in _mappings(result):
            key = next(iter(row.values()))
            rows[key] = transform(row) if transform is not None else row
    return rows


def fetch_col(cn: 'ExtendedConnection', statement: str, values: Values = None,
              transform: Callable[[Any], Any] | None = None) -> list[Any]:
    """Fetch the first column of every row.

    The transform, if any, receives the column value.
    """
    with _reading(cn, statement, values) as result:
        column = []
        for row in _tuples(result):
            column.append(transform(row[0]) if transform is not None else row[0])
    return column


def fetch_pairs(cn: 'ExtendedConnection', statement: str, values: Values = None,
                transform: Callable[[Any], Any] | None = None) -> dict[Any, Any]:
    """Fetch a mapping of first column to second column.

    The transform, if any, receives the second-column value of each row in
    cursor order; duplicate keys keep the last row's value.
    """
    with _reading(cn, statement, values) as result:
        if result.returns_rows and len(result.keys()) < 2:
            raise ShapeConstructionError(
                f'fetch_pairs needs at least two columns, got {list(result.keys())}')
        pairs = {}
        for row in _tuples(result):
            pairs[row[0]] = transform(row[1]) if transform is not None else row[1]
    return pairs


def fetch_one(cn: 'ExtendedConnection', statement: str, values: Values = None) -> Row | None:
    """Fetch the first row as a dictionary, or None.
    """
    with _reading(cn, statement, values) as result:
        return next(_mappings(result), None)


def fetch_value(cn: 'ExtendedConnection', statement: str, values: Values = None) -> Any:
    """Fetch the first column of the first row, or None.
    """
    with _reading(cn, statement, values) as result:
        row = next(_tuples(result), None)
    if row is None:
        return None
    return row[0]


def _resolve_or_clear(cn: 'ExtendedConnection', cls: type | str, ctor_args: Sequence[Any]) -> type:
    try:
        return resolve_target(cls, ctor_args)
    except ShapeConstructionError:
        cn.take_bind_values()
        raise


def fetch_object(cn: 'ExtendedConnection', statement: str, values: Values = None,
                 cls: type | str = SimpleNamespace, ctor_args: Sequence[Any] = ()) -> Any:
    """Fetch the first row as an instance of `cls`, or None.

    Column values are assigned to attributes before `__post_init__` runs;
    see `extdb.row`. An unusable `cls` fails before execution and still
    clears the staged values.
    """
    target = _resolve_or_clear(cn, cls, ctor_args)
    with _reading(cn, statement, values) as result:
        row = next(_mappings(result), None)
    if row is None:
        return None
    return materialize(target, row, ctor_args)


def fetch_objects(cn: 'ExtendedConnection', statement: str, values: Values = None,
                  cls: type | str = SimpleNamespace, ctor_args: Sequence[Any] = ()) -> list[Any]:
    """Fetch every row as an instance of `cls`.
    """
    target = _resolve_or_clear(cn, cls, ctor_args)
    with _reading(cn, statement, values) as result:
        return [materialize(target, row, ctor_args) for row in _mappings(result)]


def fetch_affected(cn: 'ExtendedConnection', statement: str, values: Values = None) -> int:
    """Execute a statement and return the number of affected rows.
    """
    with _reading(cn, statement, values) as result:
        return result.rowcount


def fetch_frame(cn: 'ExtendedConnection', statement: str, values: Values = None,
                loader: Callable[..., 'pd.DataFrame'] | None = None) -> 'pd.DataFrame':
    """Fetch all rows into a DataFrame via `loader`.

    Column names are kept even when there are no rows.
    """
    loader = loader or pandas_numpy_data_loader
    with _reading(cn, statement, values) as result:
        columns = list(result.keys()) if result.returns_rows else []
        rows = list(_mappings(result))
    return loader(rows, columns)
