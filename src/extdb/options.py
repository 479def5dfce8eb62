import datetime
import decimal
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any

import sqlalchemy as sa

__all__ = [
    'ConnectionOptions',
    'FetchShape',
    'BIND_TYPES',
    'resolve_bind_type',
]


class FetchShape(str, Enum):
    """Result shapes produced by the fetch operations."""
    ALL = 'all'
    ASSOC = 'assoc'
    COL = 'col'
    OBJECT = 'object'
    OBJECTS = 'objects'
    ONE = 'one'
    PAIRS = 'pairs'
    VALUE = 'value'


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in {'', '0', 'false', 'f', 'no', 'n', 'off'}
    return bool(value)


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, str):
        return value.encode()
    return bytes(value)


def _to_date(value: Any) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    return datetime.date.fromisoformat(str(value))


def _to_datetime(value: Any) -> datetime.datetime:
    if isinstance(value, datetime.datetime):
        return value
    return datetime.datetime.fromisoformat(str(value))


# name -> (sqlalchemy type, python converter)
BIND_TYPES: dict[str, tuple[type[sa.types.TypeEngine], Any]] = {
    'int': (sa.Integer, int),
    'float': (sa.Float, float),
    'str': (sa.String, str),
    'bool': (sa.Boolean, _to_bool),
    'bytes': (sa.LargeBinary, _to_bytes),
    'decimal': (sa.Numeric, decimal.Decimal),
    'date': (sa.Date, _to_date),
    'datetime': (sa.DateTime, _to_datetime),
}


def resolve_bind_type(target: Any) -> tuple[sa.types.TypeEngine, Any]:
    """Resolve a configured bind type to a SQLAlchemy type and a converter.

    A SQLAlchemy type (class or instance) is attached as-is and the value is
    left for the type's own bind processing.

    >>> type_, convert = resolve_bind_type('int')
    >>> convert('42')
    42
    """
    if isinstance(target, str):
        try:
            type_cls, convert = BIND_TYPES[target.lower()]
        except KeyError:
            raise ValueError(f'Unknown bind type {target!r}, expected one of: {sorted(BIND_TYPES)}')
        return type_cls(), convert
    if isinstance(target, type) and issubclass(target, sa.types.TypeEngine):
        return target(), None
    if isinstance(target, sa.types.TypeEngine):
        return target, None
    raise ValueError(f'Unsupported bind type: {target!r}')


@dataclass
class ConnectionOptions:
    """Options

    - dsn: `driver:body` (`sqlite:/tmp/app.db`, `pgsql:host=db;dbname=app`)
      or a SQLAlchemy URL
    - driver_options: passed to the DBAPI `connect()` call
    - attributes: SQLAlchemy execution options applied after connecting
    - bind_types: parameter name -> bind type, applied to every statement
    - default_shape: shape used by `ExtendedConnection.fetch`
    - connect_retries: attempts made for transient connection failures
    """
    dsn: str = None
    username: str = None
    password: str = None
    driver_options: dict[str, Any] = field(default_factory=dict)
    attributes: dict[str, Any] = field(default_factory=dict)
    bind_types: dict[str, Any] = field(default_factory=dict)
    default_shape: FetchShape | str = FetchShape.ALL
    connect_retries: int = 1
    connect_retry_delay: float = 0.5

    def __post_init__(self):
        if not self.dsn or not isinstance(self.dsn, str) or ':' not in self.dsn:
            raise ValueError(f'dsn must be a string of the form "driver:..." (got {self.dsn!r})')
        self.driver_options = dict(self.driver_options)
        self.attributes = dict(self.attributes)
        self.bind_types = dict(self.bind_types)
        self.default_shape = FetchShape(self.default_shape)
        if self.connect_retries < 1:
            raise ValueError('connect_retries must be at least 1')
        for target in self.bind_types.values():
            resolve_bind_type(target)

    @classmethod
    def load(cls, options: 'ConnectionOptions | dict[str, Any] | str',
             **kw: Any) -> 'ConnectionOptions':
        """Build options from a DSN string, a dict of fields or another options object.

        Keyword arguments override the supplied values. The result never
        shares its dicts with the input.

        >>> ConnectionOptions.load('sqlite::memory:', username='me').username
        'me'
        """
        if isinstance(options, cls):
            return replace(options, **kw)
        if isinstance(options, str):
            return cls(dsn=options, **kw)
        if isinstance(options, dict):
            known = {f.name for f in fields(cls)}
            unknown = (set(options) | set(kw)) - known
            if unknown:
                raise ValueError(f'Unknown connection options: {sorted(unknown)}')
            return cls(**{**options, **kw})
        raise TypeError(f'Cannot load connection options from {type(options).__name__}')
