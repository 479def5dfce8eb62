"""
DSN and engine utilities with SQLAlchemy integration.

This module provides:
1. DSN parsing (`driver:body` strings and SQLAlchemy URLs)
2. SQLAlchemy URL generation from ConnectionOptions
3. Engine creation and management through a thread-safe registry
4. A connection retry decorator with backoff

A DSN never needs a live connection to be inspected: `get_driver_name`
works on the string alone.
"""
import atexit
import logging
import threading
import time
from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

import sqlalchemy as sa
from extdb.exceptions import DriverConnectionError, is_retryable_error
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

__all__ = [
    'check_connection',
    'create_url_from_options',
    'get_driver_name',
    'get_engine_for_options',
    'dispose_all_engines',
    'parse_dsn_body',
]

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Thread-safe engine registry
_engine_registry: dict[str, Engine] = {}
_engine_registry_lock = threading.RLock()

# PDO-style driver token -> SQLAlchemy drivername
_DRIVER_MAP = {
    'sqlite': 'sqlite',
    'pgsql': 'postgresql+psycopg',
    'postgres': 'postgresql+psycopg',
    'postgresql': 'postgresql+psycopg',
    'mysql': 'mysql+pymysql',
}

# DSN body keys -> sa.URL.create arguments
_URL_KEYS = {
    'host': 'host',
    'hostname': 'host',
    'port': 'port',
    'dbname': 'database',
    'database': 'database',
    'user': 'username',
    'password': 'password',
}


def get_driver_name(dsn: str) -> str:
    """Return the driver token of a DSN, the text before the first colon.

    >>> get_driver_name('pgsql:host=localhost;dbname=app')
    'pgsql'
    >>> get_driver_name('sqlite::memory:')
    'sqlite'
    >>> get_driver_name('postgresql+psycopg://u@h/db')
    'postgresql+psycopg'
    """
    return dsn.split(':', 1)[0]


def parse_dsn_body(body: str) -> dict[str, str]:
    """Split a `key=value;key=value` DSN body into a dict.

    >>> parse_dsn_body('host=localhost;port=5432;dbname=app')
    {'host': 'localhost', 'port': '5432', 'dbname': 'app'}
    """
    params = {}
    for part in body.split(';'):
        part = part.strip()
        if not part:
            continue
        key, sep, value = part.partition('=')
        if not sep:
            raise ValueError(f'Malformed DSN segment {part!r}, expected key=value')
        params[key.strip()] = value.strip()
    return params


def create_url_from_options(options, url_creator: Callable[..., sa.URL] = sa.URL.create) -> sa.URL:
    """Convert ConnectionOptions to a SQLAlchemy URL.

    DSNs that already look like URLs (`scheme://...`) are parsed by
    SQLAlchemy directly; credentials from the options fill in missing ones.
    """
    dsn = options.dsn
    if '://' in dsn:
        url = sa.make_url(dsn)
        if options.username and not url.username:
            url = url.set(username=options.username, password=options.password)
        return url

    driver, _, body = dsn.partition(':')
    driver = driver.lower()
    if driver not in _DRIVER_MAP:
        raise ValueError(f'Unsupported DSN driver {driver!r}, expected one of: {sorted(_DRIVER_MAP)}')

    if driver == 'sqlite':
        database = None if body in {'', ':memory:'} else body
        return url_creator(drivername='sqlite', database=database)

    kwargs: dict[str, Any] = {}
    query = {}
    for key, value in parse_dsn_body(body).items():
        if key.lower() in _URL_KEYS:
            kwargs[_URL_KEYS[key.lower()]] = value
        else:
            query[key] = value
    if 'port' in kwargs:
        kwargs['port'] = int(kwargs['port'])
    if options.username:
        kwargs['username'] = options.username
    if options.password:
        kwargs['password'] = options.password

    return url_creator(drivername=_DRIVER_MAP[driver], query=query, **kwargs)


def check_connection(func: Callable[..., T] | None = None, *, max_retries: int = 3,
                     retry_delay: float = 1, retry_errors: type | tuple[type, ...] | None = None,
                     retry_backoff: float = 1.5,
                     sleep_func: Callable[[float], None] = time.sleep) -> Callable[..., T]:
    """Connection retry decorator with backoff.

    Retries the wrapped call when it raises one of `retry_errors` (default:
    driver connection errors) and the error looks transient. Non-transient
    errors such as a bad password are raised on the first attempt.

    Supports both @check_connection and @check_connection() syntax.
    """
    def decorator(f: Callable[..., T]) -> Callable[..., T]:
        @wraps(f)
        def inner(*args: Any, **kwargs: Any) -> T:
            error_types = retry_errors if retry_errors is not None else DriverConnectionError

            tries = 0
            delay = retry_delay
            while True:
                try:
                    return f(*args, **kwargs)
                except error_types as err:
                    tries += 1
                    if tries >= max_retries or not is_retryable_error(err):
                        if tries > 1:
                            logger.error(f'Giving up after {tries} connection attempts: {err}')
                        raise
                    logger.warning(f'Connection error (attempt {tries}/{max_retries}): {err}')
                    sleep_func(delay)
                    delay *= retry_backoff

        return inner

    if func is None:
        return decorator
    return decorator(func)


def get_engine_for_options(options, engine_factory: Callable[..., Engine] = sa.create_engine,
                           **kwargs: Any) -> Engine:
    """Get or create a SQLAlchemy engine for the given options.

    Engines are keyed on the rendered URL and driver options so that two
    access-layer instances for the same DSN share one engine. Engines never
    pool: each instance owns exactly one connection.
    """
    url = create_url_from_options(options)
    key = f'{url.render_as_string(hide_password=False)}_{sorted(options.driver_options.items())!r}'

    with _engine_registry_lock:
        if key in _engine_registry:
            logger.debug(f'Using existing engine for {url.drivername}')
            return _engine_registry[key]

        engine_kwargs: dict[str, Any] = {'echo': False, 'poolclass': NullPool}
        if options.driver_options:
            engine_kwargs['connect_args'] = dict(options.driver_options)
        engine_kwargs.update(kwargs)

        engine = engine_factory(url, **engine_kwargs)

        _engine_registry[key] = engine
        logger.debug(f'Created new engine for {url.drivername}')

        return engine


def dispose_all_engines() -> None:
    """Dispose all engines in the registry.
    """
    with _engine_registry_lock:
        for engine in list(_engine_registry.values()):
            engine.dispose()
        _engine_registry.clear()
        logger.debug('All database engines disposed')


atexit.register(dispose_all_engines)
