"""
Lazy database access layer with staged bind values and result shaping.

    import extdb

    cn = extdb.ExtendedConnection('sqlite:/tmp/app.db')   # not connected yet
    cn.bind_value('status', 'active')
    ids = cn.fetch_col('SELECT id FROM users WHERE status = :status')

Fetch operations: fetch_all, fetch_assoc, fetch_col, fetch_pairs,
fetch_one, fetch_value, fetch_object, fetch_objects.
"""
__version__ = '0.1.0'

from extdb.connection import ExtendedConnection, connect
from extdb.exceptions import ConnectionError, DatabaseError, QueryError
from extdb.exceptions import ShapeConstructionError
from extdb.loaders import pandas_numpy_data_loader, pandas_pyarrow_data_loader
from extdb.options import ConnectionOptions, FetchShape
from extdb.profiler import LoggingProfiler, NullProfiler, ProfileEvent
from extdb.profiler import Profiler, ProfilerInterface

__all__ = [
    'connect',
    'ExtendedConnection',
    'ConnectionOptions',
    'FetchShape',
    'ProfilerInterface',
    'NullProfiler',
    'Profiler',
    'LoggingProfiler',
    'ProfileEvent',
    'pandas_numpy_data_loader',
    'pandas_pyarrow_data_loader',
    'DatabaseError',
    'ConnectionError',
    'QueryError',
    'ShapeConstructionError',
]
