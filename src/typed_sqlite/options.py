import enum
import pathlib
from collections.abc import Callable
from dataclasses import dataclass, fields
from functools import reduce, wraps
from typing import Any

import pandas as pd
import pyarrow as pa
import sqlalchemy as sa
from typed_sqlite.types import ColumnType

from libb import ConfigOptions

__all__ = [
    'OpenFlags',
    'ConnectionOptions',
    'path_options',
    'pandas_numpy_data_loader',
    'pandas_pyarrow_data_loader',
    'iterdict_data_loader',
]


class OpenFlags(enum.IntFlag):
    """Open mode flags, with the engine's own bit values.
    """
    READONLY = 0x00000001
    READWRITE = 0x00000002
    CREATE = 0x00000004
    URI = 0x00000040
    NOMUTEX = 0x00008000
    FULLMUTEX = 0x00010000
    SHAREDCACHE = 0x00020000
    PRIVATECACHE = 0x00040000

    @classmethod
    def parse(cls, value: 'OpenFlags | int | str | list[str]') -> 'OpenFlags':
        """Accept flags as an int, a ``'readwrite|create'`` string or a list of names.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            return cls(value)
        if isinstance(value, str):
            value = [v for v in value.replace(',', '|').split('|') if v.strip()]
        try:
            return reduce(lambda a, b: a | b,
                          (cls[name.strip().upper()] for name in value), cls(0))
        except KeyError as e:
            raise ValueError(f'Unknown open flag: {e.args[0]}') from None

    def validate(self) -> None:
        """Reject combinations the engine refuses to open with.
        """
        if self & OpenFlags.READONLY:
            if self & (OpenFlags.READWRITE | OpenFlags.CREATE):
                raise ValueError('READONLY cannot be combined with READWRITE or CREATE')
        elif not self & OpenFlags.READWRITE:
            raise ValueError('flags need one of READONLY or READWRITE')
        if self & OpenFlags.NOMUTEX and self & OpenFlags.FULLMUTEX:
            raise ValueError('NOMUTEX and FULLMUTEX are exclusive')
        if self & OpenFlags.SHAREDCACHE and self & OpenFlags.PRIVATECACHE:
            raise ValueError('SHAREDCACHE and PRIVATECACHE are exclusive')


DEFAULT_FLAGS = OpenFlags.READWRITE | OpenFlags.CREATE


def iterdict_data_loader(data, columns, **kwargs) -> list[dict]:
    """Minimal data loader.

    Accepts additional keyword arguments for compatibility with other data
    loaders, but doesn't use them.
    """
    if not data:
        return []
    return list(data)


def _empty_dataframe(columns) -> pd.DataFrame:
    """Create empty DataFrame with column metadata."""
    df = pd.DataFrame(columns=list(columns))
    df.attrs['column_types'] = {}
    return df


def _column_types(data, columns) -> dict[str, str]:
    """Storage class of each column taken from the first row holding a value."""
    types = {}
    for col in columns:
        value = next((row[col] for row in data if row[col] is not None), None)
        types[col] = ColumnType.of(value).name
    return types


def pandas_numpy_data_loader(data, columns, **kwargs) -> pd.DataFrame:
    """Standard pandas DataFrame loader using NumPy.

    Always returns a DataFrame, never None, with columns preserved for empty
    results. Storage classes land in the DataFrame.attrs attribute.
    """
    if not data:
        return _empty_dataframe(columns)

    df = pd.DataFrame.from_records(list(data), columns=list(columns))
    df.attrs['column_types'] = _column_types(data, columns)
    return df


def pandas_pyarrow_data_loader(data, columns, **kwargs) -> pd.DataFrame:
    """PyArrow-based pandas DataFrame loader.

    Always returns a DataFrame, never None, with columns preserved for empty results.
    """
    if not data:
        return _empty_dataframe(columns)

    column_names = list(columns)
    columns_data = [[row[col] for row in data] for col in column_names]
    df = pa.table(columns_data, names=column_names).to_pandas(types_mapper=pd.ArrowDtype)
    df.attrs['column_types'] = _column_types(data, columns)
    return df


@dataclass
class ConnectionOptions(ConfigOptions):
    """Options

    database: file path, ``':memory:'``, or a ``file:`` URI when flags has URI
    flags: OpenFlags (or their names) composed with ``|``
    timeout: seconds to wait on a locked database before step fails
    cached_statements: size of the driver's compiled statement cache
    data_loader: builds bulk results from a list of row dicts
    log_sql: log every statement and its arguments at debug level
    """
    database: str = None
    flags: OpenFlags | int | str = DEFAULT_FLAGS
    timeout: float = 5.0
    cached_statements: int = 128
    data_loader: Callable[..., Any] | None = None
    log_sql: bool = True

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Normalize and check the fields.

        Called again before opening, since keyword overrides are assigned
        onto an existing options object.
        """
        if self.database is None:
            raise ValueError('database is required')
        if isinstance(self.database, pathlib.PurePath):
            self.database = str(self.database)
        self.flags = OpenFlags.parse(self.flags)
        self.flags.validate()
        if self.timeout < 0:
            raise ValueError('timeout must not be negative')
        if self.cached_statements < 0:
            raise ValueError('cached_statements must not be negative')
        if self.data_loader is None:
            self.data_loader = pandas_numpy_data_loader

    @classmethod
    def from_url(cls, url: str | sa.URL, **kw: Any) -> 'ConnectionOptions':
        """Build options from an ``sqlite:///path`` URL.

        URL query parameters ``mode`` and ``cache`` map onto open flags.
        """
        url = sa.make_url(url)
        if url.get_backend_name() != 'sqlite':
            raise ValueError(f'Unsupported database URL: {url.drivername}')
        flags = OpenFlags.parse(kw.pop('flags', DEFAULT_FLAGS))
        mode = url.query.get('mode')
        if mode == 'ro':
            flags = (flags & ~(OpenFlags.READWRITE | OpenFlags.CREATE)) | OpenFlags.READONLY
        elif mode == 'rw':
            flags = (flags & ~(OpenFlags.READONLY | OpenFlags.CREATE)) | OpenFlags.READWRITE
        cache = url.query.get('cache')
        if cache == 'shared':
            flags = (flags & ~OpenFlags.PRIVATECACHE) | OpenFlags.SHAREDCACHE
        elif cache == 'private':
            flags = (flags & ~OpenFlags.SHAREDCACHE) | OpenFlags.PRIVATECACHE
        if 'timeout' in url.query:
            kw.setdefault('timeout', float(url.query['timeout']))
        return cls(database=url.database or ':memory:', flags=flags, **kw)


def path_options(func):
    """Accept a database path or an ``sqlite:`` URL as the options argument.

    Runs ahead of ``libb.load_options``, which reads a string as the name of
    a config setting. A string is taken as a setting name only when a config
    object is passed too. Option fields in the keywords apply to the built
    options.
    """
    @wraps(func)
    def wrapper(options=None, config=None, **kw):
        if isinstance(options, pathlib.PurePath) or (isinstance(options, str) and config is None):
            overrides = {f.name: kw.pop(f.name) for f in fields(ConnectionOptions)
                         if f.name in kw}
            if str(options).startswith('sqlite:'):
                options = ConnectionOptions.from_url(str(options), **overrides)
            else:
                options = ConnectionOptions(database=options, **overrides)
        return func(options, config, **kw)
    return wrapper
