"""
Engine primitives over the sqlite3 driver.

This is the only module that talks to sqlite3 directly. It exposes the
primitive operations the rest of the package is built on:

- open_connection / close_connection
- prepare / finalize / reset
- bind (1-based positions) / step
- column_value / column_type (0-based indexes)

Driver exceptions are translated here into typed_sqlite exceptions.
"""
import logging
import re
import sqlite3
import urllib.parse
from dataclasses import dataclass, field
from typing import Any

from typed_sqlite.exceptions import CompileError, ExecutionError, MisuseError
from typed_sqlite.exceptions import OpenError, from_driver_error
from typed_sqlite.options import OpenFlags
from typed_sqlite.types import ColumnType, RawText

logger = logging.getLogger(__name__)

__all__ = [
    'NativeStatement',
    'open_connection',
    'close_connection',
    'prepare',
    'finalize',
    'reset',
    'bind',
    'step',
    'column_count',
    'column_names',
    'column_value',
    'column_type',
]

_EXPLAIN_RE = re.compile(r'^\s*explain\b', re.IGNORECASE)
_PARAM_COUNT_RE = re.compile(r'statement uses (\d+)')
_MEMORY_NAMES = {'', ':memory:'}


@dataclass(eq=False)
class NativeStatement:
    """Compiled statement state kept for one sqlite3 cursor.

    The driver compiles and caches statements itself; this records what the
    engine would keep per statement handle: the bindings and the cursor
    position.
    """
    cursor: sqlite3.Cursor
    sql: str
    params: dict[int, Any] = field(default_factory=dict)
    started: bool = False
    done: bool = False
    row: tuple | None = None
    param_count: int = 0


def _build_uri(path: str, flags: OpenFlags) -> str:
    """File URI carrying the access and cache mode of ``flags``.
    """
    if flags & OpenFlags.URI and path.startswith('file:'):
        uri = path
    else:
        uri = 'file:' + urllib.parse.quote(path, safe='/:\\')

    base, _, query = uri.partition('?')
    params = dict(urllib.parse.parse_qsl(query, keep_blank_values=True))
    if flags & OpenFlags.READONLY:
        params.setdefault('mode', 'ro')
    elif flags & OpenFlags.CREATE:
        params.setdefault('mode', 'rwc')
    else:
        params.setdefault('mode', 'rw')
    if flags & OpenFlags.SHAREDCACHE:
        params.setdefault('cache', 'shared')
    elif flags & OpenFlags.PRIVATECACHE:
        params.setdefault('cache', 'private')
    return f'{base}?{urllib.parse.urlencode(params)}'


def open_connection(path: str, flags: OpenFlags, timeout: float = 5.0,
                    cached_statements: int = 128) -> sqlite3.Connection:
    """Open a database handle.

    The handle runs with the driver's implicit transactions disabled; every
    transaction boundary is an explicit statement. FULLMUTEX lets the handle
    cross threads (the engine serializes access), otherwise it is pinned to
    the opening thread.
    """
    flags = OpenFlags(flags)
    flags.validate()
    kwargs: dict[str, Any] = {
        'timeout': timeout,
        'isolation_level': None,
        'check_same_thread': not flags & OpenFlags.FULLMUTEX,
        'cached_statements': cached_statements,
    }
    if path in _MEMORY_NAMES and not flags & OpenFlags.SHAREDCACHE:
        if flags & OpenFlags.READONLY:
            raise OpenError(f'a private in-memory database cannot be opened read-only ({flags!r})')
        target, kwargs['uri'] = path, False
    else:
        target, kwargs['uri'] = _build_uri(path, flags), True

    try:
        handle = sqlite3.connect(target, **kwargs)
    except sqlite3.Error as e:
        err = from_driver_error(OpenError, e)
        err.args = (f'could not open {path!r} ({flags!r}): {e}',)
        raise err from e
    handle.text_factory = RawText
    logger.debug(f'Opened {path!r} with {flags!r}')
    return handle


def close_connection(handle: sqlite3.Connection | None) -> None:
    """Release a database handle. Never raises; a null handle is a no-op.
    """
    if handle is None:
        return
    try:
        handle.close()
    except Exception as e:
        logger.debug(f'Error closing connection: {e}')


def _is_binding_error(err: sqlite3.Error) -> bool:
    return isinstance(err, sqlite3.ProgrammingError) and 'binding' in str(err).lower()


def prepare(handle: sqlite3.Connection, sql: str) -> NativeStatement:
    """Compile ``sql`` against ``handle``.

    The statement is compiled under EXPLAIN on a scratch cursor so nothing
    runs. A binding count complaint from the driver means compilation itself
    succeeded, and it carries the statement's parameter count. Column
    metadata is only known once the statement has been stepped.
    """
    try:
        cursor = handle.cursor()
    except sqlite3.ProgrammingError as e:
        raise from_driver_error(MisuseError, e, sql) from e

    param_count = 0
    if sql.strip() and not _EXPLAIN_RE.match(sql):
        scratch = handle.cursor()
        try:
            scratch.execute(f'EXPLAIN {sql}')
        except sqlite3.Error as e:
            if not _is_binding_error(e):
                cursor.close()
                raise from_driver_error(CompileError, e, sql) from e
            match = _PARAM_COUNT_RE.search(str(e))
            param_count = int(match.group(1)) if match else 0
        finally:
            scratch.close()
    return NativeStatement(cursor=cursor, sql=sql, param_count=param_count)


def finalize(stmt: NativeStatement | None) -> None:
    """Release a statement. Never raises; a null statement is a no-op.
    """
    if stmt is None:
        return
    stmt.row = None
    try:
        stmt.cursor.close()
    except Exception as e:
        logger.debug(f'Error finalizing statement: {e}')


def reset(stmt: NativeStatement) -> None:
    """Rewind to before the first row and drop the bindings.
    """
    stmt.params.clear()
    stmt.started = False
    stmt.done = False
    stmt.row = None


def bind(stmt: NativeStatement, position: int, value: Any) -> None:
    """Attach an already converted value at a 1-based position.
    """
    if position < 1:
        raise MisuseError(f'parameter position {position} out of range',
                          operation='bind', sql=stmt.sql)
    stmt.params[position] = value


def _positional(params: dict[int, Any], param_count: int) -> tuple:
    """Bindings as a tuple covering every parameter; unbound ones read as NULL."""
    count = max(param_count, max(params, default=0))
    return tuple(params.get(i) for i in range(1, count + 1))


def step(stmt: NativeStatement) -> bool:
    """Advance to the next row.

    True when a row is available, False when the statement is done (and on
    every later call until reset). Any other outcome raises ExecutionError.
    """
    if stmt.done:
        return False
    if not stmt.started:
        stmt.started = True
        try:
            stmt.cursor.execute(stmt.sql, _positional(stmt.params, stmt.param_count))
        except sqlite3.Error as e:
            # a failed statement starts over on the next step
            stmt.started = False
            if _is_binding_error(e):
                raise from_driver_error(MisuseError, e, stmt.sql) from e
            if isinstance(e, sqlite3.ProgrammingError) and 'closed' in str(e).lower():
                raise from_driver_error(MisuseError, e, stmt.sql) from e
            raise from_driver_error(ExecutionError, e, stmt.sql) from e

    try:
        row = stmt.cursor.fetchone()
    except sqlite3.Error as e:
        raise from_driver_error(ExecutionError, e, stmt.sql) from e
    if row is None:
        stmt.done = True
        stmt.row = None
        return False
    stmt.row = row
    return True


def column_count(stmt: NativeStatement) -> int:
    description = stmt.cursor.description
    return len(description) if description else 0


def column_names(stmt: NativeStatement) -> list[str]:
    description = stmt.cursor.description
    return [d[0] for d in description] if description else []


def column_value(stmt: NativeStatement, index: int) -> Any:
    """Raw value of a column of the current row, as the driver fetched it.
    """
    if stmt.row is None:
        raise MisuseError('no current row, step() must return True first',
                          operation='decode', sql=stmt.sql)
    if not 0 <= index < len(stmt.row):
        raise MisuseError(f'column index {index} out of range for {len(stmt.row)} columns',
                          operation='decode', sql=stmt.sql)
    return stmt.row[index]


def column_type(stmt: NativeStatement, index: int) -> ColumnType:
    return ColumnType.of(column_value(stmt, index))
