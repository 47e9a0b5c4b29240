"""
Database connection handling.

This module provides:
1. The `connect()` function for opening a database
2. The `Connection` class that owns the native handle and offers
   prepare / execute / atomic plus a few typed query helpers

    cn = connect('app.db')
    cn.run('create table foo (id integer primary key, name text)')
    cn.atomic(lambda: cn.run('insert into foo (name) values (?)', 'x'))
    with cn.execute('select id, name from foo') as stmt:
        for pk, name in stmt.rows(Int64, str):
            ...
"""
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import fields
from typing import Any, Self

from typed_sqlite import engine
from typed_sqlite.exceptions import MisuseError
from typed_sqlite.handle import UniqueHandle
from typed_sqlite.options import DEFAULT_FLAGS, ConnectionOptions, OpenFlags
from typed_sqlite.options import path_options
from typed_sqlite.statement import Statement
from typed_sqlite.transaction import Savepoint, atomic
from typed_sqlite.types import Int64

from libb import load_options

__all__ = [
    'Connection',
    'connect',
]

logger = logging.getLogger(__name__)


class Connection:
    """Exclusive owner of one open database handle.

    Tracks query counts and execution time, and the scope counter used to
    name savepoints. The handle moves with move() and is never copied.
    Statements borrow the connection's handle: finalize them before closing
    the connection.
    """

    def __init__(self, handle: sqlite3.Connection | None = None,
                 options: ConnectionOptions | None = None) -> None:
        self._handle = UniqueHandle(handle, engine.close_connection)
        self.options = options
        self.scope_counter = 0
        self.depth = 0
        self.calls = 0
        self.time = 0

    @classmethod
    def open(cls, name: str, flags: OpenFlags | int | str = DEFAULT_FLAGS,
             **kw: Any) -> Self:
        """Open or create ``name`` under ``flags``.

        Raises OpenError when the engine cannot satisfy the request.
        """
        return cls._from_options(ConnectionOptions(database=name, flags=flags, **kw))

    @classmethod
    def _from_options(cls, options: ConnectionOptions) -> Self:
        options.validate()
        handle = engine.open_connection(options.database, options.flags,
                                        timeout=options.timeout,
                                        cached_statements=options.cached_statements)
        return cls(handle, options)

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.close()

    def __copy__(self) -> Self:
        raise TypeError('connections cannot be copied, use move()')

    def __deepcopy__(self, memo: dict[int, Any]) -> Self:
        raise TypeError('connections cannot be copied, use move()')

    def __reduce__(self) -> Any:
        raise TypeError('connections cannot be pickled')

    def __repr__(self) -> str:
        if self.closed:
            return '<Connection closed>'
        database = self.options.database if self.options else '?'
        return f'<Connection {database!r}>'

    @property
    def closed(self) -> bool:
        return not self._handle

    @property
    def handle(self) -> sqlite3.Connection:
        """The raw sqlite3 handle, borrowed; MisuseError when closed."""
        handle = self._handle.get()
        if handle is None:
            raise MisuseError('connection is closed')
        return handle

    @property
    def in_transaction(self) -> bool:
        return self.depth > 0

    def addcall(self, elapsed: float) -> None:
        """Track execution statistics
        """
        self.time += elapsed
        self.calls += 1

    def next_scope_id(self) -> int:
        """Read and post-increment the scope counter."""
        scope_id = self.scope_counter
        self.scope_counter += 1
        return scope_id

    def move(self) -> 'Connection':
        """Transfer the handle and scope counter to a new Connection.

        This connection is left closed with its counter at zero.
        """
        moved = Connection(options=self.options)
        moved._handle = self._handle.move()
        moved.scope_counter, self.scope_counter = self.scope_counter, 0
        moved.depth, self.depth = self.depth, 0
        return moved

    def close(self) -> None:
        """Close the handle. No-op when already closed, never raises.
        """
        if self.closed:
            return
        self._handle.close()
        logger.debug(f'Connection closed: {self.calls} steps in {self.time:.2f}s '
                     f'(avg: {self.time/max(1, self.calls):.3f}s per step)')

    def prepare(self, sql: str) -> Statement:
        """Compile ``sql``; CompileError on malformed SQL or schema mismatch.
        """
        return Statement(engine.prepare(self.handle, sql), self)

    def execute(self, sql: str, *args: Any) -> Statement:
        """Prepare ``sql`` and bind ``args`` positionally.

        Returns the bound statement without stepping it.
        """
        stmt = self.prepare(sql)
        try:
            stmt.reset()
            stmt.bind_multiple(*args)
        except Exception:
            stmt.finalize()
            raise
        return stmt

    def run(self, sql: str, *args: Any) -> int:
        """Execute ``sql`` to completion and return the number of changed rows.
        """
        with self.execute(sql, *args) as stmt:
            while stmt.step():
                pass
            return stmt.rowcount

    def select(self, sql: str, *args: Any, data_loader: Callable[..., Any] | None = None,
               **kwargs: Any) -> Any:
        """Execute a query and return every row through the data loader.
        """
        with self.execute(sql, *args) as stmt:
            return stmt.fetch(data_loader, **kwargs)

    def select_row(self, sql: str, *args: Any, types: tuple = ()) -> tuple | None:
        """First row decoded with get_all(*types), or None when there is none.
        """
        with self.execute(sql, *args) as stmt:
            if not stmt.step():
                return None
            return stmt.get_all(*types)

    def select_scalar(self, sql: str, *args: Any, as_type: Any = Int64) -> Any:
        """First column of the first row decoded as ``as_type``, or None.
        """
        row = self.select_row(sql, *args, types=(as_type,))
        return None if row is None else row[0]

    def atomic(self, unit_of_work: Callable[[], Any]) -> None:
        """Run ``unit_of_work`` in a new savepoint scope.

        Commits when it returns; rolls back and re-raises when it raises.
        """
        atomic(self, unit_of_work)

    def savepoint(self) -> Savepoint:
        """Context manager form of atomic()."""
        return Savepoint(self)


@path_options
@load_options(cls=ConnectionOptions)
def connect(options: ConnectionOptions | dict[str, Any] | str | None = None,
            config: Any | None = None, **kw: Any) -> Connection:
    """Open a database connection

    Args:
        options: Can be:
                - ConnectionOptions object
                - Dictionary of options
                - ``sqlite:///path`` URL
                - Database path (or ``':memory:'``)
                - Name of a setting in ``config``
                - Options specified as keyword arguments
        config: Configuration object (for loading from config files)
        **kw: Additional keyword arguments to override options

    Returns
        Connection owning the new handle
    """
    if isinstance(options, ConnectionOptions):
        for field in fields(options):
            kw.pop(field.name, None)
    else:
        options_func = load_options(cls=ConnectionOptions)(lambda o, c: o)
        options = options_func(options, config, **kw)

    return Connection._from_options(options)
