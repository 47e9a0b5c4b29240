"""
Typed SQLite access layer.

Owned connection and statement handles, column decoding chosen at the call
site by a request tag, and nestable savepoint scopes:

    import typed_sqlite as db
    from typed_sqlite import Int32, Int64

    cn = db.connect(':memory:')
    db.run(cn, 'create table foo (id integer, name text)')
    db.atomic(cn, lambda: db.run(cn, 'insert into foo values (?, ?)', 1, 'a'))
    with cn.execute('select id, name from foo') as stmt:
        while stmt.step():
            pk, name = stmt.get_all(Int32 | None, str)

Query operations can be called either as module functions taking the
connection first, or as Connection methods.
"""
__version__ = '0.1.0'

from collections.abc import Callable
from typing import Any

from typed_sqlite.connection import Connection, connect
from typed_sqlite.exceptions import CompileError, DatabaseError, ExecutionError
from typed_sqlite.exceptions import MarshallingError, MisuseError, OpenError
from typed_sqlite.exceptions import RollbackError
from typed_sqlite.loaders import Loader, register_loader, resolve_loader
from typed_sqlite.options import ConnectionOptions, OpenFlags
from typed_sqlite.options import iterdict_data_loader, pandas_numpy_data_loader
from typed_sqlite.options import pandas_pyarrow_data_loader
from typed_sqlite.statement import Statement
from typed_sqlite.transaction import Savepoint, ScopeOutcome
from typed_sqlite.types import Blob, BlobView, BytesView, ColumnType, Int32
from typed_sqlite.types import Int64, RawText, TextView, TypeConverter


def prepare(cn: Connection, sql: str) -> Statement:
    """Compile ``sql`` on ``cn``.
    """
    return cn.prepare(sql)


def execute(cn: Connection, sql: str, *args: Any) -> Statement:
    """Prepare ``sql`` and bind ``args``; the statement is returned unstepped.
    """
    return cn.execute(sql, *args)


def run(cn: Connection, sql: str, *args: Any) -> int:
    """Execute ``sql`` to completion and return the number of changed rows.
    """
    return cn.run(sql, *args)


def select(cn: Connection, sql: str, *args: Any, **kwargs: Any) -> Any:
    """Execute a query and return its rows through the data loader.
    """
    return cn.select(sql, *args, **kwargs)


def select_row(cn: Connection, sql: str, *args: Any, types: tuple = ()) -> tuple | None:
    """Execute a query and decode its first row, or None if no rows found.
    """
    return cn.select_row(sql, *args, types=types)


def select_scalar(cn: Connection, sql: str, *args: Any, as_type: Any = Int64) -> Any:
    """Execute a query and decode a single scalar value, or None if no rows found.
    """
    return cn.select_scalar(sql, *args, as_type=as_type)


def atomic(cn: Connection, unit_of_work: Callable[[], Any]) -> None:
    """Run ``unit_of_work`` in a savepoint scope on ``cn``.
    """
    cn.atomic(unit_of_work)


__all__ = [
    'connect',
    'Connection',
    'Statement',
    'Savepoint',
    'ScopeOutcome',
    'ConnectionOptions',
    'OpenFlags',
    'prepare',
    'execute',
    'run',
    'select',
    'select_row',
    'select_scalar',
    'atomic',
    'Int32',
    'Int64',
    'TextView',
    'RawText',
    'BytesView',
    'Blob',
    'BlobView',
    'ColumnType',
    'TypeConverter',
    'Loader',
    'register_loader',
    'resolve_loader',
    'iterdict_data_loader',
    'pandas_numpy_data_loader',
    'pandas_pyarrow_data_loader',
    'DatabaseError',
    'OpenError',
    'CompileError',
    'ExecutionError',
    'MarshallingError',
    'MisuseError',
    'RollbackError',
]
