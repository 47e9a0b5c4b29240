"""
Prepared statements.

A Statement owns one compiled statement handle. It binds parameters by
zero-based index, advances the engine's cursor with step(), and decodes
columns of the current row through the Column Loader Registry:

    with cn.prepare('select id, name from person where age > ?') as stmt:
        stmt.bind(0, 30)
        while stmt.step():
            pk, name = stmt.get_all(Int64, str)

State machine: prepared -> step -> has row | exhausted; any state -> reset
-> prepared. finalize() is valid from any state and idempotent.
"""
import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any, Self

from typed_sqlite import engine
from typed_sqlite.exceptions import MarshallingError, MisuseError
from typed_sqlite.handle import UniqueHandle
from typed_sqlite.loaders import resolve_loader, to_text
from typed_sqlite.options import pandas_numpy_data_loader
from typed_sqlite.types import ColumnType, RawText, TypeConverter
from typed_sqlite.utils import dumpsql

if TYPE_CHECKING:
    from typed_sqlite.connection import Connection

logger = logging.getLogger(__name__)

__all__ = ['Statement']


class Statement:
    """Exclusive owner of one compiled statement.

    An empty Statement (never prepared, moved-from or finalized) only
    supports move(), finalize() and the ``empty`` check; everything else
    raises MisuseError.

    ``generation`` changes on every step, reset, move and finalize. Borrowed
    views (TextView, BytesView, BlobView) remember it and stop working once
    it moves on.
    """

    def __init__(self, native: engine.NativeStatement | None = None,
                 connection: 'Connection | None' = None) -> None:
        self._handle = UniqueHandle(native, engine.finalize)
        self.connection = connection
        self.generation = 0

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.finalize()

    def __copy__(self) -> Self:
        raise TypeError('statements cannot be copied, use move()')

    def __deepcopy__(self, memo: dict[int, Any]) -> Self:
        raise TypeError('statements cannot be copied, use move()')

    def __reduce__(self) -> Any:
        raise TypeError('statements cannot be pickled')

    def __repr__(self) -> str:
        if self.empty:
            return '<Statement empty>'
        return f'<Statement {self.sql!r}>'

    @property
    def empty(self) -> bool:
        return not self._handle

    @property
    def native(self) -> engine.NativeStatement:
        """The engine statement; MisuseError when empty."""
        native = self._handle.get()
        if native is None:
            raise MisuseError('statement is empty')
        return native

    @property
    def sql(self) -> str:
        return self.native.sql

    @property
    def logs_sql(self) -> bool:
        options = getattr(self.connection, 'options', None)
        return options is None or options.log_sql

    @property
    def bound_args(self) -> tuple:
        """Bound values in position order, unbound gaps as None."""
        params = self.native.params
        return tuple(params.get(i) for i in range(1, max(params, default=0) + 1))

    def move(self) -> 'Statement':
        """Transfer the handle to a new Statement and leave this one empty.
        """
        moved = Statement(connection=self.connection)
        moved._handle = self._handle.move()
        self.generation += 1
        return moved

    def finalize(self) -> None:
        """Release the handle. No-op when already empty, never raises.
        """
        self.generation += 1
        self._handle.close()

    close = finalize

    def reset(self) -> None:
        """Rewind to before the first row and clear all bindings.
        """
        self.generation += 1
        engine.reset(self.native)

    def bind(self, index: int, value: Any) -> None:
        """Bind ``value`` to the zero-based parameter ``index``.

        Accepts None, int, float, str, bytes-like values (plus bool, numpy
        scalars and dates). Text and blobs are copied. Rebinding an index
        overwrites it.
        """
        native = self.native
        if native.started:
            raise MisuseError('cannot bind a running statement, reset() it first',
                              operation='bind', sql=native.sql)
        if index < 0:
            raise MisuseError(f'parameter index {index} out of range',
                              operation='bind', sql=native.sql)
        try:
            converted = TypeConverter.convert_value(value)
        except MarshallingError as e:
            e.sql = native.sql
            raise
        engine.bind(native, index + 1, converted)

    def bind_multiple(self, *values: Any) -> None:
        """Bind ``values`` to indexes 0..n-1 in order.

        A failure leaves the earlier bindings in place; reset() before reuse.
        """
        for index, value in enumerate(values):
            self.bind(index, value)

    @dumpsql
    def step(self) -> bool:
        """Advance to the next row.

        Returns True when a row is available and False once the statement is
        exhausted, repeatedly, until reset(). Engine failures raise
        ExecutionError.
        """
        native = self.native
        self.generation += 1
        return engine.step(native)

    @property
    def column_count(self) -> int:
        """Number of result columns, known once the statement has been stepped."""
        return engine.column_count(self.native)

    @property
    def column_names(self) -> list[str]:
        return engine.column_names(self.native)

    @property
    def rowcount(self) -> int:
        """Rows changed by a finished INSERT, UPDATE or DELETE, else -1."""
        return self.native.cursor.rowcount

    def column_value(self, index: int) -> Any:
        """Raw value of column ``index`` of the current row; text comes back as RawText."""
        return engine.column_value(self.native, index)

    def column_type(self, index: int) -> ColumnType:
        """Storage class of column ``index`` of the current row."""
        return engine.column_type(self.native, index)

    def get(self, index: int, tag: Any) -> Any:
        """Decode column ``index`` of the current row as ``tag``.
        """
        loader = resolve_loader(tag)
        try:
            return loader.load(self, index)
        except MarshallingError as e:
            e.sql = e.sql or self.native.sql
            raise

    def get_all(self, *tags: Any) -> tuple:
        """Decode columns 0..n-1 of the current row, column i as the i-th tag.

        Every tag is resolved before any column is read.
        """
        loaders = [resolve_loader(tag) for tag in tags]
        try:
            return tuple(loader.load(self, index) for index, loader in enumerate(loaders))
        except MarshallingError as e:
            e.sql = e.sql or self.native.sql
            raise

    def rows(self, *tags: Any) -> Iterator[tuple]:
        """Step through the remaining rows, decoding each with get_all(*tags).
        """
        while self.step():
            yield self.get_all(*tags)

    def fetch(self, data_loader: Any = None, **kwargs: Any) -> Any:
        """Step through the remaining rows and hand them to a data loader.

        Rows are passed as dicts of column values keyed by column name, with
        text decoded. The connection's configured loader is used when none is
        given.
        """
        native = self.native
        data = []
        while self.step():
            try:
                row = [to_text(v) if isinstance(v, RawText) else v for v in native.row]
            except MarshallingError as e:
                e.sql = native.sql
                raise
            data.append(dict(zip(engine.column_names(native), row)))
        columns = engine.column_names(native)

        if data_loader is None:
            options = getattr(self.connection, 'options', None)
            data_loader = options.data_loader if options else pandas_numpy_data_loader
        logger.debug(f'Fetched {len(data)} rows')
        return data_loader(data, columns, **kwargs)
