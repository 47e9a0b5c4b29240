"""
Type handling for column decoding and parameter binding.

This module provides:
- Request tags passed at the call site to pick a column loader
  (Int32, Int64, TextView, BytesView, Blob[...], BlobView[...])
- ColumnType: the engine's storage class of a column value
- Borrowed views tied to a statement's current row
- TypeConverter: Python values -> values the engine can bind
"""
import datetime
import enum
import functools
import logging
import math
import typing
from dataclasses import dataclass
from typing import Any, NewType

import numpy as np
from typed_sqlite.exceptions import MarshallingError, MisuseError

logger = logging.getLogger(__name__)

__all__ = [
    'Int32',
    'Int64',
    'RawText',
    'ColumnType',
    'BlobSpec',
    'Blob',
    'BorrowedView',
    'TextView',
    'BlobView',
    'BytesView',
    'TypeConverter',
    'INT64_MIN',
    'INT64_MAX',
]

INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1

Int32 = NewType('Int32', int)
Int64 = NewType('Int64', int)


class RawText(bytes):
    """Undecoded bytes of a TEXT column, as the engine stored them.

    Fetched rows keep text in this form so that stepping never decodes;
    loaders decode on request.
    """

    __slots__ = ()


class ColumnType(enum.IntEnum):
    """Storage class of a column value, numbered as the engine numbers them.
    """
    INTEGER = 1
    FLOAT = 2
    TEXT = 3
    BLOB = 4
    NULL = 5

    @classmethod
    def of(cls, value: Any) -> 'ColumnType':
        """Storage class of a value fetched by the sqlite3 driver."""
        if value is None:
            return cls.NULL
        if isinstance(value, int):
            return cls.INTEGER
        if isinstance(value, float):
            return cls.FLOAT
        if isinstance(value, RawText | str):
            return cls.TEXT
        return cls.BLOB


@dataclass(frozen=True)
class BlobSpec:
    """Request for a blob decoded as a sequence of fixed-size elements.
    """
    dtype: np.dtype
    borrowed: bool = False

    def __post_init__(self):
        dtype = np.dtype(self.dtype)
        if dtype.itemsize == 0:
            raise ValueError(f'blob element type {dtype} has no size')
        if dtype.hasobject:
            raise ValueError(f'blob element type {dtype} holds object references')
        object.__setattr__(self, 'dtype', dtype)

    @property
    def itemsize(self) -> int:
        return self.dtype.itemsize

    def __or__(self, other: Any) -> Any:
        return typing.Union[self, other]

    def __ror__(self, other: Any) -> Any:
        return typing.Union[other, self]


class Blob:
    """Request tag for an owned numpy array copied out of a blob column.

    ``Blob[np.int32]`` decodes four-byte elements; bare ``Blob`` means bytes.
    """

    def __new__(cls, *args, **kwargs):
        raise TypeError('Blob is a request tag, use Blob[dtype]')

    def __class_getitem__(cls, element: Any) -> BlobSpec:
        return BlobSpec(np.dtype(element), borrowed=False)


class BorrowedView:
    """Back-reference into the current row of a statement.

    A view records the statement's row generation when it is taken. Any later
    step, reset or finalize of that statement bumps the generation, after
    which every access through the view raises MisuseError.
    """

    __slots__ = ('_statement', '_generation', '_index')

    def __init__(self, statement: Any, index: int) -> None:
        self._statement = statement
        self._generation = statement.generation
        self._index = index

    @property
    def valid(self) -> bool:
        """True while the owning statement is still on the same row."""
        return self._statement.generation == self._generation

    def _check(self) -> None:
        if not self.valid:
            raise MisuseError(
                f'{type(self).__name__} of column {self._index} used after the '
                'statement moved off its row')


class TextView(BorrowedView):
    """Borrowed text of one column of the current row.
    """

    __slots__ = ('_text',)

    def __init__(self, statement: Any, index: int, text: str) -> None:
        super().__init__(statement, index)
        self._text = text

    @property
    def value(self) -> str:
        self._check()
        return self._text

    @property
    def nbytes(self) -> int:
        """Length in UTF-8 bytes, as the engine reports it."""
        return len(self.value.encode('utf-8'))

    def __str__(self) -> str:
        return self.value

    def __len__(self) -> int:
        return len(self.value)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, TextView):
            return self.value == other.value
        if isinstance(other, str):
            return self.value == other
        return NotImplemented

    __hash__ = None

    def __repr__(self) -> str:
        if not self.valid:
            return '<TextView invalidated>'
        return f'<TextView {self._text!r}>'


class BlobView(BorrowedView):
    """Borrowed, read-only array over a blob column of the current row.

    ``BlobView[np.float64]`` requests one; bare ``BlobView`` means bytes.
    """

    __slots__ = ('_array',)

    def __init__(self, statement: Any, index: int, raw: bytes,
                 dtype: np.dtype) -> None:
        super().__init__(statement, index)
        self._array = np.frombuffer(raw, dtype=dtype)

    def __class_getitem__(cls, element: Any) -> BlobSpec:
        return BlobSpec(np.dtype(element), borrowed=True)

    @property
    def array(self) -> np.ndarray:
        self._check()
        return self._array

    @property
    def dtype(self) -> np.dtype:
        return self._array.dtype

    @property
    def nbytes(self) -> int:
        return self.array.nbytes

    def __len__(self) -> int:
        return len(self.array)

    def __getitem__(self, key: Any) -> Any:
        return self.array[key]

    def __iter__(self):
        return iter(self.array)

    def copy(self) -> np.ndarray:
        """Owned copy that stays valid after the statement moves on."""
        return self.array.copy()

    def __repr__(self) -> str:
        if not self.valid:
            return f'<{type(self).__name__} invalidated>'
        return f'<{type(self).__name__} {self._array.dtype} x {len(self._array)}>'


class BytesView(BlobView):
    """Borrowed raw byte span of a blob column of the current row.
    """

    __slots__ = ()

    def __init__(self, statement: Any, index: int, raw: bytes) -> None:
        super().__init__(statement, index, raw, np.dtype(np.uint8))

    def tobytes(self) -> bytes:
        return self.array.tobytes()

    def __eq__(self, other: object) -> bool:
        if isinstance(other, bytes | bytearray | memoryview):
            return self.tobytes() == bytes(other)
        if isinstance(other, BytesView):
            return self.tobytes() == other.tobytes()
        return NotImplemented

    __hash__ = None


# Type Converter - Python -> bindable value conversion

def _check_int64(value: int) -> int:
    if not INT64_MIN <= value <= INT64_MAX:
        raise MarshallingError(f'integer {value} does not fit in 64 bits',
                               operation='bind')
    return value


@functools.singledispatch
def _convert_value(value: Any) -> Any:
    raise MarshallingError(f'cannot bind value of type {type(value).__name__}',
                           operation='bind')


@_convert_value.register(type(None))
def _(value: None) -> None:
    return None


@_convert_value.register
def _(value: bool) -> int:
    return int(value)


@_convert_value.register
def _(value: int) -> int:
    return _check_int64(int(value))


@_convert_value.register
def _(value: float) -> float | None:
    # the engine stores NaN as NULL
    if math.isnan(value):
        return None
    return float(value)


@_convert_value.register
def _(value: str) -> str:
    return str(value)


@_convert_value.register(bytes)
@_convert_value.register(bytearray)
@_convert_value.register(memoryview)
def _(value: bytes | bytearray | memoryview) -> bytes:
    return bytes(value)


@_convert_value.register
def _(value: np.bool_) -> int:
    return int(value)


@_convert_value.register
def _(value: np.integer) -> int:
    return _check_int64(int(value))


@_convert_value.register
def _(value: np.floating) -> float | None:
    return _convert_value(float(value))


@_convert_value.register
def _(value: datetime.datetime) -> str:
    return value.isoformat(sep=' ')


@_convert_value.register
def _(value: datetime.date) -> str:
    return value.isoformat()


class TypeConverter:
    """Conversion of Python values to values the engine binds.

    Integers are range checked to 64 bits, text and blobs are copied at bind
    time, NumPy scalars become Python scalars and dates become ISO-8601 text.
    """

    @staticmethod
    def convert_value(value: Any) -> Any:
        """Convert a single value to a bindable form."""
        return _convert_value(value)

    @staticmethod
    def convert_params(params: Any) -> tuple:
        """Convert an ordered collection of parameters."""
        return tuple(_convert_value(v) for v in params)

    @staticmethod
    def register(cls: type, func: Any = None) -> Any:
        """Register a conversion for another Python type.
        """
        return _convert_value.register(cls, func)
