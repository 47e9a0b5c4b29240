"""
Column Loader Registry.

A loader decodes one column of a statement's current row into the Python
type the caller asked for. The caller picks the loader by passing a request
tag; the column's own storage class never selects it, so caller and column
must agree. Conversions between storage classes follow the engine's own
coercion rules:

- integer from REAL truncates toward zero and saturates at 64 bits
- integer or real from TEXT parses the longest numeric prefix, else 0
- text from INTEGER or REAL renders the number the way the engine does
- NULL reads as 0, 0.0, '' or b''

Registering a loader:

    @register_loader(Decimal)
    class DecimalLoader(Loader):
        def load(self, statement, index):
            return Decimal(to_text(statement.column_value(index)))
"""
import datetime
import logging
import math
import re
import types
import typing
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import cachetools
import dateutil.parser
import numpy as np
from typed_sqlite.exceptions import MarshallingError
from typed_sqlite.types import INT64_MAX, INT64_MIN, Blob, BlobSpec, BlobView
from typed_sqlite.types import BytesView, ColumnType, Int32, Int64, RawText, TextView

if TYPE_CHECKING:
    from typed_sqlite.statement import Statement

logger = logging.getLogger(__name__)

__all__ = [
    'Loader',
    'register_loader',
    'resolve_loader',
    'to_int64',
    'to_int32',
    'to_double',
    'to_text',
    'to_bytes',
]

_LOADER_REGISTRY: dict[Any, 'Loader'] = {}
_resolve_cache = cachetools.LRUCache(maxsize=256)

_SPACE = '[ \t\n\f\r\v]*'
_INT_PREFIX_RE = re.compile(f'^{_SPACE}([+-]?[0-9]+)')
_REAL_PREFIX_RE = re.compile(
    f'^{_SPACE}([+-]?(?:[0-9]+\\.?[0-9]*|\\.[0-9]+)(?:[eE][+-]?[0-9]+)?)')


# Engine coercion rules

def _saturate(value: int) -> int:
    return max(INT64_MIN, min(INT64_MAX, value))


def _real_to_int(value: float) -> int:
    if math.isnan(value):
        return 0
    if value <= INT64_MIN:
        return INT64_MIN
    if value >= INT64_MAX:
        return INT64_MAX
    return int(value)


def _render_real(value: float) -> str:
    """Text of a REAL value, matching the engine's ``%!.15g`` rendering."""
    if math.isinf(value):
        return 'Inf' if value > 0 else '-Inf'
    text = f'{value:.15g}'
    mantissa, e, exponent = text.partition('e')
    if '.' not in mantissa:
        mantissa += '.0'
    return f'{mantissa}{e}{exponent}'


def to_text(value: Any) -> str:
    """Text of a column value; TEXT that is not valid UTF-8 raises MarshallingError."""
    if value is None:
        return ''
    if isinstance(value, str):
        return value
    if isinstance(value, RawText):
        try:
            return value.decode('utf-8')
        except UnicodeDecodeError as e:
            raise MarshallingError(f'text is not valid UTF-8: {e}') from e
    if isinstance(value, bytes):
        return value.decode('utf-8', errors='replace')
    if isinstance(value, float):
        return _render_real(value)
    return str(value)


def _numeric_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode('utf-8', errors='replace')
    return to_text(value)


def to_bytes(value: Any) -> bytes:
    if value is None:
        return b''
    if isinstance(value, bytes):
        return bytes(value)
    return to_text(value).encode('utf-8')


def to_int64(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return _real_to_int(value)
    match = _INT_PREFIX_RE.match(_numeric_text(value))
    return _saturate(int(match.group(1))) if match else 0


def to_int32(value: Any) -> int:
    """64-bit coercion truncated to 32 bits, two's complement."""
    return ((to_int64(value) + (1 << 31)) & 0xFFFFFFFF) - (1 << 31)


def to_double(value: Any) -> float:
    if value is None:
        return 0.0
    if isinstance(value, int | float):
        return float(value)
    match = _REAL_PREFIX_RE.match(_numeric_text(value))
    return float(match.group(1)) if match else 0.0


# Registry

def register_loader(*tags: Any):
    """Decorator to register a loader class for one or more request tags.

    Usage:
        @register_loader(float)
        class DoubleLoader(Loader):
            ...
    """
    def decorator(cls: type['Loader']) -> type['Loader']:
        loader = cls()
        for tag in tags:
            _LOADER_REGISTRY[tag] = loader
        _resolve_cache.clear()
        return cls
    return decorator


class Loader(ABC):
    """Decodes one column of the current row into one Python type.
    """

    @abstractmethod
    def load(self, statement: 'Statement', index: int) -> Any:
        """Decode column ``index`` of the statement's current row."""

    def __repr__(self) -> str:
        return f'<{type(self).__name__}>'


@register_loader(Int32)
class Int32Loader(Loader):

    def load(self, statement: 'Statement', index: int) -> int:
        return to_int32(statement.column_value(index))


@register_loader(Int64, int)
class Int64Loader(Loader):

    def load(self, statement: 'Statement', index: int) -> int:
        return to_int64(statement.column_value(index))


@register_loader(float)
class DoubleLoader(Loader):

    def load(self, statement: 'Statement', index: int) -> float:
        return to_double(statement.column_value(index))


@register_loader(str)
class TextLoader(Loader):
    """Owned copy of exactly the column's text."""

    def load(self, statement: 'Statement', index: int) -> str:
        return to_text(statement.column_value(index))


@register_loader(TextView)
class TextViewLoader(Loader):
    """Borrowed text, invalid after the statement's next step, reset or finalize."""

    def load(self, statement: 'Statement', index: int) -> TextView:
        return TextView(statement, index, to_text(statement.column_value(index)))


@register_loader(bytes)
class BytesLoader(Loader):
    """Owned raw bytes, no element size check."""

    def load(self, statement: 'Statement', index: int) -> bytes:
        return to_bytes(statement.column_value(index))


@register_loader(BytesView, BlobView)
class BytesViewLoader(Loader):
    """Borrowed raw byte span with an explicit byte length."""

    def load(self, statement: 'Statement', index: int) -> BytesView:
        return BytesView(statement, index, to_bytes(statement.column_value(index)))


@register_loader(datetime.datetime)
class DateTimeLoader(Loader):
    """ISO-8601 text, or INTEGER/REAL Unix time in UTC."""

    def load(self, statement: 'Statement', index: int) -> datetime.datetime:
        value = statement.column_value(index)
        if value is None:
            raise MarshallingError(f'column {index} is NULL, request Optional[...] to allow it',
                                   sql=statement.sql)
        try:
            if isinstance(value, int | float):
                return datetime.datetime.fromtimestamp(value, tz=datetime.timezone.utc)
            return dateutil.parser.isoparse(to_text(value))
        except (ValueError, OverflowError, OSError) as e:
            raise MarshallingError(f'column {index} is not a date/time: {value!r}',
                                   sql=statement.sql) from e


@register_loader(datetime.date)
class DateLoader(DateTimeLoader):

    def load(self, statement: 'Statement', index: int) -> datetime.date:
        return super().load(statement, index).date()


class OptionalLoader(Loader):
    """None when the column is NULL, otherwise the wrapped loader's value.
    """

    def __init__(self, inner: Loader) -> None:
        self.inner = inner

    def load(self, statement: 'Statement', index: int) -> Any:
        if statement.column_type(index) is ColumnType.NULL:
            return None
        return self.inner.load(statement, index)

    def __repr__(self) -> str:
        return f'<OptionalLoader {self.inner!r}>'


class BlobLoader(Loader):
    """Blob decoded as a sequence of fixed-size elements.

    The raw byte length must be a multiple of the element size. The result is
    an owned numpy array, or a BlobView when a borrowed view was requested.
    """

    def __init__(self, spec: BlobSpec) -> None:
        self.spec = spec

    def load(self, statement: 'Statement', index: int) -> np.ndarray | BlobView:
        raw = to_bytes(statement.column_value(index))
        if len(raw) % self.spec.itemsize:
            raise MarshallingError(
                f'blob of {len(raw)} bytes in column {index} is not divisible by '
                f'the {self.spec.itemsize}-byte size of {self.spec.dtype}',
                sql=statement.sql)
        if self.spec.borrowed:
            return BlobView(statement, index, raw, self.spec.dtype)
        return np.frombuffer(raw, dtype=self.spec.dtype).copy()

    def __repr__(self) -> str:
        kind = 'borrowed' if self.spec.borrowed else 'owned'
        return f'<BlobLoader {kind} {self.spec.dtype}>'


def _optional_inner(tag: Any) -> Any | None:
    """``X`` for ``Optional[X]`` or ``X | None``, otherwise None."""
    if typing.get_origin(tag) not in (typing.Union, types.UnionType):
        return None
    args = [a for a in typing.get_args(tag) if a is not type(None)]
    if len(args) != 1 or len(args) == len(typing.get_args(tag)):
        return None
    return args[0]


@cachetools.cached(_resolve_cache)
def resolve_loader(tag: Any) -> Loader:
    """Loader for a request tag.

    Raises TypeError when nothing can decode ``tag``.
    """
    if tag in _LOADER_REGISTRY:
        return _LOADER_REGISTRY[tag]
    if isinstance(tag, BlobSpec):
        return BlobLoader(tag)
    if tag is Blob:
        return BlobLoader(Blob[np.uint8])
    inner = _optional_inner(tag)
    if inner is not None:
        return OptionalLoader(resolve_loader(inner))
    raise TypeError(f'No loader registered for {tag!r}')
