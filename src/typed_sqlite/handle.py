"""Exclusive ownership of native engine handles."""
import logging
from collections.abc import Callable
from typing import Any, Generic, Self, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


class UniqueHandle(Generic[T]):
    """Owns one native handle and releases it exactly once.

    The handle can be moved to a new owner (the source becomes null) but never
    duplicated: copying or pickling raises TypeError. Releasing a null handle
    is a no-op, and release never raises.
    """

    __slots__ = ('_raw', '_release')

    def __init__(self, raw: T | None, release: Callable[[T], None]) -> None:
        self._raw = raw
        self._release = release

    def __bool__(self) -> bool:
        return self._raw is not None

    def __repr__(self) -> str:
        state = 'null' if self._raw is None else f'0x{id(self._raw):x}'
        return f'<UniqueHandle {state}>'

    def __copy__(self) -> Self:
        raise TypeError('native handles cannot be copied, use move()')

    def __deepcopy__(self, memo: dict[int, Any]) -> Self:
        raise TypeError('native handles cannot be copied, use move()')

    def __reduce__(self) -> Any:
        raise TypeError('native handles cannot be pickled')

    def __del__(self) -> None:
        self.close()

    def get(self) -> T | None:
        """Borrow the raw handle without transferring ownership."""
        return self._raw

    def move(self) -> 'UniqueHandle[T]':
        """Transfer ownership to a new UniqueHandle, leaving this one null.
        """
        moved = UniqueHandle(self._raw, self._release)
        self._raw = None
        return moved

    def close(self) -> None:
        """Release the handle. Safe to call repeatedly.
        """
        raw, self._raw = getattr(self, '_raw', None), None
        if raw is None:
            return
        try:
            self._release(raw)
        except Exception as e:
            logger.debug(f'Error releasing native handle: {e}')
