"""
Tests for parameter conversion before binding.
"""
import datetime
import math

import numpy as np
import pytest
from typed_sqlite.exceptions import MarshallingError
from typed_sqlite.types import INT64_MAX, INT64_MIN, ColumnType, TypeConverter


@pytest.mark.parametrize(('value', 'expected'), [
    (None, None),
    (True, 1),
    (False, 0),
    (42, 42),
    (INT64_MAX, INT64_MAX),
    (INT64_MIN, INT64_MIN),
    (2.5, 2.5),
    ('text', 'text'),
    (b'\x00\x01', b'\x00\x01'),
    (bytearray(b'ab'), b'ab'),
    (memoryview(b'cd'), b'cd'),
    (datetime.date(2023, 5, 15), '2023-05-15'),
    (datetime.datetime(2023, 5, 15, 14, 30, 45), '2023-05-15 14:30:45'),
])
def test_convert_value(value, expected):
    """Test conversion of each supported Python type"""
    result = TypeConverter.convert_value(value)
    assert result == expected
    assert type(result) is type(expected)


def test_nan_binds_as_null():
    """The engine stores NaN as NULL"""
    assert TypeConverter.convert_value(math.nan) is None
    assert TypeConverter.convert_value(np.float64('nan')) is None


def test_numpy_scalars():
    """Test NumPy scalars become Python scalars"""
    assert type(TypeConverter.convert_value(np.int32(5))) is int
    assert type(TypeConverter.convert_value(np.uint8(5))) is int
    assert type(TypeConverter.convert_value(np.float32(0.5))) is float
    assert TypeConverter.convert_value(np.bool_(True)) == 1


@pytest.mark.parametrize('value', [INT64_MAX + 1, INT64_MIN - 1, np.uint64(2**64 - 1)])
def test_integer_range(value):
    """Test integers outside 64 bits are rejected"""
    with pytest.raises(MarshallingError) as exc:
        TypeConverter.convert_value(value)
    assert exc.value.operation == 'bind'


def test_unsupported_type():
    with pytest.raises(MarshallingError, match='cannot bind'):
        TypeConverter.convert_value(object())
    with pytest.raises(MarshallingError):
        TypeConverter.convert_value([1, 2])


def test_convert_params():
    assert TypeConverter.convert_params([1, None, True, 'x']) == (1, None, 1, 'x')


def test_register_conversion():
    """Test registering a conversion for another type"""
    class Celsius(float):
        pass

    class Point:
        def __init__(self, x, y):
            self.x, self.y = x, y

    TypeConverter.register(Point, lambda p: f'{p.x},{p.y}')
    assert TypeConverter.convert_value(Point(1, 2)) == '1,2'
    assert TypeConverter.convert_value(Celsius(1.5)) == 1.5


@pytest.mark.parametrize(('value', 'expected'), [
    (None, ColumnType.NULL),
    (1, ColumnType.INTEGER),
    (1.5, ColumnType.FLOAT),
    ('a', ColumnType.TEXT),
    (b'a', ColumnType.BLOB),
])
def test_column_type_of(value, expected):
    assert ColumnType.of(value) is expected


def test_column_type_numbering():
    """Storage classes carry the engine's numbering"""
    assert [int(t) for t in ColumnType] == [1, 2, 3, 4, 5]


if __name__ == '__main__':
    __import__('pytest').main([__file__])
