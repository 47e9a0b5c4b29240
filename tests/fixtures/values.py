"""
Test values fixtures for database tests.

This module provides fixture functions that generate test data for database tests,
ensuring consistent test values across different test modules.
"""
import datetime
import math

import numpy as np
import pytest


@pytest.fixture(scope='module')
def value_dict():
    """Return a dictionary of test values for every bindable type"""
    return {
        # Integers
        'int32_value': 2147483647,  # Max int32
        'int64_value': 9223372036854775807,  # Max int64
        'negative_int': -32768,

        # Floating point
        'float_value': math.pi,

        # Text
        'text_value': 'Lorem ipsum dolor sit amet',
        'unicode_value': 'naïve café ✓',

        # Binary
        'blob_value': b'\x00\x01\x02\x03\xff',

        # Date and time
        'date_value': datetime.date(2023, 5, 15),
        'datetime_value': datetime.datetime(2023, 5, 15, 14, 30, 45),
    }


@pytest.fixture
def int32_blob():
    """Eight bytes holding two native-endian int32 values"""
    return np.array([1, -2], dtype=np.int32).tobytes()


@pytest.fixture
def seven_byte_blob():
    """Blob whose length is not a multiple of four"""
    return bytes(range(7))
