"""
Tests for the numeric kind system.
"""

import pytest
import numpy as np

from numtab._dtypes import (
    NumericKind,
    FeatureKind,
    BUFFER_KINDS,
    normalize_kind,
    validate_buffer_kind,
    kind_of_array,
    is_float_kind,
    is_int_kind,
    kind_itemsize,
    float32,
    float64,
    int32,
    int64,
)
from numtab.errors import TypeMismatchError


class TestKindConstants:
    """Test module-level kind constants."""

    def test_constants_are_enum_members(self):
        assert float64 is NumericKind.float64
        assert float32 is NumericKind.float32
        assert int32 is NumericKind.int32
        assert int64 is NumericKind.int64

    def test_dtype_mapping(self):
        assert float64.dtype == np.dtype(np.float64)
        assert int32.dtype == np.dtype(np.int32)

    def test_codes_round_trip(self):
        for kind in NumericKind:
            assert NumericKind.from_code(kind.code) is kind

    def test_unknown_code(self):
        with pytest.raises(TypeMismatchError):
            NumericKind.from_code(99)

    def test_feature_kinds(self):
        assert FeatureKind('categorical') is FeatureKind.categorical
        assert str(FeatureKind.ordinal) == 'ordinal'


class TestNormalizeKind:
    """Test kind normalization."""

    def test_normalize_string(self):
        assert normalize_kind('float32') is NumericKind.float32
        assert normalize_kind('int64') is NumericKind.int64

    def test_normalize_numpy(self):
        assert normalize_kind(np.float64) is NumericKind.float64
        assert normalize_kind(np.dtype('int32')) is NumericKind.int32

    def test_normalize_enum_passthrough(self):
        assert normalize_kind(NumericKind.int32) is NumericKind.int32

    def test_unsupported_string(self):
        with pytest.raises(TypeMismatchError):
            normalize_kind('complex128')

    def test_unsupported_dtype(self):
        with pytest.raises(TypeMismatchError):
            normalize_kind(np.uint8)

    def test_kind_of_array(self):
        assert kind_of_array(np.zeros(3, dtype=np.float32)) is NumericKind.float32


class TestBufferKinds:
    """Test the set of kinds a block buffer may have."""

    def test_buffer_kinds(self):
        assert set(BUFFER_KINDS) == {float64, float32, int32}

    def test_validate_accepts_buffer_kinds(self):
        for kind in ('float64', 'float32', 'int32'):
            validate_buffer_kind(kind)

    def test_int64_is_not_a_buffer_kind(self):
        with pytest.raises(TypeMismatchError):
            validate_buffer_kind('int64')


class TestKindUtilities:
    """Test kind predicates."""

    def test_predicates(self):
        assert is_float_kind('float32')
        assert not is_float_kind('int32')
        assert is_int_kind(int64)
        assert not is_int_kind(float64)

    def test_itemsize(self):
        assert kind_itemsize('float64') == 8
        assert kind_itemsize(int32) == 4
