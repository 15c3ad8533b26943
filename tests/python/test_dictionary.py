"""
Tests for feature descriptors and the data dictionary.
"""

import pytest
import numpy as np

from numtab import DataFeature, DataDictionary, FeatureKind, NumericKind
from numtab.errors import OutOfRangeError, TypeMismatchError


class TestDataFeature:
    """Test a single column descriptor."""

    def test_defaults(self):
        feature = DataFeature()
        assert feature.numeric_kind is None
        assert not feature.is_typed
        assert feature.feature_kind is FeatureKind.continuous
        assert feature.category_number == 0
        assert feature.name == ""

    def test_setters(self):
        feature = DataFeature()
        feature.set_type('int32')
        feature.set_feature_kind('categorical')
        feature.set_category_number(4)
        feature.set_name("color")
        assert feature.numeric_kind is NumericKind.int32
        assert feature.feature_kind is FeatureKind.categorical
        assert feature.category_number == 4
        assert feature.name == "color"

    def test_negative_category_number(self):
        with pytest.raises(ValueError):
            DataFeature('int32', FeatureKind.categorical, -1)

    def test_casts_come_from_tables(self):
        feature = DataFeature('int32')
        out = feature.up_cast('float64')(np.array([1, 2], dtype=np.int32))
        assert out.dtype == np.float64
        back = feature.down_cast('float64')(np.array([1.9, -1.9]))
        np.testing.assert_array_equal(back, [1, -1])

    def test_untyped_cast_names_column(self):
        with pytest.raises(TypeMismatchError, match="column 3"):
            DataFeature().up_cast('float64', index=3)

    def test_equality_and_copy(self):
        feature = DataFeature('float32', FeatureKind.ordinal, name="rank")
        copied = feature.copy()
        assert copied == feature
        assert copied is not feature
        copied.set_name("other")
        assert copied != feature


class TestDataDictionary:
    """Test the ordered descriptor sequence."""

    def test_new_features_are_untyped(self):
        dictionary = DataDictionary(3)
        assert len(dictionary) == 3
        assert dictionary.kinds() == [None, None, None]

    def test_set_feature_by_kind(self):
        dictionary = DataDictionary(2)
        dictionary.set_feature('float64', 0)
        assert dictionary.get_feature(0).numeric_kind is NumericKind.float64

    def test_set_feature_copies_descriptor(self):
        dictionary = DataDictionary(2)
        feature = DataFeature('int32')
        dictionary.set_feature(feature, 1)
        feature.set_type('float64')
        assert dictionary[1].numeric_kind is NumericKind.int32

    def test_set_feature_out_of_range(self):
        dictionary = DataDictionary(2)
        with pytest.raises(OutOfRangeError):
            dictionary.set_feature('float64', 2)

    def test_negative_index_rejected(self):
        dictionary = DataDictionary(2)
        with pytest.raises(OutOfRangeError):
            dictionary.get_feature(-1)

    def test_resize_truncates_and_extends(self):
        dictionary = DataDictionary.homogeneous(3, 'float32')
        dictionary.set_number_of_features(2)
        assert len(dictionary) == 2
        dictionary.set_number_of_features(4)
        assert dictionary.kinds() == [NumericKind.float32, NumericKind.float32, None, None]

    def test_is_homogeneous(self):
        dictionary = DataDictionary.homogeneous(3, 'int32')
        assert dictionary.is_homogeneous()
        dictionary.set_feature('float64', 1)
        assert not dictionary.is_homogeneous()
        assert not DataDictionary(2).is_homogeneous()

    def test_copy_is_deep(self):
        dictionary = DataDictionary.homogeneous(2, 'float64')
        copied = dictionary.copy()
        copied[0].set_type('int32')
        assert dictionary[0].numeric_kind is NumericKind.float64

    def test_concatenate_shares_features(self):
        left = DataDictionary.homogeneous(2, 'float64')
        right = DataDictionary.homogeneous(1, 'int32')
        merged = DataDictionary.concatenate([left, right])
        assert merged.kinds() == [NumericKind.float64, NumericKind.float64, NumericKind.int32]
        merged[2].set_name("label")
        assert right[0].name == "label"
