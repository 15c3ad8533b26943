"""
Tests for binary serialization and the tag factory.
"""

import struct

import pytest
import numpy as np

from numtab import (
    DataDictionary,
    DataFeature,
    FeatureKind,
    HomogenStorage,
    MergedNumericTable,
    NumericTable,
    SOAStorage,
    deserialize,
    serialize,
)
from numtab.serialization import (
    FORMAT_VERSION,
    MAGIC,
    InputArchive,
    OutputArchive,
    SerializableBase,
    SerializationFactory,
    factory,
)
from numtab.errors import SerializationError


# =============================================================================
# Format
# =============================================================================

class TestFormat:
    """Test the header and determinism."""

    def test_header(self, dense_table):
        payload = serialize(dense_table)
        assert payload[:4] == MAGIC
        assert struct.unpack("<H", payload[4:6])[0] == FORMAT_VERSION
        assert struct.unpack("<I", payload[6:10])[0] == NumericTable.serialization_tag

    def test_deterministic(self, dense_table):
        assert serialize(dense_table) == serialize(dense_table)
        assert dense_table.serialize() == serialize(dense_table)

    def test_reserialize_is_byte_identical(self, merged_table):
        payload = serialize(merged_table)
        assert serialize(deserialize(payload)) == payload

    def test_bad_magic(self, dense_table):
        payload = bytearray(serialize(dense_table))
        payload[0:4] = b"XXXX"
        with pytest.raises(SerializationError, match="magic"):
            deserialize(bytes(payload))

    def test_unsupported_version(self, dense_table):
        payload = bytearray(serialize(dense_table))
        payload[4:6] = struct.pack("<H", FORMAT_VERSION + 1)
        with pytest.raises(SerializationError, match="version"):
            deserialize(bytes(payload))

    def test_unknown_tag(self):
        archive = OutputArchive()
        archive.write_bytes(MAGIC)
        archive.write_uint16(FORMAT_VERSION)
        archive.write_uint32(9999)
        with pytest.raises(SerializationError, match="tag"):
            deserialize(archive.getvalue())

    def test_truncated(self, dense_table):
        payload = serialize(dense_table)
        with pytest.raises(SerializationError, match="Truncated"):
            deserialize(payload[:-3])

    def test_trailing_bytes(self, dense_table):
        with pytest.raises(SerializationError, match="trailing"):
            deserialize(serialize(dense_table) + b"\x00")

    def test_not_serializable(self):
        with pytest.raises(SerializationError):
            serialize(np.zeros(3))


# =============================================================================
# Round Trips
# =============================================================================

class TestRoundTrips:
    """Test every serializable type restores its state."""

    def test_feature(self):
        feature = DataFeature('int32', FeatureKind.categorical, 5, name="color")
        assert deserialize(serialize(feature)) == feature

    def test_untyped_feature(self):
        assert deserialize(serialize(DataFeature())) == DataFeature()

    def test_dictionary(self):
        dictionary = DataDictionary(3)
        dictionary.set_feature('float32', 0)
        dictionary.set_feature(DataFeature('int64', FeatureKind.ordinal), 2)
        assert deserialize(serialize(dictionary)) == dictionary

    def test_dense_table(self, dense_table, dense_values):
        restored = deserialize(serialize(dense_table))
        assert isinstance(restored, NumericTable)
        assert isinstance(restored.backend, HomogenStorage)
        np.testing.assert_array_equal(restored.to_numpy(), dense_values)

    def test_unallocated_table(self):
        restored = deserialize(serialize(NumericTable.homogen(3, 2, kind='int32', allocate=False)))
        assert restored.shape == (3, 2)
        assert not restored.is_allocated
        assert restored.kind.value == 'int32'

    def test_soa_table(self, mixed_soa_table):
        restored = deserialize(serialize(mixed_soa_table))
        assert isinstance(restored.backend, SOAStorage)
        assert [a.dtype for a in restored.backend.arrays] == [np.int32, np.float32, np.float64]
        np.testing.assert_array_equal(restored.to_numpy(), mixed_soa_table.to_numpy())

    def test_packed_table(self, upper_packed_table):
        lower = NumericTable.packed_symmetric(3, lower=True, data=np.arange(1.0, 7.0))
        for table in (upper_packed_table, lower):
            restored = deserialize(serialize(table))
            assert restored.layout is table.layout
            np.testing.assert_array_equal(restored.to_numpy(), table.to_numpy())

    def test_csr_table(self, small_csr_table, dense_csr_equivalent):
        restored = deserialize(serialize(small_csr_table))
        np.testing.assert_array_equal(restored.to_numpy(), dense_csr_equivalent)
        assert restored.backend.nnz == 6

    def test_merged_table(self, merged_table):
        restored = deserialize(serialize(merged_table))
        assert isinstance(restored, MergedNumericTable)
        assert restored.number_of_tables == 2
        np.testing.assert_array_equal(restored.to_numpy(), merged_table.to_numpy())

    def test_storage_backend_alone(self, dense_table):
        restored = deserialize(serialize(dense_table.backend))
        assert isinstance(restored, HomogenStorage)


# =============================================================================
# Factory
# =============================================================================

class TestFactory:
    """Test tag registration."""

    def test_builtin_tags(self):
        assert factory.tags == [1, 2, 10, 11, 12, 13, 20, 21]

    def test_duplicate_tag_rejected(self):
        registry = SerializationFactory()

        class First(SerializableBase):
            serialization_tag = 500

            def _serialize_impl(self, archive):
                pass

            @classmethod
            def _deserialize_impl(cls, archive):
                return cls()

        class Second(First):
            pass

        registry.register(First)
        registry.register(First)
        with pytest.raises(SerializationError):
            registry.register(Second)

    def test_archive_primitives(self):
        archive = OutputArchive()
        archive.write_str("numtab")
        archive.write_int64(-5)
        archive.write_array(np.array([1, 2], dtype=np.int32))
        reader = InputArchive(archive.getvalue())
        assert reader.read_str() == "numtab"
        assert reader.read_int64() == -5
        np.testing.assert_array_equal(reader.read_array(), [1, 2])
        assert reader.remaining == 0
