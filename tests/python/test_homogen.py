"""
Tests for dense row-major (AOS) storage.
"""

import pytest
import numpy as np

from numtab import (
    HomogenStorage,
    NumericTable,
    Ownership,
    StorageLayout,
    config,
    AllocationConfig,
)
from numtab.errors import (
    DimensionMismatchError,
    OutOfRangeError,
    TypeMismatchError,
    UnallocatedError,
)


# =============================================================================
# Block Access
# =============================================================================

class TestDenseBlocks:
    """Test the 3x2 dense scenario."""

    def test_rows_one_and_two(self, dense_table):
        block = dense_table.get_block_of_rows(1, 2)
        np.testing.assert_array_equal(block, [[3.0, 4.0], [5.0, 6.0]])

    def test_column_one(self, dense_table):
        column = dense_table.get_block_of_column_values(1, 0, 3)
        np.testing.assert_array_equal(column, [2.0, 4.0, 6.0])

    def test_int32_buffer(self, dense_table):
        block = dense_table.get_block_of_rows(0, 3, dtype='int32')
        assert block.dtype == np.int32
        np.testing.assert_array_equal(block, [[1, 2], [3, 4], [5, 6]])

    def test_release_writes_back(self, dense_table):
        block = dense_table.get_block_of_rows(1, 1)
        block[0, 0] = 30.0
        dense_table.release_block_of_rows(1, 1, block)
        assert dense_table.get_block_of_column_values(0, 1, 1)[0] == 30.0

    def test_release_two_rows(self, dense_table):
        block = dense_table.get_block_of_rows(1, 2)
        block[:] = [[30.0, 40.0], [50.0, 60.0]]
        dense_table.release_block_of_rows(1, 2, block)
        np.testing.assert_array_equal(
            dense_table.get_block_of_rows(0, 3), [[1.0, 2.0], [30.0, 40.0], [50.0, 60.0]]
        )

    def test_get_release_round_trip(self, dense_table, dense_values):
        block = dense_table.get_block_of_rows(0, 3)
        dense_table.release_block_of_rows(0, 3, block)
        np.testing.assert_array_equal(dense_table.to_numpy(), dense_values)

    def test_float32_release_into_int32_storage(self):
        table = NumericTable.homogen(2, 2, kind='int32')
        table.release_block_of_rows(0, 2, np.array([[1.9, -1.9], [2.0, 3e12]], dtype=np.float32))
        np.testing.assert_array_equal(
            table.get_block_of_rows(0, 2, 'int32'),
            [[1, -1], [2, np.iinfo(np.int32).max]],
        )

    def test_column_release(self, dense_table):
        dense_table.release_block_of_column_values(0, 0, 3, np.array([7.0, 8.0, 9.0]))
        np.testing.assert_array_equal(dense_table.to_numpy()[:, 0], [7.0, 8.0, 9.0])
        np.testing.assert_array_equal(dense_table.to_numpy()[:, 1], [2.0, 4.0, 6.0])

    def test_set_column_values_keeps_int64_exact(self):
        big = 2 ** 53 + 1
        table = NumericTable.homogen(3, 2, kind='int64')
        table.set_column_values(1, 1, np.array([big, -big], dtype=np.int64))
        assert table.backend.data[:, 1].tolist() == [0, big, -big]
        assert table.backend.data[:, 0].tolist() == [0, 0, 0]

    def test_set_column_values_range(self, dense_table):
        with pytest.raises(OutOfRangeError):
            dense_table.set_column_values(0, 2, np.array([1, 2], dtype=np.int64))
        with pytest.raises(OutOfRangeError):
            dense_table.set_column_values(2, 0, np.array([1.0]))

    def test_empty_block(self, dense_table):
        assert dense_table.get_block_of_rows(3, 0).shape == (0, 2)


# =============================================================================
# Validation
# =============================================================================

class TestDenseValidation:
    """Test failures leave the storage untouched."""

    def test_rows_out_of_range(self, dense_table):
        with pytest.raises(OutOfRangeError):
            dense_table.get_block_of_rows(2, 2)

    def test_negative_start(self, dense_table):
        with pytest.raises(OutOfRangeError):
            dense_table.get_block_of_rows(-1, 1)

    def test_column_out_of_range(self, dense_table):
        with pytest.raises(OutOfRangeError):
            dense_table.get_block_of_column_values(2, 0, 1)

    def test_int64_buffer_rejected(self, dense_table):
        with pytest.raises(TypeMismatchError):
            dense_table.get_block_of_rows(0, 1, dtype='int64')

    def test_wrong_buffer_shape(self, dense_table, dense_values):
        with pytest.raises(DimensionMismatchError):
            dense_table.release_block_of_rows(0, 2, np.zeros((2, 3)))
        np.testing.assert_array_equal(dense_table.to_numpy(), dense_values)

    def test_flat_buffer_accepted(self, dense_table):
        dense_table.release_block_of_rows(0, 1, np.array([9.0, 9.0]))
        np.testing.assert_array_equal(dense_table.get_block_of_rows(0, 1), [[9.0, 9.0]])

    def test_release_out_of_range_does_not_write(self, dense_table, dense_values):
        with pytest.raises(OutOfRangeError):
            dense_table.release_block_of_rows(2, 2, np.zeros((2, 2)))
        np.testing.assert_array_equal(dense_table.to_numpy(), dense_values)

    def test_non_array_buffer(self, dense_table):
        with pytest.raises(TypeMismatchError):
            dense_table.release_block_of_rows(0, 1, [[1.0, 2.0]])


# =============================================================================
# Lifecycle & Ownership
# =============================================================================

class TestDenseLifecycle:
    """Test allocation, freeing and ownership."""

    def test_unallocated_access(self):
        table = NumericTable.homogen(3, 2, allocate=False)
        with pytest.raises(UnallocatedError):
            table.get_block_of_rows(0, 1)

    def test_access_after_free(self, dense_table):
        dense_table.free_data_memory()
        assert not dense_table.is_allocated
        with pytest.raises(UnallocatedError):
            dense_table.get_block_of_rows(0, 1)

    def test_allocation_zero_fills(self):
        table = NumericTable.homogen(2, 2)
        np.testing.assert_array_equal(table.to_numpy(), np.zeros((2, 2)))
        assert table.storage_info().ownership is Ownership.OWNED
        assert table.storage_info().nbytes == 32

    def test_allocation_without_zero_fill(self):
        with config.local(allocation=AllocationConfig(zero_fill=False)):
            table = NumericTable.homogen(2, 2)
        assert table.is_allocated

    def test_from_array_borrows(self, dense_values):
        table = NumericTable.from_array(dense_values)
        assert table.storage_info().ownership is Ownership.BORROWED
        table.release_block_of_rows(0, 1, np.array([[10.0, 20.0]]))
        np.testing.assert_array_equal(dense_values[0], [10.0, 20.0])

    def test_from_array_with_copy(self, dense_values):
        table = NumericTable.from_array(dense_values, copy=True)
        table.assign(0)
        assert dense_values[0, 0] == 1.0

    def test_from_array_converts_kind(self, dense_values):
        table = NumericTable.from_array(dense_values, kind='float32')
        assert table.kind.value == 'float32'
        assert table.storage_info().ownership is Ownership.OWNED

    def test_assign(self, dense_table):
        dense_table.assign(2.5)
        np.testing.assert_array_equal(dense_table.to_numpy(), np.full((3, 2), 2.5))

    def test_layout(self, dense_table):
        assert dense_table.layout is StorageLayout.AOS

    def test_set_data_size_mismatch(self):
        storage = HomogenStorage(2, 2)
        with pytest.raises(DimensionMismatchError):
            storage.set_data(np.zeros(5))

    def test_copy_is_independent(self, dense_table):
        copied = dense_table.copy()
        copied.assign(0)
        assert dense_table.get_block_of_rows(0, 1)[0, 0] == 1.0
