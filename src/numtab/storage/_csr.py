"""
Compressed Sparse Row Storage

Three arrays describe a sparse row-major matrix:

    - values:          stored non-zeros, one numeric kind
    - column_indices:  column of each stored value
    - row_offsets:     ``rows + 1`` offsets; row ``r`` owns
                       ``values[row_offsets[r] - base : row_offsets[r + 1] - base]``

Indices and offsets are zero-based or one-based; the base is fixed at
construction.

Invariants (checked when arrays are bound):
    - ``len(row_offsets) == rows + 1`` and ``row_offsets[0] == base``
    - ``row_offsets`` is non-decreasing
    - ``row_offsets[-1] - base == len(values) == len(column_indices)``
    - every column index lies in ``[base, base + cols)``

Block Access:
    Dense row and column blocks are rebuilt from the three arrays on
    demand. Dense release cannot keep the sparsity structure, so it raises
    ``UnsupportedOperationError`` unless the storage was built with
    ``mutable=True``; mutable storage rebuilds the affected rows, dropping
    zeros. ``get_sparse_block`` / ``release_sparse_block`` expose the
    stored values of a row range without changing the structure and work
    on any CSR storage.

Example:
    >>> storage = CSRStorage.from_arrays(
    ...     values=[1., 2., 3.], column_indices=[0, 2, 1], row_offsets=[0, 2, 3],
    ...     n_columns=3)
    >>> storage.get_block_of_rows(0, 2)
    array([[1., 0., 2.],
           [0., 3., 0.]])
"""

import logging
from dataclasses import dataclass
from typing import Optional, TYPE_CHECKING

import numpy as np

from .._backend import StorageLayout, Ownership, IndexBase, StorageInfo
from .._casting import convert, up_cast, down_cast
from .._dictionary import DataDictionary
from .._dtypes import NumericKind, float64, normalize_kind, kind_of_array, validate_buffer_kind
from ..errors import (
    DimensionMismatchError,
    OutOfRangeError,
    TypeMismatchError,
    UnsupportedOperationError,
    check_range,
)
from ..serialization import InputArchive, OutputArchive, register_serializable
from ._base import StorageBackend

if TYPE_CHECKING:
    from scipy.sparse import spmatrix

__all__ = ['CSRStorage', 'CSRBlock', 'validate_csr']

logger = logging.getLogger("numtab.storage")


@dataclass
class CSRBlock:
    """
    Structure-preserving view of a CSR row range.

    Attributes:
        start: First row of the block.
        n: Number of rows.
        values: Stored values of the rows, converted to the buffer kind.
        column_indices: Column index of each value (storage index base).
        row_offsets: ``n + 1`` offsets into ``values`` (storage index base).
        index_base: Index base of ``column_indices`` and ``row_offsets``.
    """
    start: int
    n: int
    values: np.ndarray
    column_indices: np.ndarray
    row_offsets: np.ndarray
    index_base: IndexBase

    @property
    def nnz(self) -> int:
        return int(self.values.size)


def validate_csr(
    values: np.ndarray,
    column_indices: np.ndarray,
    row_offsets: np.ndarray,
    n_rows: int,
    n_columns: int,
    index_base: IndexBase = IndexBase.ZERO,
) -> None:
    """
    Check the CSR invariants.

    Raises:
        DimensionMismatchError: If the offsets are malformed or disagree with
            the value and index array lengths.
        OutOfRangeError: If a column index falls outside the columns.
        TypeMismatchError: If the indices or offsets are not integers.
    """
    for name, array in (("column_indices", column_indices), ("row_offsets", row_offsets)):
        if array.size and not np.issubdtype(array.dtype, np.integer):
            raise TypeMismatchError(f"{name} must be integers, got {array.dtype.name}")
    base = index_base.value
    if row_offsets.ndim != 1 or row_offsets.size != n_rows + 1:
        raise DimensionMismatchError(
            f"row_offsets must have {n_rows + 1} entries, got {row_offsets.size}"
        )
    if row_offsets[0] != base:
        raise DimensionMismatchError(
            f"row_offsets[0] must equal the index base {base}, got {row_offsets[0]}"
        )
    if np.any(np.diff(row_offsets) < 0):
        raise DimensionMismatchError("row_offsets must be non-decreasing")
    nnz = int(row_offsets[-1]) - base
    if values.size != nnz or column_indices.size != nnz:
        raise DimensionMismatchError(
            f"row_offsets describe {nnz} values, got {values.size} values and "
            f"{column_indices.size} column indices"
        )
    if nnz and (column_indices.min() < base or column_indices.max() >= base + n_columns):
        raise OutOfRangeError(
            f"column indices must lie in [{base}, {base + n_columns})"
        )


@register_serializable
class CSRStorage(StorageBackend):
    """
    Compressed sparse row storage of one numeric kind.

    Attributes:
        _values: Stored values, or None when unallocated.
        _column_indices: int64 column index per value.
        _row_offsets: int64 offsets, ``rows + 1`` entries.
        _index_base: Zero- or one-based indexing.
        _mutable: Whether dense releases may rebuild rows.
        _checked: Whether the bound arrays passed validation.
    """

    serialization_tag = 13

    def __init__(
        self,
        n_rows: int,
        n_columns: int,
        kind=float64,
        index_base: IndexBase = IndexBase.ZERO,
        mutable: bool = False,
        dictionary: Optional[DataDictionary] = None,
    ):
        self._kind = normalize_kind(kind)
        self._index_base = IndexBase(index_base)
        self._mutable = bool(mutable)
        super().__init__(n_rows, n_columns, dictionary)
        for feature in self._dictionary:
            if not feature.is_typed:
                feature.set_type(self._kind)
        self._values: Optional[np.ndarray] = None
        self._column_indices: Optional[np.ndarray] = None
        self._row_offsets: Optional[np.ndarray] = None
        self._checked = False

    @classmethod
    def from_arrays(
        cls,
        values,
        column_indices,
        row_offsets,
        n_columns: int,
        index_base: IndexBase = IndexBase.ZERO,
        mutable: bool = False,
    ) -> 'CSRStorage':
        """Build storage over existing CSR arrays (rows = ``len(row_offsets) - 1``)."""
        values = np.asarray(values)
        row_offsets = np.asarray(row_offsets)
        storage = cls(
            row_offsets.size - 1, n_columns, kind_of_array(values),
            index_base=index_base, mutable=mutable,
        )
        storage.set_arrays(values, column_indices, row_offsets)
        return storage

    @classmethod
    def from_scipy(
        cls,
        matrix: 'spmatrix',
        index_base: IndexBase = IndexBase.ZERO,
        mutable: bool = False,
    ) -> 'CSRStorage':
        """Build storage from any scipy sparse matrix (converted to CSR, copied)."""
        import scipy.sparse as sp

        csr = sp.csr_matrix(matrix)
        base = IndexBase(index_base).value
        storage = cls(
            csr.shape[0], csr.shape[1], kind_of_array(csr.data),
            index_base=index_base, mutable=mutable,
        )
        storage.set_arrays(
            csr.data.copy(),
            csr.indices.astype(np.int64) + base,
            csr.indptr.astype(np.int64) + base,
        )
        storage._ownership = Ownership.OWNED
        return storage

    def to_scipy(self):
        """Convert to ``scipy.sparse.csr_matrix`` (zero-based, copied)."""
        import scipy.sparse as sp

        self._check_ready()
        base = self._index_base.value
        return sp.csr_matrix(
            (self._values.copy(), self._column_indices - base, self._row_offsets - base),
            shape=self.shape,
        )

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def layout(self) -> StorageLayout:
        return StorageLayout.CSR

    @property
    def kind(self) -> NumericKind:
        return self._kind

    @property
    def index_base(self) -> IndexBase:
        return self._index_base

    @property
    def mutable(self) -> bool:
        return self._mutable

    @property
    def is_allocated(self) -> bool:
        return self._values is not None

    @property
    def nnz(self) -> int:
        return 0 if self._values is None else int(self._values.size)

    @property
    def nbytes(self) -> int:
        if self._values is None:
            return 0
        return self._values.nbytes + self._column_indices.nbytes + self._row_offsets.nbytes

    @property
    def values(self) -> Optional[np.ndarray]:
        return self._values

    @property
    def column_indices(self) -> Optional[np.ndarray]:
        return self._column_indices

    @property
    def row_offsets(self) -> Optional[np.ndarray]:
        return self._row_offsets

    def storage_info(self) -> StorageInfo:
        info = super().storage_info()
        info.nnz = self.nnz
        return info

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def set_arrays(self, values, column_indices, row_offsets) -> None:
        """
        Bind the three CSR arrays after validating them.

        ``values`` is used in place when it is already C-contiguous and of
        the storage kind; indices and offsets are held as int64.
        """
        values = np.asarray(values)
        column_indices = np.asarray(column_indices)
        row_offsets = np.asarray(row_offsets)
        if kind_of_array(values) != self._kind:
            raise TypeMismatchError(
                f"CSR values are {values.dtype.name}, storage holds {self._kind.value}"
            )
        validate_csr(
            values.reshape(-1), column_indices.reshape(-1), row_offsets.reshape(-1),
            self._n_rows, self._n_columns, self._index_base,
        )
        borrowed = values.flags.c_contiguous and values.ndim == 1
        self._values = values if borrowed else np.ascontiguousarray(values).reshape(-1)
        self._column_indices = column_indices.astype(np.int64).reshape(-1)
        self._row_offsets = row_offsets.astype(np.int64).reshape(-1)
        self._checked = True
        self._ownership = Ownership.BORROWED if borrowed else Ownership.OWNED

    def allocate_data_memory(self, data_size: int = 0) -> None:
        """
        Allocate arrays for ``data_size`` stored values.

        With ``data_size == 0`` the result is a valid all-zero matrix. A
        larger size leaves every row empty; the caller fills the arrays
        returned by ``values`` / ``column_indices`` / ``row_offsets`` in
        place, and the structure is validated on the next block access.
        """
        if data_size < 0:
            raise DimensionMismatchError(f"data_size must be non-negative, got {data_size}")
        base = self._index_base.value
        self._values = self._new_array(data_size, self._kind)
        self._column_indices = np.full(data_size, base, dtype=np.int64)
        self._row_offsets = np.full(self._n_rows + 1, base, dtype=np.int64)
        self._checked = data_size == 0
        self._ownership = Ownership.OWNED
        logger.debug(f"Allocated CSR storage {self.shape} with {data_size} values")

    def free_data_memory(self) -> None:
        self._values = None
        self._column_indices = None
        self._row_offsets = None
        self._checked = False
        self._ownership = Ownership.NONE
        logger.debug(f"Freed CSR storage {self.shape}")

    def resize(self, n_rows: int, n_columns: int) -> None:
        """
        CSR dimensions follow the bound arrays.

        Raises:
            DimensionMismatchError: If the shape would change.
        """
        if (n_rows, n_columns) != self.shape:
            raise DimensionMismatchError(
                f"CSR storage cannot be resized from {self.shape} to ({n_rows}, {n_columns})"
            )

    def _check_ready(self) -> None:
        super()._check_ready()
        if not self._checked:
            validate_csr(
                self._values, self._column_indices, self._row_offsets,
                self._n_rows, self._n_columns, self._index_base,
            )
            self._checked = True

    # =========================================================================
    # Dense Reconstruction
    # =========================================================================

    def _span(self, start: int, n: int):
        base = self._index_base.value
        return int(self._row_offsets[start]) - base, int(self._row_offsets[start + n]) - base

    def _dense_rows(self, start: int, n: int) -> np.ndarray:
        """Dense ``(n, cols)`` rows in the stored kind."""
        dense = np.zeros((n, self._n_columns), dtype=self._kind.dtype)
        lo, hi = self._span(start, n)
        counts = np.diff(self._row_offsets[start:start + n + 1])
        rows = np.repeat(np.arange(n), counts)
        cols = self._column_indices[lo:hi] - self._index_base.value
        dense[rows, cols] = self._values[lo:hi]
        return dense

    def _rebuild_rows(self, start: int, n: int, dense: np.ndarray) -> None:
        """Replace rows ``[start, start + n)`` with the non-zeros of ``dense``."""
        base = self._index_base.value
        lo, hi = self._span(start, n)
        rows, cols = np.nonzero(dense)
        new_values = dense[rows, cols]
        counts = np.bincount(rows, minlength=n)

        offsets = self._row_offsets.copy()
        offsets[start + 1:start + n + 1] = offsets[start] + np.cumsum(counts)
        offsets[start + n + 1:] += new_values.size - (hi - lo)

        self._values = np.concatenate([self._values[:lo], new_values, self._values[hi:]])
        self._column_indices = np.concatenate(
            [self._column_indices[:lo], cols.astype(np.int64) + base, self._column_indices[hi:]]
        )
        self._row_offsets = offsets
        self._ownership = Ownership.OWNED
        logger.debug(f"Rebuilt CSR rows [{start}, {start + n}), nnz={self.nnz}")

    def _require_mutable(self) -> None:
        if not self._mutable:
            raise UnsupportedOperationError(
                "Dense release on immutable CSR storage; build it with mutable=True "
                "or use release_sparse_block()"
            )

    # =========================================================================
    # Layout Hooks
    # =========================================================================

    def _read_rows(self, start, n, out):
        out[:] = convert(self._dense_rows(start, n).reshape(-1), kind_of_array(out))

    def _write_rows(self, start, n, flat):
        self._require_mutable()
        dense = convert(flat, self._kind).reshape(n, self._n_columns)
        self._rebuild_rows(start, n, dense)

    def _read_column(self, column, start, n, out):
        out[:] = convert(self._dense_rows(start, n)[:, column], kind_of_array(out))

    def _write_column(self, column, start, n, flat):
        self._require_mutable()
        dense = self._dense_rows(start, n)
        dense[:, column] = convert(flat, self._kind)
        self._rebuild_rows(start, n, dense)

    def _fill(self, value):
        # Stored entries only; the sparsity structure is unchanged
        self._values[:] = self._converted_scalar(value, self._kind)

    # =========================================================================
    # Sparse Blocks
    # =========================================================================

    def get_sparse_block(self, start: int, n: int, dtype=float64) -> CSRBlock:
        """
        Stored values of rows ``[start, start + n)`` with their structure.

        Returns:
            A :class:`CSRBlock` whose ``row_offsets`` start at the index base.
        """
        kind = validate_buffer_kind(dtype)
        self._check_ready()
        check_range(start, n, self._n_rows, "row")
        lo, hi = self._span(start, n)
        values = np.empty(hi - lo, dtype=kind.dtype)
        up_cast(self._values, values, hi - lo, offset=lo)
        offsets = self._row_offsets[start:start + n + 1] - self._row_offsets[start]
        return CSRBlock(
            start=start,
            n=n,
            values=values,
            column_indices=self._column_indices[lo:hi].copy(),
            row_offsets=offsets + self._index_base.value,
            index_base=self._index_base,
        )

    def release_sparse_block(self, block: CSRBlock) -> None:
        """
        Write the values of a sparse block back.

        Only values are written; the block's structure must match the
        stored one.

        Raises:
            DimensionMismatchError: If the block's value count, column
                indices or row offsets no longer match the stored rows.
        """
        self._check_ready()
        check_range(block.start, block.n, self._n_rows, "row")
        validate_buffer_kind(block.values.dtype)
        lo, hi = self._span(block.start, block.n)
        rows = f"[{block.start}, {block.start + block.n})"
        if block.values.size != hi - lo:
            raise DimensionMismatchError(
                f"Sparse block holds {block.values.size} values, rows {rows} store {hi - lo}"
            )
        offsets = (
            self._row_offsets[block.start:block.start + block.n + 1]
            - self._row_offsets[block.start] + self._index_base.value
        )
        if not np.array_equal(np.asarray(block.row_offsets).reshape(-1), offsets):
            raise DimensionMismatchError(f"Sparse block row offsets differ from rows {rows}")
        if not np.array_equal(
            np.asarray(block.column_indices).reshape(-1), self._column_indices[lo:hi]
        ):
            raise DimensionMismatchError(f"Sparse block column indices differ from rows {rows}")
        down_cast(block.values.reshape(-1), self._values, hi - lo, offset=lo)

    # =========================================================================
    # Copy & Serialization
    # =========================================================================

    def copy(self) -> 'CSRStorage':
        storage = CSRStorage(
            self._n_rows, self._n_columns, self._kind,
            self._index_base, self._mutable, self._dictionary.copy(),
        )
        if self._values is not None:
            storage._values = self._values.copy()
            storage._column_indices = self._column_indices.copy()
            storage._row_offsets = self._row_offsets.copy()
            storage._checked = self._checked
            storage._ownership = Ownership.OWNED
        return storage

    def _serialize_impl(self, archive: OutputArchive) -> None:
        self._write_header(archive)
        archive.write_kind(self._kind)
        archive.write_uint8(self._index_base.value)
        archive.write_bool(self._mutable)
        if self._values is not None:
            archive.write_array(self._values)
            archive.write_array(self._column_indices)
            archive.write_array(self._row_offsets)

    @classmethod
    def _deserialize_impl(cls, archive: InputArchive) -> 'CSRStorage':
        n_rows, n_columns, dictionary, allocated = cls._read_header(archive)
        kind = archive.read_kind()
        index_base = IndexBase(archive.read_uint8())
        mutable = archive.read_bool()
        storage = cls(n_rows, n_columns, kind, index_base, mutable, dictionary)
        if allocated:
            values = archive.read_array()
            column_indices = archive.read_array()
            row_offsets = archive.read_array()
            storage.set_arrays(values, column_indices, row_offsets)
            storage._ownership = Ownership.OWNED
        return storage
