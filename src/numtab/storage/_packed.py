"""
Packed Symmetric Storage

An ``n x n`` symmetric matrix stored as one triangle of ``n * (n + 1) / 2``
elements. Elements ``(i, j)`` and ``(j, i)`` map to the same packed index,
so the two always read the same value.

Index Convention:
    Upper (row-wise upper triangle, ``i <= j``)::

        index(i, j) = i * n - i * (i - 1) / 2 + (j - i)

    Lower (row-wise lower triangle, ``i >= j``)::

        index(i, j) = i * (i + 1) / 2 + j

    For ``n = 3`` the upper layout stores ``(0,0) (0,1) (0,2) (1,1) (1,2)
    (2,2)``.

Release Rule:
    A released row block writes every element it holds. When both
    ``(i, j)`` and ``(j, i)`` are inside the block, the element from the
    stored triangle is the one kept.

Example:
    >>> storage = PackedSymmetricStorage(3, data=np.arange(1., 7.))
    >>> storage.get_block_of_rows(0, 3)
    array([[1., 2., 3.],
           [2., 4., 5.],
           [3., 5., 6.]])
"""

import logging
from typing import Optional

import numpy as np

from .._backend import StorageLayout, Ownership
from .._casting import convert, up_cast, down_cast
from .._dictionary import DataDictionary
from .._dtypes import NumericKind, float64, normalize_kind, kind_of_array, validate_buffer_kind
from ..errors import DimensionMismatchError, TypeMismatchError
from ..serialization import InputArchive, OutputArchive, register_serializable
from ._base import StorageBackend

__all__ = ['PackedSymmetricStorage', 'packed_size', 'packed_index']

logger = logging.getLogger("numtab.storage")


def packed_size(n: int) -> int:
    """Number of stored elements for an ``n x n`` symmetric matrix."""
    return n * (n + 1) // 2


def packed_index(i, j, n: int, lower: bool = False):
    """
    Packed index of element ``(i, j)``.

    Accepts scalars or broadcastable integer arrays; ``(i, j)`` and
    ``(j, i)`` give the same result.
    """
    i = np.asarray(i, dtype=np.int64)
    j = np.asarray(j, dtype=np.int64)
    lo = np.minimum(i, j)
    hi = np.maximum(i, j)
    if lower:
        return hi * (hi + 1) // 2 + lo
    return lo * n - lo * (lo - 1) // 2 + (hi - lo)


@register_serializable
class PackedSymmetricStorage(StorageBackend):
    """
    Upper or lower packed symmetric storage of one numeric kind.

    The triangle (upper or lower) is fixed at construction.
    """

    serialization_tag = 12

    def __init__(
        self,
        n: int,
        kind=float64,
        lower: bool = False,
        dictionary: Optional[DataDictionary] = None,
        data: Optional[np.ndarray] = None,
    ):
        self._kind = normalize_kind(kind)
        self._lower = bool(lower)
        super().__init__(n, n, dictionary)
        for feature in self._dictionary:
            if not feature.is_typed:
                feature.set_type(self._kind)
        self._data: Optional[np.ndarray] = None
        if data is not None:
            self.set_packed_array(data)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def layout(self) -> StorageLayout:
        if self._lower:
            return StorageLayout.LOWER_PACKED_SYMMETRIC
        return StorageLayout.UPPER_PACKED_SYMMETRIC

    @property
    def lower(self) -> bool:
        return self._lower

    @property
    def kind(self) -> NumericKind:
        return self._kind

    @property
    def is_allocated(self) -> bool:
        return self._data is not None

    @property
    def nbytes(self) -> int:
        return 0 if self._data is None else self._data.nbytes

    @property
    def packed_size(self) -> int:
        return packed_size(self._n_rows)

    def index(self, i, j):
        """Packed index of ``(i, j)`` under this storage's convention."""
        return packed_index(i, j, self._n_rows, self._lower)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def set_packed_array(self, array: np.ndarray) -> None:
        """
        Bind caller memory as the packed triangle.

        Raises:
            DimensionMismatchError: If ``array.size != n * (n + 1) / 2``.
        """
        array = np.asarray(array)
        if array.size != self.packed_size:
            raise DimensionMismatchError(
                f"Packed array of {array.size} elements does not match "
                f"n={self._n_rows} (expected {self.packed_size})"
            )
        if kind_of_array(array) != self._kind or not array.flags.c_contiguous:
            self._data = np.ascontiguousarray(array, dtype=self._kind.dtype).reshape(-1)
            self._ownership = Ownership.OWNED
        else:
            self._data = array.reshape(-1)
            self._ownership = Ownership.BORROWED

    def allocate_data_memory(self) -> None:
        self._data = self._new_array(self.packed_size, self._kind)
        self._ownership = Ownership.OWNED
        logger.debug(f"Allocated {self.layout.value} storage n={self._n_rows}")

    def free_data_memory(self) -> None:
        self._data = None
        self._ownership = Ownership.NONE
        logger.debug(f"Freed {self.layout.value} storage n={self._n_rows}")

    def resize(self, n_rows: int, n_columns: int) -> None:
        """
        Resize to ``n x n``.

        Raises:
            DimensionMismatchError: If ``n_rows != n_columns``.
        """
        if n_rows != n_columns:
            raise DimensionMismatchError(
                f"Packed symmetric storage must stay square, got ({n_rows}, {n_columns})"
            )
        super().resize(n_rows, n_columns)
        for feature in self._dictionary:
            if not feature.is_typed:
                feature.set_type(self._kind)

    # =========================================================================
    # Packed Access
    # =========================================================================

    def get_packed_array(self, dtype=float64) -> np.ndarray:
        """Read the whole triangle into a new buffer of ``dtype``."""
        kind = validate_buffer_kind(dtype)
        self._check_ready()
        out = np.empty(self.packed_size, dtype=kind.dtype)
        return up_cast(self._data, out, out.size)

    def release_packed_array(self, buffer: np.ndarray) -> None:
        """
        Write a whole triangle back.

        Raises:
            DimensionMismatchError: If the buffer size is not ``n * (n + 1) / 2``.
            TypeMismatchError: If the buffer kind is unsupported.
        """
        self._check_ready()
        if not isinstance(buffer, np.ndarray):
            raise TypeMismatchError(
                f"Packed buffer must be a numpy array, got {type(buffer).__name__}"
            )
        validate_buffer_kind(buffer.dtype)
        if buffer.size != self.packed_size:
            raise DimensionMismatchError(
                f"Packed buffer of {buffer.size} elements, expected {self.packed_size}"
            )
        down_cast(np.ascontiguousarray(buffer).reshape(-1), self._data, buffer.size)

    # =========================================================================
    # Layout Hooks
    # =========================================================================

    def _block_indices(self, start: int, n: int):
        rows = np.arange(start, start + n, dtype=np.int64)[:, None]
        cols = np.arange(self._n_columns, dtype=np.int64)[None, :]
        stored = (rows >= cols) if self._lower else (rows <= cols)
        return self.index(rows, cols).reshape(-1), stored.reshape(-1)

    def _read_rows(self, start, n, out):
        idx, _ = self._block_indices(start, n)
        out[:] = convert(self._data[idx], kind_of_array(out))

    def _write_rows(self, start, n, flat):
        idx, stored = self._block_indices(start, n)
        values = convert(flat, self._kind)
        # Mirrored elements first so the stored triangle overwrites them
        mirrored = ~stored
        self._data[idx[mirrored]] = values[mirrored]
        self._data[idx[stored]] = values[stored]

    def _read_column(self, column, start, n, out):
        idx = self.index(np.arange(start, start + n), column)
        out[:] = convert(self._data[idx], kind_of_array(out))

    def _write_column(self, column, start, n, flat):
        idx = self.index(np.arange(start, start + n), column)
        self._data[idx] = convert(flat, self._kind)

    def _fill(self, value):
        self._data[:] = self._converted_scalar(value, self._kind)

    def copy(self) -> 'PackedSymmetricStorage':
        storage = PackedSymmetricStorage(
            self._n_rows, self._kind, self._lower, self._dictionary.copy()
        )
        if self._data is not None:
            storage._data = self._data.copy()
            storage._ownership = Ownership.OWNED
        return storage

    # =========================================================================
    # Serialization
    # =========================================================================

    def _serialize_impl(self, archive: OutputArchive) -> None:
        self._write_header(archive)
        archive.write_kind(self._kind)
        archive.write_bool(self._lower)
        if self._data is not None:
            archive.write_array(self._data)

    @classmethod
    def _deserialize_impl(cls, archive: InputArchive) -> 'PackedSymmetricStorage':
        n_rows, n_columns, dictionary, allocated = cls._read_header(archive)
        kind = archive.read_kind()
        lower = archive.read_bool()
        storage = cls(n_rows, kind, lower, dictionary)
        if allocated:
            storage.set_packed_array(archive.read_array())
            storage._ownership = Ownership.OWNED
        return storage
