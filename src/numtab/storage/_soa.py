"""
Dense Column-Major Storage (SOA)

One independent array per column, each of that column's declared kind.
Columns may be of different kinds, so the dictionary decides how each
column is stored and cast.

Row blocks are assembled column by column with the strided-buffer casts:
column ``c`` of the block is scattered to ``out[c::cols]``.

Example:
    >>> storage = SOAStorage(3)
    >>> storage.set_array(np.array([1, 2, 3], dtype=np.int32), 0)
    >>> storage.set_array(np.array([.5, .25, .125]), 1)
    >>> storage.get_block_of_rows(0, 3)
    array([[1.   , 0.5  ],
           [2.   , 0.25 ],
           [3.   , 0.125]])
"""

import logging
from typing import List, Optional

import numpy as np

from .._backend import StorageLayout, Ownership
from .._casting import (
    convert,
    up_cast,
    down_cast,
    up_cast_with_buffer_stride,
    down_cast_with_buffer_stride,
)
from .._dictionary import DataDictionary
from .._dtypes import kind_of_array, normalize_kind
from ..errors import DimensionMismatchError, TypeMismatchError, check_index
from ..serialization import InputArchive, OutputArchive, register_serializable
from ._base import StorageBackend

__all__ = ['SOAStorage']

logger = logging.getLogger("numtab.storage")


@register_serializable
class SOAStorage(StorageBackend):
    """
    Structure-of-arrays storage.

    The storage counts as allocated once every column has an array, either
    from ``allocate_data_memory()`` or bound one by one with ``set_array()``.
    """

    serialization_tag = 11

    def __init__(
        self,
        n_rows: int,
        n_columns: Optional[int] = None,
        dictionary: Optional[DataDictionary] = None,
    ):
        if n_columns is None:
            n_columns = 0 if dictionary is None else len(dictionary)
        super().__init__(n_rows, n_columns, dictionary)
        self._arrays: List[Optional[np.ndarray]] = [None] * self._n_columns
        self._allocated = False

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def layout(self) -> StorageLayout:
        return StorageLayout.SOA

    @property
    def is_allocated(self) -> bool:
        return self._allocated

    @property
    def nbytes(self) -> int:
        return sum(a.nbytes for a in self._arrays if a is not None)

    @property
    def arrays(self) -> List[Optional[np.ndarray]]:
        """Live column arrays (None for unbound columns)."""
        return list(self._arrays)

    def get_array(self, column: int) -> Optional[np.ndarray]:
        check_index(column, self._n_columns, "column")
        return self._arrays[column]

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def set_array(self, array: np.ndarray, column: int) -> None:
        """
        Bind caller memory as the array of ``column``.

        The column's numeric kind is declared from the array's kind. A
        C-contiguous 1D array is used in place.

        Raises:
            OutOfRangeError: If ``column`` is invalid.
            DimensionMismatchError: If ``len(array) != rows``.
            TypeMismatchError: If the array kind is unsupported.
        """
        check_index(column, self._n_columns, "column")
        array = np.asarray(array)
        if array.ndim != 1 or array.shape[0] != self._n_rows:
            raise DimensionMismatchError(
                f"Column array of shape {array.shape} does not match {self._n_rows} rows"
            )
        kind = kind_of_array(array)
        if not array.flags.c_contiguous:
            array = np.ascontiguousarray(array)
        self._dictionary.get_feature(column).set_type(kind)
        self._arrays[column] = array
        self._ownership = Ownership.BORROWED
        self._allocated = all(a is not None for a in self._arrays)

    def set_column_kind(self, column: int, kind) -> None:
        """
        Declare the kind of ``column``, converting its array if one is bound.

        Converted values follow the narrowing policy; the converted array is
        owned by the storage.
        """
        check_index(column, self._n_columns, "column")
        kind = normalize_kind(kind)
        self._dictionary.get_feature(column).set_type(kind)
        array = self._arrays[column]
        if array is not None and kind_of_array(array) != kind:
            self._arrays[column] = convert(array, kind)
            logger.debug(f"Converted SOA column {column} to {kind.value}")

    def allocate_data_memory(self) -> None:
        """
        Allocate one array per column of the column's declared kind.

        Raises:
            TypeMismatchError: If a column has no numeric kind.
        """
        kinds = []
        for index, feature in enumerate(self._dictionary):
            if not feature.is_typed:
                raise TypeMismatchError(
                    f"column {index} has no numeric kind; set its type before allocating"
                )
            kinds.append(feature.numeric_kind)
        self._arrays = [self._new_array(self._n_rows, kind) for kind in kinds]
        self._allocated = True
        self._ownership = Ownership.OWNED
        logger.debug(f"Allocated SOA storage {self.shape}")

    def free_data_memory(self) -> None:
        self._arrays = [None] * self._n_columns
        self._allocated = False
        self._ownership = Ownership.NONE
        logger.debug(f"Freed SOA storage {self.shape}")

    def resize(self, n_rows: int, n_columns: int) -> None:
        if n_rows < 0 or n_columns < 0:
            raise DimensionMismatchError(
                f"Dimensions must be non-negative, got ({n_rows}, {n_columns})"
            )
        if not self.is_allocated:
            self._n_rows = int(n_rows)
            self._n_columns = int(n_columns)
            self._arrays = [None] * self._n_columns
            logger.debug(f"Resized SOA storage to {self.shape}")
            return
        for index in range(n_columns):
            if not self._dictionary.get_feature(index).is_typed:
                raise TypeMismatchError(
                    f"column {index} has no numeric kind; set its type before allocating"
                )
        if n_rows != self._n_rows:
            self._n_rows = int(n_rows)
            self._n_columns = int(n_columns)
            self.allocate_data_memory()
            return
        # Same row count: existing columns keep their arrays
        kept = self._arrays[:n_columns]
        for index in range(len(kept), n_columns):
            kind = self._dictionary.get_feature(index).numeric_kind
            kept.append(self._new_array(self._n_rows, kind))
        self._arrays = kept
        self._n_columns = int(n_columns)
        logger.debug(f"Resized SOA storage to {self.shape}")

    # =========================================================================
    # Layout Hooks
    # =========================================================================

    def _column_array(self, column: int) -> np.ndarray:
        array = self._arrays[column]
        declared = self._dictionary.get_feature(column).numeric_kind
        if declared != kind_of_array(array):
            declared_name = declared.value if declared is not None else "untyped"
            raise TypeMismatchError(
                f"column {column} is declared {declared_name} but stored as "
                f"{array.dtype.name}"
            )
        return array

    def _read_rows(self, start, n, out):
        columns = [self._column_array(c) for c in range(self._n_columns)]
        for c, array in enumerate(columns):
            up_cast_with_buffer_stride(array, out, n, start, c, self._n_columns)

    def _write_rows(self, start, n, flat):
        columns = [self._column_array(c) for c in range(self._n_columns)]
        for c, array in enumerate(columns):
            down_cast_with_buffer_stride(flat, array, n, start, c, self._n_columns)

    def _read_column(self, column, start, n, out):
        up_cast(self._column_array(column), out, n, offset=start)

    def _write_column(self, column, start, n, flat):
        down_cast(flat, self._column_array(column), n, offset=start)

    def _store_column(self, column, start, values):
        array = self._column_array(column)
        array[start:start + values.size] = convert(values, kind_of_array(array))

    def _fill(self, value):
        for c in range(self._n_columns):
            array = self._column_array(c)
            array[:] = self._converted_scalar(value, kind_of_array(array))

    def copy(self) -> 'SOAStorage':
        storage = SOAStorage(self._n_rows, self._n_columns, self._dictionary.copy())
        storage._arrays = [None if a is None else a.copy() for a in self._arrays]
        storage._allocated = self._allocated
        if self.is_allocated:
            storage._ownership = Ownership.OWNED
        return storage

    # =========================================================================
    # Serialization
    # =========================================================================

    def _serialize_impl(self, archive: OutputArchive) -> None:
        self._write_header(archive)
        if self.is_allocated:
            for array in self._arrays:
                archive.write_array(array)

    @classmethod
    def _deserialize_impl(cls, archive: InputArchive) -> 'SOAStorage':
        n_rows, n_columns, dictionary, allocated = cls._read_header(archive)
        storage = cls(n_rows, n_columns, dictionary)
        if allocated:
            storage._arrays = [archive.read_array() for _ in range(n_columns)]
            storage._allocated = True
            storage._ownership = Ownership.OWNED
        return storage
