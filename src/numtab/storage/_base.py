"""
Storage Backend Base Class

This module defines the contract every storage layout implements. Tables
talk to their storage exclusively through this interface, so a caller that
reads and writes blocks never sees the layout behind them.

Type Hierarchy:

    StorageBackend (ABC)
    ├── HomogenStorage          - Dense row-major (AOS), one kind
    ├── SOAStorage              - Dense column-major, one array per column
    ├── PackedSymmetricStorage  - Upper/lower packed triangle, square only
    └── CSRStorage              - Compressed sparse row

Design:

1. Template Methods: The public block accessors validate every argument
   (allocation state, dictionary sync, ranges, buffer kind and shape)
   before any data moves, then call the layout hooks ``_read_rows``,
   ``_write_rows``, ``_read_column`` and ``_write_column``. A rejected
   request therefore never applies partially.

2. Row-Major Buffers: Row blocks are always returned as ``(n, cols)``
   row-major arrays whatever the layout.

3. Casting: Stored values are converted to the requested buffer kind on
   read and back to the stored kind on release through the cast tables in
   :mod:`numtab._casting`.

Example:

    storage = HomogenStorage(3, 2, kind='float64')
    storage.allocate_data_memory()
    block = storage.get_block_of_rows(1, 2, 'float32')   # shape (2, 2)
    block[:] = 7
    storage.release_block_of_rows(1, 2, block)
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional, Tuple, Any

import numpy as np

from .._backend import StorageLayout, Ownership, StorageInfo
from .._casting import convert
from .._config import config
from .._dictionary import DataDictionary
from .._dtypes import NumericKind, float64, kind_of_array, validate_buffer_kind
from ..errors import (
    DimensionMismatchError,
    SerializationError,
    TypeMismatchError,
    UnallocatedError,
    check_index,
    check_range,
)
from ..serialization import InputArchive, OutputArchive, SerializableBase

__all__ = ['StorageBackend']

logger = logging.getLogger("numtab.storage")


class StorageBackend(SerializableBase, ABC):
    """
    Abstract base class for all storage layouts.

    Required Properties (subclasses must implement):
        layout: Storage layout enumeration value
        is_allocated: Whether backing arrays exist
        nbytes: Bytes held by the backing arrays

    Required Methods (subclasses must implement):
        allocate_data_memory(), free_data_memory()
        _read_rows, _write_rows, _read_column, _write_column
        _fill(value), copy()

    Attributes:
        _n_rows: Number of rows.
        _n_columns: Number of columns.
        _dictionary: Column descriptors, shared with the owning table.
        _ownership: Who allocated the backing arrays.
    """

    def __init__(self, n_rows: int, n_columns: int, dictionary: Optional[DataDictionary] = None):
        if n_rows < 0 or n_columns < 0:
            raise DimensionMismatchError(
                f"Dimensions must be non-negative, got ({n_rows}, {n_columns})"
            )
        self._n_rows = int(n_rows)
        self._n_columns = int(n_columns)
        if dictionary is None:
            dictionary = DataDictionary(n_columns)
        elif len(dictionary) != n_columns:
            raise DimensionMismatchError(
                f"Dictionary has {len(dictionary)} features for {n_columns} columns"
            )
        self._dictionary = dictionary
        self._ownership = Ownership.NONE

    # =========================================================================
    # Abstract Properties
    # =========================================================================

    @property
    @abstractmethod
    def layout(self) -> StorageLayout:
        """Storage layout."""
        ...

    @property
    @abstractmethod
    def is_allocated(self) -> bool:
        """Whether backing arrays exist."""
        ...

    @property
    @abstractmethod
    def nbytes(self) -> int:
        """Bytes held by the backing arrays (0 when unallocated)."""
        ...

    # =========================================================================
    # Derived Properties
    # =========================================================================

    @property
    def n_rows(self) -> int:
        return self._n_rows

    @property
    def n_columns(self) -> int:
        return self._n_columns

    @property
    def shape(self) -> Tuple[int, int]:
        return (self._n_rows, self._n_columns)

    @property
    def dictionary(self) -> DataDictionary:
        return self._dictionary

    @property
    def ownership(self) -> Ownership:
        return self._ownership

    @property
    def homogeneous(self) -> bool:
        """Whether all columns share one stored kind."""
        return self.kind is not None

    @property
    def kind(self) -> Optional[NumericKind]:
        """Stored kind for homogeneous layouts, None otherwise."""
        return None

    def set_dictionary(self, dictionary: DataDictionary) -> None:
        """
        Replace the column descriptors.

        Homogeneous layouts type untyped features with the storage kind.

        Raises:
            DimensionMismatchError: If the feature count differs from the
                column count.
            TypeMismatchError: If a homogeneous layout gets a feature of
                another kind.
        """
        if len(dictionary) != self._n_columns:
            raise DimensionMismatchError(
                f"Dictionary has {len(dictionary)} features for {self._n_columns} columns"
            )
        kind = self.kind
        if kind is not None:
            for index, feature in enumerate(dictionary):
                if feature.is_typed and feature.numeric_kind != kind:
                    raise TypeMismatchError(
                        f"column {index} is declared {feature.numeric_kind.value} but "
                        f"{self.layout.value} storage holds {kind.value}"
                    )
            for feature in dictionary:
                if not feature.is_typed:
                    feature.set_type(kind)
        self._dictionary = dictionary

    def storage_info(self) -> StorageInfo:
        return StorageInfo(
            layout=self.layout,
            ownership=self._ownership,
            shape=self.shape,
            nbytes=self.nbytes,
            kind=self.kind.value if self.kind is not None else None,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @abstractmethod
    def allocate_data_memory(self) -> None:
        """(Re)allocate backing arrays sized to the current dimensions."""
        ...

    @abstractmethod
    def free_data_memory(self) -> None:
        """Drop the backing arrays; block access fails until re-allocated."""
        ...

    def resize(self, n_rows: int, n_columns: int) -> None:
        """
        Change the dimensions.

        Re-allocates if storage exists; prior contents do not survive.

        Raises:
            DimensionMismatchError: If a dimension is negative or the layout
                cannot take the new shape.
        """
        if n_rows < 0 or n_columns < 0:
            raise DimensionMismatchError(
                f"Dimensions must be non-negative, got ({n_rows}, {n_columns})"
            )
        was_allocated = self.is_allocated
        self._n_rows = int(n_rows)
        self._n_columns = int(n_columns)
        logger.debug(f"Resized {self.layout.value} storage to {self.shape}")
        if was_allocated:
            self.allocate_data_memory()

    def _new_array(self, size: int, kind: NumericKind) -> np.ndarray:
        if config.allocation.zero_fill:
            return np.zeros(size, dtype=kind.dtype)
        return np.empty(size, dtype=kind.dtype)

    # =========================================================================
    # Validation
    # =========================================================================

    def _check_ready(self) -> None:
        """Storage allocated and dictionary in sync with the column count."""
        if not self.is_allocated:
            raise UnallocatedError(
                f"{self.layout.value} storage of shape {self.shape} is not allocated"
            )
        if len(self._dictionary) != self._n_columns:
            raise DimensionMismatchError(
                f"Dictionary has {len(self._dictionary)} features but storage "
                f"has {self._n_columns} columns"
            )
        kind = self.kind
        if kind is None:
            return
        for index, feature in enumerate(self._dictionary):
            if feature.numeric_kind is not None and feature.numeric_kind != kind:
                raise TypeMismatchError(
                    f"column {index} is declared {feature.numeric_kind.value} but "
                    f"{self.layout.value} storage holds {kind.value}"
                )

    @staticmethod
    def _coerce_buffer(buffer: Any, n: int, n_columns: int) -> np.ndarray:
        """Validate a caller buffer and return it as a flat row-major array."""
        if not isinstance(buffer, np.ndarray):
            raise TypeMismatchError(
                f"Block buffer must be a numpy array, got {type(buffer).__name__}"
            )
        validate_buffer_kind(buffer.dtype)
        if buffer.ndim == 2:
            if buffer.shape != (n, n_columns):
                raise DimensionMismatchError(
                    f"Buffer shape {buffer.shape} does not match block ({n}, {n_columns})"
                )
        elif buffer.ndim != 1 or buffer.size != n * n_columns:
            raise DimensionMismatchError(
                f"Buffer of shape {buffer.shape} cannot hold a ({n}, {n_columns}) block"
            )
        return np.ascontiguousarray(buffer).reshape(-1)

    # =========================================================================
    # Block Access
    # =========================================================================

    def get_block_of_rows(self, start: int, n: int, dtype=float64) -> np.ndarray:
        """
        Read ``n`` rows starting at ``start`` into a new buffer.

        Args:
            start: First row.
            n: Number of rows.
            dtype: Buffer kind (float64, float32 or int32).

        Returns:
            Row-major array of shape ``(n, n_columns)``.

        Raises:
            OutOfRangeError: If ``[start, start + n)`` is not within the rows.
            TypeMismatchError: If ``dtype`` is not a buffer kind or a column
                has no numeric kind.
            UnallocatedError: If storage is not allocated.
        """
        kind = validate_buffer_kind(dtype)
        self._check_ready()
        check_range(start, n, self._n_rows, "row")
        out = np.empty(n * self._n_columns, dtype=kind.dtype)
        if out.size:
            self._read_rows(start, n, out)
        return out.reshape(n, self._n_columns)

    def release_block_of_rows(self, start: int, n: int, buffer: np.ndarray) -> None:
        """
        Write a row block back, down-casting each column to its stored kind.

        Args:
            start: First row.
            n: Number of rows.
            buffer: Array of shape ``(n, n_columns)`` or flat ``n * n_columns``.

        Raises:
            OutOfRangeError: If the row range is invalid.
            DimensionMismatchError: If the buffer shape does not match.
            TypeMismatchError: If the buffer kind is unsupported.
            UnsupportedOperationError: If the layout cannot take dense writes.
        """
        self._check_ready()
        check_range(start, n, self._n_rows, "row")
        flat = self._coerce_buffer(buffer, n, self._n_columns)
        if flat.size:
            self._write_rows(start, n, flat)

    def get_block_of_column_values(self, column: int, start: int, n: int, dtype=float64) -> np.ndarray:
        """
        Read ``n`` values of one column starting at row ``start``.

        Returns:
            Array of shape ``(n,)``.

        Raises:
            OutOfRangeError: If the column or row range is invalid.
        """
        kind = validate_buffer_kind(dtype)
        self._check_ready()
        check_index(column, self._n_columns, "column")
        check_range(start, n, self._n_rows, "row")
        out = np.empty(n, dtype=kind.dtype)
        if n:
            self._read_column(column, start, n, out)
        return out

    def release_block_of_column_values(self, column: int, start: int, n: int, buffer: np.ndarray) -> None:
        """Write ``n`` values of one column back (see :meth:`release_block_of_rows`)."""
        self._check_ready()
        check_index(column, self._n_columns, "column")
        check_range(start, n, self._n_rows, "row")
        flat = self._coerce_buffer(buffer, n, 1)
        if n:
            self._write_column(column, start, n, flat)

    def set_column_values(self, column: int, start: int, values: np.ndarray) -> None:
        """
        Write ``values`` of any numeric kind into one column from row ``start``.

        Unlike block release the values are not limited to buffer kinds;
        they are converted straight to the stored kind, so int64 values
        reach int64 storage exactly.

        Raises:
            OutOfRangeError: If the column or row range is invalid.
            TypeMismatchError: If ``values`` has an unsupported kind.
        """
        self._check_ready()
        check_index(column, self._n_columns, "column")
        values = np.ascontiguousarray(values).reshape(-1)
        kind_of_array(values)
        check_range(start, values.size, self._n_rows, "row")
        if values.size:
            self._store_column(column, start, values)

    def _store_column(self, column: int, start: int, values: np.ndarray) -> None:
        # Layouts whose _write_column converts with convert() accept any kind
        self._write_column(column, start, values.size, values)

    def assign(self, value) -> None:
        """
        Set every stored element to ``value``.

        The constant is converted per column with the narrowing policy.
        """
        self._check_ready()
        self._fill(np.asarray([value]))

    # =========================================================================
    # Layout Hooks
    # =========================================================================

    @abstractmethod
    def _read_rows(self, start: int, n: int, out: np.ndarray) -> None:
        """Fill flat row-major ``out`` with rows ``[start, start + n)``."""
        ...

    @abstractmethod
    def _write_rows(self, start: int, n: int, flat: np.ndarray) -> None:
        ...

    @abstractmethod
    def _read_column(self, column: int, start: int, n: int, out: np.ndarray) -> None:
        ...

    @abstractmethod
    def _write_column(self, column: int, start: int, n: int, flat: np.ndarray) -> None:
        ...

    @abstractmethod
    def _fill(self, value: np.ndarray) -> None:
        ...

    @abstractmethod
    def copy(self) -> 'StorageBackend':
        """Deep copy with owned arrays and a copied dictionary."""
        ...

    @staticmethod
    def _converted_scalar(value: np.ndarray, kind: NumericKind) -> np.ndarray:
        return convert(value, kind)[0]

    # =========================================================================
    # Serialization Helpers
    # =========================================================================

    def _write_header(self, archive: OutputArchive) -> None:
        archive.write_uint64(self._n_rows)
        archive.write_uint64(self._n_columns)
        archive.write_object(self._dictionary)
        archive.write_bool(self.is_allocated)

    @staticmethod
    def _read_header(archive: InputArchive) -> Tuple[int, int, DataDictionary, bool]:
        n_rows = archive.read_uint64()
        n_columns = archive.read_uint64()
        dictionary = archive.read_object()
        if not isinstance(dictionary, DataDictionary):
            raise SerializationError(
                f"Expected DataDictionary, found {type(dictionary).__name__}"
            )
        allocated = archive.read_bool()
        return n_rows, n_columns, dictionary, allocated

    # =========================================================================
    # Magic Methods
    # =========================================================================

    def __repr__(self) -> str:
        state = "allocated" if self.is_allocated else "unallocated"
        return f"{self.__class__.__name__}(shape={self.shape}, {state})"
