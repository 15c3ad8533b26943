"""
Numeric Table

The table facade composes a :class:`DataDictionary` with one storage
backend and exposes the block-access contract algorithms work against.

Type Hierarchy:

    TableBase (ABC)
    ├── NumericTable        - One dictionary + one storage backend
    └── MergedNumericTable  - Side-by-side column composition of tables

Design:

1. Column Sync: The dictionary and the storage always agree on the
   column count. ``set_number_of_columns`` resizes both; block access
   raises ``DimensionMismatchError`` if the dictionary was resized behind
   the table's back.

2. Scoped Borrows: ``block_of_rows`` / ``block_of_column_values`` yield a
   buffer and release it when the ``with`` block ends. READ_ONLY scopes
   and scopes left by an exception do not write back. Structural changes
   while a scope is open raise ``BorrowConflictError``.

3. Scoped Lifetime: A table is a context manager; leaving its ``with``
   block frees the storage.

Example:

    with NumericTable.homogen(3, 2) as table:
        with table.block_of_rows(0, 3) as block:
            block[:] = [[1, 2], [3, 4], [5, 6]]
        table.get_block_of_rows(1, 2)      # [[3., 4.], [5., 6.]]
"""

import logging
from abc import abstractmethod
from contextlib import contextmanager
from typing import Iterator, Optional, Sequence, Tuple, Union, TYPE_CHECKING

import numpy as np

from ._backend import StorageLayout, ReadWriteMode, IndexBase, StorageInfo
from ._dictionary import DataDictionary, DataFeature
from ._dtypes import NumericKind, float64, normalize_kind
from ._ownership import BorrowTracker
from .errors import (
    DimensionMismatchError,
    SerializationError,
    TypeMismatchError,
    UnsupportedOperationError,
    check_range,
)
from .serialization import (
    InputArchive,
    OutputArchive,
    SerializableBase,
    register_serializable,
)
from .storage import (
    StorageBackend,
    HomogenStorage,
    SOAStorage,
    PackedSymmetricStorage,
    CSRStorage,
    CSRBlock,
)

if TYPE_CHECKING:
    from scipy.sparse import spmatrix

__all__ = ['TableBase', 'NumericTable']

logger = logging.getLogger("numtab.table")


# =============================================================================
# Table Base
# =============================================================================

class TableBase(SerializableBase):
    """
    Abstract base class for tables.

    Required Methods (subclasses must implement):
        get_number_of_rows(), get_number_of_columns()
        get_block_of_rows(), release_block_of_rows()
        get_block_of_column_values(), release_block_of_column_values()
        set_column_values()
        dictionary, layout, is_allocated, copy()
    """

    def __init__(self):
        self._tracker = BorrowTracker()

    # =========================================================================
    # Abstract Interface
    # =========================================================================

    @abstractmethod
    def get_number_of_rows(self) -> int:
        ...

    @abstractmethod
    def get_number_of_columns(self) -> int:
        ...

    @property
    @abstractmethod
    def dictionary(self) -> DataDictionary:
        ...

    @property
    @abstractmethod
    def layout(self) -> StorageLayout:
        ...

    @property
    @abstractmethod
    def is_allocated(self) -> bool:
        ...

    @abstractmethod
    def get_block_of_rows(self, start: int, n: int, dtype=float64) -> np.ndarray:
        ...

    @abstractmethod
    def release_block_of_rows(self, start: int, n: int, buffer: np.ndarray) -> None:
        ...

    @abstractmethod
    def get_block_of_column_values(self, column: int, start: int, n: int, dtype=float64) -> np.ndarray:
        ...

    @abstractmethod
    def release_block_of_column_values(self, column: int, start: int, n: int, buffer: np.ndarray) -> None:
        ...

    @abstractmethod
    def set_column_values(self, column: int, start: int, values: np.ndarray) -> None:
        """Write values of any numeric kind into a column, converted to its stored kind."""
        ...

    @abstractmethod
    def set_feature(self, feature, index: int) -> None:
        ...

    @abstractmethod
    def set_number_of_rows(self, n_rows: int) -> None:
        ...

    @abstractmethod
    def allocate_data_memory(self) -> None:
        ...

    @abstractmethod
    def free_data_memory(self) -> None:
        ...

    @abstractmethod
    def assign(self, value) -> None:
        ...

    @abstractmethod
    def copy(self) -> 'TableBase':
        ...

    @abstractmethod
    def _check_release_rows(self, start: int, n: int) -> None:
        """Raise exactly what ``release_block_of_rows(start, n, ...)`` would,
        without writing anything."""
        ...

    # =========================================================================
    # Derived Properties
    # =========================================================================

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.get_number_of_rows(), self.get_number_of_columns())

    @property
    def n_rows(self) -> int:
        return self.get_number_of_rows()

    @property
    def n_columns(self) -> int:
        return self.get_number_of_columns()

    @property
    def borrows(self) -> int:
        """Number of open scoped borrows."""
        return self._tracker.active

    def get_feature(self, index: int) -> DataFeature:
        return self.dictionary.get_feature(index)

    # =========================================================================
    # Scoped Borrows
    # =========================================================================

    def _borrow(self):
        return self._tracker.borrow()

    @contextmanager
    def block_of_rows(
        self,
        start: int,
        n: int,
        dtype=float64,
        mode: Union[str, ReadWriteMode] = ReadWriteMode.READ_WRITE,
    ) -> Iterator[np.ndarray]:
        """
        Borrow rows ``[start, start + n)`` for the duration of a ``with`` block.

        Args:
            start: First row.
            n: Number of rows.
            dtype: Buffer kind.
            mode: READ_ONLY skips the write-back; WRITE_ONLY yields a
                zero-filled buffer; READ_WRITE yields current values.

        Yields:
            ``(n, n_columns)`` buffer, written back on normal exit unless
            READ_ONLY.
        """
        mode = ReadWriteMode(mode)
        with self._borrow():
            block = self.get_block_of_rows(start, n, dtype)
            if mode == ReadWriteMode.WRITE_ONLY:
                block[...] = 0
            yield block
            if mode != ReadWriteMode.READ_ONLY:
                self.release_block_of_rows(start, n, block)

    @contextmanager
    def block_of_column_values(
        self,
        column: int,
        start: int,
        n: int,
        dtype=float64,
        mode: Union[str, ReadWriteMode] = ReadWriteMode.READ_WRITE,
    ) -> Iterator[np.ndarray]:
        """Borrow ``n`` values of one column (see :meth:`block_of_rows`)."""
        mode = ReadWriteMode(mode)
        with self._borrow():
            block = self.get_block_of_column_values(column, start, n, dtype)
            if mode == ReadWriteMode.WRITE_ONLY:
                block[...] = 0
            yield block
            if mode != ReadWriteMode.READ_ONLY:
                self.release_block_of_column_values(column, start, n, block)

    # =========================================================================
    # Conversion
    # =========================================================================

    def to_numpy(self, dtype=float64) -> np.ndarray:
        """All rows as a dense ``(rows, cols)`` array of ``dtype``."""
        return self.get_block_of_rows(0, self.get_number_of_rows(), dtype)

    # =========================================================================
    # Magic Methods
    # =========================================================================

    def __len__(self) -> int:
        return self.get_number_of_rows()

    def __repr__(self) -> str:
        state = "allocated" if self.is_allocated else "unallocated"
        return (f"{self.__class__.__name__}("
                f"shape={self.shape}, layout={self.layout.value}, {state})")


# =============================================================================
# Numeric Table
# =============================================================================

@register_serializable
class NumericTable(TableBase):
    """
    A dictionary plus one storage backend behind the block-access contract.

    The table owns its backend exclusively; the backend's dictionary is the
    table's dictionary.

    Example:
        >>> table = NumericTable.from_array(np.array([[1, 2], [3, 4], [5, 6]], dtype=np.float64))
        >>> table.get_block_of_rows(1, 2)
        array([[3., 4.],
               [5., 6.]])
    """

    serialization_tag = 20

    def __init__(self, backend: StorageBackend, dictionary: Optional[DataDictionary] = None):
        super().__init__()
        if not isinstance(backend, StorageBackend):
            raise TypeMismatchError(
                f"Expected a StorageBackend, got {type(backend).__name__}"
            )
        if dictionary is not None:
            backend.set_dictionary(dictionary)
        self._backend = backend

    # =========================================================================
    # Factories
    # =========================================================================

    @classmethod
    def homogen(
        cls,
        n_rows: int,
        n_columns: int,
        kind=float64,
        allocate: bool = True,
        dictionary: Optional[DataDictionary] = None,
    ) -> 'NumericTable':
        """Dense row-major table of one kind."""
        table = cls(HomogenStorage(n_rows, n_columns, kind, dictionary))
        if allocate:
            table.allocate_data_memory()
        return table

    @classmethod
    def from_array(cls, array, kind=None, copy: bool = False) -> 'NumericTable':
        """
        Dense row-major table over a 2D array.

        The array is used in place (writes through released blocks land in
        it) unless ``copy`` is set or a conversion to ``kind`` is needed.
        """
        return cls(HomogenStorage.from_array(array, kind=kind, copy=copy))

    @classmethod
    def soa(
        cls,
        n_rows: int,
        n_columns: Optional[int] = None,
        kinds: Optional[Sequence] = None,
        dictionary: Optional[DataDictionary] = None,
        allocate: bool = True,
    ) -> 'NumericTable':
        """
        Column-major table with per-column kinds.

        Args:
            n_rows: Number of rows.
            n_columns: Number of columns (defaults to ``len(kinds)`` or the
                dictionary length).
            kinds: Per-column kinds. Columns without a kind are float64
                unless ``dictionary`` types them.
            dictionary: Column descriptors.
            allocate: Allocate one array per column.
        """
        if dictionary is None:
            if n_columns is None:
                n_columns = 0 if kinds is None else len(kinds)
            dictionary = DataDictionary(n_columns)
            for index in range(n_columns):
                kind = float64 if kinds is None else kinds[index]
                dictionary.set_feature(kind, index)
        elif kinds is not None:
            for index, kind in enumerate(kinds):
                dictionary.set_feature(kind, index)
        table = cls(SOAStorage(n_rows, n_columns, dictionary))
        if allocate:
            table.allocate_data_memory()
        return table

    @classmethod
    def from_columns(cls, columns: Sequence[np.ndarray]) -> 'NumericTable':
        """Column-major table binding one caller array per column."""
        if not columns:
            storage = SOAStorage(0, 0)
            storage.allocate_data_memory()
            return cls(storage)
        n_rows = len(columns[0])
        storage = SOAStorage(n_rows, len(columns))
        for index, column in enumerate(columns):
            storage.set_array(column, index)
        return cls(storage)

    @classmethod
    def packed_symmetric(
        cls,
        n: int,
        kind=float64,
        lower: bool = False,
        data=None,
        allocate: bool = True,
    ) -> 'NumericTable':
        """Upper (default) or lower packed symmetric ``n x n`` table."""
        table = cls(PackedSymmetricStorage(n, kind, lower, data=data))
        if data is None and allocate:
            table.allocate_data_memory()
        return table

    @classmethod
    def csr(
        cls,
        values,
        column_indices,
        row_offsets,
        n_columns: int,
        index_base: IndexBase = IndexBase.ZERO,
        mutable: bool = False,
    ) -> 'NumericTable':
        """CSR table over existing arrays (rows = ``len(row_offsets) - 1``)."""
        return cls(CSRStorage.from_arrays(
            values, column_indices, row_offsets, n_columns, index_base, mutable
        ))

    @classmethod
    def from_scipy(
        cls,
        matrix: 'spmatrix',
        index_base: IndexBase = IndexBase.ZERO,
        mutable: bool = False,
    ) -> 'NumericTable':
        """CSR table from a scipy sparse matrix."""
        return cls(CSRStorage.from_scipy(matrix, index_base, mutable))

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    @property
    def dictionary(self) -> DataDictionary:
        return self._backend.dictionary

    @property
    def layout(self) -> StorageLayout:
        return self._backend.layout

    @property
    def kind(self) -> Optional[NumericKind]:
        """Storage kind for homogeneous layouts, None for SOA."""
        return self._backend.kind

    @property
    def is_allocated(self) -> bool:
        return self._backend.is_allocated

    def storage_info(self) -> StorageInfo:
        return self._backend.storage_info()

    def get_number_of_rows(self) -> int:
        return self._backend.n_rows

    def get_number_of_columns(self) -> int:
        return self._backend.n_columns

    # =========================================================================
    # Dictionary
    # =========================================================================

    def set_feature(self, feature: Union[DataFeature, str, NumericKind], index: int) -> None:
        """
        Set the descriptor of column ``index``.

        Raises:
            OutOfRangeError: If ``index`` is not a valid column.
            TypeMismatchError: If a homogeneous layout gets another kind.
        """
        previous = self.dictionary.get_feature(index).numeric_kind
        kind = feature.numeric_kind if isinstance(feature, DataFeature) else normalize_kind(feature)
        storage_kind = self._backend.kind
        if storage_kind is not None and kind is not None and kind != storage_kind:
            raise TypeMismatchError(
                f"column {index} cannot be {kind.value} in "
                f"{self.layout.value} storage of {storage_kind.value}"
            )
        if isinstance(self._backend, SOAStorage) and kind is not None:
            self._backend.set_column_kind(index, kind)
        self.dictionary.set_feature(feature, index)
        # An untyped descriptor keeps the column's current kind
        fallback = storage_kind or previous
        if fallback is not None and not self.dictionary.get_feature(index).is_typed:
            self.dictionary.get_feature(index).set_type(fallback)

    # =========================================================================
    # Structure
    # =========================================================================

    def set_number_of_columns(self, n_columns: int, kind=None) -> None:
        """
        Resize dictionary and storage together.

        Args:
            n_columns: New column count.
            kind: Kind of added columns. Defaults to the storage kind, or
                float64 for SOA.

        Raises:
            BorrowConflictError: If scoped borrows are open.
            DimensionMismatchError: For packed and CSR layouts, whose column
                count cannot change on its own.
            TypeMismatchError: If ``kind`` differs from a homogeneous
                storage kind.
        """
        self._tracker.ensure_idle("resize columns")
        if n_columns < 0:
            raise DimensionMismatchError(f"n_columns must be non-negative, got {n_columns}")
        if n_columns == self.get_number_of_columns():
            return
        if self.layout.is_packed or self.layout == StorageLayout.CSR:
            raise DimensionMismatchError(
                f"{self.layout.value} storage cannot change its column count independently"
            )
        storage_kind = self._backend.kind
        kind = normalize_kind(kind) if kind is not None else (storage_kind or float64)
        if storage_kind is not None and kind != storage_kind:
            raise TypeMismatchError(
                f"Cannot add {kind.value} columns to {self.layout.value} storage "
                f"of {storage_kind.value}"
            )
        dictionary = self.dictionary
        old = dictionary.number_of_features
        dictionary.set_number_of_features(n_columns)
        for index in range(old, n_columns):
            dictionary.get_feature(index).set_type(kind)
        self._backend.resize(self.get_number_of_rows(), n_columns)
        logger.debug(f"Table columns {old} -> {n_columns}")

    def set_number_of_rows(self, n_rows: int) -> None:
        """
        Change the row count (re-allocating dense storage if allocated).

        Raises:
            BorrowConflictError: If scoped borrows are open.
            DimensionMismatchError: For packed and CSR layouts.
        """
        self._tracker.ensure_idle("resize rows")
        if n_rows == self.get_number_of_rows():
            return
        if self.layout.is_packed or self.layout == StorageLayout.CSR:
            raise DimensionMismatchError(
                f"{self.layout.value} storage cannot change its row count independently"
            )
        self._backend.resize(n_rows, self.get_number_of_columns())

    def allocate_data_memory(self, *args, **kwargs) -> None:
        """(Re)allocate storage; prior contents do not survive."""
        self._tracker.ensure_idle("allocate storage")
        self._backend.allocate_data_memory(*args, **kwargs)

    def free_data_memory(self) -> None:
        self._tracker.ensure_idle("free storage")
        self._backend.free_data_memory()

    # =========================================================================
    # Block Access
    # =========================================================================

    def get_block_of_rows(self, start: int, n: int, dtype=float64) -> np.ndarray:
        return self._backend.get_block_of_rows(start, n, dtype)

    def release_block_of_rows(self, start: int, n: int, buffer: np.ndarray) -> None:
        self._backend.release_block_of_rows(start, n, buffer)

    def get_block_of_column_values(self, column: int, start: int, n: int, dtype=float64) -> np.ndarray:
        return self._backend.get_block_of_column_values(column, start, n, dtype)

    def release_block_of_column_values(self, column: int, start: int, n: int, buffer: np.ndarray) -> None:
        self._backend.release_block_of_column_values(column, start, n, buffer)

    def set_column_values(self, column: int, start: int, values: np.ndarray) -> None:
        self._backend.set_column_values(column, start, values)

    def assign(self, value) -> None:
        """Set every stored element to ``value``."""
        self._backend.assign(value)

    def _check_release_rows(self, start: int, n: int) -> None:
        self._backend._check_ready()
        check_range(start, n, self.get_number_of_rows(), "row")
        if isinstance(self._backend, CSRStorage):
            self._backend._require_mutable()

    # =========================================================================
    # Layout-Specific Access
    # =========================================================================

    def _require(self, backend_type, what: str):
        if not isinstance(self._backend, backend_type):
            raise UnsupportedOperationError(
                f"{what} is not supported by {self.layout.value} storage"
            )
        return self._backend

    def get_packed_array(self, dtype=float64) -> np.ndarray:
        return self._require(PackedSymmetricStorage, "Packed array access").get_packed_array(dtype)

    def release_packed_array(self, buffer: np.ndarray) -> None:
        self._require(PackedSymmetricStorage, "Packed array access").release_packed_array(buffer)

    def get_sparse_block(self, start: int, n: int, dtype=float64) -> CSRBlock:
        return self._require(CSRStorage, "Sparse block access").get_sparse_block(start, n, dtype)

    def release_sparse_block(self, block: CSRBlock) -> None:
        self._require(CSRStorage, "Sparse block access").release_sparse_block(block)

    def to_scipy(self):
        """Convert CSR storage to ``scipy.sparse.csr_matrix``."""
        return self._require(CSRStorage, "Conversion to scipy").to_scipy()

    # =========================================================================
    # Lifetime & Copy
    # =========================================================================

    def copy(self) -> 'NumericTable':
        """Deep copy with owned storage."""
        return NumericTable(self._backend.copy())

    def __enter__(self) -> 'NumericTable':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._backend.is_allocated:
            self.free_data_memory()
        return False

    # =========================================================================
    # Serialization
    # =========================================================================

    def _serialize_impl(self, archive: OutputArchive) -> None:
        archive.write_object(self._backend)

    @classmethod
    def _deserialize_impl(cls, archive: InputArchive) -> 'NumericTable':
        backend = archive.read_object()
        if not isinstance(backend, StorageBackend):
            raise SerializationError(
                f"Expected a storage backend, found {type(backend).__name__}"
            )
        return cls(backend)
