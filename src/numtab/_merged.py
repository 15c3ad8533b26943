"""
Merged Numeric Table

A merged table places other tables side by side: its columns are the
columns of each constituent in append order. It holds shared references
to the constituents and never copies their data.

Block Requests:
    - Row blocks concatenate the constituents' row blocks column-wise.
    - Column blocks go to the constituent owning the column.
    - Releases are split into the matching column slices and forwarded.

All constituents must agree on the row count when a block is requested;
otherwise the request raises ``DimensionMismatchError``.

Example:
    >>> features = NumericTable.homogen(4, 3)
    >>> labels = NumericTable.homogen(4, 1, kind='int32')
    >>> merged = MergedNumericTable(features, labels)
    >>> merged.get_block_of_rows(0, 4).shape
    (4, 4)
"""

import logging
from contextlib import ExitStack, contextmanager
from typing import Iterator, List, Tuple

import numpy as np

from ._backend import StorageLayout
from ._dictionary import DataDictionary
from ._dtypes import float64, validate_buffer_kind
from .errors import (
    DimensionMismatchError,
    SerializationError,
    TypeMismatchError,
    UnsupportedOperationError,
    check_index,
    check_range,
)
from .serialization import InputArchive, OutputArchive, register_serializable
from .storage import StorageBackend
from ._table import TableBase

__all__ = ['MergedNumericTable']

logger = logging.getLogger("numtab.table")


@register_serializable
class MergedNumericTable(TableBase):
    """
    Side-by-side column composition of tables.

    Attributes:
        _tables: Constituent tables in append order.
    """

    serialization_tag = 21

    def __init__(self, *tables: TableBase):
        super().__init__()
        self._tables: List[TableBase] = []
        for table in tables:
            self.add_numeric_table(table)

    # =========================================================================
    # Composition
    # =========================================================================

    def add_numeric_table(self, table: TableBase) -> None:
        """
        Append ``table``'s columns to the logical column space.

        Raises:
            BorrowConflictError: If scoped borrows are open.
            TypeMismatchError: If ``table`` is not a table.
            UnsupportedOperationError: If ``table`` is this merged table or
                contains it.
        """
        self._tracker.ensure_idle("add a table")
        if not isinstance(table, TableBase):
            raise TypeMismatchError(f"Expected a table, got {type(table).__name__}")
        if table is self or (isinstance(table, MergedNumericTable) and table._contains(self)):
            raise UnsupportedOperationError("A merged table cannot contain itself")
        self._tables.append(table)
        logger.debug(
            f"Merged table now has {len(self._tables)} tables, "
            f"{self.get_number_of_columns()} columns"
        )

    def _contains(self, table: TableBase) -> bool:
        for member in self._tables:
            if member is table:
                return True
            if isinstance(member, MergedNumericTable) and member._contains(table):
                return True
        return False

    @property
    def number_of_tables(self) -> int:
        return len(self._tables)

    @property
    def tables(self) -> List[TableBase]:
        return list(self._tables)

    def get_numeric_table(self, index: int) -> TableBase:
        check_index(index, len(self._tables), "table")
        return self._tables[index]

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def dictionary(self) -> DataDictionary:
        """Concatenated dictionary sharing the constituents' features."""
        return DataDictionary.concatenate([t.dictionary for t in self._tables])

    @property
    def layout(self) -> StorageLayout:
        return StorageLayout.MERGED

    @property
    def is_allocated(self) -> bool:
        return all(t.is_allocated for t in self._tables)

    def get_number_of_rows(self) -> int:
        return self._tables[0].get_number_of_rows() if self._tables else 0

    def get_number_of_columns(self) -> int:
        return sum(t.get_number_of_columns() for t in self._tables)

    def _check_rows(self) -> int:
        counts = {t.get_number_of_rows() for t in self._tables}
        if len(counts) > 1:
            raise DimensionMismatchError(
                f"Merged tables disagree on row count: {sorted(counts)}"
            )
        return counts.pop() if counts else 0

    def _slices(self) -> Iterator[Tuple[TableBase, int, int]]:
        start = 0
        for table in self._tables:
            stop = start + table.get_number_of_columns()
            yield table, start, stop
            start = stop

    def _locate(self, column: int) -> Tuple[TableBase, int]:
        """Constituent owning ``column`` and the column's index within it."""
        check_index(column, self.get_number_of_columns(), "column")
        for table, start, stop in self._slices():
            if start <= column < stop:
                return table, column - start
        raise DimensionMismatchError(f"column {column} not found in merged table")

    # =========================================================================
    # Structure
    # =========================================================================

    def set_feature(self, feature, index: int) -> None:
        table, local = self._locate(index)
        table.set_feature(feature, local)

    def _ensure_idle(self, action: str) -> None:
        self._tracker.ensure_idle(action)
        for table in self._tables:
            table._tracker.ensure_idle(action)

    def set_number_of_rows(self, n_rows: int) -> None:
        """Set the row count of every constituent."""
        self._ensure_idle("resize rows")
        for table in self._tables:
            table.set_number_of_rows(n_rows)

    def allocate_data_memory(self) -> None:
        self._ensure_idle("allocate storage")
        for table in self._tables:
            table.allocate_data_memory()

    def free_data_memory(self) -> None:
        self._ensure_idle("free storage")
        for table in self._tables:
            table.free_data_memory()

    def assign(self, value) -> None:
        for table in self._tables:
            table.assign(value)

    # =========================================================================
    # Block Access
    # =========================================================================

    @contextmanager
    def _borrow(self):
        # Constituents hold the borrow as well
        with ExitStack() as stack:
            stack.enter_context(self._tracker.borrow())
            for table in self._tables:
                stack.enter_context(table._borrow())
            yield

    def get_block_of_rows(self, start: int, n: int, dtype=float64) -> np.ndarray:
        kind = validate_buffer_kind(dtype)
        n_rows = self._check_rows()
        check_range(start, n, n_rows, "row")
        out = np.empty((n, self.get_number_of_columns()), dtype=kind.dtype)
        for table, c0, c1 in self._slices():
            out[:, c0:c1] = table.get_block_of_rows(start, n, kind)
        return out

    def release_block_of_rows(self, start: int, n: int, buffer: np.ndarray) -> None:
        n_rows = self._check_rows()
        check_range(start, n, n_rows, "row")
        flat = StorageBackend._coerce_buffer(buffer, n, self.get_number_of_columns())
        block = flat.reshape(n, self.get_number_of_columns())
        self._check_release_rows(start, n)
        for table, c0, c1 in self._slices():
            table.release_block_of_rows(start, n, np.ascontiguousarray(block[:, c0:c1]))

    def _check_release_rows(self, start: int, n: int) -> None:
        for table in self._tables:
            table._check_release_rows(start, n)

    def get_block_of_column_values(self, column: int, start: int, n: int, dtype=float64) -> np.ndarray:
        table, local = self._locate(column)
        return table.get_block_of_column_values(local, start, n, dtype)

    def release_block_of_column_values(self, column: int, start: int, n: int, buffer: np.ndarray) -> None:
        table, local = self._locate(column)
        table.release_block_of_column_values(local, start, n, buffer)

    def set_column_values(self, column: int, start: int, values: np.ndarray) -> None:
        self._check_rows()
        table, local = self._locate(column)
        table.set_column_values(local, start, values)

    # =========================================================================
    # Copy & Serialization
    # =========================================================================

    def copy(self) -> 'MergedNumericTable':
        """Merged table over deep copies of the constituents."""
        return MergedNumericTable(*[t.copy() for t in self._tables])

    def _serialize_impl(self, archive: OutputArchive) -> None:
        archive.write_uint32(len(self._tables))
        for table in self._tables:
            archive.write_object(table)

    @classmethod
    def _deserialize_impl(cls, archive: InputArchive) -> 'MergedNumericTable':
        count = archive.read_uint32()
        tables = [archive.read_object() for _ in range(count)]
        for table in tables:
            if not isinstance(table, TableBase):
                raise SerializationError(
                    f"Expected a table inside a merged table, found {type(table).__name__}"
                )
        return cls(*tables)
