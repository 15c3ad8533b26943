"""Storage Layout Types and Storage Metadata.

This module defines the enumerations shared by storage backends and
tables:

- Storage layouts (AOS, SOA, packed symmetric, CSR, merged)
- Ownership of the backing arrays (owned vs borrowed)
- CSR index base and block read/write modes
- Data source status

Layouts:
    - AOS: Dense row-major, one flat array, row stride == column count
    - SOA: Dense column-major, one independently typed array per column
    - UPPER_PACKED_SYMMETRIC / LOWER_PACKED_SYMMETRIC: One triangular array
    - CSR: values, column indices and row offsets
    - MERGED: Side-by-side composition of other tables (no own storage)

Example:
    >>> table.layout            # StorageLayout.AOS
    >>> table.storage_info()    # StorageInfo(layout=aos, ownership=owned, ...)
"""

from enum import Enum
from typing import Optional, Tuple
from dataclasses import dataclass

__all__ = [
    'StorageLayout',
    'Ownership',
    'IndexBase',
    'ReadWriteMode',
    'DataSourceStatus',
    'StorageInfo',
]


# =============================================================================
# Enumerations
# =============================================================================

class StorageLayout(Enum):
    """Storage layout of a numeric table."""
    AOS = 'aos'
    SOA = 'soa'
    UPPER_PACKED_SYMMETRIC = 'upper_packed_symmetric'
    LOWER_PACKED_SYMMETRIC = 'lower_packed_symmetric'
    CSR = 'csr'
    MERGED = 'merged'

    @property
    def is_packed(self) -> bool:
        return self in (StorageLayout.UPPER_PACKED_SYMMETRIC, StorageLayout.LOWER_PACKED_SYMMETRIC)


class Ownership(Enum):
    """Data ownership model.

    Attributes:
        OWNED: Arrays were allocated by the backend (``allocate_data_memory``).
               Freed when the table is freed or leaves its ``with`` block.

        BORROWED: Arrays were supplied by the caller and are used in place
                  (zero-copy). Writes through released blocks are visible
                  in the caller's arrays. Freeing drops the reference only.

        NONE: No storage bound (unallocated).
    """
    OWNED = 'owned'
    BORROWED = 'borrowed'
    NONE = 'none'


class IndexBase(Enum):
    """Index base of CSR column indices and row offsets."""
    ZERO = 0
    ONE = 1


class ReadWriteMode(Enum):
    """Intent of a scoped block borrow.

    Attributes:
        READ_ONLY: No write-back on release.
        WRITE_ONLY: Buffer starts zero-filled; written back on release.
        READ_WRITE: Buffer holds current values; written back on release.
    """
    READ_ONLY = 'read_only'
    WRITE_ONLY = 'write_only'
    READ_WRITE = 'read_write'


class DataSourceStatus(Enum):
    """State of a data source."""
    READY = 'ready'
    END_OF_DATA = 'end_of_data'
    NOT_AVAILABLE = 'not_available'


# =============================================================================
# Storage Information
# =============================================================================

@dataclass
class StorageInfo:
    """Storage metadata of a table.

    Attributes:
        layout: Storage layout.
        ownership: Ownership of the backing arrays.
        shape: Table dimensions (rows, cols).
        nbytes: Bytes held by the backing arrays (0 when unallocated).
        kind: Storage kind for homogeneous layouts, None for SOA/merged.
        nnz: Stored non-zeros (CSR only).

    Note:
        This is for introspection and debugging only.
    """
    layout: StorageLayout
    ownership: Ownership
    shape: Tuple[int, int]
    nbytes: int
    kind: Optional[str] = None
    nnz: Optional[int] = None

    def __repr__(self) -> str:
        extra = f", nnz={self.nnz}" if self.nnz is not None else ""
        return (
            f"StorageInfo(layout={self.layout.value}, "
            f"ownership={self.ownership.value}, "
            f"kind={self.kind}, shape={self.shape}, nbytes={self.nbytes}{extra})"
        )
