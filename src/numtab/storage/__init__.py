"""
Storage Backends

Every layout implements :class:`StorageBackend`; tables never reach past
that contract.

Layouts:
    HomogenStorage          - Dense row-major (AOS), one numeric kind
    SOAStorage              - Dense column-major, per-column kinds
    PackedSymmetricStorage  - Upper/lower packed triangle of a square matrix
    CSRStorage              - Compressed sparse row
"""

from ._base import StorageBackend
from ._homogen import HomogenStorage
from ._soa import SOAStorage
from ._packed import PackedSymmetricStorage, packed_size, packed_index
from ._csr import CSRStorage, CSRBlock, validate_csr

__all__ = [
    'StorageBackend',
    'HomogenStorage',
    'SOAStorage',
    'PackedSymmetricStorage',
    'CSRStorage',
    'CSRBlock',
    'packed_size',
    'packed_index',
    'validate_csr',
]
