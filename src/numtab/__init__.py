"""
numtab - Numeric Tables

Typed two-dimensional numeric tables with interchangeable storage layouts:
- Dense row-major and column-major storage
- Packed symmetric (upper/lower triangle) matrices
- Compressed sparse row (CSR) matrices
- Side-by-side merged tables
- Block access with up-cast/down-cast to float32, float64 or int32 buffers
- Tagged binary serialization

Modules:
- storage: Storage backends behind every table
- data_source: Fill tables from delimited text
- serialization: Archives and the tag registry

Example:
    >>> import numpy as np
    >>> import numtab as nt
    >>>
    >>> table = nt.NumericTable.from_array(np.array([[1., 2.], [3., 4.], [5., 6.]]))
    >>> table.get_block_of_rows(1, 2, dtype=nt.int32)
    array([[3, 4],
           [5, 6]], dtype=int32)
"""

__version__ = '0.1.0'

from . import storage
from . import serialization
from . import data_source

from ._config import config, get_config, AllocationConfig, CastConfig, DataSourceConfig
from ._dtypes import (
    NumericKind,
    FeatureKind,
    float32,
    float64,
    int32,
    int64,
)
from ._backend import (
    StorageLayout,
    Ownership,
    IndexBase,
    ReadWriteMode,
    DataSourceStatus,
    StorageInfo,
)
from ._casting import convert, up_cast, down_cast
from ._dictionary import DataFeature, DataDictionary
from ._table import TableBase, NumericTable
from ._merged import MergedNumericTable
from .storage import (
    StorageBackend,
    HomogenStorage,
    SOAStorage,
    PackedSymmetricStorage,
    CSRStorage,
    CSRBlock,
)
from .data_source import CSVFeatureManager, SummaryStatistics, StringDataSource, FileDataSource
from .serialization import serialize, deserialize
from .errors import (
    NumTabError,
    OutOfRangeError,
    TypeMismatchError,
    UnallocatedError,
    UnsupportedOperationError,
    DimensionMismatchError,
    BorrowConflictError,
    SerializationError,
    DataSourceError,
)

__all__ = [
    # Version
    '__version__',
    # Modules
    'storage',
    'serialization',
    'data_source',
    # Configuration
    'config',
    'get_config',
    'AllocationConfig',
    'CastConfig',
    'DataSourceConfig',
    # Kinds
    'NumericKind',
    'FeatureKind',
    'float32',
    'float64',
    'int32',
    'int64',
    # Enumerations
    'StorageLayout',
    'Ownership',
    'IndexBase',
    'ReadWriteMode',
    'DataSourceStatus',
    'StorageInfo',
    # Casts
    'convert',
    'up_cast',
    'down_cast',
    # Dictionary
    'DataFeature',
    'DataDictionary',
    # Tables
    'TableBase',
    'NumericTable',
    'MergedNumericTable',
    # Storage
    'StorageBackend',
    'HomogenStorage',
    'SOAStorage',
    'PackedSymmetricStorage',
    'CSRStorage',
    'CSRBlock',
    # Data sources
    'CSVFeatureManager',
    'SummaryStatistics',
    'StringDataSource',
    'FileDataSource',
    # Serialization
    'serialize',
    'deserialize',
    # Errors
    'NumTabError',
    'OutOfRangeError',
    'TypeMismatchError',
    'UnallocatedError',
    'UnsupportedOperationError',
    'DimensionMismatchError',
    'BorrowConflictError',
    'SerializationError',
    'DataSourceError',
]
