"""
Numeric Kind Definitions

Provides the closed set of numeric kinds a column may be declared with,
the subset of kinds a caller may request for a block buffer, and the
semantic feature kinds stored in the dictionary.
"""

from typing import Any, Union
from enum import Enum

import numpy as np

from .errors import TypeMismatchError

__all__ = [
    'NumericKind',
    'FeatureKind',
    'float32',
    'float64',
    'int32',
    'int64',
    'BUFFER_KINDS',
    'normalize_kind',
    'validate_buffer_kind',
    'kind_of_array',
    'to_numpy_dtype',
    'is_float_kind',
    'is_int_kind',
    'kind_itemsize',
]


class NumericKind(Enum):
    """
    Declared numeric type of a column.

    Example:
        >>> from numtab import NumericKind, NumericTable
        >>> table = NumericTable.homogen(3, 2, kind=NumericKind.int32)
        >>>
        >>> # Or use module-level constants
        >>> import numtab as nt
        >>> table = NumericTable.homogen(3, 2, kind=nt.float32)
    """

    float64 = 'float64'
    float32 = 'float32'
    int32 = 'int32'
    int64 = 'int64'

    def __str__(self) -> str:
        return self.value

    def __repr__(self) -> str:
        return f"NumericKind.{self.name}"

    @property
    def dtype(self) -> np.dtype:
        """Equivalent numpy dtype."""
        return np.dtype(self.value)

    @property
    def code(self) -> int:
        """Stable integer code used by the binary archive format."""
        return _KIND_CODES[self]

    @classmethod
    def from_code(cls, code: int) -> 'NumericKind':
        for kind, kind_code in _KIND_CODES.items():
            if kind_code == code:
                return kind
        raise TypeMismatchError(f"Unknown numeric kind code: {code}")


class FeatureKind(Enum):
    """
    Semantic kind of a feature (column).

    Attributes:
        continuous: Real-valued measurement.
        ordinal: Ordered discrete levels.
        categorical: Unordered levels; see ``DataFeature.category_number``.
    """

    continuous = 'continuous'
    ordinal = 'ordinal'
    categorical = 'categorical'

    def __str__(self) -> str:
        return self.value


_KIND_CODES = {
    NumericKind.float64: 0,
    NumericKind.float32: 1,
    NumericKind.int32: 2,
    NumericKind.int64: 3,
}


# =============================================================================
# Module-Level Constants (For Clean Syntax)
# =============================================================================

float64 = NumericKind.float64
float32 = NumericKind.float32
int32 = NumericKind.int32
int64 = NumericKind.int64

# Element types a caller may request for a block buffer
BUFFER_KINDS = (NumericKind.float64, NumericKind.float32, NumericKind.int32)


# =============================================================================
# Kind Utilities
# =============================================================================

def normalize_kind(kind: Union[str, NumericKind, np.dtype, type]) -> NumericKind:
    """
    Normalize a kind designator to :class:`NumericKind`.

    Accepts ``NumericKind`` members, their string names, numpy dtypes and
    numpy scalar types.

    Raises:
        TypeMismatchError: If ``kind`` does not name a supported kind.

    Example:
        >>> normalize_kind('float32')
        NumericKind.float32
        >>> normalize_kind(np.int64)
        NumericKind.int64
    """
    if isinstance(kind, NumericKind):
        return kind
    if isinstance(kind, str):
        try:
            return NumericKind(kind)
        except ValueError:
            raise TypeMismatchError(
                f"Unsupported numeric kind: {kind!r}. "
                f"Supported: {[k.value for k in NumericKind]}"
            ) from None
    try:
        name = np.dtype(kind).name
    except TypeError:
        raise TypeMismatchError(f"Cannot interpret {kind!r} as a numeric kind") from None
    return normalize_kind(name)


def validate_buffer_kind(kind: Any) -> NumericKind:
    """
    Normalize ``kind`` and check it is a valid block buffer kind.

    Raises:
        TypeMismatchError: If ``kind`` is not float64, float32 or int32.
    """
    kind = normalize_kind(kind)
    if kind not in BUFFER_KINDS:
        raise TypeMismatchError(
            f"Unsupported buffer kind: {kind.value}. "
            f"Supported: {[k.value for k in BUFFER_KINDS]}"
        )
    return kind


def kind_of_array(array: np.ndarray) -> NumericKind:
    """Return the numeric kind of a numpy array."""
    return normalize_kind(array.dtype)


def to_numpy_dtype(kind: Union[str, NumericKind]) -> np.dtype:
    """Get numpy dtype equivalent."""
    return normalize_kind(kind).dtype


def is_float_kind(kind: Union[str, NumericKind]) -> bool:
    """Check if kind is floating point."""
    return normalize_kind(kind) in (NumericKind.float32, NumericKind.float64)


def is_int_kind(kind: Union[str, NumericKind]) -> bool:
    """Check if kind is integer."""
    return normalize_kind(kind) in (NumericKind.int32, NumericKind.int64)


def kind_itemsize(kind: Union[str, NumericKind]) -> int:
    """Size in bytes of one element of ``kind``."""
    return normalize_kind(kind).dtype.itemsize
