"""
Error handling for numtab.

Every failure raised by the table layer is a :class:`NumTabError` carrying a
numeric error code. Each concrete error also derives from the closest builtin
exception so callers can catch ``IndexError`` / ``TypeError`` / ``ValueError``
without importing this module.

Error conditions are local and synchronous: they are raised at the point of
violation, before any part of the offending request is applied.
"""

from __future__ import annotations

from typing import Optional


# =============================================================================
# Error Codes
# =============================================================================

# Success
NT_OK = 0

# General errors (1-9)
NT_ERROR_UNKNOWN = 1
NT_ERROR_INTERNAL = 2

# Argument errors (10-19)
NT_ERROR_DIMENSION_MISMATCH = 11
NT_ERROR_OUT_OF_RANGE = 14

# Type errors (20-29)
NT_ERROR_TYPE_MISMATCH = 21

# State errors (30-39)
NT_ERROR_UNALLOCATED = 30
NT_ERROR_BORROW_CONFLICT = 31

# Feature errors (40-49)
NT_ERROR_UNSUPPORTED_OPERATION = 40

# I/O errors (50-59)
NT_ERROR_SERIALIZATION = 50
NT_ERROR_DATA_SOURCE = 51


_ERROR_MESSAGES = {
    NT_OK: "Success",
    NT_ERROR_UNKNOWN: "Unknown error",
    NT_ERROR_INTERNAL: "Internal error",
    NT_ERROR_DIMENSION_MISMATCH: "Dimension mismatch",
    NT_ERROR_OUT_OF_RANGE: "Index out of range",
    NT_ERROR_TYPE_MISMATCH: "Type mismatch",
    NT_ERROR_UNALLOCATED: "Storage is not allocated",
    NT_ERROR_BORROW_CONFLICT: "Structural change while blocks are borrowed",
    NT_ERROR_UNSUPPORTED_OPERATION: "Unsupported operation",
    NT_ERROR_SERIALIZATION: "Serialization error",
    NT_ERROR_DATA_SOURCE: "Data source error",
}


def error_message(code: int) -> str:
    """Return the generic message registered for ``code``."""
    return _ERROR_MESSAGES.get(code, f"Unknown error (code={code})")


# =============================================================================
# Exception Classes
# =============================================================================

class NumTabError(Exception):
    """
    Base exception for all numtab errors.

    Attributes:
        code: Numeric error code (one of the ``NT_ERROR_*`` constants).
        message: Human readable description.
    """

    code = NT_ERROR_UNKNOWN

    def __init__(self, message: Optional[str] = None, code: Optional[int] = None):
        if code is not None:
            self.code = code
        if message is None:
            message = error_message(self.code)
        self.message = message
        super().__init__(message)

    @classmethod
    def from_code(cls, code: int, context: str = "") -> "NumTabError":
        """Create the exception matching ``code`` with optional context."""
        exc_type = _CODE_TO_CLASS.get(code, cls)
        base_msg = error_message(code)
        msg = f"{context}: {base_msg}" if context else base_msg
        return exc_type(msg, code=code)


class OutOfRangeError(NumTabError, IndexError):
    """Row, column or feature index beyond the table bounds."""

    code = NT_ERROR_OUT_OF_RANGE


class TypeMismatchError(NumTabError, TypeError):
    """Cast requested between incompatible or unsupported numeric kinds."""

    code = NT_ERROR_TYPE_MISMATCH


class UnallocatedError(NumTabError, RuntimeError):
    """Block access before allocation or after the storage was freed."""

    code = NT_ERROR_UNALLOCATED


class UnsupportedOperationError(NumTabError, NotImplementedError):
    """Operation not supported by the storage layout (e.g. dense write to CSR)."""

    code = NT_ERROR_UNSUPPORTED_OPERATION


class DimensionMismatchError(NumTabError, ValueError):
    """Shapes disagree: merged row counts, buffer shapes, resize conflicts."""

    code = NT_ERROR_DIMENSION_MISMATCH


class BorrowConflictError(NumTabError, RuntimeError):
    """Structural mutation attempted while scoped block borrows are open."""

    code = NT_ERROR_BORROW_CONFLICT


class SerializationError(NumTabError, ValueError):
    """Malformed, truncated or unknown serialized payload."""

    code = NT_ERROR_SERIALIZATION


class DataSourceError(NumTabError, ValueError):
    """Data source contract violation or unparsable input."""

    code = NT_ERROR_DATA_SOURCE


_CODE_TO_CLASS = {
    NT_ERROR_OUT_OF_RANGE: OutOfRangeError,
    NT_ERROR_TYPE_MISMATCH: TypeMismatchError,
    NT_ERROR_UNALLOCATED: UnallocatedError,
    NT_ERROR_UNSUPPORTED_OPERATION: UnsupportedOperationError,
    NT_ERROR_DIMENSION_MISMATCH: DimensionMismatchError,
    NT_ERROR_BORROW_CONFLICT: BorrowConflictError,
    NT_ERROR_SERIALIZATION: SerializationError,
    NT_ERROR_DATA_SOURCE: DataSourceError,
}


# =============================================================================
# Checking Helpers
# =============================================================================

def check_range(start: int, count: int, limit: int, what: str = "row") -> None:
    """
    Validate a ``[start, start + count)`` range against ``limit``.

    Raises:
        OutOfRangeError: If the range is negative or extends past ``limit``.
    """
    if start < 0 or count < 0 or start + count > limit:
        raise OutOfRangeError(
            f"{what} range [{start}, {start + count}) out of bounds [0, {limit})"
        )


def check_index(index: int, limit: int, what: str = "column") -> None:
    """
    Validate a single index against ``limit``.

    Raises:
        OutOfRangeError: If ``index`` is negative or ``>= limit``.
    """
    if index < 0 or index >= limit:
        raise OutOfRangeError(f"{what} index {index} out of bounds [0, {limit})")


__all__ = [
    "NT_OK",
    "NT_ERROR_UNKNOWN",
    "NT_ERROR_INTERNAL",
    "NT_ERROR_DIMENSION_MISMATCH",
    "NT_ERROR_OUT_OF_RANGE",
    "NT_ERROR_TYPE_MISMATCH",
    "NT_ERROR_UNALLOCATED",
    "NT_ERROR_BORROW_CONFLICT",
    "NT_ERROR_UNSUPPORTED_OPERATION",
    "NT_ERROR_SERIALIZATION",
    "NT_ERROR_DATA_SOURCE",
    "error_message",
    "NumTabError",
    "OutOfRangeError",
    "TypeMismatchError",
    "UnallocatedError",
    "UnsupportedOperationError",
    "DimensionMismatchError",
    "BorrowConflictError",
    "SerializationError",
    "DataSourceError",
    "check_range",
    "check_index",
]
