"""
Up-cast / Down-cast Tables

Conversions between the numeric kind a column is stored with and the kind
of the buffer a caller reads or writes a block through.

Design:
    One converter exists for every ordered pair of numeric kinds. The
    ``UP_CASTS`` (stored -> buffer) and ``DOWN_CASTS`` (buffer -> stored)
    tables are built once at import time and looked up by a
    ``(NumericKind, NumericKind)`` key, so dispatch is a dict lookup rather
    than a chain of runtime type checks.

Narrowing Policy:
    Narrowing is not an error. Values are converted by a fixed rule:

    - float -> int: truncate toward zero, clamp to the target range,
      NaN becomes 0.
    - int64 -> int32: clamp to the int32 range.
    - float64 -> float32: round to nearest; finite values beyond the
      float32 range clamp to +/- float32 max; inf and NaN pass through.
    - int -> float32: round to the nearest representable value.

    Widening (int32 -> int64, int -> float64, float32 -> float64) is exact.

Example:
    >>> stored = np.array([1, 2, 3, 4, 5, 6], dtype=np.int32)
    >>> out = np.empty(3, dtype=np.float64)
    >>> up_cast(stored, out, 3, offset=1, stride=2)   # reads 2, 4, 6
"""

import logging
from typing import Callable, Dict, Tuple

import numpy as np

from ._config import config
from ._dtypes import (
    NumericKind,
    BUFFER_KINDS,
    kind_of_array,
    normalize_kind,
    validate_buffer_kind,
    is_float_kind,
)
from .errors import OutOfRangeError, TypeMismatchError

__all__ = [
    'Converter',
    'CONVERTERS',
    'UP_CASTS',
    'DOWN_CASTS',
    'convert',
    'up_cast',
    'down_cast',
    'up_cast_with_buffer_stride',
    'down_cast_with_buffer_stride',
]

logger = logging.getLogger("numtab.casting")

Converter = Callable[[np.ndarray], np.ndarray]


# =============================================================================
# Element Converters
# =============================================================================

def _exact(target: np.dtype) -> Converter:
    def convert_exact(values: np.ndarray) -> np.ndarray:
        return values.astype(target)
    return convert_exact


def _float_to_int(target: np.dtype) -> Converter:
    info = np.iinfo(target)
    low = float(info.min)
    high = float(info.max)
    # float(int64 max) rounds up to 2**63, which does not fit
    if int(high) > info.max:
        high = float(np.nextafter(high, 0.0))

    def convert_float_to_int(values: np.ndarray) -> np.ndarray:
        truncated = np.trunc(values.astype(np.float64))
        truncated = np.nan_to_num(truncated, nan=0.0, posinf=high, neginf=low)
        return np.clip(truncated, low, high).astype(target)
    return convert_float_to_int


def _int_to_int(target: np.dtype) -> Converter:
    info = np.iinfo(target)

    def convert_int_to_int(values: np.ndarray) -> np.ndarray:
        return np.clip(values, info.min, info.max).astype(target)
    return convert_int_to_int


def _float64_to_float32(values: np.ndarray) -> np.ndarray:
    limit = np.finfo(np.float32).max
    finite = np.isfinite(values)
    clamped = np.where(finite, np.clip(values, -limit, limit), values)
    return clamped.astype(np.float32)


def _converter(src: NumericKind, dst: NumericKind) -> Converter:
    """Pick the converter implementing the narrowing policy for ``src -> dst``."""
    target = dst.dtype
    if src == dst:
        return _exact(target)
    if is_float_kind(dst):
        if src == NumericKind.float64 and dst == NumericKind.float32:
            return _float64_to_float32
        return _exact(target)
    if is_float_kind(src):
        return _float_to_int(target)
    if target.itemsize >= src.dtype.itemsize:
        return _exact(target)
    return _int_to_int(target)


def _is_narrowing(src: NumericKind, dst: NumericKind) -> bool:
    if src == dst:
        return False
    if is_float_kind(src) and not is_float_kind(dst):
        return True
    return src.dtype.itemsize > dst.dtype.itemsize


def _build_tables() -> Tuple[Dict, Dict, Dict]:
    converters = {
        (src, dst): _converter(src, dst)
        for src in NumericKind
        for dst in NumericKind
    }
    up = {
        (stored, buffer): converters[(stored, buffer)]
        for stored in NumericKind
        for buffer in BUFFER_KINDS
    }
    down = {
        (buffer, stored): converters[(buffer, stored)]
        for buffer in BUFFER_KINDS
        for stored in NumericKind
    }
    return converters, up, down


CONVERTERS, UP_CASTS, DOWN_CASTS = _build_tables()


# =============================================================================
# Clamping Report
# =============================================================================

def _count_clamped(values: np.ndarray, src: NumericKind, dst: NumericKind) -> int:
    if dst == NumericKind.float32:
        limit = np.finfo(np.float32).max
        finite = values[np.isfinite(values)] if is_float_kind(src) else values
        return int(np.count_nonzero(np.abs(finite.astype(np.float64)) > limit))
    info = np.iinfo(dst.dtype)
    if is_float_kind(src):
        as_float = values.astype(np.float64)
        return int(np.count_nonzero(
            ~np.isfinite(as_float) | (np.trunc(as_float) > info.max) | (np.trunc(as_float) < info.min)
        ))
    return int(np.count_nonzero((values > info.max) | (values < info.min)))


def _report(values: np.ndarray, src: NumericKind, dst: NumericKind) -> None:
    if not config.cast.report_clamping or not _is_narrowing(src, dst):
        return
    clamped = _count_clamped(values, src, dst)
    if clamped:
        logger.warning(f"Narrowing {src.value} -> {dst.value} clamped {clamped} value(s)")


# =============================================================================
# Public Cast Functions
# =============================================================================

def convert(values: np.ndarray, kind) -> np.ndarray:
    """
    Convert ``values`` to ``kind`` applying the narrowing policy.

    Returns a new array; ``values`` is never modified.
    """
    values = np.asarray(values)
    src = kind_of_array(values)
    dst = normalize_kind(kind)
    _report(values, src, dst)
    return CONVERTERS[(src, dst)](values)


def _strided_slice(offset: int, count: int, stride: int, length: int, what: str) -> slice:
    if count < 0 or offset < 0 or stride < 1:
        raise OutOfRangeError(
            f"Invalid {what} window: offset={offset}, count={count}, stride={stride}"
        )
    if count == 0:
        return slice(offset, offset)
    last = offset + (count - 1) * stride
    if last >= length:
        raise OutOfRangeError(
            f"{what} window ends at {last}, beyond array of length {length}"
        )
    return slice(offset, last + 1, stride)


def _lookup(table: Dict, src: NumericKind, dst: NumericKind, direction: str) -> Converter:
    try:
        return table[(src, dst)]
    except KeyError:
        raise TypeMismatchError(
            f"No {direction} from {src.value} to {dst.value}"
        ) from None


def up_cast(
    src: np.ndarray,
    dst: np.ndarray,
    count: int,
    offset: int = 0,
    stride: int = 1,
) -> np.ndarray:
    """
    Read ``count`` stored elements into a caller buffer.

    Reads ``src[offset + k * stride]`` for ``k < count`` and writes the
    converted values to ``dst[:count]``.

    Args:
        src: Stored array (any numeric kind).
        dst: Destination buffer (float64, float32 or int32).
        count: Number of elements.
        offset: First stored element.
        stride: Distance between consecutive stored elements.

    Returns:
        ``dst``
    """
    src_kind = kind_of_array(src)
    dst_kind = validate_buffer_kind(dst.dtype)
    window = _strided_slice(offset, count, stride, len(src), "source")
    if count > len(dst):
        raise OutOfRangeError(f"Buffer of length {len(dst)} cannot hold {count} values")
    values = src[window]
    _report(values, src_kind, dst_kind)
    dst[:count] = _lookup(UP_CASTS, src_kind, dst_kind, "up-cast")(values)
    return dst


def down_cast(
    src: np.ndarray,
    dst: np.ndarray,
    count: int,
    offset: int = 0,
    stride: int = 1,
) -> np.ndarray:
    """
    Write ``count`` buffer elements back into stored data.

    Writes the converted ``src[:count]`` to ``dst[offset + k * stride]``.

    Returns:
        ``dst``
    """
    src_kind = validate_buffer_kind(src.dtype)
    dst_kind = kind_of_array(dst)
    window = _strided_slice(offset, count, stride, len(dst), "destination")
    if count > len(src):
        raise OutOfRangeError(f"Buffer of length {len(src)} holds fewer than {count} values")
    values = src[:count]
    _report(values, src_kind, dst_kind)
    dst[window] = _lookup(DOWN_CASTS, src_kind, dst_kind, "down-cast")(values)
    return dst


def up_cast_with_buffer_stride(
    src: np.ndarray,
    dst: np.ndarray,
    count: int,
    offset: int,
    buffer_offset: int,
    buffer_stride: int,
) -> np.ndarray:
    """
    Read a contiguous stored run into an interleaved buffer.

    Used to scatter one column into a flat row-major block:
    ``dst[buffer_offset + k * buffer_stride] = src[offset + k]``.
    """
    src_kind = kind_of_array(src)
    dst_kind = validate_buffer_kind(dst.dtype)
    source = _strided_slice(offset, count, 1, len(src), "source")
    target = _strided_slice(buffer_offset, count, buffer_stride, len(dst), "buffer")
    values = src[source]
    _report(values, src_kind, dst_kind)
    dst[target] = _lookup(UP_CASTS, src_kind, dst_kind, "up-cast")(values)
    return dst


def down_cast_with_buffer_stride(
    src: np.ndarray,
    dst: np.ndarray,
    count: int,
    offset: int,
    buffer_offset: int,
    buffer_stride: int,
) -> np.ndarray:
    """
    Write an interleaved buffer run back into contiguous stored data.

    ``dst[offset + k] = src[buffer_offset + k * buffer_stride]``.
    """
    src_kind = validate_buffer_kind(src.dtype)
    dst_kind = kind_of_array(dst)
    source = _strided_slice(buffer_offset, count, buffer_stride, len(src), "buffer")
    target = _strided_slice(offset, count, 1, len(dst), "destination")
    values = src[source]
    _report(values, src_kind, dst_kind)
    dst[target] = _lookup(DOWN_CASTS, src_kind, dst_kind, "down-cast")(values)
    return dst
