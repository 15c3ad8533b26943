"""
Binary Serialization

Byte-exact, deterministic serialization for dictionaries, features, storage
backends and tables.

Format:
    Every payload starts with a fixed header::

        magic    4 bytes   b"NTAB"
        version  uint16
        object   (tag: uint32, body)

    Nested objects are written the same way (tag + body), so a table
    archive contains its dictionary and backend inline. All integers and
    array contents are little-endian. Arrays are written as
    ``kind code (uint8), length (uint64), raw bytes``.

Factory:
    Classes register a unique integer tag with :data:`factory`. The
    deserializer reads the tag and asks the factory for the class, which
    rebuilds itself from the archive.

Example:
    >>> payload = serialize(table)
    >>> restored = deserialize(payload)
    >>> serialize(restored) == payload
    True
"""

import io
import logging
import struct
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Type

import numpy as np

from ._dtypes import NumericKind, kind_of_array
from .errors import SerializationError, TypeMismatchError

__all__ = [
    'MAGIC',
    'FORMAT_VERSION',
    'OutputArchive',
    'InputArchive',
    'SerializableBase',
    'SerializationFactory',
    'factory',
    'register_serializable',
    'serialize',
    'deserialize',
]

logger = logging.getLogger("numtab.serialization")

MAGIC = b"NTAB"
FORMAT_VERSION = 1

_NO_KIND = 0xFF


# =============================================================================
# Archives
# =============================================================================

class OutputArchive:
    """Append-only little-endian writer."""

    def __init__(self):
        self._buffer = io.BytesIO()

    def _pack(self, fmt: str, value) -> None:
        self._buffer.write(struct.pack("<" + fmt, value))

    def write_uint8(self, value: int) -> None:
        self._pack("B", value)

    def write_uint16(self, value: int) -> None:
        self._pack("H", value)

    def write_uint32(self, value: int) -> None:
        self._pack("I", value)

    def write_int64(self, value: int) -> None:
        self._pack("q", value)

    def write_uint64(self, value: int) -> None:
        self._pack("Q", value)

    def write_bool(self, value: bool) -> None:
        self.write_uint8(1 if value else 0)

    def write_bytes(self, raw: bytes) -> None:
        self._buffer.write(raw)

    def write_str(self, value: str) -> None:
        raw = value.encode("utf-8")
        self.write_uint32(len(raw))
        self._buffer.write(raw)

    def write_kind(self, kind: Optional[NumericKind]) -> None:
        self.write_uint8(_NO_KIND if kind is None else kind.code)

    def write_array(self, array: np.ndarray) -> None:
        array = np.ascontiguousarray(array).reshape(-1)
        kind = kind_of_array(array)
        self.write_kind(kind)
        self.write_uint64(array.size)
        self._buffer.write(array.astype(kind.dtype.newbyteorder("<"), copy=False).tobytes())

    def write_object(self, obj: 'SerializableBase') -> None:
        self.write_uint32(obj.serialization_tag)
        obj._serialize_impl(self)

    def getvalue(self) -> bytes:
        return self._buffer.getvalue()


class InputArchive:
    """Reader mirroring :class:`OutputArchive`."""

    def __init__(self, data: bytes):
        self._view = memoryview(bytes(data))
        self._pos = 0

    def _take(self, size: int) -> memoryview:
        end = self._pos + size
        if end > len(self._view):
            raise SerializationError(
                f"Truncated archive: need {size} bytes at offset {self._pos}, "
                f"have {len(self._view) - self._pos}"
            )
        chunk = self._view[self._pos:end]
        self._pos = end
        return chunk

    def _unpack(self, fmt: str):
        size = struct.calcsize("<" + fmt)
        return struct.unpack("<" + fmt, self._take(size))[0]

    def read_bytes(self, size: int) -> bytes:
        return bytes(self._take(size))

    def read_uint8(self) -> int:
        return self._unpack("B")

    def read_uint16(self) -> int:
        return self._unpack("H")

    def read_uint32(self) -> int:
        return self._unpack("I")

    def read_int64(self) -> int:
        return self._unpack("q")

    def read_uint64(self) -> int:
        return self._unpack("Q")

    def read_bool(self) -> bool:
        return self.read_uint8() != 0

    def read_str(self) -> str:
        length = self.read_uint32()
        return bytes(self._take(length)).decode("utf-8")

    def read_kind(self) -> Optional[NumericKind]:
        code = self.read_uint8()
        if code == _NO_KIND:
            return None
        try:
            return NumericKind.from_code(code)
        except TypeMismatchError as exc:
            raise SerializationError(str(exc)) from exc

    def read_array(self) -> np.ndarray:
        kind = self.read_kind()
        if kind is None:
            raise SerializationError("Array without numeric kind")
        size = self.read_uint64()
        raw = self._take(size * kind.dtype.itemsize)
        little = np.frombuffer(raw, dtype=kind.dtype.newbyteorder("<"), count=size)
        return little.astype(kind.dtype)

    def read_object(self) -> Any:
        tag = self.read_uint32()
        cls = factory.create(tag)
        return cls._deserialize_impl(self)

    @property
    def remaining(self) -> int:
        return len(self._view) - self._pos


# =============================================================================
# Serializable Base & Factory
# =============================================================================

class SerializableBase(ABC):
    """
    Mixin for objects with a registered serialization tag.

    Subclasses define ``serialization_tag`` and implement
    ``_serialize_impl`` / ``_deserialize_impl``.
    """

    serialization_tag: int = 0

    @abstractmethod
    def _serialize_impl(self, archive: OutputArchive) -> None:
        ...

    @classmethod
    @abstractmethod
    def _deserialize_impl(cls, archive: InputArchive) -> Any:
        ...

    def serialize(self) -> bytes:
        """Serialize to bytes (see :func:`serialize`)."""
        return serialize(self)


class SerializationFactory:
    """Registry mapping serialization tags to classes."""

    def __init__(self):
        self._creators: Dict[int, Type[SerializableBase]] = {}

    def register(self, cls: Type[SerializableBase]) -> Type[SerializableBase]:
        tag = cls.serialization_tag
        existing = self._creators.get(tag)
        if existing is not None and existing is not cls:
            raise SerializationError(
                f"Tag {tag} already registered for {existing.__name__}"
            )
        self._creators[tag] = cls
        return cls

    def create(self, tag: int) -> Type[SerializableBase]:
        try:
            return self._creators[tag]
        except KeyError:
            raise SerializationError(f"Unknown serialization tag: {tag}") from None

    def __contains__(self, tag: int) -> bool:
        return tag in self._creators

    @property
    def tags(self):
        return sorted(self._creators)


factory = SerializationFactory()


def register_serializable(cls):
    """Class decorator registering ``cls`` with the global factory."""
    return factory.register(cls)


# =============================================================================
# Entry Points
# =============================================================================

def serialize(obj: SerializableBase) -> bytes:
    """
    Serialize a feature, dictionary, storage backend or table.

    Raises:
        SerializationError: If ``obj`` is not serializable.
    """
    if not isinstance(obj, SerializableBase):
        raise SerializationError(f"Object of type {type(obj).__name__} is not serializable")
    archive = OutputArchive()
    archive.write_bytes(MAGIC)
    archive.write_uint16(FORMAT_VERSION)
    archive.write_object(obj)
    payload = archive.getvalue()
    logger.debug(f"Serialized {type(obj).__name__} ({len(payload)} bytes)")
    return payload


def deserialize(data: bytes) -> Any:
    """
    Rebuild an object from bytes produced by :func:`serialize`.

    Raises:
        SerializationError: On bad magic, unsupported version, unknown tag,
            truncated or trailing data.
    """
    archive = InputArchive(data)
    if archive.read_bytes(len(MAGIC)) != MAGIC:
        raise SerializationError("Bad magic: not a numtab archive")
    version = archive.read_uint16()
    if version != FORMAT_VERSION:
        raise SerializationError(f"Unsupported format version: {version}")
    obj = archive.read_object()
    if archive.remaining:
        raise SerializationError(f"{archive.remaining} trailing bytes after object")
    return obj
