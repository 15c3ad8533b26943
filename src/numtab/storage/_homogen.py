"""
Dense Row-Major Storage (AOS)

One flat array of a single numeric kind holding ``rows * cols`` elements;
element ``(r, c)`` lives at ``r * cols + c``.

Ownership:
    - ``allocate_data_memory()`` creates an OWNED zero-filled array.
    - ``set_data()`` / ``from_array()`` bind caller memory as BORROWED when
      it is already C-contiguous and of a supported kind, so released
      blocks are visible in the caller's array.

Example:
    >>> storage = HomogenStorage.from_array(np.array([[1., 2.], [3., 4.]]))
    >>> storage.get_block_of_column_values(1, 0, 2)
    array([2., 4.])
"""

import logging
from typing import Optional

import numpy as np

from .._backend import StorageLayout, Ownership
from .._casting import convert, up_cast, down_cast
from .._dictionary import DataDictionary
from .._dtypes import NumericKind, float64, normalize_kind, kind_of_array
from ..errors import DimensionMismatchError
from ..serialization import InputArchive, OutputArchive, register_serializable
from ._base import StorageBackend

__all__ = ['HomogenStorage']

logger = logging.getLogger("numtab.storage")


def _type_untyped(dictionary: DataDictionary, kind: NumericKind) -> None:
    for feature in dictionary:
        if not feature.is_typed:
            feature.set_type(kind)


@register_serializable
class HomogenStorage(StorageBackend):
    """
    Dense row-major storage of one numeric kind.

    Attributes:
        _kind: Stored kind shared by every column.
        _data: Flat array of ``rows * cols`` elements, or None.
    """

    serialization_tag = 10

    def __init__(
        self,
        n_rows: int,
        n_columns: int,
        kind=float64,
        dictionary: Optional[DataDictionary] = None,
        data: Optional[np.ndarray] = None,
    ):
        self._kind = normalize_kind(kind)
        super().__init__(n_rows, n_columns, dictionary)
        _type_untyped(self._dictionary, self._kind)
        self._data: Optional[np.ndarray] = None
        if data is not None:
            self.set_data(data)

    @classmethod
    def from_array(cls, array, kind=None, copy: bool = False) -> 'HomogenStorage':
        """
        Build storage over a 2D array.

        Args:
            array: 2D array-like (1D is taken as a single column).
            kind: Stored kind. Defaults to the array's kind; a different kind
                converts (and therefore copies) the data.
            copy: Always copy instead of borrowing.
        """
        array = np.asarray(array)
        if array.ndim == 1:
            array = array.reshape(-1, 1)
        if array.ndim != 2:
            raise DimensionMismatchError(f"Expected a 2D array, got {array.ndim}D")
        kind = kind_of_array(array) if kind is None else normalize_kind(kind)
        owned = copy or array.dtype != kind.dtype
        if array.dtype != kind.dtype:
            array = np.ascontiguousarray(convert(array, kind))
        elif copy:
            array = np.array(array, order="C")
        storage = cls(array.shape[0], array.shape[1], kind=kind)
        storage.set_data(array)
        if owned:
            storage._ownership = Ownership.OWNED
        return storage

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def layout(self) -> StorageLayout:
        return StorageLayout.AOS

    @property
    def kind(self) -> NumericKind:
        return self._kind

    @property
    def is_allocated(self) -> bool:
        return self._data is not None

    @property
    def nbytes(self) -> int:
        return 0 if self._data is None else self._data.nbytes

    @property
    def data(self) -> Optional[np.ndarray]:
        """Live ``(rows, cols)`` view of the stored array, or None."""
        if self._data is None:
            return None
        return self._data.reshape(self._n_rows, self._n_columns)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def set_data(self, array: np.ndarray) -> None:
        """
        Bind caller memory as the backing array.

        Raises:
            DimensionMismatchError: If ``array.size != rows * cols``.
            TypeMismatchError: If the array kind is unsupported.
        """
        array = np.asarray(array)
        if array.size != self._n_rows * self._n_columns:
            raise DimensionMismatchError(
                f"Array of {array.size} elements cannot back a {self.shape} table"
            )
        kind = kind_of_array(array)
        if kind != self._kind or not array.flags.c_contiguous:
            self._data = np.ascontiguousarray(array, dtype=self._kind.dtype).reshape(-1)
            self._ownership = Ownership.OWNED
        else:
            self._data = array.reshape(-1)
            self._ownership = Ownership.BORROWED

    def allocate_data_memory(self) -> None:
        self._data = self._new_array(self._n_rows * self._n_columns, self._kind)
        self._ownership = Ownership.OWNED
        logger.debug(f"Allocated AOS storage {self.shape} of {self._kind.value}")

    def free_data_memory(self) -> None:
        self._data = None
        self._ownership = Ownership.NONE
        logger.debug(f"Freed AOS storage {self.shape}")

    def resize(self, n_rows: int, n_columns: int) -> None:
        super().resize(n_rows, n_columns)
        _type_untyped(self._dictionary, self._kind)

    # =========================================================================
    # Layout Hooks
    # =========================================================================

    def _read_rows(self, start, n, out):
        up_cast(self._data, out, n * self._n_columns, offset=start * self._n_columns)

    def _write_rows(self, start, n, flat):
        down_cast(flat, self._data, n * self._n_columns, offset=start * self._n_columns)

    def _read_column(self, column, start, n, out):
        offset = start * self._n_columns + column
        up_cast(self._data, out, n, offset=offset, stride=self._n_columns)

    def _write_column(self, column, start, n, flat):
        offset = start * self._n_columns + column
        down_cast(flat, self._data, n, offset=offset, stride=self._n_columns)

    def _store_column(self, column, start, values):
        offset = start * self._n_columns + column
        stop = offset + (values.size - 1) * self._n_columns + 1
        self._data[offset:stop:self._n_columns] = convert(values, self._kind)

    def _fill(self, value):
        self._data[:] = self._converted_scalar(value, self._kind)

    def copy(self) -> 'HomogenStorage':
        data = None if self._data is None else self._data.copy()
        storage = HomogenStorage(
            self._n_rows, self._n_columns, self._kind, self._dictionary.copy()
        )
        if data is not None:
            storage._data = data
            storage._ownership = Ownership.OWNED
        return storage

    # =========================================================================
    # Serialization
    # =========================================================================

    def _serialize_impl(self, archive: OutputArchive) -> None:
        self._write_header(archive)
        archive.write_kind(self._kind)
        if self._data is not None:
            archive.write_array(self._data)

    @classmethod
    def _deserialize_impl(cls, archive: InputArchive) -> 'HomogenStorage':
        n_rows, n_columns, dictionary, allocated = cls._read_header(archive)
        kind = archive.read_kind()
        storage = cls(n_rows, n_columns, kind, dictionary)
        if allocated:
            storage.set_data(archive.read_array())
            storage._ownership = Ownership.OWNED
        return storage
