"""
Data Dictionary

Per-column metadata attached to a numeric table.

A :class:`DataDictionary` is an ordered sequence of :class:`DataFeature`
descriptors, one per column. Each feature records the numeric kind the
column is stored with, its semantic kind (continuous, ordinal,
categorical) and, for categorical features, the number of levels.

The feature's numeric kind selects the up-cast/down-cast used when a block
of that column is read into, or written from, a buffer of another kind.

Example:
    >>> dictionary = DataDictionary(3)
    >>> dictionary.set_feature('float64', 0)
    >>> dictionary.set_feature(DataFeature('int32', FeatureKind.categorical, 4), 1)
    >>> dictionary.get_feature(2).is_typed
    False
"""

from typing import Iterator, List, Optional, Union

from ._casting import Converter, UP_CASTS, DOWN_CASTS
from ._dtypes import NumericKind, FeatureKind, normalize_kind, validate_buffer_kind
from .errors import TypeMismatchError, check_index
from .serialization import (
    InputArchive,
    OutputArchive,
    SerializableBase,
    register_serializable,
)

__all__ = ['DataFeature', 'DataDictionary']


KindLike = Union[str, NumericKind, type]


@register_serializable
class DataFeature(SerializableBase):
    """
    Descriptor of a single column.

    Attributes:
        numeric_kind: Declared numeric kind, or None while untyped.
        feature_kind: Continuous, ordinal or categorical.
        category_number: Number of category levels (categorical features).
        name: Optional column name.
    """

    serialization_tag = 1

    def __init__(
        self,
        numeric_kind: Optional[KindLike] = None,
        feature_kind: Union[str, FeatureKind] = FeatureKind.continuous,
        category_number: int = 0,
        name: str = "",
    ):
        self._numeric_kind = None if numeric_kind is None else normalize_kind(numeric_kind)
        self._feature_kind = FeatureKind(feature_kind)
        self._category_number = 0
        self._name = ""
        self.set_category_number(category_number)
        self.set_name(name)

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    @property
    def numeric_kind(self) -> Optional[NumericKind]:
        return self._numeric_kind

    @property
    def feature_kind(self) -> FeatureKind:
        return self._feature_kind

    @property
    def category_number(self) -> int:
        return self._category_number

    @property
    def name(self) -> str:
        return self._name

    @property
    def is_typed(self) -> bool:
        return self._numeric_kind is not None

    # -------------------------------------------------------------------------
    # Setters
    # -------------------------------------------------------------------------

    def set_type(self, kind: Optional[KindLike]) -> None:
        """Declare the numeric kind of the column (None clears it)."""
        self._numeric_kind = None if kind is None else normalize_kind(kind)

    def set_feature_kind(self, feature_kind: Union[str, FeatureKind]) -> None:
        self._feature_kind = FeatureKind(feature_kind)

    def set_category_number(self, category_number: int) -> None:
        if category_number < 0:
            raise ValueError(f"category_number must be non-negative, got {category_number}")
        self._category_number = int(category_number)

    def set_name(self, name: str) -> None:
        self._name = str(name)

    # -------------------------------------------------------------------------
    # Casts
    # -------------------------------------------------------------------------

    def _stored_kind(self, index: Optional[int]) -> NumericKind:
        if self._numeric_kind is None:
            where = f"column {index}" if index is not None else "feature"
            raise TypeMismatchError(f"{where} has no numeric kind; set its type first")
        return self._numeric_kind

    def up_cast(self, buffer_kind: KindLike, index: Optional[int] = None) -> Converter:
        """Converter from this column's kind to ``buffer_kind``."""
        stored = self._stored_kind(index)
        buffer_kind = validate_buffer_kind(buffer_kind)
        return UP_CASTS[(stored, buffer_kind)]

    def down_cast(self, buffer_kind: KindLike, index: Optional[int] = None) -> Converter:
        """Converter from ``buffer_kind`` to this column's kind."""
        stored = self._stored_kind(index)
        buffer_kind = validate_buffer_kind(buffer_kind)
        return DOWN_CASTS[(buffer_kind, stored)]

    # -------------------------------------------------------------------------
    # Protocols
    # -------------------------------------------------------------------------

    def copy(self) -> 'DataFeature':
        return DataFeature(
            self._numeric_kind, self._feature_kind, self._category_number, self._name
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, DataFeature):
            return NotImplemented
        return (
            self._numeric_kind == other._numeric_kind
            and self._feature_kind == other._feature_kind
            and self._category_number == other._category_number
            and self._name == other._name
        )

    def __repr__(self) -> str:
        kind = self._numeric_kind.value if self._numeric_kind else None
        parts = [f"numeric_kind={kind}", f"feature_kind={self._feature_kind.value}"]
        if self._feature_kind == FeatureKind.categorical:
            parts.append(f"category_number={self._category_number}")
        if self._name:
            parts.append(f"name={self._name!r}")
        return f"DataFeature({', '.join(parts)})"

    def _serialize_impl(self, archive: OutputArchive) -> None:
        archive.write_kind(self._numeric_kind)
        archive.write_str(self._feature_kind.value)
        archive.write_uint32(self._category_number)
        archive.write_str(self._name)

    @classmethod
    def _deserialize_impl(cls, archive: InputArchive) -> 'DataFeature':
        kind = archive.read_kind()
        feature_kind = archive.read_str()
        category_number = archive.read_uint32()
        name = archive.read_str()
        return cls(kind, feature_kind, category_number, name)


@register_serializable
class DataDictionary(SerializableBase):
    """
    Ordered per-column descriptors of a table.

    The number of features equals the number of table columns. The owning
    table keeps the two in sync; resizing the dictionary directly while it
    is attached to a table makes the next block access fail.
    """

    serialization_tag = 2

    def __init__(self, n_features: int = 0, features: Optional[List[DataFeature]] = None):
        if features is not None:
            self._features = [f.copy() for f in features]
        else:
            if n_features < 0:
                raise ValueError(f"n_features must be non-negative, got {n_features}")
            self._features = [DataFeature() for _ in range(n_features)]

    @classmethod
    def homogeneous(cls, n_features: int, kind: KindLike) -> 'DataDictionary':
        """Dictionary whose features all share ``kind``."""
        dictionary = cls(n_features)
        for feature in dictionary._features:
            feature.set_type(kind)
        return dictionary

    @classmethod
    def concatenate(cls, dictionaries: List['DataDictionary']) -> 'DataDictionary':
        """
        Dictionary of the side-by-side columns of ``dictionaries``.

        Features are shared, not copied, so retyping a feature through the
        result retypes it in its source dictionary.
        """
        dictionary = cls()
        dictionary._features = [f for d in dictionaries for f in d._features]
        return dictionary

    # -------------------------------------------------------------------------
    # Core Operations
    # -------------------------------------------------------------------------

    @property
    def number_of_features(self) -> int:
        return len(self._features)

    def get_feature(self, index: int) -> DataFeature:
        """
        Get the descriptor of column ``index``.

        Raises:
            OutOfRangeError: If ``index`` is not a valid column.
        """
        check_index(index, len(self._features), "feature")
        return self._features[index]

    def set_feature(self, feature: Union[DataFeature, KindLike], index: int) -> None:
        """
        Set the descriptor of column ``index``.

        Args:
            feature: A :class:`DataFeature` (stored as a copy) or a numeric
                kind, which retypes the existing descriptor.
            index: Column index.

        Raises:
            OutOfRangeError: If ``index >= number_of_features``.
        """
        check_index(index, len(self._features), "feature")
        if isinstance(feature, DataFeature):
            self._features[index] = feature.copy()
        else:
            self._features[index].set_type(feature)

    def set_number_of_features(self, n_features: int) -> None:
        """
        Resize the descriptor sequence.

        Descriptors past the new bound are discarded; new slots are untyped.
        """
        if n_features < 0:
            raise ValueError(f"n_features must be non-negative, got {n_features}")
        del self._features[n_features:]
        while len(self._features) < n_features:
            self._features.append(DataFeature())

    def set_all_features(self, kind: KindLike) -> None:
        for feature in self._features:
            feature.set_type(kind)

    def is_homogeneous(self) -> bool:
        """True when every feature is typed and all share one kind."""
        kinds = {f.numeric_kind for f in self._features}
        return len(kinds) == 1 and None not in kinds

    def kinds(self) -> List[Optional[NumericKind]]:
        return [f.numeric_kind for f in self._features]

    def copy(self) -> 'DataDictionary':
        return DataDictionary(features=self._features)

    # -------------------------------------------------------------------------
    # Protocols
    # -------------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._features)

    def __iter__(self) -> Iterator[DataFeature]:
        return iter(self._features)

    def __getitem__(self, index: int) -> DataFeature:
        return self.get_feature(index)

    def __eq__(self, other) -> bool:
        if not isinstance(other, DataDictionary):
            return NotImplemented
        return self._features == other._features

    def __repr__(self) -> str:
        return f"DataDictionary(n_features={len(self._features)})"

    def _serialize_impl(self, archive: OutputArchive) -> None:
        archive.write_uint64(len(self._features))
        for feature in self._features:
            archive.write_object(feature)

    @classmethod
    def _deserialize_impl(cls, archive: InputArchive) -> 'DataDictionary':
        count = archive.read_uint64()
        features = [archive.read_object() for _ in range(count)]
        dictionary = cls()
        dictionary._features = features
        return dictionary
