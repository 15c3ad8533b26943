"""
Data Sources

Fill numeric tables from delimited text.

A data source first needs a dictionary describing its columns, either set
explicitly or inferred from the first row with
``create_dictionary_from_context()``. It then parses rows and writes them
into a table through the block-access contract, so any table layout
(including merged tables) can be the target.

Type Inference (first row):
    - integer token            -> int32 (int64 if beyond the int32 range)
    - other numeric token      -> float64
    - anything else            -> categorical int32 column whose values are
                                  category codes in order of first
                                  appearance (if ``infer_categorical``)

Parsing:
    Each row is parsed into float64 and down-cast per column on release.
    int64 columns are parsed as integers as well and written with
    ``set_column_values()``, so they keep every digit. Empty tokens read as
    NaN (0 in integer columns). Blank lines are skipped.

    A block is parsed in full before anything changes: on a parse error
    the read position, the category maps and the statistics stay as they
    were.

Statistics:
    Every load records per-column minimum, maximum, sum and sum of squares
    of the loaded values (NaN ignored). A load at row offset 0 starts a new
    summary; loads at later offsets extend it.

Example:
    >>> source = StringDataSource("1,2.5,red\\n2,3.5,blue\\n3,4.5,red\\n")
    >>> source.create_dictionary_from_context()
    >>> source.load_data_block()
    3
    >>> source.get_numeric_table().get_block_of_rows(0, 3)
    array([[1. , 2.5, 0. ],
           [2. , 3.5, 1. ],
           [3. , 4.5, 0. ]])
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np

from ._backend import DataSourceStatus, ReadWriteMode
from ._casting import convert
from ._config import config
from ._dictionary import DataDictionary, DataFeature
from ._dtypes import FeatureKind, NumericKind, float64
from ._table import NumericTable, TableBase
from .errors import DataSourceError, DimensionMismatchError
from .storage import SOAStorage

__all__ = [
    'CSVFeatureManager',
    'SummaryStatistics',
    'DataSource',
    'StringDataSource',
    'FileDataSource',
]

logger = logging.getLogger("numtab.data_source")

_INT32 = np.iinfo(np.int32)
_INT64 = np.iinfo(np.int64)


# =============================================================================
# Feature Manager
# =============================================================================

class CSVFeatureManager:
    """
    Tokenizes delimited lines, infers column types and parses rows.

    Attributes:
        delimiter: Token separator.
        infer_categorical: Map non-numeric tokens to category codes.
    """

    def __init__(self, delimiter: Optional[str] = None, infer_categorical: Optional[bool] = None):
        settings = config.data_source
        self.delimiter = settings.delimiter if delimiter is None else delimiter
        self.infer_categorical = (
            settings.infer_categorical if infer_categorical is None else infer_categorical
        )

    def tokenize(self, line: str) -> List[str]:
        return [token.strip() for token in line.split(self.delimiter)]

    def infer_feature(self, token: str, index: int) -> DataFeature:
        """Descriptor for a column whose first value is ``token``."""
        try:
            value = int(token)
        except ValueError:
            pass
        else:
            kind = NumericKind.int32 if _INT32.min <= value <= _INT32.max else NumericKind.int64
            return DataFeature(kind, FeatureKind.continuous)
        if token == "":
            return DataFeature(NumericKind.float64, FeatureKind.continuous)
        try:
            float(token)
        except ValueError:
            if not self.infer_categorical:
                raise DataSourceError(
                    f"column {index}: non-numeric value {token!r} and categorical "
                    f"inference is disabled"
                ) from None
            return DataFeature(NumericKind.int32, FeatureKind.categorical)
        return DataFeature(NumericKind.float64, FeatureKind.continuous)

    def parse_row_as_dictionary(self, line: str) -> DataDictionary:
        tokens = self.tokenize(line)
        dictionary = DataDictionary(len(tokens))
        for index, token in enumerate(tokens):
            dictionary.set_feature(self.infer_feature(token, index), index)
        return dictionary

    def parse_row(
        self,
        line: str,
        dictionary: DataDictionary,
        categories: List[Dict[str, int]],
        out: np.ndarray,
        line_number: int,
        exact: Optional[np.ndarray] = None,
    ) -> None:
        """
        Parse one line into ``out`` (float64, one value per column).

        Unseen categorical tokens get the next free code in ``categories``.
        The descriptors in ``dictionary`` are left alone; category counts
        follow from the maps.

        Args:
            exact: Optional int64 row; int64 columns are parsed into it
                without passing through float64.

        Raises:
            DataSourceError: On a wrong token count or a non-numeric token in
                a numeric column.
        """
        tokens = self.tokenize(line)
        if len(tokens) != len(dictionary):
            raise DataSourceError(
                f"line {line_number}: expected {len(dictionary)} values, got {len(tokens)}"
            )
        for index, token in enumerate(tokens):
            feature = dictionary.get_feature(index)
            if feature.feature_kind == FeatureKind.categorical:
                mapping = categories[index]
                if token not in mapping:
                    mapping[token] = len(mapping)
                out[index] = mapping[token]
            elif exact is not None and feature.numeric_kind == NumericKind.int64:
                value = self._parse_int64(token, index, line_number)
                exact[index] = value
                out[index] = np.nan if token == "" else float(value)
            elif token == "":
                out[index] = np.nan
            else:
                out[index] = self._parse_float(token, index, line_number)

    @staticmethod
    def _parse_float(token: str, index: int, line_number: int) -> float:
        try:
            return float(token)
        except ValueError:
            raise DataSourceError(
                f"line {line_number}, column {index}: cannot parse {token!r} as a number"
            ) from None

    def _parse_int64(self, token: str, index: int, line_number: int) -> int:
        if token == "":
            return 0
        try:
            value = int(token)
        except ValueError:
            # Non-integer tokens follow the float -> int narrowing policy
            number = self._parse_float(token, index, line_number)
            return int(convert(np.array([number]), NumericKind.int64)[0])
        return min(max(value, int(_INT64.min)), int(_INT64.max))


# =============================================================================
# Statistics
# =============================================================================

@dataclass
class SummaryStatistics:
    """
    Per-column summary of loaded values.

    Missing values (NaN) are ignored; a column without values has NaN
    minimum and maximum.

    Attributes:
        n_rows: Number of rows summarized.
        minimum: Column minima.
        maximum: Column maxima.
        sum: Column sums.
        sum_squares: Column sums of squares.
    """
    n_rows: int
    minimum: np.ndarray
    maximum: np.ndarray
    sum: np.ndarray
    sum_squares: np.ndarray

    @classmethod
    def from_rows(cls, rows: np.ndarray) -> 'SummaryStatistics':
        n, width = rows.shape
        if n == 0:
            return cls(0, np.full(width, np.nan), np.full(width, np.nan),
                       np.zeros(width), np.zeros(width))
        return cls(
            n_rows=n,
            minimum=np.fmin.reduce(rows, axis=0),
            maximum=np.fmax.reduce(rows, axis=0),
            sum=np.nansum(rows, axis=0),
            sum_squares=np.nansum(rows * rows, axis=0),
        )

    def combine(self, other: 'SummaryStatistics') -> 'SummaryStatistics':
        """Summary of both row sets."""
        return SummaryStatistics(
            n_rows=self.n_rows + other.n_rows,
            minimum=np.fmin(self.minimum, other.minimum),
            maximum=np.fmax(self.maximum, other.maximum),
            sum=self.sum + other.sum,
            sum_squares=self.sum_squares + other.sum_squares,
        )


@dataclass
class _ParsedBlock:
    """Rows parsed ahead of a load, with the source state they lead to."""
    rows: np.ndarray
    exact: np.ndarray
    position: int
    categories: List[Dict[str, int]]


# =============================================================================
# Data Source Base
# =============================================================================

class DataSource:
    """
    Line-oriented data source over in-memory text.

    Subclasses supply the text; this class keeps the read position, the
    dictionary, the category maps, the statistics and the optional owned
    table.
    """

    def __init__(
        self,
        text: Optional[str],
        create_dictionary: bool = False,
        allocate_table: bool = False,
        initial_max_rows: Optional[int] = None,
        feature_manager: Optional[CSVFeatureManager] = None,
    ):
        self._feature_manager = feature_manager or CSVFeatureManager()
        self._initial_max_rows = (
            config.data_source.initial_max_rows if initial_max_rows is None else initial_max_rows
        )
        self._dictionary: Optional[DataDictionary] = None
        self._categories: List[Dict[str, int]] = []
        self._statistics: Optional[SummaryStatistics] = None
        self._table: Optional[NumericTable] = None
        self._lines: Optional[List[str]] = None
        self._pos = 0
        self._line_numbers: List[int] = []
        self.set_data(text)
        if create_dictionary:
            self.create_dictionary_from_context()
        if allocate_table:
            self.allocate_numeric_table()

    # =========================================================================
    # Data
    # =========================================================================

    def set_data(self, text: Optional[str]) -> None:
        """Replace the source text and rewind."""
        if text is None:
            self._lines = None
            self._line_numbers = []
        else:
            numbered = [
                (number, line) for number, line in enumerate(text.splitlines(), start=1)
                if line.strip()
            ]
            self._line_numbers = [number for number, _ in numbered]
            self._lines = [line for _, line in numbered]
        self._pos = 0
        self._statistics = None

    def reset_data(self) -> None:
        """Drop the source text; the status becomes NOT_AVAILABLE."""
        self.set_data(None)

    def reset(self) -> None:
        """Rewind to the first row."""
        self._pos = 0

    @property
    def feature_manager(self) -> CSVFeatureManager:
        return self._feature_manager

    def get_status(self) -> DataSourceStatus:
        if self._lines is None:
            return DataSourceStatus.NOT_AVAILABLE
        if self._pos >= len(self._lines):
            return DataSourceStatus.END_OF_DATA
        return DataSourceStatus.READY

    def get_number_of_available_rows(self) -> int:
        """Rows not loaded yet."""
        if self._lines is None:
            return 0
        return len(self._lines) - self._pos

    def get_statistics(self) -> Optional[SummaryStatistics]:
        """Summary of the rows loaded since the last load at offset 0."""
        return self._statistics

    def _require_data(self) -> List[str]:
        if self._lines is None:
            raise DataSourceError("Data source has no data")
        return self._lines

    # =========================================================================
    # Dictionary
    # =========================================================================

    def create_dictionary_from_context(self) -> None:
        """
        Infer the dictionary from the first row.

        Raises:
            DataSourceError: If a dictionary is already set or there is no
                row to infer from.
        """
        if self._dictionary is not None:
            raise DataSourceError("Dictionary is already available")
        lines = self._require_data()
        if not lines:
            raise DataSourceError("Cannot infer a dictionary from empty data")
        self.set_dictionary(self._feature_manager.parse_row_as_dictionary(lines[0]))
        logger.debug(f"Inferred dictionary with {len(self._dictionary)} features")

    def set_dictionary(self, dictionary: DataDictionary) -> None:
        """
        Use ``dictionary`` for parsing.

        Raises:
            DataSourceError: If a column has no numeric kind.
        """
        for index, feature in enumerate(dictionary):
            if not feature.is_typed:
                raise DataSourceError(f"column {index} has no numeric kind")
        self._dictionary = dictionary
        self._categories = [{} for _ in range(len(dictionary))]

    def get_dictionary(self) -> Optional[DataDictionary]:
        return self._dictionary

    def get_category_map(self, column: int) -> Dict[str, int]:
        """Token to code mapping of a categorical column."""
        self._require_dictionary()
        self._dictionary.get_feature(column)
        return dict(self._categories[column])

    def _require_dictionary(self) -> DataDictionary:
        if self._dictionary is None:
            raise DataSourceError(
                "No dictionary; call create_dictionary_from_context() or set_dictionary()"
            )
        return self._dictionary

    # =========================================================================
    # Tables
    # =========================================================================

    def allocate_numeric_table(self) -> NumericTable:
        """Create the owned column-major table typed by the dictionary."""
        dictionary = self._require_dictionary()
        self._table = NumericTable(SOAStorage(0, len(dictionary), dictionary.copy()))
        return self._table

    def get_numeric_table(self) -> Optional[NumericTable]:
        return self._table

    def free_numeric_table(self) -> None:
        self._table = None

    # =========================================================================
    # Loading
    # =========================================================================

    def _parse_rows(self, position: int, max_rows: int, categories: List[Dict[str, int]]):
        dictionary = self._dictionary
        lines = self._lines
        count = min(max_rows, len(lines) - position)
        width = len(dictionary)
        rows = np.empty((count, width), dtype=np.float64)
        exact = np.zeros((count, width), dtype=np.int64)
        for j in range(count):
            self._feature_manager.parse_row(
                lines[position + j], dictionary, categories, rows[j],
                self._line_numbers[position + j], exact[j],
            )
        return rows, exact, position + count

    def _parse(self, max_rows: Optional[int]) -> _ParsedBlock:
        """Parse the next rows without changing the source."""
        position = self._pos
        categories = [dict(mapping) for mapping in self._categories]
        if max_rows is not None:
            rows, exact, position = self._parse_rows(position, max_rows, categories)
            return _ParsedBlock(rows, exact, position, categories)
        chunk = self._initial_max_rows if self._initial_max_rows > 0 else 10
        parts = []
        while True:
            rows, exact, position = self._parse_rows(position, chunk, categories)
            parts.append((rows, exact))
            if rows.shape[0] < chunk:
                break
            chunk *= 2
        if len(parts) > 1:
            rows = np.concatenate([p[0] for p in parts])
            exact = np.concatenate([p[1] for p in parts])
        return _ParsedBlock(rows, exact, position, categories)

    def load_data_block(
        self,
        max_rows: Optional[int] = None,
        table: Optional[TableBase] = None,
        row_offset: Optional[int] = None,
        full_rows: Optional[int] = None,
    ) -> int:
        """
        Parse rows and write them into a table.

        Without ``row_offset`` and ``full_rows`` the target is resized to
        exactly the loaded rows, which land at row 0. With either of them
        the rows land at ``row_offset`` (default 0) of a table holding
        ``full_rows`` rows (default: its current row count), so a table can
        be filled block by block.

        Args:
            max_rows: Maximum rows to load; None loads everything left.
            table: Target table. Defaults to the owned table, created on
                first use.
            row_offset: First table row to write.
            full_rows: Row count the target is resized to, if it differs.

        Returns:
            Number of rows loaded.

        Raises:
            DataSourceError: Without data or dictionary, on a parse error, or
                if the loaded rows do not fit below ``row_offset``. The
                source is unchanged when this is raised.
            DimensionMismatchError: If the table's column count differs from
                the dictionary's.
        """
        dictionary = self._require_dictionary()
        self._require_data()
        for name, value in (("max_rows", max_rows), ("row_offset", row_offset),
                            ("full_rows", full_rows)):
            if value is not None and value < 0:
                raise DataSourceError(f"{name} must be non-negative, got {value}")
        if table is None:
            table = self._table if self._table is not None else self.allocate_numeric_table()
        if table.get_number_of_columns() != len(dictionary):
            raise DimensionMismatchError(
                f"Table has {table.get_number_of_columns()} columns, data source "
                f"has {len(dictionary)} features"
            )

        block = self._parse(max_rows)
        n = block.rows.shape[0]
        if row_offset is None and full_rows is None:
            offset = 0
            table.set_number_of_rows(n)
        else:
            offset = row_offset or 0
            target_rows = table.get_number_of_rows() if full_rows is None else full_rows
            if offset + n > target_rows:
                raise DataSourceError(
                    f"Rows [{offset}, {offset + n}) do not fit a table of {target_rows} rows"
                )
            if target_rows != table.get_number_of_rows():
                table.set_number_of_rows(target_rows)
        if not table.is_allocated:
            table.allocate_data_memory()
        self._write(table, block, offset)
        self._commit(block, offset)
        self._sync_categories(table)
        logger.debug(f"Loaded {n} rows at row {offset} into {table.layout.value} table")
        return n

    def _write(self, table: TableBase, block: _ParsedBlock, offset: int) -> None:
        n = block.rows.shape[0]
        if not n:
            return
        with table.block_of_rows(offset, n, float64, ReadWriteMode.WRITE_ONLY) as buffer:
            buffer[:] = block.rows
        for index, feature in enumerate(self._dictionary):
            if feature.numeric_kind == NumericKind.int64:
                table.set_column_values(index, offset, block.exact[:, index])

    def _commit(self, block: _ParsedBlock, offset: int) -> None:
        self._pos = block.position
        self._categories = block.categories
        for index, feature in enumerate(self._dictionary):
            if feature.feature_kind == FeatureKind.categorical:
                feature.set_category_number(len(self._categories[index]))
        statistics = SummaryStatistics.from_rows(block.rows)
        if offset == 0 or self._statistics is None:
            self._statistics = statistics
        else:
            self._statistics = self._statistics.combine(statistics)

    def _sync_categories(self, table: TableBase) -> None:
        target = table.dictionary
        for index, feature in enumerate(self._dictionary):
            if feature.feature_kind == FeatureKind.categorical:
                target_feature = target.get_feature(index)
                target_feature.set_feature_kind(FeatureKind.categorical)
                target_feature.set_category_number(feature.category_number)


# =============================================================================
# Concrete Sources
# =============================================================================

class StringDataSource(DataSource):
    """
    Data source over a string of delimited rows.

    Example:
        >>> source = StringDataSource("1,2\\n3,4\\n", create_dictionary=True)
        >>> source.load_data_block(1)
        1
        >>> source.get_status()
        <DataSourceStatus.READY: 'ready'>
    """

    def __init__(
        self,
        text: Optional[str],
        create_dictionary: bool = False,
        allocate_table: bool = False,
        initial_max_rows: Optional[int] = None,
        feature_manager: Optional[CSVFeatureManager] = None,
    ):
        super().__init__(
            text, create_dictionary, allocate_table, initial_max_rows, feature_manager
        )

    def get_data(self) -> Optional[str]:
        if self._lines is None:
            return None
        return "\n".join(self._lines)


class FileDataSource(DataSource):
    """
    Data source over a delimited text file.

    The file is read when the source is created.

    Raises:
        DataSourceError: If the file cannot be read.
    """

    def __init__(
        self,
        path: str,
        create_dictionary: bool = False,
        allocate_table: bool = False,
        initial_max_rows: Optional[int] = None,
        feature_manager: Optional[CSVFeatureManager] = None,
        encoding: str = "utf-8",
    ):
        self._path = str(path)
        try:
            with open(self._path, encoding=encoding) as handle:
                text = handle.read()
        except OSError as exc:
            raise DataSourceError(f"Cannot read {self._path}: {exc}") from exc
        super().__init__(
            text, create_dictionary, allocate_table, initial_max_rows, feature_manager
        )

    @property
    def path(self) -> str:
        return self._path
