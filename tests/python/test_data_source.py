"""
Tests for delimited-text data sources.
"""

import pytest
import numpy as np

from numtab import (
    DataDictionary,
    DataSourceConfig,
    DataSourceStatus,
    FeatureKind,
    FileDataSource,
    MergedNumericTable,
    NumericKind,
    NumericTable,
    StorageLayout,
    StringDataSource,
    SummaryStatistics,
    config,
)
from numtab.data_source import CSVFeatureManager
from numtab.errors import DataSourceError, DimensionMismatchError


CSV = "1,2.5,red\n2,3.5,blue\n3,4.5,red\n"


# =============================================================================
# Dictionary Inference
# =============================================================================

class TestDictionaryInference:
    """Test type inference from the first row."""

    def test_inferred_kinds(self):
        source = StringDataSource(CSV, create_dictionary=True)
        dictionary = source.get_dictionary()
        assert dictionary.kinds() == [NumericKind.int32, NumericKind.float64, NumericKind.int32]
        assert dictionary[2].feature_kind is FeatureKind.categorical

    def test_large_integer_is_int64(self):
        source = StringDataSource("5000000000,1\n", create_dictionary=True)
        assert source.get_dictionary()[0].numeric_kind is NumericKind.int64

    def test_inference_does_not_consume_rows(self):
        source = StringDataSource(CSV, create_dictionary=True)
        assert source.get_number_of_available_rows() == 3
        assert source.load_data_block() == 3

    def test_dictionary_already_set(self):
        source = StringDataSource(CSV, create_dictionary=True)
        with pytest.raises(DataSourceError):
            source.create_dictionary_from_context()

    def test_categorical_inference_disabled(self):
        with config.local(data_source=DataSourceConfig(infer_categorical=False)):
            source = StringDataSource(CSV)
        with pytest.raises(DataSourceError):
            source.create_dictionary_from_context()

    def test_empty_data(self):
        with pytest.raises(DataSourceError):
            StringDataSource("", create_dictionary=True)

    def test_untyped_dictionary_rejected(self):
        source = StringDataSource(CSV)
        with pytest.raises(DataSourceError):
            source.set_dictionary(DataDictionary(3))


# =============================================================================
# Loading
# =============================================================================

class TestLoading:
    """Test loading into owned and caller tables."""

    def test_load_everything(self):
        source = StringDataSource(CSV, create_dictionary=True)
        assert source.load_data_block() == 3
        table = source.get_numeric_table()
        assert table.layout is StorageLayout.SOA
        np.testing.assert_array_equal(
            table.get_block_of_rows(0, 3), [[1, 2.5, 0], [2, 3.5, 1], [3, 4.5, 0]]
        )
        assert [a.dtype for a in table.backend.arrays] == [np.int32, np.float64, np.int32]

    def test_categories(self):
        source = StringDataSource(CSV, create_dictionary=True)
        source.load_data_block()
        assert source.get_category_map(2) == {"red": 0, "blue": 1}
        assert source.get_dictionary()[2].category_number == 2
        assert source.get_numeric_table().get_feature(2).category_number == 2

    def test_status(self):
        source = StringDataSource(CSV, create_dictionary=True)
        assert source.get_status() is DataSourceStatus.READY
        source.load_data_block(2)
        assert source.get_status() is DataSourceStatus.READY
        assert source.get_number_of_available_rows() == 1
        source.load_data_block(2)
        assert source.get_status() is DataSourceStatus.END_OF_DATA

    def test_block_by_block(self):
        source = StringDataSource(CSV, create_dictionary=True)
        assert source.load_data_block(2) == 2
        assert source.get_numeric_table().get_number_of_rows() == 2
        assert source.load_data_block(2) == 1
        table = source.get_numeric_table()
        assert table.get_number_of_rows() == 1
        np.testing.assert_array_equal(table.get_block_of_rows(0, 1), [[3, 4.5, 0]])

    def test_reset(self):
        source = StringDataSource(CSV, create_dictionary=True)
        source.load_data_block()
        source.reset()
        assert source.get_status() is DataSourceStatus.READY
        assert source.load_data_block(1) == 1

    def test_growth_loads_many_rows(self):
        text = "".join(f"{i},{i * 0.5}\n" for i in range(37))
        with config.local(data_source=DataSourceConfig(initial_max_rows=2)):
            source = StringDataSource(text, create_dictionary=True)
        assert source.load_data_block() == 37
        column = source.get_numeric_table().get_block_of_column_values(0, 0, 37)
        np.testing.assert_array_equal(column, np.arange(37))

    def test_load_into_dense_table(self):
        source = StringDataSource("1,2\n3,4\n5,6\n", create_dictionary=True)
        table = NumericTable.homogen(0, 2, allocate=False)
        assert source.load_data_block(table=table) == 3
        np.testing.assert_array_equal(table.to_numpy(), [[1, 2], [3, 4], [5, 6]])

    def test_load_into_merged_table(self):
        source = StringDataSource("0.5,1.5,1\n2.5,3.5,0\n", create_dictionary=True)
        features = NumericTable.homogen(0, 2, allocate=False)
        labels = NumericTable.homogen(0, 1, kind='int32', allocate=False)
        merged = MergedNumericTable(features, labels)
        assert source.load_data_block(table=merged) == 2
        np.testing.assert_array_equal(features.to_numpy(), [[0.5, 1.5], [2.5, 3.5]])
        np.testing.assert_array_equal(labels.get_block_of_rows(0, 2, 'int32'), [[1], [0]])

    def test_column_count_mismatch(self):
        source = StringDataSource(CSV, create_dictionary=True)
        with pytest.raises(DimensionMismatchError):
            source.load_data_block(table=NumericTable.homogen(0, 2, allocate=False))

    def test_ragged_row(self):
        source = StringDataSource("1,2\n3\n", create_dictionary=True)
        with pytest.raises(DataSourceError, match="line 2"):
            source.load_data_block()

    def test_non_numeric_in_numeric_column(self):
        source = StringDataSource("1,2\nx,4\n", create_dictionary=True)
        with pytest.raises(DataSourceError, match="column 0"):
            source.load_data_block()

    def test_empty_token_reads_as_nan(self):
        source = StringDataSource("1.5,2\n,4\n", create_dictionary=True)
        source.load_data_block()
        column = source.get_numeric_table().get_block_of_column_values(0, 0, 2)
        assert np.isnan(column[1])

    def test_blank_lines_skipped(self):
        source = StringDataSource("1,2\n\n3,4\n\n", create_dictionary=True)
        assert source.load_data_block() == 2

    def test_load_without_dictionary(self):
        source = StringDataSource(CSV)
        with pytest.raises(DataSourceError):
            source.load_data_block()

    def test_parse_error_leaves_source_unchanged(self):
        source = StringDataSource("1,2\n3,4\nx,6\n7,8\n", create_dictionary=True)
        with pytest.raises(DataSourceError, match="line 3"):
            source.load_data_block()
        assert source.get_number_of_available_rows() == 4
        assert source.get_status() is DataSourceStatus.READY
        assert source.get_statistics() is None
        assert source.load_data_block(2) == 2
        np.testing.assert_array_equal(
            source.get_numeric_table().to_numpy(), [[1, 2], [3, 4]]
        )

    def test_parse_error_keeps_categories(self):
        source = StringDataSource("red,1\nblue,x\n", create_dictionary=True)
        with pytest.raises(DataSourceError):
            source.load_data_block()
        assert source.get_category_map(0) == {}
        assert source.get_dictionary()[0].category_number == 0
        source.load_data_block(1)
        assert source.get_category_map(0) == {"red": 0}
        assert source.get_dictionary()[0].category_number == 1

    def test_not_available(self):
        source = StringDataSource(CSV, create_dictionary=True)
        source.reset_data()
        assert source.get_status() is DataSourceStatus.NOT_AVAILABLE
        assert source.get_number_of_available_rows() == 0
        with pytest.raises(DataSourceError):
            source.load_data_block()


# =============================================================================
# Wide Integers
# =============================================================================

class TestInt64Columns:
    """Test that int64 columns keep every digit."""

    BIG = 2 ** 53 + 1

    def test_owned_table_keeps_exact_values(self):
        source = StringDataSource(f"{self.BIG},1\n{-self.BIG},2\n", create_dictionary=True)
        assert source.get_dictionary()[0].numeric_kind is NumericKind.int64
        source.load_data_block()
        column = source.get_numeric_table().backend.get_array(0)
        assert column.dtype == np.int64
        assert column.tolist() == [self.BIG, -self.BIG]

    def test_dense_int64_table_keeps_exact_values(self):
        source = StringDataSource(f"{self.BIG},3\n", create_dictionary=True)
        table = NumericTable.homogen(0, 2, kind='int64', allocate=False)
        source.load_data_block(table=table)
        assert table.backend.data.reshape(-1).tolist() == [self.BIG, 3]

    def test_empty_and_fractional_tokens(self):
        source = StringDataSource(f"{self.BIG},1\n,2\n7.9,3\n", create_dictionary=True)
        source.load_data_block()
        column = source.get_numeric_table().backend.get_array(0)
        assert column.tolist() == [self.BIG, 0, 7]


# =============================================================================
# Offset Loading & Statistics
# =============================================================================

class TestOffsetLoading:
    """Test filling a pre-sized table block by block."""

    TEXT = "1,10\n2,20\n3,30\n4,40\n5,50\n"

    def test_fill_in_blocks(self):
        source = StringDataSource(self.TEXT, create_dictionary=True)
        table = NumericTable.homogen(0, 2, allocate=False)
        assert source.load_data_block(2, table=table, row_offset=0, full_rows=5) == 2
        assert table.get_number_of_rows() == 5
        assert source.load_data_block(3, table=table, row_offset=2, full_rows=5) == 3
        np.testing.assert_array_equal(
            table.to_numpy(), [[1, 10], [2, 20], [3, 30], [4, 40], [5, 50]]
        )

    def test_offset_into_sized_table(self):
        source = StringDataSource(self.TEXT, create_dictionary=True)
        table = NumericTable.homogen(6, 2)
        source.load_data_block(1, table=table, row_offset=4)
        assert table.get_number_of_rows() == 6
        np.testing.assert_array_equal(table.get_block_of_rows(4, 2), [[1, 10], [0, 0]])

    def test_rows_must_fit(self):
        source = StringDataSource(self.TEXT, create_dictionary=True)
        table = NumericTable.homogen(4, 2)
        with pytest.raises(DataSourceError, match="do not fit"):
            source.load_data_block(table=table, row_offset=1)
        assert source.get_number_of_available_rows() == 5
        assert table.get_number_of_rows() == 4

    def test_negative_offset(self):
        source = StringDataSource(self.TEXT, create_dictionary=True)
        with pytest.raises(DataSourceError):
            source.load_data_block(row_offset=-1)


class TestStatistics:
    """Test per-column summaries of loaded rows."""

    def test_summary_of_load(self):
        source = StringDataSource("1,2.5\n3,-1.5\n,4.0\n", create_dictionary=True)
        source.load_data_block()
        stats = source.get_statistics()
        assert stats.n_rows == 3
        np.testing.assert_array_equal(stats.minimum, [1.0, -1.5])
        np.testing.assert_array_equal(stats.maximum, [3.0, 4.0])
        np.testing.assert_array_equal(stats.sum, [4.0, 5.0])
        np.testing.assert_array_equal(stats.sum_squares, [10.0, 24.5])

    def test_offset_loads_extend_summary(self):
        source = StringDataSource("1,10\n2,20\n3,30\n", create_dictionary=True)
        table = NumericTable.homogen(0, 2, allocate=False)
        source.load_data_block(2, table=table, row_offset=0, full_rows=3)
        source.load_data_block(1, table=table, row_offset=2, full_rows=3)
        stats = source.get_statistics()
        assert stats.n_rows == 3
        np.testing.assert_array_equal(stats.maximum, [3.0, 30.0])
        np.testing.assert_array_equal(stats.sum, [6.0, 60.0])

    def test_plain_load_restarts_summary(self):
        source = StringDataSource("1\n2\n3\n", create_dictionary=True)
        source.load_data_block(2)
        source.load_data_block(1)
        stats = source.get_statistics()
        assert stats.n_rows == 1
        np.testing.assert_array_equal(stats.sum, [3.0])

    def test_empty_summary(self):
        stats = SummaryStatistics.from_rows(np.empty((0, 2)))
        assert stats.n_rows == 0
        assert np.isnan(stats.minimum).all()
        np.testing.assert_array_equal(stats.sum, [0.0, 0.0])


# =============================================================================
# Feature Manager & Files
# =============================================================================

class TestFeatureManager:
    """Test tokenizing with a custom delimiter."""

    def test_delimiter_from_config(self):
        with config.local(data_source=DataSourceConfig(delimiter=";")):
            source = StringDataSource("1;2\n3;4\n", create_dictionary=True)
        assert len(source.get_dictionary()) == 2
        assert source.load_data_block() == 2

    def test_explicit_manager(self):
        manager = CSVFeatureManager(delimiter="\t")
        assert manager.tokenize(" 1\t2 ") == ["1", "2"]


class TestFileDataSource:
    """Test reading from disk."""

    def test_load_file(self, tmp_path):
        path = tmp_path / "data.csv"
        path.write_text(CSV)
        source = FileDataSource(path, create_dictionary=True)
        assert source.path == str(path)
        assert source.load_data_block() == 3
        assert source.get_status() is DataSourceStatus.END_OF_DATA

    def test_missing_file(self, tmp_path):
        with pytest.raises(DataSourceError):
            FileDataSource(tmp_path / "missing.csv")
