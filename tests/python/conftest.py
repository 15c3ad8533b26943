"""
Pytest configuration and shared fixtures for numtab tests.
"""

import pytest
import numpy as np
from pathlib import Path
import sys

# Add src to path for imports
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root / "src"))

from numtab import NumericTable, MergedNumericTable, config

# Try to import scipy
try:
    import scipy.sparse as sp
    HAS_SCIPY = True
except ImportError:
    HAS_SCIPY = False


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture(scope="session")
def requires_scipy():
    """Skip test if scipy is not available."""
    if not HAS_SCIPY:
        pytest.skip("scipy not available")


@pytest.fixture(autouse=True)
def reset_config():
    """Every test starts from the default configuration."""
    config.reset()
    yield
    config.reset()


@pytest.fixture
def dense_values():
    """The 3x2 matrix used throughout the dense tests.

    Matrix:
    [[1, 2],
     [3, 4],
     [5, 6]]
    """
    return np.array([[1, 2], [3, 4], [5, 6]], dtype=np.float64)


@pytest.fixture
def dense_table(dense_values):
    """3x2 float64 row-major table holding ``dense_values``."""
    table = NumericTable.homogen(3, 2)
    table.release_block_of_rows(0, 3, dense_values.copy())
    return table


@pytest.fixture
def mixed_soa_table():
    """3x3 column-major table with int32, float32 and float64 columns."""
    return NumericTable.from_columns([
        np.array([1, 2, 3], dtype=np.int32),
        np.array([0.5, 1.5, 2.5], dtype=np.float32),
        np.array([10.0, 20.0, 30.0], dtype=np.float64),
    ])


@pytest.fixture
def upper_packed_table():
    """3x3 upper packed symmetric table.

    Packed [1, 2, 3, 4, 5, 6] is the matrix:
    [[1, 2, 3],
     [2, 4, 5],
     [3, 5, 6]]
    """
    return NumericTable.packed_symmetric(3, data=np.arange(1.0, 7.0))


@pytest.fixture
def small_csr_table():
    """3x4 CSR table.

    Matrix:
    [[1, 0, 2, 0],
     [0, 3, 0, 4],
     [5, 0, 0, 6]]
    """
    return NumericTable.csr(
        values=np.array([1.0, 2.0, 3.0, 4.0, 5.0, 6.0]),
        column_indices=np.array([0, 2, 1, 3, 0, 3]),
        row_offsets=np.array([0, 2, 4, 6]),
        n_columns=4,
    )


@pytest.fixture
def dense_csr_equivalent():
    """Dense form of ``small_csr_table``."""
    return np.array([
        [1, 0, 2, 0],
        [0, 3, 0, 4],
        [5, 0, 0, 6]
    ], dtype=np.float64)


@pytest.fixture
def scipy_csr_matrix(requires_scipy):
    """Create a scipy CSR matrix for interop testing."""
    return sp.csr_matrix([
        [1, 0, 2, 0],
        [0, 3, 0, 4],
        [5, 0, 0, 6]
    ], dtype=np.float32)


@pytest.fixture
def merged_table():
    """4x3 float64 features merged with a 4x1 int32 label column."""
    features = NumericTable.from_array(np.arange(12, dtype=np.float64).reshape(4, 3))
    labels = NumericTable.from_array(np.array([[0], [1], [0], [1]], dtype=np.int32))
    return MergedNumericTable(features, labels)


# =============================================================================
# Helper Functions
# =============================================================================

def assert_array_equal(a1, a2, rtol=1e-5, atol=1e-8):
    """Assert two arrays are approximately equal."""
    np.testing.assert_allclose(np.asarray(a1), np.asarray(a2), rtol=rtol, atol=atol)
