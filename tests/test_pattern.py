"""Tests for SparsityPattern and SparseMatrix."""

import jax.numpy as jnp
import numpy as np
import pytest
from jax.experimental.sparse import BCOO

from sparsemx import (
    DimensionMismatchError,
    IndexOutOfRangeError,
    SparseMatrix,
    SparsityPattern,
)


@pytest.mark.pattern
class TestConstruction:
    """Test SparsityPattern construction methods."""

    def test_from_coordinates_canonicalises(self):
        """Coordinates are sorted into row-major order and duplicates dropped."""
        pattern = SparsityPattern.from_coordinates([2, 0, 0, 2], [1, 1, 0, 1], (3, 3))

        assert pattern.shape == (3, 3)
        assert pattern.nnz == 3
        np.testing.assert_array_equal(pattern.rows, [0, 0, 2])
        np.testing.assert_array_equal(pattern.cols, [0, 1, 1])

    def test_from_coordinates_empty(self):
        """Construction with no non-zeros."""
        pattern = SparsityPattern.from_coordinates([], [], (3, 4))

        assert pattern.shape == (3, 4)
        assert pattern.nnz == 0
        assert pattern.density == 0.0

    def test_direct_construction_requires_canonical_order(self):
        with pytest.raises(ValueError, match="row-major"):
            SparsityPattern(rows=[1, 0], cols=[0, 0], shape=(2, 2))

    def test_out_of_range_raises(self):
        with pytest.raises(IndexOutOfRangeError):
            SparsityPattern.from_coordinates([0, 3], [0, 0], (3, 3))

    def test_mismatched_rows_cols_raises(self):
        """rows and cols with different lengths raise DimensionMismatchError."""
        with pytest.raises(DimensionMismatchError, match="same length"):
            SparsityPattern.from_coordinates([0, 1], [0], (2, 2))

    def test_from_crs(self):
        """Compressed-row storage, with an empty middle row."""
        pattern = SparsityPattern.from_crs(3, 4, col=[0, 2, 1, 3], row_offsets=[0, 2, 2, 4])

        np.testing.assert_array_equal(pattern.rows, [0, 0, 2, 2])
        np.testing.assert_array_equal(pattern.cols, [0, 2, 1, 3])
        np.testing.assert_array_equal(pattern.row_offsets, [0, 2, 2, 4])

    def test_from_crs_bad_offsets(self):
        with pytest.raises(DimensionMismatchError):
            SparsityPattern.from_crs(2, 2, col=[0, 1], row_offsets=[0, 1])

    def test_dense_and_scalar(self):
        dense = SparsityPattern.dense(2, 3)
        assert dense.nnz == 6
        assert dense.is_dense

        scalar = SparsityPattern.scalar()
        assert scalar.is_scalar
        assert scalar.is_dense
        assert scalar.nnz == 1

    def test_from_dense(self):
        dense = np.array([[1, 0, 1], [0, 1, 0], [1, 1, 0]])
        pattern = SparsityPattern.from_dense(dense)

        assert pattern.nnz == 5
        np.testing.assert_array_equal(pattern.todense(), (dense != 0).astype(np.int8))

    def test_from_bcoo_roundtrip(self):
        """Convert from BCOO and back."""
        data = jnp.array([1, 1, 1])
        indices = jnp.array([[2, 2], [0, 0], [1, 1]])
        bcoo = BCOO((data, indices), shape=(3, 3))

        pattern = SparsityPattern.from_bcoo(bcoo)
        assert pattern.nnz == 3
        np.testing.assert_array_equal(pattern.rows, [0, 1, 2])

        bcoo2 = pattern.to_bcoo()
        np.testing.assert_array_equal(bcoo2.todense(), bcoo.todense())


@pytest.mark.pattern
class TestQueries:
    """Test nonzero lookups."""

    @pytest.fixture
    def pattern(self):
        return SparsityPattern.from_coordinates([0, 0, 2, 2], [0, 2, 1, 3], (3, 4))

    def test_positions_row_major(self, pattern):
        assert list(pattern.positions()) == [(0, 0), (0, 2), (2, 1), (2, 3)]

    def test_elements(self, pattern):
        np.testing.assert_array_equal(pattern.elements(), [0, 2, 9, 11])

    def test_linear_index_of(self, pattern):
        assert pattern.linear_index_of(2, 1) == 2
        assert pattern.linear_index_of(0, 0) == 0
        assert pattern.linear_index_of(1, 1) is None

    def test_get_nz_vectorised(self, pattern):
        """Absent and out-of-range positions map to -1."""
        result = pattern.get_nz([0, 1, 2, 5], [2, 0, 3, 0])
        np.testing.assert_array_equal(result, [1, -1, 3, -1])

    def test_get_nz_elements_empty_pattern(self):
        empty = SparsityPattern.from_coordinates([], [], (2, 2))
        np.testing.assert_array_equal(empty.get_nz_elements([0, 3]), [-1, -1])

    def test_contains(self, pattern):
        sub = SparsityPattern.from_coordinates([0, 2], [2, 3], (3, 4))
        other = SparsityPattern.from_coordinates([1], [1], (3, 4))

        assert pattern.contains(sub)
        assert not pattern.contains(other)
        assert not sub.contains(pattern)

    def test_scatter_matrix(self, pattern):
        """scatter_matrix maps nonzero data to the flattened dense matrix."""
        data = np.array([1.0, 2.0, 3.0, 4.0])
        dense = (pattern.scatter_matrix() @ data).reshape(pattern.shape)

        expected = np.zeros((3, 4))
        expected[pattern.rows, pattern.cols] = data
        np.testing.assert_array_equal(dense, expected)


@pytest.mark.pattern
class TestAlgebra:
    """Test union and transpose."""

    def test_union(self):
        a = SparsityPattern.from_coordinates([0, 1], [0, 1], (2, 2))
        b = SparsityPattern.from_coordinates([0, 1], [1, 1], (2, 2))

        union = a.union(b)
        np.testing.assert_array_equal(union.rows, [0, 0, 1])
        np.testing.assert_array_equal(union.cols, [0, 1, 1])
        assert union.contains(a)
        assert union.contains(b)

    def test_union_shape_mismatch(self):
        a = SparsityPattern.dense(2, 2)
        b = SparsityPattern.dense(2, 3)

        with pytest.raises(DimensionMismatchError):
            a.union(b)

    def test_transpose_permutation(self):
        """``data[perm]`` holds the nonzeros of the transposed matrix."""
        pattern = SparsityPattern.from_coordinates([0, 0, 1], [1, 2, 0], (2, 3))
        data = np.array([1.0, 2.0, 3.0])

        pattern_t, perm = pattern.transpose()

        assert pattern_t.shape == (3, 2)
        np.testing.assert_array_equal(perm, [2, 0, 1])
        dense = SparseMatrix(pattern, data).todense()
        np.testing.assert_array_equal(SparseMatrix(pattern_t, data[perm]).todense(), dense.T)


@pytest.mark.pattern
class TestComparison:
    def test_structural_equality(self):
        a = SparsityPattern.from_coordinates([1, 0], [0, 1], (2, 2))
        b = SparsityPattern.from_dense([[0, 1], [1, 0]])

        assert a == b
        assert hash(a) == hash(b)
        assert len({a, b}) == 1

    def test_shape_matters(self):
        a = SparsityPattern.from_coordinates([0], [0], (1, 1))
        b = SparsityPattern.from_coordinates([0], [0], (1, 2))

        assert a != b


@pytest.mark.pattern
class TestDisplay:
    def test_repr(self):
        pattern = SparsityPattern.dense(2, 3)
        assert repr(pattern) == "SparsityPattern(shape=(2, 3), nnz=6)"

    def test_str_small_uses_dots(self):
        pattern = SparsityPattern.from_coordinates([0, 1], [0, 1], (2, 2))
        text = str(pattern)

        assert text.startswith("SparsityPattern(2×2, nnz=2")
        assert "● ⋅" in text
        assert "⋅ ●" in text

    def test_str_large_uses_braille(self):
        n = 100
        pattern = SparsityPattern.from_coordinates(np.arange(n), np.arange(n), (n, n))
        text = str(pattern)

        assert "●" not in text
        assert "⎡" in text

    def test_str_empty(self):
        pattern = SparsityPattern.from_coordinates([], [], (0, 3))
        assert "(empty)" in str(pattern)


@pytest.mark.pattern
class TestSparseMatrix:
    """Test the SparseMatrix value type."""

    def test_from_dense_keeps_nonzeros(self):
        matrix = SparseMatrix.from_dense([[1.0, 0.0], [0.0, 2.0]])

        assert matrix.shape == (2, 2)
        assert matrix.nnz == 2
        np.testing.assert_array_equal(matrix.data, [1.0, 2.0])

    def test_from_dense_vector_is_column(self):
        matrix = SparseMatrix.from_dense([1.0, 0.0, 3.0])

        assert matrix.shape == (3, 1)
        np.testing.assert_array_equal(matrix.data, [1.0, 3.0])

    def test_from_dense_with_sparsity_keeps_explicit_zeros(self):
        sparsity = SparsityPattern.dense(2, 1)
        matrix = SparseMatrix.from_dense([[0.0], [5.0]], sparsity)

        np.testing.assert_array_equal(matrix.data, [0.0, 5.0])

    def test_from_dense_shape_mismatch(self):
        with pytest.raises(DimensionMismatchError):
            SparseMatrix.from_dense(np.ones((2, 2)), SparsityPattern.dense(3, 1))

    def test_data_length_mismatch(self):
        with pytest.raises(DimensionMismatchError, match="nonzeros"):
            SparseMatrix(SparsityPattern.dense(2, 2), [1.0, 2.0])

    def test_zeros(self):
        matrix = SparseMatrix.zeros(SparsityPattern.dense(2, 2))
        np.testing.assert_array_equal(matrix.data, np.zeros(4))

    def test_from_bcoo_sums_duplicates(self):
        indices = jnp.array([[0, 0], [0, 0], [1, 1]])
        bcoo = BCOO((jnp.array([1.0, 2.0, 3.0]), indices), shape=(2, 2))

        matrix = SparseMatrix.from_bcoo(bcoo)
        np.testing.assert_array_equal(matrix.data, [3.0, 3.0])

    def test_to_bcoo(self):
        matrix = SparseMatrix.from_dense([[0.0, 2.0], [3.0, 0.0]])
        np.testing.assert_array_equal(matrix.to_bcoo().todense(), matrix.todense())

    def test_repr(self):
        matrix = SparseMatrix.from_dense([[1.0, 0.0], [0.0, 2.0]])
        assert repr(matrix).startswith("SparseMatrix(shape=(2, 2), nnz=2")
