"""Tests for Jacobian sparsity detection by bit-mask propagation."""

import numpy as np
import pytest

from sparsemx import (
    SparsityPattern,
    divide,
    full,
    get_nonzeros,
    jacobian_sparsity,
    matmul,
    norm_1,
    symbol,
)
from sparsemx.graph import sparsity_forward, sparsity_reverse


def column(n):
    return SparsityPattern.dense(n, 1)


def _both_modes(output, wrt):
    fwd = jacobian_sparsity(output, wrt, mode="forward")
    rev = jacobian_sparsity(output, wrt, mode="reverse")
    assert fwd == rev
    return fwd


@pytest.mark.sparsity
def test_gather():
    """Absent entries of the mapping depend on nothing."""
    x = symbol("x", 4)
    pattern = _both_modes(get_nonzeros(x, column(3), [3, -1, 1]), x)

    assert pattern.shape == (3, 4)
    np.testing.assert_array_equal(pattern.rows, [0, 2])
    np.testing.assert_array_equal(pattern.cols, [3, 1])


@pytest.mark.sparsity
def test_norm_of_gather():
    """The norm depends exactly on the gathered entries."""
    x = symbol("x", 4)
    pattern = _both_modes(norm_1(get_nonzeros(x, column(3), [3, -1, 1])), x)

    assert pattern.shape == (1, 4)
    np.testing.assert_array_equal(pattern.cols, [1, 3])


@pytest.mark.sparsity
def test_constants_carry_no_dependencies():
    x = symbol("x", 3)
    pattern = _both_modes(divide(x, full(1, 1, 2.0)), x)

    np.testing.assert_array_equal(pattern.todense(), np.eye(3, dtype=np.int8))


@pytest.mark.sparsity
def test_divide_by_norm_is_dense():
    x = symbol("x", 3)
    pattern = _both_modes(divide(x, norm_1(x)), x)

    assert pattern.is_dense


@pytest.mark.sparsity
def test_other_symbols_are_ignored():
    a = symbol("a", (2, 2))
    b = symbol("b", 2)
    y = matmul(a, b)

    assert _both_modes(y, b).is_dense
    assert _both_modes(y, a).shape == (2, 4)


@pytest.mark.sparsity
def test_more_inputs_than_bits_per_sweep():
    """Reversing 130 entries needs three 64-bit sweeps in either mode."""
    n = 130
    x = symbol("x", n)
    y = get_nonzeros(x, column(n), np.arange(n)[::-1])

    pattern = _both_modes(y, x)

    assert pattern.nnz == n
    np.testing.assert_array_equal(pattern.rows, np.arange(n))
    np.testing.assert_array_equal(pattern.cols, np.arange(n)[::-1])


@pytest.mark.sparsity
def test_invalid_mode():
    x = symbol("x", 2)

    with pytest.raises(ValueError, match="mode"):
        jacobian_sparsity(norm_1(x), x, mode="sideways")


@pytest.mark.sparsity
@pytest.mark.graph
def test_sweeps():
    x = symbol("x", 3)
    y = get_nonzeros(x, column(2), [2, 2])

    out = sparsity_forward(y, {x: np.array([1, 2, 4], dtype=np.uint64)})
    np.testing.assert_array_equal(out, [4, 4])

    bits = sparsity_reverse(y, np.array([1, 2], dtype=np.uint64))
    np.testing.assert_array_equal(bits[x], [0, 0, 3])
