"""Tests for the reference traversal driver and the algebra nodes it runs."""

import numpy as np
import pytest

from sparsemx import (
    DimensionMismatchError,
    SparseMatrix,
    SparsityPattern,
    adjoint,
    check_node_derivatives,
    constant,
    divide,
    evaluate,
    forward,
    get_nonzeros,
    matmul,
    norm_2,
    norm_2_squared,
    scale,
    symbol,
    topological_order,
    transpose,
)


def column(n):
    return SparsityPattern.dense(n, 1)


@pytest.fixture
def x():
    return symbol("x", 2)


@pytest.fixture
def shared(x):
    """[x1, x0] / ||x||_2, with x feeding two parents."""
    return divide(get_nonzeros(x, column(2), [1, 0]), norm_2(x))


# Ordering


@pytest.mark.graph
def test_topological_order_visits_shared_node_once(x, shared):
    order = topological_order(shared)

    assert len(order) == 4
    assert sum(node is x for node in order) == 1
    assert order[0] is x
    assert order[-1] is shared
    for i, node in enumerate(order):
        for dep in node.deps:
            assert any(dep is other for other in order[:i])


# Evaluation


@pytest.mark.graph
def test_evaluate(x):
    result = evaluate(norm_2(x), {x: [3.0, 4.0]})

    assert isinstance(result, SparseMatrix)
    assert result.shape == (1, 1)
    np.testing.assert_allclose(result.data, [5.0])


@pytest.mark.graph
def test_evaluate_with_matrix_values(x):
    """Matrix values are re-embedded into the pattern of the symbol."""
    value = SparseMatrix.from_dense([3.0, 0.0])
    result = evaluate(get_nonzeros(x, column(2), [1, 0]), {x: value})

    np.testing.assert_array_equal(result.data, [0.0, 3.0])


@pytest.mark.graph
def test_evaluate_missing_symbol(x):
    with pytest.raises(ValueError, match="No value given for symbol 'x'"):
        evaluate(norm_2(x), {})


@pytest.mark.graph
def test_evaluate_shared(x, shared):
    result = evaluate(shared, {x: [3.0, 4.0]})
    np.testing.assert_allclose(result.data, [0.8, 0.6])


# Sensitivities


@pytest.mark.graph
def test_forward():
    y = norm_2_squared(get_nonzeros(symbol("z", 3), column(2), [2, 0]))
    z = y.dep().dep()

    (d0, d2) = forward(y, {z: [1.0, 5.0, 2.0]}, {z: [[1.0, 0.0, 0.0], [0.0, 0.0, 1.0]]})

    np.testing.assert_allclose(d0.data, [2.0])
    np.testing.assert_allclose(d2.data, [4.0])


@pytest.mark.graph
def test_forward_unseeded_symbol_has_zero_seed():
    a = symbol("a", 2)
    b = symbol("b", 2)
    y = divide(a, norm_2(b))

    (result,) = forward(y, {a: [1.0, 2.0], b: [3.0, 4.0]}, {a: [[1.0, 1.0]]})

    np.testing.assert_allclose(result.data, [0.2, 0.2])


@pytest.mark.graph
def test_forward_direction_count_mismatch():
    a = symbol("a", 2)
    b = symbol("b", 2)
    y = divide(a, norm_2(b))

    with pytest.raises(ValueError, match="same number of seed directions"):
        forward(y, {a: [1.0, 2.0], b: [3.0, 4.0]}, {a: [[1.0, 0.0]], b: []})


@pytest.mark.graph
def test_adjoint_accumulates_over_parents(x, shared):
    """Both parents of x add into its one adjoint buffer."""
    data = np.array([3.0, 4.0])
    result = adjoint(shared, {x: data}, [[1.0, 0.0]])

    # d(x1 / r) / dx = e1 / r - x1 * x / r^3
    expected = np.array([0.0, 1.0]) / 5.0 - 4.0 * data / 125.0
    (sens,) = result[x]
    np.testing.assert_allclose(sens.data, expected)


@pytest.mark.graph
def test_adjoint_matches_forward(x, shared):
    """<w, J v> computed in both directions."""
    rng = np.random.default_rng(0)
    data = np.array([3.0, 4.0])
    v = rng.normal(size=2)
    w = rng.normal(size=2)

    (fwd,) = forward(shared, {x: data}, {x: [v]})
    (adj,) = adjoint(shared, {x: data}, [w])[x]

    np.testing.assert_allclose(np.dot(w, fwd.data), np.dot(adj.data, v))


@pytest.mark.graph
def test_adjoint_leaves_caller_seeds_alone(x):
    seed = np.array([1.0])
    adjoint(norm_2(x), {x: [3.0, 4.0]}, [seed])

    np.testing.assert_array_equal(seed, [1.0])


@pytest.mark.graph
def test_adjoint_multiple_directions(x):
    result = adjoint(norm_2(x), {x: [3.0, 4.0]}, [[1.0], [0.0], [2.0]])

    np.testing.assert_allclose(result[x][0].data, [0.6, 0.8])
    np.testing.assert_array_equal(result[x][1].data, [0.0, 0.0])
    np.testing.assert_allclose(result[x][2].data, [1.2, 1.6])


# Algebra nodes


@pytest.mark.graph
class TestAlgebra:
    def test_transpose_value(self):
        x = symbol("x", SparsityPattern.from_coordinates([0, 0, 1], [1, 2, 0], (2, 3)))
        result = evaluate(transpose(x), {x: [1.0, 2.0, 3.0]})

        np.testing.assert_array_equal(result.todense(), [[0.0, 3.0], [1.0, 0.0], [2.0, 0.0]])
        assert str(transpose(x)) == "x'"

    def test_matmul_value(self):
        a = constant([[1.0, 2.0], [0.0, 3.0]])
        b = symbol("b", 2)
        result = evaluate(matmul(a, b), {b: [5.0, 7.0]})

        np.testing.assert_array_equal(result.data, [19.0, 21.0])

    def test_matmul_shape_mismatch(self):
        with pytest.raises(DimensionMismatchError):
            matmul(symbol("a", (2, 3)), symbol("b", 2))

    def test_scale_by_one_is_argument(self):
        x = symbol("x", 2)
        assert scale(x, 1.0) is x

    def test_divide_requires_scalar(self):
        with pytest.raises(DimensionMismatchError, match="scalar"):
            divide(symbol("x", 2), symbol("y", 2))

    @pytest.mark.parametrize(
        ("make_node", "inputs"),
        [
            (
                lambda: transpose(symbol("x", SparsityPattern.from_coordinates([0, 1, 1], [1, 0, 2], (2, 3)))),
                [[1.0, 2.0, 3.0]],
            ),
            (lambda: matmul(symbol("a", (2, 3)), symbol("b", 3)), [np.arange(6.0), [1.0, -1.0, 2.0]]),
            (lambda: scale(symbol("x", 3), -2.5), [[1.0, 2.0, 3.0]]),
            (lambda: divide(symbol("x", 3), symbol("y", (1, 1))), [[1.0, 2.0, 3.0], [4.0]]),
        ],
    )
    def test_derivatives_match_jax(self, make_node, inputs):
        check_node_derivatives(make_node(), inputs)
