"""Verification of node sensitivities against JAX reference derivatives."""

from collections.abc import Sequence
from typing import Literal

import jax
import jax.numpy as jnp
import numpy as np
from numpy.typing import ArrayLike

from sparsemx._nodes import Node


class VerificationError(AssertionError):
    """Raised when a node's sensitivities disagree with ``jax.jacfwd``.

    The reference differentiates the same ``_value`` rule the node evaluates,
    so a mismatch points at the node's forward or adjoint propagation.
    """


def check_node_derivatives(
    node: Node,
    inputs: Sequence[ArrayLike],
    *,
    modes: Sequence[Literal["forward", "adjoint"]] = ("forward", "adjoint"),
    rtol: float = 1e-5,
    atol: float = 1e-6,
) -> None:
    """Verify forward and adjoint sensitivities of ``node`` at ``inputs``.

    Forward mode is run with one unit seed per dependency nonzero,
    adjoint mode with one unit seed per output nonzero,
    and both Jacobians are compared with ``jax.jacfwd``.

    Args:
        node: Node to check.
        inputs: Nonzeros of each dependency.
        modes: Which propagation directions to check.
        rtol: Relative tolerance for comparison.
        atol: Absolute tolerance for comparison.

    Raises:
        VerificationError: If a propagated Jacobian disagrees with the reference.
    """
    args = [np.asarray(x, dtype=np.float64).reshape(-1) for x in inputs]
    references = [_reference_jacobian(node, args, i) for i in range(node.n_deps)]

    if "forward" in modes:
        for i, (dep, ref) in enumerate(zip(node.deps, references, strict=True)):
            seeds = []
            for k in range(dep.nnz):
                seed = [np.zeros(d.nnz) for d in node.deps]
                seed[i][k] = 1.0
                seeds.append(seed)
            sens = node.propagate_forward(args, seeds)
            result = np.stack(sens, axis=1) if sens else np.zeros((node.nnz, 0))
            _check_allclose(result, ref, f"forward Jacobian w.r.t. argument {i}", rtol=rtol, atol=atol)

    if "adjoint" in modes:
        adj_seeds = list(np.eye(node.nnz))
        adj_sens = [[np.zeros(d.nnz) for d in node.deps] for _ in range(node.nnz)]
        node.propagate_adjoint(args, adj_seeds, adj_sens)
        for i, (dep, ref) in enumerate(zip(node.deps, references, strict=True)):
            rows = [sens[i] for sens in adj_sens]
            result = np.stack(rows, axis=0) if rows else np.zeros((0, dep.nnz))
            _check_allclose(result, ref, f"adjoint Jacobian w.r.t. argument {i}", rtol=rtol, atol=atol)


def _reference_jacobian(node: Node, args: list[np.ndarray], i: int) -> np.ndarray:
    """Dense ``(node.nnz, dep.nnz)`` Jacobian of the node's value w.r.t. argument ``i``."""
    n_in = node.dep(i).nnz
    if n_in == 0 or node.nnz == 0:
        return np.zeros((node.nnz, n_in))

    def f(xi):
        jargs = [jnp.asarray(a) for a in args]
        jargs[i] = xi
        return jnp.reshape(node._value(jnp, jargs), (node.nnz,))

    jac = jax.jacfwd(f)(jnp.asarray(args[i]))
    return np.asarray(jac, dtype=np.float64).reshape(node.nnz, n_in)


def _check_allclose(
    result: np.ndarray,
    reference: np.ndarray,
    name: str,
    *,
    rtol: float,
    atol: float,
) -> None:
    """Compare propagated and reference Jacobians, raising VerificationError on mismatch."""
    if result.shape != reference.shape:
        raise VerificationError(
            f"{name} has shape {result.shape} but the JAX reference has shape {reference.shape}."
        )
    try:
        np.testing.assert_allclose(result, reference, rtol=rtol, atol=atol)
    except AssertionError:
        raise VerificationError(
            f"{name} does not match the JAX reference.\n"
            f"propagated:\n{result}\nreference:\n{reference}"
        ) from None
