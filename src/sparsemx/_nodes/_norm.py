"""Reduction norm nodes: 1-norm, 2-norm, squared 2-norm and infinity norm.

All norms reduce the nonzeros ``x`` of a single dependency to a dense scalar.
Structural zeros contribute nothing to any of them.

Derivatives are written in terms of the partial derivatives ``g = d value / dx``:

    forward:  Σₖ g[k] · Δx[k]
              (1-norm and infinity norm skip terms with Δx[k] == 0)
    adjoint:  Δx[k] += g[k] · s   (skipped entirely when s == 0)

Where the derivative is undefined (``|x|`` at 0, ties of the infinity norm)
``g`` holds NaN, which then propagates as a legitimate result.

Example: x = [3, 4], y = ||x||_2 = 5
    g = x / y = [0.6, 0.8]
    forward seed [1, 0] -> 0.6
    adjoint seed 1      -> [0.6, 0.8]
"""

from __future__ import annotations

from collections.abc import Sequence
from types import ModuleType
from typing import TYPE_CHECKING

import numpy as np

from sparsemx.errors import DimensionMismatchError, UnsupportedOperationError
from sparsemx.pattern import SparsityPattern

from ._algebra import divide, matmul, scale, transpose
from ._commons import Data, Inputs, Node
from ._leaf import full

if TYPE_CHECKING:
    from sparsemx.codegen import CodeGenerator


class Norm(Node):
    """Abstract norm of a vector.

    Evaluating the base class is unsupported.
    Its symbolic derivative is a NaN placeholder meaning that no
    closed-form graph-level derivative is available;
    numeric sensitivities do not depend on it.
    """

    _suffix = ""
    _skip_zero_seeds = False

    def __init__(self, x: Node) -> None:
        super().__init__(SparsityPattern.scalar(), [x])

    def _gradient(self, x: Data) -> Data:
        msg = f"{type(self).__name__} has no derivative"
        raise UnsupportedOperationError(msg)

    def propagate_forward(self, inputs: Inputs, fwd_seeds: Sequence[Inputs]) -> list[Data]:
        (x,), seeds = self._check_forward(inputs, fwd_seeds)
        if not seeds:
            return []
        g = self._gradient(x)
        sens = []
        for seed in seeds:
            dx = seed[0]
            if self._skip_zero_seeds:
                active = dx != 0
                g_active, dx = g[active], dx[active]
            else:
                g_active = g
            sens.append(np.array([np.sum(g_active * dx)]))
        return sens

    def propagate_adjoint(self, inputs, adj_seeds, adj_sens) -> None:
        (x,) = self._check_adjoint(inputs, adj_seeds, adj_sens)
        g = None
        for seed, sens in zip(adj_seeds, adj_sens, strict=True):
            if seed[0] == 0:
                continue
            if g is None:
                g = self._gradient(x)
            sens[0] += g * seed[0]

    def symbolic_derivative(self, seed: Node) -> Node:
        """Derivative for the seed matrix ``seed`` with one row per direction.

        Returns a ``1 x ndir`` node.
        """
        self._check_jacobian_seed(seed)
        return full(1, seed.shape[0], np.nan)

    def _check_jacobian_seed(self, seed: Node) -> None:
        numel = self.dep().sparsity.numel
        if seed.shape[1] != numel:
            msg = f"seed has {seed.shape[1]} columns, expected one per element of the argument ({numel})"
            raise DimensionMismatchError(msg)

    def _column(self) -> Node:
        """The argument as a column vector."""
        x = self.dep()
        if x.shape[1] == 1:
            return x
        if x.shape[0] == 1:
            return transpose(x)
        msg = f"Symbolic derivative of {type(self).__name__} needs a vector argument, got shape {x.shape}"
        raise DimensionMismatchError(msg)

    def _emit_reduction(self, args: Sequence[str], res: Sequence[str], update: str, result: str) -> str:
        x = args[0]
        return (
            f"  for(t=0, ss={x}; ss!={x}+{self.dep().nnz}; ++ss) {update};\n"
            f"  {res[0]}[0] = {result};\n"
        )

    def print_expr(self, args: Sequence[str]) -> str:
        return f"||{args[0]}||{self._suffix}"


class Norm2(Norm):
    """Euclidean norm ``sqrt(Σ x²)``."""

    _suffix = "_2"

    def _value(self, xp: ModuleType, args: Sequence) -> object:
        x = args[0]
        return xp.reshape(xp.sqrt(xp.sum(x * x)), (1,))

    def _gradient(self, x: Data) -> Data:
        with np.errstate(invalid="ignore", divide="ignore"):
            return x / np.sqrt(np.sum(x * x))

    def symbolic_derivative(self, seed: Node) -> Node:
        """``(J x)' / ||x||_2`` for the seed matrix ``J``."""
        self._check_jacobian_seed(seed)
        return divide(transpose(matmul(seed, self._column())), self)

    def emit_code(self, args: Sequence[str], res: Sequence[str], gen: CodeGenerator) -> str:
        return self._emit_reduction(args, res, "t += *ss * *ss", "sqrt(t)")


class Norm2Squared(Norm):
    """Squared Euclidean norm ``Σ x²``."""

    _suffix = "_2^2"

    def _value(self, xp: ModuleType, args: Sequence) -> object:
        x = args[0]
        return xp.reshape(xp.sum(x * x), (1,))

    def _gradient(self, x: Data) -> Data:
        return 2 * x

    def symbolic_derivative(self, seed: Node) -> Node:
        """``2 (J x)'`` for the seed matrix ``J``."""
        self._check_jacobian_seed(seed)
        return scale(transpose(matmul(seed, self._column())), 2.0)

    def emit_code(self, args: Sequence[str], res: Sequence[str], gen: CodeGenerator) -> str:
        return self._emit_reduction(args, res, "t += *ss * *ss", "t")


class Norm1(Norm):
    """Sum of absolute values. The derivative at a zero entry is NaN."""

    _suffix = "_1"
    _skip_zero_seeds = True

    def _value(self, xp: ModuleType, args: Sequence) -> object:
        return xp.reshape(xp.sum(xp.abs(args[0])), (1,))

    def _gradient(self, x: Data) -> Data:
        return np.where(x == 0, np.nan, np.sign(x))

    def emit_code(self, args: Sequence[str], res: Sequence[str], gen: CodeGenerator) -> str:
        return self._emit_reduction(args, res, "t += fabs(*ss)", "t")


class NormInf(Norm):
    """Largest absolute value; 0 for an argument without nonzeros.

    Only values and forward sensitivities are available.
    The forward derivative follows the unique entry of largest magnitude
    and is NaN along entries that tie for the maximum (or when it is 0).
    """

    _suffix = "_inf"
    _skip_zero_seeds = True

    def _value(self, xp: ModuleType, args: Sequence) -> object:
        return xp.reshape(xp.max(xp.abs(args[0]), initial=0.0), (1,))

    def _gradient(self, x: Data) -> Data:
        g = np.zeros_like(x)
        if len(x) == 0:
            return g
        a = np.abs(x)
        top = np.flatnonzero(a == a.max())
        if len(top) == 1 and a[top[0]] > 0:
            g[top[0]] = np.sign(x[top[0]])
        else:
            g[top] = np.nan
        return g

    def propagate_adjoint(self, inputs, adj_seeds, adj_sens) -> None:
        if len(adj_seeds) > 0:
            msg = "Adjoint sensitivities of the infinity norm are not implemented"
            raise UnsupportedOperationError(msg)

    def emit_code(self, args: Sequence[str], res: Sequence[str], gen: CodeGenerator) -> str:
        return self._emit_reduction(args, res, "t = fmax(t, fabs(*ss))", "t")


def norm_1(x: Node) -> Norm1:
    return Norm1(x)


def norm_2(x: Node) -> Norm2:
    return Norm2(x)


def norm_2_squared(x: Node) -> Norm2Squared:
    return Norm2Squared(x)


def norm_inf(x: Node) -> NormInf:
    return NormInf(x)
