"""Leaf nodes: free symbols and numeric constants."""

from __future__ import annotations

from collections.abc import Sequence
from types import ModuleType
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import ArrayLike

from sparsemx.codegen import format_real
from sparsemx.errors import UnsupportedOperationError
from sparsemx.matrix import SparseMatrix
from sparsemx.pattern import SparsityPattern

from ._commons import BitVector, Data, Inputs, Node

if TYPE_CHECKING:
    from sparsemx.codegen import CodeGenerator


class Symbol(Node):
    """Free matrix variable whose nonzeros are supplied by the traversal driver."""

    def __init__(self, name: str, sparsity: SparsityPattern) -> None:
        super().__init__(sparsity)
        self.name = name

    def _value(self, xp: ModuleType, args: Sequence) -> object:
        msg = f"Symbol '{self.name}' has no value, it must be supplied by the caller"
        raise UnsupportedOperationError(msg)

    def propagate_sparsity(self, inputs: Sequence[BitVector], output: BitVector, fwd: bool) -> None:
        # Seeded and read by the traversal driver.
        pass

    def print_expr(self, args: Sequence[str]) -> str:
        return self.name


class Constant(Node):
    """Matrix with fixed numeric nonzeros."""

    def __init__(self, matrix: SparseMatrix) -> None:
        super().__init__(matrix.sparsity)
        self.matrix = matrix

    @property
    def data(self) -> Data:
        return self.matrix.data

    def _value(self, xp: ModuleType, args: Sequence) -> object:
        return xp.asarray(self.matrix.data)

    def propagate_forward(self, inputs: Inputs, fwd_seeds: Sequence[Inputs]) -> list[Data]:
        return [np.zeros(self.nnz) for _ in fwd_seeds]

    def propagate_adjoint(self, inputs, adj_seeds, adj_sens) -> None:
        self._check_adjoint(inputs, adj_seeds, adj_sens)
        for seed in adj_seeds:
            seed[:] = 0

    def propagate_sparsity(self, inputs: Sequence[BitVector], output: BitVector, fwd: bool) -> None:
        output[:] = 0

    def emit_code(self, args: Sequence[str], res: Sequence[str], gen: CodeGenerator) -> str:
        r = res[0]
        return "".join(f"  {r}[{k}] = {format_real(v)};\n" for k, v in enumerate(self.matrix.data))

    def print_expr(self, args: Sequence[str]) -> str:
        data = self.matrix.data
        if self.sparsity.is_scalar and self.nnz == 1:
            return f"{data[0]:g}"
        m, n = self.shape
        if self.nnz == 0 or np.all(data == 0):
            return f"zeros({m}x{n})"
        if np.all(np.isnan(data)):
            return f"nan({m}x{n})"
        return f"const({m}x{n}, nnz={self.nnz})"


def symbol(name: str, sparsity: SparsityPattern | tuple[int, int] | int) -> Symbol:
    """Create a free symbol.

    Args:
        name: Display name.
        sparsity: Pattern, or a shape for a dense symbol
            (an integer gives a dense column vector).
    """
    if isinstance(sparsity, int):
        sparsity = SparsityPattern.dense(sparsity, 1)
    elif not isinstance(sparsity, SparsityPattern):
        sparsity = SparsityPattern.dense(*sparsity)
    return Symbol(name, sparsity)


def constant(value: SparseMatrix | ArrayLike, sparsity: SparsityPattern | None = None) -> Constant:
    """Create a constant from a `SparseMatrix` or a dense array.

    Dense arrays keep their nonzero entries unless ``sparsity`` is given.
    """
    if not isinstance(value, SparseMatrix):
        value = SparseMatrix.from_dense(value, sparsity)
    return Constant(value)


def zeros(sparsity: SparsityPattern) -> Constant:
    """Constant with structural nonzeros that all hold 0."""
    return Constant(SparseMatrix.zeros(sparsity))


def full(m: int, n: int, value: float) -> Constant:
    """Dense constant with every entry equal to ``value``."""
    sparsity = SparsityPattern.dense(m, n)
    return Constant(SparseMatrix(sparsity, np.full(sparsity.nnz, value)))
