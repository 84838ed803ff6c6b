"""Matrix algebra nodes used to express graph-level derivatives."""

from __future__ import annotations

from collections.abc import Sequence
from types import ModuleType
from typing import TYPE_CHECKING

import numpy as np

from sparsemx.codegen import format_real
from sparsemx.errors import DimensionMismatchError
from sparsemx.pattern import SparsityPattern

from ._commons import BitVector, Data, Inputs, Node, union_bits

if TYPE_CHECKING:
    from sparsemx.codegen import CodeGenerator


def _dense(xp: ModuleType, data, sparsity: SparsityPattern):
    """Dense matrix from nonzeros, written so that it works for numpy and jax."""
    flat = xp.asarray(sparsity.scatter_matrix()) @ data
    return xp.reshape(flat, sparsity.shape)


class Transpose(Node):
    """Matrix transpose; a pure permutation of the nonzeros."""

    def __init__(self, x: Node) -> None:
        sparsity, perm = x.sparsity.transpose()
        super().__init__(sparsity, [x])
        self.perm = perm

    def _value(self, xp: ModuleType, args: Sequence) -> object:
        return args[0][self.perm]

    def propagate_forward(self, inputs: Inputs, fwd_seeds: Sequence[Inputs]) -> list[Data]:
        _, seeds = self._check_forward(inputs, fwd_seeds)
        return [seed[0][self.perm] for seed in seeds]

    def propagate_adjoint(self, inputs, adj_seeds, adj_sens) -> None:
        self._check_adjoint(inputs, adj_seeds, adj_sens)
        for seed, sens in zip(adj_seeds, adj_sens, strict=True):
            sens[0][self.perm] += seed
            seed[:] = 0

    def propagate_sparsity(self, inputs: Sequence[BitVector], output: BitVector, fwd: bool) -> None:
        if fwd:
            output[:] = inputs[0][self.perm]
        else:
            inputs[0][self.perm] |= output
            output[:] = 0

    def emit_code(self, args: Sequence[str], res: Sequence[str], gen: CodeGenerator) -> str:
        s = gen.constant_name(gen.add_constant(self.perm))
        return f"  for(ii={s}, rr={res[0]}; ii!={s}+{self.nnz}; ++ii) *rr++ = {args[0]}[*ii];\n"

    def print_expr(self, args: Sequence[str]) -> str:
        return f"{args[0]}'"


class MatMul(Node):
    """Matrix product ``x @ y`` with the structural product pattern."""

    def __init__(self, x: Node, y: Node) -> None:
        if x.shape[1] != y.shape[0]:
            msg = f"Cannot multiply {x.shape} by {y.shape}"
            raise DimensionMismatchError(msg)
        structural = x.sparsity.todense().astype(np.int64) @ y.sparsity.todense().astype(np.int64)
        super().__init__(SparsityPattern.from_dense(structural.reshape(x.shape[0], y.shape[1])), [x, y])

    def _value(self, xp: ModuleType, args: Sequence) -> object:
        x, y = self.deps
        product = _dense(xp, args[0], x.sparsity) @ _dense(xp, args[1], y.sparsity)
        return xp.reshape(product, -1)[self.sparsity.elements()]

    def propagate_forward(self, inputs: Inputs, fwd_seeds: Sequence[Inputs]) -> list[Data]:
        args, seeds = self._check_forward(inputs, fwd_seeds)
        x, y = self.deps
        xd, yd = _dense(np, args[0], x.sparsity), _dense(np, args[1], y.sparsity)
        keys = self.sparsity.elements()
        sens = []
        for dx, dy in seeds:
            d = _dense(np, dx, x.sparsity) @ yd + xd @ _dense(np, dy, y.sparsity)
            sens.append(d.reshape(-1)[keys])
        return sens

    def propagate_adjoint(self, inputs, adj_seeds, adj_sens) -> None:
        args = self._check_adjoint(inputs, adj_seeds, adj_sens)
        x, y = self.deps
        xd, yd = _dense(np, args[0], x.sparsity), _dense(np, args[1], y.sparsity)
        for seed, sens in zip(adj_seeds, adj_sens, strict=True):
            if not np.any(seed):
                continue
            z = _dense(np, seed, self.sparsity)
            sens[0] += (z @ yd.T).reshape(-1)[x.sparsity.elements()]
            sens[1] += (xd.T @ z).reshape(-1)[y.sparsity.elements()]
            seed[:] = 0

    def print_expr(self, args: Sequence[str]) -> str:
        return f"mul({args[0]}, {args[1]})"


class Scale(Node):
    """Multiplication by a fixed real factor."""

    def __init__(self, x: Node, factor: float) -> None:
        super().__init__(x.sparsity, [x])
        self.factor = float(factor)

    def _value(self, xp: ModuleType, args: Sequence) -> object:
        return self.factor * args[0]

    def propagate_forward(self, inputs: Inputs, fwd_seeds: Sequence[Inputs]) -> list[Data]:
        _, seeds = self._check_forward(inputs, fwd_seeds)
        return [self.factor * seed[0] for seed in seeds]

    def propagate_adjoint(self, inputs, adj_seeds, adj_sens) -> None:
        self._check_adjoint(inputs, adj_seeds, adj_sens)
        for seed, sens in zip(adj_seeds, adj_sens, strict=True):
            sens[0] += self.factor * seed
            seed[:] = 0

    def propagate_sparsity(self, inputs: Sequence[BitVector], output: BitVector, fwd: bool) -> None:
        if fwd:
            output[:] = inputs[0]
        else:
            inputs[0] |= output
            output[:] = 0

    def emit_code(self, args: Sequence[str], res: Sequence[str], gen: CodeGenerator) -> str:
        x = args[0]
        return (
            f"  for(rr={res[0]}, ss={x}; ss!={x}+{self.nnz}; ++ss) "
            f"*rr++ = {format_real(self.factor)} * *ss;\n"
        )

    def print_expr(self, args: Sequence[str]) -> str:
        return f"({self.factor:g}*{args[0]})"


class Divide(Node):
    """Division of a matrix by a scalar node."""

    def __init__(self, x: Node, y: Node) -> None:
        if y.sparsity != SparsityPattern.scalar():
            msg = f"Divisor must be a dense scalar, got shape {y.shape} with {y.nnz} nonzeros"
            raise DimensionMismatchError(msg)
        super().__init__(x.sparsity, [x, y])

    def _value(self, xp: ModuleType, args: Sequence) -> object:
        return args[0] / args[1][0]

    def propagate_forward(self, inputs: Inputs, fwd_seeds: Sequence[Inputs]) -> list[Data]:
        (x, y), seeds = self._check_forward(inputs, fwd_seeds)
        return [dx / y[0] - x * dy[0] / y[0] ** 2 for dx, dy in seeds]

    def propagate_adjoint(self, inputs, adj_seeds, adj_sens) -> None:
        x, y = self._check_adjoint(inputs, adj_seeds, adj_sens)
        for seed, sens in zip(adj_seeds, adj_sens, strict=True):
            sens[0] += seed / y[0]
            sens[1][0] -= np.dot(seed, x) / y[0] ** 2
            seed[:] = 0

    def propagate_sparsity(self, inputs: Sequence[BitVector], output: BitVector, fwd: bool) -> None:
        if fwd:
            output[:] = inputs[0] | inputs[1][0]
        else:
            inputs[0] |= output
            inputs[1][0] |= union_bits([output])
            output[:] = 0

    def emit_code(self, args: Sequence[str], res: Sequence[str], gen: CodeGenerator) -> str:
        x, y = args
        return f"  for(rr={res[0]}, ss={x}; ss!={x}+{self.nnz}; ++ss) *rr++ = *ss / {y}[0];\n"

    def print_expr(self, args: Sequence[str]) -> str:
        return f"({args[0]}/{args[1]})"


def transpose(x: Node) -> Node:
    return Transpose(x)


def matmul(x: Node, y: Node) -> Node:
    return MatMul(x, y)


def scale(x: Node, factor: float) -> Node:
    """``factor * x``; a factor of one returns ``x`` unchanged."""
    return x if factor == 1 else Scale(x, factor)


def divide(x: Node, y: Node) -> Node:
    return Divide(x, y)
