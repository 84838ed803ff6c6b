"""Node base class, types and helpers shared by all expression nodes."""

from __future__ import annotations

import copy
from collections.abc import Sequence
from types import ModuleType
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from sparsemx._display import expression_str
from sparsemx.errors import DimensionMismatchError, UnsupportedOperationError
from sparsemx.pattern import SparsityPattern

if TYPE_CHECKING:
    from sparsemx.codegen import CodeGenerator

Data = NDArray[np.float64]
"""Nonzero values of a matrix in row-major order."""

Inputs = Sequence[Data]
"""Nonzero values of every dependency of a node, in dependency order."""

BitVector = NDArray[np.uint64]
"""One 64-bit dependency mask per nonzero, used by sparsity propagation."""


class Node:
    """Vertex of an expression graph.

    A node owns references to its dependencies (which may be shared with
    other parents) and a sparsity pattern fixed at construction.
    Numeric buffers are supplied by the traversal driver on every visit;
    the node itself is immutable.

    Subclasses implement some of:

    - ``_value(xp, args)``: the value for an array namespace ``xp``
      (``numpy`` or ``jax.numpy``).
    - ``propagate_forward`` / ``propagate_adjoint``: directional sensitivities.
    - ``propagate_sparsity``: dependency bit-mask propagation.
    - ``symbolic_derivative`` / ``symbolic_adjoint``: derivative graphs.
    - ``emit_code``: C loop body.
    - ``print_expr``: mathematical notation.
    """

    def __init__(self, sparsity: SparsityPattern, deps: Sequence[Node] = ()) -> None:
        self._sparsity = sparsity
        self._deps = tuple(deps)

    # Structure

    @property
    def sparsity(self) -> SparsityPattern:
        return self._sparsity

    @property
    def deps(self) -> tuple[Node, ...]:
        return self._deps

    @property
    def n_deps(self) -> int:
        return len(self._deps)

    def dep(self, i: int = 0) -> Node:
        return self._deps[i]

    @property
    def shape(self) -> tuple[int, int]:
        return self._sparsity.shape

    @property
    def nnz(self) -> int:
        return self._sparsity.nnz

    # Numeric evaluation

    def _value(self, xp: ModuleType, args: Sequence) -> object:
        msg = f"{type(self).__name__} cannot be evaluated"
        raise UnsupportedOperationError(msg)

    def value(self, inputs: Inputs) -> Data:
        """Evaluate the nonzeros of this node from the nonzeros of its dependencies."""
        args = self._check_inputs(inputs)
        return np.asarray(self._value(np, args), dtype=np.float64).reshape(self.nnz)

    def propagate_forward(self, inputs: Inputs, fwd_seeds: Sequence[Inputs]) -> list[Data]:
        """Forward sensitivities, one array per direction.

        Args:
            inputs: Nonzeros of the dependencies.
            fwd_seeds: ``fwd_seeds[d][i]`` is the seed of dependency ``i``
                in direction ``d``.
        """
        msg = f"{type(self).__name__} does not support forward sensitivities"
        raise UnsupportedOperationError(msg)

    def propagate_adjoint(
        self,
        inputs: Inputs,
        adj_seeds: Sequence[Data],
        adj_sens: Sequence[Sequence[Data]],
    ) -> None:
        """Accumulate adjoint sensitivities into ``adj_sens`` in place.

        Args:
            inputs: Nonzeros of the dependencies.
            adj_seeds: Output seed per direction.
            adj_sens: ``adj_sens[d][i]`` accumulates the sensitivity of
                dependency ``i`` in direction ``d``.
        """
        msg = f"{type(self).__name__} does not support adjoint sensitivities"
        raise UnsupportedOperationError(msg)

    def propagate_sparsity(self, inputs: Sequence[BitVector], output: BitVector, fwd: bool) -> None:
        """Propagate dependency bit masks without floating point evaluation.

        Forward: set ``output`` from ``inputs``.
        Reverse: OR ``output`` into ``inputs`` and clear ``output``.
        The default assumes every output nonzero depends on every input nonzero.
        """
        conservative_sparsity(inputs, output, fwd)

    # Graph-level derivatives

    def symbolic_derivative(self, seed: Node) -> Node:
        """Build a node for the forward directional derivative given a seed node."""
        msg = f"{type(self).__name__} has no symbolic forward derivative"
        raise UnsupportedOperationError(msg)

    def symbolic_adjoint(self, seed: Node, sens: Node) -> Node:
        """Build a node for ``sens`` plus the adjoint contribution of ``seed``."""
        msg = f"{type(self).__name__} has no symbolic adjoint derivative"
        raise UnsupportedOperationError(msg)

    # Code generation

    def emit_code(self, args: Sequence[str], res: Sequence[str], gen: CodeGenerator) -> str:
        """C statements computing ``res[0]`` from the nonzero arrays ``args``."""
        msg = f"Code generation is not implemented for {type(self).__name__}"
        raise UnsupportedOperationError(msg)

    # Graph rewriting

    def get_nonzeros(self, sparsity: SparsityPattern, nz: Sequence[int]) -> Node:
        """Node selecting nonzeros ``nz`` of this node into ``sparsity``."""
        from ._nonzeros import build_get_nonzeros

        return build_get_nonzeros(self, sparsity, nz)

    def is_identity(self) -> bool:
        return False

    def simplify(self) -> Node:
        """This node, or its dependency if the node is an identity."""
        return self.dep() if self.is_identity() else self

    def clone(self) -> Node:
        """Shallow copy sharing the dependencies."""
        return copy.copy(self)

    # Display

    def print_expr(self, args: Sequence[str]) -> str:
        return f"{type(self).__name__}({', '.join(args)})"

    def __str__(self) -> str:
        return expression_str(self)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(shape={self.shape}, nnz={self.nnz})"

    # Buffer checks

    def _check_inputs(self, inputs: Inputs) -> list[Data]:
        if len(inputs) != self.n_deps:
            msg = f"{type(self).__name__} expects {self.n_deps} inputs, got {len(inputs)}"
            raise DimensionMismatchError(msg)
        return [
            check_length(x, dep.nnz, f"input {i}")
            for i, (x, dep) in enumerate(zip(inputs, self._deps, strict=True))
        ]

    def _check_forward(self, inputs: Inputs, fwd_seeds: Sequence[Inputs]) -> tuple[list[Data], list[list[Data]]]:
        args = self._check_inputs(inputs)
        seeds = []
        for d, seed in enumerate(fwd_seeds):
            if len(seed) != self.n_deps:
                msg = f"forward seed {d} has {len(seed)} entries, expected {self.n_deps}"
                raise DimensionMismatchError(msg)
            seeds.append(
                [
                    check_length(s, dep.nnz, f"forward seed {d} of input {i}")
                    for i, (s, dep) in enumerate(zip(seed, self._deps, strict=True))
                ]
            )
        return args, seeds

    def _check_adjoint(
        self,
        inputs: Inputs,
        adj_seeds: Sequence[Data],
        adj_sens: Sequence[Sequence[Data]],
    ) -> list[Data]:
        args = self._check_inputs(inputs)
        if len(adj_seeds) != len(adj_sens):
            msg = f"got {len(adj_seeds)} adjoint seeds but {len(adj_sens)} sensitivity lists"
            raise DimensionMismatchError(msg)
        for d, (seed, sens) in enumerate(zip(adj_seeds, adj_sens, strict=True)):
            check_buffer(seed, self.nnz, f"adjoint seed {d}")
            if len(sens) != self.n_deps:
                msg = f"adjoint sensitivity {d} has {len(sens)} entries, expected {self.n_deps}"
                raise DimensionMismatchError(msg)
            for i, (buf, dep) in enumerate(zip(sens, self._deps, strict=True)):
                check_buffer(buf, dep.nnz, f"adjoint sensitivity {d} of input {i}")
        return args


def check_length(x, expected: int, what: str) -> Data:
    """Convert ``x`` to a flat float array of length ``expected``."""
    arr = np.asarray(x, dtype=np.float64).reshape(-1)
    if len(arr) != expected:
        msg = f"{what} has {len(arr)} nonzeros, expected {expected}"
        raise DimensionMismatchError(msg)
    return arr


def check_buffer(buf, expected: int, what: str) -> None:
    """Check that ``buf`` is a writable array of length ``expected``."""
    if not isinstance(buf, np.ndarray) or buf.ndim != 1:
        msg = f"{what} must be a 1D numpy array, got {type(buf).__name__}"
        raise DimensionMismatchError(msg)
    if len(buf) != expected:
        msg = f"{what} has {len(buf)} nonzeros, expected {expected}"
        raise DimensionMismatchError(msg)


def union_bits(bits: Sequence[BitVector]) -> np.uint64:
    """OR of all masks of all arrays."""
    result = np.uint64(0)
    for b in bits:
        if len(b):
            result |= np.bitwise_or.reduce(b)
    return result


def conservative_sparsity(inputs: Sequence[BitVector], output: BitVector, fwd: bool) -> None:
    """Every output nonzero depends on every input nonzero.

    Always correct, but marks the full Jacobian block as dense.
    """
    if fwd:
        output[:] = union_bits(inputs)
    else:
        combined = union_bits([output])
        for bits in inputs:
            bits |= combined
        output[:] = 0
