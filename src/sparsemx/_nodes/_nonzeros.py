"""Nonzero selection (gather) nodes and the nonzero-level updates they need.

A gather node builds its output nonzero by nonzero:

    out[k] = x[nz[k]]   if nz[k] >= 0
    out[k] = 0          otherwise (structural zero of the source)

The Jacobian is a selection matrix with at most one 1 per row.

Example: x = [10, 20], nz = [1, -1, 0]
    Output:            [20, 0, 10]
    Adjoint seed:      [5, 7, 9]
    Adjoint of x:      [9, 5]   (7 is dropped since nz[1] = -1)

When ``nz`` is an affine range (or an affine range of affine ranges)
the node stores only the range parameters and emits strided loops
instead of an index table lookup. Results are identical either way.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from types import ModuleType
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import ArrayLike, NDArray

from sparsemx._display import index_list_str
from sparsemx.errors import DimensionMismatchError, IndexOutOfRangeError
from sparsemx.pattern import SparsityPattern

from ._commons import BitVector, Data, Inputs, Node
from ._leaf import zeros
from ._slice import Slice

if TYPE_CHECKING:
    from sparsemx.codegen import CodeGenerator

logger = logging.getLogger(__name__)


def _as_mapping(nz: ArrayLike) -> NDArray[np.int64]:
    """Flat int64 copy of ``nz`` with every absent entry normalised to -1."""
    nz = np.asarray(nz, dtype=np.int64).ravel()
    return np.where(nz < 0, -1, nz)


def _check_mapping(nz: NDArray[np.int64], n_out: int, n_in: int) -> None:
    if len(nz) != n_out:
        msg = f"mapping has {len(nz)} entries but the output has {n_out} nonzeros"
        raise DimensionMismatchError(msg)
    if len(nz) and nz.max() >= n_in:
        msg = f"mapping references nonzero {int(nz.max())} of an argument with {n_in} nonzeros"
        raise IndexOutOfRangeError(msg)


def _lookup(table: NDArray[np.int64], nz: NDArray[np.int64]) -> NDArray[np.int64]:
    """``table[nz]`` where ``nz >= 0``, -1 elsewhere."""
    if len(table) == 0:
        return np.full(len(nz), -1, dtype=np.int64)
    return np.where(nz >= 0, table[np.maximum(nz, 0)], -1)


def _selection_matrix(nz: NDArray[np.int64], n_in: int) -> NDArray[np.float64]:
    """0/1 matrix ``P`` of shape ``(len(nz), n_in)`` with ``P @ x`` gathering ``x[nz]``."""
    result = np.zeros((len(nz), n_in))
    present = np.flatnonzero(nz >= 0)
    result[present, nz[present]] = 1.0
    return result


class GetNonzeros(Node):
    """Gather nonzeros of a single dependency through an explicit index table."""

    def __init__(self, sparsity: SparsityPattern, x: Node, nz: ArrayLike) -> None:
        self._nz = _as_mapping(nz)
        self._nz.setflags(write=False)
        super().__init__(sparsity, [x])
        _check_mapping(self._nz, sparsity.nnz, x.nnz)

    @property
    def nz(self) -> NDArray[np.int64]:
        """Source nonzero of every output nonzero, -1 for structural zeros."""
        return self._nz

    # Numeric evaluation

    def _gather(self, data: Data) -> Data:
        nz = self.nz
        out = np.zeros(len(nz))
        present = nz >= 0
        out[present] = data[nz[present]]
        return out

    def _scatter_add(self, sens: Data, seed: Data) -> None:
        nz = self.nz
        present = (nz >= 0) & (seed != 0)
        np.add.at(sens, nz[present], seed[present])

    def _value(self, xp: ModuleType, args: Sequence) -> object:
        nz = self.nz
        if self.dep().nnz == 0:
            return xp.zeros(len(nz))
        present = nz >= 0
        return xp.where(present, args[0][np.maximum(nz, 0)], 0.0)

    def value(self, inputs: Inputs) -> Data:
        (x,) = self._check_inputs(inputs)
        return self._gather(x)

    def propagate_forward(self, inputs: Inputs, fwd_seeds: Sequence[Inputs]) -> list[Data]:
        _, seeds = self._check_forward(inputs, fwd_seeds)
        return [self._gather(seed[0]) for seed in seeds]

    def propagate_adjoint(self, inputs, adj_seeds, adj_sens) -> None:
        self._check_adjoint(inputs, adj_seeds, adj_sens)
        for seed, sens in zip(adj_seeds, adj_sens, strict=True):
            self._scatter_add(sens[0], seed)
            seed[:] = 0

    def propagate_sparsity(self, inputs: Sequence[BitVector], output: BitVector, fwd: bool) -> None:
        nz = self.nz
        present = nz >= 0
        if fwd:
            output[:] = 0
            output[present] = inputs[0][nz[present]]
        else:
            np.bitwise_or.at(inputs[0], nz[present], output[present])
            output[:] = 0

    # Graph-level derivatives

    def symbolic_derivative(self, seed: Node) -> Node:
        """Gather the entries of a forward seed that the seed actually has.

        ``seed`` has the shape of the dependency.
        Output nonzeros whose source entry is not a nonzero of ``seed``
        (or which are absent in the mapping) are dropped from the result pattern;
        if nothing remains the result is a structural zero matrix.
        """
        x = self.dep()
        if seed.shape != x.shape:
            msg = f"forward seed has shape {seed.shape}, expected {x.shape}"
            raise DimensionMismatchError(msg)
        osp = self.sparsity
        # Source element of every output nonzero, then its nonzero in the seed
        elements = _lookup(x.sparsity.elements(), self.nz)
        seed_nz = np.where(elements >= 0, seed.sparsity.get_nz_elements(elements), -1)
        kept = np.flatnonzero(seed_nz >= 0)
        sparsity = SparsityPattern.from_coordinates(osp.rows[kept], osp.cols[kept], osp.shape)
        if len(kept) == 0:
            return zeros(sparsity)
        return seed.get_nonzeros(sparsity, seed_nz[kept])

    def symbolic_adjoint(self, seed: Node, sens: Node) -> Node:
        """Add an adjoint seed into the sensitivity of the dependency.

        ``seed`` has the shape of this node, ``sens`` the shape of the dependency.
        If a contribution falls outside the sparsity of ``sens``,
        ``sens`` is first densified to the union with the dependency's pattern.
        Returns ``sens`` itself when nothing is added.
        """
        x = self.dep()
        if seed.shape != self.shape:
            msg = f"adjoint seed has shape {seed.shape}, expected {self.shape}"
            raise DimensionMismatchError(msg)
        if sens.shape != x.shape:
            msg = f"adjoint sensitivity has shape {sens.shape}, expected {x.shape}"
            raise DimensionMismatchError(msg)

        # Output nonzero of every seed nonzero, then the dependency nonzero it came from
        out_nz = self.sparsity.get_nz_elements(seed.sparsity.elements())
        src = _lookup(self.nz, out_nz)
        present = src >= 0
        if not np.any(present):
            return sens

        elements = x.sparsity.elements()[src[present]]
        target = sens.sparsity.get_nz_elements(elements)
        if np.any(target < 0):
            logger.debug(
                "Densifying adjoint sensitivity from %d to the union with %d nonzeros",
                sens.nnz,
                x.nnz,
            )
            sens = densify(sens, sens.sparsity.union(x.sparsity))
            target = sens.sparsity.get_nz_elements(elements)

        mapping = np.full(seed.nnz, -1, dtype=np.int64)
        mapping[present] = target
        return AddNonzeros(sens, seed, mapping)

    # Graph rewriting

    def get_nonzeros(self, sparsity: SparsityPattern, nz: Sequence[int]) -> Node:
        """Gather from this gather as a single flattened gather of the dependency."""
        nz = _as_mapping(nz)
        _check_mapping(nz, sparsity.nnz, self.nnz)
        logger.debug("Flattening gather of a gather with %d nonzeros", len(nz))
        return build_get_nonzeros(self.dep(), sparsity, _lookup(self.nz, nz))

    def is_identity(self) -> bool:
        """Whether this node reproduces its dependency exactly."""
        if self.sparsity != self.dep().sparsity:
            return False
        return bool(np.array_equal(self.nz, np.arange(self.nnz)))

    def mapping(self) -> NDArray[np.int64]:
        """Dense integer matrix of source nonzeros, -1 where nothing is selected."""
        result = np.full(self.shape, -1, dtype=np.int64)
        result[self.sparsity.rows, self.sparsity.cols] = self.nz
        return result

    # Code generation

    def emit_code(self, args: Sequence[str], res: Sequence[str], gen: CodeGenerator) -> str:
        s = gen.constant_name(gen.add_constant(self.nz))
        return (
            f"  for(ii={s}, rr={res[0]}, ss={args[0]}; ii!={s}+{len(self.nz)}; ++ii) "
            "*rr++ = *ii>=0 ? ss[*ii] : 0;\n"
        )

    def print_expr(self, args: Sequence[str]) -> str:
        return f"{args[0]}{index_list_str(self.nz)}"


class GetNonzerosSlice(GetNonzeros):
    """Gather of ``start:stop:step``; no index table is stored."""

    def __init__(self, sparsity: SparsityPattern, x: Node, s: Slice) -> None:
        self.slice = s
        Node.__init__(self, sparsity, [x])
        _check_mapping(self.nz, sparsity.nnz, x.nnz)
        if len(s) and min(s.start, s.start + (len(s) - 1) * s.step) < 0:
            msg = f"slice {s} selects negative nonzero indices"
            raise IndexOutOfRangeError(msg)

    @property
    def nz(self) -> NDArray[np.int64]:
        return self.slice.indices()

    def _gather(self, data: Data) -> Data:
        return data[self.slice.to_python()].copy()

    def _scatter_add(self, sens: Data, seed: Data) -> None:
        sens[self.slice.to_python()] += seed

    def emit_code(self, args: Sequence[str], res: Sequence[str], gen: CodeGenerator) -> str:
        x, s = args[0], self.slice
        return (
            f"  for(rr={res[0]}, ss={x}+{s.start}; ss!={x}+{s.stop}; ss+={s.step}) "
            "*rr++ = *ss;\n"
        )

    def print_expr(self, args: Sequence[str]) -> str:
        return f"{args[0]}[{self.slice}]"


class GetNonzerosSlice2(GetNonzeros):
    """Gather of an outer slice of blocks, each block an inner slice.

    Selects ``[o + i for o in outer for i in inner]``.
    """

    def __init__(self, sparsity: SparsityPattern, x: Node, outer: Slice, inner: Slice) -> None:
        self.outer = outer
        self.inner = inner
        Node.__init__(self, sparsity, [x])
        _check_mapping(self.nz, sparsity.nnz, x.nnz)
        if len(self.nz) and self.nz.min() < 0:
            msg = f"slices {outer};{inner} select negative nonzero indices"
            raise IndexOutOfRangeError(msg)

    @property
    def nz(self) -> NDArray[np.int64]:
        return (self.outer.indices()[:, None] + self.inner.indices()[None, :]).ravel()

    def _gather(self, data: Data) -> Data:
        return data[self.nz]

    def _scatter_add(self, sens: Data, seed: Data) -> None:
        np.add.at(sens, self.nz, seed)

    def emit_code(self, args: Sequence[str], res: Sequence[str], gen: CodeGenerator) -> str:
        x, o, i = args[0], self.outer, self.inner
        return (
            f"  for(rr={res[0]}, ss={x}+{o.start}; ss!={x}+{o.stop}; ss+={o.step}) "
            f"for(tt=ss+{i.start}; tt!=ss+{i.stop}; tt+={i.step}) *rr++ = *tt;\n"
        )

    def print_expr(self, args: Sequence[str]) -> str:
        return f"{args[0]}[{self.outer};{self.inner}]"


class AddNonzeros(Node):
    """``base`` with the nonzeros of ``seed`` added at positions ``nz``.

    ``nz[k]`` is the nonzero of ``base`` receiving ``seed`` nonzero ``k``,
    or -1 to drop it. The result has the sparsity of ``base``.
    """

    def __init__(self, base: Node, seed: Node, nz: ArrayLike) -> None:
        nz = _as_mapping(nz)
        _check_mapping(nz, seed.nnz, base.nnz)
        super().__init__(base.sparsity, [base, seed])
        self.nz = nz

    def _value(self, xp: ModuleType, args: Sequence) -> object:
        base, seed = args
        return base + xp.asarray(_selection_matrix(self.nz, self.nnz).T) @ seed

    def value(self, inputs: Inputs) -> Data:
        base, seed = self._check_inputs(inputs)
        out = base.copy()
        present = self.nz >= 0
        np.add.at(out, self.nz[present], seed[present])
        return out

    def propagate_forward(self, inputs: Inputs, fwd_seeds: Sequence[Inputs]) -> list[Data]:
        _, seeds = self._check_forward(inputs, fwd_seeds)
        present = self.nz >= 0
        sens = []
        for d_base, d_seed in seeds:
            out = d_base.copy()
            np.add.at(out, self.nz[present], d_seed[present])
            sens.append(out)
        return sens

    def propagate_adjoint(self, inputs, adj_seeds, adj_sens) -> None:
        self._check_adjoint(inputs, adj_seeds, adj_sens)
        present = self.nz >= 0
        for seed, (sens_base, sens_seed) in zip(adj_seeds, adj_sens, strict=True):
            sens_base += seed
            sens_seed[present] += seed[self.nz[present]]
            seed[:] = 0

    def propagate_sparsity(self, inputs: Sequence[BitVector], output: BitVector, fwd: bool) -> None:
        base, seed = inputs
        present = self.nz >= 0
        if fwd:
            output[:] = base
            np.bitwise_or.at(output, self.nz[present], seed[present])
        else:
            base |= output
            seed[present] |= output[self.nz[present]]
            output[:] = 0

    def emit_code(self, args: Sequence[str], res: Sequence[str], gen: CodeGenerator) -> str:
        base, seed, r = args[0], args[1], res[0]
        s = gen.constant_name(gen.add_constant(self.nz))
        return (
            f"  for(rr={r}, ss={base}; ss!={base}+{self.nnz}; ++ss) *rr++ = *ss;\n"
            f"  for(ii={s}, ss={seed}; ii!={s}+{len(self.nz)}; ++ii, ++ss) "
            f"if(*ii>=0) {r}[*ii] += *ss;\n"
        )

    def print_expr(self, args: Sequence[str]) -> str:
        return f"({args[0]}{index_list_str(self.nz)} += {args[1]})"


class Densify(Node):
    """Re-embed a matrix into a larger sparsity pattern, filling explicit zeros."""

    def __init__(self, x: Node, sparsity: SparsityPattern) -> None:
        if not sparsity.contains(x.sparsity):
            msg = f"target pattern {sparsity!r} does not contain {x.sparsity!r}"
            raise DimensionMismatchError(msg)
        super().__init__(sparsity, [x])
        self.positions = sparsity.get_nz_elements(x.sparsity.elements())

    def _value(self, xp: ModuleType, args: Sequence) -> object:
        selection = np.zeros((self.nnz, self.dep().nnz))
        selection[self.positions, np.arange(self.dep().nnz)] = 1.0
        return xp.asarray(selection) @ args[0]

    def value(self, inputs: Inputs) -> Data:
        (x,) = self._check_inputs(inputs)
        out = np.zeros(self.nnz)
        out[self.positions] = x
        return out

    def propagate_forward(self, inputs: Inputs, fwd_seeds: Sequence[Inputs]) -> list[Data]:
        _, seeds = self._check_forward(inputs, fwd_seeds)
        sens = []
        for (dx,) in seeds:
            out = np.zeros(self.nnz)
            out[self.positions] = dx
            sens.append(out)
        return sens

    def propagate_adjoint(self, inputs, adj_seeds, adj_sens) -> None:
        self._check_adjoint(inputs, adj_seeds, adj_sens)
        for seed, (sens,) in zip(adj_seeds, adj_sens, strict=True):
            sens += seed[self.positions]
            seed[:] = 0

    def propagate_sparsity(self, inputs: Sequence[BitVector], output: BitVector, fwd: bool) -> None:
        if fwd:
            output[:] = 0
            output[self.positions] = inputs[0]
        else:
            inputs[0] |= output[self.positions]
            output[:] = 0

    def emit_code(self, args: Sequence[str], res: Sequence[str], gen: CodeGenerator) -> str:
        r = res[0]
        s = gen.constant_name(gen.add_constant(self.positions))
        return (
            f"  for(rr={r}; rr!={r}+{self.nnz}; ++rr) *rr = 0;\n"
            f"  for(ii={s}, ss={args[0]}; ii!={s}+{len(self.positions)}; ++ii) {r}[*ii] = *ss++;\n"
        )

    def print_expr(self, args: Sequence[str]) -> str:
        return f"densify({args[0]})"


def build_get_nonzeros(x: Node, sparsity: SparsityPattern, nz: ArrayLike) -> Node:
    """Create the most compact gather node for ``x[nz]``.

    Gathers of gathers are flattened into a single gather of the innermost
    source. Affine mappings become slice nodes.
    """
    if isinstance(x, GetNonzeros):
        return x.get_nonzeros(sparsity, nz)
    nz = _as_mapping(nz)
    _check_mapping(nz, sparsity.nnz, x.nnz)

    s = Slice.from_indices(nz)
    if s is not None:
        logger.debug("Gather of %d nonzeros detected as slice %s", len(nz), s)
        return GetNonzerosSlice(sparsity, x, s)
    nested = Slice.nested_from_indices(nz)
    if nested is not None:
        logger.debug("Gather of %d nonzeros detected as nested slice %s;%s", len(nz), *nested)
        return GetNonzerosSlice2(sparsity, x, *nested)
    return GetNonzeros(sparsity, x, nz)


def get_nonzeros(x: Node, sparsity: SparsityPattern, nz: ArrayLike) -> Node:
    """Node whose nonzero ``k`` is nonzero ``nz[k]`` of ``x`` (0 where ``nz[k] < 0``).

    Args:
        x: Source node.
        sparsity: Sparsity of the result, with ``len(nz)`` nonzeros.
        nz: Source nonzero index per result nonzero, in row-major order.
    """
    return x.get_nonzeros(sparsity, nz)


def densify(x: Node, sparsity: SparsityPattern) -> Node:
    """``x`` embedded in the larger pattern ``sparsity``; ``x`` itself if equal."""
    if sparsity == x.sparsity:
        return x
    return Densify(x, sparsity)
