"""Reference traversal driver for expression graphs.

Walks a graph in topological order (leaves first) and calls the per-visit
contract of every node. All value, seed and sensitivity buffers are owned
by the driver and live for a single pass. Passes are single-threaded;
a node shared by several parents receives the adjoint contributions of
all of them in its one buffer, in reverse topological order.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence

import numpy as np
from numpy.typing import ArrayLike

from sparsemx._nodes import BitVector, Data, Node, Symbol
from sparsemx._nodes._commons import check_length
from sparsemx.matrix import SparseMatrix

logger = logging.getLogger(__name__)

Values = Mapping[Symbol, "ArrayLike | SparseMatrix"]
"""Nonzeros (or matrices) of the free symbols of a graph."""


def topological_order(output: Node) -> list[Node]:
    """All nodes ``output`` depends on, every node after its dependencies.

    Nodes are identified by object identity, so a shared sub-expression
    appears exactly once.
    """
    order: list[Node] = []
    visited: set[int] = set()
    stack: list[tuple[Node, bool]] = [(output, False)]
    while stack:
        node, expanded = stack.pop()
        if expanded:
            order.append(node)
            continue
        if id(node) in visited:
            continue
        visited.add(id(node))
        stack.append((node, True))
        for dep in reversed(node.deps):
            if id(dep) not in visited:
                stack.append((dep, False))
    return order


def _symbol_data(node: Symbol, value) -> Data:
    if isinstance(value, SparseMatrix):
        if value.sparsity != node.sparsity:
            value = SparseMatrix.from_dense(value.todense(), node.sparsity)
        return value.data.copy()
    return check_length(value, node.nnz, f"value of symbol '{node.name}'").copy()


def _primal(order: Sequence[Node], values: Values) -> dict[int, Data]:
    result: dict[int, Data] = {}
    for node in order:
        if isinstance(node, Symbol):
            if node not in values:
                msg = f"No value given for symbol '{node.name}'"
                raise ValueError(msg)
            result[id(node)] = _symbol_data(node, values[node])
        else:
            result[id(node)] = node.value([result[id(dep)] for dep in node.deps])
    return result


def evaluate(output: Node, values: Values) -> SparseMatrix:
    """Numeric value of ``output`` given values for its symbols."""
    order = topological_order(output)
    logger.debug("Evaluating %d nodes", len(order))
    return SparseMatrix(output.sparsity, _primal(order, values)[id(output)])


def forward(
    output: Node,
    values: Values,
    seeds: Mapping[Symbol, Sequence[ArrayLike]],
) -> list[SparseMatrix]:
    """Forward sensitivities of ``output``, one per direction.

    Args:
        output: Node to differentiate.
        values: Values of the symbols.
        seeds: Per-direction seed nonzeros of some symbols.
            Symbols without seeds have zero seeds.
    """
    n_dirs = {len(s) for s in seeds.values()}
    if len(n_dirs) > 1:
        msg = f"All symbols need the same number of seed directions, got {sorted(n_dirs)}"
        raise ValueError(msg)
    nfwd = n_dirs.pop() if n_dirs else 0

    order = topological_order(output)
    primal = _primal(order, values)
    sens: dict[int, list[Data]] = {}
    for node in order:
        if isinstance(node, Symbol):
            given = seeds.get(node)
            if given is None:
                sens[id(node)] = [np.zeros(node.nnz) for _ in range(nfwd)]
            else:
                sens[id(node)] = [check_length(s, node.nnz, f"seed of '{node.name}'") for s in given]
            continue
        inputs = [primal[id(dep)] for dep in node.deps]
        node_seeds = [[sens[id(dep)][d] for dep in node.deps] for d in range(nfwd)]
        sens[id(node)] = node.propagate_forward(inputs, node_seeds)
    logger.debug("Forward sweep over %d nodes in %d directions", len(order), nfwd)
    return [SparseMatrix(output.sparsity, s) for s in sens[id(output)]]


def adjoint(
    output: Node,
    values: Values,
    seeds: Sequence[ArrayLike],
) -> dict[Symbol, list[SparseMatrix]]:
    """Adjoint sensitivities of every symbol, one per direction.

    Args:
        output: Node to differentiate.
        values: Values of the symbols.
        seeds: Per-direction seed nonzeros of ``output``.
    """
    nadj = len(seeds)
    order = topological_order(output)
    primal = _primal(order, values)
    buffers: dict[int, list[Data]] = {id(node): [np.zeros(node.nnz) for _ in range(nadj)] for node in order}
    buffers[id(output)] = [check_length(s, output.nnz, "adjoint seed").copy() for s in seeds]

    for node in reversed(order):
        if not node.deps:
            continue
        inputs = [primal[id(dep)] for dep in node.deps]
        node_sens = [[buffers[id(dep)][d] for dep in node.deps] for d in range(nadj)]
        node.propagate_adjoint(inputs, buffers[id(node)], node_sens)
    logger.debug("Adjoint sweep over %d nodes in %d directions", len(order), nadj)

    return {
        node: [SparseMatrix(node.sparsity, buf) for buf in buffers[id(node)]]
        for node in order
        if isinstance(node, Symbol)
    }


def sparsity_forward(
    output: Node,
    seeds: Mapping[Symbol, BitVector],
    order: Sequence[Node] | None = None,
) -> BitVector:
    """Dependency bits of every nonzero of ``output`` given bits of the symbols."""
    if order is None:
        order = topological_order(output)
    bits: dict[int, BitVector] = {}
    for node in order:
        if isinstance(node, Symbol):
            given = seeds.get(node)
            bits[id(node)] = (
                np.zeros(node.nnz, dtype=np.uint64) if given is None else np.asarray(given, dtype=np.uint64).copy()
            )
            continue
        out = np.zeros(node.nnz, dtype=np.uint64)
        node.propagate_sparsity([bits[id(dep)] for dep in node.deps], out, True)
        bits[id(node)] = out
    return bits[id(output)]


def sparsity_reverse(
    output: Node,
    seed: BitVector,
    order: Sequence[Node] | None = None,
) -> dict[Symbol, BitVector]:
    """Dependency bits of every symbol nonzero given bits of the output nonzeros."""
    if order is None:
        order = topological_order(output)
    bits = {id(node): np.zeros(node.nnz, dtype=np.uint64) for node in order}
    bits[id(output)] = np.asarray(seed, dtype=np.uint64).copy()
    for node in reversed(order):
        if not node.deps:
            continue
        node.propagate_sparsity([bits[id(dep)] for dep in node.deps], bits[id(node)], False)
    return {node: bits[id(node)] for node in order if isinstance(node, Symbol)}
