"""Jacobian sparsity detection by dependency bit-mask propagation.

No floating point evaluation takes place: every nonzero carries a 64-bit
mask, and each node maps masks exactly like it maps values.
Inputs (or outputs) are processed 64 at a time.
"""

from __future__ import annotations

from typing import Literal

import numpy as np

from sparsemx._nodes import Node, Symbol
from sparsemx.graph import sparsity_forward, sparsity_reverse, topological_order
from sparsemx.pattern import SparsityPattern

_BITS_PER_SWEEP = 64
"""Number of seed directions packed into one ``uint64`` mask."""


def _seed_bits(n: int, offset: int, width: int) -> np.ndarray:
    """Bits ``0..width-1`` on nonzeros ``offset..offset+width-1``."""
    bits = np.zeros(n, dtype=np.uint64)
    bits[offset : offset + width] = np.left_shift(np.uint64(1), np.arange(width, dtype=np.uint64))
    return bits


def _hits(bits: np.ndarray, width: int):
    """Yield ``(b, positions)`` for every seed bit ``b`` set somewhere in ``bits``."""
    for b in range(width):
        positions = np.flatnonzero(bits & np.uint64(1 << b))
        if len(positions):
            yield b, positions


def jacobian_sparsity(
    output: Node,
    wrt: Symbol,
    mode: Literal["forward", "reverse"] = "forward",
) -> SparsityPattern:
    """Detect which nonzeros of ``output`` depend on which nonzeros of ``wrt``.

    Args:
        output: Node whose nonzeros are the Jacobian rows.
        wrt: Symbol whose nonzeros are the Jacobian columns.
        mode: ``"forward"`` seeds input nonzeros,
            ``"reverse"`` seeds output nonzeros.
            Both give the same pattern.

    Returns:
        SparsityPattern of shape ``(output.nnz, wrt.nnz)``.
            Entry ``(i, j)`` is present if output nonzero ``i``
            depends on input nonzero ``j``.
    """
    order = topological_order(output)
    rows: list[int] = []
    cols: list[int] = []

    if mode == "forward":
        for offset in range(0, wrt.nnz, _BITS_PER_SWEEP):
            width = min(_BITS_PER_SWEEP, wrt.nnz - offset)
            out = sparsity_forward(output, {wrt: _seed_bits(wrt.nnz, offset, width)}, order)
            for b, positions in _hits(out, width):
                rows.extend(positions.tolist())
                cols.extend([offset + b] * len(positions))
    elif mode == "reverse":
        for offset in range(0, output.nnz, _BITS_PER_SWEEP):
            width = min(_BITS_PER_SWEEP, output.nnz - offset)
            result = sparsity_reverse(output, _seed_bits(output.nnz, offset, width), order)
            bits = result.get(wrt, np.zeros(wrt.nnz, dtype=np.uint64))
            for b, positions in _hits(bits, width):
                rows.extend([offset + b] * len(positions))
                cols.extend(positions.tolist())
    else:
        msg = f"mode must be 'forward' or 'reverse', got {mode!r}"
        raise ValueError(msg)

    return SparsityPattern.from_coordinates(rows, cols, (output.nnz, wrt.nnz))
