"""Pretty-printing for sparsity patterns, sparse matrices and expressions.

Pattern grids adapted from SparseArrays.jl (MIT license)
Copyright (c) 2018-2024 SparseArrays.jl contributors:
https://github.com/JuliaSparse/SparseArrays.jl/contributors
https://github.com/JuliaSparse/SparseArrays.jl/
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from sparsemx._nodes._commons import Node
    from sparsemx.matrix import SparseMatrix
    from sparsemx.pattern import SparsityPattern

# Thresholds for switching from dot display to braille (Julia-style heuristics)
_SMALL_ROWS = 16
_SMALL_COLS = 40

# Index lists longer than this are abbreviated in expression strings
_MAX_INLINE_INDICES = 8

# Braille dot bits, indexed by (col_offset % 2) * 4 + (row_offset % 4)
_BRAILLE_BITS = np.array([0x01, 0x02, 0x04, 0x40, 0x08, 0x10, 0x20, 0x80])


# SparsityPattern display


def sparsity_str(pattern: SparsityPattern) -> str:
    """Full string representation with header and visualization."""
    header = (
        f"SparsityPattern({pattern.m}×{pattern.n}, "
        f"nnz={pattern.nnz}, sparsity={1 - pattern.density:.1%})"
    )
    return f"{header}\n{_render(pattern)}"


def sparsity_repr(pattern: SparsityPattern) -> str:
    """Compact single-line representation."""
    return f"SparsityPattern(shape={pattern.shape}, nnz={pattern.nnz})"


# SparseMatrix display


def matrix_repr(matrix: SparseMatrix) -> str:
    """Compact single-line representation listing the nonzero values."""
    values = np.array2string(np.asarray(matrix.data), separator=", ", threshold=_MAX_INLINE_INDICES)
    return f"SparseMatrix(shape={matrix.shape}, nnz={matrix.nnz}, data={values})"


# Expression display


def expression_str(node: Node) -> str:
    """Render an expression graph in mathematical notation, leaves first.

    Shared sub-expressions are printed once per occurrence.
    """
    args = [expression_str(dep) for dep in node.deps]
    return node.print_expr(args)


def index_list_str(nz) -> str:
    """Render a nonzero index list, abbreviating long ones."""
    values = [int(k) for k in nz]
    if len(values) <= _MAX_INLINE_INDICES:
        return "[" + ", ".join(map(str, values)) + "]"
    head = ", ".join(map(str, values[: _MAX_INLINE_INDICES // 2]))
    tail = ", ".join(map(str, values[-2:]))
    return f"[{head}, ..., {tail}]"


# Rendering helpers


def _render(pattern: SparsityPattern) -> str:
    """Render visualization without header.

    Uses dot display (●/⋅) for small matrices, braille for large ones.
    """
    if pattern.m == 0 or pattern.n == 0:
        return "(empty)"
    if pattern.m <= _SMALL_ROWS and pattern.n <= _SMALL_COLS:
        return _render_dots(pattern)

    lines = _render_braille(pattern).split("\n")
    if len(lines) == 1:
        return "[" + lines[0] + "]"
    bordered = ["⎡" + lines[0] + "⎤"]
    bordered.extend("⎢" + line + "⎥" for line in lines[1:-1])
    bordered.append("⎣" + lines[-1] + "⎦")
    return "\n".join(bordered)


def _render_dots(pattern: SparsityPattern) -> str:
    """Render small matrix using '⋅' for zeros and '●' for non-zeros."""
    dense = pattern.todense()
    return "\n".join(" ".join("●" if v else "⋅" for v in row) for row in dense)


def _render_braille(
    pattern: SparsityPattern,
    max_height: int = 20,
    max_width: int = 40,
) -> str:
    """Render sparsity pattern using Unicode braille characters.

    Each braille character represents a 4x2 block of the matrix.
    Large matrices are downsampled by linearly interpolating each
    non-zero position to the output grid.
    """
    # Target size in dot space (each braille char is 4 rows × 2 cols)
    scale_height = min(pattern.m, max_height * 4)
    scale_width = min(pattern.n, max_width * 2)

    grid = np.zeros(((scale_height - 1) // 4 + 1, (scale_width - 1) // 2 + 1), dtype=np.int64)
    if pattern.nnz:
        si = np.rint(pattern.rows * (scale_height - 1) / max(pattern.m - 1, 1)).astype(np.int64)
        sj = np.rint(pattern.cols * (scale_width - 1) / max(pattern.n - 1, 1)).astype(np.int64)
        np.bitwise_or.at(grid, (si // 4, sj // 2), _BRAILLE_BITS[(sj % 2) * 4 + (si % 4)])

    return "\n".join("".join(chr(0x2800 + int(bits)) for bits in row) for row in grid)
