"""sparsemx - Sparse matrix expression graphs with forward, adjoint and symbolic derivatives.

Nodes carry a sparsity pattern fixed at construction and implement,
for every visit of a traversal driver, numeric evaluation, multi-directional
forward and adjoint sensitivities, dependency bit-mask propagation,
graph-level derivatives and C code generation.
"""

from sparsemx._nodes import (
    AddNonzeros,
    Constant,
    Densify,
    Divide,
    GetNonzeros,
    GetNonzerosSlice,
    GetNonzerosSlice2,
    MatMul,
    Node,
    Norm,
    Norm1,
    Norm2,
    Norm2Squared,
    NormInf,
    Scale,
    Slice,
    Symbol,
    Transpose,
    constant,
    densify,
    divide,
    full,
    get_nonzeros,
    matmul,
    norm_1,
    norm_2,
    norm_2_squared,
    norm_inf,
    scale,
    symbol,
    transpose,
    zeros,
)
from sparsemx.codegen import CodegenOptions, CodeGenerator
from sparsemx.detection import jacobian_sparsity
from sparsemx.errors import (
    DimensionMismatchError,
    IndexOutOfRangeError,
    SparseMxError,
    UnsupportedOperationError,
)
from sparsemx.graph import adjoint, evaluate, forward, topological_order
from sparsemx.matrix import SparseMatrix
from sparsemx.pattern import SparsityPattern
from sparsemx.verify import VerificationError, check_node_derivatives


def simplify(node: Node) -> Node:
    """Elide ``node`` if it is an identity operation."""
    return node.simplify()


__all__ = [
    "AddNonzeros",
    "CodeGenerator",
    "CodegenOptions",
    "Constant",
    "Densify",
    "DimensionMismatchError",
    "Divide",
    "GetNonzeros",
    "GetNonzerosSlice",
    "GetNonzerosSlice2",
    "IndexOutOfRangeError",
    "MatMul",
    "Node",
    "Norm",
    "Norm1",
    "Norm2",
    "Norm2Squared",
    "NormInf",
    "Scale",
    "Slice",
    "SparseMatrix",
    "SparseMxError",
    "SparsityPattern",
    "Symbol",
    "Transpose",
    "UnsupportedOperationError",
    "VerificationError",
    "adjoint",
    "check_node_derivatives",
    "constant",
    "densify",
    "divide",
    "evaluate",
    "forward",
    "full",
    "get_nonzeros",
    "jacobian_sparsity",
    "matmul",
    "norm_1",
    "norm_2",
    "norm_2_squared",
    "norm_inf",
    "scale",
    "simplify",
    "symbol",
    "topological_order",
    "transpose",
    "zeros",
]
