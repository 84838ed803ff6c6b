"""Expression graph nodes.

Every node derives its sparsity from its dependencies at construction
and implements the per-visit contract a traversal driver calls:
values, forward and adjoint sensitivities, dependency bit masks,
graph-level derivatives and C code.
"""

from ._algebra import Divide, MatMul, Scale, Transpose, divide, matmul, scale, transpose
from ._commons import BitVector, Data, Inputs, Node, conservative_sparsity
from ._leaf import Constant, Symbol, constant, full, symbol, zeros
from ._nonzeros import (
    AddNonzeros,
    Densify,
    GetNonzeros,
    GetNonzerosSlice,
    GetNonzerosSlice2,
    densify,
    get_nonzeros,
)
from ._norm import (
    Norm,
    Norm1,
    Norm2,
    Norm2Squared,
    NormInf,
    norm_1,
    norm_2,
    norm_2_squared,
    norm_inf,
)
from ._slice import Slice

__all__ = [
    "AddNonzeros",
    "BitVector",
    "Constant",
    "Data",
    "Densify",
    "Divide",
    "GetNonzeros",
    "GetNonzerosSlice",
    "GetNonzerosSlice2",
    "Inputs",
    "MatMul",
    "Node",
    "Norm",
    "Norm1",
    "Norm2",
    "Norm2Squared",
    "NormInf",
    "Scale",
    "Slice",
    "Symbol",
    "Transpose",
    "conservative_sparsity",
    "constant",
    "densify",
    "divide",
    "full",
    "get_nonzeros",
    "matmul",
    "norm_1",
    "norm_2",
    "norm_2_squared",
    "norm_inf",
    "scale",
    "symbol",
    "transpose",
    "zeros",
]
