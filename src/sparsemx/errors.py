"""Error taxonomy for expression graph operations.

All failures are fatal for the current pass:
nothing inside the graph retries or recovers,
the traversal driver decides what to do with them.
Mathematically undefined derivatives are not errors,
they are reported as NaN values.
"""


class SparseMxError(Exception):
    """Base class for all errors raised by sparsemx."""


class UnsupportedOperationError(SparseMxError, NotImplementedError):
    """Raised when a node cannot perform the requested operation.

    Examples are adjoint sensitivities of the infinity norm
    or evaluating the abstract norm base class.
    """


class IndexOutOfRangeError(SparseMxError, IndexError):
    """Raised when a nonzero mapping references a nonzero that does not exist."""


class DimensionMismatchError(SparseMxError, ValueError):
    """Raised when shapes or buffer sizes disagree with the declared sparsity."""
