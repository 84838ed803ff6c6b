"""Sparse matrix values flowing through expression graphs."""

from __future__ import annotations

from dataclasses import dataclass

import jax.numpy as jnp
import numpy as np
from jax.experimental.sparse import BCOO
from numpy.typing import ArrayLike, NDArray

from sparsemx._display import matrix_repr
from sparsemx.errors import DimensionMismatchError
from sparsemx.pattern import SparsityPattern


@dataclass(frozen=True, eq=False, repr=False)
class SparseMatrix:
    """Numeric matrix stored as a sparsity pattern plus its nonzero values.

    Attributes:
        sparsity: Structural nonzeros.
        data: Values of the nonzeros in row-major order, shape ``(nnz,)``.
            Explicit zeros are allowed.
    """

    sparsity: SparsityPattern
    data: NDArray[np.float64]

    def __post_init__(self) -> None:
        data = np.asarray(self.data, dtype=np.float64).ravel()
        if len(data) != self.sparsity.nnz:
            msg = f"data has {len(data)} entries but the sparsity pattern has {self.sparsity.nnz} nonzeros"
            raise DimensionMismatchError(msg)
        object.__setattr__(self, "data", data)

    @property
    def shape(self) -> tuple[int, int]:
        return self.sparsity.shape

    @property
    def nnz(self) -> int:
        return self.sparsity.nnz

    # Constructors

    @classmethod
    def from_dense(
        cls, dense: ArrayLike, sparsity: SparsityPattern | None = None
    ) -> SparseMatrix:
        """Create a matrix from a dense array.

        Args:
            dense: Dense values; vectors are treated as columns.
            sparsity: Pattern to keep.
                If None, the nonzero entries of ``dense`` are used.
        """
        dense = np.asarray(dense, dtype=np.float64)
        if dense.ndim < 2:
            dense = dense.reshape(-1, 1)
        if sparsity is None:
            sparsity = SparsityPattern.from_dense(dense)
        elif sparsity.shape != dense.shape:
            msg = f"dense shape {dense.shape} does not match sparsity shape {sparsity.shape}"
            raise DimensionMismatchError(msg)
        return cls(sparsity, dense[sparsity.rows, sparsity.cols])

    @classmethod
    def zeros(cls, sparsity: SparsityPattern) -> SparseMatrix:
        """Matrix with structural nonzeros that all hold the value 0."""
        return cls(sparsity, np.zeros(sparsity.nnz))

    @classmethod
    def from_bcoo(cls, bcoo: BCOO) -> SparseMatrix:
        """Create a matrix from a JAX BCOO matrix, summing duplicate entries."""
        sparsity = SparsityPattern.from_bcoo(bcoo)
        indices = np.asarray(bcoo.indices).reshape(-1, 2)
        data = np.zeros(sparsity.nnz)
        np.add.at(data, sparsity.get_nz(indices[:, 0], indices[:, 1]), np.asarray(bcoo.data))
        return cls(sparsity, data)

    # Conversion methods

    def todense(self) -> NDArray[np.float64]:
        result = np.zeros(self.shape)
        result[self.sparsity.rows, self.sparsity.cols] = self.data
        return result

    def to_bcoo(self) -> BCOO:
        return self.sparsity.to_bcoo(jnp.asarray(self.data))

    def __repr__(self) -> str:
        return matrix_repr(self)
