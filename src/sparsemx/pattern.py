"""Sparsity patterns: the structural nonzeros of a matrix, without values."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from functools import cached_property

import jax.numpy as jnp
import numpy as np
from jax.experimental.sparse import BCOO
from numpy.typing import ArrayLike, NDArray

from sparsemx._display import sparsity_repr, sparsity_str
from sparsemx.errors import DimensionMismatchError, IndexOutOfRangeError


@dataclass(frozen=True, eq=False)
class SparsityPattern:
    """Immutable set of structurally nonzero positions of an ``m x n`` matrix.

    Nonzeros are stored in canonical row-major order
    (sorted by row, then by column, without duplicates).
    The position of an entry in this order is its *linear nonzero index*,
    which is how node data arrays are addressed.

    Attributes:
        rows: Row indices of non-zero entries, shape ``(nnz,)``
        cols: Column indices of non-zero entries, shape ``(nnz,)``
        shape: Matrix dimensions ``(m, n)``
    """

    rows: NDArray[np.int64]
    cols: NDArray[np.int64]
    shape: tuple[int, int]

    def __post_init__(self) -> None:
        """Validate that the coordinates are canonical and in bounds."""
        object.__setattr__(self, "rows", np.asarray(self.rows, dtype=np.int64))
        object.__setattr__(self, "cols", np.asarray(self.cols, dtype=np.int64))
        object.__setattr__(self, "shape", (int(self.shape[0]), int(self.shape[1])))
        if len(self.rows) != len(self.cols):
            msg = f"rows and cols must have same length, got {len(self.rows)} and {len(self.cols)}"
            raise DimensionMismatchError(msg)
        m, n = self.shape
        if m < 0 or n < 0:
            msg = f"shape must be non-negative, got {self.shape}"
            raise DimensionMismatchError(msg)
        if self.nnz == 0:
            return
        if self.rows.min() < 0 or self.rows.max() >= m:
            msg = f"row index out of range for shape {self.shape}"
            raise IndexOutOfRangeError(msg)
        if self.cols.min() < 0 or self.cols.max() >= n:
            msg = f"column index out of range for shape {self.shape}"
            raise IndexOutOfRangeError(msg)
        if np.any(np.diff(self._keys) <= 0):
            msg = "nonzeros must be unique and in row-major order, use from_coordinates"
            raise ValueError(msg)

    # Properties

    @property
    def nnz(self) -> int:
        """Number of non-zero elements."""
        return len(self.rows)

    @property
    def m(self) -> int:
        """Number of rows."""
        return self.shape[0]

    @property
    def n(self) -> int:
        """Number of columns."""
        return self.shape[1]

    @property
    def numel(self) -> int:
        """Number of elements of the dense matrix."""
        return self.m * self.n

    @property
    def density(self) -> float:
        """Fraction of non-zero entries."""
        total = self.m * self.n
        return self.nnz / total if total > 0 else 0.0

    @property
    def is_scalar(self) -> bool:
        return self.shape == (1, 1)

    @property
    def is_dense(self) -> bool:
        return self.nnz == self.numel

    @cached_property
    def _keys(self) -> NDArray[np.int64]:
        """Flat row-major element keys ``row * n + col``, one per nonzero."""
        return self.rows.astype(np.int64) * self.n + self.cols.astype(np.int64)

    @cached_property
    def row_offsets(self) -> NDArray[np.int64]:
        """Compressed-row offsets: nonzeros of row ``i`` are ``[off[i], off[i+1])``."""
        counts = np.bincount(self.rows, minlength=self.m) if self.nnz else np.zeros(self.m, dtype=np.int64)
        return np.concatenate([[0], np.cumsum(counts)]).astype(np.int64)

    # Constructors

    @classmethod
    def from_coordinates(
        cls,
        rows: ArrayLike,
        cols: ArrayLike,
        shape: tuple[int, int],
    ) -> SparsityPattern:
        """Create pattern from row and column index arrays in any order.

        Coordinates are sorted into row-major order and duplicates are dropped.

        Args:
            rows: Row indices of non-zero entries.
            cols: Column indices of non-zero entries.
            shape: Matrix dimensions ``(m, n)``.
        """
        rows = np.asarray(rows, dtype=np.int64).ravel()
        cols = np.asarray(cols, dtype=np.int64).ravel()
        shape = (int(shape[0]), int(shape[1]))
        if len(rows) != len(cols):
            msg = f"rows and cols must have same length, got {len(rows)} and {len(cols)}"
            raise DimensionMismatchError(msg)
        if len(rows) == 0:
            return cls(rows=rows, cols=cols, shape=shape)
        if rows.min() < 0 or rows.max() >= shape[0] or cols.min() < 0 or cols.max() >= shape[1]:
            msg = f"coordinates out of range for shape {shape}"
            raise IndexOutOfRangeError(msg)
        keys = np.unique(rows * shape[1] + cols)
        return cls(rows=keys // shape[1], cols=keys % shape[1], shape=shape)

    @classmethod
    def from_crs(
        cls,
        m: int,
        n: int,
        col: ArrayLike,
        row_offsets: ArrayLike,
    ) -> SparsityPattern:
        """Create pattern from compressed-row storage.

        Args:
            m: Number of rows.
            n: Number of columns.
            col: Column index of every nonzero, row by row.
            row_offsets: Offsets of length ``m + 1`` into ``col``.
        """
        col = np.asarray(col, dtype=np.int64)
        row_offsets = np.asarray(row_offsets, dtype=np.int64)
        if len(row_offsets) != m + 1:
            msg = f"row_offsets must have length {m + 1}, got {len(row_offsets)}"
            raise DimensionMismatchError(msg)
        counts = np.diff(row_offsets)
        if row_offsets[0] != 0 or np.any(counts < 0) or row_offsets[-1] != len(col):
            msg = "row_offsets must start at 0, be non-decreasing and end at len(col)"
            raise DimensionMismatchError(msg)
        rows = np.repeat(np.arange(m, dtype=np.int64), counts)
        return cls.from_coordinates(rows, col, (m, n))

    @classmethod
    def from_dense(cls, dense: ArrayLike) -> SparsityPattern:
        """Create pattern from dense boolean/numeric matrix.

        Non-zero entries indicate pattern positions.
        """
        dense = np.atleast_2d(np.asarray(dense))
        rows, cols = np.nonzero(dense)
        return cls.from_coordinates(rows, cols, (dense.shape[0], dense.shape[1]))

    @classmethod
    def from_bcoo(cls, bcoo: BCOO) -> SparsityPattern:
        """Create pattern from JAX BCOO sparse matrix."""
        indices = np.asarray(bcoo.indices).reshape(-1, 2)
        return cls.from_coordinates(indices[:, 0], indices[:, 1], (bcoo.shape[0], bcoo.shape[1]))

    @classmethod
    def dense(cls, m: int, n: int) -> SparsityPattern:
        """Fully populated ``m x n`` pattern."""
        rows, cols = np.divmod(np.arange(m * n, dtype=np.int64), max(n, 1))
        return cls(rows=rows, cols=cols, shape=(m, n))

    @classmethod
    def scalar(cls) -> SparsityPattern:
        """Dense ``1 x 1`` pattern."""
        return cls.dense(1, 1)

    # Queries

    def positions(self) -> Iterator[tuple[int, int]]:
        """Iterate over ``(row, col)`` of every nonzero in row-major order."""
        for row, col in zip(self.rows, self.cols, strict=True):
            yield int(row), int(col)

    def elements(self) -> NDArray[np.int64]:
        """Flat row-major element index ``row * n + col`` of every nonzero."""
        return self._keys.copy()

    def linear_index_of(self, row: int, col: int) -> int | None:
        """Linear nonzero index of position ``(row, col)``, ``None`` if absent."""
        k = int(self.get_nz([row], [col])[0])
        return k if k >= 0 else None

    def get_nz(self, rows: ArrayLike, cols: ArrayLike) -> NDArray[np.int64]:
        """Vectorised `linear_index_of` returning ``-1`` for absent positions."""
        rows = np.asarray(rows, dtype=np.int64)
        cols = np.asarray(cols, dtype=np.int64)
        inside = (rows >= 0) & (rows < self.m) & (cols >= 0) & (cols < self.n)
        keys = np.where(inside, rows * self.n + cols, -1)
        return self.get_nz_elements(keys)

    def get_nz_elements(self, elements: ArrayLike) -> NDArray[np.int64]:
        """Map flat element indices to linear nonzero indices, ``-1`` if absent."""
        elements = np.asarray(elements, dtype=np.int64)
        if self.nnz == 0 or elements.size == 0:
            return np.full(elements.shape, -1, dtype=np.int64)
        idx = np.searchsorted(self._keys, elements)
        clipped = np.minimum(idx, self.nnz - 1)
        found = self._keys[clipped] == elements
        return np.where(found, clipped, -1).astype(np.int64)

    def contains(self, other: SparsityPattern) -> bool:
        """Whether every nonzero of ``other`` is also a nonzero of this pattern."""
        if other.shape != self.shape:
            return False
        return bool(np.all(self.get_nz_elements(other._keys) >= 0))

    # Pattern algebra

    def union(self, other: SparsityPattern) -> SparsityPattern:
        """Pattern with the nonzeros of both patterns."""
        if other.shape != self.shape:
            msg = f"Cannot unite patterns of shape {self.shape} and {other.shape}"
            raise DimensionMismatchError(msg)
        keys = np.union1d(self._keys, other._keys)
        n = max(self.n, 1)
        return SparsityPattern(rows=keys // n, cols=keys % n, shape=self.shape)

    def transpose(self) -> tuple[SparsityPattern, NDArray[np.int64]]:
        """Transposed pattern and the nonzero permutation that produces it.

        Returns ``(pattern_t, perm)`` such that ``data_t = data[perm]``.
        """
        keys_t = self.cols * self.m + self.rows
        perm = np.argsort(keys_t, kind="stable").astype(np.int64)
        pattern_t = SparsityPattern(
            rows=self.cols[perm],
            cols=self.rows[perm],
            shape=(self.n, self.m),
        )
        return pattern_t, perm

    def scatter_matrix(self) -> NDArray[np.float64]:
        """0/1 matrix ``S`` of shape ``(m * n, nnz)`` with ``dense.ravel() == S @ data``."""
        result = np.zeros((self.numel, self.nnz))
        result[self._keys, np.arange(self.nnz)] = 1.0
        return result

    # Conversion methods

    def todense(self) -> NDArray:
        """Convert to dense numpy array with 1s at pattern positions."""
        result = np.zeros(self.shape, dtype=np.int8)
        if self.nnz > 0:
            result[self.rows, self.cols] = 1
        return result

    def to_bcoo(self, data: jnp.ndarray | None = None) -> BCOO:
        """Convert to JAX BCOO sparse matrix.

        Args:
            data: Optional data values in row-major nonzero order.
                If None, uses all 1s.
        """
        if self.nnz == 0:
            indices = jnp.zeros((0, 2), dtype=jnp.int32)
        else:
            indices = jnp.stack([jnp.asarray(self.rows), jnp.asarray(self.cols)], axis=1)
        if data is None:
            data = jnp.ones(self.nnz, dtype=jnp.int8)
        return BCOO((jnp.asarray(data), indices), shape=self.shape)

    # Comparison

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SparsityPattern):
            return NotImplemented
        return self.shape == other.shape and np.array_equal(self._keys, other._keys)

    def __hash__(self) -> int:
        return hash((self.shape, self._keys.tobytes()))

    # Display

    def __str__(self) -> str:
        """Render sparsity pattern with header and dot/braille grid."""
        return sparsity_str(self)

    def __repr__(self) -> str:
        """Return compact single-line representation."""
        return sparsity_repr(self)
