"""Affine index ranges and their detection in nonzero index lists."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray


@dataclass(frozen=True)
class Slice:
    """Affine index range ``start, start + step, ...`` stopping before ``stop``.

    ``stop`` is normalised to ``start + len * step``, so ranges with a negative
    step may have a negative ``stop``. Generated loops compare against it exactly.
    """

    start: int
    stop: int
    step: int = 1

    def __post_init__(self) -> None:
        if self.step == 0:
            msg = "Slice step must be nonzero"
            raise ValueError(msg)
        object.__setattr__(self, "start", int(self.start))
        object.__setattr__(self, "step", int(self.step))
        object.__setattr__(self, "stop", self.start + len(self) * self.step)

    def __len__(self) -> int:
        return max(0, -(-(self.stop - self.start) // self.step))

    def indices(self) -> NDArray[np.int64]:
        return np.arange(self.start, self.stop, self.step, dtype=np.int64)

    def to_python(self) -> slice:
        """Equivalent builtin slice for indexing nonnegative positions."""
        return slice(self.start, self.stop if self.stop >= 0 else None, self.step)

    def __str__(self) -> str:
        return f"{self.start}:{self.stop}:{self.step}"

    @classmethod
    def from_indices(cls, nz: Sequence[int] | NDArray) -> Slice | None:
        """Slice reproducing ``nz`` exactly, or None if ``nz`` is not affine.

        Absent entries (negative indices) and repeated indices never form a slice.
        """
        nz = np.asarray(nz, dtype=np.int64)
        if len(nz) == 0 or nz.min() < 0:
            return None
        start = int(nz[0])
        if len(nz) == 1:
            return cls(start, start + 1, 1)
        step = int(nz[1] - nz[0])
        if step == 0 or not np.all(np.diff(nz) == step):
            return None
        return cls(start, start + len(nz) * step, step)

    @classmethod
    def nested_from_indices(cls, nz: Sequence[int] | NDArray) -> tuple[Slice, Slice] | None:
        """Outer and inner slices with ``nz == [o + i for o in outer for i in inner]``.

        Returns None unless ``nz`` consists of at least two equally spaced blocks,
        each an affine range of at least two indices with the same step.
        """
        nz = np.asarray(nz, dtype=np.int64)
        if len(nz) < 4 or nz.min() < 0:
            return None
        inner_step = int(nz[1] - nz[0])
        if inner_step == 0:
            return None
        breaks = np.flatnonzero(np.diff(nz) != inner_step)
        if len(breaks) == 0:
            return None
        block = int(breaks[0]) + 1
        if block < 2 or len(nz) % block != 0:
            return None
        n_outer = len(nz) // block
        outer_step = int(nz[block] - nz[0])
        if outer_step == 0:
            return None
        outer = cls(int(nz[0]), int(nz[0]) + n_outer * outer_step, outer_step)
        inner = cls(0, block * inner_step, inner_step)
        expected = outer.indices()[:, None] + inner.indices()[None, :]
        if not np.array_equal(expected.ravel(), nz):
            return None
        return outer, inner
