"""C code generation for expression nodes.

Every node emits the loop body that evaluates it on raw nonzero arrays.
The `CodeGenerator` collects what those bodies share:
pooled integer constants (index tables) and the work variables the
loops use (``ii``, ``rr``, ``ss``, ``tt``, ``t``).
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from sparsemx._nodes._commons import Node

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CodegenOptions:
    """Options for generated C code.

    Attributes:
        real_t: C type of floating point values.
        int_t: C type of integer constants.
        constant_prefix: Name prefix of pooled constant arrays.
    """

    real_t: str = "double"
    int_t: str = "int"
    constant_prefix: str = "s"


class CodeGenerator:
    """Accumulates constants and node bodies for one generated C function."""

    def __init__(self, options: CodegenOptions | None = None) -> None:
        self.options = options or CodegenOptions()
        self._constants: list[tuple[int, ...]] = []
        self._constant_index: dict[tuple[int, ...], int] = {}
        self._body: list[str] = []

    def add_constant(self, values: Sequence[int]) -> int:
        """Register an integer array and return its index.

        Identical arrays are stored once.
        """
        key = tuple(int(v) for v in values)
        index = self._constant_index.get(key)
        if index is None:
            index = len(self._constants)
            self._constants.append(key)
            self._constant_index[key] = index
        return index

    def constant_name(self, index: int) -> str:
        return f"{self.options.constant_prefix}{index}"

    def emit(self, node: Node, args: Sequence[str], res: Sequence[str]) -> str:
        """Generate the body of ``node`` and append it to the function."""
        code = node.emit_code(args, res, self)
        logger.debug("Generated %d characters for %s", len(code), type(node).__name__)
        self._body.append(code)
        return code

    def constants_source(self) -> str:
        """Static definitions of all pooled constants."""
        opts = self.options
        lines = []
        for index, values in enumerate(self._constants):
            body = ", ".join(map(str, values)) if values else "0"
            lines.append(
                f"static const {opts.int_t} {self.constant_name(index)}[] = {{{body}}};"
            )
        return "\n".join(lines)

    def work_declarations(self) -> str:
        """Declarations of the work variables used by node bodies."""
        real_t, int_t = self.options.real_t, self.options.int_t
        return (
            f"  const {int_t} *ii;\n"
            f"  {real_t} *rr, t;\n"
            f"  const {real_t} *ss, *tt;\n"
        )

    def function_source(self, name: str, args: Sequence[str], res: Sequence[str]) -> str:
        """Complete C translation unit with one function running all emitted bodies."""
        real_t = self.options.real_t
        params = [f"const {real_t}* {a}" for a in args] + [f"{real_t}* {r}" for r in res]
        parts = ["#include <math.h>", ""]
        constants = self.constants_source()
        if constants:
            parts += [constants, ""]
        parts.append(f"void {name}({', '.join(params)}) {{")
        parts.append(self.work_declarations() + "".join(self._body) + "}")
        return "\n".join(parts) + "\n"


def format_real(value: float) -> str:
    """C literal of a floating point value."""
    if np.isnan(value):
        return "NAN"
    if np.isinf(value):
        return "INFINITY" if value > 0 else "-INFINITY"
    return repr(float(value))
