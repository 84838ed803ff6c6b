"""Pytest configuration and fixtures for sparsemx tests."""

import jax

# Reference derivatives are compared at float64 precision
jax.config.update("jax_enable_x64", True)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "pattern: sparsity pattern and matrix types")
    config.addinivalue_line("markers", "norm: reduction norm nodes")
    config.addinivalue_line(
        "markers", "nonzeros: nonzero selection (gather) and slice nodes"
    )
    config.addinivalue_line("markers", "symbolic: graph-level derivatives")
    config.addinivalue_line("markers", "codegen: C code generation")
    config.addinivalue_line("markers", "sparsity: dependency bit-mask propagation")
    config.addinivalue_line("markers", "graph: traversal driver passes")
