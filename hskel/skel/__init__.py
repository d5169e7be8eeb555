"""Recursive skeletonization internals.

This package contains the building blocks of the factorizations
(`hskel.rskelf`, `hskel.mf`) and of the skeletonization-only variant
(`hskel.rskel`).

Modules
-------
types
    Option records, the hyperoctree arena, factor nodes and the Factor.
errors
    Exception and warning classes.
tree
    Hyperoctree partition of the points and neighbor lists.
interp
    Interpolative decomposition by column-pivoted QR.
local_ops
    Matrix-entry sources and the sparse Schur-complement workspace.
elimination
    Per-box compression, sparsification and local factorization.
sweeps
    Apply/solve sweeps, one strategy per symmetry mode.
logdet
    Determinant accumulation.
diag
    Selected diagonal extraction of F or F^{-1}.
snorm
    Power-method estimate of an operator norm.
stats
    Per-level timing and diagnostic reporting.
"""

from __future__ import annotations

from . import diag, elimination, errors, interp, local_ops, logdet, snorm, stats, sweeps, tree, types

__all__ = [
    "types",
    "errors",
    "tree",
    "interp",
    "local_ops",
    "elimination",
    "sweeps",
    "logdet",
    "diag",
    "snorm",
    "stats",
]
