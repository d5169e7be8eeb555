"""Shared test problems for the skeletonization tests.

Kernel matrices live on points of the unit circle and are scaled by 1/N so
that their norm stays O(1); a diagonal term keeps every matrix well
conditioned in each symmetry mode.
"""

from __future__ import annotations

import numpy as np
import pytest
from scipy import sparse


def _circle(n: int) -> np.ndarray:
    theta = np.arange(1, n + 1) * 2 * np.pi / n
    return np.column_stack([np.cos(theta), np.sin(theta)])


def _dist(x: np.ndarray, y: np.ndarray) -> np.ndarray:
    return np.sqrt(((x[:, None, :] - y[None, :, :]) ** 2).sum(axis=-1))


def _kernel_matrix(symm: str, n: int = 256) -> tuple[np.ndarray, np.ndarray]:
    """Dense test matrix with the structure of symmetry mode `symm`."""
    x = _circle(n)
    r = _dist(x, x)
    K = np.exp(-r) / n
    if symm == "p":
        A = np.eye(n) + K
    elif symm == "h":
        phase = np.exp(1j * np.arctan2(x[:, 1], x[:, 0]))
        sign = 4.0 * (-1.0) ** np.arange(n)
        A = np.diag(sign) + phase[:, None] * K * phase.conj()[None, :]
    elif symm == "s":
        A = (2.0 + 1.0j) * np.eye(n) + K * np.exp(3.0j * r)
    else:
        A = 2.0 * np.eye(n) + K * (1.0 + 0.5 * (x[:, 0][:, None] - 2.0 * x[:, 1][None, :]))
    return A, x


def _laplacian_1d(n: int) -> sparse.csr_matrix:
    return sparse.diags([-np.ones(n - 1), 2.0 * np.ones(n), -np.ones(n - 1)], [-1, 0, 1], format="csr")


@pytest.fixture
def kernel_matrix():
    """Factory ``kernel_matrix(symm, n=256) -> (A, x)``."""
    return _kernel_matrix


@pytest.fixture
def laplacian_1d():
    """Factory ``laplacian_1d(n) -> csr_matrix`` of the 1D Dirichlet Laplacian."""
    return _laplacian_1d


@pytest.fixture
def circle():
    """Factory ``circle(n) -> (n, 2)`` equispaced points on the unit circle."""
    return _circle


@pytest.fixture
def dist():
    """Pairwise distance matrix between two point sets."""
    return _dist


@pytest.fixture(params=["n", "s", "h", "p"])
def symm(request):
    """Every symmetry mode."""
    return request.param
