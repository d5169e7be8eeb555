"""Tests for the interpolative decomposition."""

from __future__ import annotations

import numpy as np
import pytest

from hskel import interp_decomp


def _low_rank(m: int, n: int, k: int, *, seed: int, complex_: bool = False) -> np.ndarray:
    rng = np.random.default_rng(seed)
    B = rng.standard_normal((m, k))
    C = rng.standard_normal((k, n))
    if complex_:
        B = B + 1j * rng.standard_normal((m, k))
        C = C + 1j * rng.standard_normal((k, n))
    return B @ C


@pytest.mark.parametrize("complex_", [False, True])
def test_tolerance_recovers_exact_rank(complex_):
    K = _low_rank(40, 30, 6, seed=1, complex_=complex_)
    sk, rd, T = interp_decomp(K, 1e-10)

    assert sk.size == 6
    assert rd.size == 24
    assert T.shape == (6, 24)
    assert np.array_equal(np.sort(np.concatenate([sk, rd])), np.arange(30))
    err = np.linalg.norm(K[:, rd] - K[:, sk] @ T)
    assert err <= 1e-8 * np.linalg.norm(K)


def test_fixed_rank_is_clipped():
    K = _low_rank(5, 12, 5, seed=2)
    sk, rd, T = interp_decomp(K, 8)
    assert sk.size == 5
    assert T.shape == (5, 7)

    sk, rd, T = interp_decomp(K, 3)
    assert sk.size == 3
    assert rd.size == 9


def test_smooth_kernel_error_tracks_tolerance():
    x = np.linspace(0, 1, 50)
    y = np.linspace(3, 4, 80)
    K = 1.0 / np.abs(y[:, None] - x[None, :])
    for tol in (1e-4, 1e-8, 1e-12):
        sk, rd, T = interp_decomp(K, tol)
        err = np.linalg.norm(K[:, rd] - K[:, sk] @ T, 2)
        assert err <= 100 * tol * np.linalg.norm(K, 2)


def test_strong_rrqr_bounds_interpolation_entries():
    rng = np.random.default_rng(3)
    K = _low_rank(60, 40, 10, seed=4)
    K[:, 5] *= 1e3
    K += 1e-14 * rng.standard_normal(K.shape)
    sk, rd, T = interp_decomp(K, 10, Tmax=1.5)
    assert np.abs(T).max() <= 1.5 + 1e-10


def test_empty_block_makes_everything_redundant():
    sk, rd, T = interp_decomp(np.zeros((0, 7)), 1e-6)
    assert sk.size == 0
    assert np.array_equal(rd, np.arange(7))
    assert T.shape == (0, 7)


def test_zero_block_makes_everything_redundant():
    sk, rd, T = interp_decomp(np.zeros((4, 3)), 1e-6)
    assert sk.size == 0
    assert rd.size == 3
    assert T.shape == (0, 3)


def test_full_rank_keeps_everything():
    rng = np.random.default_rng(5)
    K = rng.standard_normal((20, 6))
    sk, rd, T = interp_decomp(K, 1e-12)
    assert sk.size == 6
    assert rd.size == 0
    assert T.shape == (6, 0)
