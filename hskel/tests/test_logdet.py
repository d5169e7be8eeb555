"""Tests for the determinant of the factorization."""

from __future__ import annotations

import numpy as np
import pytest

from hskel import AccuracyNotMetError, rskelf, rskelf_logdet, rskelf_slogdet
from hskel.skel.logdet import _perm_sign


def test_diagonal_matrix_positive(symm):
    d = np.linspace(0.5, 3.0, 40)
    F = rskelf(np.diag(d), np.arange(40.0), 4, 1e-10, symm=symm)
    sign, logabs = rskelf_slogdet(F)
    assert sign == pytest.approx(1.0)
    assert logabs == pytest.approx(np.sum(np.log(d)))
    assert rskelf_logdet(F) == pytest.approx(np.sum(np.log(d)))


@pytest.mark.parametrize("symm_", ["n", "s", "h"])
@pytest.mark.parametrize("nneg", [1, 2, 3])
def test_diagonal_matrix_mixed_signs(symm_, nneg):
    d = np.linspace(0.5, 3.0, 40)
    d[[3, 17, 31][:nneg]] *= -1
    F = rskelf(np.diag(d), np.arange(40.0), 4, 1e-10, symm=symm_)
    sign, logabs = rskelf_slogdet(F)
    assert sign == pytest.approx((-1.0) ** nneg)
    assert logabs == pytest.approx(np.sum(np.log(np.abs(d))))

    if nneg % 2:
        with pytest.raises(AccuracyNotMetError):
            rskelf_logdet(F)
        ld = rskelf_logdet(F, real=False)
        assert ld.real == pytest.approx(logabs)
        assert abs(ld.imag) == pytest.approx(np.pi)
    else:
        assert rskelf_logdet(F) == pytest.approx(logabs)


def test_real_factor_returns_real_sign():
    d = -np.ones(10)
    F = rskelf(np.diag(d), np.arange(10.0), 2, 1e-10)
    sign, _ = rskelf_slogdet(F)
    assert isinstance(sign, float)
    assert sign == 1.0


def test_kernel_matrix_matches_dense(symm, kernel_matrix):
    A, x = kernel_matrix(symm, 128)
    F = rskelf(A, x, 16, 1e-12, symm=symm)
    sign, logabs = rskelf_slogdet(F)
    ref_sign, ref_logabs = np.linalg.slogdet(A)
    assert logabs == pytest.approx(ref_logabs, rel=1e-8, abs=1e-8)
    assert abs(sign - ref_sign) < 1e-6


def test_complex_logdet_phase(kernel_matrix):
    A, x = kernel_matrix("s", 64)
    F = rskelf(A, x, 8, 1e-12, symm="s")
    ld = rskelf_logdet(F, real=False)
    ref_sign, ref_logabs = np.linalg.slogdet(A)
    assert np.exp(ld) == pytest.approx(ref_sign * np.exp(ref_logabs), rel=1e-6)
    with pytest.raises(AccuracyNotMetError):
        rskelf_logdet(F)


@pytest.mark.parametrize(
    "p, expected",
    [
        ([0, 1, 2, 3], 1),
        ([1, 0, 2, 3], -1),
        ([1, 2, 0, 3], 1),
        ([3, 2, 1, 0], 1),
        ([1, 2, 3, 0], -1),
    ],
)
def test_permutation_sign(p, expected):
    assert _perm_sign(np.array(p)) == expected
