"""Accuracy and interface tests for the recursive skeletonization factorization."""

from __future__ import annotations

import warnings

import numpy as np
import pytest
from scipy import sparse

from pyamg.gallery import poisson

from hskel import (
    DimensionMismatchError,
    FactorModeError,
    InvalidConfigurationError,
    NumericalDegeneracyWarning,
    rskelf,
    rskelf_aslinearoperator,
    rskelf_cholmv,
    rskelf_cholsv,
    rskelf_diag,
    rskelf_mv,
    rskelf_sv,
    snorm,
)


def _dense(F, op=rskelf_mv, trans="n"):
    return op(F, np.eye(F.N), trans)


def _relerr(X, Y):
    return np.linalg.norm(X - Y) / np.linalg.norm(Y)


def _rhs(n, k, *, seed, complex_=False):
    rng = np.random.default_rng(seed)
    X = rng.standard_normal((n, k))
    if complex_:
        X = X + 1j * rng.standard_normal((n, k))
    return X


def test_laplacian_1d_is_factored_exactly(symm, laplacian_1d):
    N = 127
    A = laplacian_1d(N)
    x = np.arange(N, dtype=float)
    F = rskelf(A, x, 8, 1e-10, symm=symm)

    assert F.N == N
    assert F.symm == symm
    assert _relerr(_dense(F), A.toarray()) < 1e-10

    b = _rhs(N, 2, seed=0)
    u = rskelf_sv(F, b)
    assert _relerr(A @ u, b) < 1e-10


def test_laplacian_1d_dense_and_callable_sources(laplacian_1d):
    N = 63
    Ad = laplacian_1d(N).toarray()
    x = np.linspace(0, 1, N)
    F1 = rskelf(Ad, x, 4, 1e-12, symm="p")
    F2 = rskelf(lambda I, J: Ad[np.ix_(I, J)], x, 4, 1e-12, symm="p")
    b = _rhs(N, 1, seed=1)[:, 0]
    assert np.allclose(rskelf_sv(F1, b), rskelf_sv(F2, b))
    assert np.allclose(rskelf_sv(F1, b), np.linalg.solve(Ad, b))


def test_rd_sets_partition_indices(symm, kernel_matrix):
    A, x = kernel_matrix(symm, 128)
    F = rskelf(A, x, 16, 1e-8, symm=symm)
    rd = np.concatenate([f.rd for f in F.nodes])
    assert np.array_equal(np.sort(rd), np.arange(F.N))
    assert F.lvp.size == F.nlvl + 1
    assert F.lvp[-1] == len(F.nodes)
    for f in F.nodes:
        assert f.T.shape == (f.sk.size, f.rd.size)
        assert f.E.shape == (f.sk.size, f.rd.size)


def test_kernel_multiply_matches_matrix(symm, kernel_matrix):
    A, x = kernel_matrix(symm)
    F = rskelf(A, x, 16, 1e-10, symm=symm)
    N = F.N

    err = snorm(
        N,
        lambda v: A @ v - rskelf_mv(F, v),
        lambda v: A.conj().T @ v - rskelf_mv(F, v, "c"),
        rng=0,
    )
    nrm = snorm(N, lambda v: A @ v, lambda v: A.conj().T @ v, rng=0)
    assert err / nrm < 1e-8


def test_kernel_solve_inverts_multiply(symm, kernel_matrix):
    A, x = kernel_matrix(symm)
    F = rskelf(A, x, 16, 1e-10, symm=symm)
    X = _rhs(F.N, 3, seed=2, complex_=np.iscomplexobj(A))
    assert _relerr(rskelf_sv(F, rskelf_mv(F, X)), X) < 1e-10
    assert _relerr(rskelf_mv(F, rskelf_sv(F, X)), X) < 1e-10
    assert _relerr(A @ rskelf_sv(F, X), X) < 1e-7


@pytest.mark.parametrize("op", [rskelf_mv, rskelf_sv])
def test_transpose_modes(symm, kernel_matrix, op):
    A, x = kernel_matrix(symm, 128)
    F = rskelf(A, x, 16, 1e-10, symm=symm)
    X = _rhs(F.N, 2, seed=3, complex_=True)

    Y = op(F, X)
    Yt = op(F, X, "t")
    Yc = op(F, X, "c")
    assert np.allclose(Yc, np.conj(op(F, np.conj(X), "t")))

    Fd = _dense(F, op)
    assert _relerr(Yt, Fd.T @ X) < 1e-12
    assert _relerr(Yc, Fd.conj().T @ X) < 1e-12
    assert _relerr(Y, Fd @ X) < 1e-12


def test_cholesky_half_factor(kernel_matrix):
    A, x = kernel_matrix("p")
    F = rskelf(A, x, 16, 1e-10, symm="p")
    X = _rhs(F.N, 2, seed=4)

    assert _relerr(rskelf_cholmv(F, rskelf_cholmv(F, X, "c")), rskelf_mv(F, X)) < 1e-12
    assert _relerr(rskelf_cholsv(F, rskelf_cholsv(F, X), "c"), rskelf_sv(F, X)) < 1e-12
    assert _relerr(rskelf_cholsv(F, rskelf_cholmv(F, X)), X) < 1e-12
    assert _relerr(rskelf_cholmv(F, X, "t"), _dense(F, rskelf_cholmv).T @ X) < 1e-12


@pytest.mark.parametrize("symm_", ["n", "s", "h"])
def test_cholesky_requires_positive_definite_mode(kernel_matrix, symm_):
    A, x = kernel_matrix(symm_, 64)
    F = rskelf(A, x, 16, 1e-8, symm=symm_)
    with pytest.raises(FactorModeError):
        rskelf_cholmv(F, np.ones(F.N))
    with pytest.raises(FactorModeError):
        rskelf_cholsv(F, np.ones(F.N))


def test_vector_and_matrix_shapes(kernel_matrix):
    A, x = kernel_matrix("n", 64)
    F = rskelf(A, x, 8, 1e-10)
    v = np.ones(F.N)
    y = rskelf_mv(F, v)
    assert y.shape == (F.N,)
    Y = rskelf_mv(F, v[:, None])
    assert Y.shape == (F.N, 1)
    assert np.allclose(Y[:, 0], y)
    # inputs are not modified
    assert np.all(v == 1)
    # integer input is promoted
    assert rskelf_sv(F, np.arange(F.N)).dtype == np.float64


def test_complex_rhs_on_real_factor(kernel_matrix):
    A, x = kernel_matrix("p", 64)
    F = rskelf(A, x, 8, 1e-10, symm="p")
    X = _rhs(F.N, 1, seed=5, complex_=True)[:, 0]
    Y = rskelf_mv(F, X)
    assert np.iscomplexobj(Y)
    assert np.allclose(Y, rskelf_mv(F, X.real) + 1j * rskelf_mv(F, X.imag))


def test_skip_levels_still_exact(kernel_matrix):
    A, x = kernel_matrix("p", 128)
    F0 = rskelf(A, x, 8, 1e-10, symm="p")
    F1 = rskelf(A, x, 8, 1e-10, symm="p", skip=2)
    assert F1.nlvl == F0.nlvl
    # finest levels store nothing
    for lvl in range(2):
        assert len(F1.level(lvl)) == 0
    assert _relerr(_dense(F1), A) < 1e-8


def test_fixed_rank_compresses(kernel_matrix):
    A, x = kernel_matrix("p", 256)
    F = rskelf(A, x, 16, 4, symm="p")
    leaves = F.level(0)
    assert all(f.sk.size <= 4 for f in leaves)


def test_sparse_source_with_sparse_workspace(laplacian_1d):
    N = 100
    A = sparse.csr_array(laplacian_1d(N))
    F = rskelf(A, np.arange(N), 4, 1e-12, symm="h")
    assert _relerr(_dense(F), A.toarray()) < 1e-12


def test_proxy_function_is_used_on_deep_levels(circle, dist):
    N = 512
    x = circle(N)
    scale = 10.0

    def kfun(a, b):
        return np.exp(-0.5 * (scale * dist(a, b)) ** 2)

    def afun(I, J):
        K = kfun(x[I], x[J])
        K[np.asarray(I)[:, None] == np.asarray(J)[None, :]] += 1e-2
        return K

    p = 16
    theta = np.arange(1, p + 1) * 2 * np.pi / p
    ring = np.column_stack([np.cos(theta), np.sin(theta)])
    proxy = np.vstack([r * ring for r in np.linspace(1.5, 2.5, p)])
    calls = []

    def pxyfun(x_, slf, nbr, l, ctr):
        calls.append(l)
        pxy = proxy * l + ctr
        Kpxy = kfun(pxy, x_[slf])
        keep = np.linalg.norm(x_[nbr] - ctr, axis=1) / l < 1.5
        return Kpxy, nbr[keep]

    F = rskelf(afun, x, 32, 1e-10, pxyfun, symm="p")
    assert calls
    A = afun(np.arange(N), np.arange(N))
    assert _relerr(_dense(F), A) < 1e-6


def test_operator_adapter(kernel_matrix):
    A, x = kernel_matrix("n", 64)
    F = rskelf(A, x, 8, 1e-10)
    v = np.linspace(-1, 1, F.N)
    Fop = rskelf_aslinearoperator(F)
    Finv = rskelf_aslinearoperator(F, inverse=True)
    assert Fop.shape == (F.N, F.N)
    assert np.allclose(Fop @ v, rskelf_mv(F, v))
    assert np.allclose(Finv @ v, rskelf_sv(F, v))
    assert np.allclose(Fop.rmatvec(v), rskelf_mv(F, v, "c"))


def test_singular_blocks_warn_and_complete():
    N = 16
    A = np.zeros((N, N))
    x = np.arange(N, dtype=float)
    with pytest.warns(NumericalDegeneracyWarning):
        F = rskelf(A, x, 4, 1e-6)
    rd = np.concatenate([f.rd for f in F.nodes])
    assert np.array_equal(np.sort(rd), np.arange(N))


def test_no_warning_on_regular_problem(kernel_matrix):
    A, x = kernel_matrix("p", 64)
    with warnings.catch_warnings():
        warnings.simplefilter("error", NumericalDegeneracyWarning)
        rskelf(A, x, 8, 1e-10, symm="p")


def test_verbose_prints_level_table(kernel_matrix, capsys):
    A, x = kernel_matrix("p", 64)
    rskelf(A, x, 8, 1e-10, symm="p", verb=True)
    out = capsys.readouterr().out
    assert "RSKELF" in out
    assert "level=0" in out
    assert "storage" in out


@pytest.mark.parametrize(
    "kwargs",
    [
        dict(occ=0, rank_or_tol=1e-6),
        dict(occ=8, rank_or_tol=0),
        dict(occ=8, rank_or_tol=-1e-3),
        dict(occ=8, rank_or_tol=2.5),
        dict(occ=8, rank_or_tol=1e-6, symm="x"),
        dict(occ=8, rank_or_tol=1e-6, skip=-1),
        dict(occ=8, rank_or_tol=1e-6, Tmax=0.5),
    ],
)
def test_invalid_configuration(kwargs):
    A = np.eye(10)
    x = np.arange(10.0)
    kwargs = dict(kwargs)
    occ = kwargs.pop("occ")
    rank_or_tol = kwargs.pop("rank_or_tol")
    with pytest.raises(InvalidConfigurationError):
        rskelf(A, x, occ, rank_or_tol, **kwargs)


def test_matrix_shape_must_match_points():
    with pytest.raises(InvalidConfigurationError):
        rskelf(np.eye(10), np.arange(12.0), 4, 1e-6)


def test_dimension_mismatch_and_bad_trans():
    F = rskelf(np.eye(10), np.arange(10.0), 4, 1e-6)
    with pytest.raises(DimensionMismatchError):
        rskelf_mv(F, np.ones(9))
    with pytest.raises(DimensionMismatchError):
        rskelf_sv(F, np.ones((11, 2)))
    with pytest.raises(InvalidConfigurationError):
        rskelf_mv(F, np.ones(10), "q")


def test_symm_is_case_insensitive():
    F = rskelf(np.eye(10), np.arange(10.0), 4, 1e-6, symm="P")
    assert F.symm == "p"
    assert np.allclose(rskelf_mv(F, np.arange(10.0), "T"), np.arange(10.0))


def test_ill_conditioned_redundant_blocks_are_not_eliminated(kernel_matrix):
    # alternating +-4 diagonal: sparsification nearly cancels some pivots
    A, x = kernel_matrix("h", 256)
    with pytest.warns(NumericalDegeneracyWarning):
        F = rskelf(A, x, 16, 1e-10, symm="h")
    X = _rhs(F.N, 2, seed=6, complex_=True)
    assert _relerr(rskelf_sv(F, rskelf_mv(F, X)), X) < 1e-10

    Fi = _dense(F, rskelf_sv)
    assert _relerr(rskelf_diag(F, dinv=True), np.diag(Fi)) < 1e-10
    assert _relerr(Fi, np.linalg.inv(A)) < 1e-7


@pytest.mark.parametrize("symm_", ["h", "p"])
def test_complex_hermitian_build_is_warning_free(circle, dist, symm_):
    n = 256
    x = circle(n)
    phase = np.exp(1j * np.arctan2(x[:, 1], x[:, 0]))
    A = 2.0 * np.eye(n) + phase[:, None] * (np.exp(-dist(x, x)) / n) * phase.conj()[None, :]
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        F = rskelf(A, x, 16, 1e-10, symm=symm_)
    assert _relerr(_dense(F), A) < 1e-8


@pytest.mark.parametrize("x", [np.zeros(0), np.zeros((0, 2))])
def test_empty_point_set_is_rejected(x):
    with pytest.raises(InvalidConfigurationError):
        rskelf(np.zeros((0, 0)), x, 4, 1e-6)


def test_sparse_proxy_filters_neighbors_by_structure():
    n = 24
    A = poisson((n, n), format="csr")
    Acsc = A.tocsc()
    g = np.arange(n, dtype=float)
    X, Y = np.meshgrid(g, g, indexing="ij")
    pts = np.column_stack([X.ravel(), Y.ravel()])
    calls = []

    def pxyfun(x_, slf, nbr, l, ctr):
        calls.append(slf.size)
        rows = np.unique(Acsc[:, slf].nonzero()[0])
        return np.zeros((0, slf.size)), nbr[np.isin(nbr, rows)]

    F = rskelf(A, pts, 16, 1e-10, pxyfun, symm="p")
    assert calls
    assert _relerr(_dense(F), A.toarray()) < 1e-8
    b = _rhs(F.N, 1, seed=7)[:, 0]
    assert _relerr(A @ rskelf_sv(F, b), b) < 1e-6
