"""Recursive skeletonization factorization.

Builds a multilevel factorization F ~= A of a matrix whose rows and columns are
indexed by points in R^d, and provides the fast operators on it:

    F = rskelf(A, x, occ, rank_or_tol, pxyfun, symm=..., ...)
    y = rskelf_mv(F, x)          # F @ x
    z = rskelf_sv(F, y)          # F^{-1} @ y
    sign, ld = rskelf_slogdet(F)
    d = rskelf_diag(F, dinv=True)

Construction proceeds over a hyperoctree from the leaves to the root. On each
level every box is compressed by an interpolative decomposition of its coupling
to the rest of the matrix, its redundant indices are eliminated, and the
surviving skeletons are merged into the parent. Boxes of one level are
independent; their Schur-complement updates are merged after the level.

Example
-------
>>> import numpy as np
>>> from hskel import rskelf, rskelf_sv
>>> N = 127
>>> A = 2 * np.eye(N) - np.eye(N, k=1) - np.eye(N, k=-1)
>>> x = np.linspace(0, 1, N)
>>> F = rskelf(A, x, 8, 1e-10, symm="p")
>>> b = np.ones(N)
>>> bool(np.linalg.norm(A @ rskelf_sv(F, b) - b) < 1e-8)
True
"""

from __future__ import annotations

import time
from typing import Callable

import numpy as np
from scipy.sparse.linalg import LinearOperator

from .skel.diag import _rskelf_keep_patterns, _rskelf_unfold
from .skel.elimination import _concat, _rskelf_neighbors, _rskelf_process_node
from .skel.errors import AccuracyNotMetError, DimensionMismatchError, InvalidConfigurationError
from .skel.local_ops import SchurWorkspace, as_entries
from .skel.logdet import _rskelf_slogdet
from .skel.stats import (
    SkelLevelStats,
    _diag_print_keep_summary,
    _diag_print_level,
    _skel_finalize_level_stats,
    _skel_print_header,
    _skel_print_level_summary,
    _skel_print_setup_summary,
)
from .skel.sweeps import make_sweeps
from .skel.tree import hypoct
from .skel.types import Factor, FactorNode, ProxyFn, RskelfOptions, check_trans


def _as_points(x) -> np.ndarray:
    """Return the point array with shape (N, d)."""
    x = np.asarray(x, dtype=float)
    if x.ndim == 1:
        x = x.reshape(-1, 1)
    if x.ndim != 2:
        raise InvalidConfigurationError(f"points must have shape (N, d), got {x.shape}")
    if x.shape[0] == 0:
        raise InvalidConfigurationError("at least one point is required")
    return x


def _check_matrix_shape(A, M: int, N: int) -> None:
    """Raise if an array-like matrix does not have shape (M, N)."""
    if callable(A) and not hasattr(A, "shape"):
        return
    shape = getattr(A, "shape", None)
    if shape is None:
        shape = np.shape(A)
    if tuple(shape) != (M, N):
        raise InvalidConfigurationError(f"matrix has shape {tuple(shape)}, points imply ({M}, {N})")


def _make_factor(N: int, nlvl: int, lvp: list[int], nodes: list[FactorNode], symm: str) -> Factor:
    """Freeze the eliminated boxes into a Factor."""
    dtype = np.result_type(
        np.float64, *[a.dtype for f in nodes for a in (f.T, f.L, f.E, f.U, f.G, f.D) if a is not None]
    )
    return Factor(
        N=N,
        nlvl=nlvl,
        lvp=np.asarray(lvp, dtype=np.intp),
        nodes=tuple(nodes),
        symm=symm,
        sweeps=make_sweeps(symm),
        dtype=dtype,
    )


def rskelf(A, x, occ: int, rank_or_tol, pxyfun: ProxyFn | None = None, **kwargs) -> Factor:
    """Build a recursive skeletonization factorization of a square matrix.

    Parameters
    ----------
    A : callable, ndarray or sparse array
        Matrix source. A callable is invoked as ``A(I, J)`` with index arrays
        and must return the dense block A[I, J].
    x : (N, d) array_like
        Point associated with each row/column (a 1D array is read as d = 1).
    occ : int
        Maximum number of points per leaf box.
    rank_or_tol : int or float
        Fixed ID rank (integer >= 1) or relative ID tolerance in (0, 1).
    pxyfun : callable, optional
        Proxy function ``pxyfun(x, slf, nbr, l, ctr) -> (Kpxy, nbr)``
        returning proxy rows (columns indexed by `slf`) and the pruned near
        field of a box with side `l` and center `ctr`. Without it the full far
        field is compressed exactly.
    **kwargs
        symm : {'n', 's', 'h', 'p'}
            General, complex symmetric, Hermitian, or Hermitian positive
            definite. Default 'n'.
        skip : int
            Number of finest levels left uncompressed. Default 0.
        verb : bool
            Print per-level statistics. Default False.
        lvlmax, ext, Tmax, rrqr_iter
            Tree depth limit, root extent, and strong RRQR controls.

    Returns
    -------
    Factor
        Immutable factorization usable with the `rskelf_*` operators.

    Raises
    ------
    InvalidConfigurationError
        Invalid options, or a matrix whose shape does not match the points.

    Notes
    -----
    Singular local blocks do not abort construction; they are reported with a
    `NumericalDegeneracyWarning`.
    """
    opts = RskelfOptions.create(occ, rank_or_tol, **kwargs)
    x = _as_points(x)
    N = x.shape[0]
    _check_matrix_shape(A, N, N)
    entries = as_entries(A)

    t_start = time.perf_counter()
    tree = hypoct(x, opts.occ, lvlmax=opts.lvlmax, ext=opts.ext)
    schur = SchurWorkspace(N, N, dtype=float)
    xi = [node.xi for node in tree.nodes]
    rem = np.ones(N, dtype=bool)
    nodes: list[FactorNode] = []
    lvp = [0]

    _skel_print_header(verb=opts.verb, prefix="RSKELF")
    for lvl in range(tree.nlvl - 1, -1, -1):
        stats = SkelLevelStats(level=lvl, n_in=int(rem.sum()))
        level_boxes = range(tree.lvp[lvl], tree.lvp[lvl + 1])

        with stats.timeit("pull"):
            for i in level_boxes:
                children = tree.nodes[i].children
                if children:
                    xi[i] = _concat([xi[c] for c in children])
                    for c in children:
                        xi[c] = np.zeros(0, dtype=np.intp)

        compress = lvl < tree.nlvl - opts.skip
        is_root = lvl == 0
        xi_lvl = list(xi)
        rem_lvl = rem.copy()
        for i in level_boxes:
            slf = xi_lvl[i]
            if slf.size == 0:
                continue
            nbr, Kpxy = np.zeros(0, dtype=np.intp), None
            if compress and not is_root:
                with stats.timeit("neighbors"):
                    nbr, Kpxy = _rskelf_neighbors(
                        tree=tree, i=i, lvl=lvl, slf=slf, xi=xi_lvl, rem=rem_lvl,
                        x=x, pxyfun=pxyfun, schur=schur,
                    )
            with stats.timeit("eliminate"):
                node, xi[i] = _rskelf_process_node(
                    slf=slf, nbr=nbr, Kpxy=Kpxy, entries=entries, schur=schur,
                    opts=opts, is_root=is_root, compress=compress,
                )
            if node is not None:
                nodes.append(node)
                rem[node.rd] = False
                stats.record_box(node.sk.size, node.rd.size)

        with stats.timeit("merge"):
            schur.flush()
        lvp.append(len(nodes))
        _skel_finalize_level_stats(stats)
        _skel_print_level_summary(stats, verb=opts.verb, prefix="RSKELF")

    F = _make_factor(N, tree.nlvl, lvp, nodes, opts.symm)
    _skel_print_setup_summary(
        nbytes=F.nbytes(), elapsed=time.perf_counter() - t_start, verb=opts.verb, prefix="RSKELF"
    )
    return F


def _prepare_rhs(F: Factor, X) -> tuple[np.ndarray, bool]:
    """Return a 2D working copy of X and whether X was a vector."""
    X = np.asarray(X)
    if X.ndim not in (1, 2) or X.shape[0] != F.N:
        raise DimensionMismatchError(f"right-hand side has shape {X.shape}, factor has N={F.N}")
    vec = X.ndim == 1
    Y = np.array(X.reshape(F.N, -1), dtype=np.result_type(X.dtype, F.dtype))
    return Y, vec


def _apply(F: Factor, X, trans: str, op: Callable) -> np.ndarray:
    """Run a sweep operator, reducing 't' to 'c' by conjugation."""
    trans = check_trans(trans)
    Y, vec = _prepare_rhs(F, X)
    if trans == "t":
        Y = np.conj(op(F, np.conj(Y), "c"))
    else:
        Y = op(F, Y, trans)
    return Y[:, 0] if vec else Y


def rskelf_mv(F: Factor, X, trans: str = "n") -> np.ndarray:
    """Multiply by the factorization.

    Parameters
    ----------
    F : Factor
        Output of `rskelf`.
    X : (N,) or (N, k) array_like
        Vector(s) to multiply.
    trans : {'n', 't', 'c'}
        Apply F, F^T or F^H.

    Returns
    -------
    ndarray
        Result with the shape of X.
    """
    return _apply(F, X, trans, F.sweeps.mv)


def rskelf_sv(F: Factor, X, trans: str = "n") -> np.ndarray:
    """Solve with the factorization: apply F^{-1}, F^{-T} or F^{-H} to X."""
    return _apply(F, X, trans, F.sweeps.sv)


def rskelf_cholmv(F: Factor, X, trans: str = "n") -> np.ndarray:
    """Multiply by the Cholesky half-factor C of F = C C^H (symm='p' only).

    Raises
    ------
    FactorModeError
        If the factorization is not positive definite.
    """
    return _apply(F, X, trans, F.sweeps.cholmv)


def rskelf_cholsv(F: Factor, X, trans: str = "n") -> np.ndarray:
    """Solve with the Cholesky half-factor C of F = C C^H (symm='p' only)."""
    return _apply(F, X, trans, F.sweeps.cholsv)


def rskelf_slogdet(F: Factor) -> tuple[complex | float, float]:
    """Sign and natural log of the absolute value of det(F).

    Same convention as `numpy.linalg.slogdet`: det(F) = sign * exp(logabsdet),
    with sign in {-1, 0, +1} for real factors and of unit modulus for complex
    factors.
    """
    return _rskelf_slogdet(F)


def rskelf_logdet(F: Factor, real: bool = True):
    """Log-determinant of the factorization.

    Parameters
    ----------
    F : Factor
        Output of `rskelf`.
    real : bool
        If True, return log(det F) as a float and require det F > 0. If False,
        return the principal complex logarithm.

    Raises
    ------
    AccuracyNotMetError
        If `real` and the determinant is not positive real.
    """
    sign, logabs = _rskelf_slogdet(F)
    if not real:
        if sign == 0:
            return complex(-np.inf)
        return complex(logabs + 1j * np.angle(sign))
    if abs(sign - 1) > 1e-8:
        raise AccuracyNotMetError(
            f"determinant is not positive real (sign={sign}); use rskelf_slogdet or real=False"
        )
    return float(logabs)


def rskelf_diag(F: Factor, dinv: bool = False, *, verb: bool = False) -> np.ndarray:
    """Diagonal of F or of F^{-1} by selected unfolding of the factorization.

    Parameters
    ----------
    F : Factor
        Output of `rskelf`.
    dinv : bool
        If True, extract the diagonal of F^{-1}.
    verb : bool
        Print the size of the kept pattern and per-level timings.

    Returns
    -------
    (N,) ndarray
    """
    t0 = time.perf_counter()
    keep, capacity = _rskelf_keep_patterns(F)
    _diag_print_keep_summary(
        nnz_all=sum(k.nnz for k in keep), elapsed=time.perf_counter() - t0, verb=verb
    )

    def report(lvl, nnz, elapsed):
        _diag_print_level(level=lvl, nnz=nnz, elapsed=elapsed, verb=verb)

    M = _rskelf_unfold(F, keep, capacity, dinv, report)
    return M.diagonal()


def rskelf_aslinearoperator(F: Factor, inverse: bool = False) -> LinearOperator:
    """Wrap F (or F^{-1}) as a SciPy LinearOperator.

    The result can be passed as the operator or as the preconditioner `M` of
    Krylov solvers such as `pyamg.krylov.cg` or `scipy.sparse.linalg.gmres`.
    """
    apply = rskelf_sv if inverse else rskelf_mv
    return LinearOperator(
        shape=(F.N, F.N),
        matvec=lambda v: apply(F, v),
        rmatvec=lambda v: apply(F, v, "c"),
        matmat=lambda V: apply(F, V),
        dtype=F.dtype,
    )
