"""Multifrontal factorization of sparse matrices.

The exact counterpart of `rskelf` for sparse matrices: boxes of the same
hyperoctree are eliminated from the leaves to the root, but instead of
compressing a box its indices are split by structure alone. Indices coupled
to anything outside the box (through A or through earlier Schur updates) form
the separator and pass to the parent; the interior is eliminated exactly.
With a geometric tree this is nested dissection.

The result is an ordinary `Factor` with zero interpolation blocks, so it is
applied, solved, and queried with the same sweeps as `rskelf`:

    F = mf(A, x, occ, symm="p")
    y = mf_mv(F, x)
    z = mf_sv(F, y)
    ld = mf_logdet(F)
    d = mf_diag(F, dinv=True)
"""

from __future__ import annotations

import time

import numpy as np
from scipy.sparse import csr_array, issparse

from .rskelf import (
    _as_points,
    _check_matrix_shape,
    _make_factor,
    rskelf_cholmv,
    rskelf_cholsv,
    rskelf_diag,
    rskelf_logdet,
    rskelf_mv,
    rskelf_slogdet,
    rskelf_sv,
)
from .skel.elimination import _concat, _rskelf_process_node, _structural_split
from .skel.errors import InvalidConfigurationError
from .skel.local_ops import SchurWorkspace, as_entries
from .skel.stats import (
    SkelLevelStats,
    _skel_finalize_level_stats,
    _skel_print_header,
    _skel_print_level_summary,
    _skel_print_setup_summary,
)
from .skel.tree import hypoct
from .skel.types import Factor, FactorNode, IndexArray, MfOptions


def _mf_neighbors(
    slf: IndexArray,
    S: csr_array,
    St: csr_array | None,
    rem: np.ndarray,
    schur: SchurWorkspace,
) -> IndexArray:
    """Remaining indices outside `slf` structurally coupled to it."""
    parts = [S[slf, :].indices, schur.coupled(slf)]
    if St is not None:
        parts.append(St[slf, :].indices)
    nbr = np.unique(_concat(parts))
    inslf = np.zeros(rem.size, dtype=bool)
    inslf[slf] = True
    return nbr[rem[nbr] & ~inslf[nbr]]


def mf(A, x, occ: int, **kwargs) -> Factor:
    """Exact multifrontal factorization of a sparse matrix.

    Parameters
    ----------
    A : sparse array or ndarray
        Square matrix; its nonzero pattern defines the coupling between
        indices. Callables are not accepted since the pattern is required.
    x : (N, d) array_like
        Point associated with each row/column, used for the dissection.
    occ : int
        Maximum number of points per leaf box.
    **kwargs
        symm ('n', 's', 'h' or 'p'), verb, lvlmax, ext.

    Returns
    -------
    Factor
        Usable with the `mf_*` (or `rskelf_*`) operators.
    """
    opts = MfOptions.create(occ, **kwargs)
    if callable(A) and not issparse(A):
        raise InvalidConfigurationError("mf requires an explicit sparse or dense matrix")
    x = _as_points(x)
    N = x.shape[0]
    _check_matrix_shape(A, N, N)
    entries = as_entries(A)
    S = csr_array(A)
    S.eliminate_zeros()
    St = csr_array(S.T) if opts.symm == "n" else None

    t_start = time.perf_counter()
    tree = hypoct(x, opts.occ, lvlmax=opts.lvlmax, ext=opts.ext)
    schur = SchurWorkspace(N, N, dtype=float)
    xi = [node.xi for node in tree.nodes]
    rem = np.ones(N, dtype=bool)
    nodes: list[FactorNode] = []
    lvp = [0]

    _skel_print_header(verb=opts.verb, prefix="MF")
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

        rem_lvl = rem.copy()
        for i in level_boxes:
            slf = xi[i]
            if slf.size == 0:
                continue
            with stats.timeit("neighbors"):
                nbr = _mf_neighbors(slf, S, St, rem_lvl, schur)
            with stats.timeit("eliminate"):
                node, xi[i] = _rskelf_process_node(
                    slf=slf, nbr=nbr, Kpxy=None, entries=entries, schur=schur,
                    opts=opts, is_root=lvl == 0, compress=True, split=_structural_split,
                )
            if node is not None:
                nodes.append(node)
                rem[node.rd] = False
                stats.record_box(node.sk.size, node.rd.size)

        with stats.timeit("merge"):
            schur.flush()
        lvp.append(len(nodes))
        _skel_finalize_level_stats(stats)
        _skel_print_level_summary(stats, verb=opts.verb, prefix="MF")

    F = _make_factor(N, tree.nlvl, lvp, nodes, opts.symm)
    _skel_print_setup_summary(
        nbytes=F.nbytes(), elapsed=time.perf_counter() - t_start, verb=opts.verb, prefix="MF"
    )
    return F


def mf_mv(F: Factor, X, trans: str = "n") -> np.ndarray:
    """Multiply by a multifrontal factorization (F, F^T or F^H)."""
    return rskelf_mv(F, X, trans)


def mf_sv(F: Factor, X, trans: str = "n") -> np.ndarray:
    """Solve with a multifrontal factorization (F, F^T or F^H)."""
    return rskelf_sv(F, X, trans)


def mf_cholmv(F: Factor, X, trans: str = "n") -> np.ndarray:
    """Multiply by the Cholesky half-factor (symm='p' only)."""
    return rskelf_cholmv(F, X, trans)


def mf_cholsv(F: Factor, X, trans: str = "n") -> np.ndarray:
    """Solve with the Cholesky half-factor (symm='p' only)."""
    return rskelf_cholsv(F, X, trans)


def mf_slogdet(F: Factor):
    """Sign and log-modulus of det(F), as `numpy.linalg.slogdet`."""
    return rskelf_slogdet(F)


def mf_logdet(F: Factor, real: bool = True):
    """Log-determinant of a multifrontal factorization; see `rskelf_logdet`."""
    return rskelf_logdet(F, real)


def mf_diag(F: Factor, dinv: bool = False, *, verb: bool = False) -> np.ndarray:
    """Diagonal of F or F^{-1}; see `rskelf_diag`."""
    return rskelf_diag(F, dinv, verb=verb)
