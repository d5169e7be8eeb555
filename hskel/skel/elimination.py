"""Per-box compression and elimination for the recursive skeletonization factorization.

Overview
--------
On every tree level, each box owns an index set `slf` (its own points on a
leaf, the surviving skeletons of its children otherwise). Processing one box:

  1. Collect the indices `nbr` the box interacts with (`_rskelf_neighbors`).
  2. Compress: an ID of the coupling block K(nbr, slf) (stacked with proxy rows
     and, for unsymmetric matrices, the transposed coupling) splits `slf` into
     skeletons `sk` and redundants `rd` with K[:, rd] ~= K[:, sk] @ T.
  3. Sparsify the local block A(slf, slf) + M(slf, slf) with T, so that the
     redundants decouple from the far field.
  4. Factor the redundant block and push the Schur-complement update onto the
     skeletons (`SchurWorkspace.add`, merged after the level).

Local factorizations by symmetry mode
-------------------------------------
  - 'n', 's' : partial-pivoted LU (scipy.linalg.lu)
  - 'h'      : Bunch-Kaufman LDL^H (scipy.linalg.ldl)
  - 'p'      : Cholesky (scipy.linalg.cholesky)

A redundant block is degenerate when a pivot vanishes or, away from the root,
when the smallest pivot of an LU or LDL^H factorization falls below
`_PIVOT_RTOL` times the block 1-norm. A degenerate non-root box is kept
uncompressed (all of its indices pass to the parent), while a singular root
block is regularized by a growing diagonal shift. Both cases emit a
`NumericalDegeneracyWarning`.
"""

from __future__ import annotations

from warnings import warn

import numpy as np
from scipy.linalg import LinAlgError, cholesky, ldl, lu, solve_triangular

from .errors import NumericalDegeneracyWarning
from .interp import interp_decomp
from .local_ops import SchurWorkspace
from .types import EntriesFn, FactorNode, IndexArray, MfOptions, ProxyFn, RskelfOptions, SplitFn, Tree

_ROOT_SHIFT = 1e-12
_ROOT_SHIFT_GROWTH = 100.0
_ROOT_SHIFT_TRIES = 5
# smallest pivot of a non-root redundant block, relative to its 1-norm
_PIVOT_RTOL = 1e-4


def _concat(parts: list[np.ndarray]) -> IndexArray:
    """Concatenate index arrays (an empty list gives an empty array)."""
    if not parts:
        return np.zeros(0, dtype=np.intp)
    return np.concatenate(parts).astype(np.intp, copy=False)


def _rskelf_neighbors(
    *,
    tree: Tree,
    i: int,
    lvl: int,
    slf: IndexArray,
    xi: list[IndexArray],
    rem: np.ndarray,
    x: np.ndarray,
    pxyfun: ProxyFn | None,
    schur: SchurWorkspace,
) -> tuple[IndexArray, np.ndarray | None]:
    """Return the neighbor indices of box i and the optional proxy rows.

    Parameters
    ----------
    tree
        Hyperoctree holding box geometry and neighbor lists.
    i, lvl
        Box position in the arena and its tree level.
    slf
        Indices owned by box i at the start of the level.
    xi
        Level-start index sets of all boxes.
    rem
        Level-start mask of indices not yet eliminated.
    x
        Point coordinates, shape (N, d).
    pxyfun
        Optional proxy function; used on levels >= 2 only.
    schur
        Accumulated Schur updates; indices coupled to `slf` are added.

    Returns
    -------
    nbr
        Sorted unique neighbor indices, disjoint from `slf`.
    Kpxy
        Proxy rows (columns indexed by `slf`), or None.
    """
    inslf = np.zeros(rem.size, dtype=bool)
    inslf[slf] = True

    Kpxy = None
    if pxyfun is None:
        nbr = np.flatnonzero(rem & ~inslf)
    else:
        nbr = _concat([xi[j] for j in tree.nodes[i].nbor])
        if lvl >= 2:
            l = tree.lrt / 2**lvl
            Kpxy, nbr = pxyfun(x, slf, nbr, l, tree.nodes[i].ctr)
            Kpxy = np.asarray(Kpxy)
            if Kpxy.ndim != 2 or Kpxy.shape[1] != slf.size:
                Kpxy = Kpxy.reshape(-1, slf.size)
            nbr = np.asarray(nbr, dtype=np.intp).reshape(-1)

    coupled = schur.coupled(slf)
    if coupled.size:
        nbr = np.concatenate([nbr, coupled])
    nbr = np.unique(nbr)
    return nbr[rem[nbr] & ~inslf[nbr]], Kpxy


def _compression_block(
    *,
    slf: IndexArray,
    nbr: IndexArray,
    Kpxy: np.ndarray | None,
    entries: EntriesFn,
    schur: SchurWorkspace,
    symm: str,
) -> np.ndarray:
    """Stack the coupling of `slf` to its neighbors (columns indexed by `slf`)."""
    blocks = []
    if nbr.size:
        blocks.append(entries(nbr, slf) + schur.get(nbr, slf))
        if symm == "n":
            blocks.append((entries(slf, nbr) + schur.get(slf, nbr)).conj().T)
    if Kpxy is not None and Kpxy.size:
        blocks.append(Kpxy)
    if not blocks:
        return np.zeros((0, slf.size))
    return np.vstack(blocks)


def _sparsify(K: np.ndarray, sk: IndexArray, rd: IndexArray, T: np.ndarray, symm: str) -> None:
    """Decouple the redundants of the local block K in place."""
    if sk.size == 0 or not T.any():
        return
    left = T.T if symm == "s" else T.conj().T
    K[rd, :] -= left @ K[sk, :]
    K[:, rd] -= K[:, sk] @ T


def _structural_split(K: np.ndarray) -> tuple[IndexArray, IndexArray, np.ndarray]:
    """Split columns of a coupling block into coupled (sk) and interior (rd) ones.

    The interior columns have no coupling at all, so the interpolation is zero
    and the elimination is exact.
    """
    coupled = np.any(K != 0, axis=0)
    sk = np.flatnonzero(coupled).astype(np.intp)
    rd = np.flatnonzero(~coupled).astype(np.intp)
    return sk, rd, np.zeros((sk.size, rd.size), dtype=K.dtype)


def _degenerate(pivots: np.ndarray, Arr: np.ndarray, rtol: float) -> bool:
    """True if a pivot is not finite or is tiny relative to the block norm."""
    a = np.abs(pivots)
    if a.size == 0:
        return False
    if not np.all(np.isfinite(a)):
        return True
    return bool(a.min() <= rtol * np.linalg.norm(Arr, 1))


def _factor_lu(Arr: np.ndarray, Ars: np.ndarray, Asr: np.ndarray, rtol: float) -> dict | None:
    """Pivoted LU of the redundant block; None if a pivot is degenerate."""
    P, L, U = lu(Arr, check_finite=False)
    if _degenerate(np.diag(U), Arr, rtol):
        return None
    p = P.argmax(axis=0).astype(np.intp)
    if Asr.size:
        E = solve_triangular(U, Asr.T, lower=False, trans="T", check_finite=False).T
        G = solve_triangular(L, Ars[p], lower=True, unit_diagonal=True, check_finite=False)
    else:
        E = np.zeros(Asr.shape, dtype=U.dtype)
        G = np.zeros(Ars.shape, dtype=U.dtype)
    return dict(L=L, U=U, p=p, E=E, G=G, S=E @ G)


def _hermitian_part(S: np.ndarray) -> np.ndarray:
    """Hermitian part (S + S^H) / 2."""
    return 0.5 * (S + S.conj().T)


def _factor_ldl(Arr: np.ndarray, Asr: np.ndarray, rtol: float) -> dict | None:
    """Bunch-Kaufman LDL^H of the redundant block; None if D is degenerate."""
    lu_, D, perm = ldl(Arr, lower=True, hermitian=True, check_finite=False)
    if not np.all(np.isfinite(D)) or _degenerate(np.linalg.eigvalsh(D), Arr, rtol):
        return None
    p = np.asarray(perm, dtype=np.intp)
    L = lu_[p]
    if Asr.size:
        W = solve_triangular(L, Asr[:, p].conj().T, lower=True, check_finite=False).conj().T
        E = np.linalg.solve(D, W.conj().T).conj().T
    else:
        E = np.zeros(Asr.shape, dtype=L.dtype)
    return dict(L=L, D=D, p=p, E=E, S=_hermitian_part(E @ D @ E.conj().T))


def _factor_chol(Arr: np.ndarray, Asr: np.ndarray) -> dict | None:
    """Cholesky factor of the redundant block; None if it is not positive definite."""
    try:
        L = cholesky(Arr, lower=True, check_finite=False)
    except LinAlgError:
        return None
    if not np.all(np.isfinite(np.diag(L))):
        return None
    if Asr.size:
        E = solve_triangular(L, Asr.conj().T, lower=True, check_finite=False).conj().T
    else:
        E = np.zeros(Asr.shape, dtype=L.dtype)
    return dict(L=L, E=E, S=_hermitian_part(E @ E.conj().T))


def _factor_redundant(
    K: np.ndarray, ird: IndexArray, isk: IndexArray, symm: str, rtol: float = 0.0
) -> dict | None:
    """Dispatch the local factorization of K[rd, rd] by symmetry mode.

    `rtol` is the relative pivot threshold of the indefinite factorizations;
    Cholesky only fails on a non-positive pivot.
    """
    Arr = K[np.ix_(ird, ird)]
    Asr = K[np.ix_(isk, ird)]
    if symm in ("n", "s"):
        return _factor_lu(Arr, K[np.ix_(ird, isk)], Asr, rtol)
    if symm == "h":
        return _factor_ldl(Arr, Asr, rtol)
    return _factor_chol(Arr, Asr)


def _rskelf_process_node(
    *,
    slf: IndexArray,
    nbr: IndexArray,
    Kpxy: np.ndarray | None,
    entries: EntriesFn,
    schur: SchurWorkspace,
    opts: RskelfOptions | MfOptions,
    is_root: bool,
    compress: bool,
    split: SplitFn | None = None,
) -> tuple[FactorNode | None, IndexArray]:
    """Compress and eliminate one box.

    Parameters
    ----------
    slf
        Indices owned by the box.
    nbr, Kpxy
        Neighbor indices and proxy rows from `_rskelf_neighbors`.
    entries
        Matrix entry function.
    schur
        Schur workspace; the update of this box is buffered into it.
    opts
        Validated builder options.
    is_root
        The root eliminates every index it owns.
    compress
        False on skipped levels (the box is passed up unchanged).
    split
        Replaces the ID: maps the coupling block to `(sk, rd, T)`.

    Returns
    -------
    node
        The eliminated box, or None if nothing was eliminated.
    keep
        Indices passed to the parent (the skeletons).
    """
    n = slf.size
    if n == 0 or not (compress or is_root):
        return None, slf

    if is_root:
        sk = np.zeros(0, dtype=np.intp)
        rd = np.arange(n, dtype=np.intp)
        T = np.zeros((0, n))
    else:
        K = _compression_block(slf=slf, nbr=nbr, Kpxy=Kpxy, entries=entries, schur=schur, symm=opts.symm)
        if split is None:
            sk, rd, T = interp_decomp(K, opts.rank_or_tol, Tmax=opts.Tmax, rrqr_iter=opts.rrqr_iter)
        else:
            sk, rd, T = split(K)
    if rd.size == 0:
        return None, slf

    K = entries(slf, slf) + schur.get(slf, slf)
    K = np.array(K, dtype=np.result_type(K.dtype, T.dtype, float))
    _sparsify(K, sk, rd, T, opts.symm)
    if opts.symm in ("h", "p"):
        K = _hermitian_part(K)

    fac = _factor_redundant(K, rd, sk, opts.symm, 0.0 if is_root else _PIVOT_RTOL)
    if fac is None and not is_root:
        warn(
            f"degenerate redundant block of size {rd.size}; box with {n} indices kept uncompressed",
            NumericalDegeneracyWarning,
            stacklevel=3,
        )
        return None, slf

    if fac is None:
        scale = float(np.linalg.norm(K, 1)) or 1.0
        shift = _ROOT_SHIFT * scale
        for _ in range(_ROOT_SHIFT_TRIES):
            Kreg = K.copy()
            Kreg[rd, rd] += shift
            fac = _factor_redundant(Kreg, rd, sk, opts.symm)
            if fac is not None:
                break
            shift *= _ROOT_SHIFT_GROWTH
        if fac is None:
            raise LinAlgError(f"root block of size {n} could not be factored after regularization")
        warn(
            f"singular root block of size {n} regularized with diagonal shift {shift:.2e}",
            NumericalDegeneracyWarning,
            stacklevel=3,
        )

    S = fac.pop("S")
    if sk.size:
        schur.add(slf[sk], slf[sk], -S)
    node = FactorNode(sk=slf[sk], rd=slf[rd], T=T, **fac)
    return node, slf[sk]
