"""Interpolative decomposition (ID) by column-pivoted QR.

Given a block K whose columns are candidate indices and whose rows sample the
coupling of those indices with everything else, the ID picks a skeleton subset
`sk` of the columns and an interpolation matrix T such that

    K[:, rd] ~= K[:, sk] @ T,

where `rd` are the remaining (redundant) columns. The accuracy is controlled by
either a fixed rank (integer >= 1) or a relative tolerance in (0, 1) measured
against the largest pivot of the QR factorization.

An optional strong rank-revealing pass swaps skeleton and redundant columns
while some |T_ij| exceeds `Tmax`, which keeps the interpolation well
conditioned. The routine never fails for accuracy reasons: if the block cannot
be compressed, every column becomes a skeleton.
"""

from __future__ import annotations

import numpy as np
from scipy.linalg import qr, solve_triangular

from .types import IndexArray


def _interp_matrix(R: np.ndarray, k: int) -> np.ndarray:
    """Return T = R[:k, :k]^{-1} R[:k, k:] for an upper-trapezoidal R."""
    n = R.shape[1]
    if k == 0 or k == n:
        return np.zeros((k, n - k), dtype=R.dtype)
    return solve_triangular(R[:k, :k], R[:k, k:], lower=False, check_finite=False)


def _numerical_rank(R: np.ndarray, rank_or_tol: float | int) -> int:
    """Number of pivots kept for a fixed rank or a relative tolerance."""
    n = R.shape[1]
    d = np.abs(np.diag(R))
    if d.size == 0:
        return 0
    if rank_or_tol >= 1:
        return int(min(rank_or_tol, d.size, n))
    if d[0] == 0:
        return 0
    return int(np.count_nonzero(d > d[0] * rank_or_tol))


def interp_decomp(
    K: np.ndarray,
    rank_or_tol: float | int,
    *,
    Tmax: float = 2.0,
    rrqr_iter: float | int = float("inf"),
) -> tuple[IndexArray, IndexArray, np.ndarray]:
    """Compute a column interpolative decomposition of K.

    Parameters
    ----------
    K : (m, n) ndarray
        Block to compress. `m` may be zero.
    rank_or_tol : int or float
        Fixed rank if >= 1, otherwise relative tolerance.
    Tmax : float
        Bound on |T| enforced by strong RRQR column swaps.
    rrqr_iter : int or inf
        Maximum number of swaps.

    Returns
    -------
    sk : ndarray of intp
        Skeleton column positions (local to K).
    rd : ndarray of intp
        Redundant column positions (local to K).
    T : (len(sk), len(rd)) ndarray
        Interpolation matrix with K[:, rd] ~= K[:, sk] @ T.
    """
    K = np.asarray(K)
    m, n = K.shape
    if m == 0 or n == 0 or not np.any(K):
        return (
            np.zeros(0, dtype=np.intp),
            np.arange(n, dtype=np.intp),
            np.zeros((0, n), dtype=K.dtype if K.size else float),
        )

    _, R, perm = qr(K, mode="economic", pivoting=True, check_finite=False)
    k = _numerical_rank(R, rank_or_tol)
    perm = perm.astype(np.intp)
    T = _interp_matrix(R, k)

    it = 0
    while 0 < k < n and it < rrqr_iter:
        absT = np.abs(T)
        i, j = np.unravel_index(np.argmax(absT), absT.shape)
        if absT[i, j] <= Tmax:
            break
        # swap skeleton i with redundant j and refactor the reordered block
        perm[i], perm[k + j] = perm[k + j], perm[i]
        _, R = qr(K[:, perm], mode="economic", check_finite=False)
        T = _interp_matrix(R, k)
        it += 1

    return perm[:k], perm[k:], T
