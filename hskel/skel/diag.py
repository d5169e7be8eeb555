"""Selected diagonal extraction by unfolding the factorization.

This is a variant of the selected inversion algorithm for sparse multifrontal
factorizations (Lin, Lu, Ying, Car, E, Commun. Math. Sci. 7 (3), 2009),
generalized to account for the ID-based sparsification operators. Only a sparse
subset of matrix entries has to be reconstructed from the top-level skeletons
in order to obtain the diagonal of F or of F^{-1}.

Phase 1: requirement propagation (`_rskelf_keep_patterns`)
    keep[0] is the diagonal. Going up, keep[l+1] is made of the entries of
    keep[l] whose row and column both survive level l, plus the full sk x sk
    block of every box eliminated on level l. For symmetric modes only the
    lower triangle (row >= column) is tracked.

Phase 2: unfolding (`_rskelf_unfold`)
    Starting from an empty matrix above the root, each level is undone from
    the top down. For every box, the local (rd, sk) block is reconstructed from
    the current sk x sk entries and the stored local operators; the result is
    accumulated and then masked with keep[l], which bounds memory.

Every entry of keep[l] lies inside a single box of level l, so entries that
couple two different boxes of a level are never needed. The keep patterns are
plain values returned by phase 1 and consumed by phase 2.
"""

from __future__ import annotations

import time

import numpy as np
from scipy.linalg import solve_triangular
from scipy.sparse import coo_array, csr_array

from .local_ops import spget
from .types import Factor, FactorNode


class _GrowableTriplets:
    """Sparse triplet workspace whose capacity grows by doubling."""

    def __init__(self, capacity: int, *, with_values: bool = False, dtype=float) -> None:
        capacity = max(int(capacity), 1)
        self.I = np.zeros(capacity, dtype=np.intp)
        self.J = np.zeros(capacity, dtype=np.intp)
        self.S = np.zeros(capacity, dtype=dtype) if with_values else None
        self.nz = 0

    @property
    def capacity(self) -> int:
        """Current number of allocated slots."""
        return self.I.size

    def reset(self) -> None:
        """Discard contents, keep the allocation."""
        self.nz = 0

    def _reserve(self, m: int) -> None:
        need = self.nz + m
        cap = self.capacity
        if need <= cap:
            return
        while cap < need:
            cap *= 2
        self.I = np.concatenate([self.I, np.zeros(cap - self.I.size, dtype=np.intp)])
        self.J = np.concatenate([self.J, np.zeros(cap - self.J.size, dtype=np.intp)])
        if self.S is not None:
            self.S = np.concatenate([self.S, np.zeros(cap - self.S.size, dtype=self.S.dtype)])

    def extend(self, I: np.ndarray, J: np.ndarray, S: np.ndarray | None = None) -> None:
        """Append triplets (values are upcast if needed)."""
        m = len(I)
        if m == 0:
            return
        self._reserve(m)
        self.I[self.nz : self.nz + m] = I
        self.J[self.nz : self.nz + m] = J
        if self.S is not None:
            S = np.asarray(S)
            if np.result_type(self.S.dtype, S.dtype) != self.S.dtype:
                self.S = self.S.astype(np.result_type(self.S.dtype, S.dtype))
            self.S[self.nz : self.nz + m] = S
        self.nz += m

    def block(self, idx: np.ndarray, X: np.ndarray | None = None) -> None:
        """Append the full idx x idx block (row-major), with values X if given."""
        II, JJ = np.meshgrid(idx, idx, indexing="ij")
        self.extend(II.ravel(), JJ.ravel(), None if X is None else np.asarray(X).ravel())

    def tocsr(self, shape: tuple[int, int], *, lower: bool = False) -> csr_array:
        """Assemble the stored triplets (duplicates summed) into CSR."""
        I = self.I[: self.nz]
        J = self.J[: self.nz]
        S = self.S[: self.nz] if self.S is not None else np.ones(self.nz, dtype=bool)
        if lower:
            sel = I >= J
            I, J, S = I[sel], J[sel], S[sel]
        A = coo_array((S, (I, J)), shape=shape).tocsr()
        A.sum_duplicates()
        return A


def _rskelf_keep_patterns(F: Factor) -> tuple[list[csr_array], int]:
    """Compute the entries required after unfolding each level.

    Returns
    -------
    keep
        List of nlvl boolean CSR arrays; keep[l] is the sparsity pattern that
        must be known after unfolding level l.
    capacity
        Final capacity of the index workspace (passed on to phase 2).
    """
    N = F.N
    lower = F.symm != "n"
    rem = np.ones(N, dtype=bool)
    work = _GrowableTriplets(N)

    diag = np.arange(N, dtype=np.intp)
    keep = [coo_array((np.ones(N, dtype=bool), (diag, diag)), shape=(N, N)).tocsr()]
    for lvl in range(F.nlvl - 1):
        work.reset()
        nodes = F.level(lvl)
        for f in nodes:
            rem[f.rd] = False

        # entries needed directly by the level below
        I, J = keep[lvl].nonzero()
        sel = rem[I] & rem[J]
        work.extend(I[sel], J[sel])

        # skeleton blocks are needed to unfold this level
        for f in nodes:
            work.block(f.sk)

        keep.append(work.tocsr((N, N), lower=lower))
    return keep, work.capacity


def _symmetrize(Xsk: np.ndarray, symm: str) -> np.ndarray:
    """Fill in the triangle that is not stored for symmetric modes."""
    d = np.diag(np.diag(Xsk))
    off = Xsk - d
    if symm == "s":
        return d + off + off.T
    return d + off + off.conj().T


def _lo_rsolve(f: FactorNode, Y: np.ndarray) -> np.ndarray:
    """Return Y (P^T L)^{-1} = (Y L^{-1}) P."""
    Z = solve_triangular(f.L, Y.T, lower=True, trans="T", check_finite=False).T
    if f.p is None:
        return Z
    out = np.empty_like(Z)
    out[:, f.p] = Z
    return out


def _lo_lmul(f: FactorNode, Y: np.ndarray) -> np.ndarray:
    """Return (P^T L) Y."""
    Z = f.L @ Y
    if f.p is None:
        return Z
    out = np.empty_like(Z)
    out[f.p] = Z
    return out


def _uo_rmul(f: FactorNode, Y: np.ndarray, symm: str) -> np.ndarray:
    """Return Y Uf, with Uf = U ('n', 's') or (P^T L)^H ('h', 'p')."""
    if symm in ("n", "s"):
        return Y @ f.U
    Z = Y @ f.L.conj().T
    if f.p is None:
        return Z
    out = np.empty_like(Z)
    out[:, f.p] = Z
    return out


def _uo_lsolve(f: FactorNode, Y: np.ndarray, symm: str) -> np.ndarray:
    """Return Uf^{-1} Y."""
    if symm in ("n", "s"):
        return solve_triangular(f.U, Y, lower=False, check_finite=False)
    Z = solve_triangular(f.L, Y, lower=True, trans="C", check_finite=False)
    if f.p is None:
        return Z
    out = np.empty_like(Z)
    out[f.p] = Z
    return out


def _rskelf_unfold_node(f: FactorNode, Xsk: np.ndarray, symm: str, dinv: bool) -> np.ndarray:
    """Reconstruct the local (rd, sk) block of F (or F^{-1}) for one box.

    The returned block has Xsk already subtracted on its sk x sk part, so that
    it can be added to the existing entries as an update.
    """
    nrd = f.rd.size
    nsk = f.sk.size
    ird = slice(0, nrd)
    isk = slice(nrd, nrd + nsk)
    dtype = np.result_type(Xsk.dtype, f.E.dtype, f.T.dtype, f.L.dtype)
    left = f.T.T if symm == "s" else f.T.conj().T
    Gu = f.G if symm in ("n", "s") else f.E.conj().T

    X = np.zeros((nrd + nsk, nrd + nsk), dtype=dtype)
    if symm == "h":
        X[ird, ird] = np.linalg.inv(f.D) if dinv else f.D
    else:
        X[ird, ird] = np.eye(nrd)
    if nsk and symm != "n":
        Xsk = _symmetrize(Xsk, symm)
    X[isk, isk] = Xsk

    if dinv:
        # V Uf^{-1} X Lf^{-1} W
        X[:, ird] = _lo_rsolve(f, X[:, ird] - X[:, isk] @ f.E)
        X[:, isk] -= X[:, ird] @ left
        X[ird, :] = _uo_lsolve(f, X[ird, :] - Gu @ X[isk, :], symm)
        X[isk, :] -= f.T @ X[ird, :]
    else:
        # W^{-1} Lf X Uf V^{-1}
        X[:, isk] += X[:, ird] @ Gu
        X[:, ird] = _uo_rmul(f, X[:, ird], symm)
        X[:, ird] += X[:, isk] @ f.T
        X[isk, :] += f.E @ X[ird, :]
        X[ird, :] = _lo_lmul(f, X[ird, :])
        X[ird, :] += left @ X[isk, :]

    X[isk, isk] -= Xsk
    return X


def _rskelf_unfold(F: Factor, keep: list[csr_array], capacity: int, dinv: bool, stats_cb=None) -> csr_array:
    """Unfold the factorization top-down, keeping only the entries in `keep`."""
    N = F.N
    M = csr_array((N, N), dtype=F.dtype)
    work = _GrowableTriplets(capacity, with_values=True, dtype=F.dtype)
    for lvl in range(F.nlvl - 1, -1, -1):
        t0 = time.perf_counter()
        work.reset()
        C = M.tocoo()
        work.extend(C.row, C.col, C.data)

        for f in F.level(lvl):
            Xsk = spget(M, f.sk, f.sk)
            X = _rskelf_unfold_node(f, Xsk, F.symm, dinv)
            work.block(np.concatenate([f.rd, f.sk]), X)

        M = csr_array(work.tocsr((N, N)).multiply(keep[lvl]))
        if stats_cb is not None:
            stats_cb(lvl, keep[lvl].nnz, time.perf_counter() - t0)
    return M
