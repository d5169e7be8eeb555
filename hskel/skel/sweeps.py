"""Tree sweeps that apply a factorization or its inverse.

Factorization form
------------------
Eliminating box i (skeletons sk, redundants rd) is the local identity

    W_i A V_i = [[L_i, 0], [E_i, I]] [[D_i, 0], [0, S_i]] [[U_i, G_i], [0, I]]

on the (rd, sk) block, where V_i^{-1} : x_sk += T x_rd and
W_i^{-1} : x_rd += T^* x_sk (T^* = T^H, or T^T in the complex symmetric mode).
Hence, with boxes numbered in elimination order 1..n,

    F = W_1^{-1} Lf_1 ... W_n^{-1} Lf_n  D  Uf_n V_n^{-1} ... Uf_1 V_1^{-1}.

A multiply is an upward sweep (1..n, the right factors) followed by a downward
sweep (n..1, the left factors); a solve is the mirror image. Each sweep touches
only x[sk] and x[rd] of one box at a time, so boxes of one level commute.

Strategies
----------
GeneralSweeps ('n')
    LU with partial pivoting: Lf = P^T L, Uf = U, G stored.
SymmetricSweeps ('s')
    As 'n', but the left interpolation uses T^T (no conjugation).
HermitianSweeps ('h')
    Bunch-Kaufman LDL^H: Lf = P^T L, D block diagonal, Uf = Lf^H, G = E^H.
PositiveDefiniteSweeps ('p')
    Cholesky: Lf = L, Uf = L^H, G = E^H. Also provides half-factor sweeps for
    F = C C^H with C = W_1^{-1} Lf_1 ... W_n^{-1} Lf_n.

All sweeps overwrite and return a 2D work array Y.
"""

from __future__ import annotations

import numpy as np
from scipy.linalg import solve_triangular

from .errors import FactorModeError
from .types import Factor, FactorNode


def _lapply(node: FactorNode, z: np.ndarray) -> np.ndarray:
    """Return P^T L z."""
    w = node.L @ z
    if node.p is None:
        return w
    out = np.empty_like(w)
    out[node.p] = w
    return out


def _lsolve(node: FactorNode, z: np.ndarray) -> np.ndarray:
    """Return (P^T L)^{-1} z = L^{-1} (P z)."""
    if node.p is not None:
        z = z[node.p]
    return solve_triangular(node.L, z, lower=True, check_finite=False)


def _lhapply(node: FactorNode, z: np.ndarray) -> np.ndarray:
    """Return (P^T L)^H z = L^H (P z)."""
    if node.p is not None:
        z = z[node.p]
    return node.L.conj().T @ z


def _lhsolve(node: FactorNode, z: np.ndarray) -> np.ndarray:
    """Return (L^H P)^{-1} z = P^T L^{-H} z."""
    w = solve_triangular(node.L, z, lower=True, trans="C", check_finite=False)
    if node.p is None:
        return w
    out = np.empty_like(w)
    out[node.p] = w
    return out


def _usolve(node: FactorNode, z: np.ndarray) -> np.ndarray:
    """Return U^{-1} z."""
    return solve_triangular(node.U, z, lower=False, check_finite=False)


def _uhsolve(node: FactorNode, z: np.ndarray) -> np.ndarray:
    """Return U^{-H} z."""
    return solve_triangular(node.U, z, lower=False, trans="C", check_finite=False)


class GeneralSweeps:
    """Sweeps for the general (unsymmetric) factorization."""

    symm = "n"

    def left(self, T: np.ndarray) -> np.ndarray:
        """Interpolation applied from the left: x_rd += left(T) x_sk."""
        return T.conj().T

    def mv(self, F: Factor, Y: np.ndarray, trans: str) -> np.ndarray:
        """Apply F ('n') or F^H ('c') to Y in place."""
        if trans == "n":
            return self._mv_n(F, Y)
        return self._mv_c(F, Y)

    def sv(self, F: Factor, Y: np.ndarray, trans: str) -> np.ndarray:
        """Apply F^{-1} ('n') or F^{-H} ('c') to Y in place."""
        if trans == "n":
            return self._sv_n(F, Y)
        return self._sv_c(F, Y)

    def _mv_n(self, F: Factor, Y: np.ndarray) -> np.ndarray:
        for f in F.nodes:
            sk, rd = f.sk, f.rd
            Y[sk] += f.T @ Y[rd]
            Y[rd] = f.U @ Y[rd] + f.G @ Y[sk]
        for f in reversed(F.nodes):
            sk, rd = f.sk, f.rd
            Y[sk] += f.E @ Y[rd]
            Y[rd] = _lapply(f, Y[rd])
            Y[rd] += self.left(f.T) @ Y[sk]
        return Y

    def _mv_c(self, F: Factor, Y: np.ndarray) -> np.ndarray:
        for f in F.nodes:
            sk, rd = f.sk, f.rd
            Y[sk] += self.left(f.T).conj().T @ Y[rd]
            Y[rd] = _lhapply(f, Y[rd]) + f.E.conj().T @ Y[sk]
        for f in reversed(F.nodes):
            sk, rd = f.sk, f.rd
            Y[sk] += f.G.conj().T @ Y[rd]
            Y[rd] = f.U.conj().T @ Y[rd]
            Y[rd] += f.T.conj().T @ Y[sk]
        return Y

    def _sv_n(self, F: Factor, Y: np.ndarray) -> np.ndarray:
        for f in F.nodes:
            sk, rd = f.sk, f.rd
            Y[rd] -= self.left(f.T) @ Y[sk]
            Y[rd] = _lsolve(f, Y[rd])
            Y[sk] -= f.E @ Y[rd]
        for f in reversed(F.nodes):
            sk, rd = f.sk, f.rd
            Y[rd] = _usolve(f, Y[rd] - f.G @ Y[sk])
            Y[sk] -= f.T @ Y[rd]
        return Y

    def _sv_c(self, F: Factor, Y: np.ndarray) -> np.ndarray:
        for f in F.nodes:
            sk, rd = f.sk, f.rd
            Y[rd] -= f.T.conj().T @ Y[sk]
            Y[rd] = _uhsolve(f, Y[rd])
            Y[sk] -= f.G.conj().T @ Y[rd]
        for f in reversed(F.nodes):
            sk, rd = f.sk, f.rd
            Y[rd] = _lhsolve(f, Y[rd] - f.E.conj().T @ Y[sk])
            Y[sk] -= self.left(f.T).conj().T @ Y[rd]
        return Y

    def cholmv(self, F: Factor, Y: np.ndarray, trans: str) -> np.ndarray:
        """Half-factor multiply; only defined for positive definite factors."""
        raise FactorModeError(f"Cholesky half-factor requires symm='p', got symm={F.symm!r}")

    def cholsv(self, F: Factor, Y: np.ndarray, trans: str) -> np.ndarray:
        """Half-factor solve; only defined for positive definite factors."""
        raise FactorModeError(f"Cholesky half-factor requires symm='p', got symm={F.symm!r}")


class SymmetricSweeps(GeneralSweeps):
    """Sweeps for complex symmetric (bilinear, unconjugated) factorizations."""

    symm = "s"

    def left(self, T: np.ndarray) -> np.ndarray:
        return T.T


class HermitianSweeps(GeneralSweeps):
    """Sweeps for Hermitian indefinite factorizations (F = F^H)."""

    symm = "h"

    def mv(self, F: Factor, Y: np.ndarray, trans: str) -> np.ndarray:
        for f in F.nodes:
            sk, rd = f.sk, f.rd
            Y[sk] += f.T @ Y[rd]
            Y[rd] = f.D @ (_lhapply(f, Y[rd]) + f.E.conj().T @ Y[sk])
        for f in reversed(F.nodes):
            sk, rd = f.sk, f.rd
            Y[sk] += f.E @ Y[rd]
            Y[rd] = _lapply(f, Y[rd])
            Y[rd] += f.T.conj().T @ Y[sk]
        return Y

    def sv(self, F: Factor, Y: np.ndarray, trans: str) -> np.ndarray:
        for f in F.nodes:
            sk, rd = f.sk, f.rd
            Y[rd] -= f.T.conj().T @ Y[sk]
            Y[rd] = _lsolve(f, Y[rd])
            Y[sk] -= f.E @ Y[rd]
        for f in reversed(F.nodes):
            sk, rd = f.sk, f.rd
            z = np.linalg.solve(f.D, Y[rd])
            Y[rd] = _lhsolve(f, z - f.E.conj().T @ Y[sk])
            Y[sk] -= f.T @ Y[rd]
        return Y


class PositiveDefiniteSweeps(GeneralSweeps):
    """Sweeps for Hermitian positive definite factorizations, F = C C^H."""

    symm = "p"

    def _up_mv(self, F: Factor, Y: np.ndarray) -> np.ndarray:
        """Y <- C^H Y."""
        for f in F.nodes:
            sk, rd = f.sk, f.rd
            Y[sk] += f.T @ Y[rd]
            Y[rd] = f.L.conj().T @ Y[rd] + f.E.conj().T @ Y[sk]
        return Y

    def _down_mv(self, F: Factor, Y: np.ndarray) -> np.ndarray:
        """Y <- C Y."""
        for f in reversed(F.nodes):
            sk, rd = f.sk, f.rd
            Y[sk] += f.E @ Y[rd]
            Y[rd] = f.L @ Y[rd]
            Y[rd] += f.T.conj().T @ Y[sk]
        return Y

    def _up_sv(self, F: Factor, Y: np.ndarray) -> np.ndarray:
        """Y <- C^{-1} Y."""
        for f in F.nodes:
            sk, rd = f.sk, f.rd
            Y[rd] -= f.T.conj().T @ Y[sk]
            Y[rd] = solve_triangular(f.L, Y[rd], lower=True, check_finite=False)
            Y[sk] -= f.E @ Y[rd]
        return Y

    def _down_sv(self, F: Factor, Y: np.ndarray) -> np.ndarray:
        """Y <- C^{-H} Y."""
        for f in reversed(F.nodes):
            sk, rd = f.sk, f.rd
            Y[rd] = solve_triangular(
                f.L, Y[rd] - f.E.conj().T @ Y[sk], lower=True, trans="C", check_finite=False
            )
            Y[sk] -= f.T @ Y[rd]
        return Y

    def mv(self, F: Factor, Y: np.ndarray, trans: str) -> np.ndarray:
        return self._down_mv(F, self._up_mv(F, Y))

    def sv(self, F: Factor, Y: np.ndarray, trans: str) -> np.ndarray:
        return self._down_sv(F, self._up_sv(F, Y))

    def cholmv(self, F: Factor, Y: np.ndarray, trans: str) -> np.ndarray:
        """Apply C ('n') or C^H ('c')."""
        if trans == "n":
            return self._down_mv(F, Y)
        return self._up_mv(F, Y)

    def cholsv(self, F: Factor, Y: np.ndarray, trans: str) -> np.ndarray:
        """Apply C^{-1} ('n') or C^{-H} ('c')."""
        if trans == "n":
            return self._up_sv(F, Y)
        return self._down_sv(F, Y)


_SWEEPS = {
    "n": GeneralSweeps,
    "s": SymmetricSweeps,
    "h": HermitianSweeps,
    "p": PositiveDefiniteSweeps,
}


def make_sweeps(symm: str) -> GeneralSweeps:
    """Return the sweep strategy for a symmetry tag."""
    return _SWEEPS[symm]()
