"""Log-determinant of a skeletonization factorization.

The interpolation operators V_i, W_i are unit triangular, so

    det(F) = prod_i det(Lf_i) det(D_i) det(Uf_i).

The magnitude is accumulated as a sum of logarithms; the phase is carried as a
separate running unit-modulus factor, following the (sign, logabsdet)
convention of `numpy.linalg.slogdet`:

  - 'n', 's' : det(P^T L U) = sign(P) * prod(diag U), L unit lower triangular
  - 'h'      : det(P^T L D L^H P) = det(D), taken with numpy.linalg.slogdet
  - 'p'      : det(L L^H) = prod(diag L)^2 > 0

For real factors the sign is exactly +1 or -1; for complex factors it is
exp(1j * theta). A singular pivot gives sign 0 and logabsdet -inf.
"""

from __future__ import annotations

import numpy as np

from .types import Factor, FactorNode, IndexArray


def _perm_sign(p: IndexArray | None) -> int:
    """Sign (+1 or -1) of a permutation given as an index array."""
    if p is None:
        return 1
    seen = np.zeros(p.size, dtype=bool)
    parity = 0
    for start in range(p.size):
        if seen[start]:
            continue
        length = 0
        j = start
        while not seen[j]:
            seen[j] = True
            j = p[j]
            length += 1
        parity += length - 1
    return -1 if parity % 2 else 1


def _node_slogdet(symm: str, f: FactorNode) -> tuple[complex | float, float]:
    """Sign and log-magnitude of the determinant of one node's pivot block."""
    if symm == "h":
        sign, logabs = np.linalg.slogdet(f.D)
        return sign, float(logabs)
    if symm == "p":
        d = np.real(np.diag(f.L))
        return 1.0, float(2.0 * np.sum(np.log(d)))
    d = np.diag(f.U)
    mag = np.abs(d)
    if np.any(mag == 0):
        return 0.0, -np.inf
    sign = _perm_sign(f.p) * np.prod(d / mag)
    return sign, float(np.sum(np.log(mag)))


def _rskelf_slogdet(F: Factor) -> tuple[complex | float, float]:
    """Return (sign, logabsdet) of the factorization F."""
    sign: complex | float = 1.0
    logabs = 0.0
    for f in F.nodes:
        s, la = _node_slogdet(F.symm, f)
        sign = sign * s
        logabs += la
        if sign == 0:
            return sign, -np.inf
    if np.iscomplexobj(sign) and not np.issubdtype(F.dtype, np.complexfloating):
        sign = float(np.real(sign))
    return sign, logabs
