"""Randomized power-method estimate of an operator 2-norm."""

from __future__ import annotations

from typing import Callable, Optional

import numpy as np


def snorm(
    n: int,
    mv: Callable[[np.ndarray], np.ndarray],
    mva: Optional[Callable[[np.ndarray], np.ndarray]] = None,
    *,
    tol: float = 1e-2,
    niter_max: int = 32,
    ishermitian: bool = False,
    rng=None,
) -> float:
    """Estimate the spectral norm of a linear operator by power iteration.

    Parameters
    ----------
    n : int
        Number of columns of the operator.
    mv : callable
        Function x -> A @ x for a vector of length n.
    mva : callable, optional
        Function x -> A^H @ x. Required unless `ishermitian`.
    tol : float
        Relative change in the estimate at which iteration stops.
    niter_max : int
        Maximum number of iterations.
    ishermitian : bool
        If True, iterate with A directly instead of A^H A.
    rng : numpy.random.Generator or int, optional
        Source of the random starting vector.

    Returns
    -------
    float
        Estimate of ||A||_2 (a lower bound that converges from below).
    """
    if n == 0:
        return 0.0
    if mva is None and not ishermitian:
        raise ValueError("mva is required for non-Hermitian operators")
    rng = np.random.default_rng(rng)
    x = rng.standard_normal(n)
    x /= np.linalg.norm(x)

    est = 0.0
    for _ in range(niter_max):
        if ishermitian:
            y = np.asarray(mv(x)).reshape(-1)
            new = float(np.linalg.norm(y))
        else:
            y = np.asarray(mva(np.asarray(mv(x)).reshape(-1))).reshape(-1)
            new = float(np.sqrt(np.linalg.norm(y)))
        if new == 0.0:
            return 0.0
        x = y / np.linalg.norm(y)
        if abs(new - est) <= tol * new:
            return new
        est = new
    return est
