"""Matrix-entry sources and the sparse Schur-complement workspace.

Matrix sources
--------------
The builders only ever ask for dense blocks A[I, J]. `as_entries` turns any of
  - a callable ``entries(I, J) -> (len(I), len(J)) array``,
  - a dense ndarray,
  - a SciPy sparse array/matrix,
into such a callable.

Schur workspace
---------------
Eliminating a box modifies the interactions among its skeletons. These updates
are accumulated in a global sparse matrix M (same shape as A) so that later
levels read A[I, J] + M[I, J]. Updates produced on one level are buffered as
triplets and merged into M only after the whole level has been processed,
which keeps the boxes of a level independent of each other.
"""

from __future__ import annotations

import numpy as np
from scipy.sparse import coo_array, csr_array, issparse

from .types import EntriesFn, IndexArray


def as_entries(A) -> EntriesFn:
    """Return a callable producing dense blocks A[I, J].

    Parameters
    ----------
    A
        Callable, dense array_like or SciPy sparse array/matrix.

    Returns
    -------
    entries
        Function of two index arrays returning a dense 2D ndarray.
    """
    if callable(A) and not issparse(A):
        return lambda I, J: np.asarray(A(I, J)).reshape(len(I), len(J))
    if issparse(A):
        S = csr_array(A)
        return lambda I, J: spget(S, I, J)
    D = np.asarray(A)
    return lambda I, J: D[np.ix_(I, J)]


def spget(M, I: IndexArray, J: IndexArray) -> np.ndarray:
    """Extract the dense block M[I, J] of a CSR sparse array."""
    if len(I) == 0 or len(J) == 0:
        return np.zeros((len(I), len(J)), dtype=M.dtype)
    return M[np.asarray(I), :][:, np.asarray(J)].toarray()


class SchurWorkspace:
    """Sparse accumulator for Schur-complement updates.

    Attributes
    ----------
    M
        CSR array of merged updates.
    """

    def __init__(self, n_rows: int, n_cols: int, dtype) -> None:
        self.shape = (n_rows, n_cols)
        self.M = csr_array(self.shape, dtype=dtype)
        self._I: list[np.ndarray] = []
        self._J: list[np.ndarray] = []
        self._S: list[np.ndarray] = []

    def get(self, I: IndexArray, J: IndexArray) -> np.ndarray:
        """Dense block M[I, J] of the merged updates."""
        return spget(self.M, I, J)

    def coupled(self, I: IndexArray) -> IndexArray:
        """Indices that have a merged update coupling them to any index in I."""
        if len(I) == 0 or self.M.nnz == 0:
            return np.zeros(0, dtype=np.intp)
        rows = self.M[np.asarray(I), :]
        return np.unique(rows.indices).astype(np.intp)

    def add(self, I: IndexArray, J: IndexArray, X: np.ndarray) -> None:
        """Buffer the dense update X at positions (I x J)."""
        if X.size == 0:
            return
        II, JJ = np.meshgrid(I, J, indexing="ij")
        self._I.append(II.ravel())
        self._J.append(JJ.ravel())
        self._S.append(np.asarray(X).ravel())

    def flush(self) -> None:
        """Merge all buffered updates into M."""
        if not self._S:
            return
        S = np.concatenate(self._S)
        dtype = np.result_type(self.M.dtype, S.dtype)
        upd = coo_array(
            (S.astype(dtype, copy=False), (np.concatenate(self._I), np.concatenate(self._J))),
            shape=self.shape,
        ).tocsr()
        self.M = (self.M.astype(dtype) + upd).tocsr()
        self.M.sort_indices()
        self._I, self._J, self._S = [], [], []
