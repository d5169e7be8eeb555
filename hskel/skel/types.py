"""Typed containers used throughout the skeletonization factorizations.

This module defines small dataclasses that group tree, factor and option state
into coherent parcels, in place of many parallel arrays.

Containers
----------
RskelfOptions, RskelOptions, MfOptions
    Validated, immutable option records for the three builders.

TreeNode, Tree
    Hyperoctree arena. Nodes are stored in level order in one flat list; the
    `parent`, `children` and `nbor` fields are integer positions into that list.
      - xi      : point indices currently owned by the box (global indices)
      - ctr     : box center, shape (d,)
      - nbor    : adjacent boxes on the same level and adjacent coarser leaves

FactorNode, Factor
    Local operators produced by eliminating one box, and the immutable
    multilevel factorization built from them:
      - nodes[lvp[l] : lvp[l+1]] were eliminated on level l (leaves first)

SkelInterp, SkelBlock, Skeletonization
    Row/column interpolation records and near-field blocks of the
    skeletonization-only variant.

Invariants
----------
- All index arrays are stored as intp numpy arrays of global indices.
- Across all nodes of a Factor, the `rd` arrays partition range(N) exactly once.
- `T` has shape (len(sk), len(rd)) and satisfies K[:, rd] ~= K[:, sk] @ T for
  the compressed coupling block K.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from numbers import Integral, Real
from typing import Any, Callable, Optional

import numpy as np
from numpy.typing import NDArray

from .errors import InvalidConfigurationError

IndexArray = NDArray[np.intp]
EntriesFn = Callable[[IndexArray, IndexArray], np.ndarray]
ProxyFn = Callable[..., tuple[np.ndarray, IndexArray]]
SplitFn = Callable[[np.ndarray], tuple[IndexArray, IndexArray, np.ndarray]]

SYMMETRY_MODES = ("n", "s", "h", "p")
TRANS_MODES = ("n", "t", "c")


def _check_rank_or_tol(rank_or_tol: Any) -> float | int:
    """Validate a rank (integer >= 1) or a relative tolerance in (0, 1)."""
    if isinstance(rank_or_tol, bool) or not isinstance(rank_or_tol, Real):
        raise InvalidConfigurationError(
            f"rank_or_tol must be a positive number, got {rank_or_tol!r}"
        )
    if not np.isfinite(rank_or_tol) or rank_or_tol <= 0:
        raise InvalidConfigurationError(
            f"rank_or_tol must be a positive number, got {rank_or_tol!r}"
        )
    if rank_or_tol >= 1:
        if isinstance(rank_or_tol, Integral) or float(rank_or_tol).is_integer():
            return int(rank_or_tol)
        raise InvalidConfigurationError(
            "rank_or_tol >= 1 is interpreted as a rank and must be an integer, "
            f"got {rank_or_tol!r}"
        )
    return float(rank_or_tol)


def _check_common(*, occ, lvlmax, Tmax, rrqr_iter) -> None:
    """Validate options shared by both builders."""
    if isinstance(occ, bool) or not isinstance(occ, Integral) or occ <= 0:
        raise InvalidConfigurationError(f"occ must be a positive integer, got {occ!r}")
    if not (lvlmax == float("inf") or (isinstance(lvlmax, Integral) and lvlmax >= 1)):
        raise InvalidConfigurationError(f"lvlmax must be a positive integer or inf, got {lvlmax!r}")
    if not isinstance(Tmax, Real) or not Tmax >= 1:
        raise InvalidConfigurationError(f"Tmax must be a number >= 1, got {Tmax!r}")
    if not (rrqr_iter == float("inf") or (isinstance(rrqr_iter, Integral) and rrqr_iter >= 0)):
        raise InvalidConfigurationError(
            f"rrqr_iter must be a nonnegative integer or inf, got {rrqr_iter!r}"
        )


def check_symm(symm: Any, allowed: tuple[str, ...] = SYMMETRY_MODES) -> str:
    """Normalize a symmetry tag to lower case and check it is supported."""
    if not isinstance(symm, str) or symm.lower() not in allowed:
        raise InvalidConfigurationError(
            f"symm must be one of {', '.join(repr(s) for s in allowed)}, got {symm!r}"
        )
    return symm.lower()


def check_trans(trans: Any) -> str:
    """Normalize a transpose flag ('n', 't' or 'c')."""
    if not isinstance(trans, str) or trans.lower() not in TRANS_MODES:
        raise InvalidConfigurationError(
            f"trans must be one of 'n', 't', 'c', got {trans!r}"
        )
    return trans.lower()


@dataclass(slots=True, frozen=True)
class RskelfOptions:
    """Configuration of the recursive skeletonization factorization.

    Attributes
    ----------
    occ : int
        Maximum number of points in a leaf box.
    rank_or_tol : int | float
        Fixed ID rank if an integer >= 1, otherwise relative ID tolerance.
    symm : str
        Symmetry tag: 'n' general, 's' symmetric, 'h' Hermitian,
        'p' Hermitian positive definite.
    skip : int
        Number of finest tree levels left uncompressed.
    verb : bool
        Print per-level statistics while building.
    lvlmax : int | float
        Maximum tree depth.
    ext : ndarray | None
        Optional (d, 2) array of bounding box extents for the root.
    Tmax : float
        Bound on interpolation entries enforced by strong RRQR swaps.
    rrqr_iter : int | float
        Maximum number of strong RRQR swaps per ID.
    """

    occ: int
    rank_or_tol: float | int
    symm: str = "n"
    skip: int = 0
    verb: bool = False
    lvlmax: float | int = float("inf")
    ext: Optional[np.ndarray] = None
    Tmax: float = 2.0
    rrqr_iter: float | int = float("inf")

    @classmethod
    def create(cls, occ, rank_or_tol, **kwargs) -> "RskelfOptions":
        """Validate raw keyword options and return an immutable record."""
        symm = check_symm(kwargs.pop("symm", "n"))
        skip = kwargs.pop("skip", 0)
        if isinstance(skip, bool) or not isinstance(skip, Integral) or skip < 0:
            raise InvalidConfigurationError(f"skip must be a nonnegative integer, got {skip!r}")
        opts = cls(
            occ=occ,
            rank_or_tol=_check_rank_or_tol(rank_or_tol),
            symm=symm,
            skip=int(skip),
            **kwargs,
        )
        _check_common(occ=opts.occ, lvlmax=opts.lvlmax, Tmax=opts.Tmax, rrqr_iter=opts.rrqr_iter)
        return opts


@dataclass(slots=True, frozen=True)
class RskelOptions:
    """Configuration of the (non-factored) recursive skeletonization.

    Same meaning as `RskelfOptions`; symmetric tags require a square matrix and
    'p' is treated as 'h'.
    """

    occ: int
    rank_or_tol: float | int
    symm: str = "n"
    verb: bool = False
    lvlmax: float | int = float("inf")
    ext: Optional[np.ndarray] = None
    Tmax: float = 2.0
    rrqr_iter: float | int = float("inf")

    @classmethod
    def create(cls, occ, rank_or_tol, **kwargs) -> "RskelOptions":
        """Validate raw keyword options and return an immutable record."""
        symm = check_symm(kwargs.pop("symm", "n"))
        if symm == "p":
            symm = "h"
        opts = cls(occ=occ, rank_or_tol=_check_rank_or_tol(rank_or_tol), symm=symm, **kwargs)
        _check_common(occ=opts.occ, lvlmax=opts.lvlmax, Tmax=opts.Tmax, rrqr_iter=opts.rrqr_iter)
        return opts


@dataclass(slots=True, frozen=True)
class MfOptions:
    """Configuration of the multifrontal factorization.

    No compression takes place, so only the tree and symmetry options of
    `RskelfOptions` apply.
    """

    occ: int
    symm: str = "n"
    verb: bool = False
    lvlmax: float | int = float("inf")
    ext: Optional[np.ndarray] = None

    @classmethod
    def create(cls, occ, **kwargs) -> "MfOptions":
        """Validate raw keyword options and return an immutable record."""
        symm = check_symm(kwargs.pop("symm", "n"))
        opts = cls(occ=occ, symm=symm, **kwargs)
        _check_common(occ=opts.occ, lvlmax=opts.lvlmax, Tmax=2.0, rrqr_iter=0)
        return opts


@dataclass(slots=True)
class TreeNode:
    """One box of the hyperoctree."""

    ctr: np.ndarray
    xi: IndexArray
    parent: int = -1
    children: list[int] = field(default_factory=list)
    nbor: list[int] = field(default_factory=list)


@dataclass(slots=True)
class Tree:
    """Hyperoctree arena.

    Attributes
    ----------
    nlvl
        Number of levels (level 0 is the root).
    lvp
        Level pointers: nodes[lvp[l]:lvp[l+1]] are the boxes on level l.
    lrt
        Side length of the root box.
    nodes
        All boxes, in level order.
    """

    nlvl: int
    lvp: list[int]
    lrt: float
    nodes: list[TreeNode]

    def is_leaf(self, i: int) -> bool:
        """Return True if box i has no children."""
        return not self.nodes[i].children


@dataclass(slots=True)
class FactorNode:
    """Local operators of one eliminated box.

    The box's indices are split into skeletons `sk` (passed to the parent) and
    redundants `rd` (eliminated here). With the sparsified local block
    partitioned as [[A_rr, A_rs], [A_sr, A_ss]]:

      - 'n', 's' : A_rr[p] = L @ U,     E = A_sr U^{-1},  G = L^{-1} A_rs[p]
      - 'h'      : A_rr[p][:, p] = L @ D @ L^H,  E = A_sr[:, p] L^{-H} D^{-1}
      - 'p'      : A_rr = L @ L^H,      E = A_sr L^{-H}

    `p` is None when no row permutation was applied.
    """

    sk: IndexArray
    rd: IndexArray
    T: np.ndarray
    L: np.ndarray
    E: np.ndarray
    U: Optional[np.ndarray] = None
    G: Optional[np.ndarray] = None
    D: Optional[np.ndarray] = None
    p: Optional[IndexArray] = None

    def nbytes(self) -> int:
        """Storage held by the local operators, in bytes."""
        arrs = (self.sk, self.rd, self.T, self.L, self.E, self.U, self.G, self.D, self.p)
        return int(sum(a.nbytes for a in arrs if a is not None))


@dataclass(slots=True, frozen=True)
class Factor:
    """Immutable recursive skeletonization factorization.

    Attributes
    ----------
    N
        Matrix dimension.
    nlvl
        Number of elimination levels.
    lvp
        Level pointers into `nodes` (length nlvl + 1).
    nodes
        Eliminated boxes, leaves first.
    symm
        Symmetry tag ('n', 's', 'h' or 'p').
    sweeps
        Sweep strategy for `symm`, selected when the factor is built.
    """

    N: int
    nlvl: int
    lvp: IndexArray
    nodes: tuple[FactorNode, ...]
    symm: str
    sweeps: Any
    dtype: np.dtype = np.dtype(float)

    def nbytes(self) -> int:
        """Total storage of all local operators, in bytes."""
        return sum(node.nbytes() for node in self.nodes)

    def level(self, lvl: int) -> tuple[FactorNode, ...]:
        """Return the nodes eliminated on level `lvl`."""
        return self.nodes[self.lvp[lvl] : self.lvp[lvl + 1]]


@dataclass(slots=True)
class SkelInterp:
    """Row and column interpolation of one box in the skeletonization.

    A[rrd, :] ~= rT @ A[rsk, :] and A[:, crd] ~= A[:, csk] @ cT on the far field,
    so rT has shape (len(rrd), len(rsk)) and cT has shape (len(csk), len(crd)).
    """

    rsk: IndexArray
    rrd: IndexArray
    rT: np.ndarray
    csk: IndexArray
    crd: IndexArray
    cT: np.ndarray


@dataclass(slots=True)
class SkelBlock:
    """Near-field correction block: adds D @ x[j] to y[i] on its level."""

    i: IndexArray
    j: IndexArray
    D: np.ndarray


@dataclass(slots=True, frozen=True)
class Skeletonization:
    """Recursive skeletonization of an M x N matrix (no elimination).

    A ~= D_0 + U_0 (D_1 + U_1 (...) V_1) V_0, where level l has interpolation
    records interps[lvpu[l]:lvpu[l+1]] and near-field blocks
    blocks[lvpd[l]:lvpd[l+1]].
    """

    M: int
    N: int
    nlvl: int
    lvpu: IndexArray
    lvpd: IndexArray
    interps: tuple[SkelInterp, ...]
    blocks: tuple[SkelBlock, ...]
    symm: str
    dtype: np.dtype = np.dtype(float)

    def nbytes(self) -> int:
        """Total storage of interpolation and near-field blocks, in bytes."""
        total = 0
        for u in self.interps:
            total += u.rsk.nbytes + u.rrd.nbytes + u.rT.nbytes + u.csk.nbytes + u.crd.nbytes + u.cT.nbytes
        for b in self.blocks:
            total += b.i.nbytes + b.j.nbytes + b.D.nbytes
        return int(total)
