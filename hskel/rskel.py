"""Recursive skeletonization of a (possibly rectangular) matrix.

Unlike `rskelf`, nothing is eliminated: the matrix is only compressed, giving
the telescoping representation

    A ~= D_0 + U_0 (D_1 + U_1 ( ... ) V_1) V_0,

where, on tree level l (leaves first), U_l and V_l are the row and column
interpolation operators of all boxes on that level and D_l collects the
near-field blocks between adjacent boxes. The apply cost is linear in the
matrix size for well-separated kernels, which makes this the fast
matrix-vector product counterpart of the factorization.

Rows and columns are associated with separate point sets (`rx`, `cx`) that
share a single hyperoctree. For square matrices with a symmetry tag
('s', 'h'; 'p' is read as 'h') the row and column partitions coincide and only
one interpolative decomposition per box is computed.

Proxy functions
---------------
``pxyfun(rc, rx, cx, slf, nbr, l, ctr) -> (Kpxy, nbr)`` where `rc` is 'r' for
row compression (Kpxy has shape (len(slf), npxy), like A[slf, :]) and 'c' for
column compression (Kpxy has shape (npxy, len(slf)), like A[:, slf]). The
returned `nbr` lists the explicit indices that are compressed together with
the proxy samples.
"""

from __future__ import annotations

import time

import numpy as np

from .rskelf import _as_points, _check_matrix_shape
from .skel.elimination import _concat
from .skel.errors import DimensionMismatchError, InvalidConfigurationError
from .skel.interp import interp_decomp
from .skel.local_ops import as_entries
from .skel.stats import (
    SkelLevelStats,
    _skel_finalize_level_stats,
    _skel_print_header,
    _skel_print_level_summary,
    _skel_print_setup_summary,
)
from .skel.tree import hypoct, node_level
from .skel.types import (
    EntriesFn,
    IndexArray,
    RskelOptions,
    SkelBlock,
    SkelInterp,
    Skeletonization,
    Tree,
    check_trans,
)


def _identity_interp(nr: int, nc: int) -> SkelInterp:
    """Local interpolation record of an uncompressed box."""
    empty = np.zeros(0, dtype=np.intp)
    return SkelInterp(
        rsk=np.arange(nr, dtype=np.intp), rrd=empty, rT=np.zeros((0, nr)),
        csk=np.arange(nc, dtype=np.intp), crd=empty, cT=np.zeros((nc, 0)),
    )


def _far_indices(rem: np.ndarray, near: IndexArray) -> IndexArray:
    """Remaining indices outside the near field."""
    mask = rem.copy()
    mask[near] = False
    return np.flatnonzero(mask)


def _column_id(K_blocks: list[np.ndarray], n: int, opts: RskelOptions):
    """Column ID of the vertically stacked blocks (n columns)."""
    K = np.vstack(K_blocks) if K_blocks else np.zeros((0, n))
    return interp_decomp(K, opts.rank_or_tol, Tmax=opts.Tmax, rrqr_iter=opts.rrqr_iter)


def _rskel_compress_box(
    *,
    tree: Tree,
    i: int,
    lvl: int,
    rows: IndexArray,
    cols: IndexArray,
    near_rows: IndexArray,
    near_cols: IndexArray,
    rrem: np.ndarray,
    crem: np.ndarray,
    rx: np.ndarray,
    cx: np.ndarray,
    entries: EntriesFn,
    pxyfun,
    opts: RskelOptions,
) -> SkelInterp:
    """Row and column IDs of box i against its far field (local positions)."""
    use_pxy = pxyfun is not None and lvl >= 2
    l = tree.lrt / 2**lvl
    ctr = tree.nodes[i].ctr

    # columns of the box against far rows
    if use_pxy:
        Kpxy, frows = pxyfun("c", rx, cx, cols, near_rows, l, ctr)
        frows = np.asarray(frows, dtype=np.intp).reshape(-1)
        blocks = [np.asarray(Kpxy).reshape(-1, cols.size)]
    else:
        frows = _far_indices(rrem, near_rows)
        blocks = []
    if frows.size:
        blocks.insert(0, entries(frows, cols))
    csk, crd, cT = _column_id(blocks, cols.size, opts)

    if opts.symm == "s":
        return SkelInterp(rsk=csk, rrd=crd, rT=cT.T, csk=csk, crd=crd, cT=cT)
    if opts.symm == "h":
        return SkelInterp(rsk=csk, rrd=crd, rT=cT.conj().T, csk=csk, crd=crd, cT=cT)

    # rows of the box against far columns, compressed as the conjugate transpose
    if use_pxy:
        Kpxy, fcols = pxyfun("r", rx, cx, rows, near_cols, l, ctr)
        fcols = np.asarray(fcols, dtype=np.intp).reshape(-1)
        blocks = [np.asarray(Kpxy).reshape(rows.size, -1).conj().T]
    else:
        fcols = _far_indices(crem, near_cols)
        blocks = []
    if fcols.size:
        blocks.insert(0, entries(rows, fcols).conj().T)
    rsk, rrd, T = _column_id(blocks, rows.size, opts)
    return SkelInterp(rsk=rsk, rrd=rrd, rT=T.conj().T, csk=csk, crd=crd, cT=cT)


def _rskel_near_block(
    entries: EntriesFn,
    R: IndexArray,
    C: IndexArray,
    ui: SkelInterp,
    uj: SkelInterp,
) -> np.ndarray:
    """Return A[R, C] - U_i A[R[rsk], C[csk]] V_j for the near pair (i, j)."""
    D = np.array(entries(R, C))
    S = entries(R[ui.rsk], C[uj.csk])
    if S.size == 0:
        return D
    D = D.astype(np.result_type(D.dtype, S.dtype, ui.rT.dtype, uj.cT.dtype), copy=False)
    SV = S @ uj.cT
    D[np.ix_(ui.rsk, uj.csk)] -= S
    D[np.ix_(ui.rsk, uj.crd)] -= SV
    D[np.ix_(ui.rrd, uj.csk)] -= ui.rT @ S
    D[np.ix_(ui.rrd, uj.crd)] -= ui.rT @ SV
    return D


def rskel(A, rx, cx, occ: int, rank_or_tol, pxyfun=None, **kwargs) -> Skeletonization:
    """Compress a matrix by recursive skeletonization.

    Parameters
    ----------
    A : callable, ndarray or sparse array
        Matrix source of shape (M, N); a callable is invoked as ``A(I, J)``.
    rx : (M, d) array_like
        Row points.
    cx : (N, d) array_like
        Column points.
    occ : int
        Maximum number of points per leaf box.
    rank_or_tol : int or float
        Fixed ID rank (integer >= 1) or relative ID tolerance in (0, 1).
    pxyfun : callable, optional
        Proxy function (see module docstring), used on levels >= 2.
    **kwargs
        symm ('n', 's', 'h' or 'p'), verb, lvlmax, ext, Tmax, rrqr_iter.

    Returns
    -------
    Skeletonization
        Immutable compressed representation, applied with `rskel_mv`.
    """
    opts = RskelOptions.create(occ, rank_or_tol, **kwargs)
    rx = _as_points(rx)
    cx = _as_points(cx)
    M, N = rx.shape[0], cx.shape[0]
    if rx.shape[1] != cx.shape[1]:
        raise InvalidConfigurationError("row and column points must have the same dimension")
    if opts.symm != "n" and M != N:
        raise InvalidConfigurationError(f"symm={opts.symm!r} requires a square matrix, got ({M}, {N})")
    _check_matrix_shape(A, M, N)
    entries = as_entries(A)

    t_start = time.perf_counter()
    if opts.symm == "n":
        tree = hypoct(np.vstack([rx, cx]), opts.occ, lvlmax=opts.lvlmax, ext=opts.ext)
        rxi = [node.xi[node.xi < M] for node in tree.nodes]
        cxi = [node.xi[node.xi >= M] - M for node in tree.nodes]
    else:
        tree = hypoct(rx, opts.occ, lvlmax=opts.lvlmax, ext=opts.ext)
        rxi = [node.xi for node in tree.nodes]
        cxi = [node.xi for node in tree.nodes]
    rrem = np.ones(M, dtype=bool)
    crem = np.ones(N, dtype=bool)
    interps: list[SkelInterp] = []
    blocks: list[SkelBlock] = []
    lvpu, lvpd = [0], [0]

    _skel_print_header(verb=opts.verb, prefix="RSKEL")
    for lvl in range(tree.nlvl - 1, -1, -1):
        stats = SkelLevelStats(level=lvl, n_in=int(rrem.sum()))
        level_boxes = range(tree.lvp[lvl], tree.lvp[lvl + 1])

        with stats.timeit("pull"):
            for i in level_boxes:
                children = tree.nodes[i].children
                if children:
                    rxi[i] = _concat([rxi[c] for c in children])
                    cxi[i] = _concat([cxi[c] for c in children])

        # local interpolation of every box on this level
        loc: dict[int, SkelInterp] = {}
        with stats.timeit("interp"):
            for i in level_boxes:
                rows, cols = rxi[i], cxi[i]
                if rows.size == 0 and cols.size == 0:
                    continue
                if lvl == 0:
                    loc[i] = _identity_interp(rows.size, cols.size)
                    continue
                nb = tree.nodes[i].nbor
                loc[i] = _rskel_compress_box(
                    tree=tree, i=i, lvl=lvl, rows=rows, cols=cols,
                    near_rows=_concat([rows] + [rxi[j] for j in nb]),
                    near_cols=_concat([cols] + [cxi[j] for j in nb]),
                    rrem=rrem, crem=crem, rx=rx, cx=cx,
                    entries=entries, pxyfun=pxyfun, opts=opts,
                )

        # near-field blocks, including both directions for coarser leaf neighbors
        with stats.timeit("near"):
            for i in loc:
                for j in [i] + tree.nodes[i].nbor:
                    pairs = [(i, j)]
                    if j != i and node_level(tree, j) < lvl:
                        pairs.append((j, i))
                    for a, b in pairs:
                        R, C = rxi[a], cxi[b]
                        if R.size == 0 or C.size == 0:
                            continue
                        if lvl == 0:
                            blocks.append(SkelBlock(i=R, j=C, D=np.array(entries(R, C))))
                            continue
                        ua = loc.get(a) or _identity_interp(R.size, cxi[a].size)
                        ub = loc.get(b) or _identity_interp(rxi[b].size, C.size)
                        blocks.append(SkelBlock(i=R, j=C, D=_rskel_near_block(entries, R, C, ua, ub)))

        if lvl > 0:
            for i, u in loc.items():
                rows, cols = rxi[i], cxi[i]
                if u.rrd.size or u.crd.size:
                    interps.append(
                        SkelInterp(
                            rsk=rows[u.rsk], rrd=rows[u.rrd], rT=u.rT,
                            csk=cols[u.csk], crd=cols[u.crd], cT=u.cT,
                        )
                    )
                    rrem[rows[u.rrd]] = False
                    crem[cols[u.crd]] = False
                stats.record_box(u.rsk.size, u.rrd.size)
                rxi[i] = rows[u.rsk]
                cxi[i] = cols[u.csk]
        lvpu.append(len(interps))
        lvpd.append(len(blocks))
        _skel_finalize_level_stats(stats)
        _skel_print_level_summary(stats, verb=opts.verb, prefix="RSKEL")

    arrays = [u.rT for u in interps] + [u.cT for u in interps] + [b.D for b in blocks]
    F = Skeletonization(
        M=M,
        N=N,
        nlvl=tree.nlvl,
        lvpu=np.asarray(lvpu, dtype=np.intp),
        lvpd=np.asarray(lvpd, dtype=np.intp),
        interps=tuple(interps),
        blocks=tuple(blocks),
        symm=opts.symm,
        dtype=np.result_type(np.float64, *[a.dtype for a in arrays]),
    )
    _skel_print_setup_summary(
        nbytes=F.nbytes(), elapsed=time.perf_counter() - t_start, verb=opts.verb, prefix="RSKEL"
    )
    return F


def rskel_mv(F: Skeletonization, X, trans: str = "n") -> np.ndarray:
    """Multiply by a recursive skeletonization.

    Parameters
    ----------
    F : Skeletonization
        Output of `rskel`.
    X : array_like
        Shape (N,) or (N, k) for trans='n', (M,) or (M, k) otherwise.
    trans : {'n', 't', 'c'}
        Apply A, A^T or A^H.

    Returns
    -------
    ndarray
        Shape (M,) / (M, k) for trans='n', (N,) / (N, k) otherwise.
    """
    trans = check_trans(trans)
    X = np.asarray(X)
    nin, nout = (F.N, F.M) if trans == "n" else (F.M, F.N)
    if X.ndim not in (1, 2) or X.shape[0] != nin:
        raise DimensionMismatchError(f"input has shape {X.shape}, expected {nin} rows")
    if trans == "t":
        return np.conj(rskel_mv(F, np.conj(X), "c"))

    vec = X.ndim == 1
    dtype = np.result_type(X.dtype, F.dtype)
    Z = [np.array(X.reshape(nin, -1), dtype=dtype)]

    # upward sweep: compress the input level by level
    for lvl in range(F.nlvl):
        Zn = Z[-1].copy()
        for u in F.interps[F.lvpu[lvl] : F.lvpu[lvl + 1]]:
            if trans == "n":
                sk, rd, T = u.csk, u.crd, u.cT
            else:
                sk, rd, T = u.rsk, u.rrd, u.rT.conj().T
            Zn[sk] += T @ Zn[rd]
            Zn[rd] = 0
        Z.append(Zn)

    # downward sweep: interpolate and add near-field blocks
    Y = np.zeros((nout, Z[0].shape[1]), dtype=dtype)
    for lvl in range(F.nlvl - 1, -1, -1):
        for u in F.interps[F.lvpu[lvl] : F.lvpu[lvl + 1]]:
            if trans == "n":
                sk, rd, T = u.rsk, u.rrd, u.rT
            else:
                sk, rd, T = u.csk, u.crd, u.cT.conj().T
            Y[rd] = T @ Y[sk]
        for b in F.blocks[F.lvpd[lvl] : F.lvpd[lvl + 1]]:
            if trans == "n":
                Y[b.i] += b.D @ Z[lvl][b.j]
            else:
                Y[b.j] += b.D.conj().T @ Z[lvl][b.i]
    return Y[:, 0] if vec else Y
