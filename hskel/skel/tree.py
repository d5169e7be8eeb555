"""Hyperoctree partition of points and neighbor lists.

The tree is built top-down: the root box is the bounding box of all points (or
a caller-supplied extent, squared up to its largest side), and every box that
holds more than `occ` points is split into 2^d equal children. Empty children
are not created. Splitting stops after `lvlmax` levels or when no box needs it.

Neighbors
---------
For a box on level l, `nbor` lists
  - the adjacent boxes (sharing a face, edge or corner) on the same level, and
  - the adjacent leaf boxes on coarser levels.
Same-level adjacency is symmetric; coarser leaves do not list finer boxes since
by the time a coarser box is processed, finer points have been merged into
their same-level ancestors.
"""

from __future__ import annotations

import numpy as np

from .errors import InvalidConfigurationError
from .types import Tree, TreeNode


def _root_box(x: np.ndarray, ext) -> tuple[np.ndarray, float]:
    """Return the center and side length of the root box."""
    d = x.shape[1]
    if ext is None:
        if x.shape[0] == 0:
            return np.zeros(d), 0.0
        lo = x.min(axis=0)
        hi = x.max(axis=0)
    else:
        ext = np.asarray(ext, dtype=float)
        if ext.shape != (d, 2):
            raise InvalidConfigurationError(f"ext must have shape ({d}, 2), got {ext.shape}")
        lo = np.minimum(ext[:, 0], x.min(axis=0)) if x.shape[0] else ext[:, 0]
        hi = np.maximum(ext[:, 1], x.max(axis=0)) if x.shape[0] else ext[:, 1]
    return 0.5 * (lo + hi), float(np.max(hi - lo))


def _split(x: np.ndarray, node: TreeNode, prnt: int, l: float) -> list[TreeNode]:
    """Split a box into its nonempty children of side length `l`."""
    xi = node.xi
    d = x.shape[1]
    weights = 2 ** np.arange(d)
    code = (x[xi] > node.ctr).astype(np.intp) @ weights
    children = []
    for c in np.unique(code):
        bits = (c >> np.arange(d)) & 1
        ctr = node.ctr + l * (bits - 0.5)
        children.append(TreeNode(ctr=ctr, xi=xi[code == c], parent=prnt))
    return children


def hypoct(x, occ: int, lvlmax=float("inf"), ext=None) -> Tree:
    """Build a hyperoctree over the points `x`.

    Parameters
    ----------
    x : (N, d) array_like
        Point coordinates, one row per index.
    occ : int
        Maximum number of points in a leaf box.
    lvlmax : int or inf
        Maximum number of levels (the root counts as one level).
    ext : (d, 2) array_like, optional
        Lower/upper extent of the root box in each dimension. The root box is
        always a cube whose side is the largest extent.

    Returns
    -------
    tree : Tree
        Level-ordered arena of boxes with neighbor lists filled in.
    """
    x = np.asarray(x, dtype=float)
    if x.ndim != 2:
        raise InvalidConfigurationError(f"points must have shape (N, d), got {x.shape}")
    N = x.shape[0]
    ctr, lrt = _root_box(x, ext)

    nodes = [TreeNode(ctr=ctr, xi=np.arange(N, dtype=np.intp))]
    lvp = [0, 1]
    nlvl = 1
    l = lrt
    while nlvl < lvlmax:
        l = 0.5 * l
        new: list[TreeNode] = []
        for prnt in range(lvp[-2], lvp[-1]):
            node = nodes[prnt]
            if node.xi.size <= occ:
                continue
            pts = x[node.xi]
            if np.all(pts == pts[0]):
                # coincident points cannot be separated
                continue
            children = _split(x, node, prnt, l)
            for k, child in enumerate(children):
                node.children.append(len(nodes) + len(new) + k)
            new.extend(children)
            node.xi = np.zeros(0, dtype=np.intp)
        if not new:
            break
        nodes.extend(new)
        lvp.append(len(nodes))
        nlvl += 1

    tree = Tree(nlvl=nlvl, lvp=lvp, lrt=lrt, nodes=nodes)
    _find_neighbors(tree)
    return tree


def box_size(tree: Tree, lvl: int) -> float:
    """Side length of the boxes on level `lvl`."""
    return tree.lrt / 2**lvl


def node_level(tree: Tree, i: int) -> int:
    """Level of box i."""
    return int(np.searchsorted(tree.lvp, i, side="right") - 1)


def _find_neighbors(tree: Tree) -> None:
    """Fill `nbor` for every box (see module docstring)."""
    nodes = tree.nodes
    for lvl in range(1, tree.nlvl):
        l = box_size(tree, lvl)
        tol = 1e-12 * max(tree.lrt, 1.0)
        for i in range(tree.lvp[lvl], tree.lvp[lvl + 1]):
            prnt = nodes[i].parent
            cand: list[int] = list(nodes[prnt].children)
            for k in nodes[prnt].nbor:
                if tree.is_leaf(k):
                    cand.append(k)
                else:
                    cand.extend(nodes[k].children)
            nbor = []
            for j in cand:
                if j == i:
                    continue
                lj = box_size(tree, node_level(tree, j))
                dist = np.abs(nodes[i].ctr - nodes[j].ctr)
                if np.all(dist <= 0.5 * (l + lj) + tol):
                    nbor.append(j)
            nodes[i].nbor = sorted(nbor)
