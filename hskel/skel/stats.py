"""Timing and diagnostic reporting for the skeletonization builders.

This module provides:
  - A small per-level timing collector (`SkelLevelStats`) that supports labeled timers.
  - Helpers to compute min/median/max summaries of per-box quantities.
  - Compact, human-readable per-level summary printers for the factorization,
    the skeletonization and the diagonal extraction.

Typical usage
-------------
Within construction, create a `SkelLevelStats` for the current level:

    stats = SkelLevelStats(level=lvl, n_in=int(rem.sum()))
    with stats.timeit("neighbors"):
        ... neighbor lists and proxy rows ...
    with stats.timeit("eliminate"):
        ... compression and local factorizations ...
    stats.record_box(nsk, nrd)
    _skel_finalize_level_stats(stats)
    _skel_print_level_summary(stats, verb=verb)

Printing is confined to this module; every printer is a no-op unless `verb`.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any
import time

import numpy as np


@dataclass(slots=True)
class SkelLevelStats:
    """Per-level construction timings and summary statistics.

    Attributes
    ----------
    level
        Tree level index (0 = root).
    n_in
        Number of active indices entering this level.
    n_out
        Number of active indices leaving this level (filled in finalize).
    n_boxes
        Number of boxes compressed on this level.
    ranks
        Skeleton count of every compressed box.
    timings
        Dict mapping timer keys to elapsed seconds.
    extra
        Dict for derived metrics and summary scalars.
    """

    level: int
    n_in: int
    n_out: int | None = None
    n_boxes: int = 0
    ranks: list[int] = field(default_factory=list)
    n_rd: int = 0
    timings: dict[str, float] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    @contextmanager
    def timeit(self, key: str):
        """Context manager that accumulates elapsed time under `timings[key]`."""
        t0 = time.perf_counter()
        try:
            yield
        finally:
            self.timings[key] = self.timings.get(key, 0.0) + (time.perf_counter() - t0)

    def record_box(self, nsk: int, nrd: int) -> None:
        """Record one compressed box."""
        self.n_boxes += 1
        self.ranks.append(int(nsk))
        self.n_rd += int(nrd)


def _store_mmx(extra: dict[str, Any], base: str, arr) -> None:
    """Store min/median/max of an array-like into `extra` under `<base>_{min,med,max}`."""
    a = np.asarray(arr, dtype=float)
    if a.size == 0:
        return
    extra[f"{base}_min"] = float(np.min(a))
    extra[f"{base}_med"] = float(np.median(a))
    extra[f"{base}_max"] = float(np.max(a))


def _skel_finalize_level_stats(stats: SkelLevelStats) -> None:
    """Populate derived statistics once a level is complete."""
    stats.n_out = stats.n_in - stats.n_rd
    _store_mmx(stats.extra, "rank", stats.ranks)
    stats.extra["cr"] = float(stats.n_in / stats.n_out) if stats.n_out else float("inf")


def _fmt(x) -> str:
    """Format a scalar for compact printing."""
    try:
        x = float(x)
    except (TypeError, ValueError):
        return str(x)
    ax = abs(x)
    if ax != 0.0 and (ax < 1e-2 or ax >= 1e4):
        return f"{x:.2e}"
    return f"{x:.3g}"


def _mmx(extra: dict[str, Any], base: str) -> str:
    """Return `min/med/max` string for `base` as stored in `extra`."""
    a = extra.get(f"{base}_min")
    b = extra.get(f"{base}_med")
    c = extra.get(f"{base}_max")
    if a is None or b is None or c is None:
        return "n/a"
    return f"{_fmt(a)}/{_fmt(b)}/{_fmt(c)}"


def _fmt_ms(t: float) -> str:
    """Format a duration in seconds as either milliseconds or seconds."""
    return f"{t*1e3:7.1f}ms" if t < 1.0 else f"{t:7.2f}s"


def _skel_print_header(*, verb: bool, prefix: str) -> None:
    """Print the banner that opens a construction report."""
    if not verb:
        return
    print(f"{prefix}  level summaries (rank = skeletons per box, min/med/max)")


def _skel_print_level_summary(
    stats: SkelLevelStats,
    *,
    verb: bool,
    prefix: str = "RSKELF",
    indent: str = "",
) -> None:
    """Print a compact per-level summary of construction diagnostics and timings.

    Parameters
    ----------
    stats
        Per-level stats object that has already been finalized.
    verb
        If False, does nothing.
    prefix
        Short label prefix printed per level.
    indent
        Optional indentation string (useful if caller nests printing).
    """
    if not verb:
        return

    n_out = stats.n_out if stats.n_out is not None else "?"
    cr = _fmt(stats.extra.get("cr", "n/a"))
    print(
        f"{indent}{prefix:<6}  level={stats.level:<2d}  boxes={stats.n_boxes:<5d}"
        f"  n={stats.n_in:<7d} -> {n_out:<7}  cr={cr}  rank={_mmx(stats.extra, 'rank')}"
    )

    order = ["pull", "neighbors", "eliminate", "interp", "near", "merge"]
    total = 0.0
    parts = []
    for k in order:
        if k in stats.timings:
            v = stats.timings[k]
            total += v
            parts.append(f"{k}={_fmt_ms(v).strip()}")
    parts.append(f"total={_fmt_ms(total).strip()}")
    print(f"{indent}        timing: " + ", ".join(parts))


def _skel_print_setup_summary(*, nbytes: int, elapsed: float, verb: bool, prefix: str, indent: str = "") -> None:
    """Print non-level-specific construction totals.

    Parameters
    ----------
    nbytes
        Storage of the finished structure in bytes.
    elapsed
        Total wall time (seconds).
    verb
        If False, does nothing.
    """
    if not verb:
        return
    print(f"{indent}{prefix:<6}  total  {_fmt_ms(float(elapsed))}  storage {nbytes / 1e6:.2f} MB")


def _diag_print_keep_summary(*, nnz_all: int, elapsed: float, verb: bool, indent: str = "") -> None:
    """Print the size of the requirement pattern found by phase 1 of diagonal extraction."""
    if not verb:
        return
    print(f"{indent}DIAG    requirements  nnz kept={nnz_all:<10d}  {_fmt_ms(elapsed)}")


def _diag_print_level(*, level: int, nnz: int, elapsed: float, verb: bool, indent: str = "") -> None:
    """Print one unfolding step of diagonal extraction."""
    if not verb:
        return
    print(f"{indent}DIAG    level={level:<2d}  nnz kept={nnz:<10d}  {_fmt_ms(elapsed)}")
