# triangulation.py
"""
Hierarchical hypercube triangulation for geometric multigrid.

The domain [left, right]^dim starts as `repetitions**dim` equal cells
(level 0). Refinement splits a cell into 2**dim children on the next level;
the parent stays in the tree so every level of the hierarchy remains
addressable.

Cells are stored per level in flat integer arrays rather than per-cell
objects:

* ``index``       lattice position, the cell spans [index*h_l, (index+1)*h_l]
* ``parent``      row of the parent on level-1 (-1 on level 0)
* ``first_child`` first row of the contiguous child block on level+1
                  (-1 while the cell is active)

Children are ordered lexicographically over their offsets, x fastest.
Flagged refinement is closed so that active cells sharing a vertex differ
by at most one level.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Tuple

import numpy as np

logger = logging.getLogger(__name__)


def _lexicographic(n: int, dim: int) -> np.ndarray:
    """All multi-indices of {0..n-1}^dim, x fastest, shape (n**dim, dim)."""
    return np.ascontiguousarray(np.indices((n,) * dim).reshape(dim, -1).T[:, ::-1])


@dataclass
class CellLevel:
    """All cells of one refinement level."""
    index: np.ndarray
    parent: np.ndarray
    first_child: np.ndarray

    @property
    def n_cells(self) -> int:
        return int(self.parent.shape[0])

    @property
    def active(self) -> np.ndarray:
        return self.first_child < 0


class Triangulation:
    """
    Manages the cell tree and the refinement process.
    """
    def __init__(self, dim: int, repetitions: int = 2, left: float = 0.0, right: float = 1.0):
        if dim not in (1, 2, 3):
            raise ValueError(f"dim must be 1, 2 or 3, got {dim}")
        if repetitions < 1:
            raise ValueError("repetitions must be positive")
        if not right > left:
            raise ValueError("right must be larger than left")
        self.dim = int(dim)
        self.repetitions = int(repetitions)
        self.left = float(left)
        self.right = float(right)
        self._child_offsets = _lexicographic(2, self.dim)
        n0 = self.repetitions ** self.dim
        self.levels: List[CellLevel] = [CellLevel(
            index=_lexicographic(self.repetitions, self.dim).astype(np.int64),
            parent=np.full(n0, -1, dtype=np.int64),
            first_child=np.full(n0, -1, dtype=np.int64),
        )]

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------
    @property
    def n_levels(self) -> int:
        return len(self.levels)

    @property
    def n_children(self) -> int:
        return 2 ** self.dim

    def n_cells(self, level: int) -> int:
        return self.levels[level].n_cells

    def cell_size(self, level: int) -> float:
        return (self.right - self.left) / (self.repetitions * 2 ** level)

    def active_rows(self, level: int) -> np.ndarray:
        return np.flatnonzero(self.levels[level].active)

    def active_cells(self) -> Tuple[np.ndarray, np.ndarray]:
        """(levels, rows) of all active cells, coarse levels first."""
        levels, rows = [], []
        for l in range(self.n_levels):
            r = self.active_rows(l)
            rows.append(r)
            levels.append(np.full(r.shape[0], l, dtype=np.int64))
        return np.concatenate(levels), np.concatenate(rows)

    def n_active_cells(self) -> int:
        return int(sum(np.count_nonzero(lv.active) for lv in self.levels))

    def lattice_index(self, levels: np.ndarray, rows: np.ndarray) -> np.ndarray:
        levels = np.asarray(levels, dtype=np.int64)
        rows = np.asarray(rows, dtype=np.int64)
        out = np.empty((rows.shape[0], self.dim), dtype=np.int64)
        for l in np.unique(levels):
            sel = levels == l
            out[sel] = self.levels[l].index[rows[sel]]
        return out

    def cell_centers(self, levels: np.ndarray, rows: np.ndarray) -> np.ndarray:
        levels = np.asarray(levels, dtype=np.int64)
        idx = self.lattice_index(levels, rows)
        h = (self.right - self.left) / (self.repetitions * 2.0 ** levels)
        return self.left + (idx + 0.5) * h[:, None]

    # ------------------------------------------------------------------
    # refinement
    # ------------------------------------------------------------------
    def refine_global(self, times: int = 1) -> None:
        for _ in range(times):
            self.refine(np.ones(self.n_active_cells(), dtype=bool))

    def refine_where(self, criterion: Callable[[np.ndarray], np.ndarray]) -> None:
        """Refine the active cells whose centre satisfies `criterion` (vectorised over (N, dim))."""
        levels, rows = self.active_cells()
        flags = np.asarray(criterion(self.cell_centers(levels, rows)), dtype=bool)
        self.refine(flags)

    def refine(self, flags) -> None:
        """
        Refine the active cells marked in `flags` (aligned with `active_cells()`),
        plus whatever the vertex level-difference limit forces. `flags` may
        also be an iterable of (level, row) pairs.
        """
        levels, rows = self.active_cells()
        flags = np.asarray(list(flags) if not isinstance(flags, np.ndarray) else flags)
        if flags.dtype != bool and flags.ndim == 2 and flags.shape[1] == 2:
            flags = self._pairs_to_flags(levels, rows, flags.astype(np.int64))
        flags = np.asarray(flags, dtype=bool)
        if flags.shape != levels.shape:
            raise ValueError(f"flags must have shape {levels.shape}, got {flags.shape}")
        if not flags.any():
            return
        closed = self._close_flags(levels, rows, flags)
        logger.debug(f"refine: {int(flags.sum())} flagged, {int(closed.sum())} after closure")
        for l in np.unique(levels[closed]):
            self._subdivide(int(l), np.sort(rows[closed & (levels == l)]))

    def _pairs_to_flags(self, levels: np.ndarray, rows: np.ndarray, pairs: np.ndarray) -> np.ndarray:
        top = self.n_levels
        active_keys = rows * top + levels
        keys = pairs[:, 1] * top + pairs[:, 0]
        found = np.isin(keys, active_keys) & (pairs[:, 0] >= 0) & (pairs[:, 0] < top)
        if not found.all():
            bad = pairs[~found][0]
            raise ValueError(f"cell (level={bad[0]}, row={bad[1]}) is not active")
        return np.isin(active_keys, keys)

    def _close_flags(self, levels: np.ndarray, rows: np.ndarray, flags: np.ndarray) -> np.ndarray:
        n_corner = self.n_children
        top = int(levels.max()) + 1
        size = (2 ** (top - levels))[:, None]
        idx = self.lattice_index(levels, rows)
        corners = (idx * size)[:, None, :] + self._child_offsets[None, :, :] * size[:, :, None]
        extent = self.repetitions * 2 ** top + 1
        keys = np.ravel_multi_index(corners.reshape(-1, self.dim).T, (extent,) * self.dim)
        _, inv = np.unique(keys, return_inverse=True)
        inv = inv.ravel()
        n_vertices = int(inv.max()) + 1
        flags = flags.copy()
        while True:
            future = levels + flags
            vmax = np.full(n_vertices, -1, dtype=np.int64)
            np.maximum.at(vmax, inv, np.repeat(future, n_corner))
            need = vmax[inv].reshape(-1, n_corner).max(axis=1)
            new = ~flags & (future < need - 1)
            if not new.any():
                return flags
            flags |= new

    def _subdivide(self, level: int, rows: np.ndarray) -> None:
        if level + 1 == self.n_levels:
            self.levels.append(CellLevel(
                index=np.empty((0, self.dim), dtype=np.int64),
                parent=np.empty(0, dtype=np.int64),
                first_child=np.empty(0, dtype=np.int64),
            ))
        parent_level, child_level = self.levels[level], self.levels[level + 1]
        if np.any(parent_level.first_child[rows] >= 0):
            raise ValueError(f"cannot refine cells on level {level} that already have children")
        nc = self.n_children
        start = child_level.n_cells
        child_index = 2 * parent_level.index[rows][:, None, :] + self._child_offsets[None, :, :]
        parent_level.first_child[rows] = start + nc * np.arange(rows.shape[0], dtype=np.int64)
        child_level.index = np.concatenate([child_level.index, child_index.reshape(-1, self.dim)])
        child_level.parent = np.concatenate([child_level.parent, np.repeat(rows.astype(np.int64), nc)])
        child_level.first_child = np.concatenate(
            [child_level.first_child, np.full(rows.shape[0] * nc, -1, dtype=np.int64)])

    def __repr__(self):
        return (f"<Triangulation dim={self.dim} levels={self.n_levels} "
                f"active={self.n_active_cells()}>")
