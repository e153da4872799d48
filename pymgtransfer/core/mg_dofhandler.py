# mg_dofhandler.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from pymgtransfer.core.triangulation import Triangulation, _lexicographic

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LevelMesh:
    """
    One level of the multigrid hierarchy.

    Level mesh L holds every tree cell on level L followed by every active
    cell on a coarser level, grouped by cell level:
    ``cells[group_offsets[l]:group_offsets[l+1]]`` are the active cells of
    level l < L (ascending tree rows) and the last group is all of level L.

    DoF support points live on an integer lattice of spacing ``spacing``;
    ``dof_keys`` are their lattice coordinates, ``0..n_points_1d - 1`` per
    direction.
    """
    level: int
    degree: int
    cell_levels: np.ndarray
    cell_rows: np.ndarray
    cell_index: np.ndarray
    cell_dofs: np.ndarray
    group_offsets: np.ndarray
    dof_keys: np.ndarray
    n_points_1d: int
    spacing: float
    origin: float

    @property
    def dim(self) -> int:
        return int(self.cell_index.shape[1])

    @property
    def n_cells(self) -> int:
        return int(self.cell_dofs.shape[0])

    @property
    def n_dofs(self) -> int:
        return int(self.dof_keys.shape[0])

    def group(self, cell_level: int) -> slice:
        return slice(int(self.group_offsets[cell_level]), int(self.group_offsets[cell_level + 1]))

    def dof_coordinates(self) -> np.ndarray:
        return self.origin + self.dof_keys * self.spacing

    def boundary_dof_mask(self) -> np.ndarray:
        last = self.n_points_1d - 1
        return np.any((self.dof_keys == 0) | (self.dof_keys == last), axis=1)

    def position(self, cell_levels: np.ndarray, cell_rows: np.ndarray) -> np.ndarray:
        """Positions of tree cells (level, row) inside this level mesh."""
        cell_levels = np.asarray(cell_levels, dtype=np.int64)
        cell_rows = np.asarray(cell_rows, dtype=np.int64)
        out = np.empty(cell_rows.shape[0], dtype=np.int64)
        for l in np.unique(cell_levels):
            sel = cell_levels == l
            if l > self.level:
                raise ValueError(f"cells of level {l} are not part of level mesh {self.level}")
            g = self.group(int(l))
            group_rows = self.cell_rows[g]
            if l == self.level:
                out[sel] = g.start + cell_rows[sel]
                continue
            pos = np.searchsorted(group_rows, cell_rows[sel])
            pos = np.minimum(pos, max(group_rows.shape[0] - 1, 0))
            if group_rows.shape[0] == 0 or np.any(group_rows[pos] != cell_rows[sel]):
                raise ValueError(f"some level-{l} cells are not active, so not part of level mesh {self.level}")
            out[sel] = g.start + pos
        return out


class MGDofHandler:
    """Level-wise Q_p DoF numbering on every mesh of a `Triangulation`."""

    def __init__(self, triangulation: Triangulation, degree: int):
        """
        Parameters
        ----------
        triangulation : Triangulation
            The refined cell tree. It must not change after
            `distribute_mg_dofs`; refine first, distribute afterwards.
        degree : int
            Polynomial degree p of the continuous Q_p space (equidistant
            support points, lexicographic local order).
        """
        if degree < 1:
            raise ValueError("degree must be >= 1")
        self.triangulation = triangulation
        self.degree = int(degree)
        self.dim = triangulation.dim
        self.n_loc = (self.degree + 1) ** self.dim
        self._local = _lexicographic(self.degree + 1, self.dim).astype(np.int64)
        self._levels: Optional[List[LevelMesh]] = None
        self._signature: Optional[Tuple[int, ...]] = None

    # ------------------------------------------------------------------
    def distribute_mg_dofs(self) -> None:
        tria = self.triangulation
        self._levels = [self._build_level_mesh(L) for L in range(tria.n_levels)]
        self._signature = self._tree_signature()
        for lm in self._levels:
            logger.debug(f"level {lm.level}: {lm.n_cells} cells, {lm.n_dofs} dofs")

    def _tree_signature(self) -> Tuple[int, ...]:
        tria = self.triangulation
        return tuple(tria.n_cells(l) for l in range(tria.n_levels)) + (tria.n_active_cells(),)

    @property
    def is_current(self) -> bool:
        """False once the triangulation was refined after `distribute_mg_dofs`."""
        return self._levels is not None and self._signature == self._tree_signature()

    def _require(self) -> List[LevelMesh]:
        if self._levels is None:
            raise ValueError("call distribute_mg_dofs() first")
        return self._levels

    @property
    def n_levels(self) -> int:
        return len(self._require())

    def n_dofs(self, level: int) -> int:
        return self._require()[level].n_dofs

    def level_mesh(self, level: int) -> LevelMesh:
        return self._require()[level]

    # ------------------------------------------------------------------
    def _build_level_mesh(self, L: int) -> LevelMesh:
        tria = self.triangulation
        p, dim = self.degree, self.dim
        levels, rows = [], []
        for l in range(L):
            r = tria.active_rows(l)
            rows.append(r)
            levels.append(np.full(r.shape[0], l, dtype=np.int64))
        rows.append(np.arange(tria.n_cells(L), dtype=np.int64))
        levels.append(np.full(tria.n_cells(L), L, dtype=np.int64))
        group_offsets = np.concatenate([[0], np.cumsum([r.shape[0] for r in rows])]).astype(np.int64)
        cell_levels = np.concatenate(levels)
        cell_rows = np.concatenate(rows)
        cell_index = tria.lattice_index(cell_levels, cell_rows)

        scale = 2 ** (L - cell_levels)
        origin = cell_index * p * scale[:, None]
        pts = origin[:, None, :] + self._local[None, :, :] * scale[:, None, None]
        n_points_1d = tria.repetitions * 2 ** L * p + 1
        shape = (n_points_1d,) * dim
        keys = np.ravel_multi_index(pts.reshape(-1, dim).T, shape)
        uniq, inv = np.unique(keys, return_inverse=True)
        cell_dofs = inv.ravel().reshape(cell_levels.shape[0], self.n_loc).astype(np.int64)
        dof_keys = np.stack(np.unravel_index(uniq, shape), axis=1).astype(np.int64)

        return LevelMesh(
            level=L,
            degree=p,
            cell_levels=cell_levels,
            cell_rows=cell_rows,
            cell_index=cell_index,
            cell_dofs=cell_dofs,
            group_offsets=group_offsets,
            dof_keys=dof_keys,
            n_points_1d=n_points_1d,
            spacing=tria.cell_size(L) / p,
            origin=tria.left,
        )

    # ------------------------------------------------------------------
    def transfer_relations(self, level: int) -> Tuple[np.ndarray, np.ndarray]:
        """
        Parent/child relation between level meshes level-1 and level.

        Returns
        -------
        parent_position : (n_cells,) int
            For each cell of level mesh `level`, the position of its parent in
            level mesh `level-1`. Cells carried over unrefined are their own parent.
        child_index : (n_cells, dim) int
            Per-direction position of the cell inside its parent (0 or 1),
            or 2 for a carried-over cell.
        """
        if not 1 <= level < self.n_levels:
            raise ValueError(f"no transfer into level {level} (levels 1..{self.n_levels - 1})")
        tria = self.triangulation
        fine = self.level_mesh(level)
        coarse = self.level_mesh(level - 1)
        parent_position = np.empty(fine.n_cells, dtype=np.int64)
        child_index = np.full((fine.n_cells, self.dim), 2, dtype=np.int64)

        g = fine.group(level)
        prow = tria.levels[level].parent[fine.cell_rows[g]]
        parent_position[g] = coarse.position(np.full(prow.shape[0], level - 1), prow)
        child_index[g] = fine.cell_index[g] - 2 * tria.levels[level - 1].index[prow]

        carried = slice(0, g.start)
        parent_position[carried] = coarse.position(fine.cell_levels[carried], fine.cell_rows[carried])
        return parent_position, child_index

    def __repr__(self):
        if self._levels is None:
            return f"<MGDofHandler Q{self.degree} dim={self.dim} (not distributed)>"
        return f"<MGDofHandler Q{self.degree} dim={self.dim} dofs={[lm.n_dofs for lm in self._levels]}>"
