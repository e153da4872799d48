# constraints.py
"""
Hanging-node and zero-boundary constraints on the level meshes of an
`MGDofHandler`.

A hanging DoF sits on the boundary of a coarser cell K without being one
of K's support points; continuity pins its value to K's interpolant there,
u_h = sum_j phi_j^K(x_h) u_j. Boundary DoFs are driven to zero and carry
no supports.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Tuple

import numpy as np
import scipy.sparse as sp

from pymgtransfer.core.mg_dofhandler import LevelMesh, MGDofHandler
from pymgtransfer.core.triangulation import _lexicographic
from pymgtransfer.fem.reference.lagrange import patch_weights

logger = logging.getLogger(__name__)

_WEIGHT_TOL = 1e-13


@dataclass(frozen=True)
class ConstraintEntry:
    """One constrained DoF: value = sum(weight * value[support])."""
    dof: int
    supports: Tuple[Tuple[int, float], ...]

    @property
    def is_boundary(self) -> bool:
        return len(self.supports) == 0


def _candidate_offsets(degree: int, dim: int) -> np.ndarray:
    """Two-child patch points on the parent boundary that are not parent support points."""
    B = _lexicographic(2 * degree + 1, dim).astype(np.int64)
    on_boundary = np.any((B == 0) | (B == 2 * degree), axis=1)
    off_lattice = np.any(B % 2 == 1, axis=1)
    return B[on_boundary & off_lattice]


def make_hanging_node_constraints(mesh: LevelMesh) -> sp.csr_matrix:
    """
    Closed hanging-node constraints of one level mesh.

    Returns an (n_dofs, n_dofs) CSR matrix whose row h holds the supports and
    weights of hanging DoF h; rows of unconstrained DoFs are empty. Supports
    are never hanging themselves.
    """
    p, dim, L = mesh.degree, mesh.dim, mesh.level
    n = mesh.n_dofs
    B = _candidate_offsets(p, dim)
    Wb = patch_weights(p, dim, B)

    shape = (mesh.n_points_1d,) * dim
    dof_flat = np.ravel_multi_index(mesh.dof_keys.T, shape)   # ascending
    hit_dofs, hit_cells, hit_offsets = [], [], []
    for l in range(L):
        g = mesh.group(l)
        k = g.stop - g.start
        if k == 0:
            continue
        s = 2 ** (L - l - 1)
        origin = mesh.cell_index[g] * (2 * p * s)
        pts = origin[:, None, :] + B[None, :, :] * s
        keys = np.ravel_multi_index(pts.reshape(-1, dim).T, shape)
        pos = np.minimum(np.searchsorted(dof_flat, keys), n - 1)
        found = dof_flat[pos] == keys
        hit_dofs.append(pos[found])
        hit_cells.append(np.repeat(np.arange(g.start, g.stop), B.shape[0])[found])
        hit_offsets.append(np.tile(np.arange(B.shape[0]), k)[found])

    if not hit_dofs or sum(h.shape[0] for h in hit_dofs) == 0:
        return sp.csr_matrix((n, n))

    dofs = np.concatenate(hit_dofs)
    cells = np.concatenate(hit_cells)
    offsets = np.concatenate(hit_offsets)
    hanging, first = np.unique(dofs, return_index=True)
    W = Wb[offsets[first]]
    S = mesh.cell_dofs[cells[first]]
    keep = np.abs(W) > _WEIGHT_TOL
    rows = np.repeat(hanging, W.shape[1]).reshape(W.shape)[keep]
    C = sp.csr_matrix((W[keep], (rows, S[keep])), shape=(n, n))

    hanging_mask = np.zeros(n, dtype=bool)
    hanging_mask[hanging] = True
    M = (C + sp.diags((~hanging_mask).astype(float))).tocsr()
    for _ in range(L + 2):
        if M[:, hanging].nnz == 0:
            break
        M = (M @ M).tocsr()
        M.data[np.abs(M.data) < _WEIGHT_TOL] = 0.0
        M.eliminate_zeros()
    else:
        raise ValueError(f"hanging-node constraints on level {L} do not close")
    H = sp.diags(hanging_mask.astype(float)) @ M
    H = H.tocsr()
    H.eliminate_zeros()
    H.sort_indices()
    logger.debug(f"level {L}: {hanging.shape[0]} hanging dofs")
    return H


class LevelConstraints:
    """Constraints of one level, stored as flat CSR arrays."""

    def __init__(self, n_dofs: int, boundary_dofs: np.ndarray, hanging: sp.csr_matrix):
        boundary_dofs = np.unique(np.asarray(boundary_dofs, dtype=np.int64))
        is_boundary = np.zeros(n_dofs, dtype=bool)
        is_boundary[boundary_dofs] = True
        row_len = np.diff(hanging.indptr)
        hanging_dofs = np.flatnonzero((row_len > 0) & ~is_boundary).astype(np.int64)
        H = hanging[hanging_dofs]

        self.n_dofs = int(n_dofs)
        self.boundary_dofs = boundary_dofs
        self.hanging_dofs = hanging_dofs
        self.hanging_ptr = H.indptr.astype(np.int64)
        self.hanging_supports = H.indices.astype(np.int64)
        self.hanging_weights = H.data.astype(np.float64)
        for arr in (self.boundary_dofs, self.hanging_dofs, self.hanging_ptr,
                    self.hanging_supports, self.hanging_weights):
            arr.setflags(write=False)

    @property
    def n_boundary(self) -> int:
        return int(self.boundary_dofs.shape[0])

    @property
    def n_hanging(self) -> int:
        return int(self.hanging_dofs.shape[0])

    @property
    def constrained_mask(self) -> np.ndarray:
        mask = np.zeros(self.n_dofs, dtype=bool)
        mask[self.boundary_dofs] = True
        mask[self.hanging_dofs] = True
        return mask

    def entries(self) -> Iterator[ConstraintEntry]:
        for b in self.boundary_dofs:
            yield ConstraintEntry(int(b), ())
        for i, h in enumerate(self.hanging_dofs):
            lo, hi = self.hanging_ptr[i], self.hanging_ptr[i + 1]
            yield ConstraintEntry(int(h), tuple(
                (int(s), float(w)) for s, w in zip(self.hanging_supports[lo:hi], self.hanging_weights[lo:hi])))

    def expansion_matrix(self) -> sp.csr_matrix:
        """
        E with (E u)_i = u_i for unconstrained i, the weighted supports for
        hanging i and 0 for boundary i. Boundary supports carry value zero
        and are dropped.
        """
        n = self.n_dofs
        mask = self.constrained_mask
        free = np.flatnonzero(~mask)
        rows = np.concatenate([free, np.repeat(self.hanging_dofs, np.diff(self.hanging_ptr))])
        cols = np.concatenate([free, self.hanging_supports])
        vals = np.concatenate([np.ones(free.shape[0]), self.hanging_weights])
        is_boundary = np.zeros(n, dtype=bool)
        is_boundary[self.boundary_dofs] = True
        keep = ~is_boundary[cols]
        E = sp.csr_matrix((vals[keep], (rows[keep], cols[keep])), shape=(n, n))
        E.sort_indices()
        return E

    def __repr__(self):
        return f"<LevelConstraints dofs={self.n_dofs} boundary={self.n_boundary} hanging={self.n_hanging}>"


class MGConstraints:
    """Constraint set of a multigrid hierarchy: hanging nodes plus zero boundary values."""

    def __init__(self, dof_handler: MGDofHandler):
        self.dof_handler = dof_handler
        self._hanging: List[sp.csr_matrix] = [
            make_hanging_node_constraints(dof_handler.level_mesh(L)) for L in range(dof_handler.n_levels)
        ]
        self._boundary: List[np.ndarray] = [np.empty(0, dtype=np.int64) for _ in self._hanging]
        self._levels: List[Optional[LevelConstraints]] = [None] * len(self._hanging)

    @property
    def n_levels(self) -> int:
        return len(self._hanging)

    def make_zero_boundary_constraints(self, locator: Optional[Callable[[np.ndarray], np.ndarray]] = None) -> None:
        """
        Constrain DoFs on the domain boundary to zero on every level.

        locator : callable, optional
            Receives the (n, dim) coordinates of the boundary DoFs and
            returns a boolean mask selecting the ones to constrain.
        """
        for L in range(self.n_levels):
            mesh = self.dof_handler.level_mesh(L)
            idx = np.flatnonzero(mesh.boundary_dof_mask())
            if locator is not None:
                sel = np.asarray(locator(mesh.dof_coordinates()[idx]), dtype=bool)
                idx = idx[sel]
            self._boundary[L] = idx.astype(np.int64)
            self._levels[L] = None
        logger.debug(f"zero boundary constraints: {[b.shape[0] for b in self._boundary]}")

    def level(self, level: int) -> LevelConstraints:
        if self._levels[level] is None:
            n = self.dof_handler.n_dofs(level)
            self._levels[level] = LevelConstraints(n, self._boundary[level], self._hanging[level])
        return self._levels[level]

    def __repr__(self):
        return f"<MGConstraints levels={self.n_levels}>"
