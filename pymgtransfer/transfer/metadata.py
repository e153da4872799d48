"""pymgtransfer.transfer.metadata

Immutable per-level data of the matrix-free transfer, built once from a DoF
hierarchy and its constraints and shared read-only by every engine.

For the transition L-1 -> L the operator is

    P = D_L I E_{L-1},       R = P^T = E_{L-1}^T I^T D_L

E expands a coarse vector through its constraints (hanging DoFs take their
weighted supports, boundary DoFs zero), I interpolates cell by cell with the
tensor-product child tables and D_L zeroes constrained fine DoFs.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Tuple

import numpy as np
import scipy.sparse as sp

from pymgtransfer.core.constraints import MGConstraints
from pymgtransfer.core.mg_dofhandler import MGDofHandler
from pymgtransfer.fem.reference import SUPPORTED_DEGREES, TensorElement, get_reference
from pymgtransfer.transfer.errors import (
    HierarchyInconsistencyError,
    TransferContractError,
    UnsupportedElementError,
)

logger = logging.getLogger(__name__)


def _freeze(arr, dtype) -> np.ndarray:
    out = np.ascontiguousarray(arr, dtype=dtype).copy()
    out.setflags(write=False)
    return out


@dataclass(frozen=True)
class LevelTransferMetadata:
    """
    Transfer data between level mesh ``level-1`` (coarse) and ``level`` (fine).

    Per cell of the fine level mesh (one unit of work each):

    child_index         (n_cells, dim)   child position per direction, 2 = carried over
    coarse_indices      (n_cells, n_loc) parent cell DoFs on the coarse level
    fine_indices        (n_cells, n_loc) cell DoFs on the fine level
    write_mask          (n_cells, n_loc) prolongation ownership, one writer per fine DoF
    restriction_weights (n_cells, n_loc) 1/valence, 0 on constrained fine DoFs

    Per DoF:

    fine_constrained    (n_fine,)  boundary or hanging on the fine level
    coarse_boundary_dofs, coarse_hanging_*   coarse constraints, CSR over hanging DoFs
    gather_*            CSR over coarse DoFs: row j of E (value of coarse DoF j
                        in terms of unconstrained DoFs)
    reduce_*            CSR over coarse DoFs: row j of E^T S, the contribution
                        slots ``cell * n_loc + k`` and weights summing into j
    """
    level: int
    element: TensorElement
    n_coarse_dofs: int
    n_fine_dofs: int
    prolongation_matrices: np.ndarray
    child_index: np.ndarray
    coarse_indices: np.ndarray
    fine_indices: np.ndarray
    write_mask: np.ndarray
    restriction_weights: np.ndarray
    fine_constrained: np.ndarray
    coarse_boundary_dofs: np.ndarray
    coarse_hanging_dofs: np.ndarray
    coarse_hanging_ptr: np.ndarray
    coarse_hanging_supports: np.ndarray
    coarse_hanging_weights: np.ndarray
    gather_ptr: np.ndarray
    gather_index: np.ndarray
    gather_weight: np.ndarray
    reduce_ptr: np.ndarray
    reduce_slot: np.ndarray
    reduce_weight: np.ndarray

    @property
    def dim(self) -> int:
        return self.element.dim

    @property
    def degree(self) -> int:
        return self.element.degree

    @property
    def n_cells(self) -> int:
        return int(self.fine_indices.shape[0])

    @property
    def n_loc(self) -> int:
        return int(self.fine_indices.shape[1])

    def __repr__(self):
        return (f"<LevelTransferMetadata {self.level - 1}->{self.level} {self.element.name} "
                f"cells={self.n_cells} dofs={self.n_coarse_dofs}->{self.n_fine_dofs}>")


def select_level(metadata, level: int) -> LevelTransferMetadata:
    """Metadata of the transition level-1 -> level; level 0 has no coarser partner."""
    if not isinstance(level, (int, np.integer)) or isinstance(level, bool):
        raise TransferContractError(f"level must be an integer, got {level!r}")
    if level < 1 or level > len(metadata):
        raise TransferContractError(
            f"transfer requested at level {level}; valid levels are 1..{len(metadata)}")
    return metadata[level - 1]


class LevelMetadataBuilder:
    """Builds `LevelTransferMetadata` for every level transition of a hierarchy."""

    def build(self, hierarchy: MGDofHandler, constraints: MGConstraints) -> Tuple[LevelTransferMetadata, ...]:
        """
        Parameters
        ----------
        hierarchy : MGDofHandler
            Distributed level DoFs; must be current with its triangulation.
        constraints : MGConstraints
            Hanging-node and boundary constraints of the same hierarchy.

        Returns
        -------
        tuple of LevelTransferMetadata
            Entry i serves the transition i -> i+1.
        """
        try:
            element = TensorElement.lookup(hierarchy.dim, hierarchy.degree)
        except KeyError:
            raise UnsupportedElementError(
                f"no transfer table for dim={hierarchy.dim}, degree={hierarchy.degree} "
                f"(degrees {SUPPORTED_DEGREES} in 2D and 3D)") from None
        if not hierarchy.is_current:
            raise HierarchyInconsistencyError(
                "level dofs are not distributed or the triangulation changed since; redistribute and rebuild")
        if hierarchy.n_levels < 2:
            raise TransferContractError("hierarchy has a single level, nothing to transfer against")
        if constraints.n_levels != hierarchy.n_levels:
            raise HierarchyInconsistencyError(
                f"constraints cover {constraints.n_levels} levels, hierarchy has {hierarchy.n_levels}")
        for L in range(hierarchy.n_levels):
            if constraints.level(L).n_dofs != hierarchy.n_dofs(L):
                raise HierarchyInconsistencyError(
                    f"level {L}: constraints sized for {constraints.level(L).n_dofs} dofs, "
                    f"hierarchy has {hierarchy.n_dofs(L)}")

        ref = get_reference(hierarchy.dim, hierarchy.degree)
        out = tuple(self._build_level(hierarchy, constraints, ref, element, L)
                    for L in range(1, hierarchy.n_levels))
        logger.debug(f"built transfer metadata for {len(out)} transitions ({element.name})")
        return out

    # ------------------------------------------------------------------
    @staticmethod
    def _check_cell_dofs(cell_dofs: np.ndarray, n_dofs: int, n_loc: int, level: int) -> None:
        if cell_dofs.ndim != 2 or cell_dofs.shape[1] != n_loc:
            raise HierarchyInconsistencyError(
                f"level {level}: cell dof map has shape {cell_dofs.shape}, expected (n, {n_loc})")
        if cell_dofs.size and (cell_dofs.min() < 0 or cell_dofs.max() >= n_dofs):
            raise HierarchyInconsistencyError(
                f"level {level}: cell references dof outside 0..{n_dofs - 1}")

    def _build_level(self, hierarchy, constraints, ref, element, L) -> LevelTransferMetadata:
        fine = hierarchy.level_mesh(L)
        coarse = hierarchy.level_mesh(L - 1)
        n_fine, n_coarse = fine.n_dofs, coarse.n_dofs
        self._check_cell_dofs(fine.cell_dofs, n_fine, ref.n_loc, L)
        self._check_cell_dofs(coarse.cell_dofs, n_coarse, ref.n_loc, L - 1)

        parent_position, child_index = hierarchy.transfer_relations(L)
        if parent_position.shape[0] != fine.n_cells or child_index.shape != (fine.n_cells, ref.dim):
            raise HierarchyInconsistencyError(f"level {L}: parent relation does not cover every cell")
        if parent_position.size and (parent_position.min() < 0 or parent_position.max() >= coarse.n_cells):
            raise HierarchyInconsistencyError(f"level {L}: parent outside level mesh {L - 1}")
        if np.any((child_index < 0) | (child_index > 2)):
            raise HierarchyInconsistencyError(f"level {L}: child index outside 0..2")

        coarse_indices = coarse.cell_dofs[parent_position]
        fine_indices = fine.cell_dofs
        flat = fine_indices.ravel()

        valence = np.bincount(flat, minlength=n_fine)
        if np.any(valence == 0):
            raise HierarchyInconsistencyError(
                f"level {L}: {int(np.count_nonzero(valence == 0))} dofs belong to no cell")
        _, first = np.unique(flat, return_index=True)
        write_mask = np.zeros(flat.shape[0], dtype=bool)
        write_mask[first] = True

        fc = constraints.level(L)
        fine_constrained = fc.constrained_mask
        inv_valence = np.where(fine_constrained, 0.0, 1.0 / valence)
        restriction_weights = inv_valence[fine_indices]

        cc = constraints.level(L - 1)
        E = cc.expansion_matrix()
        n_slots = flat.shape[0]
        S = sp.csr_matrix((np.ones(n_slots), (coarse_indices.ravel(), np.arange(n_slots))),
                          shape=(n_coarse, n_slots))
        R = (E.T @ S).tocsr()
        R.sort_indices()

        logger.debug(f"level {L}: {fine.n_cells} cells, dofs {n_coarse}->{n_fine}, "
                     f"fine constrained {int(fine_constrained.sum())}, "
                     f"coarse hanging {cc.n_hanging}, reduce plan nnz {R.nnz}")

        i64, f64 = np.int64, np.float64
        return LevelTransferMetadata(
            level=L,
            element=element,
            n_coarse_dofs=n_coarse,
            n_fine_dofs=n_fine,
            prolongation_matrices=_freeze(ref.prolongation_1d, f64),
            child_index=_freeze(child_index, i64),
            coarse_indices=_freeze(coarse_indices, i64),
            fine_indices=_freeze(fine_indices, i64),
            write_mask=_freeze(write_mask.reshape(fine_indices.shape), np.bool_),
            restriction_weights=_freeze(restriction_weights, f64),
            fine_constrained=_freeze(fine_constrained, np.bool_),
            coarse_boundary_dofs=_freeze(cc.boundary_dofs, i64),
            coarse_hanging_dofs=_freeze(cc.hanging_dofs, i64),
            coarse_hanging_ptr=_freeze(cc.hanging_ptr, i64),
            coarse_hanging_supports=_freeze(cc.hanging_supports, i64),
            coarse_hanging_weights=_freeze(cc.hanging_weights, f64),
            gather_ptr=_freeze(E.indptr, i64),
            gather_index=_freeze(E.indices, i64),
            gather_weight=_freeze(E.data, f64),
            reduce_ptr=_freeze(R.indptr, i64),
            reduce_slot=_freeze(R.indices, i64),
            reduce_weight=_freeze(R.data, f64),
        )
