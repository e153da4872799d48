"""pymgtransfer.transfer.sequential

Reference transfer: one thread, cells in a fixed order, host arrays.
"""
from __future__ import annotations

import logging

import numba
import numpy as np

from pymgtransfer.transfer.errors import TransferContractError
from pymgtransfer.transfer.kernels import apply_tensor_product
from pymgtransfer.transfer.metadata import LevelTransferMetadata, select_level

logger = logging.getLogger(__name__)


@numba.njit(cache=True)
def _expand_constraints(vec, boundary, hanging, ptr, supports, weights):
    for b in boundary:
        vec[b] = 0.0
    for i in range(hanging.shape[0]):
        acc = 0.0
        for m in range(ptr[i], ptr[i + 1]):
            acc += weights[m] * vec[supports[m]]
        vec[hanging[i]] = acc


@numba.njit(cache=True)
def _distribute_constraints(vec, boundary, hanging, ptr, supports, weights):
    for i in range(hanging.shape[0]):
        h = hanging[i]
        v = vec[h]
        for m in range(ptr[i], ptr[i + 1]):
            vec[supports[m]] += weights[m] * v
        vec[h] = 0.0
    for b in boundary:
        vec[b] = 0.0


@numba.njit(cache=True)
def _prolongate_cells(dst, src, coarse_indices, fine_indices, child_index, matrices, write_mask):
    n_cells, n_loc = coarse_indices.shape
    local = np.empty(n_loc)
    out = np.empty(n_loc)
    work = np.empty(n_loc)
    for cell in range(n_cells):
        for k in range(n_loc):
            local[k] = src[coarse_indices[cell, k]]
        apply_tensor_product(local, out, work, matrices, child_index[cell], False)
        for k in range(n_loc):
            if write_mask[cell, k]:
                dst[fine_indices[cell, k]] = out[k]


@numba.njit(cache=True)
def _restrict_cells(dst, src, coarse_indices, fine_indices, child_index, matrices, weights):
    n_cells, n_loc = coarse_indices.shape
    local = np.empty(n_loc)
    out = np.empty(n_loc)
    work = np.empty(n_loc)
    for cell in range(n_cells):
        for k in range(n_loc):
            local[k] = src[fine_indices[cell, k]] * weights[cell, k]
        apply_tensor_product(local, out, work, matrices, child_index[cell], True)
        for k in range(n_loc):
            dst[coarse_indices[cell, k]] += out[k]


def _check_vector(vec, expected: int, name: str, writeable: bool = False) -> np.ndarray:
    if not isinstance(vec, np.ndarray) or vec.ndim != 1:
        raise TransferContractError(f"{name} must be a 1D numpy array")
    if vec.shape[0] != expected:
        raise TransferContractError(f"{name} has {vec.shape[0]} entries, level expects {expected}")
    if writeable:
        if vec.dtype != np.float64 or not vec.flags.writeable or not vec.flags.c_contiguous:
            raise TransferContractError(f"{name} must be a writeable contiguous float64 array")
        return vec
    return np.ascontiguousarray(vec, dtype=np.float64)


class SequentialTransferEngine:
    """
    Matrix-free multigrid transfer executed cell by cell on the host.

    Parameters
    ----------
    metadata : tuple of LevelTransferMetadata
        Output of `LevelMetadataBuilder.build`; never modified.
    """

    def __init__(self, metadata):
        self.metadata = tuple(metadata)

    @property
    def n_levels(self) -> int:
        return len(self.metadata) + 1

    def prolongate(self, level: int, dst: np.ndarray, src: np.ndarray) -> None:
        """dst (level) <- P src (level-1); every entry of dst is overwritten."""
        md: LevelTransferMetadata = select_level(self.metadata, level)
        src = _check_vector(src, md.n_coarse_dofs, "src")
        _check_vector(dst, md.n_fine_dofs, "dst", writeable=True)

        expanded = src.copy()
        _expand_constraints(expanded, md.coarse_boundary_dofs, md.coarse_hanging_dofs,
                            md.coarse_hanging_ptr, md.coarse_hanging_supports, md.coarse_hanging_weights)
        _prolongate_cells(dst, expanded, md.coarse_indices, md.fine_indices, md.child_index,
                          md.prolongation_matrices, md.write_mask)
        dst[md.fine_constrained] = 0.0

    def restrict_and_add(self, level: int, dst: np.ndarray, src: np.ndarray) -> None:
        """dst (level-1) += R src (level)."""
        md: LevelTransferMetadata = select_level(self.metadata, level)
        src = _check_vector(src, md.n_fine_dofs, "src")
        _check_vector(dst, md.n_coarse_dofs, "dst", writeable=True)

        contribution = np.zeros(md.n_coarse_dofs)
        _restrict_cells(contribution, src, md.coarse_indices, md.fine_indices, md.child_index,
                        md.prolongation_matrices, md.restriction_weights)
        _distribute_constraints(contribution, md.coarse_boundary_dofs, md.coarse_hanging_dofs,
                                md.coarse_hanging_ptr, md.coarse_hanging_supports, md.coarse_hanging_weights)
        dst += contribution
