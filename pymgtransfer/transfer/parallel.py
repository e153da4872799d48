"""pymgtransfer.transfer.parallel

Data-parallel transfer: one independent unit of work per cell.

Prolongation writes are disjoint by construction (``write_mask`` gives each
fine DoF exactly one owning cell). Restriction targets overlap, so the
contributions are never read-modify-written concurrently:

* ``"buckets"``: every cell writes its local contributions into its own
  slots, then every coarse DoF sums its slots through the ``reduce_*`` plan
  (hanging redistribution and boundary removal are folded into the plan).
  Deterministic; the only mode of the ``"cpu"`` device.
* ``"atomic"``: every cell adds its contributions straight onto the
  unconstrained supports of each coarse DoF with `cuda.atomic.add`.
"""
from __future__ import annotations

import logging

import numba
import numpy as np

from pymgtransfer.transfer.errors import TransferContractError, UnsupportedElementError
from pymgtransfer.transfer.kernels import apply_tensor_product
from pymgtransfer.transfer.metadata import LevelTransferMetadata, select_level
from pymgtransfer.transfer.vector import DEVICES, DeviceVector, _cuda

logger = logging.getLogger(__name__)

ACCUMULATION_MODES = ("buckets", "atomic")

_DEVICE_FIELDS = (
    "prolongation_matrices", "child_index", "coarse_indices", "fine_indices", "write_mask",
    "restriction_weights", "fine_constrained", "gather_ptr", "gather_index", "gather_weight",
    "reduce_ptr", "reduce_slot", "reduce_weight",
)


@numba.njit(cache=True, parallel=True)
def _prolongate_parallel(dst, src, coarse_indices, fine_indices, child_index, matrices,
                         write_mask, fine_constrained, gather_ptr, gather_index, gather_weight):
    n_cells, n_loc = coarse_indices.shape
    for cell in numba.prange(n_cells):
        local = np.empty(n_loc)
        out = np.empty(n_loc)
        work = np.empty(n_loc)
        for k in range(n_loc):
            j = coarse_indices[cell, k]
            acc = 0.0
            for m in range(gather_ptr[j], gather_ptr[j + 1]):
                acc += gather_weight[m] * src[gather_index[m]]
            local[k] = acc
        apply_tensor_product(local, out, work, matrices, child_index[cell], False)
        for k in range(n_loc):
            if write_mask[cell, k]:
                f = fine_indices[cell, k]
                if fine_constrained[f]:
                    dst[f] = 0.0
                else:
                    dst[f] = out[k]


@numba.njit(cache=True, parallel=True)
def _restrict_buckets(buckets, src, coarse_indices, fine_indices, child_index, matrices, weights):
    n_cells, n_loc = coarse_indices.shape
    for cell in numba.prange(n_cells):
        local = np.empty(n_loc)
        out = np.empty(n_loc)
        work = np.empty(n_loc)
        for k in range(n_loc):
            local[k] = src[fine_indices[cell, k]] * weights[cell, k]
        apply_tensor_product(local, out, work, matrices, child_index[cell], True)
        for k in range(n_loc):
            buckets[cell * n_loc + k] = out[k]


@numba.njit(cache=True, parallel=True)
def _reduce_buckets(dst, buckets, reduce_ptr, reduce_slot, reduce_weight):
    for j in numba.prange(dst.shape[0]):
        acc = 0.0
        for m in range(reduce_ptr[j], reduce_ptr[j + 1]):
            acc += reduce_weight[m] * buckets[reduce_slot[m]]
        dst[j] += acc


class ParallelTransferEngine:
    """
    Matrix-free multigrid transfer on a data-parallel device.

    Parameters
    ----------
    metadata : tuple of LevelTransferMetadata
        Output of `LevelMetadataBuilder.build`, shared read-only.
    device : {'cpu', 'cuda'}
        'cpu' runs numba-threaded kernels, 'cuda' numba.cuda kernels.
    accumulation : {'buckets', 'atomic'}, optional
        Restriction accumulation; defaults to 'buckets' on cpu, 'atomic' on cuda.
    """

    def __init__(self, metadata, device: str = "cpu", accumulation: str = None):
        if device not in DEVICES:
            raise TransferContractError(f"unknown device {device!r}; choose from {DEVICES}")
        if accumulation is None:
            accumulation = "buckets" if device == "cpu" else "atomic"
        if accumulation not in ACCUMULATION_MODES:
            raise TransferContractError(f"unknown accumulation {accumulation!r}; choose from {ACCUMULATION_MODES}")
        if device == "cpu" and accumulation == "atomic":
            raise TransferContractError("atomic accumulation needs the 'cuda' device")
        self.metadata = tuple(metadata)
        self.device = device
        self.accumulation = accumulation
        self._device_metadata = None
        if device == "cuda":
            self._upload()

    @property
    def n_levels(self) -> int:
        return len(self.metadata) + 1

    def _upload(self) -> None:
        from pymgtransfer.transfer import cuda_kernels
        cuda = _cuda()
        self._device_metadata = []
        for md in self.metadata:
            if md.n_loc > cuda_kernels.MAX_CELL_DOFS:
                raise UnsupportedElementError(
                    f"{md.element.name} needs {md.n_loc} local dofs, cuda kernels hold {cuda_kernels.MAX_CELL_DOFS}")
            self._device_metadata.append({f: cuda.to_device(getattr(md, f)) for f in _DEVICE_FIELDS})
        logger.debug(f"uploaded transfer metadata for {len(self.metadata)} transitions to cuda")

    def _check_vector(self, vec, expected: int, name: str) -> None:
        if not isinstance(vec, DeviceVector):
            raise TransferContractError(f"{name} must be a DeviceVector, got {type(vec).__name__}")
        if vec.device != self.device:
            raise TransferContractError(f"{name} lives on {vec.device!r}, engine runs on {self.device!r}")
        if vec.size != expected:
            raise TransferContractError(f"{name} has {vec.size} entries, level expects {expected}")

    # ------------------------------------------------------------------
    def prolongate(self, level: int, dst: DeviceVector, src: DeviceVector) -> None:
        """dst (level) <- P src (level-1); every entry of dst is overwritten."""
        md: LevelTransferMetadata = select_level(self.metadata, level)
        self._check_vector(src, md.n_coarse_dofs, "src")
        self._check_vector(dst, md.n_fine_dofs, "dst")
        if self.device == "cpu":
            _prolongate_parallel(dst.data, src.data, md.coarse_indices, md.fine_indices, md.child_index,
                                 md.prolongation_matrices, md.write_mask, md.fine_constrained,
                                 md.gather_ptr, md.gather_index, md.gather_weight)
            return
        from pymgtransfer.transfer import cuda_kernels as ck
        d = self._device_metadata[level - 1]
        ck.prolongate_kernel[ck.blocks_for(md.n_cells), ck.THREADS_PER_BLOCK](
            dst.data, src.data, d["coarse_indices"], d["fine_indices"], d["child_index"],
            d["prolongation_matrices"], d["write_mask"], d["fine_constrained"],
            d["gather_ptr"], d["gather_index"], d["gather_weight"])

    def restrict_and_add(self, level: int, dst: DeviceVector, src: DeviceVector) -> None:
        """dst (level-1) += R src (level)."""
        md: LevelTransferMetadata = select_level(self.metadata, level)
        self._check_vector(src, md.n_fine_dofs, "src")
        self._check_vector(dst, md.n_coarse_dofs, "dst")
        n_slots = md.n_cells * md.n_loc
        if self.device == "cpu":
            buckets = np.empty(n_slots)
            _restrict_buckets(buckets, src.data, md.coarse_indices, md.fine_indices, md.child_index,
                              md.prolongation_matrices, md.restriction_weights)
            _reduce_buckets(dst.data, buckets, md.reduce_ptr, md.reduce_slot, md.reduce_weight)
            return
        from pymgtransfer.transfer import cuda_kernels as ck
        cuda = _cuda()
        d = self._device_metadata[level - 1]
        if self.accumulation == "atomic":
            ck.restrict_atomic_kernel[ck.blocks_for(md.n_cells), ck.THREADS_PER_BLOCK](
                dst.data, src.data, d["coarse_indices"], d["fine_indices"], d["child_index"],
                d["prolongation_matrices"], d["restriction_weights"],
                d["gather_ptr"], d["gather_index"], d["gather_weight"])
            return
        buckets = cuda.device_array(n_slots, dtype=np.float64)
        ck.restrict_bucket_kernel[ck.blocks_for(md.n_cells), ck.THREADS_PER_BLOCK](
            buckets, src.data, d["coarse_indices"], d["fine_indices"], d["child_index"],
            d["prolongation_matrices"], d["restriction_weights"])
        ck.reduce_kernel[ck.blocks_for(md.n_coarse_dofs), ck.THREADS_PER_BLOCK](
            dst.data, buckets, d["reduce_ptr"], d["reduce_slot"], d["reduce_weight"])
