"""pymgtransfer.transfer.cuda_kernels

`numba.cuda` kernels of the parallel transfer: one thread per cell of the
fine level mesh. Imported only when an engine targets the ``"cuda"`` device.
"""
from numba import cuda, float64

from pymgtransfer.fem.reference import IDENTITY_CHILD

# (p+1)**dim for Q4 in 3D
MAX_CELL_DOFS = 125
THREADS_PER_BLOCK = 128


def blocks_for(n: int) -> int:
    return max(1, (n + THREADS_PER_BLOCK - 1) // THREADS_PER_BLOCK)


@cuda.jit(device=True)
def _apply_tensor_product(values, out, work, matrices, child, n_loc, transpose):
    n1 = matrices.shape[1]
    for i in range(n_loc):
        out[i] = values[i]
    stride = 1
    for d in range(child.shape[0]):
        c = child[d]
        if c == IDENTITY_CHILD:
            stride *= n1
            continue
        for i in range(n_loc):
            work[i] = out[i]
        for i in range(n_loc):
            a = (i // stride) % n1
            base = i - a * stride
            acc = 0.0
            for j in range(n1):
                if transpose:
                    acc += matrices[c, j, a] * work[base + j * stride]
                else:
                    acc += matrices[c, a, j] * work[base + j * stride]
            out[i] = acc
        stride *= n1


@cuda.jit
def prolongate_kernel(dst, src, coarse_indices, fine_indices, child_index, matrices,
                      write_mask, fine_constrained, gather_ptr, gather_index, gather_weight):
    cell = cuda.grid(1)
    if cell >= coarse_indices.shape[0]:
        return
    n_loc = coarse_indices.shape[1]
    local = cuda.local.array(MAX_CELL_DOFS, float64)
    out = cuda.local.array(MAX_CELL_DOFS, float64)
    work = cuda.local.array(MAX_CELL_DOFS, float64)
    for k in range(n_loc):
        j = coarse_indices[cell, k]
        acc = 0.0
        for m in range(gather_ptr[j], gather_ptr[j + 1]):
            acc += gather_weight[m] * src[gather_index[m]]
        local[k] = acc
    _apply_tensor_product(local, out, work, matrices, child_index[cell], n_loc, False)
    for k in range(n_loc):
        if write_mask[cell, k]:
            f = fine_indices[cell, k]
            if fine_constrained[f]:
                dst[f] = 0.0
            else:
                dst[f] = out[k]


@cuda.jit
def restrict_atomic_kernel(dst, src, coarse_indices, fine_indices, child_index, matrices,
                           weights, gather_ptr, gather_index, gather_weight):
    cell = cuda.grid(1)
    if cell >= coarse_indices.shape[0]:
        return
    n_loc = coarse_indices.shape[1]
    local = cuda.local.array(MAX_CELL_DOFS, float64)
    out = cuda.local.array(MAX_CELL_DOFS, float64)
    work = cuda.local.array(MAX_CELL_DOFS, float64)
    for k in range(n_loc):
        local[k] = src[fine_indices[cell, k]] * weights[cell, k]
    _apply_tensor_product(local, out, work, matrices, child_index[cell], n_loc, True)
    for k in range(n_loc):
        j = coarse_indices[cell, k]
        v = out[k]
        # row j of E: the unconstrained DoFs that receive coarse DoF j's share
        for m in range(gather_ptr[j], gather_ptr[j + 1]):
            cuda.atomic.add(dst, gather_index[m], gather_weight[m] * v)


@cuda.jit
def restrict_bucket_kernel(buckets, src, coarse_indices, fine_indices, child_index, matrices, weights):
    cell = cuda.grid(1)
    if cell >= coarse_indices.shape[0]:
        return
    n_loc = coarse_indices.shape[1]
    local = cuda.local.array(MAX_CELL_DOFS, float64)
    out = cuda.local.array(MAX_CELL_DOFS, float64)
    work = cuda.local.array(MAX_CELL_DOFS, float64)
    for k in range(n_loc):
        local[k] = src[fine_indices[cell, k]] * weights[cell, k]
    _apply_tensor_product(local, out, work, matrices, child_index[cell], n_loc, True)
    for k in range(n_loc):
        buckets[cell * n_loc + k] = out[k]


@cuda.jit
def reduce_kernel(dst, buckets, reduce_ptr, reduce_slot, reduce_weight):
    j = cuda.grid(1)
    if j >= dst.shape[0]:
        return
    acc = 0.0
    for m in range(reduce_ptr[j], reduce_ptr[j + 1]):
        acc += reduce_weight[m] * buckets[reduce_slot[m]]
    dst[j] += acc
