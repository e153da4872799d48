"""pymgtransfer.transfer.kernels

Cell-local building blocks shared by the transfer engines.
"""
import numba
import numpy as np

from pymgtransfer.fem.reference import IDENTITY_CHILD


@numba.njit(cache=True)
def apply_tensor_product(values, out, work, matrices, child, transpose):
    """
    Sum-factorized action of kron(M_z, M_y, M_x) (or its transpose) on a
    lexicographic local vector (x fastest).

    matrices : (3, n1, n1) 1D factors, indexed by the child position per direction
    child    : (dim,) child position per direction, 2 = identity
    """
    n1 = matrices.shape[1]
    n_loc = values.shape[0]
    for i in range(n_loc):
        out[i] = values[i]
    stride = 1
    for d in range(child.shape[0]):
        c = child[d]
        if c == IDENTITY_CHILD:
            stride *= n1
            continue
        m = matrices[c]
        for i in range(n_loc):
            work[i] = out[i]
        for i in range(n_loc):
            a = (i // stride) % n1
            base = i - a * stride
            acc = 0.0
            if transpose:
                for j in range(n1):
                    acc += m[j, a] * work[base + j * stride]
            else:
                for j in range(n1):
                    acc += m[a, j] * work[base + j * stride]
            out[i] = acc
        stride *= n1


def apply_cell_matrix(matrices, child, values, transpose=False):
    """Python-facing wrapper for one cell, mostly for checks against the dense table."""
    values = np.ascontiguousarray(values, dtype=np.float64)
    out = np.empty_like(values)
    work = np.empty_like(values)
    apply_tensor_product(values, out, work, np.ascontiguousarray(matrices),
                         np.ascontiguousarray(child, dtype=np.int64), bool(transpose))
    return out
