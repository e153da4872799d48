# pymgtransfer.fem.reference
"""
Tensor-product Q_p reference elements and their two-level transfer tables.
"""
from enum import Enum
from functools import lru_cache
import numpy as np

from .lagrange import prolongation_matrices_1d

IDENTITY_CHILD = 2


class TensorElement(Enum):
    """(dimension, degree) pairs that have precomputed transfer tables."""
    Q1_2D = (2, 1)
    Q2_2D = (2, 2)
    Q3_2D = (2, 3)
    Q4_2D = (2, 4)
    Q1_3D = (3, 1)
    Q2_3D = (3, 2)
    Q3_3D = (3, 3)
    Q4_3D = (3, 4)

    @property
    def dim(self) -> int:
        return self.value[0]

    @property
    def degree(self) -> int:
        return self.value[1]

    @classmethod
    def lookup(cls, dim: int, degree: int) -> "TensorElement":
        try:
            return cls((int(dim), int(degree)))
        except ValueError:
            raise KeyError((dim, degree)) from None


SUPPORTED_DEGREES = tuple(sorted({e.degree for e in TensorElement}))


class TensorRef:
    """
    Q_p on [-1,1]^dim with lexicographic local ordering (x fastest):
    local index = i_x + (p+1) * (i_y + (p+1) * i_z).
    """
    def __init__(self, element: TensorElement):
        self.element = element
        self.dim = element.dim
        self.degree = element.degree
        self.n1 = self.degree + 1
        self.n_loc = self.n1 ** self.dim
        self.prolongation_1d = prolongation_matrices_1d(self.degree)   # (3, n1, n1)
        mi = np.indices((self.n1,) * self.dim).reshape(self.dim, -1).T
        # np.indices varies the last axis fastest; flip so x (axis 0) is fastest
        self.multi_indices = np.ascontiguousarray(mi[:, ::-1])
        self.multi_indices.setflags(write=False)

    def prolongation_matrix(self, child) -> np.ndarray:
        """Dense (n_loc, n_loc) embedding for a per-direction child index."""
        child = tuple(int(c) for c in child)
        if len(child) != self.dim:
            raise ValueError(f"child index needs {self.dim} entries, got {child}")
        out = np.ones((1, 1))
        for d in reversed(range(self.dim)):
            out = np.kron(out, self.prolongation_1d[child[d]])
        return out

    def __repr__(self):
        return f"<TensorRef Q{self.degree} dim={self.dim} n_loc={self.n_loc}>"


@lru_cache(maxsize=None)
def get_reference(dim: int, poly_order: int = 1) -> TensorRef:
    """Raises KeyError for (dim, poly_order) pairs without tables."""
    return TensorRef(TensorElement.lookup(dim, poly_order))
