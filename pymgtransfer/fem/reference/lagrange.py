from functools import lru_cache
import sympy as sp
import numpy as np

@lru_cache(maxsize=None)
def _lagrange_basis_1d(n: int):
    """Return equidistant nodes on [-1,1] and the 1D Lagrange basis as NUMPY-callable lambdas."""
    x = sp.symbols('x')
    nodes = np.linspace(-1.0, 1.0, n+1)
    L = []
    for i, xi in enumerate(nodes):
        num = 1
        den = 1.0
        for j, xj in enumerate(nodes):
            if i == j:
                continue
            num *= (x - xj)
            den *= (xi - xj)
        Li = sp.simplify(num/den)
        L.append(sp.lambdify(x, Li, 'numpy'))
    return nodes, L


def eval_basis_1d(n: int, points) -> np.ndarray:
    """
    Values of the degree-n 1D Lagrange basis at `points`.
    Returns shape (len(points), n+1): row a holds L_0..L_n at points[a].
    """
    _, L = _lagrange_basis_1d(n)
    pts = np.atleast_1d(np.asarray(points, dtype=float))
    out = np.empty((pts.size, n + 1), dtype=float)
    for j, f in enumerate(L):
        out[:, j] = np.broadcast_to(f(pts), pts.shape)
    # exact Kronecker values at the nodes
    out[np.abs(out) < 1e-14] = 0.0
    return out


@lru_cache(maxsize=None)
def prolongation_matrices_1d(n: int) -> np.ndarray:
    """
    1D embedding of the degree-n space into its two children.

    Returns M of shape (3, n+1, n+1):
      M[c][a, j] = L_j(xi_a^c) for the child c in {0 (left), 1 (right)},
      where xi_a^c = (nodes[a] + 2c - 1) / 2 is fine node a mapped into the parent;
      M[2] is the identity (cell carried over without refinement).
    """
    nodes, _ = _lagrange_basis_1d(n)
    M = np.empty((3, n + 1, n + 1), dtype=float)
    for c in (0, 1):
        M[c] = eval_basis_1d(n, 0.5 * (nodes + 2 * c - 1))
    M[2] = np.eye(n + 1)
    M.setflags(write=False)
    return M


@lru_cache(maxsize=None)
def patch_interpolation_1d(n: int) -> np.ndarray:
    """
    Parent basis at the 2n+1 fine nodes of the two-child patch, shape (2n+1, n+1).
    Rows 0..n coincide with child 0, rows n..2n with child 1.
    """
    M = prolongation_matrices_1d(n)
    V = np.vstack([M[0], M[1][1:]])
    V.setflags(write=False)
    return V


def patch_weights(n: int, dim: int, offsets) -> np.ndarray:
    """
    Tensor-product parent basis values at two-child patch points.

    offsets: (m, dim) integers in 0..2n, x first
    returns: (m, (n+1)**dim), columns in lexicographic local order (x fastest)
    """
    offsets = np.asarray(offsets, dtype=np.int64).reshape(-1, dim)
    local = np.indices((n + 1,) * dim).reshape(dim, -1).T[:, ::-1]
    V = patch_interpolation_1d(n)
    W = np.ones((offsets.shape[0], local.shape[0]))
    for d in range(dim):
        W *= V[offsets[:, d]][:, local[:, d]]
    return W


if __name__ == "__main__":
    for n in (1, 2, 3, 4):
        nodes, _ = _lagrange_basis_1d(n)
        B = eval_basis_1d(n, nodes)
        assert np.allclose(B, np.eye(n + 1))
        M = prolongation_matrices_1d(n)
        assert np.allclose(M[:2].sum(axis=2), 1.0)
    print("lagrange OK")
