"""pymgtransfer.utils.meshgen
Hierarchy generators for the transfer checks.
"""
import logging
from enum import Enum
from typing import Optional, Tuple

import numpy as np

from pymgtransfer.core.constraints import MGConstraints
from pymgtransfer.core.mg_dofhandler import MGDofHandler
from pymgtransfer.core.triangulation import Triangulation

__all__ = [
    "GridCase",
    "subdivided_hyper_cube",
    "default_refinements",
    "transfer_test_hierarchy",
    "refine_mesh",
    "create_mesh",
]

logger = logging.getLogger(__name__)

# shells |c| refined one after the other by the adaptive transfer check
RING_REFINEMENTS = ((0.0, 0.5), (0.3, 0.4), (0.33, 0.37))


class GridCase(Enum):
    UNIFORM = "uniform"
    NONUNIFORM = "nonuniform"
    RANDOM = "random"


def subdivided_hyper_cube(dim: int, repetitions: int = 2, left: float = 0.0, right: float = 1.0) -> Triangulation:
    return Triangulation(dim, repetitions=repetitions, left=left, right=right)


def default_refinements(dim: int, degree: int, adaptive: bool) -> int:
    """Global refinements of the transfer check; fewer in 3D and for high degrees."""
    base = 3 if adaptive else 4
    return base + (3 - dim) + (1 if degree < 3 else 0)


def _refine_ring(tria: Triangulation, inner: float, outer: float) -> None:
    def criterion(centers):
        r = np.linalg.norm(centers, axis=1)
        return (r > inner) & (r < outer)
    tria.refine_where(criterion)


def transfer_test_hierarchy(dim: int, degree: int, adaptive: bool = False,
                            n_refinements: Optional[int] = None) -> Tuple[MGDofHandler, MGConstraints]:
    """
    Level DoFs and constraints of the transfer check on [0, 1]^dim.

    The cube starts with 2 cells per direction and is refined globally
    `n_refinements` times; the adaptive variant then refines three nested
    shells around the origin. Every boundary DoF is constrained to zero.
    """
    if n_refinements is None:
        n_refinements = default_refinements(dim, degree, adaptive)
    tria = subdivided_hyper_cube(dim, 2)
    tria.refine_global(n_refinements)
    if adaptive:
        for inner, outer in RING_REFINEMENTS:
            _refine_ring(tria, inner, outer)

    dof_handler = MGDofHandler(tria, degree)
    dof_handler.distribute_mg_dofs()
    constraints = MGConstraints(dof_handler)
    constraints.make_zero_boundary_constraints()
    logger.debug(f"transfer hierarchy dim={dim} Q{degree} adaptive={adaptive}: {tria!r}")
    return dof_handler, constraints


def refine_mesh(tria: Triangulation, grid_case: GridCase, seed: int = 0) -> None:
    """One refinement step of the cube cases."""
    if grid_case == GridCase.UNIFORM:
        tria.refine_global(1)
    elif grid_case == GridCase.NONUNIFORM:
        tria.refine_where(lambda c: np.all(c > 0.2, axis=1))
    elif grid_case == GridCase.RANDOM:
        rng = np.random.default_rng(seed)
        tria.refine(rng.random(tria.n_active_cells()) < 0.5)
    else:
        raise ValueError(f"unknown grid case {grid_case!r}")


def create_mesh(dim: int, grid_case: GridCase = GridCase.UNIFORM, n_steps: int = 1, seed: int = 0) -> Triangulation:
    """Cube [-1, 1]^dim refined once globally, 3-dim more times, then `n_steps` times by `grid_case`."""
    tria = subdivided_hyper_cube(dim, 1, -1.0, 1.0)
    tria.refine_global(1)
    tria.refine_global(3 - dim)
    for step in range(n_steps):
        refine_mesh(tria, grid_case, seed + step)
    return tria
