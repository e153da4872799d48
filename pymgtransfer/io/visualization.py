"""pymgtransfer.io.visualization"""
import numpy as np
from matplotlib.collections import LineCollection
import matplotlib.pyplot as plt
from typing import Optional

from pymgtransfer.core.constraints import MGConstraints
from pymgtransfer.core.mg_dofhandler import MGDofHandler

_DOF_STYLE = {
    "free": dict(color="black", s=6, zorder=3),
    "boundary": dict(color="tab:blue", marker="s", s=14, zorder=4),
    "hanging": dict(color="tab:red", marker="o", s=22, zorder=5),
}


def _cell_edges(mesh) -> np.ndarray:
    """Segments (n_cells * 4, 2, 2) of the cell outlines of a 2D level mesh."""
    h = mesh.spacing * mesh.degree * 2.0 ** (mesh.level - mesh.cell_levels)
    lo = mesh.origin + mesh.cell_index * h[:, None]
    hi = lo + h[:, None]
    x0, y0, x1, y1 = lo[:, 0], lo[:, 1], hi[:, 0], hi[:, 1]
    corners = [(x0, y0), (x1, y0), (x1, y1), (x0, y1)]
    segs = []
    for a, b in zip(corners, corners[1:] + corners[:1]):
        segs.append(np.stack([np.stack(a, axis=1), np.stack(b, axis=1)], axis=1))
    return np.concatenate(segs)


def plot_level_mesh(dof_handler: MGDofHandler, level: int, constraints: Optional[MGConstraints] = None,
                    *, plot_dofs=True, ax=None, show=False, title=None):
    """
    Plots one level mesh of a 2D hierarchy.

    Args:
        dof_handler (MGDofHandler): Distributed level DoFs.
        level (int): Level mesh to draw (all level-`level` cells plus coarser active cells).
        constraints (MGConstraints, optional): Marks boundary and hanging DoFs.
        plot_dofs (bool, optional): Scatter the DoF support points. Defaults to True.
        ax (matplotlib.axes.Axes, optional): Target axes; a new figure otherwise.
        show (bool, optional): Call `plt.show()`. Defaults to False.

    Returns:
        matplotlib.axes.Axes
    """
    if dof_handler.dim != 2:
        raise ValueError(f"plot_level_mesh draws 2D hierarchies only, got dim={dof_handler.dim}")
    mesh = dof_handler.level_mesh(level)
    if ax is None:
        _, ax = plt.subplots(figsize=(6, 6))

    ax.add_collection(LineCollection(_cell_edges(mesh), colors="0.3", linewidths=0.6))

    if plot_dofs:
        xy = mesh.dof_coordinates()
        kind = np.full(mesh.n_dofs, "free", dtype=object)
        if constraints is not None:
            lc = constraints.level(level)
            kind[lc.boundary_dofs] = "boundary"
            kind[lc.hanging_dofs] = "hanging"
        for name, style in _DOF_STYLE.items():
            sel = kind == name
            if sel.any():
                ax.scatter(xy[sel, 0], xy[sel, 1], label=f"{name} ({int(sel.sum())})", **style)
        ax.legend(loc="upper right", fontsize="small")

    tria = dof_handler.triangulation
    ax.set_xlim(tria.left, tria.right)
    ax.set_ylim(tria.left, tria.right)
    ax.set_aspect("equal")
    ax.set_title(title or f"level mesh {level}: Q{mesh.degree}, {mesh.n_cells} cells, {mesh.n_dofs} dofs")
    if show:
        plt.show()
    return ax
