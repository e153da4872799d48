import numpy as np
import pytest

from pymgtransfer.core.mg_dofhandler import MGDofHandler
from pymgtransfer.core.triangulation import Triangulation
from pymgtransfer.utils.meshgen import transfer_test_hierarchy


@pytest.fixture(scope="module")
def adaptive_q2():
    dof_handler, _ = transfer_test_hierarchy(2, 2, adaptive=True, n_refinements=1)
    return dof_handler


class TestMGDofHandler:

    @pytest.mark.parametrize("dim,p", [(2, 1), (2, 3), (3, 2)])
    def test_uniform_dof_counts(self, dim, p):
        tria = Triangulation(dim, repetitions=2)
        tria.refine_global(2)
        dh = MGDofHandler(tria, p)
        dh.distribute_mg_dofs()
        assert dh.n_levels == 3
        for L in range(3):
            assert dh.n_dofs(L) == (2 * 2 ** L * p + 1) ** dim
            assert dh.level_mesh(L).cell_dofs.shape == (tria.n_cells(L), (p + 1) ** dim)

    def test_requires_distribution(self):
        dh = MGDofHandler(Triangulation(2), 1)
        assert not dh.is_current
        with pytest.raises(ValueError):
            dh.level_mesh(0)

    def test_refinement_makes_numbering_stale(self):
        tria = Triangulation(2)
        dh = MGDofHandler(tria, 1)
        dh.distribute_mg_dofs()
        assert dh.is_current
        tria.refine_global(1)
        assert not dh.is_current

    def test_local_order_is_lexicographic(self):
        tria = Triangulation(2, repetitions=1)
        dh = MGDofHandler(tria, 2)
        dh.distribute_mg_dofs()
        mesh = dh.level_mesh(0)
        xy = mesh.dof_coordinates()[mesh.cell_dofs[0]]
        np.testing.assert_allclose(xy[:4], [[0.0, 0.0], [0.5, 0.0], [1.0, 0.0], [0.0, 0.5]])

    def test_level_mesh_covers_domain(self, adaptive_q2):
        tria = adaptive_q2.triangulation
        for L in range(adaptive_q2.n_levels):
            mesh = adaptive_q2.level_mesh(L)
            area = np.sum(np.array([tria.cell_size(l) for l in mesh.cell_levels]) ** 2)
            assert area == pytest.approx(1.0)

    def test_transfer_relations(self, adaptive_q2):
        tria = adaptive_q2.triangulation
        L = adaptive_q2.n_levels - 1
        fine = adaptive_q2.level_mesh(L)
        coarse = adaptive_q2.level_mesh(L - 1)
        parent, child = adaptive_q2.transfer_relations(L)

        g = fine.group(L)
        assert np.all(child[g] <= 1)
        # carried-over cells are their own parent
        carried = slice(0, g.start)
        assert g.start > 0
        assert np.all(child[carried] == 2)
        np.testing.assert_array_equal(coarse.cell_levels[parent[carried]], fine.cell_levels[carried])
        np.testing.assert_array_equal(coarse.cell_rows[parent[carried]], fine.cell_rows[carried])

        # refined cells lie inside their parent
        fc = tria.cell_centers(fine.cell_levels[g], fine.cell_rows[g])
        pc = tria.cell_centers(coarse.cell_levels[parent[g]], coarse.cell_rows[parent[g]])
        h = tria.cell_size(L - 1)
        assert np.all(np.abs(fc - pc) < 0.5 * h)

    def test_transfer_relations_level_range(self, adaptive_q2):
        with pytest.raises(ValueError):
            adaptive_q2.transfer_relations(0)
        with pytest.raises(ValueError):
            adaptive_q2.transfer_relations(adaptive_q2.n_levels)
