import numpy as np
import pytest

from pymgtransfer.core.triangulation import Triangulation


def max_vertex_level_jump(tria):
    """Largest level difference between active cells sharing a vertex."""
    levels, rows = tria.active_cells()
    top = tria.n_levels - 1
    idx = tria.lattice_index(levels, rows)
    size = 2 ** (top - levels)
    jump = 0
    corners = {}
    for lvl, i, s in zip(levels, idx, size):
        for off in np.ndindex(*(2,) * tria.dim):
            key = tuple((i + np.array(off)) * s)
            lo, hi = corners.get(key, (lvl, lvl))
            corners[key] = (min(lo, lvl), max(hi, lvl))
    for lo, hi in corners.values():
        jump = max(jump, hi - lo)
    return jump


class TestTriangulation:

    @pytest.mark.parametrize("dim", [1, 2, 3])
    def test_global_refinement_counts(self, dim):
        tria = Triangulation(dim, repetitions=2)
        tria.refine_global(2)
        assert tria.n_levels == 3
        assert tria.n_active_cells() == (2 * 4) ** dim
        assert [tria.n_cells(l) for l in range(3)] == [2 ** dim, 4 ** dim, 8 ** dim]
        # parents stay in the tree
        assert not tria.levels[0].active.any()

    def test_children_are_contiguous_and_lexicographic(self):
        tria = Triangulation(2, repetitions=1)
        tria.refine_global(1)
        lv = tria.levels[1]
        assert tria.levels[0].first_child[0] == 0
        np.testing.assert_array_equal(lv.index, [[0, 0], [1, 0], [0, 1], [1, 1]])
        np.testing.assert_array_equal(lv.parent, [0, 0, 0, 0])

    def test_cell_centers(self):
        tria = Triangulation(2, repetitions=2, left=-1.0, right=1.0)
        levels, rows = tria.active_cells()
        centers = tria.cell_centers(levels, rows)
        np.testing.assert_allclose(centers, [[-0.5, -0.5], [0.5, -0.5], [-0.5, 0.5], [0.5, 0.5]])

    def test_refine_by_pairs(self):
        tria = Triangulation(2, repetitions=2)
        tria.refine([(0, 3)])
        assert tria.n_cells(1) == 4
        assert tria.n_active_cells() == 3 + 4
        np.testing.assert_array_equal(tria.levels[1].parent, [3, 3, 3, 3])

    def test_refine_rejects_inactive_pair(self):
        tria = Triangulation(2, repetitions=2)
        tria.refine_global(1)
        with pytest.raises(ValueError):
            tria.refine([(0, 0)])

    def test_refine_rejects_bad_flag_shape(self):
        tria = Triangulation(2)
        with pytest.raises(ValueError):
            tria.refine(np.ones(3, dtype=bool))

    @pytest.mark.parametrize("dim", [2, 3])
    def test_corner_refinement_is_balanced(self, dim):
        # ARRANGE: repeatedly refine only the cell touching the origin
        tria = Triangulation(dim, repetitions=2)
        for _ in range(4):
            tria.refine_where(lambda c: np.all(c < 0.5 ** tria.n_levels, axis=1))
        # ASSERT: closure kept neighbours within one level
        assert tria.n_levels == 5
        assert max_vertex_level_jump(tria) <= 1

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            Triangulation(4)
        with pytest.raises(ValueError):
            Triangulation(2, repetitions=0)
        with pytest.raises(ValueError):
            Triangulation(2, left=1.0, right=0.0)
