import dataclasses

import numpy as np
import pytest

from pymgtransfer.core.constraints import MGConstraints
from pymgtransfer.core.mg_dofhandler import MGDofHandler
from pymgtransfer.core.triangulation import Triangulation
from pymgtransfer.fem.reference import TensorElement
from pymgtransfer.transfer.errors import (HierarchyInconsistencyError, TransferContractError,
                                          UnsupportedElementError)
from pymgtransfer.transfer.metadata import LevelMetadataBuilder, select_level
from pymgtransfer.utils.meshgen import transfer_test_hierarchy


def build_hierarchy(dim, degree, n_refinements):
    tria = Triangulation(dim, repetitions=2)
    tria.refine_global(n_refinements)
    dh = MGDofHandler(tria, degree)
    dh.distribute_mg_dofs()
    constraints = MGConstraints(dh)
    constraints.make_zero_boundary_constraints()
    return dh, constraints


@pytest.fixture(scope="module")
def adaptive_metadata():
    dh, constraints = transfer_test_hierarchy(2, 2, adaptive=True, n_refinements=1)
    return dh, constraints, LevelMetadataBuilder().build(dh, constraints)


class TestLevelMetadataBuilder:

    def test_one_entry_per_transition(self, adaptive_metadata):
        dh, _, metadata = adaptive_metadata
        assert len(metadata) == dh.n_levels - 1
        for L, md in enumerate(metadata, start=1):
            assert md.level == L
            assert md.element is TensorElement.Q2_2D
            assert md.n_coarse_dofs == dh.n_dofs(L - 1)
            assert md.n_fine_dofs == dh.n_dofs(L)
            assert md.n_loc == 9

    def test_every_fine_dof_has_one_writer(self, adaptive_metadata):
        _, _, metadata = adaptive_metadata
        for md in metadata:
            writes = np.bincount(md.fine_indices[md.write_mask], minlength=md.n_fine_dofs)
            np.testing.assert_array_equal(writes, 1)

    def test_restriction_weights_are_inverse_valence(self, adaptive_metadata):
        _, _, metadata = adaptive_metadata
        for md in metadata:
            valence = np.bincount(md.fine_indices.ravel(), minlength=md.n_fine_dofs)
            total = np.bincount(md.fine_indices.ravel(), weights=md.restriction_weights.ravel(),
                                minlength=md.n_fine_dofs)
            np.testing.assert_allclose(total[~md.fine_constrained], 1.0)
            np.testing.assert_allclose(total[md.fine_constrained], 0.0)
            assert valence.min() >= 1

    def test_arrays_are_read_only(self, adaptive_metadata):
        _, _, metadata = adaptive_metadata
        md = metadata[-1]
        with pytest.raises(ValueError):
            md.fine_indices[0, 0] = 0
        with pytest.raises(ValueError):
            md.prolongation_matrices[0, 0, 0] = 1.0
        with pytest.raises(dataclasses.FrozenInstanceError):
            md.level = 5

    def test_gather_plan_has_no_constrained_targets(self, adaptive_metadata):
        _, constraints, metadata = adaptive_metadata
        for md in metadata:
            coarse_mask = constraints.level(md.level - 1).constrained_mask
            assert not coarse_mask[md.gather_index].any()
            # the reduce plan touches every contribution slot at least once
            assert md.reduce_ptr.shape == (md.n_coarse_dofs + 1,)
            assert md.reduce_slot.max() < md.n_cells * md.n_loc

    def test_single_level_hierarchy(self):
        dh, constraints = build_hierarchy(2, 1, 0)
        with pytest.raises(TransferContractError):
            LevelMetadataBuilder().build(dh, constraints)

    @pytest.mark.parametrize("dim,degree", [(2, 5), (1, 1)])
    def test_unsupported_element(self, dim, degree):
        dh, constraints = build_hierarchy(dim, degree, 1)
        with pytest.raises(UnsupportedElementError):
            LevelMetadataBuilder().build(dh, constraints)
        # still a contract violation for callers catching the base class
        assert issubclass(UnsupportedElementError, TransferContractError)

    def test_out_of_range_cell_dof(self):
        dh, constraints = build_hierarchy(2, 1, 1)
        mesh = dh.level_mesh(1)
        bad = mesh.cell_dofs.copy()
        bad[0, 0] = mesh.n_dofs + 3
        dh._levels[1] = dataclasses.replace(mesh, cell_dofs=bad)
        with pytest.raises(HierarchyInconsistencyError):
            LevelMetadataBuilder().build(dh, constraints)

    def test_stale_hierarchy(self):
        dh, constraints = build_hierarchy(2, 1, 1)
        dh.triangulation.refine_global(1)
        with pytest.raises(HierarchyInconsistencyError):
            LevelMetadataBuilder().build(dh, constraints)

    def test_constraints_of_another_hierarchy(self):
        dh, _ = build_hierarchy(2, 1, 1)
        _, other = build_hierarchy(2, 2, 1)
        with pytest.raises(HierarchyInconsistencyError):
            LevelMetadataBuilder().build(dh, other)


def test_select_level(adaptive_metadata):
    _, _, metadata = adaptive_metadata
    assert select_level(metadata, 1) is metadata[0]
    assert select_level(metadata, np.int64(len(metadata))) is metadata[-1]
    for level in (0, len(metadata) + 1, -1, 1.0, True):
        with pytest.raises(TransferContractError):
            select_level(metadata, level)
