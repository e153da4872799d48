import numpy as np
import pytest
from numba import cuda
from numpy.testing import assert_allclose

from pymgtransfer.transfer.errors import TransferContractError
from pymgtransfer.transfer.metadata import LevelMetadataBuilder
from pymgtransfer.transfer.parallel import ParallelTransferEngine
from pymgtransfer.transfer.sequential import SequentialTransferEngine
from pymgtransfer.transfer.vector import DeviceVector
from pymgtransfer.utils.meshgen import transfer_test_hierarchy

requires_cuda = pytest.mark.skipif(not cuda.is_available(), reason="no CUDA device")


@pytest.fixture(scope="module", params=[(2, 1), (2, 3), (3, 2)], ids=lambda c: f"dim{c[0]}-Q{c[1]}")
def metadata(request):
    dim, degree = request.param
    dh, constraints = transfer_test_hierarchy(dim, degree, adaptive=True, n_refinements=1)
    return LevelMetadataBuilder().build(dh, constraints)


def compare_engines(metadata, engine, seed=0):
    reference = SequentialTransferEngine(metadata)
    rng = np.random.default_rng(seed)
    device = engine.device
    for L, md in enumerate(metadata, start=1):
        src = rng.random(md.n_coarse_dofs)
        expected = np.empty(md.n_fine_dofs)
        reference.prolongate(L, expected, src)
        dst = DeviceVector.from_host(np.full(md.n_fine_dofs, 7.0), device)
        engine.prolongate(L, dst, DeviceVector.from_host(src, device))
        assert_allclose(dst.copy_to_host(), expected, rtol=1e-12, atol=1e-14)

        src = rng.random(md.n_fine_dofs)
        expected = np.ones(md.n_coarse_dofs)
        reference.restrict_and_add(L, expected, src)
        dst = DeviceVector.from_host(np.ones(md.n_coarse_dofs), device)
        engine.restrict_and_add(L, dst, DeviceVector.from_host(src, device))
        assert_allclose(dst.copy_to_host(), expected, rtol=1e-12, atol=1e-14)


class TestParallelCPU:

    def test_matches_sequential(self, metadata):
        compare_engines(metadata, ParallelTransferEngine(metadata))

    def test_repeated_restriction_accumulates(self, metadata):
        engine = ParallelTransferEngine(metadata)
        md = metadata[-1]
        src = DeviceVector.from_host(np.random.default_rng(4).random(md.n_fine_dofs))
        once = DeviceVector(md.n_coarse_dofs)
        twice = DeviceVector(md.n_coarse_dofs)
        engine.restrict_and_add(md.level, once, src)
        engine.restrict_and_add(md.level, twice, src)
        engine.restrict_and_add(md.level, twice, src)
        assert_allclose(twice.copy_to_host(), 2.0 * once.copy_to_host(), rtol=1e-13)

    def test_contract_violations(self, metadata):
        engine = ParallelTransferEngine(metadata)
        md = metadata[0]
        coarse = DeviceVector(md.n_coarse_dofs)
        fine = DeviceVector(md.n_fine_dofs)
        with pytest.raises(TransferContractError):
            engine.prolongate(0, fine, coarse)
        with pytest.raises(TransferContractError):
            engine.prolongate(len(metadata) + 1, fine, coarse)
        with pytest.raises(TransferContractError):
            engine.prolongate(1, coarse, coarse)
        with pytest.raises(TransferContractError):
            engine.restrict_and_add(1, np.zeros(md.n_coarse_dofs), fine)

    def test_invalid_configuration(self, metadata):
        with pytest.raises(TransferContractError):
            ParallelTransferEngine(metadata, device="tpu")
        with pytest.raises(TransferContractError):
            ParallelTransferEngine(metadata, accumulation="locks")
        with pytest.raises(TransferContractError):
            ParallelTransferEngine(metadata, device="cpu", accumulation="atomic")


class TestDeviceVector:

    def test_copies_are_explicit(self):
        host = np.arange(5, dtype=float)
        vec = DeviceVector.from_host(host)
        host[0] = 100.0
        out = vec.copy_to_host()
        assert out[0] == 0.0
        out[1] = -1.0
        assert vec.copy_to_host()[1] == 1.0

    def test_copy_into_buffer_and_fill(self):
        vec = DeviceVector(4)
        assert len(vec) == 4
        assert_allclose(vec.copy_to_host(), 0.0)
        vec.fill(2.5)
        buf = np.empty(4)
        assert vec.copy_to_host(buf) is buf
        assert_allclose(buf, 2.5)

    def test_errors(self):
        vec = DeviceVector(3)
        with pytest.raises(TransferContractError):
            vec.copy_from_host(np.zeros(4))
        with pytest.raises(TransferContractError):
            vec.copy_to_host(np.zeros(3, dtype=np.float32))
        with pytest.raises(TransferContractError):
            DeviceVector(3, device="tpu")
        with pytest.raises(TransferContractError):
            DeviceVector.from_host(np.zeros((2, 2)))

    def test_cuda_unavailable(self):
        if cuda.is_available():
            pytest.skip("needs a machine without CUDA")
        with pytest.raises(TransferContractError):
            DeviceVector(3, device="cuda")


@requires_cuda
class TestParallelCUDA:

    @pytest.mark.parametrize("accumulation", ["atomic", "buckets"])
    def test_matches_sequential(self, metadata, accumulation):
        compare_engines(metadata, ParallelTransferEngine(metadata, device="cuda", accumulation=accumulation))

    def test_rejects_host_resident_vectors(self, metadata):
        engine = ParallelTransferEngine(metadata, device="cuda")
        md = metadata[0]
        with pytest.raises(TransferContractError):
            engine.prolongate(1, DeviceVector(md.n_fine_dofs, "cpu"), DeviceVector(md.n_coarse_dofs, "cuda"))
