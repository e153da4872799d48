import logging

import pytest

from pymgtransfer.core.mg_dofhandler import MGDofHandler
from pymgtransfer.core.constraints import MGConstraints
from pymgtransfer.core.triangulation import Triangulation
from pymgtransfer.transfer.harness import (OPERATIONS, HarnessConfig, LevelDiscrepancy, TransferCase,
                                           TransferEquivalenceHarness)
from pymgtransfer.utils.meshgen import default_refinements, transfer_test_hierarchy


@pytest.fixture(scope="module")
def small_report():
    config = HarnessConfig(dims=(2,), degrees=(1, 2), n_refinements=1, seed=3)
    return TransferEquivalenceHarness(config).run()


def test_default_refinements():
    assert default_refinements(2, 1, adaptive=False) == 6
    assert default_refinements(3, 4, adaptive=False) == 4
    assert default_refinements(2, 2, adaptive=True) == 5
    assert default_refinements(3, 3, adaptive=True) == 3


def test_cases_order():
    cases = HarnessConfig(dims=(2, 3), degrees=(1, 2)).cases()
    assert len(cases) == 8
    assert cases[0] == TransferCase(2, 1, False)
    assert cases[4] == TransferCase(2, 1, True)
    assert str(cases[-1]) == "dim=3 Q2 adaptive"


def test_small_sweep_passes(small_report):
    assert small_report.passed
    assert not small_report.failures
    assert small_report.max_relative_difference <= 1e-10
    cases = {r.case for r in small_report.records}
    assert len(cases) == 4
    assert {r.operation for r in small_report.records} == set(OPERATIONS)


def test_summary_lines(small_report):
    text = small_report.summary()
    assert "Diff prolongate   l1" in text
    assert "Diff restrict add l1" in text
    assert text.splitlines()[-2].startswith(">>> Maximum difference")
    assert "PASSED" in text


def test_level_one_of_uniform_q1():
    harness = TransferEquivalenceHarness(HarnessConfig(dims=(2,), degrees=(1,), adaptivity=(False,),
                                                       n_refinements=4))
    records = harness.check(TransferCase(2, 1, False, 4))
    assert len(records) == 3 * 4
    level_one = [r for r in records if r.level == 1]
    assert [r.operation for r in level_one] == list(OPERATIONS)
    for r in level_one:
        assert r.within(1e-10)
        assert r.reference_norm > 0.0


def test_failures_abort_only_their_case(caplog):
    def factory(case):
        if case.degree == 2:
            tria = Triangulation(case.dim)
            dh = MGDofHandler(tria, case.degree)
            dh.distribute_mg_dofs()
            return dh, MGConstraints(dh)
        return transfer_test_hierarchy(case.dim, case.degree, case.adaptive, case.n_refinements)

    config = HarnessConfig(dims=(2,), degrees=(1, 2), adaptivity=(False,), n_refinements=1)
    with caplog.at_level(logging.ERROR, logger="pymgtransfer.transfer.harness"):
        report = TransferEquivalenceHarness(config, hierarchy_factory=factory).run()

    assert not report.passed
    assert [case for case, _ in report.failures] == [TransferCase(2, 2, False, 1)]
    assert "TransferContractError" in report.failures[0][1]
    assert {r.case.degree for r in report.records} == {1}
    assert "aborted" in caplog.text
    assert "FAILED dim=2 Q2 uniform" in report.summary()


def test_tolerance_violation_is_a_verdict():
    case = TransferCase(2, 1, False)
    rec = LevelDiscrepancy(case, 1, "prolongate", difference=1e-6, reference_norm=1.0)
    assert not rec.within(HarnessConfig().tolerance)
    assert rec.relative_difference == pytest.approx(1e-6)
    zero = LevelDiscrepancy(case, 1, "restrict", difference=0.0, reference_norm=0.0)
    assert zero.within(1e-10)


def test_any_error_aborts_only_its_case():
    def factory(case):
        if case.dim == 3:
            raise MemoryError("level mesh too large")
        return transfer_test_hierarchy(case.dim, case.degree, case.adaptive, case.n_refinements)

    config = HarnessConfig(dims=(2, 3), degrees=(1,), adaptivity=(False,), n_refinements=1)
    report = TransferEquivalenceHarness(config, hierarchy_factory=factory).run()

    assert [case for case, _ in report.failures] == [TransferCase(3, 1, False, 1)]
    assert report.failures[0][1] == "MemoryError: level mesh too large"
    assert {r.case.dim for r in report.records} == {2}
    assert not report.passed
