"""pymgtransfer.transfer.harness

Equivalence check of the parallel transfer against the sequential one.

For every configuration (dimension, degree, uniform or adaptive mesh) the
hierarchy and its metadata are built once; then on every level both engines
see the same random source vector and the L2 norm of the difference of their
results is recorded for

* ``prolongate``    dst overwritten,
* ``restrict``      dst starting at zero,
* ``restrict_add``  dst starting at one (additive contract).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

import numpy as np

from pymgtransfer.core.constraints import MGConstraints
from pymgtransfer.core.mg_dofhandler import MGDofHandler
from pymgtransfer.transfer.metadata import LevelMetadataBuilder
from pymgtransfer.transfer.parallel import ParallelTransferEngine
from pymgtransfer.transfer.sequential import SequentialTransferEngine
from pymgtransfer.transfer.vector import DeviceVector
from pymgtransfer.utils.meshgen import default_refinements, transfer_test_hierarchy

logger = logging.getLogger(__name__)

OPERATIONS = ("prolongate", "restrict", "restrict_add")


@dataclass(frozen=True)
class TransferCase:
    dim: int
    degree: int
    adaptive: bool
    n_refinements: Optional[int] = None

    def __str__(self):
        mesh = "adaptive" if self.adaptive else "uniform"
        return f"dim={self.dim} Q{self.degree} {mesh}"


@dataclass(frozen=True)
class HarnessConfig:
    """
    Sweep of the equivalence check.

    n_refinements : int, optional
        Global refinements of every hierarchy; None picks a size per
        dimension and degree (see `default_refinements`).
    tolerance : float
        Largest accepted relative L2 difference.
    """
    dims: Tuple[int, ...] = (2, 3)
    degrees: Tuple[int, ...] = (1, 2, 3, 4)
    adaptivity: Tuple[bool, ...] = (False, True)
    n_refinements: Optional[int] = None
    seed: int = 0
    tolerance: float = 1e-10
    device: str = "cpu"
    accumulation: Optional[str] = None

    def cases(self) -> List[TransferCase]:
        return [TransferCase(dim, degree, adaptive, self.n_refinements)
                for adaptive in self.adaptivity
                for dim in self.dims
                for degree in self.degrees]


@dataclass(frozen=True)
class LevelDiscrepancy:
    case: TransferCase
    level: int
    operation: str
    difference: float
    reference_norm: float

    @property
    def relative_difference(self) -> float:
        if self.reference_norm > 0.0:
            return self.difference / self.reference_norm
        return self.difference

    def within(self, tolerance: float) -> bool:
        return self.relative_difference <= tolerance


@dataclass
class HarnessReport:
    tolerance: float
    records: List[LevelDiscrepancy] = field(default_factory=list)
    failures: List[Tuple[TransferCase, str]] = field(default_factory=list)

    @property
    def max_difference(self) -> float:
        return max((r.difference for r in self.records), default=0.0)

    @property
    def max_relative_difference(self) -> float:
        return max((r.relative_difference for r in self.records), default=0.0)

    @property
    def violations(self) -> List[LevelDiscrepancy]:
        return [r for r in self.records if not r.within(self.tolerance)]

    @property
    def passed(self) -> bool:
        return not self.failures and not self.violations

    def summary(self) -> str:
        labels = {"prolongate": "Diff prolongate  ", "restrict": "Diff restrict    ",
                  "restrict_add": "Diff restrict add"}
        lines = []
        case = None
        for r in self.records:
            if r.case != case:
                case = r.case
                lines.append(f"Testing {case}")
            lines.append(f"  {labels[r.operation]} l{r.level}: {r.difference:.6e}")
        for case, message in self.failures:
            lines.append(f"FAILED {case}: {message}")
        lines.append(f">>> Maximum difference: {self.max_difference:.6e}")
        lines.append(f">>> Maximum relative difference: {self.max_relative_difference:.6e} "
                     f"(tolerance {self.tolerance:g}) {'PASSED' if self.passed else 'FAILED'}")
        return "\n".join(lines)


def _default_factory(case: TransferCase) -> Tuple[MGDofHandler, MGConstraints]:
    return transfer_test_hierarchy(case.dim, case.degree, case.adaptive, case.n_refinements)


class TransferEquivalenceHarness:
    """
    Runs both engines over a sweep of hierarchies and compares them level by level.

    Parameters
    ----------
    config : HarnessConfig
    hierarchy_factory : callable, optional
        ``factory(case) -> (MGDofHandler, MGConstraints)``; defaults to the
        transfer-check hierarchy on the unit cube.
    """

    def __init__(self, config: HarnessConfig = None,
                 hierarchy_factory: Callable[[TransferCase], Tuple[MGDofHandler, MGConstraints]] = None):
        self.config = config if config is not None else HarnessConfig()
        self.hierarchy_factory = hierarchy_factory or _default_factory
        self._rng = np.random.default_rng(self.config.seed)

    def run(self) -> HarnessReport:
        report = HarnessReport(tolerance=self.config.tolerance)
        for case in self.config.cases():
            try:
                records = self.check(case)
            except Exception as exc:
                logger.error(f"{case}: aborted: {exc}")
                report.failures.append((case, f"{type(exc).__name__}: {exc}"))
                continue
            report.records.extend(records)
        logger.info(f">>> Maximum difference: {report.max_difference:.6e}")
        return report

    def check(self, case: TransferCase) -> List[LevelDiscrepancy]:
        """Compare the engines on every level of one configuration."""
        nref = case.n_refinements
        if nref is None:
            nref = default_refinements(case.dim, case.degree, case.adaptive)
        logger.info(f"Testing {case} ({nref} global refinements)")
        dof_handler, constraints = self.hierarchy_factory(case)
        metadata = LevelMetadataBuilder().build(dof_handler, constraints)
        reference = SequentialTransferEngine(metadata)
        engine = ParallelTransferEngine(metadata, device=self.config.device,
                                        accumulation=self.config.accumulation)

        records = []
        for level in range(1, len(metadata) + 1):
            md = metadata[level - 1]
            records.append(self._check_prolongate(case, level, md.n_coarse_dofs, md.n_fine_dofs, reference, engine))
            records.extend(self._check_restrict(case, level, md.n_coarse_dofs, md.n_fine_dofs, reference, engine))
        return records

    # ------------------------------------------------------------------
    def _record(self, case, level, operation, expected, actual) -> LevelDiscrepancy:
        rec = LevelDiscrepancy(case, level, operation,
                               float(np.linalg.norm(actual - expected)), float(np.linalg.norm(expected)))
        logger.info(f"  {operation:<12s} l{level}: {rec.difference:.6e}")
        if not rec.within(self.config.tolerance):
            logger.warning(f"{case} level {level} {operation}: relative difference "
                           f"{rec.relative_difference:.3e} exceeds {self.config.tolerance:g}")
        return rec

    def _check_prolongate(self, case, level, n_coarse, n_fine, reference, engine) -> LevelDiscrepancy:
        device = self.config.device
        src = self._rng.random(n_coarse)
        expected = np.zeros(n_fine)
        reference.prolongate(level, expected, src)
        dst = DeviceVector(n_fine, device)
        engine.prolongate(level, dst, DeviceVector.from_host(src, device))
        return self._record(case, level, "prolongate", expected, dst.copy_to_host())

    def _check_restrict(self, case, level, n_coarse, n_fine, reference, engine) -> List[LevelDiscrepancy]:
        device = self.config.device
        src = self._rng.random(n_fine)
        src_dev = DeviceVector.from_host(src, device)
        out = []
        for operation, start in (("restrict", 0.0), ("restrict_add", 1.0)):
            expected = np.full(n_coarse, start)
            reference.restrict_and_add(level, expected, src)
            dst = DeviceVector(n_coarse, device)
            dst.fill(start)
            engine.restrict_and_add(level, dst, src_dev)
            out.append(self._record(case, level, operation, expected, dst.copy_to_host()))
        return out
