"""
Compare the parallel multigrid transfer with the sequential one on uniform and
adaptively refined Q1..Q4 hierarchies in 2D and 3D.

    python examples/check_mg_transfer.py --device cpu
    python examples/check_mg_transfer.py --device cuda --accumulation buckets
    python examples/check_mg_transfer.py --dims 2 --degrees 1 2 --plot
"""
import argparse
import logging
import sys

import matplotlib.pyplot as plt

from pymgtransfer.io.visualization import plot_level_mesh
from pymgtransfer.transfer.harness import HarnessConfig, TransferEquivalenceHarness
from pymgtransfer.utils.meshgen import transfer_test_hierarchy

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

parser = argparse.ArgumentParser(description="Parallel vs. sequential multigrid transfer")
parser.add_argument("--dims", type=int, nargs="+", default=[2, 3])
parser.add_argument("--degrees", type=int, nargs="+", default=[1, 2, 3, 4])
parser.add_argument("--uniform-only", action="store_true", help="Skip the adaptive meshes.")
parser.add_argument("--n-refinements", type=int, default=None,
                    help="Global refinements; default depends on dimension and degree.")
parser.add_argument("--device", choices=["cpu", "cuda"], default="cpu")
parser.add_argument("--accumulation", choices=["buckets", "atomic"], default=None)
parser.add_argument("--seed", type=int, default=0)
parser.add_argument("--tolerance", type=float, default=1e-10)
parser.add_argument("--plot", action="store_true", help="Show the finest adaptive 2D Q1 level mesh.")


def main(argv=None) -> int:
    args = parser.parse_args(argv)
    config = HarnessConfig(
        dims=tuple(args.dims),
        degrees=tuple(args.degrees),
        adaptivity=(False,) if args.uniform_only else (False, True),
        n_refinements=args.n_refinements,
        seed=args.seed,
        tolerance=args.tolerance,
        device=args.device,
        accumulation=args.accumulation,
    )
    report = TransferEquivalenceHarness(config).run()
    print("=" * 60)
    print(report.summary())
    print("=" * 60)

    if args.plot:
        dof_handler, constraints = transfer_test_hierarchy(2, 1, adaptive=True, n_refinements=2)
        plot_level_mesh(dof_handler, dof_handler.n_levels - 1, constraints)
        plt.show()
    return 0 if report.passed else 1


if __name__ == "__main__":
    sys.exit(main())
