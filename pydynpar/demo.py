"""
Dynamic parallelism demo.

Compiles the bundled parent/child kernel with nvcc, launches it and
checks the output against the host reference. Prints one line with the
result, the verdict and the elapsed time, measured from device
initialization to verification.

Usage:
    python -m pydynpar --parent-threads 8 --child-threads 4
    python -m pydynpar --backend cpu --no-rebuild
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from collections.abc import Sequence
from functools import partial

from pydynpar.backends import create_backend
from pydynpar.compilation.compiler import CompilationOptions, NvccCompiler
from pydynpar.core.launch import GridFormula, LaunchConfig
from pydynpar.core.orchestrator import KernelOrchestrator, KernelRunReport
from pydynpar.core.session import DeviceSession
from pydynpar.core.verification import dynamic_parallelism_reference
from pydynpar.exceptions import PyDynParError
from pydynpar.kernels import DYNAMIC_PARALLELISM_ENTRY_POINT, DYNAMIC_PARALLELISM_SOURCE

logger = logging.getLogger(__name__)

# Values used by the original demo program
DEFAULT_PARENT_THREADS = 8
DEFAULT_CHILD_THREADS = 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="pydynpar",
        description="Compile, launch and verify the dynamic parallelism demo kernel.",
    )
    ap.add_argument("--source", default=str(DYNAMIC_PARALLELISM_SOURCE), help="CUDA source file")
    ap.add_argument("--entry-point", default=DYNAMIC_PARALLELISM_ENTRY_POINT)
    ap.add_argument("--parent-threads", type=int, default=DEFAULT_PARENT_THREADS)
    ap.add_argument("--child-threads", type=int, default=DEFAULT_CHILD_THREADS)
    ap.add_argument("--artifact-type", choices=["cubin", "ptx"], default="cubin")
    ap.add_argument(
        "--grid-formula",
        choices=[f.value for f in GridFormula],
        default=GridFormula.LITERAL.value,
        help="literal: (n + n - 1) / threads as in the original demo; ceil: ceiling division",
    )
    ap.add_argument(
        "--no-rebuild",
        action="store_true",
        help="reuse an existing artifact instead of always running nvcc",
    )
    ap.add_argument("--backend", choices=["cuda", "cpu"], default="cuda")
    ap.add_argument("--device", type=int, default=0, help="device ordinal")
    ap.add_argument("--nvcc", default="nvcc", help="nvcc executable")
    ap.add_argument(
        "--nvcc-arg",
        action="append",
        default=[],
        metavar="ARG",
        help="extra nvcc argument, e.g. --nvcc-arg=-rdc=true (repeatable)",
    )
    ap.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    return ap


def run_demo(args: argparse.Namespace) -> KernelRunReport:
    """Run the demo described by parsed command line arguments."""
    config = LaunchConfig.for_dynamic_parallelism(
        args.parent_threads,
        args.child_threads,
        grid_formula=GridFormula(args.grid_formula),
    )
    options = CompilationOptions(
        artifact_type=args.artifact_type,
        force_rebuild=not args.no_rebuild,
        nvcc_path=args.nvcc,
        extra_args=tuple(args.nvcc_arg),
    )
    reference = partial(dynamic_parallelism_reference, args.parent_threads, args.child_threads)

    # The reported time includes driver init and context creation
    start_time = time.perf_counter()
    with DeviceSession(create_backend(args.backend), args.device) as session:
        orchestrator = KernelOrchestrator(session, NvccCompiler(options))
        report = orchestrator.run_and_verify(
            args.source,
            args.entry_point,
            config,
            reference,
        )
    report.start_time = start_time
    return report


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        report = run_demo(args)
    except PyDynParError as e:
        logger.debug("Demo failed", exc_info=True)
        print(f"error: {e}", file=sys.stderr)
        return 1

    print(report.summary())
    return 0 if report.passed else 1


if __name__ == "__main__":
    sys.exit(main())
