"""
pydynpar - compile, launch and verify CUDA kernels from Python.

Compiles a CUDA source file to a cubin or PTX artifact with nvcc, loads
it into a device context, launches an entry point and checks the
output against a reference computed on the host.

Core Features:
    - Device Sessions: One explicitly owned execution context per process
    - Ahead-of-time Compilation: nvcc invocation with an artifact cache
    - Kernel Orchestration: Load, launch, synchronize, copy back, verify
    - CPU Simulation: Full pipeline testing when CUDA is unavailable

Quick Start:
    >>> from pydynpar import CUDABackend, DeviceSession, KernelOrchestrator, LaunchConfig
    >>> from pydynpar.kernels import DYNAMIC_PARALLELISM_SOURCE
    >>>
    >>> with DeviceSession(CUDABackend()) as session:
    ...     orchestrator = KernelOrchestrator(session)
    ...     config = LaunchConfig.for_dynamic_parallelism(8, 4)
    ...     data = orchestrator.run_kernel(DYNAMIC_PARALLELISM_SOURCE, "parentKernel", config)
"""

from pydynpar.backends import CPUBackend, CUDABackend, create_backend
from pydynpar.compilation import CompilationOptions, CompiledArtifact, NvccCompiler
from pydynpar.core import (
    DeviceSession,
    GridFormula,
    KernelOrchestrator,
    KernelRunReport,
    LaunchConfig,
    compute_grid_size,
    verify_exact,
)

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Backends
    "CPUBackend",
    "CUDABackend",
    "create_backend",
    # Compilation
    "NvccCompiler",
    "CompilationOptions",
    "CompiledArtifact",
    # Core
    "DeviceSession",
    "KernelOrchestrator",
    "KernelRunReport",
    "LaunchConfig",
    "GridFormula",
    "compute_grid_size",
    "verify_exact",
]
