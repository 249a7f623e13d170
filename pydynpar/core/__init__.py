"""
Core abstractions for pydynpar.
"""

from pydynpar.core.launch import GridFormula, KernelLaunchDescriptor, LaunchConfig, compute_grid_size
from pydynpar.core.orchestrator import KernelOrchestrator, KernelRunReport
from pydynpar.core.session import DeviceSession
from pydynpar.core.verification import (
    VerificationResult,
    dynamic_parallelism_reference,
    verify_exact,
)

__all__ = [
    "DeviceSession",
    "KernelOrchestrator",
    "KernelRunReport",
    "LaunchConfig",
    "GridFormula",
    "KernelLaunchDescriptor",
    "compute_grid_size",
    "VerificationResult",
    "verify_exact",
    "dynamic_parallelism_reference",
]
