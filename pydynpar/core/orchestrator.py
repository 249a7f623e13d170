"""
Kernel compile-and-launch orchestrator.

Runs the strictly ordered pipeline: capability query, compile, load,
symbol lookup, allocate, launch, synchronize, copy back, verify, free.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any

import numpy as np

from pydynpar.compilation.compiler import CompilationOptions, CompiledArtifact, NvccCompiler
from pydynpar.core.launch import KernelLaunchDescriptor, LaunchConfig
from pydynpar.core.verification import VerificationResult, verify_exact

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from pydynpar.backends.base import Backend
    from pydynpar.core.session import DeviceSession

logger = logging.getLogger(__name__)


@dataclass
class KernelRunReport:
    """Record of one compile-launch-verify run."""

    kernel_name: str
    config: LaunchConfig
    result: NDArray[np.float32]
    verification: VerificationResult
    artifact: CompiledArtifact | None = None
    start_time: float = 0.0
    end_time: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        """True if the result matched the reference."""
        return self.verification.passed

    @property
    def duration_ms(self) -> float:
        """Wall-clock duration of the run in milliseconds."""
        return (self.end_time - self.start_time) * 1000

    def summary(self) -> str:
        """One-line human-readable summary."""
        # Shortest float32 repr, so 0.1f prints as 0.1
        values = ", ".join(str(value) for value in self.result)
        return (
            f"Result: [{values}] {self.verification.verdict} "
            f"({self.duration_ms:.1f} ms)"
        )


class KernelOrchestrator:
    """
    Drives one kernel from source file to verified result.

    Example:
        >>> with DeviceSession(CUDABackend()) as session:
        ...     orchestrator = KernelOrchestrator(session)
        ...     config = LaunchConfig.for_dynamic_parallelism(8, 4)
        ...     data = orchestrator.run_kernel("demo.cu", "parentKernel", config)
    """

    def __init__(self, session: DeviceSession, compiler: NvccCompiler | None = None) -> None:
        """
        Initialize the orchestrator.

        Args:
            session: Device session that owns the execution context.
            compiler: Artifact compiler (a fresh NvccCompiler if None).
        """
        self._session = session
        self._compiler = compiler or NvccCompiler()
        self._last_artifact: CompiledArtifact | None = None
        self._history: list[KernelRunReport] = []

    @property
    def backend(self) -> Backend:
        """Get the session backend."""
        return self._session.backend

    @property
    def compiler(self) -> NvccCompiler:
        """Get the compiler."""
        return self._compiler

    @property
    def last_artifact(self) -> CompiledArtifact | None:
        """Artifact used by the most recent run."""
        return self._last_artifact

    @property
    def history(self) -> list[KernelRunReport]:
        """Reports of all verified runs, oldest first."""
        return self._history.copy()

    def compute_capability(self) -> int:
        """
        Query the device compute capability.

        Returns:
            major * 10 + minor.

        Raises:
            DeviceQueryError: If the attribute query fails.
        """
        device, _ = self._session.initialize()
        major, minor = self.backend.query_compute_capability(device)
        return major * 10 + minor

    def compile(
        self,
        source_path: str | Path,
        options: CompilationOptions | None = None,
    ) -> CompiledArtifact:
        """Compile ``source_path`` for the session device."""
        opts = replace(
            options or self._compiler.options,
            compute_capability=self.compute_capability(),
        )
        artifact = self._compiler.compile(source_path, opts)
        self._last_artifact = artifact
        return artifact

    def run_kernel(
        self,
        source_path: str | Path,
        entry_point: str,
        launch_config: LaunchConfig,
        *,
        compile_options: CompilationOptions | None = None,
    ) -> NDArray[np.float32]:
        """
        Compile, load and launch a kernel, then copy its output back.

        The kernel receives ``(uint32 element_count, float *data)``.

        Args:
            source_path: CUDA source file.
            entry_point: Name of the kernel to launch.
            launch_config: Element count and launch geometry.
            compile_options: Options for the compile step.

        Returns:
            Host array of exactly ``launch_config.element_count`` float32 values.

        Raises:
            PyDynParError: The first failing step's error. Nothing is retried.
        """
        device, context = self._session.initialize()
        backend = self.backend

        artifact = self.compile(source_path, compile_options)
        module = backend.load_module(context, artifact.artifact_path)
        function = backend.get_function(module, entry_point)

        element_count = launch_config.element_count
        buffer = backend.allocate(context, element_count, np.float32)
        try:
            if launch_config.is_empty:
                logger.info(f"Skipping launch of '{entry_point}': no elements to compute")
            else:
                descriptor = KernelLaunchDescriptor.from_config(
                    function,
                    launch_config,
                    (np.uint32(element_count), buffer),
                )
                logger.debug(
                    f"Launching '{entry_point}' grid={descriptor.grid} block={descriptor.block}"
                )
                backend.launch(descriptor)
            backend.synchronize(context)

            result = np.empty(element_count, dtype=np.float32)
            backend.copy_to_host(buffer, result)
        finally:
            backend.free(buffer)

        return result

    def run_and_verify(
        self,
        source_path: str | Path,
        entry_point: str,
        launch_config: LaunchConfig,
        reference: NDArray[Any] | Callable[[], NDArray[Any]],
        *,
        compile_options: CompilationOptions | None = None,
    ) -> KernelRunReport:
        """
        Run a kernel and compare its output with a host reference.

        Args:
            source_path: CUDA source file.
            entry_point: Name of the kernel to launch.
            launch_config: Element count and launch geometry.
            reference: Expected values, or a callable producing them.
            compile_options: Options for the compile step.

        Returns:
            Report with the result, the verdict and the elapsed time.
        """
        start_time = time.perf_counter()
        result = self.run_kernel(
            source_path,
            entry_point,
            launch_config,
            compile_options=compile_options,
        )
        expected = reference() if callable(reference) else reference
        verification = verify_exact(result, expected)
        end_time = time.perf_counter()

        if not verification.passed:
            logger.warning(
                f"'{entry_point}' mismatched {verification.mismatch_count} of "
                f"{verification.element_count} elements "
                f"(first at index {verification.first_mismatch})"
            )

        report = KernelRunReport(
            kernel_name=entry_point,
            config=launch_config,
            result=result,
            verification=verification,
            artifact=self._last_artifact,
            start_time=start_time,
            end_time=end_time,
        )
        self._history.append(report)
        return report

    def __repr__(self) -> str:
        """String representation."""
        return f"KernelOrchestrator(session={self._session!r}, runs={len(self._history)})"
