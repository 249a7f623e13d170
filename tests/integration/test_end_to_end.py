"""
End-to-end tests on real hardware.

These compile the bundled kernel with the installed nvcc and run it on
the first CUDA device.
"""

from __future__ import annotations

import shutil
from pathlib import Path

import numpy as np
import pytest

from pydynpar.compilation.compiler import CompilationOptions, NvccCompiler
from pydynpar.core.launch import GridFormula, LaunchConfig
from pydynpar.core.orchestrator import KernelOrchestrator
from pydynpar.core.session import DeviceSession
from pydynpar.core.verification import dynamic_parallelism_reference
from pydynpar.kernels import DYNAMIC_PARALLELISM_ENTRY_POINT, DYNAMIC_PARALLELISM_SOURCE

# Kernels that launch kernels need relocatable device code and the device runtime
DEVICE_LAUNCH_ARGS = ("-rdc=true", "-lcudadevrt")
DEVICE_LAUNCH_OPTIONS = CompilationOptions(force_rebuild=True, extra_args=DEVICE_LAUNCH_ARGS)

pytestmark = [
    pytest.mark.cuda,
    pytest.mark.slow,
    pytest.mark.skipif(shutil.which("nvcc") is None, reason="nvcc not installed"),
]


@pytest.fixture
def source(tmp_path: Path) -> Path:
    """Copy the bundled kernel so artifacts land in a temporary directory."""
    path = tmp_path / DYNAMIC_PARALLELISM_SOURCE.name
    shutil.copyfile(DYNAMIC_PARALLELISM_SOURCE, path)
    return path


@pytest.fixture
def cuda_session():
    from pydynpar.backends.cuda import CUDABackend

    with DeviceSession(CUDABackend()) as session:
        yield session


class TestEndToEnd:
    """Full pipeline tests on CUDA."""

    @pytest.mark.parametrize("formula", list(GridFormula))
    def test_dynamic_parallelism(self, cuda_session: DeviceSession, source: Path, formula: GridFormula) -> None:
        """Test that the device matches the host reference exactly."""
        orchestrator = KernelOrchestrator(cuda_session, NvccCompiler(DEVICE_LAUNCH_OPTIONS))
        config = LaunchConfig.for_dynamic_parallelism(8, 8, grid_formula=formula)

        report = orchestrator.run_and_verify(
            source,
            DYNAMIC_PARALLELISM_ENTRY_POINT,
            config,
            dynamic_parallelism_reference(8, 8),
        )

        assert report.passed, report.summary()
        assert report.artifact.artifact_path.exists()

    def test_zero_elements(self, cuda_session: DeviceSession, source: Path) -> None:
        """Test the degenerate configuration of the original demo."""
        orchestrator = KernelOrchestrator(cuda_session, NvccCompiler(DEVICE_LAUNCH_OPTIONS))
        result = orchestrator.run_kernel(
            source,
            DYNAMIC_PARALLELISM_ENTRY_POINT,
            LaunchConfig.for_dynamic_parallelism(8, 0),
        )
        assert result.shape == (0,)

    def test_round_trip(self, cuda_session: DeviceSession) -> None:
        """Test device-to-host fidelity with a host-filled pattern."""
        backend = cuda_session.backend
        pattern = np.random.default_rng(0).standard_normal(4096).astype(np.float32)
        buffer = backend.allocate(cuda_session.context, pattern.size)
        try:
            backend.copy_to_device(buffer, pattern)
            np.testing.assert_array_equal(backend.copy_to_host(buffer), pattern)
        finally:
            backend.free(buffer)

    def test_cli(self, source: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """Test the demo entry point on real hardware."""
        from pydynpar.demo import main

        code = main(
            [
                "--source",
                str(source),
                "--parent-threads",
                "4",
                "--child-threads",
                "4",
                *(f"--nvcc-arg={arg}" for arg in DEVICE_LAUNCH_ARGS),
            ]
        )

        captured = capsys.readouterr()
        assert code == 0, captured.err
        assert "PASSED" in captured.out
