"""
Pytest configuration and shared fixtures.
"""

from __future__ import annotations

import stat
from collections.abc import Callable, Generator
from pathlib import Path

import pytest

import pydynpar.core.session as session_module
from pydynpar.backends.cpu import CPUBackend
from pydynpar.compilation.compiler import CompilationOptions, NvccCompiler
from pydynpar.core.session import DeviceSession

# Stand-in for nvcc: logs its arguments next to itself and writes a
# minimal PTX image for the -arch target to the -o path.
FAKE_NVCC = """#!/bin/sh
echo "$@" >> "$(dirname "$0")/nvcc_calls.log"
arch=86
out=""
while [ $# -gt 0 ]; do
  case "$1" in
    -arch=sm_*) arch="${1#-arch=sm_}" ;;
    -o) shift; out="$1" ;;
  esac
  shift
done
printf '.version 8.0\\n.target sm_%s\\n.address_size 64\\n\\n.visible .entry parentKernel(\\n)\\n' "$arch" > "$out"
"""

FAILING_NVCC = """#!/bin/sh
echo "$@" >> "$(dirname "$0")/nvcc_calls.log"
echo "kernel.cu(3): error: identifier \\"undefinedThing\\" is undefined" >&2
echo "1 error detected in the compilation of \\"kernel.cu\\"."
exit 2
"""

KERNEL_SOURCE = """extern "C"
__global__ void parentKernel(unsigned int size, float *data)
{
}
"""


class NvccStub:
    """A fake nvcc executable and the log of its invocations."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.log = path.parent / "nvcc_calls.log"

    @property
    def calls(self) -> list[str]:
        """Argument lines of every invocation so far."""
        if not self.log.exists():
            return []
        return self.log.read_text().splitlines()


@pytest.fixture
def make_nvcc(tmp_path: Path) -> Callable[[str], NvccStub]:
    """Factory writing an executable nvcc stand-in into a fresh directory."""

    def factory(script: str = FAKE_NVCC) -> NvccStub:
        bin_dir = tmp_path / "bin"
        bin_dir.mkdir(exist_ok=True)
        path = bin_dir / "nvcc"
        path.write_text(script)
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return NvccStub(path)

    return factory


@pytest.fixture
def fake_nvcc(make_nvcc: Callable[[str], NvccStub]) -> NvccStub:
    """Provide a working nvcc stand-in."""
    return make_nvcc(FAKE_NVCC)


@pytest.fixture
def failing_nvcc(make_nvcc: Callable[[str], NvccStub]) -> NvccStub:
    """Provide an nvcc stand-in that always fails."""
    return make_nvcc(FAILING_NVCC)


@pytest.fixture
def kernel_source(tmp_path: Path) -> Path:
    """Provide a CUDA source file in a temporary directory."""
    src_dir = tmp_path / "kernels"
    src_dir.mkdir()
    path = src_dir / "demo.cu"
    path.write_text(KERNEL_SOURCE)
    return path


@pytest.fixture
def compiler(fake_nvcc: NvccStub) -> NvccCompiler:
    """Provide a compiler that runs the nvcc stand-in."""
    return NvccCompiler(CompilationOptions(nvcc_path=str(fake_nvcc.path)))


@pytest.fixture
def cpu_backend() -> CPUBackend:
    """Provide a simulated sm_86 device."""
    return CPUBackend(compute_capability=(8, 6))


@pytest.fixture
def session(cpu_backend: CPUBackend) -> Generator[DeviceSession, None, None]:
    """Provide an initialized session on the CPU backend."""
    with DeviceSession(cpu_backend) as s:
        yield s


@pytest.fixture(autouse=True)
def reset_active_session() -> Generator[None, None, None]:
    """Make sure no test leaks a live session into the next one."""
    yield
    session_module._active_session = None


# Markers for CUDA tests
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "cuda: mark test as requiring CUDA"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


def pytest_collection_modifyitems(
    config: pytest.Config,
    items: list[pytest.Item],
) -> None:
    """Skip CUDA tests if CUDA is not available."""
    cuda_available = False
    try:
        import cupy as cp

        cuda_available = cp.cuda.runtime.getDeviceCount() > 0
    except ImportError:
        pass
    except Exception:
        pass

    if not cuda_available:
        skip_cuda = pytest.mark.skip(reason="CUDA not available")
        for item in items:
            if "cuda" in item.keywords:
                item.add_marker(skip_cuda)
