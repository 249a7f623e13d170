"""
CUDA backend for pydynpar.

Provides the driver boundary on real hardware using CuPy: device
selection through the runtime API, module loading and entry point
lookup through cupy.cuda.function.Module, and CuPy arrays as linear
device memory.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import numpy as np

from pydynpar.backends.base import (
    Backend,
    BackendType,
    DeviceBuffer,
    DeviceHandle,
    ExecutionContext,
    KernelFunction,
    KernelModule,
    check_transfer_shape,
)
from pydynpar.exceptions import (
    BackendNotAvailableError,
    DeviceExecutionError,
    DeviceQueryError,
    InitializationError,
    LaunchError,
    ModuleLoadError,
    OutOfMemoryError,
    SymbolNotFoundError,
    TransferError,
)

if TYPE_CHECKING:
    from numpy.typing import DTypeLike, NDArray

    from pydynpar.core.launch import KernelLaunchDescriptor

logger = logging.getLogger(__name__)


def _check_cuda_available() -> bool:
    """Check if CUDA is available."""
    try:
        import cupy as cp

        return cp.cuda.runtime.getDeviceCount() > 0
    except ImportError:
        return False
    except Exception:
        return False


class CUDABackend(Backend):
    """
    CUDA backend implementation using CuPy.

    Example:
        >>> backend = CUDABackend()
        >>> if backend.is_available:
        ...     device, context = backend.initialize()
        ...     print(device.arch)
    """

    def __init__(self) -> None:
        """
        Initialize the CUDA backend.

        Raises:
            BackendNotAvailableError: If CuPy is not installed.
        """
        try:
            import cupy as cp
        except ImportError as e:
            raise BackendNotAvailableError(
                "CUDA",
                f"Required packages not installed: {e}",
            ) from e

        self._cp = cp
        self._cuda_available = _check_cuda_available()

    @property
    def backend_type(self) -> BackendType:
        """Get the backend type."""
        return BackendType.CUDA

    @property
    def is_available(self) -> bool:
        """Check if this backend is available."""
        return self._cuda_available

    @property
    def _driver_errors(self) -> tuple[type[Exception], ...]:
        cuda = self._cp.cuda
        return (cuda.runtime.CUDARuntimeError, cuda.driver.CUDADriverError)

    def initialize(self, device_ordinal: int = 0) -> tuple[DeviceHandle, ExecutionContext]:
        """Make ``device_ordinal`` current, which creates its primary context."""
        cp = self._cp
        try:
            count = cp.cuda.runtime.getDeviceCount()
        except self._driver_errors as e:
            raise InitializationError(f"CUDA driver could not be initialized: {e}") from e

        if count == 0:
            raise InitializationError("No CUDA device found")
        if device_ordinal < 0 or device_ordinal >= count:
            raise InitializationError(
                f"Invalid device ordinal {device_ordinal}. Valid range: 0-{count - 1}"
            )

        try:
            cuda_device = cp.cuda.Device(device_ordinal)
            cuda_device.use()
            # Forces lazy context creation on the selected device
            cp.cuda.runtime.free(0)
            props = cp.cuda.runtime.getDeviceProperties(device_ordinal)
        except self._driver_errors as e:
            raise InitializationError(
                f"Failed to create a context on device {device_ordinal}: {e}"
            ) from e

        name = props["name"]
        device = DeviceHandle(
            ordinal=device_ordinal,
            name=name.decode() if isinstance(name, bytes) else name,
            compute_capability=(props["major"], props["minor"]),
        )
        context = ExecutionContext(device=device, handle=cuda_device)
        logger.info(f"CUDA backend initialized on {device.name} ({device.arch})")
        return device, context

    def shutdown(self, context: ExecutionContext) -> None:
        """Wait for the device and return pooled memory to the driver."""
        if not context.active:
            return
        try:
            self._cp.cuda.runtime.deviceSynchronize()
        finally:
            self._cp.get_default_memory_pool().free_all_blocks()
            context.active = False
            logger.debug(f"CUDA context on device {context.device.ordinal} released")

    def query_compute_capability(self, device: DeviceHandle) -> tuple[int, int]:
        """Read the compute capability attributes of ``device``."""
        runtime = self._cp.cuda.runtime
        try:
            major = runtime.deviceGetAttribute(
                runtime.cudaDevAttrComputeCapabilityMajor, device.ordinal
            )
            minor = runtime.deviceGetAttribute(
                runtime.cudaDevAttrComputeCapabilityMinor, device.ordinal
            )
        except self._driver_errors as e:
            raise DeviceQueryError(device.ordinal, "compute capability", e) from e
        return int(major), int(minor)

    def load_module(self, context: ExecutionContext, path: str | Path) -> KernelModule:
        """Load a cubin or PTX file into the current context."""
        path = Path(path)
        if not path.is_file():
            raise ModuleLoadError(path, "file does not exist")

        module = self._cp.cuda.function.Module()
        try:
            module.load_file(str(path))
        except self._driver_errors as e:
            raise ModuleLoadError(path, e) from e
        return KernelModule(path=path, context=context, handle=module)

    def get_function(self, module: KernelModule, name: str) -> KernelFunction:
        """Look up an entry point in a loaded module."""
        try:
            function = module.handle.get_function(name)
        except self._driver_errors as e:
            raise SymbolNotFoundError(name, module.path) from e
        return KernelFunction(name=name, module=module, handle=function)

    def allocate(
        self,
        context: ExecutionContext,
        element_count: int,
        dtype: DTypeLike = np.float32,
    ) -> DeviceBuffer:
        """Allocate an uninitialized CuPy array."""
        cp = self._cp
        dt = np.dtype(dtype)
        nbytes = element_count * dt.itemsize
        try:
            array = cp.empty(element_count, dtype=dt)
        except cp.cuda.memory.OutOfMemoryError as e:
            raise OutOfMemoryError(nbytes, e) from e
        except self._driver_errors as e:
            raise OutOfMemoryError(nbytes, e) from e
        logger.debug(f"Allocated {nbytes} bytes on device {context.device.ordinal}")
        return DeviceBuffer(element_count=element_count, dtype=dt, context=context, handle=array)

    def free(self, buffer: DeviceBuffer) -> None:
        """Drop the array so its memory returns to the pool."""
        if buffer.freed:
            return
        buffer.handle = None
        buffer.freed = True
        logger.debug(f"Freed {buffer.nbytes} bytes of device memory")

    def copy_to_device(self, buffer: DeviceBuffer, host_array: NDArray[Any]) -> None:
        """Copy host data into a device buffer."""
        check_transfer_shape(buffer, host_array, "to device")
        try:
            buffer.handle.set(np.ascontiguousarray(host_array).reshape(-1))
        except self._driver_errors as e:
            raise TransferError("to device", e) from e

    def copy_to_host(
        self,
        buffer: DeviceBuffer,
        out: NDArray[Any] | None = None,
    ) -> NDArray[Any]:
        """Copy a device buffer into host memory."""
        if out is None:
            out = np.empty(buffer.element_count, dtype=buffer.dtype)
        check_transfer_shape(buffer, out, "to host")
        try:
            out.reshape(-1)[:] = buffer.handle.get()
        except self._driver_errors as e:
            raise TransferError("to host", e) from e
        return out

    def launch(self, descriptor: KernelLaunchDescriptor) -> None:
        """Launch a kernel on the null stream."""
        for param in descriptor.params:
            if isinstance(param, DeviceBuffer) and (param.freed or not param.context.active):
                raise LaunchError(
                    descriptor.function.name,
                    descriptor.grid,
                    descriptor.block,
                    "kernel parameter refers to a released buffer",
                )

        args = tuple(
            p.handle if isinstance(p, DeviceBuffer) else p for p in descriptor.params
        )
        try:
            descriptor.function.handle(
                descriptor.grid,
                descriptor.block,
                args,
                shared_mem=descriptor.shared_memory_bytes,
            )
        except self._driver_errors as e:
            raise LaunchError(
                descriptor.function.name, descriptor.grid, descriptor.block, e
            ) from e

    def synchronize(self, context: ExecutionContext) -> None:
        """Block until the device is idle."""
        try:
            self._cp.cuda.runtime.deviceSynchronize()
        except self._driver_errors as e:
            raise DeviceExecutionError(e) from e

    def __repr__(self) -> str:
        """String representation."""
        if self._cuda_available:
            return f"CUDABackend(devices={self._cp.cuda.runtime.getDeviceCount()})"
        return "CUDABackend(available=False)"
