"""
CPU backend for pydynpar.

A software simulation of the driver boundary. Device memory lives in
NumPy arrays and device kernels are replaced by registered NumPy
emulations. Useful for testing the orchestrator without a GPU.
"""

from __future__ import annotations

import logging
import re
import struct
from collections.abc import Callable
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
from pydynpar.core.launch import MAX_THREADS_PER_BLOCK
from pydynpar.exceptions import (
    DeviceExecutionError,
    InitializationError,
    LaunchError,
    ModuleLoadError,
    OutOfMemoryError,
    SymbolNotFoundError,
)

if TYPE_CHECKING:
    from numpy.typing import DTypeLike, NDArray

    from pydynpar.core.launch import KernelLaunchDescriptor

logger = logging.getLogger(__name__)

# grid, block, then the kernel parameters with buffers replaced by arrays
CPUKernel = Callable[..., None]

_ELF_MAGIC = b"\x7fELF"
_PTX_TARGET = re.compile(rb"^\s*\.target\s+sm_(\d+)", re.MULTILINE)
_PTX_ENTRY = re.compile(rb"\.entry\s+([A-Za-z_][A-Za-z0-9_$]*)")

MAX_SHARED_MEMORY_PER_BLOCK = 48 * 1024


def _cubin_arch(data: bytes) -> int | None:
    """
    Read the SM target of a cubin from the EF_CUDA_SM bits of its ELF e_flags.

    Returns None if the header is too short to hold e_flags.
    """
    # e_flags sits at 0x30 in ELF64 headers and at 0x24 in ELF32 ones
    offset = 0x30 if data[4:5] == b"\x02" else 0x24
    if len(data) < offset + 4:
        return None
    order = ">" if data[5:6] == b"\x02" else "<"
    (flags,) = struct.unpack_from(order + "I", data, offset)
    return flags & 0xFF


class CPUBackend(Backend):
    """
    CPU backend implementation.

    Simulates a single device with a configurable compute capability and
    memory size. Launches are queued and run on synchronize(), so kernel
    faults surface the same way they do on a real device.

    Example:
        >>> backend = CPUBackend(compute_capability=(8, 6))
        >>> device, context = backend.initialize()
        >>> buffer = backend.allocate(context, 64)
    """

    def __init__(
        self,
        *,
        compute_capability: tuple[int, int] = (8, 6),
        memory_limit_bytes: int | None = None,
        max_threads_per_block: int = MAX_THREADS_PER_BLOCK,
        device_count: int = 1,
        kernels: dict[str, CPUKernel] | None = None,
    ) -> None:
        """
        Initialize the CPU backend.

        Args:
            compute_capability: (major, minor) reported for the device.
            memory_limit_bytes: Simulated device memory size (unlimited if None).
            max_threads_per_block: Largest accepted block size.
            device_count: Number of simulated devices.
            kernels: Extra kernel emulations keyed by entry point name.
        """
        self._compute_capability = compute_capability
        self._memory_limit_bytes = memory_limit_bytes
        self._max_threads_per_block = max_threads_per_block
        self._device_count = device_count

        self._kernels: dict[str, CPUKernel] = dict(BUILTIN_KERNELS)
        if kernels:
            self._kernels.update(kernels)

        self._memory: dict[int, NDArray[Any]] = {}
        self._owners: dict[int, ExecutionContext] = {}
        self._next_handle = 1
        self._pending: list[tuple[CPUKernel, KernelLaunchDescriptor, list[Any]]] = []
        self._launch_count = 0

    @property
    def backend_type(self) -> BackendType:
        """Get the backend type."""
        return BackendType.CPU

    @property
    def is_available(self) -> bool:
        """Check if this backend is available."""
        return True  # CPU is always available

    @property
    def allocated_bytes(self) -> int:
        """Bytes currently held by live buffers."""
        return sum(array.nbytes for array in self._memory.values())

    @property
    def live_buffer_count(self) -> int:
        """Number of buffers allocated and not yet freed."""
        return len(self._memory)

    @property
    def launch_count(self) -> int:
        """Number of kernels that have been submitted."""
        return self._launch_count

    def register_kernel(self, name: str, kernel: CPUKernel) -> None:
        """
        Register an emulation for a device entry point.

        Args:
            name: Entry point name as it appears in the artifact.
            kernel: Callable taking (grid, block, *params).
        """
        self._kernels[name] = kernel

    def initialize(self, device_ordinal: int = 0) -> tuple[DeviceHandle, ExecutionContext]:
        """Select a simulated device and create a context for it."""
        if self._device_count < 1:
            raise InitializationError("No compatible device found")
        if device_ordinal < 0 or device_ordinal >= self._device_count:
            raise InitializationError(
                f"Invalid device ordinal {device_ordinal}. "
                f"Valid range: 0-{self._device_count - 1}"
            )

        device = DeviceHandle(
            ordinal=device_ordinal,
            name="CPU Simulator",
            compute_capability=self._compute_capability,
        )
        context = ExecutionContext(device=device, handle=device_ordinal)
        logger.info(f"CPU backend initialized (simulated {device.arch})")
        return device, context

    def shutdown(self, context: ExecutionContext) -> None:
        """Destroy the context, dropping pending work and all of its memory."""
        if not context.active:
            return
        self._pending = [
            (kernel, descriptor, params)
            for kernel, descriptor, params in self._pending
            if descriptor.function.module.context is not context
        ]
        for handle in [h for h, owner in self._owners.items() if owner is context]:
            del self._owners[handle]
            del self._memory[handle]
        context.active = False
        logger.debug("CPU context destroyed")

    def query_compute_capability(self, device: DeviceHandle) -> tuple[int, int]:
        """Return the configured compute capability."""
        return self._compute_capability

    def load_module(self, context: ExecutionContext, path: str | Path) -> KernelModule:
        """
        Load a cubin (ELF) or PTX artifact.

        Both kinds are checked against the device architecture, read from
        the ``.target`` directive of PTX or the ELF header flags of a cubin.
        PTX entry points are recorded for symbol lookup.
        """
        path = Path(path)
        if not context.active:
            raise ModuleLoadError(path, "context has been destroyed")

        try:
            data = path.read_bytes()
        except OSError as e:
            raise ModuleLoadError(path, e) from e

        if data.startswith(_ELF_MAGIC):
            target_arch = _cubin_arch(data)
            if target_arch is None:
                raise ModuleLoadError(path, "truncated ELF header")
            entries = None
        else:
            target = _PTX_TARGET.search(data)
            if target is None:
                raise ModuleLoadError(path, "not a cubin or PTX image")
            target_arch = int(target.group(1))
            entries = {m.decode() for m in _PTX_ENTRY.findall(data)}

        device_arch = context.device.encoded_capability
        if target_arch > device_arch:
            raise ModuleLoadError(
                path,
                f"image built for sm_{target_arch}, device is sm_{device_arch}",
            )

        return KernelModule(path=path, context=context, handle=(data, entries))

    def get_function(self, module: KernelModule, name: str) -> KernelFunction:
        """Resolve an entry point recorded in the module image."""
        data, entries = module.handle
        if entries is not None:
            found = name in entries
        else:
            # Symbol and section names are NUL-terminated, e.g. ".text.parentKernel\0"
            found = re.search(rb"[\x00.]" + re.escape(name.encode()) + rb"\x00", data) is not None
        if not found:
            raise SymbolNotFoundError(name, module.path)
        return KernelFunction(name=name, module=module, handle=name)

    def allocate(
        self,
        context: ExecutionContext,
        element_count: int,
        dtype: DTypeLike = np.float32,
    ) -> DeviceBuffer:
        """Allocate a zero-filled NumPy array as simulated device memory."""
        dt = np.dtype(dtype)
        nbytes = element_count * dt.itemsize
        if not context.active:
            raise OutOfMemoryError(nbytes, "context has been destroyed")
        if element_count < 0:
            raise OutOfMemoryError(nbytes, "negative element count")
        if (
            self._memory_limit_bytes is not None
            and self.allocated_bytes + nbytes > self._memory_limit_bytes
        ):
            raise OutOfMemoryError(
                nbytes,
                f"{self._memory_limit_bytes - self.allocated_bytes} bytes free",
            )

        handle = self._next_handle
        self._next_handle += 1
        self._memory[handle] = np.zeros(element_count, dtype=dt)
        self._owners[handle] = context
        logger.debug(f"Allocated simulated buffer {handle}: {nbytes} bytes")
        return DeviceBuffer(element_count=element_count, dtype=dt, context=context, handle=handle)

    def free(self, buffer: DeviceBuffer) -> None:
        """Release a simulated buffer."""
        if buffer.freed:
            return
        self._memory.pop(buffer.handle, None)
        self._owners.pop(buffer.handle, None)
        buffer.freed = True
        logger.debug(f"Freed simulated buffer {buffer.handle}")

    def copy_to_device(self, buffer: DeviceBuffer, host_array: NDArray[Any]) -> None:
        """Copy host data into simulated device memory."""
        check_transfer_shape(buffer, host_array, "to device")
        self._memory[buffer.handle][:] = host_array.reshape(-1)

    def copy_to_host(
        self,
        buffer: DeviceBuffer,
        out: NDArray[Any] | None = None,
    ) -> NDArray[Any]:
        """Copy simulated device memory back to the host."""
        # Device-to-host copies are ordered after all pending work
        self.synchronize(buffer.context)

        if out is None:
            out = np.empty(buffer.element_count, dtype=buffer.dtype)
        check_transfer_shape(buffer, out, "to host")
        out.reshape(-1)[:] = self._memory[buffer.handle]
        return out

    def launch(self, descriptor: KernelLaunchDescriptor) -> None:
        """Validate a launch and queue it until the next synchronize()."""
        name = descriptor.function.name
        grid, block = descriptor.grid, descriptor.block

        def reject(reason: str) -> LaunchError:
            return LaunchError(name, grid, block, reason)

        if not descriptor.function.module.context.active:
            raise reject("context has been destroyed")
        if any(d < 1 for d in grid):
            raise reject("grid dimensions must be positive")
        if any(d < 1 for d in block):
            raise reject("block dimensions must be positive")
        if block[0] * block[1] * block[2] > self._max_threads_per_block:
            raise reject(f"more than {self._max_threads_per_block} threads per block")
        if descriptor.shared_memory_bytes > MAX_SHARED_MEMORY_PER_BLOCK:
            raise reject("too much shared memory requested")

        kernel = self._kernels.get(name)
        if kernel is None:
            raise reject("no CPU emulation registered for this entry point")

        params: list[Any] = []
        for param in descriptor.params:
            if isinstance(param, DeviceBuffer):
                if param.freed:
                    raise reject("kernel parameter refers to a freed buffer")
                if not param.context.active:
                    raise reject("kernel parameter belongs to a destroyed context")
                params.append(self._memory[param.handle])
            else:
                params.append(param)

        self._pending.append((kernel, descriptor, params))
        self._launch_count += 1

    def synchronize(self, context: ExecutionContext) -> None:
        """Run all queued launches in submission order."""
        pending, self._pending = self._pending, []
        for kernel, descriptor, params in pending:
            try:
                kernel(descriptor.grid, descriptor.block, *params)
            except Exception as e:
                raise DeviceExecutionError(
                    f"kernel '{descriptor.function.name}' faulted: {e}"
                ) from e

    def __repr__(self) -> str:
        """String representation."""
        major, minor = self._compute_capability
        return f"CPUBackend(sm_{major}{minor}, live_buffers={self.live_buffer_count})"


def parent_kernel_cpu(
    grid: tuple[int, int, int],
    block: tuple[int, int, int],
    size: Any,
    data: NDArray[np.float32],
) -> None:
    """
    CPU emulation of the dynamic parallelism demo kernel.

    Every parent thread ``i`` launches ``size // blockDim.x`` child
    threads, and child ``j`` writes ``i + 0.1 * j`` in single precision.
    """
    size = int(size)
    threads = block[0]
    children = size // threads
    if children == 0:
        return

    parents = np.arange(grid[0] * threads)
    parents = parents[parents * children < size]
    child_index = np.arange(children, dtype=np.float32)
    values = parents.astype(np.float32)[:, None] + np.float32(0.1) * child_index[None, :]
    flat = values.reshape(-1)[:size]
    data[: flat.size] = flat


BUILTIN_KERNELS: dict[str, CPUKernel] = {
    "parentKernel": parent_kernel_cpu,
}
