"""
Backend base classes and interfaces.

Defines the driver boundary that all backends must implement: device
and context lifetime, module loading, symbol lookup, linear memory,
copies, kernel launch and synchronization.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import TYPE_CHECKING, Any

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import DTypeLike, NDArray

    from pydynpar.core.launch import KernelLaunchDescriptor


class BackendType(Enum):
    """Type of compute backend."""

    CPU = auto()
    CUDA = auto()


@dataclass(frozen=True)
class DeviceHandle:
    """A physical (or simulated) accelerator selected for the run."""

    ordinal: int
    name: str
    compute_capability: tuple[int, int]

    @property
    def encoded_capability(self) -> int:
        """Compute capability as major * 10 + minor (e.g. 86)."""
        major, minor = self.compute_capability
        return major * 10 + minor

    @property
    def arch(self) -> str:
        """Target architecture flag value, e.g. 'sm_86'."""
        return f"sm_{self.encoded_capability}"


@dataclass
class ExecutionContext:
    """The stateful session that owns device allocations."""

    device: DeviceHandle
    handle: Any = None
    active: bool = True


@dataclass
class KernelModule:
    """A compiled artifact loaded into a context."""

    path: Path
    context: ExecutionContext
    handle: Any = None


@dataclass
class KernelFunction:
    """A named entry point resolved from a loaded module."""

    name: str
    module: KernelModule
    handle: Any = None


@dataclass
class DeviceBuffer:
    """Linear device memory holding ``element_count`` elements."""

    element_count: int
    dtype: np.dtype[Any]
    context: ExecutionContext
    handle: Any = None
    freed: bool = field(default=False)

    @property
    def nbytes(self) -> int:
        """Size of the allocation in bytes."""
        return self.element_count * self.dtype.itemsize

    def __repr__(self) -> str:
        """String representation."""
        state = "freed" if self.freed else "live"
        return f"DeviceBuffer(elements={self.element_count}, dtype={self.dtype}, {state})"


class Backend(ABC):
    """
    Abstract base class for compute backends.

    Every call is synchronous. Failures are reported by raising the
    matching pydynpar exception rather than returning status codes.
    """

    @property
    @abstractmethod
    def backend_type(self) -> BackendType:
        """Get the backend type."""
        ...

    @property
    @abstractmethod
    def is_available(self) -> bool:
        """Check if this backend is available."""
        ...

    @abstractmethod
    def initialize(self, device_ordinal: int = 0) -> tuple[DeviceHandle, ExecutionContext]:
        """
        Initialize the driver, select a device and create a context.

        Args:
            device_ordinal: Index of the device to use.

        Returns:
            The selected device and its execution context.

        Raises:
            InitializationError: If the driver or device is unusable.
        """
        ...

    @abstractmethod
    def shutdown(self, context: ExecutionContext) -> None:
        """
        Destroy a context and release everything it owns.

        Args:
            context: Context to destroy.
        """
        ...

    @abstractmethod
    def query_compute_capability(self, device: DeviceHandle) -> tuple[int, int]:
        """
        Read the (major, minor) compute capability of a device.

        Raises:
            DeviceQueryError: If the attribute query fails.
        """
        ...

    @abstractmethod
    def load_module(self, context: ExecutionContext, path: str | Path) -> KernelModule:
        """
        Load a compiled artifact into a context.

        Raises:
            ModuleLoadError: If the artifact is missing, malformed or built
                for another architecture.
        """
        ...

    @abstractmethod
    def get_function(self, module: KernelModule, name: str) -> KernelFunction:
        """
        Resolve a named entry point in a loaded module.

        Raises:
            SymbolNotFoundError: If the module has no such entry point.
        """
        ...

    @abstractmethod
    def allocate(
        self,
        context: ExecutionContext,
        element_count: int,
        dtype: DTypeLike = np.float32,
    ) -> DeviceBuffer:
        """
        Allocate linear device memory.

        Raises:
            OutOfMemoryError: If the allocation cannot be satisfied.
        """
        ...

    @abstractmethod
    def free(self, buffer: DeviceBuffer) -> None:
        """
        Release device memory. Freeing twice is a no-op.

        Args:
            buffer: Buffer to free.
        """
        ...

    @abstractmethod
    def copy_to_device(self, buffer: DeviceBuffer, host_array: NDArray[Any]) -> None:
        """
        Copy host data into a device buffer.

        Raises:
            TransferError: On a size mismatch or an invalid buffer.
        """
        ...

    @abstractmethod
    def copy_to_host(
        self,
        buffer: DeviceBuffer,
        out: NDArray[Any] | None = None,
    ) -> NDArray[Any]:
        """
        Copy a device buffer back to host memory.

        Args:
            buffer: Source buffer.
            out: Optional destination with the same element count.

        Returns:
            Host array holding the buffer contents.

        Raises:
            TransferError: On a size mismatch or an invalid buffer.
        """
        ...

    @abstractmethod
    def launch(self, descriptor: KernelLaunchDescriptor) -> None:
        """
        Submit a kernel launch.

        Raises:
            LaunchError: If the device rejects the configuration.
        """
        ...

    @abstractmethod
    def synchronize(self, context: ExecutionContext) -> None:
        """
        Block until all submitted device work has completed.

        Raises:
            DeviceExecutionError: If a kernel faulted.
        """
        ...


def check_transfer_shape(
    buffer: DeviceBuffer,
    host_array: NDArray[Any],
    direction: str,
) -> None:
    """Validate that a host array can take part in a copy with ``buffer``."""
    from pydynpar.exceptions import TransferError

    if buffer.freed:
        raise TransferError(direction, "buffer has already been freed")
    if not buffer.context.active:
        raise TransferError(direction, "context has been destroyed")
    if host_array.size != buffer.element_count:
        raise TransferError(
            direction,
            f"host array has {host_array.size} elements, buffer has {buffer.element_count}",
        )
    if host_array.dtype != buffer.dtype:
        raise TransferError(
            direction,
            f"host array dtype {host_array.dtype} does not match buffer dtype {buffer.dtype}",
        )
