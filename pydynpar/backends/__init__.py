"""
Backend implementations for pydynpar.
"""

from pydynpar.backends.base import (
    Backend,
    BackendType,
    DeviceBuffer,
    DeviceHandle,
    ExecutionContext,
    KernelFunction,
    KernelModule,
)
from pydynpar.backends.cpu import CPUBackend
from pydynpar.backends.cuda import CUDABackend

__all__ = [
    "Backend",
    "BackendType",
    "DeviceHandle",
    "ExecutionContext",
    "KernelModule",
    "KernelFunction",
    "DeviceBuffer",
    "CPUBackend",
    "CUDABackend",
    "create_backend",
]


def create_backend(name: str, **kwargs: object) -> Backend:
    """
    Create a backend by name.

    Args:
        name: 'cuda' or 'cpu'.
        **kwargs: Backend constructor arguments.

    Returns:
        A new backend instance.
    """
    backends: dict[str, type[Backend]] = {
        "cpu": CPUBackend,
        "cuda": CUDABackend,
    }
    try:
        backend_cls = backends[name.lower()]
    except KeyError:
        from pydynpar.exceptions import InvalidConfigurationError

        raise InvalidConfigurationError(
            "backend", name, f"expected one of {sorted(backends)}"
        ) from None
    return backend_cls(**kwargs)  # type: ignore[arg-type]
