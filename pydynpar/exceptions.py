"""
pydynpar exception hierarchy.

This module defines the exception hierarchy for pydynpar, with specific
exception types for each stage of the compile-and-launch pipeline:

- BackendError: Driver initialization, device queries, module loading,
  memory management, kernel launch and execution failures
- CompilationError: Ahead-of-time compilation of device source files
- ValidationError: Configuration validation errors

All exceptions except CompilationInterruptedError inherit from
PyDynParError for easy catching.
"""

from __future__ import annotations

from pathlib import Path


class PyDynParError(Exception):
    """Base exception for all pydynpar errors."""

    pass


class BackendError(PyDynParError):
    """Base exception for compute backend errors."""

    pass


class InitializationError(BackendError):
    """Raised when the driver cannot be initialized or no device is present."""

    pass


class BackendNotAvailableError(InitializationError):
    """Raised when a requested backend is not available."""

    def __init__(self, backend_name: str, reason: str) -> None:
        self.backend_name = backend_name
        self.reason = reason
        super().__init__(f"Backend '{backend_name}' is not available: {reason}")


class DeviceQueryError(BackendError):
    """Raised when a device attribute query fails."""

    def __init__(self, device_ordinal: int, attribute: str, cause: Exception) -> None:
        self.device_ordinal = device_ordinal
        self.attribute = attribute
        self.cause = cause
        super().__init__(f"Failed to query {attribute} of device {device_ordinal}: {cause}")


class ModuleLoadError(BackendError):
    """Raised when a compiled artifact cannot be loaded into a context."""

    def __init__(self, path: str | Path, cause: Exception | str) -> None:
        self.path = Path(path)
        self.cause = cause
        super().__init__(f"Failed to load module '{self.path}': {cause}")


class SymbolNotFoundError(BackendError):
    """Raised when an entry point is missing from a loaded module."""

    def __init__(self, name: str, module_path: str | Path) -> None:
        self.name = name
        self.module_path = Path(module_path)
        super().__init__(f"Entry point '{name}' not found in module '{self.module_path}'")


class OutOfMemoryError(BackendError):
    """Raised when a device allocation cannot be satisfied."""

    def __init__(self, nbytes: int, cause: Exception | str | None = None) -> None:
        self.nbytes = nbytes
        self.cause = cause
        msg = f"Failed to allocate {nbytes} bytes of device memory"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)


class LaunchError(BackendError):
    """Raised when the device rejects a launch configuration."""

    def __init__(
        self,
        kernel_name: str,
        grid: tuple[int, int, int],
        block: tuple[int, int, int],
        cause: Exception | str,
    ) -> None:
        self.kernel_name = kernel_name
        self.grid = grid
        self.block = block
        self.cause = cause
        super().__init__(
            f"Failed to launch kernel '{kernel_name}' with grid={grid} block={block}: {cause}"
        )


class DeviceExecutionError(BackendError):
    """Raised when a kernel faults while running on the device."""

    def __init__(self, cause: Exception | str) -> None:
        self.cause = cause
        super().__init__(f"Device execution failed: {cause}")


class TransferError(BackendError):
    """Raised when a host/device copy fails."""

    def __init__(self, direction: str, cause: Exception | str) -> None:
        self.direction = direction
        self.cause = cause
        super().__init__(f"Failed to copy buffer {direction}: {cause}")


class CompilationError(PyDynParError):
    """
    Raised when ahead-of-time compilation fails.

    Carries the captured compiler output when the compiler ran.
    """

    def __init__(
        self,
        message: str,
        *,
        stderr: str = "",
        stdout: str = "",
        returncode: int | None = None,
    ) -> None:
        self.stderr = stderr
        self.stdout = stdout
        self.returncode = returncode
        super().__init__(message)


class InputNotFoundError(CompilationError):
    """Raised when the device source file does not exist."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        super().__init__(f"Input file not found: {self.path} ({self.path.absolute()})")


class CompilationInterruptedError(KeyboardInterrupt):
    """
    Raised when the process is interrupted while waiting for the compiler.

    Derives from KeyboardInterrupt so the interrupt keeps propagating
    through ``except Exception`` handlers.
    """

    def __init__(self, command: list[str]) -> None:
        self.command = command
        super().__init__(f"Interrupted while waiting for {command[0]} output")


class ValidationError(PyDynParError):
    """Base exception for validation-related errors."""

    pass


class InvalidConfigurationError(ValidationError):
    """Raised when configuration is invalid."""

    def __init__(self, parameter: str, value: object, reason: str) -> None:
        self.parameter = parameter
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid configuration: {parameter}={value!r} - {reason}")
