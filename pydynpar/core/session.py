"""
Device session bootstrapper.

Initializes a backend, selects a device and owns the single execution
context of the process.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydynpar.exceptions import InitializationError

if TYPE_CHECKING:
    from pydynpar.backends.base import Backend, DeviceHandle, ExecutionContext

logger = logging.getLogger(__name__)

# The session that currently owns a live context, if any
_active_session: DeviceSession | None = None


class DeviceSession:
    """
    Owner of the device and execution context for one run.

    Only one session may hold a live context at a time. The context is
    released by shutdown(), which also runs when the session is used as
    a context manager, on every exit path.

    Example:
        >>> with DeviceSession(CPUBackend()) as session:
        ...     print(session.device.arch)
    """

    def __init__(self, backend: Backend, device_ordinal: int = 0) -> None:
        """
        Initialize the session.

        Args:
            backend: Backend providing the driver boundary.
            device_ordinal: Index of the device to use.
        """
        self._backend = backend
        self._device_ordinal = device_ordinal
        self._device: DeviceHandle | None = None
        self._context: ExecutionContext | None = None

    def __enter__(self) -> DeviceSession:
        """Context manager entry."""
        self.initialize()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Context manager exit."""
        self.shutdown()

    def initialize(self) -> tuple[DeviceHandle, ExecutionContext]:
        """
        Initialize the driver and create the execution context.

        Repeated calls return the same device and context.

        Returns:
            The selected device and its execution context.

        Raises:
            InitializationError: If no compatible device is present, the
                driver cannot be initialized, or another session is live.
        """
        global _active_session

        if self._device is not None and self._context is not None:
            return self._device, self._context

        if _active_session is not None:
            raise InitializationError(
                "Another device session is still active; shut it down first"
            )

        device, context = self._backend.initialize(self._device_ordinal)
        self._device = device
        self._context = context
        _active_session = self
        logger.info(f"Device session started on {device.name} (ordinal {device.ordinal})")
        return device, context

    def shutdown(self) -> None:
        """Destroy the execution context. Safe to call more than once."""
        global _active_session

        if self._context is None:
            return

        context = self._context
        self._context = None
        self._device = None
        if _active_session is self:
            _active_session = None

        self._backend.shutdown(context)
        logger.info("Device session shut down")

    @property
    def is_active(self) -> bool:
        """Check if the session holds a live context."""
        return self._context is not None

    @property
    def backend(self) -> Backend:
        """Get the backend."""
        return self._backend

    @property
    def device(self) -> DeviceHandle:
        """Get the selected device."""
        if self._device is None:
            raise InitializationError("Device session has not been initialized")
        return self._device

    @property
    def context(self) -> ExecutionContext:
        """Get the execution context."""
        if self._context is None:
            raise InitializationError("Device session has not been initialized")
        return self._context

    def __repr__(self) -> str:
        """String representation."""
        device = self._device.name if self._device else None
        return f"DeviceSession(backend={self._backend!r}, device={device}, active={self.is_active})"


def get_active_session() -> DeviceSession | None:
    """Get the session that currently owns a live context."""
    return _active_session
