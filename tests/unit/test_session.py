"""
Unit tests for DeviceSession.
"""

from __future__ import annotations

import pytest

from pydynpar.backends.cpu import CPUBackend
from pydynpar.core.session import DeviceSession, get_active_session
from pydynpar.exceptions import InitializationError


class TestDeviceSession:
    """Tests for DeviceSession."""

    def test_initialize(self) -> None:
        """Test that initialize returns device and context."""
        session = DeviceSession(CPUBackend(compute_capability=(8, 0)))

        device, context = session.initialize()

        assert device.compute_capability == (8, 0)
        assert context.active
        assert session.is_active
        assert session.device is device
        assert session.context is context
        session.shutdown()

    def test_initialize_is_idempotent(self) -> None:
        """Test that repeated initialization returns the same context."""
        session = DeviceSession(CPUBackend())

        first = session.initialize()
        second = session.initialize()

        assert first[0] is second[0]
        assert first[1] is second[1]
        session.shutdown()

    def test_single_live_context(self) -> None:
        """Test that a second session cannot start while one is live."""
        first = DeviceSession(CPUBackend())
        first.initialize()

        with pytest.raises(InitializationError, match="Another device session"):
            DeviceSession(CPUBackend()).initialize()

        first.shutdown()
        second = DeviceSession(CPUBackend())
        second.initialize()
        assert get_active_session() is second
        second.shutdown()

    def test_shutdown(self) -> None:
        """Test that shutdown destroys the context and is idempotent."""
        session = DeviceSession(CPUBackend())
        _, context = session.initialize()

        session.shutdown()
        session.shutdown()

        assert not context.active
        assert not session.is_active
        assert get_active_session() is None

    def test_context_manager(self) -> None:
        """Test context manager usage."""
        with DeviceSession(CPUBackend()) as session:
            context = session.context
            assert session.is_active

        assert not context.active
        assert get_active_session() is None

    def test_context_manager_releases_on_error(self) -> None:
        """Test that the context is released when the body raises."""
        with pytest.raises(RuntimeError):
            with DeviceSession(CPUBackend()) as session:
                context = session.context
                raise RuntimeError("boom")

        assert not context.active
        assert get_active_session() is None

    def test_failed_initialization(self) -> None:
        """Test that a failed initialization leaves no live session."""
        session = DeviceSession(CPUBackend(device_count=0))

        with pytest.raises(InitializationError):
            session.initialize()

        assert not session.is_active
        assert get_active_session() is None

    def test_uninitialized_access(self) -> None:
        """Test accessing the device before initialization."""
        session = DeviceSession(CPUBackend())

        with pytest.raises(InitializationError):
            _ = session.device
        with pytest.raises(InitializationError):
            _ = session.context

    def test_repr(self) -> None:
        """Test string representation."""
        session = DeviceSession(CPUBackend())
        assert "active=False" in repr(session)
