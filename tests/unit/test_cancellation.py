"""Unit tests for CancellationToken."""

import threading
from unittest.mock import Mock

import pytest

from genpipe.core.cancellation import CancellationToken
from genpipe.core.errors import Canceled


class TestCancellationToken:
    """Tests for CancellationToken."""

    def test_initial_state(self):
        """Test initial state."""
        token = CancellationToken()

        assert token.cancelled is False
        token.raise_if_cancelled()

    def test_cancel(self):
        """Test cancel."""
        token = CancellationToken()
        token.cancel()

        assert token.cancelled is True
        with pytest.raises(Canceled):
            token.raise_if_cancelled()

    def test_callbacks_run_once(self):
        """Test callbacks run once."""
        token = CancellationToken()
        callback = Mock()
        token.register(callback)

        token.cancel()
        token.cancel()

        callback.assert_called_once()

    def test_unregister(self):
        """Test unregister."""
        token = CancellationToken()
        callback = Mock()
        unregister = token.register(callback)

        unregister()
        token.cancel()

        callback.assert_not_called()

    def test_register_after_cancel_runs_immediately(self):
        """Test register after cancel runs immediately."""
        token = CancellationToken()
        token.cancel()
        callback = Mock()

        unregister = token.register(callback)

        callback.assert_called_once()
        unregister()

    def test_failing_callback_does_not_stop_others(self):
        """Test failing callback does not stop others."""
        token = CancellationToken()
        failing = Mock(side_effect=OSError("already closed"))
        other = Mock()
        token.register(failing)
        token.register(other)

        token.cancel()

        other.assert_called_once()
        assert token.cancelled is True

    def test_wait_returns_false_on_timeout(self):
        """Test wait returns false on timeout."""
        assert CancellationToken().wait(0.01) is False

    def test_wait_wakes_on_cancel(self):
        """Test wait wakes on cancel."""
        token = CancellationToken()
        timer = threading.Timer(0.05, token.cancel)
        timer.start()

        try:
            assert token.wait(10) is True
        finally:
            timer.cancel()

    def test_negative_wait(self):
        """Test negative wait."""
        assert CancellationToken().wait(-1) is False
