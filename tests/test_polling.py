"""
Tests for the shared polling loop.
"""

import itertools
import logging
from unittest.mock import Mock

import pytest

from polling import (
    MIN_TIMEOUT,
    CancellationToken,
    OperationTimeoutError,
    PollingConfig,
    poll_until,
)


def ticking_clock(step: float = 1.0):
    """A clock that advances by ``step`` every time it is read."""
    counter = itertools.count()
    return lambda: next(counter) * step


class TestPollingConfig:
    """Test PollingConfig constructors."""

    def test_for_timeout_clamps_to_minimum(self) -> None:
        """Test short timeouts are raised to the minimum."""
        config = PollingConfig.for_timeout(1)

        assert config.timeout == MIN_TIMEOUT
        assert config.interval == 10

    def test_for_timeout_keeps_longer_values(self) -> None:
        """Test timeouts above the minimum are kept."""
        assert PollingConfig.for_timeout(900).timeout == 900

    def test_no_wait(self) -> None:
        """Test the zero-wait configuration has no delay and no deadline."""
        config = PollingConfig.no_wait()

        assert config.interval == 0
        assert config.timeout is None

    def test_with_interval_keeps_deadline(self) -> None:
        """Test changing the interval keeps the deadline and clock."""
        clock = ticking_clock()
        config = PollingConfig(interval=10, timeout=600, clock=clock)

        changed = config.with_interval(5)

        assert changed.interval == 5
        assert changed.timeout == 600
        assert changed.clock is clock

    def test_with_timeout_none(self) -> None:
        """Test removing the deadline."""
        assert PollingConfig.for_timeout(600).with_timeout(None).timeout is None


class TestCancellationToken:
    """Test CancellationToken."""

    def test_not_cancelled_by_default(self) -> None:
        """Test a fresh token does not report cancellation."""
        token = CancellationToken()

        assert token.cancelled is False
        assert token.wait(0) is False

    def test_cancel(self) -> None:
        """Test cancelling makes waits return immediately."""
        token = CancellationToken()
        token.cancel()

        assert token.cancelled is True
        assert token.wait(0) is True
        assert token.wait(60) is True


class TestPollUntil:
    """Test poll_until."""

    def test_returns_first_settled_value(self) -> None:
        """Test polling stops as soon as the state settles."""
        query = Mock(side_effect=["busy", "busy", "done"])

        result = poll_until(
            query, lambda v: v == "busy", PollingConfig.no_wait(), "test", "thing"
        )

        assert result.value == "done"
        assert result.attempts == 3
        assert result.interrupted is False
        assert query.call_count == 3

    def test_settled_on_first_query(self) -> None:
        """Test no suspension happens when already settled."""
        token = Mock(spec=CancellationToken)

        result = poll_until(
            lambda: "done", lambda v: False, PollingConfig(interval=10), "test", "thing", token
        )

        assert result.attempts == 1
        token.wait.assert_not_called()

    def test_suspends_for_interval(self) -> None:
        """Test the configured interval is used between queries."""
        token = Mock(spec=CancellationToken)
        token.wait.return_value = False
        query = Mock(side_effect=["busy", "done"])

        poll_until(
            query, lambda v: v == "busy", PollingConfig(interval=7), "test", "thing", token
        )

        token.wait.assert_called_once_with(7)

    def test_timeout(self) -> None:
        """Test the deadline raises OperationTimeoutError."""
        config = PollingConfig(interval=0, timeout=1, clock=ticking_clock())
        query = Mock(return_value="busy")

        with pytest.raises(OperationTimeoutError) as exc_info:
            poll_until(query, lambda v: True, config, "stack creation", "my-stack")

        assert exc_info.value.timeout == 1
        assert exc_info.value.target == "my-stack"
        assert "Try increasing the timeout" in str(exc_info.value)
        assert query.call_count == 1

    def test_no_deadline_never_times_out(self) -> None:
        """Test a missing deadline disables the timeout check."""
        config = PollingConfig(interval=0, timeout=None, clock=ticking_clock(step=1000))
        query = Mock(side_effect=["busy"] * 5 + ["done"])

        result = poll_until(query, lambda v: v == "busy", config, "test", "thing")

        assert result.value == "done"
        assert result.attempts == 6

    def test_cancellation_abandons_wait(self, caplog) -> None:
        """Test cancellation returns the last value and warns the operator."""
        caplog.set_level(logging.WARNING)
        token = CancellationToken()
        token.cancel()
        query = Mock(return_value="busy")

        result = poll_until(
            query, lambda v: True, PollingConfig(interval=30), "stack creation", "my-stack", token
        )

        assert result.interrupted is True
        assert result.value == "busy"
        assert query.call_count == 1
        assert "not cancelled" in caplog.text
        assert "my-stack" in caplog.text
