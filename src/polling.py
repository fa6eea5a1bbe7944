"""
Shared poll-until-settled loop used for stacks and auto-scaling groups.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Stack waits are never given less than five minutes.
MIN_TIMEOUT = 300

DEFAULT_INTERVAL = 10


class OperationTimeoutError(Exception):
    """Raised when a wait loop exceeds its deadline."""

    def __init__(self, operation: str, target: str, timeout: Optional[float]):
        self.operation = operation
        self.target = target
        self.timeout = timeout
        super().__init__(
            f"Timed out waiting for {operation} of {target}. (timeout={timeout}) "
            "Try increasing the timeout period."
        )


@dataclass(frozen=True)
class PollingConfig:
    """
    How often to poll and how long to wait.

    Args:
        interval: Seconds to suspend between queries
        timeout: Seconds before giving up, or None to wait indefinitely
        clock: Monotonic time source
    """

    interval: float = DEFAULT_INTERVAL
    timeout: Optional[float] = None
    clock: Callable[[], float] = field(default=time.monotonic, compare=False)

    @classmethod
    def for_timeout(
        cls, seconds: float, interval: float = DEFAULT_INTERVAL
    ) -> "PollingConfig":
        """Deadline clamped to MIN_TIMEOUT."""
        return cls(interval=interval, timeout=max(seconds, MIN_TIMEOUT))

    @classmethod
    def no_wait(cls) -> "PollingConfig":
        """Zero interval and no deadline, for tests and short-circuit runs."""
        return cls(interval=0, timeout=None)

    def with_interval(self, interval: float) -> "PollingConfig":
        return PollingConfig(interval=interval, timeout=self.timeout, clock=self.clock)

    def with_timeout(self, timeout: Optional[float]) -> "PollingConfig":
        return PollingConfig(interval=self.interval, timeout=timeout, clock=self.clock)


class CancellationToken:
    """Cooperative cancellation signal observed at every suspend point."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Suspend for up to ``seconds``. Returns True if cancelled."""
        if seconds <= 0:
            return self._event.is_set()
        return self._event.wait(seconds)


@dataclass
class PollResult(Generic[T]):
    """Last observed state and how the loop ended."""

    value: Optional[T]
    interrupted: bool = False
    attempts: int = 0


def poll_until(
    query: Callable[[], T],
    in_progress: Callable[[T], bool],
    config: PollingConfig,
    description: str,
    target: str,
    token: Optional[CancellationToken] = None,
) -> PollResult[T]:
    """
    Query until ``in_progress`` is false.

    Args:
        query: Fetches the current state
        in_progress: True while the remote operation is still running
        config: Interval and deadline
        description: Operation name used in timeout and interruption messages
        target: Name of the thing being waited on
        token: Cancellation signal; a fresh one is used when omitted

    Returns:
        PollResult with the settled value, or the last value and
        ``interrupted=True`` if the wait was cancelled

    Raises:
        OperationTimeoutError: If the deadline elapses while still in progress
    """
    token = token or CancellationToken()
    started = config.clock()
    value: Optional[T] = None
    attempts = 0

    while True:
        if config.timeout is not None and config.clock() - started > config.timeout:
            logger.error(f"Timed out waiting for {description} of {target}")
            raise OperationTimeoutError(description, target, config.timeout)

        value = query()
        attempts += 1

        if not in_progress(value):
            return PollResult(value=value, attempts=attempts)

        if token.wait(config.interval):
            logger.warning(
                f"Received an interruption signal while waiting for {description} "
                f"of {target}; no longer waiting. The remote operation was not "
                "cancelled. Check your AWS account to make sure you are not "
                "charged for resources left behind."
            )
            logger.warning(f"Last known state of {target}: {value}")
            return PollResult(value=value, interrupted=True, attempts=attempts)
