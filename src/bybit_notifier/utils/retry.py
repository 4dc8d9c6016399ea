"""Reconnect policy with exponential backoff and a failure cooldown."""

import asyncio
import logging

from ..config.settings import ReconnectConfig

logger = logging.getLogger(__name__)


class ReconnectPolicy:
    """
    Exponential backoff for a long-lived connection.

    Each failed attempt waits the current delay, after which the delay is
    multiplied up to ``max_delay``. Once ``failure_threshold`` consecutive
    failures have accumulated the caller should cool down and call
    :meth:`reset`, similar to a circuit breaker moving to HALF_OPEN.
    """

    def __init__(self, config: ReconnectConfig):
        self.initial_delay = config.initial_delay_seconds
        self.max_delay = config.max_delay_seconds
        self.multiplier = config.multiplier
        self.failure_threshold = config.failure_threshold
        self.cooldown = config.cooldown_seconds

        self.consecutive_failures = 0
        self.delay = self.initial_delay

    def record_success(self) -> None:
        self.consecutive_failures = 0
        self.delay = self.initial_delay

    def record_failure(self) -> float:
        """Count a failure and return how long to wait before the next attempt."""
        self.consecutive_failures += 1
        wait = self.delay
        self.delay = min(self.delay * self.multiplier, self.max_delay)
        return wait

    def should_cool_down(self) -> bool:
        return self.consecutive_failures >= self.failure_threshold

    def reset(self) -> None:
        self.consecutive_failures = 0
        self.delay = self.initial_delay


async def wait_for_stop(stop_event: asyncio.Event, timeout: float) -> bool:
    """
    Sleep for ``timeout`` seconds unless ``stop_event`` is set first.

    Returns True when the wait ended because of the stop signal.
    """
    if stop_event.is_set():
        return True
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout)
        return True
    except asyncio.TimeoutError:
        return False
