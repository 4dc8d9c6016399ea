"""Restartable one-shot timer."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)


class Debouncer:
    """
    Runs ``callback`` once, ``delay`` seconds after the most recent :meth:`touch`.

    Callers serialize :meth:`touch` and :meth:`cancel` with the lock of the
    buffer that owns the debouncer. The callback runs in its own task and
    any exception it raises is logged through ``log``, never propagated.
    """

    def __init__(
        self,
        delay: float,
        callback: Callable[[], Awaitable[None]],
        spawn: Callable[[Awaitable[None]], asyncio.Task],
        name: str = "debounce",
        log: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None
    ):
        self.delay = delay
        self.callback = callback
        self.spawn = spawn
        self.name = name
        self.log = log or logger
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def touch(self) -> None:
        """Arm the timer, or push an armed deadline to ``delay`` from now."""
        if self._handle is not None:
            self._handle.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self.spawn(self._run())

    async def _run(self) -> None:
        try:
            await self.callback()
        except Exception as e:
            self.log.error(f"Error in {self.name} flush: {e}", exc_info=True)
