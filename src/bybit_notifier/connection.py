"""State kept for each monitored account while its connection is supervised."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from .accounts import MonitoredAccount
from .utils.retry import ReconnectPolicy

logger = logging.getLogger(__name__)


@dataclass
class ConnectionState:
    """
    One entry per monitored account.

    The entry outlives individual sockets: reconnects swap ``websocket``
    while the entry, its stop signal and its backoff state stay in place.
    """
    account: MonitoredAccount
    policy: ReconnectPolicy
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    websocket: Optional[Any] = None
    running: bool = True
    task: Optional[asyncio.Task] = None
    last_pong: float = 0.0
    started_at: float = field(default_factory=time.time)
    sessions: int = 0

    @property
    def account_id(self) -> int:
        return self.account.id

    @property
    def stopped(self) -> bool:
        return self.stop_event.is_set()

    async def close_websocket(self) -> None:
        """Close and forget the current socket, if any."""
        websocket, self.websocket = self.websocket, None
        if websocket is None:
            return
        try:
            await websocket.close()
        except Exception as e:
            logger.debug(f"Error closing websocket for account {self.account_id}: {e}")
