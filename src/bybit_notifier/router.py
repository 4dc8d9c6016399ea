"""Dispatches decoded frames to the aggregation engine."""

import logging
from typing import Optional, Union

from .accounts import MonitoredAccount
from .aggregation.engine import AggregationEngine
from .metrics import NotifierMetrics
from .models import (
    ControlMessage,
    ExecutionMessage,
    OrderMessage,
    PositionMessage,
    WalletMessage,
    parse_frame,
)
from .utils.logging import get_account_logger

logger = logging.getLogger(__name__)

SILENT_OPS = ("auth", "ping", "pong")


class MessageRouter:
    """Routes one text frame at a time. Never raises into the read loop."""

    def __init__(self, engine: AggregationEngine, metrics: Optional[NotifierMetrics] = None):
        self.engine = engine
        self.metrics = metrics

        self.stats = {
            'frames_routed': 0,
            'frames_dropped': 0,
            'routing_errors': 0,
        }

    async def route(self, account: MonitoredAccount, raw: Union[str, bytes]) -> None:
        try:
            await self._dispatch(account, raw)
        except Exception as e:
            self.stats['routing_errors'] += 1
            get_account_logger(__name__, account.id, account.name).error(
                f"Error handling frame: {e}", exc_info=True
            )

    async def _dispatch(self, account: MonitoredAccount, raw: Union[str, bytes]) -> None:
        frame = parse_frame(raw)
        if frame is None:
            self.stats['frames_dropped'] += 1
            self._record('unknown')
            return

        self.stats['frames_routed'] += 1

        if isinstance(frame, ControlMessage):
            self._record('control')
            self._handle_control(account, frame)
        elif isinstance(frame, OrderMessage):
            self._record('order')
            await self.engine.handle_orders(account, frame.data)
        elif isinstance(frame, ExecutionMessage):
            self._record('execution')
            await self.engine.handle_executions(account, frame.data)
        elif isinstance(frame, PositionMessage):
            self._record('position')
            await self.engine.handle_positions(account, frame.data)
        elif isinstance(frame, WalletMessage):
            self._record('wallet')
            await self.engine.handle_wallets(account, frame.data)

    def _handle_control(self, account: MonitoredAccount, message: ControlMessage) -> None:
        account_logger = get_account_logger(__name__, account.id, account.name)

        if message.op in SILENT_OPS:
            if message.op == "auth":
                account_logger.debug(f"Auth reply: success={message.success}")
            return

        if message.op == "subscribe":
            if message.success is False:
                account_logger.error(f"Subscription failed: {message.ret_msg}")
            else:
                account_logger.info("Subscription confirmed")
            return

        account_logger.debug(f"Ignoring control message with op={message.op!r}")

    def _record(self, kind: str) -> None:
        if self.metrics:
            self.metrics.record_frame(kind)
