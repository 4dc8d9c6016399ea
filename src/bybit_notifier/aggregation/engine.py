"""
Aggregation engine.

Classifies order, execution, position and wallet events per account and
turns bursts of them into a few notifications using debounce windows.
Lock order is always the buffer-map lock first, then a buffer's own lock.
"""

import asyncio
import logging
from enum import Enum
from functools import partial
from typing import Awaitable, Callable, Dict, List, Optional, Set

from ..accounts import MonitoredAccount
from ..clients.webhook import WebhookNotifier
from ..config.settings import AggregationConfig
from ..formatter import NotificationFormatter
from ..models import ExecutionData, OrderData, PositionData, WalletData, to_float
from ..utils.logging import get_account_logger
from .buffers import ExecutionBuffer, OrderBuffer, merge_wallet
from .debounce import Debouncer

logger = logging.getLogger(__name__)

ACCEPTED_REJECT_REASONS = ("", "EC_NoError", "EC_PerCancelRequest")


class OrderRoute(Enum):
    """Where an order update ends up."""
    DROP = "drop"
    STOP = "stop"
    STOP_CANCELLED = "stop_cancelled"
    ORDER = "order"
    CANCEL = "cancel"


def classify_order(order: OrderData, category: str = "inverse", quick_fill_ms: int = 3000) -> OrderRoute:
    """Decide how one order update is reported. Rules are applied in order."""
    if order.category != category:
        return OrderRoute.DROP
    if order.reject_reason not in ACCEPTED_REJECT_REASONS:
        return OrderRoute.DROP

    if order.order_status == "Untriggered":
        return OrderRoute.STOP
    if order.order_status == "Deactivated":
        return OrderRoute.STOP_CANCELLED
    if order.create_type == "CreateByStopOrder":
        return OrderRoute.DROP

    if order.order_status == "New":
        return OrderRoute.ORDER
    if order.order_type == "Market" and order.is_filled:
        return OrderRoute.ORDER
    if order.order_type == "Limit" and order.is_filled and _filled_quickly(order, quick_fill_ms):
        return OrderRoute.ORDER

    if order.order_status == "Cancelled":
        return OrderRoute.CANCEL
    if order.cancel_type and order.stop_order_type != "Stop" and order.order_status != "Filled":
        return OrderRoute.CANCEL

    return OrderRoute.DROP


def _filled_quickly(order: OrderData, quick_fill_ms: int) -> bool:
    created = to_float(order.created_time)
    updated = to_float(order.updated_time)
    if created is None or updated is None:
        return False
    return 0 <= updated - created <= quick_fill_ms


class AggregationEngine:
    """
    Per-account buffers with debounce timers.

    ``is_active`` tells whether an account is still monitored; flushes for
    accounts that were stopped in the meantime are discarded.
    """

    def __init__(
        self,
        config: AggregationConfig,
        formatter: NotificationFormatter,
        notifier: WebhookNotifier,
        is_active: Callable[[int], bool] = lambda account_id: True
    ):
        self.config = config
        self.formatter = formatter
        self.notifier = notifier
        self.is_active = is_active

        self._buffers_lock = asyncio.Lock()
        self._orders: Dict[int, OrderBuffer] = {}
        self._cancels: Dict[int, OrderBuffer] = {}
        self._executions: Dict[int, ExecutionBuffer] = {}
        self._tasks: Set[asyncio.Task] = set()

        self.stats = {
            'orders_buffered': 0,
            'cancels_buffered': 0,
            'stops_reported': 0,
            'executions_seen': 0,
            'flushes': 0,
        }

    def _spawn(self, coro: Awaitable[None]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # Orders

    async def handle_orders(self, account: MonitoredAccount, orders: List[OrderData]) -> None:
        account_logger = get_account_logger(__name__, account.id, account.name)

        for order in orders:
            route = classify_order(order, self.config.category, self.config.quick_fill_ms)
            account_logger.debug(
                f"Order {order.order_id} {order.symbol} status={order.order_status} "
                f"category={order.category} -> {route.value}"
            )

            if route is OrderRoute.STOP:
                self.stats['stops_reported'] += 1
                self.notifier.send_nowait(account, self.formatter.format_stop(order), "stop")
            elif route is OrderRoute.STOP_CANCELLED:
                self.stats['stops_reported'] += 1
                self.notifier.send_nowait(account, self.formatter.format_stop_cancelled(order), "stop")
            elif route is OrderRoute.ORDER:
                self.stats['orders_buffered'] += 1
                await self._buffer_order(
                    account, order, self._orders, self.config.order_window_seconds, self.flush_orders
                )
            elif route is OrderRoute.CANCEL:
                self.stats['cancels_buffered'] += 1
                await self._buffer_order(
                    account, order, self._cancels, self.config.cancel_window_seconds, self.flush_cancels
                )

    async def _buffer_order(
        self,
        account: MonitoredAccount,
        order: OrderData,
        buffers: Dict[int, OrderBuffer],
        window: float,
        flush: Callable[[MonitoredAccount], Awaitable[None]]
    ) -> None:
        async with self._buffers_lock:
            buffer = buffers.get(account.id)
            if buffer is None:
                buffer = OrderBuffer(
                    debouncer=Debouncer(
                        window,
                        partial(flush, account),
                        self._spawn,
                        name=flush.__name__,
                        log=get_account_logger(__name__, account.id, account.name)
                    )
                )
                buffers[account.id] = buffer

            async with buffer.lock:
                buffer.orders.append(order)
                buffer.debouncer.touch()

    async def flush_orders(self, account: MonitoredAccount) -> None:
        await self._flush_order_buffer(account, self._orders, self.formatter.format_orders, "orders")

    async def flush_cancels(self, account: MonitoredAccount) -> None:
        await self._flush_order_buffer(account, self._cancels, self.formatter.format_cancellations, "cancels")

    async def _flush_order_buffer(
        self,
        account: MonitoredAccount,
        buffers: Dict[int, OrderBuffer],
        render: Callable[[List[OrderData]], Optional[str]],
        kind: str
    ) -> None:
        async with self._buffers_lock:
            buffer = buffers.pop(account.id, None)
            if buffer is None:
                return
            async with buffer.lock:
                buffer.debouncer.cancel()
                orders = buffer.take()

        account_logger = get_account_logger(__name__, account.id, account.name)
        if not self.is_active(account.id):
            account_logger.debug(f"Discarding {len(orders)} buffered {kind}, account is no longer monitored")
            return
        if not orders:
            return

        self.stats['flushes'] += 1
        text = render(orders)
        if text:
            account_logger.info(f"Flushing {len(orders)} {kind}")
            await self.notifier.send(account, text, kind)

    # Executions, positions and wallet

    async def handle_executions(self, account: MonitoredAccount, executions: List[ExecutionData]) -> None:
        for execution in executions:
            if execution.category != self.config.category or execution.exec_type != "Trade":
                continue

            self.stats['executions_seen'] += 1
            async with self._buffers_lock:
                buffer = self._executions.get(account.id)
                if buffer is None:
                    buffer = ExecutionBuffer(
                        debouncer=Debouncer(
                            self.config.execution_window_seconds,
                            partial(self.flush_execution, account),
                            self._spawn,
                            name="flush_execution",
                            log=get_account_logger(__name__, account.id, account.name)
                        )
                    )
                    self._executions[account.id] = buffer

                async with buffer.lock:
                    buffer.debouncer.touch()

    async def handle_positions(self, account: MonitoredAccount, positions: List[PositionData]) -> None:
        """Positions are tracked only once a fill has opened the execution buffer."""
        async with self._buffers_lock:
            buffer = self._executions.get(account.id)
            if buffer is None:
                return
            async with buffer.lock:
                for position in positions:
                    if position.category == self.config.category:
                        buffer.positions[position.symbol] = position

    async def handle_wallets(self, account: MonitoredAccount, wallets: List[WalletData]) -> None:
        """Wallet snapshots are merged only once a fill has opened the execution buffer."""
        async with self._buffers_lock:
            buffer = self._executions.get(account.id)
            if buffer is None:
                return
            async with buffer.lock:
                for wallet in wallets:
                    if wallet.account_type == self.config.wallet_account_type:
                        buffer.wallet = merge_wallet(buffer.wallet, wallet)

    async def flush_execution(self, account: MonitoredAccount) -> None:
        """
        Send the position summary. The buffer is kept so later fills reuse the
        known wallet, unless the account is no longer monitored.
        """
        async with self._buffers_lock:
            buffer = self._executions.get(account.id)
            if buffer is None:
                return
            async with buffer.lock:
                if not self.is_active(account.id):
                    buffer.debouncer.cancel()
                    del self._executions[account.id]
                    get_account_logger(__name__, account.id, account.name).debug(
                        "Dropping position state, account is no longer monitored"
                    )
                    return
                wallet = buffer.wallet
                positions = dict(buffer.positions)

        text = self.formatter.format_position_summary(wallet, positions)
        if text is None:
            return

        self.stats['flushes'] += 1
        get_account_logger(__name__, account.id, account.name).info(
            f"Sending position summary for {len(positions)} symbols"
        )
        await self.notifier.send(account, text, "positions")

    # Lifecycle

    async def discard(self, account_id: int) -> None:
        """Cancel pending timers and drop all buffered state of an account."""
        async with self._buffers_lock:
            buffers = [
                self._orders.pop(account_id, None),
                self._cancels.pop(account_id, None),
                self._executions.pop(account_id, None),
            ]
            for buffer in buffers:
                if buffer is None:
                    continue
                async with buffer.lock:
                    buffer.debouncer.cancel()

    def has_pending(self, account_id: int) -> bool:
        return any(
            account_id in buffers and buffers[account_id].debouncer.pending
            for buffers in (self._orders, self._cancels, self._executions)
        )

    async def close(self) -> None:
        """Drop every buffer and wait for flushes that are already running."""
        account_ids = set(self._orders) | set(self._cancels) | set(self._executions)
        for account_id in account_ids:
            await self.discard(account_id)
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def get_stats(self) -> dict:
        return dict(
            self.stats,
            order_buffers=len(self._orders),
            cancel_buffers=len(self._cancels),
            execution_buffers=len(self._executions),
        )
