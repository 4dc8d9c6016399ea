"""Turns flushed buffers into notification text."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from .config.settings import AggregationConfig, NotificationConfig
from .models import OrderData, PositionData, WalletData, to_float

logger = logging.getLogger(__name__)

QUOTE_SUFFIXES = ("USDT", "USDC", "USD")


@dataclass
class PositionExposure:
    """Hedge figures of one inverse position against the coin that backs it."""
    coin: str
    symbol: str
    total: float
    protected: float
    long: float
    exposed: float

    @property
    def percent_protected(self) -> float:
        return self.protected / self.total * 100 if self.total > 0 else 0.0

    @property
    def percent_long(self) -> float:
        return self.long / self.total * 100 if self.total > 0 else 0.0


def coin_for_symbol(symbol: str) -> str:
    """BTCUSD -> BTC, ETHUSDT -> ETH. Symbols without a known quote suffix are returned as-is."""
    for suffix in QUOTE_SUFFIXES:
        if symbol.endswith(suffix):
            return symbol[:-len(suffix)]
    return symbol


def _reduce_prefix(order: OrderData) -> str:
    return "Reduce " if order.reduce_only else ""


class NotificationFormatter:
    """Builds the text of every notification kind."""

    def __init__(self, aggregation: AggregationConfig, notifications: NotificationConfig):
        self.dust_threshold = aggregation.dust_threshold
        self.alert_icon = notifications.alert_icon
        self.timezone = ZoneInfo(notifications.timezone)
        self.timezone_label = notifications.timezone_label

    def format_orders(self, orders: List[OrderData]) -> Optional[str]:
        """
        Group orders by symbol, reduce-only flag, side and order type.

        Groups keep the order in which they were first seen and are joined
        into one block of text.
        """
        groups: Dict[Tuple[str, bool, str, str], List[OrderData]] = {}
        for order in orders:
            key = (order.symbol, order.reduce_only, order.side, order.order_type)
            groups.setdefault(key, []).append(order)

        lines = [self._format_group(group) for group in groups.values()]
        return "\n".join(lines) if lines else None

    def _format_group(self, group: List[OrderData]) -> str:
        first = group[0]
        prefix = _reduce_prefix(first)
        display_price = first.display_price

        prices = [p for p in (to_float(order.display_price) for order in group) if p is not None]
        total_qty = sum(q for q in (to_float(order.qty) for order in group) if q is not None)

        if len(group) == 1:
            return (
                f"🟢 New order opened - {first.symbol} {prefix}{first.side} {first.order_type} "
                f"@ {display_price} (Qty: {total_qty:.2f} USD)"
            )

        header = f"🟢 {len(group)} {prefix}{first.side} {first.order_type} orders grouped - {first.symbol}"
        if not prices or min(prices) == max(prices):
            return f"{header} @ {display_price} (Total Qty: {total_qty:.2f} USD)"

        return (
            f"{header}\n"
            f"   Range: {min(prices):.2f} to {max(prices):.2f}\n"
            f"   Total Qty: {total_qty:.2f} USD"
        )

    def format_cancellations(self, orders: List[OrderData]) -> Optional[str]:
        if not orders:
            return None

        lines = [f"❌ {len(orders)} orders cancelled:"]
        for order in orders:
            lines.append(
                f"  • {order.symbol} {_reduce_prefix(order)}{order.side} {order.order_type} @ {order.price}"
            )
        return "\n".join(lines)

    def format_stop(self, order: OrderData) -> str:
        return f"{self._stop_line(order)} - {order.symbol} @ {self._stop_figures(order)}"

    def format_stop_cancelled(self, order: OrderData) -> str:
        return f"❌ {self._stop_line(order)} **CANCELLED** - {order.symbol} @ {self._stop_figures(order)}"

    def _stop_line(self, order: OrderData) -> str:
        icon = "🟢" if order.side == "Buy" else "🔴"
        return f"{icon} Stop {_reduce_prefix(order)}{order.side} {order.order_type}"

    @staticmethod
    def _stop_figures(order: OrderData) -> str:
        trigger = to_float(order.trigger_price) or 0.0
        qty = to_float(order.qty) or 0.0
        return f"{trigger:.2f} (Qty: {qty:.2f} USD)"

    def position_exposures(
        self,
        wallet: WalletData,
        positions: Dict[str, PositionData]
    ) -> List[PositionExposure]:
        """Exposure of every position whose backing coin is worth at least the dust threshold."""
        coin_values: Dict[str, float] = {}
        for balance in wallet.coin:
            coin_values.setdefault(balance.coin, to_float(balance.usd_value) or 0.0)

        exposures = []
        for symbol, position in positions.items():
            coin = coin_for_symbol(symbol)
            total = coin_values.get(coin, 0.0)
            if total < self.dust_threshold:
                continue

            size = to_float(position.size) or 0.0
            is_short = position.side == "Sell"
            exposures.append(PositionExposure(
                coin=coin,
                symbol=symbol,
                total=total,
                protected=size if is_short else 0.0,
                long=0.0 if is_short else size,
                exposed=total - size
            ))
        return exposures

    def format_position_summary(
        self,
        wallet: Optional[WalletData],
        positions: Dict[str, PositionData]
    ) -> Optional[str]:
        """
        Per-coin hedge report followed by an overall summary.

        The overall summary is left out when exactly one position qualifies.
        Returns None when there is no wallet or its total equity is unknown.
        """
        if wallet is None:
            return None

        total_equity = to_float(wallet.total_equity)
        if total_equity is None:
            total_equity = to_float(wallet.total_wallet_balance)
        if total_equity is None:
            logger.warning("Wallet snapshot has no usable total equity, skipping position summary")
            return None

        exposures = self.position_exposures(wallet, positions)

        lines: List[str] = []
        for item in exposures:
            lines.append(f"📌 {item.coin} ({item.symbol}):")
            lines.append(f"  💰 Total: ${item.total:.2f} USD")
            lines.append(f"  🛡️ Protected: ${item.protected:.2f} USD")
            if item.long > 0:
                lines.append(f"  📈 Long Position: ${item.long:.2f} USD")
            lines.append(f"  ⚠️ Exposed: ${item.exposed:.2f} USD")
            lines.append(f"  📈 % Protected: {item.percent_protected:.2f}%")
            if item.long > 0:
                lines.append(f"  📊 % Long: {item.percent_long:.2f}%")
            lines.append("")

        if len(exposures) != 1:
            lines.extend(self._overall_summary(exposures, total_equity))

        return "\n".join(lines)

    @staticmethod
    def _overall_summary(exposures: Iterable[PositionExposure], total_equity: float) -> List[str]:
        exposures = list(exposures)
        protected = sum(item.protected for item in exposures)
        long = sum(item.long for item in exposures)
        exposed = sum(item.exposed for item in exposures)

        lines = [
            "📊 Overall Summary:",
            f"  💰 Total Wallet: ${total_equity:.2f} USD",
            f"  🛡️ Total Protection: ${protected:.2f} USD",
        ]
        if long > 0:
            lines.append(f"  📈 Total Long: ${long:.2f} USD")
        lines.append(f"  ⚠️ Total Exposure: ${exposed:.2f} USD")

        percent_protected = protected / total_equity * 100 if total_equity > 0 else 0.0
        lines.append(f"  📈 % Protected: {percent_protected:.2f}%")
        if long > 0:
            percent_long = long / total_equity * 100 if total_equity > 0 else 0.0
            lines.append(f"  📊 % Long: {percent_long:.2f}%")
        return lines

    def wrap(self, text: str, now: Optional[datetime] = None) -> str:
        """Add the alert header and a local timestamp footer."""
        now = (now or datetime.now(self.timezone)).astimezone(self.timezone)
        timestamp = f"🕘  {now.strftime('%d/%m/%Y')} - {now.strftime('%H:%M')} ({self.timezone_label})"
        return f"{self.alert_icon}\n{text}\n\n{timestamp}"
