"""Per-account state held between debounce flushes."""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..models import OrderData, PositionData, WalletData
from .debounce import Debouncer


@dataclass
class OrderBuffer:
    """Orders (or cancellations) collected since the window opened."""
    debouncer: Debouncer
    orders: List[OrderData] = field(default_factory=list)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def take(self) -> List[OrderData]:
        """Swap out the collected orders. Caller holds ``lock``."""
        orders, self.orders = self.orders, []
        return orders


@dataclass
class ExecutionBuffer:
    """Latest wallet and positions, summarised some time after the last fill."""
    debouncer: Debouncer
    wallet: Optional[WalletData] = None
    positions: Dict[str, PositionData] = field(default_factory=dict)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


def merge_wallet(old: Optional[WalletData], new: WalletData) -> WalletData:
    """
    Combine a wallet update with the retained snapshot.

    Scalar fields come from ``new``. Coins missing from ``new`` are kept
    from ``old`` (in their previous order) and followed by every coin of ``new``.
    """
    if old is None:
        return new

    incoming = {coin.coin for coin in new.coin}
    retained = [coin for coin in old.coin if coin.coin not in incoming]
    return new.model_copy(update={'coin': retained + list(new.coin)})
