"""Pytest configuration and shared fixtures."""

import asyncio
import json
from typing import Any, Dict, List, Optional, Tuple

import pytest
from websockets.exceptions import ConnectionClosedOK
from websockets.frames import Close

from bybit_notifier.accounts import MonitoredAccount
from bybit_notifier.config.settings import (
    AggregationConfig,
    BybitConfig,
    LoggingConfig,
    NotificationConfig,
    NotifierSettings,
    ReconnectConfig,
    StorageConfig,
)
from bybit_notifier.formatter import NotificationFormatter


def server_close() -> ConnectionClosedOK:
    """Normal closure as seen after a completed closing handshake."""
    return ConnectionClosedOK(Close(1000, ""), Close(1000, ""), True)


class RecordingNotifier:
    """Stands in for the webhook sink and keeps every message it is given."""

    def __init__(self):
        self.sent: List[Tuple[int, str, str]] = []
        self.sent_nowait: List[Tuple[int, str, str]] = []

    async def send(self, account, text, kind="notification"):
        self.sent.append((account.id, text, kind))
        return True

    def send_nowait(self, account, text, kind="notification"):
        self.sent_nowait.append((account.id, text, kind))

    async def close(self):
        pass

    def get_stats(self):
        return {'messages_sent': len(self.sent)}


class FakeWebSocket:
    """In-memory client connection fed from a queue."""

    def __init__(self, frames: Optional[List[Any]] = None, auth_reply: Optional[Dict[str, Any]] = None):
        self.sent: List[str] = []
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.closed = False
        self.pings = 0

        if auth_reply is None:
            auth_reply = {"success": True, "ret_msg": "", "op": "auth", "conn_id": "abc"}
        self.incoming.put_nowait(json.dumps(auth_reply))
        for frame in frames or []:
            self.push(frame)

    def push(self, frame: Any) -> None:
        if isinstance(frame, dict):
            frame = json.dumps(frame)
        self.incoming.put_nowait(frame)

    def sent_json(self) -> List[Dict[str, Any]]:
        return [json.loads(message) for message in self.sent]

    async def send(self, data):
        if self.closed:
            raise server_close()
        self.sent.append(data)

    async def recv(self):
        item = await self.incoming.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def ping(self):
        self.pings += 1
        waiter = asyncio.get_running_loop().create_future()
        waiter.set_result(0.0)
        return waiter

    async def close(self):
        if not self.closed:
            self.closed = True
            self.incoming.put_nowait(server_close())


@pytest.fixture
def test_settings(tmp_path) -> NotifierSettings:
    """Settings with short windows and delays."""
    return NotifierSettings(
        service_name="test-notifier",
        environment="test",
        bybit=BybitConfig(
            ws_url="wss://example.invalid/v5/private",
            auth_timeout_seconds=0.5,
            read_timeout_seconds=1.0,
            ping_interval_seconds=0.05,
            ping_timeout_seconds=0.5,
        ),
        reconnect=ReconnectConfig(
            initial_delay_seconds=0.01,
            max_delay_seconds=0.04,
            failure_threshold=3,
            cooldown_seconds=0.05,
            stop_timeout_seconds=1.0,
        ),
        aggregation=AggregationConfig(
            order_window_seconds=0.05,
            cancel_window_seconds=0.05,
            execution_window_seconds=0.1,
        ),
        notifications=NotificationConfig(timezone_label="GMT-3"),
        storage=StorageConfig(accounts_file=str(tmp_path / "accounts.json")),
        logging=LoggingConfig(level="DEBUG", log_dir=str(tmp_path / "logs")),
    )


@pytest.fixture
def account() -> MonitoredAccount:
    return MonitoredAccount(
        id=1,
        name="main",
        api_key="test-key",
        api_secret="test-secret",
        webhook_url="https://hooks.example.invalid/1",
    )


@pytest.fixture
def formatter(test_settings) -> NotificationFormatter:
    return NotificationFormatter(test_settings.aggregation, test_settings.notifications)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


def make_order(**overrides) -> Dict[str, Any]:
    """Order payload as it appears on the wire."""
    order = {
        "category": "inverse",
        "orderId": "o-1",
        "orderLinkId": "",
        "symbol": "BTCUSD",
        "side": "Buy",
        "orderType": "Limit",
        "orderStatus": "New",
        "cancelType": "UNKNOWN",
        "rejectReason": "EC_NoError",
        "price": "60000",
        "avgPrice": "",
        "qty": "100",
        "createdTime": "1700000000000",
        "updatedTime": "1700000000000",
        "reduceOnly": False,
        "stopOrderType": "",
        "triggerPrice": "0",
        "createType": "CreateByUser",
    }
    order.update(overrides)
    return order


def make_wallet(coins: Dict[str, str], total_equity: str = "1000", **overrides) -> Dict[str, Any]:
    wallet = {
        "accountType": "UNIFIED",
        "totalEquity": total_equity,
        "totalWalletBalance": total_equity,
        "coin": [{"coin": coin, "usdValue": value, "equity": "1"} for coin, value in coins.items()],
    }
    wallet.update(overrides)
    return wallet


def make_position(symbol: str, side: str, size: str, **overrides) -> Dict[str, Any]:
    position = {"symbol": symbol, "side": side, "size": size, "category": "inverse"}
    position.update(overrides)
    return position


def make_execution(**overrides) -> Dict[str, Any]:
    execution = {"category": "inverse", "symbol": "BTCUSD", "execType": "Trade", "side": "Buy"}
    execution.update(overrides)
    return execution
