"""End-to-end flow: private stream frames in, webhook notifications out."""

import asyncio
import time
from unittest.mock import AsyncMock, patch

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from bybit_notifier.accounts import JsonAccountStore
from bybit_notifier.main import NotifierService
from conftest import FakeWebSocket, make_execution, make_order, make_position, make_wallet

pytestmark = pytest.mark.integration

CONNECT = "bybit_notifier.clients.bybit_ws.websockets.connect"


async def wait_until(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_stream_to_webhook(test_settings):
    test_settings.health.enabled = False
    received = []

    async def hook(request):
        received.append((await request.json())["content"])
        return web.Response(status=204)

    app = web.Application()
    app.router.add_post('/hook', hook)
    server = TestServer(app)
    await server.start_server()

    store = JsonAccountStore(test_settings.storage.accounts_file)
    await store.add_account("main", "test-key", "test-secret", str(server.make_url('/hook')))

    ws = FakeWebSocket(frames=[
        {"op": "subscribe", "success": True, "conn_id": "abc"},
        {"topic": "order", "data": [make_order(orderId=str(i), price=str(60000 + i * 50)) for i in range(3)]},
        {"topic": "order", "data": [make_order(orderId="s", orderStatus="Untriggered", triggerPrice="55000", side="Sell")]},
        {"topic": "execution", "data": [make_execution()]},
        {"topic": "position", "data": [make_position("BTCUSD", "Sell", "600")]},
        {"topic": "wallet", "data": [make_wallet({"BTC": "1000"})]},
    ])

    service = NotifierService(test_settings, store=store)
    try:
        with patch(CONNECT, new=AsyncMock(return_value=ws)):
            await service.start_accounts([1])
            await wait_until(lambda: len(received) >= 3)

            assert service.supervisor.is_active(1)
            assert await store.list_active_ids() == [1]
    finally:
        await service.shutdown()
        await server.close()

    assert [message["op"] for message in ws.sent_json()] == ["auth", "subscribe"]

    stop = next(text for text in received if "Stop" in text)
    assert "🔴 Stop Sell Limit - BTCUSD @ 55000.00 (Qty: 100.00 USD)" in stop

    orders = next(text for text in received if "orders grouped" in text)
    assert orders.startswith("🔔\n🟢 3 Buy Limit orders grouped - BTCUSD\n   Range: 60000.00 to 60100.00")
    assert orders.endswith("(GMT-3)")

    summary = next(text for text in received if "📌" in text)
    assert "📌 BTC (BTCUSD):" in summary
    assert "  🛡️ Protected: $600.00 USD" in summary
    assert "  ⚠️ Exposed: $400.00 USD" in summary
    assert "📊 Overall Summary:" not in summary

    assert await store.list_active_ids() == [1]
