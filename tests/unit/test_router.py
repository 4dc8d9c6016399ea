"""Tests for frame routing."""

import json
from unittest.mock import AsyncMock, Mock

import pytest

from bybit_notifier.metrics import NotifierMetrics
from bybit_notifier.router import MessageRouter
from conftest import make_order, make_wallet


@pytest.fixture
def engine():
    mock = Mock()
    mock.handle_orders = AsyncMock()
    mock.handle_executions = AsyncMock()
    mock.handle_positions = AsyncMock()
    mock.handle_wallets = AsyncMock()
    return mock


@pytest.fixture
def router(engine):
    return MessageRouter(engine, NotifierMetrics())


class TestMessageRouter:

    @pytest.mark.asyncio
    async def test_order_frame(self, router, engine, account):
        frame = {"topic": "order", "id": "1", "creationTime": 1700000000000, "data": [make_order()]}

        await router.route(account, json.dumps(frame))

        engine.handle_orders.assert_awaited_once()
        routed_account, orders = engine.handle_orders.await_args.args
        assert routed_account is account
        assert orders[0].order_id == "o-1"

    @pytest.mark.asyncio
    async def test_wallet_frame(self, router, engine, account):
        frame = {"topic": "wallet", "data": [make_wallet({"BTC": "1000"})]}

        await router.route(account, json.dumps(frame))

        engine.handle_wallets.assert_awaited_once()
        engine.handle_orders.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_control_frames_do_not_reach_engine(self, router, engine, account):
        for frame in (
            {"op": "auth", "success": True},
            {"op": "subscribe", "success": False, "ret_msg": "invalid topic"},
            {"op": "pong"},
        ):
            await router.route(account, json.dumps(frame))

        engine.handle_orders.assert_not_awaited()
        assert router.stats['frames_routed'] == 3
        assert b'notifier_frames_total{kind="control"} 3.0' in router.metrics.render()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", '{"topic": "greeks", "data": []}', '{"foo": 1}'])
    async def test_unknown_frames_are_dropped(self, router, engine, account, raw):
        await router.route(account, raw)

        assert router.stats['frames_dropped'] == 1
        engine.handle_orders.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_engine_errors_are_contained(self, router, engine, account):
        engine.handle_orders.side_effect = RuntimeError("boom")
        frame = {"topic": "order", "data": [make_order()]}

        await router.route(account, json.dumps(frame))

        assert router.stats['routing_errors'] == 1
