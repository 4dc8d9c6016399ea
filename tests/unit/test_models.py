"""Tests for frame decoding."""

import json

import pytest

from bybit_notifier.models import (
    ControlMessage,
    ExecutionMessage,
    OrderData,
    OrderMessage,
    PositionMessage,
    WalletData,
    WalletMessage,
    parse_frame,
    to_float,
)
from conftest import make_order, make_position, make_wallet


class TestParseFrame:
    """Tagged decoding of text frames."""

    def test_control_reply(self):
        frame = parse_frame(json.dumps({"success": True, "ret_msg": "", "op": "subscribe", "conn_id": "c1"}))

        assert isinstance(frame, ControlMessage)
        assert frame.op == "subscribe"
        assert frame.success is True

    def test_pong_reply(self):
        frame = parse_frame('{"success":true,"ret_msg":"pong","conn_id":"c1","op":"ping"}')
        assert isinstance(frame, ControlMessage)
        assert frame.ret_msg == "pong"

    def test_order_topic(self):
        raw = json.dumps({"id": "1", "topic": "order", "creationTime": 1, "data": [make_order()]})
        frame = parse_frame(raw)

        assert isinstance(frame, OrderMessage)
        assert frame.data[0].order_status == "New"
        assert frame.data[0].reduce_only is False

    @pytest.mark.parametrize("topic,model", [
        ("execution", ExecutionMessage),
        ("position", PositionMessage),
        ("wallet", WalletMessage),
    ])
    def test_other_topics(self, topic, model):
        frame = parse_frame(json.dumps({"topic": topic, "data": []}))
        assert isinstance(frame, model)

    def test_position_uppercase_fields(self):
        raw = json.dumps({
            "topic": "position",
            "data": [make_position("BTCUSD", "Sell", "500", positionIM="1.5", positionMM="0.5")],
        })
        frame = parse_frame(raw)
        assert frame.data[0].position_im == "1.5"
        assert frame.data[0].position_mm == "0.5"

    def test_wallet_fields(self):
        raw = json.dumps({"topic": "wallet", "data": [make_wallet({"BTC": "900"}, totalPerpUPL="3")]})
        wallet = parse_frame(raw).data[0]

        assert wallet.total_perp_upl == "3"
        assert wallet.coin[0].usd_value == "900"

    def test_unknown_topic_is_dropped(self):
        assert parse_frame(json.dumps({"topic": "greeks", "data": []})) is None

    def test_unhashable_topic_is_dropped(self):
        assert parse_frame(json.dumps({"topic": ["order"], "data": []})) is None

    def test_invalid_json_is_dropped(self):
        assert parse_frame("{not json") is None

    def test_non_object_is_dropped(self):
        assert parse_frame("[1, 2, 3]") is None

    def test_schema_mismatch_is_dropped(self):
        assert parse_frame(json.dumps({"topic": "order", "data": "oops"})) is None

    def test_null_fields_use_defaults(self):
        raw = json.dumps({"topic": "order", "data": [make_order(avgPrice=None, cancelType=None)]})
        order = parse_frame(raw).data[0]
        assert order.avg_price == ""
        assert order.cancel_type == ""


class TestDisplayPrice:
    """Which price an order is reported at."""

    def test_new_limit_uses_quoted_price(self):
        order = OrderData.model_validate(make_order(avgPrice="0"))
        assert order.display_price == "60000"

    def test_market_uses_average(self):
        order = OrderData.model_validate(make_order(orderType="Market", avgPrice="60123.5"))
        assert order.display_price == "60123.5"

    def test_filled_limit_uses_average(self):
        order = OrderData.model_validate(make_order(orderStatus="Filled", avgPrice="59990"))
        assert order.display_price == "59990"

    def test_zero_average_falls_back(self):
        order = OrderData.model_validate(make_order(orderType="Market", orderStatus="Filled", avgPrice="0"))
        assert order.display_price == "60000"


class TestToFloat:

    @pytest.mark.parametrize("value,expected", [
        ("1.5", 1.5),
        ("0", 0.0),
        ("", None),
        (None, None),
        ("abc", None),
    ])
    def test_parsing(self, value, expected):
        assert to_float(value) == expected

    def test_wallet_defaults(self):
        wallet = WalletData()
        assert wallet.coin == []
        assert wallet.total_equity == ""
