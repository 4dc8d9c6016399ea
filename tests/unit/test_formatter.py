"""Tests for notification text."""

from datetime import datetime, timezone

from bybit_notifier.formatter import coin_for_symbol
from bybit_notifier.models import OrderData, PositionData, WalletData
from conftest import make_order, make_position, make_wallet


def orders(*payloads):
    return [OrderData.model_validate(payload) for payload in payloads]


def wallet(coins, total_equity="1000", **overrides):
    return WalletData.model_validate(make_wallet(coins, total_equity, **overrides))


def positions(*payloads):
    return {p["symbol"]: PositionData.model_validate(p) for p in payloads}


class TestOrderFormatting:
    """New order notifications."""

    def test_single_order(self, formatter):
        text = formatter.format_orders(orders(make_order(qty="150")))
        assert text == "🟢 New order opened - BTCUSD Buy Limit @ 60000 (Qty: 150.00 USD)"

    def test_reduce_only_prefix(self, formatter):
        text = formatter.format_orders(orders(make_order(reduceOnly=True, side="Sell")))
        assert "BTCUSD Reduce Sell Limit @ 60000" in text

    def test_same_price_group(self, formatter):
        text = formatter.format_orders(orders(
            make_order(orderId="a", qty="100"),
            make_order(orderId="b", qty="50"),
        ))
        assert text == "🟢 2 Buy Limit orders grouped - BTCUSD @ 60000 (Total Qty: 150.00 USD)"

    def test_price_range_group(self, formatter):
        text = formatter.format_orders(orders(
            make_order(orderId="a", price="61000", qty="10"),
            make_order(orderId="b", price="60000", qty="10"),
            make_order(orderId="c", price="60500", qty="10"),
        ))
        assert text == (
            "🟢 3 Buy Limit orders grouped - BTCUSD\n"
            "   Range: 60000.00 to 61000.00\n"
            "   Total Qty: 30.00 USD"
        )

    def test_groups_keep_first_seen_order(self, formatter):
        text = formatter.format_orders(orders(
            make_order(symbol="ETHUSD", price="3000"),
            make_order(symbol="BTCUSD"),
            make_order(symbol="ETHUSD", price="3000"),
        ))
        lines = text.split("\n")
        assert lines[0].startswith("🟢 2 Buy Limit orders grouped - ETHUSD")
        assert lines[1].startswith("🟢 New order opened - BTCUSD")

    def test_groups_split_by_reduce_flag_side_and_type(self, formatter):
        text = formatter.format_orders(orders(
            make_order(),
            make_order(reduceOnly=True),
            make_order(side="Sell"),
            make_order(orderType="Market", orderStatus="Filled", avgPrice="60010"),
        ))
        assert text.count("New order opened") == 4

    def test_unparseable_prices_are_ignored_in_range(self, formatter):
        text = formatter.format_orders(orders(
            make_order(orderId="a", price="60000", qty="5"),
            make_order(orderId="b", price="", qty="5"),
        ))
        assert "@ 60000 (Total Qty: 10.00 USD)" in text

    def test_empty(self, formatter):
        assert formatter.format_orders([]) is None


class TestCancellationFormatting:

    def test_lists_every_order(self, formatter):
        text = formatter.format_cancellations(orders(
            make_order(orderStatus="Cancelled", price="60000"),
            make_order(orderStatus="Cancelled", price="61000", reduceOnly=True, side="Sell"),
        ))
        assert text == (
            "❌ 2 orders cancelled:\n"
            "  • BTCUSD Buy Limit @ 60000\n"
            "  • BTCUSD Reduce Sell Limit @ 61000"
        )


class TestStopFormatting:

    def test_buy_stop(self, formatter):
        order = orders(make_order(orderStatus="Untriggered", orderType="Market", triggerPrice="65000", qty="200"))[0]
        assert formatter.format_stop(order) == "🟢 Stop Buy Market - BTCUSD @ 65000.00 (Qty: 200.00 USD)"

    def test_sell_stop_cancelled(self, formatter):
        order = orders(make_order(orderStatus="Deactivated", side="Sell", reduceOnly=True, triggerPrice="55000.5"))[0]
        assert formatter.format_stop_cancelled(order) == (
            "❌ 🔴 Stop Reduce Sell Limit **CANCELLED** - BTCUSD @ 55000.50 (Qty: 100.00 USD)"
        )


class TestPositionSummary:
    """Per-coin hedge report and overall summary."""

    def test_coin_for_symbol(self):
        assert coin_for_symbol("BTCUSD") == "BTC"
        assert coin_for_symbol("ETHUSDT") == "ETH"
        assert coin_for_symbol("SOLUSDC") == "SOL"
        assert coin_for_symbol("BTCUSDH25") == "BTCUSDH25"

    def test_single_short_position_has_no_overall_summary(self, formatter):
        text = formatter.format_position_summary(
            wallet({"BTC": "1000"}),
            positions(make_position("BTCUSD", "Sell", "600")),
        )
        assert text == "\n".join([
            "📌 BTC (BTCUSD):",
            "  💰 Total: $1000.00 USD",
            "  🛡️ Protected: $600.00 USD",
            "  ⚠️ Exposed: $400.00 USD",
            "  📈 % Protected: 60.00%",
            "",
        ])

    def test_long_position_lines(self, formatter):
        text = formatter.format_position_summary(
            wallet({"BTC": "1000"}),
            positions(make_position("BTCUSD", "Buy", "250")),
        )
        assert "  🛡️ Protected: $0.00 USD" in text
        assert "  📈 Long Position: $250.00 USD" in text
        assert "  ⚠️ Exposed: $750.00 USD" in text
        assert "  📊 % Long: 25.00%" in text

    def test_two_positions_add_overall_summary(self, formatter):
        text = formatter.format_position_summary(
            wallet({"BTC": "1000", "ETH": "500"}, total_equity="2000"),
            positions(
                make_position("BTCUSD", "Sell", "1000"),
                make_position("ETHUSD", "Sell", "250"),
            ),
        )
        assert text.index("📌 BTC (BTCUSD):") < text.index("📌 ETH (ETHUSD):")
        assert text.endswith("\n".join([
            "📊 Overall Summary:",
            "  💰 Total Wallet: $2000.00 USD",
            "  🛡️ Total Protection: $1250.00 USD",
            "  ⚠️ Total Exposure: $250.00 USD",
            "  📈 % Protected: 62.50%",
        ]))

    def test_dust_coins_are_skipped(self, formatter):
        text = formatter.format_position_summary(
            wallet({"BTC": "1000", "ETH": "5"}),
            positions(
                make_position("BTCUSD", "Sell", "500"),
                make_position("ETHUSD", "Sell", "5"),
            ),
        )
        assert "ETHUSD" not in text
        assert "📊 Overall Summary:" not in text

    def test_no_qualifying_positions_still_summarises(self, formatter):
        text = formatter.format_position_summary(
            wallet({"ETH": "5"}),
            positions(make_position("ETHUSD", "Sell", "5")),
        )
        assert text.startswith("📊 Overall Summary:")
        assert "  💰 Total Wallet: $1000.00 USD" in text
        assert "  📈 % Protected: 0.00%" in text

    def test_equity_falls_back_to_wallet_balance(self, formatter):
        snapshot = wallet({"BTC": "1000"}, total_equity="", totalWalletBalance="1500")
        text = formatter.format_position_summary(snapshot, {})
        assert "  💰 Total Wallet: $1500.00 USD" in text

    def test_unknown_equity_aborts(self, formatter):
        snapshot = wallet({"BTC": "1000"}, total_equity="", totalWalletBalance="")
        assert formatter.format_position_summary(snapshot, {}) is None

    def test_no_wallet(self, formatter):
        assert formatter.format_position_summary(None, positions(make_position("BTCUSD", "Sell", "1"))) is None


class TestWrap:

    def test_header_and_local_timestamp(self, formatter):
        now = datetime(2024, 3, 5, 15, 7, tzinfo=timezone.utc)
        assert formatter.wrap("hello", now) == "🔔\nhello\n\n🕘  05/03/2024 - 12:07 (GMT-3)"
