"""Tests for simulated buy and sell execution."""
import random
from unittest.mock import AsyncMock

from core.domain.models.value_objects import Amount
from trading.paper.trade_executor import TradeExecutor
from tests.conftest import FixedRandom, make_quote, run


def make_executor(config, ledger, price_service, rng_value=0.5):
    return TradeExecutor(config, ledger, price_service, rng=FixedRandom(rng_value))


class TestBuy:
    def test_buy_applies_slippage_and_debits_balance(self, config, ledger, price_service):
        executor = make_executor(config, ledger, price_service)
        result = run(executor.execute_buy("TOKEN", "Token", "0.001"))

        assert result.executed
        # slippage = 0.02 * 0.5
        assert result.slippage.equals("0.01")
        assert result.fill_price.equals("0.00101")
        assert result.token_amount.equals(Amount.of(1).divide("0.00101"))
        assert result.fees.equals("0.01")
        assert result.balance_after.equals("3.99")

        position = ledger.get_open_position("TOKEN")
        assert position.buy_price.equals("0.00101")
        assert position.stop_loss.equals(Amount.of("0.00101").multiply("0.7"))
        assert position.take_profit.equals(Amount.of("0.00101").multiply("1.26"))
        assert position.token_name == "TKN"

    def test_rebuy_is_rejected(self, config, ledger, price_service):
        executor = make_executor(config, ledger, price_service)
        run(executor.execute_buy("TOKEN", "Token", "0.001"))
        result = run(executor.execute_buy("TOKEN", "Token", "0.001"))

        assert result.status == "rejected"
        assert "already open" in result.reason
        assert ledger.get_balance().balance.equals("3.99")

    def test_open_position_limit(self, config, ledger, price_service):
        config.paper_trading.max_open_positions = 1
        executor = make_executor(config, ledger, price_service)
        run(executor.execute_buy("A", "A", "0.001"))
        result = run(executor.execute_buy("B", "B", "0.001"))

        assert result.status == "rejected"
        assert "Maximum open positions" in result.reason
        assert ledger.get_open_position("B") is None

    def test_insufficient_balance_is_rejected(self, config, make_ledger, price_service):
        ledger = make_ledger("1.0", name="short.db")
        executor = make_executor(config, ledger, price_service)
        result = run(executor.execute_buy("TOKEN", "Token", "0.001"))

        assert result.status == "rejected"
        assert "Insufficient" in result.reason
        assert ledger.get_balance().balance.equals("1.0")
        price_service.get_price.assert_not_awaited()

    def test_balance_just_short_of_spend_and_fees_is_rejected(self, config, make_ledger, price_service):
        ledger = make_ledger("1.009999999", name="almost.db")
        executor = make_executor(config, ledger, price_service)
        result = run(executor.execute_buy("TOKEN", "Token", "0.001"))

        assert result.status == "rejected"
        assert "Insufficient" in result.reason
        assert ledger.get_balance().balance.equals("1.009999999")
        assert ledger.count_open_positions() == 0

    def test_balance_exactly_covering_spend_and_fees_succeeds(self, config, make_ledger, price_service):
        ledger = make_ledger("1.01", name="exact.db")
        executor = make_executor(config, ledger, price_service)
        result = run(executor.execute_buy("TOKEN", "Token", "0.001"))

        assert result.executed
        assert ledger.get_balance().balance.is_zero()

    def test_missing_balance_row_is_rejected(self, config, ledger, price_service):
        conn = ledger._connection()
        with conn:
            conn.execute("DELETE FROM virtual_balance")
        executor = make_executor(config, ledger, price_service)
        result = run(executor.execute_buy("TOKEN", "Token", "0.001"))

        assert result.status == "rejected"
        assert "virtual balance" in result.reason

    def test_unavailable_quote_is_rejected(self, config, ledger, price_service):
        price_service.get_price = AsyncMock(return_value=None)
        executor = make_executor(config, ledger, price_service)
        result = run(executor.execute_buy("TOKEN", "Token", "0.001"))

        assert result.status == "rejected"
        assert ledger.get_open_position("TOKEN") is None
        assert ledger.get_balance().balance.equals(5)
        assert ledger.list_trades() == []

    def test_slippage_stays_below_configured_maximum(self, config, ledger, price_service):
        executor = make_executor(config, ledger, price_service, rng_value=0.999999)
        result = run(executor.execute_buy("TOKEN", "Token", "0.001"))
        assert result.slippage < Amount.of("0.02")
        assert result.fill_price >= "0.001"

    def test_seeded_rng_is_reproducible(self, config, make_ledger, price_service):
        fills = []
        for name in ("one.db", "two.db"):
            ledger = make_ledger(name=name)
            executor = TradeExecutor(config, ledger, price_service, rng=random.Random(42))
            fills.append(run(executor.execute_buy("TOKEN", "Token", "0.001")).fill_price)
        assert fills[0].equals(fills[1])


class TestSell:
    def open_position(self, config, ledger, price_service):
        executor = make_executor(config, ledger, price_service)
        run(executor.execute_buy("TOKEN", "Token", "0.001"))
        return executor

    def test_sell_closes_position_and_credits_balance(self, config, ledger, price_service):
        executor = self.open_position(config, ledger, price_service)
        position = ledger.update_position_price("TOKEN", "0.002")

        result = run(executor.execute_sell(position, "Take Profit triggered at 98.02% change"))

        assert result.executed
        assert result.fill_price.equals("0.00198")
        proceeds = position.amount.multiply("0.00198")
        assert result.base_amount.equals(proceeds)
        assert ledger.get_open_position("TOKEN") is None

        expected_balance = Amount.of("3.99").add(proceeds).subtract("0.01")
        assert ledger.get_balance().balance.equals(expected_balance)
        assert result.trade.pnl.equals(proceeds.subtract("0.01").subtract("1.01"))
        assert result.trade.close_reason.startswith("Take Profit")

    def test_sell_of_closed_position_is_rejected(self, config, ledger, price_service):
        executor = self.open_position(config, ledger, price_service)
        position = ledger.get_open_position("TOKEN")
        run(executor.execute_sell(position, "first"))

        result = run(executor.execute_sell(position, "second"))
        assert result.status == "rejected"
        assert len(ledger.list_trades()) == 1

    def test_sell_without_quote_is_rejected(self, config, ledger, price_service):
        executor = self.open_position(config, ledger, price_service)
        position = ledger.get_open_position("TOKEN")
        price_service.get_price = AsyncMock(return_value=None)

        result = run(executor.execute_sell(position, "Stop Loss"))
        assert result.status == "rejected"
        assert ledger.get_open_position("TOKEN") is not None

    def test_sell_records_closing_snapshot(self, config, ledger, price_service):
        executor = self.open_position(config, ledger, price_service)
        position = ledger.get_open_position("TOKEN")
        price_service.get_price = AsyncMock(return_value=make_quote(liquidity="777"))

        run(executor.execute_sell(position, "Liquidity"))
        trade = ledger.list_trades()[0]
        assert trade.market_snapshot_sell.liquidity_usd.equals("777")
