"""Tests for the simulation tick, buy intake and shutdown order."""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from decision.engine import StrategyEngine, build_strategies
from trading.paper.price_validation import PriceValidator
from trading.paper.simulation import SimulationService
from trading.paper.trade_executor import TradeExecutor
from trading.paper.types import TickReport
from tests.conftest import FixedRandom, make_quote, run


def make_service(config, ledger, price_service, **kwargs):
    executor = TradeExecutor(config, ledger, price_service, rng=FixedRandom(0.0))
    engine = StrategyEngine(config, build_strategies(config, ledger))
    return SimulationService(config, ledger, price_service, executor, engine, **kwargs)


def quotes(prices):
    """get_price side effect answering from a token -> price mapping."""
    async def get_price(token_id):
        price = prices.get(token_id)
        if isinstance(price, Exception):
            raise price
        return make_quote(token_id, price=price) if price is not None else None
    return get_price


class TestTick:
    def test_no_positions(self, config, ledger, price_service):
        service = make_service(config, ledger, price_service)
        assert run(service.run_tick()) == TickReport()

    def test_take_profit_sells_position(self, config, ledger, price_service):
        service = make_service(config, ledger, price_service)
        run(service.open_position("TOKEN", "Token", "0.001"))

        price_service.get_price = AsyncMock(side_effect=quotes({"TOKEN": "0.0013"}))
        report = run(service.run_tick())

        assert report == TickReport(evaluated=1, sold=1)
        assert ledger.get_open_position("TOKEN") is None
        trade = ledger.list_trades()[0]
        assert trade.close_reason.startswith("Take Profit triggered at 30.00%")
        # 3.99 left after the buy, plus 1000 tokens * 0.0013 less 0.01 fees
        assert ledger.get_balance().balance.equals("5.28")

    def test_price_inside_band_updates_and_holds(self, config, ledger, price_service):
        service = make_service(config, ledger, price_service)
        run(service.open_position("TOKEN", "Token", "0.001"))

        price_service.get_price = AsyncMock(side_effect=quotes({"TOKEN": "0.0011"}))
        report = run(service.run_tick())

        assert report == TickReport(evaluated=1, held=1)
        assert ledger.get_open_position("TOKEN").current_price.equals("0.0011")

    def test_missing_quote_holds_without_update(self, config, ledger, price_service):
        service = make_service(config, ledger, price_service)
        run(service.open_position("TOKEN", "Token", "0.001"))

        price_service.get_price = AsyncMock(return_value=None)
        report = run(service.run_tick())

        assert report.held == 1
        assert ledger.get_open_position("TOKEN").current_price.equals("0.001")

    def test_failure_on_one_token_does_not_affect_others(self, config, ledger, price_service):
        service = make_service(config, ledger, price_service)
        for token_id in ("A", "B", "C"):
            run(service.open_position(token_id, token_id, "0.001"))

        price_service.get_price = AsyncMock(side_effect=quotes({
            "A": RuntimeError("feed exploded"),
            "B": "0.0005",
            "C": "0.001",
        }))
        report = run(service.run_tick())

        assert report == TickReport(evaluated=3, sold=1, held=1, failed=1)
        assert ledger.get_open_position("A") is not None
        assert ledger.get_open_position("B") is None
        assert ledger.get_trading_stats().total_trades == 1

    def test_auto_sell_off_keeps_position(self, config, ledger, price_service):
        config.sell.auto_sell = False
        service = make_service(config, ledger, price_service)
        run(service.open_position("TOKEN", "Token", "0.001"))

        price_service.get_price = AsyncMock(side_effect=quotes({"TOKEN": "0.0005"}))
        report = run(service.run_tick())

        assert report.held == 1
        assert ledger.get_open_position("TOKEN") is not None

    def test_rejected_price_is_not_applied(self, config, ledger, price_service):
        validator = PriceValidator(window_size=12, max_deviation="0.05", min_data_points=3)
        for _ in range(3):
            validator.add_price_point("TOKEN", "0.001", "raydium")
        service = make_service(config, ledger, price_service, price_validator=validator)
        run(service.open_position("TOKEN", "Token", "0.001"))

        price_service.get_price = AsyncMock(side_effect=quotes({"TOKEN": "0.002"}))
        report = run(service.run_tick())

        assert report.held == 1
        assert ledger.get_open_position("TOKEN").current_price.equals("0.001")


class TestBuys:
    def test_open_position_fetches_price_when_not_given(self, config, ledger, price_service):
        service = make_service(config, ledger, price_service)
        result = run(service.open_position("TOKEN", "Token"))

        assert result.executed
        assert result.fill_price.equals("0.001")

    def test_open_position_without_price_available(self, config, ledger, price_service):
        price_service.get_price = AsyncMock(return_value=None)
        service = make_service(config, ledger, price_service)
        result = run(service.open_position("TOKEN", "Token"))

        assert result.status == "rejected"
        assert ledger.count_open_positions() == 0

    def test_vetter_can_block_buys(self, config, ledger, price_service):
        service = make_service(config, ledger, price_service, token_vetter=lambda token_id: token_id != "RUG")

        assert run(service.open_position("RUG", "Rug", "0.001")).status == "rejected"
        assert run(service.open_position("GOOD", "Good", "0.001")).executed

    def test_async_vetter(self, config, ledger, price_service):
        async def vetter(token_id):
            return False

        service = make_service(config, ledger, price_service, token_vetter=vetter)
        assert run(service.open_position("TOKEN", "Token", "0.001")).reason == "Token failed vetting"

    def test_concurrent_buys_respect_position_limit(self, config, ledger, price_service):
        config.paper_trading.max_open_positions = 1

        async def yielding_quote(token_id):
            await asyncio.sleep(0)
            return make_quote(token_id)

        price_service.get_price = AsyncMock(side_effect=yielding_quote)
        service = make_service(config, ledger, price_service)

        async def go():
            return await asyncio.gather(
                service.open_position("A", "A", "0.001"),
                service.open_position("B", "B", "0.001"),
            )

        results = run(go())

        assert sorted(r.status for r in results) == ["executed", "rejected"]
        assert ledger.count_open_positions() == 1
        assert ledger.get_balance().balance.equals("3.99")

    def test_token_locks_are_released(self, config, ledger, price_service):
        service = make_service(config, ledger, price_service, token_vetter=lambda token_id: token_id != "RUG")

        run(service.open_position("RUG", "Rug", "0.001"))
        run(service.open_position("GOOD", "Good", "0.001"))
        run(service.run_tick())

        assert service._locks == {}
        assert service._lock_users == {}

    def test_request_buy_requires_running_service(self, config, ledger, price_service):
        service = make_service(config, ledger, price_service)

        async def go():
            service.request_buy("TOKEN", "Token")

        with pytest.raises(RuntimeError):
            run(go())


class TestLifecycle:
    def test_queued_buy_and_graceful_stop(self, config, ledger, price_service):
        config.paper_trading.tick_interval_seconds = 3600
        reference = MagicMock()
        reference.config.enabled = True
        reference.stop = AsyncMock()
        service = make_service(config, ledger, price_service, reference_service=reference)

        async def go():
            await service.start()
            result = await service.request_buy("TOKEN", "Token", "0.001")
            await service.stop()
            return result

        result = run(go())

        assert result.executed
        reference.start.assert_called_once()
        reference.stop.assert_awaited_once()
        price_service.close.assert_awaited_once()
        assert ledger._conn is None
        assert not service.running

    def test_stop_waits_for_in_flight_tick(self, config, ledger, price_service):
        service = make_service(config, ledger, price_service)
        run(service.open_position("TOKEN", "Token", "0.001"))
        release = None
        finished = []

        async def slow_quote(token_id):
            await release.wait()
            finished.append(token_id)
            return make_quote(token_id, price="0.001")

        async def go():
            nonlocal release
            release = asyncio.Event()
            price_service.get_price = AsyncMock(side_effect=slow_quote)
            await service.start()
            await asyncio.sleep(0)
            stopping = asyncio.create_task(service.stop())
            await asyncio.sleep(0)
            assert not stopping.done()
            release.set()
            await stopping

        run(go())
        assert finished == ["TOKEN"]
        price_service.close.assert_awaited_once()
