"""
Strategy Engine

Decides, for each open position on a tick, whether it should be sold:
1. Stop loss: price change at or below -stop_loss_percent
2. Take profit: price change at or above take_profit_percent
3. Enabled strategies in registration order; the first sell signal wins

Anything else is a hold. A strategy that raises is logged and counts as a
hold for that strategy only.
"""

from typing import List

from core.common.logger import logger
from core.config.models import SimulationConfig
from core.domain.models.value_objects import Amount
from core.domain.position import Position
from core.domain.repositories.ledger_repository import LedgerRepository
from decision.interfaces.strategy import MarketData, Strategy, StrategyResult
from decision.strategies.liquidity_drop import LiquidityDropStrategy


def build_strategies(config: SimulationConfig, ledger: LedgerRepository, clock=None) -> List[Strategy]:
    """The closed, ordered set of exit strategies."""
    return [
        LiquidityDropStrategy(config.strategies.liquidity_drop, ledger, clock=clock),
    ]


class StrategyEngine:
    """Stop-loss / take-profit thresholds followed by pluggable strategies."""

    def __init__(self, config: SimulationConfig, strategies: List[Strategy]):
        self.stop_loss_percent = Amount.of(config.sell.stop_loss_percent)
        self.take_profit_percent = Amount.of(config.sell.take_profit_percent)
        self.strategies = list(strategies)
        self._log = logger.bind(component="strategy_engine")

        for strategy in self.strategies:
            state = "enabled" if strategy.is_enabled() else "disabled"
            self._log.info(f"{strategy.get_name()} registered ({state}): {strategy.get_description()}")

    async def evaluate(self, position: Position) -> StrategyResult:
        """
        Decide whether an open position should be sold.

        Args:
            position: Open position with current_price and market_snapshot from this tick

        Returns:
            StrategyResult with should_sell and the close reason
        """
        token_id = position.token_id
        change = position.price_change_pct

        if change <= self.stop_loss_percent.multiply(-1):
            return StrategyResult(
                should_sell=True,
                token_id=token_id,
                reason=f"Stop Loss triggered at {change.to_string(2)}% change",
            )

        if change >= self.take_profit_percent:
            return StrategyResult(
                should_sell=True,
                token_id=token_id,
                reason=f"Take Profit triggered at {change.to_string(2)}% change",
            )

        snapshot = position.market_snapshot
        data = MarketData(
            token_id=token_id,
            token_name=position.token_name,
            current_price=position.current_price,
            buy_price=position.buy_price,
            liquidity_usd=snapshot.liquidity_usd,
            volume_m5=snapshot.volume_m5,
            market_cap=snapshot.market_cap,
        )

        for strategy in self.strategies:
            if not strategy.is_enabled():
                continue
            try:
                result = await strategy.on_market_data(data)
            except Exception as e:
                self._log.error(f"Strategy error in {strategy.get_name()} for {token_id}: {e}")
                continue
            if result.should_sell:
                return StrategyResult(
                    should_sell=True,
                    token_id=token_id,
                    reason=result.reason or f"{strategy.get_name()} triggered sell",
                )

        return StrategyResult(should_sell=False, token_id=token_id)

    def forget(self, token_id: str) -> None:
        """Release per-token strategy state after a position closes."""
        for strategy in self.strategies:
            forget = getattr(strategy, "forget", None)
            if forget is not None:
                forget(token_id)
