"""
Liquidity Drop Strategy

Sells a position when the pair's USD liquidity falls a configured percentage
below the highest liquidity recorded for the token. The high-water mark is
kept in the ledger so it survives restarts.
"""

from typing import Callable

from core.common.logger import logger
from core.config.models import LiquidityDropConfig
from core.domain.models.value_objects import Amount, HUNDRED
from core.domain.repositories.ledger_repository import LedgerRepository, StoreError
from decision.interfaces.strategy import BaseStrategy, MarketData, StrategyResult


class LiquidityDropStrategy(BaseStrategy):
    """Exit on a liquidity drain relative to the token's high-water mark."""

    def __init__(self, config: LiquidityDropConfig, ledger: LedgerRepository, clock: Callable[[], float] = None):
        super().__init__(config, clock=clock)
        self.ledger = ledger
        self.threshold = Amount.of(config.threshold_percent)
        self._log = logger.bind(component="liquidity_drop")

    def get_name(self) -> str:
        return "Liquidity Drop Strategy"

    def get_description(self) -> str:
        return f"Monitors token liquidity and sells if it drops by {self.threshold}% or more"

    async def on_market_data(self, data: MarketData) -> StrategyResult:
        token_id = data.token_id
        if not self.should_check(token_id, self.config.check_interval_seconds):
            return self.hold_signal(token_id)

        current = data.liquidity_usd
        try:
            high_water = self.ledger.get_liquidity_high_water(token_id)
            if high_water is None or not high_water.is_positive():
                self.ledger.record_liquidity(token_id, current)
                return self.hold_signal(token_id)

            drop_pct = high_water.subtract(current).divide(high_water).multiply(HUNDRED)
            self.ledger.record_liquidity(token_id, current)
        except StoreError as e:
            self._log.error(f"Error checking liquidity drop for {token_id}: {e}")
            return self.hold_signal(token_id)

        if drop_pct >= self.threshold:
            reason = (
                f"{data.token_name}: Liquidity dropped by {drop_pct.to_string(2)}% "
                f"({current.to_string(2)} USD from {high_water.to_string(2)} USD high)"
            )
            return self.sell_signal(token_id, reason)

        return self.hold_signal(token_id)
