"""
Strategy Interface for the Decision Module.

This module defines the abstract base class that all exit strategies must implement.
Strategies take the market data of one open position as input and decide whether
that position should be sold.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from core.domain.models.value_objects import Amount, ZERO
from core.domain.position import now_ms


@dataclass(frozen=True)
class MarketData:
    """Snapshot of one open position as seen by strategies on a tick."""
    token_id: str
    token_name: str
    current_price: Amount
    buy_price: Amount
    liquidity_usd: Amount = ZERO
    volume_m5: Amount = ZERO
    market_cap: Amount = ZERO
    timestamp: int = field(default_factory=now_ms)


@dataclass(frozen=True)
class StrategyResult:
    """A strategy's verdict for one token."""
    should_sell: bool
    token_id: str
    reason: Optional[str] = None


class Strategy(ABC):
    """
    Abstract base class for all exit strategies.

    A strategy inspects the market data of an open position and answers
    whether it should be sold. Strategies must not raise for ordinary
    conditions such as missing history; they hold instead.
    """

    @abstractmethod
    async def on_market_data(self, data: MarketData) -> StrategyResult:
        """
        Evaluate the latest market data of an open position.

        Args:
            data (MarketData): Prices and pair metrics for the token on this tick.

        Returns:
            StrategyResult: should_sell with a human readable reason, or a hold.
        """
        pass

    @abstractmethod
    def is_enabled(self) -> bool:
        """Whether the engine should consult this strategy."""
        pass

    @abstractmethod
    def get_name(self) -> str:
        pass

    @abstractmethod
    def get_description(self) -> str:
        pass


class BaseStrategy(Strategy):
    """
    Common plumbing for strategies: enable flag, signal helpers and a
    per-token minimum re-evaluation interval.

    `clock` returns seconds and defaults to time.monotonic; tests inject a
    fake one to step time deterministically.
    """

    def __init__(self, config, clock: Callable[[], float] = None):
        self.config = config
        self.clock = clock or time.monotonic
        self._last_check: Dict[str, float] = {}

    def is_enabled(self) -> bool:
        return bool(self.config.enabled)

    def should_check(self, token_id: str, interval_seconds: float) -> bool:
        """True at most once per `interval_seconds` per token; records the check time."""
        now = self.clock()
        last = self._last_check.get(token_id)
        if last is None or now - last >= interval_seconds:
            self._last_check[token_id] = now
            return True
        return False

    def forget(self, token_id: str) -> None:
        """Drop per-token state once the position is closed."""
        self._last_check.pop(token_id, None)

    @staticmethod
    def sell_signal(token_id: str, reason: str) -> StrategyResult:
        return StrategyResult(should_sell=True, token_id=token_id, reason=reason)

    @staticmethod
    def hold_signal(token_id: str) -> StrategyResult:
        return StrategyResult(should_sell=False, token_id=token_id)
