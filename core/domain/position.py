"""
Position Domain Model

Represents the records of the paper trading ledger: the virtual balance,
open positions and the trade history they produce. A position exists from
the buy until the sell; the trade row outlives it and carries both legs.
"""

import json
import time
from dataclasses import dataclass, field
from typing import Optional

from .models.value_objects import Amount, HUNDRED, ZERO


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class MarketSnapshot:
    """Value object holding pair metrics captured alongside a price."""
    volume_m5: Amount = ZERO
    market_cap: Amount = ZERO
    liquidity_usd: Amount = ZERO

    def to_dict(self) -> dict:
        return {
            "volume_m5": self.volume_m5.to_string(),
            "market_cap": self.market_cap.to_string(),
            "liquidity_usd": self.liquidity_usd.to_string(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "MarketSnapshot":
        data = data or {}
        return cls(
            volume_m5=Amount.of(data.get("volume_m5") or 0),
            market_cap=Amount.of(data.get("market_cap") or 0),
            liquidity_usd=Amount.of(data.get("liquidity_usd") or 0),
        )

    @classmethod
    def from_json(cls, text: Optional[str]) -> "MarketSnapshot":
        return cls.from_dict(json.loads(text) if text else None)


@dataclass(frozen=True)
class VirtualBalance:
    """One row of the append-only balance history."""
    balance: Amount
    updated_at: int


@dataclass
class Position:
    """
    An open holding of one token.

    At most one position exists per token_id. `stop_loss` and `take_profit`
    are price levels derived from the fill price when the position opened.
    """
    token_id: str
    token_name: str
    amount: Amount
    buy_price: Amount
    current_price: Amount
    stop_loss: Amount
    take_profit: Amount
    position_size: Amount
    last_updated: int = field(default_factory=now_ms)
    market_snapshot: MarketSnapshot = field(default_factory=MarketSnapshot)

    def __post_init__(self):
        if not self.token_id:
            raise ValueError("Position requires a token_id")
        if not self.buy_price.is_positive():
            raise ValueError("Buy price must be positive")
        if not self.amount.is_positive():
            raise ValueError("Token amount must be positive")

    @property
    def price_change_pct(self) -> Amount:
        """Percent change of the current price relative to the buy price."""
        return self.current_price.subtract(self.buy_price).divide(self.buy_price).multiply(HUNDRED)

    @property
    def current_value(self) -> Amount:
        return self.amount.multiply(self.current_price)

    @property
    def unrealized_pnl(self) -> Amount:
        return self.current_value.subtract(self.position_size)


@dataclass
class Trade:
    """
    A round trip: the buy leg is written on open, the sell leg fills in on close.

    Unique on (token_id, time_buy).
    """
    token_id: str
    token_name: str
    amount_base: Amount
    amount_token: Amount
    buy_price: Amount
    buy_fees: Amount
    buy_slippage: Amount
    time_buy: int
    market_snapshot_buy: MarketSnapshot = field(default_factory=MarketSnapshot)

    sell_price: Optional[Amount] = None
    sell_fees: Optional[Amount] = None
    sell_slippage: Optional[Amount] = None
    time_sell: Optional[int] = None
    pnl: Optional[Amount] = None
    close_reason: Optional[str] = None
    market_snapshot_sell: Optional[MarketSnapshot] = None
    id: Optional[int] = None

    @property
    def is_closed(self) -> bool:
        return self.time_sell is not None

    @property
    def total_cost(self) -> Amount:
        """Base asset debited by the buy leg."""
        return self.amount_base.add(self.buy_fees)


@dataclass(frozen=True)
class SellFill:
    """The simulated fill of a sell order, handed to the ledger to close a position."""
    sell_price: Amount
    sell_fees: Amount
    sell_slippage: Amount
    close_reason: str
    time_sell: int = field(default_factory=now_ms)
    market_snapshot: MarketSnapshot = field(default_factory=MarketSnapshot)


def compute_pnl(amount_base: Amount, buy_fees: Amount, proceeds: Amount, sell_fees: Amount) -> Amount:
    """Base received minus base spent over a round trip."""
    return proceeds.subtract(sell_fees).subtract(amount_base.add(buy_fees))
