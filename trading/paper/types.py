"""
Paper Trading Type Definitions

Common type definitions for paper trading components.
"""

from dataclasses import dataclass, field
from typing import Optional

from core.domain.models.value_objects import Amount
from core.domain.position import MarketSnapshot, Trade, now_ms


@dataclass(frozen=True)
class PriceQuote:
    """Price of a token taken from its trusted DEX pair"""
    token_id: str
    price: Amount                  # native quote units (SOL)
    price_usd: Amount
    symbol: str
    quote_symbol: str
    dex_id: str
    pair_address: str
    market_snapshot: MarketSnapshot
    attempts: int = 1
    fetched_at: int = field(default_factory=now_ms)


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of a simulated buy or sell"""
    status: str                    # "executed" | "rejected"
    token_id: str
    side: str                      # "buy" | "sell"
    reason: Optional[str] = None
    fill_price: Optional[Amount] = None
    token_amount: Optional[Amount] = None
    base_amount: Optional[Amount] = None
    fees: Optional[Amount] = None
    slippage: Optional[Amount] = None
    balance_after: Optional[Amount] = None
    trade: Optional[Trade] = None

    @property
    def executed(self) -> bool:
        return self.status == "executed"

    @classmethod
    def rejected(cls, token_id: str, side: str, reason: str) -> "ExecutionResult":
        return cls(status="rejected", token_id=token_id, side=side, reason=reason)


@dataclass(frozen=True)
class TickReport:
    """Counts for one simulation tick"""
    evaluated: int = 0
    sold: int = 0
    held: int = 0
    failed: int = 0
