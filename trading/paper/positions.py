"""
Position Manager for Paper Trading

Read-only portfolio analytics over the ledger for dashboards and the CLI.
Values use the last price recorded on each position, so no network calls
are made here.
"""

from dataclasses import dataclass
from typing import List, Optional

from core.common.logger import logger
from core.domain.models.value_objects import Amount, HUNDRED, ZERO
from core.domain.position import Position, now_ms
from core.domain.repositories.ledger_repository import LedgerRepository
from .reference_price_service import ReferencePriceService


@dataclass
class PositionSummary:
    """Summary of a single position"""
    token_id: str
    token_name: str
    amount: Amount
    buy_price: Amount
    current_price: Amount
    position_size: Amount
    current_value: Amount
    unrealized_pnl: Amount
    unrealized_pnl_pct: Amount
    stop_loss: Amount
    take_profit: Amount
    age_seconds: float


@dataclass
class PortfolioSummary:
    """Summary of entire portfolio"""
    balance: Amount
    balance_usd: Optional[Amount]
    open_positions: int
    position_value: Amount
    unrealized_pnl: Amount
    total_trades: int
    win_rate: Amount
    total_pnl: Amount
    best_trade: Optional[Amount] = None
    worst_trade: Optional[Amount] = None
    positions: Optional[List[PositionSummary]] = None


class PositionManager:
    """
    Portfolio-level view of the paper trading account.

    Combines the ledger's balance, open positions and trade statistics with
    the cached SOL/USD reference price.
    """

    def __init__(self, ledger: LedgerRepository, reference_service: ReferencePriceService = None):
        self.ledger = ledger
        self.reference_service = reference_service
        self._log = logger.bind(component="position_manager")

    @staticmethod
    def summarize_position(position: Position) -> PositionSummary:
        """
        Build the summary for one open position.

        Args:
            position: Open position from the ledger

        Returns:
            PositionSummary with unrealized P&L against the position size
        """
        unrealized = position.unrealized_pnl
        pnl_pct = (
            unrealized.divide(position.position_size).multiply(HUNDRED)
            if position.position_size.is_positive() else ZERO
        )
        return PositionSummary(
            token_id=position.token_id,
            token_name=position.token_name,
            amount=position.amount,
            buy_price=position.buy_price,
            current_price=position.current_price,
            position_size=position.position_size,
            current_value=position.current_value,
            unrealized_pnl=unrealized,
            unrealized_pnl_pct=pnl_pct,
            stop_loss=position.stop_loss,
            take_profit=position.take_profit,
            age_seconds=(now_ms() - position.last_updated) / 1000,
        )

    def get_position_summaries(self) -> List[PositionSummary]:
        return [self.summarize_position(p) for p in self.ledger.list_open_positions()]

    def get_portfolio_summary(self) -> PortfolioSummary:
        """
        Snapshot of balance, open exposure and realized performance.

        Raises:
            StoreError: if the ledger cannot be read
        """
        balance_row = self.ledger.get_balance()
        balance = balance_row.balance if balance_row else ZERO
        summaries = self.get_position_summaries()
        stats = self.ledger.get_trading_stats()

        position_value = ZERO
        unrealized = ZERO
        for summary in summaries:
            position_value = position_value.add(summary.current_value)
            unrealized = unrealized.add(summary.unrealized_pnl)

        reference = self.reference_service.get_reference_price() if self.reference_service else None
        balance_usd = balance.multiply(reference) if reference is not None else None

        self._log.debug(
            f"Portfolio: balance {balance.to_string(4)} SOL, {len(summaries)} open, "
            f"unrealized {unrealized.to_string(6)} SOL"
        )
        return PortfolioSummary(
            balance=balance,
            balance_usd=balance_usd,
            open_positions=len(summaries),
            position_value=position_value,
            unrealized_pnl=unrealized,
            total_trades=stats.total_trades,
            win_rate=stats.win_rate,
            total_pnl=stats.total_pnl,
            best_trade=stats.best_trade,
            worst_trade=stats.worst_trade,
            positions=summaries,
        )
