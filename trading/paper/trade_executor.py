"""
Paper Trade Executor

Simulates buy and sell fills against the quoted price and records them in
the ledger. Slippage is drawn uniformly from [0, slippage_bps / 10000) and
always moves the fill against the trader: buys fill above the quote, sells
below the current price.

Business rejections (limits, funds, missing data) come back as
ExecutionResult(status="rejected"). Store failures propagate as StoreError.
"""

import random
from typing import Optional

from core.common.logger import logger
from core.config.models import SimulationConfig
from core.domain.models.value_objects import Amount, HUNDRED, ONE
from core.domain.position import Position, SellFill, Trade, now_ms
from core.domain.repositories.ledger_repository import (
    InsufficientBalanceError,
    LedgerRepository,
    PositionAlreadyOpenError,
    PositionLimitError,
    PositionNotFoundError,
)
from .live_price_service import LivePriceService
from .types import ExecutionResult

BPS_DENOMINATOR = Amount.of(10_000)


class TradeExecutor:
    """Simulated order execution backed by the ledger."""

    def __init__(
        self,
        config: SimulationConfig,
        ledger: LedgerRepository,
        price_service: LivePriceService,
        rng: Optional[random.Random] = None,
    ):
        self.config = config
        self.ledger = ledger
        self.price_service = price_service
        self.rng = rng or random.Random()
        self._log = logger.bind(component="trade_executor")

    def _draw_slippage(self, slippage_bps: int) -> Amount:
        """Uniform slippage fraction in [0, slippage_bps / 10000)."""
        max_slippage = Amount.of(slippage_bps).divide(BPS_DENOMINATOR)
        return max_slippage.multiply(self.rng.random())

    def _reject(self, token_id: str, side: str, reason: str) -> ExecutionResult:
        self._log.warning(f"{side.capitalize()} rejected for {token_id}: {reason}")
        return ExecutionResult.rejected(token_id, side, reason)

    async def execute_buy(self, token_id: str, token_name: str, quoted_price) -> ExecutionResult:
        """
        Open a simulated position.

        Args:
            token_id: Token mint address
            token_name: Display name, replaced by the pair's symbol when known
            quoted_price: Current price in SOL per token

        Returns:
            ExecutionResult with the fill details, or a rejection
        """
        quoted_price = Amount.of(quoted_price)
        if not quoted_price.is_positive():
            return self._reject(token_id, "buy", f"Invalid quoted price {quoted_price}")

        if self.ledger.get_open_position(token_id) is not None:
            return self._reject(token_id, "buy", "Position already open for token")

        max_open = self.config.paper_trading.max_open_positions
        if self.ledger.count_open_positions() >= max_open:
            return self._reject(token_id, "buy", f"Maximum open positions limit ({max_open}) reached")

        balance = self.ledger.get_balance()
        if balance is None:
            return self._reject(token_id, "buy", "Could not get virtual balance")

        spend = Amount.from_base_units(self.config.swap.amount_lamports)
        fees = Amount.from_base_units(self.config.swap.prio_fee_max_lamports)
        if balance.balance < spend.add(fees):
            return self._reject(
                token_id, "buy",
                f"Insufficient virtual balance ({balance.balance} SOL) for {spend.add(fees)} SOL"
            )

        slippage = self._draw_slippage(self.config.swap.slippage_bps)
        fill_price = quoted_price.multiply(ONE.add(slippage))
        token_amount = spend.divide(fill_price)

        quote = await self.price_service.get_price(token_id)
        if quote is None:
            return self._reject(token_id, "buy", "Could not get token price data")

        name = quote.symbol if quote.symbol and quote.symbol != "N/A" else token_name
        time_buy = now_ms()
        sell_config = self.config.sell
        trade = Trade(
            token_id=token_id,
            token_name=name,
            amount_base=spend,
            amount_token=token_amount,
            buy_price=fill_price,
            buy_fees=fees,
            buy_slippage=slippage,
            time_buy=time_buy,
            market_snapshot_buy=quote.market_snapshot,
        )
        position = Position(
            token_id=token_id,
            token_name=name,
            amount=token_amount,
            buy_price=fill_price,
            current_price=fill_price,
            stop_loss=fill_price.multiply(ONE.subtract(Amount.of(sell_config.stop_loss_percent).divide(HUNDRED))),
            take_profit=fill_price.multiply(ONE.add(Amount.of(sell_config.take_profit_percent).divide(HUNDRED))),
            position_size=spend,
            last_updated=time_buy,
            market_snapshot=quote.market_snapshot,
        )

        try:
            new_balance = self.ledger.record_buy_trade(trade, position, max_open_positions=max_open)
        except (InsufficientBalanceError, PositionAlreadyOpenError, PositionLimitError) as e:
            return self._reject(token_id, "buy", str(e))

        self._log.info(
            f"Paper buy {name}: {token_amount.to_string(8)} tokens at {fill_price.to_string(12)} SOL "
            f"(quote {quoted_price.to_string(12)}, slippage {slippage.multiply(HUNDRED).to_string(4)}%)"
        )
        return ExecutionResult(
            status="executed",
            token_id=token_id,
            side="buy",
            fill_price=fill_price,
            token_amount=token_amount,
            base_amount=spend,
            fees=fees,
            slippage=slippage,
            balance_after=new_balance.balance,
            trade=trade,
        )

    async def execute_sell(self, position: Position, reason: str) -> ExecutionResult:
        """
        Close a simulated position at its current price less slippage.

        Args:
            position: The open position, with current_price from this tick
            reason: Human readable close reason stored on the trade

        Returns:
            ExecutionResult with the closed trade, or a rejection
        """
        token_id = position.token_id
        slippage = self._draw_slippage(self.config.sell.slippage_bps)
        fill_price = position.current_price.multiply(ONE.subtract(slippage))
        proceeds = position.amount.multiply(fill_price)
        fees = Amount.from_base_units(self.config.sell.prio_fee_max_lamports)

        quote = await self.price_service.get_price(token_id)
        if quote is None:
            return self._reject(token_id, "sell", "Could not fetch token price data for sell")

        fill = SellFill(
            sell_price=fill_price,
            sell_fees=fees,
            sell_slippage=slippage,
            close_reason=reason,
            time_sell=now_ms(),
            market_snapshot=quote.market_snapshot,
        )
        try:
            trade = self.ledger.close_position_and_record_trade(token_id, fill)
        except PositionNotFoundError as e:
            return self._reject(token_id, "sell", str(e))

        balance = self.ledger.get_balance()
        self._log.info(
            f"Paper sell {position.token_name} ({reason}): {position.amount.to_string(8)} tokens at "
            f"{fill_price.to_string(12)} SOL, received {proceeds.to_string(8)} SOL - {fees.to_string(8)} fees"
        )
        return ExecutionResult(
            status="executed",
            token_id=token_id,
            side="sell",
            reason=reason,
            fill_price=fill_price,
            token_amount=position.amount,
            base_amount=proceeds,
            fees=fees,
            slippage=slippage,
            balance_after=balance.balance if balance else None,
            trade=trade,
        )
