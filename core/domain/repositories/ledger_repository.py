"""
Ledger Repository - durable record of the paper trading account.

Owns four tables:
- virtual_balance: append-only balance history, latest row is current
- positions: at most one open position per token
- trades: one row per round trip, the sell leg is filled in on close
- liquidity_high_water: highest liquidity seen per token while it is held

Every multi-row mutation runs in a single transaction that is rolled back in
full on failure. Decimals are stored as exact text and parsed back into
Amounts. Driver errors surface as StoreError.
"""

from contextlib import closing, contextmanager
from dataclasses import dataclass
from typing import List, Optional

from core.common.db import DB_ERRORS, POSTGRES, adapt_query, dialect_for, get_database_url, open_connection
from core.common.logger import logger
from core.domain.models.value_objects import Amount, HUNDRED, ZERO
from core.domain.position import (
    MarketSnapshot,
    Position,
    SellFill,
    Trade,
    VirtualBalance,
    compute_pnl,
    now_ms,
)

_log = logger.bind(component="ledger")


class StoreError(Exception):
    """Raised when the ledger cannot complete an operation."""


class PositionNotFoundError(StoreError):
    """No open position exists for the token."""


class PositionAlreadyOpenError(StoreError):
    """A position for the token is already open."""


class InsufficientBalanceError(StoreError):
    """The balance cannot cover the requested debit."""


class PositionLimitError(StoreError):
    """Opening another position would exceed the open position limit."""


@dataclass(frozen=True)
class TradingStats:
    """Aggregate figures over completed trades."""
    total_trades: int
    profitable_trades: int
    win_rate: Amount
    total_pnl: Amount
    average_pnl: Amount
    best_trade: Optional[Amount]
    worst_trade: Optional[Amount]


POSITION_COLUMNS = (
    "token_id, token_name, amount, buy_price, current_price, stop_loss, "
    "take_profit, position_size, last_updated, market_snapshot"
)

TRADE_COLUMNS = (
    "id, token_id, token_name, amount_base, amount_token, buy_price, buy_fees, "
    "buy_slippage, sell_price, sell_fees, sell_slippage, time_buy, time_sell, "
    "pnl, close_reason, market_snapshot_buy, market_snapshot_sell"
)


def _schema(dialect: str) -> List[str]:
    pk = "BIGSERIAL PRIMARY KEY" if dialect == POSTGRES else "INTEGER PRIMARY KEY AUTOINCREMENT"
    return [
        f"""
        CREATE TABLE IF NOT EXISTS virtual_balance (
            id {pk},
            balance TEXT NOT NULL,
            updated_at BIGINT NOT NULL
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS positions (
            token_id TEXT PRIMARY KEY,
            token_name TEXT NOT NULL,
            amount TEXT NOT NULL,
            buy_price TEXT NOT NULL,
            current_price TEXT NOT NULL,
            stop_loss TEXT NOT NULL,
            take_profit TEXT NOT NULL,
            position_size TEXT NOT NULL,
            last_updated BIGINT NOT NULL,
            market_snapshot TEXT
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS trades (
            id {pk},
            token_id TEXT NOT NULL,
            token_name TEXT NOT NULL,
            amount_base TEXT NOT NULL,
            amount_token TEXT NOT NULL,
            buy_price TEXT NOT NULL,
            buy_fees TEXT NOT NULL,
            buy_slippage TEXT NOT NULL,
            sell_price TEXT,
            sell_fees TEXT,
            sell_slippage TEXT,
            time_buy BIGINT NOT NULL,
            time_sell BIGINT,
            pnl TEXT,
            close_reason TEXT,
            market_snapshot_buy TEXT,
            market_snapshot_sell TEXT,
            UNIQUE (token_id, time_buy)
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS liquidity_high_water (
            token_id TEXT PRIMARY KEY,
            liquidity_usd TEXT NOT NULL,
            updated_at BIGINT NOT NULL
        )
        """,
    ]


def _opt_amount(value) -> Optional[Amount]:
    return Amount.of(value) if value is not None else None


def _opt_text(value: Optional[Amount]) -> Optional[str]:
    return value.to_string() if value is not None else None


class LedgerRepository:
    """
    Repository for the virtual balance, positions and trade history.

    Holds one DB-API connection for its lifetime. Methods are synchronous and
    never yield to the event loop inside a transaction, so concurrent ticks
    cannot interleave their writes.
    """

    def __init__(self, database_url: str = None):
        self.database_url = database_url or get_database_url()
        self.dialect = dialect_for(self.database_url)
        self._conn = None

    # ------------------------------------------------------------------
    # Connection plumbing
    # ------------------------------------------------------------------

    def _connection(self):
        if self._conn is None:
            try:
                self._conn, self.dialect = open_connection(self.database_url)
            except DB_ERRORS as e:
                raise StoreError(f"Failed to connect to ledger database: {e}") from e
        return self._conn

    @contextmanager
    def _transaction(self):
        """Yield a cursor inside a transaction; commit on success, roll back on any error."""
        conn = self._connection()
        try:
            with conn:
                with closing(conn.cursor()) as cur:
                    yield cur
        except DB_ERRORS as e:
            raise StoreError(f"Ledger transaction failed: {e}") from e

    def _execute(self, cur, sql: str, params: tuple = ()) -> None:
        cur.execute(adapt_query(sql, self.dialect), params)

    # ------------------------------------------------------------------
    # Schema and balance
    # ------------------------------------------------------------------

    def initialize(self, initial_balance) -> VirtualBalance:
        """Create the schema and seed the first balance row when none exists."""
        initial_balance = Amount.of(initial_balance)
        with self._transaction() as cur:
            for statement in _schema(self.dialect):
                cur.execute(statement)
            current = self._current_balance(cur)
            if current is None:
                current = self._insert_balance(cur, initial_balance)
                _log.info(f"Initialized virtual balance at {initial_balance.to_string()} SOL")
            else:
                _log.info(f"Resuming with virtual balance {current.balance.to_string()} SOL")
        return current

    def _current_balance(self, cur) -> Optional[VirtualBalance]:
        self._execute(cur, "SELECT balance, updated_at FROM virtual_balance ORDER BY id DESC LIMIT 1")
        row = cur.fetchone()
        if not row:
            return None
        return VirtualBalance(balance=Amount.of(row[0]), updated_at=int(row[1]))

    def _insert_balance(self, cur, amount: Amount) -> VirtualBalance:
        if amount.is_negative():
            raise InsufficientBalanceError(f"Balance cannot go negative: {amount.to_string()}")
        record = VirtualBalance(balance=amount, updated_at=now_ms())
        self._execute(
            cur,
            "INSERT INTO virtual_balance (balance, updated_at) VALUES (%s, %s)",
            (record.balance.to_string(), record.updated_at),
        )
        return record

    def get_balance(self) -> Optional[VirtualBalance]:
        """Most recent balance row, or None when the ledger was never seeded."""
        with self._transaction() as cur:
            return self._current_balance(cur)

    def append_balance(self, amount) -> VirtualBalance:
        with self._transaction() as cur:
            return self._insert_balance(cur, Amount.of(amount))

    def balance_history(self, limit: int = None) -> List[VirtualBalance]:
        """Balance rows oldest first (the most recent `limit` rows when limited)."""
        sql = "SELECT balance, updated_at FROM virtual_balance ORDER BY id DESC"
        params = ()
        if limit is not None:
            sql += " LIMIT %s"
            params = (limit,)
        with self._transaction() as cur:
            self._execute(cur, sql, params)
            rows = cur.fetchall()
        return [VirtualBalance(balance=Amount.of(r[0]), updated_at=int(r[1])) for r in reversed(rows)]

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    def _row_to_position(self, row) -> Position:
        return Position(
            token_id=row[0],
            token_name=row[1],
            amount=Amount.of(row[2]),
            buy_price=Amount.of(row[3]),
            current_price=Amount.of(row[4]),
            stop_loss=Amount.of(row[5]),
            take_profit=Amount.of(row[6]),
            position_size=Amount.of(row[7]),
            last_updated=int(row[8]),
            market_snapshot=MarketSnapshot.from_json(row[9]),
        )

    def _select_position(self, cur, token_id: str) -> Optional[Position]:
        self._execute(cur, f"SELECT {POSITION_COLUMNS} FROM positions WHERE token_id = %s", (token_id,))
        row = cur.fetchone()
        return self._row_to_position(row) if row else None

    def _insert_position(self, cur, position: Position) -> None:
        if self._select_position(cur, position.token_id) is not None:
            raise PositionAlreadyOpenError(f"Position already open for {position.token_id}")
        self._execute(
            cur,
            f"INSERT INTO positions ({POSITION_COLUMNS}) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)",
            (
                position.token_id,
                position.token_name,
                position.amount.to_string(),
                position.buy_price.to_string(),
                position.current_price.to_string(),
                position.stop_loss.to_string(),
                position.take_profit.to_string(),
                position.position_size.to_string(),
                position.last_updated,
                position.market_snapshot.to_json(),
            ),
        )

    def get_open_position(self, token_id: str) -> Optional[Position]:
        with self._transaction() as cur:
            return self._select_position(cur, token_id)

    def list_open_positions(self) -> List[Position]:
        with self._transaction() as cur:
            self._execute(cur, f"SELECT {POSITION_COLUMNS} FROM positions ORDER BY last_updated, token_id")
            rows = cur.fetchall()
        return [self._row_to_position(row) for row in rows]

    def count_open_positions(self) -> int:
        with self._transaction() as cur:
            self._execute(cur, "SELECT COUNT(*) FROM positions")
            return int(cur.fetchone()[0])

    def update_position_price(self, token_id: str, price, snapshot: MarketSnapshot = None) -> Optional[Position]:
        """Record the latest price for an open position; None when nothing is open."""
        price = Amount.of(price)
        with self._transaction() as cur:
            existing = self._select_position(cur, token_id)
            if existing is None:
                return None
            snapshot = snapshot or existing.market_snapshot
            updated_at = now_ms()
            self._execute(
                cur,
                "UPDATE positions SET current_price = %s, market_snapshot = %s, last_updated = %s "
                "WHERE token_id = %s",
                (price.to_string(), snapshot.to_json(), updated_at, token_id),
            )
        existing.current_price = price
        existing.market_snapshot = snapshot
        existing.last_updated = updated_at
        return existing

    def upsert_position_on_buy(self, position: Position) -> Position:
        """Insert a freshly bought position; a second buy of an open token is rejected."""
        with self._transaction() as cur:
            self._insert_position(cur, position)
        return position

    # ------------------------------------------------------------------
    # Trades
    # ------------------------------------------------------------------

    def _row_to_trade(self, row) -> Trade:
        return Trade(
            id=int(row[0]),
            token_id=row[1],
            token_name=row[2],
            amount_base=Amount.of(row[3]),
            amount_token=Amount.of(row[4]),
            buy_price=Amount.of(row[5]),
            buy_fees=Amount.of(row[6]),
            buy_slippage=Amount.of(row[7]),
            sell_price=_opt_amount(row[8]),
            sell_fees=_opt_amount(row[9]),
            sell_slippage=_opt_amount(row[10]),
            time_buy=int(row[11]),
            time_sell=int(row[12]) if row[12] is not None else None,
            pnl=_opt_amount(row[13]),
            close_reason=row[14],
            market_snapshot_buy=MarketSnapshot.from_json(row[15]),
            market_snapshot_sell=MarketSnapshot.from_json(row[16]) if row[16] else None,
        )

    def record_buy_trade(self, trade: Trade, position: Position, max_open_positions: int = None) -> VirtualBalance:
        """
        Open a position in one transaction.

        Inserts the open trade leg and the position and debits the balance by
        amount_base + buy_fees. Nothing is written when any step fails.
        When max_open_positions is given the open position count is checked in
        the same transaction.

        Returns:
            The new balance row

        Raises:
            PositionAlreadyOpenError: token already held
            InsufficientBalanceError: no balance row, or the debit would go negative
            PositionLimitError: max_open_positions positions are already open
        """
        with self._transaction() as cur:
            balance = self._current_balance(cur)
            if balance is None:
                raise InsufficientBalanceError("No virtual balance recorded")
            remaining = balance.balance.subtract(trade.total_cost)
            if remaining.is_negative():
                raise InsufficientBalanceError(
                    f"Balance {balance.balance.to_string()} cannot cover {trade.total_cost.to_string()}"
                )
            if max_open_positions is not None:
                self._execute(cur, "SELECT COUNT(*) FROM positions")
                if int(cur.fetchone()[0]) >= max_open_positions:
                    raise PositionLimitError(f"Maximum open positions limit ({max_open_positions}) reached")

            self._execute(
                cur,
                "INSERT INTO trades (token_id, token_name, amount_base, amount_token, buy_price, "
                "buy_fees, buy_slippage, time_buy, market_snapshot_buy) "
                "VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)",
                (
                    trade.token_id,
                    trade.token_name,
                    trade.amount_base.to_string(),
                    trade.amount_token.to_string(),
                    trade.buy_price.to_string(),
                    trade.buy_fees.to_string(),
                    trade.buy_slippage.to_string(),
                    trade.time_buy,
                    trade.market_snapshot_buy.to_json(),
                ),
            )
            self._insert_position(cur, position)
            new_balance = self._insert_balance(cur, remaining)

        _log.info(
            f"Recorded buy of {trade.amount_token.to_string()} {trade.token_name} "
            f"for {trade.total_cost.to_string()} SOL, balance {new_balance.balance.to_string()}"
        )
        return new_balance

    def close_position_and_record_trade(self, token_id: str, fill: SellFill) -> Trade:
        """
        Close a position in one transaction.

        Completes the open trade leg with the sell fields and pnl, deletes the
        position and its liquidity high-water mark, and credits proceeds minus
        sell fees to the balance.

        Raises:
            PositionNotFoundError: no open position for the token
        """
        with self._transaction() as cur:
            position = self._select_position(cur, token_id)
            if position is None:
                raise PositionNotFoundError(f"No open position for {token_id}")

            self._execute(
                cur,
                f"SELECT {TRADE_COLUMNS} FROM trades WHERE token_id = %s AND time_sell IS NULL "
                "ORDER BY time_buy DESC LIMIT 1",
                (token_id,),
            )
            row = cur.fetchone()
            if row is None:
                raise StoreError(f"Open position for {token_id} has no open trade leg")
            trade = self._row_to_trade(row)

            proceeds = position.amount.multiply(fill.sell_price)
            pnl = compute_pnl(trade.amount_base, trade.buy_fees, proceeds, fill.sell_fees)

            self._execute(
                cur,
                "UPDATE trades SET sell_price = %s, sell_fees = %s, sell_slippage = %s, time_sell = %s, "
                "pnl = %s, close_reason = %s, market_snapshot_sell = %s WHERE id = %s",
                (
                    fill.sell_price.to_string(),
                    fill.sell_fees.to_string(),
                    fill.sell_slippage.to_string(),
                    fill.time_sell,
                    pnl.to_string(),
                    fill.close_reason,
                    fill.market_snapshot.to_json(),
                    trade.id,
                ),
            )
            self._execute(cur, "DELETE FROM positions WHERE token_id = %s", (token_id,))
            self._execute(cur, "DELETE FROM liquidity_high_water WHERE token_id = %s", (token_id,))

            balance = self._current_balance(cur)
            if balance is None:
                raise InsufficientBalanceError("No virtual balance recorded")
            new_balance = self._insert_balance(cur, balance.balance.add(proceeds).subtract(fill.sell_fees))

        trade.sell_price = fill.sell_price
        trade.sell_fees = fill.sell_fees
        trade.sell_slippage = fill.sell_slippage
        trade.time_sell = fill.time_sell
        trade.pnl = pnl
        trade.close_reason = fill.close_reason
        trade.market_snapshot_sell = fill.market_snapshot

        _log.info(
            f"Closed {position.token_name} ({fill.close_reason}): pnl {pnl.to_string(9)} SOL, "
            f"balance {new_balance.balance.to_string()}"
        )
        return trade

    def list_trades(self, limit: int = None) -> List[Trade]:
        """Trades most recent first."""
        sql = f"SELECT {TRADE_COLUMNS} FROM trades ORDER BY time_buy DESC, id DESC"
        params = ()
        if limit is not None:
            sql += " LIMIT %s"
            params = (limit,)
        with self._transaction() as cur:
            self._execute(cur, sql, params)
            rows = cur.fetchall()
        return [self._row_to_trade(row) for row in rows]

    def get_trading_stats(self) -> TradingStats:
        with self._transaction() as cur:
            self._execute(cur, "SELECT pnl FROM trades WHERE time_sell IS NOT NULL AND pnl IS NOT NULL")
            pnls = [Amount.of(row[0]) for row in cur.fetchall()]

        total = len(pnls)
        profitable = sum(1 for p in pnls if p.is_positive())
        total_pnl = ZERO
        for p in pnls:
            total_pnl = total_pnl.add(p)

        return TradingStats(
            total_trades=total,
            profitable_trades=profitable,
            win_rate=Amount.of(profitable).divide(total).multiply(HUNDRED) if total else ZERO,
            total_pnl=total_pnl,
            average_pnl=total_pnl.divide(total) if total else ZERO,
            best_trade=Amount.max(*pnls) if pnls else None,
            worst_trade=Amount.min(*pnls) if pnls else None,
        )

    # ------------------------------------------------------------------
    # Liquidity high-water marks
    # ------------------------------------------------------------------

    def get_liquidity_high_water(self, token_id: str) -> Optional[Amount]:
        with self._transaction() as cur:
            self._execute(cur, "SELECT liquidity_usd FROM liquidity_high_water WHERE token_id = %s", (token_id,))
            row = cur.fetchone()
        return Amount.of(row[0]) if row else None

    def record_liquidity(self, token_id: str, liquidity) -> Amount:
        """Raise the stored high-water mark to `liquidity` if it is higher; returns the mark."""
        liquidity = Amount.of(liquidity)
        with self._transaction() as cur:
            self._execute(cur, "SELECT liquidity_usd FROM liquidity_high_water WHERE token_id = %s", (token_id,))
            row = cur.fetchone()
            if row is None:
                self._execute(
                    cur,
                    "INSERT INTO liquidity_high_water (token_id, liquidity_usd, updated_at) VALUES (%s, %s, %s)",
                    (token_id, liquidity.to_string(), now_ms()),
                )
                return liquidity

            current = Amount.of(row[0])
            if liquidity > current:
                self._execute(
                    cur,
                    "UPDATE liquidity_high_water SET liquidity_usd = %s, updated_at = %s WHERE token_id = %s",
                    (liquidity.to_string(), now_ms(), token_id),
                )
                return liquidity
            return current

    def close(self) -> None:
        """Close the underlying connection."""
        if self._conn is not None:
            try:
                self._conn.close()
            except DB_ERRORS as e:
                _log.warning(f"Error closing ledger connection: {e}")
            finally:
                self._conn = None
