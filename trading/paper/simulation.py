"""
Simulation Service for paper trading

Drives the paper trading loop. Every tick it:
1. Lists the open positions from the ledger
2. Fetches a fresh quote for each token concurrently
3. Records the new price and asks the strategy engine for a verdict
4. Executes the sells the engine decides on

Buys enter through open_position() or the request_buy() queue. Each token
is processed under its own lock, so a buy and a tick never touch the same
token at once.
"""

import asyncio
import inspect
import time
from contextlib import asynccontextmanager
from typing import Callable, Dict, Optional

from core.common.logger import logger as base_logger
from core.config.models import SimulationConfig
from core.domain.position import Position
from core.domain.repositories.ledger_repository import LedgerRepository
from decision.engine import StrategyEngine
from .live_price_service import LivePriceService
from .price_validation import PriceValidator
from .reference_price_service import ReferencePriceService
from .trade_executor import TradeExecutor
from .types import ExecutionResult, TickReport

logger = base_logger.bind(service="simulation")

SOLD = "sold"
HELD = "held"
FAILED = "failed"


class SimulationService:
    """
    Paper trading loop over the open positions in the ledger.

    All collaborators are injected; the service owns their shutdown order.
    """

    def __init__(
        self,
        config: SimulationConfig,
        ledger: LedgerRepository,
        price_service: LivePriceService,
        executor: TradeExecutor,
        engine: StrategyEngine,
        reference_service: Optional[ReferencePriceService] = None,
        price_validator: Optional[PriceValidator] = None,
        token_vetter: Optional[Callable[[str], bool]] = None,
    ):
        self.config = config
        self.ledger = ledger
        self.price_service = price_service
        self.executor = executor
        self.engine = engine
        self.reference_service = reference_service
        self.price_validator = price_validator
        self.token_vetter = token_vetter

        self.running = False
        self.cycle_count = 0
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._stop_event = asyncio.Event()
        self._buy_queue: asyncio.Queue = asyncio.Queue()
        self._loop_task: Optional[asyncio.Task] = None
        self._buy_worker: Optional[asyncio.Task] = None

        logger.info("SimulationService initialized")

    @asynccontextmanager
    async def _token_lock(self, token_id: str):
        """Hold the token's lock; it is discarded once no task holds or awaits it."""
        lock = self._locks.get(token_id)
        if lock is None:
            lock = self._locks[token_id] = asyncio.Lock()
        self._lock_users[token_id] = self._lock_users.get(token_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[token_id] -= 1
            if not self._lock_users[token_id]:
                del self._lock_users[token_id]
                del self._locks[token_id]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self):
        """Initialize the ledger and start the tick loop, buy worker and reference refresher."""
        if self.running:
            return
        balance = self.ledger.initialize(self.config.paper_trading.initial_balance)
        logger.info(
            f"Starting simulation: balance {balance.balance.to_string()} SOL, "
            f"tick every {self.config.paper_trading.tick_interval_seconds}s"
        )

        self.running = True
        self._stop_event.clear()
        if self.reference_service is not None and self.reference_service.config.enabled:
            self.reference_service.start()
        self._buy_worker = asyncio.create_task(self._process_buy_queue())
        self._loop_task = asyncio.create_task(self._tick_loop())

    async def stop(self):
        """
        Gracefully stop the simulation.

        Waits for the in-flight tick and queued buys, then releases the
        reference refresher, the HTTP session and finally the ledger.
        """
        if not self.running and self._loop_task is None:
            return
        logger.info("Stopping simulation service...")
        self.running = False
        self._stop_event.set()

        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None

        if self._buy_worker is not None:
            await self._buy_queue.put(None)
            await self._buy_worker
            self._buy_worker = None

        if self.reference_service is not None:
            await self.reference_service.stop()
        await self.price_service.close()
        self.ledger.close()
        logger.info("Simulation service stopped")

    async def _sleep(self, seconds: float):
        """Sleep that returns early when stop() is called."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _tick_loop(self):
        logger.info("Position monitor started")
        while self.running:
            start_time = time.time()
            try:
                report = await self.run_tick()
                if report.evaluated and self.cycle_count % 20 == 0:
                    logger.info(
                        f"Tick {self.cycle_count}: {report.evaluated} positions, "
                        f"{report.sold} sold, {report.held} held, {report.failed} failed "
                        f"in {time.time() - start_time:.1f}s"
                    )
            except Exception as e:
                logger.error(f"Position monitor error: {e}")

            await self._sleep(self.config.paper_trading.tick_interval_seconds)
        logger.info("Position monitor stopped")

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    async def run_tick(self) -> TickReport:
        """
        Evaluate every open position once.

        Tokens are processed concurrently; a failure on one token is logged
        and counted without affecting the others.
        """
        positions = self.ledger.list_open_positions()
        self.cycle_count += 1
        if not positions:
            return TickReport()

        outcomes = await asyncio.gather(*(self._process_position(p) for p in positions))
        return TickReport(
            evaluated=len(outcomes),
            sold=outcomes.count(SOLD),
            held=outcomes.count(HELD),
            failed=outcomes.count(FAILED),
        )

    async def _process_position(self, position: Position) -> str:
        token_id = position.token_id
        async with self._token_lock(token_id):
            try:
                return await self._evaluate_position(position)
            except Exception as e:
                logger.error(f"Failed to process {position.token_name} ({token_id}): {e}")
                return FAILED

    async def _evaluate_position(self, position: Position) -> str:
        token_id = position.token_id
        quote = await self.price_service.get_price(token_id)
        if quote is None:
            return HELD

        if self.price_validator is not None:
            validation = self.price_validator.validate_price(token_id, quote.price, quote.dex_id)
            self.price_validator.add_price_point(token_id, quote.price, quote.dex_id)
            if not validation.is_valid:
                logger.warning(f"Ignoring price for {position.token_name}: {validation.reason}")
                return HELD

        updated = self.ledger.update_position_price(token_id, quote.price, quote.market_snapshot)
        if updated is None:
            return HELD

        decision = await self.engine.evaluate(updated)
        if not decision.should_sell:
            if self.config.paper_trading.verbose_log:
                logger.debug(
                    f"Holding {updated.token_name}: {updated.price_change_pct.to_string(2)}% "
                    f"at {updated.current_price.to_string(12)} SOL"
                )
            return HELD

        if not self.config.sell.auto_sell:
            logger.info(f"Sell signal for {updated.token_name} ignored (auto_sell off): {decision.reason}")
            return HELD

        result = await self.executor.execute_sell(updated, decision.reason)
        if not result.executed:
            return HELD

        self.engine.forget(token_id)
        if self.price_validator is not None:
            self.price_validator.clear_history(token_id)
        return SOLD

    # ------------------------------------------------------------------
    # Buys
    # ------------------------------------------------------------------

    async def _vet(self, token_id: str) -> bool:
        if self.token_vetter is None:
            return True
        verdict = self.token_vetter(token_id)
        if inspect.isawaitable(verdict):
            verdict = await verdict
        return bool(verdict)

    async def open_position(self, token_id: str, token_name: str, quoted_price=None) -> ExecutionResult:
        """
        Buy a token now.

        Args:
            token_id: Token mint address
            token_name: Display name
            quoted_price: Price in SOL; fetched from the pair feed when omitted

        Returns:
            The executor's ExecutionResult
        """
        async with self._token_lock(token_id):
            if not await self._vet(token_id):
                logger.warning(f"Buy of {token_name} ({token_id}) blocked by token vetting")
                return ExecutionResult.rejected(token_id, "buy", "Token failed vetting")

            if quoted_price is None:
                quote = await self.price_service.get_price(token_id)
                if quote is None:
                    return ExecutionResult.rejected(token_id, "buy", "Could not get token price")
                quoted_price = quote.price

            return await self.executor.execute_buy(token_id, token_name, quoted_price)

    def request_buy(self, token_id: str, token_name: str, quoted_price=None) -> asyncio.Future:
        """
        Queue a buy for the worker task.

        Returns:
            Future resolved with the ExecutionResult

        Raises:
            RuntimeError: if the service is not running
        """
        if not self.running:
            raise RuntimeError("Simulation service is not running")
        future = asyncio.get_running_loop().create_future()
        self._buy_queue.put_nowait((token_id, token_name, quoted_price, future))
        return future

    async def _process_buy_queue(self):
        while True:
            item = await self._buy_queue.get()
            if item is None:
                break
            token_id, token_name, quoted_price, future = item
            try:
                result = await self.open_position(token_id, token_name, quoted_price)
            except Exception as e:
                logger.error(f"Queued buy of {token_name} ({token_id}) failed: {e}")
                if not future.done():
                    future.set_exception(e)
                continue
            if not future.done():
                future.set_result(result)
