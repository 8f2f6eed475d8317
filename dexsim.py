"""
dexsim - paper trading simulator for DEX tokens

Runs the simulation loop against live pair prices with a virtual balance.

Usage:
    python dexsim.py
    python dexsim.py --config core/config/default_config.json
    python dexsim.py --buy <TOKEN_MINT>[:NAME]
    python dexsim.py --status
"""

import argparse
import asyncio
import signal
import sys
from typing import Optional, Tuple

from core.common.config import DATABASE_URL
from core.common.logger import logger
from core.config.models import SimulationConfig
from core.config.providers.file_config_provider import FileConfigProvider
from core.domain.repositories.ledger_repository import LedgerRepository, StoreError
from decision.engine import StrategyEngine, build_strategies
from trading.paper.live_price_service import LivePriceService
from trading.paper.positions import PositionManager
from trading.paper.price_validation import PriceValidator
from trading.paper.reference_price_service import ReferencePriceService
from trading.paper.simulation import SimulationService
from trading.paper.trade_executor import TradeExecutor


def build_service(config: SimulationConfig, database_url: str = None) -> SimulationService:
    """Wire the simulation service and its collaborators from a config."""
    ledger = LedgerRepository(database_url or DATABASE_URL)
    price_service = LivePriceService(config.price_feed, config.paper_trading.price_check)
    executor = TradeExecutor(config, ledger, price_service)
    engine = StrategyEngine(config, build_strategies(config, ledger))
    validator = PriceValidator.from_config(config.price_validation) if config.price_validation.enabled else None
    return SimulationService(
        config=config,
        ledger=ledger,
        price_service=price_service,
        executor=executor,
        engine=engine,
        reference_service=ReferencePriceService(config.reference_price),
        price_validator=validator,
    )


def parse_buy_target(value: str) -> Tuple[str, str]:
    """Split TOKEN_ID[:NAME]; the name defaults to the token id."""
    token_id, _, name = value.partition(":")
    token_id = token_id.strip()
    if not token_id:
        raise argparse.ArgumentTypeError("token id must not be empty")
    return token_id, name.strip() or token_id


def print_status(config: SimulationConfig, database_url: str = None) -> None:
    """Log the portfolio summary from the ledger."""
    ledger = LedgerRepository(database_url or DATABASE_URL)
    try:
        ledger.initialize(config.paper_trading.initial_balance)
        summary = PositionManager(ledger).get_portfolio_summary()
    finally:
        ledger.close()

    logger.info(f"Balance: {summary.balance.to_string(4)} SOL")
    logger.info(f"Open positions: {summary.open_positions} (value {summary.position_value.to_string(4)} SOL)")
    for position in summary.positions or []:
        logger.info(
            f"  {position.token_name}: {position.amount.to_string(4)} @ {position.current_price.to_string(12)} SOL "
            f"({position.unrealized_pnl_pct.to_string(2)}%)"
        )
    logger.info(
        f"Trades: {summary.total_trades}, win rate {summary.win_rate.to_string(2)}%, "
        f"total pnl {summary.total_pnl.to_string(6)} SOL"
    )


async def run(config: SimulationConfig, buy: Optional[Tuple[str, str]] = None, database_url: str = None) -> None:
    """Run the simulation until SIGINT or SIGTERM."""
    service = build_service(config, database_url)
    stop_requested = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_requested.set)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop_requested.set))

    await service.start()
    try:
        if buy is not None:
            token_id, token_name = buy
            result = await service.request_buy(token_id, token_name)
            if result.executed:
                logger.info(f"Opened position in {token_name} at {result.fill_price.to_string(12)} SOL")
            else:
                logger.warning(f"Buy of {token_name} rejected: {result.reason}")

        await stop_requested.wait()
        logger.info("Shutdown signal received")
    finally:
        await service.stop()


def main(argv=None) -> int:
    """CLI entry point"""
    parser = argparse.ArgumentParser(description="Run the DEX paper trading simulation")
    parser.add_argument(
        "--config",
        help="Path to the JSON simulation config (defaults to DEXSIM_CONFIG_PATH)"
    )
    parser.add_argument(
        "--buy",
        type=parse_buy_target,
        metavar="TOKEN_ID[:NAME]",
        help="Open a paper position in this token after startup"
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="Print the portfolio summary and exit"
    )
    parser.add_argument(
        "--database-url",
        help="Ledger database URL (defaults to DATABASE_URL)"
    )
    args = parser.parse_args(argv)

    config = FileConfigProvider(args.config).load()

    if args.status:
        print_status(config, args.database_url)
        return 0

    asyncio.run(run(config, args.buy, args.database_url))
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        logger.info("Simulation stopped by user")
    except StoreError as e:
        logger.error(f"Ledger error: {e}")
        sys.exit(1)
