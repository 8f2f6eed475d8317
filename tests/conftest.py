"""Shared fixtures: temporary ledgers, canned quotes and fake HTTP sessions."""
import os

# Keep test runs from writing the rotating log file
os.environ["LOG_FILE"] = ""

import asyncio
import json
import random
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.config.models import create_default_config
from core.domain.models.value_objects import Amount
from core.domain.position import MarketSnapshot, Position, Trade, now_ms
from core.domain.repositories.ledger_repository import LedgerRepository
from trading.paper.live_price_service import LivePriceService
from trading.paper.types import PriceQuote


class FixedRandom(random.Random):
    """Random source whose random() always returns the same value."""

    def __init__(self, value: float):
        super().__init__(0)
        self.value = value

    def random(self):
        return self.value


def make_quote(token_id="TOKEN", price="0.001", liquidity="10000", symbol="TKN", attempts=1) -> PriceQuote:
    return PriceQuote(
        token_id=token_id,
        price=Amount.of(price),
        price_usd=Amount.of(price).multiply(150),
        symbol=symbol,
        quote_symbol="SOL",
        dex_id="raydium",
        pair_address=f"pair-{token_id}",
        market_snapshot=MarketSnapshot(
            volume_m5=Amount.of("500"),
            market_cap=Amount.of("100000"),
            liquidity_usd=Amount.of(liquidity),
        ),
        attempts=attempts,
    )


def make_pair(dex_id="raydium", price_native="0.001", price_usd="0.15", liquidity=10000, symbol="TKN"):
    return {
        "chainId": "solana",
        "dexId": dex_id,
        "pairAddress": f"pair-{dex_id}",
        "baseToken": {"address": "TOKEN", "name": "Token", "symbol": symbol},
        "quoteToken": {"address": "So11111111111111111111111111111111111111112", "symbol": "SOL"},
        "priceNative": price_native,
        "priceUsd": price_usd,
        "volume": {"m5": 1234.5},
        "marketCap": 250000,
        "liquidity": {"usd": liquidity},
    }


def make_buy(token_id="TOKEN", amount_base="1", buy_fees="0.01", buy_price="0.001", time_buy=None):
    """An open trade leg and its position, as the executor would build them."""
    amount_base = Amount.of(amount_base)
    buy_price = Amount.of(buy_price)
    amount_token = amount_base.divide(buy_price)
    time_buy = time_buy or now_ms()
    trade = Trade(
        token_id=token_id,
        token_name=f"{token_id}-name",
        amount_base=amount_base,
        amount_token=amount_token,
        buy_price=buy_price,
        buy_fees=Amount.of(buy_fees),
        buy_slippage=Amount.of("0.01"),
        time_buy=time_buy,
    )
    position = Position(
        token_id=token_id,
        token_name=f"{token_id}-name",
        amount=amount_token,
        buy_price=buy_price,
        current_price=buy_price,
        stop_loss=buy_price.multiply("0.7"),
        take_profit=buy_price.multiply("1.26"),
        position_size=amount_base,
        last_updated=time_buy,
    )
    return trade, position


class FakeResponse:
    """Async context manager standing in for an aiohttp response."""

    def __init__(self, status=200, body="", raise_on_enter=None):
        self.status = status
        self._body = body if isinstance(body, str) else json.dumps(body)
        self._raise_on_enter = raise_on_enter

    async def __aenter__(self):
        if self._raise_on_enter is not None:
            raise self._raise_on_enter
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def text(self):
        return self._body

    async def json(self, content_type="application/json"):
        return json.loads(self._body)


class FakeSession:
    """Minimal aiohttp.ClientSession replacement returning canned responses."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.requested = []
        self.closed = False

    def __call__(self, *args, **kwargs):
        return self

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def get(self, url, **kwargs):
        self.requested.append(url)
        return self.responses.pop(0)

    async def close(self):
        self.closed = True


@pytest.fixture
def config():
    return create_default_config()


@pytest.fixture
def make_ledger(tmp_path):
    """Factory for initialized ledgers on temporary SQLite files."""
    ledgers = []

    def _make(initial_balance="5", name="ledger.db"):
        ledger = LedgerRepository(f"sqlite:///{tmp_path / name}")
        ledger.initialize(initial_balance)
        ledgers.append(ledger)
        return ledger

    yield _make
    for ledger in ledgers:
        ledger.close()


@pytest.fixture
def ledger(make_ledger):
    return make_ledger()


@pytest.fixture
def price_service():
    """Price service double returning a canned quote for any token."""
    service = MagicMock(spec=LivePriceService)
    service.get_price = AsyncMock(side_effect=lambda token_id: make_quote(token_id))
    service.close = AsyncMock()
    return service


def run(coro):
    return asyncio.run(coro)
