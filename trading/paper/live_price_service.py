"""
Live Price Service

Provides token prices from the DEX pair feed with bounded retry:
1. GET {api_url}/{token_id} returns every pair that trades the token
2. Only pairs on trusted DEXes are considered; the first with a usable
   native price wins
3. Empty or untrusted responses, rate limits, server errors, timeouts and
   connection failures are retried with capped exponential backoff

Callers get a PriceQuote or None. None means the price could not be
obtained and the caller should hold.
"""

import asyncio
import json
from typing import Dict, List, Optional

import aiohttp

from core.common.config import DEXSCREENER_API_URL
from core.common.logger import ErrorRateLimiter, logger
from core.config.models import PriceCheckConfig, PriceFeedConfig
from core.domain.models.value_objects import Amount
from core.domain.position import MarketSnapshot, now_ms
from .types import PriceQuote

BACKOFF_FACTOR = 1.5
RETRY_LOG_INTERVAL_SECONDS = 10


class PriceFetchError(Exception):
    """A price request failed."""

    def __init__(self, message: str, retryable: bool):
        super().__init__(message)
        self.retryable = retryable


def _parse_amount(value) -> Optional[Amount]:
    if value is None or value == "":
        return None
    try:
        return Amount.of(value)
    except (TypeError, ValueError):
        return None


class LivePriceService:
    """
    Pair price client for the DEX market-data feed.

    Owns one aiohttp session, created on first use and released by close().
    """

    def __init__(self, feed_config: PriceFeedConfig = None, retry_config: PriceCheckConfig = None):
        self.feed_config = feed_config or PriceFeedConfig()
        self.retry_config = retry_config or PriceCheckConfig()
        self.api_url = (self.feed_config.api_url or DEXSCREENER_API_URL).rstrip("/")
        self.trusted_dex_ids = set(self.feed_config.trusted_dex_ids)
        self._session: Optional[aiohttp.ClientSession] = None
        self._retry_log_limiter = ErrorRateLimiter(interval_seconds=RETRY_LOG_INTERVAL_SECONDS)
        self._log = logger.bind(component="live_price_service")

    def backoff_delay(self, attempt_index: int) -> float:
        """Delay after the failed attempt with 0-based index `attempt_index`."""
        delay = self.retry_config.initial_delay_seconds * (BACKOFF_FACTOR ** attempt_index)
        return min(delay, self.retry_config.max_delay_seconds)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.feed_config.timeout_seconds),
                headers={"accept": "application/json"},
            )
        return self._session

    async def _fetch_pairs(self, token_id: str) -> list:
        """
        Single request against the pair endpoint.

        Returns:
            The decoded list of pair records

        Raises:
            PriceFetchError: with `retryable` set for transient failures
        """
        url = f"{self.api_url}/{token_id}"
        session = await self._get_session()
        try:
            async with session.get(url) as response:
                if response.status == 429:
                    raise PriceFetchError("rate limited (HTTP 429)", retryable=True)
                if response.status >= 500:
                    raise PriceFetchError(f"server error (HTTP {response.status})", retryable=True)
                if response.status != 200:
                    error_text = await response.text()
                    raise PriceFetchError(f"HTTP {response.status}: {error_text[:200]}", retryable=False)
                body = await response.text()
        except asyncio.TimeoutError:
            raise PriceFetchError("request timed out", retryable=True)
        except aiohttp.ClientError as e:
            raise PriceFetchError(f"connection error: {e}", retryable=True)

        try:
            pairs = json.loads(body)
        except json.JSONDecodeError as e:
            raise PriceFetchError(f"malformed JSON: {e}", retryable=False)
        if not isinstance(pairs, list):
            raise PriceFetchError("malformed response: expected a list of pairs", retryable=False)
        return pairs

    def _select_quote(self, token_id: str, pairs: list, attempts: int) -> Optional[PriceQuote]:
        """First trusted pair with a parseable native price, or None."""
        for pair in pairs:
            if not isinstance(pair, dict):
                continue
            if str(pair.get("dexId", "")).lower() not in self.trusted_dex_ids:
                continue
            price = _parse_amount(pair.get("priceNative"))
            if price is None:
                continue

            volume = pair.get("volume") or {}
            liquidity = pair.get("liquidity") or {}
            snapshot = MarketSnapshot(
                volume_m5=_parse_amount(volume.get("m5")) or Amount.of(0),
                market_cap=_parse_amount(pair.get("marketCap")) or Amount.of(0),
                liquidity_usd=_parse_amount(liquidity.get("usd")) or Amount.of(0),
            )
            return PriceQuote(
                token_id=token_id,
                price=price,
                price_usd=_parse_amount(pair.get("priceUsd")) or Amount.of(0),
                symbol=(pair.get("baseToken") or {}).get("symbol") or "N/A",
                quote_symbol=(pair.get("quoteToken") or {}).get("symbol") or "N/A",
                dex_id=pair.get("dexId"),
                pair_address=pair.get("pairAddress") or "",
                market_snapshot=snapshot,
                attempts=attempts,
                fetched_at=now_ms(),
            )
        return None

    async def get_price(self, token_id: str) -> Optional[PriceQuote]:
        """
        Get the current price of a token, retrying transient failures.

        Args:
            token_id: Token mint address

        Returns:
            PriceQuote with the number of attempts made, or None when the
            retry budget is exhausted or a non-retryable error occurred
        """
        max_retries = self.retry_config.max_retries

        for attempt in range(max_retries):
            try:
                pairs = await self._fetch_pairs(token_id)
                quote = self._select_quote(token_id, pairs, attempts=attempt + 1)
                if quote is not None:
                    return quote
                reason = "no trusted pair" if pairs else "no pairs returned"
            except PriceFetchError as e:
                if not e.retryable:
                    self._log.error(f"Price fetch for {token_id} failed: {e}")
                    return None
                reason = str(e)

            if attempt + 1 >= max_retries:
                break

            delay = self.backoff_delay(attempt)
            if self._retry_log_limiter.should_log(token_id):
                self._log.info(
                    f"Price for {token_id} unavailable ({reason}), "
                    f"attempt {attempt + 1}/{max_retries}, retrying in {delay:.1f}s"
                )
            await asyncio.sleep(delay)

        self._log.warning(f"Price for {token_id} unavailable after {max_retries} attempts")
        return None

    async def get_multiple_prices(self, token_ids: List[str]) -> Dict[str, PriceQuote]:
        """
        Get current prices for multiple tokens concurrently.

        Returns:
            Dictionary mapping token ids to quotes; tokens without a price are omitted
        """
        quotes = await asyncio.gather(*(self.get_price(token_id) for token_id in token_ids))
        results = {token_id: quote for token_id, quote in zip(token_ids, quotes) if quote is not None}
        self._log.debug(f"Fetched {len(results)}/{len(token_ids)} prices")
        return results

    async def close(self):
        """Close connections."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
        self._log.info("Live price service closed")
