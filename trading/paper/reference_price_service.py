"""
Reference Price Service

Keeps the SOL/USD reference price in memory for display conversions. A
background task refreshes it on a fixed interval; readers only ever see the
cached value and never wait on the network.
"""

import asyncio
import time
from typing import Optional

import aiohttp

from core.common.config import COINDESK_HTTPS_URI
from core.common.logger import logger
from core.config.models import ReferencePriceConfig
from core.domain.models.value_objects import Amount
from core.domain.position import now_ms


class ReferencePriceService:
    """Cached reference price with an independent refresh loop."""

    def __init__(self, config: ReferencePriceConfig = None):
        self.config = config or ReferencePriceConfig()
        self.url = self.config.url or COINDESK_HTTPS_URI
        self.running = False
        self.updated_at: Optional[int] = None
        self._price: Optional[Amount] = None
        self._task: Optional[asyncio.Task] = None
        self._log = logger.bind(component="reference_price")

    def get_reference_price(self) -> Optional[Amount]:
        """Last successfully fetched SOL/USD price, or None if never fetched."""
        return self._price

    def is_stale(self, max_age_seconds: float = None) -> bool:
        if self.updated_at is None:
            return True
        max_age = max_age_seconds if max_age_seconds is not None else 2 * self.config.refresh_interval_seconds
        return (time.time() * 1000 - self.updated_at) / 1000 > max_age

    async def refresh(self) -> Optional[Amount]:
        """
        Fetch the reference price once.

        Failures are logged and leave the previous value in place.

        Returns:
            The cached price after the refresh attempt
        """
        if not self.url:
            self._log.debug("No reference price URL configured")
            return self._price

        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    self.url,
                    headers={"accept": "application/json"},
                    timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds)
                ) as response:
                    if response.status != 200:
                        self._log.warning(f"Reference price request failed: HTTP {response.status}")
                        return self._price
                    payload = await response.json(content_type=None)
        except asyncio.TimeoutError:
            self._log.warning("Reference price request timed out")
            return self._price
        except (aiohttp.ClientError, ValueError) as e:
            self._log.warning(f"Reference price request failed: {e}")
            return self._price

        price = self._parse(payload)
        if price is None:
            self._log.warning(f"Malformed reference price payload: {str(payload)[:200]}")
            return self._price

        self._price = price
        self.updated_at = now_ms()
        self._log.debug(f"Reference price updated: {price.to_string(2)} USD")
        return self._price

    @staticmethod
    def _parse(payload) -> Optional[Amount]:
        """Extract {"solana": {"usd": x}}."""
        try:
            value = payload["solana"]["usd"]
            price = Amount.of(value)
        except (KeyError, TypeError, ValueError):
            return None
        return price if price.is_positive() else None

    async def _run(self):
        while self.running:
            await self.refresh()
            await asyncio.sleep(self.config.refresh_interval_seconds)

    def start(self):
        """Start the refresh loop on the running event loop."""
        if self.running:
            return
        self.running = True
        self._task = asyncio.create_task(self._run())
        self._log.info(f"Reference price refresher started (every {self.config.refresh_interval_seconds}s)")

    async def stop(self):
        """Stop the refresh loop and wait for it to exit."""
        self.running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._log.info("Reference price refresher stopped")
