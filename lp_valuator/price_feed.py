#!/usr/bin/env python3
"""
Reference Price Feed — CoinGecko simple/price Client
=====================================================
Based on the official documentation: https://docs.coingecko.com/reference/simple-price

Fetches the external USD quotes that anchor every derived price:
  ethereum-classic  (native ETC)
  wrapped-etc-2     (WETC, DEX-tradable)
  classic-usd       (USC, fiat-backed stablecoin)
"""

import asyncio
import time
import httpx
from typing import Dict, Iterable

from lp_valuator.central_config import config
from lp_valuator.models import PriceQuote
from lp_valuator.token_registry import ETC_ANCHORS, AnchorConfig, reference_prices_from_quotes


# ── Rate Limiter (CWE-770 mitigation) ────────────────────────────────────


class _RateLimiter:
    """Token-bucket rate limiter to respect API limits.

    CWE-770: Allocation of Resources Without Limits or Throttling.

    Keeps the client under CoinGecko's free-tier limit and avoids
    IP bans that would break the tool for all users.
    """

    def __init__(self, max_requests: int, period_seconds: float):
        self._max = max_requests
        self._period = period_seconds
        self._timestamps: list[float] = []

    async def acquire(self) -> None:
        """Wait until a request slot is available."""
        now = time.monotonic()
        # Purge timestamps outside the current window
        self._timestamps = [t for t in self._timestamps if now - t < self._period]
        if len(self._timestamps) >= self._max:
            # Wait until the oldest request expires
            sleep_time = self._period - (now - self._timestamps[0]) + 0.1
            if sleep_time > 0:
                await asyncio.sleep(sleep_time)
        self._timestamps.append(time.monotonic())


# Shared rate limiter (module-level singleton)
_coingecko_limiter = _RateLimiter(
    max_requests=config.api.MAX_REQUESTS_PER_MINUTE, period_seconds=60
)


class CoinGeckoClient:
    """CoinGecko public API client (no key required)."""

    def __init__(self):
        self.url = config.api.get_simple_price_url()
        self.timeout = config.api.TIMEOUT_SECONDS

    async def fetch_quotes(self, ids: Iterable[str]) -> Dict[str, PriceQuote]:
        """
        USD quotes for the given CoinGecko ids.

        Every requested id must come back with a numeric ``usd`` field.

        Raises:
            ValueError: No ids requested.
            RuntimeError: HTTP failure or malformed response.
        """
        ids = sorted(set(ids))
        if not ids:
            raise ValueError("At least one CoinGecko id is required")

        await _coingecko_limiter.acquire()
        print(f"🔍 Fetching reference prices: {', '.join(ids)}")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, verify=True) as client:
                response = await client.get(
                    self.url, params=config.api.get_simple_price_params(ids)
                )
        except httpx.TimeoutException as e:
            raise RuntimeError("Timeout fetching reference prices") from e
        except httpx.HTTPError as e:
            # CWE-209: do not expose internal exception details
            raise RuntimeError("Network request for reference prices failed") from e

        if response.status_code == 429:
            raise RuntimeError("Rate limit reached on CoinGecko. Please wait and try again.")
        if response.status_code != 200:
            raise RuntimeError(f"HTTP Error {response.status_code} from CoinGecko")

        try:
            data = response.json()
        except ValueError as e:
            raise RuntimeError("Invalid JSON from CoinGecko") from e
        return self._parse_quotes(data, ids)

    @staticmethod
    def _parse_quotes(data, ids) -> Dict[str, PriceQuote]:
        if not isinstance(data, dict):
            raise RuntimeError("Invalid price data response from CoinGecko")

        now = time.time()
        quotes: Dict[str, PriceQuote] = {}
        for quote_id in ids:
            entry = data.get(quote_id)
            usd = entry.get("usd") if isinstance(entry, dict) else None
            if isinstance(usd, bool) or not isinstance(usd, (int, float)):
                raise RuntimeError(f"Invalid price data for '{quote_id}' from CoinGecko")
            change = entry.get("usd_24h_change")
            quotes[quote_id] = PriceQuote(
                token_id=quote_id,
                usd_price=float(usd),
                source="CoinGecko",
                last_updated=float(entry.get("last_updated_at") or now),
                change_24h=float(change) if isinstance(change, (int, float)) else None,
            )
        return quotes


async def fetch_reference_prices(anchors: AnchorConfig = ETC_ANCHORS) -> Dict[str, float]:
    """Quotes for every anchor, resolved into ``address → usd_price``."""
    quotes = await CoinGeckoClient().fetch_quotes(anchors.quote_ids())
    prices = reference_prices_from_quotes(quotes, anchors)
    print(f"✅ Reference prices loaded for {len(prices)} token(s)")
    return prices
