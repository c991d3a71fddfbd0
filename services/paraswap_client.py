#!/usr/bin/env python3
"""Cached, rate-limited client for the ParaSwap price API."""
from __future__ import annotations

import asyncio
import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional, Tuple

import aiohttp

from analysis.analyzer import from_smallest_unit, to_smallest_unit
from analysis.models import PriceResult, TokenInfo
from constants import (
    DEFAULT_CACHE_TTL,
    DEFAULT_MAX_RETRIES,
    DEFAULT_REQUEST_TIMEOUT,
    PARASWAP_API_BASE_URL,
    PARASWAP_EXCLUDED_DEXS,
    PARASWAP_NETWORK_ID,
)
from errors import TransientNetworkError
from services.rate_limiter import QuoteThrottle

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str, int]


class PriceCache:
    """TTL cache of price results; expired entries are dropped when looked up."""

    def __init__(self, ttl_seconds: float = DEFAULT_CACHE_TTL, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[CacheKey, Tuple[PriceResult, float]] = {}

    def get(self, key: CacheKey) -> Optional[PriceResult]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        result, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return result

    def set(self, key: CacheKey, result: PriceResult) -> None:
        self._entries[key] = (result, self._clock() + self.ttl)

    def __len__(self) -> int:
        return len(self._entries)


class ParaSwapClient:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        throttle: QuoteThrottle,
        *,
        base_url: str = PARASWAP_API_BASE_URL,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        max_retries: int = DEFAULT_MAX_RETRIES,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        network: int = PARASWAP_NETWORK_ID,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session = session
        self.throttle = throttle
        self.base_url = base_url.rstrip('/')
        self.max_retries = max(1, max_retries)
        self.network = network
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._cache = PriceCache(cache_ttl, clock=clock)
        self.cache_hits = 0
        self.cache_misses = 0

    async def quote(self, src: TokenInfo, dest: TokenInfo, amount: Decimal) -> Optional[PriceResult]:
        """Best output for selling `amount` (human units) of src into dest, or None."""
        try:
            raw_amount = to_smallest_unit(amount, src.decimals)
        except ValueError as exc:
            logger.error("Cannot quote %s -> %s: %s", src.symbol, dest.symbol, exc)
            return None
        if raw_amount <= 0:
            logger.warning("Skipping quote %s -> %s for non-positive amount %s", src.symbol, dest.symbol, amount)
            return None

        key: CacheKey = (src.address.lower(), dest.address.lower(), raw_amount)
        cached = self._cache.get(key)
        if cached is not None:
            self.cache_hits += 1
            return cached

        async with self.throttle.slot:
            # Another caller may have filled the entry while we waited for the slot.
            cached = self._cache.get(key)
            if cached is not None:
                self.cache_hits += 1
                return cached
            self.cache_misses += 1

            for attempt in range(1, self.max_retries + 1):
                await self.throttle.wait_turn()
                try:
                    payload = await self._fetch_price_route(src, dest, raw_amount)
                except TransientNetworkError:
                    cooldown = self.throttle.register_rate_limit()
                    if attempt < self.max_retries:
                        logger.warning(
                            "Rate limited on %s -> %s, retry %d/%d after %.1fs",
                            src.symbol, dest.symbol, attempt, self.max_retries - 1, cooldown,
                        )
                        continue
                    logger.error(
                        "Giving up on %s -> %s after %d rate-limited attempts",
                        src.symbol, dest.symbol, self.max_retries,
                    )
                    return None
                except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
                    logger.error("Error fetching price %s -> %s: %s", src.symbol, dest.symbol, exc)
                    return None

                self.throttle.register_success()
                result = self._parse_price_route(payload, dest)
                if result is None:
                    reason = payload.get('error') if isinstance(payload, dict) else None
                    logger.info("No usable route %s -> %s%s", src.symbol, dest.symbol, f" ({reason})" if reason else "")
                    return None
                self._cache.set(key, result)
                return result
        return None

    async def _fetch_price_route(self, src: TokenInfo, dest: TokenInfo, raw_amount: int) -> Dict[str, Any]:
        params = {
            'srcToken': src.address,
            'destToken': dest.address,
            'srcDecimals': str(src.decimals),
            'destDecimals': str(dest.decimals),
            'amount': str(raw_amount),
            'side': 'SELL',
            'network': str(self.network),
            'excludeDEXS': PARASWAP_EXCLUDED_DEXS,
        }
        url = f"{self.base_url}/prices"
        async with self.session.get(url, params=params, timeout=self._timeout) as response:
            if response.status == 429:
                raise TransientNetworkError("Price API rate limit (HTTP 429)", {'src': src.symbol, 'dest': dest.symbol})
            if response.status == 400:
                # The API reports "no route" and "max impact" conditions as 400 with an error body.
                return await response.json(content_type=None)
            response.raise_for_status()
            return await response.json()

    @staticmethod
    def _parse_price_route(payload: Any, dest: TokenInfo) -> Optional[PriceResult]:
        if not isinstance(payload, dict):
            return None
        route = payload.get('priceRoute')
        if not isinstance(route, dict) or route.get('maxImpactReached'):
            return None
        try:
            amount = from_smallest_unit(route['destAmount'], dest.decimals)
        except (KeyError, TypeError, ValueError):
            return None
        try:
            gas_cost = Decimal(str(route.get('gasCostUSD') or 0))
        except InvalidOperation:
            gas_cost = Decimal(0)
        return PriceResult(amount=amount, dex=ParaSwapClient._best_exchange(route), gas_cost_usd=gas_cost)

    @staticmethod
    def _best_exchange(route: Dict[str, Any]) -> str:
        try:
            best = route['bestRoute'][0]
        except (KeyError, IndexError, TypeError):
            return "Unknown"
        try:
            return best['swaps'][0]['swapExchanges'][0]['exchange']
        except (KeyError, IndexError, TypeError):
            return (best.get('exchange') if isinstance(best, dict) else None) or "Unknown"

    def cache_stats(self) -> Dict[str, Any]:
        total = self.cache_hits + self.cache_misses
        return {
            'size': len(self._cache),
            'hits': self.cache_hits,
            'misses': self.cache_misses,
            'hit_rate': self.cache_hits / total if total else 0,
            'ttl_seconds': self._cache.ttl,
        }
