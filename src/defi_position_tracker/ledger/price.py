"""SOL/USD rate lookup with graceful degradation.

The rate is an input to USD valuation only. When the Jupiter price API is
unreachable the oracle falls back, in order, to the Redis-cached quote,
the last quote seen by this process, and finally a configured default.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Literal

import httpx
from redis.asyncio import Redis

logger = logging.getLogger(__name__)

SOL_MINT = "So11111111111111111111111111111111111111112"

DEFAULT_PRICE_API_URL = "https://lite-api.jup.ag/price/v2"
DEFAULT_FALLBACK_SOL_USD = Decimal("190")
DEFAULT_CACHE_TTL_SECONDS = 300
DEFAULT_TIMEOUT_SECONDS = 10.0

PriceSource = Literal["live", "cache", "memory", "default"]


class PriceLookupError(Exception):
    """Raised when the price API returns an unusable response."""


@dataclass(frozen=True)
class PriceQuote:
    price: Decimal
    source: PriceSource


class SolPriceOracle:
    """Looks up the SOL/USD rate from the Jupiter price API."""

    def __init__(
        self,
        *,
        api_url: str = DEFAULT_PRICE_API_URL,
        redis: Redis | None = None,
        fallback_price: Decimal = DEFAULT_FALLBACK_SOL_USD,
        cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._redis = redis
        self._fallback_price = fallback_price
        self._cache_ttl = cache_ttl_seconds
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._last_price: Decimal | None = None
        self._cache_key = f"price:usd:{SOL_MINT}"

    async def _fetch_live(self) -> Decimal:
        resp = await self._http.get(self._api_url, params={"ids": SOL_MINT})
        resp.raise_for_status()
        data = resp.json()
        try:
            raw = data["data"][SOL_MINT]["price"]
            price = Decimal(str(raw))
        except (KeyError, TypeError, InvalidOperation) as e:
            raise PriceLookupError(f"Unexpected price payload: {data!r}") from e
        if price <= 0:
            raise PriceLookupError(f"Non-positive SOL price: {price}")
        return price

    async def _get_cached(self) -> Decimal | None:
        if not self._redis:
            return None
        try:
            value = await self._redis.get(self._cache_key)
            if value is None:
                return None
            if isinstance(value, bytes):
                value = value.decode()
            return Decimal(str(value))
        except (InvalidOperation, ValueError) as e:
            logger.warning("Discarding unreadable cached SOL price: %s", e)
            return None
        except Exception as e:
            logger.warning("Cache get failed: %s", e)
            return None

    async def _set_cached(self, price: Decimal) -> None:
        if not self._redis:
            return
        try:
            await self._redis.set(self._cache_key, str(price), ex=self._cache_ttl)
        except Exception as e:
            logger.warning("Cache set failed: %s", e)

    async def get_sol_usd(self) -> PriceQuote:
        """Return the best available SOL/USD rate. Never raises for lookup failures."""
        try:
            price = await self._fetch_live()
        except (httpx.HTTPError, PriceLookupError, ValueError) as e:
            logger.warning("SOL price lookup failed, falling back: %s", e)
        else:
            self._last_price = price
            await self._set_cached(price)
            return PriceQuote(price=price, source="live")

        cached = await self._get_cached()
        if cached is not None:
            return PriceQuote(price=cached, source="cache")
        if self._last_price is not None:
            return PriceQuote(price=self._last_price, source="memory")
        return PriceQuote(price=self._fallback_price, source="default")

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
