"""
Price Oracle - Symbol to last-price resolution

This module resolves trading symbols to prices for the execution engine:
- Process-wide hot-price cache with a fixed time-to-live
- Live quotes from the Alpaca market data API (prefetch only)
- Explicit fallback tiers: static default table, then a global default price

get_price() is cache-only and never performs I/O, so callers must await
prefetch() before a synchronous trade that needs a fresh quote.
"""

import asyncio
import logging
import math
import time
from enum import Enum
from typing import Callable, Dict, Iterable, NamedTuple, Optional, Tuple, Union

import httpx

from ..config import Settings, get_settings
from ..exceptions import OracleUnavailable, ValidationError

logger = logging.getLogger(__name__)


DEFAULT_PRICES: Dict[str, float] = {
    "AAPL": 185.0,
    "GOOGL": 140.0,
    "MSFT": 380.0,
    "TSLA": 245.0,
}


class PriceSource(Enum):
    """Tier that produced a price"""
    LIVE = "live"
    CACHE = "cache"
    STATIC = "static"
    DEFAULT = "default"


class CachedPrice(NamedTuple):
    """Cache entry"""
    price: float
    fetched_at: float
    source: PriceSource


def normalize_symbol(symbol: str) -> str:
    if not isinstance(symbol, str) or not symbol.strip():
        raise ValidationError("symbol must be a non-empty string")
    return symbol.strip().upper()


class PriceOracle:
    """Cached price oracle with live quotes and static fallbacks"""

    def __init__(self,
                 settings: Optional[Settings] = None,
                 static_prices: Optional[Dict[str, float]] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize price oracle

        Args:
            settings: Service settings (credentials, TTL, default price)
            static_prices: Fallback price table (defaults to DEFAULT_PRICES)
            transport: Optional httpx transport, used to stub the quote API
            clock: Monotonic clock used for cache expiry
        """
        self.settings = settings or get_settings()
        self.static_prices = {k.upper(): float(v) for k, v in (static_prices or DEFAULT_PRICES).items()}
        self.ttl = self.settings.price_cache_ttl_seconds
        self.default_price = self.settings.default_price
        self._transport = transport
        self._clock = clock
        self._cache: Dict[str, CachedPrice] = {}
        self._last_source: Dict[str, PriceSource] = {}

    # Synchronous contract

    def get_price(self, symbol: str) -> float:
        """Return the cached price, or a fallback price when nothing fresh is cached"""
        sym = normalize_symbol(symbol)
        cached = self._fresh_entry(sym)
        if cached is not None:
            self._last_source[sym] = PriceSource.CACHE
            return cached.price

        price, source = self._fallback_price(sym)
        self._last_source[sym] = source
        return price

    def last_source(self, symbol: str) -> Optional[PriceSource]:
        """Tier used by the most recent resolution of ``symbol``"""
        return self._last_source.get(normalize_symbol(symbol))

    def update_price(self, symbol: str, price: float,
                     source: PriceSource = PriceSource.LIVE) -> None:
        """Upsert a price into the cache (last writer wins)"""
        if price is None or not math.isfinite(price) or price <= 0:
            raise ValidationError(f"price must be a positive finite number, got {price}")
        self._cache[normalize_symbol(symbol)] = CachedPrice(float(price), self._clock(), source)

    def clear(self) -> None:
        self._cache.clear()
        self._last_source.clear()

    # Asynchronous contract

    async def prefetch(self, symbols: Union[str, Iterable[str]]) -> None:
        """Populate the cache for ``symbols`` ahead of synchronous trades"""
        if isinstance(symbols, str):
            symbols = [symbols]
        await asyncio.gather(*(self.get_price_async(s) for s in symbols))

    async def get_price_async(self, symbol: str) -> float:
        """Resolve a price, fetching a live quote when the cache is stale"""
        sym = normalize_symbol(symbol)
        cached = self._fresh_entry(sym)
        if cached is not None:
            self._last_source[sym] = PriceSource.CACHE
            return cached.price

        try:
            price = await self._fetch_live(sym)
            source = PriceSource.LIVE
            logger.info(f"Live quote for {sym}: {price}")
        except OracleUnavailable as e:
            price, source = self._fallback_price(sym)
            logger.info(f"Live quote unavailable for {sym} ({e.reason})")

        self._cache[sym] = CachedPrice(price, self._clock(), source)
        self._last_source[sym] = source
        return price

    # Internals

    def _fresh_entry(self, sym: str) -> Optional[CachedPrice]:
        cached = self._cache.get(sym)
        if cached is None:
            return None
        if self._clock() - cached.fetched_at >= self.ttl:
            return None
        return cached

    def _fallback_price(self, sym: str) -> Tuple[float, PriceSource]:
        if sym in self.static_prices:
            logger.warning(f"Using static fallback price for {sym}: {self.static_prices[sym]}")
            return self.static_prices[sym], PriceSource.STATIC
        logger.warning(f"Unknown symbol {sym}, using default price {self.default_price}")
        return self.default_price, PriceSource.DEFAULT

    async def _fetch_live(self, sym: str) -> float:
        """Fetch the latest quote mid price; raises OracleUnavailable on any failure"""
        if not self.settings.has_alpaca_credentials:
            raise OracleUnavailable("market data credentials not configured")

        headers = {
            "APCA-API-KEY-ID": self.settings.alpaca_api_key,
            "APCA-API-SECRET-KEY": self.settings.alpaca_api_secret,
        }
        url = f"{self.settings.alpaca_data_url}/stocks/{sym}/quotes/latest"

        try:
            async with httpx.AsyncClient(transport=self._transport,
                                         timeout=self.settings.quote_timeout_seconds) as client:
                response = await client.get(url, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise OracleUnavailable(f"quote request failed: {e}")
        except ValueError as e:
            raise OracleUnavailable(f"malformed quote response: {e}")

        return self._parse_quote(sym, data)

    @staticmethod
    def _parse_quote(sym: str, data) -> float:
        if not isinstance(data, dict):
            raise OracleUnavailable("malformed quote response")
        quotes = data.get("quotes") or {}
        quote = quotes.get(sym) if isinstance(quotes, dict) else None
        quote = quote or data.get("quote")
        if not isinstance(quote, dict):
            raise OracleUnavailable(f"no quote for {sym}")

        ask = quote.get("ap")
        bid = quote.get("bp")
        try:
            if ask and bid:
                mid = (float(ask) + float(bid)) / 2
            else:
                mid = float(ask or bid or quote.get("p") or 0)
        except (TypeError, ValueError):
            raise OracleUnavailable(f"malformed quote for {sym}")

        if not math.isfinite(mid) or mid <= 0:
            raise OracleUnavailable(f"no usable price for {sym}")
        return mid
