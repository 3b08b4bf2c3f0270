from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from time import monotonic
from typing import Protocol

from pydantic import BaseModel, ConfigDict


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TokenPrice(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str
    usd: float
    as_of: datetime


class TokenPriceSource(Protocol):
    async def get_price(self, symbol: str) -> TokenPrice | None: ...


class StaticTokenPriceSource:
    """Token prices from configuration; unless pinned with ``as_of`` they are reported as current."""

    def __init__(self, prices: dict[str, float], as_of: datetime | None = None) -> None:
        self._as_of = as_of
        self._prices = {symbol.upper(): float(price) for symbol, price in prices.items()}

    async def get_price(self, symbol: str) -> TokenPrice | None:
        usd = self._prices.get(symbol.upper())
        if usd is None:
            return None
        return TokenPrice(symbol=symbol.upper(), usd=usd, as_of=self._as_of or utc_now())


class CachedTokenPriceSource:
    """Wraps a slower source (e.g. a price feed client) with a per-symbol TTL cache."""

    def __init__(self, source: TokenPriceSource, ttl_sec: float = 600) -> None:
        self._source = source
        self._ttl_sec = ttl_sec
        self._lock = asyncio.Lock()
        self._cache: dict[str, tuple[float, TokenPrice]] = {}

    async def get_price(self, symbol: str) -> TokenPrice | None:
        key = symbol.upper()
        async with self._lock:
            cached = self._cache.get(key)
            if cached and monotonic() - cached[0] < self._ttl_sec:
                return cached[1]

        price = await self._source.get_price(key)
        if price is None:
            return None
        async with self._lock:
            self._cache[key] = (monotonic(), price)
        return price
