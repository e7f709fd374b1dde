"""
USD price of each chain's base asset (SOL, MON).

Sources are tried in order until one returns a positive price:
- SOL: CoinGecko, Raydium, Pyth (Hermes), Pump.fun
- MON: CoinGecko, DexScreener (WMON pairs), GeckoTerminal
A successful price is cached for PRICE_CACHE_TTL seconds and remembered as
last-known. When every source fails the last-known price is used, and
when there is none the price is 0, which callers treat as "skip".
"""

import asyncio
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Optional

import httpx

from clawledger.chains.monad import WMON_ADDRESS
from clawledger.chains.solana import SOL_MINT
from clawledger.config import settings
from clawledger.db.models import ChainTag
from clawledger.exceptions import UpstreamError
from clawledger.services.cache import RedisCache, cache as default_cache
from clawledger.services.http import ApiClient

PYTH_SOL_FEED = "0xef0d8b6fda2ceba41da15d4095d1da392a0d2f8ed0c6c7bc0f4cfac8c280b56d"

PriceSource = Callable[[], Awaitable[Decimal]]


def _positive(value: Any) -> Decimal:
    if value is None or isinstance(value, bool):
        return Decimal("0")
    price = Decimal(str(value))
    return price if price > 0 else Decimal("0")


class BaseAssetPriceService(ApiClient):
    """Cascading base-asset price lookup with caching."""

    name = "prices"

    def __init__(
        self,
        cache: Optional[RedisCache] = None,
        ttl: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout=5.0, transport=transport)
        self._cache = cache or default_cache
        self._ttl = ttl if ttl is not None else settings.price_cache_ttl
        self._prices: dict[ChainTag, tuple[Decimal, float]] = {}
        self._last_known: dict[ChainTag, Decimal] = {}
        self._locks: dict[ChainTag, asyncio.Lock] = {}

    # ===================
    # Public API
    # ===================

    async def get_price(self, chain: ChainTag | str) -> Decimal:
        """USD price of the chain's base asset, or 0 when unavailable."""
        chain = ChainTag(chain)

        cached = self._fresh(chain)
        if cached is not None:
            return cached

        lock = self._locks.setdefault(chain, asyncio.Lock())
        async with lock:
            # Another caller may have refreshed while we waited
            cached = self._fresh(chain)
            if cached is not None:
                return cached

            shared = await self._cache.get_base_price(chain.value)
            if shared is not None:
                self._remember(chain, shared)
                return shared

            for source_name, fetch in self._sources(chain):
                try:
                    price = await fetch()
                except (UpstreamError, AttributeError, KeyError, IndexError, TypeError, ValueError, InvalidOperation) as e:
                    self.log.warning("Price source failed", chain=chain.value, source=source_name, error=str(e))
                    continue
                if price > 0:
                    self.log.debug("Base asset price", chain=chain.value, source=source_name, price=str(price))
                    self._remember(chain, price)
                    await self._cache.set_base_price(chain.value, price, self._ttl)
                    return price

            stale = self._last_known.get(chain) or await self._cache.get_base_price(chain.value, last_known=True)
            if stale:
                self.log.warning("Using last-known base asset price", chain=chain.value, price=str(stale))
                return stale

            self.log.error("Base asset price unavailable", chain=chain.value)
            return Decimal("0")

    def set_price(self, chain: ChainTag | str, price: Decimal) -> None:
        """Seed the in-memory price (used by maintenance scripts)."""
        self._remember(ChainTag(chain), price)

    # ===================
    # Internals
    # ===================

    def _fresh(self, chain: ChainTag) -> Optional[Decimal]:
        entry = self._prices.get(chain)
        if entry and (time.monotonic() - entry[1]) < self._ttl:
            return entry[0]
        return None

    def _remember(self, chain: ChainTag, price: Decimal) -> None:
        self._prices[chain] = (price, time.monotonic())
        self._last_known[chain] = price

    def _sources(self, chain: ChainTag) -> list[tuple[str, PriceSource]]:
        if chain == ChainTag.SOLANA:
            return [
                ("coingecko", lambda: self._coingecko("solana")),
                ("raydium", self._raydium_sol),
                ("pyth", self._pyth_sol),
                ("pumpfun", self._pumpfun_sol),
            ]
        return [
            ("coingecko", lambda: self._coingecko("monad")),
            ("dexscreener", self._dexscreener_mon),
            ("geckoterminal", self._geckoterminal_mon),
        ]

    async def _coingecko(self, coin_id: str) -> Decimal:
        data = await self._api_object(
            "GET",
            f"{settings.coingecko_api_url}/simple/price",
            params={"ids": coin_id, "vs_currencies": "usd"},
        )
        return _positive(data[coin_id]["usd"])

    async def _raydium_sol(self) -> Decimal:
        data = await self._api_object("GET", f"{settings.raydium_api_url}/main/price")
        return _positive(data.get(SOL_MINT))

    async def _pyth_sol(self) -> Decimal:
        data = await self._api_list(
            "GET",
            f"{settings.pyth_api_url}/api/latest_price_feeds",
            params={"ids[]": PYTH_SOL_FEED},
        )
        feed = data[0]["price"]
        return _positive(Decimal(str(feed["price"])).scaleb(int(feed["expo"])))

    async def _pumpfun_sol(self) -> Decimal:
        data = await self._api_object("GET", f"{settings.pumpfun_api_url}/sol-price")
        return _positive(data.get("solPrice"))

    async def _dexscreener_mon(self) -> Decimal:
        data = await self._api_object("GET", f"{settings.dexscreener_api_url}/latest/dex/tokens/{WMON_ADDRESS}")
        pairs = data.get("pairs") or []
        if not pairs:
            raise ValueError("No WMON pairs on DexScreener")
        return _positive(pairs[0].get("priceUsd"))

    async def _geckoterminal_mon(self) -> Decimal:
        data = await self._api_object(
            "GET",
            f"{settings.geckoterminal_api_url}/simple/networks/monad/token_price/{WMON_ADDRESS}",
        )
        prices = data["data"]["attributes"]["token_prices"]
        return _positive(prices.get(WMON_ADDRESS.lower()))


base_asset_price = BaseAssetPriceService()
