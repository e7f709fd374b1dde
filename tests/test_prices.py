"""
Tests for upstream API clients: base-asset prices and chart data.
"""

from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest

from clawledger.chains.solana import SOL_MINT
from clawledger.db.models import ChainTag, TokenSnapshot
from clawledger.services.base_asset_price import BaseAssetPriceService
from clawledger.services.cache import RedisCache
from clawledger.services.dex_chart import DexChartClient, candles_from_snapshots, map_timeframe

from conftest import SOL_TOKEN


def _service(handler) -> BaseAssetPriceService:
    return BaseAssetPriceService(cache=RedisCache(redis_url=""), ttl=60, transport=httpx.MockTransport(handler))


class TestBaseAssetPrice:
    """Cascading sources with last-known fallback."""

    @pytest.mark.asyncio
    async def test_falls_through_to_next_source(self):
        requested = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(request.url.host)
            if "coingecko" in request.url.host:
                return httpx.Response(500, text="down")
            return httpx.Response(200, json={SOL_MINT: 150.5})

        service = _service(handler)
        await service.initialize()
        try:
            price = await service.get_price(ChainTag.SOLANA)
        finally:
            await service.close()

        assert price == Decimal("150.5")
        assert requested == ["api.coingecko.com", "api.raydium.io"]

    @pytest.mark.asyncio
    async def test_cached_within_ttl(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            return httpx.Response(200, json={"monad": {"usd": 3.25}})

        service = _service(handler)
        await service.initialize()
        try:
            first = await service.get_price("monad")
            second = await service.get_price(ChainTag.MONAD)
        finally:
            await service.close()

        assert first == second == Decimal("3.25")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_last_known_when_all_sources_fail(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        service = _service(handler)
        service.set_price(ChainTag.SOLANA, Decimal("99"))
        service._prices.clear()
        await service.initialize()
        try:
            price = await service.get_price(ChainTag.SOLANA)
        finally:
            await service.close()

        assert price == Decimal("99")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [b"null", b"[]", b"42"])
    async def test_non_object_bodies_fall_back_to_last_known(self, body):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=body, headers={"content-type": "application/json"})

        service = _service(handler)
        service.set_price(ChainTag.SOLANA, Decimal("99"))
        service._prices.clear()
        await service.initialize()
        try:
            price = await service.get_price(ChainTag.SOLANA)
        finally:
            await service.close()

        assert price == Decimal("99")

    @pytest.mark.asyncio
    async def test_zero_when_nothing_known(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={})

        service = _service(handler)
        await service.initialize()
        try:
            price = await service.get_price(ChainTag.MONAD)
        finally:
            await service.close()

        assert price == 0


class TestDexChart:
    """Pool lookup, stats and candles."""

    @pytest.mark.asyncio
    async def test_candles_oldest_first(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if "dexscreener" in request.url.host:
                return httpx.Response(200, json={"pairs": [
                    {"chainId": "solana", "pairAddress": "PoolAddr", "priceUsd": "0.01"},
                ]})
            assert "/networks/solana/pools/PoolAddr/ohlcv/minute" in request.url.path
            return httpx.Response(200, json={"data": {"attributes": {"ohlcv_list": [
                [1_700_000_600, 2, 3, 1, 2.5, 100],
                [1_700_000_300, 1, 2, 0.5, 2, 50],
            ]}}})

        client = DexChartClient(transport=httpx.MockTransport(handler))
        await client.initialize()
        try:
            candles = await client.get_candles(ChainTag.SOLANA, SOL_TOKEN, timeframe=300, limit=2)
        finally:
            await client.close()

        assert [c.time for c in candles] == [1_700_000_300, 1_700_000_600]
        assert candles[1].close == 2.5

    def test_map_timeframe(self):
        assert map_timeframe(60) == ("minute", 1)
        assert map_timeframe(900) == ("minute", 15)
        assert map_timeframe(14400) == ("hour", 4)
        assert map_timeframe(86400) == ("day", 1)

    def test_candles_from_snapshots(self):
        snapshots = [
            TokenSnapshot(price_usd=str(p), polled_at=datetime.fromtimestamp(t, tz=timezone.utc))
            for t, p in [(0, 1.0), (60, 3.0), (120, 2.0), (300, 5.0)]
        ]

        candles = candles_from_snapshots(snapshots, timeframe=300, limit=10)

        assert len(candles) == 2
        assert (candles[0].open, candles[0].high, candles[0].low, candles[0].close) == (1.0, 3.0, 1.0, 2.0)
        assert candles[1].time == 300
