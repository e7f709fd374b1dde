"""
Chart data and live token stats for agent tokens.

DexScreener resolves a token to its most relevant pool and provides
market stats; GeckoTerminal provides OHLCV for that pool. When a token
has no pool yet, candles are built from stored token snapshots.
"""

from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Optional

import httpx

from clawledger.config import settings
from clawledger.db import database as db
from clawledger.db.models import ChainTag, TokenSnapshot
from clawledger.exceptions import UpstreamError
from clawledger.services.http import ApiClient
from clawledger.utils.amounts import to_decimal

# DexScreener chainId / GeckoTerminal network per chain
DEX_CHAIN_IDS = {ChainTag.SOLANA: "solana", ChainTag.MONAD: "monad"}

MAX_CANDLES = 1000


@dataclass
class TokenStats:
    """Live market data for one token."""
    price_usd: str
    market_cap: float
    liquidity: float
    volume_24h: float
    price_change_1h: Optional[float]
    price_change_24h: Optional[float]
    symbol: str
    name: str
    pool_address: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Candle:
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def map_timeframe(seconds: int) -> tuple[str, int]:
    """Map a candle width in seconds to GeckoTerminal's (period, aggregate)."""
    if seconds >= 86400:
        return "day", max(1, seconds // 86400)
    if seconds >= 3600:
        return "hour", max(1, seconds // 3600)
    return "minute", max(1, seconds // 60)


def candles_from_snapshots(snapshots: Iterable[TokenSnapshot], timeframe: int, limit: int) -> list[Candle]:
    """Bucket snapshot prices into candles of `timeframe` seconds, oldest first."""
    buckets: dict[int, list[float]] = {}
    for snapshot in snapshots:
        polled_at: datetime = db.ensure_utc(snapshot.polled_at)
        bucket = int(polled_at.timestamp()) // timeframe * timeframe
        buckets.setdefault(bucket, []).append(float(to_decimal(snapshot.price_usd)))

    candles = [
        Candle(time=bucket, open=prices[0], high=max(prices), low=min(prices), close=prices[-1])
        for bucket, prices in sorted(buckets.items())
    ]
    return candles[-limit:]


class DexChartClient(ApiClient):
    """DexScreener + GeckoTerminal client."""

    name = "dex_chart"

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(timeout=8.0, transport=transport)

    async def _pairs(self, token_address: str) -> list[dict[str, Any]]:
        data = await self._api_request("GET", f"{settings.dexscreener_api_url}/latest/dex/tokens/{token_address}")
        pairs = data.get("pairs") if isinstance(data, dict) else None
        return pairs if isinstance(pairs, list) else []

    @staticmethod
    def _best_pair(pairs: list[dict[str, Any]], chain: ChainTag) -> Optional[dict[str, Any]]:
        if not pairs:
            return None
        chain_id = DEX_CHAIN_IDS[chain]
        for pair in pairs:
            if pair.get("chainId") == chain_id:
                return pair
        return pairs[0]

    async def get_pool_address(self, chain: ChainTag, token_address: str) -> Optional[str]:
        pair = self._best_pair(await self._pairs(token_address), chain)
        return pair.get("pairAddress") if pair else None

    async def get_token_stats(self, chain: ChainTag, token_address: str) -> Optional[TokenStats]:
        pair = self._best_pair(await self._pairs(token_address), chain)
        if not pair:
            return None

        base_token = pair.get("baseToken") or {}
        price_change = pair.get("priceChange") or {}
        return TokenStats(
            price_usd=str(pair.get("priceUsd") or "0"),
            market_cap=float(pair.get("marketCap") or pair.get("fdv") or 0),
            liquidity=float((pair.get("liquidity") or {}).get("usd") or 0),
            volume_24h=float((pair.get("volume") or {}).get("h24") or 0),
            price_change_1h=price_change.get("h1"),
            price_change_24h=price_change.get("h24"),
            symbol=base_token.get("symbol") or "",
            name=base_token.get("name") or "",
            pool_address=pair.get("pairAddress"),
        )

    async def get_candles(
        self,
        chain: ChainTag,
        token_address: str,
        timeframe: int = 300,
        limit: int = 100,
    ) -> list[Candle]:
        """OHLCV candles, oldest first. Empty when the token has no pool."""
        pool = await self.get_pool_address(chain, token_address)
        if not pool:
            return []

        period, aggregate = map_timeframe(timeframe)
        data = await self._api_request(
            "GET",
            f"{settings.geckoterminal_api_url}/networks/{DEX_CHAIN_IDS[chain]}/pools/{pool}/ohlcv/{period}",
            params={"aggregate": aggregate, "limit": min(limit, MAX_CANDLES), "currency": "usd"},
        )
        try:
            rows = data["data"]["attributes"]["ohlcv_list"]
        except (KeyError, TypeError):
            raise UpstreamError("GeckoTerminal OHLCV response missing ohlcv_list", chain)

        # [timestamp, open, high, low, close, volume], newest first
        candles = [
            Candle(
                time=int(row[0]),
                open=float(row[1]),
                high=float(row[2]),
                low=float(row[3]),
                close=float(row[4]),
                volume=float(row[5]) if len(row) > 5 and row[5] is not None else 0.0,
            )
            for row in rows or []
        ]
        candles.reverse()
        return candles


def snapshot_change_pct(current: Optional[Decimal], previous: Optional[Decimal]) -> Optional[Decimal]:
    """Percentage change between two prices, None when undefined."""
    if current is None or previous is None or previous <= 0:
        return None
    return (current - previous) * 100 / previous


dex_chart_client = DexChartClient()
