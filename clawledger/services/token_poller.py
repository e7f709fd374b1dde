"""
Periodic snapshots of agent token prices.

Snapshots feed the leaderboard's 24h change and the synthetic candle
fallback; each one is also pushed to live subscribers as a price_update.
"""

import asyncio
from typing import Optional

from clawledger.config import settings
from clawledger.db import database as db
from clawledger.services.broadcast import BroadcastHub, broadcast_hub
from clawledger.services.cache import RedisCache, cache as default_cache
from clawledger.services.dex_chart import DexChartClient, dex_chart_client
from clawledger.utils.logging import get_logger

logger = get_logger(__name__)


def token_stats_key(chain: str, token_address: str) -> str:
    return f"token_stats:{chain}:{token_address}"


class TokenPoller:
    """Stores a price snapshot for every wallet with a registered token."""

    def __init__(
        self,
        client: Optional[DexChartClient] = None,
        hub: Optional[BroadcastHub] = None,
        cache: Optional[RedisCache] = None,
        poll_interval: Optional[float] = None,
    ):
        self.client = client or dex_chart_client
        self.hub = hub or broadcast_hub
        self.cache = cache or default_cache
        self.poll_interval = poll_interval or settings.token_poll_interval
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        logger.info("Token poller started", interval=self.poll_interval)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Token poller stopped")

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await self.poll_once()
            except Exception as e:
                logger.error("Token polling error", error=str(e))

            await asyncio.sleep(self.poll_interval)

    async def poll_once(self) -> int:
        """Snapshot every agent token once. Returns snapshots stored."""
        stored = 0
        seen: set[tuple[str, str]] = set()

        for wallet in await db.get_all_wallets():
            if not wallet.token_address:
                continue
            key = (wallet.agent_id, wallet.token_address)
            if key in seen:
                continue
            seen.add(key)

            try:
                stats = await self.client.get_token_stats(wallet.chain, wallet.token_address)
                if stats is None:
                    continue

                market_cap = str(stats.market_cap)
                await db.add_token_snapshot(
                    wallet.agent_id,
                    wallet.chain,
                    wallet.token_address,
                    price_usd=stats.price_usd,
                    market_cap_usd=market_cap,
                )
                await self.cache.set_json(
                    token_stats_key(wallet.chain.value, wallet.token_address),
                    stats.to_dict(),
                    settings.cache_ttl_token_stats,
                )
                self.hub.publish(
                    "price_update",
                    wallet.agent_id,
                    {
                        "chain": wallet.chain.value,
                        "tokenAddress": wallet.token_address,
                        "priceUsd": stats.price_usd,
                        "marketCapUsd": market_cap,
                    },
                )
                stored += 1
            except Exception as e:
                logger.warning(
                    "Token poll failed",
                    agent_id=wallet.agent_id,
                    token=wallet.token_address,
                    error=str(e),
                )

        logger.debug("Token poll complete", snapshots=stored)
        return stored


token_poller = TokenPoller()
