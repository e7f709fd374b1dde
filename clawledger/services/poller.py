"""
Fallback poller: a safety net for missed webhook deliveries.

Every cycle, each registered wallet's recent history is fetched from the
chain's indexing API and pushed through the same ingestion path as
webhooks. A wallet that fails is logged and retried on the next tick
without affecting the rest of the cycle.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

from clawledger.config import settings
from clawledger.db import database as db
from clawledger.db.models import AgentWallet, ChainTag
from clawledger.services.helius import HeliusClient, helius_client
from clawledger.services.ingestion import IngestOutcome, TradeIngester, trade_ingester
from clawledger.services.nadfun import NadFunClient, nadfun_client
from clawledger.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class PollStats:
    """Summary of one poll cycle."""
    wallets: int = 0
    failed_wallets: int = 0
    seen: int = 0
    inserted: int = 0
    duplicates: int = 0
    skipped: int = 0


class FallbackPoller:
    """Periodically re-reads every registered wallet's recent transactions."""

    def __init__(
        self,
        ingester: Optional[TradeIngester] = None,
        helius: Optional[HeliusClient] = None,
        nadfun: Optional[NadFunClient] = None,
        poll_interval: Optional[float] = None,
        limit: Optional[int] = None,
    ):
        self.ingester = ingester or trade_ingester
        self.helius = helius or helius_client
        self.nadfun = nadfun or nadfun_client
        self.poll_interval = poll_interval or settings.poll_interval
        self.limit = limit or settings.poll_limit

        # wallet id -> newest transaction id seen; only narrows fetches
        self._last_seen: dict[str, str] = {}
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the polling loop."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        logger.info("Fallback poller started", interval=self.poll_interval)

    async def stop(self) -> None:
        """Stop the polling loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Fallback poller stopped")

    async def _poll_loop(self) -> None:
        """Main polling loop."""
        while self._running:
            try:
                await self.poll_once()
            except Exception as e:
                logger.error("Polling error", error=str(e))

            await asyncio.sleep(self.poll_interval)

    async def poll_once(self) -> PollStats:
        """Run one cycle over every registered wallet."""
        stats = PollStats()
        for wallet in await db.get_all_wallets():
            stats.wallets += 1
            try:
                await self._poll_wallet(wallet, stats)
            except Exception as e:
                stats.failed_wallets += 1
                logger.warning(
                    "Wallet poll failed",
                    chain=wallet.chain.value,
                    wallet=wallet.wallet_address,
                    error=str(e),
                )

        logger.info(
            "Poll cycle complete",
            wallets=stats.wallets,
            failed=stats.failed_wallets,
            seen=stats.seen,
            inserted=stats.inserted,
            duplicates=stats.duplicates,
            skipped=stats.skipped,
        )
        return stats

    async def _poll_wallet(self, wallet: AgentWallet, stats: PollStats) -> None:
        payloads = await self._fetch(wallet)
        if not payloads:
            return

        retry_later = False
        # Oldest first so positions see trades in block order on first insert
        for payload in reversed(payloads):
            stats.seen += 1
            result = await self.ingester.ingest_payload(wallet.chain, payload, wallet)
            if result.outcome == IngestOutcome.INSERTED:
                stats.inserted += 1
            elif result.outcome == IngestOutcome.DUPLICATE:
                stats.duplicates += 1
            else:
                stats.skipped += 1
                retry_later = retry_later or result.outcome == IngestOutcome.ZERO_VALUE

        # An unpriced trade must stay inside the next fetch window
        newest = self._transaction_id(wallet.chain, payloads[0])
        if newest and not retry_later:
            self._last_seen[wallet.id] = newest

    async def _fetch(self, wallet: AgentWallet) -> list[dict[str, Any]]:
        """Newest-first raw payloads for a wallet."""
        if wallet.chain == ChainTag.SOLANA:
            return await self.helius.get_recent_transactions(
                wallet.wallet_address,
                limit=self.limit,
                until=self._last_seen.get(wallet.id),
            )
        return await self.nadfun.get_wallet_trades(wallet.wallet_address, limit=self.limit)

    @staticmethod
    def _transaction_id(chain: ChainTag, payload: dict[str, Any]) -> Optional[str]:
        if chain == ChainTag.SOLANA:
            return payload.get("signature")
        return (payload.get("swap_info") or {}).get("transaction_hash")


fallback_poller = FallbackPoller()
