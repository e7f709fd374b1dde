"""
Leaderboard computation.

The performance_rankings table is a materialized view of the trade
ledger: every pass recomputes all agents from stored trades and swaps
the whole table in one transaction. All cross-chain sums are in USD at
each trade's own base-asset price.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Iterable, Optional

from clawledger.config import settings
from clawledger.db import database as db
from clawledger.db.models import Trade
from clawledger.services.dex_chart import snapshot_change_pct
from clawledger.services.pnl import PositionTracker
from clawledger.utils.amounts import ZERO, decimal_str, to_decimal
from clawledger.utils.logging import get_logger

logger = get_logger(__name__)

PERCENT = Decimal("0.01")


@dataclass
class AgentStats:
    """Aggregates for one agent across all of its wallets and chains."""
    agent_id: str
    total_pnl_usd: Decimal = ZERO
    win_rate: Decimal = ZERO
    total_trades: int = 0
    total_volume_usd: Decimal = ZERO
    buyback_total_usd: Decimal = ZERO
    token_price_change_24h: Optional[Decimal] = None


def agent_stats(agent_id: str, trades: Iterable[Trade]) -> AgentStats:
    """Aggregate one agent's trades. Pure: no I/O."""
    trades = list(trades)
    tracker = PositionTracker.replay(trades)

    stats = AgentStats(agent_id=agent_id)
    stats.total_pnl_usd = tracker.realized_pnl_usd
    stats.win_rate = tracker.win_rate
    stats.total_trades = len(trades)
    for trade in trades:
        value = to_decimal(trade.trade_value_usd)
        stats.total_volume_usd += value
        if trade.is_buyback:
            stats.buyback_total_usd += value
    return stats


def rank_agents(stats: Iterable[AgentStats], ranked_at: datetime) -> list[dict[str, Any]]:
    """Order by P&L desc, then trade count desc, then agent id asc."""
    ordered = sorted(stats, key=lambda s: (-s.total_pnl_usd, -s.total_trades, s.agent_id))
    return [
        {
            "agent_id": s.agent_id,
            "rank": position,
            "total_pnl_usd": decimal_str(s.total_pnl_usd),
            "win_rate": decimal_str(s.win_rate.quantize(PERCENT)),
            "total_trades": s.total_trades,
            "total_volume_usd": decimal_str(s.total_volume_usd),
            "buyback_total_usd": decimal_str(s.buyback_total_usd),
            "token_price_change_24h": (
                decimal_str(s.token_price_change_24h.quantize(PERCENT))
                if s.token_price_change_24h is not None
                else None
            ),
            "ranked_at": ranked_at,
        }
        for position, s in enumerate(ordered, start=1)
    ]


async def token_price_change_24h(agent_id: str, token_address: str, now: datetime) -> Optional[Decimal]:
    """Change between the oldest and newest snapshot of the last 24 hours."""
    snapshots = await db.get_token_snapshots(agent_id, token_address, since=now - timedelta(hours=24))
    if len(snapshots) < 2:
        return None
    return snapshot_change_pct(to_decimal(snapshots[-1].price_usd), to_decimal(snapshots[0].price_usd))


class RankingCalculator:
    """Recomputes the leaderboard on a fixed period, one pass at a time."""

    def __init__(self, interval: Optional[float] = None):
        self.interval = interval or settings.ranking_interval
        self._lock = asyncio.Lock()
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def start(self) -> None:
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Ranking calculator started", interval=self.interval)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Ranking calculator stopped")

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.recompute()
            except Exception as e:
                logger.error("Ranking error", error=str(e))

            await asyncio.sleep(self.interval)

    async def compute(self, now: Optional[datetime] = None) -> list[dict[str, Any]]:
        """Build leaderboard rows from the current ledger without writing them."""
        now = now or datetime.now(timezone.utc)

        trades_by_agent: dict[str, list[Trade]] = {}
        for trade in await db.get_trades_for_replay():
            trades_by_agent.setdefault(trade.agent_id, []).append(trade)

        # Primary token: earliest-registered wallet that has one
        primary_tokens: dict[str, str] = {}
        for wallet in await db.get_all_wallets():
            if wallet.token_address and wallet.agent_id not in primary_tokens:
                primary_tokens[wallet.agent_id] = wallet.token_address

        stats: list[AgentStats] = []
        for agent in await db.get_all_agents():
            agent_row = agent_stats(agent.id, trades_by_agent.get(agent.id, []))
            token = primary_tokens.get(agent.id)
            if token:
                agent_row.token_price_change_24h = await token_price_change_24h(agent.id, token, now)
            stats.append(agent_row)

        return rank_agents(stats, now)

    async def recompute(self, now: Optional[datetime] = None) -> Optional[list[dict[str, Any]]]:
        """Recompute and replace the leaderboard. Returns None if a pass is already running."""
        if self._lock.locked():
            logger.info("Ranking pass already running, skipping")
            return None

        async with self._lock:
            rows = await self.compute(now)
            await db.replace_rankings(rows)
            logger.info("Rankings recomputed", agents=len(rows))
            return rows


ranking_calculator = RankingCalculator()
