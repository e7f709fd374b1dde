"""
Tests for leaderboard aggregation and ranking.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from clawledger.db import database as db
from clawledger.db.models import ChainTag, TradeType
from clawledger.services.ranking import (
    AgentStats,
    RankingCalculator,
    agent_stats,
    rank_agents,
    token_price_change_24h,
)

from conftest import MON_TOKEN, SOL_TOKEN

NOW = datetime(2024, 1, 2, tzinfo=timezone.utc)


class TestAgentStats:
    """Pure aggregation over one agent's trades."""

    def test_cross_chain_pnl_summed_in_usd(self, make_trade):
        """$50 realized on Solana plus $30 on Monad is $80, whatever the native units."""
        trades = [
            make_trade(TradeType.BUY, SOL_TOKEN, "1000", "1", "100"),
            make_trade(TradeType.SELL, SOL_TOKEN, "1000", "1.5", "150"),
            make_trade(TradeType.BUY, MON_TOKEN, "500", "50", "100", chain=ChainTag.MONAD),
            make_trade(TradeType.SELL, MON_TOKEN, "500", "65", "130", chain=ChainTag.MONAD),
        ]

        stats = agent_stats("agent-1", trades)

        assert stats.total_pnl_usd == Decimal("80")
        assert stats.total_trades == 4
        assert stats.total_volume_usd == Decimal("480")
        assert stats.win_rate == Decimal("100")

    def test_buyback_total(self, make_trade):
        trades = [
            make_trade(TradeType.BUY, SOL_TOKEN, "1000", "1", "100", is_buyback=True),
            make_trade(TradeType.BUY, SOL_TOKEN, "1000", "0.5", "50", is_buyback=True),
        ]

        stats = agent_stats("agent-1", trades)

        assert stats.buyback_total_usd == Decimal("150")
        assert stats.total_pnl_usd == 0

    def test_no_trades(self):
        stats = agent_stats("agent-1", [])

        assert stats.total_trades == 0
        assert stats.total_pnl_usd == 0
        assert stats.win_rate == 0


class TestRankAgents:
    """Ordering and tie-breaking."""

    def test_order_and_ties(self):
        stats = [
            AgentStats(agent_id="c", total_pnl_usd=Decimal("10"), total_trades=3),
            AgentStats(agent_id="b", total_pnl_usd=Decimal("10"), total_trades=3),
            AgentStats(agent_id="a", total_pnl_usd=Decimal("10"), total_trades=1),
            AgentStats(agent_id="d", total_pnl_usd=Decimal("99"), total_trades=1),
        ]

        rows = rank_agents(stats, NOW)

        assert [r["agent_id"] for r in rows] == ["d", "b", "c", "a"]
        assert [r["rank"] for r in rows] == [1, 2, 3, 4]
        assert all(r["ranked_at"] == NOW for r in rows)

    def test_deterministic(self):
        stats = [AgentStats(agent_id=str(i), total_pnl_usd=Decimal(i % 3)) for i in range(10)]

        assert rank_agents(stats, NOW) == rank_agents(list(reversed(stats)), NOW)

    def test_formats_values(self):
        row = rank_agents([AgentStats(agent_id="a", win_rate=Decimal("66.6666"))], NOW)[0]

        assert row["win_rate"] == "66.67"
        assert row["token_price_change_24h"] is None


class TestRankingCalculator:
    """Full recompute against the database."""

    @pytest.mark.asyncio
    async def test_recompute_replaces_table(self, agent, solana_wallet):
        await db.create_agent(name="Idle")
        await db.insert_trade({
            "agent_id": agent.id,
            "wallet_id": solana_wallet.id,
            "chain": ChainTag.SOLANA,
            "tx_signature": "sig-rank",
            "block_time": NOW - timedelta(hours=1),
            "platform": "PUMP_FUN",
            "trade_type": TradeType.BUY,
            "token_in_address": "So11111111111111111111111111111111111111112",
            "token_in_amount": "0.5",
            "token_out_address": SOL_TOKEN,
            "token_out_amount": "1000",
            "base_asset_amount": "0.5",
            "base_asset_price_usd": "100",
            "trade_value_usd": "50",
            "is_buyback": False,
        })

        calculator = RankingCalculator(interval=60)
        first = await calculator.recompute(NOW)
        second = await calculator.recompute(NOW)

        assert first == second
        rows = await db.get_rankings()
        assert len(rows) == 2
        assert rows[0].agent_id == agent.id
        assert rows[0].total_volume_usd == "50"
        assert rows[0].total_trades == 1

    @pytest.mark.asyncio
    async def test_skips_when_busy(self, database):
        calculator = RankingCalculator(interval=60)

        async with calculator._lock:
            assert calculator.busy
            assert await calculator.recompute(NOW) is None

    @pytest.mark.asyncio
    async def test_token_change_needs_two_snapshots(self, agent):
        await db.add_token_snapshot(agent.id, ChainTag.SOLANA, SOL_TOKEN, "1.0", polled_at=NOW - timedelta(hours=20))
        assert await token_price_change_24h(agent.id, SOL_TOKEN, NOW) is None

        await db.add_token_snapshot(agent.id, ChainTag.SOLANA, SOL_TOKEN, "1.5", polled_at=NOW - timedelta(hours=1))
        # Outside the window
        await db.add_token_snapshot(agent.id, ChainTag.SOLANA, SOL_TOKEN, "0.1", polled_at=NOW - timedelta(hours=30))

        change = await token_price_change_24h(agent.id, SOL_TOKEN, NOW)
        assert change == Decimal("50")


@pytest.mark.asyncio
async def test_concurrent_recompute_runs_once(database):
    calculator = RankingCalculator(interval=60)

    results = await asyncio.gather(calculator.recompute(NOW), calculator.recompute(NOW))

    assert sum(1 for r in results if r is None) == 1
