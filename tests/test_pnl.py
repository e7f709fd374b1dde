"""
Tests for weighted-average position tracking and realized P&L.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from clawledger.db import database as db
from clawledger.db.models import ChainTag, TradeType
from clawledger.services.pnl import PositionTracker, pnl_summary, refresh_positions

from conftest import MON_TOKEN, SOL_TOKEN

SOL = ChainTag.SOLANA


class TestPositionTracker:
    """Weighted-average cost basis."""

    def test_partial_sell_releases_average_cost(self):
        """10 @ 100 then 10 @ 200; selling 5 for 100 realizes 25."""
        tracker = PositionTracker()
        tracker.buy(SOL, SOL_TOKEN, Decimal("10"), Decimal("100"))
        tracker.buy(SOL, SOL_TOKEN, Decimal("10"), Decimal("200"))

        event = tracker.sell(SOL, SOL_TOKEN, Decimal("5"), Decimal("100"))

        assert event is not None
        assert event.pnl == Decimal("25")
        assert event.cost_released == Decimal("75")
        assert not event.closed_position

        position = tracker.positions[(SOL, SOL_TOKEN)]
        assert position.quantity == Decimal("15")
        assert position.cost_basis == Decimal("225")
        assert position.average_cost == Decimal("15")
        assert position.is_open

    def test_oversell_clamps_to_held_quantity(self):
        tracker = PositionTracker()
        tracker.buy(SOL, SOL_TOKEN, Decimal("10"), Decimal("100"))

        event = tracker.sell(SOL, SOL_TOKEN, Decimal("15"), Decimal("180"))

        assert event.quantity_sold == Decimal("10")
        assert event.pnl == Decimal("80")
        assert event.closed_position
        position = tracker.positions[(SOL, SOL_TOKEN)]
        assert position.quantity == 0
        assert position.cost_basis == 0
        assert not position.is_open

    def test_sell_without_position_realizes_proceeds(self):
        """Nothing tracked: the whole sale carries zero cost basis."""
        tracker = PositionTracker()

        event = tracker.sell(SOL, SOL_TOKEN, Decimal("5"), Decimal("0.5"), Decimal("50"))

        assert event.pnl == Decimal("0.5")
        assert event.pnl_usd == Decimal("50")
        assert event.quantity_sold == 0
        assert not event.closed_position
        assert tracker.positions[(SOL, SOL_TOKEN)].quantity == 0
        assert tracker.closed == []
        assert tracker.win_rate == 0

    def test_untracked_sell_matches_dust_position(self):
        """Observing a dust buy first barely changes the realized amount."""
        untracked = PositionTracker()
        dusted = PositionTracker()
        dusted.buy(SOL, SOL_TOKEN, Decimal("0.000001"), Decimal("0.00000001"), Decimal("0.000001"))

        without = untracked.sell(SOL, SOL_TOKEN, Decimal("5"), Decimal("0.5"), Decimal("50"))
        with_dust = dusted.sell(SOL, SOL_TOKEN, Decimal("5"), Decimal("0.5"), Decimal("50"))

        assert without.pnl_usd == Decimal("50")
        assert with_dust.pnl_usd == Decimal("49.999999")

    def test_untracked_sell_does_not_leak_into_next_lifecycle(self):
        tracker = PositionTracker()
        tracker.sell(SOL, SOL_TOKEN, Decimal("5"), Decimal("1"), Decimal("100"))
        tracker.buy(SOL, SOL_TOKEN, Decimal("10"), Decimal("1"), Decimal("100"))
        tracker.sell(SOL, SOL_TOKEN, Decimal("10"), Decimal("1"), Decimal("80"))

        assert [c.pnl_usd for c in tracker.closed] == [Decimal("-20")]
        assert tracker.realized_pnl_usd == Decimal("80")

    def test_usd_tracked_alongside_native(self):
        tracker = PositionTracker()
        tracker.buy(SOL, SOL_TOKEN, Decimal("100"), Decimal("1"), Decimal("100"))

        event = tracker.sell(SOL, SOL_TOKEN, Decimal("50"), Decimal("1"), Decimal("150"))

        assert event.pnl == Decimal("0.5")
        assert event.pnl_usd == Decimal("100")

    def test_win_rate_counts_closed_lifecycles(self):
        tracker = PositionTracker()
        # Winner: two partial sells, one lifecycle
        tracker.buy(SOL, SOL_TOKEN, Decimal("10"), Decimal("1"), Decimal("100"))
        tracker.sell(SOL, SOL_TOKEN, Decimal("5"), Decimal("1"), Decimal("40"))
        tracker.sell(SOL, SOL_TOKEN, Decimal("5"), Decimal("1"), Decimal("90"))
        # Loser
        tracker.buy(ChainTag.MONAD, MON_TOKEN, Decimal("10"), Decimal("1"), Decimal("100"))
        tracker.sell(ChainTag.MONAD, MON_TOKEN, Decimal("10"), Decimal("1"), Decimal("60"))

        assert len(tracker.closed) == 2
        assert tracker.closed[0].pnl_usd == Decimal("30")
        assert tracker.win_rate == Decimal("50")
        assert tracker.realized_pnl_usd == Decimal("-10")

    def test_replay_orders_by_block_time(self, make_trade):
        now = datetime(2024, 1, 2, tzinfo=timezone.utc)
        sell = make_trade(TradeType.SELL, SOL_TOKEN, "10", "2", "200", block_time=now)
        buy = make_trade(TradeType.BUY, SOL_TOKEN, "10", "1", "100", block_time=now - timedelta(hours=1))

        tracker = PositionTracker.replay([sell, buy])

        assert tracker.realized_pnl_usd == Decimal("100")

    def test_buybacks_stay_out_of_positions(self, make_trade):
        buyback = make_trade(TradeType.BUY, SOL_TOKEN, "10", "1", "100", is_buyback=True)

        tracker = PositionTracker.replay([buyback])

        assert tracker.positions == {}

    def test_window_filters_by_time(self):
        tracker = PositionTracker()
        old = datetime(2024, 1, 1, tzinfo=timezone.utc)
        recent = datetime(2024, 1, 3, tzinfo=timezone.utc)
        tracker.buy(SOL, SOL_TOKEN, Decimal("20"), Decimal("1"), Decimal("200"))
        tracker.sell(SOL, SOL_TOKEN, Decimal("10"), Decimal("1"), Decimal("150"), timestamp=old)
        tracker.sell(SOL, SOL_TOKEN, Decimal("10"), Decimal("1"), Decimal("50"), timestamp=recent)

        window = tracker.window(datetime(2024, 1, 2, tzinfo=timezone.utc))

        assert window.closing_trades == 1
        assert window.losses == 1
        assert window.realized_pnl_usd == Decimal("-50")
        assert tracker.window().realized_pnl_usd == Decimal("0")


class TestPersistedPositions:
    """Positions rebuilt from the stored ledger."""

    @pytest.mark.asyncio
    async def test_refresh_and_summary(self, solana_wallet):
        now = datetime(2024, 1, 1, 12, tzinfo=timezone.utc)
        base = {
            "agent_id": solana_wallet.agent_id,
            "wallet_id": solana_wallet.id,
            "chain": ChainTag.SOLANA,
            "platform": "PUMP_FUN",
            "base_asset_price_usd": "100",
            "is_buyback": False,
        }
        await db.insert_trade({
            **base,
            "tx_signature": "buy-1",
            "block_time": now - timedelta(hours=2),
            "trade_type": TradeType.BUY,
            "token_in_address": "So11111111111111111111111111111111111111112",
            "token_in_amount": "1",
            "token_out_address": SOL_TOKEN,
            "token_out_amount": "1000",
            "base_asset_amount": "1",
            "trade_value_usd": "100",
        })
        await db.insert_trade({
            **base,
            "tx_signature": "sell-1",
            "block_time": now - timedelta(hours=1),
            "trade_type": TradeType.SELL,
            "token_in_address": SOL_TOKEN,
            "token_in_amount": "500",
            "token_out_address": "So11111111111111111111111111111111111111112",
            "token_out_amount": "0.75",
            "base_asset_amount": "0.75",
            "trade_value_usd": "75",
        })

        await refresh_positions(solana_wallet.agent_id)
        positions = await db.get_positions(solana_wallet.agent_id)
        assert len(positions) == 1
        assert positions[0].quantity == "500"
        assert positions[0].realized_pnl_usd == "25"
        assert positions[0].is_open

        summary = await pnl_summary(solana_wallet.agent_id, now=now)
        assert summary["today"]["realized_pnl_usd"] == "25"
        assert summary["all_time"]["wins"] == 1
        assert summary["open_positions"] == 1
        assert summary["closed_positions"] == 0
