"""
Position and realized P&L tracking.

Positions are kept per (agent, chain, token) with weighted-average cost:
buys add quantity and cost; a sell releases cost in proportion to the
quantity sold and realizes

    proceeds - cost_basis * (quantity_sold / quantity_held)

Sells larger than the tracked quantity are clamped to it for cost
purposes; the excess carries zero cost basis and the position ends at
zero, never negative. A sell with nothing tracked realizes its whole
proceeds and does not count as a closed position for win rate.
Cost and proceeds are tracked both in base-asset units and in USD at the
price of each trade, so cross-chain totals are always summed in USD.
Buybacks are held, not traded, and stay out of positions.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Iterable, Optional

from clawledger.db import database as db
from clawledger.db.models import ChainTag, Trade, TradeType
from clawledger.utils.amounts import ZERO, decimal_str, to_decimal
from clawledger.utils.logging import get_logger

logger = get_logger(__name__)

PositionKey = tuple[ChainTag, str]


@dataclass
class PositionState:
    """Working state of one (chain, token) position."""
    chain: ChainTag
    token_address: str
    quantity: Decimal = ZERO
    cost_basis: Decimal = ZERO
    cost_basis_usd: Decimal = ZERO
    realized_pnl: Decimal = ZERO
    realized_pnl_usd: Decimal = ZERO
    # Realized USD within the current open lifecycle
    cycle_pnl_usd: Decimal = ZERO

    @property
    def average_cost(self) -> Decimal:
        if self.quantity == 0:
            return ZERO
        return self.cost_basis / self.quantity

    @property
    def is_open(self) -> bool:
        return self.quantity > 0


@dataclass
class RealizedEvent:
    """Profit recognized by a sell that reduced a position."""
    chain: ChainTag
    token_address: str
    tx_signature: str
    timestamp: datetime
    quantity_sold: Decimal
    proceeds: Decimal
    cost_released: Decimal
    pnl: Decimal
    pnl_usd: Decimal
    closed_position: bool


@dataclass
class ClosedPosition:
    """One full open-to-zero lifecycle of a position."""
    chain: ChainTag
    token_address: str
    pnl_usd: Decimal
    closed_at: datetime


@dataclass
class PnlWindow:
    """Aggregates over realized events in a time window."""
    closing_trades: int = 0
    wins: int = 0
    losses: int = 0
    realized_pnl_usd: Decimal = ZERO

    @property
    def win_rate(self) -> Decimal:
        decided = self.wins + self.losses
        if decided == 0:
            return ZERO
        return Decimal(self.wins) * 100 / decided

    def to_dict(self) -> dict[str, Any]:
        return {
            "closing_trades": self.closing_trades,
            "wins": self.wins,
            "losses": self.losses,
            "win_rate": decimal_str(self.win_rate.quantize(Decimal("0.01"))),
            "realized_pnl_usd": decimal_str(self.realized_pnl_usd),
        }


@dataclass
class PositionTracker:
    """Replays one agent's trades into positions and realized events."""
    positions: dict[PositionKey, PositionState] = field(default_factory=dict)
    events: list[RealizedEvent] = field(default_factory=list)
    closed: list[ClosedPosition] = field(default_factory=list)

    def _position(self, chain: ChainTag, token_address: str) -> PositionState:
        key = (chain, token_address)
        if key not in self.positions:
            self.positions[key] = PositionState(chain=chain, token_address=token_address)
        return self.positions[key]

    def buy(
        self,
        chain: ChainTag,
        token_address: str,
        quantity: Decimal,
        cost: Decimal,
        cost_usd: Decimal = ZERO,
    ) -> PositionState:
        position = self._position(chain, token_address)
        position.quantity += quantity
        position.cost_basis += cost
        position.cost_basis_usd += cost_usd
        return position

    def sell(
        self,
        chain: ChainTag,
        token_address: str,
        quantity: Decimal,
        proceeds: Decimal,
        proceeds_usd: Decimal = ZERO,
        tx_signature: str = "",
        timestamp: Optional[datetime] = None,
    ) -> RealizedEvent:
        """Reduce a position and return the realized event.

        Quantity beyond what is tracked, all of it when nothing is, carries
        zero cost basis, so its proceeds are realized in full.
        """
        position = self._position(chain, token_address)
        timestamp = timestamp or datetime.now(timezone.utc)
        held = max(position.quantity, ZERO)

        matched = min(quantity, held)
        if held == 0:
            logger.warning(
                "Sell without tracked position, realizing proceeds at zero cost",
                chain=chain.value,
                token=token_address,
                tx=tx_signature,
                quantity=str(quantity),
            )
        elif quantity > held:
            logger.info(
                "Sell exceeds tracked quantity, clamping",
                chain=chain.value,
                token=token_address,
                tx=tx_signature,
                held=str(held),
                sold=str(quantity),
            )

        if held == 0:
            cost_released = cost_released_usd = ZERO
        elif matched == held:
            cost_released = position.cost_basis
            cost_released_usd = position.cost_basis_usd
        else:
            cost_released = position.cost_basis * matched / held
            cost_released_usd = position.cost_basis_usd * matched / held

        pnl = proceeds - cost_released
        pnl_usd = proceeds_usd - cost_released_usd

        position.quantity = held - matched
        position.cost_basis -= cost_released
        position.cost_basis_usd -= cost_released_usd
        position.realized_pnl += pnl
        position.realized_pnl_usd += pnl_usd

        # An untracked sell is not part of any open-to-zero lifecycle
        closed = held > 0 and position.quantity == 0
        if held > 0:
            position.cycle_pnl_usd += pnl_usd

        if closed:
            position.cost_basis = ZERO
            position.cost_basis_usd = ZERO
            self.closed.append(ClosedPosition(
                chain=chain,
                token_address=token_address,
                pnl_usd=position.cycle_pnl_usd,
                closed_at=timestamp,
            ))
            position.cycle_pnl_usd = ZERO

        event = RealizedEvent(
            chain=chain,
            token_address=token_address,
            tx_signature=tx_signature,
            timestamp=timestamp,
            quantity_sold=matched,
            proceeds=proceeds,
            cost_released=cost_released,
            pnl=pnl,
            pnl_usd=pnl_usd,
            closed_position=closed,
        )
        self.events.append(event)
        return event

    def apply(self, trade: Trade) -> Optional[RealizedEvent]:
        """Apply a stored trade."""
        if trade.is_buyback:
            return None

        base_amount = to_decimal(trade.base_asset_amount)
        value_usd = to_decimal(trade.trade_value_usd)

        if trade.trade_type == TradeType.BUY:
            self.buy(
                trade.chain,
                trade.token_out_address,
                to_decimal(trade.token_out_amount),
                base_amount,
                value_usd,
            )
            return None

        return self.sell(
            trade.chain,
            trade.token_in_address,
            to_decimal(trade.token_in_amount),
            base_amount,
            value_usd,
            tx_signature=trade.tx_signature,
            timestamp=db.ensure_utc(trade.block_time),
        )

    @classmethod
    def replay(cls, trades: Iterable[Trade]) -> "PositionTracker":
        """Build state from trades in block-time order."""
        tracker = cls()
        ordered = sorted(trades, key=lambda t: (db.ensure_utc(t.block_time), t.tx_signature))
        for trade in ordered:
            tracker.apply(trade)
        return tracker

    # ===================
    # Aggregates
    # ===================

    @property
    def realized_pnl_usd(self) -> Decimal:
        return sum((e.pnl_usd for e in self.events), ZERO)

    @property
    def win_rate(self) -> Decimal:
        """Percentage of closed positions with positive realized P&L."""
        if not self.closed:
            return ZERO
        wins = sum(1 for c in self.closed if c.pnl_usd > 0)
        return Decimal(wins) * 100 / len(self.closed)

    def window(self, since: Optional[datetime] = None) -> PnlWindow:
        summary = PnlWindow()
        for event in self.events:
            if since is not None and event.timestamp < since:
                continue
            summary.closing_trades += 1
            summary.realized_pnl_usd += event.pnl_usd
            if event.pnl_usd > 0:
                summary.wins += 1
            elif event.pnl_usd < 0:
                summary.losses += 1
        return summary


# ===================
# Persistence helpers
# ===================

def position_rows(tracker: PositionTracker) -> list[dict[str, Any]]:
    return [
        {
            "chain": p.chain,
            "token_address": p.token_address,
            "quantity": decimal_str(p.quantity),
            "cost_basis": decimal_str(p.cost_basis),
            "cost_basis_usd": decimal_str(p.cost_basis_usd),
            "realized_pnl": decimal_str(p.realized_pnl),
            "realized_pnl_usd": decimal_str(p.realized_pnl_usd),
            "is_open": p.is_open,
        }
        for p in sorted(tracker.positions.values(), key=lambda p: (p.chain.value, p.token_address))
    ]


async def refresh_positions(agent_id: str) -> PositionTracker:
    """Rebuild and persist an agent's positions from its trade history."""
    tracker = PositionTracker.replay(await db.get_trades_for_replay(agent_id))
    await db.replace_positions(agent_id, position_rows(tracker))
    return tracker


async def pnl_summary(agent_id: str, now: Optional[datetime] = None) -> dict[str, Any]:
    """Today (UTC) and all-time realized P&L aggregates for an agent."""
    now = now or datetime.now(timezone.utc)
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)

    tracker = PositionTracker.replay(await db.get_trades_for_replay(agent_id))
    return {
        "agent_id": agent_id,
        "today": tracker.window(start_of_day).to_dict(),
        "last_24h": tracker.window(now - timedelta(hours=24)).to_dict(),
        "all_time": tracker.window().to_dict(),
        "closed_positions": len(tracker.closed),
        "win_rate": decimal_str(tracker.win_rate.quantize(Decimal("0.01"))),
        "open_positions": sum(1 for p in tracker.positions.values() if p.is_open),
    }
