"""
SQLAlchemy database models for ClawLedger.
Agents own wallets on Solana and Monad; trades observed on those wallets
are stored once per (tx_signature, chain).
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Enum as SQLEnum,
    func,
)
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all models."""
    pass


# ===================
# Enums
# ===================

class ChainTag(str, Enum):
    """Supported blockchains."""
    SOLANA = "solana"  # account model, 9 decimals
    MONAD = "monad"    # EVM, 18 decimals


class TradeType(str, Enum):
    """Trade direction relative to the chain's base asset."""
    BUY = "buy"
    SELL = "sell"


# ===================
# Models
# ===================

class Agent(Base):
    """Autonomous trading agent registered by an operator."""

    __tablename__ = "agents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )

    wallets: Mapped[list["AgentWallet"]] = relationship(back_populates="agent")


class AgentWallet(Base):
    """
    One address owned by one agent on one chain.
    Immutable after registration except for token_address, which may be
    set once when the agent later launches its token.
    """

    __tablename__ = "agent_wallets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    agent_id: Mapped[str] = mapped_column(String(36), ForeignKey("agents.id"), index=True)
    chain: Mapped[ChainTag] = mapped_column(SQLEnum(ChainTag))

    # Stored normalized (Solana as-is, Monad lower-case)
    wallet_address: Mapped[str] = mapped_column(String(255), index=True)
    token_address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now()
    )

    agent: Mapped["Agent"] = relationship(back_populates="wallets")

    __table_args__ = (
        # One owner per address and chain; webhook routing depends on it
        UniqueConstraint("chain", "wallet_address", name="uq_agent_wallets_chain_address"),
    )


class Trade(Base):
    """Canonical record of one on-chain swap."""

    __tablename__ = "trades"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    agent_id: Mapped[str] = mapped_column(String(36), ForeignKey("agents.id"), index=True)
    wallet_id: Mapped[str] = mapped_column(String(36), ForeignKey("agent_wallets.id"), index=True)
    chain: Mapped[ChainTag] = mapped_column(SQLEnum(ChainTag))
    tx_signature: Mapped[str] = mapped_column(String(255))
    block_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    platform: Mapped[str] = mapped_column(String(100))
    trade_type: Mapped[TradeType] = mapped_column(SQLEnum(TradeType))

    # Amounts in display units (stored as string for precision)
    token_in_address: Mapped[str] = mapped_column(String(255))
    token_in_amount: Mapped[str] = mapped_column(String(78))
    token_in_symbol: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    token_in_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    token_out_address: Mapped[str] = mapped_column(String(255))
    token_out_amount: Mapped[str] = mapped_column(String(78))
    token_out_symbol: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    token_out_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    base_asset_amount: Mapped[str] = mapped_column(String(78))

    # USD at trade time
    base_asset_price_usd: Mapped[str] = mapped_column(String(78))
    trade_value_usd: Mapped[str] = mapped_column(String(78))

    is_buyback: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now()
    )

    annotation: Mapped[Optional["TradeAnnotation"]] = relationship(
        back_populates="trade", uselist=False, lazy="selectin"
    )

    __table_args__ = (
        # Idempotency key shared by the webhook and poller paths
        UniqueConstraint("tx_signature", "chain", name="uq_trades_tx_chain"),
        Index("ix_trades_agent_block_time", "agent_id", "block_time"),
        Index("ix_trades_block_time", "block_time"),
    )


class TradeAnnotation(Base):
    """Free-form notes an agent attaches to one of its trades."""

    __tablename__ = "trade_annotations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    trade_id: Mapped[str] = mapped_column(String(36), ForeignKey("trades.id"), unique=True)
    strategy: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tags: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # comma-separated

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )

    trade: Mapped["Trade"] = relationship(back_populates="annotation")

    @property
    def tag_list(self) -> list[str]:
        if not self.tags:
            return []
        return [t.strip() for t in self.tags.split(",") if t.strip()]


class TokenMetadata(Base):
    """Resolved token symbol/name cache."""

    __tablename__ = "token_metadata"

    chain: Mapped[ChainTag] = mapped_column(SQLEnum(ChainTag), primary_key=True)
    address: Mapped[str] = mapped_column(String(255), primary_key=True)
    symbol: Mapped[str] = mapped_column(String(64))
    name: Mapped[str] = mapped_column(String(255))
    decimals: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    logo_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )


class TokenSnapshot(Base):
    """Point-in-time price of an agent's own token."""

    __tablename__ = "token_snapshots"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    agent_id: Mapped[str] = mapped_column(String(36), ForeignKey("agents.id"))
    chain: Mapped[ChainTag] = mapped_column(SQLEnum(ChainTag))
    token_address: Mapped[str] = mapped_column(String(255))
    price_usd: Mapped[str] = mapped_column(String(78))
    market_cap_usd: Mapped[Optional[str]] = mapped_column(String(78), nullable=True)
    polled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_token_snapshots_agent_token_time", "agent_id", "token_address", "polled_at"),
    )


class Position(Base):
    """
    Derived position state per (agent, chain, token).
    Rebuilt from trade history whenever a new trade lands for the agent.
    """

    __tablename__ = "positions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    agent_id: Mapped[str] = mapped_column(String(36), ForeignKey("agents.id"))
    chain: Mapped[ChainTag] = mapped_column(SQLEnum(ChainTag))
    token_address: Mapped[str] = mapped_column(String(255))

    quantity: Mapped[str] = mapped_column(String(78))
    cost_basis: Mapped[str] = mapped_column(String(78))       # base-asset units
    cost_basis_usd: Mapped[str] = mapped_column(String(78))
    realized_pnl: Mapped[str] = mapped_column(String(78))     # base-asset units
    realized_pnl_usd: Mapped[str] = mapped_column(String(78))
    is_open: Mapped[bool] = mapped_column(Boolean, default=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("agent_id", "chain", "token_address", name="uq_positions_agent_chain_token"),
    )


class PerformanceRanking(Base):
    """Leaderboard row. The table is replaced wholesale on every recompute."""

    __tablename__ = "performance_rankings"

    agent_id: Mapped[str] = mapped_column(String(36), ForeignKey("agents.id"), primary_key=True)
    rank: Mapped[int] = mapped_column(Integer, index=True)
    total_pnl_usd: Mapped[str] = mapped_column(String(78))
    win_rate: Mapped[str] = mapped_column(String(78))
    total_trades: Mapped[int] = mapped_column(Integer)
    total_volume_usd: Mapped[str] = mapped_column(String(78))
    buyback_total_usd: Mapped[str] = mapped_column(String(78))
    token_price_change_24h: Mapped[Optional[str]] = mapped_column(String(78), nullable=True)
    ranked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
