"""
Database connection, session management and data access.
"""

import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncGenerator, Any, Iterable, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from clawledger.db.models import (
    Agent,
    AgentWallet,
    Base,
    ChainTag,
    PerformanceRanking,
    Position,
    TokenMetadata,
    TokenSnapshot,
    Trade,
    TradeAnnotation,
)
from clawledger.utils.logging import get_logger

logger = get_logger(__name__)

# Global engine and session factory
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def generate_id() -> str:
    """Generate a unique ID."""
    return str(uuid.uuid4())


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def async_database_url(url: str) -> str:
    """Point bare postgres URLs at the asyncpg driver."""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


async def init_db(database_url: str) -> None:
    """Initialize database connection."""
    global _engine, _session_factory

    database_url = async_database_url(database_url)

    engine_kwargs: dict[str, Any] = {"echo": False, "pool_pre_ping": True}
    if database_url.startswith("postgresql"):
        engine_kwargs.update(pool_size=5, max_overflow=10)

    _engine = create_async_engine(database_url, **engine_kwargs)

    _session_factory = async_sessionmaker(
        _engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    logger.info("Database connection initialized")


async def create_tables() -> None:
    """Create all database tables."""
    if _engine is None:
        raise RuntimeError("Database not initialized")

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database tables created")


async def close_db() -> None:
    """Close database connection."""
    global _engine, _session_factory

    if _engine:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Database connection closed")


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get an async database session (context manager for internal use)."""
    if _session_factory is None:
        raise RuntimeError("Database not initialized")

    async with _session_factory() as session:
        try:
            yield session
            await session.commit()
        except BaseException:
            # Includes cancellation: a cancelled unit of work leaves nothing behind
            await session.rollback()
            raise


async def get_session_dependency() -> AsyncGenerator[AsyncSession, None]:
    """Get an async database session (FastAPI dependency)."""
    async with get_session() as session:
        yield session


def _insert_for(session: AsyncSession):
    """Dialect-specific INSERT supporting ON CONFLICT."""
    if session.bind is not None and session.bind.dialect.name == "postgresql":
        return pg_insert
    return sqlite_insert


# ===================
# Agent Operations
# ===================

async def create_agent(
    name: str,
    bio: Optional[str] = None,
    avatar_url: Optional[str] = None,
) -> Agent:
    """Create a new agent."""
    async with get_session() as session:
        agent = Agent(id=generate_id(), name=name, bio=bio, avatar_url=avatar_url)
        session.add(agent)
        await session.flush()
        await session.refresh(agent)
        logger.info("Agent created", agent_id=agent.id, name=name)
        return agent


async def get_agent(agent_id: str) -> Optional[Agent]:
    async with get_session() as session:
        return await session.get(Agent, agent_id)


async def get_agents_by_ids(agent_ids: Iterable[str]) -> dict[str, Agent]:
    ids = list(set(agent_ids))
    if not ids:
        return {}
    async with get_session() as session:
        result = await session.execute(select(Agent).where(Agent.id.in_(ids)))
        return {a.id: a for a in result.scalars().all()}


async def get_all_agents() -> list[Agent]:
    async with get_session() as session:
        result = await session.execute(select(Agent).order_by(Agent.id))
        return list(result.scalars().all())


# ===================
# Wallet Operations
# ===================

async def create_wallet(
    agent_id: str,
    chain: ChainTag,
    wallet_address: str,
    token_address: Optional[str] = None,
) -> AgentWallet:
    """Insert a wallet. Addresses must already be validated and normalized."""
    async with get_session() as session:
        wallet = AgentWallet(
            id=generate_id(),
            agent_id=agent_id,
            chain=chain,
            wallet_address=wallet_address,
            token_address=token_address,
        )
        session.add(wallet)
        await session.flush()
        await session.refresh(wallet)
        return wallet


async def get_wallet(wallet_id: str) -> Optional[AgentWallet]:
    async with get_session() as session:
        return await session.get(AgentWallet, wallet_id)


async def find_wallet(chain: ChainTag, wallet_address: str) -> Optional[AgentWallet]:
    """Find a wallet by normalized address on a chain."""
    async with get_session() as session:
        result = await session.execute(
            select(AgentWallet)
            .where(AgentWallet.chain == chain, AgentWallet.wallet_address == wallet_address)
            .order_by(AgentWallet.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()


async def find_wallets(chain: ChainTag, wallet_addresses: Iterable[str]) -> dict[str, AgentWallet]:
    """Map normalized address -> wallet for the addresses that are registered."""
    addresses = [a for a in set(wallet_addresses) if a]
    if not addresses:
        return {}
    async with get_session() as session:
        result = await session.execute(
            select(AgentWallet).where(
                AgentWallet.chain == chain,
                AgentWallet.wallet_address.in_(addresses),
            )
        )
        return {w.wallet_address: w for w in result.scalars().all()}


async def get_agent_wallets(agent_id: str) -> list[AgentWallet]:
    async with get_session() as session:
        result = await session.execute(
            select(AgentWallet)
            .where(AgentWallet.agent_id == agent_id)
            .order_by(AgentWallet.created_at, AgentWallet.id)
        )
        return list(result.scalars().all())


async def get_all_wallets(chain: Optional[ChainTag] = None) -> list[AgentWallet]:
    async with get_session() as session:
        query = select(AgentWallet).order_by(AgentWallet.created_at, AgentWallet.id)
        if chain is not None:
            query = query.where(AgentWallet.chain == chain)
        result = await session.execute(query)
        return list(result.scalars().all())


async def set_wallet_token_address(wallet_id: str, token_address: str) -> None:
    async with get_session() as session:
        await session.execute(
            update(AgentWallet)
            .where(AgentWallet.id == wallet_id)
            .values(token_address=token_address)
        )


# ===================
# Trade Operations
# ===================

class InsertOutcome(str, Enum):
    """Result of an idempotent trade insert."""
    INSERTED = "inserted"
    ALREADY_EXISTS = "already_exists"


@dataclass
class InsertResult:
    outcome: InsertOutcome
    trade_id: Optional[str] = None

    @property
    def inserted(self) -> bool:
        return self.outcome == InsertOutcome.INSERTED


async def insert_trade(values: dict[str, Any]) -> InsertResult:
    """
    Insert a trade unless (tx_signature, chain) already exists.

    Uses a single INSERT .. ON CONFLICT DO NOTHING RETURNING so concurrent
    callers racing on the same transaction get exactly one winner.
    """
    values = {"id": generate_id(), **values}
    async with get_session() as session:
        insert = _insert_for(session)
        stmt = (
            insert(Trade)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["tx_signature", "chain"])
            .returning(Trade.id)
        )
        result = await session.execute(stmt)
        trade_id = result.scalar_one_or_none()

    if trade_id is None:
        return InsertResult(InsertOutcome.ALREADY_EXISTS)
    return InsertResult(InsertOutcome.INSERTED, trade_id)


async def trade_exists(chain: ChainTag, tx_signature: str) -> bool:
    async with get_session() as session:
        result = await session.execute(
            select(Trade.id).where(Trade.chain == chain, Trade.tx_signature == tx_signature)
        )
        return result.scalar_one_or_none() is not None


async def get_trade(trade_id: str) -> Optional[Trade]:
    async with get_session() as session:
        return await session.get(Trade, trade_id)


async def get_trades_by_agent(
    agent_id: str,
    page: int = 1,
    limit: int = 50,
    chain: Optional[ChainTag] = None,
) -> tuple[list[Trade], int]:
    """Paginated trades for an agent, newest first, with total count."""
    async with get_session() as session:
        filters = [Trade.agent_id == agent_id]
        if chain is not None:
            filters.append(Trade.chain == chain)

        total = await session.scalar(select(func.count()).select_from(Trade).where(*filters))
        result = await session.execute(
            select(Trade)
            .where(*filters)
            .order_by(Trade.block_time.desc(), Trade.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), int(total or 0)


async def get_recent_trades(limit: int = 50, chain: Optional[ChainTag] = None) -> list[Trade]:
    async with get_session() as session:
        query = select(Trade).order_by(Trade.block_time.desc(), Trade.id).limit(limit)
        if chain is not None:
            query = query.where(Trade.chain == chain)
        result = await session.execute(query)
        return list(result.scalars().all())


async def get_buyback_trades(agent_id: str, chain: Optional[ChainTag] = None) -> list[Trade]:
    async with get_session() as session:
        query = (
            select(Trade)
            .where(Trade.agent_id == agent_id, Trade.is_buyback.is_(True))
            .order_by(Trade.block_time.desc(), Trade.id)
        )
        if chain is not None:
            query = query.where(Trade.chain == chain)
        result = await session.execute(query)
        return list(result.scalars().all())


async def get_trades_for_replay(agent_id: Optional[str] = None) -> list[Trade]:
    """Trades in block-time order, for position replay and ranking."""
    async with get_session() as session:
        query = select(Trade).order_by(Trade.block_time, Trade.tx_signature)
        if agent_id is not None:
            query = query.where(Trade.agent_id == agent_id)
        result = await session.execute(query)
        return list(result.scalars().all())


async def get_wallet_trades(wallet_id: str) -> list[Trade]:
    async with get_session() as session:
        result = await session.execute(
            select(Trade).where(Trade.wallet_id == wallet_id).order_by(Trade.block_time)
        )
        return list(result.scalars().all())


async def set_trade_buyback_flags(flags: dict[str, bool]) -> int:
    """Update is_buyback for the given trade ids. Returns rows changed."""
    if not flags:
        return 0
    async with get_session() as session:
        for trade_id, is_buyback in flags.items():
            await session.execute(
                update(Trade).where(Trade.id == trade_id).values(is_buyback=is_buyback)
            )
    return len(flags)


async def get_trades_missing_metadata(limit: int = 500) -> list[Trade]:
    async with get_session() as session:
        result = await session.execute(
            select(Trade)
            .where(or_(Trade.token_in_symbol.is_(None), Trade.token_out_symbol.is_(None)))
            .order_by(Trade.block_time.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


async def update_trade_metadata(trade_id: str, values: dict[str, Optional[str]]) -> None:
    async with get_session() as session:
        await session.execute(update(Trade).where(Trade.id == trade_id).values(**values))


# ===================
# Annotation Operations
# ===================

async def upsert_annotation(
    trade_id: str,
    strategy: Optional[str] = None,
    notes: Optional[str] = None,
    tags: Optional[list[str]] = None,
) -> TradeAnnotation:
    """Create or replace the annotation attached to a trade."""
    tag_text = ",".join(t.strip() for t in tags if t.strip()) if tags else None
    async with get_session() as session:
        result = await session.execute(
            select(TradeAnnotation).where(TradeAnnotation.trade_id == trade_id)
        )
        annotation = result.scalar_one_or_none()
        if annotation is None:
            annotation = TradeAnnotation(id=generate_id(), trade_id=trade_id)
            session.add(annotation)
        annotation.strategy = strategy
        annotation.notes = notes
        annotation.tags = tag_text
        await session.flush()
        await session.refresh(annotation)
        return annotation


# ===================
# Token Metadata Operations
# ===================

async def get_token_metadata(chain: ChainTag, addresses: Iterable[str]) -> dict[str, TokenMetadata]:
    wanted = [a for a in set(addresses) if a]
    if not wanted:
        return {}
    async with get_session() as session:
        result = await session.execute(
            select(TokenMetadata).where(
                TokenMetadata.chain == chain,
                TokenMetadata.address.in_(wanted),
            )
        )
        return {m.address: m for m in result.scalars().all()}


async def upsert_token_metadata(
    chain: ChainTag,
    address: str,
    symbol: str,
    name: str,
    decimals: Optional[int] = None,
    logo_url: Optional[str] = None,
) -> None:
    async with get_session() as session:
        insert = _insert_for(session)
        stmt = insert(TokenMetadata).values(
            chain=chain,
            address=address,
            symbol=symbol,
            name=name,
            decimals=decimals,
            logo_url=logo_url,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["chain", "address"],
            set_={"symbol": symbol, "name": name, "decimals": decimals, "logo_url": logo_url},
        )
        await session.execute(stmt)


# ===================
# Token Snapshot Operations
# ===================

async def add_token_snapshot(
    agent_id: str,
    chain: ChainTag,
    token_address: str,
    price_usd: str,
    market_cap_usd: Optional[str] = None,
    polled_at: Optional[datetime] = None,
) -> TokenSnapshot:
    async with get_session() as session:
        snapshot = TokenSnapshot(
            id=generate_id(),
            agent_id=agent_id,
            chain=chain,
            token_address=token_address,
            price_usd=price_usd,
            market_cap_usd=market_cap_usd,
            polled_at=polled_at or datetime.now(timezone.utc),
        )
        session.add(snapshot)
        await session.flush()
        await session.refresh(snapshot)
        return snapshot


async def get_token_snapshots(
    agent_id: str,
    token_address: str,
    since: Optional[datetime] = None,
) -> list[TokenSnapshot]:
    """Snapshots for an agent token, oldest first."""
    async with get_session() as session:
        query = (
            select(TokenSnapshot)
            .where(TokenSnapshot.agent_id == agent_id, TokenSnapshot.token_address == token_address)
            .order_by(TokenSnapshot.polled_at)
        )
        if since is not None:
            query = query.where(TokenSnapshot.polled_at >= since)
        result = await session.execute(query)
        return list(result.scalars().all())


async def get_latest_snapshot(
    agent_id: str,
    token_address: str,
    before: Optional[datetime] = None,
) -> Optional[TokenSnapshot]:
    async with get_session() as session:
        query = (
            select(TokenSnapshot)
            .where(TokenSnapshot.agent_id == agent_id, TokenSnapshot.token_address == token_address)
            .order_by(TokenSnapshot.polled_at.desc())
            .limit(1)
        )
        if before is not None:
            query = query.where(TokenSnapshot.polled_at <= before)
        result = await session.execute(query)
        return result.scalar_one_or_none()


# ===================
# Position Operations
# ===================

async def replace_positions(agent_id: str, rows: list[dict[str, Any]]) -> None:
    """Replace every persisted position of an agent in one transaction."""
    async with get_session() as session:
        await session.execute(delete(Position).where(Position.agent_id == agent_id))
        for row in rows:
            session.add(Position(id=generate_id(), agent_id=agent_id, **row))


async def get_positions(agent_id: str, open_only: bool = False) -> list[Position]:
    async with get_session() as session:
        query = (
            select(Position)
            .where(Position.agent_id == agent_id)
            .order_by(Position.chain, Position.token_address)
        )
        if open_only:
            query = query.where(Position.is_open.is_(True))
        result = await session.execute(query)
        return list(result.scalars().all())


# ===================
# Ranking Operations
# ===================

async def replace_rankings(rows: list[dict[str, Any]]) -> None:
    """Swap the whole leaderboard in a single transaction."""
    async with get_session() as session:
        await session.execute(delete(PerformanceRanking))
        for row in rows:
            session.add(PerformanceRanking(**row))


async def get_rankings(limit: Optional[int] = None) -> list[PerformanceRanking]:
    async with get_session() as session:
        query = select(PerformanceRanking).order_by(PerformanceRanking.rank)
        if limit is not None:
            query = query.limit(limit)
        result = await session.execute(query)
        return list(result.scalars().all())
