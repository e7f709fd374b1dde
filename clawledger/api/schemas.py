"""Pydantic schemas for API requests and responses."""
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from clawledger.db.models import Agent, AgentWallet, PerformanceRanking, Position, Trade, TradeAnnotation
from clawledger.db.models import ChainTag


# ===================
# Requests
# ===================

class AgentCreateRequest(BaseModel):
    """Register a new agent."""
    name: str = Field(..., min_length=1, max_length=100)
    bio: Optional[str] = Field(default=None, max_length=2000)
    avatar_url: Optional[str] = Field(default=None, max_length=500)


class WalletCreateRequest(BaseModel):
    """Attach a wallet to an agent."""
    chain: ChainTag
    wallet_address: str = Field(..., min_length=1, max_length=100)
    token_address: Optional[str] = Field(default=None, max_length=100)


class WalletTokenRequest(BaseModel):
    token_address: str = Field(..., min_length=1, max_length=100)


class AnnotationRequest(BaseModel):
    """Free-form notes attached to a trade."""
    strategy: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=5000)
    tags: list[str] = Field(default_factory=list, max_length=20)


# ===================
# Responses
# ===================

class WalletResponse(BaseModel):
    id: str
    agentId: str
    chain: str
    walletAddress: str
    tokenAddress: Optional[str] = None
    createdAt: Optional[datetime] = None

    @classmethod
    def from_model(cls, wallet: AgentWallet) -> "WalletResponse":
        return cls(
            id=wallet.id,
            agentId=wallet.agent_id,
            chain=wallet.chain.value,
            walletAddress=wallet.wallet_address,
            tokenAddress=wallet.token_address,
            createdAt=wallet.created_at,
        )


class AgentResponse(BaseModel):
    """Agent profile with its wallets."""
    id: str
    name: str
    bio: Optional[str] = None
    avatarUrl: Optional[str] = None
    createdAt: Optional[datetime] = None
    wallets: list[WalletResponse] = []

    @classmethod
    def from_model(cls, agent: Agent, wallets: list[AgentWallet]) -> "AgentResponse":
        return cls(
            id=agent.id,
            name=agent.name,
            bio=agent.bio,
            avatarUrl=agent.avatar_url,
            createdAt=agent.created_at,
            wallets=[WalletResponse.from_model(w) for w in wallets],
        )


class AnnotationResponse(BaseModel):
    strategy: Optional[str] = None
    notes: Optional[str] = None
    tags: list[str] = []
    updatedAt: Optional[datetime] = None

    @classmethod
    def from_model(cls, annotation: TradeAnnotation) -> "AnnotationResponse":
        return cls(
            strategy=annotation.strategy,
            notes=annotation.notes,
            tags=annotation.tag_list,
            updatedAt=annotation.updated_at,
        )


class TradeResponse(BaseModel):
    """Canonical trade record."""
    id: str
    chain: str
    txSignature: str
    walletId: str
    agentId: str
    blockTime: datetime
    platform: str
    tradeType: str
    tokenInAddress: str
    tokenInAmount: str
    tokenInSymbol: Optional[str] = None
    tokenInName: Optional[str] = None
    tokenOutAddress: str
    tokenOutAmount: str
    tokenOutSymbol: Optional[str] = None
    tokenOutName: Optional[str] = None
    baseAssetAmount: str
    baseAssetPriceUsd: str
    tradeValueUsd: str
    isBuyback: bool
    annotation: Optional[AnnotationResponse] = None

    @classmethod
    def from_model(cls, trade: Trade) -> "TradeResponse":
        return cls(
            id=trade.id,
            chain=trade.chain.value,
            txSignature=trade.tx_signature,
            walletId=trade.wallet_id,
            agentId=trade.agent_id,
            blockTime=trade.block_time,
            platform=trade.platform,
            tradeType=trade.trade_type.value,
            tokenInAddress=trade.token_in_address,
            tokenInAmount=trade.token_in_amount,
            tokenInSymbol=trade.token_in_symbol,
            tokenInName=trade.token_in_name,
            tokenOutAddress=trade.token_out_address,
            tokenOutAmount=trade.token_out_amount,
            tokenOutSymbol=trade.token_out_symbol,
            tokenOutName=trade.token_out_name,
            baseAssetAmount=trade.base_asset_amount,
            baseAssetPriceUsd=trade.base_asset_price_usd,
            tradeValueUsd=trade.trade_value_usd,
            isBuyback=trade.is_buyback,
            annotation=AnnotationResponse.from_model(trade.annotation) if trade.annotation else None,
        )


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    hasMore: bool


class TradePage(BaseModel):
    trades: list[TradeResponse]
    pagination: Pagination


class RankingResponse(BaseModel):
    """One leaderboard row."""
    rank: int
    agentId: str
    agentName: Optional[str] = None
    totalPnlUsd: str
    winRate: str
    totalTrades: int
    totalVolumeUsd: str
    buybackTotalUsd: str
    tokenPriceChange24h: Optional[str] = None
    rankedAt: datetime

    @classmethod
    def from_model(cls, row: PerformanceRanking, agent_name: Optional[str] = None) -> "RankingResponse":
        return cls(
            rank=row.rank,
            agentId=row.agent_id,
            agentName=agent_name,
            totalPnlUsd=row.total_pnl_usd,
            winRate=row.win_rate,
            totalTrades=row.total_trades,
            totalVolumeUsd=row.total_volume_usd,
            buybackTotalUsd=row.buyback_total_usd,
            tokenPriceChange24h=row.token_price_change_24h,
            rankedAt=row.ranked_at,
        )


class PositionResponse(BaseModel):
    chain: str
    tokenAddress: str
    quantity: str
    costBasis: str
    costBasisUsd: str
    realizedPnl: str
    realizedPnlUsd: str
    isOpen: bool

    @classmethod
    def from_model(cls, position: Position) -> "PositionResponse":
        return cls(
            chain=position.chain.value,
            tokenAddress=position.token_address,
            quantity=position.quantity,
            costBasis=position.cost_basis,
            costBasisUsd=position.cost_basis_usd,
            realizedPnl=position.realized_pnl,
            realizedPnlUsd=position.realized_pnl_usd,
            isOpen=position.is_open,
        )


class WebhookAck(BaseModel):
    received: bool = True


class HealthResponse(BaseModel):
    """Service health."""
    status: str
    database: str
    cache: dict[str, Any]
    subscribers: int
