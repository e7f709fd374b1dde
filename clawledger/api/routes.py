"""
FastAPI routes for the ClawLedger API.
Registration, trade and leaderboard queries, P&L and chart data.
"""

import time
import traceback
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from starlette.middleware.gzip import GZipMiddleware

from clawledger import __version__
from clawledger.api.coalesce import coalesce
from clawledger.api.rate_limit import chart_limit, limiter, rate_limit_handler
from clawledger.api.schemas import (
    AgentCreateRequest,
    AgentResponse,
    AnnotationRequest,
    AnnotationResponse,
    HealthResponse,
    Pagination,
    PositionResponse,
    RankingResponse,
    TradePage,
    TradeResponse,
    WalletCreateRequest,
    WalletResponse,
    WalletTokenRequest,
)
from clawledger.config import get_settings
from clawledger.db import database as db
from clawledger.db.models import Agent, AgentWallet, ChainTag
from clawledger.exceptions import InvalidAddress, RegistrationError
from clawledger.services import registration
from clawledger.services.base_asset_price import base_asset_price
from clawledger.services.broadcast import broadcast_hub
from clawledger.services.buyback import buyback_summary
from clawledger.services.cache import cache
from clawledger.services.dex_chart import candles_from_snapshots, dex_chart_client
from clawledger.services.helius import helius_client
from clawledger.services.nadfun import nadfun_client
from clawledger.services.pnl import pnl_summary
from clawledger.services.poller import fallback_poller
from clawledger.services.ranking import ranking_calculator
from clawledger.services.token_poller import token_poller, token_stats_key
from clawledger.services.token_resolver import token_resolver
from clawledger.utils.logging import get_logger, setup_logging

router = APIRouter(prefix="/api/v1", tags=["ClawLedger API"])
settings = get_settings()
logger = get_logger(__name__)


# ===================
# Helpers
# ===================

async def _require_agent(agent_id: str) -> Agent:
    agent = await db.get_agent(agent_id)
    if agent is None:
        raise HTTPException(status_code=404, detail="Agent not found")
    return agent


def _require_chain(chain: Optional[ChainTag]) -> ChainTag:
    if chain is None:
        raise HTTPException(status_code=400, detail="chain query parameter is required")
    return chain


async def _agent_token_wallet(agent_id: str, chain: ChainTag) -> Optional[AgentWallet]:
    """The agent's earliest wallet on a chain that has a token."""
    for wallet in await db.get_agent_wallets(agent_id):
        if wallet.chain == chain and wallet.token_address:
            return wallet
    return None


# ===================
# Agents & Wallets
# ===================

@router.post("/agents", response_model=AgentResponse, status_code=201)
async def create_agent(body: AgentCreateRequest):
    """Register a new agent."""
    agent = await registration.register_agent(body.name, body.bio, body.avatar_url)
    return AgentResponse.from_model(agent, [])


@router.get("/agents/{agent_id}", response_model=AgentResponse)
async def get_agent(agent_id: str):
    agent = await _require_agent(agent_id)
    return AgentResponse.from_model(agent, await db.get_agent_wallets(agent_id))


@router.post("/agents/{agent_id}/wallets", response_model=WalletResponse, status_code=201)
async def add_wallet(agent_id: str, body: WalletCreateRequest):
    """Attach a wallet; the address is validated for its chain."""
    await _require_agent(agent_id)
    wallet = await registration.register_wallet(agent_id, body.chain, body.wallet_address, body.token_address)
    return WalletResponse.from_model(wallet)


@router.put("/wallets/{wallet_id}/token", response_model=WalletResponse)
async def set_wallet_token(wallet_id: str, body: WalletTokenRequest):
    """Register the wallet's creator token (once)."""
    if await db.get_wallet(wallet_id) is None:
        raise HTTPException(status_code=404, detail="Wallet not found")
    wallet = await registration.set_wallet_token(wallet_id, body.token_address)
    return WalletResponse.from_model(wallet)


# ===================
# Trades
# ===================

@router.get("/trades/recent", response_model=list[TradeResponse])
async def recent_trades(
    limit: int = Query(50, ge=1, le=200),
    chain: Optional[ChainTag] = Query(None),
):
    """Latest trades across all agents."""
    trades = await db.get_recent_trades(limit=limit, chain=chain)
    return [TradeResponse.from_model(t) for t in trades]


@router.get("/trades/agent/{agent_id}", response_model=TradePage)
async def agent_trades(
    agent_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    chain: Optional[ChainTag] = Query(None),
):
    """Paginated trade history for an agent, newest first."""
    await _require_agent(agent_id)
    trades, total = await db.get_trades_by_agent(agent_id, page=page, limit=limit, chain=chain)
    return TradePage(
        trades=[TradeResponse.from_model(t) for t in trades],
        pagination=Pagination(page=page, limit=limit, total=total, hasMore=page * limit < total),
    )


@router.get("/trades/agent/{agent_id}/buybacks")
async def agent_buybacks(agent_id: str, chain: Optional[ChainTag] = Query(None)):
    """Buyback trades and totals for an agent."""
    await _require_agent(agent_id)
    trades = await db.get_buyback_trades(agent_id, chain=chain)
    return {
        "summary": await buyback_summary(agent_id),
        "trades": [TradeResponse.from_model(t).model_dump(mode="json") for t in trades],
    }


@router.post("/trades/{trade_id}/annotate", response_model=AnnotationResponse)
async def annotate_trade(trade_id: str, body: AnnotationRequest):
    """Attach or replace free-form notes on a trade."""
    if await db.get_trade(trade_id) is None:
        raise HTTPException(status_code=404, detail="Trade not found")
    annotation = await db.upsert_annotation(trade_id, body.strategy, body.notes, body.tags)
    return AnnotationResponse.from_model(annotation)


# ===================
# Leaderboard & P&L
# ===================

@router.get("/rankings", response_model=list[RankingResponse])
async def rankings(limit: int = Query(100, ge=1, le=500)):
    rows = await db.get_rankings(limit=limit)
    agents = await db.get_agents_by_ids(r.agent_id for r in rows)
    return [
        RankingResponse.from_model(row, agents[row.agent_id].name if row.agent_id in agents else None)
        for row in rows
    ]


@router.get("/agents/{agent_id}/pnl")
async def agent_pnl(agent_id: str):
    """Realized P&L today and all-time."""
    await _require_agent(agent_id)
    return await pnl_summary(agent_id)


@router.get("/agents/{agent_id}/positions", response_model=list[PositionResponse])
async def agent_positions(agent_id: str, open_only: bool = Query(False)):
    await _require_agent(agent_id)
    return [PositionResponse.from_model(p) for p in await db.get_positions(agent_id, open_only=open_only)]


# ===================
# Charts
# ===================

@router.get("/charts/agent/{agent_id}/candles")
@chart_limit
async def agent_candles(
    request: Request,
    agent_id: str,
    chain: Optional[ChainTag] = Query(None),
    timeframe: int = Query(300, ge=60, le=604800),
    limit: int = Query(100, ge=1, le=500),
):
    """OHLCV for the agent's token on one chain, oldest first."""
    chain = _require_chain(chain)
    await _require_agent(agent_id)
    wallet = await _agent_token_wallet(agent_id, chain)
    if wallet is None:
        return {"data": []}

    cache_key = f"candles:{chain.value}:{wallet.token_address}:{timeframe}:{limit}"

    async def _from_cache():
        return await cache.get_json(cache_key)

    async def _fetch():
        candles = [c.to_dict() for c in await dex_chart_client.get_candles(chain, wallet.token_address, timeframe, limit)]
        if not candles:
            snapshots = await db.get_token_snapshots(agent_id, wallet.token_address)
            candles = [c.to_dict() for c in candles_from_snapshots(snapshots, timeframe, limit)]
        if candles:
            await cache.set_json(cache_key, candles, settings.cache_ttl_candles)
        return candles

    cached = await _from_cache()
    if cached is not None:
        return {"data": cached}
    return {"data": await coalesce(cache_key, _fetch, _from_cache)}


@router.get("/charts/agent/{agent_id}/stats")
@chart_limit
async def agent_token_stats(request: Request, agent_id: str, chain: Optional[ChainTag] = Query(None)):
    """Live price, market cap and volume for the agent's token on one chain."""
    chain = _require_chain(chain)
    await _require_agent(agent_id)
    wallet = await _agent_token_wallet(agent_id, chain)
    if wallet is None:
        return {"data": None}

    cache_key = token_stats_key(chain.value, wallet.token_address)

    async def _from_cache():
        return await cache.get_json(cache_key)

    async def _fetch():
        stats = await dex_chart_client.get_token_stats(chain, wallet.token_address)
        if stats is None:
            return None
        data = stats.to_dict()
        await cache.set_json(cache_key, data, settings.cache_ttl_token_stats)
        return data

    cached = await _from_cache()
    if cached is not None:
        return {"data": cached}
    return {"data": await coalesce(cache_key, _fetch, _from_cache)}


# ===================
# App Factory
# ===================

UPSTREAM_CLIENTS = (helius_client, nadfun_client, base_asset_price, token_resolver, dex_chart_client)
BACKGROUND_JOBS = (fallback_poller, ranking_calculator, token_poller)


def create_api_app(run_background_jobs: bool = True) -> FastAPI:
    """Create the FastAPI application."""
    from clawledger.api.realtime import router as realtime_router
    from clawledger.api.webhooks import router as webhook_router

    _log = get_logger("api")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level, settings.log_json)
        await db.init_db(settings.database_url)
        await cache.connect()
        for client in UPSTREAM_CLIENTS:
            await client.initialize()

        if run_background_jobs:
            for job in BACKGROUND_JOBS:
                await job.start()
        _log.info("API ready", version=__version__)

        yield

        for job in BACKGROUND_JOBS:
            await job.stop()
        for client in UPSTREAM_CLIENTS:
            await client.close()
        await cache.close()
        await db.close_db()

    app = FastAPI(
        title="ClawLedger API",
        description="Trade ledger and leaderboard for autonomous trading agents",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Global default limit from middleware; webhook and health routes are exempt
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)

    @app.middleware("http")
    async def timing_middleware(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Response-Time"] = f"{elapsed_ms:.1f}ms"
        _log.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round(elapsed_ms, 1),
        )
        return response

    @app.exception_handler(InvalidAddress)
    async def invalid_address_handler(request: Request, exc: InvalidAddress):
        return JSONResponse(status_code=400, content={"error": "invalid_address", "detail": exc.message})

    @app.exception_handler(RegistrationError)
    async def registration_error_handler(request: Request, exc: RegistrationError):
        return JSONResponse(
            status_code=400,
            content={"error": exc.code or "registration_error", "detail": exc.message},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        _log.error(
            "unhandled_exception",
            path=str(request.url.path),
            method=request.method,
            error_type=type(exc).__name__,
            error=str(exc),
            traceback=traceback.format_exc(),
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "detail": "An unexpected error occurred. Please try again.",
            },
        )

    app.include_router(router)
    app.include_router(webhook_router, prefix="/api/v1")
    app.include_router(realtime_router, prefix="/api/v1")

    @app.get("/health", response_model=HealthResponse)
    @limiter.exempt
    async def health_check():
        database = "healthy"
        try:
            async with db.get_session() as session:
                await session.execute(text("SELECT 1"))
        except Exception as e:
            _log.warning("Database health check failed", error=str(e))
            database = "unhealthy"

        return HealthResponse(
            status="healthy" if database == "healthy" else "degraded",
            database=database,
            cache=await cache.health_check(),
            subscribers=broadcast_hub.subscriber_count,
        )

    return app
