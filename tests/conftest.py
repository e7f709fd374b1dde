"""
Pytest configuration and fixtures.
"""

import os

# Settings are read at import time; tests never talk to Postgres or Redis
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.pop("REDIS_URL", None)

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

import pytest
import pytest_asyncio

from clawledger.db import database as db
from clawledger.db.models import ChainTag, Trade, TradeType
from clawledger.services.broadcast import BroadcastHub
from clawledger.services.ingestion import TradeIngester

SOL_WALLET = "Vote111111111111111111111111111111111111111"
SOL_WALLET_2 = "Stake11111111111111111111111111111111111111"
SOL_TOKEN = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
MON_WALLET = "0x1111111111111111111111111111111111111111"
MON_TOKEN = "0xabcdefabcdefabcdefabcdefabcdefabcdefabcd"
WMON = "0x3bd359c1119da7da1d913d1c4d2b7c461115433a"


class StubPrices:
    """Fixed base-asset prices."""

    def __init__(self, prices: Optional[dict[ChainTag, Decimal]] = None):
        self.prices = prices or {ChainTag.SOLANA: Decimal("100"), ChainTag.MONAD: Decimal("2")}

    async def get_price(self, chain) -> Decimal:
        return self.prices.get(ChainTag(chain), Decimal("0"))


class StubResolver:
    """Resolves nothing; enrichment is left empty."""

    async def resolve(self, chain, addresses) -> dict:
        return {}


class FakeHelius:
    """Recent-transactions source for the poller."""

    def __init__(self, transactions=None, error: Optional[Exception] = None):
        self.transactions = transactions or []
        self.error = error
        self.calls = []

    async def get_recent_transactions(self, wallet_address, limit=100, until=None):
        self.calls.append(until)
        if self.error:
            raise self.error
        return list(self.transactions)


class FakeNadFun:
    def __init__(self, swaps=None):
        self.swaps = swaps or []

    async def get_wallet_trades(self, wallet_address, limit=100):
        return list(self.swaps)


def helius_swap(
    signature: str,
    wallet: str = SOL_WALLET,
    token: str = SOL_TOKEN,
    lamports: int = 500_000_000,
    token_raw: int = 1_000_000_000,
    timestamp: int = 1_700_000_000,
) -> dict[str, Any]:
    """Helius enhanced webhook SWAP: SOL in, token out."""
    return {
        "signature": signature,
        "timestamp": timestamp,
        "type": "SWAP",
        "source": "PUMP_FUN",
        "feePayer": wallet,
        "events": {
            "swap": {
                "nativeInput": {"account": wallet, "amount": str(lamports)},
                "tokenOutputs": [
                    {"mint": token, "rawTokenAmount": {"tokenAmount": str(token_raw), "decimals": 6}},
                ],
            }
        },
    }


def nadfun_swap(
    tx_hash: str,
    event_type: str = "BUY",
    wallet: str = MON_WALLET,
    token: str = MON_TOKEN,
    native_wei: int = 1_500_000_000_000_000_000,
    token_wei: int = 1_000 * 10**18,
    created_at: int = 1_700_000_000,
) -> dict[str, Any]:
    """nad.fun swap history record."""
    return {
        "swap_info": {
            "transaction_hash": tx_hash,
            "token_id": token,
            "account_id": wallet,
            "created_at": created_at,
            "event_type": event_type,
            "native_amount": str(native_wei),
            "token_amount": str(token_wei),
        }
    }


@pytest.fixture
def make_trade():
    """Build a detached Trade row for pure computations."""
    counter = iter(range(1, 10_000))

    def _make(
        trade_type: TradeType,
        token: str,
        token_amount: str,
        base_amount: str,
        value_usd: str,
        chain: ChainTag = ChainTag.SOLANA,
        block_time: Optional[datetime] = None,
        is_buyback: bool = False,
        agent_id: str = "agent-1",
    ) -> Trade:
        n = next(counter)
        base = "So11111111111111111111111111111111111111112" if chain == ChainTag.SOLANA else WMON
        buy = trade_type == TradeType.BUY
        return Trade(
            id=f"trade-{n}",
            agent_id=agent_id,
            wallet_id="wallet-1",
            chain=chain,
            tx_signature=f"sig-{n:05d}",
            block_time=block_time or datetime(2024, 1, 1, 0, n % 60, tzinfo=timezone.utc),
            platform="test",
            trade_type=trade_type,
            token_in_address=base if buy else token,
            token_in_amount=base_amount if buy else token_amount,
            token_out_address=token if buy else base,
            token_out_amount=token_amount if buy else base_amount,
            base_asset_amount=base_amount,
            base_asset_price_usd="1",
            trade_value_usd=value_usd,
            is_buyback=is_buyback,
        )

    return _make


@pytest_asyncio.fixture
async def database(tmp_path):
    """Fresh SQLite database per test."""
    await db.init_db(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await db.create_tables()
    yield
    await db.close_db()


@pytest.fixture
def hub() -> BroadcastHub:
    return BroadcastHub(queue_size=10)


@pytest.fixture
def ingester(hub) -> TradeIngester:
    return TradeIngester(prices=StubPrices(), resolver=StubResolver(), hub=hub)


@pytest_asyncio.fixture
async def agent(database):
    return await db.create_agent(name="Clawdia")


@pytest_asyncio.fixture
async def solana_wallet(agent):
    return await db.create_wallet(agent.id, ChainTag.SOLANA, SOL_WALLET)


@pytest_asyncio.fixture
async def monad_wallet(agent):
    return await db.create_wallet(agent.id, ChainTag.MONAD, MON_WALLET)
