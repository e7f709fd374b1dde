"""
Buyback classification and reporting.

A trade is a buyback when the asset it acquires is the wallet's own
registered token. Classification happens once, at insert time, against
the wallet's token at that moment; trades stored before the token was
registered keep their flag until repair_buybacks() is run.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from clawledger.chains import get_spec
from clawledger.chains.base import NormalizedTrade
from clawledger.db import database as db
from clawledger.db.models import ChainTag
from clawledger.utils.amounts import ZERO, decimal_str, to_decimal
from clawledger.utils.logging import get_logger

logger = get_logger(__name__)


def is_buyback(chain: ChainTag | str, token_out_address: Optional[str], wallet_token: Optional[str]) -> bool:
    """True iff the acquired asset is the wallet's token (chain-normalized compare)."""
    return get_spec(chain).same_address(token_out_address, wallet_token)


def classify(trade: NormalizedTrade, wallet_token: Optional[str]) -> bool:
    return is_buyback(trade.chain, trade.token_out_address, wallet_token)


async def repair_buybacks(wallet_id: Optional[str] = None) -> int:
    """
    Recompute is_buyback for stored trades using each wallet's current token.
    Returns the number of trades whose flag changed.
    """
    if wallet_id is not None:
        wallet = await db.get_wallet(wallet_id)
        wallets = [wallet] if wallet else []
    else:
        wallets = await db.get_all_wallets()

    changes: dict[str, bool] = {}
    for wallet in wallets:
        for trade in await db.get_wallet_trades(wallet.id):
            flag = is_buyback(trade.chain, trade.token_out_address, wallet.token_address)
            if flag != trade.is_buyback:
                changes[trade.id] = flag

    await db.set_trade_buyback_flags(changes)
    logger.info("Buyback repair finished", wallets=len(wallets), changed=len(changes))
    return len(changes)


async def buyback_summary(agent_id: str) -> dict[str, Any]:
    """Totals of an agent's buybacks. Spend is summed in USD, never in native units."""
    trades = await db.get_buyback_trades(agent_id)

    total_usd = ZERO
    by_chain: dict[str, dict[str, Decimal]] = {}
    last_at: Optional[datetime] = None

    for trade in trades:
        value = to_decimal(trade.trade_value_usd)
        total_usd += value
        chain = by_chain.setdefault(
            trade.chain.value,
            {"count": ZERO, "spent_native": ZERO, "spent_usd": ZERO, "tokens": ZERO},
        )
        chain["count"] += 1
        chain["spent_native"] += to_decimal(trade.base_asset_amount)
        chain["spent_usd"] += value
        chain["tokens"] += to_decimal(trade.token_out_amount)

        block_time = db.ensure_utc(trade.block_time)
        if last_at is None or block_time > last_at:
            last_at = block_time

    return {
        "agent_id": agent_id,
        "count": len(trades),
        "total_spent_usd": decimal_str(total_usd),
        "last_buyback_at": last_at.isoformat() if last_at else None,
        "by_chain": {
            chain: {
                "count": int(values["count"]),
                "spent_native": decimal_str(values["spent_native"]),
                "spent_usd": decimal_str(values["spent_usd"]),
                "tokens": decimal_str(values["tokens"]),
            }
            for chain, values in sorted(by_chain.items())
        },
    }
