"""
Trade ingestion: normalize -> price -> classify -> insert -> enrich -> fan out.

Webhook deliveries and the fallback poller both feed this path and race
on the same transactions. The (tx_signature, chain) unique key decides
the winner; only the caller whose insert actually wrote the row refreshes
positions and broadcasts, so a duplicate observation has no side effects.
"""

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from clawledger.chains import get_adapter
from clawledger.chains.base import NormalizedTrade
from clawledger.db import database as db
from clawledger.db.models import AgentWallet, ChainTag
from clawledger.exceptions import AdapterError, MalformedEvent
from clawledger.services.base_asset_price import BaseAssetPriceService, base_asset_price
from clawledger.services.broadcast import BroadcastHub, broadcast_hub
from clawledger.services.buyback import classify
from clawledger.services.pnl import refresh_positions
from clawledger.services.token_resolver import TokenResolver, token_resolver
from clawledger.utils.amounts import decimal_str
from clawledger.utils.logging import LoggerMixin, log_context


class IngestOutcome(str, Enum):
    """What happened to one observed payload."""
    INSERTED = "inserted"
    DUPLICATE = "duplicate"
    ZERO_VALUE = "zero_value"
    UNRECOGNIZED = "unrecognized"
    MALFORMED = "malformed"


@dataclass
class IngestResult:
    outcome: IngestOutcome
    tx_signature: Optional[str] = None
    trade_id: Optional[str] = None

    @property
    def inserted(self) -> bool:
        return self.outcome == IngestOutcome.INSERTED


def trade_event(values: dict[str, Any], agent_id: str) -> dict[str, Any]:
    """Canonical trade shape sent to live subscribers."""
    chain = values["chain"]
    return {
        "id": values.get("id"),
        "chain": chain.value if isinstance(chain, ChainTag) else chain,
        "txSignature": values["tx_signature"],
        "walletId": values["wallet_id"],
        "agentId": agent_id,
        "blockTime": values["block_time"].isoformat(),
        "platform": values["platform"],
        "tradeType": values["trade_type"].value,
        "tokenInAddress": values["token_in_address"],
        "tokenInAmount": values["token_in_amount"],
        "tokenInSymbol": values.get("token_in_symbol"),
        "tokenInName": values.get("token_in_name"),
        "tokenOutAddress": values["token_out_address"],
        "tokenOutAmount": values["token_out_amount"],
        "tokenOutSymbol": values.get("token_out_symbol"),
        "tokenOutName": values.get("token_out_name"),
        "baseAssetAmount": values["base_asset_amount"],
        "baseAssetPriceUsd": values["base_asset_price_usd"],
        "tradeValueUsd": values["trade_value_usd"],
        "isBuyback": values["is_buyback"],
    }


class TradeIngester(LoggerMixin):
    """Single write path shared by the webhook receiver and the fallback poller."""

    def __init__(
        self,
        prices: Optional[BaseAssetPriceService] = None,
        resolver: Optional[TokenResolver] = None,
        hub: Optional[BroadcastHub] = None,
    ):
        self.prices = prices or base_asset_price
        self.resolver = resolver or token_resolver
        self.hub = hub or broadcast_hub
        self._position_locks: dict[str, asyncio.Lock] = {}

    async def ingest_payload(self, chain: ChainTag | str, payload: Any, wallet: AgentWallet) -> IngestResult:
        """Normalize a raw payload for a registered wallet and ingest it."""
        adapter = get_adapter(chain)
        try:
            trade = adapter.normalize(payload, wallet.wallet_address)
        except AdapterError as e:
            outcome = IngestOutcome.MALFORMED if isinstance(e, MalformedEvent) else IngestOutcome.UNRECOGNIZED
            level = self.log.warning if outcome == IngestOutcome.MALFORMED else self.log.debug
            level("Payload rejected", chain=adapter.chain.value, wallet=wallet.wallet_address, reason=e.message)
            return IngestResult(outcome)

        return await self.ingest(trade, wallet)

    async def ingest(self, trade: NormalizedTrade, wallet: AgentWallet) -> IngestResult:
        """Price, classify and idempotently store one normalized trade, then enrich it."""
        with log_context(chain=trade.chain.value, tx=trade.tx_signature):
            price = await self.prices.get_price(trade.chain)
            value_usd = trade.base_asset_amount * price
            if value_usd <= 0:
                self.log.warning(
                    "Zero-value trade rejected",
                    base_amount=str(trade.base_asset_amount),
                    price=str(price),
                )
                return IngestResult(IngestOutcome.ZERO_VALUE, trade.tx_signature)

            values = self._values(trade, wallet, price, value_usd)
            result = await db.insert_trade(values)
            if not result.inserted:
                self.log.debug("Duplicate trade observation")
                return IngestResult(IngestOutcome.DUPLICATE, trade.tx_signature)

            values["id"] = result.trade_id
            values.update(await self._enrich(result.trade_id, trade))
            self.log.info(
                "Trade ingested",
                agent_id=wallet.agent_id,
                trade_type=trade.trade_type.value,
                value_usd=values["trade_value_usd"],
                buyback=values["is_buyback"],
            )

            await self._refresh_positions(wallet.agent_id)
            delivered = self.hub.publish("trade", wallet.agent_id, trade_event(values, wallet.agent_id))
            self.log.debug("Trade broadcast", subscribers=delivered)

            return IngestResult(IngestOutcome.INSERTED, trade.tx_signature, result.trade_id)

    # ===================
    # Steps
    # ===================

    def _values(
        self,
        trade: NormalizedTrade,
        wallet: AgentWallet,
        price: Decimal,
        value_usd: Decimal,
    ) -> dict[str, Any]:
        return {
            "agent_id": wallet.agent_id,
            "wallet_id": wallet.id,
            "chain": trade.chain,
            "tx_signature": trade.tx_signature,
            "block_time": trade.block_time,
            "platform": trade.platform,
            "trade_type": trade.trade_type,
            "token_in_address": trade.token_in_address,
            "token_in_amount": decimal_str(trade.token_in_amount),
            "token_out_address": trade.token_out_address,
            "token_out_amount": decimal_str(trade.token_out_amount),
            "base_asset_amount": decimal_str(trade.base_asset_amount),
            "base_asset_price_usd": decimal_str(price),
            "trade_value_usd": decimal_str(value_usd),
            "is_buyback": classify(trade, wallet.token_address),
        }

    async def _enrich(self, trade_id: str, trade: NormalizedTrade) -> dict[str, Optional[str]]:
        """Fill token symbols and names on a stored trade.

        Runs after the insert, so duplicates never reach upstream APIs and a
        failure here leaves the trade stored with empty metadata for the
        repair pass.
        """
        values: dict[str, Optional[str]] = {}
        try:
            tokens = await self.resolver.resolve(trade.chain, [trade.token_in_address, trade.token_out_address])
            token_in = tokens.get(trade.token_in_address)
            if token_in:
                values.update(token_in_symbol=token_in.symbol, token_in_name=token_in.name)
            token_out = tokens.get(trade.token_out_address)
            if token_out:
                values.update(token_out_symbol=token_out.symbol, token_out_name=token_out.name)
            if values:
                await db.update_trade_metadata(trade_id, values)
        except Exception as e:
            self.log.warning("Token enrichment failed", error=str(e), error_type=type(e).__name__, exc_info=True)
            return {}
        return values

    async def _refresh_positions(self, agent_id: str) -> None:
        # Replays are serialized per agent so a slower replay never overwrites a newer one
        lock = self._position_locks.setdefault(agent_id, asyncio.Lock())
        async with lock:
            await refresh_positions(agent_id)


trade_ingester = TradeIngester()
