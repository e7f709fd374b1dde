"""
Token metadata enrichment (symbol, name) for trades.

Lookup order: built-in base assets, the token_metadata table, then
upstream APIs (Pump.fun, Jupiter, DexScreener on Solana; DexScreener on
Monad). Failed lookups are not cached, so a later repair pass can fill
them in.
"""

from dataclasses import dataclass
from typing import Any, Iterable, Optional

import httpx

from clawledger.chains import get_spec
from clawledger.config import settings
from clawledger.db import database as db
from clawledger.db.models import ChainTag
from clawledger.exceptions import UpstreamError
from clawledger.services.http import ApiClient


@dataclass
class TokenInfo:
    """Resolved token metadata."""
    address: str
    symbol: str
    name: str
    decimals: Optional[int] = None
    logo_url: Optional[str] = None


class TokenResolver(ApiClient):
    """Resolves token symbols and names, caching hits in the database."""

    name = "token_resolver"

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(timeout=8.0, transport=transport)

    async def resolve(self, chain: ChainTag | str, addresses: Iterable[str]) -> dict[str, TokenInfo]:
        """Map address -> TokenInfo for every address that could be resolved."""
        spec = get_spec(chain)
        result: dict[str, TokenInfo] = {}
        pending: list[str] = []

        for address in {a for a in addresses if a}:
            if spec.is_base_asset(address):
                result[address] = TokenInfo(
                    address=address,
                    symbol=spec.base_asset_symbol,
                    name=spec.base_asset_name,
                    decimals=spec.decimals,
                )
            else:
                pending.append(address)

        if not pending:
            return result

        cached = await db.get_token_metadata(spec.chain, pending)
        for address, row in cached.items():
            result[address] = TokenInfo(
                address=address,
                symbol=row.symbol,
                name=row.name,
                decimals=row.decimals,
                logo_url=row.logo_url,
            )

        for address in pending:
            if address in result:
                continue
            info = await self._fetch(spec.chain, address)
            if info is None:
                self.log.debug("Token metadata unresolved", chain=spec.chain.value, token=address)
                continue
            result[address] = info
            await db.upsert_token_metadata(
                spec.chain,
                address,
                symbol=info.symbol,
                name=info.name,
                decimals=info.decimals,
                logo_url=info.logo_url,
            )

        return result

    async def repair_trade_metadata(self, limit: int = 500) -> int:
        """Fill empty symbol/name columns on stored trades. Returns trades updated."""
        trades = await db.get_trades_missing_metadata(limit)
        updated = 0
        for trade in trades:
            tokens = await self.resolve(trade.chain, [trade.token_in_address, trade.token_out_address])
            values: dict[str, Optional[str]] = {}
            token_in = tokens.get(trade.token_in_address)
            token_out = tokens.get(trade.token_out_address)
            if token_in and not trade.token_in_symbol:
                values.update(token_in_symbol=token_in.symbol, token_in_name=token_in.name)
            if token_out and not trade.token_out_symbol:
                values.update(token_out_symbol=token_out.symbol, token_out_name=token_out.name)
            if values:
                await db.update_trade_metadata(trade.id, values)
                updated += 1

        self.log.info("Trade metadata repair finished", scanned=len(trades), updated=updated)
        return updated

    # ===================
    # Upstream lookups
    # ===================

    async def _fetch(self, chain: ChainTag, address: str) -> Optional[TokenInfo]:
        if chain == ChainTag.SOLANA:
            sources = (self._from_pumpfun, self._from_jupiter, self._from_dexscreener)
        else:
            sources = (self._from_dexscreener,)

        for source in sources:
            try:
                info = await source(address)
            except (UpstreamError, AttributeError, KeyError, IndexError, TypeError, ValueError) as e:
                self.log.debug("Token metadata source failed", source=source.__name__, token=address, error=str(e))
                continue
            if info is not None:
                return info
        return None

    async def _from_pumpfun(self, address: str) -> Optional[TokenInfo]:
        data = await self._api_object("GET", f"{settings.pumpfun_api_url}/coins/{address}", params={"sync": "true"})
        return self._info(address, data.get("symbol"), data.get("name"), data.get("decimals", 6), data.get("image_uri"))

    async def _from_jupiter(self, address: str) -> Optional[TokenInfo]:
        data = await self._api_object("GET", f"{settings.jupiter_token_url}/token/{address}")
        return self._info(address, data.get("symbol"), data.get("name"), data.get("decimals"), data.get("logoURI"))

    async def _from_dexscreener(self, address: str) -> Optional[TokenInfo]:
        data = await self._api_object("GET", f"{settings.dexscreener_api_url}/latest/dex/tokens/{address}")
        pairs = data.get("pairs") or []
        if not pairs:
            return None
        token = pairs[0].get("baseToken") or {}
        return self._info(address, token.get("symbol"), token.get("name"), None, None)

    @staticmethod
    def _info(address: str, symbol: Any, name: Any, decimals: Any, logo: Any) -> Optional[TokenInfo]:
        if not symbol or not name:
            return None
        return TokenInfo(
            address=address,
            symbol=str(symbol)[:64],
            name=str(name)[:255],
            decimals=decimals if isinstance(decimals, int) else None,
            logo_url=logo or None,
        )


token_resolver = TokenResolver()
