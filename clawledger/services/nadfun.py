"""
nad.fun agent API client for Monad trade history.

The API has no per-wallet swap feed, so a wallet's trades are assembled
from the swap history of every token it holds or created.
"""

import asyncio
from typing import Any, Optional

import httpx

from clawledger.config import settings
from clawledger.db.models import ChainTag
from clawledger.services.http import ApiClient

MAX_PAGE = 100


class NadFunClient(ApiClient):
    """Monad transaction source backed by nad.fun."""

    name = "nadfun"

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        key = api_key if api_key is not None else settings.nadfun_api_key
        super().__init__(
            base_url=api_url or settings.nadfun_api_url,
            headers={"X-API-Key": key} if key else None,
            timeout=15.0,
            transport=transport,
            chain=ChainTag.MONAD,
        )

    async def get_holdings(self, wallet_address: str) -> list[dict[str, Any]]:
        data = await self._api_object("GET", f"/agent/holdings/{wallet_address}", params={"limit": MAX_PAGE})
        return data.get("tokens") or []

    async def get_created_tokens(self, wallet_address: str) -> list[dict[str, Any]]:
        data = await self._api_object("GET", f"/agent/token/created/{wallet_address}", params={"limit": MAX_PAGE})
        return data.get("tokens") or []

    async def get_swap_history(
        self,
        token_address: str,
        wallet_address: Optional[str] = None,
        limit: int = MAX_PAGE,
    ) -> list[dict[str, Any]]:
        """Swaps of one token, tagged with token_id (the API leaves it out)."""
        params: dict[str, Any] = {"limit": min(limit, MAX_PAGE), "trade_type": "ALL"}
        if wallet_address:
            params["account_id"] = wallet_address

        data = await self._api_object("GET", f"/agent/swap-history/{token_address}", params=params)
        swaps = []
        for swap in data.get("swaps") or []:
            info = dict(swap.get("swap_info") or {})
            info["token_id"] = token_address
            swaps.append({**swap, "swap_info": info})
        return swaps

    async def get_wallet_trades(self, wallet_address: str, limit: int = 200) -> list[dict[str, Any]]:
        """Newest-first swaps across every token the wallet holds or created."""
        holdings, created = await asyncio.gather(
            self.get_holdings(wallet_address),
            self.get_created_tokens(wallet_address),
        )

        tokens: list[str] = []
        for entry in holdings + created:
            token_id = (entry.get("token_info") or {}).get("token_id")
            if token_id and token_id not in tokens:
                tokens.append(token_id)

        if not tokens:
            return []

        histories = await asyncio.gather(
            *(self.get_swap_history(token, wallet_address, limit) for token in tokens)
        )

        seen: set[str] = set()
        swaps: list[dict[str, Any]] = []
        for swap in (s for history in histories for s in history):
            tx_hash = swap["swap_info"].get("transaction_hash")
            if not tx_hash or tx_hash in seen:
                continue
            seen.add(tx_hash)
            swaps.append(swap)

        swaps.sort(key=lambda s: s["swap_info"].get("created_at") or 0, reverse=True)
        return swaps[:limit]


nadfun_client = NadFunClient()
