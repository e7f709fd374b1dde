"""
Helius client for Solana: signature history over RPC, enhanced
transaction lookups, and webhook address management.
"""

from typing import Any, Optional

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient as SolanaClient
from solders.pubkey import Pubkey
from solders.signature import Signature

from clawledger.config import settings
from clawledger.db.models import ChainTag
from clawledger.exceptions import UpstreamError
from clawledger.services.http import ApiClient

ENHANCED_BATCH_SIZE = 100


class HeliusClient(ApiClient):
    """Solana transaction source backed by Helius."""

    name = "helius"

    def __init__(
        self,
        api_key: Optional[str] = None,
        rpc_url: Optional[str] = None,
        api_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            base_url=api_url or settings.helius_api_url,
            headers={"Content-Type": "application/json"},
            timeout=30.0,
            transport=transport,
            chain=ChainTag.SOLANA,
        )
        self._api_key = api_key if api_key is not None else settings.helius_api_key
        self._rpc_url = rpc_url or settings.helius_rpc_url
        self._solana_client: Optional[SolanaClient] = None
        self._webhook_id: Optional[str] = None

    async def initialize(self) -> None:
        await super().initialize()
        if self._solana_client is None:
            self._solana_client = SolanaClient(f"{self._rpc_url.rstrip('/')}/?api-key={self._api_key}")
        self.log.info("Helius client initialized", api_key_set=bool(self._api_key))

    async def close(self) -> None:
        await super().close()
        if self._solana_client:
            await self._solana_client.close()
            self._solana_client = None

    # ===================
    # Transactions
    # ===================

    async def get_recent_signatures(
        self,
        wallet_address: str,
        limit: int = 100,
        until: Optional[str] = None,
    ) -> list[str]:
        """Newest-first signatures of successful transactions, stopping at `until`."""
        if not self._solana_client:
            raise RuntimeError("helius client not initialized")

        try:
            response = await self._solana_client.get_signatures_for_address(
                Pubkey.from_string(wallet_address),
                limit=min(limit, 1000),
                until=Signature.from_string(until) if until else None,
            )
        except (SolanaRpcException, httpx.HTTPError) as e:
            raise UpstreamError(f"getSignaturesForAddress failed: {e}", ChainTag.SOLANA) from e

        return [str(item.signature) for item in response.value if item.err is None]

    async def get_enhanced_transactions(self, signatures: list[str]) -> list[dict[str, Any]]:
        """Parsed transactions for signatures, fetched in batches of 100."""
        transactions: list[dict[str, Any]] = []
        for start in range(0, len(signatures), ENHANCED_BATCH_SIZE):
            batch = signatures[start:start + ENHANCED_BATCH_SIZE]
            data = await self._api_request(
                "POST",
                "/v0/transactions/",
                params={"api-key": self._api_key},
                json={"transactions": batch},
            )
            if isinstance(data, list):
                transactions.extend(tx for tx in data if isinstance(tx, dict))
        return transactions

    async def get_recent_transactions(
        self,
        wallet_address: str,
        limit: int = 100,
        until: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        signatures = await self.get_recent_signatures(wallet_address, limit=limit, until=until)
        if not signatures:
            return []
        return await self.get_enhanced_transactions(signatures)

    # ===================
    # Webhooks
    # ===================

    async def add_wallet_to_webhook(self, wallet_address: str, webhook_url: str, webhook_secret: str) -> str:
        """Add an address to our SWAP webhook, creating the webhook if needed."""
        params = {"api-key": self._api_key}

        if self._webhook_id is None:
            webhooks = await self._api_list("GET", "/v0/webhooks", params=params)
            for hook in webhooks or []:
                if hook.get("webhookURL") == webhook_url:
                    self._webhook_id = hook.get("webhookID")
                    break

        if self._webhook_id is None:
            created = await self._api_object(
                "POST",
                "/v0/webhooks",
                params=params,
                json={
                    "webhookURL": webhook_url,
                    "transactionTypes": ["SWAP"],
                    "accountAddresses": [wallet_address],
                    "webhookType": "enhanced",
                    "authHeader": f"Bearer {webhook_secret}",
                },
            )
            self._webhook_id = created.get("webhookID")
            self.log.info("Helius webhook created", webhook_id=self._webhook_id)
            return self._webhook_id

        current = await self._api_object("GET", f"/v0/webhooks/{self._webhook_id}", params=params)
        addresses = list(current.get("accountAddresses") or [])
        if wallet_address not in addresses:
            addresses.append(wallet_address)
            await self._api_request(
                "PUT",
                f"/v0/webhooks/{self._webhook_id}",
                params=params,
                json={"accountAddresses": addresses},
            )
            self.log.info("Wallet added to Helius webhook", wallet=wallet_address, total=len(addresses))
        return self._webhook_id


helius_client = HeliusClient()
