"""
Agent and wallet registration.
"""

from typing import Optional

from sqlalchemy.exc import IntegrityError

from clawledger.chains import get_spec
from clawledger.config import settings
from clawledger.db import database as db
from clawledger.db.models import Agent, AgentWallet, ChainTag
from clawledger.exceptions import RegistrationError, UpstreamError
from clawledger.services.helius import HeliusClient, helius_client
from clawledger.utils.logging import get_logger

logger = get_logger(__name__)


async def register_agent(name: str, bio: Optional[str] = None, avatar_url: Optional[str] = None) -> Agent:
    name = (name or "").strip()
    if not name:
        raise RegistrationError("Agent name is required")
    return await db.create_agent(name=name[:100], bio=bio, avatar_url=avatar_url)


async def register_wallet(
    agent_id: str,
    chain: ChainTag | str,
    wallet_address: str,
    token_address: Optional[str] = None,
    helius: Optional[HeliusClient] = None,
) -> AgentWallet:
    """
    Attach a wallet to an agent after validating its address format.

    Raises InvalidAddress for a malformed wallet or token address and
    RegistrationError for an unknown agent or an address already claimed
    on that chain.
    """
    spec = get_spec(chain)
    address = spec.require_address(wallet_address)
    token = spec.require_address(token_address) if token_address else None

    if await db.get_agent(agent_id) is None:
        raise RegistrationError(f"Unknown agent {agent_id}", spec.chain, "agent_not_found")

    if await db.find_wallet(spec.chain, address) is not None:
        raise RegistrationError(f"Wallet {address} is already registered", spec.chain, "duplicate_wallet")

    try:
        wallet = await db.create_wallet(agent_id, spec.chain, address, token)
    except IntegrityError:
        # Lost a race with a concurrent registration of the same address
        raise RegistrationError(f"Wallet {address} is already registered", spec.chain, "duplicate_wallet")

    logger.info(
        "Wallet registered",
        agent_id=agent_id,
        chain=spec.chain.value,
        wallet=spec.display_address(address),
        token=token,
    )

    if spec.chain == ChainTag.SOLANA:
        await _subscribe_helius(helius or helius_client, address)

    return wallet


async def _subscribe_helius(client: HeliusClient, address: str) -> None:
    """Push-delivery is optional: the fallback poller covers a missing subscription."""
    if not settings.helius_configured or not settings.helius_webhook_url:
        return
    try:
        await client.add_wallet_to_webhook(address, settings.helius_webhook_url, settings.helius_webhook_secret)
    except (UpstreamError, RuntimeError) as e:
        logger.warning("Helius webhook subscription failed", wallet=address, error=str(e))


async def set_wallet_token(wallet_id: str, token_address: str) -> AgentWallet:
    """Record the wallet's creator token. It can be set once."""
    wallet = await db.get_wallet(wallet_id)
    if wallet is None:
        raise RegistrationError(f"Unknown wallet {wallet_id}", code="wallet_not_found")

    spec = get_spec(wallet.chain)
    token = spec.require_address(token_address)

    if wallet.token_address:
        if spec.same_address(wallet.token_address, token):
            return wallet
        raise RegistrationError("Wallet token is already set", spec.chain, "token_already_set")

    await db.set_wallet_token_address(wallet_id, token)
    wallet.token_address = token
    logger.info("Wallet token registered", wallet_id=wallet_id, chain=spec.chain.value, token=token)
    return wallet
