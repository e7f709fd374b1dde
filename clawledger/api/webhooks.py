"""
Push-delivery endpoints for Helius (Solana) and Alchemy (Monad).

Signatures are verified before anything else; a bad signature is a 401
and the delivery is dropped. Verified payloads are acknowledged
immediately and processed in the background, so a provider retry of the
same request only produces duplicate observations, which the trade store
absorbs.
"""

import hashlib
import hmac
from typing import Any, Callable, Iterable, Optional

from fastapi import APIRouter, BackgroundTasks, Header, HTTPException, Request

from clawledger.api.rate_limit import limiter
from clawledger.api.schemas import WebhookAck
from clawledger.chains import get_spec
from clawledger.config import settings
from clawledger.db import database as db
from clawledger.db.models import ChainTag
from clawledger.exceptions import InvalidSignature
from clawledger.services import ingestion
from clawledger.services.ingestion import IngestOutcome, IngestResult
from clawledger.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


# ===================
# Signature verification
# ===================

def verify_bearer(authorization: Optional[str], secret: str, chain: ChainTag) -> None:
    """Helius sends the shared secret back as 'Authorization: Bearer <secret>'."""
    if not secret:
        raise InvalidSignature("Webhook secret not configured", chain)
    expected = f"Bearer {secret}"
    if not authorization or not hmac.compare_digest(authorization.encode(), expected.encode()):
        raise InvalidSignature("Authorization header mismatch", chain)


def verify_hmac(body: bytes, signature: Optional[str], signing_key: str, chain: ChainTag) -> None:
    """Alchemy signs the raw body with HMAC-SHA256 (hex digest)."""
    if not signing_key:
        raise InvalidSignature("Signing key not configured", chain)
    if not signature:
        raise InvalidSignature("Missing signature header", chain)
    digest = hmac.new(signing_key.encode(), body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(digest, signature.strip().lower()):
        raise InvalidSignature("Signature mismatch", chain)


# ===================
# Wallet matching
# ===================

def helius_addresses(tx: dict[str, Any]) -> list[str]:
    """Addresses that may identify our wallet: fee payer first, then touched accounts."""
    addresses = []
    if tx.get("feePayer"):
        addresses.append(tx["feePayer"])
    for account in tx.get("accountData") or []:
        if isinstance(account, dict) and account.get("account"):
            addresses.append(account["account"])
    return addresses


def alchemy_addresses(activity: dict[str, Any]) -> list[str]:
    """Sender, recipient, and the indexed recipient of any log."""
    addresses = [
        activity.get("fromAddress") or activity.get("from"),
        activity.get("toAddress") or activity.get("to"),
    ]
    logs = activity.get("logs") or ([activity["log"]] if isinstance(activity.get("log"), dict) else [])
    for log in logs:
        topics = log.get("topics") if isinstance(log, dict) else None
        if topics and len(topics) > 1:
            addresses.append("0x" + str(topics[1])[-40:])
    return [a for a in addresses if isinstance(a, str) and a]


async def process_deliveries(
    chain: ChainTag,
    payloads: Iterable[Any],
    addresses: Callable[[dict[str, Any]], list[str]],
) -> list[IngestResult]:
    """Route each payload to the registered wallet it belongs to and ingest it."""
    spec = get_spec(chain)
    ingester = ingestion.trade_ingester
    results: list[IngestResult] = []

    for payload in payloads:
        if not isinstance(payload, dict):
            logger.warning("Webhook item is not an object", chain=chain.value)
            results.append(IngestResult(IngestOutcome.MALFORMED))
            continue

        candidates = [spec.normalize_address(a) for a in addresses(payload) if spec.is_valid_address(a)]
        wallets = await db.find_wallets(chain, candidates)
        wallet = next((wallets[a] for a in candidates if a in wallets), None)
        if wallet is None:
            logger.debug("Webhook item for untracked wallet", chain=chain.value)
            continue

        try:
            results.append(await ingester.ingest_payload(chain, payload, wallet))
        except Exception as e:
            logger.error("Webhook item processing failed", chain=chain.value, wallet_id=wallet.id, error=str(e))

    inserted = sum(1 for r in results if r.inserted)
    logger.info("Webhook delivery processed", chain=chain.value, items=len(results), inserted=inserted)
    return results


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        logger.warning("Webhook body is not JSON", path=request.url.path)
        raise HTTPException(status_code=400, detail="Invalid JSON body")


# ===================
# Endpoints
# ===================

@router.post("/helius", response_model=WebhookAck)
@limiter.exempt
async def helius_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    authorization: Optional[str] = Header(None),
):
    """Helius enhanced SWAP webhook (array of transactions)."""
    try:
        verify_bearer(authorization, settings.webhook_secret(ChainTag.SOLANA.value), ChainTag.SOLANA)
    except InvalidSignature as e:
        logger.warning("Webhook signature rejected", chain="solana", reason=e.message)
        raise HTTPException(status_code=401, detail="Unauthorized")

    payload = await _json_body(request)
    transactions = payload if isinstance(payload, list) else [payload]
    background_tasks.add_task(process_deliveries, ChainTag.SOLANA, transactions, helius_addresses)
    return WebhookAck()


@router.post("/alchemy", response_model=WebhookAck)
@limiter.exempt
async def alchemy_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_alchemy_signature: Optional[str] = Header(None, alias="X-Alchemy-Signature"),
):
    """Alchemy address-activity / custom webhook for Monad."""
    body = await request.body()
    try:
        verify_hmac(body, x_alchemy_signature, settings.webhook_secret(ChainTag.MONAD.value), ChainTag.MONAD)
    except InvalidSignature as e:
        logger.warning("Webhook signature rejected", chain="monad", reason=e.message)
        raise HTTPException(status_code=401, detail="Unauthorized")

    payload = await _json_body(request)
    activities = (payload.get("event") or {}).get("activity") if isinstance(payload, dict) else None
    if activities is None:
        activities = payload if isinstance(payload, list) else [payload]
    background_tasks.add_task(process_deliveries, ChainTag.MONAD, activities, alchemy_addresses)
    return WebhookAck()
