"""
Solana swap parsing for Helius enhanced transactions.

Handles both shapes Helius produces:
- webhook format: events.swap with nativeInput/nativeOutput/tokenInputs/tokenOutputs
- API format: accountData with nativeBalanceChange + tokenBalanceChanges
  (common for pump.fun swaps where events is empty), with tokenTransfers
  as a last resort.
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from solders.pubkey import Pubkey

from clawledger.chains.base import ChainAdapter, ChainSpec, RawSwap, parse_raw_amount
from clawledger.db.models import ChainTag, TradeType
from clawledger.exceptions import MalformedEvent, UnrecognizedEvent

SOL_MINT = "So11111111111111111111111111111111111111112"
SOL_DECIMALS = 9


def is_solana_address(address: str) -> bool:
    """Base58 public key check."""
    if not isinstance(address, str) or not 32 <= len(address) <= 44:
        return False
    try:
        Pubkey.from_string(address)
    except ValueError:
        return False
    return True


def _identity(address: str) -> str:
    return address.strip() if address else address


SOLANA = ChainSpec(
    chain=ChainTag.SOLANA,
    decimals=SOL_DECIMALS,
    base_asset_address=SOL_MINT,
    base_asset_symbol="SOL",
    base_asset_name="Solana",
    is_valid_address=is_solana_address,
    normalize_address=_identity,
    display_address=_identity,
)


def _block_time(tx: dict) -> datetime:
    ts = tx.get("timestamp")
    if not isinstance(ts, (int, float)) or isinstance(ts, bool):
        raise MalformedEvent(f"Missing timestamp for {tx.get('signature')}", ChainTag.SOLANA)
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def _platform(tx: dict) -> str:
    inner = ((tx.get("events") or {}).get("swap") or {}).get("innerSwaps") or []
    if inner:
        source = (inner[0].get("programInfo") or {}).get("source")
        if source:
            return source
    return tx.get("source") or "UNKNOWN"


def _token_raw(entry: dict, field: str) -> tuple[int, Optional[int]]:
    raw = entry.get("rawTokenAmount") or {}
    amount = parse_raw_amount(raw.get("tokenAmount"), ChainTag.SOLANA, field)
    decimals = raw.get("decimals")
    return amount, decimals if isinstance(decimals, int) else None


def _parse_webhook_format(swap: dict, signature: str, block_time: datetime, platform: str) -> RawSwap:
    native_in = swap.get("nativeInput")
    native_out = swap.get("nativeOutput")
    token_ins: list = swap.get("tokenInputs") or []
    token_outs: list = swap.get("tokenOutputs") or []

    if native_in and token_outs:
        sol = parse_raw_amount(native_in.get("amount"), ChainTag.SOLANA, "nativeInput.amount")
        amount, decimals = _token_raw(token_outs[0], "tokenOutputs.tokenAmount")
        return RawSwap(
            tx_signature=signature,
            block_time=block_time,
            platform=platform,
            trade_type=TradeType.BUY,
            token_in_address=SOL_MINT,
            token_in_raw=sol,
            token_out_address=token_outs[0].get("mint") or "",
            token_out_raw=amount,
            base_asset_raw=sol,
            token_decimals=decimals,
        )

    if token_ins and native_out:
        sol = parse_raw_amount(native_out.get("amount"), ChainTag.SOLANA, "nativeOutput.amount")
        amount, decimals = _token_raw(token_ins[0], "tokenInputs.tokenAmount")
        return RawSwap(
            tx_signature=signature,
            block_time=block_time,
            platform=platform,
            trade_type=TradeType.SELL,
            token_in_address=token_ins[0].get("mint") or "",
            token_in_raw=amount,
            token_out_address=SOL_MINT,
            token_out_raw=sol,
            base_asset_raw=sol,
            token_decimals=decimals,
        )

    if token_ins and token_outs:
        # Token -> token: no base asset moves, so the trade has no USD value
        in_amount, decimals = _token_raw(token_ins[0], "tokenInputs.tokenAmount")
        out_amount, _ = _token_raw(token_outs[0], "tokenOutputs.tokenAmount")
        return RawSwap(
            tx_signature=signature,
            block_time=block_time,
            platform=platform,
            trade_type=TradeType.BUY,
            token_in_address=token_ins[0].get("mint") or "",
            token_in_raw=in_amount,
            token_out_address=token_outs[0].get("mint") or "",
            token_out_raw=out_amount,
            base_asset_raw=0,
            token_decimals=decimals,
        )

    raise UnrecognizedEvent(f"Swap event without usable legs: {signature}", ChainTag.SOLANA)


def _transfer_raw(transfer: dict) -> tuple[int, int]:
    decimals = transfer.get("decimals")
    if not isinstance(decimals, int):
        decimals = 6
    try:
        amount = Decimal(str(transfer.get("tokenAmount", 0)))
    except InvalidOperation:
        raise MalformedEvent("Invalid tokenTransfers amount", ChainTag.SOLANA)
    return int(abs(amount).scaleb(decimals)), decimals


def _parse_api_format(tx: dict, signature: str, block_time: datetime, platform: str, wallet: str) -> RawSwap:
    account_data: list = tx.get("accountData") or []
    transfers: list = tx.get("tokenTransfers") or []

    sol_delta = 0
    for account in account_data:
        if account.get("account") == wallet:
            change = account.get("nativeBalanceChange") or 0
            if not isinstance(change, int):
                raise MalformedEvent("Invalid nativeBalanceChange", ChainTag.SOLANA)
            sol_delta = change
            break

    # (mint, raw amount, signed direction, decimals)
    changes: list[tuple[str, int, int, Optional[int]]] = []
    for account in account_data:
        for change in account.get("tokenBalanceChanges") or []:
            if change.get("userAccount") != wallet:
                continue
            raw = change.get("rawTokenAmount") or {}
            text = str(raw.get("tokenAmount", "0"))
            amount = parse_raw_amount(text, ChainTag.SOLANA, "tokenBalanceChanges.tokenAmount")
            direction = -1 if text.strip().startswith("-") else 1
            decimals = raw.get("decimals")
            changes.append((change.get("mint") or "", amount, direction, decimals if isinstance(decimals, int) else None))

    if not changes:
        for transfer in transfers:
            if transfer.get("fromUserAccount") == wallet:
                amount, decimals = _transfer_raw(transfer)
                changes.append((transfer.get("mint") or "", amount, -1, decimals))
            elif transfer.get("toUserAccount") == wallet:
                amount, decimals = _transfer_raw(transfer)
                changes.append((transfer.get("mint") or "", amount, 1, decimals))

    sent = [c for c in changes if c[2] < 0 and c[1] > 0]
    received = [c for c in changes if c[2] > 0 and c[1] > 0]
    sol = abs(sol_delta)

    if sol_delta > 0 and sent:
        mint, amount, _, decimals = sent[0]
        return RawSwap(
            tx_signature=signature,
            block_time=block_time,
            platform=platform,
            trade_type=TradeType.SELL,
            token_in_address=mint,
            token_in_raw=amount,
            token_out_address=SOL_MINT,
            token_out_raw=sol,
            base_asset_raw=sol,
            token_decimals=decimals,
        )

    if sol_delta < 0 and received:
        mint, amount, _, decimals = received[0]
        return RawSwap(
            tx_signature=signature,
            block_time=block_time,
            platform=platform,
            trade_type=TradeType.BUY,
            token_in_address=SOL_MINT,
            token_in_raw=sol,
            token_out_address=mint,
            token_out_raw=amount,
            base_asset_raw=sol,
            token_decimals=decimals,
        )

    if sent and received:
        return RawSwap(
            tx_signature=signature,
            block_time=block_time,
            platform=platform,
            trade_type=TradeType.BUY,
            token_in_address=sent[0][0],
            token_in_raw=sent[0][1],
            token_out_address=received[0][0],
            token_out_raw=received[0][1],
            base_asset_raw=0,
            token_decimals=received[0][3],
        )

    raise UnrecognizedEvent(f"No swap balance changes for wallet in {signature}", ChainTag.SOLANA)


def parse_solana_swap(tx: dict, spec: ChainSpec, wallet: str) -> RawSwap:
    """Parse one Helius enhanced transaction for the given wallet."""
    if tx.get("transactionError"):
        raise UnrecognizedEvent(f"Failed transaction: {tx.get('signature')}", ChainTag.SOLANA)

    signature = tx.get("signature")
    if not isinstance(signature, str) or not signature:
        raise MalformedEvent("Missing signature", ChainTag.SOLANA)

    block_time = _block_time(tx)
    platform = _platform(tx)

    swap: Any = (tx.get("events") or {}).get("swap")
    if swap and (
        swap.get("nativeInput")
        or swap.get("nativeOutput")
        or swap.get("tokenInputs")
        or swap.get("tokenOutputs")
    ):
        return _parse_webhook_format(swap, signature, block_time, platform)

    return _parse_api_format(tx, signature, block_time, platform, wallet)


solana_adapter = ChainAdapter(SOLANA, parse_solana_swap)
