"""
Monad swap parsing for nad.fun bonding-curve trades.

Two payload shapes are accepted:
- nad.fun API swap records ({"swap_info": {...}}), the poller's source
- transaction logs carrying CurveBuy / CurveSell events, as delivered by
  Alchemy address-activity webhooks
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from web3 import Web3

from clawledger.chains.base import ChainAdapter, ChainSpec, RawSwap, parse_raw_amount
from clawledger.db.models import ChainTag, TradeType
from clawledger.exceptions import MalformedEvent, UnrecognizedEvent

WMON_ADDRESS = "0x3bd359C1119dA7Da1D913D1C4D2B7c461115433A"
MON_DECIMALS = 18

NADFUN_BONDING_CURVE = "0xA7283d07812a02AFB7C09B60f8896bCEA3F90aCE"
NADFUN_ROUTER = "0x6F6B8F1a20703309951a5127c45B49b1CD981A22"
NADFUN_CONTRACTS = {NADFUN_BONDING_CURVE.lower(), NADFUN_ROUTER.lower()}
NADFUN_PLATFORM = "nad.fun"

# event CurveBuy/CurveSell(address indexed to, address indexed token,
#                          uint256 actualAmountIn, uint256 effectiveAmountOut)
CURVE_BUY_TOPIC = Web3.to_hex(Web3.keccak(text="CurveBuy(address,address,uint256,uint256)")).lower()
CURVE_SELL_TOPIC = Web3.to_hex(Web3.keccak(text="CurveSell(address,address,uint256,uint256)")).lower()


def is_evm_address(address: str) -> bool:
    return isinstance(address, str) and Web3.is_address(address)


def _lower(address: str) -> str:
    return address.strip().lower() if address else address


def _checksum(address: str) -> str:
    return Web3.to_checksum_address(address)


MONAD = ChainSpec(
    chain=ChainTag.MONAD,
    decimals=MON_DECIMALS,
    base_asset_address=WMON_ADDRESS,
    base_asset_symbol="MON",
    base_asset_name="Monad",
    is_valid_address=is_evm_address,
    normalize_address=_lower,
    display_address=_checksum,
)


def _wei(value: Any, field: str) -> int:
    """nad.fun amounts are wei strings; tolerate decimal strings in MON."""
    if isinstance(value, str) and "." in value:
        try:
            return int(abs(Decimal(value)).scaleb(MON_DECIMALS))
        except InvalidOperation:
            raise MalformedEvent(f"Invalid amount for {field}: {value!r}", ChainTag.MONAD)
    return parse_raw_amount(value, ChainTag.MONAD, field)


def _parse_nadfun_record(record: dict, wallet: str) -> RawSwap:
    info = record.get("swap_info")
    if not isinstance(info, dict):
        raise MalformedEvent("nad.fun swap missing swap_info", ChainTag.MONAD)

    signature = info.get("transaction_hash")
    token = info.get("token_id")
    if not signature or not token:
        raise MalformedEvent("nad.fun swap missing transaction_hash or token_id", ChainTag.MONAD)

    # account_id is omitted when the API was already filtered by wallet
    account = info.get("account_id")
    if account and account.lower() != wallet:
        raise UnrecognizedEvent(f"Swap {signature} belongs to another account", ChainTag.MONAD)

    created_at = info.get("created_at")
    if not isinstance(created_at, (int, float)) or isinstance(created_at, bool):
        raise MalformedEvent(f"Invalid created_at for {signature}", ChainTag.MONAD)
    block_time = datetime.fromtimestamp(created_at, tz=timezone.utc)

    native = _wei(info.get("native_amount"), "native_amount")
    amount = _wei(info.get("token_amount"), "token_amount")

    event_type = str(info.get("event_type", "")).upper()
    if event_type == "BUY":
        return RawSwap(
            tx_signature=signature,
            block_time=block_time,
            platform=NADFUN_PLATFORM,
            trade_type=TradeType.BUY,
            token_in_address=WMON_ADDRESS,
            token_in_raw=native,
            token_out_address=token,
            token_out_raw=amount,
            base_asset_raw=native,
        )
    if event_type == "SELL":
        return RawSwap(
            tx_signature=signature,
            block_time=block_time,
            platform=NADFUN_PLATFORM,
            trade_type=TradeType.SELL,
            token_in_address=token,
            token_in_raw=amount,
            token_out_address=WMON_ADDRESS,
            token_out_raw=native,
            base_asset_raw=native,
        )
    raise UnrecognizedEvent(f"Unsupported nad.fun event type {event_type!r}", ChainTag.MONAD)


def _topic_address(topic: str) -> str:
    return "0x" + topic[-40:].lower()


def _find_curve_event(logs: list, wallet: str) -> Optional[tuple[str, str, int, int]]:
    """Return (topic0, token, amount_in, amount_out) for the wallet's curve event."""
    for log in logs:
        if not isinstance(log, dict):
            continue
        address = str(log.get("address", "")).lower()
        if address not in NADFUN_CONTRACTS:
            continue
        topics = log.get("topics") or []
        if len(topics) < 3:
            continue
        topic0 = str(topics[0]).lower()
        if topic0 not in (CURVE_BUY_TOPIC, CURVE_SELL_TOPIC):
            continue
        if _topic_address(str(topics[1])) != wallet:
            continue

        data = str(log.get("data", ""))
        if data.startswith("0x"):
            data = data[2:]
        if len(data) < 128:
            raise MalformedEvent("Curve event data too short", ChainTag.MONAD)
        try:
            amount_in = int(data[0:64], 16)
            amount_out = int(data[64:128], 16)
        except ValueError:
            raise MalformedEvent("Curve event data is not hex", ChainTag.MONAD)
        return topic0, _topic_address(str(topics[2])), amount_in, amount_out
    return None


def _activity_time(payload: dict) -> datetime:
    raw = payload.get("timestamp")
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return datetime.fromtimestamp(raw, tz=timezone.utc)
    if isinstance(raw, str):
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        except ValueError:
            pass
    # Alchemy activity may omit the block timestamp
    return datetime.now(timezone.utc)


def _parse_logs(payload: dict, wallet: str) -> RawSwap:
    signature = payload.get("hash") or payload.get("transactionHash") or payload.get("signature")
    if not signature:
        raise MalformedEvent("Missing transaction hash", ChainTag.MONAD)

    logs = payload.get("logs")
    if logs is None:
        single = payload.get("log")
        logs = [single] if isinstance(single, dict) else []
    if not isinstance(logs, list):
        raise MalformedEvent("logs is not a list", ChainTag.MONAD)

    found = _find_curve_event(logs, wallet)
    if not found:
        raise UnrecognizedEvent(f"No nad.fun curve event for wallet in {signature}", ChainTag.MONAD)

    topic0, token, amount_in, amount_out = found
    block_time = _activity_time(payload)

    if topic0 == CURVE_BUY_TOPIC:
        return RawSwap(
            tx_signature=signature,
            block_time=block_time,
            platform=NADFUN_PLATFORM,
            trade_type=TradeType.BUY,
            token_in_address=WMON_ADDRESS,
            token_in_raw=amount_in,
            token_out_address=token,
            token_out_raw=amount_out,
            base_asset_raw=amount_in,
        )
    return RawSwap(
        tx_signature=signature,
        block_time=block_time,
        platform=NADFUN_PLATFORM,
        trade_type=TradeType.SELL,
        token_in_address=token,
        token_in_raw=amount_in,
        token_out_address=WMON_ADDRESS,
        token_out_raw=amount_out,
        base_asset_raw=amount_out,
    )


def parse_monad_swap(payload: dict, spec: ChainSpec, wallet: str) -> RawSwap:
    """Parse a nad.fun API record or a log-bearing transaction for the wallet."""
    record = payload.get("nadFunSwap") or payload
    if isinstance(record, dict) and "swap_info" in record:
        return _parse_nadfun_record(record, wallet)
    return _parse_logs(payload, wallet)


monad_adapter = ChainAdapter(MONAD, parse_monad_swap)
