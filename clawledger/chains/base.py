"""
Chain abstraction for swap normalization.

Each chain is a frozen ChainSpec (decimal exponent, base asset identity,
address rules). A ChainAdapter pairs one spec with one payload parser.
Parsers only extract raw integer amounts; unit conversion happens in the
adapter, with the adapter's own spec, so one chain's exponent can never be
applied to another chain's amounts.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional

from clawledger.db.models import ChainTag, TradeType
from clawledger.exceptions import InvalidAddress, MalformedEvent


@dataclass(frozen=True)
class ChainSpec:
    """Static description of one supported chain."""
    chain: ChainTag
    decimals: int
    base_asset_address: str
    base_asset_symbol: str
    base_asset_name: str
    is_valid_address: Callable[[str], bool]
    normalize_address: Callable[[str], str]
    display_address: Callable[[str], str]

    def to_units(self, raw: int, decimals: Optional[int] = None) -> Decimal:
        """Convert an integer on-chain amount into display units."""
        exponent = self.decimals if decimals is None else decimals
        return Decimal(raw).scaleb(-exponent)

    def same_address(self, a: Optional[str], b: Optional[str]) -> bool:
        if not a or not b:
            return False
        return self.normalize_address(a) == self.normalize_address(b)

    def is_base_asset(self, address: Optional[str]) -> bool:
        return self.same_address(address, self.base_asset_address)

    def require_address(self, address: str) -> str:
        """Validate and normalize, raising InvalidAddress on bad format."""
        if not address or not self.is_valid_address(address):
            raise InvalidAddress(f"Invalid {self.chain.value} address: {address!r}", self.chain)
        return self.normalize_address(address)


@dataclass
class RawSwap:
    """Parser output: chain-native integers, no unit conversion applied."""
    tx_signature: str
    block_time: datetime
    platform: str
    trade_type: TradeType
    token_in_address: str
    token_in_raw: int
    token_out_address: str
    token_out_raw: int
    base_asset_raw: int
    # Token-leg decimals when the payload declares them
    token_decimals: Optional[int] = None


@dataclass
class NormalizedTrade:
    """Chain-agnostic swap after adapter processing."""
    chain: ChainTag
    tx_signature: str
    wallet_address: str
    block_time: datetime
    platform: str
    trade_type: TradeType
    token_in_address: str
    token_in_amount: Decimal
    token_out_address: str
    token_out_amount: Decimal
    base_asset_amount: Decimal

    @property
    def token_address(self) -> str:
        """The non-base asset this trade moves."""
        if self.trade_type == TradeType.BUY:
            return self.token_out_address
        return self.token_in_address

    @property
    def token_amount(self) -> Decimal:
        if self.trade_type == TradeType.BUY:
            return self.token_out_amount
        return self.token_in_amount


SwapParser = Callable[[dict, ChainSpec, str], RawSwap]


class ChainAdapter:
    """Turns raw payloads for one chain into NormalizedTrade records."""

    def __init__(self, spec: ChainSpec, parser: SwapParser):
        self.spec = spec
        self._parser = parser

    @property
    def chain(self) -> ChainTag:
        return self.spec.chain

    def normalize(self, payload: dict, wallet_address: str) -> NormalizedTrade:
        """
        Normalize one payload observed for wallet_address.

        Raises UnrecognizedEvent when the payload is not a supported swap
        and MalformedEvent when it fails structural validation.
        """
        if not isinstance(payload, dict):
            raise MalformedEvent("Payload is not an object", self.chain)

        wallet = self.spec.normalize_address(wallet_address)
        raw = self._parser(payload, self.spec, wallet)
        if not raw.tx_signature:
            raise MalformedEvent("Missing transaction identifier", self.chain)

        return NormalizedTrade(
            chain=self.chain,
            tx_signature=raw.tx_signature,
            wallet_address=wallet,
            block_time=raw.block_time,
            platform=raw.platform,
            trade_type=raw.trade_type,
            token_in_address=self.spec.normalize_address(raw.token_in_address),
            token_in_amount=self._leg_units(raw.token_in_address, raw.token_in_raw, raw.token_decimals),
            token_out_address=self.spec.normalize_address(raw.token_out_address),
            token_out_amount=self._leg_units(raw.token_out_address, raw.token_out_raw, raw.token_decimals),
            base_asset_amount=self.spec.to_units(raw.base_asset_raw),
        )

    def _leg_units(self, address: str, raw: int, token_decimals: Optional[int]) -> Decimal:
        if self.spec.is_base_asset(address):
            return self.spec.to_units(raw)
        return self.spec.to_units(raw, token_decimals)


def parse_raw_amount(value: Any, chain: ChainTag, field: str) -> int:
    """Parse an integer amount that may arrive as int or string."""
    if isinstance(value, bool):
        raise MalformedEvent(f"Invalid amount for {field}: {value!r}", chain)
    if isinstance(value, int):
        return abs(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return abs(int(value.strip()))
    raise MalformedEvent(f"Invalid amount for {field}: {value!r}", chain)
