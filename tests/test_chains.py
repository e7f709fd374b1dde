"""
Tests for chain adapters and swap normalization.
"""

from decimal import Decimal

import pytest

from clawledger.chains import get_adapter, get_spec
from clawledger.db.models import ChainTag, TradeType
from clawledger.exceptions import InvalidAddress, MalformedEvent, UnrecognizedEvent

from conftest import MON_TOKEN, MON_WALLET, SOL_TOKEN, SOL_WALLET, helius_swap, nadfun_swap


class TestChainSpecs:
    """Each chain converts amounts with its own exponent only."""

    def test_solana_lamports(self):
        """1.5 SOL arrives as 1_500_000_000 lamports."""
        assert get_spec(ChainTag.SOLANA).to_units(1_500_000_000) == Decimal("1.5")

    def test_monad_wei(self):
        """1.5 MON arrives as 1.5e18 wei."""
        assert get_spec(ChainTag.MONAD).to_units(1_500_000_000_000_000_000) == Decimal("1.5")

    def test_specs_do_not_share_exponents(self):
        """The same integer means different amounts on each chain."""
        raw = 1_000_000_000
        assert get_spec("solana").to_units(raw) == Decimal("1")
        assert get_spec("monad").to_units(raw) == Decimal("0.000000001")

    def test_monad_addresses_normalize_to_lowercase(self):
        spec = get_spec(ChainTag.MONAD)
        checksummed = spec.display_address(MON_TOKEN)
        assert checksummed != MON_TOKEN
        assert spec.require_address(checksummed) == MON_TOKEN
        assert spec.same_address(checksummed, MON_TOKEN)

    def test_solana_addresses_are_case_sensitive(self):
        spec = get_spec(ChainTag.SOLANA)
        assert spec.require_address(SOL_WALLET) == SOL_WALLET
        assert not spec.same_address(SOL_TOKEN, SOL_TOKEN.lower())

    @pytest.mark.parametrize("chain,address", [
        (ChainTag.SOLANA, "not-a-key"),
        (ChainTag.SOLANA, MON_WALLET),
        (ChainTag.MONAD, SOL_WALLET),
        (ChainTag.MONAD, "0x1234"),
        (ChainTag.MONAD, ""),
    ])
    def test_invalid_addresses_rejected(self, chain, address):
        with pytest.raises(InvalidAddress):
            get_spec(chain).require_address(address)


class TestSolanaAdapter:
    """Helius enhanced transactions."""

    def test_webhook_buy(self):
        trade = get_adapter(ChainTag.SOLANA).normalize(helius_swap("sig1"), SOL_WALLET)

        assert trade.trade_type == TradeType.BUY
        assert trade.tx_signature == "sig1"
        assert trade.platform == "PUMP_FUN"
        assert trade.base_asset_amount == Decimal("0.5")
        assert trade.token_out_address == SOL_TOKEN
        assert trade.token_out_amount == Decimal("1000")
        assert trade.token_address == SOL_TOKEN
        assert trade.block_time.tzinfo is not None

    def test_webhook_sell(self):
        tx = {
            "signature": "sig2",
            "timestamp": 1_700_000_100,
            "source": "RAYDIUM",
            "events": {
                "swap": {
                    "tokenInputs": [
                        {"mint": SOL_TOKEN, "rawTokenAmount": {"tokenAmount": "250000000", "decimals": 6}},
                    ],
                    "nativeOutput": {"account": SOL_WALLET, "amount": "2000000000"},
                }
            },
        }
        trade = get_adapter(ChainTag.SOLANA).normalize(tx, SOL_WALLET)

        assert trade.trade_type == TradeType.SELL
        assert trade.token_in_amount == Decimal("250")
        assert trade.base_asset_amount == Decimal("2")
        assert trade.token_address == SOL_TOKEN

    def test_api_format_balance_changes(self):
        """pump.fun swaps often come with empty events and only account data."""
        tx = {
            "signature": "sig3",
            "timestamp": 1_700_000_200,
            "source": "PUMP_FUN",
            "events": {},
            "accountData": [
                {"account": SOL_WALLET, "nativeBalanceChange": -300_000_000, "tokenBalanceChanges": []},
                {
                    "account": "SomeTokenAccount",
                    "nativeBalanceChange": 0,
                    "tokenBalanceChanges": [
                        {
                            "userAccount": SOL_WALLET,
                            "mint": SOL_TOKEN,
                            "rawTokenAmount": {"tokenAmount": "5000000", "decimals": 6},
                        }
                    ],
                },
            ],
        }
        trade = get_adapter(ChainTag.SOLANA).normalize(tx, SOL_WALLET)

        assert trade.trade_type == TradeType.BUY
        assert trade.base_asset_amount == Decimal("0.3")
        assert trade.token_out_amount == Decimal("5")

    def test_failed_transaction_unrecognized(self):
        tx = helius_swap("sig4")
        tx["transactionError"] = {"InstructionError": [0, "Custom"]}
        with pytest.raises(UnrecognizedEvent):
            get_adapter(ChainTag.SOLANA).normalize(tx, SOL_WALLET)

    def test_missing_signature_malformed(self):
        tx = helius_swap("sig5")
        del tx["signature"]
        with pytest.raises(MalformedEvent):
            get_adapter(ChainTag.SOLANA).normalize(tx, SOL_WALLET)

    def test_non_swap_unrecognized(self):
        tx = {"signature": "sig6", "timestamp": 1_700_000_000, "type": "TRANSFER", "accountData": []}
        with pytest.raises(UnrecognizedEvent):
            get_adapter(ChainTag.SOLANA).normalize(tx, SOL_WALLET)


class TestMonadAdapter:
    """nad.fun swap records and curve event logs."""

    def test_nadfun_buy(self):
        trade = get_adapter(ChainTag.MONAD).normalize(nadfun_swap("0xaaa"), MON_WALLET)

        assert trade.trade_type == TradeType.BUY
        assert trade.platform == "nad.fun"
        assert trade.base_asset_amount == Decimal("1.5")
        assert trade.token_out_address == MON_TOKEN
        assert trade.token_out_amount == Decimal("1000")

    def test_nadfun_sell(self):
        trade = get_adapter(ChainTag.MONAD).normalize(nadfun_swap("0xbbb", event_type="SELL"), MON_WALLET)

        assert trade.trade_type == TradeType.SELL
        assert trade.token_in_address == MON_TOKEN
        assert trade.base_asset_amount == Decimal("1.5")

    def test_other_account_unrecognized(self):
        record = nadfun_swap("0xccc", wallet="0x2222222222222222222222222222222222222222")
        with pytest.raises(UnrecognizedEvent):
            get_adapter(ChainTag.MONAD).normalize(record, MON_WALLET)

    def test_curve_buy_log(self):
        from clawledger.chains.monad import CURVE_BUY_TOPIC, NADFUN_BONDING_CURVE

        amount_in = 2 * 10**18
        amount_out = 4_000 * 10**18
        activity = {
            "hash": "0xddd",
            "timestamp": 1_700_000_000,
            "logs": [
                {
                    "address": NADFUN_BONDING_CURVE,
                    "topics": [
                        CURVE_BUY_TOPIC,
                        "0x" + "0" * 24 + MON_WALLET[2:],
                        "0x" + "0" * 24 + MON_TOKEN[2:],
                    ],
                    "data": "0x" + format(amount_in, "064x") + format(amount_out, "064x"),
                }
            ],
        }
        trade = get_adapter(ChainTag.MONAD).normalize(activity, MON_WALLET)

        assert trade.trade_type == TradeType.BUY
        assert trade.tx_signature == "0xddd"
        assert trade.base_asset_amount == Decimal("2")
        assert trade.token_out_address == MON_TOKEN
        assert trade.token_out_amount == Decimal("4000")

    def test_logs_without_curve_event_unrecognized(self):
        activity = {"hash": "0xeee", "logs": [{"address": MON_TOKEN, "topics": ["0x01"], "data": "0x"}]}
        with pytest.raises(UnrecognizedEvent):
            get_adapter(ChainTag.MONAD).normalize(activity, MON_WALLET)
