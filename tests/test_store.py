"""
Tests for the trade store and registration.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from clawledger.chains import get_spec
from clawledger.db import database as db
from clawledger.db.models import ChainTag, TradeType
from clawledger.exceptions import InvalidAddress, RegistrationError
from clawledger.services import registration

from conftest import MON_TOKEN, MON_WALLET, SOL_TOKEN, SOL_WALLET, SOL_WALLET_2


def _trade_values(wallet, signature: str = "sig-1") -> dict:
    return {
        "agent_id": wallet.agent_id,
        "wallet_id": wallet.id,
        "chain": wallet.chain,
        "tx_signature": signature,
        "block_time": datetime(2024, 1, 1, tzinfo=timezone.utc),
        "platform": "PUMP_FUN",
        "trade_type": TradeType.BUY,
        "token_in_address": "So11111111111111111111111111111111111111112",
        "token_in_amount": "0.5",
        "token_out_address": SOL_TOKEN,
        "token_out_amount": "1000",
        "base_asset_amount": "0.5",
        "base_asset_price_usd": "100",
        "trade_value_usd": "50",
        "is_buyback": False,
    }


class TestInsertTrade:
    """Idempotent insert keyed by (tx_signature, chain)."""

    @pytest.mark.asyncio
    async def test_second_insert_is_duplicate(self, solana_wallet):
        first = await db.insert_trade(_trade_values(solana_wallet))
        second = await db.insert_trade(_trade_values(solana_wallet))

        assert first.inserted
        assert first.trade_id
        assert not second.inserted
        assert second.outcome == db.InsertOutcome.ALREADY_EXISTS

        trades, total = await db.get_trades_by_agent(solana_wallet.agent_id)
        assert total == 1
        assert trades[0].id == first.trade_id

    @pytest.mark.asyncio
    async def test_concurrent_inserts_single_winner(self, solana_wallet):
        results = await asyncio.gather(*(db.insert_trade(_trade_values(solana_wallet)) for _ in range(5)))

        assert sum(1 for r in results if r.inserted) == 1
        _, total = await db.get_trades_by_agent(solana_wallet.agent_id)
        assert total == 1

    @pytest.mark.asyncio
    async def test_same_signature_other_chain_is_distinct(self, solana_wallet, monad_wallet):
        values = _trade_values(monad_wallet, "shared-id")
        values["token_out_address"] = MON_TOKEN

        assert (await db.insert_trade(_trade_values(solana_wallet, "shared-id"))).inserted
        assert (await db.insert_trade(values)).inserted
        assert await db.trade_exists(ChainTag.SOLANA, "shared-id")
        assert await db.trade_exists(ChainTag.MONAD, "shared-id")

    @pytest.mark.asyncio
    async def test_pagination(self, solana_wallet):
        for i in range(5):
            await db.insert_trade(_trade_values(solana_wallet, f"sig-{i}"))

        page, total = await db.get_trades_by_agent(solana_wallet.agent_id, page=2, limit=2)
        assert total == 5
        assert len(page) == 2


class TestRegistration:
    """Agent and wallet registration."""

    @pytest.mark.asyncio
    async def test_register_agent_requires_name(self, database):
        with pytest.raises(RegistrationError):
            await registration.register_agent("   ")

    @pytest.mark.asyncio
    async def test_register_wallet_normalizes_monad(self, agent):
        checksummed = get_spec(ChainTag.MONAD).display_address(MON_TOKEN)
        wallet = await registration.register_wallet(agent.id, "monad", MON_WALLET, checksummed)

        assert wallet.chain == ChainTag.MONAD
        assert wallet.wallet_address == MON_WALLET
        assert wallet.token_address == MON_TOKEN

    @pytest.mark.asyncio
    async def test_register_wallet_rejects_bad_address(self, agent):
        with pytest.raises(InvalidAddress):
            await registration.register_wallet(agent.id, ChainTag.SOLANA, MON_WALLET)

    @pytest.mark.asyncio
    async def test_register_wallet_unknown_agent(self, database):
        with pytest.raises(RegistrationError) as exc:
            await registration.register_wallet("missing", ChainTag.SOLANA, SOL_WALLET)
        assert exc.value.code == "agent_not_found"

    @pytest.mark.asyncio
    async def test_register_wallet_duplicate(self, agent):
        other = await registration.register_agent("Other")
        await registration.register_wallet(agent.id, ChainTag.SOLANA, SOL_WALLET)

        with pytest.raises(RegistrationError) as exc:
            await registration.register_wallet(other.id, ChainTag.SOLANA, SOL_WALLET)
        assert exc.value.code == "duplicate_wallet"

    @pytest.mark.asyncio
    async def test_concurrent_claims_single_owner(self, agent):
        other = await registration.register_agent("Other")

        results = await asyncio.gather(
            registration.register_wallet(agent.id, ChainTag.MONAD, MON_WALLET),
            registration.register_wallet(other.id, ChainTag.MONAD, MON_WALLET),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], RegistrationError)
        assert errors[0].code == "duplicate_wallet"
        owners = [w for w in await db.get_all_wallets() if w.wallet_address == MON_WALLET.lower()]
        assert len(owners) == 1

    @pytest.mark.asyncio
    async def test_wallet_token_set_once(self, agent):
        wallet = await registration.register_wallet(agent.id, ChainTag.SOLANA, SOL_WALLET_2)

        updated = await registration.set_wallet_token(wallet.id, SOL_TOKEN)
        assert updated.token_address == SOL_TOKEN

        # Same token again is a no-op
        again = await registration.set_wallet_token(wallet.id, SOL_TOKEN)
        assert again.token_address == SOL_TOKEN

        with pytest.raises(RegistrationError) as exc:
            await registration.set_wallet_token(wallet.id, "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
        assert exc.value.code == "token_already_set"
