"""
Chain adapters, one per supported chain.
Resolve an adapter by chain tag; adapters never share state.
"""

from clawledger.chains.base import ChainAdapter, ChainSpec, NormalizedTrade, RawSwap
from clawledger.chains.monad import MONAD, monad_adapter
from clawledger.chains.solana import SOLANA, solana_adapter
from clawledger.db.models import ChainTag

CHAIN_SPECS: dict[ChainTag, ChainSpec] = {
    ChainTag.SOLANA: SOLANA,
    ChainTag.MONAD: MONAD,
}

ADAPTERS: dict[ChainTag, ChainAdapter] = {
    ChainTag.SOLANA: solana_adapter,
    ChainTag.MONAD: monad_adapter,
}


def get_spec(chain: ChainTag | str) -> ChainSpec:
    """Chain parameters for a tag."""
    return CHAIN_SPECS[ChainTag(chain)]


def get_adapter(chain: ChainTag | str) -> ChainAdapter:
    """Get the adapter for a chain tag."""
    return ADAPTERS[ChainTag(chain)]


__all__ = [
    "ADAPTERS",
    "CHAIN_SPECS",
    "ChainAdapter",
    "ChainSpec",
    "NormalizedTrade",
    "RawSwap",
    "get_adapter",
    "get_spec",
]
