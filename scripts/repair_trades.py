#!/usr/bin/env python3
"""
Repair passes over the stored trade ledger.

    python scripts/repair_trades.py buybacks [--wallet WALLET_ID]
    python scripts/repair_trades.py metadata [--limit 500]
    python scripts/repair_trades.py positions [--agent AGENT_ID]

buybacks   re-flag trades against each wallet's current token
metadata   fill missing token symbols/names
positions  rebuild derived positions from trade history
"""
import argparse
import asyncio

from clawledger.config import settings
from clawledger.db import database as db
from clawledger.services.buyback import repair_buybacks
from clawledger.services.pnl import refresh_positions
from clawledger.services.token_resolver import token_resolver
from clawledger.utils.logging import setup_logging


async def repair_positions(agent_id: str | None) -> int:
    agent_ids = [agent_id] if agent_id else [a.id for a in await db.get_all_agents()]
    for current in agent_ids:
        await refresh_positions(current)
    return len(agent_ids)


async def main(args: argparse.Namespace) -> None:
    setup_logging(settings.log_level, settings.log_json)
    await db.init_db(settings.database_url)
    await token_resolver.initialize()

    try:
        if args.command == "buybacks":
            changed = await repair_buybacks(args.wallet)
            print(f"Buyback flags changed: {changed}")
            # Buyback flags decide what enters positions
            rebuilt = await repair_positions(None)
            print(f"Positions rebuilt for {rebuilt} agent(s)")
        elif args.command == "metadata":
            updated = await token_resolver.repair_trade_metadata(args.limit)
            print(f"Trades updated: {updated}")
        elif args.command == "positions":
            rebuilt = await repair_positions(args.agent)
            print(f"Positions rebuilt for {rebuilt} agent(s)")
    finally:
        await token_resolver.close()
        await db.close_db()


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Repair the trade ledger")
    sub = parser.add_subparsers(dest="command", required=True)

    buybacks = sub.add_parser("buybacks", help="Recompute buyback flags")
    buybacks.add_argument("--wallet", help="Only this wallet id")

    metadata = sub.add_parser("metadata", help="Fill missing token metadata")
    metadata.add_argument("--limit", type=int, default=500)

    positions = sub.add_parser("positions", help="Rebuild positions")
    positions.add_argument("--agent", help="Only this agent id")

    return parser.parse_args()


if __name__ == "__main__":
    asyncio.run(main(parse_args()))
