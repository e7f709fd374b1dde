#!/usr/bin/env python
"""
Apply or inspect the ledger schema with alembic.

    python scripts/migrate.py upgrade            # to head
    python scripts/migrate.py downgrade base     # drop every table
    python scripts/migrate.py upgrade --sql      # print DDL only
    python scripts/migrate.py current -d postgresql://...

The database URL comes from --database-url, then DATABASE_URL / .env.
"""

import argparse
import os
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config

from clawledger.db.database import async_database_url

ROOT = Path(__file__).resolve().parent.parent

COMMANDS = {
    "upgrade": lambda cfg, args: command.upgrade(cfg, args.revision or "head", sql=args.sql),
    "downgrade": lambda cfg, args: command.downgrade(cfg, args.revision or "-1", sql=args.sql),
    "current": lambda cfg, args: command.current(cfg, verbose=True),
    "history": lambda cfg, args: command.history(cfg, indicate_current=True),
    "stamp": lambda cfg, args: command.stamp(cfg, args.revision or "head"),
}


def _resolve_url(explicit: str | None) -> str | None:
    if explicit:
        return explicit
    if os.environ.get("DATABASE_URL"):
        return os.environ["DATABASE_URL"]
    # Fall back to .env through the service settings
    from pydantic import ValidationError

    from clawledger.config import Settings

    try:
        return Settings().database_url
    except ValidationError:
        return None


def alembic_config(database_url: str) -> Config:
    """alembic.ini from the repo root, pointed at the ledger database."""
    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "alembic"))
    cfg.set_main_option("sqlalchemy.url", async_database_url(database_url))
    return cfg


def main() -> int:
    parser = argparse.ArgumentParser(description="ClawLedger schema migrations")
    parser.add_argument("command", choices=sorted(COMMANDS))
    parser.add_argument("revision", nargs="?", help="Target revision (upgrade: head, downgrade: -1)")
    parser.add_argument("--database-url", "-d", help="Overrides DATABASE_URL")
    parser.add_argument("--sql", action="store_true", help="Print SQL instead of executing (upgrade/downgrade)")
    args = parser.parse_args()

    database_url = _resolve_url(args.database_url)
    if not database_url:
        print("DATABASE_URL is not set; pass --database-url or add it to .env", file=sys.stderr)
        return 2

    host = database_url.rsplit("@", 1)[-1]
    print(f"alembic {args.command} {args.revision or ''} on {host}".rstrip())

    COMMANDS[args.command](alembic_config(database_url), args)
    return 0


if __name__ == "__main__":
    sys.exit(main())
