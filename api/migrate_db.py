#!/usr/bin/env python3
"""Create the board report tables, optionally dropping them first.

Reads BBOARD_DATABASE_URL (or DATABASE_URL) from the environment or api/.env.
"""

import argparse
import sys
from pathlib import Path

from dotenv import load_dotenv

_api_dir = Path(__file__).resolve().parent
if str(_api_dir) not in sys.path:
    sys.path.insert(0, str(_api_dir))

from app.adapters import board_store  # noqa: E402


def migrate_database(reset: bool = False, include_optional: bool = True) -> None:
    print(f"Connecting to {board_store.database_url().split('@')[-1]}...")
    if not board_store.ping():
        print("ERROR: database is not reachable")
        sys.exit(1)

    if reset:
        print("Dropping board tables...")
        board_store.drop_schema()

    print("Creating board tables...")
    board_store.ensure_schema(include_optional=include_optional)
    print("Database migration complete")
    if not include_optional:
        print("  - standup_quality_daily skipped; sprint health runs without quality scores")


if __name__ == "__main__":
    load_dotenv(_api_dir / ".env")
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--reset", action="store_true", help="drop existing board tables first (destructive)")
    parser.add_argument("--skip-optional", action="store_true", help="do not create optional report tables")
    args = parser.parse_args()
    migrate_database(reset=args.reset, include_optional=not args.skip_optional)
