"""
Copy bot state from a SQLite file into the database configured in the environment.

Typical use is moving a single-node deployment onto MySQL:

    DATABASE_TYPE=mysql MYSQL_USERNAME=... MYSQL_PASSWORD=... \
        python -m scripts.transfer_state --source-path ./data/bot_state.db
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Sequence

from config.errors import SettingsError
from config.settings import DatabaseSettings
from config.settings import load_database_settings
from db.errors import StoreError
from db.transfer import transfer_state
from db.transfer import validate_transfer
from state.storage import StateStorage


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Transfer message checkpoints, thread ownerships and configurations between backends.",
    )
    parser.add_argument(
        "--source-path",
        type=Path,
        default=Path("data") / "bot_state.db",
        help="Path to the source SQLite database.",
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        help="Compare source and target without copying anything.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    source_path = args.source_path.expanduser().resolve()
    if not source_path.exists():
        print(f"[DB] source database not found: {source_path}")
        return 2

    try:
        target_settings = load_database_settings()
    except SettingsError as e:
        print(f"[DB] invalid target settings: {e}")
        return 2

    source_settings = DatabaseSettings(database_type="sqlite", database_path=str(source_path))
    if target_settings.database_type == "sqlite" and Path(target_settings.database_path).resolve() == source_path:
        print("[DB] source and target are the same database; nothing to do")
        return 2

    try:
        with StateStorage(source_settings) as source, StateStorage(target_settings) as target:
            if not args.validate_only:
                transfer_state(source, target)
            validate_transfer(source, target)
    except StoreError as e:
        print(f"[DB] transfer failed: {e}")
        return 1

    print("[DB] transfer validated")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
