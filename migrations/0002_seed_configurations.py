from __future__ import annotations

import os
import time
from typing import Any

from config.seed import DEFAULT_SEED_PATH
from config.seed import load_seed_configurations
from state.configuration_store import insert_configuration_if_absent_sync


def upgrade(conn: Any, dialect) -> None:
    seed_path = (os.getenv("CONFIG_SEED_PATH") or "").strip() or DEFAULT_SEED_PATH
    entries, warning = load_seed_configurations(seed_path)
    if warning:
        print(f"[CFG] {warning}")
    now = int(time.time())
    inserted = 0
    for entry in entries:
        if insert_configuration_if_absent_sync(conn, dialect, entry, now=now):
            inserted += 1
    print(f"[CFG] seeded configurations inserted={inserted} total={len(entries)}")
