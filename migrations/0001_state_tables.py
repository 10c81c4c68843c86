from __future__ import annotations

from typing import Any

from db.schema import create_state_tables


def upgrade(conn: Any, dialect) -> None:
    create_state_tables(conn, dialect)
