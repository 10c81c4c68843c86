from __future__ import annotations

import time
from dataclasses import replace
from typing import Any, Callable, Iterable

from config.defaults import CONFIG_VALUE_TYPES
from db.connection import ConnectionManager
from db.deadline import Deadline
from db.deadline import check_deadline
from db.errors import ConfigurationNotFoundError
from state.models import Configuration
from state.models import apply_saved_row


_COLUMNS = "id, config_key, config_value, value_type, category, description, created_at, updated_at"


def _row_to_configuration(row: tuple[Any, ...] | None) -> Configuration | None:
    if row is None:
        return None
    return Configuration(
        id=int(row[0]),
        key=str(row[1]),
        value=str(row[2]),
        type=str(row[3] or "string"),
        category=str(row[4]),
        description=str(row[5] or ""),
        created_at=int(row[6]),
        updated_at=int(row[7]),
    )


def _normalize_key(key: Any) -> str:
    key = str(key or "").strip()
    if not key:
        raise ValueError("configuration key is required")
    return key


def _normalize(config: Configuration) -> Configuration:
    config.key = _normalize_key(config.key)
    config.value = "" if config.value is None else str(config.value)
    config.type = str(config.type or "string").strip().lower()
    if config.type not in CONFIG_VALUE_TYPES:
        raise ValueError(f"unsupported value type: {config.type}")
    config.category = str(config.category or "general").strip()
    config.description = str(config.description or "")
    return config


def fetch_configuration_sync(conn: Any, dialect, key: str) -> Configuration | None:
    cur = conn.cursor()
    cur.execute(
        dialect.sql(f"SELECT {_COLUMNS} FROM configurations WHERE config_key = ? LIMIT 1"),
        (key,),
    )
    return _row_to_configuration(cur.fetchone())


def _insert_configuration(cur, dialect, config: Configuration) -> None:
    cur.execute(
        dialect.sql(
            """
            INSERT INTO configurations (
                config_key, config_value, value_type, category, description, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """
        ),
        (
            config.key,
            config.value,
            config.type,
            config.category,
            config.description,
            int(config.created_at),
            int(config.updated_at),
        ),
    )
    config.id = int(cur.lastrowid) if cur.lastrowid else None


def upsert_configuration_sync(
    conn: Any,
    dialect,
    config: Configuration,
    *,
    now: int,
    deadline: Deadline | None = None,
) -> Configuration:
    cur = conn.cursor()
    cur.execute(
        dialect.sql("SELECT id, created_at FROM configurations WHERE config_key = ? LIMIT 1"),
        (config.key,),
    )
    existing = cur.fetchone()
    check_deadline(deadline, "upsert configuration")

    config.updated_at = now
    if existing is None:
        if not config.created_at:
            config.created_at = now
        _insert_configuration(cur, dialect, config)
    else:
        config.id = int(existing[0])
        config.created_at = int(existing[1])
        cur.execute(
            dialect.sql(
                """
                UPDATE configurations
                SET config_value = ?, value_type = ?, category = ?, description = ?, updated_at = ?
                WHERE config_key = ?
                """
            ),
            (config.value, config.type, config.category, config.description, int(config.updated_at), config.key),
        )
    return config


def insert_configuration_if_absent_sync(conn: Any, dialect, config: Configuration, *, now: int) -> bool:
    """Insert only when the key is missing; existing values are never overwritten."""
    _normalize(config)
    cur = conn.cursor()
    cur.execute(dialect.sql("SELECT id FROM configurations WHERE config_key = ? LIMIT 1"), (config.key,))
    if cur.fetchone() is not None:
        return False
    config.created_at = config.created_at or now
    config.updated_at = now
    _insert_configuration(cur, dialect, config)
    return True


class ConfigurationStore:
    def __init__(self, manager: ConnectionManager, *, clock: Callable[[], float] = time.time) -> None:
        self._manager = manager
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    def get(self, key: str, *, deadline: Deadline | None = None) -> Configuration | None:
        key = _normalize_key(key)
        dialect = self._manager.dialect
        return self._manager.run(
            lambda conn: fetch_configuration_sync(conn, dialect, key),
            name="get configuration",
            key=key,
            deadline=deadline,
        )

    def upsert(self, config: Configuration, *, deadline: Deadline | None = None) -> Configuration:
        _normalize(config)
        dialect = self._manager.dialect
        now = self._now()
        saved = self._manager.run(
            lambda conn: upsert_configuration_sync(conn, dialect, replace(config), now=now, deadline=deadline),
            name="upsert configuration",
            key=config.key,
            deadline=deadline,
            write=True,
        )
        return apply_saved_row(config, saved)

    def insert_if_absent(self, config: Configuration, *, deadline: Deadline | None = None) -> bool:
        dialect = self._manager.dialect
        now = self._now()
        return self._manager.run(
            lambda conn: insert_configuration_if_absent_sync(conn, dialect, replace(config), now=now),
            name="seed configuration",
            key=config.key,
            deadline=deadline,
            write=True,
        )

    def seed(self, configs: Iterable[Configuration], *, deadline: Deadline | None = None) -> int:
        inserted = 0
        for config in configs:
            if self.insert_if_absent(config, deadline=deadline):
                inserted += 1
        return inserted

    def get_by_category(self, category: str, *, deadline: Deadline | None = None) -> list[Configuration]:
        dialect = self._manager.dialect

        def _fetch(conn) -> list[Configuration]:
            cur = conn.cursor()
            cur.execute(
                dialect.sql(f"SELECT {_COLUMNS} FROM configurations WHERE category = ? ORDER BY config_key"),
                (str(category),),
            )
            return [_row_to_configuration(row) for row in cur.fetchall()]

        return self._manager.run(_fetch, name="get configurations by category", key=category, deadline=deadline)

    def get_all(self, *, deadline: Deadline | None = None) -> list[Configuration]:
        dialect = self._manager.dialect

        def _fetch(conn) -> list[Configuration]:
            cur = conn.cursor()
            cur.execute(dialect.sql(f"SELECT {_COLUMNS} FROM configurations ORDER BY category, config_key"))
            return [_row_to_configuration(row) for row in cur.fetchall()]

        return self._manager.run(_fetch, name="get all configurations", deadline=deadline)

    def delete(self, key: str, *, deadline: Deadline | None = None) -> None:
        """Raises ConfigurationNotFoundError when no row matched."""
        key = _normalize_key(key)
        dialect = self._manager.dialect

        def _delete(conn) -> int:
            cur = conn.cursor()
            cur.execute(dialect.sql("DELETE FROM configurations WHERE config_key = ?"), (key,))
            return int(cur.rowcount or 0)

        removed = self._manager.run(_delete, name="delete configuration", key=key, deadline=deadline, write=True)
        if removed == 0:
            raise ConfigurationNotFoundError(key)

    def count(self, *, deadline: Deadline | None = None) -> int:
        dialect = self._manager.dialect

        def _count(conn) -> int:
            cur = conn.cursor()
            cur.execute(dialect.sql("SELECT COUNT(*) FROM configurations"))
            return int(cur.fetchone()[0])

        return self._manager.run(_count, name="count configurations", deadline=deadline)
