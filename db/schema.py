from __future__ import annotations

from typing import Any

from db.errors import SchemaError


_SQLITE_TABLES = (
    """
    CREATE TABLE IF NOT EXISTS message_checkpoints (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        channel_id TEXT NOT NULL,
        thread_id TEXT NULL,
        last_message_id TEXT NOT NULL,
        last_seen_at INTEGER NOT NULL,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL,
        UNIQUE(channel_id, thread_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS thread_ownerships (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        thread_id TEXT NOT NULL UNIQUE,
        original_user_id TEXT NOT NULL,
        created_by TEXT NOT NULL,
        creation_time INTEGER NOT NULL,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS configurations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        config_key TEXT NOT NULL UNIQUE,
        config_value TEXT NOT NULL,
        value_type TEXT NOT NULL DEFAULT 'string',
        category TEXT NOT NULL,
        description TEXT,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL
    )
    """,
)

_MYSQL_TABLES = (
    """
    CREATE TABLE IF NOT EXISTS message_checkpoints (
        id BIGINT PRIMARY KEY AUTO_INCREMENT,
        channel_id VARCHAR(255) NOT NULL,
        thread_id VARCHAR(255) NULL,
        last_message_id VARCHAR(255) NOT NULL,
        last_seen_at BIGINT NOT NULL,
        created_at BIGINT NOT NULL,
        updated_at BIGINT NOT NULL,
        UNIQUE KEY unique_channel_thread (channel_id, thread_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS thread_ownerships (
        id BIGINT PRIMARY KEY AUTO_INCREMENT,
        thread_id VARCHAR(255) NOT NULL UNIQUE,
        original_user_id VARCHAR(255) NOT NULL,
        created_by VARCHAR(255) NOT NULL,
        creation_time BIGINT NOT NULL,
        created_at BIGINT NOT NULL,
        updated_at BIGINT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS configurations (
        id BIGINT PRIMARY KEY AUTO_INCREMENT,
        config_key VARCHAR(255) NOT NULL UNIQUE,
        config_value TEXT NOT NULL,
        value_type ENUM('string', 'int', 'bool', 'duration') NOT NULL DEFAULT 'string',
        category VARCHAR(100) NOT NULL,
        description TEXT,
        created_at BIGINT NOT NULL,
        updated_at BIGINT NOT NULL
    )
    """,
)

# (index name, table, columns)
STATE_INDEXES = (
    ("idx_message_checkpoints_channel_thread", "message_checkpoints", "channel_id, thread_id"),
    ("idx_message_checkpoints_last_seen_at", "message_checkpoints", "last_seen_at"),
    ("idx_thread_ownerships_thread_id", "thread_ownerships", "thread_id"),
    ("idx_thread_ownerships_creation_time", "thread_ownerships", "creation_time"),
    ("idx_configurations_category", "configurations", "category"),
    ("idx_configurations_key_category", "configurations", "config_key, category"),
)


def table_statements(dialect) -> tuple[str, ...]:
    if dialect.name == "mysql":
        return _MYSQL_TABLES
    return _SQLITE_TABLES


def index_statements(dialect) -> list[str]:
    # MySQL has no CREATE INDEX IF NOT EXISTS; duplicates are tolerated instead.
    guard = "" if dialect.name == "mysql" else "IF NOT EXISTS "
    return [f"CREATE INDEX {guard}{name} ON {table}({cols})" for name, table, cols in STATE_INDEXES]


def create_state_tables(conn: Any, dialect) -> None:
    """Create tables, then indexes. Safe to run on every startup."""
    cur = conn.cursor()
    for stmt in table_statements(dialect):
        try:
            cur.execute(stmt)
        except dialect.driver_error as exc:
            raise SchemaError(f"failed to create table: {exc}") from exc

    for stmt in index_statements(dialect):
        try:
            cur.execute(stmt)
        except dialect.driver_error as exc:
            if dialect.is_duplicate_index_error(exc):
                continue
            raise SchemaError(f"failed to create index: {exc}") from exc
    conn.commit()
