from __future__ import annotations

import time
from typing import Callable

from config.settings import DatabaseSettings
from db.connection import CONNECT_RETRY
from db.connection import EXECUTE_RETRY
from db.connection import ConnectionManager
from db.connection import RetryPolicy
from db.deadline import Deadline
from db.migrate import DEFAULT_MIGRATIONS_DIR
from db.migrate import apply_migrations
from db.migrate import list_schema_migrations
from state.checkpoint_store import CheckpointStore
from state.configuration_store import ConfigurationStore
from state.ownership_store import ThreadOwnershipStore


class StateStorage:
    """Connection manager, schema and the three stores behind one handle."""

    def __init__(
        self,
        settings: DatabaseSettings,
        *,
        dialect=None,
        migrations_dir: str = DEFAULT_MIGRATIONS_DIR,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        connect_retry: RetryPolicy = CONNECT_RETRY,
        execute_retry: RetryPolicy = EXECUTE_RETRY,
    ) -> None:
        self.settings = settings
        self.migrations_dir = migrations_dir
        self.manager = ConnectionManager(
            settings,
            dialect=dialect,
            connect_retry=connect_retry,
            execute_retry=execute_retry,
            sleep=sleep,
        )
        self.checkpoints = CheckpointStore(self.manager, clock=clock)
        self.ownerships = ThreadOwnershipStore(self.manager, clock=clock)
        self.configurations = ConfigurationStore(self.manager, clock=clock)

    @property
    def dialect(self):
        return self.manager.dialect

    def initialize(self, deadline: Deadline | None = None) -> list[str]:
        """Connect and bring the schema up to date. Any failure here is fatal to startup."""
        self.manager.connect(deadline)
        with self.manager.connection(deadline) as conn:
            applied = apply_migrations(conn, self.dialect, self.migrations_dir)
            recent = list_schema_migrations(conn, limit=5)
        if applied:
            print(f"[DB] applied migrations: {', '.join(applied)}")
        print(f"[DB] schema_migrations latest={recent[0][0] if recent else 'none'} total_applied_now={len(applied)}")
        return applied

    def health_check(self, deadline: Deadline | None = None) -> None:
        self.manager.health_check(deadline)

    def close(self) -> None:
        self.manager.close()

    def __enter__(self) -> "StateStorage":
        self.initialize()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
