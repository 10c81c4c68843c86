from __future__ import annotations

import time
from dataclasses import replace
from typing import Any, Callable

from db.connection import ConnectionManager
from db.deadline import Deadline
from db.deadline import check_deadline
from state.models import ThreadOwnership
from state.models import apply_saved_row


_COLUMNS = "id, thread_id, original_user_id, created_by, creation_time, created_at, updated_at"


def _row_to_ownership(row: tuple[Any, ...] | None) -> ThreadOwnership | None:
    if row is None:
        return None
    return ThreadOwnership(
        id=int(row[0]),
        thread_id=str(row[1]),
        original_user_id=str(row[2]),
        created_by=str(row[3]),
        creation_time=int(row[4]),
        created_at=int(row[5]),
        updated_at=int(row[6]),
    )


def fetch_ownership_sync(conn: Any, dialect, thread_id: str) -> ThreadOwnership | None:
    cur = conn.cursor()
    cur.execute(
        dialect.sql(f"SELECT {_COLUMNS} FROM thread_ownerships WHERE thread_id = ? LIMIT 1"),
        (thread_id,),
    )
    return _row_to_ownership(cur.fetchone())


def upsert_ownership_sync(
    conn: Any,
    dialect,
    ownership: ThreadOwnership,
    *,
    now: int,
    deadline: Deadline | None = None,
) -> ThreadOwnership:
    cur = conn.cursor()
    cur.execute(
        dialect.sql("SELECT id, created_at FROM thread_ownerships WHERE thread_id = ? LIMIT 1"),
        (ownership.thread_id,),
    )
    existing = cur.fetchone()
    check_deadline(deadline, "upsert thread ownership")

    ownership.updated_at = now
    if existing is None:
        if not ownership.created_at:
            ownership.created_at = now
        cur.execute(
            dialect.sql(
                """
                INSERT INTO thread_ownerships (
                    thread_id, original_user_id, created_by, creation_time, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """
            ),
            (
                ownership.thread_id,
                ownership.original_user_id,
                ownership.created_by,
                int(ownership.creation_time),
                int(ownership.created_at),
                int(ownership.updated_at),
            ),
        )
        ownership.id = int(cur.lastrowid) if cur.lastrowid else None
    else:
        ownership.id = int(existing[0])
        ownership.created_at = int(existing[1])
        cur.execute(
            dialect.sql(
                """
                UPDATE thread_ownerships
                SET original_user_id = ?, created_by = ?, creation_time = ?, updated_at = ?
                WHERE thread_id = ?
                """
            ),
            (
                ownership.original_user_id,
                ownership.created_by,
                int(ownership.creation_time),
                int(ownership.updated_at),
                ownership.thread_id,
            ),
        )
    return ownership


def fetch_all_ownerships_sync(conn: Any, dialect) -> list[ThreadOwnership]:
    cur = conn.cursor()
    cur.execute(dialect.sql(f"SELECT {_COLUMNS} FROM thread_ownerships ORDER BY creation_time DESC, id DESC"))
    return [_row_to_ownership(row) for row in cur.fetchall()]


def delete_ownerships_before_sync(conn: Any, dialect, cutoff_ts: int) -> int:
    cur = conn.cursor()
    cur.execute(
        dialect.sql("DELETE FROM thread_ownerships WHERE creation_time < ?"),
        (int(cutoff_ts),),
    )
    return max(0, int(cur.rowcount or 0))


class ThreadOwnershipStore:
    def __init__(self, manager: ConnectionManager, *, clock: Callable[[], float] = time.time) -> None:
        self._manager = manager
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    def get(self, thread_id: Any, *, deadline: Deadline | None = None) -> ThreadOwnership | None:
        thread = str(thread_id or "").strip()
        if not thread:
            raise ValueError("thread_id is required")
        dialect = self._manager.dialect
        return self._manager.run(
            lambda conn: fetch_ownership_sync(conn, dialect, thread),
            name="get thread ownership",
            key=thread,
            deadline=deadline,
        )

    def upsert(self, ownership: ThreadOwnership, *, deadline: Deadline | None = None) -> ThreadOwnership:
        ownership.thread_id = str(ownership.thread_id or "").strip()
        if not ownership.thread_id:
            raise ValueError("thread_id is required")
        ownership.original_user_id = str(ownership.original_user_id)
        ownership.created_by = str(ownership.created_by)
        dialect = self._manager.dialect
        now = self._now()
        saved = self._manager.run(
            lambda conn: upsert_ownership_sync(conn, dialect, replace(ownership), now=now, deadline=deadline),
            name="upsert thread ownership",
            key=ownership.thread_id,
            deadline=deadline,
            write=True,
        )
        return apply_saved_row(ownership, saved)

    def get_all(self, *, deadline: Deadline | None = None) -> list[ThreadOwnership]:
        dialect = self._manager.dialect
        return self._manager.run(
            lambda conn: fetch_all_ownerships_sync(conn, dialect),
            name="get all thread ownerships",
            deadline=deadline,
        )

    def cleanup_older_than(self, max_age_seconds: float, *, deadline: Deadline | None = None) -> int:
        """Delete rows with creation_time < now - max_age. Returns rows removed (0 is fine)."""
        if max_age_seconds < 0:
            raise ValueError("max_age_seconds must be non-negative")
        cutoff = self._now() - int(max_age_seconds)
        dialect = self._manager.dialect
        removed = self._manager.run(
            lambda conn: delete_ownerships_before_sync(conn, dialect, cutoff),
            name="cleanup old thread ownerships",
            key=cutoff,
            deadline=deadline,
            write=True,
        )
        if removed:
            print(f"[State] cleaned up thread ownerships removed={removed} cutoff={cutoff}")
        return removed

    def count(self, *, deadline: Deadline | None = None) -> int:
        dialect = self._manager.dialect

        def _count(conn) -> int:
            cur = conn.cursor()
            cur.execute(dialect.sql("SELECT COUNT(*) FROM thread_ownerships"))
            return int(cur.fetchone()[0])

        return self._manager.run(_count, name="count thread ownerships", deadline=deadline)
