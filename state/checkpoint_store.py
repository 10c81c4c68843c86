from __future__ import annotations

import time
from dataclasses import replace
from typing import Any, Callable

from db.connection import ConnectionManager
from db.deadline import Deadline
from db.deadline import check_deadline
from state.models import MessageCheckpoint
from state.models import apply_saved_row


_COLUMNS = "id, channel_id, thread_id, last_message_id, last_seen_at, created_at, updated_at"
# thread_id is nullable; NULL means "the channel itself".
_KEY_MATCH = "channel_id = ? AND (thread_id = ? OR (thread_id IS NULL AND ? IS NULL))"


def _normalize_key(channel_id: Any, thread_id: Any) -> tuple[str, str | None]:
    channel = str(channel_id or "").strip()
    if not channel:
        raise ValueError("channel_id is required")
    thread = None if thread_id is None else str(thread_id).strip() or None
    return channel, thread


def _row_to_checkpoint(row: tuple[Any, ...] | None) -> MessageCheckpoint | None:
    if row is None:
        return None
    return MessageCheckpoint(
        id=int(row[0]),
        channel_id=str(row[1]),
        thread_id=None if row[2] is None else str(row[2]),
        last_message_id=str(row[3]),
        last_seen_at=int(row[4]),
        created_at=int(row[5]),
        updated_at=int(row[6]),
    )


def fetch_checkpoint_sync(conn: Any, dialect, channel_id: str, thread_id: str | None) -> MessageCheckpoint | None:
    cur = conn.cursor()
    cur.execute(
        dialect.sql(f"SELECT {_COLUMNS} FROM message_checkpoints WHERE {_KEY_MATCH} ORDER BY updated_at DESC, id DESC LIMIT 1"),
        (channel_id, thread_id, thread_id),
    )
    return _row_to_checkpoint(cur.fetchone())


def upsert_checkpoint_sync(
    conn: Any,
    dialect,
    checkpoint: MessageCheckpoint,
    *,
    now: int,
    deadline: Deadline | None = None,
) -> MessageCheckpoint:
    """
    Check-then-insert-or-update on (channel_id, thread_id).

    Not atomic across statements: two writers racing on the same new key can
    both see "absent" and one insert then fails on the unique constraint.
    """
    cur = conn.cursor()
    cur.execute(
        dialect.sql(f"SELECT id, created_at FROM message_checkpoints WHERE {_KEY_MATCH} ORDER BY updated_at DESC, id DESC LIMIT 1"),
        (checkpoint.channel_id, checkpoint.thread_id, checkpoint.thread_id),
    )
    existing = cur.fetchone()
    check_deadline(deadline, "upsert message checkpoint")

    checkpoint.updated_at = now
    if existing is None:
        if not checkpoint.created_at:
            checkpoint.created_at = now
        cur.execute(
            dialect.sql(
                """
                INSERT INTO message_checkpoints (
                    channel_id, thread_id, last_message_id, last_seen_at, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """
            ),
            (
                checkpoint.channel_id,
                checkpoint.thread_id,
                checkpoint.last_message_id,
                int(checkpoint.last_seen_at),
                int(checkpoint.created_at),
                int(checkpoint.updated_at),
            ),
        )
        checkpoint.id = int(cur.lastrowid) if cur.lastrowid else None
    else:
        checkpoint.id = int(existing[0])
        checkpoint.created_at = int(existing[1])
        cur.execute(
            dialect.sql(
                f"""
                UPDATE message_checkpoints
                SET last_message_id = ?, last_seen_at = ?, updated_at = ?
                WHERE {_KEY_MATCH}
                """
            ),
            (
                checkpoint.last_message_id,
                int(checkpoint.last_seen_at),
                int(checkpoint.updated_at),
                checkpoint.channel_id,
                checkpoint.thread_id,
                checkpoint.thread_id,
            ),
        )
    return checkpoint


def fetch_all_checkpoints_sync(conn: Any, dialect) -> list[MessageCheckpoint]:
    cur = conn.cursor()
    cur.execute(dialect.sql(f"SELECT {_COLUMNS} FROM message_checkpoints ORDER BY last_seen_at DESC, id DESC"))
    return [_row_to_checkpoint(row) for row in cur.fetchall()]


def fetch_checkpoints_since_sync(conn: Any, dialect, since_ts: int) -> list[MessageCheckpoint]:
    cur = conn.cursor()
    cur.execute(
        dialect.sql(
            f"""
            SELECT {_COLUMNS}
            FROM message_checkpoints
            WHERE last_seen_at >= ?
            ORDER BY last_seen_at DESC, id DESC
            """
        ),
        (int(since_ts),),
    )
    return [_row_to_checkpoint(row) for row in cur.fetchall()]


class CheckpointStore:
    def __init__(self, manager: ConnectionManager, *, clock: Callable[[], float] = time.time) -> None:
        self._manager = manager
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    def get(
        self,
        channel_id: Any,
        thread_id: Any = None,
        *,
        deadline: Deadline | None = None,
    ) -> MessageCheckpoint | None:
        """Returns None when no checkpoint exists for the context."""
        channel, thread = _normalize_key(channel_id, thread_id)
        dialect = self._manager.dialect
        return self._manager.run(
            lambda conn: fetch_checkpoint_sync(conn, dialect, channel, thread),
            name="get message checkpoint",
            key=(channel, thread),
            deadline=deadline,
        )

    def upsert(self, checkpoint: MessageCheckpoint, *, deadline: Deadline | None = None) -> MessageCheckpoint:
        checkpoint.channel_id, checkpoint.thread_id = _normalize_key(checkpoint.channel_id, checkpoint.thread_id)
        checkpoint.last_message_id = str(checkpoint.last_message_id)
        dialect = self._manager.dialect
        now = self._now()
        saved = self._manager.run(
            lambda conn: upsert_checkpoint_sync(conn, dialect, replace(checkpoint), now=now, deadline=deadline),
            name="upsert message checkpoint",
            key=(checkpoint.channel_id, checkpoint.thread_id),
            deadline=deadline,
            write=True,
        )
        return apply_saved_row(checkpoint, saved)

    def get_all(self, *, deadline: Deadline | None = None) -> list[MessageCheckpoint]:
        dialect = self._manager.dialect
        return self._manager.run(
            lambda conn: fetch_all_checkpoints_sync(conn, dialect),
            name="get all message checkpoints",
            deadline=deadline,
        )

    def get_within_window(self, window_seconds: float, *, deadline: Deadline | None = None) -> list[MessageCheckpoint]:
        """Checkpoints with last_seen_at >= now - window, newest first."""
        if window_seconds < 0:
            raise ValueError("window_seconds must be non-negative")
        since_ts = self._now() - int(window_seconds)
        dialect = self._manager.dialect
        return self._manager.run(
            lambda conn: fetch_checkpoints_since_sync(conn, dialect, since_ts),
            name="get message checkpoints within window",
            key=since_ts,
            deadline=deadline,
        )

    def count(self, *, deadline: Deadline | None = None) -> int:
        dialect = self._manager.dialect

        def _count(conn) -> int:
            cur = conn.cursor()
            cur.execute(dialect.sql("SELECT COUNT(*) FROM message_checkpoints"))
            return int(cur.fetchone()[0])

        return self._manager.run(_count, name="count message checkpoints", deadline=deadline)
