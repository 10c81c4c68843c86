from __future__ import annotations

import os
import tempfile
import unittest
from datetime import datetime, timezone
from types import SimpleNamespace

from config.settings import DatabaseSettings
from db.errors import StoreOperationError
from recovery.service import message_timestamp
from recovery.service import record_checkpoint
from recovery.service import recover_missed_messages
from recovery.service import recover_thread_ownerships
from state.models import MessageCheckpoint
from state.models import ThreadOwnership
from state.storage import StateStorage

BOT_ID = 999


class _FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _msg(message_id: int, ts: float, author_id: int = 1):
    return SimpleNamespace(
        id=message_id,
        author=SimpleNamespace(id=author_id),
        created_at=datetime.fromtimestamp(ts, tz=timezone.utc),
    )


class _FailingCheckpoints:
    def upsert(self, checkpoint, *, deadline=None):
        raise StoreOperationError("upsert message checkpoint failed: disk I/O error", operation="upsert")


class RecoveryTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.clock = _FakeClock()
        settings = DatabaseSettings(database_type="sqlite", database_path=os.path.join(self._tmp.name, "state.db"))
        self.storage = StateStorage(settings, clock=self.clock, sleep=lambda _s: None)
        self.storage.initialize()

    def tearDown(self):
        self.storage.close()
        self._tmp.cleanup()

    def test_message_timestamp_accepts_datetime_and_numbers(self):
        self.assertEqual(message_timestamp(_msg(1, 1234.0)), 1234.0)
        self.assertEqual(message_timestamp(SimpleNamespace(created_at=55)), 55.0)
        self.assertEqual(message_timestamp(SimpleNamespace()), 0.0)

    async def test_recovers_missed_messages_in_order(self):
        now = self.clock.now
        checkpoints = self.storage.checkpoints
        checkpoints.upsert(MessageCheckpoint(channel_id="42", last_message_id="100", last_seen_at=int(now - 120)))
        checkpoints.upsert(
            MessageCheckpoint(channel_id="42", thread_id="7", last_message_id="700", last_seen_at=int(now - 60))
        )
        checkpoints.upsert(MessageCheckpoint(channel_id="5", last_message_id="500", last_seen_at=int(now - 600)))

        fetched: list[tuple[str, str, int]] = []
        history = {
            "42": [
                _msg(103, now - 20, author_id=BOT_ID),
                _msg(102, now - 30),
                _msg(99, now - 200),
                _msg(101, now - 90),
            ],
        }

        async def _fetch(context_id, after_message_id, limit):
            fetched.append((context_id, after_message_id, limit))
            if context_id == "7":
                raise RuntimeError("403 Forbidden")
            return history.get(context_id, [])

        processed: list[int] = []

        async def _process(message):
            processed.append(message.id)

        total = await recover_missed_messages(
            checkpoints=checkpoints,
            fetch_messages_after=_fetch,
            process_message=_process,
            window_seconds=300,
            bot_user_id=BOT_ID,
            clock=self.clock,
            pause_seconds=0,
        )

        self.assertEqual(total, 2)
        self.assertEqual(processed, [101, 102])
        self.assertEqual(sorted(c for c, _a, _l in fetched), ["42", "7"])
        self.assertIn(("42", "100", 50), fetched)

        updated = checkpoints.get("42")
        self.assertEqual(updated.last_message_id, "102")
        self.assertEqual(updated.last_seen_at, int(now - 30))
        # The failing thread context keeps its old checkpoint.
        self.assertEqual(checkpoints.get("42", "7").last_message_id, "700")
        self.assertEqual(checkpoints.get("5").last_message_id, "500")

    async def test_nothing_inside_window(self):
        self.storage.checkpoints.upsert(
            MessageCheckpoint(channel_id="5", last_message_id="500", last_seen_at=int(self.clock.now - 3600))
        )

        async def _fetch(context_id, after_message_id, limit):
            raise AssertionError("should not fetch")

        async def _process(message):
            raise AssertionError("should not process")

        total = await recover_missed_messages(
            checkpoints=self.storage.checkpoints,
            fetch_messages_after=_fetch,
            process_message=_process,
            window_seconds=300,
            bot_user_id=BOT_ID,
            clock=self.clock,
            pause_seconds=0,
        )
        self.assertEqual(total, 0)

    async def test_record_checkpoint_success(self):
        ok = await record_checkpoint(
            self.storage.checkpoints,
            MessageCheckpoint(channel_id="1", last_message_id="m", last_seen_at=int(self.clock.now)),
        )
        self.assertTrue(ok)
        self.assertEqual(self.storage.checkpoints.get("1").last_message_id, "m")

    async def test_record_checkpoint_degrades_on_store_error(self):
        ok = await record_checkpoint(
            _FailingCheckpoints(),
            MessageCheckpoint(channel_id="1", last_message_id="m", last_seen_at=1),
        )
        self.assertFalse(ok)

    async def test_recover_thread_ownerships(self):
        self.storage.ownerships.upsert(
            ThreadOwnership(thread_id="t1", original_user_id="u1", created_by="bot", creation_time=10)
        )
        self.storage.ownerships.upsert(
            ThreadOwnership(thread_id="t2", original_user_id="u2", created_by="bot", creation_time=20)
        )
        owners = await recover_thread_ownerships(self.storage.ownerships)
        self.assertEqual(set(owners), {"t1", "t2"})
        self.assertEqual(owners["t2"].original_user_id, "u2")


if __name__ == "__main__":
    unittest.main()
