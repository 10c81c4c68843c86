from __future__ import annotations

import os
import tempfile
import threading
import unittest

from config.settings import DatabaseSettings
from jobs.service import prune_thread_owners
from jobs.service import run_maintenance_once
from state.models import ThreadOwnership
from state.storage import StateStorage


class _FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _ownership(thread_id: str, creation_time: int) -> ThreadOwnership:
    return ThreadOwnership(thread_id=thread_id, original_user_id="u", created_by="bot", creation_time=creation_time)


class PruneThreadOwnersTests(unittest.TestCase):
    def test_prunes_only_stale_entries(self):
        owners = {"old": _ownership("old", 99), "edge": _ownership("edge", 100), "new": _ownership("new", 150)}
        removed = prune_thread_owners(owners, max_age_seconds=100, now=200)
        self.assertEqual(removed, 1)
        self.assertEqual(set(owners), {"edge", "new"})


class MaintenanceTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.clock = _FakeClock()
        settings = DatabaseSettings(database_type="sqlite", database_path=os.path.join(self._tmp.name, "state.db"))
        self.storage = StateStorage(settings, clock=self.clock, sleep=lambda _s: None)
        self.storage.initialize()

    def tearDown(self):
        self.storage.close()
        self._tmp.cleanup()

    async def test_run_once_cleans_store_and_memory(self):
        now = int(self.clock.now)
        self.storage.ownerships.upsert(_ownership("old", now - 7200))
        self.storage.ownerships.upsert(_ownership("new", now - 60))
        owners = {row.thread_id: row for row in self.storage.ownerships.get_all()}

        removed = await run_maintenance_once(
            self.storage,
            max_age_seconds=3600,
            thread_owners=owners,
            clock=self.clock,
        )

        self.assertEqual(removed, 1)
        self.assertEqual(set(owners), {"new"})
        self.assertEqual([r.thread_id for r in self.storage.ownerships.get_all()], ["new"])

    async def test_callable_max_age_is_resolved_off_the_event_loop(self):
        loop_thread = threading.get_ident()
        seen: list[int] = []

        def _max_age() -> float:
            seen.append(threading.get_ident())
            return 3600

        now = int(self.clock.now)
        self.storage.ownerships.upsert(_ownership("old", now - 7200))
        owners = {"old": _ownership("old", now - 7200)}

        removed = await run_maintenance_once(self.storage, max_age_seconds=_max_age, thread_owners=owners, clock=self.clock)

        self.assertEqual(removed, 1)
        self.assertEqual(owners, {})
        self.assertEqual(len(seen), 1)
        self.assertNotEqual(seen[0], loop_thread)


if __name__ == "__main__":
    unittest.main()
