from __future__ import annotations

import threading
import unittest
from unittest import mock

from db.deadline import Deadline
from db.deadline import check_deadline
from db.errors import StoreCancelledError
from db.errors import StoreDeadlineExceeded


class _FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class DeadlineTests(unittest.TestCase):
    def test_no_timeout_never_expires(self):
        deadline = Deadline()
        self.assertIsNone(deadline.remaining())
        deadline.check("op")

    def test_expired_deadline_raises(self):
        with self.assertRaises(StoreDeadlineExceeded):
            Deadline.expired().check("op")

    def test_remaining_tracks_clock(self):
        clock = _FakeClock()
        deadline = Deadline(10.0, clock=clock)
        clock.now += 4.0
        self.assertAlmostEqual(deadline.remaining(), 6.0)
        clock.now += 7.0
        self.assertEqual(deadline.remaining(), 0.0)
        with self.assertRaises(StoreDeadlineExceeded):
            deadline.check("op")

    def test_cancel_raises_cancelled_not_deadline(self):
        deadline = Deadline()
        deadline.cancel()
        self.assertTrue(deadline.cancelled)
        with self.assertRaises(StoreCancelledError) as ctx:
            deadline.check("op")
        self.assertNotIsInstance(ctx.exception, StoreDeadlineExceeded)

    def test_shared_cancel_event(self):
        event = threading.Event()
        deadline = Deadline(cancel_event=event)
        event.set()
        with self.assertRaises(StoreCancelledError):
            deadline.check("op")

    def test_sleep_aborts_when_cancelled(self):
        event = threading.Event()
        event.set()
        deadline = Deadline(cancel_event=event)
        with self.assertRaises(StoreCancelledError):
            deadline.sleep(30.0, "op")

    def test_sleep_longer_than_deadline_raises(self):
        clock = _FakeClock()
        deadline = Deadline(1.0, clock=clock)

        # The wait itself is real; advance the fake clock so the recheck sees expiry.
        original_wait = threading.Event.wait

        def _wait(self_event, timeout=None):
            clock.now += float(timeout or 0.0)
            return original_wait(self_event, 0)

        with mock.patch.object(threading.Event, "wait", _wait):
            with self.assertRaises(StoreDeadlineExceeded):
                deadline.sleep(5.0, "op")

    def test_check_deadline_accepts_none(self):
        check_deadline(None, "op")
        with self.assertRaises(StoreDeadlineExceeded):
            check_deadline(Deadline.expired(), "op")


if __name__ == "__main__":
    unittest.main()
