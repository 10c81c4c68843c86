from __future__ import annotations

import os
import sqlite3
import tempfile
import unittest

from config.settings import DatabaseSettings
from db.connection import ConnectionManager
from db.deadline import Deadline
from db.dialects import SQLiteDialect
from db.errors import StoreCancelledError
from db.errors import StoreConnectionError
from db.errors import StoreDeadlineExceeded
from db.errors import StoreIntegrityError
from db.errors import StoreOperationError
from state.configuration_store import ConfigurationStore


class _FlakyDialect(SQLiteDialect):
    """SQLite dialect whose first `failures` connects raise `error`."""

    def __init__(self, path: str, *, failures: int, error: Exception):
        super().__init__(path)
        self.failures = failures
        self.error = error
        self.attempts = 0

    def connect(self):
        self.attempts += 1
        if self.failures > 0:
            self.failures -= 1
            raise self.error
        return super().connect()


class ConnectRetryTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self._tmp.name, "state.db")
        self.settings = DatabaseSettings(database_type="sqlite", database_path=self.path)
        self.sleeps: list[float] = []

    def tearDown(self):
        self._tmp.cleanup()

    def _manager(self, dialect) -> ConnectionManager:
        return ConnectionManager(self.settings, dialect=dialect, sleep=self.sleeps.append)

    def test_transient_failures_are_retried_with_doubling_delay(self):
        dialect = _FlakyDialect(self.path, failures=2, error=ConnectionRefusedError("connection refused"))
        manager = self._manager(dialect)
        manager.connect()
        self.assertTrue(manager.connected)
        self.assertEqual(dialect.attempts, 3)
        self.assertEqual(self.sleeps, [1.0, 2.0])
        manager.close()

    def test_retry_budget_is_five_attempts(self):
        dialect = _FlakyDialect(self.path, failures=100, error=ConnectionResetError("connection reset by peer"))
        manager = self._manager(dialect)
        with self.assertRaises(StoreConnectionError) as ctx:
            manager.connect()
        self.assertIn("could not connect after 5 attempts", str(ctx.exception))
        self.assertEqual(dialect.attempts, 5)
        self.assertEqual(self.sleeps, [1.0, 2.0, 4.0, 8.0])
        self.assertFalse(manager.connected)

    def test_non_transient_failure_is_not_retried(self):
        dialect = _FlakyDialect(self.path, failures=100, error=RuntimeError("access denied for user"))
        manager = self._manager(dialect)
        with self.assertRaises(StoreConnectionError):
            manager.connect()
        self.assertEqual(dialect.attempts, 1)
        self.assertEqual(self.sleeps, [])

    def test_expired_deadline_stops_before_connecting(self):
        dialect = _FlakyDialect(self.path, failures=0, error=RuntimeError("unused"))
        manager = self._manager(dialect)
        with self.assertRaises(StoreDeadlineExceeded):
            manager.connect(Deadline.expired())
        self.assertEqual(dialect.attempts, 0)


class ExecuteRetryTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        path = os.path.join(self._tmp.name, "state.db")
        self.sleeps: list[float] = []
        self.manager = ConnectionManager(
            DatabaseSettings(database_type="sqlite", database_path=path),
            sleep=self.sleeps.append,
        )
        self.manager.connect()
        with self.manager.connection() as conn:
            conn.execute("CREATE TABLE kv (k TEXT PRIMARY KEY, v TEXT NOT NULL)")
            conn.commit()

    def tearDown(self):
        self.manager.close()
        self._tmp.cleanup()

    def test_transient_execute_failures_are_retried(self):
        calls = []

        def _op(conn):
            calls.append(1)
            if len(calls) < 3:
                raise sqlite3.OperationalError("database is locked")
            return conn.execute("SELECT COUNT(*) FROM kv").fetchone()[0]

        self.assertEqual(self.manager.run(_op, name="count kv"), 0)
        self.assertEqual(len(calls), 3)
        self.assertEqual(self.sleeps, [0.5, 1.0])

    def test_execute_retry_budget_is_three_attempts(self):
        calls = []

        def _op(conn):
            calls.append(1)
            raise sqlite3.OperationalError("database is locked")

        with self.assertRaises(StoreOperationError) as ctx:
            self.manager.run(_op, name="count kv", key="k1")
        self.assertIn("operation failed after 3 attempts", str(ctx.exception))
        self.assertEqual(ctx.exception.operation, "count kv")
        self.assertEqual(ctx.exception.key, "k1")
        self.assertIsInstance(ctx.exception.__cause__, sqlite3.OperationalError)
        self.assertEqual(len(calls), 3)

    def test_integrity_error_is_not_retried(self):
        self.manager.run(
            lambda conn: conn.execute("INSERT INTO kv (k, v) VALUES ('a', '1')"),
            name="insert kv",
            write=True,
        )
        calls = []

        def _dup(conn):
            calls.append(1)
            conn.execute("INSERT INTO kv (k, v) VALUES ('a', '2')")

        with self.assertRaises(StoreIntegrityError):
            self.manager.run(_dup, name="insert kv", write=True)
        self.assertEqual(len(calls), 1)
        self.assertEqual(self.sleeps, [])

    def test_non_transient_error_is_wrapped_without_retry(self):
        calls = []

        def _bad(conn):
            calls.append(1)
            conn.execute("SELECT * FROM missing_table")

        with self.assertRaises(StoreOperationError) as ctx:
            self.manager.run(_bad, name="bad query")
        self.assertNotIsInstance(ctx.exception, StoreIntegrityError)
        self.assertEqual(len(calls), 1)

    def test_failed_write_is_rolled_back(self):
        def _partial(conn):
            conn.execute("INSERT INTO kv (k, v) VALUES ('b', '1')")
            conn.execute("INSERT INTO missing_table VALUES (1)")

        with self.assertRaises(StoreOperationError):
            self.manager.run(_partial, name="partial write", write=True)
        count = self.manager.run(lambda conn: conn.execute("SELECT COUNT(*) FROM kv").fetchone()[0], name="count")
        self.assertEqual(count, 0)

    def test_expired_deadline_runs_nothing(self):
        calls = []
        with self.assertRaises(StoreDeadlineExceeded):
            self.manager.run(lambda conn: calls.append(1), name="noop", deadline=Deadline.expired())
        self.assertEqual(calls, [])

    def test_cancel_during_backoff_stops_retrying(self):
        deadline = Deadline()
        calls = []

        def _op(conn):
            calls.append(1)
            deadline.cancel()
            raise sqlite3.OperationalError("database is locked")

        with self.assertRaises(StoreCancelledError):
            self.manager.run(_op, name="locked", deadline=deadline)
        self.assertEqual(len(calls), 1)

    def test_health_check(self):
        with self.assertRaises(StoreOperationError):
            # State tables do not exist in this bare database.
            self.manager.health_check()

    def test_health_check_requires_connection(self):
        manager = ConnectionManager(DatabaseSettings(database_type="sqlite", database_path=":memory:"))
        with self.assertRaises(StoreConnectionError):
            manager.health_check()


class _RecordingConnection:
    def __init__(self):
        self.calls: list[str] = []

    def cursor(self):
        return self

    def execute(self, query, params=()):
        self.calls.append("execute")

    def fetchone(self):
        return None

    def commit(self):
        self.calls.append("commit")

    def rollback(self):
        self.calls.append("rollback")

    def close(self):
        self.calls.append("close")


class _RecordingDialect(SQLiteDialect):
    """Hands out one recording connection so transaction endings can be inspected."""

    name = "recording"

    def __init__(self):
        super().__init__("unused.db")
        self.conn = _RecordingConnection()

    @property
    def in_memory(self) -> bool:
        return False

    def connect(self):
        return self.conn

    def ping(self, conn) -> None:
        return None


class TransactionBoundaryTests(unittest.TestCase):
    def setUp(self):
        self.dialect = _RecordingDialect()
        self.manager = ConnectionManager(
            DatabaseSettings(database_type="sqlite", database_path="unused.db"),
            dialect=self.dialect,
            sleep=lambda _s: None,
        )
        self.manager.connect()

    def tearDown(self):
        self.manager.close()

    def test_read_ends_its_transaction_before_release(self):
        self.manager.run(lambda conn: conn.cursor().execute("SELECT 1"), name="read")
        self.assertEqual(self.dialect.conn.calls, ["execute", "rollback"])
        self.assertEqual(self.manager.pool.idle_count, 1)

    def test_write_is_committed_before_release(self):
        self.manager.run(lambda conn: conn.cursor().execute("UPDATE kv SET v = 1"), name="write", write=True)
        self.assertEqual(self.dialect.conn.calls, ["execute", "commit"])

    def test_store_read_ends_its_transaction(self):
        self.assertIsNone(ConfigurationStore(self.manager).get("K"))
        self.assertEqual(self.dialect.conn.calls[-1], "rollback")


if __name__ == "__main__":
    unittest.main()
