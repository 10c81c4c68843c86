from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, TypeVar

from config.defaults import CONNECT_BASE_DELAY_SECONDS
from config.defaults import CONNECT_MAX_ATTEMPTS
from config.defaults import EXECUTE_BASE_DELAY_SECONDS
from config.defaults import EXECUTE_MAX_ATTEMPTS
from config.settings import DatabaseSettings
from db.deadline import Deadline
from db.dialects import dialect_for
from db.dialects import is_transient_error
from db.errors import StoreCancelledError
from db.errors import StoreConnectionError
from db.errors import StoreError
from db.errors import StoreIntegrityError
from db.errors import StoreOperationError
from db.pool import ConnectionPool


T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int
    base_delay: float

    def delay_for(self, attempt: int) -> float:
        # attempt is zero-based; delays double: base, 2*base, 4*base...
        return self.base_delay * float(2**attempt)


CONNECT_RETRY = RetryPolicy(attempts=CONNECT_MAX_ATTEMPTS, base_delay=CONNECT_BASE_DELAY_SECONDS)
EXECUTE_RETRY = RetryPolicy(attempts=EXECUTE_MAX_ATTEMPTS, base_delay=EXECUTE_BASE_DELAY_SECONDS)


def _sleep_with_deadline(deadline: Deadline | None, seconds: float, operation: str, sleep) -> None:
    if deadline is not None:
        deadline.sleep(seconds, operation)
    else:
        sleep(seconds)


class ConnectionManager:
    """Owns the connection pool and the retry policy for every store call."""

    def __init__(
        self,
        settings: DatabaseSettings,
        *,
        dialect=None,
        connect_retry: RetryPolicy = CONNECT_RETRY,
        execute_retry: RetryPolicy = EXECUTE_RETRY,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.dialect = dialect or dialect_for(settings)
        self.connect_retry = connect_retry
        self.execute_retry = execute_retry
        self._sleep = sleep
        self._pool: ConnectionPool | None = None

    @property
    def connected(self) -> bool:
        return self._pool is not None and not self._pool.closed

    @property
    def pool(self) -> ConnectionPool:
        if self._pool is None:
            raise StoreConnectionError("database connection is not initialized")
        return self._pool

    def _open_and_ping(self) -> Any:
        conn = self.dialect.connect()
        try:
            self.dialect.ping(conn)
        except BaseException:
            try:
                conn.close()
            except Exception as e:
                print(f"[DB] error closing failed connection: {e}")
            raise
        return conn

    def connect(self, deadline: Deadline | None = None) -> None:
        if self.connected:
            return
        policy = self.connect_retry
        last_exc: BaseException | None = None
        conn = None
        for attempt in range(policy.attempts):
            if deadline is not None:
                deadline.check("connect")
            try:
                conn = self._open_and_ping()
                break
            except StoreCancelledError:
                raise
            except Exception as exc:
                last_exc = exc
                if not is_transient_error(exc, self.dialect):
                    raise StoreConnectionError(f"failed to connect to {self.dialect.name} database: {exc}") from exc
                if attempt == policy.attempts - 1:
                    break
                delay = policy.delay_for(attempt)
                print(
                    f"[DB] connect attempt {attempt + 1}/{policy.attempts} failed; "
                    f"retrying in {delay:.1f}s: {exc}"
                )
                _sleep_with_deadline(deadline, delay, "connect", self._sleep)

        if conn is None:
            raise StoreConnectionError(
                f"could not connect after {policy.attempts} attempts: {last_exc}"
            ) from last_exc

        s = self.settings
        if self.dialect.in_memory:
            # Every new :memory: connection is a separate empty database.
            pool = ConnectionPool(self._open_and_ping, max_open=1, max_idle=1, max_lifetime=None)
        else:
            pool = ConnectionPool(
                self._open_and_ping,
                max_open=s.pool_max_open,
                max_idle=s.pool_max_idle,
                max_lifetime=s.pool_max_lifetime_seconds,
            )
        pool.adopt(conn)
        self._pool = pool
        print(f"[DB] connected {s.describe()} max_open={s.pool_max_open} max_idle={s.pool_max_idle}")

    @contextmanager
    def connection(self, deadline: Deadline | None = None) -> Iterator[Any]:
        """Check out a raw pooled connection (no retry, no commit)."""
        pool = self.pool
        timeout = deadline.remaining() if deadline is not None else None
        conn = pool.acquire(timeout=timeout)
        broken = False
        try:
            yield conn
        except BaseException as exc:
            broken = is_transient_error(exc, self.dialect)
            raise
        finally:
            pool.release(conn, discard=broken)

    def run(
        self,
        operation: Callable[[Any], T],
        *,
        name: str,
        key: object = None,
        deadline: Deadline | None = None,
        write: bool = False,
    ) -> T:
        """
        Run `operation(conn)` on a pooled connection with execute-phase retry.

        Transient failures are retried with exponential backoff; integrity and
        other driver errors are wrapped and raised at once. Writes are
        committed and reads rolled back before the connection is released.
        """
        policy = self.execute_retry
        last_exc: BaseException | None = None
        for attempt in range(policy.attempts):
            if deadline is not None:
                deadline.check(name)
            try:
                with self.connection(deadline) as conn:
                    try:
                        result = operation(conn)
                        # A connection goes back to the pool with no open transaction.
                        if write:
                            conn.commit()
                        else:
                            conn.rollback()
                        return result
                    except BaseException:
                        _rollback_quietly(conn)
                        raise
            except StoreError:
                raise
            except self.dialect.integrity_error as exc:
                raise StoreIntegrityError(f"{name} failed: {exc}", operation=name, key=key) from exc
            except Exception as exc:
                if not is_transient_error(exc, self.dialect):
                    raise StoreOperationError(f"{name} failed: {exc}", operation=name, key=key) from exc
                last_exc = exc
                if attempt == policy.attempts - 1:
                    break
                delay = policy.delay_for(attempt)
                print(f"[DB] {name} attempt {attempt + 1}/{policy.attempts} failed; retrying in {delay:.1f}s: {exc}")
                _sleep_with_deadline(deadline, delay, name, self._sleep)

        raise StoreOperationError(
            f"{name}: operation failed after {policy.attempts} attempts: {last_exc}",
            operation=name,
            key=key,
        ) from last_exc

    def execute(self, conn: Any, query: str, params: tuple = ()) -> Any:
        cur = conn.cursor()
        cur.execute(self.dialect.sql(query), params)
        return cur

    def health_check(self, deadline: Deadline | None = None) -> None:
        if not self.connected:
            raise StoreConnectionError("database connection is not initialized")

        def _check(conn) -> None:
            self.dialect.ping(conn)
            self.execute(conn, "SELECT COUNT(*) FROM message_checkpoints").fetchone()
            self.execute(conn, "SELECT COUNT(*) FROM configurations").fetchone()

        self.run(_check, name="health check", deadline=deadline)

    def close(self) -> None:
        if self._pool is not None:
            self._pool.close()
            self._pool = None
            print("[DB] connection pool closed")


def _rollback_quietly(conn: Any) -> None:
    try:
        conn.rollback()
    except Exception as e:
        print(f"[DB] rollback failed: {e}")
