from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

from db.errors import StoreConnectionError
from db.errors import StoreDeadlineExceeded


@dataclass(slots=True)
class _PooledConnection:
    conn: Any
    opened_at: float


class ConnectionPool:
    """
    Bounded connection pool.

    At most `max_open` connections exist at once (idle + checked out); at most
    `max_idle` are kept when returned; a connection older than `max_lifetime`
    seconds is closed on return/checkout instead of reused.
    """

    def __init__(
        self,
        factory: Callable[[], Any],
        *,
        max_open: int = 10,
        max_idle: int = 5,
        max_lifetime: float | None = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_open < 1:
            raise ValueError("max_open must be >= 1")
        if max_idle < 0:
            raise ValueError("max_idle must be >= 0")
        self._factory = factory
        self._max_open = int(max_open)
        self._max_idle = min(int(max_idle), self._max_open)
        self._max_lifetime = max_lifetime if max_lifetime and max_lifetime > 0 else None
        self._clock = clock
        self._cond = threading.Condition()
        self._idle: list[_PooledConnection] = []
        self._in_use: dict[int, _PooledConnection] = {}
        self._open = 0
        self._closed = False

    @property
    def open_count(self) -> int:
        with self._cond:
            return self._open

    @property
    def idle_count(self) -> int:
        with self._cond:
            return len(self._idle)

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def _expired(self, entry: _PooledConnection) -> bool:
        if self._max_lifetime is None:
            return False
        return (self._clock() - entry.opened_at) >= self._max_lifetime

    def adopt(self, conn: Any) -> None:
        """Hand an already-opened connection to the pool as idle."""
        with self._cond:
            if self._closed:
                raise StoreConnectionError("connection pool is closed")
            self._open += 1
            self._idle.append(_PooledConnection(conn=conn, opened_at=self._clock()))
            self._cond.notify()

    def acquire(self, timeout: float | None = None) -> Any:
        stale: list[_PooledConnection] = []
        end = None if timeout is None else self._clock() + max(0.0, timeout)
        try:
            with self._cond:
                while True:
                    if self._closed:
                        raise StoreConnectionError("connection pool is closed")
                    while self._idle:
                        entry = self._idle.pop()
                        if self._expired(entry):
                            stale.append(entry)
                            self._open -= 1
                            continue
                        self._in_use[id(entry.conn)] = entry
                        return entry.conn
                    if self._open < self._max_open:
                        self._open += 1
                        break
                    if end is None:
                        self._cond.wait()
                        continue
                    remaining = end - self._clock()
                    if remaining <= 0:
                        raise StoreDeadlineExceeded(
                            f"timed out waiting for a database connection (max_open={self._max_open})"
                        )
                    self._cond.wait(remaining)
        finally:
            for entry in stale:
                _close_quietly(entry.conn)

        try:
            conn = self._factory()
        except BaseException:
            with self._cond:
                self._open -= 1
                self._cond.notify()
            raise
        entry = _PooledConnection(conn=conn, opened_at=self._clock())
        with self._cond:
            self._in_use[id(conn)] = entry
        return conn

    def release(self, conn: Any, *, discard: bool = False) -> None:
        close_it = False
        with self._cond:
            entry = self._in_use.pop(id(conn), None)
            if entry is None:
                close_it = True
            elif discard or self._closed or self._expired(entry) or len(self._idle) >= self._max_idle:
                self._open -= 1
                close_it = True
            else:
                self._idle.append(entry)
            self._cond.notify()
        if close_it:
            _close_quietly(conn)

    def close(self) -> None:
        with self._cond:
            self._closed = True
            idle = self._idle
            self._idle = []
            self._open -= len(idle)
            self._cond.notify_all()
        for entry in idle:
            _close_quietly(entry.conn)


def _close_quietly(conn: Any) -> None:
    try:
        conn.close()
    except Exception as e:
        print(f"[DB] error closing connection: {e}")
