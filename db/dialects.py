from __future__ import annotations

import socket
import sqlite3
from pathlib import Path
from typing import Any

import pymysql

from config.settings import DatabaseSettings


# Closed set of transient causes: timeout, refused/reset/broken connection,
# DNS failure, stale connection, SQLite busy/locked.
_SQLITE_BUSY_CODES = frozenset(
    code
    for code in (
        getattr(sqlite3, "SQLITE_BUSY", None),
        getattr(sqlite3, "SQLITE_BUSY_RECOVERY", None),
        getattr(sqlite3, "SQLITE_BUSY_SNAPSHOT", None),
        getattr(sqlite3, "SQLITE_BUSY_TIMEOUT", None),
        getattr(sqlite3, "SQLITE_LOCKED", None),
        getattr(sqlite3, "SQLITE_LOCKED_SHAREDCACHE", None),
    )
    if isinstance(code, int)
)

# PyMySQL client/server error numbers.
_MYSQL_TRANSIENT_ERRNOS = frozenset(
    {
        2003,  # can't connect (refused / unreachable / timed out)
        2005,  # unknown host
        2006,  # server has gone away
        2013,  # lost connection during query
        2055,  # lost connection at handshake
        1205,  # lock wait timeout
    }
)
_MYSQL_DUPLICATE_KEY_NAME = 1061

# Last resort, for drivers/paths that only give us a message.
_TRANSIENT_SUBSTRINGS = (
    "connection refused",
    "connection reset",
    "timeout",
    "timed out",
    "bad connection",
    "invalid connection",
    "broken pipe",
    "no such host",
    "name or service not known",
    "temporary failure in name resolution",
    "server has gone away",
    "lost connection",
    "database is locked",
    "database table is locked",
)


class SQLiteDialect:
    name = "sqlite"

    driver_error = sqlite3.Error
    integrity_error = sqlite3.IntegrityError

    def __init__(self, path: str, *, busy_timeout_seconds: float = 5.0) -> None:
        self.path = path
        self.busy_timeout_seconds = busy_timeout_seconds

    @property
    def in_memory(self) -> bool:
        return self.path == ":memory:" or self.path.startswith("file::memory:")

    def connect(self) -> sqlite3.Connection:
        if not self.in_memory:
            Path(self.path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        # Pool hands each connection to one thread at a time.
        conn = sqlite3.connect(self.path, timeout=self.busy_timeout_seconds, check_same_thread=False)
        cur = conn.cursor()
        cur.execute("PRAGMA journal_mode=WAL;")
        cur.execute("PRAGMA synchronous=NORMAL;")
        cur.close()
        return conn

    def ping(self, conn: sqlite3.Connection) -> None:
        conn.execute("SELECT 1").fetchone()

    def sql(self, query: str) -> str:
        return query

    def transient_hint(self, exc: BaseException) -> bool | None:
        if not isinstance(exc, sqlite3.Error):
            return None
        code = getattr(exc, "sqlite_errorcode", None)
        if isinstance(code, int):
            return code in _SQLITE_BUSY_CODES
        return None

    def is_duplicate_index_error(self, exc: BaseException) -> bool:
        return False


class MySQLDialect:
    name = "mysql"

    driver_error = pymysql.err.Error
    integrity_error = pymysql.err.IntegrityError

    def __init__(self, settings: DatabaseSettings) -> None:
        self.settings = settings

    @property
    def in_memory(self) -> bool:
        return False

    def connect(self) -> Any:
        s = self.settings
        timeout = max(1, int(round(s.timeout_seconds)))
        return pymysql.connect(
            host=s.host,
            port=int(s.port),
            user=s.username,
            password=s.password,
            database=s.database,
            charset="utf8mb4",
            connect_timeout=timeout,
            read_timeout=timeout,
            write_timeout=timeout,
            autocommit=False,
        )

    def ping(self, conn: Any) -> None:
        conn.ping(reconnect=False)

    def sql(self, query: str) -> str:
        return query.replace("?", "%s")

    def transient_hint(self, exc: BaseException) -> bool | None:
        if isinstance(exc, pymysql.err.InterfaceError):
            # Raised for operations on a closed/broken connection.
            return True
        if isinstance(exc, pymysql.err.MySQLError):
            errno = _mysql_errno(exc)
            if errno is not None:
                return errno in _MYSQL_TRANSIENT_ERRNOS
        return None

    def is_duplicate_index_error(self, exc: BaseException) -> bool:
        if isinstance(exc, pymysql.err.MySQLError) and _mysql_errno(exc) == _MYSQL_DUPLICATE_KEY_NAME:
            return True
        return "duplicate key name" in str(exc).lower()


def _mysql_errno(exc: BaseException) -> int | None:
    args = getattr(exc, "args", ())
    if args and isinstance(args[0], int):
        return int(args[0])
    return None


def dialect_for(settings: DatabaseSettings) -> SQLiteDialect | MySQLDialect:
    if settings.database_type == "mysql":
        return MySQLDialect(settings)
    return SQLiteDialect(settings.database_path)


def is_transient_error(exc: BaseException, dialect: SQLiteDialect | MySQLDialect | None = None) -> bool:
    """
    Classify a connect/execute failure as transient (worth retrying).

    Structured checks run first (socket exception types, driver error codes);
    message matching is only consulted when nothing structured applies.
    """
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, (TimeoutError, ConnectionError, socket.gaierror)):
            return True
        if dialect is not None:
            hint = dialect.transient_hint(current)
            if hint is not None:
                return hint
        current = current.__cause__ or current.__context__

    text = str(exc).lower()
    return any(s in text for s in _TRANSIENT_SUBSTRINGS)
