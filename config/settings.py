from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Mapping

from config.defaults import DEFAULT_CONFIG_RELOAD_INTERVAL_SECONDS
from config.defaults import DEFAULT_DATABASE_PATH
from config.defaults import DEFAULT_DATABASE_TYPE
from config.defaults import DEFAULT_MAINTENANCE_INTERVAL_SECONDS
from config.defaults import DEFAULT_MYSQL_DATABASE
from config.defaults import DEFAULT_MYSQL_HOST
from config.defaults import DEFAULT_MYSQL_PORT
from config.defaults import DEFAULT_MYSQL_TIMEOUT
from config.defaults import DEFAULT_POOL_MAX_IDLE
from config.defaults import DEFAULT_POOL_MAX_LIFETIME_SECONDS
from config.defaults import DEFAULT_POOL_MAX_OPEN
from config.defaults import DEFAULT_RECOVERY_WINDOW_MINUTES
from config.defaults import DEFAULT_THREAD_OWNERSHIP_MAX_AGE_HOURS
from config.defaults import SUPPORTED_DATABASE_TYPES
from config.errors import SettingsError


_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(text: str) -> float:
    """
    Parse a Go-style duration string ("30s", "1h30m", "500ms") into seconds.

    A bare "0" is accepted. Raises ValueError on anything else without a unit.
    """
    raw = (text or "").strip()
    if not raw:
        raise ValueError("empty duration")
    sign = 1.0
    if raw[0] in "+-":
        sign = -1.0 if raw[0] == "-" else 1.0
        raw = raw[1:]
    if raw == "0":
        return 0.0

    total = 0.0
    pos = 0
    while pos < len(raw):
        m = _DURATION_PART_RE.match(raw, pos)
        if not m:
            raise ValueError(f"invalid duration: {text!r}")
        total += float(m.group(1)) * _DURATION_UNITS[m.group(2)]
        pos = m.end()
    return sign * total


@dataclass(frozen=True)
class DatabaseSettings:
    database_type: str = DEFAULT_DATABASE_TYPE
    database_path: str = DEFAULT_DATABASE_PATH
    host: str = DEFAULT_MYSQL_HOST
    port: int = DEFAULT_MYSQL_PORT
    database: str = DEFAULT_MYSQL_DATABASE
    username: str = ""
    password: str = ""
    timeout_seconds: float = 30.0
    pool_max_open: int = DEFAULT_POOL_MAX_OPEN
    pool_max_idle: int = DEFAULT_POOL_MAX_IDLE
    pool_max_lifetime_seconds: float = DEFAULT_POOL_MAX_LIFETIME_SECONDS

    def describe(self) -> str:
        if self.database_type == "mysql":
            return (
                f"type=mysql host={self.host} port={self.port} "
                f"database={self.database} username={self.username} timeout={self.timeout_seconds}s"
            )
        return f"type=sqlite path={self.database_path}"


@dataclass(frozen=True)
class RuntimeSettings:
    recovery_window_minutes: int = DEFAULT_RECOVERY_WINDOW_MINUTES
    thread_ownership_max_age_hours: int = DEFAULT_THREAD_OWNERSHIP_MAX_AGE_HOURS
    maintenance_interval_seconds: int = DEFAULT_MAINTENANCE_INTERVAL_SECONDS
    config_reload_interval_seconds: int = DEFAULT_CONFIG_RELOAD_INTERVAL_SECONDS


def _env(env: Mapping[str, str], key: str, default: str = "") -> str:
    value = env.get(key)
    if value is None:
        return default
    value = value.strip()
    return value or default


def _env_int(env: Mapping[str, str], key: str, default: int, *, minimum: int = 0) -> int:
    raw = _env(env, key, str(default))
    try:
        value = int(raw)
    except ValueError:
        raise SettingsError(f"invalid {key}: {raw}") from None
    if value < minimum:
        raise SettingsError(f"{key} must be >= {minimum}: {value}")
    return value


def load_database_settings(env: Mapping[str, str] | None = None) -> DatabaseSettings:
    env = os.environ if env is None else env

    database_type = _env(env, "DATABASE_TYPE", DEFAULT_DATABASE_TYPE).lower()
    if database_type not in SUPPORTED_DATABASE_TYPES:
        raise SettingsError(
            f"invalid DATABASE_TYPE: {database_type} (supported: {', '.join(SUPPORTED_DATABASE_TYPES)})"
        )

    pool_max_open = _env_int(env, "DB_POOL_MAX_OPEN", DEFAULT_POOL_MAX_OPEN, minimum=1)
    pool_max_idle = _env_int(env, "DB_POOL_MAX_IDLE", DEFAULT_POOL_MAX_IDLE)
    pool_max_lifetime = _env_int(env, "DB_POOL_MAX_LIFETIME_SECONDS", DEFAULT_POOL_MAX_LIFETIME_SECONDS)

    database_path = _env(env, "DATABASE_PATH", DEFAULT_DATABASE_PATH)
    if database_type == "sqlite":
        return DatabaseSettings(
            database_type="sqlite",
            database_path=database_path,
            pool_max_open=pool_max_open,
            pool_max_idle=min(pool_max_idle, pool_max_open),
            pool_max_lifetime_seconds=float(pool_max_lifetime),
        )

    username = _env(env, "MYSQL_USERNAME")
    if not username:
        raise SettingsError("MYSQL_USERNAME environment variable is required")
    password = _env(env, "MYSQL_PASSWORD")
    if not password:
        raise SettingsError("MYSQL_PASSWORD environment variable is required")

    timeout_raw = _env(env, "MYSQL_TIMEOUT", DEFAULT_MYSQL_TIMEOUT)
    try:
        timeout_seconds = parse_duration(timeout_raw)
    except ValueError:
        raise SettingsError(f"invalid MYSQL_TIMEOUT format: {timeout_raw}") from None
    if timeout_seconds <= 0:
        raise SettingsError(f"MYSQL_TIMEOUT must be positive: {timeout_raw}")

    return DatabaseSettings(
        database_type="mysql",
        database_path=database_path,
        host=_env(env, "MYSQL_HOST", DEFAULT_MYSQL_HOST),
        port=_env_int(env, "MYSQL_PORT", DEFAULT_MYSQL_PORT, minimum=1),
        database=_env(env, "MYSQL_DATABASE", DEFAULT_MYSQL_DATABASE),
        username=username,
        password=password,
        timeout_seconds=timeout_seconds,
        pool_max_open=pool_max_open,
        pool_max_idle=min(pool_max_idle, pool_max_open),
        pool_max_lifetime_seconds=float(pool_max_lifetime),
    )


def load_runtime_settings(env: Mapping[str, str] | None = None) -> RuntimeSettings:
    env = os.environ if env is None else env
    return RuntimeSettings(
        recovery_window_minutes=_env_int(env, "MESSAGE_RECOVERY_WINDOW_MINUTES", DEFAULT_RECOVERY_WINDOW_MINUTES),
        thread_ownership_max_age_hours=_env_int(
            env, "THREAD_OWNERSHIP_MAX_AGE_HOURS", DEFAULT_THREAD_OWNERSHIP_MAX_AGE_HOURS
        ),
        maintenance_interval_seconds=_env_int(
            env, "MAINTENANCE_INTERVAL_SECONDS", DEFAULT_MAINTENANCE_INTERVAL_SECONDS, minimum=1
        ),
        config_reload_interval_seconds=_env_int(
            env, "CONFIG_RELOAD_INTERVAL_SECONDS", DEFAULT_CONFIG_RELOAD_INTERVAL_SECONDS
        ),
    )
