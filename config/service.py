from __future__ import annotations

import asyncio
import threading
from datetime import timedelta
from typing import Any, Callable

from config.defaults import CONFIG_KEY_MAX_CHARS
from config.defaults import CONFIG_VALUE_MAX_CHARS
from config.defaults import FALSE_WORDS
from config.defaults import TRUE_WORDS
from config.errors import ConfigError
from config.settings import parse_duration
from db.errors import StoreError
from state.configuration_store import ConfigurationStore
from state.models import Configuration


ChangeListener = Callable[[str, "str | None", "str | None"], None]

_MISSING = object()

RELOAD_INTERVAL_KEY = "CONFIG_RELOAD_INTERVAL"


def parse_bool(value: str) -> bool:
    text = str(value or "").strip().lower()
    if text in TRUE_WORDS:
        return True
    if text in FALSE_WORDS:
        return False
    raise ValueError(f"invalid boolean value: {value!r}")


def format_duration(seconds: float) -> str:
    total = float(seconds)
    if total == 0:
        return "0s"
    if total != int(total):
        return f"{int(round(total * 1000))}ms"
    total_int = int(total)
    hours, rem = divmod(total_int, 3600)
    minutes, secs = divmod(rem, 60)
    out = ""
    if hours:
        out += f"{hours}h"
    if minutes:
        out += f"{minutes}m"
    if secs or not out:
        out += f"{secs}s"
    return out


def validate_configuration(key: str, value: str) -> None:
    """Raises ConfigError for keys or values the store must not accept."""
    if not key:
        raise ConfigError(key, "configuration key cannot be empty")
    if len(key) > CONFIG_KEY_MAX_CHARS:
        raise ConfigError(key, f"configuration key too long (max {CONFIG_KEY_MAX_CHARS} characters)")
    if len(value) > CONFIG_VALUE_MAX_CHARS:
        raise ConfigError(key, f"configuration value too long (max {CONFIG_VALUE_MAX_CHARS} characters)")

    if key.endswith("_RATE_LIMIT_PER_MINUTE") or key.endswith("_RATE_LIMIT_PER_DAY"):
        try:
            int(value.strip())
        except ValueError:
            raise ConfigError(key, f"rate limit value must be an integer: {value!r}") from None
    if key.endswith("_ENABLED"):
        try:
            parse_bool(value)
        except ValueError:
            raise ConfigError(key, f"enabled value must be a boolean: {value!r}") from None


def validate_value_type(key: str, value: str, value_type: str) -> None:
    """Raises ConfigError when `value` does not parse as `value_type`."""
    if value_type == "string":
        return
    try:
        if value_type == "int":
            int(value.strip())
        elif value_type == "bool":
            parse_bool(value)
        elif value_type == "duration":
            parse_duration(value)
        else:
            raise ConfigError(key, f"unsupported configuration type: {value_type!r}")
    except ValueError:
        raise ConfigError(key, f"value is not a valid {value_type}: {value!r}") from None


class ConfigService:
    """
    Cached, typed access to the configurations table.

    Reads hit the in-process cache first and fall through to the store on a
    miss. Writes go to the store and then refresh the cache. Listeners are
    called with (key, old_value, new_value); a deleted key reports new=None.
    """

    def __init__(self, store: ConfigurationStore) -> None:
        self._store = store
        self._cache: dict[str, Configuration] = {}
        self._lock = threading.RLock()
        self._listeners: list[ChangeListener] = []
        self._loaded = False

    def add_listener(self, listener: ChangeListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def _notify(self, key: str, old: str | None, new: str | None) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(key, old, new)
            except Exception as e:
                print(f"[CFG] change listener failed key={key}: {e}")

    def reload(self) -> int:
        rows = self._store.get_all()
        fresh = {row.key: row for row in rows}
        changes: list[tuple[str, str | None, str | None]] = []
        with self._lock:
            old_cache = self._cache
            if self._loaded:
                for key, row in fresh.items():
                    previous = old_cache.get(key)
                    if previous is None or previous.value != row.value:
                        changes.append((key, previous.value if previous else None, row.value))
                for key, previous in old_cache.items():
                    if key not in fresh:
                        changes.append((key, previous.value, None))
            self._cache = fresh
            self._loaded = True
        for key, old, new in changes:
            self._notify(key, old, new)
        print(f"[CFG] reloaded configurations count={len(fresh)} changed={len(changes)}")
        return len(fresh)

    def _lookup(self, key: str) -> Configuration | None:
        key = str(key or "").strip()
        if not key:
            return None
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached
        row = self._store.get(key)
        if row is not None:
            with self._lock:
                self._cache[key] = row
        return row

    def get(self, key: str, default: Any = _MISSING) -> str:
        row = self._lookup(key)
        if row is None:
            if default is _MISSING:
                raise ConfigError(key, "configuration not found")
            return default
        return row.value

    def get_int(self, key: str, default: Any = _MISSING) -> int:
        row = self._lookup(key)
        if row is None:
            if default is _MISSING:
                raise ConfigError(key, "configuration not found")
            return default
        try:
            return int(row.value.strip())
        except ValueError:
            if default is not _MISSING:
                return default
            raise ConfigError(key, f"value is not an integer: {row.value!r}") from None

    def get_bool(self, key: str, default: Any = _MISSING) -> bool:
        row = self._lookup(key)
        if row is None:
            if default is _MISSING:
                raise ConfigError(key, "configuration not found")
            return default
        try:
            return parse_bool(row.value)
        except ValueError:
            if default is not _MISSING:
                return default
            raise ConfigError(key, f"value is not a boolean: {row.value!r}") from None

    def get_duration(self, key: str, default: Any = _MISSING) -> timedelta:
        row = self._lookup(key)
        if row is None:
            if default is _MISSING:
                raise ConfigError(key, "configuration not found")
            return default
        try:
            return timedelta(seconds=parse_duration(row.value))
        except ValueError:
            if default is not _MISSING:
                return default
            raise ConfigError(key, f"value is not a duration: {row.value!r}") from None

    def set(
        self,
        key: str,
        value: str,
        *,
        value_type: str = "string",
        category: str | None = None,
        description: str | None = None,
    ) -> Configuration:
        key = str(key or "").strip()
        value = str(value)
        validate_configuration(key, value)
        validate_value_type(key, value, value_type)
        previous = self._lookup(key)
        # Unset metadata keeps whatever the row already has.
        if category is None:
            category = previous.category if previous is not None else "general"
        if description is None:
            description = previous.description if previous is not None else ""
        row = self._store.upsert(
            Configuration(key=key, value=value, type=value_type, category=category, description=description)
        )
        with self._lock:
            self._cache[key] = row
        old_value = previous.value if previous is not None else None
        if old_value != row.value:
            self._notify(key, old_value, row.value)
        return row

    def set_typed(
        self,
        key: str,
        value: Any,
        *,
        category: str | None = None,
        description: str | None = None,
    ) -> Configuration:
        if isinstance(value, bool):
            return self.set(key, "true" if value else "false", value_type="bool", category=category, description=description)
        if isinstance(value, int):
            return self.set(key, str(value), value_type="int", category=category, description=description)
        if isinstance(value, timedelta):
            return self.set(
                key,
                format_duration(value.total_seconds()),
                value_type="duration",
                category=category,
                description=description,
            )
        return self.set(key, str(value), value_type="string", category=category, description=description)

    def delete(self, key: str) -> None:
        key = str(key or "").strip()
        with self._lock:
            previous = self._cache.get(key)
        self._store.delete(key)
        with self._lock:
            self._cache.pop(key, None)
        self._notify(key, previous.value if previous is not None else None, None)

    def validate(self, key: str, value: str, value_type: str = "string") -> None:
        key = str(key or "").strip()
        validate_configuration(key, str(value))
        validate_value_type(key, str(value), value_type)

    def by_category(self, category: str) -> list[Configuration]:
        return self._store.get_by_category(category)

    def all(self) -> list[Configuration]:
        return self._store.get_all()

    def health_check(self) -> None:
        self._store.count()


def reload_interval_seconds(service: ConfigService, fallback_seconds: float) -> float:
    """CONFIG_RELOAD_INTERVAL from the table, or `fallback_seconds` when unset or unusable."""
    try:
        seconds = service.get_duration(RELOAD_INTERVAL_KEY, default=timedelta(seconds=fallback_seconds)).total_seconds()
    except StoreError as e:
        print(f"[CFG] could not read {RELOAD_INTERVAL_KEY}, using {fallback_seconds}s: {e}")
        return float(fallback_seconds)
    if seconds < 0:
        print(f"[CFG] ignoring negative {RELOAD_INTERVAL_KEY}={seconds}s, using {fallback_seconds}s")
        return float(fallback_seconds)
    return seconds


async def auto_reload_loop(service: ConfigService, *, interval_seconds: float) -> None:
    """Refresh the cache until the interval drops to zero."""
    interval = await asyncio.to_thread(reload_interval_seconds, service, interval_seconds)
    while interval > 0:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(service.reload)
        except StoreError as e:
            print(f"[CFG] auto-reload failed: {e}")
            continue
        interval = await asyncio.to_thread(reload_interval_seconds, service, interval_seconds)
    print("[CFG] auto-reload stopped")
