from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml

from config.defaults import CONFIG_VALUE_TYPES
from state.models import Configuration


DEFAULT_SEED_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "default_configurations.yml")


def default_seed_configurations() -> list[Configuration]:
    return [
        Configuration(
            key="MESSAGE_RECOVERY_WINDOW_MINUTES",
            value="5",
            type="int",
            category="recovery",
            description="How far back missed-message recovery looks on startup.",
        ),
        Configuration(
            key="MESSAGE_RECOVERY_ENABLED",
            value="true",
            type="bool",
            category="recovery",
            description="Replay messages missed while the bot was offline.",
        ),
        Configuration(
            key="THREAD_OWNERSHIP_MAX_AGE",
            value="24h",
            type="duration",
            category="threads",
            description="Thread ownership rows older than this are removed by maintenance.",
        ),
    ]


def _entry_from_mapping(item: dict[str, Any], index: int) -> Configuration:
    key = str(item.get("key") or "").strip()
    if not key:
        raise ValueError(f"entry {index} has no key")
    value_type = str(item.get("type") or "string").strip().lower()
    if value_type not in CONFIG_VALUE_TYPES:
        raise ValueError(f"entry {key} has unsupported type {value_type!r}")
    value = item.get("value")
    if isinstance(value, bool):
        value = "true" if value else "false"
    return Configuration(
        key=key,
        value="" if value is None else str(value),
        type=value_type,
        category=str(item.get("category") or "general").strip(),
        description=str(item.get("description") or "").strip(),
    )


def load_seed_configurations(path: str | Path | None) -> tuple[list[Configuration], str | None]:
    """
    Returns (entries, warning_message). warning_message is None on clean load.

    Missing or malformed files fall back to the built-in defaults.
    """
    defaults = default_seed_configurations()
    if not path:
        return (defaults, "Seed configuration path missing; using built-in defaults.")

    p = Path(path)
    if not p.exists():
        return (defaults, f"Seed configuration file not found at {p}; using built-in defaults.")

    try:
        payload = yaml.safe_load(p.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        return (defaults, f"Failed to read seed configurations from {p}: {exc}; using built-in defaults.")

    items = payload.get("configurations") if isinstance(payload, dict) else None
    if not isinstance(items, list):
        return (defaults, f"Invalid seed configuration format in {p}; using built-in defaults.")

    entries: list[Configuration] = []
    seen: set[str] = set()
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            return (defaults, f"Invalid seed entry {index} in {p}; using built-in defaults.")
        try:
            entry = _entry_from_mapping(item, index)
        except ValueError as exc:
            return (defaults, f"Invalid seed configuration in {p}: {exc}; using built-in defaults.")
        if entry.key in seen:
            continue
        seen.add(entry.key)
        entries.append(entry)
    return (entries, None)
