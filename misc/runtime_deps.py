from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from typing import Callable

from config.service import ConfigService
from config.settings import RuntimeSettings
from state.models import ThreadOwnership
from state.storage import StateStorage


@dataclass(frozen=True)
class StateRuntimeDeps:
    # storage
    storage: StateStorage
    config_service: ConfigService
    runtime: RuntimeSettings

    # discord
    fetch_messages_after: Callable  # async (context_id, after_message_id, limit) -> list[Message]
    handle_message: Callable  # async (message) -> None

    # in-memory view of thread ownerships, keyed by thread id
    thread_owners: dict[str, ThreadOwnership] = field(default_factory=dict)
    maintenance_loop_func: Callable | None = None
    config_reload_loop_func: Callable | None = None
