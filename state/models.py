from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class MessageCheckpoint:
    """Last message processed in one conversation context (channel, or thread within a channel)."""

    channel_id: str
    thread_id: str | None = None
    last_message_id: str = ""
    last_seen_at: int = 0
    created_at: int = 0
    updated_at: int = 0
    id: int | None = None

    @property
    def context_id(self) -> str:
        # Threads are addressed directly by their own id on Discord.
        return self.thread_id if self.thread_id is not None else self.channel_id


@dataclass(slots=True)
class ThreadOwnership:
    thread_id: str
    original_user_id: str
    created_by: str
    creation_time: int
    created_at: int = 0
    updated_at: int = 0
    id: int | None = None


@dataclass(slots=True)
class Configuration:
    key: str
    value: str
    type: str = "string"
    category: str = "general"
    description: str = ""
    created_at: int = 0
    updated_at: int = 0
    id: int | None = None


def apply_saved_row(target, saved):
    """Copy the row identity and timestamps of a committed write onto the caller's object."""
    target.id = saved.id
    target.created_at = saved.created_at
    target.updated_at = saved.updated_at
    return target
