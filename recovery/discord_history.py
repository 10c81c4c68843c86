from __future__ import annotations

from typing import Any

import discord

from config.defaults import DEFAULT_RECOVERY_FETCH_LIMIT
from recovery.service import message_timestamp
from state.models import MessageCheckpoint


def checkpoint_from_message(message: discord.Message) -> MessageCheckpoint:
    """Threads are stored under their parent channel with the thread's own id."""
    channel = message.channel
    if isinstance(channel, discord.Thread):
        parent_id = getattr(channel, "parent_id", None)
        if parent_id is None and getattr(channel, "parent", None) is not None:
            parent_id = channel.parent.id
        if parent_id is not None:
            return MessageCheckpoint(
                channel_id=str(parent_id),
                thread_id=str(channel.id),
                last_message_id=str(message.id),
                last_seen_at=int(message_timestamp(message)),
            )
    return MessageCheckpoint(
        channel_id=str(channel.id),
        thread_id=None,
        last_message_id=str(message.id),
        last_seen_at=int(message_timestamp(message)),
    )


async def _resolve_channel(client: Any, context_id: int) -> Any:
    channel = client.get_channel(context_id)
    if channel is None:
        channel = await client.fetch_channel(context_id)
    return channel


async def fetch_messages_after(
    client: Any,
    context_id: str,
    after_message_id: str,
    limit: int = DEFAULT_RECOVERY_FETCH_LIMIT,
) -> list[discord.Message]:
    """Messages in a channel or thread after the given id, oldest first."""
    channel = await _resolve_channel(client, int(context_id))
    after = discord.Object(id=int(after_message_id)) if after_message_id else None
    out: list[discord.Message] = []
    async for msg in channel.history(limit=int(limit), after=after, oldest_first=True):
        out.append(msg)
    return out
