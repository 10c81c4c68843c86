from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable

from config.defaults import DEFAULT_RECOVERY_FETCH_LIMIT
from config.defaults import DEFAULT_RECOVERY_PAUSE_SECONDS
from config.defaults import DEFAULT_RECOVERY_TIMEOUT_SECONDS
from db.deadline import Deadline
from db.errors import StoreError
from state.checkpoint_store import CheckpointStore
from state.models import MessageCheckpoint
from state.models import ThreadOwnership
from state.ownership_store import ThreadOwnershipStore


FetchMessagesAfter = Callable[[str, str, int], Awaitable[list[Any]]]
ProcessMessage = Callable[[Any], Awaitable[None]]


def message_timestamp(message: Any) -> float:
    created = getattr(message, "created_at", None)
    if created is None:
        return 0.0
    if isinstance(created, (int, float)):
        return float(created)
    return float(created.timestamp())


async def record_checkpoint(
    checkpoints: CheckpointStore,
    checkpoint: MessageCheckpoint,
    *,
    timeout_seconds: float = 10.0,
) -> bool:
    """
    Persist a checkpoint from an event handler.

    A storage failure is logged and reported as False; message handling keeps
    going without persisted state.
    """
    try:
        await asyncio.to_thread(checkpoints.upsert, checkpoint, deadline=Deadline(timeout_seconds))
        return True
    except StoreError as e:
        print(
            f"[Recovery] failed to persist checkpoint channel={checkpoint.channel_id} "
            f"thread={checkpoint.thread_id} message={checkpoint.last_message_id}: {e}"
        )
        return False


async def record_thread_ownership(
    ownerships: ThreadOwnershipStore,
    ownership: ThreadOwnership,
    *,
    timeout_seconds: float = 5.0,
) -> bool:
    try:
        await asyncio.to_thread(ownerships.upsert, ownership, deadline=Deadline(timeout_seconds))
        return True
    except StoreError as e:
        print(
            f"[Recovery] failed to persist thread ownership thread={ownership.thread_id} "
            f"original_user={ownership.original_user_id}: {e}"
        )
        return False


async def recover_thread_ownerships(ownerships: ThreadOwnershipStore) -> dict[str, ThreadOwnership]:
    rows = await asyncio.to_thread(ownerships.get_all)
    recovered = {row.thread_id: row for row in rows}
    print(f"[Recovery] thread ownership recovery completed recovered_threads={len(recovered)}")
    return recovered


async def _recover_context(
    checkpoint: MessageCheckpoint,
    *,
    checkpoints: CheckpointStore,
    fetch_messages_after: FetchMessagesAfter,
    process_message: ProcessMessage,
    cutoff: float,
    bot_user_id: str,
    pause_seconds: float,
    fetch_limit: int,
) -> int:
    if checkpoint.last_seen_at < cutoff:
        print(
            f"[Recovery] skipping context outside window channel={checkpoint.channel_id} "
            f"thread={checkpoint.thread_id} last_seen={checkpoint.last_seen_at}"
        )
        return 0

    context_id = checkpoint.context_id
    messages = await fetch_messages_after(context_id, checkpoint.last_message_id, fetch_limit)

    missed = []
    for message in messages:
        author = getattr(message, "author", None)
        if author is not None and str(getattr(author, "id", "")) == bot_user_id:
            continue
        ts = message_timestamp(message)
        if ts > checkpoint.last_seen_at and ts > cutoff:
            missed.append(message)
    missed.sort(key=lambda m: (message_timestamp(m), int(getattr(m, "id", 0) or 0)))

    processed = 0
    for message in missed:
        print(f"[Recovery] processing recovered message id={message.id} context={context_id}")
        await process_message(message)
        processed += 1
        await record_checkpoint(
            checkpoints,
            MessageCheckpoint(
                channel_id=checkpoint.channel_id,
                thread_id=checkpoint.thread_id,
                last_message_id=str(message.id),
                last_seen_at=int(message_timestamp(message)),
            ),
        )
        if pause_seconds > 0:
            await asyncio.sleep(pause_seconds)

    print(
        f"[Recovery] context recovery completed channel={checkpoint.channel_id} "
        f"thread={checkpoint.thread_id} messages_processed={processed}"
    )
    return processed


async def recover_missed_messages(
    *,
    checkpoints: CheckpointStore,
    fetch_messages_after: FetchMessagesAfter,
    process_message: ProcessMessage,
    window_seconds: float,
    bot_user_id: Any,
    clock: Callable[[], float] = time.time,
    pause_seconds: float = DEFAULT_RECOVERY_PAUSE_SECONDS,
    fetch_limit: int = DEFAULT_RECOVERY_FETCH_LIMIT,
    timeout_seconds: float = DEFAULT_RECOVERY_TIMEOUT_SECONDS,
) -> int:
    """
    Replay messages sent while the bot was offline, bounded by the recovery window.

    Only checkpoints inside the window are considered. Each context is fetched
    after its last processed message, filtered, and processed oldest-first; a
    failing context is logged and skipped. Returns the total processed.
    """
    states = await asyncio.to_thread(
        checkpoints.get_within_window,
        window_seconds,
        deadline=Deadline(timeout_seconds),
    )
    print(f"[Recovery] starting message recovery window_seconds={int(window_seconds)} tracked_contexts={len(states)}")

    cutoff = float(clock()) - float(window_seconds)
    bot_id = str(bot_user_id)
    total = 0
    for checkpoint in states:
        try:
            total += await _recover_context(
                checkpoint,
                checkpoints=checkpoints,
                fetch_messages_after=fetch_messages_after,
                process_message=process_message,
                cutoff=cutoff,
                bot_user_id=bot_id,
                pause_seconds=pause_seconds,
                fetch_limit=fetch_limit,
            )
        except Exception as e:
            print(
                f"[Recovery] failed to recover context channel={checkpoint.channel_id} "
                f"thread={checkpoint.thread_id}: {e}"
            )
            continue

    print(f"[Recovery] message recovery completed total_recovered={total} contexts_processed={len(states)}")
    return total
