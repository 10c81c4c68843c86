from __future__ import annotations

import asyncio
import time
from datetime import timedelta

import discord
from discord.ext import commands

from config.errors import ConfigError
from db.errors import StoreError
from misc.runtime_deps import StateRuntimeDeps
from recovery.discord_history import checkpoint_from_message
from recovery.service import record_checkpoint
from recovery.service import record_thread_ownership
from recovery.service import recover_missed_messages
from recovery.service import recover_thread_ownerships
from state.models import ThreadOwnership


def recovery_window_seconds(deps: StateRuntimeDeps) -> int:
    minutes = deps.config_service.get_int(
        "MESSAGE_RECOVERY_WINDOW_MINUTES",
        default=deps.runtime.recovery_window_minutes,
    )
    return max(0, int(minutes)) * 60


def thread_ownership_max_age_seconds(deps: StateRuntimeDeps) -> float:
    """Configured max age, or the environment default when the row is unset or not positive."""
    fallback = timedelta(hours=deps.runtime.thread_ownership_max_age_hours).total_seconds()
    seconds = deps.config_service.get_duration(
        "THREAD_OWNERSHIP_MAX_AGE",
        default=timedelta(seconds=fallback),
    ).total_seconds()
    if seconds <= 0:
        print(f"[CFG] ignoring THREAD_OWNERSHIP_MAX_AGE={seconds}s, using {fallback}s")
        return fallback
    return seconds


def recovery_settings(deps: StateRuntimeDeps) -> tuple[bool, int]:
    """(enabled, window_seconds) for startup recovery. Blocking; run it off the event loop."""
    try:
        enabled = deps.config_service.get_bool("MESSAGE_RECOVERY_ENABLED", default=True)
        window_seconds = recovery_window_seconds(deps)
    except (ConfigError, StoreError) as e:
        print(f"[Recovery] could not read recovery settings, using defaults: {e}")
        return True, deps.runtime.recovery_window_minutes * 60
    return enabled, window_seconds


async def claim_thread(
    deps: StateRuntimeDeps,
    *,
    thread_id: int | str,
    original_user_id: int | str,
    bot_user_id: int | str,
) -> ThreadOwnership:
    ownership = ThreadOwnership(
        thread_id=str(thread_id),
        original_user_id=str(original_user_id),
        created_by=str(bot_user_id),
        creation_time=int(time.time()),
    )
    # Memory first so follow-ups in the thread are recognized before the write lands.
    deps.thread_owners[ownership.thread_id] = ownership
    await record_thread_ownership(deps.storage.ownerships, ownership)
    print(f"[State] thread ownership recorded thread={ownership.thread_id} original_user={ownership.original_user_id}")
    return ownership


def register_state_events(bot: commands.Bot, *, deps: StateRuntimeDeps) -> None:
    @bot.event
    async def on_ready():
        print(f"[Bot] online as {bot.user}")
        if not getattr(bot, "_state_recovered", False):
            bot._state_recovered = True
            try:
                await asyncio.to_thread(deps.config_service.reload)
            except StoreError as e:
                print(f"[CFG] initial load failed: {e}")

            try:
                deps.thread_owners.update(await recover_thread_ownerships(deps.storage.ownerships))
            except StoreError as e:
                print(f"[Recovery] thread ownership recovery failed: {e}")

            enabled, window_seconds = await asyncio.to_thread(recovery_settings, deps)

            if enabled and window_seconds > 0 and bot.user is not None:
                try:
                    await recover_missed_messages(
                        checkpoints=deps.storage.checkpoints,
                        fetch_messages_after=deps.fetch_messages_after,
                        process_message=deps.handle_message,
                        window_seconds=window_seconds,
                        bot_user_id=bot.user.id,
                    )
                except StoreError as e:
                    print(f"[Recovery] message recovery failed: {e}")

        if deps.maintenance_loop_func is not None and not getattr(bot, "_maintenance_task", None):
            bot._maintenance_task = asyncio.create_task(deps.maintenance_loop_func())
            print(f"[Jobs] maintenance loop started interval={deps.runtime.maintenance_interval_seconds}s")

        if deps.config_reload_loop_func is not None and not getattr(bot, "_config_reload_task", None):
            bot._config_reload_task = asyncio.create_task(deps.config_reload_loop_func())
            print(f"[CFG] auto-reload started fallback_interval={deps.runtime.config_reload_interval_seconds}s")

    @bot.event
    async def on_message(message: discord.Message):
        if bot.user and message.author.id == bot.user.id:
            return

        await record_checkpoint(deps.storage.checkpoints, checkpoint_from_message(message))
        await deps.handle_message(message)
