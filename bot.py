import os
import asyncio
import re

import discord
from discord.ext import commands

from config.errors import SettingsError
from config.service import ConfigService
from config.service import auto_reload_loop
from config.settings import load_database_settings
from config.settings import load_runtime_settings
from db.errors import StoreError
from jobs.service import maintenance_loop as maintenance_loop_service
from misc.events_runtime import claim_thread
from misc.events_runtime import register_state_events
from misc.events_runtime import thread_ownership_max_age_seconds
from misc.runtime_deps import StateRuntimeDeps
from recovery.discord_history import fetch_messages_after as fetch_messages_after_service
from state.storage import StateStorage

# =========================
# ENV
# =========================
DISCORD_TOKEN = os.getenv("DISCORD_TOKEN")

if not DISCORD_TOKEN:
    raise RuntimeError("Missing DISCORD_TOKEN env var")

try:
    DATABASE_SETTINGS = load_database_settings()
    RUNTIME_SETTINGS = load_runtime_settings()
except SettingsError as e:
    raise RuntimeError(f"Invalid configuration: {e}") from e

THREAD_NAME_MAX_CHARS = 90

# =========================
# STORAGE
# =========================
print(f"[DB] using {DATABASE_SETTINGS.describe()}")
storage = StateStorage(DATABASE_SETTINGS)
# Schema problems are fatal; the bot does not start without its state tables.
storage.initialize()
config_service = ConfigService(storage.configurations)
thread_owners: dict = {}

# =========================
# DISCORD BOT
# =========================
intents = discord.Intents.default()
intents.message_content = True

bot = commands.Bot(command_prefix="!", intents=intents)


async def fetch_messages_after(context_id: str, after_message_id: str, limit: int) -> list[discord.Message]:
    return await fetch_messages_after_service(bot, context_id, after_message_id, limit)


def _thread_name_for(message: discord.Message) -> str:
    text = re.sub(r"<@!?\d+>", "", message.content or "").strip()
    text = " ".join(text.split()) or f"Thread for {message.author.display_name}"
    return text[:THREAD_NAME_MAX_CHARS]


async def handle_message(message: discord.Message) -> None:
    if message.author.bot:
        return

    if (message.content or "").lstrip().startswith("!"):
        await bot.process_commands(message)
        return

    if isinstance(message.channel, discord.Thread):
        owner = thread_owners.get(str(message.channel.id))
        if owner is not None and owner.original_user_id == str(message.author.id):
            print(f"[Bot] follow-up in owned thread thread={message.channel.id} author={message.author.id}")
        return

    if bot.user and bot.user in message.mentions and message.guild is not None:
        try:
            thread = await message.create_thread(name=_thread_name_for(message))
        except discord.HTTPException as e:
            print(f"[Bot] could not create thread for message={message.id}: {e}")
            return
        await claim_thread(deps, thread_id=thread.id, original_user_id=message.author.id, bot_user_id=bot.user.id)


async def maintenance_loop() -> None:
    return await maintenance_loop_service(
        storage,
        max_age_seconds=lambda: thread_ownership_max_age_seconds(deps),
        thread_owners=thread_owners,
        interval_seconds=RUNTIME_SETTINGS.maintenance_interval_seconds,
    )


async def config_reload_loop() -> None:
    return await auto_reload_loop(config_service, interval_seconds=RUNTIME_SETTINGS.config_reload_interval_seconds)


@bot.command(name="statehealth")
@commands.is_owner()
async def statehealth(ctx: commands.Context):
    try:
        await asyncio.to_thread(storage.health_check)
        checkpoints = await asyncio.to_thread(storage.checkpoints.count)
        ownerships = await asyncio.to_thread(storage.ownerships.count)
    except StoreError as e:
        await ctx.send(f"State storage unhealthy: {e}")
        return
    await ctx.send(
        f"State storage OK ({storage.dialect.name}): checkpoints={checkpoints} "
        f"thread_ownerships={ownerships} tracked_threads={len(thread_owners)}"
    )


deps = StateRuntimeDeps(
    storage=storage,
    config_service=config_service,
    runtime=RUNTIME_SETTINGS,
    fetch_messages_after=fetch_messages_after,
    handle_message=handle_message,
    thread_owners=thread_owners,
    maintenance_loop_func=maintenance_loop,
    config_reload_loop_func=config_reload_loop,
)

register_state_events(bot, deps=deps)

try:
    bot.run(DISCORD_TOKEN)
finally:
    storage.close()
