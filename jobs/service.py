from __future__ import annotations

import asyncio
import time
from typing import Callable

from db.errors import StoreError
from state.models import ThreadOwnership
from state.storage import StateStorage


def prune_thread_owners(
    thread_owners: dict[str, ThreadOwnership],
    *,
    max_age_seconds: float,
    now: float,
) -> int:
    cutoff = int(now) - int(max_age_seconds)
    stale = [thread_id for thread_id, row in thread_owners.items() if row.creation_time < cutoff]
    for thread_id in stale:
        del thread_owners[thread_id]
    return len(stale)


async def run_maintenance_once(
    storage: StateStorage,
    *,
    max_age_seconds: float | Callable[[], float],
    thread_owners: dict[str, ThreadOwnership] | None = None,
    clock: Callable[[], float] = time.time,
) -> int:
    def _cleanup() -> tuple[float, int]:
        # A callable max age may read configuration from the store.
        max_age = max_age_seconds() if callable(max_age_seconds) else max_age_seconds
        return max_age, storage.ownerships.cleanup_older_than(max_age)

    max_age, removed = await asyncio.to_thread(_cleanup)
    if thread_owners is not None:
        prune_thread_owners(thread_owners, max_age_seconds=max_age, now=clock())
    await asyncio.to_thread(storage.health_check)
    return removed


async def maintenance_loop(
    storage: StateStorage,
    *,
    max_age_seconds: Callable[[], float],
    thread_owners: dict[str, ThreadOwnership] | None = None,
    interval_seconds: int = 3600,
) -> None:
    """Periodic thread-ownership cleanup plus a storage health check."""
    while True:
        try:
            removed = await run_maintenance_once(
                storage,
                max_age_seconds=max_age_seconds,
                thread_owners=thread_owners,
            )
            print(f"[Jobs] maintenance tick removed_ownerships={removed} healthy=true")
        except StoreError as e:
            print(f"[Jobs] maintenance loop error: {e}")

        await asyncio.sleep(max(60, int(interval_seconds)))
