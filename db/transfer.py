from __future__ import annotations

from dataclasses import dataclass
from dataclasses import replace

from db.deadline import Deadline
from db.errors import StoreError
from state.storage import StateStorage


@dataclass(slots=True)
class TransferResult:
    checkpoints: int = 0
    ownerships: int = 0
    configurations: int = 0


def transfer_state(source: StateStorage, target: StateStorage, *, deadline: Deadline | None = None) -> TransferResult:
    """
    Copy every row from source to target through the target's upserts.

    Surrogate ids are not carried over. Source rows win over rows already in
    the target with the same natural key.
    """
    result = TransferResult()

    for checkpoint in source.checkpoints.get_all(deadline=deadline):
        try:
            target.checkpoints.upsert(replace(checkpoint, id=None), deadline=deadline)
        except StoreError as exc:
            raise StoreError(
                f"failed to transfer message checkpoint for channel {checkpoint.channel_id}: {exc}"
            ) from exc
        result.checkpoints += 1

    for ownership in source.ownerships.get_all(deadline=deadline):
        try:
            target.ownerships.upsert(replace(ownership, id=None), deadline=deadline)
        except StoreError as exc:
            raise StoreError(f"failed to transfer thread ownership for thread {ownership.thread_id}: {exc}") from exc
        result.ownerships += 1

    for config in source.configurations.get_all(deadline=deadline):
        try:
            target.configurations.upsert(replace(config, id=None), deadline=deadline)
        except StoreError as exc:
            raise StoreError(f"failed to transfer configuration {config.key}: {exc}") from exc
        result.configurations += 1

    print(
        f"[DB] transferred state {source.dialect.name}->{target.dialect.name} "
        f"checkpoints={result.checkpoints} ownerships={result.ownerships} configurations={result.configurations}"
    )
    return result


def validate_transfer(source: StateStorage, target: StateStorage, *, deadline: Deadline | None = None) -> None:
    """
    Raises StoreError when the target does not hold what the source holds.

    Checkpoint and ownership counts must match exactly. The target may carry
    extra seeded configuration keys, but every source key must be present with
    the same value.
    """
    source_checkpoints = source.checkpoints.count(deadline=deadline)
    target_checkpoints = target.checkpoints.count(deadline=deadline)
    if source_checkpoints != target_checkpoints:
        raise StoreError(
            f"message checkpoints count mismatch: source={source_checkpoints}, target={target_checkpoints}"
        )

    source_ownerships = source.ownerships.count(deadline=deadline)
    target_ownerships = target.ownerships.count(deadline=deadline)
    if source_ownerships != target_ownerships:
        raise StoreError(f"thread ownerships count mismatch: source={source_ownerships}, target={target_ownerships}")

    target_values = {c.key: c.value for c in target.configurations.get_all(deadline=deadline)}
    missing = [
        c.key for c in source.configurations.get_all(deadline=deadline) if target_values.get(c.key) != c.value
    ]
    if missing:
        raise StoreError(f"configurations missing or different in target: {', '.join(sorted(missing))}")
