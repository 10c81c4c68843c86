from __future__ import annotations

import threading
import time

from db.errors import StoreCancelledError
from db.errors import StoreDeadlineExceeded


class Deadline:
    """
    Cancellation + deadline handle threaded through every store operation.

    `timeout` is seconds from construction; `cancel_event` lets another thread
    (or the event loop) abort a blocking retry loop. Either may be omitted.
    """

    def __init__(
        self,
        timeout: float | None = None,
        *,
        cancel_event: threading.Event | None = None,
        clock=time.monotonic,
    ) -> None:
        self._clock = clock
        self._expires_at = None if timeout is None else clock() + float(timeout)
        self._event = cancel_event or threading.Event()

    @classmethod
    def expired(cls) -> "Deadline":
        return cls(0.0)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def remaining(self) -> float | None:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    def check(self, operation: str = "operation") -> None:
        if self._event.is_set():
            raise StoreCancelledError(f"{operation} cancelled")
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise StoreDeadlineExceeded(f"{operation} deadline exceeded")

    def sleep(self, seconds: float, operation: str = "operation") -> None:
        self.check(operation)
        wait = max(0.0, float(seconds))
        remaining = self.remaining()
        if remaining is not None and remaining < wait:
            self._event.wait(remaining)
            self.check(operation)
            # Sleeping through the whole backoff would overrun the deadline.
            raise StoreDeadlineExceeded(f"{operation} deadline exceeded during backoff")
        if self._event.wait(wait):
            raise StoreCancelledError(f"{operation} cancelled during backoff")


def check_deadline(deadline: Deadline | None, operation: str) -> None:
    if deadline is not None:
        deadline.check(operation)
