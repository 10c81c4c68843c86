from __future__ import annotations


class StoreError(RuntimeError):
    """Base class for state storage errors."""


class StoreConnectionError(StoreError):
    """Raised when a database connection cannot be established."""


class StoreOperationError(StoreError):
    def __init__(self, message: str, *, operation: str = "", key: object = None) -> None:
        super().__init__(message)
        self.operation = operation
        self.key = key


class StoreIntegrityError(StoreOperationError):
    """Unique or constraint violation. Never retried."""


class StoreCancelledError(StoreError):
    """Raised when the caller cancels an operation."""


class StoreDeadlineExceeded(StoreCancelledError):
    """Raised when the caller's deadline passes before an operation completes."""


class ConfigurationNotFoundError(StoreError):
    def __init__(self, key: str) -> None:
        super().__init__(f"configuration with key {key!r} not found")
        self.key = key


class SchemaError(StoreError):
    """Raised when schema initialization fails. Fatal to startup."""
