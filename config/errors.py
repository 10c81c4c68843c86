from __future__ import annotations


class SettingsError(ValueError):
    """Invalid process configuration (environment variables)."""


class ConfigError(RuntimeError):
    def __init__(self, key: str, message: str) -> None:
        if key:
            super().__init__(f"config {key!r}: {message}")
        else:
            super().__init__(message)
        self.key = key
