from __future__ import annotations


class ForecastError(ValueError):
    """Base class for request or item problems raised by the forecast engine."""


class InvalidItemConfiguration(ForecastError):
    def __init__(self, item_id: str, reason: str) -> None:
        super().__init__(f"Recurring item {item_id!r}: {reason}")
        self.item_id = item_id
        self.reason = reason


class WindowExceeded(ForecastError):
    """Raised when a forecast window is unbounded or longer than allowed."""


class OverrideStorageUnavailable(RuntimeError):
    """Raised when the override table cannot be read or written."""
