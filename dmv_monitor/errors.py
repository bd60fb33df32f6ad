"""
Exception taxonomy of the monitor.

Иерархия ошибок: конфигурация, загрузка страницы, разбор, уведомления, хранилище.
"""

from __future__ import annotations

from typing import Optional


class MonitorError(Exception):
    """Base class for all monitor errors."""


class ConfigurationError(MonitorError):
    """Requested operation is impossible with the current configuration."""


class FetchError(MonitorError):
    """Booking page could not be loaded (timeout, network, HTTP error)."""

    def __init__(self, message: str, *, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.url = url


class ExtractionError(MonitorError):
    """Page markup could not be interpreted."""


class NotificationError(MonitorError):
    """A notification channel failed to deliver a message."""

    def __init__(self, message: str, *, channel: str) -> None:
        super().__init__(f"{channel}: {message}")
        self.channel = channel


class StorageError(MonitorError):
    """Storage backend failed to read or persist data."""


__all__ = [
    "ConfigurationError",
    "ExtractionError",
    "FetchError",
    "MonitorError",
    "NotificationError",
    "StorageError",
]
