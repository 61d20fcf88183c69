"""Notification sinks for user-visible messages."""

from .base import (
    CollectingNotifier,
    ConsoleNotifier,
    LoggingNotifier,
    Notification,
    Notifier,
    Severity,
)
from .telegram import TelegramNotifier

__all__ = [
    "CollectingNotifier",
    "ConsoleNotifier",
    "LoggingNotifier",
    "Notification",
    "Notifier",
    "Severity",
    "TelegramNotifier",
]
