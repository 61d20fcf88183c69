"""Notifier interface and simple sinks."""

import logging
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, TextIO


class Severity(Enum):
    """How prominently a notification should be shown."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Notification:
    message: str
    severity: Severity


class Notifier(Protocol):
    """Surfaces messages to the user.

    Fire-and-forget: implementations must not raise and must not block.
    """

    def notify(self, message: str, severity: Severity = Severity.INFO) -> None:
        ...


class ConsoleNotifier:
    """Prints toast-like lines to a text stream."""

    ICONS = {
        Severity.INFO: "ℹ",
        Severity.WARNING: "⚠",
        Severity.ERROR: "❌",
    }

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream or sys.stdout

    def notify(self, message: str, severity: Severity = Severity.INFO) -> None:
        print(f"{self.ICONS[severity]} {message}", file=self.stream)


class LoggingNotifier:
    """Routes notifications to the standard logging module."""

    LEVELS = {
        Severity.INFO: logging.INFO,
        Severity.WARNING: logging.WARNING,
        Severity.ERROR: logging.ERROR,
    }

    def __init__(self, name: str = "kaigo.notifications") -> None:
        self._logger = logging.getLogger(name)

    def notify(self, message: str, severity: Severity = Severity.INFO) -> None:
        self._logger.log(self.LEVELS[severity], message)


class CollectingNotifier:
    """Keeps notifications in memory, for embedding views and tests."""

    def __init__(self) -> None:
        self.notifications: list[Notification] = []

    def notify(self, message: str, severity: Severity = Severity.INFO) -> None:
        self.notifications.append(Notification(message, severity))

    @property
    def messages(self) -> list[str]:
        return [n.message for n in self.notifications]

    def clear(self) -> None:
        self.notifications.clear()
