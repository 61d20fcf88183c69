"""Telegram notification sink.

Sends rollback and error notices to a staff group chat so failures seen on
a shared tablet are not lost when nobody is looking at the screen.
"""

import asyncio
import logging
import os

from telegram import Bot
from telegram.error import TelegramError

from .base import Severity

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4096

PREFIXES = {
    Severity.INFO: "ℹ️",
    Severity.WARNING: "⚠️",
    Severity.ERROR: "❌",
}


def truncate_message(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """Truncate message to fit Telegram limits."""
    if len(text) <= max_length:
        return text
    return text[: max_length - 20] + "\n... [省略]"


def format_notification(message: str, severity: Severity) -> str:
    return truncate_message(f"{PREFIXES[severity]} {message}")


class TelegramNotifier:
    """Notifier that posts messages to a Telegram chat.

    Messages below ``min_severity`` are dropped. Sending happens in a
    background task; failures are logged and never reach the caller.
    """

    def __init__(
        self,
        token: str | None = None,
        chat_id: str | None = None,
        min_severity: Severity = Severity.WARNING,
        bot: Bot | None = None,
    ) -> None:
        self.token = token or os.getenv("TELEGRAM_TOKEN")
        if not self.token and bot is None:
            raise ValueError("TELEGRAM_TOKEN not set")
        self.chat_id = chat_id or os.getenv("TELEGRAM_CHAT_ID")
        if not self.chat_id:
            raise ValueError("TELEGRAM_CHAT_ID not set")

        self.min_severity = min_severity
        self._bot = bot or Bot(self.token)
        self._initialized = bot is not None
        self._tasks: set[asyncio.Task] = set()

    def _wants(self, severity: Severity) -> bool:
        order = list(Severity)
        return order.index(severity) >= order.index(self.min_severity)

    def notify(self, message: str, severity: Severity = Severity.INFO) -> None:
        if not self._wants(severity):
            return

        text = format_notification(message, severity)
        try:
            task = asyncio.get_running_loop().create_task(self._send(text))
        except RuntimeError:
            logger.warning("No running event loop, dropping Telegram notification: %s", text)
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send(self, text: str) -> None:
        try:
            if not self._initialized:
                await self._bot.initialize()
                self._initialized = True
            await self._bot.send_message(chat_id=self.chat_id, text=text)
        except TelegramError as e:
            logger.error("Failed to send Telegram notification: %s", e)

    async def flush(self) -> None:
        """Wait for queued messages to be sent."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def close(self) -> None:
        await self.flush()
        if self._initialized:
            await self._bot.shutdown()
            self._initialized = False
