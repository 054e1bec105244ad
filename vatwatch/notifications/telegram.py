"""Outbound Telegram notifications to users and to the admin chat.

Delivery failures surface as NotificationError; whether they are swallowed
is the caller's decision.
"""

from __future__ import annotations

import logging

from telegram import Bot
from telegram.error import TelegramError

from vatwatch.errors import NotificationError

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Sends plain-text messages through a python-telegram-bot Bot.

    Without a bot (no token configured) messages are only logged.
    """

    def __init__(self, bot: Bot | None, admin_chat_id: str = "") -> None:
        self._bot = bot
        self._admin_chat_id = admin_chat_id

    @property
    def enabled(self) -> bool:
        return self._bot is not None

    @property
    def has_admin_chat(self) -> bool:
        return bool(self._admin_chat_id)

    async def notify(self, owner_id: str, text: str) -> None:
        """Send a message to a user's chat."""
        if self._bot is None:
            logger.warning("Telegram disabled, dropping message to chat %s", owner_id)
            return
        try:
            await self._bot.send_message(chat_id=owner_id, text=text)
        except TelegramError as exc:
            raise NotificationError(owner_id, str(exc)) from exc
        logger.info("Notified chat %s", owner_id)

    async def notify_admin(self, text: str) -> None:
        """Send a message to the configured admin chat, if any."""
        if not self._admin_chat_id:
            return
        await self.notify(self._admin_chat_id, text)
