"""Infrastructure errors raised by the request store and the notifier."""

from __future__ import annotations


class StoreError(Exception):
    """A persistence call failed. Always fatal to the current operation."""


class NotificationError(Exception):
    """An outbound Telegram message could not be delivered."""

    def __init__(self, chat_id: str, message: str) -> None:
        super().__init__(f"Failed to notify chat {chat_id}: {message}")
        self.chat_id = chat_id
