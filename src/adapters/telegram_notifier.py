"""Telegram notification adapter — implements NotificationPort.

Addresses are chat ids as strings. Texts longer than Telegram's message
limit go out as several consecutive messages.
"""

from __future__ import annotations

from telegram import Bot
from telegram.constants import MessageLimit


def split_text(text: str, limit: int = MessageLimit.MAX_TEXT_LENGTH) -> list[str]:
    """Cut text into chunks of at most `limit` chars, preferring line breaks."""
    chunks = []
    while len(text) > limit:
        cut = text.rfind("\n", 0, limit)
        if cut <= 0:
            cut = limit
        chunks.append(text[:cut])
        text = text[cut:].lstrip("\n")
    chunks.append(text)
    return chunks


class TelegramNotifier:
    """Telegram implementation of NotificationPort."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_message(self, address: str, text: str) -> None:
        chat_id = int(address)
        for chunk in split_text(text):
            await self._bot.send_message(chat_id=chat_id, text=chunk)
