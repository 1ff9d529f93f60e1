"""Notification port — abstract interface for sending messages to users.

Core modules depend on this protocol, never on a specific messaging provider.
The address is the channel-local destination (Telegram chat id, WhatsApp number).
"""

from __future__ import annotations

from typing import Protocol


class NotificationPort(Protocol):
    """Abstract notification interface used by core modules.

    send_message raises on delivery failure.
    """

    async def send_message(self, address: str, text: str) -> None: ...
