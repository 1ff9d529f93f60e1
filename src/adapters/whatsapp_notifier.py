"""WhatsApp notification adapter — implements NotificationPort via Twilio.

The Twilio REST client is synchronous, so sends run in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging

from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client

logger = logging.getLogger(__name__)


def _whatsapp_address(number: str) -> str:
    number = number.strip()
    return number if number.startswith("whatsapp:") else f"whatsapp:{number}"


class WhatsAppNotifier:
    """Twilio WhatsApp implementation of NotificationPort."""

    def __init__(self, client: Client, from_number: str) -> None:
        self._client = client
        self._from = _whatsapp_address(from_number)

    @classmethod
    def from_settings(cls) -> WhatsAppNotifier:
        from src.config import settings

        client = Client(
            settings.TWILIO_ACCOUNT_SID,
            settings.TWILIO_AUTH_TOKEN,
            http_client=TwilioHttpClient(timeout=settings.SEND_TIMEOUT_SECONDS),
        )
        return cls(client, settings.TWILIO_WHATSAPP_NUMBER)

    async def send_message(self, address: str, text: str) -> None:
        await asyncio.to_thread(
            self._client.messages.create,
            from_=self._from,
            to=_whatsapp_address(address),
            body=text,
        )
