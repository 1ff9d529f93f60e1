"""Tests for the outbound adapters (Telegram bot, Twilio WhatsApp)."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.adapters.telegram_notifier import TelegramNotifier, split_text
from src.adapters.whatsapp_notifier import WhatsAppNotifier


class TestTelegramNotifier:
    @pytest.mark.asyncio
    async def test_sends_to_chat_id(self):
        bot = MagicMock()
        bot.send_message = AsyncMock()

        await TelegramNotifier(bot).send_message("12345", "Morning report.")

        bot.send_message.assert_awaited_once_with(chat_id=12345, text="Morning report.")

    @pytest.mark.asyncio
    async def test_errors_propagate(self):
        bot = MagicMock()
        bot.send_message = AsyncMock(side_effect=RuntimeError("Forbidden: bot was blocked"))
        with pytest.raises(RuntimeError):
            await TelegramNotifier(bot).send_message("12345", "hi")

    def test_split_short_text(self):
        assert split_text("short") == ["short"]

    def test_split_prefers_line_breaks(self):
        text = "aaaa\nbbbb\ncccc"
        assert split_text(text, limit=10) == ["aaaa\nbbbb", "cccc"]

    def test_split_hard_cut_without_newline(self):
        assert split_text("x" * 25, limit=10) == ["x" * 10, "x" * 10, "x" * 5]


class TestWhatsAppNotifier:
    @pytest.mark.asyncio
    async def test_sends_via_twilio(self):
        client = MagicMock()

        await WhatsAppNotifier(client, "+14155238886").send_message("+41790000000", "PM report.")

        client.messages.create.assert_called_once_with(
            from_="whatsapp:+14155238886",
            to="whatsapp:+41790000000",
            body="PM report.",
        )

    @pytest.mark.asyncio
    async def test_prefixed_numbers_are_kept(self):
        client = MagicMock()
        await WhatsAppNotifier(client, "whatsapp:+1").send_message("whatsapp:+2", "x")
        kwargs = client.messages.create.call_args.kwargs
        assert (kwargs["from_"], kwargs["to"]) == ("whatsapp:+1", "whatsapp:+2")

    @pytest.mark.asyncio
    async def test_errors_propagate(self):
        client = MagicMock()
        client.messages.create.side_effect = RuntimeError("21211 invalid To")
        with pytest.raises(RuntimeError):
            await WhatsAppNotifier(client, "+1").send_message("+2", "x")
