"""Channel fan-out.

A user may be linked to several channels. deliver() attempts every one of
them; each outcome is independent, and a failing channel never blocks or
fails the others. Failed sends are logged and counted, never retried.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.data.db import RuntimeState
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


class ChannelRouter:
    """Maps channel names ('telegram', 'whatsapp') to NotificationPorts."""

    def __init__(
        self,
        notifiers: dict[str, NotificationPort] | None = None,
        runtime: RuntimeState | None = None,
    ) -> None:
        self._notifiers: dict[str, NotificationPort] = dict(notifiers or {})
        self._runtime = runtime

    def register(self, channel: str, notifier: NotificationPort) -> None:
        self._notifiers[channel] = notifier

    @property
    def channels(self) -> list[str]:
        return list(self._notifiers)

    async def deliver(self, channels: dict[str, str], text: str) -> dict[str, bool]:
        """Send text to every (channel, address) pair. Returns channel -> success."""
        if not channels:
            return {}
        names = list(channels)
        outcomes = await asyncio.gather(
            *(self._send_one(name, channels[name], text) for name in names)
        )
        return dict(zip(names, outcomes))

    async def _send_one(self, channel: str, address: str, text: str) -> bool:
        notifier = self._notifiers.get(channel)
        if notifier is None:
            logger.warning("send_skip channel=%s address=%s: channel not configured", channel, address)
            return False

        try:
            await notifier.send_message(address, text)
        except Exception as exc:
            logger.error("send_error channel=%s address=%s err=%s", channel, address, exc)
            self._count(ok=False)
            return False

        logger.info("msg_out channel=%s address=%s text_len=%d", channel, address, len(text))
        self._count(ok=True)
        return True

    def _count(self, ok: bool) -> None:
        if self._runtime is not None:
            self._runtime.record_send(ok)
