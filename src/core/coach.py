"""
MindArsenal Coach — Coach Responder.

Answers free text that no pending intent claims. Delegates to the LLM
collaborator with a fixed persona; any failure (error, timeout, empty
answer) degrades to a deterministic message, never to silence.
"""

from __future__ import annotations

import asyncio
import logging

from src.core import llm
from src.core.messages import SYSTEM_PROMPT
from src.data.models import UserRecord

logger = logging.getLogger(__name__)

_NO_MISSION = "No mission defined."


def _mission(user: UserRecord) -> str:
    return user.goals_text or _NO_MISSION


def offline_reply(user: UserRecord) -> str:
    """Templated reply used when no LLM is configured."""
    return f"{user.display_name}, system offline.\nYour mission:\n{_mission(user)}"


def fallback_reply(user: UserRecord, text: str) -> str:
    """Templated reply used when the LLM call fails."""
    return (
        f"{user.display_name}, the coach channel failed.\n"
        f"Message:\n\"{text}\"\n"
        "Execute one step now."
    )


def build_context(user: UserRecord, text: str) -> str:
    return f"Trainee: {user.display_name}\nMission:\n{_mission(user)}\n\nUser message:\n{text}"


async def coach_reply(user: UserRecord, text: str, timeout: float | None = None) -> str:
    """Return the coach's answer to text. Never raises."""
    if not llm.is_configured():
        logger.warning("coach_offline user=%s", user.identity_key)
        return offline_reply(user)

    if timeout is None:
        from src.config import settings
        timeout = settings.LLM_TIMEOUT_SECONDS

    logger.info("coach_call user=%s text_len=%d", user.identity_key, len(text))
    try:
        answer = await asyncio.wait_for(
            llm.complete(system=SYSTEM_PROMPT, user_message=build_context(user, text)),
            timeout=timeout,
        )
    except Exception as exc:
        logger.error("coach_error user=%s err=%r", user.identity_key, exc)
        return fallback_reply(user, text)

    answer = (answer or "").strip()
    if not answer:
        logger.error("coach_error user=%s err=empty response", user.identity_key)
        return fallback_reply(user, text)
    return answer


async def health_check() -> str:
    """One-line liveness check of the LLM collaborator."""
    if not llm.is_configured():
        return "AI coach missing."
    try:
        answer = await llm.complete(
            system="Short. Ruthless.", user_message="Say System online.", max_tokens=32,
        )
    except Exception as exc:
        logger.error("coach_error health_check err=%r", exc)
        return "AI coach failed."
    return (answer or "").strip() or "AI coach failed."
