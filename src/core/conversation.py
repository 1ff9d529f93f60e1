"""
MindArsenal Coach — Conversation Engine.

The single, channel-agnostic entry point for inbound text. Every adapter
(Telegram polling, WhatsApp webhook) calls handle_message() and delivers the
returned replies however its transport requires.

Routing priority for one inbound message:
  1. command / start word
  2. active onboarding step
  3. active pending intent
  4. Coach Responder

Onboarding owns input until it completes, so a pending intent is never set
while an onboarding step is active.
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime
from typing import Callable

from src.core import messages
from src.core.coach import coach_reply, health_check
from src.core.scheduler import arm_prompt
from src.core.streaks import record_reply, weekly_snapshot
from src.core.timeutils import date_key, normalize_time
from src.data.db import UserStore
from src.data.models import OnboardingStep, PendingIntent, Slot, UserRecord, UserSeed

logger = logging.getLogger(__name__)

_Replies = list[str]


# ---------------------------------------------------------------------------
# Command recognition
# ---------------------------------------------------------------------------


def parse_command(text: str) -> str | None:
    """Return the command name for '/cmd', '/cmd@Bot args' or the bare word 'start'.

    Returns None for free text. An unknown slash command returns its name
    (possibly empty); the router answers those with the help text.
    """
    stripped = text.strip()
    if stripped.startswith("/"):
        parts = stripped[1:].split(maxsplit=1)
        word = parts[0] if parts else ""
        return word.split("@", 1)[0].lower()
    if stripped.lower() == "start":
        return "start"
    return None


# ---------------------------------------------------------------------------
# Onboarding state machine
# ---------------------------------------------------------------------------


def begin_onboarding(user: UserRecord) -> None:
    """Enter the first onboarding step. Logs and stats are kept."""
    user.onboarding_step = OnboardingStep.NAME
    user.onboarded = False
    user.pending_intent = PendingIntent.NONE
    user.pending_date = None


def _step_name(user: UserRecord, value: str) -> _Replies:
    user.name = value
    user.onboarding_step = OnboardingStep.TIMEZONE
    return [messages.STEP_TIMEZONE]


def _step_timezone(user: UserRecord, value: str) -> _Replies:
    user.timezone = value
    user.onboarding_step = OnboardingStep.HABITS
    return [messages.STEP_HABITS]


def _step_habits(user: UserRecord, value: str) -> _Replies:
    user.goals_text = value
    logger.info("habit_save user=%s", user.identity_key)
    user.onboarding_step = OnboardingStep.AM_TIME
    return [messages.STEP_AM_TIME]


def _step_am_time(user: UserRecord, value: str) -> _Replies:
    parsed = normalize_time(value)
    if parsed is None:
        return [messages.INVALID_TIME]
    user.am_time = parsed
    user.onboarding_step = OnboardingStep.PM_TIME
    return [messages.STEP_PM_TIME]


def _step_pm_time(user: UserRecord, value: str) -> _Replies:
    parsed = normalize_time(value)
    if parsed is None:
        return [messages.INVALID_TIME]
    user.pm_time = parsed
    user.onboarding_step = OnboardingStep.NONE
    user.onboarded = True
    logger.info("onboarding_complete user=%s", user.identity_key)
    return [messages.onboarding_complete(user)]


_ONBOARDING_STEPS: dict[OnboardingStep, Callable[[UserRecord, str], _Replies]] = {
    OnboardingStep.NAME: _step_name,
    OnboardingStep.TIMEZONE: _step_timezone,
    OnboardingStep.HABITS: _step_habits,
    OnboardingStep.AM_TIME: _step_am_time,
    OnboardingStep.PM_TIME: _step_pm_time,
}


def advance_onboarding(user: UserRecord, text: str) -> _Replies:
    """Consume text as the answer to the current onboarding step."""
    return _ONBOARDING_STEPS[user.onboarding_step](user, text.strip())


# ---------------------------------------------------------------------------
# Pending intents
# ---------------------------------------------------------------------------


def answer_pending(user: UserRecord, text: str, now: datetime) -> _Replies:
    """Consume text as the answer to the pending intent and clear it."""
    intent = user.pending_intent

    if intent is PendingIntent.SET_GOALS:
        user.goals_text = text.strip()
        user.pending_intent = PendingIntent.NONE
        user.pending_date = None
        logger.info("habit_save user=%s", user.identity_key)
        return [messages.goals_updated(user.goals_text)]

    slot = Slot.AM if intent is PendingIntent.AWAITING_AM else Slot.PM
    # A reply after midnight still belongs to the day it was prompted for.
    target_date = user.pending_date or date_key(now)
    record_reply(user, target_date, slot, text, now)
    return [messages.AM_LOGGED if slot is Slot.AM else messages.PM_LOGGED]


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _cmd_start(user: UserRecord, now: datetime) -> _Replies:
    if user.onboarded:
        return [messages.enlisted_summary(user)]
    begin_onboarding(user)
    return [messages.WELCOME, messages.STEP_NAME]


def _cmd_onboard(user: UserRecord, now: datetime) -> _Replies:
    begin_onboarding(user)
    return [messages.STEP_NAME_RESET]


def _cmd_setgoals(user: UserRecord, now: datetime) -> _Replies:
    if user.onboarding_step is not OnboardingStep.NONE:
        return [messages.FINISH_ONBOARDING_FIRST]
    user.pending_intent = PendingIntent.SET_GOALS
    user.pending_date = None
    return [messages.SET_GOALS_PROMPT]


def _cmd_status(user: UserRecord, now: datetime) -> _Replies:
    return [messages.status_report(user, date_key(now))]


def _cmd_help(user: UserRecord, now: datetime) -> _Replies:
    return [messages.HELP]


def _manual_prompt(slot: Slot) -> Callable[[UserRecord, datetime], _Replies]:
    def _cmd(user: UserRecord, now: datetime) -> _Replies:
        if not user.onboarded:
            return [messages.COMPLETE_ONBOARDING_FIRST]
        arm_prompt(user, date_key(now), slot)
        logger.info("job_fire job=%s_prompt_manual user=%s", slot.value, user.identity_key)
        return [messages.AM_PROMPT if slot is Slot.AM else messages.PM_PROMPT]
    return _cmd


def _cmd_test_weekly(user: UserRecord, now: datetime) -> _Replies:
    if not user.onboarded:
        return [messages.NO_DATA_YET]
    snapshot = weekly_snapshot(user, now.date(), now)
    logger.info(
        "job_fire job=weekly_manual user=%s rate=%d full=%d total=%d",
        user.identity_key, snapshot.rate, snapshot.full_days, snapshot.total_days,
    )
    return [messages.weekly_report(snapshot)]


_COMMANDS: dict[str, Callable[[UserRecord, datetime], _Replies]] = {
    "start": _cmd_start,
    "onboard": _cmd_onboard,
    "setgoals": _cmd_setgoals,
    "status": _cmd_status,
    "help": _cmd_help,
    "test_am": _manual_prompt(Slot.AM),
    "test_pm": _manual_prompt(Slot.PM),
    "test_weekly": _cmd_test_weekly,
}

# Commands answered without touching user state.
STATELESS_COMMANDS = ("gpt",)
COMMANDS = tuple(_COMMANDS) + STATELESS_COMMANDS


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


def route(
    user: UserRecord, text: str, command: str | None, now: datetime,
) -> _Replies | None:
    """Apply one inbound message to user. Returns None to fall through to the coach."""
    if command is not None:
        return _COMMANDS.get(command, _cmd_help)(user, now)
    if user.onboarding_step is not OnboardingStep.NONE:
        return advance_onboarding(user, text)
    if user.pending_intent is not PendingIntent.NONE:
        return answer_pending(user, text, now)
    return None


async def handle_message(
    store: UserStore,
    identity_key: str,
    text: str,
    seed: UserSeed | None = None,
    now: datetime | None = None,
    coach_timeout: float | None = None,
) -> _Replies:
    """Process one inbound message and return the replies to send, in order.

    State is committed (and persisted) before this returns, so adapters can
    deliver the replies afterwards. The coach call runs outside the store lock;
    coach_timeout overrides the configured LLM timeout for that call.
    """
    now = now or datetime.now()
    logger.info("msg_in user=%s text_len=%d", identity_key, len(text))

    command = parse_command(text)
    if command == "gpt":
        return [await health_check()]

    snapshot: UserRecord | None = None
    with store.mutate(identity_key, seed) as user:
        replies = route(user, text, command, now)
        if replies is None:
            snapshot = copy.deepcopy(user)

    if replies is None:
        replies = [await coach_reply(snapshot, text, timeout=coach_timeout)]
    return replies
