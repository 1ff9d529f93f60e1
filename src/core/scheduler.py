"""
MindArsenal Coach — Scheduled Delivery.

Prompt tick: runs every minute; for each onboarded user whose AM/PM time
equals the current HH:MM, arms the prompt (flag + pending intent) and then
sends it. The per-day prompt-sent flag is the only dedup mechanism, so the
check-and-set happens inside one UserStore.mutate() block and the send
happens after the state is persisted.

Weekly report: once a week, snapshot the trailing 7 days for every onboarded
user, store it, and send the War Report.

Watchdog: reports when the prompt tick has not run recently. It observes
only; it never restarts anything.

All jobs take an explicit `now` so tests can drive the clock.
This module is channel-agnostic: it depends on ChannelRouter, not on
specific transports.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from src.core import messages
from src.core.streaks import record_prompt, weekly_snapshot
from src.core.timeutils import date_key, time_key, week_key
from src.data.models import Slot, UserRecord

if TYPE_CHECKING:
    from src.core.delivery import ChannelRouter
    from src.data.db import RuntimeState, UserStore

logger = logging.getLogger(__name__)

PROMPT_TICK_JOB = "prompt_tick"
WEEKLY_REPORT_JOB = "weekly_report"
WATCHDOG_JOB = "watchdog"

PROMPTS = {Slot.AM: messages.AM_PROMPT, Slot.PM: messages.PM_PROMPT}


# ---------------------------------------------------------------------------
# Prompt arming (shared by the tick and the manual trigger)
# ---------------------------------------------------------------------------


def arm_prompt(user: UserRecord, date_str: str, slot: Slot) -> bool:
    """Mark the prompt sent and make it the pending intent.

    The newest prompt always replaces any earlier pending intent.
    Returns True if the prompt-sent flag flipped.
    """
    flipped = record_prompt(user, date_str, slot)
    user.pending_intent = slot.intent
    user.pending_date = date_str
    return flipped


def due_slots(user: UserRecord, date_str: str, current: str) -> list[Slot]:
    """Slots whose time is now and whose prompt hasn't gone out today."""
    if not user.onboarded:
        return []
    day = user.day(date_str)
    due = []
    for slot, at in ((Slot.AM, user.am_time), (Slot.PM, user.pm_time)):
        if current == at and not day.prompt_sent(slot):
            due.append(slot)
    return due


def _arm_due_prompts(
    store: UserStore, identity_key: str, date_str: str, current: str,
) -> tuple[list[Slot], dict[str, str]]:
    with store.mutate(identity_key, create=False) as user:
        fired = [
            slot for slot in due_slots(user, date_str, current)
            if arm_prompt(user, date_str, slot)
        ]
        return fired, dict(user.channels)


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


async def run_prompt_tick(
    store: UserStore,
    router: ChannelRouter,
    runtime: RuntimeState | None = None,
    now: datetime | None = None,
) -> list[tuple[str, Slot]]:
    """Evaluate every user once and send the prompts that are due.

    Returns the (identity_key, slot) pairs that fired.
    """
    now = now or datetime.now()
    today = date_key(now)
    current = time_key(now)
    if runtime is not None:
        runtime.mark_job(PROMPT_TICK_JOB, "ok", at=now, current=current)

    fired: list[tuple[str, Slot]] = []
    for identity_key in store.keys():
        try:
            slots, channels = _arm_due_prompts(store, identity_key, today, current)
        except Exception:
            logger.exception("Prompt tick failed for user %s", identity_key)
            continue

        for slot in slots:
            logger.info(
                "job_fire job=%s_prompt user=%s at=%s", slot.value, identity_key, current,
            )
            await router.deliver(channels, PROMPTS[slot])
            fired.append((identity_key, slot))
    return fired


async def run_weekly_report(
    store: UserStore,
    router: ChannelRouter,
    runtime: RuntimeState | None = None,
    now: datetime | None = None,
) -> int:
    """Snapshot and send the weekly report to every onboarded user.

    A failure for one user never stops the others. Returns the number of
    users whose report went out on at least one channel.
    """
    now = now or datetime.now()
    as_of = now.date()
    key = week_key(as_of)
    if runtime is not None:
        runtime.mark_job(WEEKLY_REPORT_JOB, "fired", at=now, when=as_of.isoformat())
    logger.info("job_fire job=weekly_report date=%s", as_of.isoformat())

    sent = 0
    for identity_key in store.keys():
        try:
            with store.mutate(identity_key, create=False) as user:
                if not user.onboarded:
                    continue
                snapshot = user.weekly_stats.setdefault(
                    key, weekly_snapshot(user, as_of, now),
                )
                channels = dict(user.channels)

            results = await router.deliver(channels, messages.weekly_report(snapshot))
        except Exception:
            logger.exception("Weekly report failed for user %s", identity_key)
            continue

        if any(results.values()):
            sent += 1
        logger.info(
            "weekly_sent user=%s rate=%d full=%d total=%d",
            identity_key, snapshot.rate, snapshot.full_days, snapshot.total_days,
        )
    return sent


def check_heartbeat(
    runtime: RuntimeState,
    max_age_seconds: float,
    now: datetime | None = None,
) -> float | None:
    """Return the prompt tick's age in seconds if it is stale, else None."""
    now = now or datetime.now()
    last = runtime.last_run(PROMPT_TICK_JOB)
    if last is None:
        return None

    age = (now - last).total_seconds()
    if age > max_age_seconds:
        logger.error(
            "watchdog_missed job=%s last_at=%s diff_minutes=%d",
            PROMPT_TICK_JOB, last.isoformat(), round(age / 60),
        )
        return age
    return None


async def send_startup_ping(store: UserStore, router: ChannelRouter) -> None:
    """Tell every known user that the bot restarted."""
    for user in store.list_users():
        await router.deliver(user.channels, messages.STARTUP_PING)
