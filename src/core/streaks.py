"""
MindArsenal Coach — Daily Log & Streak Accounting.

Pure operations over a UserRecord. Callers hold the store lock (via
UserStore.mutate) while invoking anything here that mutates state.

Streak accounting is driven by PM completion: close_day() runs when the PM
reply arrives, and a date that never gets a PM reply is never counted.
"""

from __future__ import annotations

import logging
from datetime import date, datetime

from src.core.timeutils import trailing_dates
from src.data.models import LogEntry, PendingIntent, Slot, UserRecord, WeekSnapshot

logger = logging.getLogger(__name__)


def record_prompt(user: UserRecord, date_str: str, slot: Slot) -> bool:
    """Mark the slot's prompt as sent for date_str.

    Returns True if the flag flipped, False if it was already set (the caller
    must then skip sending).
    """
    day = user.day(date_str)
    if day.prompt_sent(slot):
        return False
    if slot is Slot.AM:
        day.am_prompt_sent = True
    else:
        day.pm_prompt_sent = True
    return True


def record_reply(
    user: UserRecord, date_str: str, slot: Slot, text: str, now: datetime | None = None,
) -> None:
    """Store a check-in reply and clear the pending intent.

    A PM reply closes the day for streak accounting.
    """
    now = now or datetime.now()
    entry = LogEntry(text=text, timestamp=now.isoformat(timespec="seconds"))
    day = user.day(date_str)
    if slot is Slot.AM:
        day.am = entry
    else:
        day.pm = entry
    user.pending_intent = PendingIntent.NONE
    user.pending_date = None
    logger.info("%s_reply user=%s date=%s", slot.value, user.identity_key, date_str)

    if slot is Slot.PM:
        close_day(user, date_str)


def close_day(user: UserRecord, date_str: str) -> bool:
    """Fold date_str into the streak stats exactly once.

    Returns True if the date was counted now, False if it was already counted
    or has no log.
    """
    day = user.logs.get(date_str)
    if day is None or day.counted_for_stats:
        return False

    stats = user.stats
    stats.total_days_counted += 1
    if day.is_full:
        stats.full_days += 1
        stats.current_streak += 1
        stats.best_streak = max(stats.best_streak, stats.current_streak)
    else:
        stats.current_streak = 0
    day.counted_for_stats = True
    return True


def weekly_snapshot(
    user: UserRecord, as_of: date, now: datetime | None = None,
) -> WeekSnapshot:
    """Aggregate the trailing 7 calendar dates ending at as_of. Does not mutate."""
    now = now or datetime.now()
    window = trailing_dates(as_of, 7)
    total = 0
    full = 0
    for key in window:
        day = user.logs.get(key)
        if day is None:
            continue
        total += 1
        if day.is_full:
            full += 1

    # Half-up rounding, not banker's rounding.
    rate = int(100 * full / total + 0.5) if total else 0
    return WeekSnapshot(
        start_date=window[0],
        end_date=window[-1],
        rate=rate,
        full_days=full,
        total_days=total,
        generated_at=now.isoformat(timespec="seconds"),
    )
