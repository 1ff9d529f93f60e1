"""Wall-clock helpers shared by the conversation flow and the scheduler.

All keys use the local server clock; the user's timezone label is never consulted.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{1,2})$")


def normalize_time(text: str) -> str | None:
    """Parse a 24-hour 'H:M' string into canonical 'HH:MM'.

    Returns None if the input isn't a valid time of day.

    >>> normalize_time("7:5")
    '07:05'
    >>> normalize_time("24:00") is None
    True
    """
    match = _TIME_RE.match(text.strip())
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return None
    return f"{hour:02d}:{minute:02d}"


def date_key(now: datetime) -> str:
    return now.date().isoformat()


def time_key(now: datetime) -> str:
    return now.strftime("%H:%M")


def week_key(as_of: date) -> str:
    """ISO week label, e.g. '2026-W42'."""
    year, week, _ = as_of.isocalendar()
    return f"{year}-W{week:02d}"


def trailing_dates(as_of: date, days: int = 7) -> list[str]:
    """Date keys for [as_of - (days-1) .. as_of], oldest first."""
    return [(as_of - timedelta(days=i)).isoformat() for i in range(days - 1, -1, -1)]
