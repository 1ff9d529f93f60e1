"""
MindArsenal Coach — Data Models.

One UserRecord per channel identity, holding the conversational state,
the per-day check-in logs and the derived discipline statistics.
Records are plain dataclasses; the store serializes them to JSON snapshots.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum

DEFAULT_AM_TIME = "07:00"
DEFAULT_PM_TIME = "21:00"


class OnboardingStep(str, Enum):
    """Linear onboarding flow. NONE means onboarding does not own input."""

    NONE = "none"
    NAME = "name"
    TIMEZONE = "timezone"
    HABITS = "habits"
    AM_TIME = "amTime"
    PM_TIME = "pmTime"


class PendingIntent(str, Enum):
    """What the next free-text message answers."""

    NONE = "none"
    SET_GOALS = "setGoals"
    AWAITING_AM = "awaitingAM"
    AWAITING_PM = "awaitingPM"


class Slot(str, Enum):
    AM = "am"
    PM = "pm"

    @property
    def intent(self) -> PendingIntent:
        return PendingIntent.AWAITING_AM if self is Slot.AM else PendingIntent.AWAITING_PM


@dataclass
class LogEntry:
    """A single check-in reply."""

    text: str
    timestamp: str   # ISO datetime


@dataclass
class DayLog:
    """Check-in record for one calendar date (YYYY-MM-DD)."""

    am: LogEntry | None = None
    pm: LogEntry | None = None
    am_prompt_sent: bool = False
    pm_prompt_sent: bool = False
    counted_for_stats: bool = False

    def entry(self, slot: Slot) -> LogEntry | None:
        return self.am if slot is Slot.AM else self.pm

    def prompt_sent(self, slot: Slot) -> bool:
        return self.am_prompt_sent if slot is Slot.AM else self.pm_prompt_sent

    @property
    def is_full(self) -> bool:
        return self.am is not None and self.pm is not None

    @classmethod
    def from_dict(cls, data: dict) -> DayLog:
        am = data.get("am")
        pm = data.get("pm")
        return cls(
            am=LogEntry(**am) if am else None,
            pm=LogEntry(**pm) if pm else None,
            am_prompt_sent=bool(data.get("am_prompt_sent", False)),
            pm_prompt_sent=bool(data.get("pm_prompt_sent", False)),
            counted_for_stats=bool(data.get("counted_for_stats", False)),
        )


@dataclass
class StreakStats:
    total_days_counted: int = 0
    full_days: int = 0
    current_streak: int = 0
    best_streak: int = 0


@dataclass(frozen=True)
class WeekSnapshot:
    """Immutable weekly aggregate over the trailing 7 calendar dates."""

    start_date: str
    end_date: str
    rate: int
    full_days: int
    total_days: int
    generated_at: str


@dataclass
class UserSeed:
    """Channel linkage supplied by an adapter on first contact."""

    channel: str          # "telegram" | "whatsapp"
    address: str          # chat id / E.164 number on that channel
    first_name: str = ""


@dataclass
class UserRecord:
    """A bot user identified by a stable channel identity key."""

    identity_key: str
    first_name: str = ""
    name: str = ""
    timezone: str = ""    # display only, never used for triggering
    am_time: str = DEFAULT_AM_TIME
    pm_time: str = DEFAULT_PM_TIME
    goals_text: str = ""
    onboarding_step: OnboardingStep = OnboardingStep.NONE
    pending_intent: PendingIntent = PendingIntent.NONE
    pending_date: str | None = None   # date the pending prompt was armed for
    onboarded: bool = False
    channels: dict[str, str] = field(default_factory=dict)
    logs: dict[str, DayLog] = field(default_factory=dict)
    stats: StreakStats = field(default_factory=StreakStats)
    weekly_stats: dict[str, WeekSnapshot] = field(default_factory=dict)
    created_at: str = ""

    @property
    def display_name(self) -> str:
        return self.name or self.first_name or "warrior"

    def day(self, date_str: str) -> DayLog:
        """Return the DayLog for date_str, creating it on first touch."""
        log = self.logs.get(date_str)
        if log is None:
            log = DayLog()
            self.logs[date_str] = log
        return log

    def to_dict(self) -> dict:
        data = asdict(self)
        data["onboarding_step"] = self.onboarding_step.value
        data["pending_intent"] = self.pending_intent.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> UserRecord:
        return cls(
            identity_key=data["identity_key"],
            first_name=data.get("first_name", ""),
            name=data.get("name", ""),
            timezone=data.get("timezone", ""),
            am_time=data.get("am_time", DEFAULT_AM_TIME),
            pm_time=data.get("pm_time", DEFAULT_PM_TIME),
            goals_text=data.get("goals_text", ""),
            onboarding_step=OnboardingStep(data.get("onboarding_step", "none")),
            pending_intent=PendingIntent(data.get("pending_intent", "none")),
            pending_date=data.get("pending_date"),
            onboarded=bool(data.get("onboarded", False)),
            channels=dict(data.get("channels", {})),
            logs={d: DayLog.from_dict(v) for d, v in data.get("logs", {}).items()},
            stats=StreakStats(**data.get("stats", {})),
            weekly_stats={
                k: WeekSnapshot(**v) for k, v in data.get("weekly_stats", {}).items()
            },
            created_at=data.get("created_at", ""),
        )
