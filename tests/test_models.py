"""Tests for src.data.models — UserRecord and friends."""

import json

from src.data.models import (
    DayLog,
    LogEntry,
    OnboardingStep,
    PendingIntent,
    Slot,
    UserRecord,
    WeekSnapshot,
)


def test_user_defaults():
    user = UserRecord(identity_key="telegram:1")
    assert user.am_time == "07:00"
    assert user.pm_time == "21:00"
    assert user.onboarded is False
    assert user.onboarding_step is OnboardingStep.NONE
    assert user.pending_intent is PendingIntent.NONE
    assert user.logs == {}
    assert user.stats.best_streak == 0
    assert user.display_name == "warrior"


def test_display_name_prefers_chosen_name():
    user = UserRecord(identity_key="telegram:1", first_name="Alexandra")
    assert user.display_name == "Alexandra"
    user.name = "Alex"
    assert user.display_name == "Alex"


def test_day_creates_log_on_first_touch():
    user = UserRecord(identity_key="telegram:1")
    log = user.day("2026-10-12")
    assert isinstance(log, DayLog)
    assert user.day("2026-10-12") is log
    assert log.am_prompt_sent is False
    assert log.counted_for_stats is False


def test_day_log_slot_accessors():
    log = DayLog(am=LogEntry("plan", "2026-10-12T07:05:00"), pm_prompt_sent=True)
    assert log.entry(Slot.AM).text == "plan"
    assert log.entry(Slot.PM) is None
    assert log.prompt_sent(Slot.PM) is True
    assert log.prompt_sent(Slot.AM) is False
    assert log.is_full is False


def test_slot_maps_to_pending_intent():
    assert Slot.AM.intent is PendingIntent.AWAITING_AM
    assert Slot.PM.intent is PendingIntent.AWAITING_PM


def test_user_serializes_to_plain_json_and_back():
    user = UserRecord(identity_key="whatsapp:+41790000000", name="Alex")
    user.channels["whatsapp"] = "+41790000000"
    user.onboarding_step = OnboardingStep.AM_TIME
    user.day("2026-10-12").am = LogEntry("objectives", "2026-10-12T07:01:00")
    user.stats.full_days = 3
    user.weekly_stats["2026-W42"] = WeekSnapshot(
        start_date="2026-10-06", end_date="2026-10-12",
        rate=50, full_days=2, total_days=4, generated_at="2026-10-12T18:00:00",
    )

    data = json.loads(json.dumps(user.to_dict()))
    assert data["onboarding_step"] == "amTime"
    assert data["pending_intent"] == "none"

    restored = UserRecord.from_dict(data)
    assert restored == user
