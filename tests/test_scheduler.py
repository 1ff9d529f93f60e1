"""Tests for src.core.scheduler — prompt tick, weekly report, watchdog.

The clock is driven through explicit `now` arguments.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from src.core import messages
from src.core.delivery import ChannelRouter
from src.core.scheduler import (
    PROMPT_TICK_JOB,
    WEEKLY_REPORT_JOB,
    arm_prompt,
    check_heartbeat,
    due_slots,
    run_prompt_tick,
    run_weekly_report,
    send_startup_ping,
)
from src.data.models import LogEntry, PendingIntent, Slot, UserRecord, UserSeed


def _add_user(store, chat_id: str, onboarded: bool = True, am: str = "07:00", pm: str = "21:00") -> str:
    key = f"telegram:{chat_id}"
    with store.mutate(key, UserSeed("telegram", chat_id)) as user:
        user.onboarded = onboarded
        user.am_time = am
        user.pm_time = pm
    return key


# ---------------------------------------------------------------------------
# due_slots / arm_prompt
# ---------------------------------------------------------------------------


class TestDueSlots:
    def test_matching_time_is_due(self):
        user = UserRecord(identity_key="k", onboarded=True)
        assert due_slots(user, "2026-10-12", "07:00") == [Slot.AM]
        assert due_slots(user, "2026-10-12", "21:00") == [Slot.PM]
        assert due_slots(user, "2026-10-12", "07:01") == []

    def test_creates_todays_log(self):
        user = UserRecord(identity_key="k", onboarded=True)
        due_slots(user, "2026-10-12", "12:00")
        assert "2026-10-12" in user.logs

    def test_not_onboarded_is_never_due(self):
        user = UserRecord(identity_key="k", onboarded=False)
        assert due_slots(user, "2026-10-12", "07:00") == []
        assert user.logs == {}

    def test_already_sent_is_not_due(self):
        user = UserRecord(identity_key="k", onboarded=True)
        user.day("2026-10-12").am_prompt_sent = True
        assert due_slots(user, "2026-10-12", "07:00") == []

    def test_same_time_for_both_slots(self):
        user = UserRecord(identity_key="k", onboarded=True, am_time="08:00", pm_time="08:00")
        assert due_slots(user, "2026-10-12", "08:00") == [Slot.AM, Slot.PM]


def test_arm_prompt_overwrites_pending_intent():
    user = UserRecord(identity_key="k", onboarded=True)
    user.pending_intent = PendingIntent.SET_GOALS
    assert arm_prompt(user, "2026-10-12", Slot.AM) is True
    assert user.pending_intent is PendingIntent.AWAITING_AM
    assert arm_prompt(user, "2026-10-12", Slot.PM) is True
    assert user.pending_intent is PendingIntent.AWAITING_PM
    assert user.pending_date == "2026-10-12"
    assert arm_prompt(user, "2026-10-12", Slot.PM) is False


# ---------------------------------------------------------------------------
# run_prompt_tick
# ---------------------------------------------------------------------------


class TestPromptTick:
    @pytest.mark.asyncio
    async def test_120_ticks_at_am_time_send_once(self, user_store, router, notifier, runtime):
        key = _add_user(user_store, "12345")
        start = datetime(2026, 10, 12, 7, 0, 0)

        for i in range(120):
            await run_prompt_tick(user_store, router, runtime, now=start + timedelta(milliseconds=400 * i))

        notifier.send_message.assert_awaited_once_with("12345", messages.AM_PROMPT)
        user = user_store.get(key)
        assert user.logs["2026-10-12"].am_prompt_sent is True
        assert user.pending_intent is PendingIntent.AWAITING_AM
        assert runtime.counters["send_ok"] == 1

    @pytest.mark.asyncio
    async def test_fires_again_next_day(self, user_store, router, notifier):
        _add_user(user_store, "12345")
        await run_prompt_tick(user_store, router, now=datetime(2026, 10, 12, 21, 0))
        await run_prompt_tick(user_store, router, now=datetime(2026, 10, 12, 21, 0, 30))
        await run_prompt_tick(user_store, router, now=datetime(2026, 10, 13, 21, 0))

        assert notifier.send_message.await_count == 2
        notifier.send_message.assert_awaited_with("12345", messages.PM_PROMPT)

    @pytest.mark.asyncio
    async def test_skips_users_not_onboarded(self, user_store, router, notifier):
        key = _add_user(user_store, "1", onboarded=False)
        fired = await run_prompt_tick(user_store, router, now=datetime(2026, 10, 12, 7, 0))

        assert fired == []
        notifier.send_message.assert_not_called()
        assert user_store.get(key).pending_intent is PendingIntent.NONE

    @pytest.mark.asyncio
    async def test_only_due_users_fire(self, user_store, router, notifier):
        early = _add_user(user_store, "1", am="06:30")
        _add_user(user_store, "2", am="07:00")

        fired = await run_prompt_tick(user_store, router, now=datetime(2026, 10, 12, 6, 30))

        assert fired == [(early, Slot.AM)]
        notifier.send_message.assert_awaited_once_with("1", messages.AM_PROMPT)

    @pytest.mark.asyncio
    async def test_state_committed_before_send(self, user_store, runtime):
        key = _add_user(user_store, "12345")
        seen = {}

        async def _send(address, text):
            seen["flag"] = user_store.get(key).logs["2026-10-12"].am_prompt_sent

        notifier = AsyncMock()
        notifier.send_message = AsyncMock(side_effect=_send)
        await run_prompt_tick(user_store, ChannelRouter({"telegram": notifier}), now=datetime(2026, 10, 12, 7, 0))

        assert seen["flag"] is True

    @pytest.mark.asyncio
    async def test_failed_send_is_not_retried(self, user_store, runtime):
        _add_user(user_store, "12345")
        notifier = AsyncMock()
        notifier.send_message = AsyncMock(side_effect=RuntimeError("telegram down"))
        router = ChannelRouter({"telegram": notifier}, runtime=runtime)

        for second in range(0, 60, 10):
            await run_prompt_tick(user_store, router, runtime, now=datetime(2026, 10, 12, 7, 0, second))

        assert notifier.send_message.await_count == 1
        assert runtime.counters["send_err"] == 1

    @pytest.mark.asyncio
    async def test_one_broken_user_does_not_stop_others(self, user_store, router, notifier):
        _add_user(user_store, "1")
        _add_user(user_store, "2")

        import src.core.scheduler as scheduler
        real = scheduler.due_slots

        def _flaky(user, date_str, current):
            if user.identity_key == "telegram:1":
                raise ValueError("corrupt record")
            return real(user, date_str, current)

        with patch("src.core.scheduler.due_slots", side_effect=_flaky):
            await run_prompt_tick(user_store, router, now=datetime(2026, 10, 12, 7, 0))

        notifier.send_message.assert_awaited_once_with("2", messages.AM_PROMPT)

    @pytest.mark.asyncio
    async def test_marks_heartbeat(self, user_store, router, runtime):
        now = datetime(2026, 10, 12, 7, 0, 1)
        await run_prompt_tick(user_store, router, runtime, now=now)
        assert runtime.last_run(PROMPT_TICK_JOB) == now
        assert runtime.jobs[PROMPT_TICK_JOB]["current"] == "07:00"

    @pytest.mark.asyncio
    async def test_fans_out_to_every_linked_channel(self, user_store, runtime):
        key = _add_user(user_store, "12345")
        user_store.get_or_create(key, UserSeed("whatsapp", "+41790000000"))
        telegram = AsyncMock()
        whatsapp = AsyncMock()
        whatsapp.send_message = AsyncMock(side_effect=RuntimeError("twilio 500"))
        router = ChannelRouter({"telegram": telegram, "whatsapp": whatsapp}, runtime=runtime)

        await run_prompt_tick(user_store, router, runtime, now=datetime(2026, 10, 12, 7, 0))

        telegram.send_message.assert_awaited_once_with("12345", messages.AM_PROMPT)
        whatsapp.send_message.assert_awaited_once_with("+41790000000", messages.AM_PROMPT)
        assert runtime.counters == {"send_ok": 1, "send_err": 1}


# ---------------------------------------------------------------------------
# run_weekly_report
# ---------------------------------------------------------------------------


class TestWeeklyReport:
    @pytest.mark.asyncio
    async def test_sends_and_stores_snapshot(self, user_store, router, notifier, runtime):
        key = _add_user(user_store, "12345")
        with user_store.mutate(key) as user:
            for d in ("2026-10-06", "2026-10-12"):
                user.day(d).am = LogEntry("a", f"{d}T07:00:00")
                user.day(d).pm = LogEntry("p", f"{d}T21:00:00")
            user.day("2026-10-08").am = LogEntry("a", "2026-10-08T07:00:00")
            user.day("2026-10-10").pm = LogEntry("p", "2026-10-10T21:00:00")

        sent = await run_weekly_report(user_store, router, runtime, now=datetime(2026, 10, 12, 18, 0))

        assert sent == 1
        text = notifier.send_message.call_args[0][1]
        assert "Execution rate: 50%" in text
        assert "Full days: 2/4" in text
        snapshot = user_store.get(key).weekly_stats["2026-W42"]
        assert (snapshot.rate, snapshot.full_days, snapshot.total_days) == (50, 2, 4)
        assert runtime.jobs[WEEKLY_REPORT_JOB]["when"] == "2026-10-12"

    @pytest.mark.asyncio
    async def test_skips_users_not_onboarded(self, user_store, router, notifier):
        key = _add_user(user_store, "1", onboarded=False)
        sent = await run_weekly_report(user_store, router, now=datetime(2026, 10, 12, 18, 0))
        assert sent == 0
        notifier.send_message.assert_not_called()
        assert user_store.get(key).weekly_stats == {}

    @pytest.mark.asyncio
    async def test_delivery_failure_is_isolated(self, user_store, runtime):
        _add_user(user_store, "1")
        _add_user(user_store, "2")

        async def _send(address, text):
            if address == "1":
                raise RuntimeError("blocked by user")

        notifier = AsyncMock()
        notifier.send_message = AsyncMock(side_effect=_send)
        router = ChannelRouter({"telegram": notifier}, runtime=runtime)

        sent = await run_weekly_report(user_store, router, runtime, now=datetime(2026, 10, 12, 18, 0))

        assert sent == 1
        assert notifier.send_message.await_count == 2
        assert runtime.counters == {"send_ok": 1, "send_err": 1}

    @pytest.mark.asyncio
    async def test_existing_week_snapshot_is_not_replaced(self, user_store, router):
        key = _add_user(user_store, "1")
        await run_weekly_report(user_store, router, now=datetime(2026, 10, 12, 18, 0))
        first = user_store.get(key).weekly_stats["2026-W42"]

        await run_weekly_report(user_store, router, now=datetime(2026, 10, 12, 18, 30))
        assert user_store.get(key).weekly_stats["2026-W42"] == first


# ---------------------------------------------------------------------------
# check_heartbeat
# ---------------------------------------------------------------------------


class TestWatchdog:
    def test_no_heartbeat_yet(self, runtime):
        assert check_heartbeat(runtime, 360, now=datetime(2026, 10, 12, 7, 0)) is None

    def test_fresh_heartbeat(self, runtime):
        runtime.mark_job(PROMPT_TICK_JOB, "ok", at=datetime(2026, 10, 12, 7, 0))
        assert check_heartbeat(runtime, 360, now=datetime(2026, 10, 12, 7, 5)) is None

    def test_stale_heartbeat_is_reported(self, runtime, caplog):
        runtime.mark_job(PROMPT_TICK_JOB, "ok", at=datetime(2026, 10, 12, 7, 0))
        with caplog.at_level("ERROR"):
            age = check_heartbeat(runtime, 360, now=datetime(2026, 10, 12, 7, 10))
        assert age == 600
        assert "watchdog_missed" in caplog.text


@pytest.mark.asyncio
async def test_startup_ping_reaches_every_user(user_store, router, notifier):
    _add_user(user_store, "1")
    _add_user(user_store, "2", onboarded=False)
    await send_startup_ping(user_store, router)
    assert notifier.send_message.await_count == 2
    notifier.send_message.assert_any_await("1", messages.STARTUP_PING)
    notifier.send_message.assert_any_await("2", messages.STARTUP_PING)


# ---------------------------------------------------------------------------
# Cross-thread serialization
# ---------------------------------------------------------------------------


class TestConcurrentArming:
    def test_webhook_and_tick_race_flips_flag_once(self, snapshot_db, user_store, router, onboarded_user):
        """A manual /test_am on the webhook thread races the tick thread for the same slot."""
        import asyncio
        import threading

        import src.core.scheduler as scheduler
        from src.core.conversation import handle_message
        from src.data.db import UserStore

        real = scheduler.record_prompt
        flips: list[str] = []

        def _counting(user, date_str, slot):
            flipped = real(user, date_str, slot)
            if flipped:
                flips.append(date_str)
            return flipped

        errors: list[BaseException] = []

        def _in_thread(barrier, coro_fn):
            try:
                barrier.wait(timeout=5)
                asyncio.run(coro_fn())
            except BaseException as exc:
                errors.append(exc)

        with patch("src.core.scheduler.record_prompt", side_effect=_counting):
            for i in range(20):
                now = datetime(2026, 10, 1, 7, 0) + timedelta(days=i)
                barrier = threading.Barrier(2)
                threads = [
                    threading.Thread(target=_in_thread, args=(
                        barrier, lambda now=now: handle_message(user_store, onboarded_user, "/test_am", now=now),
                    )),
                    threading.Thread(target=_in_thread, args=(
                        barrier, lambda now=now: run_prompt_tick(user_store, router, now=now),
                    )),
                ]
                for t in threads:
                    t.start()
                for t in threads:
                    t.join(timeout=10)

        assert errors == []
        assert sorted(flips) == [
            (datetime(2026, 10, 1) + timedelta(days=i)).strftime("%Y-%m-%d") for i in range(20)
        ]
        live = user_store.get(onboarded_user)
        assert all(live.logs[d].am_prompt_sent for d in flips)
        reloaded = UserStore(snapshot_db).get(onboarded_user)
        assert reloaded.to_dict() == live.to_dict()
