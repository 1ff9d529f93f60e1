"""Fixed coach texts and formatters. Tone: stoic, commanding, no emojis."""

from __future__ import annotations

from src.data.models import DayLog, UserRecord, WeekSnapshot

SYSTEM_PROMPT = (
    "You are the MindArsenal AI Coach, modeled after Master Asmo.\n"
    "Tone: ruthless, stoic, commanding. No emojis. No softness.\n"
    "You enforce discipline, remove excuses, and sharpen the user's habits.\n"
    "Use short, precise language. Maximum 5 short paragraphs per reply.\n"
    "Acknowledge wins briefly. Call out failures directly with clear correction steps.\n"
    "Never comfort. Never ramble. Always end with a concrete execution step or next action."
)

WELCOME = (
    "Welcome to the MindArsenal Beta.\n"
    "This system will hold you to a warrior standard.\n\n"
    "Expect morning commands, nightly accountability, and a weekly war report.\n"
    "Your job: reply honestly and execute daily.\n\n"
    "Failure is noted. Progress is forged.\n"
    "Stay sharp."
)

AM_PROMPT = (
    "Dawn Report.\n\n"
    "State your 3 critical objectives for today.\n\n"
    "Concrete actions only. No wishes. No fluff."
)

PM_PROMPT = (
    "Nightly Debrief.\n\n"
    "Report:\n"
    "- What did you execute?\n"
    "- What did you skip?\n"
    "- Why?\n\n"
    "No excuses. Only truth."
)

STARTUP_PING = (
    "MindArsenal core updated.\n\n"
    "Onboarding, AM/PM check-ins, data logging and Master Asmo protocol are now active."
)

HELP = (
    "Commands:\n"
    "/start — enlist, or show your file\n"
    "/onboard — redo onboarding\n"
    "/setgoals — update your mission\n"
    "/status — today's reports and discipline record\n"
    "/help — this list\n\n"
    "Anything else goes to the coach."
)

STEP_NAME = "MindArsenal Coach online.\nStep 1/5 — Name.\nHow do I address you?"
STEP_NAME_RESET = "Onboarding reset.\nStep 1/5 — Name.\nHow do I call you?"
STEP_TIMEZONE = "Step 2/5 — Timezone.\nExample: Europe/Zurich"
STEP_HABITS = "Step 3/5 — Mission.\nSend your TOP 3 habits/goals."
STEP_AM_TIME = "Step 4/5 — AM time.\nExample: 07:00"
STEP_PM_TIME = "Step 5/5 — PM time.\nExample: 21:00"
INVALID_TIME = "Invalid format. Use HH:MM (24h)."

SET_GOALS_PROMPT = "Update mission.\nSend your TOP 3 habits/goals."
FINISH_ONBOARDING_FIRST = "Finish onboarding first."
COMPLETE_ONBOARDING_FIRST = "Complete onboarding first."
NO_DATA_YET = "No data yet."
AM_LOGGED = "Dawn Report logged.\nExecute."
PM_LOGGED = "Nightly Debrief logged.\nTomorrow the standard rises."
INTERNAL_ERROR = "Signal lost. Repeat your last message."


def goals_updated(goals: str) -> str:
    return f"Mission updated:\n{goals}"


def onboarding_complete(user: UserRecord) -> str:
    return (
        "Onboarding complete.\nProtocol armed.\n\n"
        f"Name: {user.name}\n"
        f"Zone: {user.timezone}\n"
        f"AM: {user.am_time}\nPM: {user.pm_time}\n\n"
        f"Mission:\n{user.goals_text}\n\n"
        "Reports will hit at your times.\nRespond. No excuses."
    )


def enlisted_summary(user: UserRecord) -> str:
    s = user.stats
    return (
        "MindArsenal Coach online.\nYou are enlisted.\n\n"
        f"Name: {user.display_name}\n"
        f"Zone: {user.timezone}\n"
        f"AM: {user.am_time}\nPM: {user.pm_time}\n\n"
        f"Mission:\n{user.goals_text}\n\n"
        "Discipline:\n"
        f"• Full execution days: {s.full_days}/{s.total_days_counted}\n"
        f"• Current streak: {s.current_streak}\n"
        f"• Best streak: {s.best_streak}"
    )


def status_report(user: UserRecord, date_str: str) -> str:
    day = user.logs.get(date_str) or DayLog()
    s = user.stats
    return (
        f"Status for {date_str}:\n"
        f"AM: {'DONE' if day.am else 'MISSING'}\n"
        f"PM: {'DONE' if day.pm else 'MISSING'}\n\n"
        "All-time:\n"
        f"• Full days: {s.full_days}/{s.total_days_counted}\n"
        f"• Streak: {s.current_streak}\n"
        f"• Best: {s.best_streak}"
    )


def weekly_report(snapshot: WeekSnapshot) -> str:
    return (
        "Weekly War Report.\n\n"
        f"Last 7 days ({snapshot.start_date} to {snapshot.end_date}):\n"
        f"• Execution rate: {snapshot.rate}%\n"
        f"• Full days: {snapshot.full_days}/{snapshot.total_days}\n\n"
        "This week is dead.\nThe next one is unbuilt.\nDominate it."
    )
