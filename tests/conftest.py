"""Shared test fixtures and configuration.

Sets up fake environment variables so src.config doesn't sys.exit(),
and provides common fixtures like a temp snapshot DB and a seeded store.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ["LLM_API_KEY"] = ""
os.environ["OPENAI_API_KEY"] = ""
os.environ.setdefault("LLM_PROVIDER", "openai")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TWILIO_ACCOUNT_SID", "")
os.environ.setdefault("TWILIO_AUTH_TOKEN", "")
os.environ.setdefault("TWILIO_WHATSAPP_NUMBER", "")

from datetime import datetime
from unittest.mock import AsyncMock

import pytest


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_mindarsenal.db")


@pytest.fixture
def snapshot_db(tmp_db_path):
    """Return a SnapshotDB instance backed by a temp file."""
    from src.data.db import SnapshotDB
    return SnapshotDB(db_path=tmp_db_path)


@pytest.fixture
def user_store(snapshot_db):
    """Return a UserStore over the temp DB."""
    from src.data.db import UserStore
    return UserStore(snapshot_db)


@pytest.fixture
def runtime(snapshot_db):
    from src.data.db import RuntimeState
    return RuntimeState(snapshot_db)


@pytest.fixture
def notifier():
    """A NotificationPort double that records every send."""
    mock = AsyncMock()
    mock.send_message = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def router(notifier, runtime):
    from src.core.delivery import ChannelRouter
    return ChannelRouter({"telegram": notifier}, runtime=runtime)


@pytest.fixture
def onboarded_user(user_store):
    """Insert an onboarded Telegram user with AM 07:00 / PM 21:00."""
    from src.data.models import OnboardingStep, UserSeed

    key = "telegram:12345"
    seed = UserSeed(channel="telegram", address="12345", first_name="Alex")
    with user_store.mutate(key, seed) as user:
        user.name = "Alex"
        user.timezone = "Europe/Zurich"
        user.goals_text = "Lift. Read. Sleep by 23:00."
        user.am_time = "07:00"
        user.pm_time = "21:00"
        user.onboarding_step = OnboardingStep.NONE
        user.onboarded = True
    return key


@pytest.fixture
def morning():
    return datetime(2026, 10, 12, 7, 0, 5)
