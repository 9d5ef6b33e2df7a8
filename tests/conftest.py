"""Shared test fixtures and configuration.

Sets up fake environment variables so taskbot.config doesn't sys.exit(),
and provides common fixtures like a temp DB.
"""

import os

# Patch env vars BEFORE any taskbot imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("OPERATIONAL_UTC_OFFSET_HOURS", "8")

import pytest
from datetime import datetime, timedelta, timezone

UTC8 = timedelta(hours=8)

# Monday 2026-01-26 14:00 in UTC+8
FIXED_NOW = datetime(2026, 1, 26, 6, 0, tzinfo=timezone.utc)


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_taskbot.db")


@pytest.fixture
def task_db(tmp_db_path):
    """Return a RecurringTaskDB instance backed by a temp file."""
    from taskbot.data.db import RecurringTaskDB
    return RecurringTaskDB(db_path=tmp_db_path)


@pytest.fixture
def service(task_db):
    """RecurringTaskService over the temp DB with a frozen clock."""
    from taskbot.core.recurring_tasks import RecurringTaskService
    return RecurringTaskService(task_db, operational_offset=UTC8, clock=lambda: FIXED_NOW)


@pytest.fixture
def tracker(task_db):
    """CompletionTracker over the temp DB."""
    from taskbot.core.completion_tracker import CompletionTracker
    return CompletionTracker(task_db, default_limit=100)
