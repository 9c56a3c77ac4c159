"""Shared test fixtures and configuration.

Sets up fake environment variables so chatplan.config doesn't sys.exit(),
and provides temp SQLite stores, a fixed clock and roster fixtures.
"""

import os

# Patch env vars BEFORE any chatplan imports
os.environ.setdefault("LLM_API_KEY", "fake-llm-key-for-tests")
os.environ.setdefault("LLM_PROVIDER", "gemini")
os.environ.setdefault("OPENAI_API_KEY", "fake-openai-key-for-tests")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TIMEZONE", "UTC")

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

UTC = ZoneInfo("UTC")

# Wednesday 2026-03-04 10:00 UTC
NOW = datetime(2026, 3, 4, 10, 0, tzinfo=UTC)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def resolver():
    """A DateTimeResolver pinned to NOW in UTC."""
    from chatplan.core.datetime_resolver import DateTimeResolver
    return DateTimeResolver(timezone="UTC", clock=lambda: NOW)


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_chatplan.db")


@pytest.fixture
def member_db(tmp_db_path):
    from chatplan.data.db import MemberDB
    return MemberDB(db_path=tmp_db_path)


@pytest.fixture
def schedule_db(tmp_db_path):
    from chatplan.data.db import ScheduleDB
    return ScheduleDB(db_path=tmp_db_path)


@pytest.fixture
def plan_db(tmp_db_path):
    from chatplan.data.db import PlanDB
    return PlanDB(db_path=tmp_db_path)


@pytest.fixture
def passage_db(tmp_db_path):
    from chatplan.data.db import PassageDB
    return PassageDB(db_path=tmp_db_path)


@pytest.fixture
def event_store(schedule_db):
    from chatplan.adapters.local_store import LocalEventStore
    return LocalEventStore(schedule_db)


@pytest.fixture
def team(member_db):
    """Conversation c1: organizer Olivia (PM), two designers, one engineer."""
    from chatplan.core.roles import Role

    member_db.add_conversation("c1", ["u1", "u2", "u3", "u4"])
    member_db.add_member("c1", "u1", "Olivia Park", Role.PM)
    member_db.add_member("c1", "u2", "Dana Cohen", Role.DESIGN)
    member_db.add_member("c1", "u3", "Forrest Gale", Role.DESIGN)
    member_db.add_member("c1", "u4", "Atticus Finch", Role.SE)
    return member_db


@pytest.fixture
def membership(team):
    from chatplan.adapters.local_store import LocalMembershipProvider
    return LocalMembershipProvider(team)
