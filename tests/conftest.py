"""Shared fixtures for the test suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient

from app.main import app
from app.tracker.models import QuestHistoryEntry
from app.tracker.router import get_household
from app.tracker.seed import seed_rows
from app.tracker.session import Household
from app.tracker.store import MemoryStore

TODAY = "2024-02-15"


# ---------------------------------------------------------------------------
# Store & session
# ---------------------------------------------------------------------------

@pytest.fixture()
def store():
    """Seeded in-memory store; the shared catalogs carry no ``user`` column."""
    return MemoryStore(unscoped_tables={"quests", "rewards", "wishes"}, seed=seed_rows())


@pytest.fixture()
def household(store):
    return Household(store, today=lambda: TODAY)


@pytest.fixture()
async def client(household):
    """Override the FastAPI dependency so every request shares one household."""
    app.dependency_overrides[get_household] = lambda: household
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def make_quest_entry(title: str, points: int, minutes_ago: int, entry_id: str | None = None) -> QuestHistoryEntry:
    """Helper to build a real (non-placeholder) quest completion."""
    ts = datetime(2024, 2, 15, 12, 0, tzinfo=timezone.utc) - timedelta(minutes=minutes_ago)
    return QuestHistoryEntry(id=entry_id or f"e{minutes_ago}", title=title, points=points, occurred_at=ts)
