"""Shared fixtures: an in-memory Redis, an AppContext on top of it, and an API client."""

from __future__ import annotations

from typing import Any

import fakeredis
import pytest
from fastapi.testclient import TestClient

from app.context import AppContext
from app.schemas import ScheduleEvent, UserProfile
from app.settings import Settings


# ============================================================================
# Pytest Configuration
# ============================================================================


@pytest.fixture(scope="session")
def anyio_backend():
    """Configure anyio backend for async tests."""
    return "asyncio"


# ============================================================================
# Store Fixtures
# ============================================================================


@pytest.fixture
def fake_redis():
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def test_settings():
    """LLM off, so every model-backed helper takes its fallback path."""
    return Settings(LLM_MODE="off", HEARTBEAT_SECONDS=0.05, REDIS_URL="redis://unused:6379/0")


@pytest.fixture
def context(fake_redis, test_settings):
    return AppContext.build(test_settings, client=fake_redis)


@pytest.fixture
def client(context):
    """API client sharing ``context`` with the app; cookies persist across calls."""
    from app.main import app

    app.state.context = context
    with TestClient(app) as c:
        yield c
    app.state.context = None


# ============================================================================
# Test Data Factories
# ============================================================================


@pytest.fixture
def make_event():
    """Factory for schedule events.

    Usage:
        ev = make_event("Lunch", "12:00", "13:00")
    """
    counter = {"n": 0}

    def _create(title: str, start: str, end: str | None = None, date: str = "2025-01-15", **overrides: Any) -> ScheduleEvent:
        counter["n"] += 1
        data = {"id": f"evt_test{counter['n']:03d}", "title": title, "start": start, "end": end, "date": date}
        data.update(overrides)
        return ScheduleEvent(**data)

    return _create


@pytest.fixture
def make_user():
    def _create(**overrides: Any) -> UserProfile:
        data = {
            "id": "usr_test",
            "name": "Alex",
            "type": "founder",
            "rhythm": "morning",
            "nonNegotiables": ["deep_focus", "exercise"],
            "createdAt": "2025-01-15T08:00:00+00:00",
        }
        data.update(overrides)
        return UserProfile(**data)

    return _create
