"""
Shared fixtures for the seed tracker test suite.

Unit tests use mocks for the notifier and a hand-driven clock; integration
tests run against an in-memory SQLite database.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio

from seed_tracker.config import Config
from seed_tracker.roster import RosterPlayer, StaticRoster
from seed_tracker.storage import SeedStore
from seed_tracker.tracker import SeedTracker

START = datetime(2026, 3, 10, 14, 0, tzinfo=timezone.utc)


class FakeClock:
    """Clock the tests move forward by hand."""

    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> Config:
    return Config(
        interval_minutes=15,
        seed_start=5,
        seed_end=40,
        lookback_days=30,
        purge_days=45,
        alert_critical_threshold=2,
        alert_low_threshold=4,
        alert_cooldown_minutes=30,
        database_path=":memory:",
        dry_run=True,
    )


@pytest_asyncio.fixture
async def store() -> AsyncGenerator[SeedStore, None]:
    seed_store = SeedStore(":memory:")
    await seed_store.connect()
    yield seed_store
    await seed_store.close()


@pytest.fixture
def mock_notifier(mocker):
    """Notifier double: publish returns a fresh message id, edit succeeds."""
    notifier = mocker.MagicMock()
    notifier.publish = mocker.AsyncMock(return_value="1001")
    notifier.edit = mocker.AsyncMock(return_value=True)
    notifier.send = mocker.AsyncMock(return_value="2001")
    return notifier


@pytest.fixture
def roster() -> StaticRoster:
    return StaticRoster()


@pytest_asyncio.fixture
async def tracker(config, mock_notifier, roster, clock) -> AsyncGenerator[SeedTracker, None]:
    seed_tracker = SeedTracker(config, SeedStore(":memory:"), mock_notifier, roster, now=clock)
    assert await seed_tracker.initialize()
    yield seed_tracker
    await seed_tracker.close()


def make_roster(count: int, *, prefix: str = "player") -> list:
    return [RosterPlayer(id=f"{prefix}{i}", display_name=f"Player {i}") for i in range(count)]
