"""
Global pytest fixtures for the access-sync test suite.
"""
import os

# Set test environment BEFORE any app imports
os.environ["TESTING"] = "true"
os.environ.setdefault("SLACK_SIGNING_SECRET", "test-signing-secret")

from datetime import datetime, timezone

import pytest

from app.shared.core.cache import SnapshotCache
from app.shared.core.config import get_settings


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep stand-in that records requested delays."""

    def __init__(self, clock: FakeClock | None = None):
        self.calls: list[float] = []
        self.clock = clock

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def snapshot_cache(fake_clock) -> SnapshotCache:
    return SnapshotCache(clock=fake_clock)
