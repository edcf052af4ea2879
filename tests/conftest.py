from __future__ import annotations

import pytest

from posture_tracker.config import get_config
from posture_tracker.models import UserPostureStats


@pytest.fixture(autouse=True)
def isolated_data_dir(tmp_path, monkeypatch):
    data_dir = tmp_path / "data"
    monkeypatch.setenv("POSTURE_TRACKER_DATA_DIR", str(data_dir))
    monkeypatch.delenv("POSTURE_TRACKER_CONFIG", raising=False)
    monkeypatch.delenv("POSTURE_TRACKER_USERS_FILE", raising=False)
    get_config.cache_clear()
    yield data_dir
    get_config.cache_clear()


class MemoryStore:
    """In-memory stand-in for the JSON account store."""

    def __init__(self, users=("ada@example.com",)):
        self.stats = {user: UserPostureStats() for user in users}
        self.saves = 0

    def load(self, user_id):
        return self.stats[user_id]

    def save(self, user_id, stats):
        self.saves += 1
        self.stats[user_id] = stats


class FakeClock:
    def __init__(self, start: float = 1_700_000_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def clock():
    return FakeClock()
