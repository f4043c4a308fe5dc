"""
Shared fixtures for task tracker tests.

Provides an isolated SQLite store per test, two registered owners, and a
controllable clock so timestamps can be asserted exactly.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

project_root = Path(__file__).parent.parent.parent / "src"
sys.path.insert(0, str(project_root))

from task_tracker.database import TaskStore
from task_tracker.service import TaskService


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float = 1.0) -> datetime:
        self.current = self.current + timedelta(seconds=seconds)
        return self.current


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "tasks.db")


@pytest.fixture
def store(db_path):
    db = TaskStore(db_path)
    yield db
    db.close()


@pytest.fixture
def owner_id(store):
    return store.create_owner("alice@example.com")


@pytest.fixture
def other_owner_id(store):
    return store.create_owner("bob@example.com")


@pytest.fixture
def clock():
    return ManualClock(datetime(2025, 6, 1, 9, 0, 0, 123456, tzinfo=timezone.utc))


@pytest.fixture
def service(store, clock):
    return TaskService(store, clock=clock)
