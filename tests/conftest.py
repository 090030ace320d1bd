from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator

import pytest

from tasklist.db import SQLiteRepository
from tasklist.repositories import InMemoryRepository, JsonFileRepository, Repository
from tasklist.service import TaskService


class FakeClock:
    """Deterministic clock; every call advances by one second unless frozen."""

    def __init__(self, start: datetime = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)) -> None:
        self.now = start
        self.step = timedelta(seconds=1)

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


@pytest.fixture(params=["memory", "json", "sqlite"])
def repository(request: pytest.FixtureRequest, tmp_path: Path) -> Iterator[Repository]:
    """Every repository backend, each on its own tmp storage."""
    if request.param == "memory":
        repo: Repository = InMemoryRepository()
    elif request.param == "json":
        repo = JsonFileRepository(tmp_path / "tasks.json")
    else:
        repo = SQLiteRepository(tmp_path / "tasks.db")
    yield repo
    repo.close()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def service(repository: Repository, clock: FakeClock) -> TaskService:
    return TaskService(repository, clock=clock)
