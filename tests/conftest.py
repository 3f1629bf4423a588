"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from archetype_imagegen.jobs.memory import InMemoryJobStore
from archetype_imagegen.jobs.repository import SqlJobStore


class FakeClock:
    """Deterministic clock whose ``sleep`` advances time instead of blocking."""

    def __init__(self, start: datetime) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 9, 0, tzinfo=UTC))


@pytest.fixture()
def memory_store(clock: FakeClock) -> InMemoryJobStore:
    return InMemoryJobStore(clock=clock)


@pytest.fixture()
def sql_store(tmp_path: Path, clock: FakeClock) -> Iterator[SqlJobStore]:
    store = SqlJobStore(tmp_path / "jobs.db", clock=clock)
    store.init_schema()
    try:
        yield store
    finally:
        store.close()


@pytest.fixture(params=["memory", "sql"])
def store(request: pytest.FixtureRequest, clock: FakeClock, tmp_path: Path):
    """Each job store implementation, driven by the shared fake clock."""

    if request.param == "memory":
        yield InMemoryJobStore(clock=clock)
        return
    sql = SqlJobStore(tmp_path / "jobs.db", clock=clock)
    sql.init_schema()
    try:
        yield sql
    finally:
        sql.close()
