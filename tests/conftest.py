from __future__ import annotations

import itertools
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from facenote.store.people import PeopleStore


class FakeClock:
    """Advances one second per call so creation order is unambiguous."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 9, 0, 0)

    def __call__(self) -> datetime:
        current = self.now
        self.now += timedelta(seconds=1)
        return current


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path: Path, clock: FakeClock) -> PeopleStore:
    ids = itertools.count(1)
    return PeopleStore(
        tmp_path / "data",
        clock=clock,
        id_factory=lambda: f"p{next(ids):03d}",
    )
