"""Shared fixtures for blankslate tests."""

from collections.abc import Iterator
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from blankslate.models import Group, Site, TimeBlock
from blankslate.storage import StateStore

# 2024-01-01 was a Monday
MONDAY_2PM = datetime(2024, 1, 1, 14, 0, 0)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def make_group(
    name: str,
    patterns: list[str],
    blocks: list[TimeBlock] | None = None,
    group_id: str | None = None,
) -> Group:
    """Build a group with site IDs derived from the group name."""
    gid = group_id or f"g-{name.lower()}"
    return Group(
        id=gid,
        name=name,
        sites=[Site(id=f"{gid}-s{i}", pattern=p) for i, p in enumerate(patterns)],
        allowed_time_blocks=blocks or [],
    )


def weekday_block(
    block_id: str = "b1",
    start: str = "09:00",
    end: str = "17:00",
    minutes: int = 15,
    days: list[str] | None = None,
) -> TimeBlock:
    return TimeBlock(
        id=block_id,
        days=days or ["mon", "tue", "wed", "thu", "fri"],
        start_time=start,
        end_time=end,
        allowed_minutes=minutes,
    )


@pytest.fixture()
def store() -> Iterator[StateStore]:
    """Provide a connected in-memory StateStore."""
    s = StateStore(Path(":memory:"))
    s.connect()
    yield s
    s.close()


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock(MONDAY_2PM)
