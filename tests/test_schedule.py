"""Tests for weekly time window evaluation."""

from datetime import datetime

from blankslate.models import TimeBlock
from blankslate.policies.schedule import (
    active_block_for,
    day_name,
    is_block_active,
    next_boundary,
    time_to_minutes,
)
from conftest import MONDAY_2PM, make_group, weekday_block


class TestHelpers:
    def test_time_to_minutes(self) -> None:
        assert time_to_minutes("00:00") == 0
        assert time_to_minutes("14:30") == 870
        assert time_to_minutes("23:59") == 1439

    def test_day_name(self) -> None:
        assert day_name(MONDAY_2PM) == "mon"
        assert day_name(datetime(2024, 1, 7, 12, 0)) == "sun"


class TestIsBlockActive:
    """Tests for is_block_active."""

    def test_inside_window(self) -> None:
        assert is_block_active(weekday_block(), MONDAY_2PM)

    def test_wrong_day(self) -> None:
        saturday = datetime(2024, 1, 6, 14, 0)
        assert not is_block_active(weekday_block(), saturday)

    def test_start_inclusive(self) -> None:
        assert is_block_active(weekday_block(start="14:00"), MONDAY_2PM)

    def test_end_inclusive(self) -> None:
        block = weekday_block(start="14:00", end="17:00")
        assert is_block_active(block, datetime(2024, 1, 1, 17, 0, 59))
        assert not is_block_active(block, datetime(2024, 1, 1, 17, 1))

    def test_before_start(self) -> None:
        assert not is_block_active(weekday_block(start="14:01"), MONDAY_2PM)

    def test_all_day(self) -> None:
        block = TimeBlock(id="b", days=["mon"], start_time="10:00", end_time="11:00", all_day=True)
        assert block.start_time == "00:00"
        assert block.end_time == "23:59"
        assert is_block_active(block, datetime(2024, 1, 1, 23, 59, 30))
        assert is_block_active(block, datetime(2024, 1, 1, 0, 0))


class TestActiveBlockFor:
    def test_first_active_block_wins(self) -> None:
        first = weekday_block("first", start="13:00", end="15:00")
        second = weekday_block("second", start="09:00", end="17:00")
        group = make_group("Social", ["reddit.com"], [first, second])

        assert active_block_for(group, MONDAY_2PM) is first

    def test_skips_inactive(self) -> None:
        morning = weekday_block("morning", start="08:00", end="09:00")
        afternoon = weekday_block("afternoon", start="13:00", end="15:00")
        group = make_group("Social", ["reddit.com"], [morning, afternoon])

        assert active_block_for(group, MONDAY_2PM) is afternoon

    def test_none(self) -> None:
        group = make_group("Social", ["reddit.com"], [weekday_block(start="18:00", end="19:00")])
        assert active_block_for(group, MONDAY_2PM) is None


class TestNextBoundary:
    """Tests for the schedule boundary calculation."""

    def test_end_of_active_block(self) -> None:
        group = make_group("Social", ["reddit.com"], [weekday_block(start="09:00", end="17:00")])
        assert next_boundary([group], MONDAY_2PM) == datetime(2024, 1, 1, 17, 1)

    def test_upcoming_start(self) -> None:
        group = make_group("Social", ["reddit.com"], [weekday_block(start="15:30", end="16:00")])
        assert next_boundary([group], MONDAY_2PM) == datetime(2024, 1, 1, 15, 30)

    def test_earliest_across_groups(self) -> None:
        a = make_group("A", ["a.com"], [weekday_block(start="09:00", end="17:00")])
        b = make_group("B", ["b.com"], [weekday_block(start="14:45", end="15:00")])
        assert next_boundary([a, b], MONDAY_2PM) == datetime(2024, 1, 1, 14, 45)

    def test_within_current_minute(self) -> None:
        group = make_group("Social", ["reddit.com"], [weekday_block(start="09:00", end="14:00")])
        now = datetime(2024, 1, 1, 14, 0, 30)
        assert next_boundary([group], now) == datetime(2024, 1, 1, 14, 1)

    def test_none_when_all_passed(self) -> None:
        group = make_group("Social", ["reddit.com"], [weekday_block(start="09:00", end="12:00")])
        assert next_boundary([group], MONDAY_2PM) is None

    def test_other_days_ignored(self) -> None:
        group = make_group(
            "Social", ["reddit.com"], [weekday_block(start="15:00", end="16:00", days=["tue"])]
        )
        assert next_boundary([group], MONDAY_2PM) is None

    def test_end_of_day_block_has_midnight_boundary(self) -> None:
        group = make_group(
            "Social", ["reddit.com"], [weekday_block(start="20:00", end="23:59")]
        )
        now = datetime(2024, 1, 1, 23, 0)
        assert next_boundary([group], now) == datetime(2024, 1, 2, 0, 0)
