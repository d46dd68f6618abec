"""Weekly time window evaluation.

A time block is active on its days from start through end, with the end
minute inclusive: a 14:00-17:00 block is active at 17:00 and closes at 17:01.
"""

from datetime import datetime, timedelta
from typing import Optional

from blankslate.models import DAYS, Group, TimeBlock

MINUTES_PER_DAY = 24 * 60


def time_to_minutes(value: str) -> int:
    """Convert "HH:MM" to minutes since midnight."""
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def day_name(moment: datetime) -> str:
    """Abbreviated day name (mon..sun) for a datetime."""
    return DAYS[moment.weekday()]


def minutes_of_day(moment: datetime) -> int:
    return moment.hour * 60 + moment.minute


def is_block_active(block: TimeBlock, now: datetime) -> bool:
    """Check whether a time block covers the given moment."""
    if day_name(now) not in block.days:
        return False

    current = minutes_of_day(now)
    return time_to_minutes(block.start_time) <= current <= time_to_minutes(block.end_time)


def active_block_for(group: Group, now: datetime) -> Optional[TimeBlock]:
    """Return the first active time block of a group in insertion order.

    Overlapping blocks are allowed; the first match is the one whose budget
    gets charged.
    """
    for block in group.allowed_time_blocks:
        if is_block_active(block, now):
            return block
    return None


def next_boundary(groups: list[Group], now: datetime) -> Optional[datetime]:
    """Find the next moment today at which any time block opens or closes.

    Closing is modeled as end + 1 minute. Boundaries on later days are not
    considered; the daily rollover handles those.

    Args:
        groups: Groups whose time blocks are considered
        now: Current local time

    Returns:
        Earliest boundary strictly after now, or None if there is none today
    """
    today = day_name(now)
    current = minutes_of_day(now)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)

    soonest: Optional[datetime] = None

    for group in groups:
        for block in group.allowed_time_blocks:
            if today not in block.days:
                continue

            start = time_to_minutes(block.start_time)
            end_boundary = time_to_minutes(block.end_time) + 1

            candidates = []
            if start > current:
                candidates.append(start)
            if current < end_boundary <= MINUTES_PER_DAY:
                candidates.append(end_boundary)

            for minutes in candidates:
                boundary = midnight + timedelta(minutes=minutes)
                if boundary > now and (soonest is None or boundary < soonest):
                    soonest = boundary

    return soonest
