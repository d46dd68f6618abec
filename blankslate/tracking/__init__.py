"""Live usage tracking and badge state."""

from blankslate.tracking.badge import (
    BadgeState,
    ConsoleIndicator,
    IconState,
    Indicator,
    LoggingIndicator,
    format_badge_time,
)
from blankslate.tracking.tracker import TickOutcome, TimeTracker, TrackingSession, advance

__all__ = [
    "BadgeState",
    "ConsoleIndicator",
    "IconState",
    "Indicator",
    "LoggingIndicator",
    "format_badge_time",
    "TickOutcome",
    "TimeTracker",
    "TrackingSession",
    "advance",
]
