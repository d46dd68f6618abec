"""Data models for blankslate."""

from blankslate.models.policy import (
    DAYS,
    Allowed,
    Blocked,
    BlockReason,
    CompiledRule,
    Decision,
    Group,
    Pause,
    Paused,
    Site,
    TimeBlock,
    TrackingEntry,
)

__all__ = [
    "DAYS",
    "Allowed",
    "Blocked",
    "BlockReason",
    "CompiledRule",
    "Decision",
    "Group",
    "Pause",
    "Paused",
    "Site",
    "TimeBlock",
    "TrackingEntry",
]
