"""Icon/badge state reporting.

The core only decides which state to show; drawing it is up to an indicator.
Indicator failures never affect decisions or enforcement.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from rich.console import Console

logger = logging.getLogger(__name__)

URGENT_THRESHOLD_SECONDS = 60


class IconState(str, Enum):
    DEFAULT = "default"  # no matching group
    TIMER = "timer"  # tracking with time remaining
    URGENT = "urgent"  # <= 60s remaining
    BLOCKED = "blocked"
    PAUSED = "paused"


COLORS = {
    IconState.DEFAULT: "#4A90D9",  # blue
    IconState.TIMER: "#34A853",    # green
    IconState.URGENT: "#F4B400",   # orange
    IconState.BLOCKED: "#EA4335",  # red
    IconState.PAUSED: "#9E9E9E",   # gray
}

RICH_STYLES = {
    IconState.DEFAULT: "blue",
    IconState.TIMER: "green",
    IconState.URGENT: "yellow",
    IconState.BLOCKED: "red",
    IconState.PAUSED: "dim",
}


@dataclass(frozen=True)
class BadgeState:
    state: IconState
    text: str = ""

    @property
    def color(self) -> str:
        return COLORS[self.state]


DEFAULT_BADGE = BadgeState(IconState.DEFAULT)
BLOCKED_BADGE = BadgeState(IconState.BLOCKED, "X")


def format_badge_time(seconds: int) -> str:
    """Format remaining time for a badge: "45s", "15m" (minutes rounded up)."""
    if seconds <= 0:
        return ""
    if seconds < 60:
        return f"{seconds}s"
    return f"{math.ceil(seconds / 60)}m"


def badge_for_remaining(remaining_seconds: int) -> BadgeState:
    state = IconState.URGENT if remaining_seconds <= URGENT_THRESHOLD_SECONDS else IconState.TIMER
    return BadgeState(state, format_badge_time(remaining_seconds))


def paused_badge(remaining_seconds: int) -> BadgeState:
    return BadgeState(IconState.PAUSED, format_badge_time(remaining_seconds))


class Indicator:
    """Receives badge updates."""

    def show(self, badge: BadgeState) -> None:
        raise NotImplementedError


class LoggingIndicator(Indicator):
    """Logs badge changes and remembers the last one."""

    def __init__(self) -> None:
        self.current: Optional[BadgeState] = None

    def show(self, badge: BadgeState) -> None:
        if badge != self.current:
            logger.debug(f"Badge: {badge.state.value} {badge.text}".rstrip())
        self.current = badge


class ConsoleIndicator(Indicator):
    """Prints badge changes to a rich console."""

    def __init__(self, console: Console) -> None:
        self.console = console
        self._last: Optional[BadgeState] = None

    def show(self, badge: BadgeState) -> None:
        if badge == self._last:
            return
        self._last = badge
        style = RICH_STYLES[badge.state]
        self.console.print(f"[{style}]● {badge.state.value}[/{style}] {badge.text}")


def update_badge(indicator: Optional[Indicator], badge: BadgeState) -> None:
    """Show a badge, swallowing indicator errors."""
    if indicator is None:
        return
    try:
        indicator.show(badge)
    except Exception as e:
        logger.warning(f"Badge update failed, keeping previous icon: {e}")
