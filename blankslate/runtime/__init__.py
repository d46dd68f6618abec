"""Runtime collaborators: alarms and navigation."""

from blankslate.runtime.alarms import AlarmScheduler
from blankslate.runtime.navigation import (
    NavigationError,
    Navigator,
    Subject,
    TabRegistry,
    safe_redirect,
)

__all__ = [
    "AlarmScheduler",
    "NavigationError",
    "Navigator",
    "Subject",
    "TabRegistry",
    "safe_redirect",
]
