"""Navigation collaborator: browsing subjects (tabs) and redirects."""

import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


class NavigationError(Exception):
    """Raised when a subject cannot be navigated, e.g. it was closed."""


@dataclass
class Subject:
    """A browsing subject (tab) and its current URL."""

    id: int
    url: str


class Navigator:
    """Interface to the browser or proxy that owns the subjects."""

    def active_subject(self) -> Optional[Subject]:
        """Return the focused subject, or None if nothing has focus."""
        raise NotImplementedError

    def get_url(self, subject_id: int) -> Optional[str]:
        raise NotImplementedError

    def redirect(self, subject_id: int, url: str) -> None:
        """Point a subject at a new URL.

        Raises:
            NavigationError: If the subject no longer exists
        """
        raise NotImplementedError


def safe_redirect(navigator: Navigator, subject_id: int, url: str) -> bool:
    """Redirect a subject, ignoring subjects that have gone away.

    Returns:
        True if the redirect was applied
    """
    try:
        navigator.redirect(subject_id, url)
        return True
    except NavigationError as e:
        logger.info(f"Redirect of subject {subject_id} skipped: {e}")
        return False


class TabRegistry(Navigator):
    """In-memory tab model fed by navigation events.

    Tracks open tabs, which one is active, and whether the window has focus.
    """

    def __init__(self) -> None:
        self._tabs: dict[int, str] = {}
        self._active: Optional[int] = None
        self.focused = True
        self.redirects: list[tuple[int, str]] = []

    def navigate(self, tab_id: int, url: str, activate: bool = True) -> None:
        """Record that a tab loaded a URL."""
        self._tabs[tab_id] = url
        if activate:
            self._active = tab_id

    def activate(self, tab_id: int) -> None:
        if tab_id not in self._tabs:
            raise NavigationError(f"No tab with id {tab_id}")
        self._active = tab_id

    def close(self, tab_id: int) -> None:
        self._tabs.pop(tab_id, None)
        if self._active == tab_id:
            self._active = None

    def active_subject(self) -> Optional[Subject]:
        if not self.focused or self._active is None:
            return None
        url = self._tabs.get(self._active)
        if url is None:
            return None
        return Subject(id=self._active, url=url)

    def get_url(self, subject_id: int) -> Optional[str]:
        return self._tabs.get(subject_id)

    def redirect(self, subject_id: int, url: str) -> None:
        if subject_id not in self._tabs:
            raise NavigationError(f"No tab with id {subject_id}")
        self._tabs[subject_id] = url
        self.redirects.append((subject_id, url))
