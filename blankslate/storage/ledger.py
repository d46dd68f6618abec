"""Per-(group, day, time block) usage budget ledger."""

from datetime import date

from blankslate.models import TrackingEntry
from blankslate.storage.db import StateStore


class BudgetLedger:
    """Reads and writes used-seconds counters.

    Rows are keyed by an explicit calendar date, so budgets reset implicitly
    when the date changes. Old rows are left in place.
    """

    def __init__(self, store: StateStore) -> None:
        self.store = store

    def get_used(self, group_id: str, day: date, block_id: str) -> int:
        """Return used seconds, 0 if nothing was recorded."""
        return self.store.get_tracking_entry(group_id, day, block_id).used_seconds

    def set_used(self, group_id: str, day: date, block_id: str, seconds: int) -> None:
        self.store.set_tracking_entry(
            group_id, day, block_id, TrackingEntry(used_seconds=max(0, int(seconds)))
        )

    def usage_for_date(self, day: date) -> dict[tuple[str, str], int]:
        """Return {(group_id, block_id): used_seconds} for a date."""
        return {
            key: entry.used_seconds
            for key, entry in self.store.get_tracking_for_date(day).items()
        }
