"""Block/allow/pause decisions for groups.

For each group the checks run in a fixed order:
1. Unexpired pause -> Paused (overrides everything else)
2. No time blocks -> Blocked(always-blocked)
3. No active time block -> Blocked(outside-schedule)
4. Budget of the active block used up -> Blocked(budget-exhausted)
5. Otherwise -> Allowed with the remaining seconds
"""

import logging
from datetime import datetime
from typing import Optional

from blankslate.models import Allowed, Blocked, BlockReason, Decision, Group, Paused
from blankslate.policies.schedule import active_block_for
from blankslate.storage import BudgetLedger, StateStore

logger = logging.getLogger(__name__)


def epoch_ms(moment: datetime) -> int:
    """Convert a datetime to epoch milliseconds (naive datetimes are local time)."""
    return int(moment.timestamp() * 1000)


class DecisionEngine:
    """Classifies groups as blocked, paused or allowed at a point in time."""

    def __init__(self, store: StateStore, ledger: BudgetLedger) -> None:
        """Initialize engine.

        Args:
            store: State store holding pauses
            ledger: Usage ledger for time-block budgets
        """
        self.store = store
        self.ledger = ledger

    def decide(self, group: Group, now: datetime) -> Decision:
        """Decide the state of a single group.

        Args:
            group: Group to evaluate
            now: Current local time

        Returns:
            Blocked, Paused or Allowed
        """
        pause = self.store.get_pause(group.id)
        if pause and pause.is_active(epoch_ms(now)):
            return Paused(paused_until=pause.paused_until)

        if not group.allowed_time_blocks:
            return Blocked(reason=BlockReason.ALWAYS_BLOCKED)

        active_block = active_block_for(group, now)
        if active_block is None:
            return Blocked(reason=BlockReason.OUTSIDE_SCHEDULE)

        used_seconds = self.ledger.get_used(group.id, now.date(), active_block.id)
        if used_seconds / 60 >= active_block.allowed_minutes:
            return Blocked(
                reason=BlockReason.BUDGET_EXHAUSTED,
                allowed_minutes=active_block.allowed_minutes,
            )

        return Allowed(
            active_block=active_block,
            remaining_seconds=active_block.allowed_seconds - used_seconds,
        )

    def is_blocked(self, group: Group, now: datetime) -> bool:
        return isinstance(self.decide(group, now), Blocked)

    def decide_most_restrictive(
        self,
        groups: list[Group],
        now: datetime,
    ) -> Optional[tuple[Group, Decision]]:
        """Pick the governing group among those matching a URL.

        The first Blocked or Paused group in order wins immediately. Among
        Allowed groups the one with the least remaining time wins.

        Args:
            groups: Groups matching the current URL
            now: Current local time

        Returns:
            (group, decision) for the governing group, or None if no group matched
        """
        best: Optional[tuple[Group, Allowed]] = None

        for group in groups:
            decision = self.decide(group, now)

            if isinstance(decision, (Blocked, Paused)):
                return group, decision

            if isinstance(decision, Allowed):
                if best is None or decision.remaining_seconds < best[1].remaining_seconds:
                    best = (group, decision)

        return best
