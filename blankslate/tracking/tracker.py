"""Per-second usage tracking for the focused subject.

While the governing decision for the focused subject is Allowed, a one-second
tick accrues usage for the (group, time block) pair. Usage is persisted every
10th tick and on every stop, so at most ~10 seconds are lost if the process
dies. When the budget runs out the session stops, rules are rebuilt so the
group becomes enforced, and the subject is sent to the block notice.

Only one session exists at a time; starting a new one always stops the
previous one first.
"""

import asyncio
import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any, Optional

from blankslate.enforcement.compiler import (
    RuleCompiler,
    block_notice_url,
    is_block_notice,
    parse_block_notice,
)
from blankslate.models import Allowed, Blocked, BlockReason, Group, Paused
from blankslate.policies.decision import DecisionEngine, epoch_ms
from blankslate.policies.patterns import find_matching_groups
from blankslate.runtime.navigation import Navigator, safe_redirect
from blankslate.storage import StateStore
from blankslate.tracking.badge import (
    BLOCKED_BADGE,
    DEFAULT_BADGE,
    BadgeState,
    Indicator,
    badge_for_remaining,
    paused_badge,
    update_badge,
)

logger = logging.getLogger(__name__)

PERSIST_EVERY_TICKS = 10


@dataclass(frozen=True)
class TrackingSession:
    """The single active tracking session."""

    group_id: str
    block_id: str
    used_seconds: int
    allowed_seconds: int
    subject_id: int
    day: date
    ticks: int = 0

    @property
    def remaining_seconds(self) -> int:
        return self.allowed_seconds - self.used_seconds

    def to_dict(self) -> dict[str, Any]:
        return {
            "groupId": self.group_id,
            "blockId": self.block_id,
            "usedSeconds": self.used_seconds,
            "allowedSeconds": self.allowed_seconds,
            "remainingSeconds": self.remaining_seconds,
            "subjectId": self.subject_id,
            "date": self.day.isoformat(),
        }


@dataclass(frozen=True)
class TickOutcome:
    """Result of advancing a session by one tick."""

    session: TrackingSession
    persist: bool
    exhausted: bool
    badge: BadgeState


def advance(session: TrackingSession, persist_every: int = PERSIST_EVERY_TICKS) -> TickOutcome:
    """Advance a session by one second.

    Args:
        session: Current session
        persist_every: Persist usage every N ticks

    Returns:
        The new session plus what the caller should do about it
    """
    updated = replace(session, used_seconds=session.used_seconds + 1, ticks=session.ticks + 1)
    remaining = updated.remaining_seconds
    exhausted = remaining <= 0

    return TickOutcome(
        session=updated,
        persist=exhausted or updated.ticks % persist_every == 0,
        exhausted=exhausted,
        badge=BLOCKED_BADGE if exhausted else badge_for_remaining(remaining),
    )


class TimeTracker:
    """Owns the tracking session and its tick task."""

    def __init__(
        self,
        store: StateStore,
        engine: DecisionEngine,
        compiler: RuleCompiler,
        navigator: Navigator,
        indicator: Optional[Indicator] = None,
        clock: Callable[[], datetime] = datetime.now,
        tick_seconds: float = 1.0,
        persist_every: int = PERSIST_EVERY_TICKS,
    ) -> None:
        """Initialize tracker.

        Args:
            store: State store holding groups
            engine: Decision engine (its ledger receives usage)
            compiler: Rule compiler, rebuilt when a budget runs out
            navigator: Navigation collaborator for the focused subject
            indicator: Badge indicator
            clock: Source of the current local time
            tick_seconds: Tick period
            persist_every: Persist usage every N ticks
        """
        self.store = store
        self.engine = engine
        self.ledger = engine.ledger
        self.compiler = compiler
        self.navigator = navigator
        self.indicator = indicator
        self.clock = clock
        self.tick_seconds = tick_seconds
        self.persist_every = persist_every

        self._session: Optional[TrackingSession] = None
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def session(self) -> Optional[TrackingSession]:
        return self._session

    @property
    def block_page_url(self) -> str:
        return self.compiler.block_page_url

    def get_tracking_state(self) -> Optional[dict[str, Any]]:
        return self._session.to_dict() if self._session else None

    # Re-evaluation

    async def evaluate_current_subject(self) -> None:
        """Re-decide the focused subject and start, keep or stop tracking."""
        subject = self.navigator.active_subject()
        if subject is None or not subject.url:
            await self.stop()
            update_badge(self.indicator, DEFAULT_BADGE)
            return

        url = subject.url
        now = self.clock()
        groups = self.store.get_groups()

        if is_block_notice(url, self.block_page_url):
            await self._evaluate_block_notice(subject.id, url, groups, now)
            return

        if not url.startswith(("http://", "https://")):
            await self.stop()
            update_badge(self.indicator, DEFAULT_BADGE)
            return

        result = self.engine.decide_most_restrictive(find_matching_groups(url, groups), now)
        if result is None:
            await self.stop()
            update_badge(self.indicator, DEFAULT_BADGE)
            return

        group, decision = result

        if isinstance(decision, Blocked):
            await self.stop()
            update_badge(self.indicator, BLOCKED_BADGE)
            notice = block_notice_url(
                self.block_page_url,
                group.name,
                group.id,
                decision.reason,
                decision.allowed_minutes,
                url,
            )
            safe_redirect(self.navigator, subject.id, notice)
        elif isinstance(decision, Paused):
            await self.stop()
            remaining = math.ceil((decision.paused_until - epoch_ms(now)) / 1000)
            update_badge(self.indicator, paused_badge(remaining))
        elif isinstance(decision, Allowed):
            await self.start(group, decision, subject.id, now)

    async def _evaluate_block_notice(
        self,
        subject_id: int,
        url: str,
        groups: list[Group],
        now: datetime,
    ) -> None:
        """Send a subject back from the block notice once its URL is unblocked."""
        original = parse_block_notice(url, self.block_page_url)
        if original:
            matching = find_matching_groups(original, groups)
            still_blocked = any(self.engine.is_blocked(g, now) for g in matching)
            if matching and not still_blocked:
                safe_redirect(self.navigator, subject_id, original)
                return

        await self.stop()
        update_badge(self.indicator, BLOCKED_BADGE)

    # Session lifecycle

    async def start(
        self,
        group: Group,
        decision: Allowed,
        subject_id: int,
        now: datetime,
    ) -> None:
        """Start tracking a group's active block, or refresh the subject of the
        session already tracking it."""
        block = decision.active_block
        current = self._session
        if current and current.group_id == group.id and current.block_id == block.id:
            self._session = replace(current, subject_id=subject_id)
            return

        await self.stop()

        day = now.date()
        self._session = TrackingSession(
            group_id=group.id,
            block_id=block.id,
            used_seconds=self.ledger.get_used(group.id, day, block.id),
            allowed_seconds=block.allowed_seconds,
            subject_id=subject_id,
            day=day,
        )
        self._task = asyncio.create_task(self._run())
        logger.info(
            f"Tracking '{group.name}' ({self._session.remaining_seconds}s remaining)"
        )
        update_badge(self.indicator, badge_for_remaining(self._session.remaining_seconds))

    async def stop(self) -> None:
        """Persist and end the current session, cancelling its tick task."""
        if self._session is None:
            return

        self.persist()
        task, self._task = self._task, None
        self._session = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def persist(self) -> None:
        session = self._session
        if session is None:
            return
        self.ledger.set_used(session.group_id, session.day, session.block_id, session.used_seconds)

    async def on_persist_heartbeat(self) -> None:
        self.persist()

    # Ticking

    async def tick(self) -> None:
        """Account one second of usage to the current session."""
        session = self._session
        if session is None:
            return

        outcome = advance(session, self.persist_every)
        self._session = outcome.session

        if outcome.persist:
            self.persist()

        if outcome.exhausted:
            await self._on_exhausted(outcome.session)
            return

        update_badge(self.indicator, outcome.badge)

    async def _on_exhausted(self, session: TrackingSession) -> None:
        allowed_minutes = session.allowed_seconds // 60
        await self.stop()

        now = self.clock()
        groups = self.store.get_groups()
        try:
            self.compiler.rebuild(groups, now)
        except Exception as e:
            logger.warning(f"Rule rebuild after budget exhaustion failed: {e}")

        group = next((g for g in groups if g.id == session.group_id), None)
        group_name = group.name if group else "Unknown"
        logger.info(f"Budget exhausted for '{group_name}' ({allowed_minutes} min)")

        notice = block_notice_url(
            self.block_page_url,
            group_name,
            session.group_id,
            BlockReason.BUDGET_EXHAUSTED,
            allowed_minutes,
            self.navigator.get_url(session.subject_id) or "",
        )
        safe_redirect(self.navigator, session.subject_id, notice)
        update_badge(self.indicator, BLOCKED_BADGE)

    async def _run(self) -> None:
        while self._task is asyncio.current_task():
            await asyncio.sleep(self.tick_seconds)
            if self._task is not asyncio.current_task():
                break
            try:
                await self.tick()
            except Exception as e:
                logger.warning(f"Tracking tick failed: {e}")
