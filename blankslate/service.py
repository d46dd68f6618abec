"""Policy service: wires decisions, tracking, rules and alarms to events.

External triggers handled here:
- navigation and focus changes -> re-decide the focused subject
- persist heartbeat (30s)      -> flush tracked usage
- daily rollover (00:00:05)    -> stop tracking, rebuild for the new day
- schedule boundary            -> rebuild when a time window opens or closes
- pause expiry (per group)     -> clear the pause and rebuild
- group edits                  -> full re-evaluation
- inbound messages from UI contexts (see handle_message)
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, Optional

from blankslate.config import Config
from blankslate.enforcement import (
    FileRuleSink,
    MemoryRuleSink,
    RebuildResult,
    RuleCompiler,
    RuleSink,
    RuleSinkError,
    WebhookRuleSink,
)
from blankslate.policies import (
    DecisionEngine,
    GroupError,
    GroupManager,
    find_matching_groups,
    next_boundary,
)
from blankslate.policies.decision import epoch_ms
from blankslate.runtime import AlarmScheduler, Navigator
from blankslate.storage import BudgetLedger, StateStore
from blankslate.storage.db import GROUPS_KEY
from blankslate.tracking import Indicator, TimeTracker
from blankslate.tracking.badge import DEFAULT_BADGE, update_badge

logger = logging.getLogger(__name__)

ALARM_PERSIST = "persist-tick"
ALARM_MIDNIGHT = "midnight-rollover"
ALARM_BOUNDARY = "schedule-boundary"
ALARM_PAUSE_PREFIX = "pause-expiry::"


def create_sink(config: Config) -> RuleSink:
    """Build the enforcement sink selected in the config."""
    if config.sink == "webhook":
        if not config.webhook_url:
            raise ValueError("The webhook sink requires enforcement.webhook_url")
        return WebhookRuleSink(config.webhook_url)
    if config.sink == "memory":
        return MemoryRuleSink()
    return FileRuleSink(config.rules_path)


def next_rollover(now: datetime) -> datetime:
    """00:00:05 on the day after now."""
    tomorrow = now.date() + timedelta(days=1)
    return datetime(tomorrow.year, tomorrow.month, tomorrow.day, 0, 0, 5)


class PolicyService:
    """Event-driven orchestrator around the decision engine."""

    def __init__(
        self,
        store: StateStore,
        navigator: Navigator,
        sink: RuleSink,
        block_page_url: str,
        indicator: Optional[Indicator] = None,
        clock: Callable[[], datetime] = datetime.now,
        tick_seconds: float = 1.0,
        persist_every: int = 10,
        heartbeat_seconds: float = 30.0,
        max_daily_pauses: int = 3,
    ) -> None:
        """Initialize service.

        Args:
            store: Connected state store
            navigator: Navigation collaborator
            sink: Enforcement sink for compiled rules
            block_page_url: Base URL of the block notice page
            indicator: Badge indicator
            clock: Source of the current local time (naive datetimes)
            tick_seconds: Tracking tick period
            persist_every: Persist tracked usage every N ticks
            heartbeat_seconds: Period of the persist heartbeat alarm
            max_daily_pauses: Pauses allowed per group per day, 0 for unlimited
        """
        self.store = store
        self.navigator = navigator
        self.indicator = indicator
        self.clock = clock
        self.heartbeat_seconds = heartbeat_seconds
        self.max_daily_pauses = max_daily_pauses

        self.ledger = BudgetLedger(store)
        self.engine = DecisionEngine(store, self.ledger)
        self.compiler = RuleCompiler(store, self.engine, sink, block_page_url)
        self.tracker = TimeTracker(
            store,
            self.engine,
            self.compiler,
            navigator,
            indicator=indicator,
            clock=clock,
            tick_seconds=tick_seconds,
            persist_every=persist_every,
        )
        self.alarms = AlarmScheduler(self.on_alarm, clock)
        self._pending: set[asyncio.Task[None]] = set()

        store.add_change_listener(self._on_store_changed)

    @classmethod
    def from_config(
        cls,
        config: Config,
        store: StateStore,
        navigator: Navigator,
        indicator: Optional[Indicator] = None,
    ) -> "PolicyService":
        return cls(
            store,
            navigator,
            create_sink(config),
            config.block_page_url,
            indicator=indicator,
            tick_seconds=config.tick_seconds,
            persist_every=config.persist_every_ticks,
            heartbeat_seconds=config.heartbeat_seconds,
            max_daily_pauses=config.max_daily_pauses,
        )

    # Lifecycle

    async def initialize(self) -> None:
        """Rebuild rules, arm alarms and evaluate the focused subject."""
        try:
            self.rebuild_rules()
            self._setup_alarms()
            await self.tracker.evaluate_current_subject()
        except Exception as e:
            logger.error(f"Initialization error: {e}")

    async def shutdown(self) -> None:
        """Persist usage, cancel every timer and release the rule sink."""
        await self.tracker.stop()
        self.alarms.close()
        for task in list(self._pending):
            task.cancel()
        self.close()

    def close(self) -> None:
        """Detach from the store and close the rule sink.

        One-shot commands that never start the event loop call this directly.
        """
        self.store.remove_change_listener(self._on_store_changed)
        self.compiler.sink.close()

    def _setup_alarms(self) -> None:
        now = self.clock()
        self.alarms.create(ALARM_PERSIST, period=self.heartbeat_seconds)
        self.alarms.create(ALARM_MIDNIGHT, when=next_rollover(now))

        for group_id, pause in self.store.get_active_pauses(epoch_ms(now)).items():
            self._arm_pause_alarm(group_id, pause.paused_until)

        self._arm_boundary_alarm()

    def _arm_pause_alarm(self, group_id: str, paused_until: int) -> None:
        self.alarms.create(
            f"{ALARM_PAUSE_PREFIX}{group_id}",
            when=datetime.fromtimestamp(paused_until / 1000),
        )

    def _arm_boundary_alarm(self) -> None:
        boundary = next_boundary(self.store.get_groups(), self.clock())
        if boundary is None:
            self.alarms.clear(ALARM_BOUNDARY)
        else:
            self.alarms.create(ALARM_BOUNDARY, when=boundary)

    # Re-evaluation

    def rebuild_rules(self) -> Optional[RebuildResult]:
        """Recompile rules; sink failures are logged and leave the old rules."""
        try:
            result = self.compiler.rebuild(self.store.get_groups(), self.clock())
        except (RuleSinkError, OSError) as e:
            logger.warning(f"Rule rebuild failed: {e}")
            return None
        logger.debug(f"Rules: {result.added_count} added, {result.removed_count} removed")
        return result

    async def refresh(self) -> None:
        """Full re-evaluation: rules, schedule alarm and the focused subject."""
        self.rebuild_rules()
        self._arm_boundary_alarm()
        await self.tracker.evaluate_current_subject()

    async def on_navigation(self) -> None:
        await self.tracker.evaluate_current_subject()

    async def on_focus_changed(self, focused: bool) -> None:
        if not focused:
            await self.tracker.stop()
            update_badge(self.indicator, DEFAULT_BADGE)
        else:
            await self.tracker.evaluate_current_subject()

    async def on_groups_changed(self) -> None:
        await self.refresh()

    def _on_store_changed(self, keys: set[str]) -> None:
        if GROUPS_KEY not in keys:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # No event loop (one-shot CLI command)
        task = loop.create_task(self.on_groups_changed())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def on_alarm(self, name: str) -> None:
        if name == ALARM_PERSIST:
            await self.tracker.on_persist_heartbeat()
        elif name == ALARM_MIDNIGHT:
            await self.handle_midnight_rollover()
        elif name == ALARM_BOUNDARY:
            await self.refresh()
        elif name.startswith(ALARM_PAUSE_PREFIX):
            await self.handle_pause_expiry(name[len(ALARM_PAUSE_PREFIX):])
        else:
            logger.debug(f"Ignoring unknown alarm '{name}'")

    async def handle_midnight_rollover(self) -> None:
        """Start the new day: fresh budgets, fresh rules."""
        await self.tracker.stop()
        await self.refresh()
        self.alarms.create(ALARM_MIDNIGHT, when=next_rollover(self.clock()))

    # Pauses

    async def activate_pause(self, group_id: str, paused_until: int) -> dict[str, Any]:
        """Pause blocking for a group until paused_until (epoch ms)."""
        today = self.clock().date()
        if self.max_daily_pauses > 0:
            used = self.store.get_pause_count(group_id, today)
            if used >= self.max_daily_pauses:
                return {
                    "ok": False,
                    "error": f"Daily pause limit reached ({self.max_daily_pauses})",
                }

        self.store.set_pause(group_id, paused_until)
        self.store.increment_pause_count(group_id, today)
        self._arm_pause_alarm(group_id, paused_until)
        logger.info(f"Group {group_id} paused until {datetime.fromtimestamp(paused_until / 1000)}")

        await self.refresh()
        return {"ok": True}

    async def end_pause(self, group_id: str) -> None:
        self.alarms.clear(f"{ALARM_PAUSE_PREFIX}{group_id}")
        await self.handle_pause_expiry(group_id)

    async def handle_pause_expiry(self, group_id: str) -> None:
        self.store.clear_pause(group_id)
        await self.refresh()

    # Queries

    def get_tab_status(self, url: Optional[str]) -> dict[str, Any]:
        """Decision for the first group matching a URL."""
        if not url:
            return {"matched": False}

        matching = find_matching_groups(url, self.store.get_groups())
        if not matching:
            return {"matched": False}

        group = matching[0]
        decision = self.engine.decide(group, self.clock())
        return {
            "matched": True,
            "groupId": group.id,
            "groupName": group.name,
            **decision.to_dict(),
        }

    async def handle_message(self, message: dict[str, Any]) -> dict[str, Any]:
        """Answer a request from a UI context.

        Supported types: pause-activated, pause-ended, get-tracking-state,
        get-tab-status, edit-group.
        """
        msg_type = message.get("type")

        if msg_type == "pause-activated":
            try:
                return await self.activate_pause(
                    str(message["groupId"]), int(message["pausedUntil"])
                )
            except Exception as e:
                logger.warning(f"pause-activated failed: {e}")
                return {"ok": False, "error": str(e)}

        if msg_type == "pause-ended":
            try:
                await self.end_pause(str(message["groupId"]))
                return {"ok": True}
            except Exception as e:
                logger.warning(f"pause-ended failed: {e}")
                return {"ok": False, "error": str(e)}

        if msg_type == "get-tracking-state":
            return {"state": self.tracker.get_tracking_state()}

        if msg_type == "get-tab-status":
            try:
                return self.get_tab_status(message.get("url"))
            except Exception as e:
                logger.warning(f"get-tab-status failed: {e}")
                return {"matched": False}

        if msg_type == "edit-group":
            try:
                return self.edit_group(message)
            except (GroupError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"edit-group failed: {e}")
                return {"ok": False, "error": str(e)}

        return {"ok": False, "error": f"Unknown message type: {msg_type}"}

    def edit_group(self, message: dict[str, Any]) -> dict[str, Any]:
        """Apply one group edit through this service's store.

        Saving the groups notifies the store listener, which schedules the
        full re-evaluation. The daemon owns the database while it runs, so
        edits made during a session must come through here.
        """
        manager = GroupManager(self.store)
        action = message.get("action")

        if action == "create-group":
            group = manager.create_group(str(message["name"]))
            return {"ok": True, "groupId": group.id}

        group = manager.find(str(message["group"]))
        if group is None:
            raise GroupError(f"Group not found: {message['group']}")

        if action == "rename-group":
            manager.rename_group(group.id, str(message["name"]))
        elif action == "delete-group":
            manager.delete_group(group.id)
        elif action == "add-site":
            site = manager.add_site(group.id, str(message["pattern"]))
            return {"ok": True, "siteId": site.id}
        elif action == "remove-site":
            manager.remove_site(group.id, str(message["pattern"]))
        elif action == "add-time-block":
            block = manager.add_time_block(
                group.id,
                days=list(message.get("days", [])),
                start_time=message.get("start", "09:00"),
                end_time=message.get("end", "17:00"),
                all_day=bool(message.get("allDay", False)),
                allowed_minutes=int(message.get("allowedMinutes", 15)),
            )
            return {"ok": True, "blockId": block.id}
        elif action == "remove-time-block":
            manager.remove_time_block(group.id, str(message["blockId"]))
        else:
            raise ValueError(f"Unknown edit action: {action}")
        return {"ok": True}
