"""Named asyncio alarms.

Each alarm has a unique name; creating an alarm with an existing name
replaces the previous one, so a group's pause expiry is armed at most once.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Optional

logger = logging.getLogger(__name__)

AlarmHandler = Callable[[str], Awaitable[None]]


class AlarmScheduler:
    """Schedules named one-shot or repeating alarms on the running event loop."""

    def __init__(
        self,
        handler: AlarmHandler,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """Initialize scheduler.

        Args:
            handler: Coroutine called with the alarm name when it fires
            clock: Source of the current local time
        """
        self.handler = handler
        self.clock = clock
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def create(
        self,
        name: str,
        when: Optional[datetime] = None,
        delay: Optional[float] = None,
        period: Optional[float] = None,
    ) -> None:
        """Arm an alarm, superseding any alarm with the same name.

        Args:
            name: Alarm name
            when: Absolute fire time
            delay: Seconds until first fire (used when `when` is not given)
            period: Repeat interval in seconds, None for one-shot
        """
        if when is not None:
            first = max(0.0, (when - self.clock()).total_seconds())
        elif delay is not None:
            first = max(0.0, delay)
        elif period is not None:
            first = period
        else:
            raise ValueError("Alarm needs when, delay or period")

        self.clear(name)
        self._tasks[name] = asyncio.create_task(self._fire(name, first, period))
        logger.debug(f"Alarm '{name}' armed in {first:.1f}s (period={period})")

    def clear(self, name: str) -> bool:
        """Cancel an alarm. Returns True if one was armed."""
        task = self._tasks.pop(name, None)
        if task is None:
            return False
        if task is not asyncio.current_task():
            task.cancel()
        return True

    def names(self) -> list[str]:
        return sorted(self._tasks)

    def close(self) -> None:
        """Cancel every alarm."""
        for name in list(self._tasks):
            self.clear(name)

    async def _fire(self, name: str, first: float, period: Optional[float]) -> None:
        await asyncio.sleep(first)
        while True:
            try:
                await self.handler(name)
            except Exception as e:
                logger.warning(f"Alarm '{name}' handler failed: {e}")

            # Superseded or cleared by the handler itself
            if self._tasks.get(name) is not asyncio.current_task():
                return
            if period is None:
                break
            await asyncio.sleep(period)

        if self._tasks.get(name) is asyncio.current_task():
            del self._tasks[name]
