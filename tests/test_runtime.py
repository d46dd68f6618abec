"""Tests for named alarms, the tab registry and badge helpers."""

import asyncio
from datetime import datetime, timedelta

import pytest

from blankslate.runtime import AlarmScheduler, NavigationError, TabRegistry, safe_redirect
from blankslate.tracking import IconState, LoggingIndicator, format_badge_time
from blankslate.tracking.badge import (
    BLOCKED_BADGE,
    BadgeState,
    Indicator,
    badge_for_remaining,
    update_badge,
)
from conftest import FixedClock


class TestAlarmScheduler:
    """Tests for AlarmScheduler."""

    @pytest.mark.asyncio
    async def test_one_shot(self) -> None:
        fired: list[str] = []

        async def handler(name: str) -> None:
            fired.append(name)

        alarms = AlarmScheduler(handler)
        alarms.create("once", delay=0.01)
        await asyncio.sleep(0.1)

        assert fired == ["once"]
        assert alarms.names() == []

    @pytest.mark.asyncio
    async def test_absolute_time(self) -> None:
        fired: list[str] = []

        async def handler(name: str) -> None:
            fired.append(name)

        clock = FixedClock(datetime(2024, 1, 1, 12, 0))
        alarms = AlarmScheduler(handler, clock)
        alarms.create("past", when=clock() - timedelta(minutes=5))
        await asyncio.sleep(0.05)

        assert fired == ["past"]

    @pytest.mark.asyncio
    async def test_periodic(self) -> None:
        fired: list[str] = []

        async def handler(name: str) -> None:
            fired.append(name)

        alarms = AlarmScheduler(handler)
        alarms.create("tick", period=0.01)
        await asyncio.sleep(0.1)
        alarms.close()

        assert len(fired) >= 3
        assert alarms.names() == []

    @pytest.mark.asyncio
    async def test_same_name_supersedes(self) -> None:
        fired: list[str] = []

        async def handler(name: str) -> None:
            fired.append(name)

        alarms = AlarmScheduler(handler)
        alarms.create("pause", delay=0.05)
        alarms.create("pause", delay=0.01)
        await asyncio.sleep(0.15)

        assert fired == ["pause"]

    @pytest.mark.asyncio
    async def test_clear(self) -> None:
        fired: list[str] = []

        async def handler(name: str) -> None:
            fired.append(name)

        alarms = AlarmScheduler(handler)
        alarms.create("a", delay=0.02)
        assert alarms.clear("a")
        assert not alarms.clear("a")
        await asyncio.sleep(0.05)

        assert fired == []

    @pytest.mark.asyncio
    async def test_failing_handler_keeps_period(self) -> None:
        calls: list[str] = []

        async def handler(name: str) -> None:
            calls.append(name)
            raise RuntimeError("boom")

        alarms = AlarmScheduler(handler)
        alarms.create("flaky", period=0.01)
        await asyncio.sleep(0.1)
        alarms.close()

        assert len(calls) >= 2

    @pytest.mark.asyncio
    async def test_handler_can_rearm_itself(self) -> None:
        fired: list[str] = []

        async def handler(name: str) -> None:
            fired.append(name)
            if len(fired) < 3:
                alarms.create(name, delay=0.01)

        alarms = AlarmScheduler(handler)
        alarms.create("chain", delay=0.01)
        await asyncio.sleep(0.2)

        assert fired == ["chain", "chain", "chain"]
        assert alarms.names() == []

    def test_requires_a_time(self) -> None:
        async def handler(name: str) -> None:
            pass

        with pytest.raises(ValueError):
            AlarmScheduler(handler).create("nothing")


class TestTabRegistry:
    """Tests for the in-memory navigator."""

    def test_active_subject(self) -> None:
        tabs = TabRegistry()
        assert tabs.active_subject() is None

        tabs.navigate(1, "https://a.com/")
        tabs.navigate(2, "https://b.com/", activate=False)

        subject = tabs.active_subject()
        assert subject is not None
        assert (subject.id, subject.url) == (1, "https://a.com/")

        tabs.activate(2)
        assert tabs.active_subject().url == "https://b.com/"  # type: ignore[union-attr]

    def test_unfocused_has_no_subject(self) -> None:
        tabs = TabRegistry()
        tabs.navigate(1, "https://a.com/")
        tabs.focused = False
        assert tabs.active_subject() is None

    def test_close_active(self) -> None:
        tabs = TabRegistry()
        tabs.navigate(1, "https://a.com/")
        tabs.close(1)
        assert tabs.active_subject() is None
        assert tabs.get_url(1) is None

    def test_activate_unknown(self) -> None:
        with pytest.raises(NavigationError):
            TabRegistry().activate(9)

    def test_redirect(self) -> None:
        tabs = TabRegistry()
        tabs.navigate(1, "https://a.com/")
        assert safe_redirect(tabs, 1, "https://b.com/")
        assert tabs.get_url(1) == "https://b.com/"
        assert tabs.redirects == [(1, "https://b.com/")]

    def test_safe_redirect_closed_tab(self) -> None:
        tabs = TabRegistry()
        assert not safe_redirect(tabs, 4, "https://b.com/")
        assert tabs.redirects == []


class TestBadges:
    """Tests for badge formatting and indicator error handling."""

    def test_format_badge_time(self) -> None:
        assert format_badge_time(0) == ""
        assert format_badge_time(45) == "45s"
        assert format_badge_time(60) == "1m"
        assert format_badge_time(61) == "2m"
        assert format_badge_time(900) == "15m"

    def test_badge_for_remaining(self) -> None:
        assert badge_for_remaining(61).state is IconState.TIMER
        assert badge_for_remaining(60).state is IconState.URGENT

    def test_colors(self) -> None:
        assert BLOCKED_BADGE.color == "#EA4335"

    def test_logging_indicator_remembers(self) -> None:
        indicator = LoggingIndicator()
        update_badge(indicator, BLOCKED_BADGE)
        assert indicator.current == BLOCKED_BADGE

    def test_indicator_failure_swallowed(self) -> None:
        class Broken(Indicator):
            def show(self, badge: BadgeState) -> None:
                raise RuntimeError("no display")

        update_badge(Broken(), BLOCKED_BADGE)
        update_badge(None, BLOCKED_BADGE)
