"""Command-line interface for blankslate."""

import asyncio
import json
import logging
import sys
import time
from datetime import date, datetime
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from blankslate.config import Config, find_config_file, load_config, merge_cli_options
from blankslate.models import Blocked, Decision, Group, Paused
from blankslate.policies import (
    GroupError,
    GroupManager,
    find_matching_groups,
)
from blankslate.runtime import TabRegistry
from blankslate.service import PolicyService
from blankslate.storage import BudgetLedger, StateStore
from blankslate.tracking import ConsoleIndicator, format_badge_time

console = Console()

DECISION_STYLES = {
    "always-blocked": "red",
    "outside-schedule": "red",
    "budget-exhausted": "red",
    "paused": "dim",
    "allowed": "green",
}


def _require_group(manager: GroupManager, name_or_id: str) -> Group:
    group = manager.find(name_or_id)
    if group is None:
        console.print(f"[red]Error: No group named '{name_or_id}'[/red]")
        sys.exit(1)
    return group


def _describe(decision: Decision) -> str:
    if isinstance(decision, Blocked):
        text = f"blocked ({decision.reason.value})"
        if decision.allowed_minutes is not None:
            text += f", {decision.allowed_minutes} min used"
        return text
    if isinstance(decision, Paused):
        until = datetime.fromtimestamp(decision.paused_until / 1000)
        return f"paused until {until.strftime('%H:%M')}"
    remaining = format_badge_time(decision.remaining_seconds) or "0s"
    return f"allowed, {remaining} left"


def _style(decision: Decision) -> str:
    reason = decision.to_dict()["reason"]
    return DECISION_STYLES.get(reason, "white")


def _service(cfg: Config, store: StateStore, **kwargs: Any) -> PolicyService:
    return PolicyService.from_config(cfg, store, TabRegistry(), **kwargs)


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to config file (default: searches standard locations)",
)
@click.option(
    "--db",
    type=click.Path(path_type=Path),
    default=None,
    help="Path to the DuckDB state database",
)
@click.option(
    "--sink",
    type=click.Choice(["memory", "file", "webhook"]),
    default=None,
    help="Enforcement sink for compiled rules",
)
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
@click.pass_context
def main(
    ctx: click.Context,
    config: Path | None,
    db: Path | None,
    sink: str | None,
    verbose: bool,
) -> None:
    """blankslate - Site blocking with schedules and daily time budgets."""
    ctx.ensure_object(dict)

    cfg = load_config(config)
    merge_cli_options(cfg, db=db, sink=sink)
    ctx.obj["config"] = cfg

    log_level = logging.DEBUG if verbose else getattr(logging, cfg.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Ensure parent directory exists
    if cfg.db_path != Path(":memory:"):
        cfg.db_path.parent.mkdir(parents=True, exist_ok=True)
    ctx.obj["db_path"] = cfg.db_path

    config_path = config or find_config_file()
    if config_path:
        ctx.obj["config_path"] = config_path


# Groups


@main.group()
def groups() -> None:
    """Manage site groups."""


@groups.command("list")
@click.pass_context
def groups_list(ctx: click.Context) -> None:
    """List groups with their sites and time blocks."""
    with StateStore(ctx.obj["db_path"], read_only=True) as store:
        group_list = store.get_groups()

    if not group_list:
        console.print("[yellow]No groups configured[/yellow]")
        return

    table = Table(title="Groups")
    table.add_column("Name")
    table.add_column("Sites")
    table.add_column("Time blocks")
    table.add_column("ID", style="dim")

    for group in group_list:
        sites = "\n".join(s.pattern for s in group.sites) or "-"
        if group.allowed_time_blocks:
            blocks = "\n".join(
                f"{','.join(b.days)} {b.start_time}-{b.end_time} ({b.allowed_minutes}m)"
                for b in group.allowed_time_blocks
            )
        else:
            blocks = "[red]always blocked[/red]"
        table.add_row(group.name, sites, blocks, group.id[:8])

    console.print(table)


@groups.command("add")
@click.argument("name")
@click.pass_context
def groups_add(ctx: click.Context, name: str) -> None:
    """Create an empty group."""
    with StateStore(ctx.obj["db_path"]) as store:
        group = GroupManager(store).create_group(name)
    console.print(f"[green]Created group '{group.name}'[/green] [dim]({group.id})[/dim]")


@groups.command("rename")
@click.argument("group")
@click.argument("new_name")
@click.pass_context
def groups_rename(ctx: click.Context, group: str, new_name: str) -> None:
    """Rename a group."""
    with StateStore(ctx.obj["db_path"]) as store:
        manager = GroupManager(store)
        found = _require_group(manager, group)
        manager.rename_group(found.id, new_name)
    console.print(f"[green]Renamed '{found.name}' to '{new_name}'[/green]")


@groups.command("remove")
@click.argument("group")
@click.pass_context
def groups_remove(ctx: click.Context, group: str) -> None:
    """Delete a group."""
    with StateStore(ctx.obj["db_path"]) as store:
        manager = GroupManager(store)
        found = _require_group(manager, group)
        manager.delete_group(found.id)
    console.print(f"[green]Removed group '{found.name}'[/green]")


@groups.command("import")
@click.pass_context
def groups_import(ctx: click.Context) -> None:
    """Write the [[groups]] from the config file into the database."""
    cfg: Config = ctx.obj["config"]
    if not cfg.groups:
        console.print("[yellow]No groups in config file[/yellow]")
        return

    with StateStore(ctx.obj["db_path"]) as store:
        manager = GroupManager(store)
        for group in cfg.groups:
            manager.replace_group(group)
            console.print(
                f"[green]Imported '{group.name}'[/green] "
                f"({len(group.sites)} sites, {len(group.allowed_time_blocks)} time blocks)"
            )


# Sites


@main.group()
def sites() -> None:
    """Manage site patterns within a group."""


@sites.command("add")
@click.argument("group")
@click.argument("pattern")
@click.pass_context
def sites_add(ctx: click.Context, group: str, pattern: str) -> None:
    """Add a site pattern (e.g. reddit.com or reddit.com/r/funny)."""
    with StateStore(ctx.obj["db_path"]) as store:
        manager = GroupManager(store)
        found = _require_group(manager, group)
        try:
            site = manager.add_site(found.id, pattern)
        except GroupError as e:
            console.print(f"[red]Error: {e}[/red]")
            sys.exit(1)
    console.print(f"[green]Added {site.pattern} to '{found.name}'[/green]")


@sites.command("remove")
@click.argument("group")
@click.argument("pattern")
@click.pass_context
def sites_remove(ctx: click.Context, group: str, pattern: str) -> None:
    """Remove a site pattern from a group."""
    with StateStore(ctx.obj["db_path"]) as store:
        manager = GroupManager(store)
        found = _require_group(manager, group)
        manager.remove_site(found.id, pattern)
    console.print(f"[green]Removed {pattern} from '{found.name}'[/green]")


# Time blocks


@main.group()
def blocks() -> None:
    """Manage allowed time blocks within a group."""


@blocks.command("add")
@click.argument("group")
@click.option("--days", required=True, help="Comma-separated days, e.g. mon,tue,wed")
@click.option("--start", default="09:00", help="Start time HH:MM")
@click.option("--end", default="17:00", help="End time HH:MM (inclusive)")
@click.option("--all-day", is_flag=True, help="Whole day (00:00-23:59)")
@click.option("--minutes", type=int, default=15, help="Allowed minutes per day")
@click.pass_context
def blocks_add(
    ctx: click.Context,
    group: str,
    days: str,
    start: str,
    end: str,
    all_day: bool,
    minutes: int,
) -> None:
    """Allow limited access to a group during a weekly window."""
    day_list = [d.strip() for d in days.split(",") if d.strip()]
    with StateStore(ctx.obj["db_path"]) as store:
        manager = GroupManager(store)
        found = _require_group(manager, group)
        try:
            block = manager.add_time_block(
                found.id,
                days=day_list,
                start_time=start,
                end_time=end,
                all_day=all_day,
                allowed_minutes=minutes,
            )
        except GroupError as e:
            console.print(f"[red]Error: {e}[/red]")
            sys.exit(1)
    console.print(
        f"[green]Added {','.join(block.days)} {block.start_time}-{block.end_time} "
        f"({block.allowed_minutes}m) to '{found.name}'[/green] [dim]({block.id})[/dim]"
    )


@blocks.command("remove")
@click.argument("group")
@click.argument("block_id")
@click.pass_context
def blocks_remove(ctx: click.Context, group: str, block_id: str) -> None:
    """Remove a time block (ID prefix accepted)."""
    with StateStore(ctx.obj["db_path"]) as store:
        manager = GroupManager(store)
        found = _require_group(manager, group)
        matches = [b for b in found.allowed_time_blocks if b.id.startswith(block_id)]
        if len(matches) != 1:
            console.print(f"[red]Error: '{block_id}' matches {len(matches)} time blocks[/red]")
            sys.exit(1)
        manager.remove_time_block(found.id, matches[0].id)
    console.print(f"[green]Removed time block from '{found.name}'[/green]")


# Decisions and rules


@main.command()
@click.argument("url")
@click.pass_context
def check(ctx: click.Context, url: str) -> None:
    """Show how each matching group decides on a URL right now."""
    cfg: Config = ctx.obj["config"]

    with StateStore(ctx.obj["db_path"], read_only=True) as store:
        service = _service(cfg, store)
        now = datetime.now()
        matching = find_matching_groups(url, store.get_groups())
        try:
            if not matching:
                console.print(f"[green]{url} matches no group[/green]")
                return

            table = Table(title=url)
            table.add_column("Group")
            table.add_column("Decision")
            for group in matching:
                decision = service.engine.decide(group, now)
                style = _style(decision)
                table.add_row(group.name, f"[{style}]{_describe(decision)}[/{style}]")
            console.print(table)

            result = service.engine.decide_most_restrictive(matching, now)
            if result is not None:
                group, decision = result
                console.print(
                    f"Governing group: [bold]{group.name}[/bold] - {_describe(decision)}"
                )
        finally:
            service.close()


@main.command()
@click.option("--show", is_flag=True, help="Print the installed rules")
@click.pass_context
def rules(ctx: click.Context, show: bool) -> None:
    """Rebuild the enforcement rules from the current policy."""
    cfg: Config = ctx.obj["config"]

    with StateStore(ctx.obj["db_path"]) as store:
        service = _service(cfg, store)
        try:
            result = service.rebuild_rules()
            if result is None:
                console.print("[red]Rule rebuild failed (see log)[/red]")
                sys.exit(1)

            console.print(
                f"[green]Rules rebuilt: {result.added_count} added, "
                f"{result.removed_count} removed[/green] [dim]({cfg.sink} sink)[/dim]"
            )

            if show:
                table = Table(title="Installed rules")
                table.add_column("ID", justify="right")
                table.add_column("URL regex")
                table.add_column("Redirect", style="dim")
                for rule in service.compiler.sink.get_rules():
                    table.add_row(str(rule.id), rule.url_regex, rule.redirect_template[:60])
                console.print(table)
        finally:
            service.close()


@main.command()
@click.argument("group")
@click.option("--minutes", type=int, default=5, help="Pause length in minutes")
@click.pass_context
def pause(ctx: click.Context, group: str, minutes: int) -> None:
    """Temporarily lift blocking for a group."""
    cfg: Config = ctx.obj["config"]
    paused_until = int(time.time() * 1000) + minutes * 60 * 1000

    with StateStore(ctx.obj["db_path"]) as store:
        found = _require_group(GroupManager(store), group)
        service = _service(cfg, store)

        async def run() -> dict[str, Any]:
            try:
                return await service.activate_pause(found.id, paused_until)
            finally:
                await service.shutdown()

        response = asyncio.run(run())

    if not response.get("ok"):
        console.print(f"[red]Error: {response.get('error')}[/red]")
        sys.exit(1)
    console.print(f"[green]'{found.name}' paused for {minutes} minutes[/green]")


@main.command()
@click.argument("group")
@click.pass_context
def resume(ctx: click.Context, group: str) -> None:
    """End a pause early."""
    cfg: Config = ctx.obj["config"]

    with StateStore(ctx.obj["db_path"]) as store:
        found = _require_group(GroupManager(store), group)
        service = _service(cfg, store)

        async def run() -> None:
            try:
                await service.end_pause(found.id)
            finally:
                await service.shutdown()

        asyncio.run(run())

    console.print(f"[green]Pause for '{found.name}' ended[/green]")


@main.command()
@click.option(
    "--date",
    "day",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Day to report (default: today)",
)
@click.pass_context
def usage(ctx: click.Context, day: datetime | None) -> None:
    """Show time used per group and time block."""
    report_day: date = day.date() if day else date.today()

    with StateStore(ctx.obj["db_path"], read_only=True) as store:
        entries = BudgetLedger(store).usage_for_date(report_day)
        group_map = {g.id: g for g in store.get_groups()}

    if not entries:
        console.print(f"[yellow]No usage recorded for {report_day.isoformat()}[/yellow]")
        return

    table = Table(title=f"Usage on {report_day.isoformat()}")
    table.add_column("Group")
    table.add_column("Time block")
    table.add_column("Used", justify="right")
    table.add_column("Allowed", justify="right")

    for (group_id, block_id), used in sorted(entries.items()):
        group = group_map.get(group_id)
        block = None
        if group:
            block = next((b for b in group.allowed_time_blocks if b.id == block_id), None)
        window = f"{block.start_time}-{block.end_time}" if block else block_id[:8]
        allowed = f"{block.allowed_minutes}m" if block else "-"
        used_str = f"{used // 60}m {used % 60:02d}s"
        table.add_row(group.name if group else group_id[:8], window, used_str, allowed)

    console.print(table)


# Daemon


async def _apply_event(
    service: PolicyService,
    tabs: TabRegistry,
    event: dict[str, Any],
) -> dict[str, Any] | None:
    """Apply one navigation/focus/message event from the stream."""
    kind = event.get("event")

    if kind == "navigate":
        tabs.navigate(int(event["tab"]), event["url"], activate=event.get("activate", True))
        await service.on_navigation()
    elif kind == "activate":
        tabs.activate(int(event["tab"]))
        await service.on_navigation()
    elif kind == "close":
        tabs.close(int(event["tab"]))
        await service.on_navigation()
    elif kind == "focus":
        tabs.focused = True
        await service.on_focus_changed(True)
    elif kind == "blur":
        tabs.focused = False
        await service.on_focus_changed(False)
    elif kind == "message":
        return await service.handle_message(event.get("payload", {}))
    else:
        raise ValueError(f"unknown event '{kind}'")
    return None


@main.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Run the policy service, reading browser events from stdin.

    Events are JSON lines, for example:
        {"event": "navigate", "tab": 1, "url": "https://reddit.com/"}
        {"event": "activate", "tab": 2}
        {"event": "blur"}
        {"event": "message", "payload": {"type": "get-tracking-state"}}
        {"event": "message", "payload": {"type": "edit-group", "action": "add-site",
                                         "group": "News", "pattern": "x.com"}}

    Message responses are written to stdout as JSON lines. The daemon holds
    the database write lock, so group edits made while it runs go through
    edit-group messages; read-only commands still work from a snapshot.
    """
    cfg: Config = ctx.obj["config"]

    if "config_path" in ctx.obj:
        console.print(f"[dim]Config: {ctx.obj['config_path']}[/dim]")

    store = StateStore(ctx.obj["db_path"])
    store.connect()
    tabs = TabRegistry()
    service = PolicyService.from_config(cfg, store, tabs, indicator=ConsoleIndicator(console))

    async def main_loop() -> None:
        await service.initialize()
        console.print(f"[green]blankslate running ({cfg.sink} sink)[/green]")
        console.print("[dim]Reading events from stdin, Ctrl+D to stop[/dim]")

        loop = asyncio.get_running_loop()
        try:
            while True:
                line = await loop.run_in_executor(None, sys.stdin.readline)
                if not line:
                    break
                line = line.strip()
                if not line:
                    continue
                try:
                    response = await _apply_event(service, tabs, json.loads(line))
                except (ValueError, KeyError, TypeError) as e:
                    console.print(f"[yellow]Bad event: {e}[/yellow]")
                    continue
                if response is not None:
                    click.echo(json.dumps(response))
        finally:
            await service.shutdown()

    try:
        asyncio.run(main_loop())
    except KeyboardInterrupt:
        pass
    finally:
        store.close()
        console.print("[green]blankslate stopped[/green]")


if __name__ == "__main__":
    main()
