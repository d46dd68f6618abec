"""Tests for the click command-line interface."""

import json
from datetime import date
from pathlib import Path

import pytest
from click.testing import CliRunner, Result

from blankslate.cli import main
from blankslate.storage import BudgetLedger, StateStore


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "state.db"


def invoke(db_path: Path, *args: str, stdin: str | None = None) -> Result:
    runner = CliRunner()
    return runner.invoke(main, ["--db", str(db_path), "--sink", "memory", *args], input=stdin)


def setup_news(db_path: Path) -> None:
    assert invoke(db_path, "groups", "add", "News").exit_code == 0
    assert invoke(db_path, "sites", "add", "News", "https://www.cnn.com/").exit_code == 0


class TestGroupCommands:
    """Tests for groups/sites/blocks editing."""

    def test_add_and_list(self, db_path: Path) -> None:
        setup_news(db_path)

        result = invoke(db_path, "groups", "list")

        assert result.exit_code == 0
        assert "News" in result.output
        assert "cnn.com" in result.output
        assert "always blocked" in result.output

    def test_list_empty(self, db_path: Path) -> None:
        result = invoke(db_path, "groups", "list")
        assert result.exit_code == 0
        assert "No groups configured" in result.output

    def test_invalid_site(self, db_path: Path) -> None:
        invoke(db_path, "groups", "add", "News")
        result = invoke(db_path, "sites", "add", "News", "localhost")
        assert result.exit_code == 1
        assert "valid domain" in result.output

    def test_unknown_group(self, db_path: Path) -> None:
        result = invoke(db_path, "sites", "add", "Nope", "cnn.com")
        assert result.exit_code == 1
        assert "No group named" in result.output

    def test_blocks_add_and_remove(self, db_path: Path) -> None:
        invoke(db_path, "groups", "add", "Social")
        result = invoke(
            db_path, "blocks", "add", "Social", "--days", "mon,tue", "--start", "12:00",
            "--end", "13:00", "--minutes", "20",
        )
        assert result.exit_code == 0
        assert "12:00-13:00" in result.output

        with StateStore(db_path) as store:
            block_id = store.get_groups()[0].allowed_time_blocks[0].id

        result = invoke(db_path, "blocks", "remove", "Social", block_id[:8])
        assert result.exit_code == 0
        with StateStore(db_path) as store:
            assert store.get_groups()[0].allowed_time_blocks == []

    def test_bad_block(self, db_path: Path) -> None:
        invoke(db_path, "groups", "add", "Social")
        result = invoke(db_path, "blocks", "add", "Social", "--days", "someday")
        assert result.exit_code == 1
        assert "Unknown day" in result.output

    def test_rename_and_remove(self, db_path: Path) -> None:
        invoke(db_path, "groups", "add", "News")
        assert invoke(db_path, "groups", "rename", "News", "Headlines").exit_code == 0
        assert invoke(db_path, "groups", "remove", "Headlines").exit_code == 0
        with StateStore(db_path) as store:
            assert store.get_groups() == []

    def test_import(self, db_path: Path, tmp_path: Path) -> None:
        config = tmp_path / "blankslate.toml"
        config.write_text('[[groups]]\nname = "Video"\nsites = ["youtube.com"]\n')

        runner = CliRunner()
        args = ["--config", str(config), "--db", str(db_path), "groups", "import"]
        first = runner.invoke(main, args)
        second = runner.invoke(main, args)

        assert first.exit_code == 0
        assert second.exit_code == 0
        assert "Imported 'Video'" in first.output
        with StateStore(db_path) as store:
            assert [g.name for g in store.get_groups()] == ["Video"]


class TestPolicyCommands:
    """Tests for check/rules/pause/resume/usage."""

    def test_check(self, db_path: Path) -> None:
        setup_news(db_path)

        blocked = invoke(db_path, "check", "https://edition.cnn.com/")
        unmatched = invoke(db_path, "check", "https://example.com/")

        assert blocked.exit_code == 0
        assert "always-blocked" in blocked.output
        assert "matches no group" in unmatched.output

    def test_rules(self, db_path: Path) -> None:
        setup_news(db_path)

        result = invoke(db_path, "rules", "--show")

        assert result.exit_code == 0
        assert "1 added" in result.output

    def test_pause_and_resume(self, db_path: Path) -> None:
        setup_news(db_path)

        paused = invoke(db_path, "pause", "News", "--minutes", "10")
        assert paused.exit_code == 0
        assert "paused for 10 minutes" in paused.output
        with StateStore(db_path) as store:
            group_id = store.get_groups()[0].id
            assert store.get_pause(group_id) is not None

        resumed = invoke(db_path, "resume", "News")
        assert resumed.exit_code == 0
        with StateStore(db_path) as store:
            assert store.get_pause(group_id) is None

    def test_pause_limit(self, db_path: Path) -> None:
        setup_news(db_path)
        for _ in range(3):
            assert invoke(db_path, "pause", "News").exit_code == 0

        result = invoke(db_path, "pause", "News")
        assert result.exit_code == 1
        assert "limit" in result.output

    def test_usage(self, db_path: Path) -> None:
        invoke(db_path, "groups", "add", "Social")
        invoke(db_path, "blocks", "add", "Social", "--days", "mon", "--minutes", "15")
        with StateStore(db_path) as store:
            group = store.get_groups()[0]
            BudgetLedger(store).set_used(
                group.id, date(2024, 1, 1), group.allowed_time_blocks[0].id, 125
            )

        result = invoke(db_path, "usage", "--date", "2024-01-01")
        empty = invoke(db_path, "usage", "--date", "2024-01-02")

        assert result.exit_code == 0
        assert "Social" in result.output
        assert "2m 05s" in result.output
        assert "No usage recorded" in empty.output


class TestRunCommand:
    def test_events_and_messages(self, db_path: Path) -> None:
        setup_news(db_path)
        events = [
            {"event": "navigate", "tab": 1, "url": "https://cnn.com/"},
            {"event": "message", "payload": {"type": "get-tab-status", "url": "https://cnn.com/"}},
            "not json",
            {"event": "message", "payload": {"type": "get-tracking-state"}},
        ]
        stdin = "\n".join(e if isinstance(e, str) else json.dumps(e) for e in events) + "\n"

        result = invoke(db_path, "run", stdin=stdin)

        assert result.exit_code == 0
        assert '"reason": "always-blocked"' in result.output
        assert '{"state": null}' in result.output
        assert "Bad event" in result.output
        assert "blankslate stopped" in result.output

    def test_group_edits_through_daemon(self, db_path: Path) -> None:
        edits = [
            {"type": "edit-group", "action": "create-group", "name": "News"},
            {"type": "edit-group", "action": "add-site", "group": "News", "pattern": "cnn.com"},
            {"type": "get-tab-status", "url": "https://cnn.com/"},
            {"type": "edit-group", "action": "add-site", "group": "Sports", "pattern": "espn.com"},
        ]
        stdin = "\n".join(json.dumps({"event": "message", "payload": e}) for e in edits) + "\n"

        result = invoke(db_path, "run", stdin=stdin)

        assert result.exit_code == 0
        assert '"reason": "always-blocked"' in result.output
        assert "Group not found: Sports" in result.output
        with StateStore(db_path) as store:
            assert [s.pattern for s in store.get_groups()[0].sites] == ["cnn.com"]


class TestReadOnlyCommands:
    """Read-only commands keep working while another connection holds the database."""

    def test_reads_while_database_is_held(self, db_path: Path) -> None:
        setup_news(db_path)
        with StateStore(db_path) as store:
            BudgetLedger(store).set_used(store.get_groups()[0].id, date.today(), "b1", 90)

        writer = StateStore(db_path)
        writer.connect()
        try:
            listed = invoke(db_path, "groups", "list")
            checked = invoke(db_path, "check", "https://cnn.com/")
            used = invoke(db_path, "usage")
        finally:
            writer.close()

        assert listed.exit_code == 0
        assert "News" in listed.output
        assert checked.exit_code == 0
        assert "always-blocked" in checked.output
        assert used.exit_code == 0
        assert "News" in used.output
