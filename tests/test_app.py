"""Tests for command-line parsing and the console app wiring."""

from __future__ import annotations

import io

import pytest
from conftest import make_settings

from osintrix import db
from osintrix.app import OsintrixApp, format_outcome, parse_command
from osintrix.config import QuotaConfig
from osintrix.errors import ErrorKind
from osintrix.types import CommandOutcome, UserQuotaRecord


class TestParseCommand:
    @pytest.mark.parametrize(
        ("line", "expected"),
        [
            ("/menu", ("menu", "")),
            ("/MENU osint", ("menu", "osint")),
            ("/ceknik@osintrix_bot 1234567890123456", ("ceknik", "1234567890123456")),
            ("  /addlimit 42   10  ", ("addlimit", "42   10")),
            ("hello", None),
            ("/", None),
            ("/@bot", None),
            ("", None),
        ],
    )
    def test_parse(self, line, expected):
        assert parse_command(line) == expected

    def test_custom_prefix(self):
        assert parse_command("!limit", prefix="!") == ("limit", "")
        assert parse_command("/limit", prefix="!") is None


class TestFormatOutcome:
    def test_success_with_charge(self):
        outcome = CommandOutcome(True, "found", quota=UserQuotaRecord("1", 10))
        assert format_outcome(outcome, cost=10) == "found\nYour limit: 10 (-10)"

    def test_success_owner(self):
        outcome = CommandOutcome(True, "found", quota=UserQuotaRecord("1", 0, True))
        assert format_outcome(outcome, cost=10).endswith("Owner mode: limit not used")

    def test_free_command_has_no_limit_line(self):
        outcome = CommandOutcome(True, "menu", quota=UserQuotaRecord("1", 10))
        assert format_outcome(outcome) == "menu"

    def test_failure(self):
        outcome = CommandOutcome.failure(ErrorKind.DATA_NOT_FOUND, "nothing")
        assert format_outcome(outcome, cost=10) == "Error: nothing"


@pytest.fixture
async def app(tmp_path):
    settings = make_settings(
        quota=QuotaConfig(default_limit=20, owners=["9000"]),
        db_path=tmp_path / "osintrix.db",
    )
    app = OsintrixApp(settings)
    await app.start()
    yield app
    await app.stop()


class TestOsintrixApp:
    async def test_handle_line_before_start(self):
        with pytest.raises(RuntimeError):
            await OsintrixApp(make_settings()).handle_line("1", "/menu")

    async def test_builtin_commands_registered(self, app):
        assert {"menu", "limit", "addlimit", "ceknik"} <= set(app.registry.names())
        assert app.commands["ceknik"] == 10
        assert app.commands["menu"] == 0

    async def test_owners_synced_at_start(self, app):
        record = await db.get_user("9000")
        assert record is not None
        assert record.is_privileged

    async def test_non_command_ignored(self, app):
        assert await app.handle_line("1001", "hello there") is None

    async def test_limit_then_owner_grant(self, app):
        outcome = await app.handle_line("1001", "/limit")
        assert outcome.message == "Remaining limit: 20"

        denied = await app.handle_line("1001", "/addlimit 1001 5")
        assert denied.error_kind is ErrorKind.NOT_PRIVILEGED

        granted = await app.handle_line("9000", "/addlimit 1001 5")
        assert granted.ok
        assert (await db.get_user("1001")).remaining_quota == 25

    async def test_run_console_prints_each_reply(self, app):
        stdin = io.StringIO("/limit\nnot a command\n/nope\n")
        out = io.StringIO()
        await app.run_console("1001", stdin=stdin, out=out)
        await app.stop()
        text = out.getvalue()
        assert "Remaining limit: 20" in text
        assert "Error: Unknown command" in text
