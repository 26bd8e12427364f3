"""Tests for the CLI module.

Covers:
- Help and version output
- Database management commands
- Configuration checking
- Statistics and scheduled message listing
"""

from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from threadtracker import __version__
from threadtracker.cli import cli
from threadtracker.config import Config
from threadtracker.database import get_engine
from threadtracker.migrations import migrate
from threadtracker.models import ScheduledMessage
from threadtracker.store import Store

from fakes import at


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """A config file pointing at a temp data directory."""
    path = tmp_path / "config.yaml"
    with open(path, "w") as f:
        yaml.dump({"data_dir": str(tmp_path / "data"), "log_json": False}, f)
    return path


@pytest.fixture
def cli_store(config_file: Path):
    """Store over the database the CLI will open."""
    engine = get_engine(Config.load(config_file))
    migrate(engine)
    yield Store(engine)
    engine.dispose()


class TestCliHelp:
    """Tests for help and basic command availability."""

    def test_cli_help(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "Thread Tracker" in result.output
        for command in ["bot", "serve", "api", "db", "config", "stats", "schedule"]:
            assert command in result.output

    def test_version(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(cli, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output


class TestDatabaseCommands:
    """Tests for db status and migrate."""

    def test_status_then_migrate(self, cli_runner: CliRunner, config_file: Path) -> None:
        result = cli_runner.invoke(cli, ["-c", str(config_file), "db", "status"])
        assert result.exit_code == 0
        assert "Current version: 0" in result.output
        assert "Pending migrations: 1" in result.output

        result = cli_runner.invoke(cli, ["-c", str(config_file), "db", "migrate"])
        assert result.exit_code == 0
        assert "Migrated from version 0 to 1" in result.output

        result = cli_runner.invoke(cli, ["-c", str(config_file), "db", "migrate"])
        assert "Database already at version 1" in result.output


class TestConfigCheck:
    """Tests for config check."""

    def test_valid(self, cli_runner: CliRunner, config_file: Path) -> None:
        result = cli_runner.invoke(cli, ["config", "check", "-c", str(config_file)])
        assert result.exit_code == 0
        assert "Configuration valid" in result.output
        assert "Watcher refresh: every 120s" in result.output

    def test_invalid(self, cli_runner: CliRunner, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("log_level: LOUD\n")
        result = cli_runner.invoke(cli, ["config", "check", "-c", str(path)])
        assert result.exit_code == 1
        assert "Configuration error" in result.output


class TestBotCommands:
    """Tests for commands that need a Discord token."""

    @pytest.mark.parametrize("command", ["bot", "serve"])
    def test_missing_token(self, cli_runner: CliRunner, config_file: Path, monkeypatch, command) -> None:
        monkeypatch.delenv("DISCORD_TOKEN", raising=False)
        result = cli_runner.invoke(cli, ["-c", str(config_file), command])
        assert result.exit_code == 1
        assert "DISCORD_TOKEN" in result.output


class TestDataCommands:
    """Tests for stats and schedule list."""

    def test_stats(self, cli_runner: CliRunner, config_file: Path, cli_store: Store) -> None:
        cli_store.add_thread("u1", "g1", "c1")
        result = cli_runner.invoke(cli, ["-c", str(config_file), "stats"])
        assert result.exit_code == 0
        assert "Users: 1" in result.output
        assert "Threads: 1 distinct, 1 tracked" in result.output

    def test_schedule_list(self, cli_runner: CliRunner, config_file: Path, cli_store: Store) -> None:
        message = cli_store.add_scheduled_message(
            ScheduledMessage(
                user_id="u1",
                channel_id="c1",
                due_at=at("2030-01-01T10:00:00"),
                local_datetime="2030-01-01T10:00",
                title="Reminder",
                body="Body",
                repeat="weekly",
            )
        )
        result = cli_runner.invoke(cli, ["-c", str(config_file), "schedule", "list", "u1"])
        assert result.exit_code == 0
        assert message.id in result.output
        assert "2030-01-01 10:00 UTC" in result.output
        assert "repeats weekly" in result.output

    def test_schedule_list_empty(self, cli_runner: CliRunner, config_file: Path) -> None:
        result = cli_runner.invoke(cli, ["-c", str(config_file), "schedule", "list", "nobody"])
        assert result.exit_code == 0
        assert "No scheduled messages" in result.output
