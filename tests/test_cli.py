"""Tests for the command line interface."""

import pytest
from click.testing import CliRunner
from unittest.mock import AsyncMock, MagicMock, patch

from fireflybot.channels import ChannelError
from fireflybot.cli import cli
from fireflybot.ledger import LedgerConnectionError

CONFIG = """
matrix_homeserver_url = "https://matrix.example.org"
matrix_username = "bot"
matrix_password = "hunter2"
matrix_room_id = "!room:example.org"
firefly_url = "https://firefly.example.org"
firefly_api_key = "token"
firefly_source_account_id = 5
"""


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text(CONFIG)
    return str(path)


@pytest.fixture
def runner():
    return CliRunner()


def test_version(runner):
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "fireflybot" in result.output


def test_missing_config(runner, tmp_path):
    result = runner.invoke(cli, ["run", str(tmp_path / "missing.toml")])
    assert result.exit_code == 1
    assert "not found" in result.output


def test_run_requires_config_argument(runner):
    result = runner.invoke(cli, ["run"])
    assert result.exit_code != 0
    assert "PATH_TO_CONFIG" in result.output


class TestParse:
    def test_add_shows_payload(self, runner, config_path):
        result = runner.invoke(
            cli, ["parse", config_path, "!add Food: $4.20 snack #work", "--sender", "alice"],
        )
        assert result.exit_code == 0
        assert "api/v1/transactions" in result.output
        assert '"Food by alice"' in result.output
        assert '"source_id": 5' in result.output

    def test_parse_error_shows_reply(self, runner, config_path):
        result = runner.invoke(cli, ["parse", config_path, "!add nothing"])
        assert result.exit_code == 0
        assert "Invalid arguments." in result.output

    def test_other_command(self, runner, config_path):
        result = runner.invoke(cli, ["parse", config_path, "!ping"])
        assert "Ping" in result.output

    def test_not_a_command(self, runner, config_path):
        result = runner.invoke(cli, ["parse", config_path, "hello"])
        assert "not a command" in result.output


class TestCategories:
    def test_lists_names(self, runner, config_path):
        with patch(
            "fireflybot.ledger.FireflyClient.list_categories",
            new=AsyncMock(return_value=["Food", "Rent"]),
        ):
            result = runner.invoke(cli, ["categories", config_path])
        assert result.exit_code == 0
        assert "Food" in result.output
        assert "Rent" in result.output

    def test_ledger_failure_exits_nonzero(self, runner, config_path):
        with patch(
            "fireflybot.ledger.FireflyClient.list_categories",
            new=AsyncMock(side_effect=LedgerConnectionError("Failed to execute HTTP request: refused")),
        ):
            result = runner.invoke(cli, ["categories", config_path])
        assert result.exit_code == 1
        assert "refused" in result.output


def test_run_starts_bot(runner, config_path):
    with patch("fireflybot.main.run", new=AsyncMock(return_value=None)) as run_bot, \
            patch("fireflybot.main.setup_logging") as setup:
        result = runner.invoke(cli, ["run", config_path])
    assert result.exit_code == 0
    setup.assert_called_once_with("INFO")
    settings = run_bot.await_args.args[0]
    assert settings.firefly_source_account_id == 5


def test_run_login_failure_exits_nonzero(runner, config_path):
    channel = MagicMock()
    channel.start = AsyncMock(side_effect=ChannelError("Matrix login failed: M_FORBIDDEN"))
    channel.listen = AsyncMock()
    channel.stop = AsyncMock()

    with patch("fireflybot.main.MatrixChannel", return_value=channel), \
            patch("fireflybot.main.setup_logging"):
        result = runner.invoke(cli, ["run", config_path])

    assert result.exit_code == 1
    assert "Fatal error: ChannelError: Matrix login failed" in result.output
    channel.listen.assert_not_awaited()
    channel.stop.assert_awaited_once()
