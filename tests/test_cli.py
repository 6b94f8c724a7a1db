"""
Tests for the command line interface.
"""

import json
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from learning_companion.cli import cli
from learning_companion.services import tutor_service

ENV = {"LC_PERSISTENCE__BACKEND": "memory", "LC_SESSION__BREAK_AFTER_MESSAGES": "30"}


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


class TestConfigCommands:
    """Test config show/save."""

    def test_show_json(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["config", "show", "--format", "json"], obj={}, env=ENV)

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["persistence"]["backend"] == "memory"
        assert data["session"]["break_after_messages"] == 30
        assert data["provider"]["api_key"] == ""

    def test_show_section(self, runner: CliRunner) -> None:
        result = runner.invoke(
            cli, ["config", "show", "--format", "json", "--section", "session"], obj={}, env=ENV
        )
        assert result.exit_code == 0
        assert list(json.loads(result.stdout)) == ["session"]

    def test_unknown_section(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["config", "show", "--section", "nope"], obj={}, env=ENV)
        assert result.exit_code != 0

    def test_save_and_reload(self, runner: CliRunner, temp_dir: Path) -> None:
        target = temp_dir / "companion.yaml"

        result = runner.invoke(cli, ["config", "save", str(target)], obj={}, env=ENV)
        assert result.exit_code == 0
        saved = yaml.safe_load(target.read_text())
        assert saved["session"]["break_after_messages"] == 30

        result = runner.invoke(
            cli, ["--config", str(target), "config", "show", "--format", "json"], obj={}
        )
        assert result.exit_code == 0
        assert json.loads(result.stdout)["persistence"]["backend"] == "memory"


class TestServiceCommands:
    """Test chat and usage against a fake provider."""

    def test_usage_json(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["usage", "--json"], obj={}, env=ENV)

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["today"]["tokens"] == 0
        assert data["limits"]["daily_tokens"] == 100_000

    def test_usage_table(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["usage"], obj={}, env=ENV)

        assert result.exit_code == 0
        assert "Learning Companion Usage" in result.stdout
        assert "Today" in result.stdout

    def test_chat(self, runner: CliRunner, provider, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(tutor_service, "create_provider", lambda config: provider)

        result = runner.invoke(
            cli,
            ["chat", "--user", "kid", "--module", "science"],
            obj={},
            env=ENV,
            input="Tell me about planets please\nquit\n",
        )

        assert result.exit_code == 0
        assert "Let's explore: Tell me about planets please" in result.stdout
        assert "+5 XP" in result.stdout
        assert "Session over: 5 XP in 1 messages" in result.stdout
        assert provider.closed is True
