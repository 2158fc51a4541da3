"""Tests for the healthcheck-sync command line."""

import json

import pytest
import toml
from typer.testing import CliRunner

from healthcheck_sync.cli import app
from healthcheck_sync.core import actions
from healthcheck_sync.core.ratings import set_comment, set_rating

runner = CliRunner()


@pytest.fixture
def home(tmp_path, monkeypatch):
    """Point the user config directory at a temp HOME."""
    monkeypatch.setenv("HOME", str(tmp_path))
    return tmp_path


@pytest.fixture
def document_file(tmp_path, document):
    set_rating(document, "alice", "speed", 2)
    set_rating(document, "bob", "speed", 3)
    set_rating(document, "alice", "fun", 5)
    set_comment(document, "bob", "speed", "Builds are slow")
    actions.add_action(document, "Cache dependencies", "speed")
    actions.add_action(document, "Team lunch")
    document.roti = {"alice": 4, "bob": 2}
    path = tmp_path / "session.json"
    path.write_text(json.dumps(document.to_dict()))
    return path


class TestReport:
    def test_report_summarises_session(self, document_file):
        result = runner.invoke(app, ["report", str(document_file)])
        assert result.exit_code == 0, result.output
        assert "Sprint 42" in result.output
        assert "Finished: 0 / 3" in result.output
        assert "2.5" in result.output
        assert "Cache dependencies" in result.output
        assert "(results hidden)" in result.output

    def test_revealed_roti_shows_average(self, tmp_path, document):
        document.roti = {"alice": 4, "bob": 2}
        document.settings.reveal_roti = True
        path = tmp_path / "s.json"
        path.write_text(json.dumps(document.to_dict()))

        result = runner.invoke(app, ["report", str(path)])
        assert result.exit_code == 0, result.output
        assert "average 3.0 / 5" in result.output

    def test_anonymous_comments(self, document_file):
        result = runner.invoke(app, ["report", str(document_file), "--comments", "--anonymous"])
        assert result.exit_code == 0, result.output
        assert "Participant 3" in result.output
        assert "Builds are slow" in result.output
        assert "Bob:" not in result.output

    def test_participants_listed_with_initials(self, tmp_path, document):
        for dim in ("speed", "fun", "value"):
            set_rating(document, "bob", dim, 4)
        path = tmp_path / "s.json"
        path.write_text(json.dumps(document.to_dict()))

        result = runner.invoke(app, ["report", str(path)])
        assert result.exit_code == 0, result.output
        rows = [line for line in result.output.splitlines() if "Bob" in line]
        assert len(rows) == 1
        assert "BO" in rows[0]
        assert "✓" in rows[0]

    def test_anonymous_participants_hide_names(self, document_file):
        result = runner.invoke(app, ["report", str(document_file), "--anonymous"])
        assert result.exit_code == 0, result.output
        assert "Participant 1" in result.output
        assert "PA" in result.output
        assert "Fiona" not in result.output

    def test_team_file_selects_session(self, tmp_path, document):
        other = document.clone()
        other.id = "hc-0"
        other.name = "Older retro"
        path = tmp_path / "team.json"
        path.write_text(json.dumps({"teamId": "team-1", "healthChecks": [document.to_dict(), other.to_dict()]}))

        result = runner.invoke(app, ["report", str(path), "--session", "hc-0"])
        assert result.exit_code == 0, result.output
        assert "Older retro" in result.output

    def test_invalid_document_exits_1(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{}")
        result = runner.invoke(app, ["report", str(path)])
        assert result.exit_code == 1
        assert "Error" in result.output


class TestPhases:
    def test_lists_every_policy(self):
        result = runner.invoke(app, ["phases"])
        assert result.exit_code == 0, result.output
        for name in ("free", "forward_only", "adjacent"):
            assert f"Policy: {name}" in result.output

    def test_single_policy(self):
        result = runner.invoke(app, ["phases", "--policy", "adjacent"])
        assert result.exit_code == 0, result.output
        assert "Policy: adjacent" in result.output
        assert "Policy: free" not in result.output


class TestConfigCommands:
    def test_show_defaults(self, home, tmp_path):
        result = runner.invoke(app, ["config", "show", "--project", str(tmp_path)])
        assert result.exit_code == 0, result.output
        assert "http://localhost:8080" in result.output
        assert "built-in default" in result.output

    def test_set_server(self, home):
        result = runner.invoke(app, ["config", "set-server", "https://hc.example.com"])
        assert result.exit_code == 0, result.output
        data = toml.load(home / ".healthcheck" / "config.toml")
        assert data["sync"]["server_url"] == "https://hc.example.com"

    def test_set_server_rejects_non_url(self, home):
        result = runner.invoke(app, ["config", "set-server", "localhost"])
        assert result.exit_code == 1
        assert not (home / ".healthcheck" / "config.toml").exists()
