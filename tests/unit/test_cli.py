import json
import logging

import pytest
from click.testing import CliRunner

from collabhub.cli import cli


@pytest.fixture
def runner(fresh_config_manager, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield CliRunner()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_agents_json(runner):
    result = runner.invoke(cli, ["agents", "--json"])
    assert result.exit_code == 0, result.output
    names = [agent["name"] for agent in json.loads(result.output)]
    assert names[0] == "infrastructure"
    assert len(names) == 7


def test_agents_text(runner):
    result = runner.invoke(cli, ["agents"])
    assert result.exit_code == 0
    assert "• security" in result.output


def test_check_succeeds_with_default_roster(runner):
    result = runner.invoke(cli, ["check"])
    assert result.exit_code == 0, result.output
    assert "✓ collaboration" in result.output
    assert "ready with 7 agents" in result.output


def test_check_reports_failed_stage(runner, monkeypatch):
    monkeypatch.setenv("COLLABHUB_BOOTSTRAP_AGENTS", "false")
    result = runner.invoke(cli, ["check", "--json"])
    assert result.exit_code == 1


def test_config_show(runner):
    result = runner.invoke(cli, ["config", "show", "--format", "json"])
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["collaboration"]["activation_policy"] == "explicit"


def test_config_show_reads_project_config(runner, tmp_path):
    project = tmp_path / "proj"
    (project / ".collabhub").mkdir(parents=True)
    (project / ".collabhub" / "config.yaml").write_text("collaboration:\n  activation_policy: auto_accept\n")

    result = runner.invoke(cli, ["--project-dir", str(project), "config", "show"])
    assert result.exit_code == 0
    assert "activation_policy: auto_accept" in result.output


def test_config_init_and_validate(runner, tmp_path):
    target = tmp_path / "out" / "config.yaml"
    result = runner.invoke(cli, ["config", "init", str(target)])
    assert result.exit_code == 0
    assert target.exists()

    result = runner.invoke(cli, ["config", "init", str(target)])
    assert result.exit_code == 1

    result = runner.invoke(cli, ["config", "init", "--force", str(target)])
    assert result.exit_code == 0

    result = runner.invoke(cli, ["config", "validate"])
    assert result.exit_code == 0
    assert "Configuration is valid" in result.output


def test_invalid_configuration_exits(runner, monkeypatch):
    monkeypatch.setenv("COLLABHUB_ACTIVATION_POLICY", "sometimes")
    result = runner.invoke(cli, ["agents"])
    assert result.exit_code == 1
