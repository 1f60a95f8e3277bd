"""Tests for the bart command line."""

from unittest.mock import MagicMock, patch

import pytest

from bartloop.cli import main
from bartloop.lib.history import load_history
from bartloop.lib.tasks import get_task, load_tasks


@pytest.fixture
def cli_project(project, write_tasks, make_task, monkeypatch):
    """A project with one plan, run from its root with an empty home."""
    home = project / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(project)
    path = write_tasks(
        [
            make_task("A1", title="Create schema", status="completed"),
            make_task("A2", title="Add login", depends_on=["A1"]),
            make_task("B1", "B", title="Deploy", status="error", error="Agent exited with code 1"),
        ],
        requirements=[
            {"id": "R1", "description": "Users can log in", "covered_by": ["A1", "A2"]},
            {"id": "R2", "description": "Data model", "covered_by": ["A1"]},
        ],
    )
    return path


@pytest.fixture
def quiet():
    """No desktop notifications and no real agent."""
    with patch("bartloop.notifications.send_desktop"), \
            patch("bartloop.runner.controller.launch_agent") as launch:
        proc = MagicMock()
        proc.wait.return_value = 0
        launch.return_value = proc
        yield launch


class TestStatus:

    def test_shows_workstreams(self, cli_project, capsys):
        assert main(["status"]) == 0
        out = capsys.readouterr().out
        assert "Workstream A:" in out
        assert "50% (1/2)" in out
        assert "Next: A2: Add login" in out
        assert "B1: Deploy" in out

    def test_unknown_workstream(self, cli_project, capsys):
        assert main(["status", "-w", "Z"]) == 2
        assert "ERROR" in capsys.readouterr().out

    def test_unknown_plan(self, cli_project, capsys):
        with pytest.raises(SystemExit) as exc:
            main(["--plan", "demp", "status"])
        assert exc.value.code == 2
        assert "did you mean 'demo'" in capsys.readouterr().out


class TestPlans:

    def test_lists_plan(self, cli_project, capsys):
        assert main(["plans"]) == 0
        out = capsys.readouterr().out
        assert "demo  (active)" in out
        assert "1/3 done" in out


class TestReset:

    def test_reset_one(self, cli_project, capsys):
        assert main(["reset", "B1"]) == 0
        assert get_task(load_tasks(cli_project), "B1").status == "pending"
        assert "reset #1" in capsys.readouterr().out

    def test_reset_errors(self, cli_project):
        assert main(["reset", "--errors"]) == 0
        assert get_task(load_tasks(cli_project), "B1").status == "pending"
        assert [e.task_id for e in load_history(cli_project.parents[2])] == ["B1"]

    def test_reset_unknown(self, cli_project, capsys):
        assert main(["reset", "B2"]) == 2
        assert "ERROR" in capsys.readouterr().out

    def test_reset_needs_target(self, cli_project):
        assert main(["reset"]) == 2


class TestRequirements:

    def test_report(self, cli_project, capsys):
        assert main(["requirements"]) == 0
        out = capsys.readouterr().out
        assert "1 complete, 1 partial, 0 not started" in out
        assert "A2 (pending)" in out

    def test_gaps_only(self, cli_project, capsys):
        assert main(["requirements", "--gaps"]) == 0
        out = capsys.readouterr().out
        assert "R1" in out
        assert "R2" not in out


class TestSpecialists:

    def test_none_found(self, cli_project, capsys):
        assert main(["specialists"]) == 0
        assert "No specialists found" in capsys.readouterr().out

    def test_lists_project_profiles(self, cli_project, project, capsys):
        agents = project / ".claude" / "agents"
        agents.mkdir(parents=True)
        (agents / "ui.md").write_text("---\nname: ui\ndescription: Frontend work\n---\n")
        assert main(["specialists"]) == 0
        assert "[A] ui" in capsys.readouterr().out

    def test_history_empty(self, cli_project, capsys):
        assert main(["specialists", "--history"]) == 0
        assert "No execution history" in capsys.readouterr().out

    def test_suggest_unknown_task(self, cli_project, capsys):
        assert main(["specialists", "--suggest", "Z9"]) == 2


class TestRun:

    def test_single_task(self, cli_project, quiet):
        assert main(["run", "A2", "--agent", "claude"]) == 0
        assert get_task(load_tasks(cli_project), "A2").status == "completed"

    def test_single_task_failure_returns_exit_code(self, cli_project, quiet):
        quiet.return_value.wait.return_value = 4
        assert main(["run", "A2", "--agent", "claude"]) == 4
        assert get_task(load_tasks(cli_project), "A2").status == "error"

    def test_single_task_rate_limited(self, cli_project, quiet, capsys):
        quiet.return_value.wait.return_value = 175
        assert main(["run", "A2", "--agent", "claude"]) == 175
        assert get_task(load_tasks(cli_project), "A2").status == "pending"
        assert "Rate limited" in capsys.readouterr().out

    def test_single_task_not_pending(self, cli_project, quiet, capsys):
        assert main(["run", "A1", "--agent", "claude"]) == 2
        assert "bart reset A1" in capsys.readouterr().out

    def test_unknown_agent(self, cli_project, quiet, capsys):
        assert main(["run", "--agent", "gpt"]) == 2
        assert "Unknown agent" in capsys.readouterr().out

    def test_run_all(self, cli_project, quiet):
        assert main(["run", "--agent", "claude"]) == 0
        assert get_task(load_tasks(cli_project), "A2").status == "completed"
        assert get_task(load_tasks(cli_project), "B1").status == "error"

    def test_dry_run(self, cli_project, quiet, capsys):
        assert main(["run", "--dry-run", "--agent", "claude"]) == 0
        quiet.assert_not_called()
        assert "Task: Add login" in capsys.readouterr().out


class TestStopAndConfig:

    def test_stop(self, cli_project, project, capsys):
        assert main(["stop"]) == 0
        assert (project / ".bart" / ".stop").exists()

    @patch("bartloop.commands.config.check_binary_available", return_value=True)
    def test_config_set_agent(self, mock_check, cli_project, project, capsys):
        assert main(["config", "--agent", "opencode", "--no-auto-continue"]) == 0
        content = (project / ".bart" / "project.env").read_text()
        assert 'AGENT="opencode"' in content
        assert 'AUTO_CONTINUE="false"' in content
        assert "agent:          opencode" in capsys.readouterr().out

    def test_config_unknown_agent(self, cli_project):
        assert main(["config", "--agent", "gpt"]) == 2
