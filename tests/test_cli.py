"""
Tests for the command line entry points.
"""

import tempfile
from pathlib import Path

import pytest

from loopforge import __main__ as entry
from loopforge.cli import history_cli, loop_agent, tasks_cli
from loopforge.task_registry import TaskRegistry


@pytest.fixture
def temp_project():
    """Create a temporary project directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        project_dir = Path(tmpdir)
        (project_dir / "TASKS.md").write_text("# Tasks\n\n- [ ] Login form\n- [ ] Sessions (Depends on: task-1)\n")
        yield project_dir


class TestTasksCli:
    """Tests for the manifest CLI."""

    def test_list(self, temp_project):
        assert tasks_cli.main(["list", str(temp_project)]) == 0
        assert tasks_cli.main(["list", str(temp_project), "--status", "blocked"]) == 0

    def test_next(self, temp_project):
        assert tasks_cli.main(["next", str(temp_project)]) == 0

    def test_complete(self, temp_project):
        assert tasks_cli.main(["complete", str(temp_project), "task-1"]) == 0

        registry = TaskRegistry(temp_project / "TASKS.md")
        registry.load()
        assert registry.get("task-1").is_complete
        assert registry.next_ready().id == "task-2"

    def test_complete_unknown_item(self, temp_project):
        assert tasks_cli.main(["complete", str(temp_project), "task-9"]) == 1

    def test_missing_manifest(self, temp_project):
        assert tasks_cli.main(["stats", str(temp_project / "nowhere")]) == 1

    def test_no_command(self):
        assert tasks_cli.main([]) == 1


class TestHistoryCli:
    """Tests for the ledger history CLI."""

    def test_no_ledger(self, temp_project):
        assert history_cli.main(["iterations", str(temp_project)]) == 1

    def test_empty_ledger(self, temp_project):
        (temp_project / ".loopforge").mkdir()
        assert history_cli.main(["iterations", str(temp_project)]) == 0
        assert history_cli.main(["recoveries", str(temp_project), "--limit", "5"]) == 0


class TestLoopAgentArgs:
    """Tests for run flag handling."""

    def test_flags_override_config(self, temp_project):
        args = loop_agent.parse_args([
            "--project-dir", str(temp_project),
            "--max-iterations", "0",
            "--gate", "tests=pytest -q",
            "--gate", "lint=ruff check .",
            "--model", "custom-model",
        ])
        config = loop_agent.build_config(args)

        assert config.max_iterations is None
        assert config.quality_gates == {"tests": "pytest -q", "lint": "ruff check ."}
        assert config.model == "custom-model"

    def test_no_gates(self, temp_project):
        args = loop_agent.parse_args(["--project-dir", str(temp_project), "--no-gates"])
        assert loop_agent.build_config(args).quality_gates == {}

    def test_bad_gate(self):
        with pytest.raises(SystemExit):
            loop_agent.parse_args(["--gate", "no-equals-sign"])

    def test_missing_credentials(self, temp_project, monkeypatch):
        monkeypatch.delenv("CLAUDE_CODE_OAUTH_TOKEN", raising=False)
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        assert loop_agent.main(["--project-dir", str(temp_project)]) == 1


class TestEntryPoint:
    """Tests for subcommand dispatch."""

    def test_dispatches_subcommands(self, temp_project):
        assert entry.main(["tasks", "next", str(temp_project)]) == 0

    def test_defaults_to_run(self, monkeypatch):
        seen = []
        monkeypatch.setattr(entry.loop_agent, "main", lambda argv: seen.append(argv) or 0)

        assert entry.main(["--max-iterations", "1"]) == 0
        assert seen == [["--max-iterations", "1"]]
