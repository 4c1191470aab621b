"""Tests for devflow/cli.py using click's CliRunner.

The run command is driven against a real component bundle whose engine has
been swapped for one backed by scripted activities.
"""

from __future__ import annotations

import json
import signal
from types import SimpleNamespace

import pytest
import yaml
from click.testing import CliRunner

from devflow import cli as cli_module
from devflow.cli import _load_task, cli
from devflow.core.factory import ComponentFactory
from devflow.core.models import WorkflowInput
from tests.conftest import RESULT_TIMEOUT, ScriptedActivities, make_engine


@pytest.fixture(autouse=True)
def _keep_sigint(monkeypatch):
    monkeypatch.setattr(signal, "signal", lambda *args: None)


@pytest.fixture
def scripted_bundle(config_dir, monkeypatch):
    """Patch the factory so commands get a bundle with scripted activities."""
    activities = ScriptedActivities()
    bundle = ComponentFactory.create(config_dir=config_dir, env="test", api_key="test-key")
    bundle.engine = make_engine(activities, store=bundle.history_store)
    monkeypatch.setattr(ComponentFactory, "create", staticmethod(lambda **kwargs: bundle))
    return bundle, activities


def _task_file(tmp_path, data: dict, suffix: str = ".json"):
    path = tmp_path / f"task{suffix}"
    if suffix == ".json":
        path.write_text(json.dumps(data))
    else:
        path.write_text(yaml.safe_dump(data))
    return path


class TestLoadTask:
    def test_json_camel_case(self, tmp_path):
        path = _task_file(tmp_path, {
            "id": "t-1",
            "title": "Add endpoint",
            "acceptanceCriteria": ["returns 200"],
            "filesToModify": ["src/app.py"],
        })
        task = _load_task(path)

        assert task.acceptance_criteria == ["returns 200"]
        assert task.files_to_modify == ["src/app.py"]

    def test_yaml(self, tmp_path):
        path = _task_file(tmp_path, {"id": "t-2", "title": "Y", "priority": "high"}, suffix=".yaml")
        assert _load_task(path).priority.value == "high"

    def test_not_an_object(self, tmp_path):
        path = tmp_path / "task.json"
        path.write_text("[1, 2]")
        with pytest.raises(Exception, match="JSON/YAML object"):
            _load_task(path)


class TestCommands:
    def test_cascade(self, config_dir):
        result = CliRunner().invoke(cli, ["--config-dir", str(config_dir), "cascade", "planner"])

        assert result.exit_code == 0
        assert "1. google/gemini-3-pro-preview [http]" in result.output

    def test_cascade_unknown_role(self, config_dir):
        result = CliRunner().invoke(cli, ["--config-dir", str(config_dir), "cascade", "reviewer"])
        assert result.exit_code == 1
        assert "No cascade configured" in result.output

    def test_run_completes(self, tmp_path, scripted_bundle):
        bundle, activities = scripted_bundle
        path = _task_file(tmp_path, {"id": "t-1", "title": "Add endpoint"})

        result = CliRunner().invoke(cli, ["run", "--task", str(path)])

        assert result.exit_code == 0, result.output
        assert '"status": "completed"' in result.output
        assert activities.count("execute_code") == 1
        assert bundle.history_store.get_record("develop-t-1").status == "completed"

    def test_run_as_fix_task(self, tmp_path, scripted_bundle):
        bundle, activities = scripted_bundle
        path = _task_file(tmp_path, {"id": "fix-root-1", "title": "Fix"})

        result = CliRunner().invoke(cli, ["run", "--task", str(path), "--fix-of", "root", "--workflow-id", "wf-fix"])

        assert result.exit_code == 0, result.output
        record = bundle.history_store.get_record("wf-fix")
        assert record.input.is_fix_task is True
        assert record.input.original_task_id == "root"
        assert activities.calls["check_fix_task_loop"] == ["root"]

    def test_status_unknown(self, scripted_bundle):
        result = CliRunner().invoke(cli, ["status", "--workflow-id", "nope"])
        assert result.exit_code == 1
        assert "Unknown workflow" in result.output

    def test_status_after_run(self, tmp_path, scripted_bundle):
        path = _task_file(tmp_path, {"id": "t-1", "title": "Add endpoint"})
        CliRunner().invoke(cli, ["run", "--task", str(path)])

        result = CliRunner().invoke(cli, ["status", "--workflow-id", "develop-t-1"])

        assert result.exit_code == 0
        assert "Status:    completed" in result.output
        assert '"phase": "complete"' in result.output

    def test_list_after_run(self, tmp_path, scripted_bundle):
        path = _task_file(tmp_path, {"id": "t-1", "title": "Add endpoint"})
        CliRunner().invoke(cli, ["run", "--task", str(path)])

        result = CliRunner().invoke(cli, ["list"])

        assert result.exit_code == 0, result.output
        line = result.output.strip().splitlines()[-1]
        assert line.split() == ["develop-t-1", "t-1", "completed"]

    def test_list_empty(self, scripted_bundle):
        result = CliRunner().invoke(cli, ["list"])
        assert "No runs recorded." in result.output

    def test_chain_depth(self, scripted_bundle):
        bundle, _ = scripted_bundle
        bundle.chain_tracker.increment_and_get("root")

        result = CliRunner().invoke(cli, ["chain-depth", "root"])

        assert result.output.strip() == "1"

    def test_sigint_without_run_exits(self, monkeypatch):
        monkeypatch.setattr(cli_module, "_active_handle", None)
        with pytest.raises(SystemExit) as exc_info:
            cli_module._sigint_handler(2, None)
        assert exc_info.value.code == 130


class TestResume:
    def test_resume_prompts_for_pending_approval(self, sample_task, scripted_bundle):
        bundle, activities = scripted_bundle
        bundle.engine.start("wf-1", WorkflowInput(task=sample_task, skip_approval=False))

        result = CliRunner().invoke(cli, ["resume", "--workflow-id", "wf-1"], input="y\n")

        assert result.exit_code == 0, result.output
        assert "Approve this plan?" in result.output
        assert '"status": "completed"' in result.output
        assert activities.count("execute_code") == 1

    def test_resume_rejection_carries_reason(self, sample_task, scripted_bundle):
        bundle, activities = scripted_bundle
        bundle.engine.start("wf-1", WorkflowInput(task=sample_task, skip_approval=False))

        result = CliRunner().invoke(cli, ["resume", "--workflow-id", "wf-1"], input="n\nscope too wide\n")

        assert result.exit_code == 0, result.output
        assert "Plan rejected: scope too wide" in result.output
        assert activities.count("execute_code") == 0

    def test_resume_without_approval_does_not_prompt(self, sample_task, scripted_bundle):
        bundle, _ = scripted_bundle
        bundle.engine.execute("wf-1", WorkflowInput(task=sample_task), timeout=RESULT_TIMEOUT)

        result = CliRunner().invoke(cli, ["resume", "--workflow-id", "wf-1"])

        assert result.exit_code == 0, result.output
        assert "Approve this plan?" not in result.output

    def test_unknown_run_with_memory_history(self, scripted_bundle):
        result = CliRunner().invoke(cli, ["resume", "--workflow-id", "nope"])

        assert result.exit_code == 1
        assert "history_backend to postgresql" in result.output


class TestInterrupt:
    @pytest.fixture
    def running_handle(self, monkeypatch):
        handle = SimpleNamespace(workflow_id="wf-1", done=lambda: False)
        monkeypatch.setattr(cli_module, "_active_handle", handle)
        monkeypatch.setattr(cli_module, "_cancel_sent", True)
        return handle

    def test_resume_hint_with_database_history(self, running_handle, monkeypatch, capsys):
        monkeypatch.setattr(cli_module, "_history_persisted", True)
        with pytest.raises(SystemExit):
            cli_module._sigint_handler(2, None)
        assert "devflow resume --workflow-id wf-1" in capsys.readouterr().out

    def test_no_resume_hint_with_memory_history(self, running_handle, monkeypatch, capsys):
        monkeypatch.setattr(cli_module, "_history_persisted", False)
        with pytest.raises(SystemExit):
            cli_module._sigint_handler(2, None)
        out = capsys.readouterr().out
        assert "devflow resume" not in out
        assert "cannot be resumed" in out
