from __future__ import annotations

import ast
import json
from pathlib import Path

from click.testing import CliRunner

import workflow_codegen  # noqa: F401  (create loggers before the runner swaps stdout)
from cli.main import cli

SERVICE = {
    "name": "Approvals",
    "nodes": [
        {"id": "start", "type": "trigger"},
        {"id": "sig", "type": "signal", "data": {"signalName": "approve"}},
        {"id": "work", "type": "activity", "data": {"activityName": "record"}},
    ],
    "edges": [
        {"id": "e1", "source": "start", "target": "sig"},
        {"id": "e2", "source": "sig", "target": "work"},
    ],
}


def _write(tmp_path: Path, payload) -> Path:
    path = tmp_path / "workflow.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_compile_writes_program_file(tmp_path: Path) -> None:
    source = _write(tmp_path, SERVICE)
    target = tmp_path / "approvals.py"

    result = CliRunner().invoke(cli, ["compile", str(source), "-o", str(target), "--workflow-name", "Approval Flow"])

    assert result.exit_code == 0, result.output
    program = target.read_text(encoding="utf-8")
    ast.parse(program)
    assert "class ApprovalFlow:" in program
    assert program.count("workflow.continue_as_new(") == 1


def test_compile_without_comments(tmp_path: Path) -> None:
    source = _write(tmp_path, SERVICE)
    target = tmp_path / "approvals.py"

    result = CliRunner().invoke(cli, ["compile", str(source), "-o", str(target), "--no-comments"])

    assert result.exit_code == 0, result.output
    assert "#" not in target.read_text(encoding="utf-8")


def test_compile_failure_exits_non_zero(tmp_path: Path) -> None:
    payload = {
        "nodes": [{"id": "start", "type": "trigger"}, {"id": "loop", "type": "activity"}],
        "edges": [{"id": "e1", "source": "loop", "target": "start"}],
    }
    source = _write(tmp_path, payload)
    target = tmp_path / "out.py"

    result = CliRunner().invoke(cli, ["compile", str(source), "-o", str(target)])

    assert result.exit_code == 1
    assert not target.exists()


def test_classify_reports_service_settings(tmp_path: Path) -> None:
    source = _write(tmp_path, SERVICE)

    result = CliRunner().invoke(cli, ["classify", str(source), "--format", "json"])

    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert data["workflowType"] == "service"
    assert data["longRunning"]["autoCompact"] is True
    assert data["longRunning"]["maxHistoryEvents"] == 1000


def test_config_lists_defaults() -> None:
    result = CliRunner().invoke(cli, ["config", "--format", "json"])

    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert data["Emission Defaults"]["default_activity_timeout"] == "5 minutes"
    assert data["Continue-As-New"]["default_max_history_events"] == 1000
