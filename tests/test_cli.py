from __future__ import annotations

import re
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from stackrun.main import stackrun

pytestmark = [
    allure.epic("Operations"),
    allure.feature("CLI"),
]


@pytest.fixture(autouse=True)
def _local_environment(monkeypatch) -> None:
    monkeypatch.delenv("STACKRUN_PROCESSOR_ENDPOINT", raising=False)
    monkeypatch.delenv("STACKRUN_SERVICE_URLS", raising=False)
    monkeypatch.delenv("STACKRUN_TASK_MODULES", raising=False)
    monkeypatch.setattr("stackrun.main.configure_logging", lambda *args, **kwargs: None)


def _task_run_id(output: str) -> str:
    match = re.search(r"task_run_id=([0-9a-f-]+)", output)
    assert match is not None, output
    return match.group(1)


def test_submit_processes_locally_and_reports_result(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()

    result = runner.invoke(
        stackrun,
        ["submit", "--db-path", str(db_path), "--input", '{"x": 2}', "demo.pipeline"],
    )

    assert result.exit_code == 0, result.output
    assert "status=completed" in result.output
    assert 'Result: {"doubled": {"x": 4}, "echoed": {"x": 4}}' in result.output

    task_run_id = _task_run_id(result.output)
    status = runner.invoke(stackrun, ["status", "--db-path", str(db_path), task_run_id])
    assert status.exit_code == 0, status.output
    assert "Status: completed" in status.output

    inspect = runner.invoke(stackrun, ["inspect", "--db-path", str(db_path), task_run_id])
    assert inspect.exit_code == 0, inspect.output
    assert "Task: demo.pipeline" in inspect.output
    assert "tasks.execute status=completed" in inspect.output
    assert "echo.echo status=completed" in inspect.output

    runs = runner.invoke(stackrun, ["runs", "--db-path", str(db_path), "--status", "completed"])
    assert runs.exit_code == 0, runs.output
    assert task_run_id in runs.output


def test_submit_without_processing_then_manual_process(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()

    submitted = runner.invoke(
        stackrun,
        ["submit", "--db-path", str(db_path), "--no-process", "--input", '{"x": 5}', "demo.double"],
    )
    assert submitted.exit_code == 0, submitted.output
    root_id = re.search(r"root=([0-9a-f-]+)", submitted.output).group(1)  # type: ignore[union-attr]

    processed = runner.invoke(stackrun, ["process", "--db-path", str(db_path), root_id])

    assert processed.exit_code == 0, processed.output
    assert f"Stack run {root_id}: completed" in processed.output
    assert "Propagation: finished_task_run" in processed.output


def test_failed_run_status_shows_error(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()

    submitted = runner.invoke(
        stackrun,
        ["submit", "--db-path", str(db_path), "--input", '{"message": "E"}', "demo.fail"],
    )

    assert submitted.exit_code == 0, submitted.output
    assert "status=failed" in submitted.output
    assert "Error: [child_failed]" in submitted.output


def test_cancel_and_reconcile_commands(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    submitted = runner.invoke(
        stackrun,
        ["submit", "--db-path", str(db_path), "--no-process", "demo.echo"],
    )
    task_run_id = _task_run_id(submitted.output)

    cancelled = runner.invoke(stackrun, ["cancel", "--db-path", str(db_path), task_run_id])
    assert cancelled.exit_code == 0, cancelled.output
    assert f"Cancellation requested: {task_run_id}" in cancelled.output

    reconciled = runner.invoke(stackrun, ["reconcile", "--db-path", str(db_path)])
    assert reconciled.exit_code == 0, reconciled.output
    assert "Reconcile summary: scanned=0" in reconciled.output


def test_user_errors_exit_non_zero(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()

    unknown = runner.invoke(stackrun, ["submit", "--db-path", str(db_path), "nope"])
    bad_input = runner.invoke(
        stackrun,
        ["submit", "--db-path", str(db_path), "--input", "{not json", "demo.double"],
    )
    missing = runner.invoke(stackrun, ["cancel", "--db-path", str(db_path), "missing"])

    assert unknown.exit_code == 1
    assert "Unknown task: nope" in unknown.output
    assert bad_input.exit_code == 1
    assert "--input must be valid JSON" in bad_input.output
    assert missing.exit_code == 1
    assert "Task run not found: missing" in missing.output


def test_tasks_lists_demo_tasks(tmp_path: Path) -> None:
    result = CliRunner().invoke(stackrun, ["tasks", "--db-path", str(tmp_path / "cli.db")])

    assert result.exit_code == 0, result.output
    assert "demo.double" in result.output
    assert "demo.pipeline" in result.output
