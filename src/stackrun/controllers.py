"""Controllers for stackrun CLI commands."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from stackrun.config import Settings
from stackrun.engine.errors import TaskRunNotFoundError
from stackrun.engine.models import StackRunView, TaskRunStatus
from stackrun.runtime import open_runtime


@dataclass(slots=True)
class SubmitCommand:
    """CLI input for task submission."""

    db_path: Path | None
    task_id: str
    input_json: str | None
    process: bool


@dataclass(slots=True)
class TaskRunCommand:
    """CLI input for commands addressing one task run."""

    db_path: Path | None
    task_run_id: str


@dataclass(slots=True)
class ProcessCommand:
    """CLI input for a single manual processor step."""

    db_path: Path | None
    stack_run_id: str


@dataclass(slots=True)
class ReconcileCommand:
    db_path: Path | None
    loop: bool
    max_sweeps: int | None


@dataclass(slots=True)
class ListRunsCommand:
    """CLI input for task run listing."""

    db_path: Path | None
    status: str | None
    limit: int


class StackrunCliController:
    """Coordinates submission, processing, reconciliation and inspection."""

    def submit(self, command: SubmitCommand) -> list[str]:
        input_value = _parse_input(command.input_json)
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        with open_runtime(settings) as runtime:
            task_run = runtime.service.submit(command.task_id, input_value, fire=False)
            lines = [
                f"Task run submitted: task_run_id={task_run.id} task={task_run.task_id} "
                f"root={task_run.root_stack_run_id}",
            ]
            if task_run.root_stack_run_id is None:
                return lines
            if command.process and runtime.local:
                steps = runtime.kick(task_run.root_stack_run_id)
                status = runtime.service.status(task_run.id)
                lines.append(f"Processed {steps} step(s); status={status.status.value}")
                lines.extend(_outcome_lines(status.result, status.error))
            else:
                runtime.trigger.fire(task_run.root_stack_run_id)
        return lines

    def status(self, command: TaskRunCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            try:
                status = runtime.service.status(command.task_run_id)
            except TaskRunNotFoundError:
                return [f"Task run not found: {command.task_run_id}"]
        lines = [f"Task run: {status.task_run_id}", f"Status: {status.status.value}"]
        if status.waiting_on_stack_run_id is not None:
            lines.append(f"Waiting on: {status.waiting_on_stack_run_id}")
        lines.extend(_outcome_lines(status.result, status.error))
        return lines

    def inspect(self, command: TaskRunCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            details = runtime.repository.get_task_run_details(command.task_run_id)
        if details is None:
            return [f"Task run not found: {command.task_run_id}"]

        task_run = details.task_run
        lines = [
            f"Task run: {task_run.id}",
            f"Task: {task_run.task_id}",
            f"Status: {task_run.status.value}",
            f"Cancel requested: {'yes' if task_run.cancel_requested else 'no'}",
            f"Root stack run: {task_run.root_stack_run_id or '-'}",
            f"Stack runs: {len(details.stack_runs)}",
        ]
        lines.extend(_tree_lines(details.stack_runs))
        lines.append(f"Events: {len(details.events)}")
        for event in details.events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.stack_run_id[:8]} {event.event_type} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value if event.status_to else '-'}",
            )
        return lines

    def process(self, command: ProcessCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            report = runtime.processor.process(command.stack_run_id)
            lines = [f"Stack run {report.stack_run_id}: {report.action.value}"]
            if report.child_stack_run_id is not None:
                lines.append(f"Child stack run: {report.child_stack_run_id}")
            if report.propagation is not None:
                lines.append(f"Propagation: {report.propagation.value}")
            steps = runtime.drain()
            if steps:
                lines.append(f"Follow-up steps processed: {steps}")
        return lines

    def cancel(self, command: TaskRunCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            runtime.service.cancel(command.task_run_id)
        return [f"Cancellation requested: {command.task_run_id}"]

    def reconcile(self, command: ReconcileCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        with open_runtime(settings) as runtime:
            if command.loop:
                summary = runtime.reconciler.run_forever(
                    interval_seconds=settings.reconciler.interval_seconds,
                    max_sweeps=command.max_sweeps,
                )
            else:
                summary = runtime.reconciler.sweep()
            steps = runtime.drain()
        return [
            "Reconcile summary: "
            f"scanned={summary.scanned} retriggered={summary.retriggered} "
            f"requeued={summary.requeued} failed={summary.failed} "
            f"repropagated={summary.repropagated} finalized={summary.finalized} "
            f"locked={summary.locked} steps={steps}",
        ]

    def list_tasks(self, db_path: Path | None) -> list[str]:
        settings = Settings.from_env(db_path=db_path)
        with open_runtime(settings, init_schema=False) as runtime:
            definitions = runtime.service.list_tasks()
        if not definitions:
            return ["No tasks registered."]
        return [
            f"{definition.name}  {definition.description}".rstrip() for definition in definitions
        ]

    def list_runs(self, command: ListRunsCommand) -> list[str]:
        status_filter = None
        if command.status is not None:
            try:
                status_filter = TaskRunStatus(command.status)
            except ValueError as error:
                raise ValueError(f"Unsupported task run status: {command.status!r}") from error

        settings = Settings.from_env(db_path=command.db_path)
        with open_runtime(settings) as runtime:
            task_runs = runtime.service.list_task_runs(status=status_filter, limit=command.limit)
        if not task_runs:
            return ["No task runs found."]
        return [
            f"{task_run.id} status={task_run.status.value} task={task_run.task_id} "
            f"created_at={task_run.created_at.isoformat()}"
            for task_run in task_runs
        ]


def _parse_input(raw: str | None) -> Any:
    if raw is None or not raw.strip():
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as error:
        raise ValueError(f"--input must be valid JSON: {error}") from error


def _outcome_lines(result: Any, error: dict[str, Any] | None) -> list[str]:
    lines: list[str] = []
    if result is not None:
        lines.append(f"Result: {json.dumps(result, ensure_ascii=False, sort_keys=True)}")
    if error is not None:
        lines.append(f"Error: [{error.get('kind', '-')}] {error.get('message', '-')}")
    return lines


def _tree_lines(stack_runs: list[StackRunView]) -> list[str]:
    children: dict[str | None, list[StackRunView]] = {}
    for stack_run in stack_runs:
        children.setdefault(stack_run.parent_stack_run_id, []).append(stack_run)

    lines: list[str] = []

    def _walk(parent_id: str | None, depth: int) -> None:
        for stack_run in children.get(parent_id, []):
            lines.append(
                f"{'  ' * (depth + 1)}{stack_run.id} {stack_run.service_name}."
                f"{stack_run.method_name} status={stack_run.status.value} "
                f"generation={stack_run.generation}",
            )
            _walk(stack_run.id, depth + 1)

    _walk(None, 0)
    return lines
