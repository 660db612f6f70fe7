"""CLI entrypoint for stackrun."""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import rich_click as click

from stackrun import __version__
from stackrun.config import Settings
from stackrun.controllers import (
    ListRunsCommand,
    ProcessCommand,
    ReconcileCommand,
    StackrunCliController,
    SubmitCommand,
    TaskRunCommand,
)
from stackrun.engine.errors import StackRunError
from stackrun.logging_setup import configure_logging

click.rich_click.USE_MARKDOWN = True
CONTROLLER = StackrunCliController()


@click.group()
@click.version_option(version=__version__, prog_name="stackrun")
@click.option(
    "--log-level",
    default=None,
    help="Override STACKRUN_LOG_LEVEL for this invocation.",
)
def stackrun(log_level: str | None) -> None:
    """Suspend/resume task orchestration CLI."""

    settings = Settings.from_env()
    configure_logging(log_level or settings.log_level, json_output=settings.log_json)


@stackrun.command("serve")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--host", default=None, help="Bind host (default: STACKRUN_API_HOST).")
@click.option("--port", type=click.IntRange(min=1, max=65535), default=None, help="Bind port.")
def serve(db_path: Path | None, host: str | None, port: int | None) -> None:
    """Run the task API and stack processor endpoint with uvicorn."""

    import uvicorn

    from stackrun.api.app import create_app

    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    uvicorn.run(
        create_app(settings=settings),
        host=host or settings.api.host,
        port=port or settings.api.port,
        log_config=None,
    )


@stackrun.command("submit")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--input", "input_json", default=None, help="Task input as a JSON document.")
@click.option(
    "--process/--no-process",
    default=True,
    show_default=True,
    help="Drive the run to completion in this process when no endpoint is configured.",
)
@click.argument("task_id")
def submit(db_path: Path | None, input_json: str | None, process: bool, task_id: str) -> None:
    """Submit a task run for a registered task."""

    _emit_lines(
        _call(
            CONTROLLER.submit,
            SubmitCommand(
                db_path=db_path,
                task_id=task_id,
                input_json=input_json,
                process=process,
            ),
        ),
    )


@stackrun.command("status")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("task_run_id")
def status(db_path: Path | None, task_run_id: str) -> None:
    """Show the status of one task run."""

    _emit_lines(
        _call(CONTROLLER.status, TaskRunCommand(db_path=db_path, task_run_id=task_run_id)),
    )


@stackrun.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("task_run_id")
def inspect(db_path: Path | None, task_run_id: str) -> None:
    """Show the stack run tree and event history of a task run."""

    _emit_lines(
        _call(CONTROLLER.inspect, TaskRunCommand(db_path=db_path, task_run_id=task_run_id)),
    )


@stackrun.command("process")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("stack_run_id")
def process(db_path: Path | None, stack_run_id: str) -> None:
    """Run one processor step for a stack run, as a trigger delivery would."""

    _emit_lines(
        _call(CONTROLLER.process, ProcessCommand(db_path=db_path, stack_run_id=stack_run_id)),
    )


@stackrun.command("cancel")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("task_run_id")
def cancel(db_path: Path | None, task_run_id: str) -> None:
    """Request cancellation; the run fails at its next processing step."""

    _emit_lines(
        _call(CONTROLLER.cancel, TaskRunCommand(db_path=db_path, task_run_id=task_run_id)),
    )


@stackrun.command("reconcile")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--loop/--once",
    default=False,
    show_default=True,
    help="Keep sweeping every STACKRUN_RECONCILE_INTERVAL_SECONDS until interrupted.",
)
@click.option(
    "--max-sweeps",
    type=click.IntRange(min=1),
    default=None,
    help="Stop the loop after this many sweeps.",
)
def reconcile(db_path: Path | None, loop: bool, max_sweeps: int | None) -> None:
    """Re-trigger or fail stack runs whose liveness has lapsed."""

    _emit_lines(
        _call(
            CONTROLLER.reconcile,
            ReconcileCommand(db_path=db_path, loop=loop, max_sweeps=max_sweeps),
        ),
    )


@stackrun.command("tasks")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def tasks(db_path: Path | None) -> None:
    """List registered tasks."""

    _emit_lines(_call(CONTROLLER.list_tasks, db_path))


@stackrun.command("runs")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice(["queued", "processing", "suspended", "completed", "failed"]),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max task runs to print.",
)
def runs(db_path: Path | None, status: str | None, limit: int) -> None:
    """List recent task runs."""

    _emit_lines(
        _call(CONTROLLER.list_runs, ListRunsCommand(db_path=db_path, status=status, limit=limit)),
    )


def _call(method: Callable[[Any], list[str]], command: Any) -> list[str]:
    try:
        return method(command)
    except (StackRunError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    stackrun()
