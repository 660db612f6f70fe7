"""Application service for submitting and inspecting task runs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from stackrun.engine.errors import TaskRunNotFoundError, UnknownTaskError
from stackrun.engine.models import TaskRunDetails, TaskRunStatus, TaskRunView
from stackrun.engine.registry import TaskDefinition, TaskRegistry
from stackrun.engine.repository import RunRepository
from stackrun.engine.triggers import Trigger

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TaskStatusView:
    """Externally visible status of one task run."""

    task_run_id: str
    status: TaskRunStatus
    result: Any = None
    error: dict[str, Any] | None = None
    waiting_on_stack_run_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"status": self.status.value}
        if self.status == TaskRunStatus.COMPLETED:
            payload["result"] = self.result
        if self.error is not None:
            payload["error"] = self.error
        if self.waiting_on_stack_run_id is not None:
            payload["waitingOnStackRunId"] = self.waiting_on_stack_run_id
        return payload


class TaskService:
    """Submission, status and inspection shared by the API and CLI."""

    def __init__(
        self,
        *,
        repository: RunRepository,
        tasks: TaskRegistry,
        trigger: Trigger,
    ) -> None:
        self.repository = repository
        self.tasks = tasks
        self.trigger = trigger

    def submit(self, task_id: str, input_value: Any = None, *, fire: bool = True) -> TaskRunView:
        """Create the task run and its root stack run, then trigger the root.

        Returns without waiting for any processing.
        """

        if not self.tasks.has(task_id):
            raise UnknownTaskError(task_id)
        task_run, root = self.repository.create_task_run(task_id=task_id, input_value=input_value)
        logger.info("Submitted task %s as task run %s (root %s)", task_id, task_run.id, root.id)
        if fire:
            self.trigger.fire(root.id)
        return task_run

    def status(self, task_run_id: str) -> TaskStatusView:
        task_run = self.repository.get_task_run(task_run_id)
        if task_run is None:
            raise TaskRunNotFoundError(task_run_id)
        return TaskStatusView(
            task_run_id=task_run.id,
            status=task_run.status,
            result=task_run.result,
            error=task_run.error,
            waiting_on_stack_run_id=task_run.waiting_on_stack_run_id,
        )

    def cancel(self, task_run_id: str) -> TaskRunView:
        task_run = self.repository.request_cancel(task_run_id)
        logger.info("Cancellation requested for task run %s", task_run_id)
        return task_run

    def inspect(self, task_run_id: str) -> TaskRunDetails:
        details = self.repository.get_task_run_details(task_run_id)
        if details is None:
            raise TaskRunNotFoundError(task_run_id)
        return details

    def list_tasks(self) -> list[TaskDefinition]:
        return self.tasks.definitions()

    def list_task_runs(
        self,
        *,
        status: TaskRunStatus | None = None,
        limit: int = 50,
    ) -> list[TaskRunView]:
        return self.repository.list_task_runs(status=status, limit=limit)
