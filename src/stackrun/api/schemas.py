"""Request/response models and view serializers for the HTTP API."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from stackrun.engine.models import StackRunEventView, StackRunView, TaskRunDetails, TaskRunView


class ExecuteTaskRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    task_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("taskId", "task_id", "id", "name"),
    )
    input: Any = None


class ExecuteTaskResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    task_run_id: str = Field(serialization_alias="taskRunId")


class TriggerRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    stack_run_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("stackRunId", "stack_run_id"),
    )


class TriggerResponse(BaseModel):
    accepted: bool = True


def task_run_payload(task_run: TaskRunView) -> dict[str, Any]:
    return {
        "id": task_run.id,
        "taskId": task_run.task_id,
        "input": task_run.input,
        "status": task_run.status.value,
        "result": task_run.result,
        "error": task_run.error,
        "waitingOnStackRunId": task_run.waiting_on_stack_run_id,
        "rootStackRunId": task_run.root_stack_run_id,
        "cancelRequested": task_run.cancel_requested,
        "createdAt": task_run.created_at.isoformat(),
        "updatedAt": task_run.updated_at.isoformat(),
        "suspendedAt": _iso(task_run.suspended_at),
        "resumedAt": _iso(task_run.resumed_at),
        "endedAt": _iso(task_run.ended_at),
    }


def stack_run_payload(stack_run: StackRunView) -> dict[str, Any]:
    return {
        "id": stack_run.id,
        "parentStackRunId": stack_run.parent_stack_run_id,
        "parentTaskRunId": stack_run.parent_task_run_id,
        "serviceName": stack_run.service_name,
        "methodName": stack_run.method_name,
        "args": stack_run.args,
        "status": stack_run.status.value,
        "result": stack_run.result,
        "error": stack_run.error,
        "continuationBytes": len(stack_run.continuation) if stack_run.continuation else 0,
        "resumePayload": stack_run.resume_payload,
        "waitingOnStackRunId": stack_run.waiting_on_stack_run_id,
        "generation": stack_run.generation,
        "reconcileAttempts": stack_run.reconcile_attempts,
        "createdAt": stack_run.created_at.isoformat(),
        "updatedAt": stack_run.updated_at.isoformat(),
        "endedAt": _iso(stack_run.ended_at),
    }


def event_payload(event: StackRunEventView) -> dict[str, Any]:
    return {
        "stackRunId": event.stack_run_id,
        "eventType": event.event_type,
        "statusFrom": event.status_from.value if event.status_from else None,
        "statusTo": event.status_to.value if event.status_to else None,
        "details": event.details,
        "createdAt": event.created_at.isoformat(),
    }


def details_payload(details: TaskRunDetails) -> dict[str, Any]:
    return {
        "taskRun": task_run_payload(details.task_run),
        "stackRuns": [stack_run_payload(run) for run in details.stack_runs],
        "events": [event_payload(event) for event in details.events],
    }


def _iso(value: Any) -> str | None:
    return value.isoformat() if value is not None else None
