"""Domain models for task runs, stack runs and execution outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

TASKS_SERVICE = "tasks"
EXECUTE_METHOD = "execute"


class TaskRunStatus(str, Enum):
    """User-visible task run lifecycle states."""

    QUEUED = "queued"
    PROCESSING = "processing"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {TaskRunStatus.COMPLETED, TaskRunStatus.FAILED}


class StackRunStatus(str, Enum):
    """Lifecycle of one execution slice."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SUSPENDED_WAITING_CHILD = "suspended_waiting_child"

    @property
    def is_terminal(self) -> bool:
        return self in {StackRunStatus.COMPLETED, StackRunStatus.FAILED}


class ClaimStatus(str, Enum):
    CLAIMED = "claimed"
    ALREADY_CLAIMED = "already_claimed"
    NOT_FOUND = "not_found"


@dataclass(slots=True)
class CallDescriptor:
    """One external call requested by a task slice."""

    service: str
    method: str
    args: list[Any] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"service": self.service, "method": self.method, "args": list(self.args)}

    @property
    def label(self) -> str:
        return f"{self.service}.{self.method}"


@dataclass(slots=True)
class TaskRunView:
    """Readable task run view for API, CLI and engine logic."""

    id: str
    task_id: str
    input: Any
    status: TaskRunStatus
    result: Any
    error: dict[str, Any] | None
    waiting_on_stack_run_id: str | None
    root_stack_run_id: str | None
    cancel_requested: bool
    created_at: datetime
    updated_at: datetime
    suspended_at: datetime | None
    resumed_at: datetime | None
    ended_at: datetime | None


@dataclass(slots=True)
class StackRunView:
    """Readable stack run view."""

    id: str
    parent_stack_run_id: str | None
    parent_task_run_id: str
    service_name: str
    method_name: str
    args: list[Any]
    status: StackRunStatus
    result: Any
    error: dict[str, Any] | None
    continuation: bytes | None
    resume_payload: dict[str, Any] | None
    waiting_on_stack_run_id: str | None
    generation: int
    reconcile_attempts: int
    created_at: datetime
    updated_at: datetime
    ended_at: datetime | None

    @property
    def is_root(self) -> bool:
        return self.parent_stack_run_id is None

    @property
    def is_task_slice(self) -> bool:
        return self.service_name == TASKS_SERVICE and self.method_name == EXECUTE_METHOD


@dataclass(slots=True)
class StackRunEventView:
    """Stack run event entry for audit trail."""

    id: int
    stack_run_id: str
    task_run_id: str
    event_type: str
    status_from: StackRunStatus | None
    status_to: StackRunStatus | None
    details: dict[str, object]
    created_at: datetime


@dataclass(slots=True)
class TaskRunDetails:
    """Task run with its stack run tree and events."""

    task_run: TaskRunView
    stack_runs: list[StackRunView]
    events: list[StackRunEventView]


@dataclass(slots=True)
class ClaimResult:
    status: ClaimStatus
    stack_run: StackRunView | None = None

    @property
    def claimed(self) -> bool:
        return self.status == ClaimStatus.CLAIMED


@dataclass(slots=True)
class Completed:
    result: Any


@dataclass(slots=True)
class Failed:
    error: dict[str, Any]


@dataclass(slots=True)
class Suspended:
    call: CallDescriptor
    continuation: bytes


Outcome = Completed | Failed | Suspended


def resume_payload_for(stack_run: StackRunView) -> dict[str, Any]:
    """Build the payload injected into a waiting parent from a terminal child."""

    if stack_run.status == StackRunStatus.COMPLETED:
        return {"status": StackRunStatus.COMPLETED.value, "result": stack_run.result}
    if stack_run.status == StackRunStatus.FAILED:
        return {"status": StackRunStatus.FAILED.value, "error": stack_run.error}
    raise ValueError(f"Stack run {stack_run.id} is not terminal: {stack_run.status.value}")
