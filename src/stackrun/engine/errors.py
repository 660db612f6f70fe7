"""Error taxonomy shared by the engine, API and CLI."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Normalized failure kinds stored on failed runs."""

    TASK_ERROR = "task_error"
    SERVICE_ERROR = "service_error"
    CHILD_FAILED = "child_failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    PROTOCOL_VIOLATION = "protocol_violation"
    CONTINUATION_CORRUPT = "continuation_corrupt"
    TASK_NOT_FOUND = "task_not_found"
    UNKNOWN_SERVICE = "unknown_service"


def error_info(
    kind: ErrorKind,
    message: str,
    *,
    stack_run_id: str | None = None,
    cause: dict[str, Any] | None = None,
    code: str | None = None,
) -> dict[str, Any]:
    """Build the persisted error shape."""

    payload: dict[str, Any] = {"kind": kind.value, "message": message}
    if stack_run_id is not None:
        payload["stack_run_id"] = stack_run_id
    if code is not None:
        payload["code"] = code
    if cause is not None:
        payload["cause"] = cause
    return payload


def error_message(error: dict[str, Any] | None) -> str:
    if not error:
        return "unknown error"
    return str(error.get("message") or error.get("kind") or "unknown error")


class StackRunError(RuntimeError):
    """Base class for engine errors."""


class TaskRunNotFoundError(StackRunError):
    def __init__(self, task_run_id: str) -> None:
        super().__init__(f"Task run not found: {task_run_id}")
        self.task_run_id = task_run_id


class StackRunNotFoundError(StackRunError):
    def __init__(self, stack_run_id: str) -> None:
        super().__init__(f"Stack run not found: {stack_run_id}")
        self.stack_run_id = stack_run_id


class InvalidTransitionError(StackRunError):
    """Requested state change is not allowed from the current status."""


class ContinuationDecodeError(StackRunError):
    """Continuation blob cannot be turned back into execution state."""


class NondeterministicReplayError(StackRunError):
    """Task code issued a different call sequence while replaying its journal."""


class UnknownTaskError(StackRunError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Unknown task: {task_id}")
        self.task_id = task_id


class UnknownServiceError(StackRunError):
    def __init__(self, service_name: str) -> None:
        super().__init__(f"Unknown service: {service_name}")
        self.service_name = service_name


class ServiceError(StackRunError):
    """Raised by service adapters when an external call fails."""

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class ServiceCallError(StackRunError):
    """Raised into task code when a call it made resolved with an error."""

    def __init__(self, error: dict[str, Any]) -> None:
        super().__init__(error_message(error))
        self.error = error

    @property
    def kind(self) -> str | None:
        return self.error.get("kind")

    @property
    def stack_run_id(self) -> str | None:
        return self.error.get("stack_run_id")
