"""Executor adapter: runs exactly one slice of a stack run.

Task functions are plain Python callables `fn(ctx, input)`. They reach the
outside world only through `ctx.call(service, method, *args)`. Each slice
replays the task from the start against the journal of already-resolved
calls. The first call past the journal aborts the slice and is returned
as `Suspended`. Because of this, a slice can never have two calls in flight,
and no thread is held while a call is outstanding.
"""

from __future__ import annotations

import logging
from typing import Any

from stackrun.engine.continuation import ExecutionState, decode, encode, inject_result
from stackrun.engine.errors import (
    ContinuationDecodeError,
    ErrorKind,
    NondeterministicReplayError,
    ServiceCallError,
    ServiceError,
    UnknownServiceError,
    UnknownTaskError,
    error_info,
)
from stackrun.engine.models import (
    EXECUTE_METHOD,
    TASKS_SERVICE,
    CallDescriptor,
    Completed,
    Failed,
    Outcome,
    StackRunView,
    Suspended,
)
from stackrun.engine.registry import ServiceRegistry, TaskRegistry
from stackrun.storage.common import normalize_json

logger = logging.getLogger(__name__)


class _SuspendSlice(BaseException):  # noqa: N818
    """Unwinds task code at the first unresolved call.

    Derived from BaseException so `except Exception` in task code does not
    swallow it.
    """

    def __init__(self, call: CallDescriptor) -> None:
        super().__init__(call.label)
        self.call = call


class TaskContext:
    """Host-call surface handed to task functions."""

    def __init__(self, *, state: ExecutionState, stack_run_id: str, task_run_id: str) -> None:
        self.stack_run_id = stack_run_id
        self.task_run_id = task_run_id
        self._state = state
        self._cursor = 0
        self.violation: str | None = None

    @property
    def task_id(self) -> str:
        return self._state.task_id

    @property
    def input(self) -> Any:
        return self._state.input

    @property
    def replaying(self) -> bool:
        """True while calls are still served from the journal."""

        return self._cursor < len(self._state.journal)

    def call(self, service: str, method: str, *args: Any) -> Any:
        """Request one external call and return its result.

        Raises `ServiceCallError` when the call resolved with an error.
        """

        try:
            normalized_args = normalize_json(list(args))
        except ValueError as error:
            raise TypeError(f"Call arguments must be JSON-serializable: {error}") from error
        call = CallDescriptor(service=service, method=method, args=normalized_args)

        if self._state.pending_call is not None:
            self.violation = (
                f"Task issued {call.label} while {self._state.pending_call.label} "
                "was still unresolved."
            )
            raise _SuspendSlice(self._state.pending_call)

        if self._cursor < len(self._state.journal):
            entry = self._state.journal[self._cursor]
            self._cursor += 1
            if not entry.matches(call):
                self.violation = (
                    f"Replay mismatch at call #{self._cursor}: journal has "
                    f"{entry.service}.{entry.method}{entry.args!r}, task issued "
                    f"{call.label}{call.args!r}."
                )
                raise NondeterministicReplayError(self.violation)
            if entry.error is not None:
                raise ServiceCallError(entry.error)
            return entry.result

        self._state.pending_call = call
        raise _SuspendSlice(call)

    def run_task(self, task_id: str, input_value: Any = None) -> Any:
        """Run another registered task as a nested call and return its result."""

        return self.call(TASKS_SERVICE, EXECUTE_METHOD, task_id, input_value)


class ReplayExecutor:
    """Executes one slice of a task or service stack run."""

    def __init__(self, *, tasks: TaskRegistry, services: ServiceRegistry) -> None:
        self.tasks = tasks
        self.services = services

    def run(self, stack_run: StackRunView) -> Outcome:
        if stack_run.is_task_slice:
            return self._run_task_slice(stack_run)
        return self._run_service_slice(stack_run)

    def _run_task_slice(self, stack_run: StackRunView) -> Outcome:  # noqa: PLR0911
        try:
            state = self._load_state(stack_run)
        except ContinuationDecodeError as exc:
            logger.warning("Continuation of stack run %s is unusable: %s", stack_run.id, exc)
            return Failed(
                error_info(ErrorKind.CONTINUATION_CORRUPT, str(exc), stack_run_id=stack_run.id),
            )

        try:
            definition = self.tasks.get(state.task_id)
        except UnknownTaskError as exc:
            return Failed(error_info(ErrorKind.TASK_NOT_FOUND, str(exc), stack_run_id=stack_run.id))

        ctx = TaskContext(
            state=state,
            stack_run_id=stack_run.id,
            task_run_id=stack_run.parent_task_run_id,
        )
        try:
            result = definition.fn(ctx, state.input)
        except _SuspendSlice:
            if ctx.violation is not None:
                return _protocol_violation(stack_run, ctx.violation)
            if state.pending_call is None:
                return _protocol_violation(stack_run, "Slice suspended without a pending call.")
            return Suspended(call=state.pending_call, continuation=encode(state))
        except ServiceCallError as exc:
            if ctx.violation is not None or state.pending_call is not None:
                return _protocol_violation(stack_run, ctx.violation or _SWALLOWED)
            child_id = exc.stack_run_id or "unknown"
            return Failed(
                error_info(
                    ErrorKind.CHILD_FAILED,
                    f"Parent failed because child stack run {child_id} failed: {exc}",
                    stack_run_id=stack_run.id,
                    cause=exc.error,
                ),
            )
        except Exception as exc:  # noqa: BLE001
            if ctx.violation is not None or state.pending_call is not None:
                return _protocol_violation(stack_run, ctx.violation or _SWALLOWED)
            return Failed(
                error_info(
                    ErrorKind.TASK_ERROR,
                    f"{type(exc).__name__}: {exc}",
                    stack_run_id=stack_run.id,
                ),
            )

        if ctx.violation is not None or state.pending_call is not None:
            return _protocol_violation(stack_run, ctx.violation or _SWALLOWED)
        return _completed_or_failed(stack_run, result, kind=ErrorKind.TASK_ERROR)

    def _run_service_slice(self, stack_run: StackRunView) -> Outcome:
        try:
            adapter = self.services.get(stack_run.service_name)
        except UnknownServiceError as exc:
            return Failed(
                error_info(ErrorKind.UNKNOWN_SERVICE, str(exc), stack_run_id=stack_run.id),
            )

        try:
            result = adapter.invoke(stack_run.method_name, list(stack_run.args))
        except ServiceError as exc:
            return Failed(
                error_info(
                    ErrorKind.SERVICE_ERROR,
                    str(exc),
                    stack_run_id=stack_run.id,
                    code=exc.code,
                ),
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Service %s.%s raised for stack run %s: %s",
                stack_run.service_name,
                stack_run.method_name,
                stack_run.id,
                exc,
            )
            return Failed(
                error_info(
                    ErrorKind.SERVICE_ERROR,
                    f"{type(exc).__name__}: {exc}",
                    stack_run_id=stack_run.id,
                ),
            )
        return _completed_or_failed(stack_run, result, kind=ErrorKind.SERVICE_ERROR)

    def _load_state(self, stack_run: StackRunView) -> ExecutionState:
        if stack_run.continuation is None:
            args = stack_run.args
            if not isinstance(args, list) or not args or not isinstance(args[0], str):
                raise ContinuationDecodeError("Task slice args must start with a task id.")
            return ExecutionState(task_id=args[0], input=args[1] if len(args) > 1 else None)
        if stack_run.resume_payload is None:
            raise ContinuationDecodeError("Suspended slice resumed without a resume payload.")
        return decode(inject_result(stack_run.continuation, stack_run.resume_payload))


_SWALLOWED = "Task code caught the suspension of an unresolved call and kept running."


def _protocol_violation(stack_run: StackRunView, message: str) -> Failed:
    logger.warning("Protocol violation in stack run %s: %s", stack_run.id, message)
    return Failed(error_info(ErrorKind.PROTOCOL_VIOLATION, message, stack_run_id=stack_run.id))


def _completed_or_failed(stack_run: StackRunView, result: Any, *, kind: ErrorKind) -> Outcome:
    try:
        normalized = normalize_json(result)
    except ValueError as exc:
        return Failed(
            error_info(kind, f"Result is not JSON-serializable: {exc}", stack_run_id=stack_run.id),
        )
    return Completed(result=normalized)
