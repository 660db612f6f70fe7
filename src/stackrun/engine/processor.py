"""Stack processor: one claim -> execute -> persist -> trigger step."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from stackrun.engine.errors import ErrorKind, error_info
from stackrun.engine.executor import ReplayExecutor
from stackrun.engine.models import (
    ClaimStatus,
    Completed,
    Failed,
    Outcome,
    StackRunStatus,
    StackRunView,
    Suspended,
    TaskRunStatus,
    resume_payload_for,
)
from stackrun.engine.repository import RunRepository
from stackrun.engine.suspension import SuspensionHandler
from stackrun.engine.triggers import LocalTrigger, Trigger

logger = logging.getLogger(__name__)


class ProcessAction(str, Enum):
    NOT_FOUND = "not_found"
    SKIPPED = "skipped"
    COMPLETED = "completed"
    FAILED = "failed"
    SUSPENDED = "suspended"


class PropagationAction(str, Enum):
    RESUMED_PARENT = "resumed_parent"
    FINISHED_TASK_RUN = "finished_task_run"
    NOOP = "noop"


@dataclass(slots=True)
class ProcessReport:
    """What one processing step did."""

    stack_run_id: str
    action: ProcessAction
    child_stack_run_id: str | None = None
    propagation: PropagationAction | None = None


class StackProcessor:
    """Advances the run graph by exactly one slice per trigger."""

    def __init__(
        self,
        *,
        repository: RunRepository,
        executor: ReplayExecutor,
        trigger: Trigger,
    ) -> None:
        self.repository = repository
        self.executor = executor
        self.trigger = trigger
        self.suspension = SuspensionHandler(repository=repository, trigger=trigger)

    def process(self, stack_run_id: str) -> ProcessReport:
        claim = self.repository.claim(stack_run_id)
        if claim.status == ClaimStatus.NOT_FOUND:
            logger.warning("Trigger references unknown stack run %s", stack_run_id)
            return ProcessReport(stack_run_id=stack_run_id, action=ProcessAction.NOT_FOUND)
        if not claim.claimed or claim.stack_run is None:
            logger.info("Stack run %s already claimed; duplicate trigger ignored", stack_run_id)
            return ProcessReport(stack_run_id=stack_run_id, action=ProcessAction.SKIPPED)

        stack_run = claim.stack_run
        logger.info(
            "Claimed stack run %s (%s.%s generation=%d)",
            stack_run.id,
            stack_run.service_name,
            stack_run.method_name,
            stack_run.generation,
        )
        outcome = self._execute(stack_run)

        if isinstance(outcome, Suspended):
            child = self.suspension.handle(stack_run, outcome)
            if child is None:
                return ProcessReport(stack_run_id=stack_run.id, action=ProcessAction.SKIPPED)
            return ProcessReport(
                stack_run_id=stack_run.id,
                action=ProcessAction.SUSPENDED,
                child_stack_run_id=child.id,
            )
        return self._settle(stack_run, outcome)

    def _execute(self, stack_run: StackRunView) -> Outcome:
        task_run = self.repository.get_task_run(stack_run.parent_task_run_id)
        if task_run is not None and task_run.cancel_requested:
            return Failed(
                error_info(
                    ErrorKind.CANCELLED,
                    f"Task run {task_run.id} was cancelled",
                    stack_run_id=stack_run.id,
                ),
            )
        try:
            return self.executor.run(stack_run)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Executor crashed on stack run %s", stack_run.id)
            return Failed(
                error_info(
                    ErrorKind.PROTOCOL_VIOLATION,
                    f"Executor error: {type(exc).__name__}: {exc}",
                    stack_run_id=stack_run.id,
                ),
            )

    def _settle(self, stack_run: StackRunView, outcome: Completed | Failed) -> ProcessReport:
        if isinstance(outcome, Completed):
            stored = self.repository.complete(
                stack_run.id,
                result=outcome.result,
                generation=stack_run.generation,
            )
            action = ProcessAction.COMPLETED
        else:
            stored = self.repository.fail(
                stack_run.id,
                error=outcome.error,
                generation=stack_run.generation,
            )
            action = ProcessAction.FAILED
        if not stored:
            logger.warning(
                "Outcome of stack run %s discarded; the run changed state during execution",
                stack_run.id,
            )
            return ProcessReport(stack_run_id=stack_run.id, action=ProcessAction.SKIPPED)

        logger.info("Stack run %s %s", stack_run.id, action.value)
        return ProcessReport(
            stack_run_id=stack_run.id,
            action=action,
            propagation=self.propagate(stack_run.id),
        )

    def propagate(self, stack_run_id: str) -> PropagationAction:
        """Deliver a terminal stack run's outcome to its waiter or its task run.

        Safe to repeat: resume and finish are both no-ops the second time.
        """

        stack_run = self.repository.get_stack_run(stack_run_id)
        if stack_run is None or not stack_run.status.is_terminal:
            return PropagationAction.NOOP

        waiter = self.repository.find_waiter(stack_run.id)
        if waiter is not None:
            resumed = self.repository.resume(
                parent_stack_run_id=waiter.id,
                child_stack_run_id=stack_run.id,
                payload=resume_payload_for(stack_run),
            )
            if not resumed:
                return PropagationAction.NOOP
            logger.info("Resumed stack run %s with outcome of %s", waiter.id, stack_run.id)
            self.trigger.fire(waiter.id)
            return PropagationAction.RESUMED_PARENT

        if stack_run.is_root:
            finished = self.repository.finish_task_run(
                stack_run.parent_task_run_id,
                status=(
                    TaskRunStatus.COMPLETED
                    if stack_run.status == StackRunStatus.COMPLETED
                    else TaskRunStatus.FAILED
                ),
                result=stack_run.result,
                error=stack_run.error,
            )
            if not finished:
                return PropagationAction.NOOP
            logger.info(
                "Task run %s finished as %s",
                stack_run.parent_task_run_id,
                stack_run.status.value,
            )
            return PropagationAction.FINISHED_TASK_RUN

        logger.warning(
            "Stack run %s finished but parent %s is not waiting on it",
            stack_run.id,
            stack_run.parent_stack_run_id,
        )
        return PropagationAction.NOOP

    def drive(self, stack_run_id: str, *, max_steps: int = 1000) -> int:
        """Process a chain in-process until no more steps are queued.

        Only works when the processor was built with a `LocalTrigger`.
        """

        if not isinstance(self.trigger, LocalTrigger):
            raise TypeError("drive() requires a LocalTrigger")
        self.trigger.fire(stack_run_id)
        return self.trigger.drain(self.process, max_steps=max_steps)
