"""Suspension handler: parks a slice on the external call it made."""

from __future__ import annotations

import logging

from stackrun.engine.models import StackRunView, Suspended
from stackrun.engine.repository import RunRepository
from stackrun.engine.triggers import Trigger

logger = logging.getLogger(__name__)


class SuspensionHandler:
    def __init__(self, *, repository: RunRepository, trigger: Trigger) -> None:
        self.repository = repository
        self.trigger = trigger

    def handle(self, stack_run: StackRunView, outcome: Suspended) -> StackRunView | None:
        """Persist the child and the suspended parent, then trigger the child.

        Returns None when the parent left `processing` before the transaction
        ran. Nothing is triggered in that case.
        """

        child = self.repository.suspend(
            stack_run_id=stack_run.id,
            call=outcome.call,
            continuation=outcome.continuation,
            generation=stack_run.generation,
        )
        if child is None:
            logger.warning(
                "Stack run %s could not be suspended on %s; it is no longer processing",
                stack_run.id,
                outcome.call.label,
            )
            return None

        logger.info(
            "Stack run %s suspended on %s (child %s)",
            stack_run.id,
            outcome.call.label,
            child.id,
        )
        self.trigger.fire(child.id)
        return child
