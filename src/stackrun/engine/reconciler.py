"""Reconciler: periodic sweep that repairs runs stuck by lost triggers or crashes."""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import uuid4

from stackrun.engine.errors import ErrorKind, error_info
from stackrun.engine.models import StackRunStatus, StackRunView
from stackrun.engine.processor import StackProcessor
from stackrun.engine.repository import RunRepository
from stackrun.engine.triggers import Trigger
from stackrun.storage.common import utc_now

logger = logging.getLogger(__name__)

STALE_STATUSES = (StackRunStatus.PENDING, StackRunStatus.PROCESSING)


@dataclass(slots=True)
class ReconcileSummary:
    """Aggregate sweep counters for CLI and API reporting."""

    scanned: int = 0
    retriggered: int = 0
    requeued: int = 0
    failed: int = 0
    repropagated: int = 0
    finalized: int = 0
    locked: int = 0

    def merge(self, other: ReconcileSummary) -> None:
        self.scanned += other.scanned
        self.retriggered += other.retriggered
        self.requeued += other.requeued
        self.failed += other.failed
        self.repropagated += other.repropagated
        self.finalized += other.finalized
        self.locked += other.locked


class Reconciler:
    """Re-triggers or fails stack runs whose liveness has lapsed.

    The reconciler is the only component that changes a run's status without
    an executor invocation. Work on one task run is serialized through the
    `task_run:<id>` lock, so overlapping sweeps never act on the same chain.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: RunRepository,
        processor: StackProcessor,
        trigger: Trigger,
        stale_after_seconds: int = 300,
        max_attempts: int = 3,
        batch_size: int = 100,
        lock_ttl_seconds: int = 60,
        owner_id: str | None = None,
    ) -> None:
        self.repository = repository
        self.processor = processor
        self.trigger = trigger
        self.stale_after_seconds = stale_after_seconds
        self.max_attempts = max_attempts
        self.batch_size = batch_size
        self.lock_ttl_seconds = lock_ttl_seconds
        self.owner_id = owner_id or f"reconciler-{uuid4()}"
        self._stop_requested = False

    def sweep(self, *, now: datetime | None = None) -> ReconcileSummary:
        """Run one reconciliation pass."""

        current = now or utc_now()
        summary = ReconcileSummary()
        stale_before = current - timedelta(seconds=self.stale_after_seconds)
        stale: list[StackRunView] = []
        # Per-status batches so one backlog cannot crowd out the other.
        for status in STALE_STATUSES:
            stale.extend(
                self.repository.list_stale_stack_runs(
                    stale_before=stale_before,
                    statuses=(status,),
                    limit=self.batch_size,
                ),
            )
        stale.extend(
            self.repository.list_stale_waiting_parents(
                stale_before=stale_before,
                limit=self.batch_size,
            ),
        )
        for stack_run in stale:
            summary.scanned += 1
            with self._task_run_lock(stack_run.parent_task_run_id, now=current) as acquired:
                if not acquired:
                    summary.locked += 1
                    continue
                self._reconcile_stack_run(stack_run, summary=summary)

        self._finalize_task_runs(summary=summary, now=current)
        if summary.scanned or summary.finalized:
            logger.info(
                "Reconcile sweep: scanned=%d retriggered=%d requeued=%d failed=%d "
                "repropagated=%d finalized=%d locked=%d",
                summary.scanned,
                summary.retriggered,
                summary.requeued,
                summary.failed,
                summary.repropagated,
                summary.finalized,
                summary.locked,
            )
        return summary

    def run_forever(
        self,
        *,
        interval_seconds: float,
        max_sweeps: int | None = None,
    ) -> ReconcileSummary:
        """Sweep periodically until stopped by a signal or `max_sweeps`."""

        aggregate = ReconcileSummary()
        sweeps = 0
        with self._signal_handlers():
            while not self._stop_requested:
                aggregate.merge(self.sweep())
                sweeps += 1
                if max_sweeps is not None and sweeps >= max_sweeps:
                    break
                self._sleep_with_stop(interval_seconds)
        return aggregate

    def _reconcile_stack_run(self, stack_run: StackRunView, *, summary: ReconcileSummary) -> None:
        current = self.repository.get_stack_run(stack_run.id)
        if current is None or current.updated_at != stack_run.updated_at:
            return
        if current.status == StackRunStatus.PENDING:
            self._reconcile_pending(current, summary=summary)
        elif current.status == StackRunStatus.PROCESSING:
            self._reconcile_processing(current, summary=summary)
        elif current.status == StackRunStatus.SUSPENDED_WAITING_CHILD:
            self._reconcile_suspended(current, summary=summary)

    def _reconcile_pending(self, stack_run: StackRunView, *, summary: ReconcileSummary) -> None:
        if self._budget_exhausted(stack_run):
            self._fail_with_timeout(stack_run, summary=summary)
            return
        if self.repository.mark_retriggered(stack_run.id, expected_status=StackRunStatus.PENDING):
            logger.warning("Re-triggering stale pending stack run %s", stack_run.id)
            summary.retriggered += 1
            self.trigger.fire(stack_run.id)

    def _reconcile_processing(self, stack_run: StackRunView, *, summary: ReconcileSummary) -> None:
        if self._budget_exhausted(stack_run):
            self._fail_with_timeout(stack_run, summary=summary)
            return
        if self.repository.requeue(stack_run.id):
            logger.warning("Requeued stale processing stack run %s", stack_run.id)
            summary.requeued += 1
            self.trigger.fire(stack_run.id)

    def _reconcile_suspended(self, stack_run: StackRunView, *, summary: ReconcileSummary) -> None:
        child_id = stack_run.waiting_on_stack_run_id
        child = self.repository.get_stack_run(child_id) if child_id is not None else None
        if child is None:
            error = error_info(
                ErrorKind.PROTOCOL_VIOLATION,
                f"Stack run {stack_run.id} is suspended on missing child {child_id}",
                stack_run_id=stack_run.id,
            )
            if self.repository.fail(
                stack_run.id,
                error=error,
                expected_status=StackRunStatus.SUSPENDED_WAITING_CHILD,
            ):
                logger.warning("Failed orphaned suspended stack run %s", stack_run.id)
                summary.failed += 1
                self.processor.propagate(stack_run.id)
            return
        if child.status.is_terminal:
            logger.warning(
                "Stack run %s missed the resume from finished child %s",
                stack_run.id,
                child.id,
            )
            self.processor.propagate(child.id)
            summary.repropagated += 1

    def _fail_with_timeout(self, stack_run: StackRunView, *, summary: ReconcileSummary) -> None:
        error = error_info(
            ErrorKind.TIMEOUT,
            f"Stack run {stack_run.id} made no progress in status={stack_run.status.value} "
            f"after {stack_run.reconcile_attempts} reconcile attempts",
            stack_run_id=stack_run.id,
        )
        if self.repository.fail(stack_run.id, error=error, expected_status=stack_run.status):
            logger.warning("Stack run %s failed by reconciler: retry budget exhausted", stack_run.id)
            summary.failed += 1
            self.processor.propagate(stack_run.id)

    def _finalize_task_runs(self, *, summary: ReconcileSummary, now: datetime) -> None:
        for task_run in self.repository.list_task_runs_with_finished_root(limit=self.batch_size):
            if task_run.root_stack_run_id is None:
                continue
            root = self.repository.get_stack_run(task_run.root_stack_run_id)
            if root is None or not root.status.is_terminal:
                continue
            with self._task_run_lock(task_run.id, now=now) as acquired:
                if not acquired:
                    summary.locked += 1
                    continue
                self.processor.propagate(root.id)
                summary.finalized += 1

    def _budget_exhausted(self, stack_run: StackRunView) -> bool:
        return stack_run.reconcile_attempts >= self.max_attempts

    @contextmanager
    def _task_run_lock(self, task_run_id: str, *, now: datetime) -> Iterator[bool]:
        lock_key = f"task_run:{task_run_id}"
        acquired = self.repository.acquire_lock(
            lock_key,
            owner_id=self.owner_id,
            ttl_seconds=self.lock_ttl_seconds,
            now=now,
        )
        try:
            yield acquired
        finally:
            if acquired:
                self.repository.release_lock(lock_key, owner_id=self.owner_id)

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            logger.info("Reconciler stopping on signal %s", signum)
            self._stop_requested = True

        installed = True
        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            installed = False
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)
