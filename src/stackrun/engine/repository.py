"""Run store: persistence for task runs, stack runs, events and locks."""

from __future__ import annotations

import json
from collections.abc import Iterable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import delete as sa_delete
from sqlalchemy import or_
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import aliased
from sqlmodel import Session, col, select

from stackrun.engine.errors import InvalidTransitionError, TaskRunNotFoundError
from stackrun.engine.models import (
    EXECUTE_METHOD,
    TASKS_SERVICE,
    CallDescriptor,
    ClaimResult,
    ClaimStatus,
    StackRunEventView,
    StackRunStatus,
    StackRunView,
    TaskRunDetails,
    TaskRunStatus,
    TaskRunView,
)
from stackrun.storage.alembic_runner import upgrade_head
from stackrun.storage.common import (
    build_sqlite_engine,
    dump_json,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from stackrun.storage.sqlmodel_models import RunLock, StackRun, StackRunEvent, TaskRun

ACTIVE_TASK_RUN_STATUSES = (
    TaskRunStatus.QUEUED.value,
    TaskRunStatus.PROCESSING.value,
    TaskRunStatus.SUSPENDED.value,
)

TERMINAL_STACK_RUN_STATUSES = (
    StackRunStatus.COMPLETED.value,
    StackRunStatus.FAILED.value,
)


class RunRepository:
    """Run store facade backed by SQLModel + SQLite.

    Every state change is a compare-and-set on the current status. A lost race
    rolls the transaction back and reports `False` (or `ALREADY_CLAIMED`), so
    callers can retry any step without corrupting the run graph.
    """

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def create_task_run(self, *, task_id: str, input_value: Any) -> tuple[TaskRunView, StackRunView]:
        """Create a queued task run together with its pending root stack run."""

        now = to_db_datetime(utc_now())
        task_run_id = str(uuid4())
        root_id = str(uuid4())
        with Session(self.engine) as session:
            task_run = TaskRun(
                id=task_run_id,
                task_id=task_id,
                input_json=dump_json(input_value),
                status=TaskRunStatus.QUEUED.value,
                root_stack_run_id=root_id,
                created_at=now,
                updated_at=now,
            )
            session.add(task_run)
            session.flush()
            root = StackRun(
                id=root_id,
                parent_stack_run_id=None,
                parent_task_run_id=task_run_id,
                service_name=TASKS_SERVICE,
                method_name=EXECUTE_METHOD,
                args_json=dump_json([task_id, input_value]),
                status=StackRunStatus.PENDING.value,
                created_at=now,
                updated_at=now,
            )
            session.add(root)
            session.flush()
            self._add_event(
                session=session,
                stack_run_id=root_id,
                task_run_id=task_run_id,
                event_type="created",
                status_from=None,
                status_to=StackRunStatus.PENDING,
                details={"task_id": task_id, "root": True},
            )
            session.commit()
            session.refresh(task_run)
            session.refresh(root)
            return _to_task_run_view(task_run), _to_stack_run_view(root)

    def claim(self, stack_run_id: str) -> ClaimResult:
        """Atomically move a pending stack run to processing."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = session.get(StackRun, stack_run_id)
            if row is None:
                return ClaimResult(status=ClaimStatus.NOT_FOUND)
            if row.status != StackRunStatus.PENDING.value:
                return ClaimResult(
                    status=ClaimStatus.ALREADY_CLAIMED,
                    stack_run=_to_stack_run_view(row),
                )

            generation = row.generation
            resuming = row.continuation is not None
            result = session.exec(
                sa_update(StackRun)
                .where(
                    col(StackRun.id) == stack_run_id,
                    col(StackRun.status) == StackRunStatus.PENDING.value,
                    col(StackRun.generation) == generation,
                )
                .values(
                    status=StackRunStatus.PROCESSING.value,
                    generation=generation + 1,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return ClaimResult(status=ClaimStatus.ALREADY_CLAIMED)

            if row.parent_stack_run_id is None:
                task_values: dict[str, Any] = {
                    "status": TaskRunStatus.PROCESSING.value,
                    "updated_at": now,
                }
                if resuming:
                    task_values["resumed_at"] = now
                session.exec(
                    sa_update(TaskRun)
                    .where(
                        col(TaskRun.id) == row.parent_task_run_id,
                        col(TaskRun.status).in_(ACTIVE_TASK_RUN_STATUSES),
                    )
                    .values(**task_values),
                )
            self._add_event(
                session=session,
                stack_run_id=stack_run_id,
                task_run_id=row.parent_task_run_id,
                event_type="claimed",
                status_from=StackRunStatus.PENDING,
                status_to=StackRunStatus.PROCESSING,
                details={"generation": generation + 1, "resuming": resuming},
            )
            session.commit()
            session.refresh(row)
            return ClaimResult(status=ClaimStatus.CLAIMED, stack_run=_to_stack_run_view(row))

    def complete(
        self,
        stack_run_id: str,
        *,
        result: Any,
        generation: int | None = None,
    ) -> bool:
        """Mark a processing stack run as completed. No-op once terminal."""

        return self._finish_stack_run(
            stack_run_id=stack_run_id,
            status=StackRunStatus.COMPLETED,
            expected_status=StackRunStatus.PROCESSING,
            result=result,
            error=None,
            generation=generation,
        )

    def fail(
        self,
        stack_run_id: str,
        *,
        error: dict[str, Any],
        expected_status: StackRunStatus = StackRunStatus.PROCESSING,
        generation: int | None = None,
    ) -> bool:
        """Mark a stack run as failed. No-op once terminal."""

        if expected_status.is_terminal:
            raise ValueError(f"Cannot fail a stack run from status={expected_status.value}")
        return self._finish_stack_run(
            stack_run_id=stack_run_id,
            status=StackRunStatus.FAILED,
            expected_status=expected_status,
            result=None,
            error=error,
            generation=generation,
        )

    def _finish_stack_run(  # noqa: PLR0913
        self,
        *,
        stack_run_id: str,
        status: StackRunStatus,
        expected_status: StackRunStatus,
        result: Any,
        error: dict[str, Any] | None,
        generation: int | None,
    ) -> bool:
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = session.get(StackRun, stack_run_id)
            if row is None:
                return False
            conditions = [
                col(StackRun.id) == stack_run_id,
                col(StackRun.status) == expected_status.value,
            ]
            if generation is not None:
                conditions.append(col(StackRun.generation) == generation)
            update_result = session.exec(
                sa_update(StackRun)
                .where(*conditions)
                .values(
                    status=status.value,
                    result_json=dump_json(result) if status == StackRunStatus.COMPLETED else None,
                    error_json=dump_json(error) if error is not None else None,
                    waiting_on_stack_run_id=None,
                    ended_at=now,
                    updated_at=now,
                ),
            )
            if update_result.rowcount != 1:
                session.rollback()
                return False
            details: dict[str, object] = {}
            if error is not None:
                details = {"kind": error.get("kind"), "message": error.get("message")}
            self._add_event(
                session=session,
                stack_run_id=stack_run_id,
                task_run_id=row.parent_task_run_id,
                event_type=status.value,
                status_from=expected_status,
                status_to=status,
                details=details,
            )
            session.commit()
            return True

    def suspend(
        self,
        *,
        stack_run_id: str,
        call: CallDescriptor,
        continuation: bytes,
        generation: int | None = None,
    ) -> StackRunView | None:
        """Insert the pending child and park the parent on it, atomically.

        Returns the child view, or None when the parent was no longer processing.
        """

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            parent = session.get(StackRun, stack_run_id)
            if parent is None or parent.status != StackRunStatus.PROCESSING.value:
                return None
            task_run_id = parent.parent_task_run_id

            child = StackRun(
                id=str(uuid4()),
                parent_stack_run_id=stack_run_id,
                parent_task_run_id=task_run_id,
                service_name=call.service,
                method_name=call.method,
                args_json=dump_json(call.args),
                status=StackRunStatus.PENDING.value,
                created_at=now,
                updated_at=now,
            )
            session.add(child)
            session.flush()

            conditions = [
                col(StackRun.id) == stack_run_id,
                col(StackRun.status) == StackRunStatus.PROCESSING.value,
            ]
            if generation is not None:
                conditions.append(col(StackRun.generation) == generation)
            result = session.exec(
                sa_update(StackRun)
                .where(*conditions)
                .values(
                    status=StackRunStatus.SUSPENDED_WAITING_CHILD.value,
                    continuation=continuation,
                    resume_payload_json=None,
                    waiting_on_stack_run_id=child.id,
                    updated_at=now,
                    reconcile_attempts=0,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return None

            session.exec(
                sa_update(TaskRun)
                .where(
                    col(TaskRun.id) == task_run_id,
                    col(TaskRun.status).in_(ACTIVE_TASK_RUN_STATUSES),
                )
                .values(
                    status=TaskRunStatus.SUSPENDED.value,
                    waiting_on_stack_run_id=child.id,
                    suspended_at=now,
                    updated_at=now,
                ),
            )
            self._add_event(
                session=session,
                stack_run_id=stack_run_id,
                task_run_id=task_run_id,
                event_type="suspended",
                status_from=StackRunStatus.PROCESSING,
                status_to=StackRunStatus.SUSPENDED_WAITING_CHILD,
                details={"child_stack_run_id": child.id, "call": call.label},
            )
            self._add_event(
                session=session,
                stack_run_id=child.id,
                task_run_id=task_run_id,
                event_type="created",
                status_from=None,
                status_to=StackRunStatus.PENDING,
                details={"parent_stack_run_id": stack_run_id, "call": call.label},
            )
            session.commit()
            session.refresh(child)
            return _to_stack_run_view(child)

    def find_waiter(self, stack_run_id: str) -> StackRunView | None:
        """Return the stack run suspended on the given child, if any."""

        with Session(self.engine) as session:
            row = session.exec(
                select(StackRun).where(StackRun.waiting_on_stack_run_id == stack_run_id),
            ).one_or_none()
        return _to_stack_run_view(row) if row is not None else None

    def resume(
        self,
        *,
        parent_stack_run_id: str,
        child_stack_run_id: str,
        payload: dict[str, Any],
    ) -> bool:
        """Make a suspended parent pending again with the child's outcome attached."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            parent = session.get(StackRun, parent_stack_run_id)
            if parent is None:
                return False
            result = session.exec(
                sa_update(StackRun)
                .where(
                    col(StackRun.id) == parent_stack_run_id,
                    col(StackRun.status) == StackRunStatus.SUSPENDED_WAITING_CHILD.value,
                    col(StackRun.waiting_on_stack_run_id) == child_stack_run_id,
                )
                .values(
                    status=StackRunStatus.PENDING.value,
                    resume_payload_json=dump_json(payload),
                    waiting_on_stack_run_id=None,
                    updated_at=now,
                    reconcile_attempts=0,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False

            session.exec(
                sa_update(TaskRun)
                .where(
                    col(TaskRun.id) == parent.parent_task_run_id,
                    col(TaskRun.status).in_(ACTIVE_TASK_RUN_STATUSES),
                )
                .values(
                    status=TaskRunStatus.PROCESSING.value,
                    waiting_on_stack_run_id=None,
                    resumed_at=now,
                    updated_at=now,
                ),
            )
            self._add_event(
                session=session,
                stack_run_id=parent_stack_run_id,
                task_run_id=parent.parent_task_run_id,
                event_type="resumed",
                status_from=StackRunStatus.SUSPENDED_WAITING_CHILD,
                status_to=StackRunStatus.PENDING,
                details={
                    "child_stack_run_id": child_stack_run_id,
                    "child_status": payload.get("status"),
                },
            )
            session.commit()
            return True

    def finish_task_run(
        self,
        task_run_id: str,
        *,
        status: TaskRunStatus,
        result: Any = None,
        error: dict[str, Any] | None = None,
    ) -> bool:
        """Write the terminal outcome of a task run. No-op once terminal."""

        if not status.is_terminal:
            raise ValueError(f"Unsupported terminal status: {status.value}")

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = session.get(TaskRun, task_run_id)
            if row is None:
                return False
            update_result = session.exec(
                sa_update(TaskRun)
                .where(
                    col(TaskRun.id) == task_run_id,
                    col(TaskRun.status).in_(ACTIVE_TASK_RUN_STATUSES),
                )
                .values(
                    status=status.value,
                    result_json=dump_json(result) if status == TaskRunStatus.COMPLETED else None,
                    error_json=dump_json(error) if error is not None else None,
                    waiting_on_stack_run_id=None,
                    ended_at=now,
                    updated_at=now,
                ),
            )
            if update_result.rowcount != 1:
                session.rollback()
                return False
            if row.root_stack_run_id is not None:
                self._add_event(
                    session=session,
                    stack_run_id=row.root_stack_run_id,
                    task_run_id=task_run_id,
                    event_type="task_run_finished",
                    status_from=None,
                    status_to=None,
                    details={"status": status.value},
                )
            session.commit()
            return True

    def request_cancel(self, task_run_id: str) -> TaskRunView:
        """Flag a task run for cancellation at its next claim."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = session.get(TaskRun, task_run_id)
            if row is None:
                raise TaskRunNotFoundError(task_run_id)
            if TaskRunStatus(row.status).is_terminal:
                raise InvalidTransitionError(
                    f"Task run cannot be cancelled from status={row.status}",
                )
            result = session.exec(
                sa_update(TaskRun)
                .where(
                    col(TaskRun.id) == task_run_id,
                    col(TaskRun.status).in_(ACTIVE_TASK_RUN_STATUSES),
                )
                .values(cancel_requested=True, updated_at=now),
            )
            if result.rowcount != 1:
                session.rollback()
                raise InvalidTransitionError(
                    "Task run state changed concurrently while cancelling; "
                    f"please retry (task_run_id={task_run_id}).",
                )
            if row.root_stack_run_id is not None:
                self._add_event(
                    session=session,
                    stack_run_id=row.root_stack_run_id,
                    task_run_id=task_run_id,
                    event_type="cancel_requested",
                    status_from=None,
                    status_to=None,
                    details={},
                )
            session.commit()
            session.refresh(row)
            return _to_task_run_view(row)

    def requeue(self, stack_run_id: str) -> bool:
        """Return a stale processing stack run to pending."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = session.get(StackRun, stack_run_id)
            if row is None:
                return False
            attempts = row.reconcile_attempts
            result = session.exec(
                sa_update(StackRun)
                .where(
                    col(StackRun.id) == stack_run_id,
                    col(StackRun.status) == StackRunStatus.PROCESSING.value,
                )
                .values(
                    status=StackRunStatus.PENDING.value,
                    reconcile_attempts=col(StackRun.reconcile_attempts) + 1,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                stack_run_id=stack_run_id,
                task_run_id=row.parent_task_run_id,
                event_type="requeued",
                status_from=StackRunStatus.PROCESSING,
                status_to=StackRunStatus.PENDING,
                details={"reconcile_attempts": attempts + 1},
            )
            session.commit()
            return True

    def mark_retriggered(self, stack_run_id: str, *, expected_status: StackRunStatus) -> bool:
        """Record a reconciler re-trigger and refresh liveness."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = session.get(StackRun, stack_run_id)
            if row is None:
                return False
            attempts = row.reconcile_attempts
            result = session.exec(
                sa_update(StackRun)
                .where(
                    col(StackRun.id) == stack_run_id,
                    col(StackRun.status) == expected_status.value,
                )
                .values(
                    reconcile_attempts=col(StackRun.reconcile_attempts) + 1,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                stack_run_id=stack_run_id,
                task_run_id=row.parent_task_run_id,
                event_type="retriggered",
                status_from=expected_status,
                status_to=expected_status,
                details={"reconcile_attempts": attempts + 1},
            )
            session.commit()
            return True

    def list_stale_stack_runs(
        self,
        *,
        stale_before: datetime,
        statuses: Iterable[StackRunStatus],
        limit: int = 100,
    ) -> list[StackRunView]:
        """List non-terminal stack runs not updated since `stale_before`."""

        status_values = [status.value for status in statuses]
        with Session(self.engine) as session:
            rows = session.exec(
                select(StackRun)
                .where(
                    col(StackRun.status).in_(status_values),
                    col(StackRun.updated_at) < to_db_datetime(stale_before),
                )
                .order_by(col(StackRun.updated_at).asc())
                .limit(limit),
            ).all()
        return [_to_stack_run_view(row) for row in rows]

    def list_stale_waiting_parents(
        self,
        *,
        stale_before: datetime,
        limit: int = 100,
    ) -> list[StackRunView]:
        """List stale suspended parents whose child is finished or missing.

        Parents still waiting on a live child are left out, however old.
        """

        child = aliased(StackRun)
        with Session(self.engine) as session:
            rows = session.exec(
                select(StackRun)
                .where(
                    col(StackRun.status) == StackRunStatus.SUSPENDED_WAITING_CHILD.value,
                    col(StackRun.updated_at) < to_db_datetime(stale_before),
                    ~select(1)
                    .where(
                        child.id == StackRun.waiting_on_stack_run_id,
                        child.status.not_in(TERMINAL_STACK_RUN_STATUSES),
                    )
                    .exists(),
                )
                .order_by(col(StackRun.updated_at).asc())
                .limit(limit),
            ).all()
        return [_to_stack_run_view(row) for row in rows]

    def list_task_runs_with_finished_root(self, *, limit: int = 100) -> list[TaskRunView]:
        """Active task runs whose root stack run already reached a terminal status."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskRun)
                .join(StackRun, col(StackRun.id) == col(TaskRun.root_stack_run_id))
                .where(
                    col(TaskRun.status).in_(ACTIVE_TASK_RUN_STATUSES),
                    col(StackRun.status).in_(TERMINAL_STACK_RUN_STATUSES),
                )
                .order_by(col(TaskRun.updated_at).asc())
                .limit(limit),
            ).all()
        return [_to_task_run_view(row) for row in rows]

    def get_task_run(self, task_run_id: str) -> TaskRunView | None:
        with Session(self.engine) as session:
            row = session.get(TaskRun, task_run_id)
        return _to_task_run_view(row) if row is not None else None

    def get_stack_run(self, stack_run_id: str) -> StackRunView | None:
        with Session(self.engine) as session:
            row = session.get(StackRun, stack_run_id)
        return _to_stack_run_view(row) if row is not None else None

    def list_stack_runs(self, task_run_id: str) -> list[StackRunView]:
        """All stack runs of one task run, oldest first."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(StackRun)
                .where(StackRun.parent_task_run_id == task_run_id)
                .order_by(col(StackRun.created_at).asc()),
            ).all()
        return [_to_stack_run_view(row) for row in rows]

    def list_events(
        self,
        *,
        task_run_id: str | None = None,
        stack_run_id: str | None = None,
    ) -> list[StackRunEventView]:
        with Session(self.engine) as session:
            statement = select(StackRunEvent).order_by(col(StackRunEvent.id).asc())
            if task_run_id is not None:
                statement = statement.where(StackRunEvent.task_run_id == task_run_id)
            if stack_run_id is not None:
                statement = statement.where(StackRunEvent.stack_run_id == stack_run_id)
            rows = session.exec(statement).all()
        return [_to_event_view(row) for row in rows]

    def list_task_runs(
        self,
        *,
        status: TaskRunStatus | None = None,
        limit: int = 50,
    ) -> list[TaskRunView]:
        """List recent task runs, optionally filtered by status."""

        with Session(self.engine) as session:
            statement = select(TaskRun).order_by(col(TaskRun.created_at).desc()).limit(limit)
            if status is not None:
                statement = statement.where(TaskRun.status == status.value)
            rows = session.exec(statement).all()
        return [_to_task_run_view(row) for row in rows]

    def get_task_run_details(self, task_run_id: str) -> TaskRunDetails | None:
        """Return a task run with its stack runs and event stream."""

        task_run = self.get_task_run(task_run_id)
        if task_run is None:
            return None
        return TaskRunDetails(
            task_run=task_run,
            stack_runs=self.list_stack_runs(task_run_id),
            events=self.list_events(task_run_id=task_run_id),
        )

    def acquire_lock(
        self,
        lock_key: str,
        *,
        owner_id: str,
        ttl_seconds: float,
        now: datetime | None = None,
    ) -> bool:
        """Take a short-lived named lock unless another owner holds it unexpired."""

        current = to_db_datetime(now or utc_now())
        expires_at = current + timedelta(seconds=ttl_seconds)
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(RunLock)
                .where(
                    col(RunLock.lock_key) == lock_key,
                    or_(
                        col(RunLock.owner_id) == owner_id,
                        col(RunLock.expires_at) <= current,
                    ),
                )
                .values(owner_id=owner_id, acquired_at=current, expires_at=expires_at),
            )
            if result.rowcount == 1:
                session.commit()
                return True
            session.rollback()

            if session.get(RunLock, lock_key) is not None:
                return False
            session.add(
                RunLock(
                    lock_key=lock_key,
                    owner_id=owner_id,
                    acquired_at=current,
                    expires_at=expires_at,
                ),
            )
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return False
            return True

    def release_lock(self, lock_key: str, *, owner_id: str) -> bool:
        with Session(self.engine) as session:
            result = session.exec(
                sa_delete(RunLock).where(
                    col(RunLock.lock_key) == lock_key,
                    col(RunLock.owner_id) == owner_id,
                ),
            )
            session.commit()
            return result.rowcount == 1

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        stack_run_id: str,
        task_run_id: str,
        event_type: str,
        status_from: StackRunStatus | None,
        status_to: StackRunStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            StackRunEvent(
                stack_run_id=stack_run_id,
                task_run_id=task_run_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
                created_at=to_db_datetime(utc_now()),
            ),
        )


def _load_json(value: str | None) -> Any:
    if value is None:
        return None
    return json.loads(value)


def _optional_datetime(value: datetime | None) -> datetime | None:
    return to_utc_aware_datetime(value) if value is not None else None


def _to_task_run_view(row: TaskRun) -> TaskRunView:
    return TaskRunView(
        id=row.id,
        task_id=row.task_id,
        input=_load_json(row.input_json),
        status=TaskRunStatus(row.status),
        result=_load_json(row.result_json),
        error=_load_json(row.error_json),
        waiting_on_stack_run_id=row.waiting_on_stack_run_id,
        root_stack_run_id=row.root_stack_run_id,
        cancel_requested=bool(row.cancel_requested),
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
        suspended_at=_optional_datetime(row.suspended_at),
        resumed_at=_optional_datetime(row.resumed_at),
        ended_at=_optional_datetime(row.ended_at),
    )


def _to_stack_run_view(row: StackRun) -> StackRunView:
    return StackRunView(
        id=row.id,
        parent_stack_run_id=row.parent_stack_run_id,
        parent_task_run_id=row.parent_task_run_id,
        service_name=row.service_name,
        method_name=row.method_name,
        args=_load_json(row.args_json),
        status=StackRunStatus(row.status),
        result=_load_json(row.result_json),
        error=_load_json(row.error_json),
        continuation=bytes(row.continuation) if row.continuation is not None else None,
        resume_payload=_load_json(row.resume_payload_json),
        waiting_on_stack_run_id=row.waiting_on_stack_run_id,
        generation=row.generation,
        reconcile_attempts=row.reconcile_attempts,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
        ended_at=_optional_datetime(row.ended_at),
    )


def _to_event_view(row: StackRunEvent) -> StackRunEventView:
    return StackRunEventView(
        id=row.id or 0,
        stack_run_id=row.stack_run_id,
        task_run_id=row.task_run_id,
        event_type=row.event_type,
        status_from=StackRunStatus(row.status_from) if row.status_from else None,
        status_to=StackRunStatus(row.status_to) if row.status_to else None,
        details=json.loads(row.details_json) if row.details_json else {},
        created_at=to_utc_aware_datetime(row.created_at),
    )
