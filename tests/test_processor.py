from __future__ import annotations

import queue
import threading

import allure

from stackrun.engine.models import StackRunStatus, TaskRunStatus
from stackrun.engine.processor import ProcessAction, ProcessReport, PropagationAction
from stackrun.runtime import Runtime

pytestmark = [
    allure.epic("Execution"),
    allure.feature("Stack Processor"),
]


def _statuses_seen(runtime: Runtime, stack_run_id: str) -> list[str]:
    return [
        event.status_to.value
        for event in runtime.repository.list_events(stack_run_id=stack_run_id)
        if event.status_to is not None
    ]


def test_task_without_calls_completes_in_exactly_one_step(runtime: Runtime) -> None:
    task_run = runtime.service.submit("square", {"x": 1})

    steps = runtime.drain()

    assert steps == 1
    status = runtime.service.status(task_run.id)
    assert status.status == TaskRunStatus.COMPLETED
    assert status.to_dict() == {"status": "completed", "result": {"y": 1}}
    assert len(runtime.repository.list_stack_runs(task_run.id)) == 1


def test_single_external_call_suspends_then_completes(runtime: Runtime) -> None:
    task_run = runtime.service.submit("echo_once", {"hello": "world"})

    runtime.drain()

    stack_runs = runtime.repository.list_stack_runs(task_run.id)
    assert len(stack_runs) == 2
    root, child = stack_runs
    assert root.is_root
    assert child.parent_stack_run_id == root.id
    assert (child.service_name, child.method_name) == ("echo", "echo")
    assert child.status == StackRunStatus.COMPLETED
    assert child.result == {"hello": "world"}
    assert _statuses_seen(runtime, root.id) == [
        "pending",
        "processing",
        "suspended_waiting_child",
        "pending",
        "processing",
        "completed",
    ]
    status = runtime.service.status(task_run.id)
    assert status.status == TaskRunStatus.COMPLETED
    assert status.result == {"echoed": {"hello": "world"}}

    stored = runtime.repository.get_task_run(task_run.id)
    assert stored is not None
    assert stored.suspended_at is not None
    assert stored.resumed_at is not None
    assert stored.ended_at is not None


def test_failed_external_call_fails_parent_and_task_run(runtime: Runtime) -> None:
    task_run = runtime.service.submit("explode", {"message": "E"})

    runtime.drain()

    root, child = runtime.repository.list_stack_runs(task_run.id)
    assert child.status == StackRunStatus.FAILED
    assert child.error is not None
    assert child.error["kind"] == "service_error"
    assert child.error["message"] == "E"
    assert child.error["code"] == "boom"
    assert root.status == StackRunStatus.FAILED
    assert root.error is not None
    assert root.error["kind"] == "child_failed"
    assert root.error["cause"] == child.error

    status = runtime.service.status(task_run.id)
    assert status.status == TaskRunStatus.FAILED
    assert status.error is not None
    assert "E" in status.error["message"]
    assert child.id in status.error["message"]
    assert "result" not in status.to_dict()


def test_unstorable_task_result_fails_the_run(runtime: Runtime) -> None:
    task_run = runtime.service.submit("mixed_keys")

    steps = runtime.drain()

    assert steps == 1
    (root,) = runtime.repository.list_stack_runs(task_run.id)
    assert root.status == StackRunStatus.FAILED
    assert root.error is not None
    assert root.error["kind"] == "task_error"
    assert "not JSON-serializable" in root.error["message"]
    status = runtime.service.status(task_run.id)
    assert status.status == TaskRunStatus.FAILED
    assert status.error == root.error


def test_completed_result_matches_what_the_store_returns(runtime: Runtime) -> None:
    task_run = runtime.service.submit("int_keys")

    runtime.drain()

    status = runtime.service.status(task_run.id)
    assert status.status == TaskRunStatus.COMPLETED
    assert status.result == {"counts": {"1": "one", "2": "two"}}


def test_concurrent_triggers_for_one_pending_run_claim_once(runtime: Runtime) -> None:
    task_run = runtime.service.submit("square", {"x": 2}, fire=False)
    root_id = task_run.root_stack_run_id
    assert root_id is not None
    start_event = threading.Event()
    reports: queue.Queue[ProcessReport] = queue.Queue()

    def _deliver() -> None:
        start_event.wait(timeout=2)
        reports.put(runtime.processor.process(root_id))

    workers = [threading.Thread(target=_deliver) for _ in range(4)]
    for worker in workers:
        worker.start()
    start_event.set()
    for worker in workers:
        worker.join(timeout=10)

    actions = [reports.get_nowait().action for _ in workers]
    assert actions.count(ProcessAction.COMPLETED) == 1
    assert actions.count(ProcessAction.SKIPPED) == 3
    assert runtime.service.status(task_run.id).result == {"y": 4}


def test_duplicate_trigger_after_completion_is_a_noop(runtime: Runtime) -> None:
    task_run = runtime.service.submit("square", {"x": 3})
    runtime.drain()
    root_id = task_run.root_stack_run_id
    assert root_id is not None

    report = runtime.processor.process(root_id)

    assert report.action == ProcessAction.SKIPPED
    assert runtime.service.status(task_run.id).result == {"y": 9}


def test_unknown_stack_run_trigger_reports_not_found(runtime: Runtime) -> None:
    assert runtime.processor.process("missing").action == ProcessAction.NOT_FOUND


def test_sequential_calls_each_get_their_own_child(runtime: Runtime) -> None:
    task_run = runtime.service.submit("add_then_double", {"a": 1, "b": 2})

    runtime.drain()

    stack_runs = runtime.repository.list_stack_runs(task_run.id)
    root = stack_runs[0]
    children = stack_runs[1:]
    assert [child.method_name for child in children] == ["add", "mul"]
    assert all(child.parent_stack_run_id == root.id for child in children)
    assert children[0].ended_at is not None
    assert children[0].ended_at <= children[1].created_at
    assert runtime.service.status(task_run.id).result == 6


def test_nested_task_runs_as_child_task_slice(runtime: Runtime) -> None:
    task_run = runtime.service.submit("nested", {"a": 2, "b": 3})

    runtime.drain()

    status = runtime.service.status(task_run.id)
    assert status.status == TaskRunStatus.COMPLETED
    assert status.result == {"inner": 10, "echoed": 10}

    stack_runs = {run.id: run for run in runtime.repository.list_stack_runs(task_run.id)}
    nested_slices = [run for run in stack_runs.values() if run.is_task_slice and not run.is_root]
    assert len(nested_slices) == 1
    nested_slice = nested_slices[0]
    grandchildren = [
        run for run in stack_runs.values() if run.parent_stack_run_id == nested_slice.id
    ]
    assert [run.method_name for run in grandchildren] == ["add", "mul"]
    # One root per task run; every other run hangs off a parent in the same tree.
    roots = [run for run in stack_runs.values() if run.parent_stack_run_id is None]
    assert len(roots) == 1
    assert all(
        run.parent_stack_run_id in stack_runs
        for run in stack_runs.values()
        if run.parent_stack_run_id is not None
    )


def test_suspended_parent_waits_on_exactly_one_child(runtime: Runtime) -> None:
    task_run = runtime.service.submit("add_then_double", {"a": 1, "b": 1}, fire=False)
    root_id = task_run.root_stack_run_id
    assert root_id is not None

    report = runtime.processor.process(root_id)

    assert report.action == ProcessAction.SUSPENDED
    assert report.child_stack_run_id is not None
    assert runtime.trigger.pending == [report.child_stack_run_id]  # type: ignore[attr-defined]
    root = runtime.repository.get_stack_run(root_id)
    assert root is not None
    assert root.waiting_on_stack_run_id == report.child_stack_run_id
    status = runtime.service.status(task_run.id)
    assert status.status == TaskRunStatus.SUSPENDED
    assert status.to_dict()["waitingOnStackRunId"] == report.child_stack_run_id

    child_report = runtime.processor.process(report.child_stack_run_id)
    assert child_report.action == ProcessAction.COMPLETED
    assert child_report.propagation == PropagationAction.RESUMED_PARENT


def test_cancellation_fails_run_at_next_claim(runtime: Runtime) -> None:
    task_run = runtime.service.submit("add_then_double", {"a": 1, "b": 1}, fire=False)
    root_id = task_run.root_stack_run_id
    assert root_id is not None
    suspended = runtime.processor.process(root_id)
    assert suspended.child_stack_run_id is not None

    runtime.service.cancel(task_run.id)
    runtime.drain()

    child = runtime.repository.get_stack_run(suspended.child_stack_run_id)
    assert child is not None
    assert child.status == StackRunStatus.FAILED
    assert child.error is not None
    assert child.error["kind"] == "cancelled"
    status = runtime.service.status(task_run.id)
    assert status.status == TaskRunStatus.FAILED
    assert status.error is not None
    assert status.error["kind"] == "cancelled"


def test_corrupt_continuation_fails_task_run(runtime: Runtime) -> None:
    task_run = runtime.service.submit("echo_once", "payload", fire=False)
    root_id = task_run.root_stack_run_id
    assert root_id is not None
    suspended = runtime.processor.process(root_id)
    assert suspended.child_stack_run_id is not None
    with runtime.repository.engine.begin() as connection:
        connection.exec_driver_sql(
            "UPDATE stack_runs SET continuation = ? WHERE id = ?",
            (b"\x00garbage", root_id),
        )

    runtime.drain()

    status = runtime.service.status(task_run.id)
    assert status.status == TaskRunStatus.FAILED
    assert status.error is not None
    assert status.error["kind"] == "continuation_corrupt"


def test_propagate_is_idempotent(runtime: Runtime) -> None:
    task_run = runtime.service.submit("echo_once", "x")
    runtime.drain()
    root, child = runtime.repository.list_stack_runs(task_run.id)

    assert runtime.processor.propagate(child.id) == PropagationAction.NOOP
    assert runtime.processor.propagate(root.id) == PropagationAction.NOOP
    assert runtime.service.status(task_run.id).result == {"echoed": "x"}


def test_drive_processes_whole_chain(runtime: Runtime) -> None:
    task_run = runtime.service.submit("nested", {"a": 0, "b": 1}, fire=False)
    assert task_run.root_stack_run_id is not None

    steps = runtime.processor.drive(task_run.root_stack_run_id)

    assert steps > 1
    assert runtime.service.status(task_run.id).status == TaskRunStatus.COMPLETED
