from __future__ import annotations

import allure
import pytest
from fastapi.testclient import TestClient

from stackrun.api.app import create_app
from stackrun.runtime import Runtime

pytestmark = [
    allure.epic("Task API"),
    allure.feature("HTTP Endpoints"),
]


@pytest.fixture()
def client(runtime: Runtime) -> TestClient:
    return TestClient(create_app(runtime=runtime))


def test_health(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_list_tasks(client: TestClient) -> None:
    response = client.get("/tasks/list")

    assert response.status_code == 200
    names = [task["name"] for task in response.json()["tasks"]]
    assert "square" in names
    assert names == sorted(names)


def test_execute_returns_task_run_id_and_processes_in_background(client: TestClient) -> None:
    response = client.post("/tasks/execute", json={"taskId": "echo_once", "input": [1, 2]})

    assert response.status_code == 202
    task_run_id = response.json()["taskRunId"]

    status = client.get(f"/tasks/status/{task_run_id}")
    assert status.status_code == 200
    assert status.json() == {"status": "completed", "result": {"echoed": [1, 2]}}


@pytest.mark.parametrize("field", ["taskId", "task_id", "id", "name"])
def test_execute_accepts_task_id_aliases(client: TestClient, field: str) -> None:
    response = client.post("/tasks/execute", json={field: "square", "input": {"x": 2}})

    assert response.status_code == 202


def test_execute_unknown_task_is_404(client: TestClient) -> None:
    response = client.post("/tasks/execute", json={"taskId": "nope"})

    assert response.status_code == 404
    assert "Unknown task: nope" in response.json()["detail"]


def test_execute_requires_task_id(client: TestClient) -> None:
    response = client.post("/tasks/execute", json={"input": 1})

    assert response.status_code == 422


def test_status_of_failed_run_exposes_error(client: TestClient) -> None:
    task_run_id = client.post(
        "/tasks/execute",
        json={"taskId": "explode", "input": {"message": "E"}},
    ).json()["taskRunId"]

    body = client.get(f"/tasks/status/{task_run_id}").json()

    assert body["status"] == "failed"
    assert "result" not in body
    assert body["error"]["kind"] == "child_failed"
    assert body["error"]["cause"]["message"] == "E"


def test_status_of_unknown_run_is_404(client: TestClient) -> None:
    assert client.get("/tasks/status/missing").status_code == 404


def test_cancel_endpoint(client: TestClient, runtime: Runtime) -> None:
    pending = runtime.service.submit("square", {"x": 1}, fire=False)

    accepted = client.post(f"/tasks/{pending.id}/cancel")
    assert accepted.status_code == 202
    assert accepted.json() == {"taskRunId": pending.id, "cancelRequested": True}

    runtime.kick(pending.root_stack_run_id)  # type: ignore[arg-type]
    assert client.post(f"/tasks/{pending.id}/cancel").status_code == 409
    assert client.post("/tasks/missing/cancel").status_code == 404


def test_stack_processor_endpoint_runs_one_step_and_follow_ups(
    client: TestClient,
    runtime: Runtime,
) -> None:
    task_run = runtime.service.submit("add_then_double", {"a": 2, "b": 2}, fire=False)

    response = client.post(
        "/stack-processor",
        json={"stackRunId": task_run.root_stack_run_id},
    )

    assert response.status_code == 202
    assert response.json() == {"accepted": True}
    assert client.get(f"/tasks/status/{task_run.id}").json() == {
        "status": "completed",
        "result": 8,
    }


def test_stack_processor_ignores_unknown_ids(client: TestClient) -> None:
    response = client.post("/stack-processor", json={"stackRunId": "missing"})

    assert response.status_code == 202


def test_stack_runs_endpoint_returns_tree_and_events(client: TestClient) -> None:
    task_run_id = client.post(
        "/tasks/execute",
        json={"taskId": "echo_once", "input": "hi"},
    ).json()["taskRunId"]

    body = client.get(f"/tasks/runs/{task_run_id}/stack-runs").json()

    assert body["taskRun"]["id"] == task_run_id
    assert body["taskRun"]["status"] == "completed"
    assert [run["serviceName"] for run in body["stackRuns"]] == ["tasks", "echo"]
    assert body["stackRuns"][1]["parentStackRunId"] == body["stackRuns"][0]["id"]
    assert body["events"][0]["eventType"] == "created"
    assert client.get("/tasks/runs/missing/stack-runs").status_code == 404


def test_reconcile_endpoint_reports_summary(client: TestClient) -> None:
    response = client.post("/reconcile")

    assert response.status_code == 200
    assert set(response.json()) == {
        "scanned",
        "retriggered",
        "requeued",
        "failed",
        "repropagated",
        "finalized",
        "locked",
    }
