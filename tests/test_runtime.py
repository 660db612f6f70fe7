from __future__ import annotations

import json
import logging
from pathlib import Path

import allure
import pytest

from stackrun.config import ProcessorSettings, RegistrySettings, Settings
from stackrun.engine.adapters import HttpServiceAdapter
from stackrun.engine.errors import TaskRunNotFoundError, UnknownTaskError
from stackrun.engine.models import TaskRunStatus
from stackrun.engine.triggers import HttpTrigger, LocalTrigger
from stackrun.logging_setup import JsonFormatter
from stackrun.runtime import Runtime, build_runtime, open_runtime

pytestmark = [
    allure.epic("Operations"),
    allure.feature("Runtime Wiring"),
]


def test_default_runtime_loads_demo_tasks_and_uses_local_trigger(tmp_path: Path) -> None:
    with open_runtime(Settings(db_path=tmp_path / "rt.db")) as runtime:
        assert runtime.local
        assert isinstance(runtime.trigger, LocalTrigger)
        assert runtime.tasks.has("demo.pipeline")
        assert runtime.services.has("echo")

        task_run = runtime.service.submit("demo.shout", {"text": "suspend and resume"})
        runtime.drain()

        assert runtime.service.status(task_run.id).result == {"text": "SUSPEND AND RESUME"}


def test_endpoint_and_service_urls_select_http_transports(tmp_path: Path) -> None:
    settings = Settings(
        db_path=tmp_path / "rt.db",
        processor=ProcessorSettings(endpoint="http://127.0.0.1:9/stack-processor"),
        registry=RegistrySettings(
            task_modules=(),
            service_urls={"billing": "http://127.0.0.1:9/billing"},
        ),
    )

    runtime = build_runtime(settings, init_schema=False)
    try:
        assert isinstance(runtime.trigger, HttpTrigger)
        assert not runtime.local
        assert isinstance(runtime.services.get("billing"), HttpServiceAdapter)
        assert runtime.drain() == 0
    finally:
        runtime.close()


def test_task_service_rejects_unknown_task_and_run(runtime: Runtime) -> None:
    with pytest.raises(UnknownTaskError):
        runtime.service.submit("nope")
    with pytest.raises(TaskRunNotFoundError):
        runtime.service.status("missing")
    with pytest.raises(TaskRunNotFoundError):
        runtime.service.inspect("missing")


def test_submit_returns_before_processing(runtime: Runtime) -> None:
    task_run = runtime.service.submit("square", {"x": 9})

    assert task_run.status == TaskRunStatus.QUEUED
    assert runtime.trigger.pending == [task_run.root_stack_run_id]  # type: ignore[attr-defined]
    assert runtime.service.list_task_runs(status=TaskRunStatus.QUEUED)[0].id == task_run.id


def test_json_formatter_includes_extra_fields() -> None:
    record = logging.LogRecord("stackrun.test", logging.INFO, __file__, 1, "hello %s", ("x",), None)
    record.stack_run_id = "run-1"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "hello x"
    assert payload["level"] == "INFO"
    assert payload["extra"] == {"stack_run_id": "run-1"}
