"""FastAPI app: task submission, status, processor trigger and inspection."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

from fastapi import BackgroundTasks, FastAPI, HTTPException, Request

from stackrun import __version__
from stackrun.api.schemas import (
    ExecuteTaskRequest,
    ExecuteTaskResponse,
    TriggerRequest,
    TriggerResponse,
    details_payload,
)
from stackrun.config import Settings
from stackrun.engine.errors import (
    InvalidTransitionError,
    TaskRunNotFoundError,
    UnknownTaskError,
)
from stackrun.runtime import Runtime, build_runtime


def create_app(
    *,
    settings: Settings | None = None,
    runtime: Runtime | None = None,
) -> FastAPI:
    """Build the API app.

    With an explicit `runtime` the app uses it as-is and never closes it.
    Otherwise the runtime is built from settings on startup and closed on
    shutdown.
    """

    resolved_settings = runtime.settings if runtime is not None else settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if not hasattr(app.state, "runtime"):
            app.state.runtime = build_runtime(resolved_settings)
            try:
                yield
            finally:
                app.state.runtime.close()
            return
        yield

    app = FastAPI(title="stackrun", version=__version__, lifespan=lifespan)
    if runtime is not None:
        app.state.runtime = runtime

    def _runtime(request: Request) -> Runtime:
        if not hasattr(request.app.state, "runtime"):
            request.app.state.runtime = build_runtime(resolved_settings)
        return request.app.state.runtime

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": "stackrun", "version": __version__}

    @app.get("/tasks/list")
    def list_tasks(request: Request) -> dict[str, list[dict[str, str]]]:
        definitions = _runtime(request).service.list_tasks()
        return {
            "tasks": [
                {"name": definition.name, "description": definition.description}
                for definition in definitions
            ],
        }

    @app.post("/tasks/execute", status_code=202, response_model=ExecuteTaskResponse)
    def execute_task(
        payload: ExecuteTaskRequest,
        request: Request,
        background_tasks: BackgroundTasks,
    ) -> ExecuteTaskResponse:
        runtime_ = _runtime(request)
        try:
            task_run = runtime_.service.submit(payload.task_id, payload.input, fire=False)
        except UnknownTaskError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        if task_run.root_stack_run_id is not None:
            background_tasks.add_task(runtime_.kick, task_run.root_stack_run_id)
        return ExecuteTaskResponse(task_run_id=task_run.id)

    @app.get("/tasks/status/{task_run_id}")
    def task_status(task_run_id: str, request: Request) -> dict[str, Any]:
        try:
            return _runtime(request).service.status(task_run_id).to_dict()
        except TaskRunNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @app.post("/tasks/{task_run_id}/cancel", status_code=202)
    def cancel_task(task_run_id: str, request: Request) -> dict[str, Any]:
        try:
            task_run = _runtime(request).service.cancel(task_run_id)
        except TaskRunNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except InvalidTransitionError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return {"taskRunId": task_run.id, "cancelRequested": task_run.cancel_requested}

    @app.get("/tasks/runs/{task_run_id}/stack-runs")
    def task_stack_runs(task_run_id: str, request: Request) -> dict[str, Any]:
        try:
            details = _runtime(request).service.inspect(task_run_id)
        except TaskRunNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return details_payload(details)

    @app.post(resolved_settings.processor.path, status_code=202, response_model=TriggerResponse)
    def stack_processor(
        payload: TriggerRequest,
        request: Request,
        background_tasks: BackgroundTasks,
    ) -> TriggerResponse:
        background_tasks.add_task(_runtime(request).process, payload.stack_run_id)
        return TriggerResponse(accepted=True)

    @app.post("/reconcile")
    def reconcile(request: Request, background_tasks: BackgroundTasks) -> dict[str, int]:
        runtime_ = _runtime(request)
        summary = runtime_.reconciler.sweep()
        if runtime_.local:
            background_tasks.add_task(runtime_.drain)
        return asdict(summary)

    return app
