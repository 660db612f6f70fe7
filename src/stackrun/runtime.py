"""Wiring of repository, registries, trigger, processor and reconciler."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from stackrun.config import Settings
from stackrun.engine.adapters import HttpServiceAdapter
from stackrun.engine.executor import ReplayExecutor
from stackrun.engine.processor import ProcessReport, StackProcessor
from stackrun.engine.reconciler import Reconciler
from stackrun.engine.registry import (
    ServiceRegistry,
    TaskRegistry,
    default_services,
    default_tasks,
    load_task_modules,
)
from stackrun.engine.repository import RunRepository
from stackrun.engine.services import TaskService
from stackrun.engine.triggers import HttpTrigger, LocalTrigger, Trigger

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Runtime:
    """Everything one process needs to accept, drive and repair task runs."""

    settings: Settings
    repository: RunRepository
    tasks: TaskRegistry
    services: ServiceRegistry
    trigger: Trigger
    processor: StackProcessor
    reconciler: Reconciler
    service: TaskService
    _closeables: list[object] = field(default_factory=list)

    @property
    def local(self) -> bool:
        return isinstance(self.trigger, LocalTrigger)

    def process(self, stack_run_id: str) -> ProcessReport:
        """Run one processing step, then drain in-process follow-ups."""

        report = self.processor.process(stack_run_id)
        self.drain()
        return report

    def kick(self, stack_run_id: str) -> int:
        """Fire the trigger for a run and drain in-process follow-ups."""

        self.trigger.fire(stack_run_id)
        return self.drain()

    def drain(self) -> int:
        if not isinstance(self.trigger, LocalTrigger):
            return 0
        return self.trigger.drain(
            self.processor.process,
            max_steps=self.settings.processor.drive_max_steps,
        )

    def close(self) -> None:
        for closeable in self._closeables:
            close = getattr(closeable, "close", None)
            if close is not None:
                close()
        self.repository.close()


def build_runtime(
    settings: Settings,
    *,
    tasks: TaskRegistry | None = None,
    services: ServiceRegistry | None = None,
    trigger: Trigger | None = None,
    init_schema: bool = True,
) -> Runtime:
    """Build a runtime from settings; explicit registries and trigger win."""

    closeables: list[object] = []
    if tasks is None:
        load_task_modules(settings.registry.task_modules)
        tasks = default_tasks
    if services is None:
        services = default_services.copy()
    for name, url in settings.registry.service_urls.items():
        adapter = HttpServiceAdapter(url, timeout_seconds=settings.registry.service_timeout_seconds)
        services.register(name, adapter)
        closeables.append(adapter)

    if trigger is None:
        trigger = _build_trigger(settings)
        closeables.append(trigger)

    repository = RunRepository(settings.db_path, busy_timeout_ms=settings.sqlite_busy_timeout_ms)
    if init_schema:
        repository.init_schema()

    processor = StackProcessor(
        repository=repository,
        executor=ReplayExecutor(tasks=tasks, services=services),
        trigger=trigger,
    )
    reconciler = Reconciler(
        repository=repository,
        processor=processor,
        trigger=trigger,
        stale_after_seconds=settings.reconciler.stale_after_seconds,
        max_attempts=settings.reconciler.max_attempts,
        batch_size=settings.reconciler.batch_size,
        lock_ttl_seconds=settings.reconciler.lock_ttl_seconds,
    )
    return Runtime(
        settings=settings,
        repository=repository,
        tasks=tasks,
        services=services,
        trigger=trigger,
        processor=processor,
        reconciler=reconciler,
        service=TaskService(repository=repository, tasks=tasks, trigger=trigger),
        _closeables=closeables,
    )


@contextmanager
def open_runtime(settings: Settings, **kwargs: object) -> Iterator[Runtime]:
    runtime = build_runtime(settings, **kwargs)  # type: ignore[arg-type]
    try:
        yield runtime
    finally:
        runtime.close()


def _build_trigger(settings: Settings) -> Trigger:
    if not settings.processor.endpoint:
        return LocalTrigger()
    logger.info("Using HTTP trigger endpoint %s", settings.processor.endpoint)
    return HttpTrigger(
        settings.processor.endpoint,
        timeout_seconds=settings.processor.trigger_timeout_seconds,
        max_retries=settings.processor.trigger_max_retries,
        retry_backoff_seconds=settings.processor.trigger_retry_backoff_seconds,
    )
