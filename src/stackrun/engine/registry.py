"""Registries for task functions and external service adapters."""

from __future__ import annotations

import importlib
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from stackrun.engine.errors import UnknownServiceError, UnknownTaskError
from stackrun.engine.models import TASKS_SERVICE

if TYPE_CHECKING:
    from stackrun.engine.executor import TaskContext

logger = logging.getLogger(__name__)

TaskFunction = Callable[["TaskContext", Any], Any]


@dataclass(slots=True, frozen=True)
class TaskDefinition:
    """Registered task function with its public name."""

    name: str
    fn: TaskFunction
    description: str = ""


class TaskRegistry:
    """Name -> task function mapping used by the executor."""

    def __init__(self) -> None:
        self._tasks: dict[str, TaskDefinition] = {}

    def register(self, name: str, fn: TaskFunction, *, description: str = "") -> TaskDefinition:
        name = name.strip()
        if not name:
            raise ValueError("Task name must be non-empty.")
        existing = self._tasks.get(name)
        if existing is not None and existing.fn is not fn:
            raise ValueError(f"Task already registered: {name}")
        definition = TaskDefinition(name=name, fn=fn, description=description)
        self._tasks[name] = definition
        return definition

    def task(
        self,
        name: str | None = None,
        *,
        description: str | None = None,
    ) -> Callable[[TaskFunction], TaskFunction]:
        """Decorator form of `register`; defaults to the function name and docstring."""

        def decorator(fn: TaskFunction) -> TaskFunction:
            doc = (fn.__doc__ or "").strip().splitlines()
            self.register(
                name or fn.__name__,
                fn,
                description=description if description is not None else (doc[0] if doc else ""),
            )
            return fn

        return decorator

    def get(self, name: str) -> TaskDefinition:
        definition = self._tasks.get(name)
        if definition is None:
            raise UnknownTaskError(name)
        return definition

    def has(self, name: str) -> bool:
        return name in self._tasks

    def definitions(self) -> list[TaskDefinition]:
        return [self._tasks[name] for name in sorted(self._tasks)]


class ServiceAdapter(Protocol):
    """Uniform boundary for every external service."""

    def invoke(self, method: str, args: list[Any]) -> Any: ...


class ServiceRegistry:
    """Service name -> adapter mapping."""

    def __init__(self) -> None:
        self._adapters: dict[str, ServiceAdapter] = {}

    def register(self, name: str, adapter: ServiceAdapter) -> None:
        if name == TASKS_SERVICE:
            raise ValueError(f"Service name {TASKS_SERVICE!r} is reserved for nested tasks.")
        self._adapters[name] = adapter

    def get(self, name: str) -> ServiceAdapter:
        adapter = self._adapters.get(name)
        if adapter is None:
            raise UnknownServiceError(name)
        return adapter

    def has(self, name: str) -> bool:
        return name in self._adapters

    def names(self) -> list[str]:
        return sorted(self._adapters)

    def copy(self) -> ServiceRegistry:
        clone = ServiceRegistry()
        clone._adapters = dict(self._adapters)
        return clone


default_tasks = TaskRegistry()
default_services = ServiceRegistry()
task = default_tasks.task


def load_task_modules(modules: Iterable[str]) -> list[str]:
    """Import modules whose import registers tasks or services."""

    loaded: list[str] = []
    for module_name in modules:
        module_name = module_name.strip()
        if not module_name:
            continue
        importlib.import_module(module_name)
        logger.debug("Loaded task module %s", module_name)
        loaded.append(module_name)
    return loaded
