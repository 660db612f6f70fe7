"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from stackrun.config import Settings
from stackrun.engine.adapters import CallableServiceAdapter
from stackrun.engine.errors import ServiceCallError, ServiceError
from stackrun.engine.registry import ServiceRegistry, TaskRegistry
from stackrun.engine.repository import RunRepository
from stackrun.engine.triggers import LocalTrigger
from stackrun.runtime import Runtime, build_runtime


def _boom(message: str) -> None:
    raise ServiceError(message, code="boom")


@pytest.fixture()
def services() -> ServiceRegistry:
    registry = ServiceRegistry()
    registry.register(
        "echo",
        CallableServiceAdapter({"echo": lambda value: value}),
    )
    registry.register(
        "math",
        CallableServiceAdapter(
            {
                "add": lambda a, b: a + b,
                "mul": lambda a, b: a * b,
                "boom": _boom,
            },
        ),
    )
    return registry


@pytest.fixture()
def tasks() -> TaskRegistry:
    registry = TaskRegistry()

    @registry.task("square")
    def square(ctx, input_value):
        """Square x without external calls."""
        return {"y": input_value["x"] ** 2}

    @registry.task("echo_once")
    def echo_once(ctx, input_value):
        return {"echoed": ctx.call("echo", "echo", input_value)}

    @registry.task("add_then_double")
    def add_then_double(ctx, input_value):
        total = ctx.call("math", "add", input_value["a"], input_value["b"])
        return ctx.call("math", "mul", total, 2)

    @registry.task("explode")
    def explode(ctx, input_value):
        return ctx.call("math", "boom", input_value["message"])

    @registry.task("explode_and_recover")
    def explode_and_recover(ctx, input_value):
        try:
            ctx.call("math", "boom", "handled")
        except ServiceCallError as error:
            return {"recovered": error.kind}
        return {"recovered": None}

    @registry.task("nested")
    def nested(ctx, input_value):
        inner = ctx.run_task("add_then_double", input_value)
        return {"inner": inner, "echoed": ctx.call("echo", "echo", inner)}

    @registry.task("raises")
    def raises(ctx, input_value):
        raise RuntimeError("task exploded")

    @registry.task("swallows_suspension")
    def swallows_suspension(ctx, input_value):
        try:
            ctx.call("echo", "echo", 1)
        except BaseException:  # noqa: BLE001
            pass
        return "done"

    @registry.task("mixed_keys")
    def mixed_keys(ctx, input_value):
        return {1: "a", "b": 2}

    @registry.task("int_keys")
    def int_keys(ctx, input_value):
        return {"counts": {1: "one", 2: "two"}}

    replays = [0]

    @registry.task("nondeterministic")
    def nondeterministic(ctx, input_value):
        replays[0] += 1
        return ctx.call("echo", "echo", replays[0])

    return registry


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "runs.db"


@pytest.fixture()
def repository(db_path: Path) -> Iterator[RunRepository]:
    repo = RunRepository(db_path)
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def runtime(db_path: Path, tasks: TaskRegistry, services: ServiceRegistry) -> Iterator[Runtime]:
    built = build_runtime(
        Settings(db_path=db_path),
        tasks=tasks,
        services=services,
        trigger=LocalTrigger(),
    )
    try:
        yield built
    finally:
        built.close()
