"""Demo tasks and an in-process echo service for smoke-testing a deployment."""

from __future__ import annotations

from typing import Any

from stackrun.engine.adapters import CallableServiceAdapter
from stackrun.engine.errors import ServiceCallError, ServiceError
from stackrun.engine.executor import TaskContext
from stackrun.engine.registry import default_services, task


def _fail(message: str = "requested failure") -> None:
    raise ServiceError(message, code="demo_failure")


default_services.register(
    "echo",
    CallableServiceAdapter(
        {
            "echo": lambda *args: args[0] if len(args) == 1 else list(args),
            "upper": lambda text: str(text).upper(),
            "fail": _fail,
        },
    ),
)


@task("demo.double")
def double(ctx: TaskContext, input_value: Any) -> dict[str, Any]:
    """Double `x` without any external call."""

    return {"x": input_value["x"] * 2}


@task("demo.echo")
def echo(ctx: TaskContext, input_value: Any) -> dict[str, Any]:
    """Send the input through the echo service once."""

    return {"echoed": ctx.call("echo", "echo", input_value)}


@task("demo.shout")
def shout(ctx: TaskContext, input_value: Any) -> dict[str, Any]:
    """Upper-case every word through separate echo calls."""

    words = str(input_value.get("text", "")).split()
    return {"text": " ".join(ctx.call("echo", "upper", word) for word in words)}


@task("demo.pipeline")
def pipeline(ctx: TaskContext, input_value: Any) -> dict[str, Any]:
    """Run demo.double as a nested task, then echo its output."""

    doubled = ctx.run_task("demo.double", input_value)
    return {"doubled": doubled, "echoed": ctx.call("echo", "echo", doubled)}


@task("demo.fail")
def fail(ctx: TaskContext, input_value: Any) -> Any:
    """Call a failing service and let the error propagate."""

    return ctx.call("echo", "fail", (input_value or {}).get("message", "requested failure"))


@task("demo.recover")
def recover(ctx: TaskContext, input_value: Any) -> dict[str, Any]:
    """Call a failing service and handle the error in task code."""

    try:
        ctx.call("echo", "fail", "expected")
    except ServiceCallError as error:
        return {"recovered": True, "kind": error.kind}
    return {"recovered": False}
