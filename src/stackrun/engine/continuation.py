"""Continuation codec for suspended task slices.

A continuation is the resumable execution state of one task slice: the task
being run, its input, and a journal of every external call that has already
resolved. Resuming replays the task function against the journal, so the
blob never carries interpreter internals. Only this module and the executor
understand its shape; the run store keeps it as opaque bytes.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from stackrun.engine.errors import ContinuationDecodeError
from stackrun.engine.models import CallDescriptor, StackRunStatus

CONTINUATION_VERSION = 1


@dataclass(slots=True)
class JournalEntry:
    """Resolved external call replayed on resume."""

    service: str
    method: str
    args: list[Any]
    result: Any = None
    error: dict[str, Any] | None = None

    def matches(self, call: CallDescriptor) -> bool:
        return (
            self.service == call.service and self.method == call.method and self.args == call.args
        )


@dataclass(slots=True)
class ExecutionState:
    task_id: str
    input: Any
    journal: list[JournalEntry] = field(default_factory=list)
    pending_call: CallDescriptor | None = None
    version: int = CONTINUATION_VERSION


def encode(state: ExecutionState) -> bytes:
    """Serialize execution state to canonical JSON bytes."""

    payload = {
        "version": state.version,
        "task_id": state.task_id,
        "input": state.input,
        "journal": [
            {
                "service": entry.service,
                "method": entry.method,
                "args": entry.args,
                "result": entry.result,
                "error": entry.error,
            }
            for entry in state.journal
        ],
        "pending_call": state.pending_call.to_dict() if state.pending_call is not None else None,
    }
    try:
        text = json.dumps(payload, ensure_ascii=False, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError) as error:
        raise ValueError(f"Execution state is not JSON-serializable: {error}") from error
    return text.encode("utf-8")


def decode(blob: bytes) -> ExecutionState:
    """Parse continuation bytes produced by `encode`."""

    try:
        payload = json.loads(bytes(blob).decode("utf-8"))
    except (UnicodeDecodeError, ValueError, TypeError) as error:
        raise ContinuationDecodeError(f"Continuation is not valid JSON: {error}") from error
    if not isinstance(payload, dict):
        raise ContinuationDecodeError("Continuation payload must be an object.")

    version = payload.get("version")
    if version != CONTINUATION_VERSION:
        raise ContinuationDecodeError(f"Unsupported continuation version: {version!r}")
    task_id = payload.get("task_id")
    if not isinstance(task_id, str) or not task_id:
        raise ContinuationDecodeError("Continuation is missing task_id.")
    raw_journal = payload.get("journal")
    if not isinstance(raw_journal, list):
        raise ContinuationDecodeError("Continuation journal must be a list.")

    journal = [_decode_journal_entry(item) for item in raw_journal]
    raw_pending = payload.get("pending_call")
    pending_call = _decode_call(raw_pending) if raw_pending is not None else None
    return ExecutionState(
        task_id=task_id,
        input=payload.get("input"),
        journal=journal,
        pending_call=pending_call,
        version=version,
    )


def inject_result(blob: bytes, resume_payload: dict[str, Any]) -> bytes:
    """Resolve the pending call of a continuation with a child's outcome."""

    state = decode(blob)
    if state.pending_call is None:
        raise ContinuationDecodeError("Continuation has no pending call to resolve.")
    if not isinstance(resume_payload, dict):
        raise ContinuationDecodeError("Resume payload must be an object.")

    status = resume_payload.get("status")
    if status == StackRunStatus.COMPLETED.value:
        entry = JournalEntry(
            service=state.pending_call.service,
            method=state.pending_call.method,
            args=state.pending_call.args,
            result=resume_payload.get("result"),
        )
    elif status == StackRunStatus.FAILED.value:
        error = resume_payload.get("error")
        entry = JournalEntry(
            service=state.pending_call.service,
            method=state.pending_call.method,
            args=state.pending_call.args,
            error=error if isinstance(error, dict) else {"message": str(error)},
        )
    else:
        raise ContinuationDecodeError(f"Unsupported resume payload status: {status!r}")

    state.journal.append(entry)
    state.pending_call = None
    return encode(state)


def _decode_call(raw: object) -> CallDescriptor:
    if not isinstance(raw, dict):
        raise ContinuationDecodeError("Call descriptor must be an object.")
    service = raw.get("service")
    method = raw.get("method")
    args = raw.get("args")
    if not isinstance(service, str) or not isinstance(method, str) or not isinstance(args, list):
        raise ContinuationDecodeError("Call descriptor requires service, method and args.")
    return CallDescriptor(service=service, method=method, args=args)


def _decode_journal_entry(raw: object) -> JournalEntry:
    if not isinstance(raw, dict):
        raise ContinuationDecodeError("Journal entry must be an object.")
    call = _decode_call(raw)
    error = raw.get("error")
    if error is not None and not isinstance(error, dict):
        raise ContinuationDecodeError("Journal entry error must be an object.")
    return JournalEntry(
        service=call.service,
        method=call.method,
        args=call.args,
        result=raw.get("result"),
        error=error,
    )
