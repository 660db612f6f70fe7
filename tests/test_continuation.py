from __future__ import annotations

import json

import allure
import pytest

from stackrun.engine.continuation import (
    CONTINUATION_VERSION,
    ExecutionState,
    JournalEntry,
    decode,
    encode,
    inject_result,
)
from stackrun.engine.errors import ContinuationDecodeError
from stackrun.engine.models import CallDescriptor

pytestmark = [
    allure.epic("Execution"),
    allure.feature("Continuation Codec"),
]


def _suspended_state() -> ExecutionState:
    return ExecutionState(
        task_id="add_then_double",
        input={"a": 1, "b": 2},
        journal=[JournalEntry(service="math", method="add", args=[1, 2], result=3)],
        pending_call=CallDescriptor(service="math", method="mul", args=[3, 2]),
    )


def test_encode_is_canonical_json() -> None:
    blob = encode(_suspended_state())

    payload = json.loads(blob)
    assert payload["version"] == CONTINUATION_VERSION
    assert payload["pending_call"] == {"service": "math", "method": "mul", "args": [3, 2]}
    assert blob == encode(decode(blob))


@pytest.mark.parametrize(
    "state",
    [
        ExecutionState(task_id="square", input=None),
        _suspended_state(),
        ExecutionState(
            task_id="explode_and_recover",
            input={"retries": [1, 2, {"deep": {"deeper": [None, True, 1.5]}}]},
            journal=[
                JournalEntry(
                    service="math",
                    method="boom",
                    args=["handled"],
                    error={"kind": "service_error", "message": "E", "code": "boom"},
                ),
                JournalEntry(service="echo", method="echo", args=[[]], result=None),
            ],
        ),
        ExecutionState(
            task_id="greet",
            input={"name": "Zoë", "city": "東京"},
            journal=[JournalEntry(service="echo", method="echo", args=["naïve"], result="naïve")],
            pending_call=CallDescriptor(service="echo", method="echo", args=["😀", {"k": ""}]),
        ),
    ],
    ids=["empty-journal", "pending-call", "error-entries", "unicode"],
)
def test_decode_restores_encoded_state(state: ExecutionState) -> None:
    assert decode(encode(state)) == state


def test_encode_rejects_non_serializable_state() -> None:
    state = ExecutionState(task_id="t", input={"bad": {1, 2}})

    with pytest.raises(ValueError, match="not JSON-serializable"):
        encode(state)


def test_inject_result_appends_completed_call_to_journal() -> None:
    blob = inject_result(encode(_suspended_state()), {"status": "completed", "result": 6})

    state = decode(blob)
    assert state.pending_call is None
    assert [entry.result for entry in state.journal] == [3, 6]
    assert state.journal[-1].matches(CallDescriptor(service="math", method="mul", args=[3, 2]))


def test_inject_result_records_child_failure() -> None:
    error = {"kind": "service_error", "message": "E", "stack_run_id": "child-1"}

    state = decode(inject_result(encode(_suspended_state()), {"status": "failed", "error": error}))

    assert state.journal[-1].error == error
    assert state.journal[-1].result is None


def test_inject_result_requires_pending_call() -> None:
    state = _suspended_state()
    state.pending_call = None

    with pytest.raises(ContinuationDecodeError, match="no pending call"):
        inject_result(encode(state), {"status": "completed", "result": 1})


def test_inject_result_rejects_unknown_status() -> None:
    with pytest.raises(ContinuationDecodeError, match="Unsupported resume payload status"):
        inject_result(encode(_suspended_state()), {"status": "processing"})


@pytest.mark.parametrize(
    ("blob", "message"),
    [
        (b"\xff\xfe", "not valid JSON"),
        (b"[1, 2]", "must be an object"),
        (b'{"version": 99, "task_id": "t", "journal": []}', "Unsupported continuation version"),
        (b'{"version": 1, "journal": []}', "missing task_id"),
        (b'{"version": 1, "task_id": "t", "journal": {}}', "journal must be a list"),
        (b'{"version": 1, "task_id": "t", "journal": [3]}', "Journal entry must be an object"),
    ],
)
def test_decode_rejects_corrupt_blobs(blob: bytes, message: str) -> None:
    with pytest.raises(ContinuationDecodeError, match=message):
        decode(blob)
