"""Trigger transports that hand a stack run id to the next processing step."""

from __future__ import annotations

import logging
import random
import threading
import time
from collections import deque
from collections.abc import Callable
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)


class Trigger(Protocol):
    """Asynchronous, at-least-once delivery of a stack run id."""

    def fire(self, stack_run_id: str) -> None: ...


class LocalTrigger:
    """In-process FIFO of stack run ids, drained by the caller."""

    def __init__(self) -> None:
        self._queue: deque[str] = deque()
        self._drain_lock = threading.Lock()

    def fire(self, stack_run_id: str) -> None:
        self._queue.append(stack_run_id)

    @property
    def pending(self) -> list[str]:
        return list(self._queue)

    def pop(self) -> str | None:
        try:
            return self._queue.popleft()
        except IndexError:
            return None

    def drain(self, process: Callable[[str], Any], *, max_steps: int = 1000) -> int:
        """Process queued ids, including ones fired while draining.

        Returns the number of steps taken. Concurrent drains are serialized.
        """

        steps = 0
        with self._drain_lock:
            while steps < max_steps:
                stack_run_id = self.pop()
                if stack_run_id is None:
                    break
                process(stack_run_id)
                steps += 1
        if steps >= max_steps and self._queue:
            logger.warning(
                "Local trigger drain stopped after %d steps with %d ids queued",
                steps,
                len(self._queue),
            )
        return steps


class HttpTrigger:
    """POST `{"stackRunId": ...}` to the processor endpoint.

    Delivery failures are retried with jittered exponential backoff and then
    logged. They are never raised, because the reconciler re-fires lost
    triggers.
    """

    def __init__(  # noqa: PLR0913
        self,
        endpoint: str,
        *,
        timeout_seconds: float = 5.0,
        max_retries: int = 3,
        retry_backoff_seconds: float = 0.5,
        retry_max_seconds: float = 10.0,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.endpoint = endpoint
        self.max_retries = max_retries
        self.retry_backoff_seconds = retry_backoff_seconds
        self.retry_max_seconds = retry_max_seconds
        self._sleep = sleep
        self._random = random.Random()  # noqa: S311
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=min(timeout_seconds, 5.0)),
            transport=transport,
        )

    def fire(self, stack_run_id: str) -> None:
        self.deliver(stack_run_id)

    def deliver(self, stack_run_id: str) -> bool:
        """Send one trigger; True when the endpoint acknowledged it."""

        attempts = max(1, self.max_retries + 1)
        for attempt in range(1, attempts + 1):
            try:
                response = self._client.post(self.endpoint, json={"stackRunId": stack_run_id})
                if response.is_success:
                    return True
                problem = f"HTTP {response.status_code}"
            except httpx.TimeoutException:
                problem = "timeout"
            except httpx.HTTPError as exc:
                problem = str(exc)

            if attempt < attempts:
                delay = self._compute_retry_delay(retry_number=attempt)
                logger.debug(
                    "Trigger for %s failed (%s); retry %d/%d in %.2fs",
                    stack_run_id,
                    problem,
                    attempt,
                    attempts - 1,
                    delay,
                )
                self._sleep(delay)
                continue
            logger.warning(
                "Trigger for stack run %s not delivered to %s after %d attempts: %s",
                stack_run_id,
                self.endpoint,
                attempts,
                problem,
            )
        return False

    def _compute_retry_delay(self, *, retry_number: int) -> float:
        max_delay = min(
            self.retry_max_seconds,
            self.retry_backoff_seconds * (2 ** max(retry_number - 1, 0)),
        )
        return self._random.uniform(0, max_delay)

    def close(self) -> None:
        self._client.close()
