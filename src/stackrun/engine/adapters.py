"""Generic service adapters: in-process callables and HTTP JSON services."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

import httpx

from stackrun.engine.errors import ServiceError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 3


class CallableServiceAdapter:
    """Expose plain Python callables as service methods."""

    def __init__(self, methods: Mapping[str, Callable[..., Any]]) -> None:
        self._methods = dict(methods)

    def invoke(self, method: str, args: list[Any]) -> Any:
        fn = self._methods.get(method)
        if fn is None:
            raise ServiceError(f"Unknown method: {method}", code="method_not_found")
        return fn(*args)


class HttpServiceAdapter:
    """Invoke a wrapped service over HTTP.

    The request body is `{"method": ..., "args": [...]}`. The service answers
    with `{"data": ...}` on success or `{"error": {"message": ...}}` on failure.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        headers: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers=headers or {},
            transport=transport or httpx.HTTPTransport(retries=max_retries),
        )

    def invoke(self, method: str, args: list[Any]) -> Any:
        try:
            response = self._client.post(self.base_url, json={"method": method, "args": args})
        except httpx.TimeoutException as exc:
            logger.warning("Timeout calling %s method=%s", self.base_url, method)
            raise ServiceError(f"Timeout calling {self.base_url}", code="timeout") from exc
        except httpx.HTTPError as exc:
            logger.warning("HTTP error calling %s method=%s: %s", self.base_url, method, exc)
            raise ServiceError(str(exc), code="transport_error") from exc

        try:
            body = response.json()
        except ValueError:
            body = None

        if isinstance(body, dict) and body.get("error") is not None:
            error = body["error"]
            if isinstance(error, dict):
                raise ServiceError(
                    str(error.get("message") or error),
                    code=str(error["code"]) if error.get("code") is not None else None,
                )
            raise ServiceError(str(error))
        if not response.is_success:
            raise ServiceError(f"HTTP {response.status_code}", code=str(response.status_code))
        if not isinstance(body, dict) or "data" not in body:
            raise ServiceError("Service response has no data field.", code="invalid_response")
        return body["data"]

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpServiceAdapter:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
