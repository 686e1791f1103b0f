"""HTTP entry point for every chat, canvas and project call.

Requests go through ``with_retry``: retryable failures (5xx, 408, 429 and
transport errors) back off exponentially, anything else raises straight away.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, TypeVar

import httpx

from popmint_sync.config import settings
from popmint_sync.errors import ApiCallError, PersistenceConfigError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RetryOptions:
    max_retries: int = 3
    retry_delay: float = 1.0
    exponential_backoff: bool = True

    @classmethod
    def from_settings(cls) -> "RetryOptions":
        return cls(
            max_retries=settings.POPMINT_RETRY_MAX_RETRIES,
            retry_delay=settings.POPMINT_RETRY_DELAY_SECONDS,
        )

    def delay_for(self, attempt: int) -> float:
        if self.exponential_backoff:
            return self.retry_delay * (2**attempt)
        return self.retry_delay


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    options: RetryOptions | None = None,
    *,
    sleep: SleepFn = asyncio.sleep,
) -> T:
    config = options or RetryOptions()
    attempt = 0
    while True:
        try:
            return await operation()
        except ApiCallError as exc:
            if not exc.is_retryable or attempt >= config.max_retries:
                raise
            delay = config.delay_for(attempt)
            attempt += 1
            logger.info(
                "Retrying API call",
                extra={
                    "attempt": attempt,
                    "max_retries": config.max_retries,
                    "delay_seconds": delay,
                    "status_code": exc.status_code,
                },
            )
            await sleep(delay)


class ApiClient:
    def __init__(
        self,
        *,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        retry: RetryOptions | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        resolved_base = (base_url or settings.POPMINT_API_BASE_URL or "").strip()
        if not resolved_base:
            raise PersistenceConfigError("POPMINT_API_BASE_URL is required")
        self.base_url = resolved_base.rstrip("/")
        self.timeout_seconds = float(timeout_seconds or settings.POPMINT_REQUEST_TIMEOUT_SECONDS)
        self.retry = retry or RetryOptions.from_settings()
        self._transport = transport
        self._sleep = sleep

    async def api_call(
        self,
        path: str,
        *,
        method: str = "GET",
        json: dict[str, Any] | None = None,
        retry: RetryOptions | None = None,
    ) -> dict[str, Any]:
        options = retry or self.retry

        async def attempt() -> dict[str, Any]:
            return await self._request_json(method, path, json_payload=json)

        return await with_retry(attempt, options, sleep=self._sleep)

    def without_retries(self) -> RetryOptions:
        return replace(self.retry, max_retries=0)

    async def _request_json(
        self,
        method: str,
        path: str,
        *,
        json_payload: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_seconds,
                transport=self._transport,
            ) as client:
                resp = await client.request(
                    method=method,
                    url=path,
                    json=json_payload,
                    headers={"Content-Type": "application/json", "Accept": "application/json"},
                )
        except httpx.RequestError as exc:
            raise ApiCallError(
                message=f"Network error while calling backend: {exc}",
                is_retryable=True,
                method=method,
                path=path,
            ) from exc

        if not resp.is_success:
            raise ApiCallError.from_status(
                status_code=resp.status_code,
                method=method,
                path=path,
                details=self._error_details(resp),
            )

        if not resp.content:
            return {}

        try:
            data = resp.json()
        except ValueError as exc:
            raise ApiCallError(
                message="Backend returned non-JSON payload",
                status_code=resp.status_code,
                method=method,
                path=path,
            ) from exc
        if not isinstance(data, dict):
            raise ApiCallError(
                message="Backend returned non-object JSON payload",
                status_code=resp.status_code,
                method=method,
                path=path,
            )
        return data

    @staticmethod
    def _error_details(resp: httpx.Response) -> dict[str, Any] | None:
        try:
            payload = resp.json()
        except ValueError:
            return None
        if isinstance(payload, dict):
            return payload
        return None
