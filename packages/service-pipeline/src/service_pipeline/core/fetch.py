from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from devkit.observability import start_span

from service_pipeline.core.exceptions import TransientNetworkError
from service_pipeline.core.metrics import InMemoryPipelineMetricsCollector
from service_pipeline.core.retry import with_exponential_backoff

logger = logging.getLogger(__name__)

_BODY_PREVIEW_CHARS = 500


def _log_target(url: str) -> str:
    parsed = httpx.URL(url)
    return f"{parsed.scheme}://{parsed.host}{parsed.path}"


class ResilientFetchClient:
    """HTTP client that retries timeouts, transport failures and non-2xx responses.

    Every attempt emits one ``fetch_attempt`` log line. When all attempts fail
    ``FetchError`` is raised, chained from the last ``TransientNetworkError``.
    """

    def __init__(
        self,
        timeout_seconds: float = 10.0,
        max_retries: int = 3,
        base_delay_seconds: float = 1.0,
        max_delay_seconds: float = 5.0,
        jitter_seconds: float = 1.0,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rand: Callable[[float, float], float] = random.uniform,
        metrics: InMemoryPipelineMetricsCollector | None = None,
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._max_retries = max_retries
        self._base_delay_seconds = base_delay_seconds
        self._max_delay_seconds = max_delay_seconds
        self._jitter_seconds = jitter_seconds
        self._client_factory = client_factory
        self._sleep = sleep
        self._rand = rand
        self._metrics = metrics

    @classmethod
    def from_settings(cls, settings: Any, **kwargs: Any) -> "ResilientFetchClient":
        return cls(
            timeout_seconds=settings.FETCH_TIMEOUT_SECONDS,
            max_retries=settings.FETCH_MAX_RETRIES,
            base_delay_seconds=settings.FETCH_BASE_DELAY_SECONDS,
            max_delay_seconds=settings.FETCH_MAX_DELAY_SECONDS,
            jitter_seconds=settings.FETCH_JITTER_SECONDS,
            **kwargs,
        )

    async def fetch(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        base_delay: float | None = None,
    ) -> httpx.Response:
        target = _log_target(url)
        attempt_timeout = timeout if timeout is not None else self._timeout_seconds
        state = {"attempt": 0}
        factory = self._client_factory or (lambda: httpx.AsyncClient(timeout=attempt_timeout))

        with start_span("provider_fetch", {"http.method": method, "fetch.target": target}) as span:
            async with factory() as client:

                async def attempt_once() -> httpx.Response:
                    state["attempt"] += 1
                    attempt = state["attempt"]
                    try:
                        response = await client.request(
                            method,
                            url,
                            params=params,
                            data=data,
                            json=json,
                            headers=headers,
                            timeout=attempt_timeout,
                        )
                    except httpx.TimeoutException as exc:
                        self._record_attempt(attempt, target, "timeout", None)
                        raise TransientNetworkError("request timed out", target=target) from exc
                    except httpx.TransportError as exc:
                        self._record_attempt(attempt, target, "transport_error", None)
                        raise TransientNetworkError(f"transport failure: {exc}", target=target) from exc

                    if not response.is_success:
                        self._record_attempt(attempt, target, "http_error", response.status_code)
                        raise TransientNetworkError(
                            f"{target} returned HTTP {response.status_code}",
                            target=target,
                            status_code=response.status_code,
                            body=response.text[:_BODY_PREVIEW_CHARS],
                        )
                    self._record_attempt(attempt, target, "success", response.status_code)
                    return response

                try:
                    return await with_exponential_backoff(
                        attempt_once,
                        retries=max_retries if max_retries is not None else self._max_retries,
                        base_delay_seconds=base_delay if base_delay is not None else self._base_delay_seconds,
                        max_delay_seconds=self._max_delay_seconds,
                        jitter_seconds=self._jitter_seconds,
                        should_retry=lambda exc: isinstance(exc, TransientNetworkError),
                        sleep=self._sleep,
                        rand=self._rand,
                    )
                finally:
                    span.set_attribute("fetch.attempts", state["attempt"])

    def _record_attempt(self, attempt: int, target: str, outcome: str, status_code: int | None) -> None:
        logger.info(
            "fetch_attempt",
            extra={"attempt": attempt, "target": target, "outcome": outcome, "status_code": status_code},
        )
        if outcome != "success" and self._metrics:
            self._metrics.increment_external_api_error()
            if status_code is not None:
                self._metrics.increment_provider_http_error(status_code, provider=target)
