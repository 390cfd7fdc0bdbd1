"""Async HTTP client with policy-driven retries."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

import httpx

from .errors import TransientTransportError
from .retry import HttpOutcome, RetryPolicy, TransportFailure, parse_retry_after


_LOGGER = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass(slots=True)
class HttpRequest:
    url: str
    method: str = "GET"
    headers: Mapping[str, str] | None = None
    params: Mapping[str, str] | None = None
    json_body: Any = None
    form: Mapping[str, str] | None = None
    content: bytes | None = None
    timeout: float | None = None
    retryable: bool = True
    step: str | None = None


@dataclass(slots=True)
class HttpResponse:
    url: str
    status: int
    headers: Mapping[str, str]
    body: bytes
    elapsed: float
    attempts: int

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        if not self.body:
            return {}
        return json.loads(self.body)

    def header(self, name: str) -> str | None:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


class ResilientHttpClient:
    """Sends one logical request, retrying transient outcomes per ``RetryPolicy``.

    The client returns the final response whatever its status; only transport
    failures that exhaust the policy are raised. Callers pass fully formed
    requests, bearer header included.
    """

    def __init__(
        self,
        *,
        policy: RetryPolicy | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        client: httpx.AsyncClient | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        self._policy = policy or RetryPolicy()
        self._timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(transport=transport, follow_redirects=False)
        self._sleep = sleep or asyncio.sleep

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def __aenter__(self) -> "ResilientHttpClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def send(self, request: HttpRequest) -> HttpResponse:
        timeout = request.timeout if request.timeout is not None else self._timeout
        attempt = 0
        start_time = time.monotonic()
        while True:
            attempt += 1
            try:
                # httpx bounds each phase separately; the attempt as a whole is bounded here.
                async with asyncio.timeout(timeout):
                    resp = await self._client.request(
                        request.method.upper(),
                        request.url,
                        headers=dict(request.headers or {}),
                        params=dict(request.params) if request.params else None,
                        json=request.json_body,
                        data=dict(request.form) if request.form is not None else None,
                        content=request.content,
                        timeout=timeout,
                    )
            except (httpx.TransportError, httpx.TimeoutException, TimeoutError) as exc:
                reason = str(exc) or f"attempt exceeded {timeout}s"
                outcome = TransportFailure(reason=f"{type(exc).__name__}: {reason}")
                decision = self._policy.decide(attempt, outcome) if request.retryable else None
                if decision is None or not decision.retry:
                    _LOGGER.warning(
                        "Transport failure, giving up",
                        extra={
                            "event": "http.exhausted",
                            "url": request.url,
                            "step": request.step,
                            "attempts": attempt,
                            "reason": outcome.reason,
                        },
                    )
                    raise TransientTransportError(
                        "Request failed before a response was received",
                        step=request.step,
                        details={"url": request.url, "attempts": attempt, "reason": outcome.reason},
                    ) from exc
                self._log_retry(request, attempt, decision.delay, reason=outcome.reason)
                await self._sleep(decision.delay)
                continue

            response = HttpResponse(
                url=str(resp.url),
                status=resp.status_code,
                headers=dict(resp.headers.items()),
                body=resp.content,
                elapsed=time.monotonic() - start_time,
                attempts=attempt,
            )
            if not request.retryable or response.ok:
                return response

            outcome = HttpOutcome(
                status=response.status,
                retry_after=parse_retry_after(response.header("Retry-After")),
            )
            decision = self._policy.decide(attempt, outcome)
            if not decision.retry:
                if self._policy.is_retryable(outcome):
                    _LOGGER.warning(
                        "Retryable status persisted after all attempts",
                        extra={
                            "event": "http.exhausted",
                            "url": request.url,
                            "step": request.step,
                            "attempts": attempt,
                            "status": response.status,
                        },
                    )
                return response
            self._log_retry(request, attempt, decision.delay, status=response.status)
            await self._sleep(decision.delay)

    def _log_retry(
        self,
        request: HttpRequest,
        attempt: int,
        delay: float,
        *,
        status: int | None = None,
        reason: str | None = None,
    ) -> None:
        _LOGGER.info(
            "Retrying request",
            extra={
                "event": "http.retry",
                "url": request.url,
                "method": request.method.upper(),
                "step": request.step,
                "attempt": attempt,
                "delay": round(delay, 3),
                "status": status,
                "reason": reason,
            },
        )


__all__ = ["HttpRequest", "HttpResponse", "ResilientHttpClient"]
