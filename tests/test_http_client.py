from __future__ import annotations

import asyncio
import logging
import time

import httpx
import pytest

from fakes import FakeClock, FakeLinkedIn, delayed, fail_with, respond
from linkpost.core.errors import TransientTransportError
from linkpost.core.http_client import HttpRequest, ResilientHttpClient
from linkpost.core.retry import RetryPolicy

URL = "https://api.linkedin.com/v2/ugcPosts"


def _client(fake: FakeLinkedIn, clock: FakeClock, **policy_kwargs: object) -> ResilientHttpClient:
    policy = RetryPolicy(jitter=0, **policy_kwargs)  # type: ignore[arg-type]
    return ResilientHttpClient(policy=policy, transport=fake.transport, sleep=clock.sleep)


def test_retries_transient_statuses_with_backoff(
    fake_linkedin: FakeLinkedIn, fake_clock: FakeClock, caplog: pytest.LogCaptureFixture
) -> None:
    fake_linkedin.on("POST", "/v2/ugcPosts", respond(503), respond(503), respond(201, {"id": "p1"}))
    client = _client(fake_linkedin, fake_clock)
    caplog.set_level(logging.INFO, logger="linkpost")

    response = asyncio.run(client.send(HttpRequest(url=URL, method="POST", json_body={})))

    assert response.status == 201
    assert response.attempts == 3
    assert fake_clock.sleeps == [1.0, 2.0]
    retries = [record for record in caplog.records if getattr(record, "event", None) == "http.retry"]
    assert [record.status for record in retries] == [503, 503]


def test_transport_error_is_retried(fake_linkedin: FakeLinkedIn, fake_clock: FakeClock) -> None:
    fake_linkedin.on("GET", "/v2/userinfo", fail_with(httpx.ReadTimeout), respond(200, {"sub": "x"}))
    client = _client(fake_linkedin, fake_clock)

    response = asyncio.run(client.send(HttpRequest(url="https://api.linkedin.com/v2/userinfo")))

    assert response.ok
    assert response.json() == {"sub": "x"}
    assert fake_clock.sleeps == [1.0]


def test_exhausted_transport_errors_raise(fake_linkedin: FakeLinkedIn, fake_clock: FakeClock) -> None:
    fake_linkedin.on("POST", "/v2/ugcPosts", fail_with())
    client = _client(fake_linkedin, fake_clock, max_retries=2)

    with pytest.raises(TransientTransportError) as excinfo:
        asyncio.run(client.send(HttpRequest(url=URL, method="POST", step="create_post")))

    assert excinfo.value.step == "create_post"
    assert excinfo.value.details["attempts"] == 3
    assert len(fake_linkedin.requests) == 3


def test_exhausted_status_returns_last_response(
    fake_linkedin: FakeLinkedIn, fake_clock: FakeClock
) -> None:
    fake_linkedin.on("POST", "/v2/ugcPosts", respond(502))
    client = _client(fake_linkedin, fake_clock)

    response = asyncio.run(client.send(HttpRequest(url=URL, method="POST")))

    assert response.status == 502
    assert response.attempts == 4
    assert fake_clock.sleeps == [1.0, 2.0, 4.0]


def test_client_errors_are_not_retried(fake_linkedin: FakeLinkedIn, fake_clock: FakeClock) -> None:
    fake_linkedin.on("POST", "/v2/ugcPosts", respond(401), respond(201))
    client = _client(fake_linkedin, fake_clock)

    response = asyncio.run(client.send(HttpRequest(url=URL, method="POST")))

    assert response.status == 401
    assert len(fake_linkedin.requests) == 1
    assert fake_clock.sleeps == []


def test_non_retryable_request_is_sent_once(fake_linkedin: FakeLinkedIn, fake_clock: FakeClock) -> None:
    fake_linkedin.on("PUT", "/upload/1", respond(503), respond(201))
    client = _client(fake_linkedin, fake_clock)

    response = asyncio.run(
        client.send(
            HttpRequest(
                url="https://upload.linkedin.test/upload/1",
                method="PUT",
                content=b"img",
                retryable=False,
            )
        )
    )

    assert response.status == 503
    assert len(fake_linkedin.requests) == 1


def test_retry_after_header_sets_delay(fake_linkedin: FakeLinkedIn, fake_clock: FakeClock) -> None:
    fake_linkedin.on(
        "GET",
        "/v2/userinfo",
        respond(429, {"message": "throttled"}, headers={"Retry-After": "3"}),
        respond(200, {"sub": "x"}),
    )
    client = _client(fake_linkedin, fake_clock)

    asyncio.run(client.send(HttpRequest(url="https://api.linkedin.com/v2/userinfo")))

    assert fake_clock.sleeps == [3.0]


def test_response_header_lookup_is_case_insensitive(
    fake_linkedin: FakeLinkedIn, fake_clock: FakeClock
) -> None:
    fake_linkedin.on("POST", "/v2/ugcPosts", respond(201, headers={"X-RestLi-Id": "urn:li:share:1"}))
    client = _client(fake_linkedin, fake_clock)

    response = asyncio.run(client.send(HttpRequest(url=URL, method="POST")))

    assert response.header("x-restli-id") == "urn:li:share:1"
    assert response.json() == {}


def test_slow_attempt_is_cut_off_and_retried(fake_linkedin: FakeLinkedIn, fake_clock: FakeClock) -> None:
    fake_linkedin.on(
        "GET",
        "/v2/userinfo",
        delayed(respond(200, {"sub": "late"}), 2.0),
        respond(200, {"sub": "x"}),
    )
    client = _client(fake_linkedin, fake_clock)

    started = time.monotonic()
    response = asyncio.run(
        client.send(HttpRequest(url="https://api.linkedin.com/v2/userinfo", timeout=0.05))
    )

    assert time.monotonic() - started < 1.0
    assert response.json() == {"sub": "x"}
    assert response.attempts == 2
    assert fake_clock.sleeps == [1.0]


def test_attempt_timeout_bounds_the_whole_exchange(
    fake_linkedin: FakeLinkedIn, fake_clock: FakeClock
) -> None:
    fake_linkedin.on("POST", "/v2/ugcPosts", delayed(respond(201, {"id": "p1"}), 2.0))
    client = _client(fake_linkedin, fake_clock, max_retries=0)

    started = time.monotonic()
    with pytest.raises(TransientTransportError) as excinfo:
        asyncio.run(
            client.send(HttpRequest(url=URL, method="POST", timeout=0.05, step="create_post"))
        )

    assert time.monotonic() - started < 1.0
    assert excinfo.value.step == "create_post"
    assert "TimeoutError" in excinfo.value.details["reason"]
