"""Tests for retry decisions."""

from __future__ import annotations

import random

import pytest

from linkpost.core.retry import HttpOutcome, RetryPolicy, TransportFailure, parse_retry_after
from linkpost.settings import HttpSettings


def test_backoff_doubles_until_capped() -> None:
    policy = RetryPolicy(base_delay=1.0, max_delay=10.0, jitter=0)

    assert [policy.backoff(attempt) for attempt in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 10.0]


def test_jittered_delays_stay_within_bounds() -> None:
    policy = RetryPolicy(max_retries=10, base_delay=1.0, max_delay=10.0, rng=random.Random(7))

    for attempt in range(1, 11):
        decision = policy.decide(attempt, HttpOutcome(status=503))
        base = policy.backoff(attempt)
        assert decision.retry
        assert base * 0.5 <= decision.delay <= min(10.0, base * 1.5)


def test_stops_after_max_retries() -> None:
    policy = RetryPolicy(max_retries=3, jitter=0)

    granted = [policy.decide(attempt, TransportFailure("reset")).retry for attempt in range(1, 6)]

    assert granted == [True, True, True, False, False]


@pytest.mark.parametrize("status", [400, 401, 403, 404, 422])
def test_non_retryable_status_stops_on_first_attempt(status: int) -> None:
    policy = RetryPolicy()

    assert not policy.decide(1, HttpOutcome(status=status)).retry


def test_retry_after_overrides_backoff_and_is_capped() -> None:
    policy = RetryPolicy(max_delay=10.0, jitter=0)

    assert policy.decide(1, HttpOutcome(status=429, retry_after=3)).delay == 3
    assert policy.decide(1, HttpOutcome(status=429, retry_after=120)).delay == 10.0


def test_401_cannot_be_configured_as_retryable() -> None:
    with pytest.raises(ValueError):
        RetryPolicy(retryable_statuses={401, 503})


def test_attempt_numbers_start_at_one() -> None:
    with pytest.raises(ValueError):
        RetryPolicy().decide(0, HttpOutcome(status=503))


def test_from_settings_copies_http_section() -> None:
    settings = HttpSettings(max_retries=5, base_delay=0.5, max_delay=4.0, jitter=0.0)
    policy = RetryPolicy.from_settings(settings)

    assert policy.max_retries == 5
    assert policy.decide(3, HttpOutcome(status=502)).delay == 2.0
    assert policy.decide(6, HttpOutcome(status=502)).retry is False


def test_parse_retry_after() -> None:
    assert parse_retry_after("5") == 5.0
    assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") is None
    assert parse_retry_after("-1") is None
    assert parse_retry_after(None) is None
