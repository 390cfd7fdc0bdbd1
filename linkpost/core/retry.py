"""Retry decisions with exponential backoff and jitter."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Iterable, Union

DEFAULT_RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})

# 401 is the token refresh trigger, handled by TokenManager.
_NEVER_RETRYABLE = frozenset({401})


@dataclass(slots=True, frozen=True)
class TransportFailure:
    """The request never produced an HTTP response (connect error, timeout)."""

    reason: str


@dataclass(slots=True, frozen=True)
class HttpOutcome:
    status: int
    retry_after: float | None = None


Outcome = Union[TransportFailure, HttpOutcome]


@dataclass(slots=True, frozen=True)
class RetryDecision:
    retry: bool
    delay: float = 0.0


class RetryPolicy:
    """Pure decision function shared by every outbound call.

    ``attempt`` is the 1-based number of the attempt that just produced
    ``outcome``. A retry is granted while ``attempt <= max_retries``, so a
    request is sent at most ``max_retries + 1`` times.
    """

    def __init__(
        self,
        *,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        jitter: float = 0.5,
        retryable_statuses: Iterable[int] = DEFAULT_RETRYABLE_STATUSES,
        rng: random.Random | None = None,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if base_delay < 0 or max_delay < 0:
            raise ValueError("delays must be >= 0")
        if not 0 <= jitter <= 1:
            raise ValueError("jitter must be within [0, 1]")
        statuses = frozenset(int(code) for code in retryable_statuses)
        forbidden = statuses & _NEVER_RETRYABLE
        if forbidden:
            raise ValueError(f"status codes {sorted(forbidden)} cannot be retried blindly")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.retryable_statuses = statuses
        self._rng = rng or random.Random()

    @classmethod
    def from_settings(cls, settings, *, rng: random.Random | None = None) -> "RetryPolicy":
        return cls(
            max_retries=settings.max_retries,
            base_delay=settings.base_delay,
            max_delay=settings.max_delay,
            jitter=settings.jitter,
            retryable_statuses=settings.retryable_statuses,
            rng=rng,
        )

    def is_retryable(self, outcome: Outcome) -> bool:
        if isinstance(outcome, TransportFailure):
            return True
        return outcome.status in self.retryable_statuses

    def backoff(self, attempt: int) -> float:
        """Un-jittered delay after ``attempt``."""
        if attempt < 1:
            raise ValueError("attempt numbers start at 1")
        return min(self.max_delay, self.base_delay * 2 ** (attempt - 1))

    def decide(self, attempt: int, outcome: Outcome) -> RetryDecision:
        if attempt < 1:
            raise ValueError("attempt numbers start at 1")
        if attempt > self.max_retries or not self.is_retryable(outcome):
            return RetryDecision(retry=False)

        if isinstance(outcome, HttpOutcome) and outcome.retry_after is not None:
            return RetryDecision(retry=True, delay=min(self.max_delay, max(outcome.retry_after, 0.0)))

        delay = self.backoff(attempt)
        if self.jitter:
            delay *= self._rng.uniform(1 - self.jitter, 1 + self.jitter)
        return RetryDecision(retry=True, delay=min(self.max_delay, delay))


def parse_retry_after(value: str | None) -> float | None:
    """Read a ``Retry-After`` header given in seconds; dates are ignored."""
    if not value:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    return seconds if seconds >= 0 else None


__all__ = [
    "DEFAULT_RETRYABLE_STATUSES",
    "HttpOutcome",
    "Outcome",
    "RetryDecision",
    "RetryPolicy",
    "TransportFailure",
    "parse_retry_after",
]
