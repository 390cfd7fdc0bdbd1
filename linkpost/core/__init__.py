"""Core primitives for resilient outbound calls."""

from .errors import LinkPostError, TransientTransportError
from .http_client import HttpRequest, HttpResponse, ResilientHttpClient
from .retry import HttpOutcome, RetryDecision, RetryPolicy, TransportFailure

__all__ = [
    "HttpOutcome",
    "HttpRequest",
    "HttpResponse",
    "LinkPostError",
    "ResilientHttpClient",
    "RetryDecision",
    "RetryPolicy",
    "TransientTransportError",
    "TransportFailure",
]
