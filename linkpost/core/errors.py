"""Classified errors raised by the publishing core."""

from __future__ import annotations

import json
from typing import Any, Mapping


class LinkPostError(RuntimeError):
    """Base class for every failure the core reports to its callers."""

    def __init__(
        self,
        message: str,
        *,
        step: str | None = None,
        asset: str | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.step = step
        self.asset = asset
        self.details = dict(details or {})

    @property
    def kind(self) -> str:
        return type(self).__name__

    def __str__(self) -> str:
        base = super().__str__()
        context = []
        if self.step:
            context.append(f"step={self.step}")
        if self.asset:
            context.append(f"asset={self.asset}")
        if context:
            base = f"{base} ({', '.join(context)})"
        if not self.details:
            return base
        try:
            detail_repr = json.dumps(self.details, ensure_ascii=False, default=str)
        except TypeError:
            detail_repr = str(self.details)
        return f"{base} | details: {detail_repr}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "message": super().__str__(),
            "step": self.step,
            "asset": self.asset,
            "details": self.details,
        }


class TransientTransportError(LinkPostError):
    """Connection errors or timeouts that outlasted the retry policy."""


class AuthExpiredError(LinkPostError):
    """The subject's credential is unusable and could not be refreshed."""

    def __init__(self, message: str, *, reauthorize: bool = True, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.reauthorize = reauthorize


class NotConnectedError(AuthExpiredError):
    """No credential is stored for the subject."""


class TokenRejectedError(AuthExpiredError):
    """The platform answered 401 to a bearer-authenticated call."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(message, reauthorize=False, **kwargs)


class ValidationError(LinkPostError):
    """The request or draft is malformed; retrying cannot help."""


class MediaError(LinkPostError):
    """Base class for failures that are terminal for a single media asset."""


class MediaRegistrationFailed(MediaError):
    pass


class MediaUploadFailed(MediaError):
    pass


class MediaProcessingFailed(MediaError):
    pass


class MediaProcessingTimeout(MediaError):
    """Polling gave up before the platform reported a terminal status."""


class PlatformRejected(LinkPostError):
    """Terminal non-2xx response from the platform."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        platform_message: str | None = None,
        service_error_code: int | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.status = status
        self.platform_message = platform_message
        self.service_error_code = service_error_code


class PublishTimeout(LinkPostError):
    """The overall publish deadline passed before the post could be created."""


class DuplicateSubmissionError(LinkPostError):
    """An earlier attempt with the same idempotency key has an unknown outcome."""


__all__ = [
    "AuthExpiredError",
    "DuplicateSubmissionError",
    "LinkPostError",
    "MediaError",
    "MediaProcessingFailed",
    "MediaProcessingTimeout",
    "MediaRegistrationFailed",
    "MediaUploadFailed",
    "NotConnectedError",
    "PlatformRejected",
    "PublishTimeout",
    "TokenRejectedError",
    "TransientTransportError",
    "ValidationError",
]
