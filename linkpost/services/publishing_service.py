"""Inbound operations exposed to the product's UI and CRUD layers."""

from __future__ import annotations

import hmac
import logging
import secrets
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Callable

from linkpost.core.errors import (
    DuplicateSubmissionError,
    LinkPostError,
    TransientTransportError,
    ValidationError,
)
from linkpost.platforms.base import PostDraft, PublishResult
from linkpost.platforms.linkedin import Credential, LinkedInApiClient, PostPublisher, TokenManager
from linkpost.services.publish_ledger import PublishLedger

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ConnectionStatus:
    is_connected: bool
    expires_at: datetime | None = None
    external_urn: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "isConnected": self.is_connected,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "linkedinUrn": self.external_urn,
        }


@dataclass(slots=True, frozen=True)
class AuthorizationRequest:
    url: str
    state: str


@dataclass(slots=True, frozen=True)
class PublishOutcome:
    """Either a result or a classified error; never both."""

    result: PublishResult | None = None
    error: LinkPostError | None = None
    replayed: bool = False

    @property
    def ok(self) -> bool:
        return self.result is not None


class PublishingService:
    """Thin facade over the publisher, token manager and publish ledger."""

    def __init__(
        self,
        publisher: PostPublisher,
        token_manager: TokenManager,
        api_client: LinkedInApiClient,
        *,
        ledger: PublishLedger | None = None,
        state_factory: Callable[[], str] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._publisher = publisher
        self._tokens = token_manager
        self._api = api_client
        self._ledger = ledger
        self._state_factory = state_factory or (lambda: secrets.token_urlsafe(24))
        self._clock = clock or (lambda: datetime.now(tz=UTC))

    @property
    def ledger(self) -> PublishLedger | None:
        return self._ledger

    async def publish_post(
        self,
        draft: PostDraft,
        subject_id: str,
        *,
        idempotency_key: str | None = None,
        deadline: float | None = None,
    ) -> PublishOutcome:
        if idempotency_key is not None:
            replay = self._check_ledger(idempotency_key, subject_id)
            if replay is not None:
                return replay

        try:
            result = await self._publisher.publish(draft, subject_id, deadline=deadline)
        except LinkPostError as exc:
            self._settle_failure(idempotency_key, exc)
            _LOGGER.warning(
                "Publish failed",
                extra={
                    "event": "publish.failed",
                    "subject_id": subject_id,
                    "error": exc.to_dict(),
                },
            )
            return PublishOutcome(error=exc)

        if idempotency_key is not None and self._ledger is not None:
            result = replace(result, idempotency_key=idempotency_key)
            self._ledger.mark_succeeded(idempotency_key, subject_id, result)
        return PublishOutcome(result=result)

    def _check_ledger(self, key: str, subject_id: str) -> PublishOutcome | None:
        if self._ledger is None:
            raise ValueError("An idempotency key needs a configured publish ledger")
        record = self._ledger.load(key)
        if record is None:
            self._ledger.mark_pending(key, subject_id)
            return None
        if record.unreadable:
            return PublishOutcome(
                error=DuplicateSubmissionError(
                    "The record for this key cannot be read; "
                    "check the profile before discarding the key",
                    step="idempotency",
                    details={"key": key},
                )
            )
        if record.subject_id != subject_id:
            return PublishOutcome(
                error=ValidationError(
                    "Idempotency key already belongs to another subject",
                    step="idempotency",
                    details={"key": key},
                )
            )
        if record.succeeded:
            _LOGGER.info(
                "Returning stored publish result",
                extra={"event": "ledger.replay", "subject_id": subject_id, "key": key},
            )
            return PublishOutcome(result=record.result, replayed=True)
        return PublishOutcome(
            error=DuplicateSubmissionError(
                "A previous attempt with this key has an unknown outcome; "
                "check the profile before discarding the key",
                step="idempotency",
                details={"key": key, "since": record.updated_at},
            )
        )

    def _settle_failure(self, key: str | None, exc: LinkPostError) -> None:
        if key is None or self._ledger is None:
            return
        ambiguous = isinstance(exc, TransientTransportError) and exc.step == "create_post"
        if not ambiguous:
            self._ledger.discard(key)

    def get_connection_status(self, subject_id: str) -> ConnectionStatus:
        credential = self._tokens.describe(subject_id)
        if credential is None:
            return ConnectionStatus(is_connected=False)
        return ConnectionStatus(
            is_connected=credential.is_fresh(self._clock()),
            expires_at=credential.expires_at,
            external_urn=credential.external_urn,
        )

    def begin_authorization(self) -> AuthorizationRequest:
        state = self._state_factory()
        return AuthorizationRequest(url=self._api.authorization_url(state), state=state)

    async def complete_authorization(
        self,
        subject_id: str,
        *,
        code: str,
        state: str | None,
        expected_state: str | None,
    ) -> ConnectionStatus:
        if not state or not expected_state or not hmac.compare_digest(state, expected_state):
            raise ValidationError("Invalid state parameter", step="authorize")
        if not code:
            raise ValidationError("Missing authorization code", step="authorize")

        grant = await self._api.exchange_code(code)
        identity = await self._api.fetch_user_info(grant.access_token)
        previous = self._tokens.describe(subject_id)
        credential = Credential.from_grant(
            subject_id,
            grant,
            external_urn=identity.urn,
            now=self._clock(),
        )
        if previous is not None:
            credential = replace(credential, created_at=previous.created_at)
        self._tokens.replace(credential)
        _LOGGER.info(
            "LinkedIn account connected",
            extra={"event": "auth.connected", "subject_id": subject_id, "urn": identity.urn},
        )
        return self.get_connection_status(subject_id)

    def disconnect(self, subject_id: str) -> bool:
        removed = self._tokens.store.delete(subject_id)
        _LOGGER.info(
            "LinkedIn account disconnected",
            extra={"event": "auth.disconnected", "subject_id": subject_id, "removed": removed},
        )
        return removed


__all__ = [
    "AuthorizationRequest",
    "ConnectionStatus",
    "PublishOutcome",
    "PublishingService",
]
