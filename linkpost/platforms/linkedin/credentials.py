"""Credential storage and token lifecycle for LinkedIn integrations."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from functools import partial
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar

from linkpost.core.errors import AuthExpiredError, NotConnectedError, TokenRejectedError

from .api import LinkedInApiClient, TokenGrant

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def _slugify(value: str) -> str:
    lowered = value.lower()
    safe = [ch if ch.isalnum() or ch in {"-", "_"} else "-" for ch in lowered]
    slug = "".join(safe).strip("-")
    return slug or "default"


@dataclass(slots=True, frozen=True)
class Credential:
    """Stored OAuth token pair for one subject; always replaced whole."""

    subject_id: str
    access_token: str
    expires_at: datetime
    refresh_token: str | None = None
    granted_scopes: frozenset[str] = frozenset()
    external_urn: str | None = None
    refresh_token_expires_at: datetime | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if self.expires_at.tzinfo is None:
            raise ValueError("expires_at must be timezone-aware")

    def __repr__(self) -> str:
        return (
            f"Credential(subject_id={self.subject_id!r}, expires_at={self.expires_at.isoformat()}, "
            f"refreshable={self.refreshable}, external_urn={self.external_urn!r})"
        )

    @property
    def refreshable(self) -> bool:
        return bool(self.refresh_token)

    def is_fresh(self, now: datetime, margin: timedelta = timedelta(0)) -> bool:
        return now + margin < self.expires_at

    @classmethod
    def from_grant(
        cls,
        subject_id: str,
        grant: TokenGrant,
        *,
        previous: "Credential | None" = None,
        external_urn: str | None = None,
        now: datetime | None = None,
    ) -> "Credential":
        """Build the replacement record after a token exchange.

        LinkedIn may omit the refresh token on refresh; the previous one stays valid then.
        """
        now = now or _utcnow()
        refresh_token = grant.refresh_token
        refresh_expires = grant.refresh_token_expires_at
        if refresh_token is None and previous is not None:
            refresh_token = previous.refresh_token
            refresh_expires = previous.refresh_token_expires_at
        scopes = grant.scopes or (previous.granted_scopes if previous else frozenset())
        return cls(
            subject_id=subject_id,
            access_token=grant.access_token,
            expires_at=grant.expires_at,
            refresh_token=refresh_token,
            granted_scopes=frozenset(scopes),
            external_urn=external_urn or (previous.external_urn if previous else None),
            refresh_token_expires_at=refresh_expires,
            created_at=previous.created_at if previous else now,
            updated_at=now,
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "user_id": self.subject_id,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at.isoformat(),
            "external_urn": self.external_urn,
            "scopes": sorted(self.granted_scopes),
            "refresh_token_expires_at": self.refresh_token_expires_at.isoformat()
            if self.refresh_token_expires_at
            else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_record(cls, payload: Mapping[str, Any]) -> "Credential":
        refresh_expires = payload.get("refresh_token_expires_at")
        return cls(
            subject_id=str(payload["user_id"]),
            access_token=str(payload["access_token"]),
            refresh_token=payload.get("refresh_token") or None,
            expires_at=datetime.fromisoformat(payload["expires_at"]),
            external_urn=payload.get("external_urn") or None,
            granted_scopes=frozenset(payload.get("scopes") or ()),
            refresh_token_expires_at=datetime.fromisoformat(refresh_expires)
            if refresh_expires
            else None,
            created_at=datetime.fromisoformat(payload["created_at"]),
            updated_at=datetime.fromisoformat(payload["updated_at"]),
        )


class TokenStore(ABC):
    """Persists one credential record per subject."""

    @abstractmethod
    def load(self, subject_id: str) -> Optional[Credential]:
        """Return the stored credential or ``None``."""

    @abstractmethod
    def save(self, credential: Credential) -> None:
        """Replace the subject's record with ``credential``."""

    @abstractmethod
    def delete(self, subject_id: str) -> bool:
        """Remove the record; report whether one existed."""


class InMemoryTokenStore(TokenStore):
    def __init__(self, credentials: Mapping[str, Credential] | None = None) -> None:
        self._records: dict[str, Credential] = dict(credentials or {})

    def load(self, subject_id: str) -> Optional[Credential]:
        return self._records.get(subject_id)

    def save(self, credential: Credential) -> None:
        self._records[credential.subject_id] = credential

    def delete(self, subject_id: str) -> bool:
        return self._records.pop(subject_id, None) is not None


class JsonTokenStore(TokenStore):
    """One JSON file per subject, written atomically with owner-only permissions."""

    def __init__(self, root: Path) -> None:
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)

    def path_for(self, subject_id: str) -> Path:
        digest = hashlib.sha256(subject_id.encode("utf-8")).hexdigest()[:12]
        return self._root / f"{_slugify(subject_id)}-{digest}.json"

    def load(self, subject_id: str) -> Optional[Credential]:
        path = self.path_for(subject_id)
        if not path.exists():
            return None
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            credential = Credential.from_record(payload)
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            _LOGGER.warning(
                "Ignoring unreadable credential record",
                extra={"event": "token.load_failed", "path": str(path), "error": str(exc)},
            )
            return None
        if credential.subject_id != subject_id:
            return None
        return credential

    def save(self, credential: Credential) -> None:
        path = self.path_for(credential.subject_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = json.dumps(credential.to_record(), ensure_ascii=False, indent=2)
        with tempfile.NamedTemporaryFile(
            "w", delete=False, dir=str(path.parent), encoding="utf-8"
        ) as tmp:
            tmp.write(data)
            tmp_path = Path(tmp.name)
        if os.name != "nt":
            os.chmod(tmp_path, 0o600)
        tmp_path.replace(path)

    def delete(self, subject_id: str) -> bool:
        path = self.path_for(subject_id)
        if not path.exists():
            return False
        path.unlink()
        return True


class TokenManager:
    """Hands out currently valid credentials, refreshing them at most once at a time.

    The fast path (a fresh stored token) takes no lock and makes no network
    call. Refreshes for one subject are serialized by an ``asyncio.Lock``; a
    caller that waited on the lock re-reads the store and reuses the token
    the previous holder obtained, or joins the exchange still in flight when
    that holder was cancelled.
    """

    def __init__(
        self,
        store: TokenStore,
        api_client: LinkedInApiClient,
        *,
        safety_margin: timedelta = timedelta(minutes=5),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._api = api_client
        self._margin = safety_margin
        self._clock = clock or _utcnow
        self._locks: dict[str, asyncio.Lock] = {}
        self._inflight: dict[str, asyncio.Task[Credential]] = {}

    @property
    def store(self) -> TokenStore:
        return self._store

    def _lock_for(self, subject_id: str) -> asyncio.Lock:
        return self._locks.setdefault(subject_id, asyncio.Lock())

    def _load(self, subject_id: str) -> Credential:
        credential = self._store.load(subject_id)
        if credential is None:
            raise NotConnectedError(
                "No LinkedIn connection is stored for this subject",
                step="token",
                details={"subject_id": subject_id},
            )
        return credential

    async def get_valid_token(self, subject_id: str) -> Credential:
        credential = self._load(subject_id)
        if credential.is_fresh(self._clock(), self._margin):
            return credential

        async with self._lock_for(subject_id):
            credential = self._load(subject_id)
            if credential.is_fresh(self._clock(), self._margin):
                _LOGGER.debug(
                    "Token refreshed by a concurrent caller",
                    extra={"event": "token.refresh_skipped", "subject_id": subject_id},
                )
                return credential
            return await self._refresh_shared(credential)

    async def force_refresh(self, subject_id: str, rejected_token: str) -> Credential:
        """Refresh after the platform rejected ``rejected_token`` with a 401."""
        async with self._lock_for(subject_id):
            credential = self._load(subject_id)
            if credential.access_token != rejected_token:
                _LOGGER.debug(
                    "Rejected token already replaced",
                    extra={"event": "token.refresh_skipped", "subject_id": subject_id},
                )
                return credential
            return await self._refresh_shared(credential)

    async def call_with_refresh(
        self,
        subject_id: str,
        operation: Callable[[Credential], Awaitable[T]],
    ) -> T:
        """Run ``operation``; on a 401 refresh once and run it exactly once more."""
        credential = await self.get_valid_token(subject_id)
        try:
            return await operation(credential)
        except TokenRejectedError as exc:
            _LOGGER.info(
                "Access token rejected, refreshing",
                extra={"event": "token.rejected", "subject_id": subject_id, "step": exc.step},
            )
            fresh = await self.force_refresh(subject_id, credential.access_token)
        try:
            return await operation(fresh)
        except TokenRejectedError as exc:
            raise AuthExpiredError(
                "The refreshed token was rejected as well; re-authorization is required",
                step=exc.step,
                details={"subject_id": subject_id},
            ) from exc

    async def _refresh_shared(self, credential: Credential) -> Credential:
        """Await the subject's exchange, starting it if none is running.

        The exchange and the store write run in their own task and survive
        the cancellation of any caller; later callers await the same task.
        """
        subject_id = credential.subject_id
        task = self._inflight.get(subject_id)
        if task is None:
            task = asyncio.create_task(self._refresh(credential))
            self._inflight[subject_id] = task
            task.add_done_callback(partial(self._forget_refresh, subject_id))
        return await asyncio.shield(task)

    def _forget_refresh(self, subject_id: str, task: "asyncio.Task[Credential]") -> None:
        if self._inflight.get(subject_id) is task:
            del self._inflight[subject_id]
        if not task.cancelled():
            # Retrieved here so an exception nobody awaited is not reported as lost.
            task.exception()

    async def _refresh(self, credential: Credential) -> Credential:
        subject_id = credential.subject_id
        refresh_token = credential.refresh_token
        if not refresh_token:
            raise AuthExpiredError(
                "Access token expired and no refresh token is available",
                step="token_refresh",
                details={
                    "subject_id": subject_id,
                    "expires_at": credential.expires_at.isoformat(),
                },
            )
        try:
            grant = await self._api.refresh_access_token(refresh_token)
        except AuthExpiredError as exc:
            exc.details.setdefault("subject_id", subject_id)
            raise
        renewed = Credential.from_grant(subject_id, grant, previous=credential, now=self._clock())
        self._store.save(renewed)
        _LOGGER.info(
            "Access token refreshed",
            extra={
                "event": "token.refresh",
                "subject_id": subject_id,
                "expires_at": renewed.expires_at.isoformat(),
            },
        )
        return renewed

    def replace(self, credential: Credential) -> None:
        """Store a credential obtained through the authorization flow."""
        self._store.save(credential)

    def describe(self, subject_id: str) -> Optional[Credential]:
        """Thin store read, no refresh."""
        return self._store.load(subject_id)


__all__ = [
    "Credential",
    "InMemoryTokenStore",
    "JsonTokenStore",
    "TokenManager",
    "TokenStore",
]
