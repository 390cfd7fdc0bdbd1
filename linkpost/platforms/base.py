"""Base contracts and data model for content publishing platforms."""

from __future__ import annotations

import enum
import mimetypes
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Mapping

MAX_COMMENTARY_LENGTH = 3000
MAX_MEDIA_PER_POST = 9


class InvalidTransitionError(ValueError):
    """Raised when a media asset is asked to move backwards or out of a terminal state."""


class AssetNotReadyError(LookupError):
    """Raised when the remote id of an asset that is not Ready is read."""


class MediaStatus(enum.Enum):
    PENDING = "pending"
    REGISTERED = "registered"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (MediaStatus.READY, MediaStatus.FAILED)


_FORWARD_ORDER = (
    MediaStatus.PENDING,
    MediaStatus.REGISTERED,
    MediaStatus.UPLOADING,
    MediaStatus.PROCESSING,
    MediaStatus.READY,
)


class Visibility(enum.Enum):
    PUBLIC = "PUBLIC"
    CONNECTIONS = "CONNECTIONS"

    @classmethod
    def parse(cls, value: "str | Visibility") -> "Visibility":
        if isinstance(value, Visibility):
            return value
        normalized = str(value).strip().upper().replace("-", "_")
        if normalized in {"CONNECTIONS_ONLY", "CONNECTIONSONLY"}:
            return cls.CONNECTIONS
        try:
            return cls(normalized)
        except ValueError as exc:
            raise ValueError(f"Unsupported visibility: {value}") from exc


@dataclass(slots=True, frozen=True)
class UploadTarget:
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)


@dataclass(slots=True, eq=False)
class MediaAsset:
    """One piece of media moving towards a referenceable remote asset.

    Status only moves forward; READY and FAILED are terminal.
    """

    source: Path | bytes
    content_type: str | None = None
    title: str | None = None
    description: str | None = None
    status: MediaStatus = MediaStatus.PENDING
    upload_target: UploadTarget | None = None
    provisional_asset_id: str | None = None
    failure_reason: str | None = None
    _remote_asset_id: str | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if isinstance(self.source, str):
            self.source = Path(self.source)
        if self.content_type is None:
            guessed = None
            if isinstance(self.source, Path):
                guessed = mimetypes.guess_type(self.source.name)[0]
            self.content_type = guessed or "application/octet-stream"

    @property
    def label(self) -> str:
        if isinstance(self.source, Path):
            return self.source.name
        return f"<{len(self.source)} bytes>"

    @property
    def remote_asset_id(self) -> str:
        if self.status is not MediaStatus.READY or self._remote_asset_id is None:
            raise AssetNotReadyError(f"Asset {self.label} is {self.status.value}, not ready")
        return self._remote_asset_id

    @property
    def is_ready(self) -> bool:
        return self.status is MediaStatus.READY

    def read_bytes(self) -> bytes:
        if isinstance(self.source, bytes):
            return self.source
        return self.source.read_bytes()

    def mark_registered(self, target: UploadTarget, provisional_asset_id: str) -> None:
        self._advance(MediaStatus.REGISTERED)
        self.upload_target = target
        self.provisional_asset_id = provisional_asset_id

    def mark_uploading(self) -> None:
        self._advance(MediaStatus.UPLOADING)

    def mark_processing(self) -> None:
        self._advance(MediaStatus.PROCESSING)

    def mark_ready(self, remote_asset_id: str) -> None:
        self._advance(MediaStatus.READY)
        self._remote_asset_id = remote_asset_id

    def mark_failed(self, reason: str) -> None:
        if self.status.terminal:
            raise InvalidTransitionError(f"Asset {self.label} is already {self.status.value}")
        self.status = MediaStatus.FAILED
        self.failure_reason = reason
        self._remote_asset_id = None

    def _advance(self, target: MediaStatus) -> None:
        if self.status.terminal:
            raise InvalidTransitionError(f"Asset {self.label} is already {self.status.value}")
        current = _FORWARD_ORDER.index(self.status)
        wanted = _FORWARD_ORDER.index(target)
        if wanted != current + 1:
            raise InvalidTransitionError(
                f"Asset {self.label} cannot move from {self.status.value} to {target.value}"
            )
        self.status = target


@dataclass(slots=True)
class PostDraft:
    """In-memory post awaiting submission; media order is display order."""

    commentary: str
    visibility: Visibility = Visibility.PUBLIC
    media: list[MediaAsset] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.visibility = Visibility.parse(self.visibility)
        self.media = list(self.media)

    def problems(self) -> list[str]:
        issues: list[str] = []
        if not self.commentary.strip() and not self.media:
            issues.append("commentary is empty and no media is attached")
        if len(self.commentary) > MAX_COMMENTARY_LENGTH:
            issues.append(f"commentary exceeds {MAX_COMMENTARY_LENGTH} characters")
        if len(self.media) > MAX_MEDIA_PER_POST:
            issues.append(f"at most {MAX_MEDIA_PER_POST} media assets are allowed")
        if len({id(asset) for asset in self.media}) != len(self.media):
            issues.append("the same media asset appears twice")
        return issues

    @property
    def submittable(self) -> bool:
        return all(asset.is_ready for asset in self.media)


@dataclass(slots=True, frozen=True)
class PublishResult:
    remote_post_id: str
    created_at: datetime
    media_asset_ids: tuple[str, ...] = ()
    idempotency_key: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "remote_post_id": self.remote_post_id,
            "created_at": self.created_at.isoformat(),
            "media_asset_ids": list(self.media_asset_ids),
            "idempotency_key": self.idempotency_key,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> "PublishResult":
        raw_ids = data.get("media_asset_ids") or []
        key = data.get("idempotency_key")
        return cls(
            remote_post_id=str(data["remote_post_id"]),
            created_at=datetime.fromisoformat(str(data["created_at"])),
            media_asset_ids=tuple(str(item) for item in raw_ids),  # type: ignore[union-attr]
            idempotency_key=str(key) if key else None,
        )


class ContentPublisher(ABC):
    """Publishes drafts to a concrete platform on behalf of a subject."""

    @abstractmethod
    async def prepare(self, subject_id: str) -> object:
        """Execute pre-flight checks, e.g., credential validation."""

    @abstractmethod
    async def publish(
        self, draft: PostDraft, subject_id: str, *, deadline: float | None = None
    ) -> PublishResult:
        """Publish the draft and return the platform-assigned identifiers."""
