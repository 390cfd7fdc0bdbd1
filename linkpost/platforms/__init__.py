"""Platform integration package."""

from __future__ import annotations

from .base import (
    AssetNotReadyError,
    ContentPublisher,
    InvalidTransitionError,
    MediaAsset,
    MediaStatus,
    PostDraft,
    PublishResult,
    UploadTarget,
    Visibility,
)

__all__ = [
    "AssetNotReadyError",
    "ContentPublisher",
    "InvalidTransitionError",
    "MediaAsset",
    "MediaStatus",
    "PostDraft",
    "PublishResult",
    "UploadTarget",
    "Visibility",
]
