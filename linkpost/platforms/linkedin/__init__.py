"""LinkedIn platform adapters."""

from __future__ import annotations

from .api import LinkedInApiClient, PlatformAssetStatus, TokenGrant, UserInfo
from .credentials import Credential, InMemoryTokenStore, JsonTokenStore, TokenManager, TokenStore
from .media import MediaUploadOrchestrator
from .publisher import PostPublisher

__all__ = [
    "Credential",
    "InMemoryTokenStore",
    "JsonTokenStore",
    "LinkedInApiClient",
    "MediaUploadOrchestrator",
    "PlatformAssetStatus",
    "PostPublisher",
    "TokenGrant",
    "TokenManager",
    "TokenStore",
    "UserInfo",
]
