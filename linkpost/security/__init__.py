"""Security utilities package."""

from __future__ import annotations

from .credential_provider import (
    ChainedSecretProvider,
    EnvSecretProvider,
    FileSecretProvider,
    MappingSecretProvider,
    OAuthClientCredentials,
    SecretNotFoundError,
    SecretProvider,
    default_provider,
    resolve_client_credentials,
)

__all__ = [
    "ChainedSecretProvider",
    "EnvSecretProvider",
    "FileSecretProvider",
    "MappingSecretProvider",
    "OAuthClientCredentials",
    "SecretNotFoundError",
    "SecretProvider",
    "default_provider",
    "resolve_client_credentials",
]
