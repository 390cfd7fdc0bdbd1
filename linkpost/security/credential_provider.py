"""Resolution of the OAuth client id/secret registered with LinkedIn.

The id and secret never live in the TOML config. They come from the
environment or from an INI file outside version control, tried in that
order by :func:`default_provider`.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from configparser import ConfigParser
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping

CLIENT_ID_KEY = "linkedin.client_id"
CLIENT_SECRET_KEY = "linkedin.client_secret"


class SecretNotFoundError(KeyError):
    """No provider could resolve ``key``."""

    def __init__(self, key: str, *, tried: Iterable[str] = ()) -> None:
        self.key = key
        self.tried = tuple(tried)
        super().__init__(key)

    def __str__(self) -> str:
        if not self.tried:
            return f"secret {self.key!r} is not configured"
        return f"secret {self.key!r} is not configured (looked in: {', '.join(self.tried)})"


@dataclass(slots=True, frozen=True)
class OAuthClientCredentials:
    client_id: str
    client_secret: str

    def __repr__(self) -> str:
        return f"OAuthClientCredentials(client_id={self.client_id!r}, client_secret='***')"


class SecretProvider(ABC):
    """Looks secrets up by dotted key, e.g. ``linkedin.client_id``."""

    @abstractmethod
    def get_secret(self, key: str) -> str:
        """Return a non-empty value or raise :class:`SecretNotFoundError`."""

    def describe(self) -> str:
        return type(self).__name__


class EnvSecretProvider(SecretProvider):
    """``linkedin.client_id`` is read from ``LINKEDIN_CLIENT_ID``."""

    def __init__(self, prefix: str = "", env: Mapping[str, str] | None = None) -> None:
        self._env = env if env is not None else os.environ
        self._prefix = prefix

    def variable_for(self, key: str) -> str:
        return f"{self._prefix}{key}".upper().replace(".", "_")

    def get_secret(self, key: str) -> str:
        value = (self._env.get(self.variable_for(key)) or "").strip()
        if not value:
            raise SecretNotFoundError(key, tried=[self.describe()])
        return value

    def describe(self) -> str:
        return f"env:{self.variable_for('<key>')}"


class FileSecretProvider(SecretProvider):
    """``[linkedin] client_id = ...`` in an INI file; a missing file holds nothing."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._parser: ConfigParser | None = None

    def _sections(self) -> ConfigParser:
        if self._parser is None:
            parser = ConfigParser(interpolation=None)
            if self._path.exists():
                parser.read(self._path, encoding="utf-8")
            self._parser = parser
        return self._parser

    def get_secret(self, key: str) -> str:
        section, _, option = key.partition(".")
        parser = self._sections()
        value = ""
        if section and option and parser.has_option(section, option):
            value = parser.get(section, option).strip()
        if not value:
            raise SecretNotFoundError(key, tried=[self.describe()])
        return value

    def describe(self) -> str:
        return f"file:{self._path}"


class MappingSecretProvider(SecretProvider):
    """Plain dictionary lookup for tests and embedding hosts."""

    def __init__(self, mapping: Mapping[str, str]) -> None:
        self._mapping = dict(mapping)

    def get_secret(self, key: str) -> str:
        value = self._mapping.get(key)
        if not value:
            raise SecretNotFoundError(key, tried=[self.describe()])
        return value


class ChainedSecretProvider(SecretProvider):
    """First provider that knows the key wins."""

    def __init__(self, providers: Iterable[SecretProvider]) -> None:
        self._providers = tuple(providers)

    def get_secret(self, key: str) -> str:
        tried: list[str] = []
        for provider in self._providers:
            try:
                return provider.get_secret(key)
            except SecretNotFoundError as exc:
                tried.extend(exc.tried or [provider.describe()])
        raise SecretNotFoundError(key, tried=tried)


def default_provider(secrets_file: Path) -> SecretProvider:
    return ChainedSecretProvider([EnvSecretProvider(), FileSecretProvider(secrets_file)])


def resolve_client_credentials(provider: SecretProvider) -> OAuthClientCredentials:
    return OAuthClientCredentials(
        client_id=provider.get_secret(CLIENT_ID_KEY),
        client_secret=provider.get_secret(CLIENT_SECRET_KEY),
    )


__all__ = [
    "CLIENT_ID_KEY",
    "CLIENT_SECRET_KEY",
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
