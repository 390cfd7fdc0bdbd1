"""Helpers for loading configuration."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from ..core.retry import DEFAULT_RETRYABLE_STATUSES

PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG_NAME = "config.toml"
CONFIG_ENV_VAR = "LINKPOST_CONFIG"

DEFAULT_SCOPES = ("openid", "profile", "w_member_social")
DEFAULT_MEDIA_RECIPE = "urn:li:digitalmediaRecipe:feedshare-image"


@dataclass(slots=True)
class HttpSettings:
    timeout: float = 10.0
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    jitter: float = 0.5
    retryable_statuses: frozenset[int] = DEFAULT_RETRYABLE_STATUSES


@dataclass(slots=True)
class LinkedInSettings:
    redirect_uri: str = "http://localhost:3000/api/linkedin/callback"
    scopes: tuple[str, ...] = DEFAULT_SCOPES
    api_version: str = "202401"
    media_recipe: str = DEFAULT_MEDIA_RECIPE


@dataclass(slots=True)
class TokenSettings:
    safety_margin: float = 300.0


@dataclass(slots=True)
class MediaSettings:
    poll_interval: float = 2.0
    poll_deadline: float = 60.0
    max_concurrency: int = 3


@dataclass(slots=True)
class PublishSettings:
    deadline: float | None = None


@dataclass(slots=True)
class PathSettings:
    state_dir: Path
    log_dir: Path
    token_dir: Path
    ledger_dir: Path
    secrets_file: Path


@dataclass(slots=True)
class AppConfig:
    paths: PathSettings
    http: HttpSettings = field(default_factory=HttpSettings)
    linkedin: LinkedInSettings = field(default_factory=LinkedInSettings)
    tokens: TokenSettings = field(default_factory=TokenSettings)
    media: MediaSettings = field(default_factory=MediaSettings)
    publish: PublishSettings = field(default_factory=PublishSettings)


def _to_path(value: str | None, *, fallback: Path, base: Path = PROJECT_ROOT) -> Path:
    if not value:
        return fallback
    candidate = Path(value)
    return candidate if candidate.is_absolute() else base / candidate


def _config_path(explicit: str | os.PathLike[str] | None = None) -> Path:
    candidate: Path
    if explicit:
        candidate = Path(explicit)
    else:
        env_value = os.environ.get(CONFIG_ENV_VAR)
        candidate = Path(env_value) if env_value else PROJECT_ROOT / DEFAULT_CONFIG_NAME
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


def _load_toml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("rb") as fp:
        return tomllib.load(fp)


def _ensure_directories(paths: Iterable[Path]) -> None:
    for directory in paths:
        directory.mkdir(parents=True, exist_ok=True)


def _optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


def _build_http(section: dict[str, Any]) -> HttpSettings:
    statuses = section.get("retryable_statuses")
    return HttpSettings(
        timeout=float(section.get("timeout", 10)),
        max_retries=int(section.get("max_retries", 3)),
        base_delay=float(section.get("base_delay", 1.0)),
        max_delay=float(section.get("max_delay", 10.0)),
        jitter=float(section.get("jitter", 0.5)),
        retryable_statuses=frozenset(int(code) for code in statuses)
        if statuses is not None
        else DEFAULT_RETRYABLE_STATUSES,
    )


def _build_linkedin(section: dict[str, Any]) -> LinkedInSettings:
    defaults = LinkedInSettings()
    scopes = section.get("scopes")
    return LinkedInSettings(
        redirect_uri=str(section.get("redirect_uri", defaults.redirect_uri)),
        scopes=tuple(str(scope) for scope in scopes) if scopes else defaults.scopes,
        api_version=str(section.get("api_version", defaults.api_version)),
        media_recipe=str(section.get("media_recipe", defaults.media_recipe)),
    )


def load_config(config_path: str | os.PathLike[str] | None = None) -> AppConfig:
    path = _config_path(config_path)
    data = _load_toml(path)

    paths_section = data.get("paths", {})
    tokens_section = data.get("tokens", {})
    media_section = data.get("media", {})
    publish_section = data.get("publish", {})

    state_dir = _to_path(paths_section.get("state_dir"), fallback=PROJECT_ROOT / "data" / "state")
    log_dir = _to_path(paths_section.get("log_dir"), fallback=state_dir.parent / "logs")
    token_dir = _to_path(paths_section.get("token_dir"), fallback=state_dir / "tokens")
    ledger_dir = _to_path(paths_section.get("ledger_dir"), fallback=state_dir / "publish")
    secrets_file = _to_path(
        paths_section.get("secrets_file"), fallback=PROJECT_ROOT / "secrets.ini"
    )

    _ensure_directories((state_dir, log_dir, token_dir, ledger_dir))

    max_concurrency = int(media_section.get("max_concurrency", 3))
    if max_concurrency < 1:
        raise ValueError("media.max_concurrency must be at least 1")

    return AppConfig(
        paths=PathSettings(
            state_dir=state_dir,
            log_dir=log_dir,
            token_dir=token_dir,
            ledger_dir=ledger_dir,
            secrets_file=secrets_file,
        ),
        http=_build_http(data.get("http", {})),
        linkedin=_build_linkedin(data.get("linkedin", {})),
        tokens=TokenSettings(safety_margin=float(tokens_section.get("safety_margin", 300))),
        media=MediaSettings(
            poll_interval=float(media_section.get("poll_interval", 2.0)),
            poll_deadline=float(media_section.get("poll_deadline", 60.0)),
            max_concurrency=max_concurrency,
        ),
        publish=PublishSettings(deadline=_optional_float(publish_section.get("deadline"))),
    )

