"""Wiring of the publishing service from configuration."""

from __future__ import annotations

import contextlib
from datetime import timedelta
from typing import AsyncIterator, Awaitable, Callable

import httpx

from ..core.http_client import ResilientHttpClient
from ..core.retry import RetryPolicy
from ..platforms.linkedin import (
    JsonTokenStore,
    LinkedInApiClient,
    MediaUploadOrchestrator,
    PostPublisher,
    TokenManager,
    TokenStore,
)
from ..security import SecretProvider, default_provider, resolve_client_credentials
from ..services.publish_ledger import PublishLedger
from ..services.publishing_service import PublishingService
from ..settings import AppConfig
from ..utils.logging import get_logger

LOGGER = get_logger(__name__)


def build_service(
    config: AppConfig,
    http: ResilientHttpClient,
    *,
    secrets: SecretProvider | None = None,
    token_store: TokenStore | None = None,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> PublishingService:
    provider = secrets or default_provider(config.paths.secrets_file)
    client_credentials = resolve_client_credentials(provider)

    api = LinkedInApiClient(
        http,
        client_id=client_credentials.client_id,
        client_secret=client_credentials.client_secret,
        redirect_uri=config.linkedin.redirect_uri,
        scopes=config.linkedin.scopes,
        api_version=config.linkedin.api_version,
    )
    tokens = TokenManager(
        token_store or JsonTokenStore(config.paths.token_dir),
        api,
        safety_margin=timedelta(seconds=config.tokens.safety_margin),
    )
    media = MediaUploadOrchestrator(
        api,
        tokens,
        poll_interval=config.media.poll_interval,
        poll_deadline=config.media.poll_deadline,
        max_concurrency=config.media.max_concurrency,
        recipe=config.linkedin.media_recipe,
        sleep=sleep,
    )
    publisher = PostPublisher(api, tokens, media, deadline=config.publish.deadline)
    return PublishingService(
        publisher,
        tokens,
        api,
        ledger=PublishLedger(config.paths.ledger_dir),
    )


@contextlib.asynccontextmanager
async def open_service(
    config: AppConfig,
    *,
    secrets: SecretProvider | None = None,
    token_store: TokenStore | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> AsyncIterator[PublishingService]:
    """Yield a ready service and close its HTTP client afterwards."""
    http = ResilientHttpClient(
        policy=RetryPolicy.from_settings(config.http),
        timeout=config.http.timeout,
        transport=transport,
        sleep=sleep,
    )
    async with http:
        service = build_service(
            config, http, secrets=secrets, token_store=token_store, sleep=sleep
        )
        LOGGER.debug(
            "Publishing service ready",
            extra={"event": "service.ready", "token_dir": str(config.paths.token_dir)},
        )
        yield service


__all__ = ["build_service", "open_service"]
