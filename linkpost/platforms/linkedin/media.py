"""LinkedIn image upload state machine."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Sequence

from linkpost.core.errors import (
    AuthExpiredError,
    LinkPostError,
    MediaError,
    MediaProcessingFailed,
    MediaProcessingTimeout,
    MediaRegistrationFailed,
    MediaUploadFailed,
)
from linkpost.platforms.base import InvalidTransitionError, MediaAsset, MediaStatus
from linkpost.settings.loader import DEFAULT_MEDIA_RECIPE

from .api import LinkedInApiClient, PlatformAssetStatus, UploadRegistration
from .credentials import Credential, TokenManager

_LOGGER = logging.getLogger(__name__)


class MediaUploadOrchestrator:
    """Drives register → upload → poll for each asset of a draft."""

    def __init__(
        self,
        api_client: LinkedInApiClient,
        token_manager: TokenManager,
        *,
        poll_interval: float = 2.0,
        poll_deadline: float = 60.0,
        max_concurrency: int = 3,
        recipe: str = DEFAULT_MEDIA_RECIPE,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._api = api_client
        self._tokens = token_manager
        self._poll_interval = poll_interval
        self._poll_deadline = poll_deadline
        self._max_concurrency = max_concurrency
        self._recipe = recipe
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or time.monotonic

    async def prepare_all(
        self, assets: Sequence[MediaAsset], subject_id: str, owner_urn: str
    ) -> list[MediaAsset]:
        """Prepare every asset; raise the first failure in display order."""
        if not assets:
            return []
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _bounded(asset: MediaAsset) -> MediaAsset:
            async with semaphore:
                return await self.prepare(asset, subject_id, owner_urn)

        outcomes = await asyncio.gather(
            *(_bounded(asset) for asset in assets), return_exceptions=True
        )
        failures: list[LinkPostError] = []
        for outcome in outcomes:
            if isinstance(outcome, LinkPostError):
                failures.append(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
        if failures:
            first = failures[0]
            first.details.setdefault(
                "failed_assets",
                [{"asset": err.asset, "kind": err.kind, "step": err.step} for err in failures],
            )
            raise first
        return list(assets)

    async def prepare(self, asset: MediaAsset, subject_id: str, owner_urn: str) -> MediaAsset:
        if asset.status is MediaStatus.READY:
            return asset
        if asset.status is MediaStatus.FAILED:
            raise MediaProcessingFailed(
                "Asset already failed and cannot be reused",
                step="prepare",
                asset=asset.label,
                details={"reason": asset.failure_reason},
            )

        if asset.status is MediaStatus.PENDING:
            await self._register(asset, subject_id, owner_urn)
        if asset.status is MediaStatus.REGISTERED:
            await self._upload(asset, subject_id)
        if asset.status is MediaStatus.UPLOADING:
            # A previous upload attempt was interrupted mid-flight; its outcome is unknown.
            self._fail(asset, "upload interrupted before acknowledgment")
            raise MediaUploadFailed(
                "Upload was interrupted; register the media again",
                step="upload",
                asset=asset.label,
            )
        await self._poll(asset, subject_id)
        return asset

    async def _register(self, asset: MediaAsset, subject_id: str, owner_urn: str) -> None:
        async def _call(credential: Credential) -> UploadRegistration:
            return await self._api.register_upload(
                credential.access_token,
                owner_urn,
                recipe=self._recipe,
                failure=MediaRegistrationFailed,
            )

        try:
            registration = await self._tokens.call_with_refresh(subject_id, _call)
        except AuthExpiredError:
            raise
        except LinkPostError as exc:
            self._fail(asset, f"registration failed: {exc.kind}")
            if isinstance(exc, MediaError):
                exc.asset = asset.label
                raise
            raise MediaRegistrationFailed(
                "Upload registration failed",
                step="register_upload",
                asset=asset.label,
                details={"cause": exc.to_dict()},
            ) from exc
        asset.mark_registered(registration.target, registration.asset_urn)
        self._log_transition(asset, subject_id)

    async def _upload(self, asset: MediaAsset, subject_id: str) -> None:
        target = asset.upload_target
        if target is None:
            raise InvalidTransitionError(f"{asset.label} has no upload target")
        credential = await self._tokens.get_valid_token(subject_id)
        try:
            content = asset.read_bytes()
        except OSError as exc:
            self._fail(asset, f"cannot read source: {exc}")
            raise MediaUploadFailed(
                "Media source could not be read", step="upload", asset=asset.label
            ) from exc

        asset.mark_uploading()
        self._log_transition(asset, subject_id)
        try:
            await self._api.upload_binary(
                target,
                content,
                access_token=credential.access_token,
                content_type=asset.content_type or "application/octet-stream",
                failure=MediaUploadFailed,
            )
        except LinkPostError as exc:
            self._fail(asset, f"upload failed: {exc.kind}")
            if isinstance(exc, MediaError):
                exc.asset = asset.label
                raise
            raise MediaUploadFailed(
                "Binary upload failed",
                step="upload",
                asset=asset.label,
                details={"cause": exc.to_dict()},
            ) from exc
        asset.mark_processing()
        self._log_transition(asset, subject_id)

    async def _poll(self, asset: MediaAsset, subject_id: str) -> None:
        asset_urn = asset.provisional_asset_id
        if asset_urn is None:
            raise InvalidTransitionError(f"{asset.label} was never registered")
        started = self._clock()
        polls = 0

        async def _call(credential: Credential) -> PlatformAssetStatus:
            return await self._api.get_asset_status(credential.access_token, asset_urn)

        while True:
            polls += 1
            try:
                status = await self._tokens.call_with_refresh(subject_id, _call)
            except LinkPostError as exc:
                exc.asset = exc.asset or asset.label
                raise
            _LOGGER.debug(
                "Polled asset status",
                extra={
                    "event": "media.poll",
                    "asset": asset.label,
                    "asset_urn": asset_urn,
                    "poll": polls,
                    "platform_status": status.value,
                },
            )
            if status is PlatformAssetStatus.READY:
                asset.mark_ready(asset_urn)
                self._log_transition(asset, subject_id)
                return
            if status is PlatformAssetStatus.FAILED:
                self._fail(asset, "platform processing failed")
                raise MediaProcessingFailed(
                    "The platform could not process the media",
                    step="processing",
                    asset=asset.label,
                    details={"asset_urn": asset_urn, "polls": polls},
                )
            if self._clock() - started + self._poll_interval > self._poll_deadline:
                raise MediaProcessingTimeout(
                    "Media processing did not finish before the polling deadline",
                    step="processing",
                    asset=asset.label,
                    details={
                        "asset_urn": asset_urn,
                        "polls": polls,
                        "deadline_seconds": self._poll_deadline,
                    },
                )
            await self._sleep(self._poll_interval)

    def _fail(self, asset: MediaAsset, reason: str) -> None:
        asset.mark_failed(reason)
        _LOGGER.warning(
            "Media asset failed",
            extra={"event": "media.transition", "asset": asset.label, "status": "failed", "reason": reason},
        )

    def _log_transition(self, asset: MediaAsset, subject_id: str) -> None:
        _LOGGER.info(
            "Media asset advanced",
            extra={
                "event": "media.transition",
                "asset": asset.label,
                "status": asset.status.value,
                "subject_id": subject_id,
            },
        )


__all__ = ["MediaUploadOrchestrator"]
