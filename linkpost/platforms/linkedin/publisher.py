"""LinkedIn post publisher."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from linkpost.core.errors import AuthExpiredError, PublishTimeout, ValidationError
from linkpost.platforms.base import ContentPublisher, PostDraft, PublishResult

from .api import SHARE_CONTENT_KEY, VISIBILITY_KEY, CreatedPost, LinkedInApiClient
from .credentials import Credential, TokenManager
from .media import MediaUploadOrchestrator

_LOGGER = logging.getLogger(__name__)


class PostPublisher(ContentPublisher):
    """Coordinates token, media and ugcPost steps for a single draft."""

    def __init__(
        self,
        api_client: LinkedInApiClient,
        token_manager: TokenManager,
        media: MediaUploadOrchestrator,
        *,
        deadline: float | None = None,
    ) -> None:
        self._api = api_client
        self._tokens = token_manager
        self._media = media
        self._default_deadline = deadline

    async def prepare(self, subject_id: str) -> Credential:
        """Return a valid credential that carries the author URN."""
        credential = await self._tokens.get_valid_token(subject_id)
        if not credential.external_urn:
            raise AuthExpiredError(
                "The stored connection has no member URN; reconnect the account",
                step="token",
                details={"subject_id": subject_id},
            )
        return credential

    async def publish(
        self, draft: PostDraft, subject_id: str, *, deadline: float | None = None
    ) -> PublishResult:
        problems = draft.problems()
        if problems:
            raise ValidationError("Draft cannot be published", step="validate", details={"problems": problems})

        budget = deadline if deadline is not None else self._default_deadline
        _LOGGER.info(
            "Publishing draft",
            extra={
                "event": "publish.start",
                "subject_id": subject_id,
                "media_count": len(draft.media),
                "visibility": draft.visibility.value,
            },
        )
        try:
            async with asyncio.timeout(budget):
                credential = await self.prepare(subject_id)
                await self._media.prepare_all(draft.media, subject_id, credential.external_urn or "")
        except TimeoutError as exc:
            raise PublishTimeout(
                "Publish deadline passed before the post could be created",
                step="prepare",
                details={"deadline_seconds": budget, "subject_id": subject_id},
            ) from exc

        if not draft.submittable:
            # prepare_all raises on failure; reaching here means an asset was mutated concurrently.
            raise ValidationError(
                "Draft media is not ready", step="validate", details={"subject_id": subject_id}
            )

        payload = self.build_payload(draft, credential.external_urn or "")

        async def _create(current: Credential) -> CreatedPost:
            return await self._api.create_ugc_post(current.access_token, payload)

        created = await self._tokens.call_with_refresh(subject_id, _create)
        result = PublishResult(
            remote_post_id=created.post_id,
            created_at=created.created_at,
            media_asset_ids=tuple(asset.remote_asset_id for asset in draft.media),
        )
        _LOGGER.info(
            "Post created",
            extra={
                "event": "publish.done",
                "subject_id": subject_id,
                "post_id": result.remote_post_id,
            },
        )
        return result

    @staticmethod
    def build_payload(draft: PostDraft, author_urn: str) -> dict[str, Any]:
        """Build the ugcPost body; media entries keep the draft's order."""
        media_entries: list[dict[str, Any]] = []
        for asset in draft.media:
            entry: dict[str, Any] = {"status": "READY", "media": asset.remote_asset_id}
            if asset.description:
                entry["description"] = {"text": asset.description}
            if asset.title:
                entry["title"] = {"text": asset.title}
            media_entries.append(entry)

        share_content: dict[str, Any] = {
            "shareCommentary": {"text": draft.commentary},
            "shareMediaCategory": "IMAGE" if media_entries else "NONE",
        }
        if media_entries:
            share_content["media"] = media_entries

        return {
            "author": author_urn,
            "lifecycleState": "PUBLISHED",
            "specificContent": {SHARE_CONTENT_KEY: share_content},
            "visibility": {VISIBILITY_KEY: draft.visibility.value},
        }


__all__ = ["PostPublisher"]
