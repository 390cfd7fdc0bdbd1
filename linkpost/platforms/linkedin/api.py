"""LinkedIn REST API helpers."""

from __future__ import annotations

import enum
import urllib.parse
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Callable, Mapping

from linkpost.core.errors import (
    AuthExpiredError,
    LinkPostError,
    PlatformRejected,
    TokenRejectedError,
    TransientTransportError,
    ValidationError,
)
from linkpost.core.http_client import HttpRequest, HttpResponse, ResilientHttpClient
from linkpost.platforms.base import UploadTarget
from linkpost.settings.loader import DEFAULT_MEDIA_RECIPE, DEFAULT_SCOPES

UPLOAD_MECHANISM_KEY = "com.linkedin.digitalmedia.uploading.MediaUploadHttpRequest"
SHARE_CONTENT_KEY = "com.linkedin.ugc.ShareContent"
VISIBILITY_KEY = "com.linkedin.ugc.MemberNetworkVisibility"
PERSON_URN_PREFIX = "urn:li:person:"

_READY_RECIPE_STATES = {"AVAILABLE", "READY"}
_FAILED_RECIPE_STATES = {"CLIENT_ERROR", "SERVER_ERROR", "INCOMPLETE", "FAILED"}


class PlatformAssetStatus(enum.Enum):
    PROCESSING = "PROCESSING"
    READY = "READY"
    FAILED = "FAILED"


@dataclass(slots=True, frozen=True)
class TokenGrant:
    """Parsed OAuth token endpoint response."""

    access_token: str
    expires_at: datetime
    refresh_token: str | None
    refresh_token_expires_at: datetime | None
    scopes: frozenset[str]


@dataclass(slots=True, frozen=True)
class UserInfo:
    sub: str
    name: str | None = None

    @property
    def urn(self) -> str:
        return f"{PERSON_URN_PREFIX}{self.sub}"


@dataclass(slots=True, frozen=True)
class UploadRegistration:
    asset_urn: str
    target: UploadTarget


@dataclass(slots=True, frozen=True)
class CreatedPost:
    post_id: str
    created_at: datetime


def parse_scopes(raw: object) -> frozenset[str]:
    if not raw:
        return frozenset()
    if isinstance(raw, (list, tuple, set, frozenset)):
        return frozenset(str(item).strip() for item in raw if str(item).strip())
    parts = str(raw).replace(",", " ").split()
    return frozenset(part for part in parts if part)


def asset_id_from_urn(urn: str) -> str:
    return urn.rsplit(":", 1)[-1]


def _platform_message(response: HttpResponse) -> tuple[str | None, int | None]:
    try:
        data = response.json()
    except (ValueError, UnicodeDecodeError):
        return (response.text[:200] or None), None
    if not isinstance(data, dict):
        return None, None
    message = data.get("message") or data.get("error_description") or data.get("error")
    code = data.get("serviceErrorCode")
    return (str(message) if message else None), (int(code) if isinstance(code, int) else None)


class LinkedInApiClient:
    """Minimal client for the LinkedIn endpoints the publishing flow needs.

    Methods take the bearer token explicitly; refreshing it is the
    ``TokenManager``'s job. Non-2xx answers are mapped onto the classified
    errors in :mod:`linkpost.core.errors`.
    """

    AUTHORIZATION_URL = "https://www.linkedin.com/oauth/v2/authorization"
    TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"
    USER_INFO_URL = "https://api.linkedin.com/v2/userinfo"
    UGC_POSTS_URL = "https://api.linkedin.com/v2/ugcPosts"
    ASSETS_URL = "https://api.linkedin.com/v2/assets"

    def __init__(
        self,
        http: ResilientHttpClient,
        *,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        scopes: tuple[str, ...] = DEFAULT_SCOPES,
        api_version: str = "202401",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._http = http
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._scopes = tuple(scopes)
        self._api_version = api_version
        self._clock = clock or (lambda: datetime.now(tz=UTC))

    @property
    def scopes(self) -> tuple[str, ...]:
        return self._scopes

    def authorization_url(self, state: str) -> str:
        params = {
            "response_type": "code",
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "state": state,
            "scope": " ".join(self._scopes),
        }
        return f"{self.AUTHORIZATION_URL}?{urllib.parse.urlencode(params, quote_via=urllib.parse.quote)}"

    async def exchange_code(self, code: str) -> TokenGrant:
        """Trade an authorization code for the first token pair."""
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self._redirect_uri,
            "client_id": self._client_id,
            "client_secret": self._client_secret,
        }
        return await self._token_request(form, step="token_exchange")

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        form = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self._client_id,
            "client_secret": self._client_secret,
        }
        return await self._token_request(form, step="token_refresh")

    async def fetch_user_info(self, access_token: str) -> UserInfo:
        response = await self._http.send(
            HttpRequest(
                url=self.USER_INFO_URL,
                headers=self._bearer(access_token),
                step="user_info",
            )
        )
        self._raise_for_status(response, step="user_info", failure=PlatformRejected)
        data = self._json(response, step="user_info")
        sub = data.get("sub")
        if not sub:
            raise PlatformRejected(
                "Identity response is missing 'sub'", step="user_info", details={"response": data}
            )
        return UserInfo(sub=str(sub), name=data.get("name"))

    async def register_upload(
        self,
        access_token: str,
        owner_urn: str,
        *,
        recipe: str = DEFAULT_MEDIA_RECIPE,
        failure: type[LinkPostError] = PlatformRejected,
    ) -> UploadRegistration:
        body = {
            "registerUploadRequest": {
                "recipes": [recipe],
                "owner": owner_urn,
                "serviceRelationships": [
                    {
                        "relationshipType": "OWNER",
                        "identifier": "urn:li:userGeneratedContent",
                    }
                ],
            }
        }
        response = await self._http.send(
            HttpRequest(
                url=self.ASSETS_URL,
                method="POST",
                params={"action": "registerUpload"},
                headers={**self._bearer(access_token), **self._restli_headers()},
                json_body=body,
                step="register_upload",
            )
        )
        self._raise_for_status(response, step="register_upload", failure=failure)
        data = self._json(response, step="register_upload")
        value = data.get("value") or {}
        mechanism = (value.get("uploadMechanism") or {}).get(UPLOAD_MECHANISM_KEY) or {}
        upload_url = mechanism.get("uploadUrl")
        asset_urn = value.get("asset")
        if not upload_url or not asset_urn:
            raise failure(
                "Registration response lacks uploadUrl or asset",
                step="register_upload",
                details={"response": data},
            )
        headers = {str(k): str(v) for k, v in (mechanism.get("headers") or {}).items()}
        return UploadRegistration(
            asset_urn=str(asset_urn),
            target=UploadTarget(url=str(upload_url), headers=headers),
        )

    async def upload_binary(
        self,
        target: UploadTarget,
        content: bytes,
        *,
        access_token: str,
        content_type: str,
        failure: type[LinkPostError] = PlatformRejected,
    ) -> None:
        """Send the media bytes once; the upload is never retried."""
        headers = {"Content-Type": content_type, **target.headers, **self._bearer(access_token)}
        response = await self._http.send(
            HttpRequest(
                url=target.url,
                method="PUT",
                headers=headers,
                content=content,
                retryable=False,
                step="upload",
            )
        )
        if not response.ok:
            message, _ = _platform_message(response)
            raise failure(
                "Binary upload was not acknowledged",
                step="upload",
                details={"status": response.status, "message": message},
            )

    async def get_asset_status(
        self, access_token: str, asset_urn: str
    ) -> PlatformAssetStatus:
        response = await self._http.send(
            HttpRequest(
                url=f"{self.ASSETS_URL}/{urllib.parse.quote(asset_id_from_urn(asset_urn))}",
                headers={**self._bearer(access_token), **self._restli_headers()},
                step="asset_status",
            )
        )
        self._raise_for_status(response, step="asset_status", failure=PlatformRejected)
        return self.parse_asset_status(self._json(response, step="asset_status"))

    @staticmethod
    def parse_asset_status(data: Mapping[str, Any]) -> PlatformAssetStatus:
        recipes = data.get("recipes")
        states: list[str] = []
        if isinstance(recipes, list):
            states = [str(item.get("status", "")).upper() for item in recipes if isinstance(item, dict)]
        if not states and data.get("status"):
            states = [str(data["status"]).upper()]
        if any(state in _FAILED_RECIPE_STATES for state in states):
            return PlatformAssetStatus.FAILED
        if states and all(state in _READY_RECIPE_STATES for state in states):
            return PlatformAssetStatus.READY
        return PlatformAssetStatus.PROCESSING

    async def create_ugc_post(self, access_token: str, payload: Mapping[str, Any]) -> CreatedPost:
        response = await self._http.send(
            HttpRequest(
                url=self.UGC_POSTS_URL,
                method="POST",
                headers={**self._bearer(access_token), **self._restli_headers()},
                json_body=dict(payload),
                step="create_post",
            )
        )
        self._raise_for_status(response, step="create_post", failure=PlatformRejected)
        data = self._json(response, step="create_post", allow_empty=True)
        post_id = response.header("x-restli-id") or data.get("id")
        if not post_id:
            raise PlatformRejected(
                "Post creation succeeded without an id",
                step="create_post",
                status=response.status,
                details={"response": data},
            )
        created_ms = (data.get("created") or {}).get("time")
        if isinstance(created_ms, (int, float)):
            created_at = datetime.fromtimestamp(created_ms / 1000, tz=UTC)
        else:
            created_at = self._clock()
        return CreatedPost(post_id=str(post_id), created_at=created_at)

    async def _token_request(self, form: Mapping[str, str], *, step: str) -> TokenGrant:
        response = await self._http.send(
            HttpRequest(url=self.TOKEN_URL, method="POST", form=form, step=step)
        )
        if not response.ok:
            message, _ = _platform_message(response)
            details = {"status": response.status, "message": message}
            if response.status in self._http.policy.retryable_statuses:
                raise TransientTransportError(
                    "The authorization server is unavailable", step=step, details=details
                )
            raise AuthExpiredError(
                "The authorization server rejected the grant; re-authorization is required",
                step=step,
                details=details,
            )
        data = self._json(response, step=step)
        return self.parse_token_grant(data, now=self._clock(), step=step)

    @staticmethod
    def parse_token_grant(
        data: Mapping[str, Any], *, now: datetime, step: str = "token_exchange"
    ) -> TokenGrant:
        token = data.get("access_token")
        expires_in = data.get("expires_in")
        if not token or expires_in is None:
            raise PlatformRejected(
                "Token response is missing access_token or expires_in",
                step=step,
                details={"keys": sorted(data)},
            )
        try:
            expires_seconds = int(expires_in)
        except (TypeError, ValueError) as exc:
            raise PlatformRejected(
                "expires_in is not an integer", step=step, details={"expires_in": expires_in}
            ) from exc

        refresh_expires_at = None
        refresh_expires_in = data.get("refresh_token_expires_in")
        if isinstance(refresh_expires_in, (int, float)):
            refresh_expires_at = now + timedelta(seconds=int(refresh_expires_in))

        return TokenGrant(
            access_token=str(token),
            expires_at=now + timedelta(seconds=expires_seconds),
            refresh_token=str(data["refresh_token"]) if data.get("refresh_token") else None,
            refresh_token_expires_at=refresh_expires_at,
            scopes=parse_scopes(data.get("scope")),
        )

    def _bearer(self, access_token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}

    def _restli_headers(self) -> dict[str, str]:
        return {"X-Restli-Protocol-Version": "2.0.0", "LinkedIn-Version": self._api_version}

    def _raise_for_status(
        self,
        response: HttpResponse,
        *,
        step: str,
        failure: type[LinkPostError],
    ) -> None:
        if response.ok:
            return
        message, service_code = _platform_message(response)
        details = {"status": response.status, "message": message, "attempts": response.attempts}
        if response.status == 401:
            raise TokenRejectedError("Access token was rejected", step=step, details=details)
        if response.status in (400, 422) and step == "create_post":
            raise ValidationError(
                message or "The platform rejected the request as malformed",
                step=step,
                details=details,
            )
        if issubclass(failure, PlatformRejected):
            raise failure(
                message or f"Platform answered HTTP {response.status}",
                step=step,
                status=response.status,
                platform_message=message,
                service_error_code=service_code,
                details=details,
            )
        raise failure(
            message or f"Platform answered HTTP {response.status}", step=step, details=details
        )

    def _json(
        self, response: HttpResponse, *, step: str, allow_empty: bool = False
    ) -> dict[str, Any]:
        if allow_empty and not response.body:
            return {}
        try:
            data = response.json()
        except (ValueError, UnicodeDecodeError) as exc:
            raise PlatformRejected(
                "Could not parse platform response",
                step=step,
                status=response.status,
                details={"body": response.text[:200]},
            ) from exc
        if not isinstance(data, dict):
            raise PlatformRejected(
                "Unexpected platform response shape", step=step, details={"body": response.text[:200]}
            )
        return data


__all__ = [
    "CreatedPost",
    "LinkedInApiClient",
    "PlatformAssetStatus",
    "TokenGrant",
    "UploadRegistration",
    "UserInfo",
    "asset_id_from_urn",
    "parse_scopes",
]
