"""Tests for the media state machine and upload orchestration."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from fakes import (
    MEMBER_URN,
    SUBJECT,
    FakeLinkedIn,
    asset_status_payload,
    build_stack,
    register_payload,
    register_sequence,
    respond,
    stored_credential,
)
from linkpost.core.errors import (
    MediaProcessingFailed,
    MediaProcessingTimeout,
    MediaRegistrationFailed,
    MediaUploadFailed,
)
from linkpost.platforms.base import (
    AssetNotReadyError,
    InvalidTransitionError,
    MediaAsset,
    MediaStatus,
    UploadTarget,
)

ASSET_URN = "urn:li:digitalmediaAsset:C5522AQ1"
STATUS_PATH = "/v2/assets/C5522AQ1"
UPLOAD_PATH = "/upload/asset-1"


def _single_asset_routes(fake: FakeLinkedIn, *statuses: str) -> FakeLinkedIn:
    fake.on("POST", "/v2/assets", respond(200, register_payload()))
    fake.on("PUT", UPLOAD_PATH, respond(201))
    fake.on("GET", STATUS_PATH, *(respond(200, asset_status_payload(s)) for s in statuses))
    return fake


class TestMediaAsset:
    def test_forward_transitions_reach_ready(self) -> None:
        asset = MediaAsset(source=b"png-bytes", content_type="image/png")

        asset.mark_registered(UploadTarget(url="https://upload"), ASSET_URN)
        asset.mark_uploading()
        asset.mark_processing()
        asset.mark_ready(ASSET_URN)

        assert asset.status is MediaStatus.READY
        assert asset.remote_asset_id == ASSET_URN

    def test_transitions_cannot_skip_or_go_back(self) -> None:
        asset = MediaAsset(source=b"png-bytes")

        with pytest.raises(InvalidTransitionError):
            asset.mark_processing()
        asset.mark_registered(UploadTarget(url="https://upload"), ASSET_URN)
        asset.mark_uploading()
        with pytest.raises(InvalidTransitionError):
            asset.mark_registered(UploadTarget(url="https://upload"), ASSET_URN)

    def test_failed_is_terminal_and_never_ready(self) -> None:
        asset = MediaAsset(source=b"png-bytes")
        asset.mark_failed("boom")

        with pytest.raises(InvalidTransitionError):
            asset.mark_registered(UploadTarget(url="https://upload"), ASSET_URN)
        with pytest.raises(AssetNotReadyError):
            _ = asset.remote_asset_id
        assert not asset.is_ready

    def test_content_type_is_guessed_from_path(self, tmp_path: Path) -> None:
        asset = MediaAsset(source=str(tmp_path / "cover.png"))

        assert isinstance(asset.source, Path)
        assert asset.content_type == "image/png"
        assert asset.label == "cover.png"


def test_prepare_uploads_and_waits_for_ready(fake_linkedin: FakeLinkedIn) -> None:
    _single_asset_routes(fake_linkedin, "PROCESSING", "AVAILABLE")
    stack = build_stack(fake_linkedin, credential=stored_credential())
    asset = MediaAsset(source=b"png-bytes", content_type="image/png")

    asyncio.run(stack.media.prepare(asset, SUBJECT, MEMBER_URN))

    assert asset.status is MediaStatus.READY
    assert asset.remote_asset_id == ASSET_URN
    upload = fake_linkedin.calls("PUT", UPLOAD_PATH)[0]
    assert upload.content == b"png-bytes"
    assert upload.headers["media-type-family"] == "STILLIMAGE"
    assert upload.headers["Content-Type"] == "image/png"
    assert upload.headers["Authorization"] == "Bearer token-a"
    assert len(fake_linkedin.calls("GET", STATUS_PATH)) == 2
    assert stack.clock.sleeps == [2.0]


def test_unregistered_asset_is_not_uploaded_or_polled(fake_linkedin: FakeLinkedIn) -> None:
    stack = build_stack(fake_linkedin, credential=stored_credential())
    asset = MediaAsset(source=b"png-bytes")

    with pytest.raises(InvalidTransitionError):
        asyncio.run(stack.media._upload(asset, SUBJECT))
    with pytest.raises(InvalidTransitionError):
        asyncio.run(stack.media._poll(asset, SUBJECT))

    assert fake_linkedin.requests == []
    assert asset.status is MediaStatus.PENDING


def test_processing_failure_after_two_polls(fake_linkedin: FakeLinkedIn) -> None:
    _single_asset_routes(fake_linkedin, "PROCESSING", "CLIENT_ERROR")
    stack = build_stack(fake_linkedin, credential=stored_credential())
    asset = MediaAsset(source=b"png-bytes")

    with pytest.raises(MediaProcessingFailed) as excinfo:
        asyncio.run(stack.media.prepare(asset, SUBJECT, MEMBER_URN))

    assert excinfo.value.details["polls"] == 2
    assert asset.status is MediaStatus.FAILED
    assert not asset.is_ready


def test_polling_deadline_raises_timeout(fake_linkedin: FakeLinkedIn) -> None:
    _single_asset_routes(fake_linkedin, "PROCESSING")
    stack = build_stack(
        fake_linkedin, credential=stored_credential(), poll_interval=2.0, poll_deadline=5.0
    )
    asset = MediaAsset(source=b"png-bytes")

    with pytest.raises(MediaProcessingTimeout):
        asyncio.run(stack.media.prepare(asset, SUBJECT, MEMBER_URN))

    assert len(fake_linkedin.calls("GET", STATUS_PATH)) == 3
    assert stack.clock.sleeps == [2.0, 2.0]
    assert asset.status is MediaStatus.PROCESSING


def test_registration_failure_marks_asset_failed(fake_linkedin: FakeLinkedIn) -> None:
    fake_linkedin.on("POST", "/v2/assets", respond(500, {"message": "oops"}))
    stack = build_stack(fake_linkedin, credential=stored_credential())
    asset = MediaAsset(source=b"png-bytes")

    with pytest.raises(MediaRegistrationFailed) as excinfo:
        asyncio.run(stack.media.prepare(asset, SUBJECT, MEMBER_URN))

    assert excinfo.value.asset == asset.label
    assert asset.status is MediaStatus.FAILED
    assert len(fake_linkedin.calls("POST", "/v2/assets")) == 4
    assert fake_linkedin.calls("PUT", UPLOAD_PATH) == []


def test_upload_is_attempted_once(fake_linkedin: FakeLinkedIn) -> None:
    fake_linkedin.on("POST", "/v2/assets", respond(200, register_payload()))
    fake_linkedin.on("PUT", UPLOAD_PATH, respond(503))
    stack = build_stack(fake_linkedin, credential=stored_credential())
    asset = MediaAsset(source=b"png-bytes")

    with pytest.raises(MediaUploadFailed):
        asyncio.run(stack.media.prepare(asset, SUBJECT, MEMBER_URN))

    assert len(fake_linkedin.calls("PUT", UPLOAD_PATH)) == 1
    assert asset.status is MediaStatus.FAILED
    assert fake_linkedin.calls("GET", STATUS_PATH) == []


def test_interrupted_upload_is_not_resumed(fake_linkedin: FakeLinkedIn) -> None:
    stack = build_stack(fake_linkedin, credential=stored_credential())
    asset = MediaAsset(source=b"png-bytes")
    asset.mark_registered(UploadTarget(url="https://upload.linkedin.test/upload/asset-1"), ASSET_URN)
    asset.mark_uploading()

    with pytest.raises(MediaUploadFailed):
        asyncio.run(stack.media.prepare(asset, SUBJECT, MEMBER_URN))

    assert asset.status is MediaStatus.FAILED
    assert fake_linkedin.requests == []


def test_ready_asset_is_reused_without_network(fake_linkedin: FakeLinkedIn) -> None:
    stack = build_stack(fake_linkedin, credential=stored_credential())
    asset = MediaAsset(source=b"png-bytes")
    asset.mark_registered(UploadTarget(url="https://upload"), ASSET_URN)
    asset.mark_uploading()
    asset.mark_processing()
    asset.mark_ready(ASSET_URN)

    asyncio.run(stack.media.prepare(asset, SUBJECT, MEMBER_URN))

    assert fake_linkedin.requests == []


def test_prepare_all_keeps_input_order(fake_linkedin: FakeLinkedIn) -> None:
    fake_linkedin.on("POST", "/v2/assets", register_sequence())
    fake_linkedin.on("PUT", UPLOAD_PATH, respond(201))
    fake_linkedin.on(
        "GET",
        "/v2/assets/A1",
        respond(200, asset_status_payload("PROCESSING")),
        respond(200, asset_status_payload("PROCESSING")),
        respond(200, asset_status_payload("AVAILABLE")),
    )
    for number in (2, 3, 4):
        fake_linkedin.on("GET", f"/v2/assets/A{number}", respond(200, asset_status_payload("AVAILABLE")))
    stack = build_stack(fake_linkedin, credential=stored_credential(), max_concurrency=2)
    assets = [MediaAsset(source=f"image-{index}".encode()) for index in range(4)]

    prepared = asyncio.run(stack.media.prepare_all(assets, SUBJECT, MEMBER_URN))

    assert [id(asset) for asset in prepared] == [id(asset) for asset in assets]
    assert all(asset.is_ready for asset in assets)
    assert sorted(asset.remote_asset_id for asset in assets) == [
        f"urn:li:digitalmediaAsset:A{number}" for number in range(1, 5)
    ]


def test_prepare_all_raises_first_failure_in_order(
    fake_linkedin: FakeLinkedIn, tmp_path: Path
) -> None:
    fake_linkedin.on("POST", "/v2/assets", register_sequence())
    fake_linkedin.on("PUT", UPLOAD_PATH, respond(201))
    for number in (1, 2, 3):
        fake_linkedin.on("GET", f"/v2/assets/A{number}", respond(200, asset_status_payload("AVAILABLE")))
    stack = build_stack(fake_linkedin, credential=stored_credential())
    good = MediaAsset(source=b"png-bytes")
    missing_first = MediaAsset(source=tmp_path / "missing-1.png")
    missing_second = MediaAsset(source=tmp_path / "missing-2.png")

    with pytest.raises(MediaUploadFailed) as excinfo:
        asyncio.run(
            stack.media.prepare_all([good, missing_first, missing_second], SUBJECT, MEMBER_URN)
        )

    assert excinfo.value.asset == "missing-1.png"
    assert [entry["asset"] for entry in excinfo.value.details["failed_assets"]] == [
        "missing-1.png",
        "missing-2.png",
    ]
    assert good.is_ready
    assert missing_first.status is MediaStatus.FAILED
    assert missing_second.status is MediaStatus.FAILED
