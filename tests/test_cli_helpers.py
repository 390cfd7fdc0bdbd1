"""Tests for CLI helper utilities."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from linkpost.app import cli
from linkpost.platforms.base import Visibility
from linkpost.platforms.linkedin import Credential, JsonTokenStore
from linkpost.services.publish_ledger import PublishLedger


@pytest.fixture(autouse=True)
def _restore_root_handlers():
    root = logging.getLogger()
    handlers = list(root.handlers)
    yield
    for handler in root.handlers:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    path = tmp_path / "config.toml"
    path.write_text(
        f'[paths]\nstate_dir = "{(tmp_path / "state").as_posix()}"\n'
        f'secrets_file = "{(tmp_path / "secrets.ini").as_posix()}"\n',
        encoding="utf-8",
    )
    return path


def test_build_draft_keeps_image_order(tmp_path: Path) -> None:
    first = tmp_path / "b.png"
    second = tmp_path / "a.jpg"
    first.write_bytes(b"b")
    second.write_bytes(b"a")

    draft = cli._build_draft("hello", "connections", [str(first), str(second)])

    assert draft.visibility is Visibility.CONNECTIONS
    assert [asset.label for asset in draft.media] == ["b.png", "a.jpg"]
    assert draft.media[0].content_type == "image/png"


def test_build_draft_rejects_missing_image(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        cli._build_draft("hello", "PUBLIC", [str(tmp_path / "nope.png")])


def test_no_command_is_a_usage_error() -> None:
    assert cli.main([]) == 2


def test_missing_config_is_a_usage_error(tmp_path: Path) -> None:
    assert cli.main(["--config", str(tmp_path / "absent.toml"), "ledger", "show", "--key", "k"]) == 2


def test_ledger_discard(config_path: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    ledger = PublishLedger(tmp_path / "state" / "publish")
    ledger.mark_pending("draft-1", "user-1")

    code = cli.main(["--config", str(config_path), "ledger", "discard", "--key", "draft-1"])

    assert code == 0
    assert json.loads(capsys.readouterr().out) == {"removed": True}
    assert ledger.load("draft-1") is None
    assert (tmp_path / "logs" / "linkpost.log").exists()


def test_status_reads_stored_connection(
    config_path: Path,
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setenv("LINKEDIN_CLIENT_ID", "client-id")
    monkeypatch.setenv("LINKEDIN_CLIENT_SECRET", "client-secret")
    store = JsonTokenStore(tmp_path / "state" / "tokens")
    store.save(
        Credential(
            subject_id="user-1",
            access_token="token-a",
            expires_at=datetime.now(tz=UTC) + timedelta(hours=1),
            external_urn="urn:li:person:abc123",
        )
    )

    code = cli.main(["--config", str(config_path), "status", "--subject", "user-1"])

    output = json.loads(capsys.readouterr().out)
    assert code == 0
    assert output["isConnected"] is True
    assert output["linkedinUrn"] == "urn:li:person:abc123"


def test_missing_client_secret_is_a_usage_error(
    config_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv("LINKEDIN_CLIENT_ID", raising=False)
    monkeypatch.delenv("LINKEDIN_CLIENT_SECRET", raising=False)

    assert cli.main(["--config", str(config_path), "status", "--subject", "user-1"]) == 2
