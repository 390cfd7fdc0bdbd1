"""Persistence of publish attempts keyed by caller-supplied idempotency keys."""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from linkpost.platforms.base import PublishResult

_LOGGER = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(slots=True)
class PublishRecord:
    """State of one idempotency key."""

    key: str
    subject_id: str
    status: str
    result: PublishResult | None = None
    updated_at: str = field(default_factory=_now)

    STATUS_PENDING = "pending"
    STATUS_SUCCEEDED = "succeeded"
    STATUS_UNREADABLE = "unreadable"

    @property
    def succeeded(self) -> bool:
        return self.status == self.STATUS_SUCCEEDED and self.result is not None

    @property
    def unreadable(self) -> bool:
        return self.status == self.STATUS_UNREADABLE

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "PublishRecord":
        raw_result = data.get("result")
        return cls(
            key=str(data["key"]),
            subject_id=str(data["subject_id"]),
            status=str(data.get("status", cls.STATUS_PENDING)),
            result=PublishResult.from_dict(raw_result) if isinstance(raw_result, dict) else None,
            updated_at=str(data.get("updated_at", _now())),
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "key": self.key,
            "subject_id": self.subject_id,
            "status": self.status,
            "result": self.result.to_dict() if self.result else None,
            "updated_at": self.updated_at,
        }


class PublishLedger:
    """Stores publish records on disk, one JSON file per key."""

    def __init__(self, root: Path) -> None:
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self._root / f"{digest}.json"

    def load(self, key: str) -> PublishRecord | None:
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            return PublishRecord.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, AttributeError, KeyError, TypeError, ValueError) as exc:
            _LOGGER.warning(
                "Publish record cannot be read",
                extra={"event": "ledger.load_failed", "path": str(path), "error": str(exc)},
            )
        # Outcome of the earlier attempt is unknown.
        return PublishRecord(key=key, subject_id="", status=PublishRecord.STATUS_UNREADABLE)

    def mark_pending(self, key: str, subject_id: str) -> PublishRecord:
        record = PublishRecord(key=key, subject_id=subject_id, status=PublishRecord.STATUS_PENDING)
        self._write(record)
        return record

    def mark_succeeded(self, key: str, subject_id: str, result: PublishResult) -> PublishRecord:
        record = PublishRecord(
            key=key,
            subject_id=subject_id,
            status=PublishRecord.STATUS_SUCCEEDED,
            result=result,
        )
        self._write(record)
        return record

    def discard(self, key: str) -> bool:
        path = self.path_for(key)
        if not path.exists():
            return False
        path.unlink()
        return True

    def _write(self, record: PublishRecord) -> Path:
        path = self.path_for(record.key)
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(
            json.dumps(record.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8"
        )
        tmp_path.replace(path)
        return path


__all__ = ["PublishLedger", "PublishRecord"]
