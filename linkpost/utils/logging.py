"""Logging helpers."""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RESERVED_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

SENSITIVE_KEYS = frozenset(
    {"access_token", "refresh_token", "client_secret", "code", "authorization"}
)
REDACTED = "***"


def redact(value: Any) -> Any:
    """Mask sensitive entries in (nested) mappings passed as log extras."""
    if isinstance(value, dict):
        return {
            key: REDACTED if str(key).lower() in SENSITIVE_KEYS else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    return value


def _extras(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``extra`` fields become top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=UTC)
        payload: dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(redact(_extras(record)))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _formatter(structured: bool) -> logging.Formatter:
    return JsonFormatter() if structured else logging.Formatter(PLAIN_FORMAT)


def configure_logging(
    *,
    level: int = logging.INFO,
    structured: bool | None = None,
) -> None:
    """Install a stdout handler on the root logger.

    On an already configured root only the formatter is swapped, and only
    when ``structured`` is given. File handlers always keep JSON output.
    """
    root = logging.getLogger()
    root.setLevel(level)
    # httpx logs every request line at INFO, including upload URLs.
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))

    if root.handlers:
        if structured is None:
            return
        formatter = _formatter(structured)
        for existing in root.handlers:
            if not isinstance(existing, logging.FileHandler):
                existing.setFormatter(formatter)
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_formatter(structured is not False))
    root.addHandler(handler)


def add_file_handler(log_dir: Path, filename: str = "linkpost.log") -> Path:
    """Mirror root logging into a JSON lines file under ``log_dir``."""
    path = log_dir / filename
    root = logging.getLogger()
    target = path.resolve()
    for existing in root.handlers:
        if isinstance(existing, logging.FileHandler) and Path(existing.baseFilename).resolve() == target:
            return path
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)
    return path


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


__all__ = [
    "JsonFormatter",
    "SENSITIVE_KEYS",
    "add_file_handler",
    "configure_logging",
    "get_logger",
    "redact",
]
