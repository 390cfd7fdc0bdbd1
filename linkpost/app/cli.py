"""Command-line interface for connecting accounts and publishing posts."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Callable, Sequence

from ..core.errors import LinkPostError
from ..platforms.base import MediaAsset, PostDraft, Visibility
from ..security import SecretNotFoundError
from ..services.publish_ledger import PublishLedger
from ..settings import AppConfig, load_config
from ..utils.logging import add_file_handler, configure_logging, get_logger
from .runner import open_service

LOGGER = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(structured=not args.log_plain)

    handler: Callable[[argparse.Namespace], int] | None = getattr(args, "handler", None)
    if handler is None:
        parser.print_help(sys.stderr)
        return EXIT_USAGE
    try:
        return handler(args)
    except (FileNotFoundError, SecretNotFoundError, ValueError) as exc:
        LOGGER.error(
            "Command could not start",
            extra={"event": "cli.error", "command": args.command, "error": str(exc)},
        )
        return EXIT_USAGE


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="linkpost", description="LinkedIn publishing CLI")
    parser.add_argument("--config", help="Path to configuration file", default=None)
    parser.add_argument(
        "--log-plain",
        action="store_true",
        help="Use plain-text logs instead of JSON",
    )

    subparsers = parser.add_subparsers(dest="command")

    _add_auth_commands(subparsers)
    _add_account_commands(subparsers)
    _add_publish_command(subparsers)
    _add_ledger_commands(subparsers)

    return parser


def _add_auth_commands(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    auth_parser = subparsers.add_parser("auth", help="Connect a LinkedIn account")
    auth_subparsers = auth_parser.add_subparsers(dest="auth_command", required=True)

    url_parser = auth_subparsers.add_parser("url", help="Print an authorization URL and its state")
    url_parser.set_defaults(handler=_handle_auth_url)

    connect_parser = auth_subparsers.add_parser(
        "connect", help="Exchange the callback code for tokens"
    )
    connect_parser.add_argument("--subject", required=True, help="Product user id")
    connect_parser.add_argument("--code", required=True, help="Authorization code from the callback")
    connect_parser.add_argument("--state", required=True, help="State returned by the callback")
    connect_parser.add_argument(
        "--expected-state",
        dest="expected_state",
        required=True,
        help="State printed by 'auth url'",
    )
    connect_parser.set_defaults(handler=_handle_auth_connect)


def _add_account_commands(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    status_parser = subparsers.add_parser("status", help="Show the stored connection")
    status_parser.add_argument("--subject", required=True, help="Product user id")
    status_parser.set_defaults(handler=_handle_status)

    disconnect_parser = subparsers.add_parser("disconnect", help="Forget the stored tokens")
    disconnect_parser.add_argument("--subject", required=True, help="Product user id")
    disconnect_parser.set_defaults(handler=_handle_disconnect)


def _add_publish_command(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    publish_parser = subparsers.add_parser("publish", help="Publish a post with optional images")
    publish_parser.add_argument("--subject", required=True, help="Product user id")
    publish_parser.add_argument("--text", required=True, help="Post commentary")
    publish_parser.add_argument(
        "--visibility",
        choices=[member.value for member in Visibility],
        default=Visibility.PUBLIC.value,
    )
    publish_parser.add_argument(
        "--image",
        dest="images",
        action="append",
        default=[],
        metavar="PATH",
        help="Image to attach; repeat to keep display order",
    )
    publish_parser.add_argument(
        "--idempotency-key",
        dest="idempotency_key",
        default=None,
        help="Caller key that makes resubmission safe",
    )
    publish_parser.add_argument(
        "--deadline",
        type=float,
        default=None,
        help="Seconds allowed for token and media preparation",
    )
    publish_parser.set_defaults(handler=_handle_publish)


def _add_ledger_commands(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    ledger_parser = subparsers.add_parser("ledger", help="Inspect idempotency records")
    ledger_subparsers = ledger_parser.add_subparsers(dest="ledger_command", required=True)

    show_parser = ledger_subparsers.add_parser("show", help="Print the record for a key")
    show_parser.add_argument("--key", required=True)
    show_parser.set_defaults(handler=_handle_ledger_show)

    discard_parser = ledger_subparsers.add_parser(
        "discard", help="Forget a pending key after checking the profile"
    )
    discard_parser.add_argument("--key", required=True)
    discard_parser.set_defaults(handler=_handle_ledger_discard)


def _handle_auth_url(args: argparse.Namespace) -> int:
    config = _load_config(args)

    async def _run() -> dict[str, Any]:
        async with open_service(config) as service:
            request = service.begin_authorization()
        return {"url": request.url, "state": request.state}

    _emit(asyncio.run(_run()))
    return EXIT_OK


def _handle_auth_connect(args: argparse.Namespace) -> int:
    config = _load_config(args)
    _log_command("auth.connect", subject_id=args.subject)

    async def _run() -> dict[str, Any]:
        async with open_service(config) as service:
            status = await service.complete_authorization(
                args.subject,
                code=args.code,
                state=args.state,
                expected_state=args.expected_state,
            )
        return status.to_dict()

    try:
        _emit(asyncio.run(_run()))
    except LinkPostError as exc:
        _emit({"error": exc.to_dict()}, stream=sys.stderr)
        return EXIT_FAILED
    return EXIT_OK


def _handle_status(args: argparse.Namespace) -> int:
    config = _load_config(args)

    async def _run() -> dict[str, Any]:
        async with open_service(config) as service:
            return service.get_connection_status(args.subject).to_dict()

    _emit(asyncio.run(_run()))
    return EXIT_OK


def _handle_disconnect(args: argparse.Namespace) -> int:
    config = _load_config(args)
    _log_command("disconnect", subject_id=args.subject)

    async def _run() -> bool:
        async with open_service(config) as service:
            return service.disconnect(args.subject)

    removed = asyncio.run(_run())
    _emit({"removed": removed})
    return EXIT_OK


def _handle_publish(args: argparse.Namespace) -> int:
    config = _load_config(args)
    draft = _build_draft(args.text, args.visibility, args.images)
    _log_command(
        "publish",
        subject_id=args.subject,
        media_count=len(draft.media),
        idempotency_key=args.idempotency_key,
    )

    async def _run():
        async with open_service(config) as service:
            return await service.publish_post(
                draft,
                args.subject,
                idempotency_key=args.idempotency_key,
                deadline=args.deadline,
            )

    outcome = asyncio.run(_run())
    if outcome.result is None:
        error = outcome.error.to_dict() if outcome.error is not None else None
        _emit({"error": error}, stream=sys.stderr)
        return EXIT_FAILED
    _emit({**outcome.result.to_dict(), "replayed": outcome.replayed})
    return EXIT_OK


def _handle_ledger_show(args: argparse.Namespace) -> int:
    ledger = _ledger(_load_config(args))
    record = ledger.load(args.key)
    if record is None:
        print("<no-record>")
        return EXIT_OK
    _emit(record.to_dict())
    return EXIT_OK


def _handle_ledger_discard(args: argparse.Namespace) -> int:
    ledger = _ledger(_load_config(args))
    removed = ledger.discard(args.key)
    _log_command("ledger.discard", removed=removed)
    _emit({"removed": removed})
    return EXIT_OK


def _build_draft(text: str, visibility: str, images: Sequence[str]) -> PostDraft:
    media = []
    for raw in images:
        path = Path(raw)
        if not path.is_file():
            raise ValueError(f"Image not found: {path}")
        media.append(MediaAsset(source=path))
    return PostDraft(commentary=text, visibility=Visibility.parse(visibility), media=media)


def _load_config(args: argparse.Namespace) -> AppConfig:
    config = load_config(args.config)
    add_file_handler(config.paths.log_dir)
    return config


def _ledger(config: AppConfig) -> PublishLedger:
    return PublishLedger(config.paths.ledger_dir)


def _log_command(command: str, **context: Any) -> None:
    LOGGER.info("Running command", extra={"event": "cli.command", "command": command, **context})


def _emit(payload: dict[str, Any], *, stream=None) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str), file=stream or sys.stdout)


__all__ = ["main"]
