"""Utility exports."""

from .logging import JsonFormatter, add_file_handler, configure_logging, get_logger, redact

__all__ = [
    "JsonFormatter",
    "add_file_handler",
    "configure_logging",
    "get_logger",
    "redact",
]
