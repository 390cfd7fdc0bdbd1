"""Settings package exports."""

from .loader import (
    AppConfig,
    HttpSettings,
    LinkedInSettings,
    MediaSettings,
    PathSettings,
    PublishSettings,
    TokenSettings,
    load_config,
)

__all__ = [
    "AppConfig",
    "HttpSettings",
    "LinkedInSettings",
    "MediaSettings",
    "PathSettings",
    "PublishSettings",
    "TokenSettings",
    "load_config",
]
