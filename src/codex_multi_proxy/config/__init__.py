"""Configuration module for the Codex multi-account proxy."""

from .codex import CodexSettings, RequestSettings
from .oauth import OAuthSettings
from .rotation import RotationSettings
from .server import ServerSettings
from .settings import Settings, get_settings


__all__ = [
    "Settings",
    "get_settings",
    "CodexSettings",
    "OAuthSettings",
    "RequestSettings",
    "RotationSettings",
    "ServerSettings",
]
