"""Codex Multi Proxy - Multi-account Codex proxy with automatic rotation."""

from ._version import __version__


__all__ = ["__version__"]
