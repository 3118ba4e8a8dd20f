"""HTTP API for the Codex multi-account proxy."""

from codex_multi_proxy.api.app import create_app, get_app


__all__ = ["create_app", "get_app"]
