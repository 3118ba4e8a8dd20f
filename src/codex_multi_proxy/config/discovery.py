from pathlib import Path

from codex_multi_proxy.core.system import get_proxy_config_dir


def find_toml_config_file() -> Path | None:
    """Find the TOML configuration file for codex-multi-proxy.

    Searches in the following order:
    1. .codex_multi_proxy.toml in current directory
    2. config.toml in user config directory/codex-multi-proxy/ (platform-specific)
    """
    candidates = [
        Path(".codex_multi_proxy.toml").resolve(),
        get_proxy_config_dir() / "config.toml",
    ]

    for candidate in candidates:
        if candidate.exists() and candidate.is_file():
            return candidate

    return None
