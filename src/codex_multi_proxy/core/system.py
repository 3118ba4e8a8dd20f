from pathlib import Path

import platformdirs


def get_xdg_config_home() -> Path:
    """Get the XDG_CONFIG_HOME directory using platformdirs.

    Returns:
        Path to the user config directory (cross-platform).
    """
    return Path(platformdirs.user_config_dir())


def get_proxy_config_dir() -> Path:
    """Get the codex-multi-proxy configuration directory."""
    return get_xdg_config_home() / "codex-multi-proxy"
