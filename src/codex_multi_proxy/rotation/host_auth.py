"""Host-provided active credential.

The host hands the proxy one OAuth credential
(``{"type": "oauth", "access": ..., "refresh": ..., "expires": ...}``) that
seeds or reconciles the account pool on load.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import orjson
from structlog import get_logger

from codex_multi_proxy.exceptions import CredentialStoreError


logger = get_logger(__name__)


@dataclass
class HostCredential:
    """OAuth credential handed in by the host."""

    refresh: str
    access: str | None = None
    expires: int | None = None  # Unix timestamp in milliseconds

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "type": "oauth",
            "access": self.access or "",
            "refresh": self.refresh,
            "expires": self.expires or 0,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HostCredential | None":
        """Create from a host auth document; non-OAuth documents yield None."""
        if data.get("type") != "oauth":
            return None
        refresh = data.get("refresh")
        if not isinstance(refresh, str) or not refresh:
            return None
        access = data.get("access")
        expires = data.get("expires")
        return cls(
            refresh=refresh,
            access=access if isinstance(access, str) and access else None,
            expires=int(expires)
            if isinstance(expires, int | float) and not isinstance(expires, bool)
            else None,
        )


def load_host_credential(path: Path) -> HostCredential | None:
    """Read the host credential file.

    Args:
        path: Location of the host auth document

    Returns:
        HostCredential, or None when the file is missing or unusable
    """
    path = Path(path).expanduser()
    try:
        data = orjson.loads(path.read_bytes())
    except FileNotFoundError:
        logger.debug("host_credential_not_found", path=str(path))
        return None
    except (OSError, orjson.JSONDecodeError) as e:
        logger.warning("host_credential_unreadable", path=str(path), error=str(e))
        return None

    if not isinstance(data, dict):
        logger.warning("host_credential_invalid", path=str(path))
        return None

    credential = HostCredential.from_dict(data)
    if credential is None:
        logger.warning("host_credential_not_oauth", path=str(path))
    return credential


def save_host_credential(credential: HostCredential, path: Path) -> None:
    """Write the host credential back after a refresh rotated its tokens.

    Raises:
        CredentialStoreError: If the file system rejects the write
    """
    path = Path(path).expanduser()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(orjson.dumps(credential.to_dict(), option=orjson.OPT_INDENT_2))
    except OSError as e:
        logger.error("host_credential_save_failed", path=str(path), error=str(e))
        raise CredentialStoreError(f"Failed to save host credential {path}: {e}") from e
