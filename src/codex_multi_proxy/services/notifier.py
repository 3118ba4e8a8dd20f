"""User-facing notifications emitted during account rotation."""

from typing import Protocol

from structlog import get_logger


logger = get_logger(__name__)


class Notifier(Protocol):
    """Best-effort message sink; implementations must not raise."""

    def notify(self, message: str, level: str = "info") -> None: ...


class NullNotifier:
    """Discards every message."""

    def notify(self, message: str, level: str = "info") -> None:
        return None


class LoggingNotifier:
    """Writes notifications to the structured log."""

    def notify(self, message: str, level: str = "info") -> None:
        if level == "warning":
            logger.warning("user_notification", message=message)
        elif level == "error":
            logger.error("user_notification", message=message)
        else:
            logger.info("user_notification", message=message)
