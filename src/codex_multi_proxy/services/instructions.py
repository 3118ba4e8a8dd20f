"""Per-model-family instruction text for upstream requests."""

from pathlib import Path
from typing import Protocol

from structlog import get_logger


logger = get_logger(__name__)

INSTRUCTION_SUFFIXES = (".md", ".txt")


class InstructionsProvider(Protocol):
    """Supplies the ``instructions`` field for a model family."""

    async def fetch(self, family: str) -> str: ...


class NullInstructionsProvider:
    """Sends empty instructions."""

    async def fetch(self, family: str) -> str:
        return ""


class FileInstructionsProvider:
    """Reads ``<family>.md`` or ``<family>.txt`` from a directory.

    Files are read once per family and cached for the life of the provider.
    A missing file yields empty instructions.
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory).expanduser()
        self._cache: dict[str, str] = {}

    async def fetch(self, family: str) -> str:
        if family in self._cache:
            return self._cache[family]

        text = ""
        for suffix in INSTRUCTION_SUFFIXES:
            path = self.directory / f"{family}{suffix}"
            try:
                text = path.read_text(encoding="utf-8")
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(
                    "instructions_read_failed", path=str(path), error=str(e)
                )
                continue
            logger.debug("instructions_loaded", family=family, path=str(path))
            break
        else:
            logger.debug(
                "instructions_not_found", family=family, directory=str(self.directory)
            )

        self._cache[family] = text
        return text


def create_instructions_provider(
    directory: str | Path | None,
) -> FileInstructionsProvider | NullInstructionsProvider:
    if directory is None:
        return NullInstructionsProvider()
    return FileInstructionsProvider(directory)
