"""Rate-limit signal parsing for upstream Codex responses.

Without a ``retry-after`` header the Codex usage-window reset times
(``x-codex-primary-reset-at`` / ``x-codex-secondary-reset-at``) are used
as-is. A subscription usage limit can reset hours away and the account
stays blocked until then.
"""

import math
import re
from collections.abc import Mapping
from datetime import UTC
from typing import Any

import orjson
from dateutil import parser as dateutil_parser
from structlog import get_logger

from codex_multi_proxy.rotation.accounts import now_ms
from codex_multi_proxy.rotation.constants import DEFAULT_RETRY_AFTER_MS


logger = get_logger(__name__)

# Error codes the upstream uses for subscription usage limits
USAGE_LIMIT_PATTERN = re.compile(
    r"usage_limit_reached|usage_not_included|rate_limit_exceeded", re.IGNORECASE
)

CODEX_RESET_HEADERS = ("x-codex-primary-reset-at", "x-codex-secondary-reset-at")


def is_rate_limit_status(status_code: int) -> bool:
    """HTTP 429 is the only rotation-triggering upstream signal."""
    return status_code == 429


def _to_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_seconds(value: str) -> float | None:
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if math.isfinite(seconds) else None


def parse_retry_after_ms(
    headers: Mapping[str, str],
    default_ms: int = DEFAULT_RETRY_AFTER_MS,
    now: int | None = None,
) -> int:
    """Parse how long to keep an account blocked after a 429.

    Checks headers in order of preference:
    1. retry-after (seconds, or HTTP date)
    2. x-codex-primary-reset-at / x-codex-secondary-reset-at (Unix seconds),
       not capped by ``default_ms``

    Args:
        headers: Response headers (case-insensitive lookup)
        default_ms: Duration used when no header is present or parsable
        now: Current time in ms

    Returns:
        Duration in milliseconds, never negative
    """
    now = now if now is not None else now_ms()
    headers_lower = {k.lower(): v for k, v in headers.items()}

    retry_after = headers_lower.get("retry-after")
    if retry_after is not None:
        seconds = _to_seconds(retry_after)
        if seconds is not None:
            logger.debug("retry_after_parsed", seconds=seconds)
            return int(max(0.0, seconds) * 1000)

        try:
            dt = dateutil_parser.parse(retry_after)
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=UTC)
            reset_ms = int(dt.timestamp() * 1000)
            logger.debug("retry_after_parsed_date", date=retry_after, reset_ms=reset_ms)
            return max(0, reset_ms - now)
        except (ValueError, OverflowError, dateutil_parser.ParserError):
            pass

    for header_name in CODEX_RESET_HEADERS:
        reset_seconds = _to_int(headers_lower.get(header_name))
        if reset_seconds is not None:
            logger.debug(
                "codex_reset_header_parsed",
                header=header_name,
                reset_at=reset_seconds,
            )
            return max(0, reset_seconds * 1000 - now)

    logger.debug(
        "no_retry_after_header_found", available_headers=list(headers_lower.keys())
    )
    return default_ms


def usage_limit_message(
    status_code: int,
    body: bytes | str,
    headers: Mapping[str, str],
    now: int | None = None,
) -> str | None:
    """Build a friendly message for subscription usage-limit errors.

    Returns:
        Message such as "You have hit your ChatGPT usage limit (plus plan).
        Try again in ~12 min.", or None when the error is something else
    """
    now = now if now is not None else now_ms()
    try:
        parsed = orjson.loads(body)
    except orjson.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None

    error = parsed.get("error")
    if not isinstance(error, dict):
        error = {}

    code = str(error.get("code") or error.get("type") or "")
    if not USAGE_LIMIT_PATTERN.search(code) and status_code != 429:
        return None

    headers_lower = {k.lower(): v for k, v in headers.items()}
    resets_at = _to_int(error.get("resets_at"))
    if resets_at is None:
        resets_at = _to_int(headers_lower.get(CODEX_RESET_HEADERS[0]))
    if resets_at is None:
        resets_at = _to_int(headers_lower.get(CODEX_RESET_HEADERS[1]))

    plan = f" ({str(error['plan_type']).lower()} plan)" if error.get("plan_type") else ""
    when = ""
    if resets_at is not None:
        minutes = max(0, round((resets_at * 1000 - now) / 60000))
        when = f" Try again in ~{minutes} min."
    return f"You have hit your ChatGPT usage limit{plan}.{when}"
