"""Upstream response handling: SSE to JSON conversion and stream pass-through.

The Codex backend always answers with a Server-Sent-Events stream. Callers
that asked for a stream get it forwarded as-is; everyone else gets the final
response object as a single JSON document.
"""

import re
from collections.abc import AsyncGenerator, Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx
import orjson
from starlette.background import BackgroundTask
from starlette.responses import Response, StreamingResponse
from structlog import get_logger


logger = get_logger(__name__)

DEFAULT_STREAM_CONTENT_TYPE = "text/event-stream; charset=utf-8"
JSON_CONTENT_TYPE = "application/json; charset=utf-8"

TERMINAL_EVENT_TYPES = frozenset({"response.done", "response.completed"})

# Headers that describe the upstream body encoding rather than the payload
STREAM_EXCLUDED_HEADERS = frozenset(
    {"content-length", "content-encoding", "transfer-encoding", "date", "connection"}
)

_DATA_PREFIX = re.compile(r"^data:\s?")
_LINE_SPLIT = re.compile(r"\r?\n")

StreamErrorCallback = Callable[[httpx.TransportError], Awaitable[None]]


@dataclass
class StreamEvent:
    """One decoded ``data:`` payload.

    ``kind`` is ``terminal`` for response.done / response.completed,
    ``response`` for any other event carrying a nested ``response`` object,
    ``other`` for remaining JSON objects and ``unknown`` for non-object
    payloads.
    """

    kind: str
    payload: Any
    type: str | None = None
    response: Any = None

    @classmethod
    def from_payload(cls, payload: Any) -> "StreamEvent":
        if not isinstance(payload, dict):
            return cls(kind="unknown", payload=payload)
        event_type = payload.get("type")
        event_type = event_type if isinstance(event_type, str) else None
        if "response" not in payload or payload["response"] is None:
            return cls(kind="other", payload=payload, type=event_type)
        kind = "terminal" if event_type in TERMINAL_EVENT_TYPES else "response"
        return cls(
            kind=kind, payload=payload, type=event_type, response=payload["response"]
        )


@dataclass
class ParsedStream:
    """What survived parsing an SSE body."""

    final_response: Any = None
    last_response_like: Any = None
    last_event: Any = None
    event_count: int = 0
    event_types: list[str] = field(default_factory=list)

    def add(self, event: StreamEvent) -> None:
        self.event_count += 1
        self.last_event = event.payload
        if event.type:
            self.event_types.append(event.type)
        if event.kind in ("response", "terminal"):
            self.last_response_like = event.response
        if event.kind == "terminal":
            self.final_response = event.response

    @property
    def payload(self) -> Any:
        """Final response, else last response-like object, else last event."""
        for candidate in (self.final_response, self.last_response_like, self.last_event):
            if candidate is not None:
                return candidate
        return None


def _try_parse(data: str) -> tuple[bool, Any]:
    try:
        return True, orjson.loads(data)
    except orjson.JSONDecodeError:
        return False, None


def parse_sse_stream(text: str) -> ParsedStream:
    """Scan an SSE body and keep the events that parse as JSON.

    Consecutive ``data:`` lines accumulate and are parsed optimistically after
    each line, so multi-line payloads work. When the accumulated buffer fails
    but the newest line parses on its own, the earlier fragment is dropped.
    """
    parsed = ParsedStream()
    pending: list[str] = []

    def flush() -> bool:
        if not pending:
            return False
        ok, payload = _try_parse("\n".join(pending))
        if not ok:
            return False
        pending.clear()
        parsed.add(StreamEvent.from_payload(payload))
        return True

    for line in _LINE_SPLIT.split(text):
        if line == "":
            flush()
            pending.clear()
            continue

        if not line.startswith("data:"):
            continue

        content = _DATA_PREFIX.sub("", line, count=1)
        pending.append(content)
        if flush():
            continue

        ok, payload = _try_parse(content)
        if ok:
            pending.clear()
            parsed.add(StreamEvent.from_payload(payload))

    flush()
    return parsed


def ensure_content_type(headers: Mapping[str, str]) -> dict[str, str]:
    """Copy headers, defaulting content-type to an event stream."""
    result = {k: v for k, v in headers.items()}
    if not any(k.lower() == "content-type" for k in result):
        result["content-type"] = DEFAULT_STREAM_CONTENT_TYPE
    return result


def _forwardable_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {
        k: v for k, v in headers.items() if k.lower() not in STREAM_EXCLUDED_HEADERS
    }


async def convert_sse_to_json(upstream: httpx.Response) -> Response:
    """Consume the whole upstream stream and return one JSON document.

    If nothing in the stream parses, the raw text is returned with the
    upstream status and headers so no data is lost.
    """
    try:
        raw = await upstream.aread()
    finally:
        await upstream.aclose()

    text = raw.decode("utf-8", errors="replace")
    parsed = parse_sse_stream(text)
    headers = _forwardable_headers(upstream.headers)
    payload = parsed.payload

    if payload is None:
        logger.warning(
            "sse_stream_unparseable",
            status_code=upstream.status_code,
            body_length=len(raw),
            content_preview=text[:200],
        )
        return Response(
            content=raw,
            status_code=upstream.status_code,
            headers=headers,
        )

    if parsed.final_response is None:
        logger.warning(
            "sse_stream_missing_final_event",
            event_count=parsed.event_count,
            last_event_type=parsed.event_types[-1] if parsed.event_types else None,
        )
    else:
        logger.debug("sse_stream_converted", event_count=parsed.event_count)

    headers = {k: v for k, v in headers.items() if k.lower() != "content-type"}
    headers["content-type"] = JSON_CONTENT_TYPE
    return Response(
        content=orjson.dumps(payload),
        status_code=upstream.status_code,
        headers=headers,
    )


async def stream_passthrough(
    upstream: httpx.Response, on_error: StreamErrorCallback | None = None
) -> StreamingResponse:
    """Forward the upstream event stream body verbatim.

    A transport failure after the first byte cannot be retried; ``on_error``
    is awaited before the error propagates and ends the response.
    """

    async def relay() -> AsyncGenerator[bytes, None]:
        chunk_count = 0
        total_bytes = 0
        try:
            async for chunk in upstream.aiter_bytes():
                chunk_count += 1
                total_bytes += len(chunk)
                yield chunk
        except httpx.TransportError as e:
            logger.warning(
                "stream_passthrough_interrupted",
                error=str(e),
                total_chunks=chunk_count,
                total_bytes=total_bytes,
            )
            if on_error is not None:
                await on_error(e)
            raise
        logger.debug(
            "stream_passthrough_complete",
            total_chunks=chunk_count,
            total_bytes=total_bytes,
        )

    headers = ensure_content_type(_forwardable_headers(upstream.headers))
    return StreamingResponse(
        relay(),
        status_code=upstream.status_code,
        headers=headers,
        background=BackgroundTask(upstream.aclose),
    )


async def passthrough_or_convert(
    upstream: httpx.Response,
    wants_stream: bool,
    on_stream_error: StreamErrorCallback | None = None,
) -> Response:
    """Stream to callers that asked for it, otherwise return JSON.

    Raises:
        httpx.TransportError: The body could not be read for conversion
    """
    if wants_stream:
        return await stream_passthrough(upstream, on_stream_error)
    return await convert_sse_to_json(upstream)
