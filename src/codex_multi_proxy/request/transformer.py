"""Request body shaping for the Codex backend.

The ChatGPT backend only accepts stateless (``store=false``) streaming
requests for a small set of model names. This module parses the caller's
body, normalizes the model, and fills in the fields the backend requires.
"""

from dataclasses import dataclass, field
from typing import Any

import orjson
from structlog import get_logger


logger = get_logger(__name__)

DEFAULT_MODEL = "gpt-5.1"
DEFAULT_INCLUDE = ["reasoning.encrypted_content"]
DEFAULT_TEXT_VERBOSITY = "medium"
DEFAULT_REASONING_SUMMARY = "auto"

UNSUPPORTED_PARAMETERS = ("max_output_tokens", "max_completion_tokens")
MAX_ORPHAN_OUTPUT_CHARS = 16000

# (needles, normalized model), most specific first
MODEL_PATTERNS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("gpt-5.2-codex", "gpt 5.2 codex"), "gpt-5.2-codex"),
    (("gpt-5.2", "gpt 5.2"), "gpt-5.2"),
    (("gpt-5.1-codex-max", "gpt 5.1 codex max"), "gpt-5.1-codex-max"),
    (("gpt-5.1-codex-mini", "gpt 5.1 codex mini"), "gpt-5.1-codex-mini"),
    (("codex-mini-latest", "gpt-5-codex-mini", "gpt 5 codex mini"), "codex-mini-latest"),
    (("gpt-5.1-codex", "gpt 5.1 codex"), "gpt-5.1-codex"),
    (("gpt-5.1", "gpt 5.1"), "gpt-5.1"),
    (("codex",), "gpt-5.1-codex"),
    (("gpt-5", "gpt 5"), "gpt-5.1"),
)

REASONING_EFFORTS = ("none", "minimal", "low", "medium", "high", "xhigh")


@dataclass
class ParsedRequest:
    """Inbound body plus the caller intent derived from it."""

    body: dict[str, Any] = field(default_factory=dict)
    wants_stream: bool = False
    prompt_cache_key: str | None = None
    original_model: str | None = None


def parse_request_body(raw: bytes | None) -> ParsedRequest:
    """Parse the inbound JSON body.

    A malformed or non-object body is logged and treated as ``{}``; the call
    proceeds with defaults rather than failing.
    """
    body: dict[str, Any] = {}
    if raw:
        try:
            parsed = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            logger.warning(
                "request_body_parse_failed",
                error=str(e),
                body_preview=raw[:100].decode("utf-8", errors="replace"),
                body_length=len(raw),
            )
        else:
            if isinstance(parsed, dict):
                body = parsed
            else:
                logger.warning(
                    "request_body_not_an_object", body_type=type(parsed).__name__
                )

    cache_key = body.get("prompt_cache_key")
    model = body.get("model")
    return ParsedRequest(
        body=body,
        wants_stream=body.get("stream") is True,
        prompt_cache_key=cache_key if isinstance(cache_key, str) and cache_key else None,
        original_model=model if isinstance(model, str) else None,
    )


def normalize_model(model: str | None) -> str:
    """Map any model name onto a name the Codex backend accepts.

    Provider prefixes (``openai/``) are stripped; unknown names fall back
    to ``gpt-5.1``.
    """
    if not model:
        return DEFAULT_MODEL
    model_id = model.rsplit("/", 1)[-1].lower()
    for needles, normalized in MODEL_PATTERNS:
        if any(needle in model_id for needle in needles):
            return normalized
    return DEFAULT_MODEL


def get_model_family(model: str) -> str:
    """Prompt family of a normalized model name."""
    name = model.lower()
    if "gpt-5.2-codex" in name:
        return "gpt-5.2-codex"
    if "codex-max" in name:
        return "codex-max"
    if "codex" in name:
        return "codex"
    if "gpt-5.2" in name:
        return "gpt-5.2"
    return "gpt-5.1"


def resolve_reasoning(
    model: str,
    requested: dict[str, Any] | None = None,
    configured_effort: str | None = None,
    configured_summary: str | None = None,
) -> dict[str, Any]:
    """Pick reasoning settings for a normalized model.

    Effort comes from configuration, else the model family default, and is
    clamped to what the model supports. The computed ``effort`` and
    ``summary`` replace the caller's; any other ``reasoning`` keys the caller
    sent are kept.
    """
    requested = requested or {}
    name = model.lower()
    is_codex_mini = "codex-mini" in name
    is_codex_max = "codex-max" in name
    is_gpt52_codex = "gpt-5.2-codex" in name
    is_gpt52_general = "gpt-5.2" in name and not is_gpt52_codex
    is_codex = "codex" in name and not is_codex_mini
    is_gpt51_general = "gpt-5.1" in name and "codex" not in name

    supports_xhigh = is_gpt52_general or is_gpt52_codex or is_codex_max
    supports_none = is_gpt52_general or is_gpt51_general

    family_default = "high" if supports_xhigh else "medium"
    effort = configured_effort if configured_effort in REASONING_EFFORTS else family_default

    if is_codex_mini:
        effort = "high" if effort in ("high", "xhigh") else "medium"
    if not supports_xhigh and effort == "xhigh":
        effort = "high"
    if not supports_none and effort == "none":
        effort = "low"
    if is_codex and effort == "minimal":
        effort = "low"

    summary = configured_summary or DEFAULT_REASONING_SUMMARY

    return {**requested, "effort": effort, "summary": summary}


def filter_input(items: Any) -> Any:
    """Drop server-side item references and strip ids (stateless mode)."""
    if not isinstance(items, list):
        return items
    filtered = []
    for item in items:
        if isinstance(item, dict):
            if item.get("type") == "item_reference":
                continue
            item = {k: v for k, v in item.items() if k != "id"}
        filtered.append(item)
    return filtered


def convert_orphaned_outputs(items: Any) -> Any:
    """Turn tool outputs whose call was filtered away into assistant messages.

    The backend rejects a ``function_call_output`` without its matching
    ``function_call``; dropping it would lose the tool result, so it is kept
    as plain text instead.
    """
    if not isinstance(items, list):
        return items
    call_ids = {
        item.get("call_id")
        for item in items
        if isinstance(item, dict)
        and item.get("type") == "function_call"
        and item.get("call_id")
    }
    converted = []
    for item in items:
        if (
            isinstance(item, dict)
            and item.get("type") == "function_call_output"
            and item.get("call_id") not in call_ids
        ):
            tool_name = item.get("name") if isinstance(item.get("name"), str) else "tool"
            output = item.get("output")
            if isinstance(output, str):
                text = output
            else:
                try:
                    text = orjson.dumps(output).decode()
                except TypeError:
                    text = str(output if output is not None else "")
            if len(text) > MAX_ORPHAN_OUTPUT_CHARS:
                text = text[:MAX_ORPHAN_OUTPUT_CHARS] + "\n...[truncated]"
            item = {
                "type": "message",
                "role": "assistant",
                "content": f"[Previous {tool_name} result; call_id={item.get('call_id') or ''}]: {text}",
            }
        converted.append(item)
    return converted


def transform_request_body(
    body: dict[str, Any],
    instructions: str,
    *,
    reasoning_effort: str | None = None,
    reasoning_summary: str | None = None,
    text_verbosity: str | None = None,
    include: list[str] | None = None,
) -> dict[str, Any]:
    """Return the body to send upstream; the input dict is not modified.

    Configured values win over what the caller sent for reasoning effort and
    summary, text verbosity and ``include``.
    """
    transformed = dict(body)
    model = normalize_model(body.get("model") if isinstance(body.get("model"), str) else None)

    transformed["model"] = model
    transformed["store"] = False
    # The backend always streams; response handling restores caller intent
    transformed["stream"] = True
    transformed["instructions"] = instructions

    if "input" in transformed:
        transformed["input"] = convert_orphaned_outputs(
            filter_input(transformed["input"])
        )

    requested_reasoning = body.get("reasoning")
    transformed["reasoning"] = resolve_reasoning(
        model,
        requested_reasoning if isinstance(requested_reasoning, dict) else None,
        configured_effort=reasoning_effort,
        configured_summary=reasoning_summary,
    )

    text = body.get("text") if isinstance(body.get("text"), dict) else {}
    transformed["text"] = {
        **text,
        "verbosity": text_verbosity or DEFAULT_TEXT_VERBOSITY,
    }

    transformed["include"] = list(include) if include else list(DEFAULT_INCLUDE)

    for key in UNSUPPORTED_PARAMETERS:
        transformed.pop(key, None)

    logger.debug(
        "request_transformed",
        original_model=body.get("model"),
        model=model,
        family=get_model_family(model),
        reasoning_effort=transformed["reasoning"]["effort"],
    )
    return transformed
