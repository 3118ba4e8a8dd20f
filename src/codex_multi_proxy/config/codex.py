"""Upstream Codex backend and request shaping settings."""

from pydantic import BaseModel, Field


class CodexSettings(BaseModel):
    """Where and how requests are forwarded upstream."""

    base_url: str = Field(
        default="https://chatgpt.com/backend-api",
        description="Base URL of the ChatGPT backend",
    )
    request_timeout_seconds: float = Field(
        default=240.0,
        gt=0,
        description="Read timeout for a single upstream dispatch",
    )
    connect_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Connect timeout for a single upstream dispatch",
    )


class RequestSettings(BaseModel):
    """Defaults applied while shaping the outbound request body."""

    instructions_dir: str | None = Field(
        default=None,
        description="Directory holding <model-family>.md instruction files",
    )
    reasoning_effort: str | None = Field(
        default=None,
        description="Reasoning effort sent upstream; the model family default when unset",
    )
    reasoning_summary: str | None = Field(
        default=None,
        description="Reasoning summary mode sent upstream; 'auto' when unset",
    )
    text_verbosity: str | None = Field(
        default=None,
        description="Text verbosity sent upstream; 'medium' when unset",
    )
    include: list[str] | None = Field(
        default=None,
        description="Response fields to include; reasoning.encrypted_content when unset",
    )
