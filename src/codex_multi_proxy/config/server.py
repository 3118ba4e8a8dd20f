"""Server configuration settings."""

from pydantic import BaseModel, Field, field_validator


class ServerSettings(BaseModel):
    """HTTP server and logging settings."""

    host: str = Field(default="127.0.0.1", description="Server host address")
    port: int = Field(default=8787, ge=1, le=65535, description="Server port")
    reload: bool = Field(default=False, description="Enable auto-reload")
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str | None = Field(
        default=None,
        description="Optional file that receives a copy of the log output",
    )
    json_logs: bool = Field(default=False, description="Render logs as JSON")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper
